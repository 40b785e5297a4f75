"""
database.py

Database setup for the team shares market.
Engines and sessions are built from the config, never at import time.
"""

from datetime import datetime, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def make_engine(database_url: str):
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": 30}
    return create_engine(database_url, connect_args=connect_args)


def make_session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


def initialize(engine):
    """Create all tables."""
    from teamshares import models  # noqa: F401  registers the models on Base
    print("[Database] Creating database tables...")
    Base.metadata.create_all(bind=engine)
    print("[Database] Tables ready")
