"""
models.py

Database models for the team shares market.

Tables:
- teams            : one row per listed team (supply, dividend bank, record, schedule)
- users            : cash balances
- holdings         : shares owned per user/team pair
- transactions     : append-only trade audit log
- processed_games  : payout idempotency fence (unique game_id)
- game_records     : local copy of feed game state, read by the market gate
- dividend_payouts : audit trail of every payout credited to a holder
"""

from enum import Enum

from sqlalchemy import (
    Column, String, Float, DateTime, Integer, UniqueConstraint, CheckConstraint,
)

from teamshares.database import Base, utcnow


# ==========================
# ENUMS
# ==========================
class TradeSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class GameState(str, Enum):
    PRE = "pre"
    LIVE = "in"
    FINAL = "post"


# ==========================
# DATABASE MODELS
# ==========================
class Team(Base):
    """A tradable team. Spot price is derived from shares_outstanding, never stored."""
    __tablename__ = "teams"

    id = Column(Integer, primary_key=True, index=True)
    ticker = Column(String, index=True, nullable=False)
    name = Column(String, nullable=True)
    league = Column(String, index=True, nullable=False)

    shares_outstanding = Column(Integer, default=0, nullable=False)
    dividend_bank = Column(Float, default=0.0, nullable=False)

    wins = Column(Integer, default=0, nullable=False)
    losses = Column(Integer, default=0, nullable=False)
    ties = Column(Integer, default=0, nullable=False)

    next_opponent = Column(String, nullable=True)
    next_game_at = Column(DateTime, nullable=True)
    next_game_id = Column(String, nullable=True)

    version = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("league", "ticker", name="uq_team_league_ticker"),
        CheckConstraint("shares_outstanding >= 0", name="ck_team_supply_non_negative"),
        CheckConstraint("dividend_bank >= 0", name="ck_team_bank_non_negative"),
    )
    __mapper_args__ = {"version_id_col": version}


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String, unique=True, index=True, nullable=False)
    usd_balance = Column(Float, default=0.0, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint("usd_balance >= 0", name="ck_user_balance_non_negative"),
    )
    __mapper_args__ = {"version_id_col": version}


class Holding(Base):
    """Shares a user owns in one team. Created on first buy, never deleted."""
    __tablename__ = "holdings"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, index=True, nullable=False)
    team_id = Column(Integer, index=True, nullable=False)
    shares_owned = Column(Integer, default=0, nullable=False)
    first_purchase = Column(DateTime, default=utcnow)
    last_transaction = Column(DateTime, default=utcnow)

    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        UniqueConstraint("user_id", "team_id", name="uq_holding_user_team"),
        CheckConstraint("shares_owned >= 0", name="ck_holding_non_negative"),
    )
    __mapper_args__ = {"version_id_col": version}


class Transaction(Base):
    """Trade audit record. Written once, never updated."""
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, index=True, nullable=False)
    team_id = Column(Integer, index=True, nullable=False)
    side = Column(String, nullable=False)
    shares_amount = Column(Integer, nullable=False)
    usd_amount = Column(Float, nullable=False)
    avg_share_price = Column(Float, nullable=False)
    created_at = Column(DateTime, default=utcnow, index=True)


class ProcessedGame(Base):
    """One row per settled game. The unique game_id is what makes payouts exactly-once."""
    __tablename__ = "processed_games"

    id = Column(Integer, primary_key=True, index=True)
    game_id = Column(String, unique=True, nullable=False)
    league = Column(String, index=True, nullable=False)
    winner_team_id = Column(Integer, nullable=True)
    processed_at = Column(DateTime, default=utcnow)


class GameRecord(Base):
    """Last known feed state of a game."""
    __tablename__ = "game_records"

    id = Column(Integer, primary_key=True, index=True)
    game_id = Column(String, unique=True, nullable=False)
    league = Column(String, index=True, nullable=False)
    home_ticker = Column(String, index=True, nullable=True)
    away_ticker = Column(String, index=True, nullable=True)
    home_score = Column(Integer, default=0)
    away_score = Column(Integer, default=0)
    state = Column(String, nullable=False, default=GameState.PRE.value)
    start_at = Column(DateTime, index=True, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class DividendPayout(Base):
    __tablename__ = "dividend_payouts"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, index=True, nullable=False)
    team_id = Column(Integer, index=True, nullable=False)
    game_id = Column(String, nullable=True)
    shares_owned = Column(Integer, nullable=False)
    amount = Column(Float, nullable=False)
    paid_at = Column(DateTime, default=utcnow)


__all__ = [
    'Team', 'User', 'Holding', 'Transaction', 'ProcessedGame',
    'GameRecord', 'DividendPayout', 'TradeSide', 'GameState',
]
