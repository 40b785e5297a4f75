"""
Shared fixtures: a throwaway SQLite market per test and a scripted feed.
"""

import pytest

from teamshares.config import MarketConfig
from teamshares.services import build_services

from tests.helpers import NOW, FakeFeed


# ==========================
# FIXTURES
# ==========================
@pytest.fixture
def config(tmp_path):
    return MarketConfig(database_url=f"sqlite:///{tmp_path / 'market.db'}")


@pytest.fixture
def feed():
    return FakeFeed()


@pytest.fixture
def services(config, feed):
    s = build_services(config, feed=feed)
    yield s
    s.close()


@pytest.fixture
def ledger(services):
    return services.ledger


@pytest.fixture
def chiefs(ledger):
    return ledger.create_team("KC", "NFL", "Kansas City Chiefs")


@pytest.fixture
def bills(ledger):
    return ledger.create_team("BUF", "NFL", "Buffalo Bills")


@pytest.fixture
def rams(ledger):
    return ledger.create_team("LAR", "NFL", "Los Angeles Rams")


@pytest.fixture
def alice(ledger):
    return ledger.create_user("alice", 1000.0)


@pytest.fixture
def bob(ledger):
    return ledger.create_user("bob", 1000.0)


@pytest.fixture
def now():
    return NOW
