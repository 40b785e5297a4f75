"""
config.py

Configuration for the team shares market.
Handles:
- Bonding curve constants
- Per-league feed and settlement settings
- Database and feed connection settings
- Loading overrides from the environment
"""

import os
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Dict, Optional

# ==========================
# CONSTANTS
# ==========================
DATABASE_URL = "sqlite:///./teamshares.db"

CURVE_BASE_PRICE = Decimal("10.00")   # price of the first share
CURVE_SLOPE = Decimal("0.01")         # price step per circulating share

PAYOUT_FRACTION = Decimal("1")        # share of the dividend bank paid on a win
STARTING_BALANCE = 0.0

FEED_BASE_URL = "https://site.api.espn.com/apis"
FEED_TIMEOUT_SECONDS = 10.0

SETTLEMENT_WINDOW_HOURS = 6           # lock after a final whistle
PAYOUT_CUTOFF_HOUR = 6                # local hour the overnight lock lifts
GAME_LOOKBACK_DAYS = 2
SCHEDULE_DAYS_AHEAD = 7
GAME_DURATION_ESTIMATE_HOURS = 4
DEFAULT_TIMEZONE = "America/New_York"

TRADE_RETRY_ATTEMPTS = 5
SYNC_INTERVAL_TICKS = 60              # every ~5 minutes (tick = 5 s)

# ==========================
# LEAGUE SETTINGS
# ==========================
LEAGUE_SPORT_PATHS = {
    "NFL": "football/nfl",
    "NHL": "hockey/nhl",
}


@dataclass
class LeagueConfig:
    """Feed and settlement settings for one league."""
    code: str
    sport_path: str
    settlement_window: timedelta = timedelta(hours=SETTLEMENT_WINDOW_HOURS)
    payout_cutoff_hour: int = PAYOUT_CUTOFF_HOUR
    timezone: str = DEFAULT_TIMEZONE
    game_duration_estimate: timedelta = timedelta(hours=GAME_DURATION_ESTIMATE_HOURS)


def default_leagues(timezone: str = DEFAULT_TIMEZONE) -> Dict[str, LeagueConfig]:
    return {
        code: LeagueConfig(code=code, sport_path=path, timezone=timezone)
        for code, path in LEAGUE_SPORT_PATHS.items()
    }


@dataclass
class MarketConfig:
    """
    Everything the ledger and the settlement job need at construction time.

    Operations never read process-wide state; they read this object.
    """
    database_url: str = DATABASE_URL
    curve_base_price: Decimal = CURVE_BASE_PRICE
    curve_slope: Decimal = CURVE_SLOPE
    payout_fraction: Decimal = PAYOUT_FRACTION
    feed_base_url: str = FEED_BASE_URL
    feed_timeout_seconds: float = FEED_TIMEOUT_SECONDS
    feed_api_key: Optional[str] = None
    game_lookback: timedelta = timedelta(days=GAME_LOOKBACK_DAYS)
    schedule_days_ahead: int = SCHEDULE_DAYS_AHEAD
    trade_retry_attempts: int = TRADE_RETRY_ATTEMPTS
    sync_interval_ticks: int = SYNC_INTERVAL_TICKS
    leagues: Dict[str, LeagueConfig] = field(default_factory=default_leagues)

    def league(self, code: str) -> LeagueConfig:
        try:
            return self.leagues[code.upper()]
        except KeyError:
            raise KeyError(f"Unknown league: {code}")

    @classmethod
    def from_env(cls, environ=None) -> "MarketConfig":
        """Build a config from TEAMSHARES_* environment variables."""
        env = os.environ if environ is None else environ
        timezone = env.get("TEAMSHARES_TIMEZONE", DEFAULT_TIMEZONE)
        leagues = default_leagues(timezone)

        wanted = env.get("TEAMSHARES_LEAGUES")
        if wanted:
            codes = [c.strip().upper() for c in wanted.split(",") if c.strip()]
            leagues = {c: leagues[c] for c in codes if c in leagues}

        window = env.get("TEAMSHARES_SETTLEMENT_WINDOW_HOURS")
        if window:
            for lc in leagues.values():
                lc.settlement_window = timedelta(hours=float(window))

        return cls(
            database_url=env.get("TEAMSHARES_DATABASE_URL", DATABASE_URL),
            feed_base_url=env.get("TEAMSHARES_FEED_BASE_URL", FEED_BASE_URL),
            feed_timeout_seconds=float(env.get("TEAMSHARES_FEED_TIMEOUT", FEED_TIMEOUT_SECONDS)),
            feed_api_key=env.get("TEAMSHARES_FEED_API_KEY") or None,
            payout_fraction=Decimal(env.get("TEAMSHARES_PAYOUT_FRACTION", str(PAYOUT_FRACTION))),
            leagues=leagues,
        )


__all__ = [
    'MarketConfig', 'LeagueConfig', 'default_leagues',
    'CURVE_BASE_PRICE', 'CURVE_SLOPE', 'LEAGUE_SPORT_PATHS',
]
