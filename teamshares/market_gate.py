"""
market_gate.py

Per-team OPEN / LOCKED trading gate.

The gate is never stored. It is recomputed from the locally cached game
records on every call, so the same games and clock always give the same
answer. Rules, first match wins:

1. a game is in progress                                  -> LOCKED
2. a game finished today, inside the settlement window    -> LOCKED
3. a game finished and the daily cutoff hour has not yet
   passed since it finished                               -> LOCKED
4. otherwise                                              -> OPEN
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import or_

from teamshares.config import LeagueConfig, MarketConfig
from teamshares.database import utcnow
from teamshares.errors import UnknownTeam
from teamshares.models import GameRecord, GameState, Team


class MarketState(str, Enum):
    OPEN = "OPEN"
    LOCKED = "LOCKED"


REASON_LIVE = "Game in progress"
REASON_PAYOUT_PENDING = "Game finished (payout pending)"
REASON_OVERNIGHT = "Pending overnight payout"


@dataclass(frozen=True)
class GateDecision:
    state: str
    reason: Optional[str] = None
    game_id: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.state == MarketState.OPEN

    def to_dict(self) -> dict:
        return {"state": self.state, "reason": self.reason, "game_id": self.game_id}


OPEN = GateDecision(MarketState.OPEN.value)


def _to_local(ts: datetime, tz: ZoneInfo) -> datetime:
    return ts.replace(tzinfo=timezone.utc).astimezone(tz)


def completion_time(game, league: LeagueConfig) -> datetime:
    """When a finished game ended; estimated from its start if never observed."""
    if game.completed_at is not None:
        return game.completed_at
    return game.start_at + league.game_duration_estimate


def next_cutoff(completed_at: datetime, league: LeagueConfig) -> datetime:
    """First local cutoff hour strictly after completion, as naive UTC."""
    tz = ZoneInfo(league.timezone)
    local_done = _to_local(completed_at, tz)
    cutoff = local_done.replace(hour=league.payout_cutoff_hour, minute=0, second=0, microsecond=0)
    if cutoff <= local_done:
        cutoff = (cutoff + timedelta(days=1)).replace(hour=league.payout_cutoff_hour)
    return cutoff.astimezone(timezone.utc).replace(tzinfo=None)


def evaluate(games: Iterable, now: datetime, league: LeagueConfig) -> GateDecision:
    """
    Pure gate rule over a team's recent games.

    `games` are objects with state, start_at, completed_at and game_id
    (GameRecord rows or anything shaped like them). `now` is naive UTC.
    """
    games = list(games)
    tz = ZoneInfo(league.timezone)
    today = _to_local(now, tz).date()

    for game in games:
        if game.state == GameState.LIVE:
            return GateDecision(MarketState.LOCKED.value, REASON_LIVE, game.game_id)

    finished = [g for g in games if g.state == GameState.FINAL]

    for game in finished:
        done = completion_time(game, league)
        played_today = _to_local(game.start_at, tz).date() == today
        if played_today and now - done < league.settlement_window:
            return GateDecision(MarketState.LOCKED.value, REASON_PAYOUT_PENDING, game.game_id)

    for game in finished:
        done = completion_time(game, league)
        if now < next_cutoff(done, league):
            return GateDecision(MarketState.LOCKED.value, REASON_OVERNIGHT, game.game_id)

    return OPEN


class MarketGate:
    """Looks up a team's recent games in the local store and applies evaluate()."""

    def __init__(self, session_factory, config: MarketConfig):
        self.session_factory = session_factory
        self.config = config

    def recent_games(self, db, team: Team, now: datetime):
        since = now - self.config.game_lookback
        return db.query(GameRecord).filter(
            GameRecord.league == team.league,
            or_(GameRecord.home_ticker == team.ticker, GameRecord.away_ticker == team.ticker),
            GameRecord.start_at >= since,
        ).order_by(GameRecord.start_at).all()

    def state_for_team(self, db, team: Team, now: Optional[datetime] = None) -> GateDecision:
        now = now or utcnow()
        games = self.recent_games(db, team, now)
        return evaluate(games, now, self.config.league(team.league))

    def state(self, team_id: int, now: Optional[datetime] = None) -> GateDecision:
        db = self.session_factory()
        try:
            team = db.query(Team).filter(Team.id == team_id).first()
            if not team:
                raise UnknownTeam(f"Team {team_id} not found")
            return self.state_for_team(db, team, now)
        finally:
            db.close()


__all__ = [
    'MarketGate', 'MarketState', 'GateDecision', 'evaluate',
    'next_cutoff', 'completion_time',
    'REASON_LIVE', 'REASON_PAYOUT_PENDING', 'REASON_OVERNIGHT',
]
