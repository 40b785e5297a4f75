"""
settlement.py

Settlement job for the team shares market.
Handles:
- Standings sync (wins / losses / ties, last write wins)
- Scoreboard sync into the local game records read by the market gate
- Next-opponent scheduling, with live and just-finished games holding
  their teams for the whole run
- Exactly-once win payouts for completed games

A run never raises. Feed failures abort the run; per-team and per-game
failures are printed and skipped. Everything committed before a failure
stays committed, and the next run starts from scratch.
"""

import threading
import traceback
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import reduce
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo

from teamshares.config import LeagueConfig, MarketConfig
from teamshares.database import utcnow
from teamshares.errors import FeedError, UnknownTeam
from teamshares.feed import Game
from teamshares.ledger import LedgerStore
from teamshares.models import GameRecord, GameState
from teamshares.tickers import TickerNormalizer


# ==========================
# RESULTS
# ==========================
@dataclass
class SyncReport:
    league: str
    teams_updated: int = 0
    games_processed: int = 0
    payouts_issued: int = 0
    errors: int = 0
    aborted: bool = False
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "league": self.league,
            "teams_updated": self.teams_updated,
            "games_processed": self.games_processed,
            "payouts_issued": self.payouts_issued,
            "errors": self.errors,
            "aborted": self.aborted,
            "error": self.error,
        }


@dataclass(frozen=True)
class NormalizedGame:
    """A feed game with canonical tickers and its known completion time."""
    game: Game
    home: str
    away: str
    completed_at: Optional[datetime] = None

    @property
    def id(self) -> str:
        return self.game.id

    @property
    def start_at(self) -> datetime:
        return self.game.date

    @property
    def is_live(self) -> bool:
        return self.game.state == GameState.LIVE

    @property
    def completed(self) -> bool:
        return self.game.completed

    def opponent(self, ticker: str) -> str:
        return self.away if ticker == self.home else self.home

    def finished_within(self, now: datetime, window: timedelta) -> bool:
        return self.completed and self.completed_at is not None and now - self.completed_at < window


@dataclass(frozen=True)
class ScheduleClaim:
    ticker: str
    opponent: str
    game_at: datetime
    game_id: str
    locked: bool = False
    live: bool = False


# ==========================
# SCHEDULE PLANNING
# ==========================
def claim_step(claims: Dict[str, ScheduleClaim], game: NormalizedGame,
               now: datetime, window: timedelta) -> Dict[str, ScheduleClaim]:
    """
    Fold one game into the claims made so far this run.

    A live or just-finished game takes its teams over any earlier claim
    (a live claim is never replaced by a finished one). A future game only
    takes teams that nothing has claimed yet.
    """
    claims = dict(claims)
    holds = game.is_live or game.finished_within(now, window)
    upcoming = not game.completed and not game.is_live and game.start_at > now
    for ticker in (game.home, game.away):
        current = claims.get(ticker)
        claim = ScheduleClaim(ticker, game.opponent(ticker), game.start_at, game.id,
                              locked=holds, live=game.is_live)
        if holds:
            if current is not None and current.live and not game.is_live:
                continue
            claims[ticker] = claim
        elif upcoming and current is None:
            claims[ticker] = claim
    return claims


def plan_schedule(games: List[NormalizedGame], now: datetime, window: timedelta) -> Dict[str, ScheduleClaim]:
    """Which game each team's next_opponent / next_game_at should point at."""
    return reduce(lambda acc, g: claim_step(acc, g, now, window), games, {})


def feed_window(now: datetime, league: LeagueConfig, days_ahead: int):
    """Yesterday through `days_ahead` days out, in the league's local calendar."""
    today = now.replace(tzinfo=timezone.utc).astimezone(ZoneInfo(league.timezone)).date()
    return today - timedelta(days=1), today + timedelta(days=days_ahead)


# ==========================
# SETTLEMENT JOB
# ==========================
class SettlementSync:

    def __init__(self, config: MarketConfig, ledger: LedgerStore, feed, normalizer: TickerNormalizer):
        self.config = config
        self.ledger = ledger
        self.feed = feed
        self.normalizer = normalizer
        self._locks = {code: threading.Lock() for code in config.leagues}

    def run(self, league: str, now: Optional[datetime] = None) -> SyncReport:
        league = league.upper()
        report = SyncReport(league=league)
        lock = self._locks.get(league)
        if lock is None:
            report.aborted = True
            report.error = f"Unknown league {league}"
            print(f"[Settlement] {report.error}")
            return report
        if not lock.acquire(blocking=False):
            report.aborted = True
            report.error = "A sync for this league is already running"
            print(f"[Settlement] {league}: previous run still in progress, skipped")
            return report
        try:
            self._run(league, now or utcnow(), report)
        except FeedError as e:
            report.aborted = True
            report.error = str(e)
            print(f"[Settlement] {league} run aborted: {e}")
        except Exception as e:
            report.aborted = True
            report.error = str(e)
            print(f"[Settlement] {league} run failed: {e}")
            traceback.print_exc()
        finally:
            lock.release()
        print(f"[Settlement] {league}: {report.teams_updated} teams updated, "
              f"{report.games_processed} games processed, {report.payouts_issued} payouts issued, "
              f"{report.errors} errors{' (aborted)' if report.aborted else ''}")
        return report

    def _run(self, league: str, now: datetime, report: SyncReport):
        league_config = self.config.league(league)
        updated = set()

        # 1. Standings
        for row in self.feed.fetch_standings(league):
            try:
                ticker = self.normalizer.normalize(league, row.provider_ticker)
                wins, losses, ties = row.record()
                self.ledger.update_team_record(league, ticker, wins, losses, ties)
                updated.add(ticker)
            except Exception as e:
                report.errors += 1
                print(f"[Settlement] {league} standings for {row.provider_ticker} skipped: {e}")
        report.teams_updated = len(updated)

        # 2. Scoreboard
        start, end = feed_window(now, league_config, self.config.schedule_days_ahead)
        games = self.feed.fetch_schedule(league, start, end)

        normalized = []
        for game in games:
            try:
                normalized.append(self._store_game(league, league_config, game, now))
            except Exception as e:
                report.errors += 1
                print(f"[Settlement] {league} game {game.id} skipped: {e}")
                traceback.print_exc()

        # 3. Next opponents
        claims = plan_schedule(normalized, now, league_config.settlement_window)
        for ticker, claim in claims.items():
            try:
                self.ledger.update_team_schedule(league, ticker, claim.opponent, claim.game_at, claim.game_id)
                updated.add(ticker)
            except UnknownTeam as e:
                report.errors += 1
                print(f"[Settlement] {league} schedule for {ticker} skipped: {e}")
            except Exception as e:
                report.errors += 1
                print(f"[Settlement] {league} schedule for {ticker} failed: {e}")
                traceback.print_exc()

        # nothing in the feed window for these teams: drop the stale next game
        for team in self.ledger.list_teams(league):
            if team.ticker in claims or not (team.next_opponent or team.next_game_at or team.next_game_id):
                continue
            try:
                self.ledger.update_team_schedule(league, team.ticker, None, None, None)
                updated.add(team.ticker)
            except Exception as e:
                report.errors += 1
                print(f"[Settlement] {league} clearing schedule for {team.ticker} failed: {e}")
        report.teams_updated = len(updated)

        # 4. Payouts
        for game in normalized:
            if not game.completed:
                continue
            try:
                processed, paid = self._settle_game(league, game)
                if processed:
                    report.games_processed += 1
                if paid:
                    report.payouts_issued += 1
            except Exception as e:
                report.errors += 1
                print(f"[Settlement] {league} payout for game {game.id} failed: {e}")
                traceback.print_exc()

    def _store_game(self, league: str, league_config: LeagueConfig, game: Game, now: datetime) -> NormalizedGame:
        """Normalize tickers and upsert the local game record."""
        home, away = game.home, game.away
        if home is None or away is None:
            home, away = game.competitors
        home_ticker = self.normalizer.normalize(league, home.provider_ticker)
        away_ticker = self.normalizer.normalize(league, away.provider_ticker)

        def _upsert(db):
            record = db.query(GameRecord).filter(GameRecord.game_id == game.id).first()
            if record is None:
                record = GameRecord(game_id=game.id, league=league)
                db.add(record)
            record.home_ticker = home_ticker
            record.away_ticker = away_ticker
            record.home_score = home.score
            record.away_score = away.score
            record.state = game.state
            record.start_at = game.date
            if game.completed:
                if record.completed_at is None:
                    record.completed_at = min(now, game.date + league_config.game_duration_estimate)
            else:
                record.completed_at = None
            return record.completed_at

        completed_at = self.ledger.run_in_transaction(_upsert, f"game {game.id}", retry_integrity=True)
        return NormalizedGame(game=game, home=home_ticker, away=away_ticker, completed_at=completed_at)

    def _settle_game(self, league: str, game: NormalizedGame):
        """Returns (newly processed, payout issued)."""
        if self.ledger.is_game_processed(game.id):
            return False, False

        winner = game.game.winner()
        if winner is None:
            fenced = self.ledger.record_processed_game(game.id, league, None)
            if fenced:
                print(f"[Settlement] {league} game {game.id} ended without a winner, no payout")
            return fenced, False

        ticker = self.normalizer.normalize(league, winner.provider_ticker)
        team = self.ledger.find_team(league, ticker)
        if team is None:
            raise UnknownTeam(f"Winner {winner.provider_ticker} ({ticker}) is not listed in {league}")

        summary = self.ledger.settle_win(team.id, game_id=game.id, league=league)
        if summary is None:
            return False, False
        print(f"[Settlement] PAYOUT {league} {ticker} for game {game.id}: ${summary.distributed:.2f}")
        return True, True


__all__ = [
    'SettlementSync', 'SyncReport', 'NormalizedGame', 'ScheduleClaim',
    'plan_schedule', 'claim_step', 'feed_window',
]
