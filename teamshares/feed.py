"""
feed.py

External sports data feed.
Handles:
- Fetching standings and scoreboards from the ESPN site API
- Parsing loosely shaped feed JSON into a closed set of game variants
  (PreGame / LiveGame / FinalGame)
- Parsing "W-L-T" record summaries

Any object with fetch_standings(league) and
fetch_schedule(league, start_date, end_date) can stand in for the adapter.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import ClassVar, List, Optional, Tuple

import requests

from teamshares.config import MarketConfig
from teamshares.errors import FeedParseError, FeedUnavailable, MalformedRecord
from teamshares.models import GameState


# ==========================
# FEED RECORDS
# ==========================
@dataclass(frozen=True)
class Competitor:
    provider_ticker: str
    home_away: str
    score: int = 0
    is_winner: bool = False
    overall_record: Optional[str] = None


@dataclass(frozen=True)
class Game:
    id: str
    league: str
    date: datetime          # scheduled start, naive UTC
    competitors: Tuple[Competitor, ...]

    state: ClassVar[str] = ""
    completed: ClassVar[bool] = False

    @property
    def home(self) -> Optional[Competitor]:
        return next((c for c in self.competitors if c.home_away == "home"), None)

    @property
    def away(self) -> Optional[Competitor]:
        return next((c for c in self.competitors if c.home_away == "away"), None)

    def opponent_of(self, provider_ticker: str) -> Optional[Competitor]:
        return next((c for c in self.competitors if c.provider_ticker != provider_ticker), None)


@dataclass(frozen=True)
class PreGame(Game):
    state: ClassVar[str] = GameState.PRE.value


@dataclass(frozen=True)
class LiveGame(Game):
    state: ClassVar[str] = GameState.LIVE.value
    period: int = 0
    clock: Optional[str] = None


@dataclass(frozen=True)
class FinalGame(Game):
    state: ClassVar[str] = GameState.FINAL.value
    completed: ClassVar[bool] = True

    def winner(self) -> Optional[Competitor]:
        """The flagged winner, else the strictly higher score, else None (tie)."""
        flagged = [c for c in self.competitors if c.is_winner]
        if len(flagged) == 1:
            return flagged[0]
        if len(self.competitors) != 2:
            return None
        a, b = self.competitors
        if a.score == b.score:
            return None
        return a if a.score > b.score else b


@dataclass(frozen=True)
class StandingRow:
    provider_ticker: str
    wins: Optional[int] = None
    losses: Optional[int] = None
    ties: Optional[int] = None
    record_summary: Optional[str] = None

    def record(self) -> Tuple[int, int, int]:
        """Wins/losses/ties, from explicit stats or the summary string."""
        if self.wins is not None and self.losses is not None:
            return self.wins, self.losses, self.ties or 0
        if self.record_summary is None:
            raise MalformedRecord(f"{self.provider_ticker}: no record in standings")
        return parse_record_summary(self.record_summary)


# ==========================
# PARSING HELPERS
# ==========================
def parse_record_summary(summary: str) -> Tuple[int, int, int]:
    """'10-5-2' -> (10, 5, 2); '10-5' -> (10, 5, 0)."""
    parts = str(summary or "").strip().split("-")
    if len(parts) not in (2, 3):
        raise MalformedRecord(f"Unparseable record {summary!r}")
    try:
        values = [int(p.strip()) for p in parts]
    except ValueError:
        raise MalformedRecord(f"Unparseable record {summary!r}")
    if any(v < 0 for v in values):
        raise MalformedRecord(f"Negative value in record {summary!r}")
    if len(values) == 2:
        values.append(0)
    return values[0], values[1], values[2]


def parse_feed_datetime(value: str) -> datetime:
    """ESPN timestamps ('2025-10-19T17:00Z') -> naive UTC."""
    text = str(value or "").strip()
    if not text:
        raise FeedParseError("Missing game date")
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise FeedParseError(f"Bad game date {value!r}")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _int(value, default: int = 0) -> int:
    try:
        if value is None or value == "":
            return default
        return int(float(value))
    except (TypeError, ValueError):
        return default


def _optional_int(value) -> Optional[int]:
    try:
        if value is None or value == "":
            return None
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _parse_competitor(raw: dict) -> Competitor:
    team = raw.get("team") or {}
    ticker = team.get("abbreviation")
    if not ticker:
        raise FeedParseError("Competitor without team abbreviation")
    overall = None
    for record in raw.get("records") or []:
        if record.get("name") == "overall" or record.get("type") == "total":
            overall = record.get("summary")
            break
    return Competitor(
        provider_ticker=str(ticker).upper(),
        home_away=str(raw.get("homeAway") or ""),
        score=_int(raw.get("score")),
        is_winner=raw.get("winner") is True,
        overall_record=overall,
    )


def parse_event(event: dict, league: str) -> Game:
    """Turn one scoreboard event into its game variant."""
    if not isinstance(event, dict):
        raise FeedParseError("Event is not an object")
    game_id = event.get("id")
    if game_id is None:
        raise FeedParseError("Event without id")

    competitions = event.get("competitions") or []
    if not competitions:
        raise FeedParseError(f"Event {game_id} has no competitions")
    competitors = tuple(_parse_competitor(c) for c in competitions[0].get("competitors") or [])
    if len(competitors) != 2:
        raise FeedParseError(f"Event {game_id} has {len(competitors)} competitors")

    status = (event.get("status") or {})
    status_type = status.get("type") or {}
    state = status_type.get("state")
    completed = status_type.get("completed") is True

    common = dict(
        id=str(game_id),
        league=league.upper(),
        date=parse_feed_datetime(event.get("date") or competitions[0].get("date")),
        competitors=competitors,
    )
    if state == GameState.PRE:
        return PreGame(**common)
    if state == GameState.LIVE:
        return LiveGame(period=_int(status.get("period")), clock=status.get("displayClock"), **common)
    if state == GameState.FINAL:
        if completed:
            return FinalGame(**common)
        # postponed / cancelled: over without a result
        return PreGame(**common)
    raise FeedParseError(f"Event {game_id} has unknown state {state!r}")


def parse_scoreboard(payload, league: str) -> List[Game]:
    if not isinstance(payload, dict) or not isinstance(payload.get("events", []), list):
        raise FeedParseError("Scoreboard payload has no events list")
    games = []
    for event in payload.get("events", []):
        try:
            games.append(parse_event(event, league))
        except FeedParseError as e:
            print(f"[Feed] Skipping {league} event: {e}")
    return games


def _stat_map(stats) -> dict:
    out = {}
    for stat in stats or []:
        if not isinstance(stat, dict):
            continue
        key = stat.get("name") or stat.get("type")
        if key:
            out[key] = stat
    return out


def _standing_entries(node):
    """Walk conference/division children down to the standings entries."""
    if not isinstance(node, dict):
        return
    standings = node.get("standings")
    if isinstance(standings, dict):
        for entry in standings.get("entries") or []:
            yield entry
    for child in node.get("children") or []:
        yield from _standing_entries(child)


def parse_standings(payload) -> List[StandingRow]:
    if not isinstance(payload, dict):
        raise FeedParseError("Standings payload is not an object")
    if "children" not in payload and "standings" not in payload:
        raise FeedParseError("Standings payload has no children")

    rows = []
    for entry in _standing_entries(payload):
        ticker = ((entry or {}).get("team") or {}).get("abbreviation")
        if not ticker:
            print("[Feed] Standings entry without team abbreviation, skipped")
            continue
        stats = _stat_map(entry.get("stats"))

        def value(*names):
            for name in names:
                if name in stats:
                    return _optional_int(stats[name].get("value"))
            return None

        summary = None
        for name in ("overall", "total"):
            if name in stats:
                summary = stats[name].get("summary") or stats[name].get("displayValue")
                break

        rows.append(StandingRow(
            provider_ticker=str(ticker).upper(),
            wins=value("wins"),
            losses=value("losses"),
            ties=value("ties", "otLosses", "overtimeLosses"),
            record_summary=summary,
        ))
    return rows


# ==========================
# ESPN ADAPTER
# ==========================
class EspnFeedAdapter:
    """Reads standings and scoreboards from the public ESPN site API."""

    def __init__(self, config: MarketConfig, http=None):
        self.config = config
        self.http = http or requests.Session()

    def _sport(self, league: str) -> str:
        return self.config.league(league).sport_path

    def _get_json(self, url: str, params: Optional[dict] = None) -> dict:
        headers = {"User-Agent": "teamshares-settlement/1.0"}
        if self.config.feed_api_key:
            headers["Authorization"] = f"Bearer {self.config.feed_api_key}"
        try:
            r = self.http.get(url, params=params or {}, headers=headers,
                              timeout=self.config.feed_timeout_seconds)
            r.raise_for_status()
        except requests.RequestException as e:
            raise FeedUnavailable(f"{url}: {e}")
        try:
            payload = r.json()
        except ValueError as e:
            raise FeedParseError(f"{url}: response is not JSON ({e})")
        if not isinstance(payload, dict):
            raise FeedParseError(f"{url}: unexpected payload type {type(payload).__name__}")
        return payload

    def fetch_standings(self, league: str) -> List[StandingRow]:
        base = self.config.feed_base_url.rstrip("/")
        payload = self._get_json(f"{base}/v2/sports/{self._sport(league)}/standings")
        return parse_standings(payload)

    def fetch_schedule(self, league: str, start_date: date, end_date: date) -> List[Game]:
        base = self.config.feed_base_url.rstrip("/")
        params = {
            "dates": f"{start_date:%Y%m%d}-{end_date:%Y%m%d}",
            "limit": 1000,
        }
        payload = self._get_json(f"{base}/site/v2/sports/{self._sport(league)}/scoreboard", params)
        return parse_scoreboard(payload, league)


__all__ = [
    'Competitor', 'Game', 'PreGame', 'LiveGame', 'FinalGame', 'StandingRow',
    'EspnFeedAdapter', 'parse_event', 'parse_scoreboard', 'parse_standings',
    'parse_record_summary', 'parse_feed_datetime',
]
