from datetime import date, datetime

import pytest
import requests

from teamshares.config import MarketConfig
from teamshares.errors import FeedParseError, FeedUnavailable, MalformedRecord
from teamshares.feed import (
    EspnFeedAdapter, FinalGame, LiveGame, PreGame, StandingRow,
    parse_event, parse_feed_datetime, parse_record_summary, parse_scoreboard, parse_standings,
)


def espn_event(event_id="401547417", state="post", completed=True, home=("KC", "27", True),
               away=("BUF", "20", False), date_str="2025-10-19T20:25Z"):
    def competitor(side, values):
        ticker, score, winner = values
        return {
            "homeAway": side,
            "score": score,
            "winner": winner,
            "team": {"abbreviation": ticker},
            "records": [{"name": "overall", "summary": "5-1"}],
        }

    return {
        "id": event_id,
        "date": date_str,
        "status": {"period": 3, "displayClock": "4:12", "type": {"state": state, "completed": completed}},
        "competitions": [{"competitors": [competitor("home", home), competitor("away", away)]}],
    }


# ==========================
# RECORD SUMMARIES
# ==========================
@pytest.mark.parametrize("summary,expected", [
    ("10-5-2", (10, 5, 2)),
    ("10-5", (10, 5, 0)),
    (" 0-0 ", (0, 0, 0)),
])
def test_parse_record_summary(summary, expected):
    assert parse_record_summary(summary) == expected


@pytest.mark.parametrize("summary", ["", "10", "a-b", "1-2-3-4", "5--1", None])
def test_malformed_record_summary(summary):
    with pytest.raises(MalformedRecord):
        parse_record_summary(summary)


def test_standing_row_prefers_explicit_stats():
    assert StandingRow("KC", wins=3, losses=1, record_summary="9-9").record() == (3, 1, 0)
    assert StandingRow("KC", record_summary="9-8-1").record() == (9, 8, 1)
    with pytest.raises(MalformedRecord):
        StandingRow("KC").record()


# ==========================
# EVENTS
# ==========================
def test_parse_feed_datetime_to_naive_utc():
    assert parse_feed_datetime("2025-10-19T20:25Z") == datetime(2025, 10, 19, 20, 25)
    assert parse_feed_datetime("2025-10-19T16:25-04:00") == datetime(2025, 10, 19, 20, 25)
    with pytest.raises(FeedParseError):
        parse_feed_datetime("yesterday")


def test_final_event():
    game = parse_event(espn_event(), "nfl")
    assert isinstance(game, FinalGame)
    assert game.completed
    assert game.league == "NFL"
    assert game.home.provider_ticker == "KC"
    assert game.winner().provider_ticker == "KC"
    assert game.home.overall_record == "5-1"


def test_live_event_carries_clock():
    game = parse_event(espn_event(state="in", completed=False), "NFL")
    assert isinstance(game, LiveGame)
    assert not game.completed
    assert (game.period, game.clock) == (3, "4:12")


def test_postponed_event_is_not_final():
    game = parse_event(espn_event(state="post", completed=False), "NFL")
    assert isinstance(game, PreGame)


def test_winner_falls_back_to_score():
    game = parse_event(espn_event(home=("KC", "10", False), away=("BUF", "13", False)), "NFL")
    assert game.winner().provider_ticker == "BUF"


def test_tie_has_no_winner():
    game = parse_event(espn_event(home=("KC", "20", False), away=("BUF", "20", False)), "NFL")
    assert game.winner() is None


def test_unknown_state_rejected():
    with pytest.raises(FeedParseError):
        parse_event(espn_event(state="delayed"), "NFL")


def test_scoreboard_skips_broken_events():
    broken = espn_event(event_id="2")
    broken["competitions"] = []
    games = parse_scoreboard({"events": [espn_event(event_id="1"), broken]}, "NFL")
    assert [g.id for g in games] == ["1"]


def test_scoreboard_without_events_list():
    with pytest.raises(FeedParseError):
        parse_scoreboard({"events": "nope"}, "NFL")


# ==========================
# STANDINGS
# ==========================
def test_parse_nested_standings():
    payload = {
        "children": [
            {"name": "AFC", "standings": {"entries": [
                {"team": {"abbreviation": "KC"}, "stats": [
                    {"name": "wins", "value": 6.0},
                    {"name": "losses", "value": 1.0},
                    {"name": "ties", "value": 0.0},
                ]},
            ]}},
            {"name": "NFC", "children": [
                {"standings": {"entries": [
                    {"team": {"abbreviation": "LA"}, "stats": [
                        {"name": "overall", "summary": "4-3"},
                    ]},
                    {"team": {}, "stats": []},
                ]}},
            ]},
        ]
    }
    standings = parse_standings(payload)
    assert [r.provider_ticker for r in standings] == ["KC", "LA"]
    assert standings[0].record() == (6, 1, 0)
    assert standings[1].record() == (4, 3, 0)


def test_standings_payload_without_children():
    with pytest.raises(FeedParseError):
        parse_standings({"teams": []})


# ==========================
# HTTP ADAPTER
# ==========================
class FakeResponse:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status_code = status

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": params, "headers": headers, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.response


def test_fetch_schedule_builds_scoreboard_request():
    session = FakeSession(FakeResponse({"events": [espn_event()]}))
    adapter = EspnFeedAdapter(MarketConfig(feed_timeout_seconds=3.0), http=session)

    games = adapter.fetch_schedule("NFL", date(2025, 10, 18), date(2025, 10, 26))

    assert len(games) == 1
    call = session.calls[0]
    assert call["url"] == "https://site.api.espn.com/apis/site/v2/sports/football/nfl/scoreboard"
    assert call["params"]["dates"] == "20251018-20251026"
    assert call["timeout"] == 3.0


def test_fetch_standings_uses_league_path():
    session = FakeSession(FakeResponse({"children": []}))
    adapter = EspnFeedAdapter(MarketConfig(), http=session)
    assert adapter.fetch_standings("NHL") == []
    assert session.calls[0]["url"].endswith("/v2/sports/hockey/nhl/standings")


def test_api_key_sent_as_bearer():
    session = FakeSession(FakeResponse({"children": []}))
    EspnFeedAdapter(MarketConfig(feed_api_key="secret"), http=session).fetch_standings("NFL")
    assert session.calls[0]["headers"]["Authorization"] == "Bearer secret"


def test_connection_error_is_feed_unavailable():
    adapter = EspnFeedAdapter(MarketConfig(), http=FakeSession(error=requests.ConnectionError("refused")))
    with pytest.raises(FeedUnavailable):
        adapter.fetch_standings("NFL")


def test_http_error_is_feed_unavailable():
    adapter = EspnFeedAdapter(MarketConfig(), http=FakeSession(FakeResponse({}, status=503)))
    with pytest.raises(FeedUnavailable):
        adapter.fetch_schedule("NFL", date(2025, 10, 18), date(2025, 10, 19))


def test_non_json_is_parse_error():
    adapter = EspnFeedAdapter(MarketConfig(), http=FakeSession(FakeResponse(ValueError("not json"))))
    with pytest.raises(FeedParseError):
        adapter.fetch_standings("NFL")
