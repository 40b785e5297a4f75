"""
Test helpers: a scripted feed and builders for games and stored game records.
"""

from datetime import datetime

from teamshares.feed import Competitor, FinalGame, LiveGame, PreGame
from teamshares.models import GameRecord, GameState

# 18:00 in New York, a Sunday afternoon slate already under way
NOW = datetime(2025, 10, 19, 22, 0)


class FakeFeed:
    """Stands in for EspnFeedAdapter; returns whatever the test scripted."""

    def __init__(self):
        self.standings = []
        self.games = []
        self.fail_standings = None
        self.fail_schedule = None
        self.schedule_calls = []

    def fetch_standings(self, league):
        if self.fail_standings is not None:
            raise self.fail_standings
        return list(self.standings)

    def fetch_schedule(self, league, start_date, end_date):
        self.schedule_calls.append((league, start_date, end_date))
        if self.fail_schedule is not None:
            raise self.fail_schedule
        return list(self.games)


def make_game(kind, game_id, home, away, start, home_score=0, away_score=0, winner=None, league="NFL"):
    competitors = (
        Competitor(provider_ticker=home, home_away="home", score=home_score, is_winner=winner == home),
        Competitor(provider_ticker=away, home_away="away", score=away_score, is_winner=winner == away),
    )
    cls = {"pre": PreGame, "live": LiveGame, "final": FinalGame}[kind]
    return cls(id=game_id, league=league, date=start, competitors=competitors)


def store_game(services, game_id, home, away, state, start, completed_at=None, league="NFL"):
    db = services.session_factory()
    try:
        db.add(GameRecord(
            game_id=game_id, league=league, home_ticker=home, away_ticker=away,
            state=GameState(state).value, start_at=start, completed_at=completed_at,
        ))
        db.commit()
    finally:
        db.close()
