import threading
from datetime import date, timedelta

import pytest

from teamshares.errors import FeedUnavailable
from teamshares.feed import StandingRow
from teamshares.market_gate import REASON_PAYOUT_PENDING
from teamshares.models import DividendPayout, GameRecord, ProcessedGame
from teamshares.settlement import NormalizedGame, SettlementSync, plan_schedule

from tests.helpers import NOW, make_game


def rows(services, model):
    db = services.session_factory()
    try:
        return db.query(model).all()
    finally:
        db.close()


@pytest.fixture
def sync(services):
    return services.sync


@pytest.fixture
def nfl(chiefs, bills, rams):
    return {"KC": chiefs, "BUF": bills, "LAR": rams}


# ==========================
# STANDINGS
# ==========================
def test_standings_overwrite_records(sync, ledger, feed, nfl):
    feed.standings = [
        StandingRow("KC", wins=5, losses=1, ties=0),
        StandingRow("LA", record_summary="3-3-1"),
    ]
    report = sync.run("NFL", NOW)

    assert report.teams_updated == 2
    kc = ledger.get_team(nfl["KC"].id)
    lar = ledger.get_team(nfl["LAR"].id)
    assert (kc.wins, kc.losses, kc.ties) == (5, 1, 0)
    assert (lar.wins, lar.losses, lar.ties) == (3, 3, 1)


def test_malformed_record_skips_only_that_team(sync, ledger, feed, nfl):
    feed.standings = [
        StandingRow("BUF", record_summary="ten-five"),
        StandingRow("KC", record_summary="7-2"),
    ]
    report = sync.run("NFL", NOW)

    assert report.errors == 1
    assert not report.aborted
    assert ledger.get_team(nfl["KC"].id).wins == 7
    assert ledger.get_team(nfl["BUF"].id).wins == 0


def test_unlisted_team_in_standings_is_skipped(sync, feed, nfl):
    feed.standings = [StandingRow("NYJ", wins=1, losses=1), StandingRow("KC", wins=2, losses=0)]
    report = sync.run("NFL", NOW)
    assert report.errors == 1
    assert report.teams_updated == 1


# ==========================
# PAYOUTS
# ==========================
def test_sync_twice_pays_once(services, sync, ledger, feed, nfl, alice):
    ledger.execute_trade(alice.id, nfl["KC"].id, "BUY", 2)
    ledger.fund_dividend_bank(nfl["KC"].id, 50)
    before = ledger.get_user(alice.id).usd_balance
    feed.games = [make_game("final", "401", "KC", "BUF", NOW - timedelta(hours=5), 27, 20, winner="KC")]

    first = sync.run("NFL", NOW)
    second = sync.run("NFL", NOW + timedelta(minutes=5))

    assert (first.games_processed, first.payouts_issued) == (1, 1)
    assert (second.games_processed, second.payouts_issued) == (0, 0)
    assert ledger.get_user(alice.id).usd_balance == pytest.approx(before + 50)
    assert len(rows(services, ProcessedGame)) == 1
    assert len(rows(services, DividendPayout)) == 1


def test_concurrent_syncs_pay_once(services, ledger, feed, nfl, alice):
    services.config.trade_retry_attempts = 25
    ledger.execute_trade(alice.id, nfl["KC"].id, "BUY", 2)
    ledger.fund_dividend_bank(nfl["KC"].id, 50)
    before = ledger.get_user(alice.id).usd_balance
    feed.games = [make_game("final", "401", "KC", "BUF", NOW - timedelta(hours=5), 27, 20, winner="KC")]

    syncs = [SettlementSync(services.config, ledger, feed, services.normalizer) for _ in range(4)]
    reports = []
    start = threading.Barrier(len(syncs))

    def worker(s):
        start.wait()
        reports.append(s.run("NFL", NOW))

    threads = [threading.Thread(target=worker, args=(s,)) for s in syncs]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    # a run that lost every lock retry leaves the game for the next one
    reports.append(syncs[0].run("NFL", NOW))

    assert len(reports) == 5
    assert sum(r.payouts_issued for r in reports) == 1
    assert ledger.is_game_processed("401")
    assert len(rows(services, ProcessedGame)) == 1
    assert len(rows(services, DividendPayout)) == 1
    assert ledger.get_user(alice.id).usd_balance == pytest.approx(before + 50)
    assert ledger.get_team(nfl["KC"].id).dividend_bank == pytest.approx(0.0)


def test_overlapping_run_for_same_league_is_skipped(sync, feed, nfl):
    feed.games = [make_game("final", "402", "KC", "BUF", NOW - timedelta(hours=5), 27, 20, winner="KC")]
    lock = sync._locks["NFL"]
    lock.acquire()
    try:
        report = sync.run("NFL", NOW)
    finally:
        lock.release()

    assert report.aborted
    assert report.error == "A sync for this league is already running"
    assert report.payouts_issued == 0
    assert feed.schedule_calls == []


def test_winner_by_score_and_normalized_ticker(sync, ledger, feed, nfl, alice):
    ledger.execute_trade(alice.id, nfl["LAR"].id, "BUY", 1)
    ledger.fund_dividend_bank(nfl["LAR"].id, 10)
    # no winner flag, LA outscored KC
    feed.games = [make_game("final", "402", "KC", "LA", NOW - timedelta(hours=30), 17, 24)]

    report = sync.run("NFL", NOW)

    assert report.payouts_issued == 1
    assert ledger.get_team(nfl["LAR"].id).dividend_bank == pytest.approx(0.0)


def test_tie_is_fenced_without_payout(services, sync, ledger, feed, nfl):
    ledger.fund_dividend_bank(nfl["KC"].id, 10)
    feed.games = [make_game("final", "403", "KC", "BUF", NOW - timedelta(hours=30), 20, 20)]

    report = sync.run("NFL", NOW)

    assert report.games_processed == 1
    assert report.payouts_issued == 0
    assert ledger.is_game_processed("403")
    assert ledger.get_team(nfl["KC"].id).dividend_bank == pytest.approx(10.0)


def test_bad_game_does_not_stop_the_others(sync, ledger, feed, nfl):
    feed.games = [
        make_game("final", "404", "XYZ", "LA", NOW - timedelta(hours=30), 30, 3, winner="XYZ"),
        make_game("final", "405", "KC", "BUF", NOW - timedelta(hours=5), 27, 20, winner="KC"),
    ]
    report = sync.run("NFL", NOW)

    assert report.errors == 1
    assert report.payouts_issued == 1
    # the unlisted winner is retried next run rather than fenced
    assert not ledger.is_game_processed("404")
    assert ledger.is_game_processed("405")


def test_unfinished_games_are_not_settled(sync, ledger, feed, nfl):
    feed.games = [
        make_game("live", "406", "KC", "BUF", NOW - timedelta(hours=1), 7, 3),
        make_game("pre", "407", "LA", "KC", NOW + timedelta(days=3)),
    ]
    report = sync.run("NFL", NOW)
    assert report.games_processed == 0
    assert not ledger.is_game_processed("406")


# ==========================
# SCHEDULE
# ==========================
def test_live_game_beats_later_future_game(sync, ledger, feed, nfl):
    feed.games = [
        make_game("live", "501", "KC", "BUF", NOW - timedelta(hours=1), 7, 3),
        make_game("pre", "502", "LA", "KC", NOW + timedelta(days=3)),
    ]
    sync.run("NFL", NOW)

    kc = ledger.get_team(nfl["KC"].id)
    lar = ledger.get_team(nfl["LAR"].id)
    assert (kc.next_game_id, kc.next_opponent) == ("501", "BUF")
    assert (lar.next_game_id, lar.next_opponent) == ("502", "KC")


def test_live_game_wins_even_when_listed_after_future_game(sync, ledger, feed, nfl):
    feed.games = [
        make_game("pre", "502", "LA", "KC", NOW + timedelta(days=3)),
        make_game("live", "501", "KC", "BUF", NOW - timedelta(hours=1), 7, 3),
    ]
    sync.run("NFL", NOW)
    assert ledger.get_team(nfl["KC"].id).next_game_id == "501"


def test_just_finished_game_holds_schedule_and_locks_market(sync, ledger, feed, nfl):
    feed.games = [
        make_game("final", "601", "KC", "BUF", NOW - timedelta(hours=5), 27, 20, winner="KC"),
        make_game("pre", "602", "KC", "LA", NOW + timedelta(days=7)),
    ]
    sync.run("NFL", NOW)

    kc = ledger.get_team(nfl["KC"].id)
    assert kc.next_game_id == "601"
    assert ledger.market_state(kc.id, NOW).reason == REASON_PAYOUT_PENDING


def test_first_future_game_in_feed_order_wins(sync, ledger, feed, nfl):
    feed.games = [
        make_game("pre", "701", "KC", "BUF", NOW + timedelta(days=2)),
        make_game("pre", "702", "LA", "KC", NOW + timedelta(days=1)),
    ]
    sync.run("NFL", NOW)
    assert ledger.get_team(nfl["KC"].id).next_game_id == "701"
    assert ledger.get_team(nfl["LAR"].id).next_game_id == "702"


def test_plan_schedule_never_lets_finished_replace_live():
    live = NormalizedGame(make_game("live", "a", "KC", "BUF", NOW - timedelta(hours=1)), "KC", "BUF")
    final = NormalizedGame(make_game("final", "b", "KC", "LAR", NOW - timedelta(hours=4), 10, 3, winner="KC"),
                           "KC", "LAR", completed_at=NOW - timedelta(minutes=30))
    claims = plan_schedule([live, final], NOW, timedelta(hours=6))
    assert claims["KC"].game_id == "a"
    assert claims["LAR"].game_id == "b"


def test_team_without_games_in_window_loses_stale_schedule(sync, ledger, feed, nfl):
    ledger.update_team_schedule("NFL", "KC", "BUF", NOW - timedelta(days=3), "old")
    ledger.update_team_schedule("NFL", "LAR", "SEA", NOW - timedelta(days=3), "old2")
    feed.games = [make_game("pre", "901", "LA", "BUF", NOW + timedelta(days=2))]

    report = sync.run("NFL", NOW)

    kc = ledger.get_team(nfl["KC"].id)
    assert (kc.next_opponent, kc.next_game_at, kc.next_game_id) == (None, None, None)
    lar = ledger.get_team(nfl["LAR"].id)
    assert (lar.next_game_id, lar.next_opponent) == ("901", "BUF")
    assert report.teams_updated == 3


# ==========================
# GAME RECORDS AND FAILURES
# ==========================
def test_game_records_stored_for_the_gate(services, sync, feed, nfl):
    feed.games = [make_game("final", "801", "KC", "LA", NOW - timedelta(hours=30), 20, 17, winner="KC")]
    sync.run("NFL", NOW)

    (record,) = rows(services, GameRecord)
    assert record.away_ticker == "LAR"
    assert record.completed_at == NOW - timedelta(hours=26)


def test_feed_window_spans_yesterday_to_a_week_out(sync, feed, nfl):
    sync.run("NFL", NOW)
    assert feed.schedule_calls == [("NFL", date(2025, 10, 18), date(2025, 10, 26))]


def test_feed_outage_aborts_run_without_raising(sync, feed, nfl):
    feed.fail_standings = FeedUnavailable("scoreboard down")
    report = sync.run("NFL", NOW)

    assert report.aborted
    assert "scoreboard down" in report.error
    assert feed.schedule_calls == []


def test_outage_after_standings_keeps_committed_records(sync, ledger, feed, nfl):
    feed.standings = [StandingRow("KC", wins=9, losses=0)]
    feed.fail_schedule = FeedUnavailable("timeout")
    report = sync.run("NFL", NOW)

    assert report.aborted
    assert ledger.get_team(nfl["KC"].id).wins == 9


def test_unknown_league_reported(sync):
    report = sync.run("MLB", NOW)
    assert report.aborted
    assert "MLB" in report.error
