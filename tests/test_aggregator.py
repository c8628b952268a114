"""
Tests for the world-record leaderboard aggregator and its read helpers.
"""

import threading
import time

import pytest

from tmevents.leaderboard.aggregator import (
    LeaderboardAggregator,
    SnapshotCache,
    WRRow,
    WRSnapshot,
    player_tally,
    query_rows,
    tag_source,
)
from tmevents.upstream.http import UpstreamError
from tmevents.upstream.names import NameCache, NameResolver
from conftest import FakeClock


class FakeMaps:
    def __init__(self, official, totd, records, failing=(), official_error=None, totd_error=None):
        self.official = official
        self.totd = totd
        self.records = records
        self.failing = set(failing)
        self.official_error = official_error
        self.totd_error = totd_error
        self.requested = []
        self._lock = threading.Lock()

    def official_campaign(self):
        if self.official_error:
            raise self.official_error
        return {"id": 1, "name": "Summer 2024", "mapUids": list(self.official)}

    def totd_month_map_uids(self):
        if self.totd_error:
            raise self.totd_error
        return list(self.totd)

    def top_record(self, uid):
        with self._lock:
            self.requested.append(uid)
        if uid in self.failing:
            raise UpstreamError(f"leaderboard {uid} failed: 500")
        return self.records.get(uid)


class NamesStrategy:
    name = "fake"

    def resolve(self, account_ids):
        return {i: f"Name-{i}" for i in account_ids if not i.startswith("anon")}


def record(uid, account, ts, time_ms=50000):
    return {"mapUid": uid, "accountId": account, "timeMs": time_ms, "timestamp": ts}


def make_aggregator(maps):
    return LeaderboardAggregator(maps, NameResolver(NameCache(), [NamesStrategy()]),
                                 clock=lambda: 1_720_000_000_000)


def snapshot_of(rows):
    counts = {}
    for row in rows:
        counts[row.source] = counts.get(row.source, 0) + 1
    return WRSnapshot(captured_at=123, rows=rows, counts=counts)


def row(uid, account, ts, source, name=None):
    return WRRow(uid, account, 1000, ts, name or account, source)


class TestTagSource:
    """Tests for tag_source."""

    def test_official_wins_ties(self):
        assert tag_source("m", {"m"}, {"m"}) == "official"

    def test_totd(self):
        assert tag_source("m", set(), {"m"}) == "totd"

    def test_unknown(self):
        assert tag_source("m", set(), set()) == "unknown"


class TestBuildSnapshot:
    """Tests for LeaderboardAggregator.build_snapshot."""

    def test_rows_tagged_named_and_sorted(self):
        maps = FakeMaps(
            official=["o1", "shared"],
            totd=["t1", "shared"],
            records={
                "o1": record("o1", "p1", 100),
                "t1": record("t1", "p2", 300),
                "shared": record("shared", "anon-3", 200),
            },
        )
        snapshot = make_aggregator(maps).build_snapshot()

        assert [r.map_uid for r in snapshot.rows] == ["t1", "shared", "o1"]
        by_uid = {r.map_uid: r for r in snapshot.rows}
        assert by_uid["shared"].source == "official"
        assert by_uid["t1"].source == "totd"
        assert by_uid["t1"].display_name == "Name-p2"
        assert by_uid["shared"].display_name == "anon-3"  # falls back to the id
        assert snapshot.counts == {"official": 2, "totd": 1}
        assert snapshot.captured_at == 1_720_000_000_000

    def test_failed_and_empty_maps_excluded(self):
        maps = FakeMaps(
            official=["ok", "broken", "empty"],
            totd=[],
            records={"ok": record("ok", "p1", 1)},
            failing=["broken"],
        )
        snapshot = make_aggregator(maps).build_snapshot()
        assert [r.map_uid for r in snapshot.rows] == ["ok"]
        assert sorted(maps.requested) == ["broken", "empty", "ok"]

    def test_malformed_map_excluded(self):
        maps = FakeMaps(official=["ok", "odd"], totd=[], records={"ok": record("ok", "p1", 1)})
        original = maps.top_record

        def top_record(uid):
            if uid == "odd":
                raise KeyError("tops")
            return original(uid)

        maps.top_record = top_record
        snapshot = make_aggregator(maps).build_snapshot()
        assert [r.map_uid for r in snapshot.rows] == ["ok"]

    def test_one_listing_failing_is_tolerated(self):
        maps = FakeMaps(official=[], totd=["t1"], records={"t1": record("t1", "p1", 1)},
                        official_error=UpstreamError("campaign fetch failed: 500"))
        snapshot = make_aggregator(maps).build_snapshot()
        assert [r.source for r in snapshot.rows] == ["totd"]
        assert snapshot.campaign is None

    def test_campaign_summary_kept(self):
        maps = FakeMaps(official=["o1"], totd=[], records={"o1": record("o1", "p1", 1)})
        snapshot = make_aggregator(maps).build_snapshot()
        assert snapshot.campaign == {"id": 1, "name": "Summer 2024", "start": None, "end": None}
        assert query_rows(snapshot)["campaign"] == snapshot.campaign
        assert player_tally(snapshot)["campaign"] == snapshot.campaign

    def test_both_listings_failing_raises(self):
        maps = FakeMaps(official=[], totd=[], records={},
                        official_error=UpstreamError("x"), totd_error=UpstreamError("y"))
        with pytest.raises(UpstreamError):
            make_aggregator(maps).build_snapshot()

    def test_to_dict_is_camel_case(self):
        assert row("m", "a", 5, "totd", "Alpha").to_dict() == {
            "mapUid": "m", "accountId": "a", "timeMs": 1000,
            "timestamp": 5, "displayName": "Alpha", "source": "totd",
        }


class TestSnapshotCache:
    """Tests for SnapshotCache."""

    class CountingAggregator:
        def __init__(self, delay=0.0):
            self.builds = 0
            self.delay = delay

        def build_snapshot(self):
            if self.delay:
                time.sleep(self.delay)
            self.builds += 1
            return WRSnapshot(captured_at=self.builds)

    def test_reuses_within_ttl(self):
        clock = FakeClock(0)
        aggregator = self.CountingAggregator()
        cache = SnapshotCache(aggregator, ttl_s=60, clock=clock)

        first = cache.get()
        clock.advance(59)
        assert cache.get() is first
        assert aggregator.builds == 1

    def test_rebuilds_after_ttl(self):
        clock = FakeClock(0)
        aggregator = self.CountingAggregator()
        cache = SnapshotCache(aggregator, ttl_s=60, clock=clock)

        cache.get()
        clock.advance(60)
        assert cache.get().captured_at == 2

    def test_peek_never_builds(self):
        aggregator = self.CountingAggregator()
        cache = SnapshotCache(aggregator, ttl_s=60)
        assert cache.peek() is None
        assert aggregator.builds == 0

    def test_concurrent_gets_build_once(self):
        aggregator = self.CountingAggregator(delay=0.05)
        cache = SnapshotCache(aggregator, ttl_s=60)
        start = threading.Barrier(6)

        def worker():
            start.wait()
            cache.get()

        threads = [threading.Thread(target=worker) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert aggregator.builds == 1

    def test_failed_build_propagates_and_keeps_old(self):
        clock = FakeClock(0)

        class Flaky:
            calls = 0

            def build_snapshot(self):
                Flaky.calls += 1
                if Flaky.calls > 1:
                    raise UpstreamError("both map listings failed")
                return WRSnapshot(captured_at=1)

        cache = SnapshotCache(Flaky(), ttl_s=10, clock=clock)
        old = cache.get()
        clock.advance(11)
        with pytest.raises(UpstreamError):
            cache.get()
        assert cache.peek() is old


class TestQueryRows:
    """Tests for query_rows."""

    @pytest.fixture
    def snapshot(self):
        rows = [row(f"t{i}", f"p{i}", 100 - i, "totd") for i in range(3)]
        rows += [row(f"o{i}", f"q{i}", 50 - i, "official") for i in range(5)]
        return snapshot_of(rows)

    def test_source_and_limit(self, snapshot):
        result = query_rows(snapshot, limit=2, source="totd")
        assert len(result["rows"]) == 2
        assert all(r["source"] == "totd" for r in result["rows"])
        assert result["total"] == 3
        assert result["counts"] == {"totd": 3, "official": 5}
        assert result["fetchedAt"] == 123

    def test_no_filters(self, snapshot):
        result = query_rows(snapshot)
        assert result["total"] == 8
        assert [r["mapUid"] for r in result["rows"]][:2] == ["t0", "t1"]

    def test_text_search_case_insensitive(self, snapshot):
        result = query_rows(snapshot, q="Q3")
        assert [r["accountId"] for r in result["rows"]] == ["q3"]

    def test_search_matches_map_uid(self, snapshot):
        assert query_rows(snapshot, q="o4")["total"] == 1

    def test_rows_are_plain_python(self, snapshot):
        first = query_rows(snapshot, limit=1)["rows"][0]
        assert type(first["timestamp"]) is int
        assert type(first["timeMs"]) is int

    def test_empty_snapshot(self):
        result = query_rows(WRSnapshot(captured_at=1), limit=5, source="totd", q="x")
        assert result == {"rows": [], "total": 0, "fetchedAt": 1, "counts": {}, "campaign": None}


class TestPlayerTally:
    """Tests for player_tally."""

    def test_counts_and_order(self):
        snapshot = snapshot_of([
            row("m1", "a", 10, "totd", "Alpha"),
            row("m2", "a", 30, "official", "Alpha"),
            row("m3", "b", 40, "totd", "Bravo"),
            row("m4", "c", 5, "totd", "Charlie"),
        ])
        players = player_tally(snapshot)["players"]

        assert [p["accountId"] for p in players] == ["a", "b", "c"]
        assert players[0] == {"accountId": "a", "displayName": "Alpha", "wrCount": 2, "latestTs": 30}

    def test_filter(self):
        snapshot = snapshot_of([row("m1", "a", 10, "totd", "Alpha"), row("m2", "b", 20, "totd", "Bravo")])
        assert [p["displayName"] for p in player_tally(snapshot, q="brav")["players"]] == ["Bravo"]

    def test_empty(self):
        assert player_tally(WRSnapshot(captured_at=7)) == {"players": [], "fetchedAt": 7, "campaign": None}
