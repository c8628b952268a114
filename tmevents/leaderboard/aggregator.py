"""
World-Record Leaderboard Aggregator

Builds an in-memory snapshot of the current world record on every map of
two collections: the official seasonal campaign and the current
track-of-the-day month. Each map is tagged with where it came from
("official" wins when a map is listed in both), records are fetched with
a bounded thread pool, and account ids are resolved to display names
through the resident resolver.

The snapshot is served by SnapshotCache, which rebuilds it at most once
per time-to-live window no matter how many requests arrive together.
Read helpers (query_rows, player_tally) use pandas for filtering and
grouping.

Usage:
    from tmevents.leaderboard.aggregator import LeaderboardAggregator, SnapshotCache
    cache = SnapshotCache(LeaderboardAggregator(maps_client, resolver), ttl_s=60)
    query_rows(cache.get(), limit=50, source="totd")
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Callable, Optional

import pandas as pd
import requests

from tmevents.config import UNKNOWN_SOURCE, WR_FANOUT_WIDTH
from tmevents.upstream.http import ITEM_ERRORS, UpstreamError
from tmevents.upstream.names import display_name_or_id
from tmevents.utils import setup_logging

# --- Module Logger ---
logger = setup_logging(__name__)

ROW_COLUMNS = ["mapUid", "accountId", "timeMs", "timestamp", "displayName", "source"]


def epoch_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class WRRow:
    map_uid: str
    account_id: str
    time_ms: Optional[int]
    timestamp: Optional[int]
    display_name: str
    source: str

    def to_dict(self) -> dict:
        return {
            "mapUid": self.map_uid,
            "accountId": self.account_id,
            "timeMs": self.time_ms,
            "timestamp": self.timestamp,
            "displayName": self.display_name,
            "source": self.source,
        }


@dataclass
class WRSnapshot:
    captured_at: int  # epoch ms
    rows: list = field(default_factory=list)
    counts: dict = field(default_factory=dict)
    campaign: Optional[dict] = None  # {id, name, start, end}; None if the listing failed

    def records(self) -> list:
        return [row.to_dict() for row in self.rows]


def campaign_summary(listing: dict) -> dict:
    """The part of an official campaign listing clients see."""
    return {key: listing.get(key) for key in ("id", "name", "start", "end")}


def tag_source(map_uid: str, official: set, totd: set) -> str:
    """Provenance of a map id; the official campaign wins ties."""
    if map_uid in official:
        return "official"
    if map_uid in totd:
        return "totd"
    return UNKNOWN_SOURCE


class LeaderboardAggregator:
    """
    Build WRSnapshots.

    Args:
        maps: LiveMapsClient (official_campaign, totd_month_map_uids, top_record)
        resolver: NameResolver backed by a resident cache
        width: Maximum concurrent leaderboard requests
        clock: Returns the capture time in epoch ms
    """

    def __init__(self, maps, resolver, width: int = WR_FANOUT_WIDTH,
                 clock: Callable[[], int] = epoch_ms):
        self.maps = maps
        self.resolver = resolver
        self.width = width
        self.clock = clock

    def _listings(self) -> tuple[set, set, Optional[dict]]:
        official, totd, campaign = None, None, None
        try:
            listing = self.maps.official_campaign()
            official = set(listing["mapUids"])
            campaign = campaign_summary(listing)
        except (UpstreamError, requests.RequestException) as e:
            logger.warning(f"official campaign listing failed: {e}")
        try:
            totd = set(self.maps.totd_month_map_uids())
        except (UpstreamError, requests.RequestException) as e:
            logger.warning(f"track-of-the-day listing failed: {e}")

        if official is None and totd is None:
            raise UpstreamError("both map listings failed")
        return official or set(), totd or set(), campaign

    def _top_records(self, map_uids: list) -> list:
        records = []
        with ThreadPoolExecutor(max_workers=self.width) as executor:
            future_to_uid = {executor.submit(self.maps.top_record, uid): uid for uid in map_uids}
            for future in as_completed(future_to_uid):
                uid = future_to_uid[future]
                try:
                    record = future.result()
                except ITEM_ERRORS as e:
                    logger.warning(f"leaderboard for {uid} failed: {e}")
                    continue
                if record is None:
                    logger.debug(f"no record on {uid}")
                    continue
                records.append(record)
        return records

    def build_snapshot(self) -> WRSnapshot:
        """
        Fetch listings, world records and names into a new snapshot.

        Raises:
            UpstreamError: If neither map listing could be fetched
        """
        official, totd, campaign = self._listings()
        map_uids = sorted(official | totd)
        logger.info(f"building WR snapshot for {len(map_uids)} maps "
                    f"({len(official)} official, {len(totd)} totd)")

        records = self._top_records(map_uids)
        names = self.resolver.resolve_names({r["accountId"] for r in records})

        rows = [
            WRRow(
                map_uid=r["mapUid"],
                account_id=r["accountId"],
                time_ms=r.get("timeMs"),
                timestamp=r.get("timestamp"),
                display_name=display_name_or_id(names, r["accountId"]),
                source=tag_source(r["mapUid"], official, totd),
            )
            for r in records
        ]
        rows.sort(key=lambda row: (row.timestamp or 0, row.map_uid), reverse=True)

        counts = {"official": 0, "totd": 0}
        for row in rows:
            counts[row.source] = counts.get(row.source, 0) + 1

        return WRSnapshot(captured_at=self.clock(), rows=rows, counts=counts, campaign=campaign)


class SnapshotCache:
    """
    Time-boxed snapshot holder.

    get() rebuilds when the snapshot is missing or older than ttl_s; the
    rebuild runs under a lock and waiting callers reuse its result.
    peek() returns whatever is cached without touching upstream.
    """

    def __init__(self, aggregator: LeaderboardAggregator, ttl_s: float = 60,
                 clock: Callable[[], float] = time.monotonic):
        self.aggregator = aggregator
        self.ttl_s = ttl_s
        self.clock = clock
        self._snapshot: Optional[WRSnapshot] = None
        self._built_at = 0.0
        self._lock = threading.Lock()

    def _fresh(self) -> Optional[WRSnapshot]:
        if self._snapshot is not None and self.clock() - self._built_at < self.ttl_s:
            return self._snapshot
        return None

    def get(self) -> WRSnapshot:
        snapshot = self._fresh()
        if snapshot is not None:
            return snapshot
        with self._lock:
            snapshot = self._fresh()
            if snapshot is not None:
                return snapshot
            snapshot = self.aggregator.build_snapshot()
            self._snapshot = snapshot
            self._built_at = self.clock()
            return snapshot

    def peek(self) -> Optional[WRSnapshot]:
        return self._snapshot


# --- Read Helpers ---
def rows_frame(snapshot: WRSnapshot) -> pd.DataFrame:
    return pd.DataFrame(snapshot.records(), columns=ROW_COLUMNS)


def _text_match(df: pd.DataFrame, q: str, columns: list) -> pd.Series:
    needle = q.strip().lower()
    mask = pd.Series(False, index=df.index)
    for col in columns:
        mask |= df[col].fillna("").astype(str).str.lower().str.contains(needle, regex=False)
    return mask


def query_rows(snapshot: WRSnapshot, limit: Optional[int] = None,
               q: Optional[str] = None, source: Optional[str] = None) -> dict:
    """
    Filter snapshot rows.

    Args:
        snapshot: Snapshot to read
        limit: Maximum rows returned (None = all)
        q: Case-insensitive substring of display name, account id or map uid
        source: Keep only rows with this provenance tag

    Returns:
        {"rows", "total", "fetchedAt", "counts", "campaign"}; total counts the
        filtered rows before the limit is applied
    """
    records = snapshot.records()
    df = rows_frame(snapshot)

    if source:
        df = df[df['source'] == source]
    if q and q.strip():
        df = df[_text_match(df, q, ['displayName', 'accountId', 'mapUid'])]

    total = len(df)
    if limit is not None:
        df = df.head(limit)

    return {
        "rows": [records[i] for i in df.index],
        "total": total,
        "fetchedAt": snapshot.captured_at,
        "counts": dict(snapshot.counts),
        "campaign": snapshot.campaign,
    }


def player_tally(snapshot: WRSnapshot, q: Optional[str] = None) -> dict:
    """World records held per player, most records first."""
    df = rows_frame(snapshot)
    if q and q.strip():
        df = df[_text_match(df, q, ['displayName', 'accountId'])]

    if df.empty:
        return {"players": [], "fetchedAt": snapshot.captured_at, "campaign": snapshot.campaign}

    df = df.assign(timestamp=df['timestamp'].fillna(0))
    tally = df.groupby('accountId').agg(
        displayName=('displayName', 'first'),
        wrCount=('mapUid', 'size'),
        latestTs=('timestamp', 'max'),
    ).reset_index()
    tally = tally.sort_values(['wrCount', 'latestTs', 'accountId'],
                              ascending=[False, False, True])

    players = [
        {
            "accountId": row.accountId,
            "displayName": row.displayName,
            "wrCount": int(row.wrCount),
            "latestTs": int(row.latestTs),
        }
        for row in tally.itertuples(index=False)
    ]
    return {"players": players, "fetchedAt": snapshot.captured_at, "campaign": snapshot.campaign}
