"""
Track-of-the-day month ledger.

Mirrors the trackmania.io month listing into `<totd dir>/YYYY-MM.json`
and keeps a `totd.json` document pointing at the newest day. Metadata
already recorded for a day (download link, medal times, ...) is carried
over and only missing fields are looked up again, so manual fixes and
earlier lookups survive re-runs. Days already on disk but absent from
the listing are kept.
"""

import time
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from tmevents.ledger.store import MonthStore
from tmevents.upstream.http import first_present
from tmevents.upstream.maps import META_FIELDS, MapMetaResolver, TmioClient
from tmevents.utils import (
    atomic_write_json,
    date_key,
    month_key,
    previous_month,
    setup_logging,
    strip_tm_formatting,
    utc_today,
)

# --- Module Logger ---
logger = setup_logging(__name__)

LOOKUP_PAUSE_S = 0.08


def listing_month(index: int, today: date) -> tuple[int, int]:
    """Calendar month of tm.io listing `index` (0 = current month, 1 = previous, ...)."""
    year, month = today.year, today.month
    for _ in range(index):
        year, month = previous_month(year, month)
    return year, month


def _calendar_int(value) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


def resolve_listing_month(listing, index: int, today: date) -> tuple[int, int]:
    """
    Calendar month a listing describes.

    The payload's own month ({"month": {"year", "month"}} or top-level
    "year"/"month", 1-based) wins when it is the month the index points at
    or the month before it, which is what a listing served across a UTC
    month boundary looks like. Anything else falls back to the index.
    """
    expected = listing_month(index, today)
    if not isinstance(listing, dict):
        return expected

    holder = listing.get("month") if isinstance(listing.get("month"), dict) else listing
    year = _calendar_int(holder.get("year"))
    month = _calendar_int(holder.get("month"))
    if year is None or month is None or not 1 <= month <= 12:
        return expected

    if (year, month) in (expected, previous_month(*expected)):
        return year, month
    logger.warning(
        f"listing {index} claims {month_key(year, month)}, expected {month_key(*expected)}; "
        f"using {month_key(*expected)}"
    )
    return expected


def listing_day_number(entry: dict, idx: int) -> int:
    value = first_present(entry, "day", "dayIndex", "monthDay", "dayInMonth")
    return int(value) if isinstance(value, (int, float)) else idx + 1


def base_day_record(year: int, month: int, entry: dict, idx: int) -> dict:
    """Normalize one listing entry (shapes vary between API revisions)."""
    m = entry.get("map") if isinstance(entry.get("map"), dict) else entry
    author = m.get("authorPlayer") or m.get("authorplayer") or entry.get("authorPlayer") \
        or entry.get("authorplayer") or {}

    name = first_present(m, "name", "mapName") or entry.get("name") or "(unknown map)"
    author_name = first_present(author, "name") or first_present(m, "authorName", "author") or "(unknown)"

    record = {
        "date": date_key(year, month, listing_day_number(entry, idx)),
        "map": {
            "uid": m.get("mapUid") or entry.get("mapUid"),
            "name": strip_tm_formatting(name),
            "authorAccountId": first_present(author, "accountId", "accountid"),
            "authorDisplayName": strip_tm_formatting(author_name),
            "thumbnailUrl": first_present(m, "thumbnail", "thumbnailUrl")
            or first_present(entry, "thumbnail", "thumbnailUrl") or "",
        },
    }
    record["map"].update(dict.fromkeys(META_FIELDS))
    return record


def needs_metadata(map_info: dict) -> bool:
    return bool(map_info.get("uid")) and (
        not map_info.get("downloadUrl") or map_info.get("authorTime") is None
    )


class TotdArchiver:
    """
    Upsert track-of-the-day months.

    Args:
        store: MonthStore for the track-of-the-day directory
        tmio: trackmania.io client
        meta: MapMetaResolver used for missing metadata
        latest_path: Where the "newest day" document is written
        clock: Returns "today" in UTC
        sleep: Pause between metadata lookups (injectable for tests)
    """

    def __init__(self, store: MonthStore, tmio: TmioClient, meta: MapMetaResolver,
                 latest_path: Optional[Path] = None,
                 clock: Callable[[], date] = utc_today,
                 sleep: Callable[[float], None] = time.sleep):
        self.store = store
        self.tmio = tmio
        self.meta = meta
        self.latest_path = latest_path
        self.clock = clock
        self.sleep = sleep

    def upsert_month(self, index: int = 0) -> dict:
        """
        Refresh one listing month.

        Returns:
            Summary dict with month, path, days, enriched and latest
        """
        listing = self.tmio.totd_month(index)
        year, month = resolve_listing_month(listing, index, self.clock())
        key = month_key(year, month)

        document = self.store.load(key)
        days = document["days"]
        entries = listing.get("days") if isinstance(listing, dict) else None
        entries = entries if isinstance(entries, list) else []

        result = {'month': key, 'path': None, 'days': 0, 'enriched': 0, 'latest': None}

        for idx, entry in enumerate(entries):
            if not isinstance(entry, dict):
                continue
            record = base_day_record(year, month, entry, idx)
            previous = (days.get(record["date"]) or {}).get("map") or {}
            for field in META_FIELDS:
                if previous.get(field) is not None:
                    record["map"][field] = previous[field]
            if record["map"]["tmioPage"] is None and record["map"]["uid"]:
                record["map"]["tmioPage"] = f"https://trackmania.io/map/{record['map']['uid']}"

            if needs_metadata(record["map"]):
                info = self.meta.fetch(record["map"]["uid"])
                for field, value in info.items():
                    if record["map"].get(field) is None and value is not None:
                        record["map"][field] = value
                result['enriched'] += 1
                self.sleep(LOOKUP_PAUSE_S)

            days[record["date"]] = record
            result['days'] += 1

        result['path'] = self.store.save(document)
        self.store.rebuild_index()

        if days and self.latest_path is not None:
            latest_key = max(days)
            latest = days[latest_key]
            generated = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
            atomic_write_json({"generatedAt": generated, **latest}, self.latest_path)
            result['latest'] = latest_key
            logger.info(f"latest: {latest_key} {latest.get('map', {}).get('name')}")
        elif not days:
            logger.warning(f"no days found for {key}")

        return result
