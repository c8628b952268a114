"""
Monthly Ledger Upsert Engine (daily cup winners)

Merges freshly discovered per-day winners into the persisted month
document without discarding anything already recorded.

Each day moves one way only:
    UNKNOWN -> WINNER_NO_NAME -> WINNER_WITH_NAME

- UNKNOWN days (no winner id) ask the locator; a found winner is recorded
  with no display name. Lookup errors are logged and the day stays UNKNOWN
  until the next run.
- WINNER_NO_NAME days skip the locator; their ids are resolved in one bulk
  call after the pass.
- WINNER_WITH_NAME days are left alone.
- Days after "today" (UTC) are never created or touched.

The month is read once, mutated in memory and written once per call,
after which the month index is rebuilt from the directory listing.

Usage:
    from tmevents.ledger.engine import LedgerEngine
    engine = LedgerEngine(store, locator, resolver)
    engine.upsert_month(2024, 7)
"""

from datetime import date
from typing import Callable, Optional

from tmevents.config import RESULT_KEY
from tmevents.ledger.store import MonthStore
from tmevents.upstream.http import ITEM_ERRORS
from tmevents.utils import (
    date_key,
    days_of_month,
    month_key,
    previous_month,
    setup_logging,
    utc_today,
)

# --- Module Logger ---
logger = setup_logging(__name__)

UNKNOWN = "unknown"
WINNER_NO_NAME = "winner_no_name"
WINNER_WITH_NAME = "winner_with_name"


def day_state(record) -> str:
    """Classify a day record into its ledger state."""
    fact = record.get(RESULT_KEY) if isinstance(record, dict) else None
    if not isinstance(fact, dict) or not fact.get("winnerAccountId"):
        return UNKNOWN
    if not fact.get("winnerDisplayName"):
        return WINNER_NO_NAME
    return WINNER_WITH_NAME


class LedgerEngine:
    """
    Idempotent month upserts for daily cup winners.

    Args:
        store: MonthStore for the winners directory
        locator: Object with find_winner(year, month, day) -> account id or None
        resolver: Object with resolve_names(ids) -> {id: name or None}
        clock: Returns "today" in UTC (injectable for tests)
    """

    def __init__(self, store: MonthStore, locator, resolver,
                 clock: Callable[[], date] = utc_today):
        self.store = store
        self.locator = locator
        self.resolver = resolver
        self.clock = clock

    def upsert_month(self, year: int, month: int, today: Optional[date] = None) -> dict:
        """
        Bring one month document up to date.

        Args:
            year: Calendar year
            month: Calendar month (1-12)
            today: UTC date the run is "as of" (default: clock())

        Returns:
            Summary dict with month, path, lookups, winners_found,
            names_filled, errors and months (the rebuilt index)

        Raises:
            LedgerError: If the existing month document cannot be read
        """
        today = today or self.clock()
        key = month_key(year, month)
        today_key = today.isoformat()

        document = self.store.load(key)
        days = document["days"]

        result = {
            'month': key,
            'path': None,
            'lookups': 0,
            'winners_found': 0,
            'names_filled': 0,
            'errors': 0,
            'months': [],
        }

        if date(year, month, 1) > today:
            logger.info(f"[COTD] {key} has not started yet; nothing to do")
            return result

        logger.info(f"[COTD] Updating month {key} ...")
        to_hydrate = set()

        for d in days_of_month(year, month):
            if date(year, month, d) > today:
                break  # never look into future days

            dk = date_key(year, month, d)
            record = days.get(dk)
            if not isinstance(record, dict):
                record = {"date": dk, RESULT_KEY: None}
                days[dk] = record

            state = day_state(record)
            if state == WINNER_WITH_NAME:
                continue
            if state == WINNER_NO_NAME:
                to_hydrate.add(record[RESULT_KEY]["winnerAccountId"])
                continue

            result['lookups'] += 1
            try:
                winner_id = self.locator.find_winner(year, month, d)
            except ITEM_ERRORS as e:
                result['errors'] += 1
                logger.warning(f"  {dk}  error: {e}")
                continue

            if not winner_id:
                # not published yet, or naming drift
                continue

            fact = record.get(RESULT_KEY) if isinstance(record.get(RESULT_KEY), dict) else {}
            record[RESULT_KEY] = {**fact, "winnerAccountId": winner_id, "winnerDisplayName": None}
            result['winners_found'] += 1
            to_hydrate.add(winner_id)
            logger.info(f"  {dk}  winner={winner_id}")

        if to_hydrate:
            names = self.resolver.resolve_names(to_hydrate)
            for dk, record in days.items():
                if dk > today_key or day_state(record) != WINNER_NO_NAME:
                    continue
                fact = record[RESULT_KEY]
                name = names.get(fact["winnerAccountId"])
                if name:
                    fact["winnerDisplayName"] = name
                    result['names_filled'] += 1

        result['path'] = self.store.save(document)
        result['months'] = self.store.rebuild_index()

        logger.info(
            f"[COTD] {key} done: {result['winners_found']} new winners, "
            f"{result['names_filled']} names, {result['errors']} errors"
        )
        return result

    def backfill_maps(self, year: int, month: int, maps_by_date: dict,
                      today: Optional[date] = None) -> dict:
        """
        Attach track-of-the-day map info to the month's day records.

        Days without a record are created UNKNOWN; a day that already has
        map info keeps it. Winner facts are never touched.

        Args:
            maps_by_date: {"YYYY-MM-DD": map dict} for days of this month

        Returns:
            Summary dict with month, path, added and mapped
        """
        today = today or self.clock()
        key = month_key(year, month)
        result = {'month': key, 'path': None, 'added': 0, 'mapped': 0}
        if date(year, month, 1) > today:
            return result

        document = self.store.load(key)
        days = document["days"]
        for dk, map_info in sorted(maps_by_date.items()):
            if not dk.startswith(f"{key}-") or dk > today.isoformat() or not isinstance(map_info, dict):
                continue
            record = days.get(dk)
            if not isinstance(record, dict):
                record = {"date": dk, RESULT_KEY: None}
                days[dk] = record
                result['added'] += 1
            if not isinstance(record.get("map"), dict):
                record["map"] = dict(map_info)
                result['mapped'] += 1

        result['path'] = self.store.save(document)
        self.store.rebuild_index()
        logger.info(f"[COTD] {key} map backfill: {result['added']} days added, {result['mapped']} maps attached")
        return result

    def apply_day_facts(self, day: date, map_info: Optional[dict] = None,
                        winner_id: Optional[str] = None,
                        winner_name: Optional[str] = None) -> dict:
        """
        Merge facts known about a single day into its month.

        The day only moves forward: a winner is recorded on an UNKNOWN day,
        a name on a WINNER_NO_NAME day with the same winner, and map info
        only where none is recorded.

        Returns:
            The day record as written
        """
        key = month_key(day.year, day.month)
        dk = day.isoformat()
        document = self.store.load(key)
        days = document["days"]

        record = days.get(dk)
        if not isinstance(record, dict):
            record = {"date": dk, RESULT_KEY: None}
            days[dk] = record
        if map_info and not isinstance(record.get("map"), dict):
            record["map"] = dict(map_info)

        state = day_state(record)
        fact = record.get(RESULT_KEY) if isinstance(record.get(RESULT_KEY), dict) else {}
        if winner_id and state == UNKNOWN:
            record[RESULT_KEY] = {**fact, "winnerAccountId": winner_id, "winnerDisplayName": winner_name or None}
        elif winner_name and state == WINNER_NO_NAME and fact.get("winnerAccountId") == winner_id:
            fact["winnerDisplayName"] = winner_name

        self.store.save(document)
        self.store.rebuild_index()
        return record

    def update_recent(self, today: Optional[date] = None) -> list:
        """Upsert the previous and the current month (the default one-shot pass)."""
        today = today or self.clock()
        prev_year, prev_month = previous_month(today.year, today.month)
        return [
            self.upsert_month(prev_year, prev_month, today=today),
            self.upsert_month(today.year, today.month, today=today),
        ]
