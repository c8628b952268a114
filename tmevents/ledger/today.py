"""
"Today" card for the front-end.

Writes `cotd.json` with today's track-of-the-day map and the current daily
cup winner, then merges both facts into today's day record of the winners
ledger. The map comes from Nadeo Live first and from trackmania.io when
Nadeo fails. A winner that cannot be fetched yet is written as null.
"""

from datetime import date, datetime, timezone
from pathlib import Path
from typing import Callable

from tmevents.config import RESULT_KEY
from tmevents.ledger.engine import LedgerEngine
from tmevents.ledger.totd import base_day_record, listing_day_number
from tmevents.upstream.http import ITEM_ERRORS, UpstreamSchemaError, first_present
from tmevents.utils import atomic_write_json, setup_logging, strip_tm_formatting, utc_today

# --- Module Logger ---
logger = setup_logging(__name__)

CARD_FIELDS = ("uid", "name", "authorAccountId", "authorDisplayName", "thumbnailUrl")


def _pick_day(entries: list, day_of_month: int) -> dict:
    """Entry for today's day of month, else the last one listed."""
    for entry in entries:
        if first_present(entry, "monthDay", "day") == day_of_month:
            return entry
    return entries[-1]


class TodayCard:
    """
    Build and persist the "today" document.

    Args:
        live_maps: LiveMapsClient (totd_month_days, map_info)
        tmio: TmioClient (totd_month)
        locator: CompetitionLocator (current_winner)
        resolver: NameResolver for the author and winner names
        ledger: LedgerEngine that owns the winners months
        path: Where `cotd.json` is written
        clock: Returns "today" in UTC
    """

    def __init__(self, live_maps, tmio, locator, resolver, ledger: LedgerEngine, path: Path,
                 clock: Callable[[], date] = utc_today):
        self.live_maps = live_maps
        self.tmio = tmio
        self.locator = locator
        self.resolver = resolver
        self.ledger = ledger
        self.path = path
        self.clock = clock

    def _from_nadeo(self, today: date) -> dict:
        days = self.live_maps.totd_month_days()
        if not days:
            raise UpstreamSchemaError("no track-of-the-day days listed")
        entry = _pick_day(days, today.day)
        uid = entry.get("mapUid")
        if not uid:
            raise UpstreamSchemaError("track-of-the-day entry has no mapUid")

        info = self.live_maps.map_info(uid)
        return {
            "uid": info.get("uid") or uid,
            "name": strip_tm_formatting(info.get("name")) or "(unknown map)",
            "authorAccountId": info.get("author"),
            "authorDisplayName": None,
            "thumbnailUrl": info.get("thumbnailUrl") or "",
            "source": "nadeo",
        }

    def _from_tmio(self, today: date) -> dict:
        listing = self.tmio.totd_month(0)
        entries = listing.get("days") if isinstance(listing, dict) else None
        entries = [e for e in entries if isinstance(e, dict)] if isinstance(entries, list) else []
        if not entries:
            raise UpstreamSchemaError("tm.io totd: no days")

        idx = len(entries) - 1
        entry = entries[-1]
        for i, candidate in enumerate(entries):
            if listing_day_number(candidate, i) == today.day:
                idx, entry = i, candidate
                break
        map_info = base_day_record(today.year, today.month, entry, idx)["map"]
        card = {field: map_info[field] for field in CARD_FIELDS}
        card["source"] = "tmio"
        return card

    def map_card(self, today: date) -> dict:
        """
        Today's map, Nadeo first.

        Raises:
            UpstreamError: If trackmania.io fails too
        """
        try:
            return self._from_nadeo(today)
        except ITEM_ERRORS as e:
            logger.warning(f"Nadeo track-of-the-day lookup failed, using trackmania.io: {e}")
        return self._from_tmio(today)

    def current_winner(self):
        try:
            return self.locator.current_winner()
        except ITEM_ERRORS as e:
            logger.warning(f"current cup winner unavailable: {e}")
            return None

    def write(self) -> dict:
        """
        Write `cotd.json` and merge today's facts into the ledger.

        Returns:
            The payload written
        """
        today = self.clock()
        card = self.map_card(today)
        winner_id = self.current_winner()

        author_id = card.get("authorAccountId")
        wanted = [winner_id] if card.get("authorDisplayName") else [author_id, winner_id]
        names = self.resolver.resolve_names([i for i in wanted if i])

        card["authorDisplayName"] = (
            card.get("authorDisplayName") or names.get(author_id) or author_id or "(unknown)"
        )
        winner_name = names.get(winner_id) if winner_id else None

        payload = {
            "generatedAt": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "date": today.isoformat(),
            "map": card,
            RESULT_KEY: {"winnerAccountId": winner_id, "winnerDisplayName": winner_name},
        }
        atomic_write_json(payload, self.path)
        logger.info(f"Wrote {self.path} ({card['name']}, winner={winner_id or '-'})")

        self.ledger.apply_day_facts(today, map_info=card, winner_id=winner_id, winner_name=winner_name)
        return payload
