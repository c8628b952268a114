"""
Map collections, world-record lookups and map metadata.

Modules using this:
- leaderboard.aggregator: campaign listings + top record per map
- ledger.totd: trackmania.io month listing + download/medal metadata
- ledger.today: current track-of-the-day day + Nadeo map record
"""

import re
from urllib.parse import quote
from typing import Optional

import requests

from tmevents.config import (
    LEADERBOARD_GROUP,
    LIVE_URL,
    TMIO_URL,
    TMX_API_URL,
    TMX_MAPS_URL,
)
from tmevents.upstream.auth import TokenCache
from tmevents.upstream.http import (
    UpstreamError,
    UpstreamSchemaError,
    expect_json,
    fetch_with_retry,
    first_present,
)
from tmevents.utils import setup_logging

# --- Module Logger ---
logger = setup_logging(__name__)

TMX_LINK_RE = re.compile(r"trackmania\.exchange/maps(?:/download)?/(\d+)", re.IGNORECASE)

META_FIELDS = (
    "downloadUrl", "tmxId", "tmxPage", "tmioPage",
    "authorTime", "goldTime", "silverTime", "bronzeTime", "difficulty",
)


def _map_uids(entries) -> list:
    uids = []
    for entry in entries or []:
        if isinstance(entry, dict) and entry.get("mapUid"):
            uids.append(entry["mapUid"])
    return uids


class LiveMapsClient:
    """Nadeo Live endpoints: campaign listings and per-map world records."""

    def __init__(self, session: requests.Session, tokens: TokenCache):
        self.session = session
        self.tokens = tokens

    def _get(self, path: str, what: str, **params):
        r = fetch_with_retry(
            self.session, "GET", f"{LIVE_URL}{path}",
            params=params or None,
            headers=self.tokens.nadeo_headers(),
        )
        return expect_json(r, what)

    def official_campaign(self) -> dict:
        """
        Current official campaign with its playlist.

        Raises:
            UpstreamError: On HTTP failure or when no campaign is listed
        """
        data = self._get("/api/campaign/official", "campaign fetch", offset=0, length=1)
        campaigns = first_present(data, "campaignList", default=[])
        if not campaigns or not isinstance(campaigns[0], dict):
            raise UpstreamError("no campaign returned")
        c = campaigns[0]
        return {
            "id": c.get("id"),
            "name": c.get("name"),
            "start": c.get("startTimestamp"),
            "end": c.get("endTimestamp"),
            "mapUids": _map_uids(c.get("playlist")),
        }

    def totd_month_days(self) -> list:
        """Day entries of the current track-of-the-day month."""
        data = self._get("/api/token/campaign/month", "month campaign", length=1, offset=0)
        months = first_present(data, "monthList", default=[])
        if not isinstance(months, list) or not months or not isinstance(months[0], dict):
            return []
        days = months[0].get("days")
        return [d for d in days if isinstance(d, dict)] if isinstance(days, list) else []

    def totd_month_map_uids(self) -> list:
        """Map uids of the current track-of-the-day month."""
        return _map_uids(self.totd_month_days())

    def map_info(self, map_uid: str) -> dict:
        """
        Nadeo map record (uid, name, author, thumbnailUrl, ...).

        Raises:
            UpstreamError: On HTTP failure or a non-object body
        """
        data = self._get(f"/api/token/map/{quote(map_uid, safe='')}", "map fetch")
        if not isinstance(data, dict):
            raise UpstreamSchemaError("map fetch: expected an object")
        return data

    def top_record(self, map_uid: str) -> Optional[dict]:
        """
        World record (top 1 world) of a map, or None for an empty leaderboard.

        Raises:
            UpstreamError: On HTTP failure
        """
        data = self._get(
            f"/api/token/leaderboard/group/{LEADERBOARD_GROUP}/map/{map_uid}/top",
            "leaderboard", onlyWorld="true", length=1,
        )
        tops = first_present(data, "tops", default=[])
        if not isinstance(tops, list) or not tops or not isinstance(tops[0], dict):
            return None
        top = tops[0].get("top") or []
        if not isinstance(top, list) or not top or not isinstance(top[0], dict) \
                or not top[0].get("accountId"):
            return None
        record = top[0]
        return {
            "mapUid": map_uid,
            "accountId": record["accountId"],
            "timeMs": record.get("score"),
            "timestamp": record.get("timestamp"),
        }


class TmioClient:
    """trackmania.io public API (no credentials)."""

    def __init__(self, session: requests.Session):
        self.session = session

    def totd_month(self, index: int = 0):
        """Track-of-the-day listing; index 0 = current month, 1 = previous, ..."""
        r = fetch_with_retry(self.session, "GET", f"{TMIO_URL}/api/totd/{index}")
        return expect_json(r, f"tm.io totd[{index}]")

    def map_info(self, map_uid: str):
        r = fetch_with_retry(self.session, "GET", f"{TMIO_URL}/api/map/{map_uid}")
        return expect_json(r, "tm.io map")


def tmx_download_url(track_id, short_name: Optional[str] = None) -> str:
    base = f"{TMX_MAPS_URL}/download/{track_id}"
    return f"{base}?shortName={quote(str(short_name))}" if short_name else base


class MapMetaResolver:
    """
    Download link and medal metadata for a map uid.

    Trackmania Exchange is tried first; trackmania.io fills in whatever
    Exchange could not provide. Lookup failures degrade to empty fields.
    """

    def __init__(self, session: requests.Session, tmio: Optional[TmioClient] = None):
        self.session = session
        self.tmio = tmio or TmioClient(session)

    def _tmx_info(self, kind: str, key) -> Optional[dict]:
        r = fetch_with_retry(self.session, "GET", f"{TMX_API_URL}/maps/get_map_info/{kind}/{key}")
        if not r.ok:
            return None
        try:
            info = r.json()
        except ValueError:
            return None
        return info if isinstance(info, dict) else None

    def _from_tmx(self, map_uid: str, out: dict) -> bool:
        info = self._tmx_info("uid", map_uid)
        if not info or not info.get("TrackID"):
            return False
        if info.get("TrackUID") and info["TrackUID"] != map_uid:
            return False

        track_id = info["TrackID"]
        out["tmxId"] = track_id
        out["tmxPage"] = f"{TMX_MAPS_URL}/{track_id}"

        short_name = info.get("ShortName") or info.get("shortName")
        if info.get("Unlisted") in (True, 1) and not short_name:
            by_id = self._tmx_info("id", track_id)
            if by_id and str(by_id.get("TrackID")) == str(track_id):
                short_name = by_id.get("ShortName") or by_id.get("shortName")

        if info.get("Downloadable", True):
            out["downloadUrl"] = tmx_download_url(track_id, short_name)
            return True
        return False

    def _from_tmio(self, map_uid: str, out: dict) -> None:
        j = self.tmio.map_info(map_uid)
        if not isinstance(j, dict):
            return
        raw = first_present(j, "file", "download", default="")
        tmx_id = None
        if isinstance(raw, str):
            m = TMX_LINK_RE.search(raw)
            if m:
                tmx_id = m.group(1)

        out["downloadUrl"] = out["downloadUrl"] or raw or (tmx_download_url(tmx_id) if tmx_id else None)
        out["tmxId"] = out["tmxId"] or tmx_id
        out["tmxPage"] = out["tmxPage"] or (f"{TMX_MAPS_URL}/{tmx_id}" if tmx_id else None)
        for key in ("authorTime", "goldTime", "silverTime", "bronzeTime"):
            out[key] = j.get(key)
        out["difficulty"] = first_present(j, "difficulty", "mapDifficulty")

    def fetch(self, map_uid: str) -> dict:
        out = dict.fromkeys(META_FIELDS)
        if not map_uid:
            return out
        out["tmioPage"] = f"{TMIO_URL}/map/{map_uid}"

        try:
            if self._from_tmx(map_uid, out):
                return out
        except (UpstreamError, requests.RequestException) as e:
            logger.debug(f"TMX lookup failed for {map_uid}: {e}")

        try:
            self._from_tmio(map_uid, out)
        except (UpstreamError, requests.RequestException) as e:
            logger.debug(f"tm.io lookup failed for {map_uid}: {e}")

        return out
