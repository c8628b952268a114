"""
Display-Name Resolver

Bulk-resolves opaque account ids to display names. Lookups are backed by
a NameCache (persisted as JSON for the ledger, resident in memory for the
leaderboard server) and by an ordered list of request strategies, because
the upstream exposes the same capability through several request shapes
that are not equally available across deployments.

Resolution is never fatal: a strategy that fails is logged and skipped.
An id that some strategy answered without a name is cached as None
("looked up, not found") so it is not queried again. An id whose every
request failed stays out of the cache and is retried on the next call.
"""

import json
import threading
from pathlib import Path
from typing import Iterable, Optional

import requests

from tmevents.config import CORE_URL, LIVE_URL, NAME_CHUNK_SIZE, OAUTH_URL
from tmevents.upstream.auth import TokenCache
from tmevents.upstream.http import (
    UpstreamError,
    UpstreamSchemaError,
    expect_json,
    fetch_with_retry,
)
from tmevents.utils import atomic_write_json, chunked, setup_logging

# --- Module Logger ---
logger = setup_logging(__name__)


def parse_display_names(payload) -> dict:
    """
    Normalize any known display-name response shape to {accountId: name}.

    Shapes seen upstream:
        [{"accountId": ..., "displayName": ...}, ...]
        {"displayNames": [{"accountId": ..., "displayName": ...}, ...]}
        {"<accountId>": "<name>", ...}

    Raises:
        UpstreamSchemaError: If the payload matches none of them
    """
    if isinstance(payload, dict) and isinstance(payload.get("displayNames"), list):
        payload = payload["displayNames"]

    out = {}
    if isinstance(payload, list):
        for row in payload:
            if not isinstance(row, dict):
                continue
            account_id = row.get("accountId")
            name = row.get("displayName")
            if account_id and isinstance(name, str) and name:
                out[account_id] = name
        return out

    if isinstance(payload, dict):
        for account_id, name in payload.items():
            if isinstance(name, str) and name:
                out[account_id] = name
        return out

    raise UpstreamSchemaError(f"unrecognized display-name payload: {type(payload).__name__}")


def display_name_or_id(names: dict, account_id: Optional[str]) -> Optional[str]:
    """Degrade to the raw account id when no display name is known."""
    if not account_id:
        return account_id
    return names.get(account_id) or account_id


class NameCache:
    """
    accountId -> display name (None = looked up, not found).

    Append-only from the resolver's point of view. With a path, the cache
    is loaded lazily from disk and written back atomically by save().
    """

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path is not None else None
        self._names: Optional[dict] = None
        self._dirty = False
        self._lock = threading.RLock()

    def _entries(self) -> dict:
        if self._names is None:
            self._names = self._read()
        return self._names

    def _read(self) -> dict:
        if self.path is None or not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable name cache {self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            logger.warning(f"Ignoring name cache {self.path}: expected an object")
            return {}
        return {k: (v if isinstance(v, str) else None) for k, v in data.items()}

    def __contains__(self, account_id) -> bool:
        with self._lock:
            return account_id in self._entries()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries())

    def get(self, account_id: str) -> Optional[str]:
        with self._lock:
            return self._entries().get(account_id)

    def set(self, account_id: str, name: Optional[str]) -> None:
        with self._lock:
            entries = self._entries()
            if account_id not in entries or entries[account_id] != name:
                entries[account_id] = name
                self._dirty = True

    def as_dict(self) -> dict:
        with self._lock:
            return dict(self._entries())

    def save(self) -> None:
        """Persist pending changes (no-op for a resident cache)."""
        with self._lock:
            if self.path is None or not self._dirty:
                return
            atomic_write_json(self._entries(), self.path)
            self._dirty = False
            logger.debug(f"Saved {len(self._names)} cached names to {self.path}")


# --- Strategies ---
class DisplayNameStrategy:
    """One request shape for "resolve these ids". Subclasses implement resolve()."""

    name = "base"

    def __init__(self, session: requests.Session, tokens: TokenCache):
        self.session = session
        self.tokens = tokens

    def resolve(self, account_ids: list) -> dict:
        raise NotImplementedError


class CoreDisplayNamesStrategy(DisplayNameStrategy):
    """GET Core /accounts/displayNames with a CSV accountIdList."""

    name = "core-get-csv"

    def resolve(self, account_ids):
        r = fetch_with_retry(
            self.session, "GET", f"{CORE_URL}/accounts/displayNames",
            params={"accountIdList": ",".join(account_ids)},
            headers=self.tokens.nadeo_headers(),
        )
        return parse_display_names(expect_json(r, "displayNames"))


class LiveDisplayNamesStrategy(DisplayNameStrategy):
    """GET Live /api/token/accounts/displayNames with a CSV accountIdList."""

    name = "live-get-csv"

    def resolve(self, account_ids):
        r = fetch_with_retry(
            self.session, "GET", f"{LIVE_URL}/api/token/accounts/displayNames",
            params={"accountIdList": ",".join(account_ids)},
            headers=self.tokens.nadeo_headers(),
        )
        return parse_display_names(expect_json(r, "live displayNames"))


class LiveDisplayNamesPostStrategy(DisplayNameStrategy):
    """POST Live /api/token/accounts/displayNames with a JSON array body."""

    name = "live-post-array"

    def resolve(self, account_ids):
        r = fetch_with_retry(
            self.session, "POST", f"{LIVE_URL}/api/token/accounts/displayNames",
            json={"accountIdList": list(account_ids)},
            headers=self.tokens.nadeo_headers(),
        )
        return parse_display_names(expect_json(r, "live displayNames (POST)"))


class OAuthDisplayNamesStrategy(DisplayNameStrategy):
    """GET the public API with repeated accountId[] parameters (bearer token)."""

    name = "oauth-get-array"

    def resolve(self, account_ids):
        r = fetch_with_retry(
            self.session, "GET", f"{OAUTH_URL}/api/display-names",
            params=[("accountId[]", account_id) for account_id in account_ids],
            headers=self.tokens.bearer_headers(),
        )
        return parse_display_names(expect_json(r, "TM display-names"))


class NameResolver:
    """
    Resolve account ids through a NameCache and an ordered strategy list.

    Args:
        cache: NameCache shared by every caller of this resolver
        strategies: Tried in order; each only sees ids still unresolved
        chunk_size: Maximum ids per upstream request
    """

    def __init__(self, cache: NameCache, strategies: Iterable[DisplayNameStrategy],
                 chunk_size: int = NAME_CHUNK_SIZE):
        self.cache = cache
        self.strategies = list(strategies)
        self.chunk_size = chunk_size

    def _lookup(self, missing: list) -> tuple:
        """
        Query strategies for ids not in the cache.

        Returns:
            (found, answered): names found, and every id that at least one
            strategy answered (with or without a name)
        """
        found = {}
        answered = set()
        pending = list(missing)

        for strategy in self.strategies:
            if not pending:
                break
            for chunk in chunked(pending, self.chunk_size):
                try:
                    resolved = strategy.resolve(chunk)
                except (UpstreamError, requests.RequestException, ValueError, TypeError) as e:
                    logger.warning(f"Display names via {strategy.name} failed for {len(chunk)} ids: {e}")
                    continue
                answered.update(chunk)
                wanted = set(chunk)
                for account_id, name in resolved.items():
                    if account_id in wanted and name:
                        found[account_id] = name
            pending = [i for i in pending if i not in found]

        unanswered = [i for i in pending if i not in answered]
        if unanswered:
            logger.warning(f"{len(unanswered)} account ids could not be looked up; retrying next time")
        if len(pending) > len(unanswered):
            logger.info(f"{len(pending) - len(unanswered)} account ids have no display name upstream")
        return found, answered

    def resolve_names(self, account_ids: Iterable[str]) -> dict:
        """
        Resolve ids to names, querying upstream only for ids never seen before.

        Args:
            account_ids: Any iterable of account ids (falsy entries ignored)

        Returns:
            {accountId: name or None} for every requested id. None covers
            both "not found" and "lookup failed"; only the former is cached.
        """
        ids = sorted({i for i in account_ids if i})
        if not ids:
            return {}

        missing = [i for i in ids if i not in self.cache]
        if missing:
            logger.info(f"Resolving {len(missing)} display names ({len(ids) - len(missing)} cached)")
            found, answered = self._lookup(missing)
            for account_id in missing:
                if account_id in found or account_id in answered:
                    self.cache.set(account_id, found.get(account_id))
            try:
                self.cache.save()
            except OSError as e:
                logger.warning(f"Could not persist name cache: {e}")

        return {i: self.cache.get(i) for i in ids}
