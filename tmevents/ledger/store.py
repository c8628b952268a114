"""
Month document storage.

One JSON document per calendar month (`<dir>/YYYY-MM.json`) plus a
derived index (`<dir>/months.json`) listing every month present, newest
first. The index is never edited by hand: rebuild_index() regenerates it
from the directory listing after each write.
"""

import json
from pathlib import Path

from tmevents.config import MONTH_INDEX_FILENAME
from tmevents.utils import (
    MONTH_FILE_RE,
    atomic_write_json,
    load_json,
    parse_month_key,
    setup_logging,
)

# --- Module Logger ---
logger = setup_logging(__name__)


class LedgerError(Exception):
    """A persisted ledger document cannot be read safely"""
    pass


def empty_month(key: str) -> dict:
    return {"month": key, "days": {}}


class MonthStore:
    """
    Read/write month documents under one directory.

    Args:
        directory: Folder holding YYYY-MM.json files and months.json
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    @property
    def index_path(self) -> Path:
        return self.directory / MONTH_INDEX_FILENAME

    def path_for(self, key: str) -> Path:
        parse_month_key(key)
        return self.directory / f"{key}.json"

    def load(self, key: str) -> dict:
        """
        Load a month document, or a fresh empty one if none exists yet.

        Raises:
            LedgerError: If the file exists but is not a valid month document
        """
        path = self.path_for(key)
        try:
            data = load_json(path, fallback=None)
        except (OSError, json.JSONDecodeError) as e:
            raise LedgerError(f"Cannot read {path}: {e}") from e

        if data is None:
            return empty_month(key)
        if not isinstance(data, dict) or not isinstance(data.get("days", {}), dict):
            raise LedgerError(f"{path} is not a month document")

        data.setdefault("month", key)
        data.setdefault("days", {})
        return data

    def save(self, document: dict) -> Path:
        """Write one month document atomically (days sorted by date)."""
        key = document["month"]
        path = self.path_for(key)
        ordered = dict(document)
        ordered["days"] = dict(sorted(document.get("days", {}).items()))
        atomic_write_json(ordered, path)
        logger.info(f"Wrote {path}")
        return path

    def months(self) -> list:
        """Month keys present on disk, newest first."""
        if not self.directory.is_dir():
            return []
        keys = [
            p.stem for p in self.directory.iterdir()
            if p.is_file() and MONTH_FILE_RE.match(p.name)
        ]
        return sorted(keys, reverse=True)

    def rebuild_index(self) -> list:
        months = self.months()
        atomic_write_json({"months": months}, self.index_path)
        return months
