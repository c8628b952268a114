"""
Shared utilities for the Trackmania events archive.

This module provides common functions used across multiple modules
to avoid code duplication.
"""

import calendar
import json
import logging
import re
import shutil
import tempfile
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Iterator

# --- Shared Regex Patterns ---
# Platform text formatting: $o, $i, $fff, $F00, $<, $>, ... ($$ is a literal dollar)
TM_FORMAT_RE = re.compile(r"\$[0-9a-fA-F]{1,3}|\$[a-zA-Z]|\$[<>\[\]()]")

MONTH_KEY_RE = re.compile(r"^(\d{4})-(\d{2})$")
MONTH_FILE_RE = re.compile(r"^\d{4}-\d{2}\.json$")

_DOLLAR_PLACEHOLDER = "\ufff0"


def strip_tm_formatting(text):
    """Remove $-style formatting codes, keeping escaped `$$` as a single `$`."""
    if not text or not isinstance(text, str):
        return text
    s = text.replace("$$", _DOLLAR_PLACEHOLDER)
    s = TM_FORMAT_RE.sub("", s)
    return s.replace(_DOLLAR_PLACEHOLDER, "$")


# --- Logging Setup ---
def setup_logging(name: str | None = None, level: int | str = logging.INFO) -> logging.Logger:
    """
    Configure and return a logger with consistent formatting.

    Args:
        name: Logger name (usually __name__ from the calling module)
        level: Logging level (default: INFO)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    logger.setLevel(level)
    return logger


def set_package_log_level(level: int | str) -> None:
    """Apply a level to every already-configured tmevents logger."""
    for name, logger in logging.root.manager.loggerDict.items():
        if name.startswith("tmevents") and isinstance(logger, logging.Logger):
            logger.setLevel(level)


# --- Date Helpers ---
def month_key(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def date_key(year: int, month: int, day: int) -> str:
    return f"{year:04d}-{month:02d}-{day:02d}"


def parse_month_key(key: str) -> tuple[int, int]:
    """
    Parse a "YYYY-MM" key.

    Raises:
        ValueError: If the key is malformed or the month is out of range
    """
    m = MONTH_KEY_RE.match(key or "")
    if not m:
        raise ValueError(f"Invalid month key: {key!r} (expected YYYY-MM)")
    year, month = int(m.group(1)), int(m.group(2))
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month in key: {key!r}")
    return year, month


def days_of_month(year: int, month: int) -> Iterator[int]:
    """Yield day numbers 1..N for the given month."""
    yield from range(1, calendar.monthrange(year, month)[1] + 1)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def previous_month(year: int, month: int) -> tuple[int, int]:
    if month == 1:
        return year - 1, 12
    return year, month - 1


def parse_utc_datetime(value: Any) -> datetime | None:
    """
    Parse an upstream timestamp into an aware UTC datetime.

    Accepts ISO-8601 strings (with or without a trailing Z) and epoch
    seconds. Returns None for anything else.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    return None


def chunked(items: list, size: int) -> Iterator[list]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


# --- File Operations ---
def load_json(path: Path, fallback: Any = None) -> Any:
    """
    Read a JSON document, returning `fallback` when the file does not exist.

    Malformed JSON is not swallowed: json.JSONDecodeError propagates so
    callers never mistake a damaged document for an empty one.
    """
    if not path.exists():
        return fallback
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def dump_json(obj: Any) -> str:
    """Serialize the way every persisted document is written (2-space indent)."""
    return json.dumps(obj, indent=2, ensure_ascii=False)


def atomic_write_json(obj: Any, path: Path) -> None:
    """
    Write a JSON document atomically using a temporary file.

    This prevents data corruption if the write is interrupted.

    Args:
        obj: JSON-serializable object
        path: Destination path for the document
    """
    logger = setup_logging(__name__)

    # Ensure parent directory exists
    path.parent.mkdir(parents=True, exist_ok=True)

    # Write to temp file first
    try:
        with tempfile.NamedTemporaryFile(
            mode='w',
            delete=False,
            suffix='.tmp',
            dir=path.parent,  # Same filesystem for atomic move
            encoding='utf-8'
        ) as tmp:
            tmp_path = Path(tmp.name)
            tmp.write(dump_json(obj))

        # Atomic move (rename) to final destination
        shutil.move(str(tmp_path), str(path))
        logger.debug(f"Atomically wrote {path}")

    except Exception:
        # Clean up temp file if it exists
        if 'tmp_path' in locals() and tmp_path.exists():
            tmp_path.unlink()
        raise


__all__ = [
    # Logging
    'setup_logging',
    'set_package_log_level',
    # File operations
    'load_json',
    'dump_json',
    'atomic_write_json',
    # Dates
    'month_key',
    'date_key',
    'parse_month_key',
    'days_of_month',
    'utc_today',
    'previous_month',
    'parse_utc_datetime',
    # Text
    'TM_FORMAT_RE',
    'MONTH_FILE_RE',
    'strip_tm_formatting',
    'chunked',
]
