"""
HTTP Retry Client

Every outbound call goes through fetch_with_retry(), which retries on
HTTP 429, any 5xx and network-level failures with capped exponential
back-off. HTTP-level failures are never raised here: once retries run
out the final response is handed back as-is and callers decide what a
non-success status means (see expect_json()).
"""

import time
from typing import Any, Callable

import requests

from tmevents.config import (
    BASE_DELAY_MS,
    MAX_DELAY_MS,
    MAX_RETRIES,
    REQUEST_TIMEOUT_S,
    RETRYABLE_STATUSES,
)
from tmevents.utils import setup_logging

# --- Module Logger ---
logger = setup_logging(__name__)


class UpstreamError(Exception):
    """Base class for recoverable upstream failures"""
    pass


class UpstreamHTTPError(UpstreamError):
    """Upstream answered with a non-success status"""

    def __init__(self, status: int, what: str):
        super().__init__(f"{what} failed: {status}")
        self.status = status
        self.what = what


class UpstreamSchemaError(UpstreamError):
    """Upstream answered with a body we cannot interpret"""
    pass


# Transport failures plus the lookup/type errors a drifted payload shape
# raises; callers that isolate one item (a day, a map) catch these.
ITEM_ERRORS = (
    UpstreamError,
    requests.RequestException,
    ValueError,
    TypeError,
    KeyError,
    IndexError,
    AttributeError,
)


def is_retryable_status(status: int) -> bool:
    return status in RETRYABLE_STATUSES or 500 <= status <= 599


def backoff_delay_ms(attempt: int, base_delay_ms: int = BASE_DELAY_MS) -> int:
    """Delay before retry number `attempt` (0-based): min(base * 2^attempt, 8000)."""
    return min(base_delay_ms * (2 ** attempt), MAX_DELAY_MS)


def fetch_with_retry(
    session: requests.Session,
    method: str,
    url: str,
    *,
    max_retries: int = MAX_RETRIES,
    base_delay_ms: int = BASE_DELAY_MS,
    sleep: Callable[[float], None] = time.sleep,
    **kwargs: Any,
) -> requests.Response:
    """
    Perform one logical request with blocking, sequential retries.

    Args:
        session: requests.Session (or compatible) used for the call
        method: HTTP method
        url: Absolute URL
        max_retries: Retries after the first attempt (total attempts = max_retries + 1)
        base_delay_ms: Back-off base in milliseconds
        sleep: Sleep function in seconds (injectable for tests)
        **kwargs: Passed through to session.request()

    Returns:
        The first non-retryable response, or the final response once
        retries are exhausted

    Raises:
        requests.RequestException: If the final attempt failed at the network level
    """
    kwargs.setdefault("timeout", REQUEST_TIMEOUT_S)
    attempts = max(max_retries, 0) + 1

    for attempt in range(attempts):
        last_attempt = attempt == attempts - 1
        try:
            response = session.request(method, url, **kwargs)
        except requests.RequestException as e:
            if last_attempt:
                raise
            wait = backoff_delay_ms(attempt, base_delay_ms)
            logger.debug(f"retry {attempt} err {e} {url} wait={wait}ms")
            sleep(wait / 1000)
            continue

        if not is_retryable_status(response.status_code) or last_attempt:
            return response

        wait = backoff_delay_ms(attempt, base_delay_ms)
        logger.debug(f"retry {attempt} {response.status_code} {url} wait={wait}ms")
        sleep(wait / 1000)

    # range(attempts) always returns or raises on its last iteration
    raise AssertionError("unreachable")


def expect_json(response: requests.Response, what: str) -> Any:
    """
    Decode a successful JSON response.

    Raises:
        UpstreamHTTPError: If the response status is not 2xx
        UpstreamSchemaError: If the body is not valid JSON
    """
    if not response.ok:
        raise UpstreamHTTPError(response.status_code, what)
    try:
        return response.json()
    except ValueError as e:
        raise UpstreamSchemaError(f"{what}: response is not JSON ({e})") from e


def first_present(obj: Any, *keys: str, default: Any = None) -> Any:
    """Return the first non-None value among `keys` of a dict-like payload."""
    if not isinstance(obj, dict):
        return default
    for key in keys:
        value = obj.get(key)
        if value is not None:
            return value
    return default
