"""
Tests for the HTTP retry client.
"""

import pytest
import requests

from tmevents.upstream.http import (
    UpstreamHTTPError,
    UpstreamSchemaError,
    backoff_delay_ms,
    expect_json,
    fetch_with_retry,
    first_present,
    is_retryable_status,
)
from conftest import make_response

URL = "https://api.test/thing"


class TestRetryableStatus:
    """Tests for is_retryable_status."""

    def test_rate_limited(self):
        assert is_retryable_status(429)

    def test_server_errors(self):
        assert is_retryable_status(500)
        assert is_retryable_status(503)
        assert is_retryable_status(599)

    def test_client_errors_not_retried(self):
        assert not is_retryable_status(400)
        assert not is_retryable_status(401)
        assert not is_retryable_status(404)

    def test_success(self):
        assert not is_retryable_status(200)


class TestBackoff:
    """Tests for backoff_delay_ms."""

    def test_doubles(self):
        assert [backoff_delay_ms(n) for n in range(4)] == [500, 1000, 2000, 4000]

    def test_capped(self):
        assert backoff_delay_ms(4) == 8000
        assert backoff_delay_ms(10) == 8000

    def test_custom_base(self):
        assert backoff_delay_ms(2, base_delay_ms=100) == 400


class TestFetchWithRetry:
    """Tests for fetch_with_retry."""

    def test_success_first_try(self, session, sleeps, no_sleep):
        session.json("GET", "/thing", {"ok": True})
        r = fetch_with_retry(session, "GET", URL, sleep=no_sleep)
        assert r.status_code == 200
        assert len(session.calls) == 1
        assert sleeps == []

    def test_server_error_forever_is_bounded(self, session, sleeps, no_sleep):
        session.json("GET", "/thing", {}, status=500)
        r = fetch_with_retry(session, "GET", URL, max_retries=5, sleep=no_sleep)
        assert r.status_code == 500
        assert len(session.calls) == 6
        # no sleep after the final attempt
        assert sleeps == [0.5, 1.0, 2.0, 4.0, 8.0]

    def test_recovers_after_rate_limit(self, session, sleeps, no_sleep):
        session.route("GET", "/thing", make_response(429), make_response(200, {"v": 1}))
        r = fetch_with_retry(session, "GET", URL, sleep=no_sleep)
        assert r.status_code == 200
        assert r.json() == {"v": 1}
        assert len(session.calls) == 2
        assert sleeps == [0.5]

    def test_client_error_not_retried(self, session, sleeps, no_sleep):
        session.json("GET", "/thing", {}, status=404)
        r = fetch_with_retry(session, "GET", URL, sleep=no_sleep)
        assert r.status_code == 404
        assert len(session.calls) == 1
        assert sleeps == []

    def test_network_error_then_success(self, session, sleeps, no_sleep):
        session.route("GET", "/thing", requests.ConnectionError("reset"), make_response(200, {}))
        r = fetch_with_retry(session, "GET", URL, sleep=no_sleep)
        assert r.status_code == 200
        assert len(session.calls) == 2

    def test_network_error_reraised_when_exhausted(self, session, sleeps, no_sleep):
        session.route("GET", "/thing", requests.ConnectionError("down"))
        with pytest.raises(requests.ConnectionError):
            fetch_with_retry(session, "GET", URL, max_retries=2, sleep=no_sleep)
        assert len(session.calls) == 3
        assert len(sleeps) == 2

    def test_zero_retries(self, session, sleeps, no_sleep):
        session.json("GET", "/thing", {}, status=503)
        r = fetch_with_retry(session, "GET", URL, max_retries=0, sleep=no_sleep)
        assert r.status_code == 503
        assert len(session.calls) == 1
        assert sleeps == []

    def test_default_timeout_and_passthrough(self, session, no_sleep):
        session.json("POST", "/thing", {})
        fetch_with_retry(session, "POST", URL, json={"a": 1}, sleep=no_sleep)
        _, _, kwargs = session.calls[0]
        assert kwargs["json"] == {"a": 1}
        assert kwargs["timeout"] > 0


class TestExpectJson:
    """Tests for expect_json."""

    def test_decodes(self):
        assert expect_json(make_response(200, [1, 2]), "thing") == [1, 2]

    def test_http_error(self):
        with pytest.raises(UpstreamHTTPError) as exc:
            expect_json(make_response(401, {}), "thing")
        assert exc.value.status == 401
        assert "thing" in str(exc.value)

    def test_schema_error(self):
        with pytest.raises(UpstreamSchemaError):
            expect_json(make_response(200, raw="<html>"), "thing")


class TestFirstPresent:
    """Tests for first_present."""

    def test_first_non_none(self):
        assert first_present({"a": None, "b": 2, "c": 3}, "a", "b", "c") == 2

    def test_default(self):
        assert first_present({}, "a", default="x") == "x"

    def test_non_dict(self):
        assert first_present([1], "a") is None
