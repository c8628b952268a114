"""
Shared fixtures: a fake requests session, canned responses, fixed clocks.

Tests never touch the network.
"""

import json
from datetime import date

import pytest
import requests


def make_response(status=200, body=None, url="https://fake.test/", raw=None):
    """Build a real requests.Response with a canned JSON (or raw) body."""
    r = requests.Response()
    r.status_code = status
    r.url = url
    if raw is not None:
        r._content = raw if isinstance(raw, bytes) else raw.encode("utf-8")
    else:
        r._content = json.dumps(body if body is not None else {}).encode("utf-8")
        r.headers["Content-Type"] = "application/json"
    r.encoding = "utf-8"
    return r


class FakeSession:
    """
    Routes (method, url fragment) to canned responses.

    The longest matching fragment wins, the latest route on ties. Each
    route holds a queue: items are consumed in order and the last one
    repeats. An item may be a Response, an exception instance (raised),
    or a callable(method, url, kwargs). Unrouted requests get a 404.
    """

    def __init__(self):
        self.routes = []
        self.calls = []
        self.headers = {}
        self.closed = False

    def route(self, method, fragment, *items):
        self.routes.append((method.upper(), fragment, list(items)))
        return self

    def json(self, method, fragment, body, status=200):
        return self.route(method, fragment, make_response(status, body))

    def request(self, method, url, **kwargs):
        self.calls.append((method.upper(), url, kwargs))
        matches = [r for r in self.routes if r[0] == method.upper() and r[1] in url]
        if not matches:
            return make_response(404, {"error": "no route"}, url=url)
        _, _, queue = max(reversed(matches), key=lambda r: len(r[1]))
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        if callable(item):
            return item(method, url, kwargs)
        return item

    def calls_to(self, fragment, method=None):
        return [
            c for c in self.calls
            if fragment in c[1] and (method is None or c[0] == method.upper())
        ]

    def close(self):
        self.closed = True


class FakeTokens:
    """Stands in for a TokenCache."""

    def __init__(self, token="tok"):
        self.token = token

    def get_access_token(self):
        return self.token

    def nadeo_headers(self):
        return {"Authorization": f"nadeo_v1 t={self.token}"}

    def bearer_headers(self):
        return {"Authorization": f"Bearer {self.token}"}


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def tokens():
    return FakeTokens()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeps():
    """Recording no-op sleep; the list holds every requested delay in seconds."""
    recorded = []
    return recorded


@pytest.fixture
def no_sleep(sleeps):
    return sleeps.append


@pytest.fixture
def july_10():
    return date(2024, 7, 10)
