"""
Access-token cache and credential providers.

A TokenCache holds one bearer token with its expiry and refreshes it
lazily through a provider. Refreshes are single-flight: while one thread
refreshes, concurrent callers wait for it and reuse the new token.
"""

import base64
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

import requests

from tmevents.config import (
    CORE_URL,
    DEFAULT_TOKEN_LIFETIME_S,
    LEDGER_TOKEN_MARGIN_S,
    LIVE_AUDIENCE,
    LIVE_URL,
    OAUTH_URL,
    UBI_SESSIONS_URL,
)
from tmevents.upstream.http import UpstreamError, expect_json, fetch_with_retry, first_present
from tmevents.utils import setup_logging

# --- Module Logger ---
logger = setup_logging(__name__)


class AuthenticationError(UpstreamError):
    """A credential exchange step failed or returned no token"""
    pass


@dataclass(frozen=True)
class TokenGrant:
    token: str
    expires_in: Optional[float] = None  # seconds; None = provider did not say


def _token_from(payload, what: str) -> str:
    token = first_present(payload, "accessToken", "access_token")
    if not token:
        raise AuthenticationError(f"{what}: no access token in response")
    return token


def _lifetime_from(payload) -> Optional[float]:
    value = first_present(payload, "expiresIn", "expires_in")
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def _checked_json(response, what: str):
    try:
        return expect_json(response, what)
    except UpstreamError as e:
        raise AuthenticationError(str(e)) from e


class NadeoRefreshProvider:
    """Exchange a long-lived Nadeo refresh token for an audience access token."""

    def __init__(self, session: requests.Session, refresh_token: str, audience: str = LIVE_AUDIENCE):
        self.session = session
        self.refresh_token = refresh_token
        self.audience = audience

    def fetch(self) -> TokenGrant:
        r = fetch_with_retry(
            self.session,
            "POST",
            f"{CORE_URL}/v2/authentication/token/refresh",
            headers={
                "Content-Type": "application/json",
                "Authorization": f"nadeo_v1 t={self.refresh_token}",
            },
            json={"audience": self.audience},
        )
        payload = _checked_json(r, "refresh")
        return TokenGrant(_token_from(payload, "refresh"), _lifetime_from(payload))


class UbisoftTicketProvider:
    """
    Three-step login chain: Ubisoft ticket -> NadeoServices token -> NadeoLive token.

    Each step feeds the next; a failure at any step aborts the chain.
    """

    def __init__(self, session: requests.Session, email: str, password: str, app_id: str):
        self.session = session
        self.email = email
        self.password = password
        self.app_id = app_id

    def _ticket(self) -> str:
        credentials = base64.b64encode(f"{self.email}:{self.password}".encode()).decode()
        r = fetch_with_retry(
            self.session,
            "POST",
            UBI_SESSIONS_URL,
            headers={
                "Authorization": f"Basic {credentials}",
                "Ubi-AppId": self.app_id,
                "Ubi-RequestedPlatformType": "uplay",
                "Content-Type": "application/json",
            },
        )
        ticket = first_present(_checked_json(r, "Ubi sign-in"), "ticket")
        if not ticket:
            raise AuthenticationError("Ubi sign-in: no ticket in response")
        return ticket

    def fetch(self) -> TokenGrant:
        ticket = self._ticket()

        r = fetch_with_retry(
            self.session,
            "POST",
            f"{CORE_URL}/v2/authentication/token/ubiservices",
            headers={"Authorization": f"ubi_v1 t={ticket}"},
        )
        services_token = _token_from(_checked_json(r, "NadeoServices token"), "NadeoServices token")

        r = fetch_with_retry(
            self.session,
            "POST",
            f"{LIVE_URL}/api/token/refresh",
            headers={"Authorization": f"nadeo_v1 t={services_token}"},
        )
        payload = _checked_json(r, "NadeoLive token")
        return TokenGrant(_token_from(payload, "NadeoLive token"), _lifetime_from(payload))


class TrackmaniaOAuthProvider:
    """OAuth client-credentials grant for the public Trackmania API (display names)."""

    def __init__(self, session: requests.Session, client_id: str, client_secret: str,
                 scope: str = "basic display-name"):
        self.session = session
        self.client_id = client_id
        self.client_secret = client_secret
        self.scope = scope

    def fetch(self) -> TokenGrant:
        r = fetch_with_retry(
            self.session,
            "POST",
            f"{OAUTH_URL}/api/access_token",
            data={
                "grant_type": "client_credentials",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "scope": self.scope,
            },
        )
        payload = _checked_json(r, "TM OAuth")
        return TokenGrant(_token_from(payload, "TM OAuth"), _lifetime_from(payload))


class TokenCache:
    """
    Single cached bearer token with lazy, single-flight refresh.

    Args:
        provider: Object with fetch() -> TokenGrant
        safety_margin_s: Refresh this many seconds before the declared expiry
        default_lifetime_s: Lifetime assumed when the provider omits one
        clock: Monotonic clock in seconds (injectable for tests)
    """

    def __init__(
        self,
        provider,
        safety_margin_s: float = LEDGER_TOKEN_MARGIN_S,
        default_lifetime_s: float = DEFAULT_TOKEN_LIFETIME_S,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.provider = provider
        self.safety_margin_s = safety_margin_s
        self.default_lifetime_s = default_lifetime_s
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at = 0.0
        self._refresh_lock = threading.Lock()

    def _cached(self) -> Optional[str]:
        token, expires_at = self._token, self._expires_at
        if token and self._clock() < expires_at - self.safety_margin_s:
            return token
        return None

    def get_access_token(self) -> str:
        token = self._cached()
        if token:
            return token

        with self._refresh_lock:
            # Another caller may have refreshed while we waited
            token = self._cached()
            if token:
                return token

            grant = self.provider.fetch()
            lifetime = grant.expires_in if grant.expires_in else self.default_lifetime_s
            self._expires_at = self._clock() + lifetime
            self._token = grant.token
            logger.debug(f"Refreshed access token via {type(self.provider).__name__} ({lifetime:.0f}s)")
            return grant.token

    def invalidate(self) -> None:
        with self._refresh_lock:
            self._token = None
            self._expires_at = 0.0

    def nadeo_headers(self) -> dict:
        return {"Authorization": f"nadeo_v1 t={self.get_access_token()}"}

    def bearer_headers(self) -> dict:
        return {"Authorization": f"Bearer {self.get_access_token()}"}
