"""
Single-player lookups for the profile page.

Name <-> account id resolution goes through the public OAuth API; trophy
points and zone ranks come from Nadeo Live. Both reuse the process-wide
token caches, so a page view never triggers its own login.
"""

from typing import Optional

import requests

from tmevents.config import LIVE_URL, OAUTH_URL, ConfigurationError
from tmevents.upstream.auth import TokenCache
from tmevents.upstream.http import expect_json, fetch_with_retry, first_present
from tmevents.upstream.names import parse_display_names
from tmevents.utils import setup_logging

# --- Module Logger ---
logger = setup_logging(__name__)


def _zone_position(rankings, zone: str):
    entry = rankings.get(zone) if isinstance(rankings, dict) else None
    return first_present(entry, "position")


class PlayerDirectory:
    """
    Args:
        session: Shared HTTP session
        oauth_tokens: TokenCache for the public API, or None when no
            OAuth client is configured
        live_tokens: TokenCache for the Live audience
    """

    def __init__(self, session: requests.Session, oauth_tokens: Optional[TokenCache],
                 live_tokens: TokenCache):
        self.session = session
        self.oauth_tokens = oauth_tokens
        self.live_tokens = live_tokens

    def _oauth_get(self, path: str, params: list, what: str):
        if self.oauth_tokens is None:
            raise ConfigurationError("TM_CLIENT_ID/TM_CLIENT_SECRET are not configured")
        r = fetch_with_retry(
            self.session, "GET", f"{OAUTH_URL}{path}",
            params=params, headers=self.oauth_tokens.bearer_headers(),
        )
        return expect_json(r, what)

    def account_id_for(self, display_name: str) -> Optional[str]:
        data = self._oauth_get(
            "/api/display-names/account-ids", [("displayName[]", display_name)], "account-id lookup",
        )
        account_id = data.get(display_name) if isinstance(data, dict) else None
        return account_id if isinstance(account_id, str) and account_id else None

    def display_name_for(self, account_id: str) -> Optional[str]:
        data = self._oauth_get("/api/display-names", [("accountId[]", account_id)], "display-name lookup")
        return parse_display_names(data).get(account_id)

    def resolve(self, display_name: Optional[str] = None, account_id: Optional[str] = None) -> dict:
        """
        Look a player up by display name or by account id (name wins).

        Returns:
            {"accountId", "displayName"}; the looked-up side is None when
            the upstream does not know the player

        Raises:
            ConfigurationError: If no OAuth client is configured
            UpstreamError: On HTTP failure
        """
        if display_name:
            return {"accountId": self.account_id_for(display_name), "displayName": display_name}
        return {"accountId": account_id, "displayName": self.display_name_for(account_id)}

    def basic(self, account_id: str) -> dict:
        """Profile header; country, zone and avatar are not served upstream yet."""
        return {
            "accountId": account_id,
            "displayName": self.display_name_for(account_id),
            "country": None,
            "zone": None,
            "avatar": None,
        }

    def trophies(self, account_id: str) -> dict:
        """
        Trophy points and world/country/region positions.

        Raises:
            UpstreamError: On HTTP failure
        """
        r = fetch_with_retry(
            self.session, "POST", f"{LIVE_URL}/api/token/leaderboard/trophy/player",
            json={"listPlayer": [{"accountId": account_id}]},
            headers=self.live_tokens.nadeo_headers(),
        )
        data = expect_json(r, "trophy fetch")
        players = data.get("players") if isinstance(data, dict) else None
        player = players[0] if isinstance(players, list) and players and isinstance(players[0], dict) else {}
        rankings = player.get("zoneRankings")
        return {
            "points": player.get("trophyPoints"),
            "worldRank": _zone_position(rankings, "world"),
            "countryRank": _zone_position(rankings, "country"),
            "regionRank": _zone_position(rankings, "region"),
        }
