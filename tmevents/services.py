"""
Service wiring.

One Services object owns everything that must live for the whole process:
the HTTP session, the token caches, the name caches and resolvers, the
ledger engines and the leaderboard snapshot cache. The CLI builds one per
run; the web server builds one at startup and shares it between requests.

The ledger and the server keep separate name caches: the ledger's is
persisted next to the month documents, the server's lives in memory.
"""

from typing import Optional

import requests

from tmevents.config import (
    CORE_AUDIENCE,
    LEDGER_TOKEN_MARGIN_S,
    LIVE_AUDIENCE,
    ConfigurationError,
    Settings,
    load_settings,
)
from tmevents.leaderboard.aggregator import LeaderboardAggregator, SnapshotCache
from tmevents.ledger.engine import LedgerEngine
from tmevents.ledger.store import MonthStore
from tmevents.ledger.today import TodayCard
from tmevents.ledger.totd import TotdArchiver
from tmevents.upstream.auth import (
    NadeoRefreshProvider,
    TokenCache,
    TrackmaniaOAuthProvider,
    UbisoftTicketProvider,
)
from tmevents.upstream.competitions import CompetitionLocator
from tmevents.upstream.maps import LiveMapsClient, MapMetaResolver, TmioClient
from tmevents.upstream.names import (
    CoreDisplayNamesStrategy,
    LiveDisplayNamesPostStrategy,
    LiveDisplayNamesStrategy,
    NameCache,
    NameResolver,
    OAuthDisplayNamesStrategy,
)
from tmevents.upstream.players import PlayerDirectory
from tmevents.utils import setup_logging

# --- Module Logger ---
logger = setup_logging(__name__)


def build_session(user_agent: str) -> requests.Session:
    session = requests.Session()
    session.headers.update({"User-Agent": user_agent, "Accept": "application/json"})
    return session


class Services:
    """
    Long-lived objects built from Settings.

    Args:
        settings: Deployment configuration
        session: HTTP session to use (default: a new one with the configured User-Agent)
        token_margin_s: Refresh tokens this many seconds before expiry
    """

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None,
                 token_margin_s: float = LEDGER_TOKEN_MARGIN_S):
        self.settings = settings
        self.session = session or build_session(settings.user_agent)

        # --- Tokens ---
        if settings.has_ubisoft_login:
            live_provider = UbisoftTicketProvider(
                self.session, settings.ubi_email, settings.ubi_password, settings.ubi_app_id
            )
        else:
            live_provider = NadeoRefreshProvider(self.session, settings.nadeo_refresh_token, LIVE_AUDIENCE)
        self.live_tokens = TokenCache(live_provider, safety_margin_s=token_margin_s)

        self.core_tokens = None
        if settings.nadeo_refresh_token:
            self.core_tokens = TokenCache(
                NadeoRefreshProvider(self.session, settings.nadeo_refresh_token, CORE_AUDIENCE),
                safety_margin_s=token_margin_s,
            )

        self.oauth_tokens = None
        if settings.has_oauth_client:
            self.oauth_tokens = TokenCache(
                TrackmaniaOAuthProvider(self.session, settings.tm_client_id, settings.tm_client_secret),
                safety_margin_s=token_margin_s,
            )

        # --- Display names ---
        self.ledger_resolver = NameResolver(NameCache(settings.names_cache_path), self.name_strategies())
        self.resident_resolver = NameResolver(NameCache(), self.name_strategies())

        # --- Ledgers ---
        self.locator = CompetitionLocator(self.session, self.live_tokens)
        self.cotd_store = MonthStore(settings.cotd_dir)
        self.totd_store = MonthStore(settings.totd_dir)
        self.ledger = LedgerEngine(self.cotd_store, self.locator, self.ledger_resolver)

        self.tmio = TmioClient(self.session)
        self.totd = TotdArchiver(
            self.totd_store, self.tmio, MapMetaResolver(self.session, self.tmio),
            latest_path=settings.totd_latest_path,
        )

        self.maps = LiveMapsClient(self.session, self.live_tokens)
        self.today = TodayCard(
            self.maps, self.tmio, self.locator, self.ledger_resolver, self.ledger,
            path=settings.cotd_today_path,
        )

        # --- Leaderboard ---
        self.aggregator = LeaderboardAggregator(self.maps, self.resident_resolver)
        self.snapshots = SnapshotCache(self.aggregator, ttl_s=settings.wr_ttl_seconds)

        # --- Players ---
        self.players = PlayerDirectory(self.session, self.oauth_tokens, self.live_tokens)

    @classmethod
    def from_env(cls, environ=None, **kwargs) -> "Services":
        """
        Load Settings from the environment and build Services.

        Raises:
            ConfigurationError: If no Nadeo credential is configured
        """
        settings = load_settings(environ)
        settings.require_credentials()
        return cls(settings, **kwargs)

    def name_strategies(self) -> list:
        """Display-name strategies in the order they are tried."""
        strategies = []
        if self.core_tokens is not None:
            strategies.append(CoreDisplayNamesStrategy(self.session, self.core_tokens))
        strategies.append(LiveDisplayNamesStrategy(self.session, self.live_tokens))
        strategies.append(LiveDisplayNamesPostStrategy(self.session, self.live_tokens))
        if self.oauth_tokens is not None:
            strategies.append(OAuthDisplayNamesStrategy(self.session, self.oauth_tokens))
        return strategies

    def close(self) -> None:
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()


__all__ = ["Services", "build_session", "ConfigurationError"]
