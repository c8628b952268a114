"""
Central configuration for the Trackmania events archive.

All shared constants and configuration values should be defined here
to avoid duplication and ensure consistency across modules. Values the
deployment supplies (credentials, output root, intervals, CORS origins)
are read from the environment by load_settings().
"""

import os
from dataclasses import dataclass
from pathlib import Path

# --- Upstream Endpoints ---
CORE_URL = "https://prod.trackmania.core.nadeo.online"
LIVE_URL = "https://live-services.trackmania.nadeo.live"
MEET_URL = "https://meet.trackmania.nadeo.club"
OAUTH_URL = "https://api.trackmania.com"
UBI_SESSIONS_URL = "https://public-ubiservices.ubi.com/v3/profiles/sessions"
TMIO_URL = "https://trackmania.io"
TMX_API_URL = "https://trackmania.exchange/api"
TMX_MAPS_URL = "https://trackmania.exchange/maps"

LIVE_AUDIENCE = "NadeoLiveServices"
CORE_AUDIENCE = "NadeoServices"

# --- HTTP Retry Configuration ---
MAX_RETRIES = 5
BASE_DELAY_MS = 500
MAX_DELAY_MS = 8000
REQUEST_TIMEOUT_S = 30
RETRYABLE_STATUSES = frozenset({429})  # plus every 5xx

# --- Token Cache Configuration ---
DEFAULT_TOKEN_LIFETIME_S = 9 * 60  # when the provider does not declare one
LEDGER_TOKEN_MARGIN_S = 10
SERVER_TOKEN_MARGIN_S = 30

# --- Display Names ---
NAME_CHUNK_SIZE = 100
NAMES_CACHE_FILENAME = "_names-cache.json"

# --- Competition Search ---
COMPETITION_PAGE_SIZE = 100
COMPETITION_MAX_PAGES = 60
COTD_KEYWORDS = ("cup of the day", "cotd")
MATCHES_PAGE_SIZE = 50
RESULTS_PAGE_SIZE = 512

# --- Ledger Storage ---
MONTH_INDEX_FILENAME = "months.json"
RESULT_KEY = "cotd"  # day-record slot read by the front-end
TOTD_LATEST_FILENAME = "totd.json"
COTD_TODAY_FILENAME = "cotd.json"

# --- WR Leaderboard ---
LEADERBOARD_GROUP = "Personal_Best"
WR_FANOUT_WIDTH = 8
UNKNOWN_SOURCE = "unknown"
MAX_QUERY_LIMIT = 1000

# --- Watch Mode ---
DEFAULT_UPDATE_EVERY_MS = 15 * 60 * 1000

# --- CORS ---
DEFAULT_CORS_ORIGINS = (
    "https://trackmaniaevents.com",
    "https://www.trackmaniaevents.com",
    "http://localhost:3000",
    "http://localhost:5173",
    "http://localhost:5500",
    "http://127.0.0.1:5500",
)


class ConfigurationError(Exception):
    """Raised when required configuration is missing or malformed"""
    pass


def _int_env(environ, name: str, default: int) -> int:
    raw = (environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")
    if value <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value}")
    return value


@dataclass(frozen=True)
class Settings:
    """Externally supplied configuration, treated as opaque by the engine."""

    nadeo_refresh_token: str = ""
    ubi_email: str = ""
    ubi_password: str = ""
    ubi_app_id: str = ""
    tm_client_id: str = ""
    tm_client_secret: str = ""
    public_dir: Path = Path(".")
    update_every_ms: int = DEFAULT_UPDATE_EVERY_MS
    cors_origins: tuple[str, ...] = DEFAULT_CORS_ORIGINS
    wr_ttl_seconds: int = 60
    user_agent: str = "tmevents/1.0"
    log_level: str = "INFO"
    port: int = 3000

    @property
    def cotd_dir(self) -> Path:
        return self.public_dir / "data" / "cotd"

    @property
    def totd_dir(self) -> Path:
        return self.public_dir / "data" / "totd"

    @property
    def totd_latest_path(self) -> Path:
        return self.public_dir / TOTD_LATEST_FILENAME

    @property
    def cotd_today_path(self) -> Path:
        return self.public_dir / COTD_TODAY_FILENAME

    @property
    def names_cache_path(self) -> Path:
        return self.cotd_dir / NAMES_CACHE_FILENAME

    @property
    def has_ubisoft_login(self) -> bool:
        return bool(self.ubi_email and self.ubi_password and self.ubi_app_id)

    @property
    def has_oauth_client(self) -> bool:
        return bool(self.tm_client_id and self.tm_client_secret)

    def require_credentials(self) -> None:
        """
        Fail fast when no Nadeo credential is configured.

        Raises:
            ConfigurationError: If neither a refresh token nor a full
                Ubisoft login is available
        """
        if not self.nadeo_refresh_token and not self.has_ubisoft_login:
            raise ConfigurationError(
                "Missing NADEO_REFRESH_TOKEN (or UBI_EMAIL/UBI_PASSWORD/UBI_APP_ID)"
            )


def load_settings(environ=None) -> Settings:
    """
    Build Settings from environment variables.

    Args:
        environ: Mapping to read from (default: os.environ)

    Returns:
        Frozen Settings instance

    Raises:
        ConfigurationError: If a numeric variable is malformed
    """
    env = os.environ if environ is None else environ

    extra_origins = tuple(
        o.strip() for o in (env.get("CORS_ORIGINS") or "").split(",") if o.strip()
    )
    origins = tuple(dict.fromkeys(DEFAULT_CORS_ORIGINS + extra_origins))

    return Settings(
        nadeo_refresh_token=(env.get("NADEO_REFRESH_TOKEN") or env.get("REFRESH_TOKEN") or "").strip(),
        ubi_email=(env.get("UBI_EMAIL") or "").strip(),
        ubi_password=env.get("UBI_PASSWORD") or "",
        ubi_app_id=(env.get("UBI_APP_ID") or "").strip(),
        tm_client_id=(env.get("TM_CLIENT_ID") or "").strip(),
        tm_client_secret=env.get("TM_CLIENT_SECRET") or "",
        public_dir=Path((env.get("PUBLIC_DIR") or ".").rstrip("/") or "/"),
        update_every_ms=_int_env(env, "UPDATE_EVERY", DEFAULT_UPDATE_EVERY_MS),
        cors_origins=origins,
        wr_ttl_seconds=_int_env(env, "WR_TTL_SECONDS", 60),
        user_agent=(env.get("USER_AGENT") or "tmevents/1.0").strip(),
        log_level=(env.get("LOG_LEVEL") or "INFO").strip().upper(),
        port=_int_env(env, "PORT", 3000),
    )
