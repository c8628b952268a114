"""
HTTP server for the static front-end.

Serves the world-record leaderboard snapshot, single-player lookups and
health endpoints.
Services (token caches, resident name cache, snapshot cache) are built
once at startup and shared by every request.

Usage:
    tmevents-server            # uvicorn on $PORT (default 3000)
    OR
    from tmevents.server import create_app
    app = create_app(services)
"""

from contextlib import asynccontextmanager
from typing import Literal, Optional

import requests
import uvicorn
from fastapi import FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from tmevents import __version__
from tmevents.config import MAX_QUERY_LIMIT, SERVER_TOKEN_MARGIN_S, ConfigurationError, load_settings
from tmevents.leaderboard.aggregator import epoch_ms, player_tally, query_rows
from tmevents.services import Services
from tmevents.upstream.http import UpstreamError
from tmevents.utils import set_package_log_level, setup_logging

# --- Module Logger ---
logger = setup_logging(__name__)


def _upstream_failure(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=500, content={"error": "upstream request failed", "detail": str(exc)})


def _not_configured(request: Request, exc: Exception) -> JSONResponse:
    logger.warning(f"{request.method} {request.url.path} unavailable: {exc}")
    return JSONResponse(status_code=503, content={"error": "not configured", "detail": str(exc)})


def _no_store(content, status_code: int = 200) -> JSONResponse:
    """Player lookups are per-request and must not be cached by the browser."""
    return JSONResponse(status_code=status_code, content=content, headers={"Cache-Control": "no-store"})


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        services: Pre-built Services (tests pass fakes). When omitted they
            are built from the environment at startup, which fails with
            ConfigurationError if no Nadeo credential is configured.
    """
    settings = services.settings if services is not None else load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = app.state.services is None
        if owned:
            app.state.services = Services.from_env(token_margin_s=SERVER_TOKEN_MARGIN_S)
            logger.info("Services ready")
        try:
            yield
        finally:
            if owned:
                app.state.services.close()

    app = FastAPI(title="Trackmania events", version=__version__, lifespan=lifespan)
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["*"],
    )
    app.add_exception_handler(UpstreamError, _upstream_failure)
    app.add_exception_handler(requests.RequestException, _upstream_failure)
    app.add_exception_handler(ConfigurationError, _not_configured)

    @app.get("/", response_class=PlainTextResponse)
    def root():
        return "OK"

    @app.get("/healthz")
    def healthz():
        return {"ok": True}

    @app.get("/api/ping")
    def ping():
        return {"ok": True, "ts": epoch_ms()}

    @app.get("/api/wr-leaderboard")
    def wr_leaderboard(
        request: Request,
        limit: Optional[int] = Query(None, ge=1, le=MAX_QUERY_LIMIT),
        q: Optional[str] = Query(None, max_length=200),
        source: Optional[Literal["totd", "official"]] = Query(None),
    ):
        snapshot = request.app.state.services.snapshots.get()
        return query_rows(snapshot, limit=limit, q=q, source=source)

    @app.get("/api/wr-players")
    def wr_players(request: Request, q: Optional[str] = Query(None, max_length=200)):
        snapshot = request.app.state.services.snapshots.get()
        return player_tally(snapshot, q=q)

    @app.get("/api/wr-recent")
    def wr_recent(request: Request, limit: Optional[int] = Query(None, ge=1, le=MAX_QUERY_LIMIT)):
        snapshot = request.app.state.services.snapshots.peek()
        if snapshot is None:
            return JSONResponse(
                status_code=503,
                content={"error": "snapshot not ready", "detail": "no leaderboard has been built yet"},
            )
        return query_rows(snapshot, limit=limit)

    # --- Players ---
    @app.get("/api/players/resolve")
    def players_resolve(
        request: Request,
        name: Optional[str] = Query(None, max_length=100),
        account_id: Optional[str] = Query(None, alias="id", max_length=100),
    ):
        name = (name or "").strip()
        account_id = (account_id or "").strip()
        if not name and not account_id:
            return _no_store({"error": "pass ?name= or ?id="}, status_code=400)
        players = request.app.state.services.players
        return _no_store(players.resolve(display_name=name or None, account_id=account_id or None))

    @app.get("/api/players/basic")
    def players_basic(request: Request, account_id: Optional[str] = Query(None, alias="id", max_length=100)):
        account_id = (account_id or "").strip()
        if not account_id:
            return _no_store({"error": "pass ?id="}, status_code=400)
        return _no_store(request.app.state.services.players.basic(account_id))

    @app.get("/api/players/trophies")
    def players_trophies(request: Request, account_id: Optional[str] = Query(None, alias="id", max_length=100)):
        account_id = (account_id or "").strip()
        if not account_id:
            return _no_store({"error": "pass ?id="}, status_code=400)
        return _no_store(request.app.state.services.players.trophies(account_id))

    return app


def main() -> None:
    settings = load_settings()
    set_package_log_level(settings.log_level)
    uvicorn.run(create_app(), host="0.0.0.0", port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
