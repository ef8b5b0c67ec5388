"""FastAPI application factory.

The identity provider is discovered once at startup; the pending-attempt
reaper runs for the lifetime of the app.
"""
import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from config import Config
from oidc_bridge.endpoints import router as room_router
from oidc_bridge.errors import AppError, app_error_handler
from oidc_bridge.provider import OIDCProvider
from oidc_bridge.stores import PendingAuthStore

logger = logging.getLogger(__name__)

SERVICE_NAME = "room-oidc-bridge"
VERSION = "0.3.0"


def create_app(
    config: Config,
    provider: Optional[OIDCProvider] = None,
    store: Optional[PendingAuthStore] = None,
) -> FastAPI:
    """Build the app around one provider and one pending-attempt store."""
    if provider is None:
        provider = OIDCProvider(
            issuer_url=config.issuer_url,
            client_id=config.client_id,
            client_secret=config.client_secret,
            redirect_uri=config.redirect_uri,
            timeout=config.http_timeout,
        )
    if store is None:
        store = PendingAuthStore(ttl=config.pending_ttl)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"[STARTUP] Using identity provider {config.issuer_url} with client id {config.client_id}")
        await provider.discover()
        logger.info(f"[STARTUP] Listening on {config.listen_addr}, try {config.base_url}/room/{{name}}")

        reaper = asyncio.create_task(store.run_reaper(config.reaper_interval))
        try:
            yield
        finally:
            reaper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reaper
            await provider.aclose()
            logger.info("[SHUTDOWN] Stopped")

    app = FastAPI(
        title="Room OIDC Bridge",
        description="Signs users in at an OpenID Connect provider and hands them a room token",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.provider = provider
    app.state.store = store

    app.add_exception_handler(AppError, app_error_handler)
    app.include_router(room_router)

    # ============== Server Info Endpoints ==============

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": SERVICE_NAME, "pending": len(store)}

    @app.get("/")
    async def root():
        """Root endpoint with server info."""
        return {
            "name": SERVICE_NAME,
            "version": VERSION,
            "issuer": config.issuer_url,
            "endpoints": {
                "room": f"{config.base_url}/room/{{name}}",
                "callback": config.redirect_uri,
            },
        }

    return app
