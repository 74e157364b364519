"""LocalHub API: FastAPI application factory.

The app factory creates a FastAPI instance with:
- CORS middleware (the configured UI origin)
- Lifespan handler that builds the store, OAuth managers and gateways and
  closes the provider HTTP clients on shutdown
- Health endpoint at GET /api/health
- Plugin store, Google Calendar and Strava routers under /api/plugins
- Optional static file serving for the built frontend (PUBLIC_DIR)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.staticfiles import StaticFiles

from localhub import __version__
from localhub.api.deps import HubServices, build_services
from localhub.api.middleware import register_error_handlers
from localhub.api.models import HealthResponse
from localhub.api.routers.calendar import router as calendar_router
from localhub.api.routers.store import router as store_router
from localhub.api.routers.strava import router as strava_router
from localhub.config import HubConfig, load_config

logger = logging.getLogger(__name__)


def _utc_timestamp() -> str:
    now = datetime.now(UTC)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def create_app(
    config: HubConfig | None = None,
    services: HubServices | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    config:
        Server configuration. Defaults to :func:`localhub.config.load_config`.
    services:
        Prebuilt services (tests pass ones wired to ``httpx.MockTransport``).
        When omitted they are built from *config* at startup.
    """
    if config is None:
        config = services.config if services is not None else load_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        hub = getattr(app.state, "services", None)
        owned = hub is None
        if owned:
            hub = build_services(config)
            app.state.services = hub
        logger.info(
            "LocalHub API ready (data=%s, google=%s, strava=%s)",
            config.data_dir,
            "configured" if hub.google.is_configured else "not configured",
            "configured" if hub.strava.is_configured else "not configured",
        )
        try:
            yield
        finally:
            # Injected services belong to the caller.
            if owned:
                await hub.aclose()
                app.state.services = None

    app = FastAPI(
        title="LocalHub API",
        version=__version__,
        lifespan=lifespan,
    )
    app.router.redirect_slashes = False
    if services is not None:
        app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[config.cors_origin],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    # Specific plugin routers before the generic /{plugin_id}/store routes.
    app.include_router(calendar_router)
    app.include_router(strava_router)
    app.include_router(store_router)

    @app.get("/api/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", timestamp=_utc_timestamp())

    # --- Static file serving (production) ---
    # Mount AFTER all API routes so /api/* always takes precedence.
    if config.public_dir is not None:
        if config.public_dir.is_dir():
            app.mount(
                "/",
                StaticFiles(directory=str(config.public_dir), html=True),
                name="frontend",
            )
            logger.info("Mounted frontend static files from %s", config.public_dir)
        else:
            logger.warning("PUBLIC_DIR %s does not exist; skipping static mount", config.public_dir)

    return app
