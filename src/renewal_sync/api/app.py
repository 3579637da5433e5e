"""Renewal Sync API: FastAPI application factory."""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from renewal_sync import __version__
from renewal_sync.api.deps import init_dependencies, shutdown_dependencies
from renewal_sync.api.middleware import register_error_handlers
from renewal_sync.api.routers.calendar_sync import router as calendar_sync_router

logger = logging.getLogger(__name__)


def create_app(
    cors_origins: list[str] | None = None,
    config_path: str | Path | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    cors_origins:
        Allowed CORS origins. Defaults to ``["http://localhost:5173"]``.
    config_path:
        Path to ``renewal_sync.toml`` or its directory, loaded at startup.
        Falls back to ``$RENEWAL_SYNC_CONFIG`` and then the defaults.
    """
    if cors_origins is None:
        cors_origins = ["http://localhost:5173"]

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_dependencies(config_path)
        yield
        shutdown_dependencies()

    app = FastAPI(
        title="Renewal Sync API",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)
    app.include_router(calendar_sync_router)

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    return app
