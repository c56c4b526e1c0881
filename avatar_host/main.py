"""
Avatar Host - Main FastAPI Application

A small avatar hosting service:
- POST /upload/{user_id} stores a new avatar (bearer token required)
- GET /avatars/{user_id} serves the current avatar (public)
- GET /stats shows how many images are stored (public)

Request pipeline, outermost first: access log -> auth gate -> router.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from .avatars import RetrievalService, UploadService
from .avatars import router as avatars_router
from .config import Settings, load_settings
from .errors import AvatarHostError, StartupError, avatar_host_exception_handler
from .logging_utils import RequestLogMiddleware, configure_logging
from .security import AuthGateMiddleware
from .stats import build_templates
from .stats import router as stats_router
from .store import BlobStore, PointerStore

logger = logging.getLogger("avatar_host.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown tasks."""
    settings: Settings = app.state.settings

    # Fails startup if the storage root cannot be created
    app.state.blob_store.ensure_root()

    logger.info("Starting %s v%s", settings.SERVICE_NAME, settings.SERVICE_VERSION)
    logger.info("Storage root: %s", settings.upload_root.resolve())
    logger.info("Statistics page available at http://%s:%s/stats", settings.HOST, settings.PORT)
    yield
    logger.info("Shutting down %s", settings.SERVICE_NAME)


def create_app(settings: Settings) -> FastAPI:
    """
    Assemble the application around an already-loaded configuration.

    Components get their configuration from `settings`; nothing here reads
    the environment.
    """
    app = FastAPI(
        title=settings.SERVICE_NAME,
        description="Upload and serve user avatars.",
        version=settings.SERVICE_VERSION,
        lifespan=lifespan,
    )

    blobs = BlobStore(settings.upload_root)
    pointers = PointerStore(settings.upload_root)

    app.state.settings = settings
    app.state.blob_store = blobs
    app.state.pointer_store = pointers
    app.state.upload_service = UploadService(blobs, pointers, max_bytes=settings.max_upload_bytes)
    app.state.retrieval_service = RetrievalService(blobs, pointers)
    app.state.templates = build_templates()

    app.add_exception_handler(AvatarHostError, avatar_host_exception_handler)

    # add_middleware wraps, so the last one added runs first
    app.add_middleware(AuthGateMiddleware, secret=settings.AUTH_TOKEN)
    app.add_middleware(RequestLogMiddleware)

    app.include_router(avatars_router)
    app.include_router(stats_router)
    return app


def run() -> None:
    """Console entry point: load configuration, then serve until interrupted."""
    try:
        settings = load_settings()
    except StartupError as e:
        configure_logging()
        logger.error("%s", e)
        raise SystemExit(1) from e

    configure_logging(settings.LOG_LEVEL)
    logger.info("Starting server at http://%s:%s", settings.HOST, settings.PORT)
    logger.info("Using authentication token from environment variable")

    uvicorn.run(
        create_app(settings),
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
