"""FastAPI application factory for the hub."""

from __future__ import annotations

import logging

from fastapi import FastAPI

from crew_sync import __version__
from crew_sync.remote.memory_remote import InMemoryRemoteStore
from crew_sync.server.models import HealthResponse
from crew_sync.server.routes import changes_router, documents_router

logger = logging.getLogger(__name__)


def create_app(
    store: InMemoryRemoteStore | None = None,
    *,
    token: str | None = None,
    title: str = "crew-sync hub",
) -> FastAPI:
    """
    Create and configure the hub application.

    Args:
        store: Authoritative document store (a fresh in-memory one by default)
        token: Bearer token required on every data route; the configured
            ``hub_token`` is used when omitted
        title: API title

    Returns:
        Configured FastAPI application
    """
    if token is None:
        from crew_sync.config import get_config

        token = get_config().hub_token

    app = FastAPI(
        title=title,
        description="Shared document store for offline-first crew clients",
        version=__version__,
        docs_url="/docs",
    )
    app.state.remote = store or InMemoryRemoteStore()
    app.state.hub_token = token

    app.include_router(documents_router)
    app.include_router(changes_router)

    @app.get("/health", response_model=HealthResponse, tags=["health"])
    async def health_check() -> HealthResponse:
        """Health check endpoint."""
        return HealthResponse(status="healthy", version=__version__)

    if token:
        logger.info("Hub requires a bearer token")
    return app


def create_default_app() -> FastAPI:
    """Factory used by ``crewsync serve`` (uvicorn ``factory=True``)."""
    return create_app()
