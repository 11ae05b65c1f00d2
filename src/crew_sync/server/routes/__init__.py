"""API routes for the crew-sync hub."""

from crew_sync.server.routes.changes import router as changes_router
from crew_sync.server.routes.documents import router as documents_router

__all__ = ["changes_router", "documents_router"]
