"""Shared dependencies for hub routes."""

from __future__ import annotations

import hmac
import logging

from fastapi import HTTPException, Request

from crew_sync.remote.memory_remote import InMemoryRemoteStore

logger = logging.getLogger(__name__)


async def get_remote(request: Request) -> InMemoryRemoteStore:
    """The hub's authoritative document store."""
    store: InMemoryRemoteStore = request.app.state.remote
    return store


async def require_token(request: Request) -> None:
    """Check ``Authorization: Bearer <token>`` when the hub is configured with a token."""
    expected: str | None = request.app.state.hub_token
    if not expected:
        return
    header = request.headers.get("Authorization", "")
    scheme, _, supplied = header.partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(
        supplied.strip().encode(), expected.encode()
    ):
        logger.debug("Rejected request to %s: bad or missing token", request.url.path)
        raise HTTPException(status_code=401, detail="Unauthorized")


def validate_path(path: str, *, document: bool | None = None) -> str:
    """Normalize a slash-separated path.

    With ``document`` set, also check the path names a document (even number
    of segments) or a collection (odd number).
    """
    segments = path.strip("/").split("/")
    if not segments or any(s in ("", ".", "..") for s in segments):
        raise HTTPException(status_code=422, detail=f"Invalid path: {path!r}")
    if document is True and len(segments) % 2 != 0:
        raise HTTPException(status_code=422, detail=f"Not a document path: {path!r}")
    if document is False and len(segments) % 2 != 1:
        raise HTTPException(status_code=422, detail=f"Not a collection path: {path!r}")
    return "/".join(segments)
