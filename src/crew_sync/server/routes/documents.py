"""Document, collection and object endpoints."""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from crew_sync.remote.base import SERVER_TIMESTAMP
from crew_sync.remote.memory_remote import InMemoryRemoteStore
from crew_sync.server.dependencies import get_remote, require_token, validate_path
from crew_sync.server.models import (
    CollectionResponse,
    DeleteResponse,
    DocumentResponse,
    IncrementRequest,
    UploadResponse,
    WriteDocumentRequest,
)

logger = logging.getLogger(__name__)

MAX_OBJECT_BYTES = 25 * 1024 * 1024

router = APIRouter(tags=["documents"], dependencies=[Depends(require_token)])

Remote = Annotated[InMemoryRemoteStore, Depends(get_remote)]


def _with_server_timestamps(data: dict[str, Any], fields: list[str]) -> dict[str, Any]:
    merged = dict(data)
    for name in fields:
        merged[name] = SERVER_TIMESTAMP
    return merged


# ── Documents ──


@router.post("/documents/{path:path}/increment", response_model=DocumentResponse)
async def increment_field(path: str, body: IncrementRequest, remote: Remote) -> DocumentResponse:
    """Atomically add ``amount`` to a numeric field."""
    doc_path = validate_path(path, document=True)
    data = await remote.increment(
        doc_path,
        body.field,
        body.amount,
        op_id=body.op_id,
        extra=_with_server_timestamps(body.extra, body.server_timestamps),
    )
    return DocumentResponse(path=doc_path, data=data)


@router.get("/documents/{path:path}", response_model=DocumentResponse)
async def get_document(path: str, remote: Remote) -> DocumentResponse:
    doc_path = validate_path(path, document=True)
    data = await remote.get_document(doc_path)
    if data is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return DocumentResponse(path=doc_path, data=data)


@router.put("/documents/{path:path}", response_model=DocumentResponse)
async def put_document(path: str, body: WriteDocumentRequest, remote: Remote) -> DocumentResponse:
    """Write a document, merging by default. Replays of the last op id are ignored."""
    doc_path = validate_path(path, document=True)
    data = await remote.set_document(
        doc_path,
        _with_server_timestamps(body.data, body.server_timestamps),
        op_id=body.op_id,
        merge=body.merge,
    )
    return DocumentResponse(path=doc_path, data=data)


@router.delete("/documents/{path:path}", response_model=DeleteResponse)
async def delete_document(
    path: str,
    remote: Remote,
    op_id: str = Query(..., min_length=1, max_length=128),
) -> DeleteResponse:
    doc_path = validate_path(path, document=True)
    deleted = await remote.delete_document(doc_path, op_id=op_id)
    return DeleteResponse(path=doc_path, deleted=deleted)


@router.get("/collections/{path:path}", response_model=CollectionResponse)
async def list_collection(path: str, remote: Remote) -> CollectionResponse:
    collection = validate_path(path, document=False)
    documents = await remote.list_collection(collection)
    return CollectionResponse(path=collection, documents=documents)


# ── Objects ──


@router.put("/objects/{path:path}", response_model=UploadResponse)
async def upload_object(path: str, request: Request, remote: Remote) -> UploadResponse:
    """Store raw request bytes under ``path``."""
    object_path = validate_path(path)
    data = await request.body()
    if len(data) > MAX_OBJECT_BYTES:
        raise HTTPException(status_code=413, detail="Object too large")
    content_type = request.headers.get("Content-Type", "application/octet-stream")
    await remote.upload_object(object_path, data, content_type)
    logger.debug("Stored object %s (%d bytes)", object_path, len(data))
    return UploadResponse(
        path=object_path,
        url=f"/objects/{object_path}",
        size=len(data),
        content_type=content_type,
    )


@router.get("/objects/{path:path}")
async def download_object(path: str, remote: Remote) -> Response:
    stored = remote.get_object(validate_path(path))
    if stored is None:
        raise HTTPException(status_code=404, detail="Object not found")
    data, content_type = stored
    return Response(content=data, media_type=content_type)
