"""Pydantic models for the hub API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

# ============ Request Models ============


class WriteDocumentRequest(BaseModel):
    """Write (or merge into) one document."""

    data: dict[str, Any] = Field(default_factory=dict, description="Document fields")
    op_id: str = Field(..., min_length=1, max_length=128, description="Producing operation id")
    merge: bool = Field(True, description="Merge into the existing document")
    server_timestamps: list[str] = Field(
        default_factory=list,
        max_length=32,
        description="Fields the hub sets to its own per-document clock",
    )


class IncrementRequest(BaseModel):
    """Atomically add to a numeric field."""

    field: str = Field(..., min_length=1, max_length=256, description="Dotted field path")
    amount: int = Field(1, description="Amount to add")
    op_id: str = Field(..., min_length=1, max_length=128)
    extra: dict[str, Any] = Field(default_factory=dict, description="Fields merged in the same write")
    server_timestamps: list[str] = Field(default_factory=list, max_length=32)


# ============ Response Models ============


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "healthy"
    version: str


class DocumentResponse(BaseModel):
    path: str
    data: dict[str, Any]


class DeleteResponse(BaseModel):
    path: str
    deleted: bool


class CollectionResponse(BaseModel):
    path: str
    documents: list[dict[str, Any]]


class UploadResponse(BaseModel):
    path: str
    url: str
    size: int
    content_type: str


class ChangeItem(BaseModel):
    path: str
    data: dict[str, Any] | None = None
    seq: int


class ChangesResponse(BaseModel):
    """Changes under a collection (or document) after a cursor."""

    collection: str
    changes: list[ChangeItem]
    cursor: int = Field(..., description="Pass back as ``since`` on the next poll")
    snapshot: bool = Field(False, description="True when ``changes`` is a full snapshot")
