"""Replicated entity tables and remote document paths."""

from __future__ import annotations

import math
from enum import StrEnum
from typing import Any

BOTH_CREWS = "Both Crews"
POLICY_KEY = "org"
POLICY_DOC_PATH = "config/policy"


class Table(StrEnum):
    """Local entity tables (one per replicated collection)."""

    JOBS = "jobs"
    POLICY = "policy"
    KUDOS = "kudos"
    USERS = "users"
    MEDIA = "media"


class DocumentKind(StrEnum):
    """Schema families known to the sanitizer."""

    JOB = "job"
    POLICY = "policy"
    KUDOS = "kudos"
    USER = "user"
    MEDIA = "media"


class MediaStatus(StrEnum):
    """Local upload status of a media record."""

    PENDING = "pending"
    UPLOADING = "uploading"
    SYNCED = "synced"
    ERROR = "error"


def job_doc_path(job_id: int | str) -> str:
    return f"jobs/{job_id}"


def user_doc_path(user_id: str) -> str:
    return f"users/{user_id}"


def kudos_doc_path(kudos_id: str) -> str:
    return f"kudos/{kudos_id}"


def media_doc_path(job_id: int | str, media_id: str) -> str:
    return f"jobs/{job_id}/media/{media_id}"


def media_object_path(job_id: int | str, op_id: str, media_id: str) -> str:
    """Binary object path; stable per operation so a retried upload overwrites itself."""
    return f"jobs/{job_id}/{op_id}-{media_id}"


def updated_at_of(record: dict[str, Any] | None) -> int:
    """Read a record's logical timestamp, treating anything unusable as 0."""
    if not record:
        return 0
    value = record.get("updatedAt")
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value):
        return int(value)
    return 0
