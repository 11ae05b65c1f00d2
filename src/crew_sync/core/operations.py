"""Pending-operation model: a closed family of mutation variants.

Every mutation kind is its own frozen dataclass. ``Mutation`` is the union of
them, and ``MUTATION_TYPES`` maps the persisted ``type`` tag back to the
class, so nothing downstream has to switch on free-form strings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, ClassVar

from crew_sync.errors import ValidationError


class OperationType(StrEnum):
    """Persisted tag of a pending operation."""

    JOB_ADD = "job.add"
    JOB_UPDATE = "job.update"
    JOB_DELETE = "job.delete"
    POLICY_UPDATE = "policy.update"
    KUDOS_REACT = "kudos.react"
    MEDIA_UPLOAD = "media.upload"
    USER_UPDATE = "user.update"
    CUSTOM = "custom"


def _require(payload: dict[str, Any], key: str, op_type: OperationType) -> Any:
    if key not in payload or payload[key] is None:
        raise ValidationError(key, f"pendingOps/{op_type.value}")
    return payload[key]


@dataclass(frozen=True)
class JobAdd:
    """Create a job document."""

    type: ClassVar[OperationType] = OperationType.JOB_ADD
    job: dict[str, Any]

    def to_payload(self) -> dict[str, Any]:
        return {"job": self.job}

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> JobAdd:
        return cls(job=_require(payload, "job", cls.type))


@dataclass(frozen=True)
class JobUpdate:
    """Patch a job document. Only the keys present are written."""

    type: ClassVar[OperationType] = OperationType.JOB_UPDATE
    job: dict[str, Any]

    def to_payload(self) -> dict[str, Any]:
        return {"job": self.job}

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> JobUpdate:
        return cls(job=_require(payload, "job", cls.type))


@dataclass(frozen=True)
class JobDelete:
    type: ClassVar[OperationType] = OperationType.JOB_DELETE
    job_id: int

    def to_payload(self) -> dict[str, Any]:
        return {"jobId": self.job_id}

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> JobDelete:
        return cls(job_id=_require(payload, "jobId", cls.type))


@dataclass(frozen=True)
class PolicyUpdate:
    type: ClassVar[OperationType] = OperationType.POLICY_UPDATE
    policy: dict[str, Any]

    def to_payload(self) -> dict[str, Any]:
        return {"policy": self.policy}

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> PolicyUpdate:
        return cls(policy=_require(payload, "policy", cls.type))


@dataclass(frozen=True)
class KudosReact:
    """Increment one emoji reaction counter on a kudos document."""

    type: ClassVar[OperationType] = OperationType.KUDOS_REACT
    kudos_id: str
    emoji: str
    by: str = "Crew"

    def to_payload(self) -> dict[str, Any]:
        return {"kudosId": self.kudos_id, "emoji": self.emoji, "by": self.by}

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> KudosReact:
        return cls(
            kudos_id=_require(payload, "kudosId", cls.type),
            emoji=_require(payload, "emoji", cls.type),
            by=payload.get("by") or "Crew",
        )


@dataclass(frozen=True)
class MediaUpload:
    """Upload a locally captured media blob, then publish its metadata."""

    type: ClassVar[OperationType] = OperationType.MEDIA_UPLOAD
    media_id: str

    def to_payload(self) -> dict[str, Any]:
        return {"mediaId": self.media_id}

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> MediaUpload:
        return cls(media_id=_require(payload, "mediaId", cls.type))


@dataclass(frozen=True)
class UserUpdate:
    type: ClassVar[OperationType] = OperationType.USER_UPDATE
    user_id: str
    changes: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        return {"userId": self.user_id, "changes": self.changes}

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> UserUpdate:
        return cls(
            user_id=_require(payload, "userId", cls.type),
            changes=_require(payload, "changes", cls.type),
        )


@dataclass(frozen=True)
class CustomOp:
    """Free-form document write: ``{"path": "collection/doc", "data": {...}}``."""

    type: ClassVar[OperationType] = OperationType.CUSTOM
    payload: dict[str, Any]

    def to_payload(self) -> dict[str, Any]:
        return self.payload

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> CustomOp:
        return cls(payload=payload)


Mutation = (
    JobAdd | JobUpdate | JobDelete | PolicyUpdate | KudosReact | MediaUpload | UserUpdate | CustomOp
)

MUTATION_TYPES: dict[OperationType, type[Mutation]] = {
    OperationType.JOB_ADD: JobAdd,
    OperationType.JOB_UPDATE: JobUpdate,
    OperationType.JOB_DELETE: JobDelete,
    OperationType.POLICY_UPDATE: PolicyUpdate,
    OperationType.KUDOS_REACT: KudosReact,
    OperationType.MEDIA_UPLOAD: MediaUpload,
    OperationType.USER_UPDATE: UserUpdate,
    OperationType.CUSTOM: CustomOp,
}


def mutation_from_record(op_type: str, payload: Any) -> Mutation:
    """Rebuild a typed mutation from its persisted tag and payload.

    Raises:
        ValidationError: unknown tag or a payload missing its required keys.
    """
    try:
        tag = OperationType(op_type)
    except ValueError:
        raise ValidationError("type", "pendingOps", f"unknown operation type {op_type!r}") from None
    if not isinstance(payload, dict):
        raise ValidationError("payload", f"pendingOps/{tag.value}", "payload must be an object")
    return MUTATION_TYPES[tag].from_payload(payload)


@dataclass(frozen=True)
class PendingOperation:
    """A durable, not-yet-confirmed mutation in the outbox."""

    id: str
    type: OperationType
    payload: dict[str, Any]
    attempt: int = 0
    next_attempt_at: int = 0
    created_at: int = 0
    updated_at: int = 0
    held_reason: str | None = None

    @property
    def is_held(self) -> bool:
        """Held operations failed validation at apply time and wait for a manual fix."""
        return self.held_reason is not None

    @property
    def mutation(self) -> Mutation:
        return mutation_from_record(self.type, self.payload)

    @property
    def sort_key(self) -> tuple[int, int, str]:
        return (self.next_attempt_at, self.created_at, self.id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "payload": self.payload,
            "attempt": self.attempt,
            "nextAttemptAt": self.next_attempt_at,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "heldReason": self.held_reason,
        }
