"""Core data model: entity tables, mutations, pending operations."""

from crew_sync.core.entities import BOTH_CREWS, DocumentKind, MediaStatus, Table
from crew_sync.core.operations import (
    MUTATION_TYPES,
    CustomOp,
    JobAdd,
    JobDelete,
    JobUpdate,
    KudosReact,
    MediaUpload,
    Mutation,
    OperationType,
    PendingOperation,
    PolicyUpdate,
    UserUpdate,
    mutation_from_record,
)

__all__ = [
    "BOTH_CREWS",
    "DocumentKind",
    "MediaStatus",
    "Table",
    "MUTATION_TYPES",
    "CustomOp",
    "JobAdd",
    "JobDelete",
    "JobUpdate",
    "KudosReact",
    "MediaUpload",
    "Mutation",
    "OperationType",
    "PendingOperation",
    "PolicyUpdate",
    "UserUpdate",
    "mutation_from_record",
]
