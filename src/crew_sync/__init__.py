"""crew-sync - offline-first sync engine for crew scheduling clients."""

from crew_sync.core.operations import (
    CustomOp,
    JobAdd,
    JobDelete,
    JobUpdate,
    KudosReact,
    MediaUpload,
    PendingOperation,
    PolicyUpdate,
    UserUpdate,
)
from crew_sync.errors import (
    AuthorizationError,
    CrewSyncError,
    RemoteError,
    RemoteUnavailableError,
    ValidationError,
)
from crew_sync.sanitize import UNDEFINED, sanitize
from crew_sync.sync.manager import SyncManager
from crew_sync.sync.state import SyncState, SyncStatus

__version__ = "0.1.0"

__all__ = [
    # Mutations
    "CustomOp",
    "JobAdd",
    "JobDelete",
    "JobUpdate",
    "KudosReact",
    "MediaUpload",
    "PendingOperation",
    "PolicyUpdate",
    "UserUpdate",
    # Engine
    "SyncManager",
    "SyncState",
    "SyncStatus",
    # Sanitization
    "UNDEFINED",
    "sanitize",
    # Errors
    "AuthorizationError",
    "CrewSyncError",
    "RemoteError",
    "RemoteUnavailableError",
    "ValidationError",
]
