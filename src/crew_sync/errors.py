"""Exception hierarchy for crew-sync."""

from __future__ import annotations


class CrewSyncError(Exception):
    """Base class for all crew-sync errors."""


class ValidationError(CrewSyncError):
    """A payload is malformed in a way sanitization cannot repair.

    Permanent for the payload's current form: retrying the same bytes will
    fail the same way.
    """

    def __init__(self, field: str, doc_path: str, message: str | None = None) -> None:
        self.field = field
        self.doc_path = doc_path
        self.reason = message or f"{field} is required"
        super().__init__(f'Sync failed: invalid data in "{doc_path}" ({field}: {self.reason})')


class LocalStoreError(CrewSyncError):
    """The local durable store was used incorrectly (not initialized, bad table)."""


class RemoteError(CrewSyncError):
    """A remote store call failed."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RemoteUnavailableError(RemoteError):
    """Transient failure: network down, timeout, or server-side error."""


class AuthorizationError(RemoteError):
    """Authorization could not be established for a remote write."""


class MediaUploadError(RemoteError):
    """A binary upload did not complete."""
