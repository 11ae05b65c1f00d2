"""Remote apply dispatch: one handler per mutation variant."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from crew_sync.core.entities import (
    POLICY_DOC_PATH,
    MediaStatus,
    Table,
    job_doc_path,
    kudos_doc_path,
    media_doc_path,
    media_object_path,
    user_doc_path,
)
from crew_sync.core.operations import (
    MUTATION_TYPES,
    CustomOp,
    JobAdd,
    JobDelete,
    JobUpdate,
    KudosReact,
    MediaUpload,
    Mutation,
    PendingOperation,
    PolicyUpdate,
    UserUpdate,
)
from crew_sync.errors import CrewSyncError, MediaUploadError, ValidationError
from crew_sync.remote.auth import Authorizer, NullAuthorizer
from crew_sync.remote.base import SERVER_TIMESTAMP, RemoteStore
from crew_sync.sanitize.sanitizer import SanitizeReport, sanitize
from crew_sync.sanitize.schema import mutation_doc_path, prepare_mutation
from crew_sync.storage.base import LocalStore

logger = logging.getLogger(__name__)

Handler = Callable[[PendingOperation, Any], Awaitable[None]]
Diagnostics = Callable[[str, SanitizeReport], object]


class RemoteApplyDispatcher:
    """
    Applies one pending operation to the remote store.

    Every handler performs exactly one document write tagged with the
    operation id (media uploads add the binary transfer before it). A
    handler that cannot finish raises and leaves no referencing document
    behind.
    """

    def __init__(
        self,
        remote: RemoteStore,
        store: LocalStore,
        authorizer: Authorizer | None = None,
        *,
        diagnostics: Diagnostics | None = None,
    ) -> None:
        self._remote = remote
        self._store = store
        self._authorizer = authorizer or NullAuthorizer()
        self._diagnostics = diagnostics
        self._handlers: dict[type, Handler] = {
            JobAdd: self._apply_job_write,
            JobUpdate: self._apply_job_write,
            JobDelete: self._apply_job_delete,
            PolicyUpdate: self._apply_policy_update,
            KudosReact: self._apply_kudos_react,
            MediaUpload: self._apply_media_upload,
            UserUpdate: self._apply_user_update,
            CustomOp: self._apply_custom,
        }
        missing = [cls.__name__ for cls in MUTATION_TYPES.values() if cls not in self._handlers]
        if missing:
            raise TypeError(f"No remote handler for {', '.join(missing)}")

    async def apply(self, op: PendingOperation) -> None:
        """Authorize, re-sanitize and perform the remote write for ``op``.

        Raises:
            ValidationError: the payload can no longer be transmitted.
            AuthorizationError: authorization could not be established.
            RemoteError: the write failed.
        """
        mutation: Mutation = op.mutation
        await self._authorizer.ensure_authorized()

        cleaned, report = prepare_mutation(mutation)
        if self._diagnostics is not None and not report.is_empty:
            self._diagnostics(mutation_doc_path(cleaned), report)

        logger.debug("Applying %s %s (attempt %d)", op.type.value, op.id, op.attempt)
        await self._handlers[type(cleaned)](op, cleaned)

    # ── Handlers ──

    async def _apply_job_write(self, op: PendingOperation, mutation: JobAdd | JobUpdate) -> None:
        job = dict(mutation.job)
        job["updatedAt"] = SERVER_TIMESTAMP
        await self._remote.set_document(job_doc_path(job["id"]), job, op_id=op.id, merge=True)

    async def _apply_job_delete(self, op: PendingOperation, mutation: JobDelete) -> None:
        await self._remote.delete_document(job_doc_path(mutation.job_id), op_id=op.id)

    async def _apply_policy_update(self, op: PendingOperation, mutation: PolicyUpdate) -> None:
        policy = dict(mutation.policy)
        policy["updatedAt"] = SERVER_TIMESTAMP
        await self._remote.set_document(POLICY_DOC_PATH, policy, op_id=op.id, merge=True)

    async def _apply_kudos_react(self, op: PendingOperation, mutation: KudosReact) -> None:
        await self._remote.increment(
            kudos_doc_path(mutation.kudos_id),
            f"reactions.{mutation.emoji}",
            1,
            op_id=op.id,
            extra={"lastActor": mutation.by, "updatedAt": SERVER_TIMESTAMP},
        )

    async def _apply_user_update(self, op: PendingOperation, mutation: UserUpdate) -> None:
        changes = dict(mutation.changes)
        changes["updatedAt"] = SERVER_TIMESTAMP
        await self._remote.set_document(
            user_doc_path(mutation.user_id), changes, op_id=op.id, merge=True
        )

    async def _apply_custom(self, op: PendingOperation, mutation: CustomOp) -> None:
        path = str(mutation.payload["path"]).strip("/")
        data = dict(mutation.payload.get("data") or {})
        data["updatedAt"] = SERVER_TIMESTAMP
        await self._remote.set_document(path, data, op_id=op.id, merge=True)

    # ── Media ──

    async def _set_media_status(self, media_id: str, status: MediaStatus, **fields: Any) -> None:
        async with self._store.transaction():
            record = await self._store.get(Table.MEDIA, media_id)
            if record is None:
                return
            record.update(fields)
            record["status"] = status.value
            await self._store.put(Table.MEDIA, media_id, record)

    async def _apply_media_upload(self, op: PendingOperation, mutation: MediaUpload) -> None:
        media_id = mutation.media_id
        record_path = f"media/{media_id}"
        record = await self._store.get(Table.MEDIA, media_id)
        if record is None:
            raise ValidationError("mediaId", record_path, "local media record not found")
        job_id = record.get("jobId")
        if job_id is None:
            raise ValidationError("jobId", record_path)
        if record.get("status") == MediaStatus.SYNCED.value and record.get("remoteUrl"):
            # Replay after the blob was already released.
            logger.debug("Media %s already synced", media_id)
            return
        blob_key = str(record.get("blobKey") or media_id)
        blob = await self._store.get_blob(blob_key)
        if blob is None:
            raise ValidationError("blob", record_path, "local media blob missing")

        object_path = record.get("path") or media_object_path(job_id, op.id, media_id)
        content_type = record.get("mime") or "application/octet-stream"

        await self._set_media_status(media_id, MediaStatus.UPLOADING, lastError=None)
        try:
            remote_url = await self._remote.upload_object(object_path, blob, content_type)
            metadata = sanitize(
                {
                    "id": media_id,
                    "jobId": job_id,
                    "kind": record.get("kind"),
                    "mime": content_type,
                    "remoteUrl": remote_url,
                    "path": object_path,
                    "width": record.get("width"),
                    "height": record.get("height"),
                    "name": media_id,
                },
                media_doc_path(job_id, media_id),
            )
            if self._diagnostics is not None and not metadata.report.is_empty:
                self._diagnostics(media_doc_path(job_id, media_id), metadata.report)
            document = dict(metadata.cleaned)
            document["updatedAt"] = SERVER_TIMESTAMP
            await self._remote.set_document(
                media_doc_path(job_id, media_id), document, op_id=op.id, merge=True
            )
        except CrewSyncError as e:
            await self._set_media_status(media_id, MediaStatus.ERROR, lastError=str(e))
            raise
        except Exception as e:
            await self._set_media_status(media_id, MediaStatus.ERROR, lastError=str(e))
            raise MediaUploadError(f"Upload of media {media_id} failed: {e}") from e

        async with self._store.transaction():
            await self._set_media_status(
                media_id, MediaStatus.SYNCED, remoteUrl=remote_url, path=object_path, lastError=None
            )
            await self._store.delete_blob(blob_key)
