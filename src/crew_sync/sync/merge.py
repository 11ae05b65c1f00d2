"""Inbound remote changes merged into the local store with last-write-wins."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from crew_sync.core.entities import (
    POLICY_DOC_PATH,
    POLICY_KEY,
    DocumentKind,
    Table,
    updated_at_of,
)
from crew_sync.errors import ValidationError
from crew_sync.remote.base import ChangeBatch, DocumentChange, RemoteStore, Unsubscribe
from crew_sync.sanitize.sanitizer import SanitizeReport
from crew_sync.sanitize.schema import prepare_document
from crew_sync.storage.base import LocalStore
from crew_sync.sync.state import SyncStatePublisher, SyncStatus

logger = logging.getLogger(__name__)

MergeCallback = Callable[[list[dict[str, Any]]], Any]
Diagnostics = Callable[[str, SanitizeReport], object]


def should_accept_incoming(
    local: dict[str, Any] | None, incoming: dict[str, Any]
) -> bool:
    """The one last-write-wins rule: higher ``updatedAt`` wins, the remote wins ties."""
    if local is None:
        return True
    return updated_at_of(incoming) >= updated_at_of(local)


@dataclass(frozen=True)
class CollectionBinding:
    """Which remote path feeds which local table, under which schema."""

    name: str
    remote_path: str
    table: Table
    kind: DocumentKind

    def local_key(self, record: dict[str, Any]) -> str:
        if self.kind == DocumentKind.POLICY:
            return POLICY_KEY
        return str(record["id"])


DEFAULT_BINDINGS: tuple[CollectionBinding, ...] = (
    CollectionBinding("jobs", "jobs", Table.JOBS, DocumentKind.JOB),
    CollectionBinding("policy", POLICY_DOC_PATH, Table.POLICY, DocumentKind.POLICY),
    CollectionBinding("kudos", "kudos", Table.KUDOS, DocumentKind.KUDOS),
    CollectionBinding("users", "users", Table.USERS, DocumentKind.USER),
)


@dataclass
class MergeResult:
    accepted: list[dict[str, Any]]
    rejected: int = 0
    skipped: int = 0
    deleted: int = 0


class RemoteChangeListener:
    """
    Subscribes to the remote collections and merges every batch into the
    local store inside one transaction.

    Malformed remote records are skipped with a warning; one bad document
    never stops the subscription. Domain callbacks (``on_jobs`` etc.)
    receive the records that were actually written.
    """

    def __init__(
        self,
        remote: RemoteStore,
        store: LocalStore,
        state: SyncStatePublisher,
        *,
        bindings: tuple[CollectionBinding, ...] = DEFAULT_BINDINGS,
        callbacks: dict[str, MergeCallback] | None = None,
        diagnostics: Diagnostics | None = None,
        is_online: Callable[[], bool] = lambda: True,
    ) -> None:
        self._remote = remote
        self._store = store
        self._state = state
        self._bindings = bindings
        self._callbacks = dict(callbacks or {})
        self._diagnostics = diagnostics
        self._is_online = is_online
        self._unsubscribes: list[Unsubscribe] = []

    @property
    def running(self) -> bool:
        return bool(self._unsubscribes)

    def on(self, name: str, callback: MergeCallback) -> None:
        """Register the domain callback for a binding (``"jobs"``, ``"policy"``...)."""
        self._callbacks[name] = callback

    async def start(self) -> None:
        """Subscribe to every binding. Failures surface as ``error`` status.

        An ``error`` status already showing (a failed drain) and its message
        survive a restart.
        """
        if self.running:
            return
        was_error = self._state.get_state().status == SyncStatus.ERROR
        if was_error:
            self._state.update(status=SyncStatus.PULLING)
        else:
            self._state.update(status=SyncStatus.PULLING, last_error=None)
        try:
            for binding in self._bindings:
                unsubscribe = await self._remote.subscribe(
                    binding.remote_path,
                    self._batch_handler(binding),
                    self._error_handler(binding),
                )
                self._unsubscribes.append(unsubscribe)
        except Exception as e:
            logger.error("Remote subscription bootstrap failed", exc_info=True)
            self._state.update(status=SyncStatus.ERROR, last_error=str(e))
            return

        if self._state.get_state().status == SyncStatus.PULLING:
            if not self._is_online():
                status = SyncStatus.OFFLINE
            elif was_error:
                status = SyncStatus.ERROR
            else:
                status = SyncStatus.IDLE
            self._state.update(status=status)

    async def stop(self) -> None:
        for unsubscribe in self._unsubscribes:
            unsubscribe()
        self._unsubscribes.clear()

    def _batch_handler(self, binding: CollectionBinding) -> Callable[[ChangeBatch], Any]:
        async def handle(batch: ChangeBatch) -> None:
            await self.handle_batch(binding, batch)

        return handle

    def _error_handler(self, binding: CollectionBinding) -> Callable[[Exception], None]:
        def handle(error: Exception) -> None:
            logger.error("%s subscription error: %s", binding.name, error)
            self._state.update(status=SyncStatus.ERROR, last_error=str(error))

        return handle

    async def handle_batch(self, binding: CollectionBinding, batch: ChangeBatch) -> MergeResult:
        result = await self.merge_changes(binding, batch.changes)
        if result.accepted:
            await self._notify(binding, result.accepted)
            await self._state.record_success()
        logger.debug(
            "Merged %s batch: %d accepted, %d rejected, %d skipped, %d deleted",
            binding.name,
            len(result.accepted),
            result.rejected,
            result.skipped,
            result.deleted,
        )
        return result

    async def merge_changes(
        self, binding: CollectionBinding, changes: list[DocumentChange]
    ) -> MergeResult:
        """Apply one batch atomically using :func:`should_accept_incoming`."""
        result = MergeResult(accepted=[])
        async with self._store.transaction():
            for change in changes:
                if change.deleted:
                    if binding.kind != DocumentKind.POLICY and await self._store.delete(
                        binding.table, change.id
                    ):
                        result.deleted += 1
                    continue

                record = self._prepare(binding, change)
                if record is None:
                    result.skipped += 1
                    continue

                key = binding.local_key(record)
                local = await self._store.get(binding.table, key)
                if should_accept_incoming(local, record):
                    await self._store.put(binding.table, key, record)
                    result.accepted.append(record)
                else:
                    result.rejected += 1
        return result

    def _prepare(self, binding: CollectionBinding, change: DocumentChange) -> dict[str, Any] | None:
        data = dict(change.data or {})
        if binding.kind != DocumentKind.POLICY:
            data.setdefault("id", change.id)
        try:
            prepared = prepare_document(binding.kind, data, change.path, permissive=True)
        except ValidationError as e:
            logger.warning("Skipping malformed remote record %s: %s", change.path, e)
            return None
        if self._diagnostics is not None and not prepared.report.is_empty:
            self._diagnostics(change.path, prepared.report)
        return prepared.cleaned

    async def _notify(self, binding: CollectionBinding, records: list[dict[str, Any]]) -> None:
        callback = self._callbacks.get(binding.name)
        if callback is None:
            return
        try:
            outcome = callback(records)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.error("%s callback failed", binding.name, exc_info=True)
