"""SyncManager: the one object that owns a client's sync engine."""

from __future__ import annotations

import logging
import random
from typing import Any

from crew_sync.config import SyncConfig
from crew_sync.core.entities import MediaStatus, Table
from crew_sync.core.operations import MediaUpload, Mutation, PendingOperation
from crew_sync.errors import CrewSyncError, ValidationError
from crew_sync.remote.auth import Authorizer, NullAuthorizer, StaticTokenAuthorizer
from crew_sync.remote.base import RemoteStore
from crew_sync.storage.base import LocalStore
from crew_sync.sync.connectivity import ConnectivityMonitor
from crew_sync.sync.dispatch import RemoteApplyDispatcher
from crew_sync.sync.maintenance import CleanupSummary, run_local_cleanup
from crew_sync.sync.merge import MergeCallback, RemoteChangeListener
from crew_sync.sync.outbox import OutboxQueue
from crew_sync.sync.scheduler import SyncScheduler
from crew_sync.sync.state import StateListener, SyncState, SyncStatePublisher, SyncStatus
from crew_sync.utils.timeutils import Clock, now_ms

logger = logging.getLogger(__name__)


class SyncManager:
    """
    Composition root wiring outbox, scheduler, dispatcher, listener and
    status publisher around one local store and one remote store.

    Usage:
        async with SyncManager(store, remote) as sync:
            sync.subscribe(print)
            await sync.enqueue(JobAdd(job={...}))
            await sync.wait_idle()

    Construct one per process and pass it to whatever needs sync status.
    """

    def __init__(
        self,
        store: LocalStore,
        remote: RemoteStore,
        *,
        authorizer: Authorizer | None = None,
        config: SyncConfig | None = None,
        connectivity: ConnectivityMonitor | None = None,
        callbacks: dict[str, MergeCallback] | None = None,
        clock: Clock = now_ms,
        rng: random.Random | None = None,
        owns_resources: bool = False,
    ) -> None:
        config = config or SyncConfig()
        self._store = store
        self._remote = remote
        self._owns_resources = owns_resources
        self._clock = clock
        self._started = False

        self.connectivity = connectivity or ConnectivityMonitor()
        self.state = SyncStatePublisher(store, clock=clock)
        diagnostics = self.state.report_sanitization

        self.outbox = OutboxQueue(store, clock=clock, diagnostics=diagnostics)
        self.dispatcher = RemoteApplyDispatcher(
            remote, store, authorizer or NullAuthorizer(), diagnostics=diagnostics
        )
        self.scheduler = SyncScheduler(
            self.outbox,
            self.dispatcher,
            self.state,
            base_retry_ms=config.base_retry_ms,
            max_retry_ms=config.max_retry_ms,
            clock=clock,
            rng=rng,
            online=self.connectivity.online,
        )
        self.listener = RemoteChangeListener(
            remote,
            store,
            self.state,
            callbacks=callbacks,
            diagnostics=diagnostics,
            is_online=lambda: self.connectivity.online,
        )

        self.outbox.set_wake(self._on_due)
        self._unsubscribe_connectivity = self.connectivity.subscribe(self.scheduler.set_online)

    @classmethod
    def from_config(cls, config: SyncConfig, **kwargs: Any) -> SyncManager:
        """Build a manager on the SQLite store and HTTP hub named by ``config``."""
        from crew_sync.remote.http_remote import HttpRemoteStore
        from crew_sync.storage.sqlite_store import SQLiteLocalStore

        if not config.remote_url:
            raise CrewSyncError("No remote configured (set CREWSYNC_REMOTE_URL)")
        authorizer: Authorizer = (
            StaticTokenAuthorizer(config.api_token) if config.api_token else NullAuthorizer()
        )
        remote = HttpRemoteStore(
            config.remote_url,
            authorizer=authorizer,
            timeout=config.request_timeout,
            poll_interval=config.poll_interval,
        )
        return cls(
            SQLiteLocalStore(config.db_path),
            remote,
            authorizer=authorizer,
            config=config,
            owns_resources=True,
            **kwargs,
        )

    @property
    def store(self) -> LocalStore:
        return self._store

    @property
    def remote(self) -> RemoteStore:
        return self._remote

    # ── Lifecycle ──

    async def start(self, *, listen: bool = True, worker: bool = True) -> None:
        """Load persisted status, start the worker and (optionally) the listener."""
        if self._started:
            return
        if self._owns_resources:
            await self._store.initialize()
            await self._remote.connect()
        await self.state.load()
        await self.state.refresh_queued(await self.outbox.count())
        self._started = True
        if worker:
            self.scheduler.start()
        if listen:
            await self.listener.start()

    async def close(self) -> None:
        await self.listener.stop()
        await self.scheduler.stop()
        await self.connectivity.stop()
        self._unsubscribe_connectivity()
        if self._owns_resources:
            await self._remote.close()
            await self._store.close()
        self._started = False

    async def __aenter__(self) -> SyncManager:
        await self.start()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ── Status ──

    def get_state(self) -> SyncState:
        return self.state.get_state()

    def subscribe(self, listener: StateListener) -> Any:
        return self.state.subscribe(listener)

    def set_online(self, online: bool) -> None:
        self.connectivity.set_online(online)

    async def wait_idle(self) -> None:
        await self.scheduler.wait_idle()

    # ── Outbox ──

    def _on_due(self) -> None:
        if self.connectivity.online:
            self.scheduler.wake()

    async def _refresh_queued(self) -> None:
        await self.state.refresh_queued(await self.outbox.count())

    async def enqueue(self, mutation: Mutation) -> str:
        """Validate and queue a mutation.

        A rejected mutation is reported through ``last_error`` (and ``error``
        status while online) before the exception propagates.

        Raises:
            ValidationError: the mutation was not queued.
        """
        try:
            op_id = await self.outbox.enqueue(mutation)
        except ValidationError as e:
            logger.warning("Rejected %s: %s", mutation.type.value, e)
            if self.connectivity.online:
                self.state.update(status=SyncStatus.ERROR, last_error=str(e))
            else:
                self.state.update(last_error=str(e))
            raise
        await self._refresh_queued()
        return op_id

    async def sync_now(self) -> bool:
        """Manual sync: one drain pass over every queued operation, due or not."""
        return await self.scheduler.drain(force=True)

    async def pending(self) -> list[PendingOperation]:
        return await self.outbox.list_pending()

    async def retry(self, op_id: str) -> PendingOperation:
        op = await self.outbox.retry_held(op_id)
        await self._refresh_queued()
        return op

    async def replace_payload(self, op_id: str, mutation: Mutation) -> PendingOperation:
        op = await self.outbox.replace_payload(op_id, mutation)
        await self._refresh_queued()
        return op

    async def discard(self, op_id: str) -> bool:
        removed = await self.outbox.discard(op_id)
        await self._refresh_queued()
        return removed

    async def cleanup(self) -> CleanupSummary:
        """Re-run the schema over stored jobs and queued operations."""
        summary = await run_local_cleanup(self._store, clock=self._clock)
        await self._refresh_queued()
        if summary.pending_fixed:
            self._on_due()
        return summary

    async def capture_media(
        self,
        job_id: int,
        media_id: str,
        data: bytes,
        *,
        mime: str = "application/octet-stream",
        kind: str = "photo",
        width: int | None = None,
        height: int | None = None,
    ) -> str:
        """Store a captured file locally and queue its upload."""
        async with self._store.transaction():
            await self._store.put_blob(media_id, data)
            await self._store.put(
                Table.MEDIA,
                media_id,
                {
                    "id": media_id,
                    "jobId": job_id,
                    "kind": kind,
                    "mime": mime,
                    "width": width,
                    "height": height,
                    "status": MediaStatus.PENDING.value,
                    "createdAt": self._clock(),
                },
            )
        return await self.enqueue(MediaUpload(media_id=media_id))
