"""Sync engine: outbox, scheduler, dispatch, merge and status."""

from crew_sync.sync.backoff import compute_delay
from crew_sync.sync.connectivity import ConnectivityMonitor
from crew_sync.sync.dispatch import RemoteApplyDispatcher
from crew_sync.sync.manager import SyncManager
from crew_sync.sync.merge import RemoteChangeListener, should_accept_incoming
from crew_sync.sync.outbox import OutboxQueue, UnknownOperationError
from crew_sync.sync.scheduler import SyncScheduler
from crew_sync.sync.state import SyncState, SyncStatePublisher, SyncStatus

__all__ = [
    "ConnectivityMonitor",
    "OutboxQueue",
    "RemoteApplyDispatcher",
    "RemoteChangeListener",
    "SyncManager",
    "SyncScheduler",
    "SyncState",
    "SyncStatePublisher",
    "SyncStatus",
    "UnknownOperationError",
    "compute_delay",
    "should_accept_incoming",
]
