"""Observable sync status."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from crew_sync.utils.timeutils import Clock, now_ms

if TYPE_CHECKING:
    from crew_sync.sanitize.sanitizer import SanitizeReport
    from crew_sync.storage.base import LocalStore

logger = logging.getLogger(__name__)

LAST_SYNC_KEY = "sync:lastSuccess"
MAX_NOTICE_PATHS = 1000


class SyncStatus(StrEnum):
    OFFLINE = "offline"
    IDLE = "idle"
    PUSHING = "pushing"
    PULLING = "pulling"
    ERROR = "error"


@dataclass(frozen=True)
class SyncState:
    """Immutable snapshot handed to observers."""

    status: SyncStatus = SyncStatus.IDLE
    queued_count: int = 0
    last_error: str | None = None
    last_synced_at: int | None = None
    last_sanitized_at: int | None = None
    notice: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "queuedCount": self.queued_count,
            "lastError": self.last_error,
            "lastSyncedAt": self.last_synced_at,
            "lastSanitizedAt": self.last_sanitized_at,
            "notice": self.notice,
        }


StateListener = Callable[[SyncState], None]


class SyncStatePublisher:
    """Holds the current SyncState and notifies subscribers on every change.

    Listeners are called synchronously, in subscription order. A new
    subscriber is called once immediately with the current state.
    """

    def __init__(
        self,
        store: LocalStore | None = None,
        *,
        clock: Clock = now_ms,
        initial: SyncState | None = None,
    ) -> None:
        self._store = store
        self._clock = clock
        self._state = initial or SyncState()
        self._listeners: list[StateListener] = []
        self._noticed_paths: dict[str, None] = {}
        self._loaded = False

    def get_state(self) -> SyncState:
        return self._state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register ``listener`` and replay the current state to it.

        Returns a function that unregisters it.
        """
        self._listeners.append(listener)
        self._call(listener, self._state)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def update(self, **changes: Any) -> SyncState:
        """Apply field changes; observers hear about it only if something changed."""
        new_state = replace(self._state, **changes)
        if new_state == self._state:
            return self._state
        self._state = new_state
        for listener in list(self._listeners):
            self._call(listener, new_state)
        return new_state

    def _call(self, listener: StateListener, state: SyncState) -> None:
        try:
            listener(state)
        except Exception:
            logger.error("Sync state listener %r failed", listener, exc_info=True)

    # ── Persistence ──

    async def load(self) -> None:
        """Restore ``last_synced_at`` from the local store (first call only)."""
        if self._loaded or self._store is None:
            return
        self._loaded = True
        value = await self._store.get_state(LAST_SYNC_KEY)
        if isinstance(value, int) and not isinstance(value, bool):
            self.update(last_synced_at=value)
        elif value is not None:
            logger.warning("Ignoring unusable %s value %r", LAST_SYNC_KEY, value)

    async def record_success(self, at: int | None = None) -> None:
        stamp = at if at is not None else self._clock()
        self.update(last_synced_at=stamp)
        if self._store is not None:
            await self._store.put_state(LAST_SYNC_KEY, stamp)

    async def refresh_queued(self, count: int) -> None:
        self.update(queued_count=count)

    # ── Diagnostics ──

    def report_sanitization(self, doc_path: str, report: SanitizeReport) -> bool:
        """Surface auto-corrections for ``doc_path`` once.

        Returns True when a notice was published, False for an empty report
        or a path already reported.
        """
        if report.is_empty or doc_path in self._noticed_paths:
            return False
        self._noticed_paths[doc_path] = None
        if len(self._noticed_paths) > MAX_NOTICE_PATHS:
            del self._noticed_paths[next(iter(self._noticed_paths))]

        fixed = report.removed_paths + report.numeric_corrections + report.string_corrections
        logger.warning(
            "Sanitized %s: removed=%s numeric=%s strings=%s warnings=%s",
            doc_path,
            report.removed_paths,
            report.numeric_corrections,
            report.string_corrections,
            report.warnings,
        )
        summary = ", ".join(fixed) if fixed else "; ".join(report.warnings)
        self.update(
            last_sanitized_at=self._clock(),
            notice=f'Auto-corrected "{doc_path}": {summary}',
        )
        return True
