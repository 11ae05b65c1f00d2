"""Single-flight sync worker.

One asyncio task owns the drain loop. It sleeps on a wake event whose
timeout is the time until the earliest due operation; that timeout is the
only timer, so duplicate timers cannot exist. ``drain`` itself is guarded
by a ``processing`` flag so a manual sync never overlaps the worker.
"""

from __future__ import annotations

import asyncio
import logging
import random
import sys

from crew_sync.config import DEFAULT_BASE_RETRY_MS, DEFAULT_MAX_RETRY_MS
from crew_sync.core.operations import PendingOperation
from crew_sync.errors import AuthorizationError, ValidationError
from crew_sync.sync.backoff import next_attempt_at
from crew_sync.sync.dispatch import RemoteApplyDispatcher
from crew_sync.sync.outbox import OutboxQueue
from crew_sync.sync.state import SyncStatePublisher, SyncStatus
from crew_sync.utils.timeutils import Clock, now_ms

logger = logging.getLogger(__name__)

FORCE_THRESHOLD = sys.maxsize


class SyncScheduler:
    """Drains due operations in ``(next_attempt_at, created_at)`` order.

    Writes to one document always go out in enqueue order: an operation
    waits behind an older one for the same document that is backing off
    or held.
    """

    def __init__(
        self,
        outbox: OutboxQueue,
        dispatcher: RemoteApplyDispatcher,
        state: SyncStatePublisher,
        *,
        base_retry_ms: int = DEFAULT_BASE_RETRY_MS,
        max_retry_ms: int = DEFAULT_MAX_RETRY_MS,
        clock: Clock = now_ms,
        rng: random.Random | None = None,
        online: bool = True,
    ) -> None:
        self._outbox = outbox
        self._dispatcher = dispatcher
        self._state = state
        self._base_retry_ms = base_retry_ms
        self._max_retry_ms = max_retry_ms
        self._clock = clock
        self._rng = rng or random.Random()
        self._online = online
        self._resume_status = SyncStatus.IDLE
        self._processing = False
        self._wake = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()
        self._pass_done = asyncio.Event()
        self._pass_done.set()
        self._task: asyncio.Task[None] | None = None
        self.drain_passes = 0

    @property
    def online(self) -> bool:
        return self._online

    @property
    def processing(self) -> bool:
        return self._processing

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    # ── Worker lifecycle ──

    def start(self) -> None:
        if self.running:
            return
        if not self._online:
            self._state.update(status=SyncStatus.OFFLINE)
        self._task = asyncio.create_task(self._run(), name="crewsync-scheduler")
        self.wake()

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self._idle.set()

    def wake(self) -> None:
        """Ask the worker to re-check the queue now."""
        self._idle.clear()
        self._wake.set()

    async def wait_idle(self) -> None:
        """Wait until no drain is running and no wake-up is pending."""
        while True:
            if self.running:
                await self._idle.wait()
            if not self._processing:
                return
            await self._pass_done.wait()

    async def _delay_ms(self) -> int | None:
        """Milliseconds until the next operation is due, or None to wait for a wake-up."""
        if not self._online:
            return None
        due = await self._outbox.next_ready_at()
        if due is None:
            return None
        return max(0, min(due - self._clock(), self._max_retry_ms))

    async def _run(self) -> None:
        while True:
            if self._processing:
                await self._pass_done.wait()
                continue
            delay = await self._delay_ms()
            if delay == 0:
                self._wake.clear()
                await self._drain_safely()
                continue

            if not self._wake.is_set():
                self._idle.set()
            try:
                await asyncio.wait_for(
                    self._wake.wait(), timeout=None if delay is None else delay / 1000
                )
            except TimeoutError:
                pass
            self._wake.clear()
            if self._online:
                await self._drain_safely()

    async def _drain_safely(self) -> None:
        try:
            await self.drain()
        except Exception:
            # Local store failure; back off instead of spinning.
            logger.error("Drain pass failed", exc_info=True)
            await asyncio.sleep(self._base_retry_ms / 1000)

    # ── Connectivity ──

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        if online:
            self._state.update(status=self._resume_status)
            self.wake()
        else:
            was_error = self._state.get_state().status == SyncStatus.ERROR
            self._resume_status = SyncStatus.ERROR if was_error else SyncStatus.IDLE
            self._state.update(status=SyncStatus.OFFLINE)
            # Re-arm the worker with no timer.
            self.wake()

    # ── Drain pass ──

    async def drain(self, force: bool = False) -> bool:
        """Apply every due operation (every non-held one when ``force``).

        Stops at the first retryable failure. Operations queued behind a
        failed or held one for the same document stay queued. Returns False
        when skipped because a pass is already running or the client is
        offline.
        """
        if self._processing:
            return False
        if not self._online:
            self._state.update(status=SyncStatus.OFFLINE)
            return False

        self._processing = True
        self._pass_done.clear()
        self.drain_passes += 1
        self._state.update(status=SyncStatus.PUSHING, last_error=None)
        failed = False
        held_messages: list[str] = []
        try:
            while not failed and self._online:
                threshold = FORCE_THRESHOLD if force else self._clock()
                due = await self._outbox.dequeue_ready(threshold)
                if not due:
                    break
                for op in due:
                    if not self._online:
                        break
                    outcome = await self._apply(op)
                    if outcome is False:
                        failed = True
                        break
                    if isinstance(outcome, str):
                        held_messages.append(outcome)

            if not failed:
                self._state.update(
                    status=SyncStatus.IDLE if self._online else SyncStatus.OFFLINE,
                    last_error=held_messages[-1] if held_messages else None,
                )
                if self._online:
                    await self._state.record_success()
        finally:
            self._processing = False
            self._pass_done.set()
            await self._state.refresh_queued(await self._outbox.count())
        return True

    async def _apply(self, op: PendingOperation) -> bool | str:
        """True on success, False on a retryable failure, the message when held."""
        try:
            await self._dispatcher.apply(op)
        except ValidationError as e:
            await self._outbox.hold(op, str(e))
            return str(e)
        except AuthorizationError as e:
            await self._reschedule(op, f"Authorization failed: {e}")
            return False
        except Exception as e:
            logger.error("Failed pending operation %s (%s)", op.id, op.type.value, exc_info=True)
            await self._reschedule(op, str(e) or type(e).__name__)
            return False

        await self._outbox.complete(op.id)
        await self._state.refresh_queued(await self._outbox.count())
        await self._state.record_success()
        return True

    async def _reschedule(self, op: PendingOperation, message: str) -> None:
        attempt = op.attempt + 1
        scheduled = next_attempt_at(
            op.next_attempt_at,
            self._clock(),
            attempt,
            self._base_retry_ms,
            self._max_retry_ms,
            self._rng,
        )
        failed = await self._outbox.record_failure(op, scheduled)
        logger.warning(
            "Retrying %s %s in %d ms (attempt %d): %s",
            op.type.value,
            op.id,
            failed.next_attempt_at - self._clock(),
            failed.attempt,
            message,
        )
        self._state.update(status=SyncStatus.ERROR, last_error=message)
