"""Durable outbox of pending mutations."""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from collections.abc import Callable
from dataclasses import replace

from crew_sync.core.operations import Mutation, PendingOperation
from crew_sync.errors import ValidationError
from crew_sync.sanitize.sanitizer import SanitizeReport
from crew_sync.sanitize.schema import mutation_doc_path, prepare_mutation
from crew_sync.storage.base import LocalStore
from crew_sync.utils.timeutils import Clock, now_ms

logger = logging.getLogger(__name__)

Diagnostics = Callable[[str, SanitizeReport], object]


def new_op_id() -> str:
    return uuid.uuid4().hex


class UnknownOperationError(KeyError):
    """No pending operation with the given id."""


def target_path(op: PendingOperation) -> str:
    """Remote document an operation writes; unreadable payloads get a lane of their own."""
    try:
        return mutation_doc_path(op.mutation).strip("/")
    except ValidationError:
        return f"pendingOps/{op.id}"


def _lanes(pending: list[PendingOperation]) -> dict[str, list[PendingOperation]]:
    """Group operations per target document, oldest first."""
    lanes: dict[str, list[PendingOperation]] = defaultdict(list)
    for op in sorted(pending, key=lambda o: (o.created_at, o.id)):
        lanes[target_path(op)].append(op)
    return lanes


class OutboxQueue:
    """
    Appends sanitized mutations to the local store and hands them out in
    due order.

    ``created_at`` is kept strictly increasing within the process so that
    operations enqueued in the same millisecond still drain FIFO.
    """

    def __init__(
        self,
        store: LocalStore,
        *,
        clock: Clock = now_ms,
        id_factory: Callable[[], str] = new_op_id,
        diagnostics: Diagnostics | None = None,
    ) -> None:
        self._store = store
        self._clock = clock
        self._id_factory = id_factory
        self._diagnostics = diagnostics
        self._last_created_at = 0
        self._wake: Callable[[], None] | None = None

    def set_wake(self, wake: Callable[[], None] | None) -> None:
        """Callback run after a new or released operation becomes due."""
        self._wake = wake

    def _notify(self) -> None:
        if self._wake is not None:
            self._wake()

    def _report(self, mutation: Mutation, report: SanitizeReport) -> None:
        if self._diagnostics is not None and not report.is_empty:
            self._diagnostics(f"pendingOps/{mutation_doc_path(mutation)}", report)

    async def enqueue(self, mutation: Mutation) -> str:
        """Sanitize ``mutation`` and persist it as a new PendingOperation.

        Raises:
            ValidationError: nothing is enqueued.
        """
        cleaned, report = prepare_mutation(mutation)
        self._report(cleaned, report)

        now = self._clock()
        created_at = max(now, self._last_created_at + 1)
        self._last_created_at = created_at
        op = PendingOperation(
            id=self._id_factory(),
            type=cleaned.type,
            payload=cleaned.to_payload(),
            attempt=0,
            next_attempt_at=now,
            created_at=created_at,
            updated_at=now,
        )
        await self._store.add_pending(op)
        logger.debug("Enqueued %s %s", op.type.value, op.id)
        self._notify()
        return op.id

    async def dequeue_due(self, threshold: int) -> list[PendingOperation]:
        """Operations due at ``threshold``, by ``next_attempt_at`` then ``created_at``."""
        return await self._store.pending_due(threshold)

    async def next_due_at(self) -> int | None:
        return await self._store.next_pending_due_at()

    async def dequeue_ready(self, threshold: int) -> list[PendingOperation]:
        """Due operations that may be applied now, in due order.

        An operation waits while an older operation on the same document is
        still queued (backing off or held), so a retry never lands on top of
        a newer write.
        """
        pending = await self._store.list_pending()
        lanes = _lanes(pending)
        position = dict.fromkeys(lanes, 0)
        ready: list[PendingOperation] = []
        for op in pending:
            target = target_path(op)
            if op.is_held or op.next_attempt_at > threshold:
                continue
            if lanes[target][position[target]] is not op:
                continue
            ready.append(op)
            position[target] += 1
        return ready

    async def next_ready_at(self) -> int | None:
        """When the earliest lane head becomes due; None if nothing can run."""
        lanes = _lanes(await self._store.list_pending())
        times = [lane[0].next_attempt_at for lane in lanes.values() if not lane[0].is_held]
        return min(times) if times else None

    async def count(self) -> int:
        return await self._store.count_pending()

    async def list_pending(self) -> list[PendingOperation]:
        return await self._store.list_pending()

    async def get(self, op_id: str) -> PendingOperation:
        op = await self._store.get_pending(op_id)
        if op is None:
            raise UnknownOperationError(op_id)
        return op

    async def record_failure(self, op: PendingOperation, next_attempt_at: int) -> PendingOperation:
        """Count a failed apply and push the operation back (never earlier)."""
        failed = replace(
            op,
            attempt=op.attempt + 1,
            next_attempt_at=max(next_attempt_at, op.next_attempt_at),
            updated_at=self._clock(),
        )
        await self._store.update_pending(failed)
        return failed

    async def hold(self, op: PendingOperation, reason: str) -> PendingOperation:
        """Park an operation that cannot be transmitted until someone fixes it."""
        held = replace(op, held_reason=reason, updated_at=self._clock())
        await self._store.update_pending(held)
        logger.warning("Holding %s %s: %s", op.type.value, op.id, reason)
        return held

    async def complete(self, op_id: str) -> bool:
        return await self._store.delete_pending(op_id)

    async def retry_held(self, op_id: str) -> PendingOperation:
        """Release a held operation so the next drain pass tries it again."""
        op = await self.get(op_id)
        now = self._clock()
        released = replace(
            op,
            held_reason=None,
            next_attempt_at=max(now, op.next_attempt_at),
            updated_at=now,
        )
        await self._store.update_pending(released)
        self._notify()
        return released

    async def replace_payload(self, op_id: str, mutation: Mutation) -> PendingOperation:
        """Swap in a corrected mutation of the same type and release the operation.

        Raises:
            ValidationError: the correction is itself invalid; the stored
                operation is left unchanged.
            ValueError: the mutation type differs from the stored one.
        """
        op = await self.get(op_id)
        if mutation.type != op.type:
            raise ValueError(f"Operation {op_id} is {op.type.value}, not {mutation.type.value}")
        cleaned, report = prepare_mutation(mutation)
        self._report(cleaned, report)
        now = self._clock()
        fixed = replace(
            op,
            payload=cleaned.to_payload(),
            held_reason=None,
            next_attempt_at=max(now, op.next_attempt_at),
            updated_at=now,
        )
        await self._store.update_pending(fixed)
        self._notify()
        return fixed

    async def discard(self, op_id: str) -> bool:
        removed = await self._store.delete_pending(op_id)
        if removed:
            logger.info("Discarded pending operation %s", op_id)
        return removed
