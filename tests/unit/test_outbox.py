"""Tests for the durable outbox queue."""

from __future__ import annotations

import itertools
from typing import Any

import pytest

from crew_sync.core.operations import JobAdd, JobUpdate, KudosReact, OperationType
from crew_sync.errors import ValidationError
from crew_sync.sanitize import SanitizeReport
from crew_sync.storage.memory_store import InMemoryLocalStore
from crew_sync.sync.outbox import OutboxQueue, UnknownOperationError


@pytest.fixture
def outbox(memory_store: InMemoryLocalStore, clock: Any) -> OutboxQueue:
    counter = itertools.count(1)
    return OutboxQueue(memory_store, clock=clock, id_factory=lambda: f"op{next(counter)}")


class TestEnqueue:
    """Tests for OutboxQueue.enqueue()."""

    async def test_enqueue_persists_sanitized_payload(
        self, outbox: OutboxQueue, make_job: Any, clock: Any
    ) -> None:
        op_id = await outbox.enqueue(JobAdd(job=make_job(client=" Smith ")))
        op = await outbox.get(op_id)

        assert op.type == OperationType.JOB_ADD
        assert op.payload["job"]["client"] == "Smith"
        assert op.attempt == 0
        assert op.next_attempt_at == clock.now
        assert op.created_at == clock.now

    async def test_invalid_mutation_not_enqueued(self, outbox: OutboxQueue) -> None:
        with pytest.raises(ValidationError):
            await outbox.enqueue(JobAdd(job={"id": 1}))

        assert await outbox.count() == 0

    async def test_same_millisecond_stays_fifo(self, outbox: OutboxQueue, make_job: Any) -> None:
        ids = [await outbox.enqueue(JobAdd(job=make_job(i))) for i in range(5)]
        ops = await outbox.list_pending()

        assert [op.id for op in ops] == ids
        assert len({op.created_at for op in ops}) == 5

    async def test_enqueue_wakes_worker(self, outbox: OutboxQueue, make_job: Any) -> None:
        wakes: list[bool] = []
        outbox.set_wake(lambda: wakes.append(True))

        await outbox.enqueue(JobAdd(job=make_job()))

        assert wakes == [True]

    async def test_diagnostics_reported_under_pending_path(
        self, memory_store: InMemoryLocalStore, make_job: Any
    ) -> None:
        reports: list[tuple[str, SanitizeReport]] = []
        outbox = OutboxQueue(memory_store, diagnostics=lambda p, r: reports.append((p, r)))

        await outbox.enqueue(JobAdd(job=make_job(client=" Smith ")))

        assert reports[0][0] == "pendingOps/jobs/42"
        assert reports[0][1].string_corrections == ["job.client"]


class TestDueOrdering:
    async def test_dequeue_due_respects_threshold(
        self, outbox: OutboxQueue, make_job: Any, clock: Any
    ) -> None:
        first = await outbox.enqueue(JobAdd(job=make_job(1)))
        clock.advance(1000)
        await outbox.enqueue(JobAdd(job=make_job(2)))

        due = await outbox.dequeue_due(clock.now - 1)

        assert [op.id for op in due] == [first]
        assert await outbox.count() == 2

    async def test_failure_pushes_op_back(
        self, outbox: OutboxQueue, make_job: Any, clock: Any
    ) -> None:
        first = await outbox.enqueue(JobAdd(job=make_job(1)))
        second = await outbox.enqueue(JobAdd(job=make_job(2)))

        op = await outbox.get(first)
        failed = await outbox.record_failure(op, clock.now + 5000)

        assert failed.attempt == 1
        assert [o.id for o in await outbox.dequeue_due(clock.now + 1)] == [second]
        assert await outbox.next_due_at() == clock.now

    async def test_failure_never_moves_schedule_earlier(
        self, outbox: OutboxQueue, make_job: Any, clock: Any
    ) -> None:
        op = await outbox.get(await outbox.enqueue(JobAdd(job=make_job())))
        later = await outbox.record_failure(op, clock.now + 10_000)
        again = await outbox.record_failure(later, clock.now + 1_000)

        assert again.next_attempt_at == clock.now + 10_000
        assert again.attempt == 2


class TestHeldOperations:
    """Tests for holding, releasing and fixing operations."""

    async def test_held_op_not_due_but_counted(
        self, outbox: OutboxQueue, make_job: Any, clock: Any
    ) -> None:
        op = await outbox.get(await outbox.enqueue(JobAdd(job=make_job())))
        await outbox.hold(op, "bad data")

        assert await outbox.dequeue_due(clock.now + 1_000_000) == []
        assert await outbox.next_due_at() is None
        assert await outbox.count() == 1

    async def test_retry_held_releases(
        self, outbox: OutboxQueue, make_job: Any, clock: Any
    ) -> None:
        op = await outbox.get(await outbox.enqueue(JobAdd(job=make_job())))
        await outbox.hold(op, "bad data")

        released = await outbox.retry_held(op.id)

        assert released.held_reason is None
        assert [o.id for o in await outbox.dequeue_due(clock.now)] == [op.id]

    async def test_replace_payload(self, outbox: OutboxQueue, make_job: Any) -> None:
        op = await outbox.get(await outbox.enqueue(JobUpdate(job={"id": 42, "notes": "a"})))
        await outbox.hold(op, "bad data")

        fixed = await outbox.replace_payload(op.id, JobUpdate(job={"id": 42, "notes": " b "}))

        assert fixed.payload == {"job": {"id": 42, "notes": "b"}}
        assert not fixed.is_held

    async def test_replace_payload_type_mismatch(self, outbox: OutboxQueue, make_job: Any) -> None:
        op_id = await outbox.enqueue(JobAdd(job=make_job()))

        with pytest.raises(ValueError, match="job.add"):
            await outbox.replace_payload(op_id, KudosReact(kudos_id="k", emoji="x"))

    async def test_replace_payload_invalid_keeps_original(
        self, outbox: OutboxQueue, make_job: Any
    ) -> None:
        op_id = await outbox.enqueue(JobAdd(job=make_job()))

        with pytest.raises(ValidationError):
            await outbox.replace_payload(op_id, JobAdd(job={"id": 42}))

        assert (await outbox.get(op_id)).payload["job"]["client"] == "Smith"

    async def test_discard(self, outbox: OutboxQueue, make_job: Any) -> None:
        op_id = await outbox.enqueue(JobAdd(job=make_job()))

        assert await outbox.discard(op_id) is True
        assert await outbox.discard(op_id) is False
        assert await outbox.count() == 0

    async def test_unknown_op(self, outbox: OutboxQueue) -> None:
        with pytest.raises(UnknownOperationError):
            await outbox.retry_held("missing")


class TestDocumentOrdering:
    """Tests for per-document ordering in dequeue_ready()."""

    async def test_ready_keeps_enqueue_order(
        self, outbox: OutboxQueue, make_job: Any, clock: Any
    ) -> None:
        add = await outbox.enqueue(JobAdd(job=make_job(1)))
        update = await outbox.enqueue(JobUpdate(job={"id": 1, "client": "Jones"}))
        other = await outbox.enqueue(JobAdd(job=make_job(2)))

        ready = await outbox.dequeue_ready(clock.now)

        assert [op.id for op in ready] == [add, update, other]

    async def test_backing_off_op_blocks_newer_write_to_same_document(
        self, outbox: OutboxQueue, make_job: Any, clock: Any
    ) -> None:
        add = await outbox.enqueue(JobAdd(job=make_job(1)))
        await outbox.enqueue(JobUpdate(job={"id": 1, "client": "Jones"}))
        other = await outbox.enqueue(JobAdd(job=make_job(2)))
        await outbox.record_failure(await outbox.get(add), clock.now + 5000)

        ready = await outbox.dequeue_ready(clock.now + 1)

        assert [op.id for op in ready] == [other]
        assert await outbox.next_ready_at() == clock.now

        await outbox.complete(other)
        assert await outbox.next_ready_at() == clock.now + 5000

    async def test_held_op_blocks_its_document_until_released(
        self, outbox: OutboxQueue, make_job: Any, clock: Any
    ) -> None:
        add = await outbox.enqueue(JobAdd(job=make_job(1)))
        update = await outbox.enqueue(JobUpdate(job={"id": 1, "client": "Jones"}))
        await outbox.hold(await outbox.get(add), "bad data")

        assert await outbox.dequeue_ready(clock.now + 60_000) == []
        assert await outbox.next_ready_at() is None

        await outbox.retry_held(add)
        ready = await outbox.dequeue_ready(clock.now)
        assert [op.id for op in ready] == [add, update]
