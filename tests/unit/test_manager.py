"""Tests for SyncManager status reporting and local data cleanup."""

from __future__ import annotations

from typing import Any

import pytest

from crew_sync.core.entities import DocumentKind, Table
from crew_sync.core.operations import JobAdd, OperationType, PendingOperation
from crew_sync.errors import ValidationError
from crew_sync.remote.memory_remote import InMemoryRemoteStore
from crew_sync.sanitize.schema import prepare_document
from crew_sync.storage.memory_store import InMemoryLocalStore
from crew_sync.sync.connectivity import ConnectivityMonitor
from crew_sync.sync.maintenance import CleanupSummary, run_local_cleanup
from crew_sync.sync.manager import SyncManager
from crew_sync.sync.state import SyncStatus


@pytest.fixture
def manager(
    memory_store: InMemoryLocalStore, remote: InMemoryRemoteStore, clock: Any
) -> SyncManager:
    return SyncManager(memory_store, remote, connectivity=ConnectivityMonitor(), clock=clock)


def _raw_op(op_id: str, job: dict[str, Any], *, created_at: int, held: str | None = None) -> Any:
    return PendingOperation(
        id=op_id,
        type=OperationType.JOB_ADD,
        payload={"job": job},
        next_attempt_at=created_at,
        created_at=created_at,
        updated_at=created_at,
        held_reason=held,
    )


class TestEnqueueErrors:
    """Rejected mutations are visible in the sync state."""

    async def test_rejected_mutation_sets_error_while_online(
        self, manager: SyncManager, make_job: Any
    ) -> None:
        with pytest.raises(ValidationError):
            await manager.enqueue(JobAdd(job=make_job(client=" ")))

        state = manager.get_state()
        assert state.status == SyncStatus.ERROR
        assert state.last_error is not None
        assert "client" in state.last_error
        assert state.queued_count == 0

    async def test_rejected_mutation_while_offline_keeps_offline(
        self, manager: SyncManager, make_job: Any
    ) -> None:
        manager.set_online(False)

        with pytest.raises(ValidationError):
            await manager.enqueue(JobAdd(job=make_job(client="")))

        state = manager.get_state()
        assert state.status == SyncStatus.OFFLINE
        assert "client" in (state.last_error or "")

    async def test_accepted_mutation_leaves_status_alone(
        self, manager: SyncManager, make_job: Any
    ) -> None:
        await manager.enqueue(JobAdd(job=make_job()))

        state = manager.get_state()
        assert state.status == SyncStatus.IDLE
        assert state.last_error is None
        assert state.queued_count == 1


class TestLocalCleanup:
    """Tests for run_local_cleanup() and SyncManager.cleanup()."""

    async def test_rewrites_stale_job_records(
        self, memory_store: InMemoryLocalStore, make_job: Any
    ) -> None:
        clean = prepare_document(DocumentKind.JOB, make_job(2), "jobs/2").cleaned
        await memory_store.put(Table.JOBS, "2", clean)
        await memory_store.put(
            Table.JOBS,
            "1",
            make_job(1, client=" Smith ", crew="Both Crews", houseTier="7", vip="yes"),
        )

        summary = await run_local_cleanup(memory_store)

        assert summary == CleanupSummary(jobs_fixed=1, pending_fixed=0)
        fixed = await memory_store.get(Table.JOBS, "1")
        assert fixed is not None
        assert fixed["client"] == "Smith"
        assert fixed["bothCrews"] is True
        assert fixed["houseTier"] == 5
        assert fixed["vip"] is True
        assert await memory_store.get(Table.JOBS, "2") == clean

    async def test_invalid_job_keeps_generic_shape(
        self, memory_store: InMemoryLocalStore, make_job: Any
    ) -> None:
        await memory_store.put(Table.JOBS, "3", make_job(3, client="", notes=" gate code "))

        summary = await run_local_cleanup(memory_store)

        assert summary.jobs_fixed == 1
        record = await memory_store.get(Table.JOBS, "3")
        assert record is not None
        assert record["client"] == ""
        assert record["notes"] == "gate code"

    async def test_rewrites_queued_payloads_and_releases_held(
        self, memory_store: InMemoryLocalStore, make_job: Any, clock: Any
    ) -> None:
        await memory_store.add_pending(
            _raw_op("stale", make_job(1, client=" Jones "), created_at=clock.now, held="old")
        )
        await memory_store.add_pending(
            _raw_op("broken", make_job(2, client=""), created_at=clock.now + 1, held="bad")
        )

        summary = await run_local_cleanup(memory_store, clock=clock)

        assert summary.pending_fixed == 1
        stale = await memory_store.get_pending("stale")
        assert stale is not None
        assert stale.payload["job"]["client"] == "Jones"
        assert stale.held_reason is None
        broken = await memory_store.get_pending("broken")
        assert broken is not None
        assert broken.held_reason == "bad"
        assert broken.payload["job"]["client"] == ""

    async def test_second_run_changes_nothing(
        self, memory_store: InMemoryLocalStore, make_job: Any, clock: Any
    ) -> None:
        await memory_store.put(Table.JOBS, "1", make_job(1, client=" Smith "))
        await memory_store.add_pending(
            _raw_op("stale", make_job(1, client=" Jones "), created_at=clock.now)
        )

        first = await run_local_cleanup(memory_store, clock=clock)
        second = await run_local_cleanup(memory_store, clock=clock)

        assert first == CleanupSummary(jobs_fixed=1, pending_fixed=1)
        assert second == CleanupSummary()
        assert second.to_dict() == {"jobsFixed": 0, "pendingFixed": 0}

    async def test_manager_cleanup_wakes_worker(
        self, manager: SyncManager, memory_store: InMemoryLocalStore, make_job: Any, clock: Any
    ) -> None:
        await memory_store.add_pending(
            _raw_op("stale", make_job(1, client=" Jones "), created_at=clock.now, held="old")
        )
        wakes: list[bool] = []
        manager.scheduler.wake = lambda: wakes.append(True)  # type: ignore[method-assign]

        summary = await manager.cleanup()

        assert summary.pending_fixed == 1
        assert wakes == [True]
        assert manager.get_state().queued_count == 1
