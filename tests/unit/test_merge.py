"""Tests for last-write-wins merging of remote changes."""

from __future__ import annotations

from typing import Any

import pytest

from crew_sync.core.entities import POLICY_KEY, Table
from crew_sync.remote.base import ChangeBatch, DocumentChange
from crew_sync.remote.memory_remote import InMemoryRemoteStore
from crew_sync.storage.memory_store import InMemoryLocalStore
from crew_sync.sync.merge import (
    DEFAULT_BINDINGS,
    RemoteChangeListener,
    should_accept_incoming,
)
from crew_sync.sync.state import SyncStatePublisher, SyncStatus

JOBS = DEFAULT_BINDINGS[0]
POLICY = DEFAULT_BINDINGS[1]


class TestShouldAcceptIncoming:
    """Tests for the last-write-wins rule."""

    def test_no_local_record(self) -> None:
        assert should_accept_incoming(None, {"updatedAt": 1}) is True

    def test_newer_wins(self) -> None:
        assert should_accept_incoming({"updatedAt": 99}, {"updatedAt": 100}) is True

    def test_tie_goes_to_remote(self) -> None:
        assert should_accept_incoming({"updatedAt": 100}, {"updatedAt": 100}) is True

    def test_older_rejected(self) -> None:
        assert should_accept_incoming({"updatedAt": 100}, {"updatedAt": 99}) is False

    def test_missing_timestamp_counts_as_zero(self) -> None:
        assert should_accept_incoming({"updatedAt": 5}, {}) is False
        assert should_accept_incoming({}, {}) is True


@pytest.fixture
def listener(memory_store: InMemoryLocalStore, remote: InMemoryRemoteStore) -> RemoteChangeListener:
    return RemoteChangeListener(remote, memory_store, SyncStatePublisher(memory_store))


def _job_change(job_id: int, updated_at: int, **fields: Any) -> DocumentChange:
    data = {
        "id": job_id,
        "date": "2025-06-01",
        "crew": "Crew Alpha",
        "client": "Smith",
        "scope": "Lights",
        "updatedAt": updated_at,
    }
    data.update(fields)
    return DocumentChange(path=f"jobs/{job_id}", data=data)


class TestMergeChanges:
    """Tests for RemoteChangeListener.merge_changes()."""

    async def test_accepts_new_and_rejects_stale(
        self, listener: RemoteChangeListener, memory_store: InMemoryLocalStore
    ) -> None:
        await memory_store.put(Table.JOBS, "1", {"id": 1, "updatedAt": 100, "client": "Local"})

        result = await listener.merge_changes(
            JOBS, [_job_change(1, 99, client="Stale"), _job_change(2, 5)]
        )

        assert result.rejected == 1
        assert [r["id"] for r in result.accepted] == [2]
        assert (await memory_store.get(Table.JOBS, "1"))["client"] == "Local"
        assert (await memory_store.get(Table.JOBS, "2"))["client"] == "Smith"

    async def test_equal_timestamp_accepted(
        self, listener: RemoteChangeListener, memory_store: InMemoryLocalStore
    ) -> None:
        await memory_store.put(Table.JOBS, "1", {"id": 1, "updatedAt": 100, "client": "Local"})

        result = await listener.merge_changes(JOBS, [_job_change(1, 100, client="Remote")])

        assert len(result.accepted) == 1
        assert (await memory_store.get(Table.JOBS, "1"))["client"] == "Remote"

    async def test_id_taken_from_path(
        self, listener: RemoteChangeListener, memory_store: InMemoryLocalStore
    ) -> None:
        change = _job_change(7, 1)
        assert change.data is not None
        del change.data["id"]

        await listener.merge_changes(JOBS, [change])

        assert (await memory_store.get(Table.JOBS, "7"))["id"] == 7

    async def test_malformed_record_skipped(
        self, listener: RemoteChangeListener, memory_store: InMemoryLocalStore
    ) -> None:
        bad = DocumentChange(path="jobs/abc", data={"client": "X"})

        result = await listener.merge_changes(JOBS, [bad, _job_change(3, 1)])

        assert result.skipped == 1
        assert [r["id"] for r in result.accepted] == [3]

    async def test_remote_deletion_applied(
        self, listener: RemoteChangeListener, memory_store: InMemoryLocalStore
    ) -> None:
        await memory_store.put(Table.JOBS, "4", {"id": 4})

        result = await listener.merge_changes(JOBS, [DocumentChange(path="jobs/4", data=None)])

        assert result.deleted == 1
        assert await memory_store.get(Table.JOBS, "4") is None

    async def test_policy_stored_under_fixed_key(
        self, listener: RemoteChangeListener, memory_store: InMemoryLocalStore
    ) -> None:
        change = DocumentChange(path="config/policy", data={"maxJobsPerDay": 3, "updatedAt": 9})

        await listener.merge_changes(POLICY, [change])

        policy = await memory_store.get(Table.POLICY, POLICY_KEY)
        assert policy is not None
        assert policy["maxJobsPerDay"] == 3
        assert policy["cutoffDateISO"] == "2025-12-31"

    async def test_policy_deletion_ignored(
        self, listener: RemoteChangeListener, memory_store: InMemoryLocalStore
    ) -> None:
        await memory_store.put(Table.POLICY, POLICY_KEY, {"maxJobsPerDay": 3})

        await listener.merge_changes(POLICY, [DocumentChange(path="config/policy", data=None)])

        assert await memory_store.get(Table.POLICY, POLICY_KEY) is not None


class TestHandleBatch:
    async def test_callback_receives_accepted_records(
        self, memory_store: InMemoryLocalStore, remote: InMemoryRemoteStore
    ) -> None:
        received: list[list[dict[str, Any]]] = []
        state = SyncStatePublisher(memory_store, clock=lambda: 1234)
        listener = RemoteChangeListener(
            remote, memory_store, state, callbacks={"jobs": received.append}
        )

        await listener.handle_batch(JOBS, ChangeBatch(path="jobs", changes=[_job_change(1, 1)]))

        assert [[r["id"] for r in batch] for batch in received] == [[1]]
        assert state.get_state().last_synced_at == 1234

    async def test_async_callback_awaited_and_errors_contained(
        self, listener: RemoteChangeListener
    ) -> None:
        calls: list[int] = []

        async def on_jobs(records: list[dict[str, Any]]) -> None:
            calls.append(len(records))
            raise RuntimeError("ui exploded")

        listener.on("jobs", on_jobs)
        result = await listener.handle_batch(
            JOBS, ChangeBatch(path="jobs", changes=[_job_change(1, 1)])
        )

        assert calls == [1]
        assert len(result.accepted) == 1

    async def test_no_callback_when_nothing_accepted(
        self, memory_store: InMemoryLocalStore, remote: InMemoryRemoteStore
    ) -> None:
        received: list[Any] = []
        await memory_store.put(Table.JOBS, "1", {"id": 1, "updatedAt": 500})
        listener = RemoteChangeListener(
            remote,
            memory_store,
            SyncStatePublisher(memory_store),
            callbacks={"jobs": received.append},
        )

        await listener.handle_batch(JOBS, ChangeBatch(path="jobs", changes=[_job_change(1, 1)]))

        assert received == []


class TestListenerLifecycle:
    """Tests for subscribing to the remote."""

    async def test_start_loads_snapshot(
        self, memory_store: InMemoryLocalStore, remote: InMemoryRemoteStore
    ) -> None:
        await remote.set_document("jobs/1", _job_change(1, 1).data or {}, op_id="seed")
        state = SyncStatePublisher(memory_store)
        listener = RemoteChangeListener(remote, memory_store, state)

        await listener.start()

        assert listener.running
        assert (await memory_store.get(Table.JOBS, "1"))["client"] == "Smith"
        assert state.get_state().status == SyncStatus.IDLE
        await listener.stop()
        assert not listener.running

    async def test_live_changes_merged(
        self, memory_store: InMemoryLocalStore, remote: InMemoryRemoteStore
    ) -> None:
        listener = RemoteChangeListener(remote, memory_store, SyncStatePublisher(memory_store))
        await listener.start()

        await remote.set_document("jobs/2", _job_change(2, 1).data or {}, op_id="x")

        assert await memory_store.get(Table.JOBS, "2") is not None
        await listener.stop()

    async def test_bootstrap_failure_sets_error(self, memory_store: InMemoryLocalStore) -> None:
        class BrokenRemote(InMemoryRemoteStore):
            async def subscribe(self, path: str, callback: Any, on_error: Any = None) -> Any:
                raise ConnectionError("hub unreachable")

        state = SyncStatePublisher(memory_store)
        listener = RemoteChangeListener(BrokenRemote(), memory_store, state)

        await listener.start()

        assert state.get_state().status == SyncStatus.ERROR
        assert state.get_state().last_error == "hub unreachable"

    async def test_start_offline_reports_offline(
        self, memory_store: InMemoryLocalStore, remote: InMemoryRemoteStore
    ) -> None:
        state = SyncStatePublisher(memory_store)
        listener = RemoteChangeListener(remote, memory_store, state, is_online=lambda: False)

        await listener.start()

        assert state.get_state().status == SyncStatus.OFFLINE
        await listener.stop()

    async def test_start_keeps_existing_error(
        self, memory_store: InMemoryLocalStore, remote: InMemoryRemoteStore
    ) -> None:
        state = SyncStatePublisher(memory_store)
        state.update(status=SyncStatus.ERROR, last_error="boom")
        seen: list[SyncStatus] = []
        state.subscribe(lambda s: seen.append(s.status))
        listener = RemoteChangeListener(remote, memory_store, state)

        await listener.start()

        assert state.get_state().status == SyncStatus.ERROR
        assert state.get_state().last_error == "boom"
        assert SyncStatus.PULLING in seen
        await listener.stop()
