"""Abstract base class for the local durable store."""

from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from crew_sync.core.operations import PendingOperation


class LocalStore(ABC):
    """
    Transactional on-device store.

    Holds the replicated entity tables, the pending-operation outbox, small
    app-state values and local binary blobs. Implementations must make
    ``transaction()`` atomic across all of these: readers outside the
    transaction never observe a half-applied write.
    """

    async def initialize(self) -> None:  # noqa: B027
        """Open connections / create schema. No-op by default."""

    async def close(self) -> None:  # noqa: B027
        """Release resources. No-op by default."""

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[None]:
        """
        Group writes atomically.

        Usage:
            async with store.transaction():
                existing = await store.get(Table.JOBS, "1")
                await store.put(Table.JOBS, "1", {...})

        Any exception inside the block rolls back every write made in it.
        """
        ...

    # ========== Entity tables ==========

    @abstractmethod
    async def get(self, table: str, key: str) -> dict[str, Any] | None:
        """Get one record by key, or None."""
        ...

    @abstractmethod
    async def put(self, table: str, key: str, record: dict[str, Any]) -> None:
        """Insert or replace a record wholesale."""
        ...

    @abstractmethod
    async def delete(self, table: str, key: str) -> bool:
        """Delete a record. Returns True if it existed."""
        ...

    @abstractmethod
    async def all(self, table: str) -> list[dict[str, Any]]:
        """All records in a table, ordered by key."""
        ...

    # ========== Pending operations ==========

    @abstractmethod
    async def add_pending(self, op: PendingOperation) -> None:
        ...

    @abstractmethod
    async def get_pending(self, op_id: str) -> PendingOperation | None:
        ...

    @abstractmethod
    async def update_pending(self, op: PendingOperation) -> None:
        """Replace a stored operation (matched by id)."""
        ...

    @abstractmethod
    async def delete_pending(self, op_id: str) -> bool:
        ...

    @abstractmethod
    async def pending_due(self, threshold: int) -> list[PendingOperation]:
        """
        Operations with ``next_attempt_at <= threshold`` that are not held.

        Ordered by ``next_attempt_at`` then ``created_at`` ascending.
        """
        ...

    @abstractmethod
    async def next_pending_due_at(self) -> int | None:
        """Earliest ``next_attempt_at`` among operations that are not held."""
        ...

    @abstractmethod
    async def list_pending(self) -> list[PendingOperation]:
        """Every stored operation (held ones included), in due order."""
        ...

    @abstractmethod
    async def count_pending(self) -> int:
        """Queue depth, held operations included."""
        ...

    # ========== App state ==========

    @abstractmethod
    async def get_state(self, key: str) -> Any | None:
        ...

    @abstractmethod
    async def put_state(self, key: str, value: Any) -> None:
        ...

    # ========== Blobs ==========

    @abstractmethod
    async def get_blob(self, key: str) -> bytes | None:
        ...

    @abstractmethod
    async def put_blob(self, key: str, data: bytes) -> None:
        ...

    @abstractmethod
    async def delete_blob(self, key: str) -> bool:
        ...
