"""Abstract interface of the shared remote document store."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any


class _ServerTimestamp:
    """Placeholder the remote replaces with its own per-document clock."""

    _instance: _ServerTimestamp | None = None

    def __new__(cls) -> _ServerTimestamp:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP: Any = _ServerTimestamp()


def parent_path(path: str) -> str:
    """Collection path of a document: ``"jobs/1/media/m"`` -> ``"jobs/1/media"``."""
    head, _, _ = path.strip("/").rpartition("/")
    return head


def doc_id(path: str) -> str:
    return path.strip("/").rpartition("/")[2]


@dataclass(frozen=True)
class DocumentChange:
    """One changed document. ``data`` is None when the document was deleted."""

    path: str
    data: dict[str, Any] | None
    seq: int = 0

    @property
    def id(self) -> str:
        return doc_id(self.path)

    @property
    def deleted(self) -> bool:
        return self.data is None


@dataclass(frozen=True)
class ChangeBatch:
    """Changes delivered together to one subscriber.

    The first batch of every subscription is a snapshot of all current
    documents (``is_snapshot=True``).
    """

    path: str
    changes: list[DocumentChange] = field(default_factory=list)
    is_snapshot: bool = False


ChangeCallback = Callable[[ChangeBatch], Awaitable[None]]
ErrorCallback = Callable[[Exception], None]
Unsubscribe = Callable[[], None]


class RemoteStore(ABC):
    """
    Shared document store every client writes to and listens on.

    Writes carry the id of the pending operation that produced them. The
    store records it as ``lastOpId`` on the document and ignores a write
    whose ``op_id`` equals the current ``lastOpId`` (a replay after a lost
    acknowledgement). Top-level ``SERVER_TIMESTAMP`` values are replaced by
    a strictly increasing per-document millisecond clock.
    """

    async def connect(self) -> None:  # noqa: B027
        """Open network resources. No-op by default."""

    async def close(self) -> None:  # noqa: B027
        """Release network resources and stop subscriptions."""

    async def ping(self) -> bool:
        """Whether the store is reachable right now."""
        return True

    @abstractmethod
    async def get_document(self, path: str) -> dict[str, Any] | None:
        ...

    @abstractmethod
    async def set_document(
        self,
        path: str,
        data: dict[str, Any],
        *,
        op_id: str,
        merge: bool = True,
    ) -> dict[str, Any]:
        """Write a document (merged into the existing one by default).

        Returns the stored document.
        """
        ...

    @abstractmethod
    async def delete_document(self, path: str, *, op_id: str) -> bool:
        ...

    @abstractmethod
    async def increment(
        self,
        path: str,
        field_path: str,
        amount: int = 1,
        *,
        op_id: str,
        extra: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Atomically add ``amount`` to a numeric field (dotted path).

        ``extra`` fields are merged into the document in the same write.
        """
        ...

    @abstractmethod
    async def upload_object(
        self, path: str, data: bytes, content_type: str = "application/octet-stream"
    ) -> str:
        """Store a binary object and return its download URL."""
        ...

    @abstractmethod
    async def list_collection(self, path: str) -> list[dict[str, Any]]:
        ...

    @abstractmethod
    async def subscribe(
        self,
        path: str,
        callback: ChangeCallback,
        on_error: ErrorCallback | None = None,
    ) -> Unsubscribe:
        """Listen on a collection or a single document.

        ``callback`` first receives a snapshot batch, then one batch per
        subsequent change. Returns a function that stops the subscription.
        """
        ...
