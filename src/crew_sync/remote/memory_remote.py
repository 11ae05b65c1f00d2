"""In-process remote document store.

Authoritative implementation of the remote semantics (server timestamps,
replay detection, ordered change feed). The reference hub serves one of
these over HTTP, and tests use it directly.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass
from typing import Any

from crew_sync.remote.base import (
    SERVER_TIMESTAMP,
    ChangeBatch,
    ChangeCallback,
    DocumentChange,
    ErrorCallback,
    RemoteStore,
    Unsubscribe,
    parent_path,
)
from crew_sync.utils.timeutils import Clock, now_ms

logger = logging.getLogger(__name__)

MAX_CHANGE_LOG = 10_000


@dataclass
class _Subscription:
    path: str
    callback: ChangeCallback
    on_error: ErrorCallback | None
    active: bool = True


def _matches(sub_path: str, doc_path: str) -> bool:
    return sub_path == doc_path or parent_path(doc_path) == sub_path


class InMemoryRemoteStore(RemoteStore):
    """Dict-backed remote store with a bounded, sequenced change log.

    Subscriber callbacks run inline after each write, in write order.
    A callback must not write back to this store.
    """

    def __init__(self, clock: Clock = now_ms) -> None:
        self._clock = clock
        self._docs: dict[str, dict[str, Any]] = {}
        self._objects: dict[str, tuple[bytes, str]] = {}
        self._doc_clocks: dict[str, int] = {}
        self._changes: list[DocumentChange] = []
        self._seq = 0
        self._subscriptions: list[_Subscription] = []
        self._lock = asyncio.Lock()
        self.calls: list[tuple[str, str]] = []

    @property
    def latest_seq(self) -> int:
        return self._seq

    @property
    def oldest_retained_seq(self) -> int | None:
        return self._changes[0].seq if self._changes else None

    # ── Helpers ──

    def _stamp(self, path: str) -> int:
        stamp = max(self._clock(), self._doc_clocks.get(path, 0) + 1)
        self._doc_clocks[path] = stamp
        return stamp

    def _resolve(self, path: str, data: dict[str, Any]) -> dict[str, Any]:
        resolved: dict[str, Any] = {}
        stamp: int | None = None
        for key, value in data.items():
            if value is SERVER_TIMESTAMP:
                if stamp is None:
                    stamp = self._stamp(path)
                resolved[key] = stamp
            else:
                resolved[key] = copy.deepcopy(value)
        return resolved

    def _is_replay(self, path: str, op_id: str) -> bool:
        existing = self._docs.get(path)
        if existing is not None and op_id and existing.get("lastOpId") == op_id:
            logger.debug("Ignoring replayed write %s on %s", op_id, path)
            return True
        return False

    def _record(self, path: str, data: dict[str, Any] | None) -> DocumentChange:
        self._seq += 1
        change = DocumentChange(
            path=path, data=copy.deepcopy(data) if data is not None else None, seq=self._seq
        )
        self._changes.append(change)
        if len(self._changes) > MAX_CHANGE_LOG:
            del self._changes[: len(self._changes) - MAX_CHANGE_LOG]
        return change

    async def _deliver(self, change: DocumentChange) -> None:
        for sub in list(self._subscriptions):
            if not sub.active or not _matches(sub.path, change.path):
                continue
            await self._invoke(sub, ChangeBatch(path=sub.path, changes=[change]))

    async def _invoke(self, sub: _Subscription, batch: ChangeBatch) -> None:
        try:
            await sub.callback(batch)
        except Exception as e:
            if sub.on_error is None:
                logger.warning("Subscriber for %s failed", sub.path, exc_info=True)
            else:
                sub.on_error(e)

    # ── RemoteStore ──

    async def get_document(self, path: str) -> dict[str, Any] | None:
        self.calls.append(("get_document", path))
        doc = self._docs.get(path)
        return copy.deepcopy(doc) if doc is not None else None

    async def set_document(
        self,
        path: str,
        data: dict[str, Any],
        *,
        op_id: str,
        merge: bool = True,
    ) -> dict[str, Any]:
        self.calls.append(("set_document", path))
        async with self._lock:
            if self._is_replay(path, op_id):
                return copy.deepcopy(self._docs[path])
            existing = self._docs.get(path)
            doc = dict(existing) if merge and existing else {}
            doc.update(self._resolve(path, data))
            doc["lastOpId"] = op_id
            self._docs[path] = doc
            change = self._record(path, doc)
            await self._deliver(change)
            return copy.deepcopy(doc)

    async def delete_document(self, path: str, *, op_id: str) -> bool:
        self.calls.append(("delete_document", path))
        async with self._lock:
            if self._docs.pop(path, None) is None:
                return False
            change = self._record(path, None)
            await self._deliver(change)
            return True

    async def increment(
        self,
        path: str,
        field_path: str,
        amount: int = 1,
        *,
        op_id: str,
        extra: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        self.calls.append(("increment", path))
        async with self._lock:
            if self._is_replay(path, op_id):
                return copy.deepcopy(self._docs[path])
            doc = copy.deepcopy(self._docs.get(path, {}))
            *parents, leaf = field_path.split(".")
            target = doc
            for part in parents:
                child = target.get(part)
                if not isinstance(child, dict):
                    child = {}
                    target[part] = child
                target = child
            current = target.get(leaf)
            if isinstance(current, bool) or not isinstance(current, (int, float)):
                current = 0
            target[leaf] = current + amount
            doc.update(self._resolve(path, extra or {}))
            doc["lastOpId"] = op_id
            self._docs[path] = doc
            change = self._record(path, doc)
            await self._deliver(change)
            return copy.deepcopy(doc)

    async def upload_object(
        self, path: str, data: bytes, content_type: str = "application/octet-stream"
    ) -> str:
        self.calls.append(("upload_object", path))
        self._objects[path] = (bytes(data), content_type)
        return f"memory://{path}"

    def get_object(self, path: str) -> tuple[bytes, str] | None:
        return self._objects.get(path)

    async def list_collection(self, path: str) -> list[dict[str, Any]]:
        self.calls.append(("list_collection", path))
        return [
            copy.deepcopy(doc)
            for doc_path, doc in sorted(self._docs.items())
            if parent_path(doc_path) == path
        ]

    def changes_since(self, path: str, since: int) -> list[DocumentChange]:
        """Logged changes under ``path`` with ``seq > since``, oldest first."""
        return [c for c in self._changes if c.seq > since and _matches(path, c.path)]

    def snapshot(self, path: str) -> list[DocumentChange]:
        """Current documents under ``path`` as changes stamped with the latest seq."""
        return [
            DocumentChange(path=doc_path, data=copy.deepcopy(doc), seq=self._seq)
            for doc_path, doc in sorted(self._docs.items())
            if _matches(path, doc_path)
        ]

    async def subscribe(
        self,
        path: str,
        callback: ChangeCallback,
        on_error: ErrorCallback | None = None,
    ) -> Unsubscribe:
        self.calls.append(("subscribe", path))
        sub = _Subscription(path=path, callback=callback, on_error=on_error)
        async with self._lock:
            initial = ChangeBatch(path=path, changes=self.snapshot(path), is_snapshot=True)
            await self._invoke(sub, initial)
            self._subscriptions.append(sub)

        def unsubscribe() -> None:
            sub.active = False
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)

        return unsubscribe

    async def close(self) -> None:
        for sub in self._subscriptions:
            sub.active = False
        self._subscriptions.clear()
