"""Remote store client for the crew-sync hub HTTP API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from urllib.parse import quote

import aiohttp

from crew_sync.errors import AuthorizationError, RemoteError, RemoteUnavailableError
from crew_sync.remote.auth import Authorizer, NullAuthorizer
from crew_sync.remote.base import (
    SERVER_TIMESTAMP,
    ChangeBatch,
    ChangeCallback,
    DocumentChange,
    ErrorCallback,
    RemoteStore,
    Unsubscribe,
)

logger = logging.getLogger(__name__)


def _split_server_timestamps(data: dict[str, Any]) -> tuple[dict[str, Any], list[str]]:
    """Separate SERVER_TIMESTAMP placeholders, which have no JSON form."""
    plain = {k: v for k, v in data.items() if v is not SERVER_TIMESTAMP}
    stamped = [k for k, v in data.items() if v is SERVER_TIMESTAMP]
    return plain, stamped


def _changes_from_json(items: list[dict[str, Any]]) -> list[DocumentChange]:
    return [
        DocumentChange(path=item["path"], data=item.get("data"), seq=int(item.get("seq", 0)))
        for item in items
    ]


class HttpRemoteStore(RemoteStore):
    """
    HTTP client that talks to a crew-sync hub.

    Change streams are polled: ``subscribe`` fetches a snapshot, then a
    background task asks for changes after the last seen sequence number
    every ``poll_interval`` seconds.

    Usage:
        async with HttpRemoteStore("http://localhost:8765", authorizer=auth) as remote:
            await remote.set_document("jobs/1", {...}, op_id="op-1")
    """

    def __init__(
        self,
        server_url: str,
        *,
        authorizer: Authorizer | None = None,
        timeout: float = 30.0,
        poll_interval: float = 2.0,
    ) -> None:
        self._server_url = server_url.rstrip("/")
        self._authorizer = authorizer or NullAuthorizer()
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._poll_interval = poll_interval
        self._session: aiohttp.ClientSession | None = None
        self._pollers: set[asyncio.Task[None]] = set()

    @property
    def server_url(self) -> str:
        return self._server_url

    async def connect(self) -> None:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)

    async def close(self) -> None:
        for task in list(self._pollers):
            task.cancel()
        if self._pollers:
            await asyncio.gather(*self._pollers, return_exceptions=True)
        self._pollers.clear()
        if self._session:
            await self._session.close()
            self._session = None

    async def __aenter__(self) -> HttpRemoteStore:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()

    async def _headers(self) -> dict[str, str]:
        token = await self._authorizer.ensure_authorized()
        if token:
            return {"Authorization": f"Bearer {token}"}
        return {}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_data: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        body: bytes | None = None,
        content_type: str | None = None,
        allow_missing: bool = False,
    ) -> Any:
        """Make an HTTP request to the hub and decode the JSON answer."""
        if not self._session:
            await self.connect()

        assert self._session is not None

        url = f"{self._server_url}{quote(path, safe='/')}"
        headers = await self._headers()
        if content_type:
            headers["Content-Type"] = content_type

        try:
            async with self._session.request(
                method,
                url,
                json=json_data,
                params=params,
                data=body,
                headers=headers,
            ) as response:
                if response.status == 404 and allow_missing:
                    return None
                if response.status in (401, 403):
                    text = await response.text()
                    raise AuthorizationError(f"Hub refused credentials: {text}", response.status)
                if response.status >= 500:
                    text = await response.text()
                    raise RemoteUnavailableError(f"Hub error: {text}", response.status)
                if response.status >= 400:
                    text = await response.text()
                    raise RemoteError(f"Hub rejected request: {text}", response.status)
                return await response.json()
        except aiohttp.ClientError as e:
            raise RemoteUnavailableError(f"Connection error: {e}") from e
        except TimeoutError as e:
            raise RemoteUnavailableError(f"Request to {url} timed out") from e

    async def ping(self) -> bool:
        try:
            await self._request("GET", "/health")
        except RemoteError:
            return False
        return True

    # ========== Documents ==========

    async def get_document(self, path: str) -> dict[str, Any] | None:
        result = await self._request("GET", f"/documents/{path}", allow_missing=True)
        return result["data"] if result else None

    async def set_document(
        self,
        path: str,
        data: dict[str, Any],
        *,
        op_id: str,
        merge: bool = True,
    ) -> dict[str, Any]:
        plain, stamped = _split_server_timestamps(data)
        result = await self._request(
            "PUT",
            f"/documents/{path}",
            json_data={
                "data": plain,
                "op_id": op_id,
                "merge": merge,
                "server_timestamps": stamped,
            },
        )
        return result["data"]

    async def delete_document(self, path: str, *, op_id: str) -> bool:
        result = await self._request(
            "DELETE", f"/documents/{path}", params={"op_id": op_id}
        )
        return bool(result.get("deleted"))

    async def increment(
        self,
        path: str,
        field_path: str,
        amount: int = 1,
        *,
        op_id: str,
        extra: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        plain, stamped = _split_server_timestamps(extra or {})
        result = await self._request(
            "POST",
            f"/documents/{path}/increment",
            json_data={
                "field": field_path,
                "amount": amount,
                "op_id": op_id,
                "extra": plain,
                "server_timestamps": stamped,
            },
        )
        return result["data"]

    async def list_collection(self, path: str) -> list[dict[str, Any]]:
        result = await self._request("GET", f"/collections/{path}")
        return list(result.get("documents", []))

    # ========== Objects ==========

    async def upload_object(
        self, path: str, data: bytes, content_type: str = "application/octet-stream"
    ) -> str:
        result = await self._request(
            "PUT", f"/objects/{path}", body=bytes(data), content_type=content_type
        )
        return f"{self._server_url}{result['url']}"

    # ========== Change feed ==========

    async def _fetch_changes(self, path: str, since: int | None) -> tuple[ChangeBatch, int]:
        params: dict[str, Any] = {"collection": path}
        if since is not None:
            params["since"] = since
        result = await self._request("GET", "/changes", params=params)
        batch = ChangeBatch(
            path=path,
            changes=_changes_from_json(result.get("changes", [])),
            is_snapshot=bool(result.get("snapshot", False)),
        )
        return batch, int(result.get("cursor", since or 0))

    async def subscribe(
        self,
        path: str,
        callback: ChangeCallback,
        on_error: ErrorCallback | None = None,
    ) -> Unsubscribe:
        batch, cursor = await self._fetch_changes(path, None)
        await callback(batch)

        async def poll() -> None:
            nonlocal cursor
            while True:
                await asyncio.sleep(self._poll_interval)
                try:
                    batch, cursor = await self._fetch_changes(path, cursor)
                    if batch.changes:
                        await callback(batch)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    if on_error is None:
                        logger.warning("Polling %s failed", path, exc_info=True)
                    else:
                        on_error(e)

        task = asyncio.create_task(poll(), name=f"crewsync-poll-{path}")
        self._pollers.add(task)
        task.add_done_callback(self._pollers.discard)

        def unsubscribe() -> None:
            task.cancel()

        return unsubscribe
