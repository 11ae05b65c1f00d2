"""Authorization capability consulted before every remote write."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from crew_sync.errors import AuthorizationError


@runtime_checkable
class Authorizer(Protocol):
    """Ensures the client may write; returns a bearer token when one applies.

    Raises:
        AuthorizationError: authorization cannot currently be established.
    """

    async def ensure_authorized(self) -> str | None: ...


class NullAuthorizer:
    """For remotes that need no credentials."""

    async def ensure_authorized(self) -> str | None:
        return None


class StaticTokenAuthorizer:
    """Hands out a fixed API token."""

    def __init__(self, token: str | None) -> None:
        self._token = token

    async def ensure_authorized(self) -> str | None:
        if not self._token:
            raise AuthorizationError("No API token configured")
        return self._token
