"""Online/offline tracking."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

ConnectivityListener = Callable[[bool], None]
Probe = Callable[[], Awaitable[bool]]


class ConnectivityMonitor:
    """Reports online/offline transitions to listeners.

    The platform (or a test) pushes transitions with ``set_online``; an
    optional probe loop can derive them from a health check instead.
    """

    def __init__(self, online: bool = True) -> None:
        self._online = online
        self._listeners: list[ConnectivityListener] = []
        self._probe_task: asyncio.Task[None] | None = None

    @property
    def online(self) -> bool:
        return self._online

    def subscribe(self, listener: ConnectivityListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        logger.info("Connectivity: %s", "online" if online else "offline")
        for listener in list(self._listeners):
            listener(online)

    def start_probe(self, probe: Probe, interval: float = 5.0) -> None:
        """Poll ``probe`` every ``interval`` seconds; a raising probe counts as offline."""
        if self._probe_task is not None:
            return

        async def loop() -> None:
            while True:
                try:
                    reachable = await probe()
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.debug("Connectivity probe failed", exc_info=True)
                    reachable = False
                self.set_online(reachable)
                await asyncio.sleep(interval)

        self._probe_task = asyncio.create_task(loop(), name="crewsync-connectivity")

    async def stop(self) -> None:
        if self._probe_task is None:
            return
        self._probe_task.cancel()
        try:
            await self._probe_task
        except asyncio.CancelledError:
            pass
        self._probe_task = None
