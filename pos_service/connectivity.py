from __future__ import annotations

import logging
from typing import Awaitable, Callable, List, Optional

logger = logging.getLogger(__name__)

RestoreListener = Callable[[], Awaitable[None]]


class ConnectivityMonitor:
    """Tracks whether the backend is reachable and announces restorations."""

    def __init__(
        self,
        probe: Optional[Callable[[], Awaitable[bool]]] = None,
        online: bool = True,
    ):
        self._probe = probe
        self._online = online
        self._listeners: List[RestoreListener] = []

    @property
    def online(self) -> bool:
        return self._online

    def on_restored(self, listener: RestoreListener) -> None:
        self._listeners.append(listener)

    async def set_online(self, online: bool) -> None:
        was_online = self._online
        self._online = online
        if online and not was_online:
            logger.info("Connectivity restored")
            for listener in list(self._listeners):
                await listener()
        elif was_online and not online:
            logger.warning("Connectivity lost")

    async def check(self) -> bool:
        if self._probe is None:
            return self._online
        await self.set_online(await self._probe())
        return self._online
