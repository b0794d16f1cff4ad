"""WebSocket fan-out of context updates to simulator clients."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from fastapi import WebSocket

log = logging.getLogger(__name__)


class ConnectionManager:
    """Tracks simulator sockets per widget instance.

    Each socket watches one instance; ``broadcast`` mirrors a message to all
    sockets watching it and forgets any socket that fails to receive.
    """

    def __init__(self) -> None:
        self._watchers: dict[str, set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, instance_id: str) -> None:
        """Accept a socket and register it for an instance."""
        await websocket.accept()
        async with self._lock:
            self._watchers.setdefault(instance_id, set()).add(websocket)
        log.debug("Simulator client watching %s", instance_id)

    async def disconnect(self, websocket: WebSocket, instance_id: str) -> None:
        async with self._lock:
            watchers = self._watchers.get(instance_id)
            if watchers is not None:
                watchers.discard(websocket)
                if not watchers:
                    del self._watchers[instance_id]
        log.debug("Simulator client stopped watching %s", instance_id)

    async def broadcast(self, instance_id: str, message: dict[str, Any]) -> None:
        """Send a message to every socket watching ``instance_id``."""
        async with self._lock:
            watchers = set(self._watchers.get(instance_id, ()))

        failed: list[WebSocket] = []
        for websocket in watchers:
            try:
                await websocket.send_json(message)
            except Exception as e:
                log.debug("Dropping simulator socket for %s: %s", instance_id, e)
                failed.append(websocket)

        if failed:
            async with self._lock:
                remaining = self._watchers.get(instance_id)
                if remaining is not None:
                    remaining.difference_update(failed)
                    if not remaining:
                        del self._watchers[instance_id]

    def count(self, instance_id: str | None = None) -> int:
        """Open sockets for one instance, or for all of them."""
        if instance_id is not None:
            return len(self._watchers.get(instance_id, ()))
        return sum(len(watchers) for watchers in self._watchers.values())

    async def close_instance(self, instance_id: str, reason: str = "Widget closed") -> None:
        async with self._lock:
            watchers = self._watchers.pop(instance_id, set())
        for websocket in watchers:
            with contextlib.suppress(Exception):
                await websocket.close(code=1000, reason=reason)

    async def close_all(self, reason: str = "Server shutting down") -> None:
        """Close every socket."""
        async with self._lock:
            sockets = [ws for watchers in self._watchers.values() for ws in watchers]
            self._watchers.clear()

        for websocket in sockets:
            with contextlib.suppress(Exception):
                await websocket.close(code=1001, reason=reason)
        log.info("Closed %d simulator connections", len(sockets))
