"""Simulator server lifecycle."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from fastapi import FastAPI

log = logging.getLogger(__name__)


class SimulatorServer:
    """Runs a simulator app under uvicorn as a background task.

    Unlike a module-level server, several can coexist (one per port).
    """

    def __init__(self, app: FastAPI) -> None:
        self.app = app
        self.host: str | None = None
        self.port: int | None = None
        self._task: asyncio.Task[None] | None = None
        self._server: Any = None
        self._start_time: float | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def status(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "host": self.host,
            "port": self.port,
            "uptime": time.time() - self._start_time if self._start_time else 0,
            "connections": self.app.state.connections.count(),
        }

    async def start_server(self, host: str = "127.0.0.1", port: int = 6767) -> None:
        """Start serving in the background.

        Raises:
            RuntimeError: if this server is already running.
        """
        if self.running:
            raise RuntimeError(f"Simulator already running on port {self.port}")

        # Import here to keep CLI startup light
        import uvicorn

        config = uvicorn.Config(
            self.app,
            host=host,
            port=port,
            log_level="warning",
            access_log=False,
        )
        self._server = uvicorn.Server(config)
        self._task = asyncio.create_task(self._server.serve())
        self.host = host
        self.port = port
        self._start_time = time.time()
        log.info("Simulator started on http://%s:%d", host, port)

    async def serve_forever(self) -> None:
        """Wait until the server task finishes."""
        if self._task is not None:
            await self._task

    async def stop_server(self) -> None:
        """Close sockets and widgets, then stop uvicorn."""
        if self._task is None:
            return

        await self.app.state.connections.close_all("Server shutting down")
        self.app.state.session.close()

        if self._server is not None:
            self._server.should_exit = True
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task

        log.info("Simulator stopped (was on port %s)", self.port)
        self._task = None
        self._server = None
        self.port = None
        self.host = None
        self._start_time = None
