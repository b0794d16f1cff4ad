"""Multi-subscriber signals.

A Signal replaces single callback properties: any number of handlers can be
connected, each connection returns an unsubscribe function, and a failing
handler is logged without preventing the others from running.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any, Generic, ParamSpec

_log = logging.getLogger("widgetbridge.events")

P = ParamSpec("P")


class Signal(Generic[P]):
    """A named event with add/remove subscription semantics.

    Handlers are called synchronously, in subscription order. Coroutine
    functions are scheduled as tasks on the running loop and their failures
    are logged when the task finishes.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._handlers: list[Callable[P, Any]] = []
        self._tasks: set[asyncio.Task[Any]] = set()

    def connect(self, handler: Callable[P, Any]) -> Callable[[], None]:
        """Subscribe a handler.

        Returns:
            Unsubscribe function - safe to call more than once.
        """
        self._handlers.append(handler)

        def unsubscribe() -> None:
            self.disconnect(handler)

        return unsubscribe

    def disconnect(self, handler: Callable[P, Any]) -> None:
        """Remove a handler. Unknown handlers are ignored."""
        if handler in self._handlers:
            self._handlers.remove(handler)

    def clear(self) -> None:
        """Remove every handler."""
        self._handlers.clear()

    @property
    def handler_count(self) -> int:
        """Number of connected handlers."""
        return len(self._handlers)

    def emit(self, *args: P.args, **kwargs: P.kwargs) -> None:
        """Call every handler with the given arguments."""
        for handler in list(self._handlers):
            try:
                result = handler(*args, **kwargs)
            except Exception:
                _log.exception("Handler for %s failed", self.name)
                continue
            if inspect.isawaitable(result):
                try:
                    loop = asyncio.get_running_loop()
                except RuntimeError:
                    _log.warning("No running loop for async handler of %s", self.name)
                    if inspect.iscoroutine(result):
                        result.close()
                    continue
                task = asyncio.ensure_future(result, loop=loop)
                self._tasks.add(task)
                task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            _log.error("Async handler for %s failed: %s", self.name, exc, exc_info=exc)
