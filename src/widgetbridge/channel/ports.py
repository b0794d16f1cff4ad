"""Asyncio stand-ins for the browser messaging primitives.

``Window.post_message`` and ``MessagePort.post_message`` behave like their
browser namesakes where the bridge depends on it:

- delivery is asynchronous (scheduled on the running loop, never inline),
- delivery is FIFO per target,
- data is structured-cloned, so sender and receiver never share objects,
- ports can be transferred with a window message,
- a port buffers messages until ``start()`` and drops them after ``close()``.
"""

from __future__ import annotations

import asyncio
import copy
import itertools
import logging
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from widgetbridge.events import Signal
from widgetbridge.security.origins import normalize_origin

_log = logging.getLogger("widgetbridge.channel.ports")

_port_ids = itertools.count(1)


def structured_clone(data: Any) -> Any:
    """Deep copy standing in for the browser's structured clone."""
    return copy.deepcopy(data)


async def animation_frame() -> None:
    """Default frame scheduler: yield one loop iteration."""
    await asyncio.sleep(0)


@dataclass
class MessageEvent:
    """A delivered message.

    ``source`` is the sending Window (None for port messages) and ``origin``
    is the sender's origin, ``"null"`` when it has none.
    """

    data: Any
    origin: str = ""
    source: Window | None = None
    ports: tuple[MessagePort, ...] = field(default_factory=tuple)


class Window:
    """A browsing context that can receive ``postMessage`` traffic.

    Attributes:
        origin: The origin documents in this window run on.
        parent: Embedding window, or None for a top-level window.
        message: Signal raised with a MessageEvent for each delivery.
    """

    def __init__(self, origin: str, *, parent: Window | None = None, name: str = "") -> None:
        self.origin = origin
        self.parent = parent
        self.name = name
        self.message: Signal[[MessageEvent]] = Signal(f"window:{name or origin}:message")
        self.closed = False

    def __repr__(self) -> str:
        return f"Window({self.name or self.origin!r})"

    def create_frame(self, origin: str, name: str = "") -> Window:
        """Create a child window embedded in this one."""
        return Window(origin, parent=self, name=name)

    def add_listener(self, handler: Callable[[MessageEvent], Any]) -> Callable[[], None]:
        return self.message.connect(handler)

    def remove_listener(self, handler: Callable[[MessageEvent], Any]) -> None:
        self.message.disconnect(handler)

    def post_message(
        self,
        data: Any,
        target_origin: str = "*",
        *,
        source: Window | None = None,
        ports: Iterable[MessagePort] = (),
    ) -> None:
        """Queue a message for delivery to this window.

        Messages whose ``target_origin`` does not match this window's origin
        are dropped silently, as the browser does.
        """
        if self.closed:
            return
        if target_origin != "*" and normalize_origin(target_origin) != normalize_origin(
            self.origin
        ):
            _log.debug("Dropped message for %s: target origin %s", self, target_origin)
            return

        transferred = tuple(ports)
        for port in transferred:
            port._mark_transferred()

        event = MessageEvent(
            data=structured_clone(data),
            origin=source.origin if source is not None else "null",
            source=source,
            ports=transferred,
        )
        asyncio.get_running_loop().call_soon(self._deliver, event)

    def _deliver(self, event: MessageEvent) -> None:
        if not self.closed:
            self.message.emit(event)

    def close(self) -> None:
        self.closed = True
        self.message.clear()


class MessagePort:
    """One end of a MessageChannel."""

    def __init__(self) -> None:
        self.id = next(_port_ids)
        self.message: Signal[[MessageEvent]] = Signal(f"port:{self.id}:message")
        self._peer: MessagePort | None = None
        self._pending: deque[MessageEvent] = deque()
        self._started = False
        self._closed = False
        self._transferred = False

    def __repr__(self) -> str:
        return f"MessagePort({self.id})"

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def started(self) -> bool:
        return self._started

    def add_listener(self, handler: Callable[[MessageEvent], Any]) -> Callable[[], None]:
        return self.message.connect(handler)

    def post_message(self, data: Any) -> None:
        """Send to the entangled port. Dropped if either end is closed."""
        peer = self._peer
        if self._closed or peer is None or peer._closed:
            _log.debug("Dropped message on closed %s", self)
            return
        peer._enqueue(MessageEvent(data=structured_clone(data)))

    def start(self) -> None:
        """Begin delivering buffered and future messages."""
        if self._started or self._closed:
            return
        self._started = True
        loop = asyncio.get_running_loop()
        for _ in range(len(self._pending)):
            loop.call_soon(self._deliver_next)

    def close(self) -> None:
        """Disentangle. Buffered messages are discarded; idempotent."""
        if self._closed:
            return
        self._closed = True
        self._pending.clear()
        self.message.clear()

    def _enqueue(self, event: MessageEvent) -> None:
        self._pending.append(event)
        if self._started:
            asyncio.get_running_loop().call_soon(self._deliver_next)

    def _deliver_next(self) -> None:
        if self._closed or not self._pending:
            return
        self.message.emit(self._pending.popleft())

    def _mark_transferred(self) -> None:
        if self._transferred:
            raise ValueError(f"{self} has already been transferred")
        self._transferred = True


class MessageChannel:
    """Two entangled ports. The creator keeps ``port1`` and transfers ``port2``."""

    def __init__(self) -> None:
        self.port1 = MessagePort()
        self.port2 = MessagePort()
        self.port1._peer = self.port2
        self.port2._peer = self.port1
