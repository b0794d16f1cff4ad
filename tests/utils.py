"""Shared test utilities for widgetbridge tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from widgetbridge.channel.ports import MessageEvent, Window
from widgetbridge.guest import GuestRuntime
from widgetbridge.host import HostSession, WidgetHost

HOST_ORIGIN = "https://host.example.com"
SANDBOX_ORIGIN = "https://sandbox.example.com"
EVIL_ORIGIN = "https://evil.example.net"


async def settle(rounds: int = 25) -> None:
    """Let scheduled message deliveries run.

    Window and port delivery go through ``loop.call_soon``, so a handful of
    loop iterations is enough for any single exchange.
    """
    for _ in range(rounds):
        await asyncio.sleep(0)


class Recorder:
    """Callable that records what a signal emitted."""

    def __init__(self) -> None:
        self.calls: list[Any] = []

    def __call__(self, *args: Any) -> None:
        self.calls.append(args[0] if len(args) == 1 else args)

    @property
    def last(self) -> Any:
        return self.calls[-1]


def collect(window_or_port: Any) -> list[MessageEvent]:
    """Record every MessageEvent delivered to a window or port."""
    events: list[MessageEvent] = []
    window_or_port.add_listener(events.append)
    return events


def types_of(events: list[MessageEvent]) -> list[str]:
    return [e.data["type"] for e in events]


async def connect_pair(
    session: HostSession,
    *,
    frame_scheduler: Callable[[], Any] | None = None,
    start: bool = True,
) -> tuple[WidgetHost, GuestRuntime]:
    """Open a widget on the sandbox origin and start a guest runtime in it."""
    host = session.open_widget(origin=SANDBOX_ORIGIN)
    guest = GuestRuntime(
        host.frame_window,
        allowed_parent_origins=session.config.security.allowed_parent_origins,
        frame_scheduler=frame_scheduler,
    )
    if start:
        guest.start()
        await settle()
    return host, guest


class FakeGuest:
    """Hand-driven guest for exercising the host state machine directly.

    Sends raw envelopes so tests can misbehave in ways GuestRuntime won't.
    """

    def __init__(self, frame_window: Window) -> None:
        self.window = frame_window
        self.port = None
        self.received: list[dict[str, Any]] = []
        frame_window.add_listener(self._on_window)

    def _on_window(self, event: MessageEvent) -> None:
        if event.data.get("type") == "handshake" and event.ports:
            self.port = event.ports[0]
            self.port.add_listener(lambda e: self.received.append(e.data))
            self.port.start()

    def post_window(self, message: dict[str, Any], source: Window | None = None) -> None:
        assert self.window.parent is not None
        self.window.parent.post_message(message, "*", source=source or self.window)

    def ready(self) -> None:
        self.post_window({"type": "ready", "payload": {}})

    def post_port(self, message: dict[str, Any]) -> None:
        assert self.port is not None
        self.port.post_message(message)

    def complete_handshake(self) -> None:
        self.post_port({"type": "handshake-complete", "payload": {}})

    def types(self) -> list[str]:
        return [m["type"] for m in self.received]
