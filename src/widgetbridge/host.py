"""Host-side facade: one widget host per frame, grouped in a session.

``HostSession`` is the explicit registry of open widgets. Nothing in the
package keeps module-level host state; the simulator server stores its
session on ``app.state``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from widgetbridge.channel.fence import PaintFence
from widgetbridge.channel.manager import GuestInstance, GuestState, ToolHandler
from widgetbridge.channel.ports import Window
from widgetbridge.config.schema import Config
from widgetbridge.document.builder import DocumentBuilder
from widgetbridge.events import Signal
from widgetbridge.protocol.messages import InjectState, MessageType, validate_state
from widgetbridge.security.csp import ResourceCSP
from widgetbridge.security.origins import OriginPolicy
from widgetbridge.sync.store import Subscription, SyncStore

log = logging.getLogger(__name__)


class WidgetHost:
    """Glues a GuestInstance, its SyncStore and its PaintFence together.

    - sends the full snapshot when the guest connects,
    - routes guest display-mode requests through the store's layout policy,
    - stores guest-proposed widget state,
    - tracks the guest's reported height,
    - fences every display-mode change and emits ``display_mode_ready``
      once the guest has painted it.
    """

    def __init__(
        self,
        session: HostSession,
        frame_window: Window,
        *,
        store: SyncStore | None = None,
        tool_handler: ToolHandler | None = None,
        instance_id: str | None = None,
    ) -> None:
        self.session = session
        self.instance = GuestInstance(
            session.window,
            frame_window,
            session.policy,
            instance_id=instance_id,
            tool_handler=tool_handler,
        )
        self.store = store or SyncStore.from_config(session.config.context)
        self.store.publisher = self.instance.send

        self.height: float | None = None
        self.height_changed: Signal[[float]] = Signal("height_changed")
        self.display_mode_ready: Signal[[str]] = Signal("display_mode_ready")

        self.ready_display_mode: str = self.store.get("display_mode")
        self._announced_mode = self.ready_display_mode
        self._mode_task: asyncio.Task[None] | None = None

        self._subscriptions: list[Subscription] = [
            self.store.subscribe("display_mode", self._on_display_mode),
        ]
        self._disconnects = [
            self.instance.connected.connect(self._on_connected),
            self.instance.display_mode_requested.connect(self._on_mode_requested),
            self.instance.state_received.connect(self.store.ingest_app_state),
            self.instance.height_reported.connect(self._on_height),
        ]

    def __repr__(self) -> str:
        return f"WidgetHost({self.id!r}, {self.instance.state.value})"

    @property
    def id(self) -> str:
        return self.instance.instance_id

    @property
    def state(self) -> GuestState:
        return self.instance.state

    @property
    def fence(self) -> PaintFence:
        return self.instance.fence

    @property
    def frame_window(self) -> Window:
        return self.instance.frame_window

    def mount(self) -> None:
        self.instance.mount()

    async def wait_connected(self, timeout: float | None = None) -> bool:
        return await asyncio.wait_for(self.instance.wait_connected(), timeout)

    # --- Host actions ----------------------------------------------------------

    async def set_display_mode(self, mode: str, *, timeout: float | None = None) -> str:
        """Push a display mode and wait until the guest has painted it.

        Returns:
            The mode actually applied (pip becomes fullscreen on mobile).
        """
        self.store.set_display_mode(mode)
        task = self._mode_task
        if task is not None and not task.done():
            await asyncio.wait([task], timeout=timeout)
        return self.store.get("display_mode")

    async def await_paint(self) -> None:
        await self.fence.await_paint()

    def inject_state(self, state: dict[str, Any] | None) -> None:
        """Debug push of widget state straight into the guest."""
        state = validate_state(state)
        self.store.ingest_app_state(state)
        self.instance.post(MessageType.INJECT_STATE, InjectState(state=state))

    def close(self) -> None:
        if self._mode_task is not None:
            self._mode_task.cancel()
            self._mode_task = None
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        for disconnect in self._disconnects:
            disconnect()
        self.instance.close()
        self.session._forget(self)

    # --- Guest events ----------------------------------------------------------

    def _on_connected(self, instance: GuestInstance) -> None:
        instance.send(self.store.init_message())

    def _on_mode_requested(self, mode: str) -> None:
        applied = self.store.set_display_mode(mode)
        if "display_mode" not in applied:
            log.debug("Guest %s requested %s; already applied", self.id, mode)

    def _on_height(self, height: float) -> None:
        if height == self.height:
            return
        self.height = height
        self.height_changed.emit(height)

    def _on_display_mode(self, mode: str) -> None:
        if mode == self._announced_mode:
            return
        self._announced_mode = mode
        if self._mode_task is not None:
            self._mode_task.cancel()
        fence = self.fence.await_paint()
        self._mode_task = asyncio.ensure_future(self._reveal(mode, fence))

    async def _reveal(self, mode: str, fence: asyncio.Future[None]) -> None:
        await fence
        self.ready_display_mode = mode
        log.debug("Guest %s painted display mode %s", self.id, mode)
        self.display_mode_ready.emit(mode)


class HostSession:
    """Registry of the widget hosts sharing one host window and config.

    Use as an async context manager to close every host on exit::

        async with HostSession(config) as session:
            host = session.open_widget(origin="http://localhost:5173")
    """

    def __init__(self, config: Config | None = None, *, window: Window | None = None) -> None:
        self.config = config or Config()
        origin = self.config.security.host_origin or (
            f"http://{self.config.server.host}:{self.config.server.port}"
        )
        self.window = window or Window(origin, name="host")
        self.policy = OriginPolicy.from_config(self.config.security)
        self.documents = DocumentBuilder.from_config(self.config, self.policy)
        self._hosts: dict[str, WidgetHost] = {}
        self.opened: Signal[[WidgetHost]] = Signal("widget_opened")
        self.closed: Signal[[WidgetHost]] = Signal("widget_closed")

    async def __aenter__(self) -> HostSession:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()

    @property
    def count(self) -> int:
        return len(self._hosts)

    def hosts(self) -> list[WidgetHost]:
        return list(self._hosts.values())

    def get(self, instance_id: str) -> WidgetHost | None:
        return self._hosts.get(instance_id)

    def open_widget(
        self,
        frame_window: Window | None = None,
        *,
        origin: str | None = None,
        store: SyncStore | None = None,
        tool_handler: ToolHandler | None = None,
        instance_id: str | None = None,
    ) -> WidgetHost:
        """Create and mount a host for a frame.

        Without ``frame_window`` a child frame of the session window is
        created on ``origin`` (default: the host's own origin).

        Raises:
            RejectedOriginError: ``origin`` is not allowed.
            ValueError: ``instance_id`` is already open.
        """
        if frame_window is None:
            if origin is not None:
                self.policy.require_allowed_url(origin)
            frame_window = self.window.create_frame(origin or self.window.origin)
        if instance_id is not None and instance_id in self._hosts:
            raise ValueError(f"Widget {instance_id!r} is already open")

        host = WidgetHost(
            self,
            frame_window,
            store=store,
            tool_handler=tool_handler,
            instance_id=instance_id,
        )
        self._hosts[host.id] = host
        host.mount()
        log.info("Opened widget %s", host.id)
        self.opened.emit(host)
        return host

    def close_widget(self, instance_id: str) -> bool:
        host = self._hosts.get(instance_id)
        if host is None:
            return False
        host.close()
        return True

    def render_frame(
        self, script_src: str, theme: str = "dark", csp: ResourceCSP | None = None
    ) -> str:
        """Bootstrap document for a widget bundle (error document if rejected)."""
        return self.documents.build(script_src, theme, csp)

    def close(self) -> None:
        for host in list(self._hosts.values()):
            host.close()

    def _forget(self, host: WidgetHost) -> None:
        if self._hosts.pop(host.id, None) is not None:
            log.info("Closed widget %s", host.id)
            self.closed.emit(host)
