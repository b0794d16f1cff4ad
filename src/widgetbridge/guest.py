"""Guest runtime: the capability object widget code talks to.

It is the Python counterpart of the in-frame bridge script. Guest code gets a
``GuestRuntime`` instead of reaching for a global; the runtime announces
readiness to its parent, accepts the handshake port from an allowed parent
origin, mirrors the host's context into a read-only store, and exposes the
guest-to-host API.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections import deque
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from pydantic import ValidationError

from widgetbridge.channel.ports import MessageEvent, MessagePort, Window, animation_frame
from widgetbridge.errors import HostUnavailableError, MalformedMessageError
from widgetbridge.events import Signal
from widgetbridge.protocol.messages import (
    CallTool,
    CallToolResult,
    FenceAck,
    FenceRequest,
    InjectState,
    LogMessage,
    MessageType,
    NotifyHeight,
    OpenLink,
    RequestDisplayMode,
    RequestModal,
    SendMessage,
    SetState,
    UpdateModelContext,
    envelope,
    parse_envelope,
    parse_payload,
)
from widgetbridge.security.origins import is_loopback_host, normalize_origin
from widgetbridge.sync.store import SyncStore

log = logging.getLogger(__name__)

FrameScheduler = Callable[[], Awaitable[None]]


class GuestRuntime:
    """Guest-side end of the bridge.

    Args:
        window: The guest's own window. ``window.parent`` is the host.
        allowed_parent_origins: Origins the handshake is accepted from, in
            addition to loopback hosts on any port.
        frame_scheduler: Awaited before answering a paint fence; stands in
            for the next animation frame.
    """

    def __init__(
        self,
        window: Window,
        *,
        allowed_parent_origins: Iterable[str] = (),
        frame_scheduler: FrameScheduler | None = None,
    ) -> None:
        self.window = window
        self.allowed_parent_origins = frozenset(
            o for o in (normalize_origin(x) for x in allowed_parent_origins) if o
        )
        self.frame_scheduler = frame_scheduler or animation_frame
        self.context = SyncStore(readonly=True)
        self.connected: Signal[[GuestRuntime]] = Signal("guest_connected")
        self.context_received: Signal[[str, frozenset[str]]] = Signal("context_received")
        self.teardown: Signal[[GuestRuntime]] = Signal("guest_teardown")
        self.host_info: dict[str, Any] | None = None
        self.host_capabilities: dict[str, Any] | None = None

        self._port: MessagePort | None = None
        self._queue: deque[dict[str, Any]] = deque()
        self._pending_calls: dict[str, asyncio.Future[Any]] = {}
        self._call_ids = itertools.count(1)
        self._tasks: set[asyncio.Task[None]] = set()
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def host_available(self) -> bool:
        return self.window.parent is not None

    @property
    def is_connected(self) -> bool:
        return self._port is not None

    def start(self) -> None:
        """Listen for the handshake and announce readiness to the parent."""
        parent = self.window.parent
        if parent is None:
            log.debug("No parent window; guest runtime stays host-unavailable")
            return
        if self._unsubscribe is None:
            self._unsubscribe = self.window.add_listener(self._on_window_message)
        parent.post_message(envelope(MessageType.READY), "*", source=self.window)

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._port is not None:
            self._port.close()
            self._port = None
        self._queue.clear()
        for task in self._tasks:
            task.cancel()
        for future in self._pending_calls.values():
            if not future.done():
                future.set_exception(HostUnavailableError("call_tool"))
        self._pending_calls.clear()

    # --- Guest API -------------------------------------------------------------

    async def call_tool(self, name: str, args: dict[str, Any] | None = None) -> Any:
        """Ask the host to run a tool and wait for its result."""
        self._require_host("call_tool")
        call_id = f"call-{next(self._call_ids)}"
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending_calls[call_id] = future
        self._post(MessageType.CALL_TOOL, CallTool(name=name, args=args or {}, call_id=call_id))
        try:
            return await future
        finally:
            self._pending_calls.pop(call_id, None)

    def request_display_mode(self, mode: str) -> None:
        self._require_host("request_display_mode")
        self._post(MessageType.REQUEST_DISPLAY_MODE, RequestDisplayMode(mode=mode))

    def set_state(self, value: dict[str, Any] | None) -> None:
        """Propose new widget state. The local mirror updates immediately."""
        self._require_host("set_state")
        message = SetState(value=value)
        self.context.apply_wire({"widgetState": message.value})
        self._post(MessageType.SET_STATE, message)

    def notify_height(self, height: float) -> None:
        """Report intrinsic height on the window path, bypassing the queue."""
        self._require_host("notify_height")
        assert self.window.parent is not None
        self.window.parent.post_message(
            envelope(MessageType.NOTIFY_HEIGHT, NotifyHeight(height=height)),
            "*",
            source=self.window,
        )

    def open_link(self, url: str) -> None:
        self._require_host("open_link")
        self._post(MessageType.OPEN_LINK, OpenLink(url=url))

    def send_message(self, content: str | list[Any] | dict[str, Any]) -> None:
        self._require_host("send_message")
        self._post(MessageType.SEND_MESSAGE, SendMessage(content=content))

    def log(self, level: str, data: Any, logger: str | None = None) -> None:
        self._require_host("log")
        self._post(MessageType.LOG, LogMessage(level=level, data=data, logger=logger))

    def request_modal(self, mode: str, params: dict[str, Any] | None = None) -> None:
        self._require_host("request_modal")
        self._post(MessageType.REQUEST_MODAL, RequestModal(mode=mode, params=params))

    def update_model_context(
        self,
        content: str | list[Any] | None = None,
        structured_content: dict[str, Any] | None = None,
    ) -> None:
        self._require_host("update_model_context")
        self._post(
            MessageType.UPDATE_MODEL_CONTEXT,
            UpdateModelContext(content=content, structured_content=structured_content),
        )

    # --- Internals -------------------------------------------------------------

    def _require_host(self, operation: str) -> None:
        if self.window.parent is None:
            raise HostUnavailableError(operation)

    def _post(self, message_type: MessageType, payload: Any) -> None:
        message = envelope(message_type, payload)
        if self._port is None:
            self._queue.append(message)
        else:
            self._port.post_message(message)

    def _is_allowed_parent(self, origin: str) -> bool:
        normalized = normalize_origin(origin)
        if normalized is None:
            return False
        return is_loopback_host(normalized) or normalized in self.allowed_parent_origins

    def _on_window_message(self, event: MessageEvent) -> None:
        if event.source is None or event.source is not self.window.parent:
            return
        if not self._is_allowed_parent(event.origin):
            log.warning("Rejected message from untrusted parent origin %r", event.origin)
            return
        try:
            message_type, _ = parse_envelope(event.data)
        except MalformedMessageError as e:
            log.warning("Dropped %s", e)
            return
        if message_type is not MessageType.HANDSHAKE or self._port is not None:
            return
        if not event.ports:
            log.warning("Handshake arrived without a port")
            return

        port = event.ports[0]
        self._port = port
        port.add_listener(self._on_port_message)
        port.start()
        port.post_message(envelope(MessageType.HANDSHAKE_COMPLETE))
        while self._queue:
            port.post_message(self._queue.popleft())
        self.connected.emit(self)

    def _on_port_message(self, event: MessageEvent) -> None:
        try:
            message_type, payload = parse_envelope(event.data)
            if message_type is MessageType.INIT:
                self._read_host_description(payload)
            if message_type in (MessageType.INIT, MessageType.UPDATE):
                changed = self.context.apply_wire(payload)
                self.context_received.emit(message_type.value, changed)
            elif message_type is MessageType.FENCE_REQUEST:
                request = parse_payload(message_type, payload)
                assert isinstance(request, FenceRequest)
                task = asyncio.ensure_future(self._answer_fence(request.token))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
            elif message_type is MessageType.CALL_TOOL_RESULT:
                result = parse_payload(message_type, payload)
                assert isinstance(result, CallToolResult)
                future = self._pending_calls.get(result.call_id)
                if future is not None and not future.done():
                    future.set_result(result.result)
            elif message_type is MessageType.INJECT_STATE:
                injected = parse_payload(message_type, payload)
                assert isinstance(injected, InjectState)
                self.context.apply_wire({"widgetState": injected.state})
            elif message_type is MessageType.TEARDOWN:
                log.debug("Host is tearing down this frame")
                self.teardown.emit(self)
                self.close()
            else:
                log.debug("Ignoring %s from host", message_type.value)
        except (MalformedMessageError, ValidationError) as e:
            log.warning("Dropped host message: %s", e)

    def _read_host_description(self, payload: dict[str, Any]) -> None:
        info = payload.pop("hostInfo", None)
        capabilities = payload.pop("hostCapabilities", None)
        self.host_info = info if isinstance(info, dict) else None
        self.host_capabilities = capabilities if isinstance(capabilities, dict) else None

    async def _answer_fence(self, token: int) -> None:
        await self.frame_scheduler()
        self._post(MessageType.FENCE_ACK, FenceAck(token=token))
