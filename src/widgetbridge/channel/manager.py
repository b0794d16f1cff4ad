"""Channel/handshake manager for one mounted guest frame.

Lifecycle::

    CREATED -> AWAITING_READY -> HANDSHAKING -> CONNECTED -> CLOSED

The guest announces itself with ``ready`` on the host window. The manager
checks origin and sender identity, creates a MessageChannel, keeps ``port1``
and transfers ``port2`` with a ``handshake`` message. Messages sent before
the guest answers ``handshake-complete`` on the port are queued and drained
in order once it does. After that, everything except the urgent allow-list
(intrinsic height) travels over the port.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from widgetbridge.channel.fence import PaintFence
from widgetbridge.channel.ports import MessageChannel, MessageEvent, MessagePort, Window
from widgetbridge.errors import MalformedMessageError, NotConnectedError
from widgetbridge.events import Signal
from widgetbridge.logging import TRACE, VERBOSE, get_logger
from widgetbridge.protocol.messages import (
    URGENT_WINDOW_TYPES,
    CallTool,
    CallToolResult,
    FenceAck,
    LogMessage,
    MessageType,
    NotifyHeight,
    OpenLink,
    RequestDisplayMode,
    RequestModal,
    SendMessage,
    SetState,
    UpdateModelContext,
    WireModel,
    envelope,
    parse_envelope,
    parse_payload,
)
from widgetbridge.security.origins import OriginPolicy, normalize_origin

log = get_logger("channel")
guest_log = get_logger("guest")

ToolHandler = Callable[[str, dict[str, Any]], Awaitable[Any]]

_GUEST_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "notice": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
    "alert": logging.CRITICAL,
    "emergency": logging.CRITICAL,
}


class GuestState(str, Enum):
    CREATED = "created"
    AWAITING_READY = "awaiting-ready"
    HANDSHAKING = "handshaking"
    CONNECTED = "connected"
    CLOSED = "closed"


def text_result(text: str, *, is_error: bool = False) -> dict[str, Any]:
    """Tool result with a single text content block."""
    return {"content": [{"type": "text", "text": text}], "isError": is_error}


async def no_tool_handler(name: str, args: dict[str, Any]) -> Any:
    return text_result(f"No tool handler configured for {name!r}", is_error=True)


class GuestInstance:
    """Owns the channel, outbound queue and paint fence for one frame.

    Args:
        host_window: Window the host runs in; ``ready`` and urgent messages
            arrive here.
        frame_window: The guest's window. Only messages whose source is this
            exact object are trusted.
        policy: Origin allow-list.
        instance_id: Identifier; generated when omitted.
        tool_handler: Async callable answering ``call-tool`` requests.
    """

    def __init__(
        self,
        host_window: Window,
        frame_window: Window,
        policy: OriginPolicy,
        *,
        instance_id: str | None = None,
        tool_handler: ToolHandler | None = None,
    ) -> None:
        self.instance_id = instance_id or uuid.uuid4().hex[:12]
        self.host_window = host_window
        self.frame_window = frame_window
        self.policy = policy
        self.tool_handler: ToolHandler = tool_handler or no_tool_handler

        self._state = GuestState.CREATED
        self._port: MessagePort | None = None
        self._queue: deque[dict[str, Any]] = deque()
        self._unsubscribers: list[Callable[[], None]] = []
        self._connected_event = asyncio.Event()
        self._tool_tasks: set[asyncio.Task[None]] = set()
        self.fence = PaintFence(self._post_on_port, lambda: self.is_connected)

        self.connected: Signal[[GuestInstance]] = Signal("connected")
        self.closed: Signal[[GuestInstance]] = Signal("closed")
        self.outbound: Signal[[dict[str, Any]]] = Signal("outbound")
        self.display_mode_requested: Signal[[str]] = Signal("display_mode_requested")
        self.state_received: Signal[[dict[str, Any] | None]] = Signal("state_received")
        self.height_reported: Signal[[float]] = Signal("height_reported")
        self.tool_called: Signal[[CallTool]] = Signal("tool_called")
        self.link_opened: Signal[[str]] = Signal("link_opened")
        self.message_sent: Signal[[Any]] = Signal("message_sent")
        self.log_received: Signal[[LogMessage]] = Signal("log_received")
        self.modal_requested: Signal[[RequestModal]] = Signal("modal_requested")
        self.model_context_updated: Signal[[UpdateModelContext]] = Signal(
            "model_context_updated"
        )

    def __repr__(self) -> str:
        return f"GuestInstance({self.instance_id!r}, {self._state.value})"

    # --- State ---------------------------------------------------------------

    @property
    def state(self) -> GuestState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is GuestState.CONNECTED

    @property
    def queued(self) -> int:
        """Number of messages waiting for the handshake."""
        return len(self._queue)

    def _set_state(self, state: GuestState) -> None:
        log.log(VERBOSE, "Guest %s: %s -> %s", self.instance_id, self._state.value, state.value)
        self._state = state

    def mount(self) -> None:
        """Start listening for the guest's ``ready`` announcement."""
        if self._state is not GuestState.CREATED:
            log.debug("Guest %s already mounted (%s)", self.instance_id, self._state.value)
            return
        self._unsubscribers.append(self.host_window.add_listener(self._on_window_message))
        self._set_state(GuestState.AWAITING_READY)

    async def wait_connected(self) -> bool:
        """Wait for the handshake. Returns False if closed first."""
        await self._connected_event.wait()
        return self.is_connected

    def close(self) -> None:
        """Tear down: detach, close the port, drop the queue and fence.

        A connected guest is sent ``teardown`` on the port first so it can
        release its own resources. Idempotent.
        """
        if self._state is GuestState.CLOSED:
            return
        was_connected = self.is_connected
        self._set_state(GuestState.CLOSED)
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()
        if self._port is not None:
            if was_connected:
                self._post_on_port(envelope(MessageType.TEARDOWN))
            self._port.close()
        if self._queue:
            log.debug("Guest %s: discarding %d queued messages", self.instance_id, len(self._queue))
        self._queue.clear()
        self.fence.abandon()
        for task in self._tool_tasks:
            task.cancel()
        self._connected_event.set()
        self.closed.emit(self)

    # --- Outbound ------------------------------------------------------------

    def send(self, message: dict[str, Any]) -> None:
        """Deliver a message now if connected, otherwise queue it.

        After teardown messages are dropped.
        """
        if self._state is GuestState.CLOSED:
            log.debug("Guest %s closed; dropping %s", self.instance_id, message.get("type"))
            return
        if self._state is GuestState.CONNECTED:
            self._post_on_port(message)
        else:
            self._queue.append(message)

    def post(self, message_type: MessageType | str, payload: Any = None) -> None:
        self.send(envelope(message_type, payload))

    def post_direct(
        self, message_type: MessageType | str, payload: Any = None, *, strict: bool = False
    ) -> bool:
        """Send without queueing.

        When not connected this warns and does nothing, or raises
        NotConnectedError with ``strict=True``.
        """
        if not self.is_connected:
            name = MessageType(message_type).value
            if strict:
                raise NotConnectedError(f"send {name}", self._state.value)
            log.warning("Guest %s is %s; not sending %s", self.instance_id, self._state.value, name)
            return False
        self._post_on_port(envelope(message_type, payload))
        return True

    def _post_on_port(self, message: dict[str, Any]) -> None:
        assert self._port is not None
        log.log(TRACE, "Guest %s <- %s", self.instance_id, message)
        self._port.post_message(message)
        self.outbound.emit(message)

    def _drain_queue(self) -> None:
        while self._queue and self.is_connected:
            self._post_on_port(self._queue.popleft())

    # --- Inbound -------------------------------------------------------------

    def _on_window_message(self, event: MessageEvent) -> None:
        if self._state is GuestState.CLOSED:
            return
        if not self.policy.is_trusted_message(event.origin, event.source, self.frame_window):
            return
        log.log(TRACE, "Guest %s -> %s (window)", self.instance_id, event.data)
        try:
            message_type, payload = parse_envelope(event.data)
            if message_type is MessageType.READY:
                self._handle_ready()
            elif message_type in URGENT_WINDOW_TYPES:
                self._dispatch(message_type, payload)
            else:
                log.debug("Ignoring %s on the window path", message_type.value)
        except MalformedMessageError as e:
            log.warning("Guest %s: dropped %s", self.instance_id, e)

    def _handle_ready(self) -> None:
        if self._state is not GuestState.AWAITING_READY:
            log.debug("Guest %s: ignoring ready while %s", self.instance_id, self._state.value)
            return

        channel = MessageChannel()
        self._port = channel.port1
        self._unsubscribers.append(self._port.add_listener(self._on_port_message))
        self._port.start()
        self._set_state(GuestState.HANDSHAKING)

        target = self.frame_window.origin if normalize_origin(self.frame_window.origin) else "*"
        log.log(TRACE, "Guest %s <- handshake (window, %s)", self.instance_id, target)
        self.frame_window.post_message(
            envelope(MessageType.HANDSHAKE),
            target,
            source=self.host_window,
            ports=[channel.port2],
        )

    def _on_port_message(self, event: MessageEvent) -> None:
        if self._state is GuestState.CLOSED:
            return
        log.log(TRACE, "Guest %s -> %s", self.instance_id, event.data)
        try:
            message_type, payload = parse_envelope(event.data)
            if message_type is MessageType.HANDSHAKE_COMPLETE:
                self._handle_handshake_complete()
            elif self._state is GuestState.CONNECTED:
                self._dispatch(message_type, payload)
            else:
                log.debug("Guest %s: %s before handshake", self.instance_id, message_type.value)
        except MalformedMessageError as e:
            log.warning("Guest %s: dropped %s", self.instance_id, e)

    def _handle_handshake_complete(self) -> None:
        if self._state is not GuestState.HANDSHAKING:
            log.debug("Guest %s: duplicate handshake-complete", self.instance_id)
            return
        self._set_state(GuestState.CONNECTED)
        self._drain_queue()
        self._connected_event.set()
        log.info("Guest %s connected", self.instance_id)
        self.connected.emit(self)

    def _dispatch(self, message_type: MessageType, raw: dict[str, Any]) -> None:
        payload: WireModel = parse_payload(message_type, raw)

        if isinstance(payload, FenceAck):
            self.fence.acknowledge(payload.token)
        elif isinstance(payload, NotifyHeight):
            self.height_reported.emit(payload.height)
        elif isinstance(payload, RequestDisplayMode):
            self.display_mode_requested.emit(payload.mode)
        elif isinstance(payload, SetState):
            self.state_received.emit(payload.value)
        elif isinstance(payload, CallTool):
            self.tool_called.emit(payload)
            if payload.call_id is not None:
                task = asyncio.ensure_future(self._answer_tool_call(payload))
                self._tool_tasks.add(task)
                task.add_done_callback(self._tool_tasks.discard)
        elif isinstance(payload, OpenLink):
            self.link_opened.emit(payload.url)
        elif isinstance(payload, SendMessage):
            self.message_sent.emit(payload.content)
        elif isinstance(payload, LogMessage):
            guest_log.log(
                _GUEST_LOG_LEVELS[payload.level],
                "[%s] %s",
                payload.logger or self.instance_id,
                payload.data,
            )
            self.log_received.emit(payload)
        elif isinstance(payload, RequestModal):
            self.modal_requested.emit(payload)
        elif isinstance(payload, UpdateModelContext):
            self.model_context_updated.emit(payload)
        else:
            raise MalformedMessageError(message_type.value, "not accepted from a guest")

    async def _answer_tool_call(self, call: CallTool) -> None:
        assert call.call_id is not None
        try:
            result = await self.tool_handler(call.name, dict(call.args))
        except Exception as e:
            log.exception("Tool handler failed for %s", call.name)
            result = text_result(f"Tool {call.name!r} failed: {e}", is_error=True)
        self.post_direct(
            MessageType.CALL_TOOL_RESULT,
            CallToolResult(call_id=call.call_id, result=result),
        )
