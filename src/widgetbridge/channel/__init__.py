"""Frame messaging primitives, the handshake manager and the paint fence."""

from widgetbridge.channel.fence import PaintFence
from widgetbridge.channel.manager import (
    GuestInstance,
    GuestState,
    ToolHandler,
    no_tool_handler,
    text_result,
)
from widgetbridge.channel.ports import (
    MessageChannel,
    MessageEvent,
    MessagePort,
    Window,
    animation_frame,
    structured_clone,
)

__all__ = [
    "GuestInstance",
    "GuestState",
    "MessageChannel",
    "MessageEvent",
    "MessagePort",
    "PaintFence",
    "ToolHandler",
    "Window",
    "animation_frame",
    "no_tool_handler",
    "structured_clone",
    "text_result",
]
