"""widgetbridge: host and guest sides of a sandboxed widget bridge."""

__version__ = "0.1.0"

# Public API
from widgetbridge.channel import (
    GuestInstance,
    GuestState,
    MessageChannel,
    MessagePort,
    PaintFence,
    Window,
)
from widgetbridge.config import Config, load_config
from widgetbridge.document import DocumentBuilder, build_bootstrap_document, escape_html
from widgetbridge.errors import (
    BridgeError,
    HostUnavailableError,
    MalformedMessageError,
    NotConnectedError,
    RejectedOriginError,
)
from widgetbridge.events import Signal
from widgetbridge.guest import GuestRuntime
from widgetbridge.host import HostSession, WidgetHost
from widgetbridge.protocol import ContextSnapshot, MessageType
from widgetbridge.security import OriginPolicy, ResourceCSP, generate_csp
from widgetbridge.sync import ScreenWidth, Subscription, SyncStore

__all__ = [
    # Host side
    "HostSession",
    "WidgetHost",
    "GuestInstance",
    "GuestState",
    "PaintFence",
    "SyncStore",
    "Subscription",
    "ScreenWidth",
    # Guest side
    "GuestRuntime",
    # Messaging
    "ContextSnapshot",
    "MessageType",
    "MessageChannel",
    "MessagePort",
    "Window",
    "Signal",
    # Documents and security
    "DocumentBuilder",
    "build_bootstrap_document",
    "escape_html",
    "OriginPolicy",
    "ResourceCSP",
    "generate_csp",
    # Config
    "Config",
    "load_config",
    # Errors
    "BridgeError",
    "HostUnavailableError",
    "MalformedMessageError",
    "NotConnectedError",
    "RejectedOriginError",
]
