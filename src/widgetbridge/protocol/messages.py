"""Wire format for host/guest messages.

Every message is an envelope ``{"type": <str>, "payload": <object>}``. Payload
keys are camelCase on the wire and snake_case in Python; the pydantic models
accept either (``populate_by_name``).

Inbound payloads come from an untrusted frame, so ``parse_payload`` turns any
pydantic ``ValidationError`` into ``MalformedMessageError`` for the dispatch
boundary to log and drop.
"""

from __future__ import annotations

import math
from enum import Enum
from typing import Any, Literal
from urllib.parse import urlsplit

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    JsonValue,
    StrictInt,
    TypeAdapter,
    ValidationError,
    field_serializer,
    field_validator,
)
from pydantic.alias_generators import to_camel

from widgetbridge import __version__
from widgetbridge.errors import MalformedMessageError

MAX_HEIGHT = 100_000

_JSON_RECORD: TypeAdapter[dict[str, JsonValue]] = TypeAdapter(dict[str, JsonValue])

# Carried by every ``init`` payload as ``hostInfo`` and ``hostCapabilities``.
HOST_INFO: dict[str, str] = {"name": "widgetbridge", "version": __version__}
HOST_CAPABILITIES: dict[str, Any] = {
    "openLinks": {},
    "serverTools": {},
    "logging": {},
    "updateModelContext": {"text": {}},
    "message": {"text": {}},
}

DisplayMode = Literal["inline", "pip", "fullscreen"]
Theme = Literal["light", "dark"]
LogLevel = Literal[
    "debug", "info", "notice", "warning", "error", "critical", "alert", "emergency"
]

DISPLAY_MODES: tuple[str, ...] = ("inline", "pip", "fullscreen")
LOG_LEVELS: tuple[str, ...] = (
    "debug",
    "info",
    "notice",
    "warning",
    "error",
    "critical",
    "alert",
    "emergency",
)


class MessageType(str, Enum):
    """Envelope ``type`` values."""

    # Host -> guest
    INIT = "init"
    UPDATE = "update"
    HANDSHAKE = "handshake"
    FENCE_REQUEST = "fence-request"
    CALL_TOOL_RESULT = "call-tool-result"
    INJECT_STATE = "inject-state"
    TEARDOWN = "teardown"

    # Guest -> host
    READY = "ready"
    HANDSHAKE_COMPLETE = "handshake-complete"
    FENCE_ACK = "fence-ack"
    REQUEST_DISPLAY_MODE = "request-display-mode"
    SET_STATE = "set-state"
    NOTIFY_HEIGHT = "notify-height"
    CALL_TOOL = "call-tool"
    OPEN_LINK = "open-link"
    SEND_MESSAGE = "send-message"
    LOG = "log"
    REQUEST_MODAL = "request-modal"
    UPDATE_MODEL_CONTEXT = "update-model-context"


HOST_TO_GUEST = frozenset(
    {
        MessageType.INIT,
        MessageType.UPDATE,
        MessageType.HANDSHAKE,
        MessageType.FENCE_REQUEST,
        MessageType.CALL_TOOL_RESULT,
        MessageType.INJECT_STATE,
        MessageType.TEARDOWN,
    }
)
GUEST_TO_HOST = frozenset(MessageType) - HOST_TO_GUEST

# Types a connected guest may still send on the global window path.
URGENT_WINDOW_TYPES = frozenset({MessageType.NOTIFY_HEIGHT})


class WireModel(BaseModel):
    """Base model: snake_case attributes, camelCase wire keys."""

    model_config = ConfigDict(
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# --- Context snapshot -------------------------------------------------------


class SafeAreaInsets(WireModel):
    """Insets the guest should keep clear of host chrome."""

    model_config = ConfigDict(frozen=True)

    top: float = 0
    bottom: float = 0
    left: float = 0
    right: float = 0


class DeviceInfo(WireModel):
    """Device class and input capabilities.

    Serialized as ``{"device": {"type"}, "capabilities": {"hover", "touch"}}``.
    """

    model_config = ConfigDict(frozen=True)

    type: Literal["desktop", "mobile", "tablet", "unknown"] = "desktop"
    hover: bool = True
    touch: bool = False

    def to_user_agent(self) -> dict[str, Any]:
        return {
            "device": {"type": self.type},
            "capabilities": {"hover": self.hover, "touch": self.touch},
        }

    @classmethod
    def from_wire(cls, value: Any) -> Any:
        """Accept the nested user-agent shape as well as the flat one."""
        if isinstance(value, dict) and ("device" in value or "capabilities" in value):
            device = value.get("device") or {}
            capabilities = value.get("capabilities") or {}
            flat: dict[str, Any] = {}
            if "type" in device:
                flat["type"] = device["type"]
            flat.update({k: v for k, v in capabilities.items() if k in ("hover", "touch")})
            return flat
        return value


class View(WireModel):
    """Active view (e.g. a modal) and its parameters."""

    model_config = ConfigDict(frozen=True)

    mode: str
    params: dict[str, JsonValue] | None = None


class ToolCancellation(WireModel):
    model_config = ConfigDict(frozen=True)

    reason: str | None = None


class ContextSnapshot(WireModel):
    """Host-owned context the guest renders against.

    Instances handed out by the store are frozen; the store builds a new one
    for every change.
    """

    model_config = ConfigDict(frozen=True, validate_default=False)

    theme: Theme = "dark"
    locale: str = "en-US"
    display_mode: DisplayMode = "inline"
    max_height: float | None = None
    safe_area: SafeAreaInsets = Field(default_factory=SafeAreaInsets)
    device: DeviceInfo = Field(default_factory=DeviceInfo, alias="userAgent")
    view: View | None = None
    tool_input: dict[str, JsonValue] = Field(default_factory=dict)
    tool_input_partial: dict[str, JsonValue] | None = None
    tool_output: dict[str, JsonValue] | None = None
    tool_response_metadata: dict[str, JsonValue] | None = None
    tool_cancelled: ToolCancellation | None = None
    widget_state: dict[str, Any] | None = None

    @field_validator("device", mode="before")
    @classmethod
    def _device_from_wire(cls, value: Any) -> Any:
        return DeviceInfo.from_wire(value)

    @field_validator("max_height", mode="before")
    @classmethod
    def _check_max_height(cls, value: Any) -> Any:
        if value is None:
            return None
        return validate_height(value)

    @field_validator("widget_state", mode="before")
    @classmethod
    def _check_widget_state(cls, value: Any) -> Any:
        return validate_state(value)

    @field_serializer("device")
    def _device_to_wire(self, device: DeviceInfo) -> dict[str, Any]:
        return device.to_user_agent()

    def to_wire(self, fields: set[str] | None = None) -> dict[str, Any]:
        """Wire form of the whole snapshot, or of the named fields only."""
        return self.model_dump(by_alias=True, mode="json", include=fields)


SNAPSHOT_FIELDS: frozenset[str] = frozenset(ContextSnapshot.model_fields)


def wire_key(field: str) -> str:
    """camelCase wire key for a snapshot field."""
    info = ContextSnapshot.model_fields[field]
    return info.alias or to_camel(field)


_WIRE_TO_FIELD = {wire_key(name): name for name in SNAPSHOT_FIELDS}


def field_name(key: str) -> str:
    """Snapshot field for a wire key or a field name.

    Raises:
        KeyError: if ``key`` is neither.
    """
    if key in SNAPSHOT_FIELDS:
        return key
    return _WIRE_TO_FIELD[key]


# --- Scalar validators ------------------------------------------------------


def validate_height(value: Any) -> float:
    """Finite number in ``(0, MAX_HEIGHT]``. Booleans and strings are rejected."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"height must be a number, got {type(value).__name__}")
    height = float(value)
    if not math.isfinite(height) or height <= 0 or height > MAX_HEIGHT:
        raise ValueError(f"height out of range: {value!r}")
    return height


def validate_display_mode(value: Any) -> str:
    if value not in DISPLAY_MODES:
        raise ValueError(f"unknown display mode: {value!r}")
    return value


def validate_state(value: Any) -> dict[str, Any] | None:
    """None or a plain record with string keys holding JSON values only.

    Nested values are checked too: functions, sets and other objects that
    cannot cross the frame boundary are rejected.
    """
    if value is None:
        return None
    if type(value) is not dict:
        raise ValueError(f"state must be an object or null, got {type(value).__name__}")
    if not all(isinstance(k, str) for k in value):
        raise ValueError("state keys must be strings")
    try:
        return _JSON_RECORD.validate_python(value)
    except ValidationError as e:
        raise ValueError(f"state must hold JSON values only ({_summarize(e)})") from None


def validate_link_url(value: Any) -> str:
    if not isinstance(value, str):
        raise ValueError("url must be a string")
    try:
        scheme = urlsplit(value).scheme.lower()
    except ValueError as e:
        raise ValueError(f"unparsable url: {value!r}") from e
    if scheme not in ("http", "https"):
        raise ValueError(f"only http(s) links may be opened, got {scheme or 'no'} scheme")
    return value


# --- Payloads ---------------------------------------------------------------


class EmptyPayload(WireModel):
    pass


class FenceRequest(WireModel):
    token: StrictInt


class FenceAck(WireModel):
    token: StrictInt


class CallToolResult(WireModel):
    call_id: str
    result: Any = None


class InjectState(WireModel):
    state: dict[str, Any] | None = None

    @field_validator("state", mode="before")
    @classmethod
    def _check_state(cls, value: Any) -> Any:
        return validate_state(value)


class RequestDisplayMode(WireModel):
    mode: DisplayMode


class SetState(WireModel):
    value: dict[str, Any] | None

    @field_validator("value", mode="before")
    @classmethod
    def _check_value(cls, value: Any) -> Any:
        return validate_state(value)


class NotifyHeight(WireModel):
    height: float

    @field_validator("height", mode="before")
    @classmethod
    def _check_height(cls, value: Any) -> float:
        return validate_height(value)


class CallTool(WireModel):
    name: str = Field(min_length=1)
    args: dict[str, Any] = Field(default_factory=dict)
    call_id: str | None = None


class OpenLink(WireModel):
    url: str

    @field_validator("url", mode="before")
    @classmethod
    def _check_url(cls, value: Any) -> str:
        return validate_link_url(value)


class SendMessage(WireModel):
    content: str | list[Any] | dict[str, Any]


class LogMessage(WireModel):
    level: LogLevel
    data: Any = None
    logger: str | None = None


class RequestModal(WireModel):
    mode: str = Field(min_length=1)
    params: dict[str, JsonValue] | None = None


class UpdateModelContext(WireModel):
    content: str | list[Any] | None = None
    structured_content: dict[str, Any] | None = None


PAYLOAD_MODELS: dict[MessageType, type[WireModel]] = {
    MessageType.HANDSHAKE: EmptyPayload,
    MessageType.FENCE_REQUEST: FenceRequest,
    MessageType.CALL_TOOL_RESULT: CallToolResult,
    MessageType.INJECT_STATE: InjectState,
    MessageType.TEARDOWN: EmptyPayload,
    MessageType.READY: EmptyPayload,
    MessageType.HANDSHAKE_COMPLETE: EmptyPayload,
    MessageType.FENCE_ACK: FenceAck,
    MessageType.REQUEST_DISPLAY_MODE: RequestDisplayMode,
    MessageType.SET_STATE: SetState,
    MessageType.NOTIFY_HEIGHT: NotifyHeight,
    MessageType.CALL_TOOL: CallTool,
    MessageType.OPEN_LINK: OpenLink,
    MessageType.SEND_MESSAGE: SendMessage,
    MessageType.LOG: LogMessage,
    MessageType.REQUEST_MODAL: RequestModal,
    MessageType.UPDATE_MODEL_CONTEXT: UpdateModelContext,
}


# --- Envelope ---------------------------------------------------------------


def envelope(message_type: MessageType | str, payload: Any = None) -> dict[str, Any]:
    """Build a wire envelope. Models are serialized with camelCase keys."""
    if isinstance(payload, WireModel):
        payload = payload.to_wire()
    return {"type": MessageType(message_type).value, "payload": payload or {}}


def parse_envelope(data: Any) -> tuple[MessageType, dict[str, Any]]:
    """Split an inbound message into its type and raw payload.

    Raises:
        MalformedMessageError: not an object, unknown type, or a non-object
            payload.
    """
    if not isinstance(data, dict):
        raise MalformedMessageError(None, f"expected an object, got {type(data).__name__}")
    raw_type = data.get("type")
    if not isinstance(raw_type, str):
        raise MalformedMessageError(None, "missing or non-string 'type'")
    try:
        message_type = MessageType(raw_type)
    except ValueError:
        raise MalformedMessageError(raw_type, "unknown message type") from None
    payload = data.get("payload")
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise MalformedMessageError(raw_type, "payload must be an object")
    return message_type, payload


def parse_payload(message_type: MessageType, payload: dict[str, Any]) -> WireModel:
    """Validate a payload against the model for its type.

    ``init`` and ``update`` are parsed as (partial) snapshots by the store,
    not here.
    """
    model = PAYLOAD_MODELS.get(message_type)
    if model is None:
        raise MalformedMessageError(message_type.value, "no payload model for type")
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise MalformedMessageError(message_type.value, _summarize(e)) from e


def parse_message(data: Any) -> tuple[MessageType, WireModel]:
    """parse_envelope followed by parse_payload."""
    message_type, payload = parse_envelope(data)
    return message_type, parse_payload(message_type, payload)


def _summarize(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        loc = ".".join(str(p) for p in item.get("loc", ())) or "payload"
        parts.append(f"{loc}: {item.get('msg')}")
    return "; ".join(parts)
