"""Message envelope, payload models and the context snapshot."""

from widgetbridge.protocol.messages import (
    DISPLAY_MODES,
    GUEST_TO_HOST,
    HOST_CAPABILITIES,
    HOST_INFO,
    HOST_TO_GUEST,
    LOG_LEVELS,
    MAX_HEIGHT,
    SNAPSHOT_FIELDS,
    URGENT_WINDOW_TYPES,
    ContextSnapshot,
    DeviceInfo,
    MessageType,
    SafeAreaInsets,
    ToolCancellation,
    View,
    WireModel,
    envelope,
    field_name,
    parse_envelope,
    parse_message,
    parse_payload,
    validate_display_mode,
    validate_height,
    validate_link_url,
    validate_state,
    wire_key,
)

__all__ = [
    "DISPLAY_MODES",
    "GUEST_TO_HOST",
    "HOST_CAPABILITIES",
    "HOST_INFO",
    "HOST_TO_GUEST",
    "LOG_LEVELS",
    "MAX_HEIGHT",
    "SNAPSHOT_FIELDS",
    "URGENT_WINDOW_TYPES",
    "ContextSnapshot",
    "DeviceInfo",
    "MessageType",
    "SafeAreaInsets",
    "ToolCancellation",
    "View",
    "WireModel",
    "envelope",
    "field_name",
    "parse_envelope",
    "parse_message",
    "parse_payload",
    "validate_display_mode",
    "validate_height",
    "validate_link_url",
    "validate_state",
    "wire_key",
]
