"""Context snapshot store and the layout policy applied to it."""

from widgetbridge.sync.policy import (
    SCREEN_WIDTH_PIXELS,
    ScreenWidth,
    effective_display_mode,
    is_mobile_width,
)
from widgetbridge.sync.store import TOOL_FIELDS, Subscription, SyncStore

__all__ = [
    "SCREEN_WIDTH_PIXELS",
    "TOOL_FIELDS",
    "ScreenWidth",
    "Subscription",
    "SyncStore",
    "effective_display_mode",
    "is_mobile_width",
]
