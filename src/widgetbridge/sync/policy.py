"""Layout rules the host applies before publishing a display mode."""

from __future__ import annotations

from enum import Enum


class ScreenWidth(str, Enum):
    """Simulated host viewport widths."""

    MOBILE_S = "mobile-s"
    MOBILE_L = "mobile-l"
    TABLET = "tablet"
    FULL = "full"

    @property
    def pixels(self) -> int:
        return SCREEN_WIDTH_PIXELS[self]


SCREEN_WIDTH_PIXELS: dict[ScreenWidth, int] = {
    ScreenWidth.MOBILE_S: 375,
    ScreenWidth.MOBILE_L: 425,
    ScreenWidth.TABLET: 768,
    ScreenWidth.FULL: 1024,
}


def is_mobile_width(width: ScreenWidth | str) -> bool:
    return ScreenWidth(width) in (ScreenWidth.MOBILE_S, ScreenWidth.MOBILE_L)


def effective_display_mode(mode: str, width: ScreenWidth | str) -> str:
    """Picture-in-picture is not available on mobile widths; use fullscreen."""
    if mode == "pip" and is_mobile_width(width):
        return "fullscreen"
    return mode
