"""Guest document rendering: bootstrap HTML and the in-frame bridge script."""

from widgetbridge.document.bridge_script import render_bridge_script, script_safe_json
from widgetbridge.document.builder import (
    ERROR_DOCUMENT,
    DocumentBuilder,
    build_bootstrap_document,
    error_document,
    escape_html,
    inject_bridge_script,
    unescape_html,
)

__all__ = [
    "ERROR_DOCUMENT",
    "DocumentBuilder",
    "build_bootstrap_document",
    "error_document",
    "escape_html",
    "inject_bridge_script",
    "render_bridge_script",
    "script_safe_json",
    "unescape_html",
]
