"""Bootstrap document builder.

When the host loads a built widget bundle rather than a full page, it has to
synthesize the guest's HTML itself. Every interpolated value (script URL,
theme, CSP) is HTML-attribute escaped: they all come from data a caller
controls, so this is the XSS boundary.
"""

from __future__ import annotations

import html
import logging
import re
from collections.abc import Iterable
from typing import TYPE_CHECKING

from widgetbridge.document.bridge_script import render_bridge_script
from widgetbridge.security.csp import ResourceCSP, generate_csp
from widgetbridge.security.origins import OriginPolicy, is_root_relative

if TYPE_CHECKING:
    from widgetbridge.config.schema import Config

_log = logging.getLogger("widgetbridge.document")

_HTML_ESCAPES = {
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&#39;",
}
_HTML_ESCAPE_RE = re.compile(r"[&<>\"']")
_HEAD_RE = re.compile(r"<head[^>]*>", re.IGNORECASE)
_DOCTYPE_RE = re.compile(r"<!DOCTYPE[^>]*>", re.IGNORECASE)

ERROR_DOCUMENT = (
    "<!DOCTYPE html><html><body><h1>Error</h1>"
    "<p>Script source not allowed.</p></body></html>"
)


def escape_html(value: str) -> str:
    """Escape ``& < > " '`` for safe use in HTML text and attributes."""
    return _HTML_ESCAPE_RE.sub(lambda m: _HTML_ESCAPES[m.group(0)], value)


def unescape_html(value: str) -> str:
    """Inverse of escape_html."""
    return html.unescape(value)


def error_document() -> str:
    """Static document shown in place of a rejected widget."""
    return ERROR_DOCUMENT


def build_bootstrap_document(
    script_src: str,
    theme: str,
    csp_policy: str,
    *,
    bridge_script: str | None = None,
) -> str:
    """Render the guest document for an already validated script URL."""
    safe_src = escape_html(script_src)
    safe_theme = escape_html(theme)
    safe_csp = escape_html(csp_policy)
    bridge = f"\n  {bridge_script.strip()}" if bridge_script else ""
    return f"""<!DOCTYPE html>
<html lang="en" data-theme="{safe_theme}">
<head>
  <meta charset="UTF-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1.0" />
  <meta http-equiv="Content-Security-Policy" content="{safe_csp}" />
  <title>Resource</title>
  <style>
    html, body, #root {{
      margin: 0;
      padding: 0;
      width: 100%;
      min-height: 100%;
      background: transparent;
      color-scheme: dark light;
    }}
  </style>{bridge}
</head>
<body>
  <div id="root"></div>
  <script src="{safe_src}"></script>
</body>
</html>"""


def inject_bridge_script(html_content: str, bridge_script: str) -> str:
    """Insert the bridge script into an existing page.

    Goes right after ``<head>``, else after the doctype, else at the start.
    """
    match = _HEAD_RE.search(html_content) or _DOCTYPE_RE.search(html_content)
    if match:
        pos = match.end()
        return html_content[:pos] + bridge_script + html_content[pos:]
    return bridge_script + html_content


class DocumentBuilder:
    """Validates a widget's script URL and renders its bootstrap document."""

    def __init__(
        self,
        policy: OriginPolicy,
        *,
        base_csp: ResourceCSP | None = None,
        base_resource_domains: Iterable[str] = (),
        allowed_parent_origins: Iterable[str] = (),
        include_bridge: bool = True,
    ) -> None:
        self.policy = policy
        self.base_csp = base_csp or ResourceCSP()
        self.base_resource_domains = list(base_resource_domains)
        self.allowed_parent_origins = list(allowed_parent_origins)
        self.include_bridge = include_bridge

    @classmethod
    def from_config(cls, config: Config, policy: OriginPolicy | None = None) -> DocumentBuilder:
        return cls(
            policy or OriginPolicy.from_config(config.security),
            base_csp=ResourceCSP(
                connect_domains=list(config.csp.connect_domains),
                resource_domains=list(config.csp.resource_domains),
            ),
            base_resource_domains=config.csp.base_resource_domains,
            allowed_parent_origins=config.security.allowed_parent_origins,
        )

    def absolute_script_src(self, script_src: str) -> str:
        """Resolve root-relative sources; srcdoc/blob frames cannot."""
        if is_root_relative(script_src) and self.policy.host_origin:
            return f"{self.policy.host_origin}{script_src}"
        return script_src

    def csp_for(self, script_src: str, csp: ResourceCSP | None = None) -> str:
        """Policy for a script URL, combining config and widget declarations."""
        declared = self.base_csp.merged_with(csp) if csp else self.base_csp
        return generate_csp(
            declared,
            self.absolute_script_src(script_src),
            host_origin=self.policy.host_origin,
            base_resource_domains=self.base_resource_domains,
        )

    def build(self, script_src: str, theme: str = "dark", csp: ResourceCSP | None = None) -> str:
        """Bootstrap document, or the static error document if rejected."""
        if not self.policy.is_allowed_url(script_src):
            _log.error("Script source not allowed; rendering error document")
            return error_document()

        absolute_src = self.absolute_script_src(script_src)
        policy = self.csp_for(script_src, csp)
        bridge = (
            render_bridge_script(self.allowed_parent_origins) if self.include_bridge else None
        )
        return build_bootstrap_document(absolute_src, theme, policy, bridge_script=bridge)
