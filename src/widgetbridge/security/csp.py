"""Content-Security-Policy generation for guest documents.

The policy is default-deny: only the guest's own script origin and the
domains a widget declares are added. Frames and form submission are always
``'none'``. Declared domains come from widget metadata, so each one is
checked before it is allowed into the policy string.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

from widgetbridge.security.origins import is_root_relative, normalize_origin

_log = logging.getLogger("widgetbridge.security.csp")

_CSP_SCHEMES = frozenset({"http", "https", "ws", "wss"})
_FORBIDDEN_CHARS = re.compile(r"[\s'\",;*\\]")


@dataclass
class ResourceCSP:
    """Extra domains a widget declares it needs.

    Attributes:
        connect_domains: Origins allowed for fetch/XHR/WebSocket.
        resource_domains: Origins allowed for images, fonts and media.
    """

    connect_domains: list[str] = field(default_factory=list)
    resource_domains: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> ResourceCSP:
        """Parse widget metadata, accepting snake_case or camelCase keys."""
        if not data:
            return cls()

        def pick(*keys: str) -> list[str]:
            for key in keys:
                value = data.get(key)
                if isinstance(value, list):
                    return [v for v in value if isinstance(v, str)]
            return []

        return cls(
            connect_domains=pick("connect_domains", "connectDomains"),
            resource_domains=pick("resource_domains", "resourceDomains"),
        )

    def merged_with(self, other: ResourceCSP) -> ResourceCSP:
        """Combine two declarations, self first."""
        return ResourceCSP(
            connect_domains=[*self.connect_domains, *other.connect_domains],
            resource_domains=[*self.resource_domains, *other.resource_domains],
        )


def validate_csp_domain(value: Any) -> str | None:
    """Return the origin for a declared domain, or None if it is unsafe.

    Only absolute http(s)/ws(s) origins pass. Paths, queries, fragments,
    credentials, wildcards, quotes, commas, semicolons and whitespace are
    rejected with a warning.
    """
    if not isinstance(value, str) or not value:
        _log.warning("Dropping empty CSP domain %r", value)
        return None
    if _FORBIDDEN_CHARS.search(value):
        _log.warning("Dropping CSP domain with forbidden characters: %r", value)
        return None

    try:
        parts = urlsplit(value)
    except ValueError:
        _log.warning("Dropping unparsable CSP domain %r", value)
        return None

    if parts.path not in ("", "/") or parts.query or parts.fragment:
        _log.warning("Dropping CSP domain with a path or query: %r", value)
        return None
    if parts.username is not None or parts.password is not None:
        _log.warning("Dropping CSP domain with credentials: %r", value)
        return None

    origin = normalize_origin(value, _CSP_SCHEMES)
    if origin is None:
        _log.warning("Dropping CSP domain that is not an http(s)/ws(s) origin: %r", value)
        return None
    return origin


def resolve_script_origin(script_src: str, host_origin: str | None = None) -> str:
    """Origin of the guest bundle, or "" when it cannot be determined."""
    if is_root_relative(script_src):
        return host_origin or ""
    return normalize_origin(script_src, _CSP_SCHEMES) or ""


def _ordered(values: Iterable[str]) -> list[str]:
    seen: dict[str, None] = {}
    for v in values:
        if v:
            seen.setdefault(v, None)
    return list(seen)


def _validated(domains: Iterable[str]) -> list[str]:
    result = []
    for domain in domains:
        origin = validate_csp_domain(domain)
        if origin is not None:
            result.append(origin)
    return result


def generate_csp(
    csp: ResourceCSP | None,
    script_src: str,
    *,
    host_origin: str | None = None,
    base_resource_domains: Iterable[str] = (),
) -> str:
    """Build the policy string for a guest document.

    Args:
        csp: Domains declared by the widget, if any.
        script_src: URL of the guest bundle. Its origin is allowed for
            scripts, styles, connections and resources.
        host_origin: Used to resolve root-relative ``script_src``.
        base_resource_domains: Resource origins every widget needs (SDK
            fonts and stylesheets).
    """
    csp = csp or ResourceCSP()
    script_origin = resolve_script_origin(script_src, host_origin)

    directives = [
        "default-src 'self'",
        f"script-src 'self' 'unsafe-inline' blob: {script_origin}".strip(),
        f"style-src 'self' 'unsafe-inline' {script_origin}".strip(),
        "frame-src 'none'",
        "form-action 'none'",
        "base-uri 'self'",
    ]

    connect_sources = _ordered(["'self'", script_origin, *_validated(csp.connect_domains)])
    directives.append(f"connect-src {' '.join(connect_sources)}")

    resource_sources = _ordered(
        [
            "'self'",
            "data:",
            "blob:",
            script_origin,
            *_validated(base_resource_domains),
            *_validated(csp.resource_domains),
        ]
    )
    resource_list = " ".join(resource_sources)
    directives.append(f"img-src {resource_list}")
    directives.append(f"font-src {resource_list}")
    directives.append(f"media-src {resource_list}")

    return "; ".join(directives)
