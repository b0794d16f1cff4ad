"""Origin and message-source validation.

Everything here is a predicate: callers get a bool, rejections are logged,
nothing raises. Origins are compared by exact equality after normalization,
never by substring or prefix, so ``https://allowed.com.evil.com`` does not
match an allow-listed ``https://allowed.com``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any
from urllib.parse import urlsplit

from widgetbridge.errors import RejectedOriginError

if TYPE_CHECKING:
    from widgetbridge.config.schema import SecurityConfig

_log = logging.getLogger("widgetbridge.security")

LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1"})

_DEFAULT_PORTS = {"http": 80, "https": 443, "ws": 80, "wss": 443}
_SCRIPT_SCHEMES = frozenset({"http", "https"})


def normalize_origin(url: str, schemes: Iterable[str] = _DEFAULT_PORTS) -> str | None:
    """Reduce an absolute URL to its ``scheme://host[:port]`` origin.

    Default ports are dropped and scheme/host are lowercased. Returns None
    for anything that is not an absolute URL with one of ``schemes``.
    """
    if not isinstance(url, str) or "://" not in url:
        return None
    try:
        parts = urlsplit(url.strip())
        port = parts.port
    except ValueError:
        return None

    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    if scheme not in set(schemes) or not host:
        return None

    if ":" in host:
        host = f"[{host}]"
    if port is None or port == _DEFAULT_PORTS.get(scheme):
        return f"{scheme}://{host}"
    return f"{scheme}://{host}:{port}"


def is_loopback_host(url: str) -> bool:
    """Whether the URL points at a local-loopback host name, on any port."""
    try:
        hostname = (urlsplit(url).hostname or "").lower()
    except ValueError:
        return False
    return hostname in LOOPBACK_HOSTS


def is_root_relative(url: str) -> bool:
    """Single leading slash, not a protocol-relative ``//host`` reference."""
    return url.startswith("/") and not url.startswith("//")


class OriginPolicy:
    """Static allow-list consulted for script URLs and inbound messages.

    Attributes:
        host_origin: Origin the host page is served from, if known. URLs on
            this origin are always allowed.
        allowed_origins: Exact origins that are additionally trusted.
    """

    def __init__(
        self,
        allowed_origins: Iterable[str] = (),
        host_origin: str | None = None,
    ) -> None:
        normalized: set[str] = set()
        for entry in allowed_origins:
            origin = normalize_origin(entry)
            if origin is None:
                _log.warning("Ignoring invalid allowed origin %r", entry)
                continue
            normalized.add(origin)
        self._allowed: frozenset[str] = frozenset(normalized)
        self.host_origin = normalize_origin(host_origin) if host_origin else None

    @classmethod
    def from_config(cls, config: SecurityConfig) -> OriginPolicy:
        """Build a policy from the ``security`` config section."""
        return cls(config.allowed_origins, host_origin=config.host_origin)

    @property
    def allowed_origins(self) -> frozenset[str]:
        return self._allowed

    def _origin_trusted(self, origin: str) -> bool:
        if self.host_origin is not None and origin == self.host_origin:
            return True
        if is_loopback_host(origin):
            return True
        return origin in self._allowed

    def is_allowed_url(self, url: Any) -> bool:
        """Decide whether a script or document URL may be loaded."""
        if not isinstance(url, str) or not url:
            _log.warning("Rejected empty script URL")
            return False

        if is_root_relative(url):
            return True

        if "://" not in url:
            # data:, javascript:, bare paths and protocol-relative refs
            _log.warning("Rejected script URL without scheme: %r", url)
            return False

        origin = normalize_origin(url, _SCRIPT_SCHEMES)
        if origin is None:
            _log.warning("Rejected unparsable script URL: %r", url)
            return False

        if self._origin_trusted(origin):
            return True

        _log.warning("Rejected script URL from untrusted origin %s", origin)
        return False

    def is_allowed_origin(self, origin: Any) -> bool:
        """Decide whether a message's claimed origin is trusted."""
        if not isinstance(origin, str) or not origin or origin == "null":
            _log.warning("Rejected message with opaque origin %r", origin)
            return False

        normalized = normalize_origin(origin)
        if normalized is None:
            _log.warning("Rejected message with unparsable origin %r", origin)
            return False

        if self._origin_trusted(normalized):
            return True

        _log.warning("Rejected message from untrusted origin %s", normalized)
        return False

    def require_allowed_url(self, url: str) -> str:
        """Like is_allowed_url, but raise for host-side callers.

        Raises:
            RejectedOriginError: the URL may not be loaded.
        """
        if not self.is_allowed_url(url):
            origin = normalize_origin(url) if isinstance(url, str) else None
            raise RejectedOriginError(origin or repr(url), "not in the allow-list")
        return url

    def is_trusted_message(self, origin: Any, source: Any, expected_source: Any) -> bool:
        """Origin check plus sender identity.

        The sender must be the exact window the host created; a sibling frame
        on an allowed origin is still rejected.
        """
        if expected_source is None or source is not expected_source:
            _log.warning("Rejected message from unexpected source (origin %r)", origin)
            return False
        return self.is_allowed_origin(origin)
