"""Origin allow-listing and Content-Security-Policy generation."""

from widgetbridge.security.csp import (
    ResourceCSP,
    generate_csp,
    resolve_script_origin,
    validate_csp_domain,
)
from widgetbridge.security.origins import (
    LOOPBACK_HOSTS,
    OriginPolicy,
    is_loopback_host,
    is_root_relative,
    normalize_origin,
)

__all__ = [
    "LOOPBACK_HOSTS",
    "OriginPolicy",
    "ResourceCSP",
    "generate_csp",
    "is_loopback_host",
    "is_root_relative",
    "normalize_origin",
    "resolve_script_origin",
    "validate_csp_domain",
]
