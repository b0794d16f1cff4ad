"""Configuration schema dataclasses for widgetbridge.

Defines the structure of configuration at all levels (system, user, project).
All fields have defaults so partial configs merge together cleanly.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

DEFAULT_PORT = 6767


@dataclass
class SecurityConfig:
    """Origin allow-listing for scripts, frames and inbound messages.

    Example config.yaml:
        security:
          host_origin: "http://localhost:6767"
          allowed_origins:
            - "https://sandbox.example.com"
          allowed_parent_origins:
            - "https://app.example.com"
    """

    host_origin: str | None = None  # Origin the host page is served from
    allowed_origins: list[str] = field(default_factory=list)  # Script/frame origins
    allowed_parent_origins: list[str] = field(
        default_factory=lambda: [
            "http://localhost",
            "https://localhost",
            "http://127.0.0.1",
            "https://127.0.0.1",
        ]
    )  # Origins the guest accepts the handshake from


@dataclass
class CSPConfig:
    """Content-Security-Policy defaults applied to every bootstrap document.

    Per-widget domains declared by the widget itself are appended to these.
    """

    base_resource_domains: list[str] = field(default_factory=list)  # SDK fonts/styles
    connect_domains: list[str] = field(default_factory=list)
    resource_domains: list[str] = field(default_factory=list)


@dataclass
class ContextDefaultsConfig:
    """Initial Context Snapshot values for newly opened widgets."""

    theme: str = "dark"
    locale: str = "en-US"
    display_mode: str = "inline"
    screen_width: str = "full"  # mobile-s, mobile-l, tablet, full
    max_height: float | None = 480.0  # Applied in pip mode


@dataclass
class LoggingConfig:
    """Logging configuration."""

    level: str | None = None  # TRACE, DEBUG, VERBOSE, INFO, WARNING, ERROR
    verbose: int | None = None  # 0-4, takes precedence over level
    file: str | None = None  # Log file path


@dataclass
class ServerConfig:
    """Simulator server configuration."""

    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT


@dataclass
class Config:
    """Root configuration object.

    Aggregates all configuration sections. All fields use default factories
    to ensure partial configs work correctly with deep merging.
    """

    security: SecurityConfig = field(default_factory=SecurityConfig)
    csp: CSPConfig = field(default_factory=CSPConfig)
    context: ContextDefaultsConfig = field(default_factory=ContextDefaultsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    server: ServerConfig = field(default_factory=ServerConfig)

    # Extension point for future config sections
    extra: dict[str, Any] = field(default_factory=dict)
