"""Configuration file loading.

Handles:
- YAML file parsing
- Environment variable overrides
- Conversion from dict to typed Config dataclass

There is no process-wide cache: every HostSession owns the Config it was
built from, so two sessions in one process can run with different policies.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from widgetbridge.config.merge import merge_configs
from widgetbridge.config.paths import get_config_paths
from widgetbridge.config.schema import (
    Config,
    ContextDefaultsConfig,
    CSPConfig,
    LoggingConfig,
    SecurityConfig,
    ServerConfig,
)

_log = logging.getLogger("widgetbridge.config")

ENV_LOG = "WIDGETBRIDGE_LOG"
ENV_PORT = "WIDGETBRIDGE_PORT"
ENV_HOST_ORIGIN = "WIDGETBRIDGE_HOST_ORIGIN"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file, returning empty dict if not found or invalid."""
    if not path.exists():
        return {}

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except yaml.YAMLError as e:
        _log.warning("Invalid YAML in %s: %s", path, e)
        return {}
    except PermissionError:
        _log.debug("Permission denied reading %s", path)
        return {}
    except OSError as e:
        _log.warning("Error reading %s: %s", path, e)
        return {}


def env_overrides() -> dict[str, Any]:
    """Build config dict from environment variables (highest priority)."""
    overrides: dict[str, Any] = {}

    log_path = os.environ.get(ENV_LOG)
    if log_path:
        overrides.setdefault("logging", {})["file"] = log_path

    port = os.environ.get(ENV_PORT)
    if port:
        try:
            overrides.setdefault("server", {})["port"] = int(port)
        except ValueError:
            _log.warning("Ignoring non-integer %s=%r", ENV_PORT, port)

    host_origin = os.environ.get(ENV_HOST_ORIGIN)
    if host_origin:
        overrides.setdefault("security", {})["host_origin"] = host_origin

    return overrides


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, str)]


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name, {})
    return value if isinstance(value, dict) else {}


def dict_to_config(data: dict[str, Any]) -> Config:
    """Convert merged dict to typed Config dataclass."""
    security_data = _section(data, "security")
    default_security = SecurityConfig()
    security = SecurityConfig(
        host_origin=security_data.get("host_origin"),
        allowed_origins=_str_list(security_data.get("allowed_origins", [])),
        allowed_parent_origins=(
            _str_list(security_data["allowed_parent_origins"])
            if "allowed_parent_origins" in security_data
            else default_security.allowed_parent_origins
        ),
    )

    csp_data = _section(data, "csp")
    csp = CSPConfig(
        base_resource_domains=_str_list(csp_data.get("base_resource_domains", [])),
        connect_domains=_str_list(csp_data.get("connect_domains", [])),
        resource_domains=_str_list(csp_data.get("resource_domains", [])),
    )

    context_data = _section(data, "context")
    defaults = ContextDefaultsConfig()
    context = ContextDefaultsConfig(
        theme=context_data.get("theme", defaults.theme),
        locale=context_data.get("locale", defaults.locale),
        display_mode=context_data.get("display_mode", defaults.display_mode),
        screen_width=context_data.get("screen_width", defaults.screen_width),
        max_height=context_data.get("max_height", defaults.max_height),
    )

    log_data = _section(data, "logging")
    logging_config = LoggingConfig(
        level=log_data.get("level"),
        verbose=log_data.get("verbose"),
        file=log_data.get("file"),
    )

    server_data = _section(data, "server")
    server = ServerConfig(
        host=server_data.get("host", ServerConfig.host),
        port=int(server_data.get("port", ServerConfig.port)),
    )

    known_keys = {"security", "csp", "context", "logging", "server"}
    extra = {k: v for k, v in data.items() if k not in known_keys}

    return Config(
        security=security,
        csp=csp,
        context=context,
        logging=logging_config,
        server=server,
        extra=extra,
    )


def load_config(
    project_root: str | Path | None = None,
    config_path: str | Path | None = None,
) -> Config:
    """Load and merge config from all sources.

    Priority order (highest to lowest):
    1. Environment variables
    2. Explicit ``config_path`` (e.g. from ``--config``)
    3. Project config ($project_root/.widgetbridge/config.yaml)
    4. User config
    5. System config

    Returns:
        A freshly built Config object.
    """
    configs: list[dict[str, Any]] = []

    paths = get_config_paths(project_root)
    if config_path is not None:
        paths.append(Path(config_path))

    for path in paths:
        config_data = load_yaml_file(path)
        if config_data:
            _log.debug("Loaded config from %s", path)
            configs.append(config_data)

    env_config = env_overrides()
    if env_config:
        configs.append(env_config)

    return dict_to_config(merge_configs(*configs))
