"""Configuration management for widgetbridge.

Provides hierarchical YAML-based configuration with:
- System-level config (/etc/widgetbridge/ or %PROGRAMDATA%)
- User-level config (~/.config/widgetbridge/ or %APPDATA%)
- Project-level config ($project_root/.widgetbridge/)
- Environment variable overrides (highest priority)

Example usage:
    from widgetbridge.config import load_config

    config = load_config(project_root="/path/to/widget")
    print(config.security.allowed_origins)
    print(config.context.theme)
"""

from widgetbridge.config.loader import (
    dict_to_config,
    env_overrides,
    load_config,
    load_yaml_file,
)
from widgetbridge.config.paths import (
    get_config_paths,
    get_project_config_path,
    get_system_config_path,
    get_user_config_path,
)
from widgetbridge.config.schema import (
    Config,
    ContextDefaultsConfig,
    CSPConfig,
    LoggingConfig,
    SecurityConfig,
    ServerConfig,
)

__all__ = [
    # Main API
    "Config",
    "load_config",
    "dict_to_config",
    "env_overrides",
    "load_yaml_file",
    # Schema types
    "SecurityConfig",
    "CSPConfig",
    "ContextDefaultsConfig",
    "LoggingConfig",
    "ServerConfig",
    # Path utilities
    "get_config_paths",
    "get_system_config_path",
    "get_user_config_path",
    "get_project_config_path",
]
