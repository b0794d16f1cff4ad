"""Deep merge and key normalization for configuration cascading.

Config files are written by hand and by widget build tooling; the latter
tends to emit camelCase keys (``connectDomains``). Keys are normalized to
snake_case before merging so both spellings land on the same field.
"""

from __future__ import annotations

import re
from typing import Any

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")


def snake_case(key: str) -> str:
    """Convert ``camelCase`` or ``kebab-case`` keys to ``snake_case``."""
    return _CAMEL_BOUNDARY.sub(r"_\1", key).replace("-", "_").lower()


def normalize_keys(data: dict[str, Any]) -> dict[str, Any]:
    """Recursively normalize mapping keys to snake_case.

    Values inside lists are left untouched; only nested dicts are walked.
    """
    result: dict[str, Any] = {}
    for key, value in data.items():
        new_key = snake_case(key) if isinstance(key, str) else key
        result[new_key] = normalize_keys(value) if isinstance(value, dict) else value
    return result


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries.

    Rules:
    - Nested dicts are recursively merged
    - Lists are replaced entirely (not concatenated)
    - None values in override do NOT override base (enables partial configs)
    - Other values are replaced

    Returns:
        A new dictionary with merged values.
    """
    result = base.copy()

    for key, override_value in override.items():
        if override_value is None:
            continue

        base_value = result.get(key)
        if isinstance(base_value, dict) and isinstance(override_value, dict):
            result[key] = deep_merge(base_value, override_value)
        else:
            result[key] = override_value

    return result


def merge_configs(*configs: dict[str, Any]) -> dict[str, Any]:
    """Merge multiple configs in order (later overrides earlier)."""
    result: dict[str, Any] = {}
    for config in configs:
        if config:
            result = deep_merge(result, normalize_keys(config))
    return result
