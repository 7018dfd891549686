"""YAML config loader with environment overrides and dotted-key lookup."""

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from senamhi.config.schema import ServiceConfig

# Environment variable -> (section, key)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "CACHE_TTL_MS": ("cache", "ttl_ms"),
    "PORT": ("server", "port"),
}


def load_config(
    path: str | Path | None = None, environ: Mapping[str, str] | None = None
) -> ServiceConfig:
    """Load and validate config.

    The YAML file is optional; a missing path means all defaults. Values from
    the environment (see ENV_OVERRIDES) win over the file.
    """
    raw: dict[str, Any] = {}
    if path is not None:
        with open(Path(path)) as f:
            raw = yaml.safe_load(f) or {}

    apply_env_overrides(raw, os.environ if environ is None else environ)
    return ServiceConfig(**raw)


def apply_env_overrides(raw: dict[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    """Copy recognised, non-empty environment values into the raw config dict.

    Values stay strings; pydantic coerces and validates them.
    """
    for var, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(var)
        if value is None or value.strip() == "":
            continue
        raw[section] = {**(raw.get(section) or {}), key: value.strip()}
    return raw


def get_config_value(config: ServiceConfig, dotted_key: str) -> Any:
    """Get a config value by dotted key path. E.g. 'cache.ttl_ms'."""
    obj: Any = config
    for part in dotted_key.split("."):
        if hasattr(obj, part):
            obj = getattr(obj, part)
        elif isinstance(obj, dict):
            obj = obj[part]
        else:
            raise KeyError(f"Config key not found: {dotted_key}")
    return obj
