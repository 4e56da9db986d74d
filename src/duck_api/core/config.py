"""
Application configuration.

Read from the ``[api]`` table of ``duck-api.toml``::

    [api]
    routes_dir = "api"
    entities_dir = "entities"
    gateways_dir = "gateways"
    domain_prefix = "/domain"
    with_swagger = true
    port = 3000

Relative directories resolve against the directory holding the file.
``DUCK_API_HOST``, ``DUCK_API_PORT``, ``DUCK_API_LOG_LEVEL`` and
``DUCK_API_JWT_SECRET`` override the file.
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

from duck_api.core.errors import ConfigurationError

CONFIG_FILE_NAME = "duck-api.toml"
ENV_PREFIX = "DUCK_API_"

_DIRECTORY_KEYS = ("routes_dir", "entities_dir", "gateways_dir", "log_dir")


def _development() -> bool:
    return os.environ.get(f"{ENV_PREFIX}ENV") == "development"


@dataclass
class ApiConfig:
    """Settings of one duck-api application."""

    # Sources
    routes_dir: Path | None = None
    entities_dir: Path | None = None
    gateways_dir: Path | None = None

    # Mount points
    domain_prefix: str = "/domain"
    gateways_prefix: str = "/gateways"
    plugins_prefix: str = "/plugins"
    websocket_path: str = "/ws"

    # Documentation
    with_swagger: bool = field(default_factory=_development)
    title: str = "duck-api"
    version: str = "0.0.0"
    description: str | None = None

    # Serving
    host: str = "127.0.0.1"
    port: int = 3000
    log_dir: Path | None = None
    log_level: str = "INFO"

    # Plugins
    jwt_secret: str | None = None
    plugins: list[str] = field(default_factory=list)


def _parse_section(data: dict[str, Any], base_dir: Path, source: str) -> dict[str, Any]:
    known = {f.name for f in fields(ApiConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(f"Unknown [api] keys: {', '.join(unknown)}", file=source)

    parsed = dict(data)
    for key in _DIRECTORY_KEYS:
        if parsed.get(key):
            directory = Path(parsed[key])
            parsed[key] = directory if directory.is_absolute() else base_dir / directory
    if "port" in parsed:
        parsed["port"] = int(parsed["port"])
    return parsed


def apply_env_overrides(config: ApiConfig) -> ApiConfig:
    """Return ``config`` with ``DUCK_API_*`` environment overrides applied."""
    overrides: dict[str, Any] = {}
    if os.environ.get(f"{ENV_PREFIX}HOST"):
        overrides["host"] = os.environ[f"{ENV_PREFIX}HOST"]
    if os.environ.get(f"{ENV_PREFIX}PORT"):
        try:
            overrides["port"] = int(os.environ[f"{ENV_PREFIX}PORT"])
        except ValueError as e:
            raise ConfigurationError(f"{ENV_PREFIX}PORT must be an integer") from e
    if os.environ.get(f"{ENV_PREFIX}LOG_LEVEL"):
        overrides["log_level"] = os.environ[f"{ENV_PREFIX}LOG_LEVEL"].upper()
    if os.environ.get(f"{ENV_PREFIX}JWT_SECRET"):
        overrides["jwt_secret"] = os.environ[f"{ENV_PREFIX}JWT_SECRET"]
    return replace(config, **overrides) if overrides else config


def load_config(path: Path | str | None = None) -> ApiConfig:
    """
    Load the application configuration.

    Args:
        path: A ``duck-api.toml`` file, or a directory containing one.
            Defaults to the current directory.

    Returns:
        ApiConfig with file values, then environment overrides

    Raises:
        ConfigurationError: If an explicit file is missing or malformed
    """
    target = Path(path) if path is not None else Path.cwd()
    if target.is_dir():
        target = target / CONFIG_FILE_NAME
        if not target.exists():
            return apply_env_overrides(ApiConfig())
    elif not target.exists():
        raise ConfigurationError("Configuration file not found", file=str(target))

    try:
        data = tomllib.loads(target.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid TOML: {e}", file=str(target)) from e

    section = data.get("api", {})
    if not isinstance(section, dict):
        raise ConfigurationError("[api] must be a table", file=str(target))

    config = ApiConfig(**_parse_section(section, target.parent.resolve(), str(target)))
    return apply_env_overrides(config)
