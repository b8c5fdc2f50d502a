"""Runtime configuration.

Resolution order (highest wins):
    CLI options > YAML file (--config) > DEVICELINK_* environment > defaults

Example YAML:
    port: 9000
    auth_token: s3cret
    relay_url: wss://relay.example.com/ws
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml

from .protocol.errors import ConfigError

logger = logging.getLogger(__name__)

ENV_PREFIX = "DEVICELINK_"

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8765
DEFAULT_TOKEN = "changeme"

# Field name -> environment variable suffix, where they differ
ENV_NAMES = {"auth_token": "TOKEN"}

_NUMERIC_FIELDS: dict[str, type] = {
    "port": int,
    "reconnect_delay": float,
    "auth_timeout": float,
}


@dataclass(frozen=True)
class RuntimeConfig:
    """Resolved runtime configuration."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    auth_token: str = DEFAULT_TOKEN
    relay_url: str | None = None
    reconnect_delay: float = 5.0
    auth_timeout: float = 30.0
    adb_serial: str | None = None
    log_level: str = "INFO"

    @property
    def uses_default_token(self) -> bool:
        return self.auth_token == DEFAULT_TOKEN

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> RuntimeConfig:
        """Build a config from DEVICELINK_* environment variables."""
        environ = os.environ if environ is None else environ
        values = {}
        for f in fields(cls):
            name = ENV_PREFIX + ENV_NAMES.get(f.name, f.name.upper())
            if environ.get(name):
                values[f.name] = environ[name]
        return cls().merge(values)

    def merge(self, overrides: Mapping[str, Any]) -> RuntimeConfig:
        """Return a copy with every non-None override applied.

        Raises:
            ConfigError: On unknown keys or values of the wrong type
        """
        known = {f.name for f in fields(self)}
        updates = {}
        for key, value in overrides.items():
            if key not in known:
                raise ConfigError(f"unknown config key: {key}")
            if value is not None:
                updates[key] = _coerce(key, value)
        return replace(self, **updates)

    def validate(self) -> RuntimeConfig:
        """Check value ranges; returns self for chaining."""
        if not 0 <= self.port <= 65535:
            raise ConfigError(f"port out of range: {self.port}")
        if not self.auth_token:
            raise ConfigError("auth_token must not be empty")
        if self.reconnect_delay < 0:
            raise ConfigError(f"reconnect_delay must be >= 0: {self.reconnect_delay}")
        if self.auth_timeout <= 0:
            raise ConfigError(f"auth_timeout must be > 0: {self.auth_timeout}")
        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            raise ConfigError(f"unknown log level: {self.log_level}")
        return self

    def to_dict(self, mask_token: bool = True) -> dict[str, Any]:
        data = asdict(self)
        if mask_token:
            data["auth_token"] = mask_secret(self.auth_token)
        return data


def _coerce(key: str, value: Any) -> Any:
    kind = _NUMERIC_FIELDS.get(key, str)
    if isinstance(value, bool):
        raise ConfigError(f"invalid value for {key}: {value!r}")
    try:
        return kind(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"invalid value for {key}: {value!r}") from e


def mask_secret(secret: str) -> str:
    if len(secret) <= 4:
        return "****"
    return secret[:2] + "****"


def read_config_file(path: str | Path) -> dict[str, Any]:
    """Load a YAML config file into a mapping of overrides."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a mapping")
    return data


def load_config(
    config_path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
    **overrides: Any,
) -> RuntimeConfig:
    """Resolve the runtime configuration from all sources.

    Args:
        config_path: Optional YAML file
        environ: Environment mapping (defaults to os.environ)
        **overrides: CLI-level values; None means "not given"

    Returns:
        Validated RuntimeConfig

    Raises:
        ConfigError: If any source holds an invalid value
    """
    config = RuntimeConfig.from_env(environ)
    if config_path:
        config = config.merge(read_config_file(config_path))
    return config.merge(overrides).validate()


def warn_if_default_token(config: RuntimeConfig) -> bool:
    """Log a warning when the well-known default token is in use."""
    if not config.uses_default_token:
        return False
    logger.warning(
        f"Using the default auth token {DEFAULT_TOKEN!r}; "
        f"set {ENV_PREFIX}TOKEN or --token before exposing this device"
    )
    return True
