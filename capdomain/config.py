"""Runtime settings for the capability server, read from the environment."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from pathlib import Path

from capdomain.errors import ConfigError

logger = logging.getLogger(__name__)

ENV_PREFIX = "CAPDOMAIN_"

DEFAULT_DOMAINS_PATH = Path("./domains")
DEFAULT_SCRATCH_DIR = Path("/tmp/code-executor")
DEFAULT_CODE_TIMEOUT = 30.0  # seconds
DEFAULT_REMOTE_TIMEOUT = 30.0  # seconds
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 5271

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class Settings:
    """Capability server settings."""

    domains_path: Path = DEFAULT_DOMAINS_PATH
    scratch_dir: Path = DEFAULT_SCRATCH_DIR
    code_timeout_seconds: float = DEFAULT_CODE_TIMEOUT
    remote_timeout_seconds: float = DEFAULT_REMOTE_TIMEOUT
    use_sandbox: bool = True
    policy_id: str = "default"
    log_level: str = "INFO"
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT

    def with_overrides(self, **changes) -> Settings:
        """Return a copy with the non-None overrides applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})


def _env(environ: dict[str, str], name: str) -> str | None:
    value = environ.get(ENV_PREFIX + name)
    if value is None or value.strip() == "":
        return None
    return value.strip()


def _parse_float(name: str, value: str) -> float:
    try:
        parsed = float(value)
    except ValueError as e:
        raise ConfigError(f"{ENV_PREFIX}{name} must be a number, got {value!r}") from e
    if parsed <= 0:
        raise ConfigError(f"{ENV_PREFIX}{name} must be positive, got {value!r}")
    return parsed


def _parse_int(name: str, value: str) -> int:
    try:
        return int(value)
    except ValueError as e:
        raise ConfigError(f"{ENV_PREFIX}{name} must be an integer, got {value!r}") from e


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigError(f"{ENV_PREFIX}{name} must be a boolean, got {value!r}")


def _parse_path(name: str, value: str) -> Path:
    return Path(value).expanduser()


def _parse_str(name: str, value: str) -> str:
    return value


# (env var suffix, Settings field, parser)
_ENV_FIELDS = [
    ("DOMAINS_PATH", "domains_path", _parse_path),
    ("SCRATCH_DIR", "scratch_dir", _parse_path),
    ("CODE_TIMEOUT", "code_timeout_seconds", _parse_float),
    ("REMOTE_TIMEOUT", "remote_timeout_seconds", _parse_float),
    ("SANDBOX", "use_sandbox", _parse_bool),
    ("POLICY", "policy_id", _parse_str),
    ("LOG_LEVEL", "log_level", lambda name, value: value.upper()),
    ("HOST", "host", _parse_str),
    ("PORT", "port", _parse_int),
]


def load_settings(environ: dict[str, str] | None = None) -> Settings:
    """Build settings from environment variables.

    Args:
        environ: Mapping to read from (defaults to os.environ)

    Returns:
        Settings with defaults for every unset variable

    Raises:
        ConfigError: If a variable holds a malformed value
    """
    environ = dict(os.environ if environ is None else environ)
    changes: dict[str, object] = {}

    for name, field_name, parser in _ENV_FIELDS:
        value = _env(environ, name)
        if value is not None:
            changes[field_name] = parser(name, value)

    return Settings().with_overrides(**changes)


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging the same way for the broker and the CLI."""
    logging.basicConfig(level=level, format=LOG_FORMAT)


# Global settings instance
_settings_instance: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = load_settings()
        logger.debug(f"Loaded settings: {_settings_instance}")
    return _settings_instance


def set_settings(settings: Settings | None) -> None:
    """Replace the global settings instance (None forces a reload)."""
    global _settings_instance
    _settings_instance = settings
