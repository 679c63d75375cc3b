"""Configuration loading.

Values come from built-in defaults, then an optional YAML file, then an
optional dotenv file, then environment variables, then explicit overrides
(highest precedence). Any problem raises
``ConfigurationError`` before scheduling starts.
"""

import logging
import math
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml
from dotenv import dotenv_values

from .core.scheduler import parse_cron_schedule
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")

# Environment variable -> config field
ENV_VARS = {
    "BACKEND_URLS": "backend_urls",
    "PING_ENDPOINT": "ping_endpoint",
    "CRON_SCHEDULE": "cron_schedule",
    "PING_INTERVAL_SECONDS": "ping_interval",
    "BURST_DURATION_SECONDS": "burst_duration",
    "REQUEST_TIMEOUT_SECONDS": "request_timeout",
    "HOST": "host",
    "PORT": "port",
    "LOG_LEVEL": "log_level",
    "VERIFY_TLS": "verify_tls",
}


@dataclass
class MonitorConfig:
    """Effective configuration of the keep-alive monitor."""
    backend_urls: List[str] = field(default_factory=list)
    ping_endpoint: str = "/api/health"
    cron_schedule: str = "* * * * *"  # Every minute
    ping_interval: float = 10.0  # Seconds between rounds within a burst
    burst_duration: float = 60.0  # Seconds each burst lasts
    request_timeout: float = 7.0  # Per-request timeout in seconds
    host: str = "0.0.0.0"
    port: int = 3001
    log_level: str = "INFO"
    verify_tls: bool = True

    def validate(self) -> "MonitorConfig":
        """Check every field, raising ConfigurationError on the first problem."""
        if not self.backend_urls:
            raise ConfigurationError("BACKEND_URLS must list at least one backend URL")
        for name in ("ping_interval", "burst_duration", "request_timeout"):
            value = getattr(self, name)
            if not math.isfinite(value):
                raise ConfigurationError(f"{name} must be a finite number, got {value!r}")
            if value <= 0:
                raise ConfigurationError(f"{name} must be positive")
        if self.ping_interval > self.burst_duration:
            raise ConfigurationError("ping_interval must not exceed burst_duration")
        if not 0 <= self.port <= 65535:
            raise ConfigurationError(f"port out of range: {self.port}")
        if self.log_level.upper() not in LOG_LEVELS:
            raise ConfigurationError(f"Unknown log level: {self.log_level}")
        parse_cron_schedule(self.cron_schedule)
        return self

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def parse_url_list(value: Union[str, List[Any], None]) -> List[str]:
    """Split a comma-separated string (or list) into trimmed, non-empty URLs."""
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, (list, tuple)):
        items = [str(v) for v in value if v is not None]
    else:
        raise ConfigurationError(f"backend_urls must be a string or list, got {type(value).__name__}")
    return [item.strip() for item in items if item and item.strip()]


def _parse_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off"):
        return False
    raise ConfigurationError(f"{name} must be a boolean, got {value!r}")


def _coerce(name: str, value: Any) -> Any:
    """Convert a raw value to the type of the named field."""
    if name == "backend_urls":
        return parse_url_list(value)
    if name == "verify_tls":
        return _parse_bool(name, value)
    try:
        if name == "port":
            return int(value)
        if name in ("ping_interval", "burst_duration", "request_timeout"):
            return float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from None
    if value is None:
        raise ConfigurationError(f"{name} must not be empty")
    return str(value).strip()


def load_config_file(path: Union[str, Path]) -> Dict[str, Any]:
    """Read a YAML configuration file into a dict of field values."""
    path = Path(path)
    try:
        with open(path, 'r') as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    known = {f.name for f in fields(MonitorConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(f"Unknown config keys in {path}: {', '.join(map(str, unknown))}")
    return data


def load_env_file(path: Union[str, Path]) -> Dict[str, str]:
    """Read KEY=VALUE pairs from a dotenv file. Keys without a value are skipped."""
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"Cannot read env file {path}: no such file")
    return {k: v for k, v in dotenv_values(path).items() if v is not None}


def load_config(config_file: Optional[Union[str, Path]] = None,
                environ: Optional[Mapping[str, str]] = None,
                env_file: Optional[Union[str, Path]] = None,
                **overrides: Any) -> MonitorConfig:
    """Build and validate the effective configuration.

    Args:
        config_file: Optional YAML file
        environ: Environment mapping (defaults to os.environ)
        env_file: Optional dotenv file; its variables sit below the environment
        **overrides: Field values taking precedence over everything else
            (None values are ignored)

    Returns:
        Validated configuration

    Raises:
        ConfigurationError: If any value is missing or invalid
    """
    environ = os.environ if environ is None else environ
    values: Dict[str, Any] = {}

    if config_file:
        values.update(load_config_file(config_file))
        logger.debug(f"Loaded configuration file {config_file}")

    if env_file:
        environ = {**load_env_file(env_file), **environ}
        logger.debug(f"Loaded environment file {env_file}")

    for var, name in ENV_VARS.items():
        raw = environ.get(var)
        if raw is not None and (raw.strip() or name == "backend_urls"):
            values[name] = raw

    values.update({k: v for k, v in overrides.items() if v is not None})

    config = MonitorConfig(**{name: _coerce(name, value) for name, value in values.items()})
    config.log_level = config.log_level.upper()
    return config.validate()
