"""
Configuration loading for the grades service.

Settings come from three layers, later layers winning:
defaults, an optional YAML file (config/conf.yaml), and environment
variables with the LIBRA_ prefix (LIBRA_<SECTION>_<KEY>). The AWS
variables understood by the CloudWatch sink (AWS_ENDPOINT, AWS_REGION,
AWS_LOG_GROUP, AWS_LOG_STREAM, AWS_METRICS_NAMESPACE) are honoured too.
Configuration is loaded once at startup; there is no hot reload.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

ENV_PREFIX = "LIBRA"
DEFAULT_CONFIG_FILE = Path("config") / "conf.yaml"


class ConfigurationError(Exception):
    """Raised when the configuration file cannot be read or parsed."""


@dataclass
class ServerConfig:
    port: int = 8080


@dataclass
class DBConfig:
    host: str = "localhost"
    port: int = 5432
    user: str = "postgres"
    password: str = ""
    database: str = "grades"
    pool_min: int = 1
    pool_max: int = 10


@dataclass
class AWSConfig:
    endpoint: Optional[str] = None
    region: str = "us-east-1"
    log_group: str = "/grades-service"
    log_stream: str = "application"
    metrics_namespace: str = "GradesService"


@dataclass
class LogsConfig:
    enabled: bool = True
    batch_size: int = 100
    flush_interval: float = 5.0
    level: str = "INFO"
    create_stream: bool = False


@dataclass
class MetricsConfig:
    enabled: bool = True
    service_name: str = "grades-service"


@dataclass
class Configuration:
    server: ServerConfig = field(default_factory=ServerConfig)
    db: DBConfig = field(default_factory=DBConfig)
    aws: AWSConfig = field(default_factory=AWSConfig)
    logs: LogsConfig = field(default_factory=LogsConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)


# (minimum, maximum) accepted for numeric settings
_LIMITS: Dict[str, tuple] = {
    "server.port": (1, 65535),
    "db.port": (1, 65535),
    "db.pool_min": (1, 100),
    "db.pool_max": (1, 100),
    "logs.batch_size": (1, 10000),
    "logs.flush_interval": (0.001, 3600),
}

# Plain AWS_* variables read by the original CloudWatch clients
_AWS_ENV = {
    "AWS_ENDPOINT": "endpoint",
    "AWS_REGION": "region",
    "AWS_LOG_GROUP": "log_group",
    "AWS_LOG_STREAM": "log_stream",
    "AWS_METRICS_NAMESPACE": "metrics_namespace",
}

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _coerce(key: str, raw: Any, default: Any) -> Any:
    """Convert ``raw`` to the type of ``default``.

    Invalid or out-of-range values are logged and replaced by the default,
    the same way the service has always treated bad numeric settings.
    """
    if isinstance(default, bool):
        if isinstance(raw, bool):
            return raw
        value = str(raw).strip().lower()
        if value in _TRUE:
            return True
        if value in _FALSE:
            return False
        logger.warning(f"Invalid boolean for {key}: {raw!r}. Using default: {default}")
        return default

    if isinstance(default, (int, float)) or key in _LIMITS:
        number_type = float if isinstance(default, float) else int
        try:
            value = number_type(raw)
        except (ValueError, TypeError) as e:
            logger.warning(f"Invalid value for {key}: {raw!r}. Error: {e}. Using default: {default}")
            return default
        minimum, maximum = _LIMITS.get(key, (None, None))
        if minimum is not None and value < minimum:
            logger.warning(f"Invalid value for {key}: {value}. Must be >= {minimum}. Using default: {default}")
            return default
        if maximum is not None and value > maximum:
            logger.warning(f"Value for {key} ({value}) exceeds maximum ({maximum}). Using default: {default}")
            return default
        return value

    if raw is None:
        return default
    return str(raw)


def _apply(section_obj: Any, section: str, values: Dict[str, Any]) -> None:
    for key, raw in values.items():
        if not hasattr(section_obj, key):
            logger.warning(f"Ignoring unknown configuration key: {section}.{key}")
            continue
        current = getattr(section_obj, key)
        if current is None:
            setattr(section_obj, key, None if raw in (None, "") else str(raw))
        else:
            setattr(section_obj, key, _coerce(f"{section}.{key}", raw, current))


def _read_file(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse configuration file {path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Failed to read configuration file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping")
    return data


def _env_overrides(config: Configuration, environ: Dict[str, str]) -> None:
    for section in config.__dataclass_fields__:
        section_obj = getattr(config, section)
        overrides = {}
        for key in section_obj.__dataclass_fields__:
            env_name = f"{ENV_PREFIX}_{section}_{key}".upper()
            if env_name in environ:
                overrides[key] = environ[env_name]
        _apply(section_obj, section, overrides)

    aws_overrides = {
        attr: environ[name] for name, attr in _AWS_ENV.items() if environ.get(name)
    }
    _apply(config.aws, "aws", aws_overrides)


def load_config(
    path: Optional[os.PathLike] = None, environ: Optional[Dict[str, str]] = None
) -> Configuration:
    """Load the service configuration.

    Args:
        path: YAML file to read. Defaults to ``LIBRA_CONFIG_FILE`` or
            ``config/conf.yaml``; a missing default file is not an error.
        environ: Environment mapping, ``os.environ`` when omitted.

    Raises:
        ConfigurationError: If an explicitly requested file is missing or
            any file cannot be parsed.
    """
    environ = dict(os.environ if environ is None else environ)
    config = Configuration()

    explicit = path is not None or f"{ENV_PREFIX}_CONFIG_FILE" in environ
    config_path = Path(path or environ.get(f"{ENV_PREFIX}_CONFIG_FILE") or DEFAULT_CONFIG_FILE)

    if config_path.is_file():
        data = _read_file(config_path)
        for section, values in data.items():
            if section not in config.__dataclass_fields__ or not isinstance(values, dict):
                logger.warning(f"Ignoring unknown configuration section: {section}")
                continue
            _apply(getattr(config, section), section, values)
        logger.info(f"Loaded configuration from {config_path}")
    elif explicit:
        raise ConfigurationError(f"Configuration file not found: {config_path}")
    else:
        logger.info("No configuration file found, using defaults and environment")

    _env_overrides(config, environ)

    if config.db.pool_min > config.db.pool_max:
        logger.warning(
            f"db.pool_min ({config.db.pool_min}) exceeds db.pool_max ({config.db.pool_max}). "
            "Using pool_min as pool_max"
        )
        config.db.pool_max = config.db.pool_min

    return config
