"""
Configuration management and loading.

Handles gateway settings from a YAML file and environment variables.
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Mapping, Optional, Tuple

import yaml

DEFAULT_DB_PATH = "usage_gateway.db"
DEFAULT_USAGE_ENDPOINT = "https://analytics-api.voiceflow.com/v2/query/usage"
DEFAULT_LIMIT = 100
CONFIG_PATH_ENV = "USAGE_GATEWAY_CONFIG"

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class DatabaseConfig:
    """Location of the SQLite store."""
    path: str = DEFAULT_DB_PATH

    def __post_init__(self):
        """Validate database path is not blank."""
        if not self.path or not self.path.strip():
            raise ValueError("database.path must be a non-empty string")


@dataclass(frozen=True)
class UpstreamConfig:
    """Upstream analytics API settings."""
    usage_endpoint: str = DEFAULT_USAGE_ENDPOINT

    def __post_init__(self):
        """Validate the endpoint looks like an HTTP URL."""
        if not self.usage_endpoint.startswith(("http://", "https://")):
            raise ValueError("upstream.usage_endpoint must be an http(s) URL")


@dataclass(frozen=True)
class CollectionDefaults:
    """Fallbacks applied when a request leaves a parameter out."""
    tenant: Optional[str] = None
    metrics: Tuple[str, ...] = ()
    limit: int = DEFAULT_LIMIT
    timezone: Optional[str] = None
    environment_id: Optional[str] = None

    def __post_init__(self):
        """Validate default limit is positive."""
        if self.limit <= 0:
            raise ValueError("defaults.limit must be > 0")


@dataclass(frozen=True)
class LoggingConfig:
    """Structured logging settings."""
    level: str = "INFO"
    json: bool = False

    def __post_init__(self):
        """Validate log level name."""
        if self.level not in _LOG_LEVELS:
            raise ValueError(f"logging.level must be one of: {sorted(_LOG_LEVELS)}")


@dataclass(frozen=True)
class GatewayConfig:
    """Complete gateway configuration."""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    defaults: CollectionDefaults = field(default_factory=CollectionDefaults)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_gateway_config(path: str) -> GatewayConfig:
    """Load and validate gateway configuration from YAML file.

    Every section is optional, but unknown keys are rejected so that a typo
    never silently falls back to a default.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated GatewayConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Gateway config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration root must be a dictionary")

    allowed_top_keys = {'database', 'upstream', 'defaults', 'logging'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    database_data = _section(raw_config, 'database', {'path'})
    upstream_data = _section(raw_config, 'upstream', {'usage_endpoint'})
    defaults_data = _section(
        raw_config, 'defaults', {'tenant', 'metrics', 'limit', 'timezone', 'environment_id'}
    )
    logging_data = _section(raw_config, 'logging', {'level', 'json'})

    database = DatabaseConfig(path=_optional_str(database_data, 'path', 'database') or DEFAULT_DB_PATH)
    upstream = UpstreamConfig(
        usage_endpoint=_optional_str(upstream_data, 'usage_endpoint', 'upstream') or DEFAULT_USAGE_ENDPOINT
    )
    defaults = _parse_defaults(defaults_data)

    level = _optional_str(logging_data, 'level', 'logging') or "INFO"
    json_output = logging_data.get('json', False)
    if not isinstance(json_output, bool):
        raise ValueError("'json' in logging must be a boolean")

    return GatewayConfig(
        database=database,
        upstream=upstream,
        defaults=defaults,
        logging=LoggingConfig(level=level.upper(), json=json_output),
    )


def load_gateway_config_from_env(environ: Optional[Mapping[str, str]] = None) -> GatewayConfig:
    """Build configuration from the environment.

    Reads the YAML file named by ``USAGE_GATEWAY_CONFIG`` when set, otherwise
    starts from built-in defaults, then applies individual variable overrides.

    Args:
        environ: Mapping to read instead of ``os.environ``

    Returns:
        Validated GatewayConfig object
    """
    env = os.environ if environ is None else environ

    config_path = _env(env, CONFIG_PATH_ENV)
    config = load_gateway_config(config_path) if config_path else GatewayConfig()

    db_path = _env(env, 'USAGE_GATEWAY_DB')
    if db_path:
        config = replace(config, database=DatabaseConfig(path=db_path))

    endpoint = _env(env, 'VF_USAGE_ENDPOINT')
    if endpoint:
        config = replace(config, upstream=UpstreamConfig(usage_endpoint=endpoint))

    overrides: Dict[str, object] = {}
    tenant = _env(env, 'DEFAULT_TENANT')
    if tenant:
        overrides['tenant'] = tenant
    metrics = _env(env, 'VF_METRICS')
    if metrics:
        overrides['metrics'] = tuple(item.strip() for item in metrics.split(',') if item.strip())
    timezone = _env(env, 'VF_TIMEZONE')
    if timezone:
        overrides['timezone'] = timezone
    environment_id = _env(env, 'VF_ENVIRONMENT_ID')
    if environment_id:
        overrides['environment_id'] = environment_id
    if overrides:
        config = replace(config, defaults=replace(config.defaults, **overrides))

    return config


def _env(env: Mapping[str, str], name: str) -> Optional[str]:
    value = env.get(name)
    if isinstance(value, str) and value:
        return value
    return None


def _section(raw_config: Dict, name: str, allowed_keys: set) -> Dict:
    """Fetch an optional dictionary section and reject unknown keys."""
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")

    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown {name} keys: {unknown_keys}")
    return data


def _optional_str(data: Dict, key: str, path: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"'{key}' in {path} must be a string")
    return value.strip() or None


def _parse_defaults(data: Dict) -> CollectionDefaults:
    """Parse and validate the defaults section.

    Args:
        data: Defaults configuration data

    Returns:
        Validated CollectionDefaults

    Raises:
        ValueError: If configuration is invalid
    """
    metrics_value = data.get('metrics', [])
    if isinstance(metrics_value, str):
        metrics = tuple(item.strip() for item in metrics_value.split(',') if item.strip())
    elif isinstance(metrics_value, list) and all(isinstance(item, str) for item in metrics_value):
        metrics = tuple(item.strip() for item in metrics_value if item.strip())
    else:
        raise ValueError("'metrics' in defaults must be a list of strings or a comma-separated string")

    limit = data.get('limit', DEFAULT_LIMIT)
    if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
        raise ValueError("'limit' in defaults must be a positive integer")

    return CollectionDefaults(
        tenant=_optional_str(data, 'tenant', 'defaults'),
        metrics=metrics,
        limit=limit,
        timezone=_optional_str(data, 'timezone', 'defaults'),
        environment_id=_optional_str(data, 'environment_id', 'defaults'),
    )
