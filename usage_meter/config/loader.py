"""
Configuration management and loading.

Handles application settings read from a YAML file.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict

import yaml

from usage_meter.storage.db import DEFAULT_DB_PATH

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class StorageConfig:
    """Where usage data is persisted."""
    db_path: str = DEFAULT_DB_PATH

    def __post_init__(self):
        """Validate the database path is set."""
        if not isinstance(self.db_path, str) or not self.db_path.strip():
            raise ValueError("db_path must be a non-empty string")


@dataclass(frozen=True)
class UsageConfig:
    """Usage recomputation settings."""
    cache_ttl_seconds: float = 300.0
    max_workers: int = 4

    def __post_init__(self):
        """Validate recomputation settings."""
        if self.cache_ttl_seconds < 0:
            raise ValueError("cache_ttl_seconds must be >= 0")
        if self.max_workers < 1:
            raise ValueError("max_workers must be >= 1")


@dataclass(frozen=True)
class LoggingConfig:
    """Logging settings applied by the CLI."""
    level: str = "INFO"

    def __post_init__(self):
        """Validate the log level name."""
        if self.level not in LOG_LEVELS:
            raise ValueError(f"level must be one of: {list(LOG_LEVELS)}")


@dataclass(frozen=True)
class AppConfig:
    """Complete application configuration."""
    storage: StorageConfig = field(default_factory=StorageConfig)
    usage: UsageConfig = field(default_factory=UsageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_config(path: str) -> AppConfig:
    """Load and validate application configuration from YAML file.

    Every section is optional, but unknown keys and wrongly typed values
    are rejected rather than ignored.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated AppConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return AppConfig()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    allowed_top_keys = {'storage', 'usage', 'logging'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    storage_data = _section(raw_config, 'storage', {'db_path'})
    usage_data = _section(raw_config, 'usage', {'cache_ttl_seconds', 'max_workers'})
    logging_data = _section(raw_config, 'logging', {'level'})

    storage = StorageConfig(**storage_data)

    if 'cache_ttl_seconds' in usage_data:
        ttl = usage_data['cache_ttl_seconds']
        if isinstance(ttl, bool) or not isinstance(ttl, (int, float)):
            raise ValueError("'cache_ttl_seconds' must be a number")
        usage_data['cache_ttl_seconds'] = float(ttl)
    if 'max_workers' in usage_data:
        workers = usage_data['max_workers']
        if isinstance(workers, bool) or not isinstance(workers, int):
            raise ValueError("'max_workers' must be an integer")
    usage = UsageConfig(**usage_data)

    if 'level' in logging_data:
        level = logging_data['level']
        if not isinstance(level, str):
            raise ValueError("'level' must be a string")
        logging_data['level'] = level.upper()
    logging_config = LoggingConfig(**logging_data)

    return AppConfig(storage=storage, usage=usage, logging=logging_config)


def _section(raw_config: Dict, name: str, allowed_keys: set) -> Dict[str, Any]:
    """Extract and validate one optional configuration section.

    Args:
        raw_config: Parsed top-level configuration
        name: Section name
        allowed_keys: Keys permitted inside the section

    Returns:
        Copy of the section data (empty when absent)

    Raises:
        ValueError: If the section is not a mapping or has unknown keys
    """
    data = raw_config.get(name)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")

    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown {name} keys: {unknown_keys}")
    return dict(data)
