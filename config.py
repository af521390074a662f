#!/usr/bin/env python3
"""
PQSFuzz Configuration Management

This module provides the configuration system of the fuzzer:
- Database connection settings
- Pivoted query synthesis options
- Iteration loop behaviour
- Logging options

Configuration is read from a YAML file, overlaid on the dataclass defaults
and validated section by section.
"""

import yaml
import logging
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import Dict, Any, List, Optional

import psycopg2.extensions

from core.errors import ConfigError

# Logging setup
logger = logging.getLogger(__name__)


@dataclass
class DatabaseConfig:
    """Connection settings for the database under test."""
    dsn: str = ""
    host: str = "localhost"
    port: int = 5433
    dbname: str = "yugabyte"
    user: str = "yugabyte"
    password: str = ""
    schema_name: str = "pqsfuzz"
    connect_timeout: int = 10
    statement_timeout: int = 0  # milliseconds, 0 disables it

    def to_dsn(self) -> str:
        """The data source name: ``dsn`` when set, otherwise built from the parts."""
        if self.dsn:
            return self.dsn
        params = {
            'host': self.host,
            'port': self.port,
            'dbname': self.dbname,
            'user': self.user,
        }
        if self.password:
            params['password'] = self.password
        return psycopg2.extensions.make_dsn(**params)

    def validate(self) -> List[str]:
        """Validate database configuration."""
        errors = []

        if not self.dsn:
            if not self.host:
                errors.append("Database host is required")
            if not self.dbname:
                errors.append("Database name is required")
            if not self.user:
                errors.append("Database user is required")
            if self.port < 1 or self.port > 65535:
                errors.append("Invalid database port")
        if not self.schema_name:
            errors.append("Working schema name is required")
        if self.connect_timeout < 1:
            errors.append("Connection timeout must be positive")
        if self.statement_timeout < 0:
            errors.append("Statement timeout must be non-negative")

        return errors


@dataclass
class PivotConfig:
    """Pivoted query synthesis settings."""
    use_prepared_statements: bool = False
    use_optimizer_hints: bool = False
    max_depth: int = 6
    max_create_tables: int = 10
    max_create_indexes: int = 10
    online_ddl: bool = True
    refresh_schema_each_iteration: bool = False

    def validate(self) -> List[str]:
        """Validate pivot configuration."""
        errors = []

        if self.max_depth < 1:
            errors.append("Max expression depth must be positive")
        if self.max_create_tables < 1:
            errors.append("Max create tables must be positive")
        if self.max_create_indexes < 1:
            errors.append("Max create indexes must be positive")

        return errors


@dataclass
class FuzzingConfig:
    """Iteration loop settings."""
    max_iterations: Optional[int] = None
    continue_on_infrastructure_fault: bool = False
    stats_interval: int = 100

    def validate(self) -> List[str]:
        """Validate fuzzing configuration."""
        errors = []

        if self.max_iterations is not None and self.max_iterations < 1:
            errors.append("Max iterations must be positive")
        if self.stats_interval < 0:
            errors.append("Stats interval must be non-negative")

        return errors


@dataclass
class LoggingConfig:
    """Logging configuration."""
    log_level: str = "INFO"
    log_file: Optional[str] = "logs/pqsfuzz.log"

    def validate(self) -> List[str]:
        """Validate logging configuration."""
        errors = []

        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.log_level not in valid_levels:
            errors.append(f"Log level must be one of: {', '.join(valid_levels)}")

        return errors


@dataclass
class PQSFuzzConfig:
    """Complete PQSFuzz configuration."""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    pivot: PivotConfig = field(default_factory=PivotConfig)
    fuzzing: FuzzingConfig = field(default_factory=FuzzingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    random_seed: Optional[int] = None
    debug: bool = False

    def __post_init__(self):
        """Fill in a clock-based seed so every run can be replayed."""
        if self.random_seed is None:
            self.random_seed = int(datetime.now().timestamp())

    def validate(self) -> List[str]:
        """Validate complete configuration."""
        errors = []

        errors.extend(self.database.validate())
        errors.extend(self.pivot.validate())
        errors.extend(self.fuzzing.validate())
        errors.extend(self.logging.validate())

        return errors

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return asdict(self)


_SECTIONS = {
    'database': DatabaseConfig,
    'pivot': PivotConfig,
    'fuzzing': FuzzingConfig,
    'logging': LoggingConfig,
}


def load_config(config_path: str) -> Dict[str, Any]:
    """
    Load the raw configuration mapping from a YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        Configuration dictionary
    """
    try:
        with open(config_path, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f)
    except FileNotFoundError as e:
        logger.error(f"Configuration file not found: {config_path}")
        raise ConfigError(f"configuration file not found: {config_path}") from e
    except yaml.YAMLError as e:
        logger.error(f"Invalid YAML in configuration file: {e}")
        raise ConfigError(f"invalid YAML in {config_path}: {e}") from e

    if config_data is None:
        config_data = {}
    if not isinstance(config_data, dict):
        raise ConfigError(f"configuration file {config_path} must contain a mapping")

    logger.info(f"Configuration loaded from '{config_path}'")
    return config_data


def build_config(config_data: Dict[str, Any]) -> PQSFuzzConfig:
    """
    Overlay a raw configuration mapping on the defaults.

    Unknown keys are reported and ignored; a section that is not a mapping
    is an error.
    """
    sections = {}
    for name, section_cls in _SECTIONS.items():
        values = config_data.get(name) or {}
        if not isinstance(values, dict):
            raise ConfigError(f"section '{name}' must be a mapping")
        known = {f.name for f in fields(section_cls)}
        for key in values:
            if key not in known:
                logger.warning(f"Ignoring unknown option '{name}.{key}'")
        sections[name] = section_cls(**{k: v for k, v in values.items() if k in known})

    for key in config_data:
        if key not in _SECTIONS and key not in ('random_seed', 'debug'):
            logger.warning(f"Ignoring unknown option '{key}'")

    return PQSFuzzConfig(
        random_seed=config_data.get('random_seed'),
        debug=bool(config_data.get('debug', False)),
        **sections,
    )


def validate_config(config: PQSFuzzConfig) -> bool:
    """
    Validate complete configuration.

    Args:
        config: Configuration object

    Returns:
        True if valid, False otherwise
    """
    errors = config.validate()

    if errors:
        logger.error("Configuration validation failed:")
        for error in errors:
            logger.error(f"  - {error}")
        return False

    logger.info("Configuration validation completed successfully")
    return True


def create_default_config(config_path: str) -> None:
    """
    Create a default configuration file.

    Args:
        config_path: Path where to create the configuration file
    """
    config_dict = PQSFuzzConfig().to_dict()
    config_dict['random_seed'] = None

    with open(config_path, 'w', encoding='utf-8') as f:
        yaml.dump(config_dict, f, default_flow_style=False, indent=2, sort_keys=False)

    logger.info(f"Default configuration created at: {config_path}")
