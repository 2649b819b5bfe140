"""
Configuration loader for vmscout.

This module provides configuration management with:
- Multiple configuration sources (files, dicts, env vars)
- Schema validation through pydantic
- Type coercion
- Configuration merging
"""

import os
import json
from enum import Enum
from pathlib import Path
from typing import Optional, Dict, Any, List, Union

import toml
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .logging import get_logger, setup_logging
from .errors import ConfigurationError


logger = get_logger("vmscout.config")

ENV_PREFIX = "VMSCOUT_"
ENV_NESTING = "__"

# Attach timeout alternate-vendor runtimes are given when none is configured.
ALTERNATE_VENDOR_PROBE_TIMEOUT = 5.0


class TransportProfile(str, Enum):
    """Attach semantics of the runtime family being monitored."""
    STANDARD = "standard"
    ALTERNATE_VENDOR = "alternate_vendor"

    @classmethod
    def detect(cls, vm_name: Optional[str]) -> "TransportProfile":
        """Pick a profile from a runtime name such as ``java.vm.name``."""
        if vm_name and "IBM J9" in vm_name:
            return cls.ALTERNATE_VENDOR
        return cls.STANDARD


class ConfigSource(BaseModel):
    """Configuration source definition."""
    path: Optional[Path] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    priority: int = 0
    source_type: str = "dict"


class DiscoveryConfig(BaseModel):
    """Process discovery configuration."""
    profile: TransportProfile = TransportProfile.STANDARD
    include_passive: bool = True
    probe_timeout: Optional[float] = None  # seconds, None = unbounded

    @field_validator('probe_timeout')
    @classmethod
    def validate_probe_timeout(cls, v):
        """Timeouts must be positive."""
        if v is not None and v <= 0:
            raise ValueError("probe_timeout must be positive")
        return v

    @model_validator(mode='after')
    def default_alternate_vendor_timeout(self):
        """Alternate-vendor attach can stall, so it is always bounded."""
        if self.profile is TransportProfile.ALTERNATE_VENDOR and self.probe_timeout is None:
            self.probe_timeout = ALTERNATE_VENDOR_PROBE_TIMEOUT
        return self


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    format: str = "json"
    directory: Path = Field(default_factory=lambda: Path.home() / ".vmscout" / "logs")
    enable_sentry: bool = False
    sentry_dsn: Optional[str] = None

    @field_validator('level')
    @classmethod
    def validate_level(cls, v):
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()

    @field_validator('format')
    @classmethod
    def validate_format(cls, v):
        """Validate log file format."""
        if v not in ("json", "text"):
            raise ValueError(f"Invalid log format: {v}")
        return v


class VMScoutConfig(BaseModel):
    """Main vmscout configuration."""
    app_name: str = "vmscout"
    debug: bool = False

    discovery: DiscoveryConfig = Field(default_factory=DiscoveryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = ConfigDict(validate_assignment=True)


class ConfigLoader:
    """Configuration loader with multiple source support."""

    def __init__(self, environ: Optional[Dict[str, str]] = None):
        """
        Initialize configuration loader.

        Args:
            environ: Environment to read overrides from (defaults to os.environ)
        """
        self._sources: List[ConfigSource] = []
        self._config: Optional[VMScoutConfig] = None
        self._environ = os.environ if environ is None else environ

    def add_source(
        self,
        source: Union[str, Path, Dict[str, Any]],
        priority: int = 0,
        source_type: Optional[str] = None
    ) -> None:
        """
        Add configuration source.

        Args:
            source: Configuration source (file path or dict)
            priority: Source priority (higher wins)
            source_type: Source type (auto-detected if None)
        """
        if isinstance(source, (str, Path)):
            path = Path(source)
            if not source_type:
                source_type = self._detect_source_type(path)
            self._sources.append(ConfigSource(
                path=path,
                priority=priority,
                source_type=source_type
            ))
        else:
            self._sources.append(ConfigSource(
                data=source,
                priority=priority,
                source_type="dict"
            ))

        self._sources.sort(key=lambda s: s.priority)

    def _detect_source_type(self, path: Path) -> str:
        """Detect configuration file type."""
        suffix = path.suffix.lower()
        if suffix == ".json":
            return "json"
        elif suffix in (".yaml", ".yml"):
            return "yaml"
        elif suffix == ".toml":
            return "toml"
        else:
            raise ConfigurationError(f"Unknown config file type: {suffix}")

    def load(self) -> VMScoutConfig:
        """
        Load configuration from all sources.

        Sources are merged lowest priority first so higher priorities win;
        environment variables are applied last.

        Returns:
            Merged configuration
        """
        merged_data: Dict[str, Any] = {}

        for source in self._sources:
            data = self._load_source(source)
            merged_data = self._deep_merge(merged_data, data)

        merged_data = self._deep_merge(merged_data, self._load_env_vars())

        try:
            self._config = VMScoutConfig(**merged_data)
        except ValidationError as e:
            errors = []
            for error in e.errors():
                field = ".".join(str(x) for x in error["loc"])
                errors.append(f"{field}: {error['msg']}")
            raise ConfigurationError(
                f"Configuration validation failed: {'; '.join(errors)}"
            ) from e

        logger.info("configuration_loaded", sources=len(self._sources))
        return self._config

    def _load_source(self, source: ConfigSource) -> Dict[str, Any]:
        """Load data from a configuration source."""
        if source.path is None:
            return source.data

        if not source.path.exists():
            logger.warning("config_file_not_found", path=str(source.path))
            return {}

        content = source.path.read_text()

        try:
            if source.source_type == "json":
                return json.loads(content)
            elif source.source_type == "yaml":
                return yaml.safe_load(content) or {}
            elif source.source_type == "toml":
                return toml.loads(content)
        except (ValueError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Failed to parse {source.path}: {e}", cause=e
            ) from e
        raise ConfigurationError(f"Unknown source type: {source.source_type}")

    def _load_env_vars(self) -> Dict[str, Any]:
        """Load configuration from VMSCOUT_* environment variables."""
        result: Dict[str, Any] = {}

        for key, value in self._environ.items():
            if not key.startswith(ENV_PREFIX):
                continue
            parts = key[len(ENV_PREFIX):].lower().split(ENV_NESTING)
            current = result
            for part in parts[:-1]:
                current = current.setdefault(part, {})
            current[parts[-1]] = self._convert_value(value)

        return result

    def _convert_value(self, value: str) -> Any:
        """Convert string value to appropriate type."""
        if value.lower() in ("true", "yes", "on"):
            return True
        elif value.lower() in ("false", "no", "off"):
            return False

        try:
            if "." in value:
                return float(value)
            return int(value)
        except ValueError:
            pass

        if value.startswith("/") or value.startswith("~"):
            return Path(value).expanduser()

        return value

    def _deep_merge(self, base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two dictionaries."""
        result = base.copy()

        for key, value in update.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def get_config(self) -> VMScoutConfig:
        """Get current configuration."""
        if self._config is None:
            raise ConfigurationError("Configuration not loaded")
        return self._config


def load_config(
    config_paths: Optional[List[Union[str, Path]]] = None,
    extra_config: Optional[Dict[str, Any]] = None,
    environ: Optional[Dict[str, str]] = None,
) -> VMScoutConfig:
    """
    Load configuration from standard locations.

    Args:
        config_paths: Additional configuration paths
        extra_config: Extra configuration to merge
        environ: Environment overrides (defaults to os.environ)

    Returns:
        Loaded configuration
    """
    loader = ConfigLoader(environ=environ)

    default_paths = [
        Path.home() / ".vmscout" / "config.yaml",
        Path.home() / ".vmscout" / "config.toml",
        Path("./vmscout.yaml"),
        Path("./vmscout.toml"),
    ]

    for path in default_paths:
        if path.exists():
            loader.add_source(path, priority=10)

    if config_paths:
        for i, path in enumerate(config_paths):
            loader.add_source(path, priority=20 + i)

    if extra_config:
        loader.add_source(extra_config, priority=100)

    return loader.load()


def setup_logging_from_config(config: VMScoutConfig) -> Dict[str, Any]:
    """Set up logging as described by ``config``; ``debug`` forces DEBUG level."""
    return setup_logging(
        app_name=config.app_name,
        log_level="DEBUG" if config.debug else config.logging.level,
        log_dir=config.logging.directory,
        enable_json=config.logging.format == "json",
        enable_sentry=config.logging.enable_sentry,
        sentry_dsn=config.logging.sentry_dsn,
    )


__all__ = [
    'TransportProfile',
    'DiscoveryConfig',
    'LoggingConfig',
    'VMScoutConfig',
    'ConfigLoader',
    'load_config',
    'setup_logging_from_config',
    'ALTERNATE_VENDOR_PROBE_TIMEOUT',
]
