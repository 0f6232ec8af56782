"""
Config system - Layered typed configuration for the registry and loader.

Merge precedence (later overrides earlier):
defaults < config files (YAML/JSON) < .env file < environment variables < overrides
"""

from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field, fields
from pathlib import Path
import json
import os

import yaml
from dotenv import dotenv_values


class ConfigError(Exception):
    """Raised when configuration validation fails."""
    pass


@dataclass
class RegistryConfig:
    """Registry behaviour switches."""

    max_depth: int = 100
    # Route update_dependencies through the full cycle detector
    strict_dependency_updates: bool = False
    # Treat a cycle search that overflows max_depth as a cycle
    depth_overflow_is_cycle: bool = False


@dataclass
class LoaderConfig:
    """Dynamic loader settings."""

    base_url: str = ""
    aliases: Dict[str, str] = field(default_factory=dict)
    extension: str = ".py"
    timeout: float = 10.0
    max_retries: int = 2
    retry_delay: float = 1.0
    max_depth: int = 100
    preload_modules: List[str] = field(default_factory=list)

    def __post_init__(self):
        if self.timeout <= 0:
            raise ConfigError("loader.timeout must be positive")
        if self.max_retries < 0:
            raise ConfigError("loader.max_retries must not be negative")
        if self.retry_delay < 0:
            raise ConfigError("loader.retry_delay must not be negative")
        if self.max_depth < 1:
            raise ConfigError("loader.max_depth must be at least 1")


@dataclass
class ModularyConfig:
    """Top-level configuration."""

    registry: RegistryConfig = field(default_factory=RegistryConfig)
    loader: LoaderConfig = field(default_factory=LoaderConfig)


class ConfigLoader:
    """
    Loads and merges configuration from multiple sources with precedence:
    overrides > environment variables > .env file > config files > defaults
    """

    def __init__(self, env_prefix: str = "MODULARY_"):
        self.env_prefix = env_prefix
        self.config_data: Dict[str, Any] = {}

    @classmethod
    def load(
        cls,
        paths: Optional[List[str]] = None,
        env_prefix: str = "MODULARY_",
        env_file: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None,
    ) -> ModularyConfig:
        """
        Load configuration from multiple sources with proper merge strategy.

        Args:
            paths: Config file paths (glob patterns supported)
            env_prefix: Prefix for environment variables
            env_file: Path to .env file
            overrides: Manual overrides (highest precedence)

        Returns:
            Validated ModularyConfig

        Raises:
            ConfigError: On unknown keys or invalid values
        """
        loader = cls(env_prefix=env_prefix)

        for pattern in paths or []:
            loader._load_from_files(pattern)

        if env_file:
            loader._load_env_file(env_file)

        loader._load_from_env()

        if overrides:
            loader._merge_dict(loader.config_data, overrides)

        return loader.build()

    def _load_from_files(self, pattern: str):
        """Load config from JSON or YAML files."""
        from glob import glob

        matches = sorted(glob(pattern))
        if not matches and not any(ch in pattern for ch in "*?["):
            raise ConfigError(f"Config file not found: {pattern}")

        for path_str in matches:
            path = Path(path_str)
            if path.suffix == ".json":
                self._load_json_file(path)
            elif path.suffix in (".yaml", ".yml"):
                self._load_yaml_file(path)
            else:
                raise ConfigError(f"Unsupported config format: {path}")

    def _load_json_file(self, path: Path):
        """Load config from JSON file."""
        with open(path) as f:
            data = json.load(f)
            self._merge_dict(self.config_data, data)

    def _load_yaml_file(self, path: Path):
        """Load config from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
            if data:
                self._merge_dict(self.config_data, data)

    def _load_env_file(self, path: str):
        """Load prefixed keys from a .env file."""
        if not Path(path).exists():
            return

        for key, value in dotenv_values(path).items():
            if value is not None and key.startswith(self.env_prefix):
                self._set_nested(key, value)

    def _load_from_env(self):
        """Load config from environment variables."""
        for key, value in os.environ.items():
            if key.startswith(self.env_prefix):
                self._set_nested(key, value)

    def _set_nested(self, key: str, value: str):
        """Convert MODULARY_LOADER__MAX_RETRIES to nested dict."""
        key = key[len(self.env_prefix):]

        # Double underscore separates nesting levels
        parts = key.lower().split("__")

        current = self.config_data
        for part in parts[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]

        current[parts[-1]] = self._parse_value(value)

    def _parse_value(self, value: str) -> Any:
        """Parse string value to appropriate type."""
        if value.lower() in ("true", "yes"):
            return True
        if value.lower() in ("false", "no"):
            return False

        try:
            if "." in value:
                return float(value)
            return int(value)
        except ValueError:
            pass

        if value.startswith(("{", "[")):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                pass

        return value

    def _merge_dict(self, target: dict, source: dict):
        """Deep merge source into target."""
        for key, value in source.items():
            if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                self._merge_dict(target[key], value)
            else:
                target[key] = value

    def build(self) -> ModularyConfig:
        """Instantiate typed config sections from the merged data."""
        unknown = set(self.config_data) - {"registry", "loader"}
        if unknown:
            raise ConfigError(f"Unknown config sections: {', '.join(sorted(unknown))}")

        return ModularyConfig(
            registry=_instantiate(RegistryConfig, self.config_data.get("registry", {})),
            loader=_instantiate(LoaderConfig, self.config_data.get("loader", {})),
        )


def _instantiate(config_class, data: Dict[str, Any]):
    if not isinstance(data, dict):
        raise ConfigError(f"{config_class.__name__} expects a mapping, got {type(data).__name__}")

    known = {f.name for f in fields(config_class)}
    unknown = set(data) - known
    if unknown:
        raise ConfigError(
            f"Unknown {config_class.__name__} keys: {', '.join(sorted(unknown))}"
        )

    try:
        return config_class(**data)
    except TypeError as e:
        raise ConfigError(f"Invalid {config_class.__name__}: {e}") from e
