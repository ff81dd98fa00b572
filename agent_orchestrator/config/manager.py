"""
Configuration management for the orchestration engine.
"""

from collections.abc import Callable
from copy import deepcopy
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pydantic
import yaml

from .exceptions import ConfigError, ConfigNotFoundError, ConfigValidationError
from .settings import OrchestratorSettings

KNOWN_SECTIONS = ("scheduler", "learning", "logging", "metrics")


class ConfigValidator:
    """
    Validator for configuration data.

    Checks the section layout and then lets the settings models validate
    types and ranges.
    """

    def validate(self, config: Dict[str, Any]) -> OrchestratorSettings:
        """
        Validate configuration data.

        Args:
            config: Configuration dictionary to validate

        Returns:
            The validated settings

        Raises:
            ConfigValidationError: If validation fails
        """
        if not isinstance(config, dict):
            raise ConfigValidationError(
                "Configuration must be a mapping",
                context={"type": type(config).__name__}
            )

        unknown = [key for key in config if key not in KNOWN_SECTIONS]
        if unknown:
            raise ConfigValidationError(
                f"Unknown configuration sections: {unknown}",
                context={"unknown_keys": unknown, "valid_keys": list(KNOWN_SECTIONS)}
            )

        for section in KNOWN_SECTIONS:
            if section in config and not isinstance(config[section], dict):
                raise ConfigValidationError(f"{section} configuration must be a dictionary")

        try:
            return OrchestratorSettings(**config)
        except pydantic.ValidationError as e:
            errors = [
                {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
                for error in e.errors()
            ]
            raise ConfigValidationError(
                f"Invalid configuration: {errors[0]['field']}: {errors[0]['message']}",
                context={"errors": errors},
                cause=e,
            ) from e


class ConfigLoader:
    """
    Configuration loader supporting JSON and YAML files and dictionaries.
    """

    def __init__(self) -> None:
        self.supported_formats = ['.json', '.yaml', '.yml']

    def load_from_file(self, file_path: Union[str, Path]) -> Dict[str, Any]:
        """
        Load configuration from a file.

        Raises:
            ConfigNotFoundError: If file is not found
            ConfigError: If file format is unsupported or parsing fails
        """
        path = Path(file_path)

        if not path.exists():
            raise ConfigNotFoundError(
                f"Configuration file not found: {file_path}",
                context={"file_path": str(file_path)}
            )

        if path.suffix not in self.supported_formats:
            raise ConfigError(
                f"Unsupported file format: {path.suffix}. Supported formats: {self.supported_formats}",
                context={"file_path": str(file_path), "suffix": path.suffix}
            )

        try:
            with open(path, encoding='utf-8') as f:
                if path.suffix == '.json':
                    return json.load(f)
                return yaml.safe_load(f) or {}
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise ConfigError(f"Failed to parse configuration file: {e}", cause=e) from e
        except OSError as e:
            raise ConfigError(f"Failed to read configuration file: {e}", cause=e) from e

    def load_from_dict(self, config_dict: Dict[str, Any]) -> Dict[str, Any]:
        return deepcopy(config_dict)

    def merge_configs(self, base_config: Dict[str, Any], override_config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge two configuration dictionaries.

        Args:
            base_config: Base configuration
            override_config: Configuration to merge (takes precedence)

        Returns:
            Merged configuration dictionary
        """
        merged = deepcopy(base_config)
        self._deep_merge(merged, override_config)
        return merged

    def _deep_merge(self, base: Dict[str, Any], override: Dict[str, Any]) -> None:
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = deepcopy(value)


class ConfigManager:
    """
    Centralized configuration management.

    Holds the raw configuration dictionary, validates it into
    :class:`OrchestratorSettings` and notifies callbacks on changes.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)
        self.loader = ConfigLoader()
        self.validator = ConfigValidator()
        self.config: Dict[str, Any] = {}
        self.config_file_path: Optional[Path] = None
        self.change_callbacks: Dict[str, List[Callable]] = {}
        self._settings: Optional[OrchestratorSettings] = None

    @property
    def settings(self) -> OrchestratorSettings:
        """Validated settings for the current configuration."""
        if self._settings is None:
            self._settings = self.validator.validate(self.config)
        return self._settings

    def load_config(self, source: Union[str, Path, Dict[str, Any]]) -> OrchestratorSettings:
        """
        Load configuration from a file path or dictionary.

        Raises:
            ConfigError: If loading or validation fails
        """
        try:
            if isinstance(source, (str, Path)):
                config = self.loader.load_from_file(source)
                self.config_file_path = Path(source)
                self.logger.info(f"Loaded configuration from file: {source}")
            elif isinstance(source, dict):
                config = self.loader.load_from_dict(source)
                self.logger.info("Loaded configuration from dictionary")
            else:
                raise ConfigError(f"Unsupported configuration source type: {type(source)}")

            settings = self.validator.validate(config)
        except ConfigError as e:
            self.logger.error(f"Failed to load configuration: {e}")
            raise

        self.config = config
        self._settings = settings
        self.logger.info("Configuration validation passed")
        return settings

    def reload_config(self) -> OrchestratorSettings:
        """
        Reload configuration from the original file.

        Raises:
            ConfigError: If no file path is set or reload fails
        """
        if self.config_file_path is None:
            raise ConfigError("No configuration file path set for reload")

        settings = self.load_config(self.config_file_path)
        self.logger.info("Configuration reloaded successfully")
        return settings

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get an effective configuration value using dot notation.

        Args:
            key: Configuration key (e.g., "learning.learning_rate")
            default: Default value if key is not found
        """
        value: Any = self.settings.model_dump()

        try:
            for k in key.split('.'):
                value = value[k]
            return value
        except (KeyError, TypeError):
            return default

    def set(self, key: str, value: Any) -> None:
        """
        Set a configuration value using dot notation.

        Raises:
            ConfigValidationError: If the new value is invalid; the old value is kept
        """
        keys = key.split('.')
        candidate = deepcopy(self.config)
        current = candidate

        for k in keys[:-1]:
            if not isinstance(current.get(k), dict):
                current[k] = {}
            current = current[k]

        old_value = self.get(key)
        current[keys[-1]] = value

        self._settings = self.validator.validate(candidate)
        self.config = candidate

        self._trigger_change_callbacks(key, old_value, value)
        self.logger.debug(f"Set configuration {key} = {value}")

    def save_config(self, file_path: Union[str, Path]) -> None:
        """
        Save the effective configuration to a JSON or YAML file.

        Raises:
            ConfigError: If saving fails
        """
        path = Path(file_path)
        data = self.settings.model_dump()

        try:
            path.parent.mkdir(parents=True, exist_ok=True)

            with open(path, 'w', encoding='utf-8') as f:
                if path.suffix in ['.yaml', '.yml']:
                    yaml.safe_dump(data, f, default_flow_style=False, allow_unicode=True)
                else:
                    json.dump(data, f, indent=2, ensure_ascii=False)

            self.logger.info(f"Configuration saved to: {file_path}")

        except OSError as e:
            self.logger.error(f"Failed to save configuration: {e}")
            raise ConfigError(f"Failed to save configuration to {file_path}", cause=e) from e

    def register_change_callback(self, key: str, callback: Callable[[str, Any, Any], None]) -> None:
        """
        Register a callback for configuration changes.

        Args:
            key: Configuration key to monitor
            callback: Callback function (key, old_value, new_value)
        """
        self.change_callbacks.setdefault(key, []).append(callback)
        self.logger.debug(f"Registered change callback for key: {key}")

    def unregister_change_callback(self, key: str, callback: Callable) -> None:
        if key in self.change_callbacks:
            try:
                self.change_callbacks[key].remove(callback)
                if not self.change_callbacks[key]:
                    del self.change_callbacks[key]
            except ValueError:
                pass  # Callback not found

    def get_config_summary(self) -> Dict[str, Any]:
        settings = self.settings
        return {
            "config_file": str(self.config_file_path) if self.config_file_path else None,
            "queue_name": settings.scheduler.queue_name,
            "task_timeout": settings.scheduler.task_timeout,
            "learning_rate": settings.learning.learning_rate,
            "pattern_detection": settings.learning.enable_pattern_detection,
            "predictive_analysis": settings.learning.enable_predictive_analysis,
            "log_level": settings.logging.level,
            "metrics_enabled": settings.metrics.enabled,
        }

    def _trigger_change_callbacks(self, key: str, old_value: Any, new_value: Any) -> None:
        for callback in self.change_callbacks.get(key, []):
            try:
                callback(key, old_value, new_value)
            except Exception as e:
                self.logger.error(f"Error in change callback for {key}: {e}")
