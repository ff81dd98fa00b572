"""
Configuration management for the orchestration engine.
"""

from .exceptions import ConfigError, ConfigNotFoundError, ConfigValidationError
from .manager import ConfigLoader, ConfigManager, ConfigValidator
from .settings import (
    LearningSettings,
    LoggingSettings,
    MetricsSettings,
    OrchestratorSettings,
    SchedulerSettings,
)

__all__ = [
    "ConfigError",
    "ConfigLoader",
    "ConfigManager",
    "ConfigNotFoundError",
    "ConfigValidationError",
    "ConfigValidator",
    "LearningSettings",
    "LoggingSettings",
    "MetricsSettings",
    "OrchestratorSettings",
    "SchedulerSettings",
]
