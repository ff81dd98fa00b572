"""
Configuration-specific exceptions.
"""

from ..core.exceptions import OrchestratorError


class ConfigError(OrchestratorError):
    """Base exception for configuration-related errors."""

    code = "ConfigError"


class ConfigValidationError(ConfigError):
    """Exception raised when configuration validation fails."""

    code = "ConfigValidationError"


class ConfigNotFoundError(ConfigError):
    """Exception raised when configuration is not found."""

    code = "ConfigNotFound"
