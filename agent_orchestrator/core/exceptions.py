"""
Custom exceptions for the orchestration engine.

Every exception carries a stable ``code`` so failures recorded on tasks
can be matched by callers without inspecting messages.
"""

import time
from typing import Any, Dict, Optional


class OrchestratorError(Exception):
    """Base exception class with enhanced error context."""

    code = "OrchestratorError"
    retryable = False

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        """
        Initialize the exception with context and cause tracking.

        Args:
            message: Error message
            context: Additional context information
            cause: Root cause exception if this is a wrapped exception
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}
        self.cause = cause
        self.timestamp = time.time()

    def __str__(self) -> str:
        """Return a detailed string representation of the exception."""
        parts = [self.message]

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f"Context: {context_str}")

        if self.cause:
            parts.append(f"Caused by: {self.cause}")

        return " | ".join(parts)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "context": self.context,
            "cause": str(self.cause) if self.cause else None,
            "timestamp": self.timestamp,
        }


class ValidationError(OrchestratorError):
    """Exception raised when submitted data fails validation."""

    code = "ValidationError"

    def __init__(
        self,
        message: str,
        field_name: str = "Unknown",
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        """
        Initialize the exception.

        Args:
            message: Error message
            field_name: Name of the field that failed validation
            context: Additional context information
            cause: Root cause exception
        """
        enhanced_context = {"field_name": field_name}
        if context:
            enhanced_context.update(context)

        super().__init__(message, enhanced_context, cause)
        self.field_name = field_name


class NoSuitableAgentError(OrchestratorError):
    """Raised when no registered agent can take a task."""

    code = "NoSuitableAgent"
    retryable = True


class RetryableError(OrchestratorError):
    """Exception for failures that a caller may retry."""

    retryable = True

    def __init__(
        self,
        message: str,
        retry_after: Optional[float] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        """
        Initialize the exception.

        Args:
            message: Error message
            retry_after: Seconds to wait before retrying
            context: Additional context information
            cause: Root cause exception
        """
        enhanced_context = {"retry_after": retry_after}
        if context:
            enhanced_context.update(context)

        super().__init__(message, enhanced_context, cause)
        self.retry_after = retry_after


class TaskTimeoutError(RetryableError):
    """Raised when an assigned task exceeds its time budget."""

    code = "TaskTimeout"

    def __init__(
        self,
        message: str = "Task timed out",
        timeout_duration: Optional[float] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ) -> None:
        enhanced_context = {"timeout_duration": timeout_duration}
        if context:
            enhanced_context.update(context)

        super().__init__(message, None, enhanced_context, cause)
        self.timeout_duration = timeout_duration


class TaskFailedError(RetryableError):
    """Raised or recorded when an agent reports a task failure."""

    code = "TaskFailed"


class InvalidStateTransitionError(OrchestratorError):
    """Raised when a task is asked to move to a state it cannot reach."""

    code = "InvalidStateTransition"


class TaskNotFoundError(OrchestratorError):
    """Raised when a task id is unknown."""

    code = "TaskNotFound"


class AgentNotFoundError(OrchestratorError):
    """Raised when an agent id is unknown to the registry."""

    code = "AgentNotFound"


class AgentRegistrationError(OrchestratorError):
    """Raised when registering an agent fails."""

    code = "AgentRegistration"


class LearningError(OrchestratorError):
    """Raised inside the switch pattern learner."""

    code = "LearningError"
