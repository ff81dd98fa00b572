"""
Core building blocks shared by every orchestration component.
"""

from .base import BaseService
from .clock import Clock, ManualClock, SystemClock, TimerHandle
from .exceptions import (
    AgentNotFoundError,
    AgentRegistrationError,
    InvalidStateTransitionError,
    LearningError,
    NoSuitableAgentError,
    OrchestratorError,
    RetryableError,
    TaskFailedError,
    TaskNotFoundError,
    TaskTimeoutError,
    ValidationError,
)

__all__ = [
    "AgentNotFoundError",
    "AgentRegistrationError",
    "BaseService",
    "Clock",
    "InvalidStateTransitionError",
    "LearningError",
    "ManualClock",
    "NoSuitableAgentError",
    "OrchestratorError",
    "RetryableError",
    "SystemClock",
    "TaskFailedError",
    "TaskNotFoundError",
    "TaskTimeoutError",
    "TimerHandle",
    "ValidationError",
]
