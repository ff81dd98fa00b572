"""
Task data models.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from ..core.exceptions import OrchestratorError


class TaskType(Enum):
    """Kinds of work the scheduler understands."""
    SIMPLE = "simple"
    MULTI_AGENT_WORKFLOW = "multi_agent_workflow"


class TaskPriority(Enum):
    """Task priority, highest first."""
    CRITICAL = "critical"
    URGENT = "urgent"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Queue rank; lower ranks are served first."""
        return _PRIORITY_RANKS[self]


_PRIORITY_RANKS = {
    TaskPriority.CRITICAL: 0,
    TaskPriority.URGENT: 1,
    TaskPriority.HIGH: 2,
    TaskPriority.MEDIUM: 3,
    TaskPriority.LOW: 4,
}


class TaskStatus(Enum):
    """Lifecycle states of a task."""
    PENDING = "pending"
    QUEUED = "queued"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.CANCELLED)

    @property
    def is_active(self) -> bool:
        """Whether an agent is currently working on the task."""
        return self in (TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS)


@dataclass
class TaskError:
    """Failure record attached to a task."""
    code: str
    message: str
    retryable: bool
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_exception(cls, error: Exception, timestamp: Optional[datetime] = None) -> "TaskError":
        """Build a record from an engine exception, or a generic failure otherwise."""
        if isinstance(error, OrchestratorError):
            return cls(
                code=error.code,
                message=error.message,
                retryable=error.retryable,
                timestamp=timestamp or datetime.now(timezone.utc),
                details=dict(error.context),
            )
        return cls(
            code="TaskFailed",
            message=str(error) or error.__class__.__name__,
            retryable=True,
            timestamp=timestamp or datetime.now(timezone.utc),
            details={"error_type": error.__class__.__name__},
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "timestamp": self.timestamp.isoformat(),
            "details": self.details,
        }


@dataclass
class TaskRequirements:
    """What an agent must offer to take a task."""
    required_capabilities: List[str] = field(default_factory=list)
    preferred_agent_types: List[str] = field(default_factory=list)
    excluded_agent_ids: List[str] = field(default_factory=list)
    preferred_agent_id: Optional[str] = None
    max_response_time: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "required_capabilities": list(self.required_capabilities),
            "preferred_agent_types": list(self.preferred_agent_types),
            "excluded_agent_ids": list(self.excluded_agent_ids),
            "preferred_agent_id": self.preferred_agent_id,
            "max_response_time": self.max_response_time,
        }


@dataclass
class Task:
    """A unit of work routed to one agent, or to a chain of agents for workflows."""
    id: str
    type: TaskType = TaskType.SIMPLE
    requirements: TaskRequirements = field(default_factory=TaskRequirements)
    priority: Optional[TaskPriority] = None
    input: Dict[str, Any] = field(default_factory=dict)
    status: TaskStatus = TaskStatus.PENDING
    assigned_agent_id: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    result: Optional[Any] = None
    error: Optional[TaskError] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def processing_time_ms(self) -> Optional[float]:
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds() * 1000

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "type": self.type.value,
            "priority": self.priority.value if self.priority else None,
            "requirements": self.requirements.to_dict(),
            "input": self.input,
            "status": self.status.value,
            "assigned_agent_id": self.assigned_agent_id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "result": self.result,
            "error": self.error.to_dict() if self.error else None,
            "metadata": self.metadata,
        }
