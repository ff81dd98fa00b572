"""
Agent data models used by the registry and the scheduler.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class AgentStatus(Enum):
    """Availability of a registered agent."""
    ACTIVE = "active"
    IDLE = "idle"
    BUSY = "busy"
    OFFLINE = "offline"
    MAINTENANCE = "maintenance"
    ERROR = "error"

    @property
    def is_assignable(self) -> bool:
        return self in (AgentStatus.ACTIVE, AgentStatus.IDLE)


@dataclass
class AgentPerformance:
    """Running performance counters for an agent."""
    total_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    average_response_time_ms: float = 0.0
    success_rate: float = 1.0
    current_load: float = 0.0
    last_performance_update: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_tasks": self.total_tasks,
            "completed_tasks": self.completed_tasks,
            "failed_tasks": self.failed_tasks,
            "average_response_time_ms": self.average_response_time_ms,
            "success_rate": self.success_rate,
            "current_load": self.current_load,
            "last_performance_update": (
                self.last_performance_update.isoformat() if self.last_performance_update else None
            ),
        }


@dataclass
class Agent:
    """An agent that can be assigned tasks."""
    id: str
    name: str
    type: str
    capabilities: List[str] = field(default_factory=list)
    status: AgentStatus = AgentStatus.IDLE
    performance: AgentPerformance = field(default_factory=AgentPerformance)
    max_concurrent_tasks: int = 1
    metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_active_at: Optional[datetime] = None

    def has_capabilities(self, capabilities: List[str]) -> bool:
        return all(capability in self.capabilities for capability in capabilities)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "capabilities": list(self.capabilities),
            "status": self.status.value,
            "performance": self.performance.to_dict(),
            "max_concurrent_tasks": self.max_concurrent_tasks,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "last_active_at": self.last_active_at.isoformat() if self.last_active_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Agent":
        """Create from dictionary."""
        performance = data.get("performance") or {}
        return cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            type=data.get("type", "generic"),
            capabilities=list(data.get("capabilities", [])),
            status=AgentStatus(data.get("status", AgentStatus.IDLE.value)),
            performance=AgentPerformance(
                total_tasks=performance.get("total_tasks", 0),
                completed_tasks=performance.get("completed_tasks", 0),
                failed_tasks=performance.get("failed_tasks", 0),
                average_response_time_ms=performance.get("average_response_time_ms", 0.0),
                success_rate=performance.get("success_rate", 1.0),
                current_load=performance.get("current_load", 0.0),
            ),
            max_concurrent_tasks=data.get("max_concurrent_tasks", 1),
            metadata=data.get("metadata", {}),
        )


@dataclass
class AgentCandidate:
    """A scored agent returned by capability matching."""
    agent_id: str
    score: float
    reasoning: str = ""
    estimated_completion_time_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "agent_id": self.agent_id,
            "score": self.score,
            "reasoning": self.reasoning,
            "estimated_completion_time_ms": self.estimated_completion_time_ms,
        }
