"""
Data models for agent switching and switch pattern learning.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from numbers import Real
from typing import Any, Dict, List, Optional, Tuple, Union


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SwitchReason(Enum):
    """Why an agent switch was requested."""
    USER_REQUEST = "user_request"
    AGENT_UNAVAILABLE = "agent_unavailable"
    CAPABILITY_MISMATCH = "capability_mismatch"
    PERFORMANCE_DEGRADATION = "performance_degradation"
    LOAD_BALANCING = "load_balancing"
    TASK_COMPLEXITY_CHANGE = "task_complexity_change"
    SPECIALIZED_KNOWLEDGE_NEEDED = "specialized_knowledge_needed"
    AGENT_ERROR = "agent_error"
    TIMEOUT = "timeout"
    QUALITY_IMPROVEMENT = "quality_improvement"
    COST_OPTIMIZATION = "cost_optimization"
    AUTOMATIC_ESCALATION = "automatic_escalation"


class SwitchUrgency(Enum):
    """How quickly a switch must happen."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class WorkloadPreference(Enum):
    """How candidate agents should be weighed by load."""
    LOW_LOAD = "low_load"
    BALANCED = "balanced"
    HIGH_CAPACITY = "high_capacity"
    OPTIMAL_PERFORMANCE = "optimal_performance"


class PatternType(Enum):
    """Kinds of recurring switch behaviour."""
    SEQUENTIAL_SWITCH = "sequential_switch"
    CIRCULAR_SWITCH = "circular_switch"
    ESCALATION_PATTERN = "escalation_pattern"
    SPECIALIZATION_PATTERN = "specialization_pattern"
    TIME_BASED_PATTERN = "time_based_pattern"
    LOAD_BASED_PATTERN = "load_based_pattern"
    USER_PREFERENCE_PATTERN = "user_preference_pattern"


class ConditionOperator(Enum):
    """Comparison applied by a pattern condition."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    CONTAINS = "contains"
    IN_RANGE = "in_range"


class InsightType(Enum):
    OPTIMIZATION = "optimization"
    WARNING = "warning"
    RECOMMENDATION = "recommendation"
    TREND = "trend"


class InsightPriority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def weight(self) -> int:
        return {"low": 1, "medium": 2, "high": 3, "critical": 4}[self.value]


@dataclass
class AgentSelectionCriteria:
    """Constraints on the agent chosen by a switch."""
    required_capabilities: List[str] = field(default_factory=list)
    preferred_capabilities: List[str] = field(default_factory=list)
    preferred_agent_types: List[str] = field(default_factory=list)
    excluded_agent_ids: List[str] = field(default_factory=list)
    minimum_success_rate: Optional[float] = None
    workload_preference: WorkloadPreference = WorkloadPreference.BALANCED

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "required_capabilities": list(self.required_capabilities),
            "preferred_capabilities": list(self.preferred_capabilities),
            "preferred_agent_types": list(self.preferred_agent_types),
            "excluded_agent_ids": list(self.excluded_agent_ids),
            "minimum_success_rate": self.minimum_success_rate,
            "workload_preference": self.workload_preference.value,
        }


@dataclass
class ContextPreservationConfig:
    """Which parts of the old task travel with the switch."""
    preserve_full_context: bool = True
    preserve_conversation_history: bool = True
    preserve_user_preferences: bool = True
    preserve_task_state: bool = True
    preserve_temporary_data: bool = False

    @property
    def enabled(self) -> bool:
        return any((
            self.preserve_full_context,
            self.preserve_conversation_history,
            self.preserve_user_preferences,
            self.preserve_task_state,
            self.preserve_temporary_data,
        ))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "preserve_full_context": self.preserve_full_context,
            "preserve_conversation_history": self.preserve_conversation_history,
            "preserve_user_preferences": self.preserve_user_preferences,
            "preserve_task_state": self.preserve_task_state,
            "preserve_temporary_data": self.preserve_temporary_data,
        }


@dataclass(frozen=True)
class SwitchRequest:
    """
    A request to move a task from its current agent to another one.

    Requests are immutable once issued. ``time`` exposes the hour and
    weekday of creation so time-based pattern conditions can address them
    as ``time.hour``.
    """
    current_task_id: str
    current_agent_id: str
    reason: SwitchReason = SwitchReason.USER_REQUEST
    requester_id: str = "system"
    request_type: str = "manual"
    target_criteria: AgentSelectionCriteria = field(default_factory=AgentSelectionCriteria)
    context_preservation: ContextPreservationConfig = field(default_factory=ContextPreservationConfig)
    urgency: SwitchUrgency = SwitchUrgency.MEDIUM
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def time(self) -> Dict[str, int]:
        return {"hour": self.created_at.hour, "day_of_week": self.created_at.weekday()}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "current_task_id": self.current_task_id,
            "current_agent_id": self.current_agent_id,
            "reason": self.reason.value,
            "requester_id": self.requester_id,
            "request_type": self.request_type,
            "target_criteria": self.target_criteria.to_dict(),
            "context_preservation": self.context_preservation.to_dict(),
            "urgency": self.urgency.value,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class SwitchPerformanceMetrics:
    """Timings measured while performing a switch, in milliseconds."""
    switch_latency: float = 0.0
    agent_selection_time: float = 0.0
    total_switch_time: float = 0.0
    context_preservation_rate: float = 1.0
    user_satisfaction_score: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "switch_latency": self.switch_latency,
            "agent_selection_time": self.agent_selection_time,
            "total_switch_time": self.total_switch_time,
            "context_preservation_rate": self.context_preservation_rate,
            "user_satisfaction_score": self.user_satisfaction_score,
        }


@dataclass
class SwitchResult:
    """Outcome of a switch request."""
    request_id: str
    success: bool
    new_agent_id: Optional[str] = None
    new_task_id: Optional[str] = None
    previous_agent_id: Optional[str] = None
    reason: Optional[SwitchReason] = None
    performance_metrics: SwitchPerformanceMetrics = field(default_factory=SwitchPerformanceMetrics)
    errors: List[str] = field(default_factory=list)
    duration: float = 0.0
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    completed_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "request_id": self.request_id,
            "success": self.success,
            "new_agent_id": self.new_agent_id,
            "new_task_id": self.new_task_id,
            "previous_agent_id": self.previous_agent_id,
            "reason": self.reason.value if self.reason else None,
            "performance_metrics": self.performance_metrics.to_dict(),
            "errors": list(self.errors),
            "duration": self.duration,
            "completed_at": self.completed_at.isoformat(),
        }


ConditionValue = Union[str, Real, Tuple[Real, Real]]


@dataclass(frozen=True)
class PatternCondition:
    """
    A weighted predicate over a field of a switch request.

    The value's shape depends on the operator: a string or number for
    equality, a number for ordering, a string for containment and a
    ``(low, high)`` pair for ranges.
    """
    field: str
    operator: ConditionOperator
    value: ConditionValue
    weight: float = 1.0

    def __post_init__(self) -> None:
        operator, value = self.operator, self.value
        if operator == ConditionOperator.IN_RANGE:
            if (
                not isinstance(value, (tuple, list))
                or len(value) != 2
                or not all(_is_number(bound) for bound in value)
            ):
                raise ValueError(f"IN_RANGE condition on {self.field} needs a (low, high) pair, got {value!r}")
            object.__setattr__(self, "value", (value[0], value[1]))
        elif operator in (ConditionOperator.GREATER_THAN, ConditionOperator.LESS_THAN):
            if not _is_number(value):
                raise ValueError(f"{operator.value} condition on {self.field} needs a number, got {value!r}")
        elif operator == ConditionOperator.CONTAINS:
            if not isinstance(value, str):
                raise ValueError(f"CONTAINS condition on {self.field} needs a string, got {value!r}")
        elif not (isinstance(value, str) or _is_number(value)):
            raise ValueError(f"{operator.value} condition on {self.field} needs a string or number, got {value!r}")

        if self.weight < 0:
            raise ValueError("Condition weight must not be negative")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "field": self.field,
            "operator": self.operator.value,
            "value": list(self.value) if isinstance(self.value, tuple) else self.value,
            "weight": self.weight,
        }


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


@dataclass
class PatternOutcome:
    """What tends to happen when a pattern applies."""
    target_agent: str
    success_probability: float
    average_user_satisfaction: float = 0.8
    average_completion_time: float = 5000.0
    common_issues: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "target_agent": self.target_agent,
            "success_probability": self.success_probability,
            "average_user_satisfaction": self.average_user_satisfaction,
            "average_completion_time": self.average_completion_time,
            "common_issues": list(self.common_issues),
        }


@dataclass
class SwitchPattern:
    """A learned, recurring switch behaviour."""
    pattern_type: PatternType
    conditions: List[PatternCondition]
    outcomes: List[PatternOutcome]
    frequency: int
    confidence: float
    success_rate: float
    signature: str = ""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    learned_at: datetime = field(default_factory=_utcnow)
    last_observed: datetime = field(default_factory=_utcnow)

    @property
    def target_agents(self) -> List[str]:
        return [outcome.target_agent for outcome in self.outcomes]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "pattern_type": self.pattern_type.value,
            "signature": self.signature,
            "conditions": [condition.to_dict() for condition in self.conditions],
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
            "frequency": self.frequency,
            "confidence": self.confidence,
            "success_rate": self.success_rate,
            "learned_at": self.learned_at.isoformat(),
            "last_observed": self.last_observed.isoformat(),
        }


@dataclass
class LearningInsight:
    """An observation about switching behaviour worth surfacing."""
    type: InsightType
    priority: InsightPriority
    title: str
    description: str
    confidence: float
    actionable: bool = True
    suggested_actions: List[str] = field(default_factory=list)
    supporting_data: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    discovered_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "type": self.type.value,
            "priority": self.priority.value,
            "title": self.title,
            "description": self.description,
            "confidence": self.confidence,
            "actionable": self.actionable,
            "suggested_actions": list(self.suggested_actions),
            "supporting_data": self.supporting_data,
            "discovered_at": self.discovered_at.isoformat(),
        }


@dataclass
class PredictionResult:
    """Weighted recommendation derived from matching patterns."""
    recommended_agent_id: Optional[str]
    confidence: float
    predicted_success_probability: float
    predicted_user_satisfaction: float
    predicted_completion_time: float
    matching_patterns: List[str] = field(default_factory=list)
    reasoning: List[str] = field(default_factory=list)
    risk_factors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "recommended_agent_id": self.recommended_agent_id,
            "confidence": self.confidence,
            "predicted_success_probability": self.predicted_success_probability,
            "predicted_user_satisfaction": self.predicted_user_satisfaction,
            "predicted_completion_time": self.predicted_completion_time,
            "matching_patterns": list(self.matching_patterns),
            "reasoning": list(self.reasoning),
            "risk_factors": list(self.risk_factors),
        }


@dataclass
class PatternDetectionResult:
    """Summary of one optimization pass."""
    new_patterns: List[SwitchPattern] = field(default_factory=list)
    updated_patterns: List[SwitchPattern] = field(default_factory=list)
    removed_patterns: List[str] = field(default_factory=list)
    insights: List[LearningInsight] = field(default_factory=list)
    confidence: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "new_patterns": [pattern.to_dict() for pattern in self.new_patterns],
            "updated_patterns": [pattern.to_dict() for pattern in self.updated_patterns],
            "removed_patterns": list(self.removed_patterns),
            "insights": [insight.to_dict() for insight in self.insights],
            "confidence": self.confidence,
        }


@dataclass
class EvolutionStep:
    """Snapshot of a pattern after an update."""
    timestamp: datetime
    confidence: float
    frequency: int
    success_rate: float
    trigger: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "timestamp": self.timestamp.isoformat(),
            "confidence": self.confidence,
            "frequency": self.frequency,
            "success_rate": self.success_rate,
            "trigger": self.trigger,
        }


@dataclass
class PatternEvolution:
    """How a pattern's confidence has moved over time."""
    pattern_id: str
    steps: List[EvolutionStep] = field(default_factory=list)
    current_confidence: float = 0.0
    trend: str = "stable"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "pattern_id": self.pattern_id,
            "steps": [step.to_dict() for step in self.steps],
            "current_confidence": self.current_confidence,
            "trend": self.trend,
        }
