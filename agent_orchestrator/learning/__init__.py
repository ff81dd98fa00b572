"""
Switch pattern learning, prediction and insights.
"""

from .conditions import evaluate_condition, match_score, resolve_field
from .insights import InsightGenerator
from .learner import SwitchPatternLearner
from .models import (
    AgentSelectionCriteria,
    ConditionOperator,
    ContextPreservationConfig,
    InsightPriority,
    InsightType,
    LearningInsight,
    PatternCondition,
    PatternDetectionResult,
    PatternEvolution,
    PatternOutcome,
    PatternType,
    PredictionResult,
    SwitchPattern,
    SwitchPerformanceMetrics,
    SwitchReason,
    SwitchRequest,
    SwitchResult,
    SwitchUrgency,
    WorkloadPreference,
)
from .prediction import PredictionEngine

__all__ = [
    "AgentSelectionCriteria",
    "ConditionOperator",
    "ContextPreservationConfig",
    "InsightGenerator",
    "InsightPriority",
    "InsightType",
    "LearningInsight",
    "PatternCondition",
    "PatternDetectionResult",
    "PatternEvolution",
    "PatternOutcome",
    "PatternType",
    "PredictionEngine",
    "PredictionResult",
    "SwitchPattern",
    "SwitchPatternLearner",
    "SwitchPerformanceMetrics",
    "SwitchReason",
    "SwitchRequest",
    "SwitchResult",
    "SwitchUrgency",
    "WorkloadPreference",
    "evaluate_condition",
    "match_score",
    "resolve_field",
]
