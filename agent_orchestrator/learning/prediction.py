"""
Prediction of switch outcomes from learned patterns.
"""

import logging
from collections import defaultdict
from datetime import timedelta
from typing import Dict, List, Optional

from ..config.settings import LearningSettings
from .learner import PREDICTION_MATCH_THRESHOLD, SwitchPatternLearner
from .models import PredictionResult, SwitchPattern, SwitchRequest, SwitchUrgency

DEFAULT_SUCCESS_PROBABILITY = 0.5
DEFAULT_SATISFACTION = 0.5
DEFAULT_COMPLETION_TIME_MS = 5000.0
FAST_COMPLETION_MS = 3000.0
STALE_PATTERN_AGE = timedelta(days=7)
LOW_CONFIDENCE_RISK = 0.7


class PredictionEngine:
    """
    Recommends a target agent for a switch request.

    Patterns matching the request contribute in proportion to
    ``confidence * frequency``. The agent with the largest accumulated
    weight is recommended.
    """

    def __init__(
        self,
        learner: SwitchPatternLearner,
        settings: Optional[LearningSettings] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.learner = learner
        self.settings = settings or learner.settings
        self.logger = logger or logging.getLogger(__name__)

    def predict(self, request: SwitchRequest) -> Optional[PredictionResult]:
        """
        Predict the best target agent for ``request``.

        Returns:
            The prediction, or None when prediction is disabled, nothing matches
            or the computation fails
        """
        if not self.settings.enable_predictive_analysis:
            return None

        try:
            patterns = self.learner.find_matching_patterns(request, PREDICTION_MATCH_THRESHOLD)
            if not patterns:
                return None
            return self._weighted_prediction(patterns, request)
        except Exception as e:
            self.logger.error(f"Failed to predict switch outcome for request {request.id}: {e}")
            return None

    def _weighted_prediction(self, patterns: List[SwitchPattern], request: SwitchRequest) -> PredictionResult:
        agent_weights: Dict[str, float] = defaultdict(float)
        total_weight = 0.0
        weighted_success = 0.0
        weighted_satisfaction = 0.0
        weighted_time = 0.0

        for pattern in patterns:
            weight = pattern.confidence * pattern.frequency
            for outcome in pattern.outcomes:
                agent_weights[outcome.target_agent] += weight
                total_weight += weight
                weighted_success += outcome.success_probability * weight
                weighted_satisfaction += outcome.average_user_satisfaction * weight
                weighted_time += outcome.average_completion_time * weight

        if total_weight > 0:
            success_probability = weighted_success / total_weight
            satisfaction = weighted_satisfaction / total_weight
            completion_time = weighted_time / total_weight
        else:
            success_probability = DEFAULT_SUCCESS_PROBABILITY
            satisfaction = DEFAULT_SATISFACTION
            completion_time = DEFAULT_COMPLETION_TIME_MS

        recommended = None
        if agent_weights:
            # max keeps the first of equal weights, i.e. the more confident pattern's agent
            recommended = max(agent_weights, key=agent_weights.get)

        primary = patterns[0]
        return PredictionResult(
            recommended_agent_id=recommended,
            confidence=primary.confidence,
            predicted_success_probability=success_probability,
            predicted_user_satisfaction=satisfaction,
            predicted_completion_time=completion_time,
            matching_patterns=[pattern.id for pattern in patterns],
            reasoning=self._reasoning(patterns, success_probability, completion_time),
            risk_factors=self._risk_factors(patterns, request),
        )

    @staticmethod
    def _reasoning(patterns: List[SwitchPattern], success_probability: float, completion_time: float) -> List[str]:
        primary = patterns[0]
        reasoning = [
            f"Based on {len(patterns)} matching patterns",
            f"Predicted success probability: {round(success_probability * 100)}%",
            f"Primary pattern: {primary.pattern_type.value} (confidence: {round(primary.confidence * 100)}%)",
            f"Pattern frequency: {primary.frequency} occurrences",
        ]
        if completion_time < FAST_COMPLETION_MS:
            reasoning.append("Fast completion time expected")
        return reasoning

    def _risk_factors(self, patterns: List[SwitchPattern], request: SwitchRequest) -> List[str]:
        risks = []

        low_confidence = [
            pattern for pattern in patterns
            if pattern.confidence < LOW_CONFIDENCE_RISK
        ]
        if low_confidence:
            risks.append(f"{len(low_confidence)} patterns have low confidence")

        if request.urgency in (SwitchUrgency.CRITICAL, SwitchUrgency.HIGH):
            risks.append("High urgency may affect pattern reliability")

        now = self.learner.clock.now()
        if any(now - pattern.last_observed > STALE_PATTERN_AGE for pattern in patterns):
            risks.append("Some patterns are based on old data")

        return risks
