"""
Insight generation and switch analytics.
"""

from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Sequence

import numpy as np

from .models import (
    InsightPriority,
    InsightType,
    LearningInsight,
    SwitchPattern,
    SwitchReason,
    SwitchResult,
)


class InsightGenerator:
    """
    Derives insights and analytics from recent switch results.

    Insights are evaluated over the most recent ``window`` results: a success
    rate below ``success_rate_threshold`` raises a warning and an average
    duration above ``slow_switch_threshold_ms`` suggests an optimization.
    """

    def __init__(
        self,
        window: int = 100,
        success_rate_threshold: float = 0.8,
        slow_switch_threshold_ms: float = 10000.0,
    ) -> None:
        self.window = window
        self.success_rate_threshold = success_rate_threshold
        self.slow_switch_threshold_ms = slow_switch_threshold_ms

    def generate(self, history: Sequence[SwitchResult], now: datetime) -> List[LearningInsight]:
        recent = list(history)[-self.window:]
        if not recent:
            return []

        insights = []
        success_rate = sum(1 for result in recent if result.success) / len(recent)
        if success_rate < self.success_rate_threshold:
            insights.append(LearningInsight(
                type=InsightType.WARNING,
                priority=InsightPriority.HIGH,
                title="Declining Success Rate",
                description=(
                    f"Recent switch success rate is {round(success_rate * 100)}%, "
                    f"below the {round(self.success_rate_threshold * 100)}% threshold"
                ),
                confidence=0.9,
                suggested_actions=[
                    "Review agent selection criteria",
                    "Improve context preservation",
                    "Analyze failed switch patterns",
                ],
                supporting_data={"success_rate": success_rate, "sample_size": len(recent)},
                discovered_at=now,
            ))

        average_duration = float(np.mean([result.duration for result in recent]))
        if average_duration > self.slow_switch_threshold_ms:
            insights.append(LearningInsight(
                type=InsightType.OPTIMIZATION,
                priority=InsightPriority.MEDIUM,
                title="Slow Switch Performance",
                description=f"Average switch duration is {round(average_duration)}ms, consider optimization",
                confidence=0.8,
                suggested_actions=[
                    "Optimize context transfer",
                    "Pre-warm target agents",
                    "Implement parallel processing",
                ],
                supporting_data={
                    "average_duration": average_duration,
                    "threshold": self.slow_switch_threshold_ms,
                },
                discovered_at=now,
            ))

        return insights

    @staticmethod
    def rank(insights: Iterable[LearningInsight], limit: int = 20) -> List[LearningInsight]:
        """Highest priority first, then highest confidence."""
        ordered = sorted(
            insights,
            key=lambda insight: (insight.priority.weight, insight.confidence),
            reverse=True,
        )
        return ordered[:limit]

    def build_analytics(
        self,
        history: Sequence[SwitchResult],
        patterns: Sequence[SwitchPattern],
        now: datetime,
    ) -> Dict[str, Any]:
        total = len(history)
        successful = sum(1 for result in history if result.success)
        average_time = float(np.mean([result.duration for result in history])) if history else 0.0

        reasons = Counter(
            (result.reason or SwitchReason.USER_REQUEST).value for result in history
        )

        return {
            "total_switches": total,
            "successful_switches": successful,
            "failed_switches": total - successful,
            "average_switch_time": round(average_time),
            "most_common_reasons": dict(reasons.most_common()),
            "agent_switch_matrix": self._switch_matrix(history),
            "user_satisfaction_trends": self._satisfaction_trends(history, now),
            "pattern_insights": self._pattern_insights(patterns),
            "performance_metrics": {
                "switch_success_rate": successful / total if total else 0.0,
                "average_handoff_time": average_time,
            },
        }

    @staticmethod
    def _switch_matrix(history: Sequence[SwitchResult]) -> Dict[str, Dict[str, int]]:
        matrix: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        for result in history:
            source = result.previous_agent_id or "unknown"
            target = result.new_agent_id or "none"
            matrix[source][target] += 1
        return {source: dict(targets) for source, targets in matrix.items()}

    @staticmethod
    def _satisfaction_trends(history: Sequence[SwitchResult], now: datetime) -> List[Dict[str, Any]]:
        trends = []
        for period, span in (("last_24h", timedelta(hours=24)), ("last_7d", timedelta(days=7))):
            window = [
                result for result in history
                if result.completed_at >= now - span
                and result.performance_metrics.user_satisfaction_score is not None
            ]
            scores = [result.performance_metrics.user_satisfaction_score for result in window]

            trend = "stable"
            if len(scores) >= 4:
                half = len(scores) // 2
                delta = float(np.mean(scores[half:])) - float(np.mean(scores[:half]))
                if delta > 0.05:
                    trend = "increasing"
                elif delta < -0.05:
                    trend = "decreasing"

            trends.append({
                "period": period,
                "average_score": float(np.mean(scores)) if scores else 0.0,
                "sample_size": len(scores),
                "trend": trend,
            })
        return trends

    @staticmethod
    def _pattern_insights(patterns: Sequence[SwitchPattern]) -> List[Dict[str, Any]]:
        if not patterns:
            return []

        best = max(patterns, key=lambda pattern: pattern.success_rate)
        label = best.pattern_type.value.replace("_", " ")
        return [{
            "insight": f"{label.capitalize()} shows highest success rate ({round(best.success_rate * 100)}%)",
            "supporting_data": {
                "pattern_id": best.id,
                "pattern_type": best.pattern_type.value,
                "success_rate": best.success_rate,
                "frequency": best.frequency,
            },
            "action_recommendation": "Prioritize this pattern in agent selection",
            "priority": 0.9,
        }]
