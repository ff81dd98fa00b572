"""
Switch pattern learning.

The learner keeps a bounded history of switch results, maintains a set of
learned patterns and refines their confidence with exponential smoothing
as new outcomes arrive.
"""

import asyncio
import logging
import time
from collections import deque
from datetime import timedelta
from typing import Any, Deque, Dict, List, Optional

import numpy as np

from ..communication import events
from ..communication.events import EventBus
from ..config.settings import LearningSettings
from ..core.base import BaseService
from ..core.clock import Clock, SystemClock, TimerHandle
from ..monitoring import metrics as metric_names
from ..monitoring.metrics import MetricsCollector
from .conditions import match_score
from .detection import detect_patterns
from .insights import InsightGenerator
from .models import (
    EvolutionStep,
    LearningInsight,
    PatternDetectionResult,
    PatternEvolution,
    PatternType,
    SwitchPattern,
    SwitchRequest,
    SwitchResult,
)

UPDATE_MATCH_THRESHOLD = 0.8
PREDICTION_MATCH_THRESHOLD = 0.6
SUCCESS_TARGET = 1.0
FAILURE_TARGET = 0.5
OPTIMIZATION_WINDOW = 100
MAX_EVOLUTION_STEPS = 50


def smooth(current: float, target: float, learning_rate: float) -> float:
    """Exponential smoothing clamped to [0, 1]."""
    value = current * (1 - learning_rate) + target * learning_rate
    return min(1.0, max(0.0, value))


class SwitchPatternLearner(BaseService):
    """
    Learns recurring agent-switch patterns from switch outcomes.

    All state changes happen under one lock; events are published after it
    is released. Failures while updating patterns are logged and absorbed so
    a bad result never breaks the caller.
    """

    def __init__(
        self,
        settings: Optional[LearningSettings] = None,
        clock: Optional[Clock] = None,
        event_bus: Optional[EventBus] = None,
        metrics: Optional[MetricsCollector] = None,
        insight_generator: Optional[InsightGenerator] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__("switch_pattern_learner")
        self.settings = settings or LearningSettings()
        self.clock = clock or SystemClock()
        self.event_bus = event_bus or EventBus()
        self.metrics = metrics or MetricsCollector(enabled=False)
        self.insight_generator = insight_generator or InsightGenerator()
        self.logger = logger or logging.getLogger(__name__)

        self.history: Deque[SwitchResult] = deque(maxlen=self.settings.max_history_size)
        self.patterns: Dict[str, SwitchPattern] = {}
        self.insights: Deque[LearningInsight] = deque(maxlen=self.settings.max_insights_size)
        self.evolutions: Dict[str, PatternEvolution] = {}

        self._signatures: Dict[str, str] = {}
        self._optimize_handle: Optional[TimerHandle] = None
        self._prune_handle: Optional[TimerHandle] = None
        self._lock = asyncio.Lock()

    async def start(self) -> None:
        """Schedule periodic optimization and insight pruning."""
        if self.is_running:
            return

        if self.settings.enable_auto_optimization:
            self._optimize_handle = self.clock.call_every(
                self.settings.optimization_interval, self.optimize_patterns
            )
        self._prune_handle = self.clock.call_every(self.settings.insight_prune_interval, self.prune_insights)
        self.is_running = True
        self.logger.info("Switch pattern learner started")

    async def stop(self) -> None:
        for handle in (self._optimize_handle, self._prune_handle):
            if handle is not None:
                handle.cancel()
        self._optimize_handle = None
        self._prune_handle = None
        self.is_running = False

    async def shutdown(self) -> None:
        await self.stop()
        async with self._lock:
            self.history.clear()
            self.patterns.clear()
            self.insights.clear()
            self.evolutions.clear()
            self._signatures.clear()
        self.logger.info("Switch pattern learner shut down")

    async def learn_from_result(self, result: SwitchResult, request: SwitchRequest) -> None:
        """
        Fold one switch outcome into history, patterns and insights.

        Args:
            result: Outcome of the switch
            request: The request that produced it
        """
        async with self._lock:
            now = self.clock.now()
            if result.previous_agent_id is None:
                result.previous_agent_id = request.current_agent_id
            if result.reason is None:
                result.reason = request.reason
            self.history.append(result)

            try:
                updated = self._update_existing_patterns(result, request, now)
                detected = self._detect_new_patterns(now) if self.settings.enable_pattern_detection else []
                new_insights = self.insight_generator.generate(self.history, now)
                self.insights.extend(new_insights)
            except Exception as e:
                self.logger.error(f"Failed to learn from switch result {result.id}: {e}")
                return

            recently_observed = sum(
                1 for pattern in self.patterns.values()
                if pattern.last_observed >= now - timedelta(hours=1)
            )
            self._update_pattern_gauges()

        if detected:
            self.logger.info(f"Detected {len(detected)} new switch patterns")
        self.logger.debug(
            f"Learned from switch {result.id}: {len(updated)} patterns updated, {len(self.patterns)} total"
        )

        for insight in new_insights:
            self.metrics.increment(metric_names.INSIGHTS_TOTAL, labels={
                "type": insight.type.value,
                "priority": insight.priority.value,
            })
            await self.event_bus.publish(events.INSIGHT_GENERATED, insight.to_dict())

        await self.event_bus.publish(events.PATTERN_LEARNED, {
            "result_id": result.id,
            "request_id": request.id,
            "success": result.success,
            "patterns_updated": recently_observed,
            "new_patterns": [pattern.id for pattern in detected],
        })

    async def optimize_patterns(self) -> PatternDetectionResult:
        """
        Purge stale or weak patterns, detect new ones and re-blend the rest
        toward their recent observed success.
        """
        started = time.perf_counter()

        async with self._lock:
            now = self.clock.now()
            retention = timedelta(days=self.settings.pattern_retention_days)

            removed = [
                pattern.id for pattern in self.patterns.values()
                if now - pattern.last_observed > retention
                or pattern.confidence < self.settings.confidence_threshold
            ]
            for pattern_id in removed:
                self._remove_pattern(pattern_id)

            detected = self._detect_new_patterns(now) if self.settings.enable_pattern_detection else []
            detected_ids = {pattern.id for pattern in detected}

            updated = []
            recent = list(self.history)[-OPTIMIZATION_WINDOW:]
            for pattern in self.patterns.values():
                if pattern.id in detected_ids:
                    continue
                targets = set(pattern.target_agents)
                matching = [result for result in recent if result.new_agent_id in targets]
                if not matching:
                    continue

                recent_success = sum(1 for result in matching if result.success) / len(matching)
                pattern.confidence = smooth(pattern.confidence, recent_success, self.settings.learning_rate)
                self._track_evolution(pattern, "optimization")
                updated.append(pattern)

            self._update_pattern_gauges()
            confidences = [pattern.confidence for pattern in self.patterns.values()]
            result = PatternDetectionResult(
                new_patterns=detected,
                updated_patterns=updated,
                removed_patterns=removed,
                confidence=float(np.mean(confidences)) if confidences else 0.0,
            )

        optimization_time = (time.perf_counter() - started) * 1000
        self.logger.info(
            f"Optimized patterns: {len(detected)} new, {len(updated)} updated, "
            f"{len(removed)} removed in {optimization_time:.1f}ms"
        )
        await self.event_bus.publish(events.PATTERNS_OPTIMIZED, {
            "new_patterns": len(detected),
            "updated_patterns": len(updated),
            "removed_patterns": len(removed),
            "optimization_time": optimization_time,
        })
        return result

    async def prune_insights(self) -> int:
        """
        Drop insights older than the retention window.

        Returns:
            Number of insights removed
        """
        async with self._lock:
            cutoff = self.clock.now() - timedelta(days=self.settings.insight_retention_days)
            kept = [insight for insight in self.insights if insight.discovered_at >= cutoff]
            removed = len(self.insights) - len(kept)
            self.insights = deque(kept, maxlen=self.settings.max_insights_size)

        if removed:
            self.logger.info(f"Pruned {removed} expired insights")
        return removed

    def find_matching_patterns(
        self,
        request: SwitchRequest,
        threshold: float = PREDICTION_MATCH_THRESHOLD,
    ) -> List[SwitchPattern]:
        """Patterns whose weighted match on ``request`` reaches ``threshold``, most confident first."""
        matching = [
            pattern for pattern in self.patterns.values()
            if match_score(pattern.conditions, request) >= threshold
        ]
        matching.sort(key=lambda pattern: pattern.confidence, reverse=True)
        return matching

    def get_patterns(self) -> List[SwitchPattern]:
        return sorted(self.patterns.values(), key=lambda pattern: pattern.confidence, reverse=True)

    def get_patterns_by_type(self, pattern_type: PatternType) -> List[SwitchPattern]:
        return [pattern for pattern in self.get_patterns() if pattern.pattern_type == pattern_type]

    def get_pattern(self, pattern_id: str) -> Optional[SwitchPattern]:
        return self.patterns.get(pattern_id)

    def get_pattern_evolution(self, pattern_id: str) -> Optional[PatternEvolution]:
        return self.evolutions.get(pattern_id)

    def get_history(self, limit: Optional[int] = None) -> List[SwitchResult]:
        history = list(self.history)
        return history[-limit:] if limit else history

    def get_insights(self, limit: int = 20) -> List[LearningInsight]:
        """Insights ordered by priority, then confidence."""
        return self.insight_generator.rank(self.insights, limit)

    def get_pattern_analytics(self) -> Dict[str, Any]:
        return self.insight_generator.build_analytics(
            list(self.history), list(self.patterns.values()), self.clock.now()
        )

    def get_status(self) -> Dict[str, Any]:
        status = super().get_status()
        status.update({
            "history_size": len(self.history),
            "patterns": len(self.patterns),
            "insights": len(self.insights),
        })
        return status

    def _update_existing_patterns(self, result: SwitchResult, request: SwitchRequest, now) -> List[SwitchPattern]:
        target = SUCCESS_TARGET if result.success else FAILURE_TARGET
        outcome = 1.0 if result.success else 0.0
        updated = []

        for pattern in self.patterns.values():
            if match_score(pattern.conditions, request) < UPDATE_MATCH_THRESHOLD:
                continue

            pattern.frequency += 1
            pattern.last_observed = now
            pattern.success_rate = (
                pattern.success_rate * (pattern.frequency - 1) + outcome
            ) / pattern.frequency
            pattern.confidence = smooth(pattern.confidence, target, self.settings.learning_rate)
            self._track_evolution(pattern, "switch_result")
            updated.append(pattern)

        return updated

    def _detect_new_patterns(self, now) -> List[SwitchPattern]:
        window = list(self.history)[-self.settings.detection_window:]
        detected = []

        for candidate in detect_patterns(window, self.settings.minimum_occurrences, now):
            if candidate.frequency < self.settings.minimum_occurrences:
                continue
            if candidate.confidence < self.settings.confidence_threshold:
                continue

            existing_id = self._signatures.get(candidate.signature)
            if existing_id is not None:
                self.patterns[existing_id].outcomes = candidate.outcomes
                continue

            self._store_pattern(candidate)
            detected.append(candidate)

        return detected

    def _store_pattern(self, pattern: SwitchPattern) -> None:
        same_type = [
            existing for existing in self.patterns.values()
            if existing.pattern_type == pattern.pattern_type
        ]
        if len(same_type) >= self.settings.max_patterns_per_type:
            evicted = min(same_type, key=lambda existing: (existing.last_observed, existing.confidence))
            self.logger.debug(f"Evicting pattern {evicted.signature} to make room for {pattern.signature}")
            self._remove_pattern(evicted.id)

        self.patterns[pattern.id] = pattern
        self._signatures[pattern.signature] = pattern.id
        self._track_evolution(pattern, "detected")

    def _remove_pattern(self, pattern_id: str) -> None:
        pattern = self.patterns.pop(pattern_id, None)
        if pattern is None:
            return
        if self._signatures.get(pattern.signature) == pattern_id:
            del self._signatures[pattern.signature]
        self.evolutions.pop(pattern_id, None)

    def _track_evolution(self, pattern: SwitchPattern, trigger: str) -> None:
        evolution = self.evolutions.setdefault(pattern.id, PatternEvolution(pattern_id=pattern.id))
        evolution.steps.append(EvolutionStep(
            timestamp=self.clock.now(),
            confidence=pattern.confidence,
            frequency=pattern.frequency,
            success_rate=pattern.success_rate,
            trigger=trigger,
        ))
        del evolution.steps[:-MAX_EVOLUTION_STEPS]

        if len(evolution.steps) >= 3:
            delta = evolution.steps[-1].confidence - evolution.steps[-3].confidence
            if delta > 0.1:
                evolution.trend = "improving"
            elif delta < -0.1:
                evolution.trend = "degrading"
            else:
                evolution.trend = "stable"

        evolution.current_confidence = pattern.confidence

    def _update_pattern_gauges(self) -> None:
        for pattern_type in PatternType:
            count = sum(1 for pattern in self.patterns.values() if pattern.pattern_type == pattern_type)
            self.metrics.set_gauge(metric_names.PATTERNS_TOTAL, count, labels={"pattern_type": pattern_type.value})
