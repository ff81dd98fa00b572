"""
Detectors that turn switch history into candidate patterns.

Every detector returns fully built :class:`SwitchPattern` candidates with a
stable ``signature``; the learner decides which of them to keep.
"""

from collections import Counter, defaultdict
from datetime import datetime
from typing import Dict, List, Sequence, Tuple

import numpy as np

from .models import (
    ConditionOperator,
    PatternCondition,
    PatternOutcome,
    PatternType,
    SwitchPattern,
    SwitchResult,
)

DEFAULT_SATISFACTION = 0.8
TIME_BASED_SATISFACTION = 0.75
TIME_BASED_COMPLETION_MS = 5000.0


def _average_satisfaction(results: Sequence[SwitchResult], default: float) -> float:
    scores = [
        result.performance_metrics.user_satisfaction_score
        for result in results
        if result.performance_metrics.user_satisfaction_score is not None
    ]
    return float(np.mean(scores)) if scores else default


def detect_sequential_patterns(
    history: Sequence[SwitchResult],
    minimum_occurrences: int,
    now: datetime,
) -> List[SwitchPattern]:
    """
    Recurring hand-offs from one agent to another.

    Each result contributes a transition from its previous agent to its new
    agent. When the previous agent was not recorded, the new agent of the
    preceding result stands in for it.
    """
    transitions: Dict[Tuple[str, str], List[SwitchResult]] = defaultdict(list)
    preceding_agent = None

    for result in history:
        source = result.previous_agent_id or preceding_agent
        if source and result.new_agent_id and source != result.new_agent_id:
            transitions[(source, result.new_agent_id)].append(result)
        if result.new_agent_id:
            preceding_agent = result.new_agent_id

    patterns = []
    for (source, target), results in transitions.items():
        count = len(results)
        if count < minimum_occurrences:
            continue

        success_rate = sum(1 for result in results if result.success) / count
        patterns.append(SwitchPattern(
            pattern_type=PatternType.SEQUENTIAL_SWITCH,
            conditions=[PatternCondition("current_agent_id", ConditionOperator.EQUALS, source, 1.0)],
            outcomes=[PatternOutcome(
                target_agent=target,
                success_probability=success_rate,
                average_user_satisfaction=_average_satisfaction(results, DEFAULT_SATISFACTION),
                average_completion_time=float(np.mean([result.duration for result in results])),
            )],
            frequency=count,
            confidence=min(0.9, success_rate),
            success_rate=success_rate,
            signature=f"sequential:{source}->{target}",
            learned_at=now,
            last_observed=now,
        ))

    return patterns


def detect_time_based_patterns(
    history: Sequence[SwitchResult],
    minimum_occurrences: int,
    now: datetime,
) -> List[SwitchPattern]:
    """Hours of the day in which switches cluster, pointing at the agent most often chosen then."""
    by_hour: Dict[int, List[SwitchResult]] = defaultdict(list)
    for result in history:
        by_hour[result.completed_at.hour].append(result)

    patterns = []
    for hour, results in sorted(by_hour.items()):
        count = len(results)
        if count < minimum_occurrences:
            continue

        targets = Counter(result.new_agent_id for result in results if result.new_agent_id)
        if not targets:
            continue

        target = targets.most_common(1)[0][0]
        success_rate = sum(1 for result in results if result.success) / count
        patterns.append(SwitchPattern(
            pattern_type=PatternType.TIME_BASED_PATTERN,
            conditions=[PatternCondition("time.hour", ConditionOperator.IN_RANGE, (hour, hour + 1), 0.8)],
            outcomes=[PatternOutcome(
                target_agent=target,
                success_probability=success_rate,
                average_user_satisfaction=TIME_BASED_SATISFACTION,
                average_completion_time=TIME_BASED_COMPLETION_MS,
            )],
            frequency=count,
            confidence=min(0.8, success_rate),
            success_rate=success_rate,
            signature=f"time:{hour}",
            learned_at=now,
            last_observed=now,
        ))

    return patterns


def detect_load_based_patterns(
    history: Sequence[SwitchResult],
    minimum_occurrences: int,
    now: datetime,
) -> List[SwitchPattern]:
    """Load correlations; switch results carry no load samples yet, so nothing is detected."""
    return []


DETECTORS = (
    detect_sequential_patterns,
    detect_time_based_patterns,
    detect_load_based_patterns,
)


def detect_patterns(
    history: Sequence[SwitchResult],
    minimum_occurrences: int,
    now: datetime,
) -> List[SwitchPattern]:
    """Run every detector over ``history``."""
    candidates: List[SwitchPattern] = []
    for detector in DETECTORS:
        candidates.extend(detector(history, minimum_occurrences, now))
    return candidates
