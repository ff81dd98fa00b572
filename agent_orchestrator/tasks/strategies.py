"""
Rule-based agent selection strategies.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional

from ..agents.models import Agent, AgentCandidate
from ..agents.registry import AgentRegistry
from .models import Task, TaskPriority, TaskType


class StrategyAction(Enum):
    """How a matching rule picks among candidates."""
    BEST_PERFORMANCE = "best_performance"
    LEAST_LOADED = "least_loaded"
    SEQUENTIAL = "sequential"
    FIRST_AVAILABLE = "first_available"


@dataclass
class OrchestrationRule:
    """A condition on the task and the selection action it triggers."""
    name: str
    condition: Callable[[Task], bool]
    action: StrategyAction
    priority: int = 0


@dataclass
class OrchestrationStrategy:
    """
    Ordered set of selection rules.

    Rules are evaluated highest priority first; the first whose condition
    holds decides the agent. Ties between equally good agents resolve to the
    earlier candidate.
    """
    name: str
    rules: List[OrchestrationRule] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.rules.sort(key=lambda rule: rule.priority, reverse=True)

    def add_rule(self, rule: OrchestrationRule) -> None:
        self.rules.append(rule)
        self.rules.sort(key=lambda rule: rule.priority, reverse=True)

    def matching_rule(self, task: Task) -> Optional[OrchestrationRule]:
        for rule in self.rules:
            if rule.condition(task):
                return rule
        return None

    def select_agent(
        self,
        task: Task,
        candidates: List[AgentCandidate],
        registry: AgentRegistry,
    ) -> Optional[str]:
        """Agent id chosen by the first matching rule, or None when no rule applies."""
        if not candidates:
            return None

        rule = self.matching_rule(task)
        if rule is None:
            return None

        agents = [registry.get_agent(candidate.agent_id) for candidate in candidates]
        agents = [agent for agent in agents if agent is not None]
        if not agents:
            return None

        return _apply_action(rule.action, agents).id


def _apply_action(action: StrategyAction, agents: List[Agent]) -> Agent:
    if action == StrategyAction.BEST_PERFORMANCE:
        # max/min keep the first of equal elements
        return max(agents, key=lambda agent: agent.performance.success_rate)
    if action == StrategyAction.LEAST_LOADED:
        return min(agents, key=lambda agent: agent.performance.current_load)
    return agents[0]


def default_strategy() -> OrchestrationStrategy:
    """Critical tasks go to the best performer; workflows chain in order."""
    return OrchestrationStrategy(
        name="default",
        rules=[
            OrchestrationRule(
                name="critical-best-performance",
                condition=lambda task: task.priority == TaskPriority.CRITICAL,
                action=StrategyAction.BEST_PERFORMANCE,
                priority=10,
            ),
            OrchestrationRule(
                name="workflow-sequential",
                condition=lambda task: task.type == TaskType.MULTI_AGENT_WORKFLOW,
                action=StrategyAction.SEQUENTIAL,
                priority=5,
            ),
        ],
    )
