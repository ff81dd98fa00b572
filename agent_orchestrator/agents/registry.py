"""
In-memory agent registry with capability matching and scoring.
"""

import logging
from collections import defaultdict, deque
from typing import TYPE_CHECKING, Any, Deque, Dict, List, Optional

from ..core.clock import Clock, SystemClock
from ..core.exceptions import AgentNotFoundError, AgentRegistrationError
from .models import Agent, AgentCandidate, AgentStatus

if TYPE_CHECKING:
    from ..tasks.models import TaskRequirements

UNMATCHABLE_STATUSES = (AgentStatus.OFFLINE, AgentStatus.ERROR)


class AgentRegistry:
    """
    Registry for agents and their performance counters.

    Provides centralized storage and retrieval of agents. Matching skips
    agents that are offline or in error; the scheduler further narrows the
    result to agents that are free to take work.
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        logger: Optional[logging.Logger] = None,
        max_performance_history: int = 100,
    ) -> None:
        self.clock = clock or SystemClock()
        self.logger = logger or logging.getLogger(__name__)
        self.agents: Dict[str, Agent] = {}
        self.performance_history: Dict[str, Deque[Dict[str, Any]]] = defaultdict(
            lambda: deque(maxlen=max_performance_history)
        )

    def register_agent(self, agent: Agent) -> None:
        """
        Register an agent with the registry.

        Raises:
            AgentRegistrationError: If the agent is already registered or invalid
        """
        if agent.id in self.agents:
            raise AgentRegistrationError(
                f"Agent {agent.id} is already registered",
                context={"agent_id": agent.id}
            )
        if not agent.capabilities:
            raise AgentRegistrationError(
                f"Agent {agent.id} must declare at least one capability",
                context={"agent_id": agent.id}
            )
        if agent.max_concurrent_tasks <= 0:
            raise AgentRegistrationError(
                f"Agent {agent.id} max_concurrent_tasks must be greater than 0",
                context={"agent_id": agent.id, "max_concurrent_tasks": agent.max_concurrent_tasks}
            )

        self.agents[agent.id] = agent
        self.logger.info(f"Registered agent {agent.id} ({agent.type}) with capabilities {agent.capabilities}")

    def unregister_agent(self, agent_id: str) -> Agent:
        """
        Remove an agent from the registry.

        Raises:
            AgentNotFoundError: If agent is not found
        """
        agent = self._require(agent_id)
        del self.agents[agent_id]
        self.performance_history.pop(agent_id, None)
        self.logger.info(f"Unregistered agent {agent_id}")
        return agent

    def get_agent(self, agent_id: str) -> Optional[Agent]:
        return self.agents.get(agent_id)

    def list_agents(self, status: Optional[AgentStatus] = None) -> List[Agent]:
        if status is None:
            return list(self.agents.values())
        return [agent for agent in self.agents.values() if agent.status == status]

    def get_agents_by_capability(self, capability: str) -> List[Agent]:
        """Agents that declare ``capability`` and are not offline or in error."""
        return [
            agent for agent in self.agents.values()
            if capability in agent.capabilities and agent.status not in UNMATCHABLE_STATUSES
        ]

    def update_agent_status(self, agent_id: str, status: AgentStatus) -> None:
        """
        Update an agent's availability.

        Raises:
            AgentNotFoundError: If agent is not found
        """
        agent = self._require(agent_id)
        previous = agent.status
        now = self.clock.now()

        agent.status = status
        agent.updated_at = now
        if status not in UNMATCHABLE_STATUSES:
            agent.last_active_at = now

        self.logger.debug(f"Agent {agent_id} status {previous.value} -> {status.value}")

    def update_agent_performance(self, agent_id: str, **stats: Any) -> None:
        """
        Merge new performance counters into an agent's record.

        Raises:
            AgentNotFoundError: If agent is not found
        """
        agent = self._require(agent_id)
        performance = agent.performance

        for key, value in stats.items():
            if not hasattr(performance, key):
                raise ValueError(f"Unknown performance field: {key}")
            setattr(performance, key, value)

        performance.last_performance_update = self.clock.now()
        self.performance_history[agent_id].append(performance.to_dict())

    def get_performance_history(self, agent_id: str) -> List[Dict[str, Any]]:
        return list(self.performance_history.get(agent_id, []))

    def find_suitable_agents(self, requirements: "TaskRequirements") -> List[AgentCandidate]:
        """
        Find agents able to satisfy ``requirements``, best first.

        An agent matches when it is not offline or in error, declares every
        required capability, is of a preferred type (when types are given) and
        is not explicitly excluded.
        """
        candidates = []
        preferred_types = list(requirements.preferred_agent_types or [])
        excluded = set(requirements.excluded_agent_ids or [])

        for agent in self.agents.values():
            if agent.status in UNMATCHABLE_STATUSES or agent.id in excluded:
                continue
            if not agent.has_capabilities(requirements.required_capabilities):
                continue
            if preferred_types and agent.type not in preferred_types:
                continue

            score = self._calculate_suitability_score(agent, requirements.required_capabilities)
            candidates.append(AgentCandidate(
                agent_id=agent.id,
                score=score,
                reasoning=self._generate_selection_reasoning(agent, requirements.required_capabilities, score),
                estimated_completion_time_ms=self._estimate_completion_time(
                    agent, requirements.required_capabilities
                ),
            ))

        # sort is stable, so equal scores keep registration order
        candidates.sort(key=lambda candidate: candidate.score, reverse=True)
        return candidates

    def get_registry_stats(self) -> Dict[str, Any]:
        agents = list(self.agents.values())
        by_status: Dict[str, int] = defaultdict(int)
        by_type: Dict[str, int] = defaultdict(int)
        capabilities = set()

        for agent in agents:
            by_status[agent.status.value] += 1
            by_type[agent.type] += 1
            capabilities.update(agent.capabilities)

        return {
            "total_agents": len(agents),
            "agents_by_status": dict(by_status),
            "agents_by_type": dict(by_type),
            "capabilities": sorted(capabilities),
            "average_success_rate": (
                sum(agent.performance.success_rate for agent in agents) / len(agents) if agents else 0.0
            ),
            "average_load": (
                sum(agent.performance.current_load for agent in agents) / len(agents) if agents else 0.0
            ),
        }

    def _require(self, agent_id: str) -> Agent:
        agent = self.agents.get(agent_id)
        if agent is None:
            raise AgentNotFoundError(
                f"Agent {agent_id} not found",
                context={"agent_id": agent_id}
            )
        return agent

    @staticmethod
    def _calculate_suitability_score(agent: Agent, required_capabilities: List[str]) -> float:
        performance = agent.performance

        capability_score = 0.0
        if required_capabilities:
            matched = sum(1 for capability in required_capabilities if capability in agent.capabilities)
            capability_score = matched / len(required_capabilities) * 40

        performance_score = performance.success_rate * 30
        load_score = max(0.0, (1 - performance.current_load) * 20)
        response_time_score = max(0.0, (1 - min(performance.average_response_time_ms / 10000, 1)) * 10)

        return round(capability_score + performance_score + load_score + response_time_score, 2)

    @staticmethod
    def _estimate_completion_time(agent: Agent, required_capabilities: List[str]) -> float:
        base_time = agent.performance.average_response_time_ms or 5000
        base_time *= 1 + agent.performance.current_load
        base_time *= 1 + (max(len(required_capabilities), 1) - 1) * 0.2
        return float(round(base_time))

    @staticmethod
    def _generate_selection_reasoning(agent: Agent, required_capabilities: List[str], score: float) -> str:
        reasons = []
        performance = agent.performance

        if performance.success_rate > 0.9:
            reasons.append("high success rate")
        if performance.current_load < 0.5:
            reasons.append("low current load")
        if performance.average_response_time_ms < 3000:
            reasons.append("fast response time")
        if agent.has_capabilities(required_capabilities):
            reasons.append("all required capabilities")

        if reasons:
            return f"Selected for: {', '.join(reasons)} (score: {score})"
        return f"Selected with score: {score}"
