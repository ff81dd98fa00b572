"""
Pytest configuration and shared fixtures for the test suite.

Every fixture runs on a :class:`ManualClock` so timers, timeouts and
pattern ages are driven explicitly by the tests.
"""

from typing import Any, Callable, Dict, List, Optional

import pytest

from agent_orchestrator.agents import Agent, AgentRegistry
from agent_orchestrator.communication import EventBus, InMemoryJobDispatcher
from agent_orchestrator.config import LearningSettings, SchedulerSettings
from agent_orchestrator.core import ManualClock
from agent_orchestrator.learning import (
    InsightGenerator,
    PredictionEngine,
    SwitchPatternLearner,
    SwitchRequest,
    SwitchResult,
)
from agent_orchestrator.monitoring import MetricsCollector
from agent_orchestrator.tasks import Task, TaskLifecycleManager, TaskPriority, TaskRequirements, TaskType


def sample_agents() -> List[Agent]:
    """Agents registered by the ``registry`` fixture, in registration order."""
    return [
        Agent(id="writer-1", name="Writer", type="writer", capabilities=["writing", "editing"]),
        Agent(id="coder-1", name="Coder One", type="coder", capabilities=["coding", "review"]),
        Agent(id="coder-2", name="Coder Two", type="coder", capabilities=["coding"]),
        Agent(id="analyst-1", name="Analyst", type="analyst", capabilities=["analysis", "writing"]),
    ]


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def registry(clock: ManualClock) -> AgentRegistry:
    registry = AgentRegistry(clock=clock)
    for agent in sample_agents():
        registry.register_agent(agent)
    return registry


@pytest.fixture
def dispatcher() -> InMemoryJobDispatcher:
    return InMemoryJobDispatcher()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture
def recorded_events(event_bus: EventBus) -> List:
    """Every event published on ``event_bus``, in order."""
    received = []
    event_bus.subscribe_all(received.append)
    return received


@pytest.fixture
def scheduler_settings() -> SchedulerSettings:
    return SchedulerSettings(task_timeout=30.0)


@pytest.fixture
def lifecycle(registry, dispatcher, clock, event_bus, metrics, scheduler_settings) -> TaskLifecycleManager:
    return TaskLifecycleManager(
        registry,
        dispatcher,
        clock=clock,
        event_bus=event_bus,
        metrics=metrics,
        settings=scheduler_settings,
    )


@pytest.fixture
def learning_settings() -> LearningSettings:
    return LearningSettings(enable_auto_optimization=False)


@pytest.fixture
def learner(learning_settings, clock, event_bus, metrics) -> SwitchPatternLearner:
    return SwitchPatternLearner(
        settings=learning_settings,
        clock=clock,
        event_bus=event_bus,
        metrics=metrics,
        insight_generator=InsightGenerator(),
    )


@pytest.fixture
def predictor(learner: SwitchPatternLearner) -> PredictionEngine:
    return PredictionEngine(learner)


@pytest.fixture
def make_task() -> Callable[..., Task]:
    """Factory for tasks requiring the given capabilities."""

    def factory(
        task_id: str,
        capabilities: Optional[List[str]] = None,
        priority: Optional[TaskPriority] = None,
        task_type: TaskType = TaskType.SIMPLE,
        **requirements: Any,
    ) -> Task:
        return Task(
            id=task_id,
            type=task_type,
            priority=priority,
            requirements=TaskRequirements(
                required_capabilities=list(capabilities or ["writing"]),
                **requirements
            ),
            input={"prompt": f"work for {task_id}"},
        )

    return factory


@pytest.fixture
def make_switch(clock: ManualClock) -> Callable[..., Dict[str, Any]]:
    """Factory for a matching (request, result) pair stamped with the clock's time."""

    def factory(
        from_agent: str = "coder-1",
        to_agent: Optional[str] = "coder-2",
        success: bool = True,
        duration: float = 1000.0,
        satisfaction: Optional[float] = None,
        **request_fields: Any,
    ) -> Dict[str, Any]:
        request = SwitchRequest(
            current_task_id=f"task-{from_agent}",
            current_agent_id=from_agent,
            created_at=clock.now(),
            **request_fields
        )
        result = SwitchResult(
            request_id=request.id,
            success=success,
            new_agent_id=to_agent,
            previous_agent_id=from_agent,
            duration=duration,
            completed_at=clock.now(),
        )
        result.performance_metrics.user_satisfaction_score = satisfaction
        return {"request": request, "result": result}

    return factory


@pytest.fixture
def learn_many(make_switch) -> Callable[..., Any]:
    """Feed ``count`` identical switch outcomes to a learner."""

    async def learn(learner: SwitchPatternLearner, count: int, **switch_fields: Any) -> None:
        for _ in range(count):
            pair = make_switch(**switch_fields)
            await learner.learn_from_result(pair["result"], pair["request"])

    return learn
