"""
Orchestrator facade wiring the scheduler, the learner and their collaborators.
"""

import time
import uuid
from collections import defaultdict
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from .agents.models import Agent, AgentCandidate
from .agents.registry import AgentRegistry
from .communication import events
from .communication.dispatch import InMemoryJobDispatcher, JobDispatcher
from .communication.events import Event, EventBus
from .config.manager import ConfigManager
from .config.settings import OrchestratorSettings
from .core.clock import Clock, SystemClock
from .core.exceptions import InvalidStateTransitionError, TaskNotFoundError
from .learning.insights import InsightGenerator
from .learning.learner import SwitchPatternLearner
from .learning.models import (
    LearningInsight,
    PredictionResult,
    SwitchPerformanceMetrics,
    SwitchReason,
    SwitchRequest,
    SwitchResult,
    SwitchUrgency,
    WorkloadPreference,
)
from .learning.prediction import PredictionEngine
from .monitoring.logger import LogManager, StructuredLogger
from .monitoring.metrics import MetricsCollector
from .tasks.lifecycle import TaskLifecycleManager
from .tasks.models import Task, TaskPriority, TaskRequirements, TaskStatus, TaskType
from .tasks.strategies import OrchestrationStrategy
from .tasks.workflow import StepRunner, WorkflowExecutor

STATUS_MESSAGES = {
    TaskStatus.PENDING: "Task is waiting to be processed",
    TaskStatus.QUEUED: "Task is in queue for processing",
    TaskStatus.ASSIGNED: "Task has been assigned to an agent",
    TaskStatus.IN_PROGRESS: "Task is currently being processed",
    TaskStatus.COMPLETED: "Task has been completed successfully",
    TaskStatus.FAILED: "Task processing failed",
    TaskStatus.CANCELLED: "Task was cancelled",
}

PRIORITY_URGENCY = {
    TaskPriority.CRITICAL: SwitchUrgency.CRITICAL,
    TaskPriority.URGENT: SwitchUrgency.HIGH,
    TaskPriority.HIGH: SwitchUrgency.HIGH,
    TaskPriority.MEDIUM: SwitchUrgency.MEDIUM,
    TaskPriority.LOW: SwitchUrgency.LOW,
}

FINISHING_EVENTS = (events.TASK_COMPLETED, events.TASK_FAILED, events.TASK_CANCELLED)


class Orchestrator:
    """
    Entry point for submitting work and switching agents.

    Plain tasks submitted within a session are steered by the prediction
    engine toward the agent learned to follow the session's previous agent.
    Explicit switches cancel the current task, resubmit its work pinned to a
    new agent and feed the outcome back to the learner once the new task
    completes, fails or is cancelled.
    """

    def __init__(
        self,
        settings: Optional[OrchestratorSettings] = None,
        registry: Optional[AgentRegistry] = None,
        dispatcher: Optional[JobDispatcher] = None,
        clock: Optional[Clock] = None,
        event_bus: Optional[EventBus] = None,
        metrics: Optional[MetricsCollector] = None,
        strategy: Optional[OrchestrationStrategy] = None,
        step_runner: Optional[StepRunner] = None,
        logger: Optional[StructuredLogger] = None,
    ) -> None:
        self.settings = settings or OrchestratorSettings()
        self.clock = clock or SystemClock()
        self.logger = logger or StructuredLogger(__name__)
        self.event_bus = event_bus or EventBus()
        self.metrics = metrics or MetricsCollector(
            namespace=self.settings.metrics.namespace,
            enabled=self.settings.metrics.enabled,
        )
        self.registry = registry or AgentRegistry(clock=self.clock)
        self.dispatcher = dispatcher or InMemoryJobDispatcher()

        self.lifecycle = TaskLifecycleManager(
            self.registry,
            self.dispatcher,
            clock=self.clock,
            event_bus=self.event_bus,
            metrics=self.metrics,
            settings=self.settings.scheduler,
            strategy=strategy,
            workflow_executor=WorkflowExecutor(
                self.registry,
                self.dispatcher,
                clock=self.clock,
                queue_name=self.settings.scheduler.queue_name,
                step_runner=step_runner,
            ),
        )
        self.learner = SwitchPatternLearner(
            settings=self.settings.learning,
            clock=self.clock,
            event_bus=self.event_bus,
            metrics=self.metrics,
            insight_generator=InsightGenerator(),
        )
        self.predictor = PredictionEngine(self.learner)
        self.lifecycle.selection_advisor = self._advise_selection

        self.sessions: Dict[str, List[str]] = defaultdict(list)
        self.session_agents: Dict[str, str] = {}
        self.pending_switches: Dict[str, Tuple[SwitchRequest, SwitchResult]] = {}
        self.switch_count = 0

        self.event_bus.subscribe(events.TASK_ASSIGNED, self._on_task_assigned)
        for event_type in FINISHING_EVENTS:
            self.event_bus.subscribe(event_type, self._on_task_finished)

    async def start(self) -> None:
        await self.lifecycle.start()
        await self.learner.start()
        self.logger.info("Orchestrator started", queue_name=self.settings.scheduler.queue_name)

    async def stop(self) -> None:
        await self.lifecycle.stop()
        await self.learner.stop()
        self.logger.info("Orchestrator stopped")

    async def shutdown(self) -> None:
        """Stop everything and drop all in-memory state."""
        await self.lifecycle.shutdown()
        await self.learner.shutdown()
        self.sessions.clear()
        self.session_agents.clear()
        self.pending_switches.clear()
        self.logger.info("Orchestrator shut down")

    def register_agent(self, agent: Agent) -> None:
        self.registry.register_agent(agent)

    async def submit_task(
        self,
        required_capabilities: List[str],
        input: Optional[Dict[str, Any]] = None,
        priority: TaskPriority = TaskPriority.MEDIUM,
        task_type: TaskType = TaskType.SIMPLE,
        session_id: Optional[str] = None,
        preferred_agent_types: Optional[List[str]] = None,
        max_response_time: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None,
        task_id: Optional[str] = None,
    ) -> Task:
        """Build a task from the given requirements and submit it."""
        task_metadata = dict(metadata or {})
        if session_id:
            task_metadata["session_id"] = session_id

        task = Task(
            id=task_id or f"task-{uuid.uuid4()}",
            type=task_type,
            priority=priority,
            requirements=TaskRequirements(
                required_capabilities=list(required_capabilities),
                preferred_agent_types=list(preferred_agent_types or []),
                max_response_time=max_response_time,
            ),
            input=dict(input or {}),
            metadata=task_metadata,
        )
        await self.lifecycle.submit(task)

        if session_id:
            self.sessions[session_id].append(task.id)
        return task

    async def complete_task(self, task_id: str, result: Any = None) -> bool:
        return await self.lifecycle.complete(task_id, result)

    async def fail_task(self, task_id: str, error: Union[Exception, str]) -> bool:
        return await self.lifecycle.fail(task_id, error)

    async def cancel_task(self, task_id: str, reason: Optional[str] = None) -> Task:
        return await self.lifecycle.cancel(task_id, reason)

    async def retry_task(self, task_id: str) -> Task:
        return await self.lifecycle.retry(task_id)

    def get_task_status(self, task_id: str) -> Dict[str, Any]:
        task = self.lifecycle.get_task(task_id)
        if task is None:
            return {"task_id": task_id, "status": None, "message": "Task not found"}

        status = {
            "task_id": task_id,
            "status": task.status.value,
            "message": STATUS_MESSAGES[task.status],
            "agent_id": task.assigned_agent_id,
            "queue_position": self.lifecycle.queue.position(task_id),
        }
        workflow = self.lifecycle.get_workflow(task_id)
        if workflow is not None:
            status["workflow"] = {
                "id": workflow.id,
                "status": workflow.status.value,
                "completed_steps": workflow.completed_steps,
                "total_steps": len(workflow.steps),
            }
        return status

    def get_session_tasks(self, session_id: str) -> List[Task]:
        return [
            task for task in (self.lifecycle.get_task(task_id) for task_id in self.sessions.get(session_id, []))
            if task is not None
        ]

    async def switch_agent(self, request: SwitchRequest) -> SwitchResult:
        """
        Move a task to a different agent.

        The current task is cancelled and its work is resubmitted as a new
        task pinned to the chosen agent. When no alternative exists the switch
        fails immediately and the failure is learned.

        Raises:
            TaskNotFoundError: If the task is unknown
            InvalidStateTransitionError: If the task has already finished
        """
        started = time.perf_counter()
        task = self.lifecycle.get_task(request.current_task_id)
        if task is None:
            raise TaskNotFoundError(
                f"Task {request.current_task_id} not found",
                context={"task_id": request.current_task_id}
            )
        if task.status.is_terminal:
            raise InvalidStateTransitionError(
                f"Cannot switch agent for task {task.id} in state {task.status.value}",
                context={"task_id": task.id, "from": task.status.value}
            )

        requirements = self._switch_requirements(task, request)
        candidates = self._switch_candidates(requirements, request)
        if not candidates:
            result = SwitchResult(
                request_id=request.id,
                success=False,
                previous_agent_id=request.current_agent_id,
                reason=request.reason,
                errors=["No suitable alternative agents available"],
                duration=(time.perf_counter() - started) * 1000,
                completed_at=self.clock.now(),
            )
            self.logger.warning("Agent switch failed", task_id=task.id, reason=request.reason.value)
            await self.learner.learn_from_result(result, request)
            return result

        prediction = self.predictor.predict(request)
        candidate_ids = [candidate.agent_id for candidate in candidates]
        if prediction and prediction.recommended_agent_id in candidate_ids:
            new_agent_id = prediction.recommended_agent_id
        else:
            new_agent_id = candidate_ids[0]
        selection_time = (time.perf_counter() - started) * 1000

        requirements.preferred_agent_id = new_agent_id
        new_task = Task(
            id=f"{task.id}-switch-{int(self.clock.now().timestamp() * 1000)}",
            type=task.type,
            priority=task.priority,
            requirements=requirements,
            input=deepcopy(task.input),
            metadata={
                **task.metadata,
                "previous_task_id": task.id,
                "previous_agent_id": request.current_agent_id,
                "switch_reason": request.reason.value,
                "switch_request_id": request.id,
            },
        )
        if request.context_preservation.enabled:
            context = dict(new_task.input.get("context") or {})
            context.update({
                "previous_task_id": task.id,
                "switch_reason": request.reason.value,
                "preserved_context": deepcopy(task.result) if isinstance(task.result, dict) else {},
            })
            new_task.input["context"] = context

        await self.lifecycle.cancel(task.id, f"Switched to agent {new_agent_id}: {request.reason.value}")
        await self.lifecycle.submit(new_task)

        session_id = task.metadata.get("session_id")
        if session_id:
            self.sessions[session_id].append(new_task.id)

        total_time = (time.perf_counter() - started) * 1000
        result = SwitchResult(
            request_id=request.id,
            success=False,
            new_agent_id=new_agent_id,
            new_task_id=new_task.id,
            previous_agent_id=request.current_agent_id,
            reason=request.reason,
            performance_metrics=SwitchPerformanceMetrics(
                switch_latency=total_time,
                agent_selection_time=selection_time,
                total_switch_time=total_time,
                context_preservation_rate=1.0 if request.context_preservation.enabled else 0.0,
            ),
            duration=total_time,
            completed_at=self.clock.now(),
        )
        self.pending_switches[new_task.id] = (request, result)
        self.switch_count += 1

        self.logger.info(
            "Agent switched",
            task_id=task.id,
            new_task_id=new_task.id,
            from_agent=request.current_agent_id,
            to_agent=new_agent_id,
            reason=request.reason.value,
            predicted=bool(prediction and prediction.recommended_agent_id == new_agent_id),
        )
        await self.event_bus.publish(events.AGENT_SWITCHED, {
            "request_id": request.id,
            "previous_task_id": task.id,
            "new_task_id": new_task.id,
            "from_agent": request.current_agent_id,
            "to_agent": new_agent_id,
            "reason": request.reason.value,
            "prediction": prediction.to_dict() if prediction else None,
        })
        return result

    def predict_agent(self, request: SwitchRequest) -> Optional[PredictionResult]:
        return self.predictor.predict(request)

    def get_insights(self, limit: int = 20) -> List[LearningInsight]:
        return self.learner.get_insights(limit)

    def get_analytics(self) -> Dict[str, Any]:
        return self.learner.get_pattern_analytics()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "tasks": self.lifecycle.get_distribution_stats(),
            "agents": self.registry.get_registry_stats(),
            "learning": self.learner.get_status(),
            "agent_switches": self.switch_count,
            "pending_switches": len(self.pending_switches),
            "active_sessions": len(self.sessions),
        }

    def _switch_requirements(self, task: Task, request: SwitchRequest) -> TaskRequirements:
        criteria = request.target_criteria
        excluded = set(criteria.excluded_agent_ids) | set(task.requirements.excluded_agent_ids)
        excluded.add(request.current_agent_id)
        if task.assigned_agent_id:
            excluded.add(task.assigned_agent_id)

        return TaskRequirements(
            required_capabilities=list(
                criteria.required_capabilities or task.requirements.required_capabilities
            ),
            preferred_agent_types=list(
                criteria.preferred_agent_types or task.requirements.preferred_agent_types
            ),
            excluded_agent_ids=sorted(excluded),
            max_response_time=task.requirements.max_response_time,
        )

    def _switch_candidates(self, requirements: TaskRequirements, request: SwitchRequest) -> List[AgentCandidate]:
        criteria = request.target_criteria
        candidates = []

        for candidate in self.registry.find_suitable_agents(requirements):
            agent = self.registry.get_agent(candidate.agent_id)
            if agent is None or not agent.status.is_assignable:
                continue
            if (
                criteria.minimum_success_rate is not None
                and agent.performance.success_rate < criteria.minimum_success_rate
            ):
                continue
            candidates.append(candidate)

        if criteria.workload_preference == WorkloadPreference.LOW_LOAD:
            candidates.sort(key=lambda c: self.registry.get_agent(c.agent_id).performance.current_load)
        elif criteria.workload_preference == WorkloadPreference.OPTIMAL_PERFORMANCE:
            candidates.sort(key=lambda c: self.registry.get_agent(c.agent_id).performance.success_rate, reverse=True)
        return candidates

    def _advise_selection(self, task: Task, candidates: List[AgentCandidate]) -> Optional[str]:
        session_id = task.metadata.get("session_id")
        current_agent = self.session_agents.get(session_id) if session_id else None
        if not current_agent:
            return None

        reason = task.metadata.get("switch_reason")
        request = SwitchRequest(
            current_task_id=task.id,
            current_agent_id=current_agent,
            reason=SwitchReason(reason) if reason else SwitchReason.TASK_COMPLEXITY_CHANGE,
            requester_id=session_id,
            request_type="automatic",
            urgency=PRIORITY_URGENCY[task.priority or TaskPriority.MEDIUM],
            created_at=self.clock.now(),
        )
        prediction = self.predictor.predict(request)
        if prediction is None:
            return None

        self.logger.debug(
            "Prediction advised agent",
            task_id=task.id,
            agent_id=prediction.recommended_agent_id,
            confidence=prediction.confidence,
        )
        return prediction.recommended_agent_id

    async def _on_task_assigned(self, event: Event) -> None:
        agent_id = event.payload.get("agent_id")
        session_id = (event.payload.get("task") or {}).get("metadata", {}).get("session_id")
        if session_id and agent_id:
            self.session_agents[session_id] = agent_id

    async def _on_task_finished(self, event: Event) -> None:
        pending = self.pending_switches.pop(event.payload.get("task_id"), None)
        if pending is None:
            return

        request, result = pending
        result.success = event.type == events.TASK_COMPLETED
        result.completed_at = self.clock.now()
        if not result.success:
            error = event.payload.get("error") or {}
            result.errors.append(error.get("message") or event.payload.get("reason") or event.type)

        outcome = event.payload.get("result")
        if isinstance(outcome, dict) and outcome.get("user_satisfaction_score") is not None:
            result.performance_metrics.user_satisfaction_score = float(outcome["user_satisfaction_score"])

        await self.learner.learn_from_result(result, request)


def create_orchestrator(
    config: Optional[Union[str, Path, Dict[str, Any], ConfigManager, OrchestratorSettings]] = None,
    setup_logging: bool = False,
    **kwargs: Any,
) -> Orchestrator:
    """
    Build an orchestrator from a configuration file, dictionary, manager or settings.

    Args:
        config: Configuration source; defaults plus environment overrides when omitted
        setup_logging: Whether to install console/file handlers and configure structlog
        **kwargs: Collaborators passed through to :class:`Orchestrator`
    """
    if isinstance(config, OrchestratorSettings):
        settings = config
    elif isinstance(config, ConfigManager):
        settings = config.settings
    else:
        manager = ConfigManager()
        if config is not None:
            manager.load_config(config)
        settings = manager.settings

    if setup_logging and "logger" not in kwargs:
        kwargs["logger"] = LogManager(settings.logging).get_logger("agent_orchestrator")

    return Orchestrator(settings=settings, **kwargs)
