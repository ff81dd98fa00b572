"""
Task lifecycle management: submission, dispatch, completion and recovery.
"""

import asyncio
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from ..agents.models import AgentCandidate, AgentStatus
from ..agents.registry import AgentRegistry
from ..communication import events
from ..communication.dispatch import JobDispatcher
from ..communication.events import EventBus
from ..config.settings import SchedulerSettings
from ..core.base import BaseService
from ..core.clock import Clock, SystemClock, TimerHandle
from ..core.exceptions import (
    InvalidStateTransitionError,
    NoSuitableAgentError,
    TaskFailedError,
    TaskNotFoundError,
    TaskTimeoutError,
    ValidationError,
)
from ..monitoring import metrics as metric_names
from ..monitoring.metrics import MetricsCollector
from .models import Task, TaskError, TaskPriority, TaskStatus, TaskType
from .queue import TaskQueue
from .strategies import OrchestrationStrategy, default_strategy
from .workflow import WorkflowExecution, WorkflowExecutor

ALLOWED_TRANSITIONS = {
    TaskStatus.PENDING: {TaskStatus.QUEUED, TaskStatus.CANCELLED},
    TaskStatus.QUEUED: {TaskStatus.ASSIGNED, TaskStatus.FAILED, TaskStatus.CANCELLED},
    TaskStatus.ASSIGNED: {TaskStatus.IN_PROGRESS, TaskStatus.FAILED, TaskStatus.CANCELLED},
    TaskStatus.IN_PROGRESS: {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED},
    TaskStatus.FAILED: {TaskStatus.PENDING, TaskStatus.CANCELLED},
    TaskStatus.COMPLETED: set(),
    TaskStatus.CANCELLED: set(),
}

AGENT_REQUEST_JOB = "agent_request"
WORKFLOW_JOB = "workflow"
LOAD_STEP = 0.1

SelectionAdvisor = Callable[[Task, List[AgentCandidate]], Union[Optional[str], Awaitable[Optional[str]]]]


class TaskLifecycleManager(BaseService):
    """
    Owns every task from submission to a terminal state.

    Submitted tasks wait in a priority queue. Each scheduler tick pops the
    head and assigns it to an agent, or runs it as a workflow. Agents report
    back through :meth:`complete` and :meth:`fail`; an armed timer fails
    tasks that never report. A single lock serializes all state changes and
    events are published only after the lock is released.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        dispatcher: JobDispatcher,
        clock: Optional[Clock] = None,
        event_bus: Optional[EventBus] = None,
        metrics: Optional[MetricsCollector] = None,
        settings: Optional[SchedulerSettings] = None,
        strategy: Optional[OrchestrationStrategy] = None,
        workflow_executor: Optional[WorkflowExecutor] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__("task_lifecycle")
        self.registry = registry
        self.dispatcher = dispatcher
        self.clock = clock or SystemClock()
        self.event_bus = event_bus or EventBus()
        self.metrics = metrics or MetricsCollector(enabled=False)
        self.settings = settings or SchedulerSettings()
        self.strategy = strategy if strategy is not None else default_strategy()
        self.logger = logger or logging.getLogger(__name__)
        self.workflow_executor = workflow_executor or WorkflowExecutor(
            registry,
            dispatcher,
            clock=self.clock,
            queue_name=self.settings.queue_name,
            logger=self.logger,
        )
        self.selection_advisor: Optional[SelectionAdvisor] = None

        self.tasks: Dict[str, Task] = {}
        self.queue = TaskQueue()
        self.processing: Set[str] = set()
        self.workflows: Dict[str, WorkflowExecution] = {}

        self._timers: Dict[str, TimerHandle] = {}
        self._tick_handle: Optional[TimerHandle] = None
        self._lock = asyncio.Lock()

    async def start(self) -> None:
        """Start the dispatch tick."""
        if self.is_running:
            self.logger.warning("Task lifecycle manager is already running")
            return

        self._tick_handle = self.clock.call_every(self.settings.tick_interval, self.process_next_task)
        self.is_running = True
        self.logger.info(f"Task lifecycle manager started (tick every {self.settings.tick_interval}s)")

    async def stop(self) -> None:
        """Stop the dispatch tick. Queued and running tasks are kept."""
        if self._tick_handle is not None:
            self._tick_handle.cancel()
            self._tick_handle = None
        self.is_running = False
        self.logger.info("Task lifecycle manager stopped")

    async def shutdown(self) -> None:
        """Stop, cancel every task still being processed and drop all state."""
        await self.stop()

        for task_id in list(self.processing):
            try:
                await self.cancel(task_id, "Orchestrator shutdown")
            except (TaskNotFoundError, InvalidStateTransitionError) as e:
                self.logger.debug(f"Skipping cancel of {task_id} during shutdown: {e}")

        async with self._lock:
            for handle in self._timers.values():
                handle.cancel()
            self._timers.clear()
            self.tasks.clear()
            self.queue.clear()
            self.processing.clear()
            self.workflows.clear()

        self.logger.info("Task lifecycle manager shut down")

    async def submit(self, task: Task) -> str:
        """
        Validate and enqueue a task.

        Returns:
            The task id

        Raises:
            ValidationError: If the task is malformed or its id is already known
        """
        self._validate(task)

        async with self._lock:
            if task.id in self.tasks:
                raise ValidationError(
                    f"Task {task.id} already exists",
                    field_name="id",
                    context={"task_id": task.id}
                )

            now = self.clock.now()
            task.priority = task.priority or TaskPriority.MEDIUM
            task.status = TaskStatus.PENDING
            task.created_at = now
            task.updated_at = now
            self.tasks[task.id] = task
            self._enqueue(task)
            position = self.queue.position(task.id)

        self.logger.info(f"Submitted task {task.id} ({task.type.value}, {task.priority.value}) at position {position}")
        self._count_task(task, "submitted")
        await self._emit(events.TASK_SUBMITTED, {
            "task_id": task.id,
            "priority": task.priority.value,
            "queue_position": position,
            "task": task.to_dict(),
        })
        return task.id

    async def process_next_task(self) -> Optional[str]:
        """
        Pop the head of the queue and process it.

        With ``requeue_on_no_agent`` set, queued tasks that no agent can take
        are passed over and the first dispatchable task is processed instead.
        Failures are recorded on the task rather than raised, so the scheduler
        tick never dies.

        Returns:
            Id of the task that was processed, or None if nothing was dispatchable
        """
        async with self._lock:
            task = self._next_dispatchable()
            self._update_queue_depth()

        if task is None:
            return None

        try:
            if task.type == TaskType.MULTI_AGENT_WORKFLOW:
                await self._process_workflow(task)
            else:
                await self._assign(task)
        except Exception as e:
            self.logger.error(f"Failed to process task {task.id}: {e}")
            await self._handle_processing_error(task, e)

        return task.id

    async def drain(self, max_tasks: Optional[int] = None) -> List[str]:
        """
        Process queued tasks until nothing can be dispatched or ``max_tasks`` were handled.

        Tasks left waiting for an agent stay queued and end the drain.
        """
        processed = []
        while not self.queue.is_empty and (max_tasks is None or len(processed) < max_tasks):
            task_id = await self.process_next_task()
            if task_id is None:
                break
            processed.append(task_id)
            await asyncio.sleep(0)
        return processed

    async def complete(self, task_id: str, result: Any = None) -> bool:
        """
        Record a successful result reported by the assigned agent.

        Unknown tasks and tasks no longer in progress (cancelled, timed out)
        are ignored with a warning.

        Returns:
            True if the completion was applied
        """
        async with self._lock:
            task = self.tasks.get(task_id)
            if task is None:
                self.logger.warning(f"Ignoring completion for unknown task {task_id}")
                return False
            if task.status != TaskStatus.IN_PROGRESS:
                self.logger.warning(f"Ignoring completion for task {task_id} in state {task.status.value}")
                return False

            self._cancel_timer(task_id)
            self._transition(task, TaskStatus.COMPLETED)
            task.result = result
            task.completed_at = task.updated_at
            self.processing.discard(task_id)
            duration_ms = task.processing_time_ms or 0.0

            if task.assigned_agent_id:
                self._record_agent_outcome(task.assigned_agent_id, success=True, duration_ms=duration_ms)

        self.logger.info(f"Task {task_id} completed in {duration_ms:.0f}ms")
        self._count_task(task, "completed")
        self.metrics.observe(
            metric_names.TASK_DURATION_SECONDS,
            duration_ms / 1000,
            labels={"job_type": self._job_type(task)}
        )
        await self._emit(events.TASK_COMPLETED, {
            "task_id": task_id,
            "agent_id": task.assigned_agent_id,
            "processing_time_ms": duration_ms,
            "result": result,
            "task": task.to_dict(),
        })
        return True

    async def fail(self, task_id: str, error: Union[Exception, str, TaskError]) -> bool:
        """
        Record a failure for a task that is being processed.

        Returns:
            True if the failure was applied
        """
        async with self._lock:
            task = self.tasks.get(task_id)
            if task is None:
                self.logger.warning(f"Ignoring failure for unknown task {task_id}")
                return False
            if task.status not in (TaskStatus.QUEUED, TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS):
                self.logger.warning(f"Ignoring failure for task {task_id} in state {task.status.value}")
                return False

            self.queue.remove(task_id)
            self._cancel_timer(task_id)
            agent_id = task.assigned_agent_id if task.status.is_active else None

            self._transition(task, TaskStatus.FAILED)
            task.error = self._to_task_error(error)
            task.completed_at = task.updated_at
            self.processing.discard(task_id)

            if agent_id:
                self._record_agent_outcome(agent_id, success=False)

        self.logger.warning(f"Task {task_id} failed: {task.error.code}: {task.error.message}")
        self._count_task(task, "failed")
        await self._emit(events.TASK_FAILED, {
            "task_id": task_id,
            "agent_id": task.assigned_agent_id,
            "error": task.error.to_dict(),
            "task": task.to_dict(),
        })
        return True

    async def cancel(self, task_id: str, reason: Optional[str] = None) -> Task:
        """
        Cancel a task that has not finished.

        Raises:
            TaskNotFoundError: If the task is unknown
            InvalidStateTransitionError: If the task is already completed or cancelled
        """
        async with self._lock:
            task = self._require(task_id)
            if task.status.is_terminal:
                raise InvalidStateTransitionError(
                    f"Cannot cancel task {task_id} in state {task.status.value}",
                    context={"task_id": task_id, "from": task.status.value, "to": TaskStatus.CANCELLED.value}
                )

            self.queue.remove(task_id)
            self._update_queue_depth()
            self._cancel_timer(task_id)
            agent_id = task.assigned_agent_id if task.status.is_active else None

            self._transition(task, TaskStatus.CANCELLED)
            task.completed_at = task.updated_at
            task.error = TaskError(
                code="TaskCancelled",
                message=reason or "Task cancelled",
                retryable=False,
                timestamp=task.updated_at,
            )
            self.processing.discard(task_id)

            if agent_id:
                self._release_agent(agent_id)

        self.logger.info(f"Cancelled task {task_id}: {task.error.message}")
        self._count_task(task, "cancelled")
        await self._emit(events.TASK_CANCELLED, {
            "task_id": task_id,
            "agent_id": task.assigned_agent_id,
            "reason": task.error.message,
            "task": task.to_dict(),
        })
        return task

    async def retry(self, task_id: str) -> Task:
        """
        Put a failed task back in the queue.

        Raises:
            TaskNotFoundError: If the task is unknown
            InvalidStateTransitionError: If the task is not failed
        """
        async with self._lock:
            task = self._require(task_id)
            if task.status != TaskStatus.FAILED:
                raise InvalidStateTransitionError(
                    f"Only failed tasks can be retried; task {task_id} is {task.status.value}",
                    context={"task_id": task_id, "from": task.status.value, "to": TaskStatus.PENDING.value}
                )

            previous_agent = task.assigned_agent_id
            self._transition(task, TaskStatus.PENDING)
            task.assigned_agent_id = None
            task.started_at = None
            task.completed_at = None
            task.result = None
            task.error = None
            self.workflows.pop(task_id, None)
            self._enqueue(task)

        self.logger.info(f"Retrying task {task_id}")
        self._count_task(task, "retried")
        await self._emit(events.TASK_RETRIED, {
            "task_id": task_id,
            "previous_agent_id": previous_agent,
            "task": task.to_dict(),
        })
        return task

    def get_task(self, task_id: str) -> Optional[Task]:
        return self.tasks.get(task_id)

    def list_tasks(self, status: Optional[TaskStatus] = None) -> List[Task]:
        if status is None:
            return list(self.tasks.values())
        return [task for task in self.tasks.values() if task.status == status]

    def get_tasks_by_status(self) -> Dict[TaskStatus, List[Task]]:
        grouped: Dict[TaskStatus, List[Task]] = defaultdict(list)
        for task in self.tasks.values():
            grouped[task.status].append(task)
        return dict(grouped)

    def get_tasks_by_agent(self, agent_id: str) -> List[Task]:
        return [task for task in self.tasks.values() if task.assigned_agent_id == agent_id]

    def get_workflow(self, task_id: str) -> Optional[WorkflowExecution]:
        return self.workflows.get(task_id)

    def get_distribution_stats(self) -> Dict[str, Any]:
        by_status: Dict[str, int] = defaultdict(int)
        by_type: Dict[str, int] = defaultdict(int)
        by_priority: Dict[str, int] = defaultdict(int)
        processing_times = []

        for task in self.tasks.values():
            by_status[task.status.value] += 1
            by_type[task.type.value] += 1
            if task.priority:
                by_priority[task.priority.value] += 1
            if task.status == TaskStatus.COMPLETED and task.processing_time_ms is not None:
                processing_times.append(task.processing_time_ms)

        return {
            "total_tasks": len(self.tasks),
            "queued_tasks": len(self.queue),
            "processing_tasks": len(self.processing),
            "tasks_by_status": dict(by_status),
            "tasks_by_type": dict(by_type),
            "tasks_by_priority": dict(by_priority),
            "average_processing_time_ms": (
                sum(processing_times) / len(processing_times) if processing_times else 0.0
            ),
            "active_workflows": sum(
                1 for task_id in self.workflows if task_id in self.processing
            ),
        }

    def get_status(self) -> Dict[str, Any]:
        status = super().get_status()
        status.update({"queued": len(self.queue), "processing": len(self.processing)})
        return status

    async def _assign(self, task: Task) -> None:
        async with self._lock:
            if task.status != TaskStatus.QUEUED:
                self.logger.debug(f"Skipping task {task.id} in state {task.status.value}")
                return

            candidates = self._find_candidates(task)
            if not candidates:
                raise NoSuitableAgentError(
                    f"No suitable agents available for task {task.id}",
                    context={
                        "task_id": task.id,
                        "required_capabilities": list(task.requirements.required_capabilities),
                    }
                )

            agent_id = await self._select_agent(task, candidates)
            self._transition(task, TaskStatus.ASSIGNED)
            task.assigned_agent_id = agent_id
            task.started_at = task.updated_at
            self.processing.add(task.id)
            self._occupy_agent(agent_id)

            timeout = task.requirements.max_response_time or self.settings.task_timeout
            await self.dispatcher.add_job(self.settings.queue_name, AGENT_REQUEST_JOB, {
                "task_id": task.id,
                "agent_id": agent_id,
                "input": task.input,
                "requirements": task.requirements.to_dict(),
                "timeout": timeout,
            })

            self._transition(task, TaskStatus.IN_PROGRESS)
            self._arm_timeout(task.id, timeout)

        self.logger.info(f"Assigned task {task.id} to agent {agent_id}")
        self._count_task(task, "assigned")
        if task.metadata.get("switch_reason"):
            self.metrics.increment(metric_names.AGENT_SWITCHES_TOTAL, labels={
                "from_agent": str(task.metadata.get("previous_agent_id") or "none"),
                "to_agent": agent_id,
                "reason": str(task.metadata["switch_reason"]),
            })
        await self._emit(events.TASK_ASSIGNED, {
            "task_id": task.id,
            "agent_id": agent_id,
            "task": task.to_dict(),
        })

    async def _process_workflow(self, task: Task) -> None:
        async with self._lock:
            if task.status != TaskStatus.QUEUED:
                self.logger.debug(f"Skipping workflow task {task.id} in state {task.status.value}")
                return

            workflow = self.workflow_executor.create_workflow(task)
            self.workflows[task.id] = workflow
            self._transition(task, TaskStatus.ASSIGNED)
            task.started_at = task.updated_at
            self.processing.add(task.id)
            self._transition(task, TaskStatus.IN_PROGRESS)
            self._arm_timeout(task.id, task.requirements.max_response_time or self.settings.task_timeout)

        self.logger.info(f"Running workflow {workflow.id} with {len(workflow.steps)} steps")
        self._count_task(task, "assigned")
        await self._emit(events.TASK_ASSIGNED, {
            "task_id": task.id,
            "agent_id": None,
            "workflow_id": workflow.id,
            "task": task.to_dict(),
        })

        outputs = await self.workflow_executor.execute(workflow, task)
        await self.complete(task.id, {"workflow_id": workflow.id, "steps": outputs})

    async def _handle_processing_error(self, task: Task, error: Exception) -> None:
        if isinstance(error, NoSuitableAgentError) and self.settings.requeue_on_no_agent:
            async with self._lock:
                if task.status == TaskStatus.QUEUED and task.id not in self.queue:
                    self.queue.enqueue(task)
                    self._update_queue_depth()
                    self.logger.info(f"Re-queued task {task.id}; no agent available yet")
                    return

        await self.fail(task.id, error)

    def _find_candidates(self, task: Task) -> List[AgentCandidate]:
        candidates = []
        for candidate in self.registry.find_suitable_agents(task.requirements):
            agent = self.registry.get_agent(candidate.agent_id)
            if agent is not None and agent.status.is_assignable:
                candidates.append(candidate)
        return candidates

    async def _select_agent(self, task: Task, candidates: List[AgentCandidate]) -> str:
        candidate_ids = [candidate.agent_id for candidate in candidates]

        pinned = task.requirements.preferred_agent_id
        if pinned in candidate_ids:
            return pinned

        if self.strategy is not None:
            chosen = self.strategy.select_agent(task, candidates, self.registry)
            if chosen:
                return chosen

        if self.selection_advisor is not None:
            try:
                suggestion = self.selection_advisor(task, candidates)
                if asyncio.iscoroutine(suggestion):
                    suggestion = await suggestion
            except Exception as e:
                self.logger.warning(f"Selection advisor failed for task {task.id}: {e}")
                suggestion = None
            if suggestion in candidate_ids:
                return suggestion

        return candidates[0].agent_id

    def _occupy_agent(self, agent_id: str) -> None:
        agent = self.registry.get_agent(agent_id)
        self.registry.update_agent_status(agent_id, AgentStatus.BUSY)
        self.registry.update_agent_performance(
            agent_id,
            current_load=min(1.0, agent.performance.current_load + LOAD_STEP)
        )

    def _release_agent(self, agent_id: str) -> None:
        agent = self.registry.get_agent(agent_id)
        if agent is None:
            return
        self.registry.update_agent_performance(
            agent_id,
            current_load=max(0.0, agent.performance.current_load - LOAD_STEP)
        )
        self.registry.update_agent_status(agent_id, AgentStatus.IDLE)

    def _record_agent_outcome(self, agent_id: str, success: bool, duration_ms: float = 0.0) -> None:
        agent = self.registry.get_agent(agent_id)
        if agent is None:
            self.logger.warning(f"Agent {agent_id} is no longer registered; skipping performance update")
            return

        performance = agent.performance
        total = performance.total_tasks + 1
        completed = performance.completed_tasks + (1 if success else 0)
        failed = performance.failed_tasks + (0 if success else 1)
        average = performance.average_response_time_ms
        if success:
            average = (average * performance.total_tasks + duration_ms) / total

        self.registry.update_agent_performance(
            agent_id,
            total_tasks=total,
            completed_tasks=completed,
            failed_tasks=failed,
            average_response_time_ms=average,
            success_rate=completed / total,
            current_load=max(0.0, performance.current_load - LOAD_STEP),
        )
        self.registry.update_agent_status(agent_id, AgentStatus.IDLE)

    def _arm_timeout(self, task_id: str, timeout: float) -> None:
        self._cancel_timer(task_id)
        self._timers[task_id] = self.clock.call_later(timeout, lambda: self._on_timeout(task_id, timeout))

    def _cancel_timer(self, task_id: str) -> None:
        handle = self._timers.pop(task_id, None)
        if handle is not None:
            handle.cancel()

    async def _on_timeout(self, task_id: str, timeout: float) -> None:
        self._timers.pop(task_id, None)
        task = self.tasks.get(task_id)
        if task is None or task.status != TaskStatus.IN_PROGRESS:
            return

        self.logger.warning(f"Task {task_id} timed out after {timeout}s")
        await self.fail(task_id, TaskTimeoutError(
            f"Task {task_id} timed out after {timeout}s",
            timeout_duration=timeout,
            context={"task_id": task_id, "agent_id": task.assigned_agent_id}
        ))

    def _next_dispatchable(self) -> Optional[Task]:
        if not self.settings.requeue_on_no_agent:
            return self.queue.pop()

        for task in self.queue:
            if task.type == TaskType.MULTI_AGENT_WORKFLOW or self._find_candidates(task):
                self.queue.remove(task.id)
                return task
            self.logger.debug(f"Task {task.id} is waiting for a suitable agent")
        return None

    def _enqueue(self, task: Task) -> None:
        self._transition(task, TaskStatus.QUEUED)
        self.queue.enqueue(task)
        self._update_queue_depth()

    def _transition(self, task: Task, status: TaskStatus) -> None:
        if status not in ALLOWED_TRANSITIONS[task.status]:
            raise InvalidStateTransitionError(
                f"Task {task.id} cannot move from {task.status.value} to {status.value}",
                context={"task_id": task.id, "from": task.status.value, "to": status.value}
            )
        task.status = status
        task.updated_at = self.clock.now()

    def _require(self, task_id: str) -> Task:
        task = self.tasks.get(task_id)
        if task is None:
            raise TaskNotFoundError(f"Task {task_id} not found", context={"task_id": task_id})
        return task

    def _to_task_error(self, error: Union[Exception, str, TaskError]) -> TaskError:
        if isinstance(error, TaskError):
            return error
        if isinstance(error, str):
            error = TaskFailedError(error)
        return TaskError.from_exception(error, timestamp=self.clock.now())

    def _validate(self, task: Task) -> None:
        if not getattr(task, "id", None):
            raise ValidationError("Task id is required", field_name="id")

        if isinstance(task.type, str):
            try:
                task.type = TaskType(task.type)
            except ValueError as e:
                raise ValidationError(
                    f"Unknown task type: {task.type}",
                    field_name="type",
                    context={"task_id": task.id},
                    cause=e
                ) from e
        if not isinstance(task.type, TaskType):
            raise ValidationError("Task type is required", field_name="type", context={"task_id": task.id})

        if isinstance(task.priority, str):
            try:
                task.priority = TaskPriority(task.priority)
            except ValueError as e:
                raise ValidationError(
                    f"Unknown task priority: {task.priority}",
                    field_name="priority",
                    context={"task_id": task.id},
                    cause=e
                ) from e

        if task.requirements is None or not task.requirements.required_capabilities:
            raise ValidationError(
                "Task must require at least one capability",
                field_name="requirements.required_capabilities",
                context={"task_id": task.id}
            )

    def _job_type(self, task: Task) -> str:
        return WORKFLOW_JOB if task.type == TaskType.MULTI_AGENT_WORKFLOW else AGENT_REQUEST_JOB

    def _count_task(self, task: Task, status: str) -> None:
        self.metrics.increment(metric_names.TASKS_TOTAL, labels={
            "queue_name": self.settings.queue_name,
            "job_type": self._job_type(task),
            "status": status,
        })

    def _update_queue_depth(self) -> None:
        self.metrics.set_gauge(metric_names.QUEUE_DEPTH, len(self.queue))

    async def _emit(self, event_type: str, payload: Dict[str, Any]) -> None:
        await self.event_bus.publish(event_type, payload)
