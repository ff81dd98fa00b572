"""
Sequential multi-agent workflow execution.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..agents.models import AgentStatus
from ..agents.registry import AgentRegistry
from ..communication.dispatch import JobDispatcher
from ..core.clock import Clock, SystemClock
from ..core.exceptions import NoSuitableAgentError, TaskFailedError
from .models import Task, TaskError, TaskStatus


class WorkflowStatus(Enum):
    """State of a workflow execution."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class WorkflowStep:
    """One capability handled by one agent inside a workflow."""
    id: str
    capability: str
    agent_id: str
    input: Dict[str, Any] = field(default_factory=dict)
    status: TaskStatus = TaskStatus.PENDING
    output: Optional[Any] = None
    error: Optional[TaskError] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "capability": self.capability,
            "agent_id": self.agent_id,
            "input": self.input,
            "status": self.status.value,
            "output": self.output,
            "error": self.error.to_dict() if self.error else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


@dataclass
class WorkflowExecution:
    """Ordered steps run for a multi-agent workflow task."""
    id: str
    task_id: str
    steps: List[WorkflowStep] = field(default_factory=list)
    current_step_index: int = 0
    status: WorkflowStatus = WorkflowStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def completed_steps(self) -> int:
        return sum(1 for step in self.steps if step.status == TaskStatus.COMPLETED)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "task_id": self.task_id,
            "steps": [step.to_dict() for step in self.steps],
            "current_step_index": self.current_step_index,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


StepRunner = Callable[[WorkflowStep, Task], Awaitable[Any]]


class WorkflowExecutor:
    """
    Builds and runs workflows one step at a time.

    The default step runner hands each step to the job dispatcher and treats
    the dispatch receipt as the step output. Supplying ``step_runner`` lets a
    caller run steps in-process and report real outputs or failures.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        dispatcher: JobDispatcher,
        clock: Optional[Clock] = None,
        queue_name: str = "ai-processing",
        step_runner: Optional[StepRunner] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.registry = registry
        self.dispatcher = dispatcher
        self.clock = clock or SystemClock()
        self.queue_name = queue_name
        self.step_runner = step_runner or self._dispatch_step
        self.logger = logger or logging.getLogger(__name__)

    def create_workflow(self, task: Task) -> WorkflowExecution:
        """
        Plan one step per required capability, in order.

        Raises:
            NoSuitableAgentError: If any capability has no available agent
        """
        excluded = set(task.requirements.excluded_agent_ids)
        steps = []

        for index, capability in enumerate(task.requirements.required_capabilities):
            agents = [
                agent for agent in self.registry.get_agents_by_capability(capability)
                if agent.id not in excluded
            ]
            if not agents:
                raise NoSuitableAgentError(
                    f"No agent offers capability '{capability}' for workflow task {task.id}",
                    context={"task_id": task.id, "capability": capability}
                )

            steps.append(WorkflowStep(
                id=f"step-{index + 1}",
                capability=capability,
                agent_id=agents[0].id,
                input={"capability": capability, "data": task.input},
            ))

        return WorkflowExecution(id=f"workflow-{task.id}", task_id=task.id, steps=steps)

    async def execute(self, workflow: WorkflowExecution, task: Task) -> List[Any]:
        """
        Run every step in order.

        Returns:
            Step outputs in step order

        Raises:
            TaskFailedError: If a step fails; that step and every later step are marked failed
        """
        workflow.status = WorkflowStatus.RUNNING
        workflow.started_at = self.clock.now()
        outputs = []

        for index, step in enumerate(workflow.steps):
            workflow.current_step_index = index
            step.status = TaskStatus.IN_PROGRESS
            step.started_at = self.clock.now()
            previous_status = self._occupy_agent(step.agent_id)

            try:
                output = await self.step_runner(step, task)
            except Exception as e:
                now = self.clock.now()
                step.status = TaskStatus.FAILED
                step.completed_at = now
                step.error = TaskError(
                    code="WorkflowStepFailed",
                    message=str(e),
                    retryable=True,
                    timestamp=now,
                    details={"step_id": step.id, "capability": step.capability},
                )
                for remaining in workflow.steps[index + 1:]:
                    remaining.status = TaskStatus.FAILED
                workflow.status = WorkflowStatus.FAILED
                workflow.completed_at = now

                self.logger.error(f"Workflow {workflow.id} failed at {step.id}: {e}")
                raise TaskFailedError(
                    f"Workflow step {step.id} ({step.capability}) failed: {e}",
                    context={"workflow_id": workflow.id, "step_id": step.id, "agent_id": step.agent_id},
                    cause=e,
                ) from e
            finally:
                self._release_agent(step.agent_id, previous_status)

            step.output = output
            step.status = TaskStatus.COMPLETED
            step.completed_at = self.clock.now()
            outputs.append(output)
            self.logger.debug(f"Workflow {workflow.id} completed {step.id} on {step.agent_id}")

        workflow.current_step_index = len(workflow.steps)
        workflow.status = WorkflowStatus.COMPLETED
        workflow.completed_at = self.clock.now()
        self.logger.info(f"Workflow {workflow.id} completed {len(outputs)} steps")
        return outputs

    async def _dispatch_step(self, step: WorkflowStep, task: Task) -> Dict[str, Any]:
        job_id = await self.dispatcher.add_job(self.queue_name, "workflow_step", {
            "task_id": task.id,
            "step_id": step.id,
            "agent_id": step.agent_id,
            "capability": step.capability,
            "input": step.input,
        })
        return {"success": True, "step_id": step.id, "job_id": job_id}

    def _occupy_agent(self, agent_id: str) -> Optional[AgentStatus]:
        agent = self.registry.get_agent(agent_id)
        if agent is None:
            return None
        previous = agent.status
        self.registry.update_agent_status(agent_id, AgentStatus.BUSY)
        return previous

    def _release_agent(self, agent_id: str, previous: Optional[AgentStatus]) -> None:
        if previous is None or self.registry.get_agent(agent_id) is None:
            return
        restored = previous if previous == AgentStatus.BUSY else AgentStatus.IDLE
        self.registry.update_agent_status(agent_id, restored)
