"""
Tests for multi-agent workflow execution.
"""

import pytest

from agent_orchestrator.agents import AgentStatus
from agent_orchestrator.core import NoSuitableAgentError, TaskFailedError
from agent_orchestrator.tasks import (
    TaskLifecycleManager,
    TaskStatus,
    TaskType,
    WorkflowExecutor,
    WorkflowStatus,
)


class TestWorkflowPlanning:
    """Test WorkflowExecutor.create_workflow."""

    @pytest.fixture
    def executor(self, registry, dispatcher, clock):
        return WorkflowExecutor(registry, dispatcher, clock=clock)

    def test_one_step_per_capability(self, executor, make_task):
        task = make_task("wf", capabilities=["writing", "coding", "analysis"], task_type=TaskType.MULTI_AGENT_WORKFLOW)

        workflow = executor.create_workflow(task)

        assert workflow.id == "workflow-wf"
        assert workflow.task_id == "wf"
        assert workflow.status == WorkflowStatus.PENDING
        assert [step.id for step in workflow.steps] == ["step-1", "step-2", "step-3"]
        assert [step.agent_id for step in workflow.steps] == ["writer-1", "coder-1", "analyst-1"]
        assert workflow.steps[1].input == {"capability": "coding", "data": task.input}

    def test_excluded_agents_are_not_planned(self, executor, make_task):
        task = make_task(
            "wf",
            capabilities=["coding"],
            task_type=TaskType.MULTI_AGENT_WORKFLOW,
            excluded_agent_ids=["coder-1"],
        )

        workflow = executor.create_workflow(task)

        assert workflow.steps[0].agent_id == "coder-2"

    def test_missing_capability_raises(self, executor, make_task):
        task = make_task("wf", capabilities=["writing", "translation"], task_type=TaskType.MULTI_AGENT_WORKFLOW)

        with pytest.raises(NoSuitableAgentError) as exc_info:
            executor.create_workflow(task)

        assert exc_info.value.context["capability"] == "translation"


class TestWorkflowExecution:
    """Test WorkflowExecutor.execute."""

    @pytest.mark.asyncio
    async def test_default_runner_dispatches_each_step(self, registry, dispatcher, clock, make_task):
        executor = WorkflowExecutor(registry, dispatcher, clock=clock)
        task = make_task("wf", capabilities=["writing", "coding"], task_type=TaskType.MULTI_AGENT_WORKFLOW)
        workflow = executor.create_workflow(task)

        outputs = await executor.execute(workflow, task)

        assert [output["step_id"] for output in outputs] == ["step-1", "step-2"]
        assert all(output["success"] for output in outputs)
        assert workflow.status == WorkflowStatus.COMPLETED
        assert workflow.completed_steps == 2
        assert workflow.current_step_index == 2

        jobs = dispatcher.get_jobs("workflow_step")
        assert [job.payload["agent_id"] for job in jobs] == ["writer-1", "coder-1"]
        assert registry.get_agent("writer-1").status == AgentStatus.IDLE
        assert registry.get_agent("coder-1").status == AgentStatus.IDLE

    @pytest.mark.asyncio
    async def test_agent_is_busy_while_step_runs(self, registry, dispatcher, clock, make_task):
        observed = []

        async def runner(step, task):
            observed.append(registry.get_agent(step.agent_id).status)
            return step.capability

        executor = WorkflowExecutor(registry, dispatcher, clock=clock, step_runner=runner)
        task = make_task("wf", capabilities=["coding"], task_type=TaskType.MULTI_AGENT_WORKFLOW)

        outputs = await executor.execute(executor.create_workflow(task), task)

        assert outputs == ["coding"]
        assert observed == [AgentStatus.BUSY]

    @pytest.mark.asyncio
    async def test_failed_step_fails_remaining_steps(self, registry, dispatcher, clock, make_task):
        async def runner(step, task):
            if step.capability == "coding":
                raise RuntimeError("compiler missing")
            return {"capability": step.capability}

        executor = WorkflowExecutor(registry, dispatcher, clock=clock, step_runner=runner)
        task = make_task(
            "wf",
            capabilities=["writing", "coding", "analysis"],
            task_type=TaskType.MULTI_AGENT_WORKFLOW,
        )
        workflow = executor.create_workflow(task)

        with pytest.raises(TaskFailedError) as exc_info:
            await executor.execute(workflow, task)

        assert exc_info.value.context["step_id"] == "step-2"
        assert workflow.status == WorkflowStatus.FAILED
        assert [step.status for step in workflow.steps] == [
            TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.FAILED
        ]
        assert workflow.steps[1].error.code == "WorkflowStepFailed"
        assert workflow.steps[1].error.message == "compiler missing"
        assert registry.get_agent("coder-1").status == AgentStatus.IDLE


class TestWorkflowTasks:
    """Test workflow tasks driven through the lifecycle manager."""

    @pytest.mark.asyncio
    async def test_workflow_task_completes(self, lifecycle, make_task, clock):
        await lifecycle.submit(
            make_task("wf", capabilities=["writing", "coding"], task_type=TaskType.MULTI_AGENT_WORKFLOW)
        )

        await lifecycle.process_next_task()

        task = lifecycle.get_task("wf")
        assert task.status == TaskStatus.COMPLETED
        assert task.result["workflow_id"] == "workflow-wf"
        assert len(task.result["steps"]) == 2
        assert lifecycle.get_workflow("wf").status == WorkflowStatus.COMPLETED
        assert clock.pending_timers == 0

    @pytest.mark.asyncio
    async def test_workflow_step_failure_fails_task(self, registry, dispatcher, clock, make_task):
        async def runner(step, task):
            raise RuntimeError("agent unreachable")

        lifecycle = TaskLifecycleManager(
            registry,
            dispatcher,
            clock=clock,
            workflow_executor=WorkflowExecutor(registry, dispatcher, clock=clock, step_runner=runner),
        )
        await lifecycle.submit(make_task("wf", capabilities=["writing"], task_type=TaskType.MULTI_AGENT_WORKFLOW))

        await lifecycle.process_next_task()

        task = lifecycle.get_task("wf")
        assert task.status == TaskStatus.FAILED
        assert task.error.code == "TaskFailed"
        assert task.error.details["step_id"] == "step-1"
        assert lifecycle.get_workflow("wf").status == WorkflowStatus.FAILED

    @pytest.mark.asyncio
    async def test_workflow_without_agent_fails_task(self, lifecycle, make_task):
        await lifecycle.submit(
            make_task("wf", capabilities=["translation"], task_type=TaskType.MULTI_AGENT_WORKFLOW)
        )

        await lifecycle.process_next_task()

        task = lifecycle.get_task("wf")
        assert task.status == TaskStatus.FAILED
        assert task.error.code == "NoSuitableAgent"
        assert lifecycle.get_workflow("wf") is None
