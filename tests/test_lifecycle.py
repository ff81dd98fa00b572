"""
Tests for task lifecycle management.
"""

import asyncio

import pytest

from agent_orchestrator.agents import Agent, AgentStatus
from agent_orchestrator.communication import events
from agent_orchestrator.config import SchedulerSettings
from agent_orchestrator.core import (
    InvalidStateTransitionError,
    TaskNotFoundError,
    ValidationError,
)
from agent_orchestrator.tasks import (
    ALLOWED_TRANSITIONS,
    OrchestrationStrategy,
    TaskLifecycleManager,
    TaskPriority,
    TaskStatus,
)


def _events_of(recorded, event_type):
    return [event for event in recorded if event.type == event_type]


class TestTransitionTable:
    """Test the allowed state transitions."""

    def test_terminal_states_have_no_exits(self):
        assert ALLOWED_TRANSITIONS[TaskStatus.COMPLETED] == set()
        assert ALLOWED_TRANSITIONS[TaskStatus.CANCELLED] == set()

    def test_failed_tasks_can_only_be_retried_or_cancelled(self):
        assert ALLOWED_TRANSITIONS[TaskStatus.FAILED] == {TaskStatus.PENDING, TaskStatus.CANCELLED}

    def test_every_status_is_listed(self):
        assert set(ALLOWED_TRANSITIONS) == set(TaskStatus)


class TestSubmission:
    """Test task submission and validation."""

    @pytest.mark.asyncio
    async def test_submit_queues_task(self, lifecycle, make_task, recorded_events):
        task_id = await lifecycle.submit(make_task("t1"))

        task = lifecycle.get_task(task_id)
        assert task.status == TaskStatus.QUEUED
        assert task.priority == TaskPriority.MEDIUM
        assert lifecycle.queue.snapshot() == ["t1"]

        submitted = _events_of(recorded_events, events.TASK_SUBMITTED)
        assert len(submitted) == 1
        assert submitted[0].payload["task_id"] == "t1"
        assert submitted[0].payload["queue_position"] == 0

    @pytest.mark.asyncio
    async def test_submit_accepts_string_priority(self, lifecycle, make_task):
        task = make_task("t1")
        task.priority = "high"

        await lifecycle.submit(task)

        assert lifecycle.get_task("t1").priority == TaskPriority.HIGH

    @pytest.mark.asyncio
    async def test_submit_rejects_unknown_priority(self, lifecycle, make_task):
        task = make_task("t1")
        task.priority = "whenever"

        with pytest.raises(ValidationError) as exc_info:
            await lifecycle.submit(task)

        assert exc_info.value.field_name == "priority"
        assert lifecycle.get_task("t1") is None

    @pytest.mark.asyncio
    async def test_submit_rejects_unknown_type(self, lifecycle, make_task):
        task = make_task("t1")
        task.type = "batch"

        with pytest.raises(ValidationError):
            await lifecycle.submit(task)

    @pytest.mark.asyncio
    async def test_submit_requires_capabilities(self, lifecycle, make_task):
        task = make_task("t1")
        task.requirements.required_capabilities = []

        with pytest.raises(ValidationError) as exc_info:
            await lifecycle.submit(task)

        assert exc_info.value.field_name == "requirements.required_capabilities"

    @pytest.mark.asyncio
    async def test_submit_rejects_duplicate_id(self, lifecycle, make_task):
        await lifecycle.submit(make_task("t1"))

        with pytest.raises(ValidationError):
            await lifecycle.submit(make_task("t1"))

        assert len(lifecycle.queue) == 1


class TestScheduling:
    """Test queue processing and agent assignment."""

    @pytest.mark.asyncio
    async def test_process_empty_queue(self, lifecycle):
        assert await lifecycle.process_next_task() is None

    @pytest.mark.asyncio
    async def test_drain_serves_by_priority(self, lifecycle, make_task):
        await lifecycle.submit(make_task("low", priority=TaskPriority.LOW))
        await lifecycle.submit(make_task("critical", priority=TaskPriority.CRITICAL))
        await lifecycle.submit(make_task("medium", priority=TaskPriority.MEDIUM))

        processed = await lifecycle.drain()

        assert processed == ["critical", "medium", "low"]
        assert lifecycle.get_task("critical").assigned_agent_id == "writer-1"
        assert lifecycle.get_task("medium").assigned_agent_id == "analyst-1"
        # both writing agents are busy by the time the low priority task is served
        low = lifecycle.get_task("low")
        assert low.status == TaskStatus.FAILED
        assert low.error.code == "NoSuitableAgent"

    @pytest.mark.asyncio
    async def test_drain_respects_max_tasks(self, lifecycle, make_task):
        await lifecycle.submit(make_task("a"))
        await lifecycle.submit(make_task("b"))

        assert await lifecycle.drain(max_tasks=1) == ["a"]
        assert lifecycle.queue.snapshot() == ["b"]

    @pytest.mark.asyncio
    async def test_assignment_dispatches_job(self, lifecycle, make_task, dispatcher, registry, metrics, recorded_events):
        await lifecycle.submit(make_task("t1"))

        assert await lifecycle.process_next_task() == "t1"

        task = lifecycle.get_task("t1")
        assert task.status == TaskStatus.IN_PROGRESS
        assert task.assigned_agent_id == "writer-1"
        assert task.started_at is not None
        assert "t1" in lifecycle.processing

        agent = registry.get_agent("writer-1")
        assert agent.status == AgentStatus.BUSY
        assert agent.performance.current_load == pytest.approx(0.1)

        jobs = dispatcher.get_jobs("agent_request")
        assert len(jobs) == 1
        assert jobs[0].queue_name == "ai-processing"
        assert jobs[0].payload["task_id"] == "t1"
        assert jobs[0].payload["agent_id"] == "writer-1"
        assert jobs[0].payload["timeout"] == 30.0

        assigned = _events_of(recorded_events, events.TASK_ASSIGNED)
        assert assigned[0].payload["agent_id"] == "writer-1"

        assert metrics.get_sample_value("tasks_total", {
            "queue_name": "ai-processing", "job_type": "agent_request", "status": "assigned"
        }) == 1.0
        assert metrics.get_sample_value("agent_switches_total", {
            "from_agent": "none", "to_agent": "writer-1", "reason": "assignment"
        }) is None

    @pytest.mark.asyncio
    async def test_missing_capability_fails_task(self, lifecycle, make_task):
        await lifecycle.submit(make_task("t1", capabilities=["translation"]))

        await lifecycle.process_next_task()

        task = lifecycle.get_task("t1")
        assert task.status == TaskStatus.FAILED
        assert task.error.code == "NoSuitableAgent"
        assert task.error.retryable is True

    @pytest.mark.asyncio
    async def test_missing_capability_requeues_when_configured(self, registry, dispatcher, clock, make_task):
        lifecycle = TaskLifecycleManager(
            registry,
            dispatcher,
            clock=clock,
            settings=SchedulerSettings(requeue_on_no_agent=True),
        )
        await lifecycle.submit(make_task("t1", capabilities=["translation"]))

        await lifecycle.process_next_task()

        assert lifecycle.get_task("t1").status == TaskStatus.QUEUED
        assert "t1" in lifecycle.queue

    @pytest.mark.asyncio
    async def test_drain_stops_at_waiting_tasks(self, registry, dispatcher, clock, make_task):
        lifecycle = TaskLifecycleManager(
            registry,
            dispatcher,
            clock=clock,
            settings=SchedulerSettings(requeue_on_no_agent=True),
        )
        await lifecycle.submit(make_task("waiting", capabilities=["translation"]))
        await lifecycle.submit(make_task("t2"))

        processed = await asyncio.wait_for(lifecycle.drain(), timeout=2)

        assert processed == ["t2"]
        assert lifecycle.queue.snapshot() == ["waiting"]
        assert lifecycle.get_task("waiting").status == TaskStatus.QUEUED

    @pytest.mark.asyncio
    async def test_waiting_task_does_not_block_lower_priority(self, registry, dispatcher, clock, make_task):
        lifecycle = TaskLifecycleManager(
            registry,
            dispatcher,
            clock=clock,
            settings=SchedulerSettings(requeue_on_no_agent=True, tick_interval=1.0),
        )
        await lifecycle.submit(make_task("crit", capabilities=["translation"], priority=TaskPriority.CRITICAL))
        await lifecycle.submit(make_task("low", priority=TaskPriority.LOW))

        await lifecycle.start()
        await clock.advance(3)
        await lifecycle.stop()

        assert lifecycle.get_task("low").status == TaskStatus.IN_PROGRESS
        assert lifecycle.get_task("low").assigned_agent_id == "writer-1"
        assert lifecycle.get_task("crit").status == TaskStatus.QUEUED
        assert lifecycle.queue.snapshot() == ["crit"]

    @pytest.mark.asyncio
    async def test_waiting_task_dispatches_once_agent_appears(self, registry, dispatcher, clock, make_task):
        lifecycle = TaskLifecycleManager(
            registry,
            dispatcher,
            clock=clock,
            settings=SchedulerSettings(requeue_on_no_agent=True),
        )
        await lifecycle.submit(make_task("t1", capabilities=["translation"]))
        assert await lifecycle.process_next_task() is None

        registry.register_agent(Agent(id="translator-1", name="Translator", type="translator",
                                      capabilities=["translation"]))

        assert await lifecycle.process_next_task() == "t1"
        assert lifecycle.get_task("t1").assigned_agent_id == "translator-1"

    @pytest.mark.asyncio
    async def test_offline_agents_are_skipped(self, lifecycle, make_task, registry):
        registry.update_agent_status("writer-1", AgentStatus.OFFLINE)
        await lifecycle.submit(make_task("t1"))

        await lifecycle.process_next_task()

        assert lifecycle.get_task("t1").assigned_agent_id == "analyst-1"

    @pytest.mark.asyncio
    async def test_pinned_agent_wins(self, lifecycle, make_task):
        await lifecycle.submit(make_task("t1", capabilities=["coding"], preferred_agent_id="coder-2"))

        await lifecycle.process_next_task()

        assert lifecycle.get_task("t1").assigned_agent_id == "coder-2"

    @pytest.mark.asyncio
    async def test_critical_tasks_go_to_best_performer(self, lifecycle, make_task, registry):
        registry.update_agent_performance("coder-1", success_rate=0.8)
        registry.update_agent_performance("coder-2", success_rate=0.9, current_load=0.9)
        await lifecycle.submit(make_task("critical", capabilities=["coding"], priority=TaskPriority.CRITICAL))

        await lifecycle.process_next_task()

        assert lifecycle.get_task("critical").assigned_agent_id == "coder-2"

    @pytest.mark.asyncio
    async def test_top_scored_candidate_without_matching_rule(self, lifecycle, make_task, registry):
        registry.update_agent_performance("coder-1", success_rate=0.8)
        registry.update_agent_performance("coder-2", success_rate=0.9, current_load=0.9)
        await lifecycle.submit(make_task("medium", capabilities=["coding"]))

        await lifecycle.process_next_task()

        assert lifecycle.get_task("medium").assigned_agent_id == "coder-1"

    @pytest.mark.asyncio
    async def test_selection_advisor_is_consulted(self, lifecycle, make_task):
        seen = []

        def advisor(task, candidates):
            seen.append([candidate.agent_id for candidate in candidates])
            return "coder-2"

        lifecycle.selection_advisor = advisor
        await lifecycle.submit(make_task("t1", capabilities=["coding"]))

        await lifecycle.process_next_task()

        assert seen == [["coder-1", "coder-2"]]
        assert lifecycle.get_task("t1").assigned_agent_id == "coder-2"

    @pytest.mark.asyncio
    async def test_async_selection_advisor(self, lifecycle, make_task):
        async def advisor(task, candidates):
            return "coder-2"

        lifecycle.selection_advisor = advisor
        await lifecycle.submit(make_task("t1", capabilities=["coding"]))

        await lifecycle.process_next_task()

        assert lifecycle.get_task("t1").assigned_agent_id == "coder-2"

    @pytest.mark.asyncio
    async def test_unknown_advice_falls_back_to_top_candidate(self, lifecycle, make_task):
        lifecycle.selection_advisor = lambda task, candidates: "nobody"
        await lifecycle.submit(make_task("t1", capabilities=["coding"]))

        await lifecycle.process_next_task()

        assert lifecycle.get_task("t1").assigned_agent_id == "coder-1"

    @pytest.mark.asyncio
    async def test_failing_advisor_does_not_fail_task(self, lifecycle, make_task):
        def advisor(task, candidates):
            raise RuntimeError("prediction offline")

        lifecycle.selection_advisor = advisor
        await lifecycle.submit(make_task("t1", capabilities=["coding"]))

        await lifecycle.process_next_task()

        assert lifecycle.get_task("t1").status == TaskStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_strategy_can_be_disabled(self, registry, dispatcher, clock, make_task):
        registry.update_agent_performance("coder-1", success_rate=0.8)
        registry.update_agent_performance("coder-2", success_rate=0.9, current_load=0.9)
        lifecycle = TaskLifecycleManager(
            registry,
            dispatcher,
            clock=clock,
            strategy=OrchestrationStrategy(name="none"),
        )
        await lifecycle.submit(make_task("critical", capabilities=["coding"], priority=TaskPriority.CRITICAL))

        await lifecycle.process_next_task()

        assert lifecycle.get_task("critical").assigned_agent_id == "coder-1"

    @pytest.mark.asyncio
    async def test_start_runs_dispatch_tick(self, lifecycle, make_task, clock):
        await lifecycle.start()
        await lifecycle.submit(make_task("t1"))

        await clock.advance(1.0)

        assert lifecycle.get_task("t1").status == TaskStatus.IN_PROGRESS

        await lifecycle.stop()
        await lifecycle.submit(make_task("t2"))
        await clock.advance(5.0)

        assert lifecycle.get_task("t2").status == TaskStatus.QUEUED


class TestCompletion:
    """Test completion and failure reports."""

    @pytest.mark.asyncio
    async def test_complete_updates_task_and_agent(self, lifecycle, make_task, registry, clock, recorded_events):
        await lifecycle.submit(make_task("t1"))
        await lifecycle.process_next_task()
        await clock.advance(2.0)

        assert await lifecycle.complete("t1", {"text": "done"}) is True

        task = lifecycle.get_task("t1")
        assert task.status == TaskStatus.COMPLETED
        assert task.result == {"text": "done"}
        assert task.processing_time_ms == pytest.approx(2000.0)
        assert "t1" not in lifecycle.processing

        performance = registry.get_agent("writer-1").performance
        assert registry.get_agent("writer-1").status == AgentStatus.IDLE
        assert performance.total_tasks == 1
        assert performance.completed_tasks == 1
        assert performance.average_response_time_ms == pytest.approx(2000.0)
        assert performance.success_rate == 1.0
        assert performance.current_load == pytest.approx(0.0)

        completed = _events_of(recorded_events, events.TASK_COMPLETED)
        assert completed[0].payload["result"] == {"text": "done"}

    @pytest.mark.asyncio
    async def test_complete_is_applied_once(self, lifecycle, make_task):
        await lifecycle.submit(make_task("t1"))
        await lifecycle.process_next_task()

        assert await lifecycle.complete("t1") is True
        assert await lifecycle.complete("t1") is False

    @pytest.mark.asyncio
    async def test_complete_ignores_queued_and_unknown_tasks(self, lifecycle, make_task):
        await lifecycle.submit(make_task("t1"))

        assert await lifecycle.complete("t1") is False
        assert await lifecycle.complete("missing") is False
        assert lifecycle.get_task("t1").status == TaskStatus.QUEUED

    @pytest.mark.asyncio
    async def test_fail_records_error(self, lifecycle, make_task, registry, recorded_events):
        await lifecycle.submit(make_task("t1"))
        await lifecycle.process_next_task()

        assert await lifecycle.fail("t1", "agent crashed") is True

        task = lifecycle.get_task("t1")
        assert task.status == TaskStatus.FAILED
        assert task.error.code == "TaskFailed"
        assert task.error.message == "agent crashed"
        assert task.error.retryable is True

        performance = registry.get_agent("writer-1").performance
        assert performance.failed_tasks == 1
        assert performance.success_rate == 0.0
        assert registry.get_agent("writer-1").status == AgentStatus.IDLE

        failed = _events_of(recorded_events, events.TASK_FAILED)
        assert failed[0].payload["error"]["code"] == "TaskFailed"

    @pytest.mark.asyncio
    async def test_fail_queued_task_removes_it_from_queue(self, lifecycle, make_task):
        await lifecycle.submit(make_task("t1"))

        assert await lifecycle.fail("t1", ValueError("bad input")) is True

        assert "t1" not in lifecycle.queue
        assert lifecycle.get_task("t1").error.code == "TaskFailed"

    @pytest.mark.asyncio
    async def test_fail_ignores_finished_tasks(self, lifecycle, make_task):
        await lifecycle.submit(make_task("t1"))
        await lifecycle.process_next_task()
        await lifecycle.complete("t1")

        assert await lifecycle.fail("t1", "late failure") is False
        assert lifecycle.get_task("t1").status == TaskStatus.COMPLETED


class TestTimeouts:
    """Test per-task timeouts."""

    @pytest.mark.asyncio
    async def test_task_times_out_once(self, lifecycle, make_task, clock, recorded_events):
        await lifecycle.submit(make_task("t1"))
        await lifecycle.process_next_task()
        assert clock.pending_timers == 1

        await clock.advance(29.0)
        assert lifecycle.get_task("t1").status == TaskStatus.IN_PROGRESS

        await clock.advance(1.0)
        task = lifecycle.get_task("t1")
        assert task.status == TaskStatus.FAILED
        assert task.error.code == "TaskTimeout"
        assert task.error.details["timeout_duration"] == 30.0

        await clock.advance(120.0)
        assert len(_events_of(recorded_events, events.TASK_FAILED)) == 1

    @pytest.mark.asyncio
    async def test_late_completion_after_timeout_is_ignored(self, lifecycle, make_task, clock):
        await lifecycle.submit(make_task("t1"))
        await lifecycle.process_next_task()
        await clock.advance(30.0)

        assert await lifecycle.complete("t1", "too late") is False
        assert lifecycle.get_task("t1").result is None

    @pytest.mark.asyncio
    async def test_max_response_time_overrides_default(self, lifecycle, make_task, clock, dispatcher):
        await lifecycle.submit(make_task("t1", max_response_time=5.0))
        await lifecycle.process_next_task()

        assert dispatcher.get_jobs()[0].payload["timeout"] == 5.0

        await clock.advance(5.0)
        assert lifecycle.get_task("t1").status == TaskStatus.FAILED

    @pytest.mark.asyncio
    async def test_completion_disarms_timer(self, lifecycle, make_task, clock):
        await lifecycle.submit(make_task("t1"))
        await lifecycle.process_next_task()

        await lifecycle.complete("t1")

        assert clock.pending_timers == 0
        await clock.advance(60.0)
        assert lifecycle.get_task("t1").status == TaskStatus.COMPLETED


class TestCancelAndRetry:
    """Test cancellation and retry."""

    @pytest.mark.asyncio
    async def test_cancel_queued_task(self, lifecycle, make_task, recorded_events):
        await lifecycle.submit(make_task("t1"))

        task = await lifecycle.cancel("t1", "no longer needed")

        assert task.status == TaskStatus.CANCELLED
        assert task.error.code == "TaskCancelled"
        assert task.error.message == "no longer needed"
        assert task.error.retryable is False
        assert "t1" not in lifecycle.queue

        cancelled = _events_of(recorded_events, events.TASK_CANCELLED)
        assert cancelled[0].payload["reason"] == "no longer needed"

    @pytest.mark.asyncio
    async def test_cancel_in_progress_releases_agent(self, lifecycle, make_task, registry, clock):
        await lifecycle.submit(make_task("t1"))
        await lifecycle.process_next_task()

        await lifecycle.cancel("t1")

        agent = registry.get_agent("writer-1")
        assert agent.status == AgentStatus.IDLE
        assert agent.performance.current_load == pytest.approx(0.0)
        assert agent.performance.total_tasks == 0
        assert clock.pending_timers == 0
        assert await lifecycle.complete("t1", "late") is False

    @pytest.mark.asyncio
    async def test_cancel_twice_is_rejected(self, lifecycle, make_task):
        await lifecycle.submit(make_task("t1"))
        await lifecycle.cancel("t1")

        with pytest.raises(InvalidStateTransitionError):
            await lifecycle.cancel("t1")

    @pytest.mark.asyncio
    async def test_cancel_completed_task_is_rejected(self, lifecycle, make_task):
        await lifecycle.submit(make_task("t1"))
        await lifecycle.process_next_task()
        await lifecycle.complete("t1")

        with pytest.raises(InvalidStateTransitionError):
            await lifecycle.cancel("t1")

    @pytest.mark.asyncio
    async def test_cancel_unknown_task(self, lifecycle):
        with pytest.raises(TaskNotFoundError):
            await lifecycle.cancel("missing")

    @pytest.mark.asyncio
    async def test_retry_failed_task(self, lifecycle, make_task, recorded_events):
        await lifecycle.submit(make_task("t1"))
        await lifecycle.process_next_task()
        await lifecycle.fail("t1", "flaky")

        task = await lifecycle.retry("t1")

        assert task.status == TaskStatus.QUEUED
        assert task.assigned_agent_id is None
        assert task.error is None
        assert task.started_at is None
        assert lifecycle.queue.snapshot() == ["t1"]

        retried = _events_of(recorded_events, events.TASK_RETRIED)
        assert retried[0].payload["previous_agent_id"] == "writer-1"

        await lifecycle.process_next_task()
        assert lifecycle.get_task("t1").status == TaskStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_retry_requires_failed_state(self, lifecycle, make_task):
        await lifecycle.submit(make_task("t1"))

        with pytest.raises(InvalidStateTransitionError):
            await lifecycle.retry("t1")

    @pytest.mark.asyncio
    async def test_retry_unknown_task(self, lifecycle):
        with pytest.raises(TaskNotFoundError):
            await lifecycle.retry("missing")


class TestQueries:
    """Test lookup and statistics helpers."""

    @pytest.mark.asyncio
    async def test_list_and_lookup(self, lifecycle, make_task):
        await lifecycle.submit(make_task("t1"))
        await lifecycle.submit(make_task("t2", capabilities=["coding"]))
        await lifecycle.process_next_task()

        assert [task.id for task in lifecycle.list_tasks(TaskStatus.QUEUED)] == ["t2"]
        assert len(lifecycle.list_tasks()) == 2
        assert [task.id for task in lifecycle.get_tasks_by_agent("writer-1")] == ["t1"]

        grouped = lifecycle.get_tasks_by_status()
        assert set(grouped) == {TaskStatus.IN_PROGRESS, TaskStatus.QUEUED}
        assert [task.id for task in grouped[TaskStatus.QUEUED]] == ["t2"]

    @pytest.mark.asyncio
    async def test_distribution_stats(self, lifecycle, make_task, clock):
        await lifecycle.submit(make_task("t1", priority=TaskPriority.HIGH))
        await lifecycle.submit(make_task("t2", capabilities=["coding"]))
        await lifecycle.process_next_task()
        await clock.advance(1.0)
        await lifecycle.complete("t1")

        stats = lifecycle.get_distribution_stats()

        assert stats["total_tasks"] == 2
        assert stats["queued_tasks"] == 1
        assert stats["processing_tasks"] == 0
        assert stats["tasks_by_status"] == {"completed": 1, "queued": 1}
        assert stats["tasks_by_priority"] == {"high": 1, "medium": 1}
        assert stats["average_processing_time_ms"] == pytest.approx(1000.0)

    @pytest.mark.asyncio
    async def test_shutdown_cancels_running_tasks(self, lifecycle, make_task, registry, clock):
        await lifecycle.start()
        await lifecycle.submit(make_task("t1"))
        await lifecycle.process_next_task()

        await lifecycle.shutdown()

        assert lifecycle.tasks == {}
        assert lifecycle.queue.is_empty
        assert registry.get_agent("writer-1").status == AgentStatus.IDLE
        assert clock.pending_timers == 0
        assert lifecycle.is_running is False
