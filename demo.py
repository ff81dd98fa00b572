#!/usr/bin/env python3
"""
Demonstration script for the agent orchestration engine.

Registers a few simulated agents, pushes tasks through the scheduler,
switches agents a number of times and shows what the learner makes of it.
"""

import asyncio
import random

from agent_orchestrator import create_orchestrator
from agent_orchestrator.agents import Agent
from agent_orchestrator.communication import InMemoryJobDispatcher
from agent_orchestrator.learning import SwitchReason, SwitchRequest
from agent_orchestrator.tasks import TaskPriority, TaskType

AGENTS = [
    Agent(id="writer-1", name="Writer", type="writer", capabilities=["writing", "editing"]),
    Agent(id="coder-1", name="Junior Coder", type="coder", capabilities=["coding"]),
    Agent(id="coder-2", name="Senior Coder", type="coder", capabilities=["coding", "review"]),
    Agent(id="analyst-1", name="Analyst", type="analyst", capabilities=["analysis", "writing"]),
]


async def main():
    """Main demonstration function."""
    print("🤖 Agent Orchestration Demo")
    print("=" * 50)

    orchestrator = None

    async def simulated_agent(job):
        # workflow steps are answered inline by the step runner
        if job.job_type != "agent_request":
            return
        await asyncio.sleep(random.uniform(0.01, 0.05))
        await orchestrator.complete_task(job.payload["task_id"], {
            "agent_id": job.payload["agent_id"],
            "user_satisfaction_score": round(random.uniform(0.7, 1.0), 2),
        })

    # 1. Build the orchestrator
    print("\n1. Creating orchestrator...")
    orchestrator = create_orchestrator(
        {
            "scheduler": {"tick_interval": 0.05, "task_timeout": 5},
            "learning": {"minimum_occurrences": 3},
            "logging": {"level": "WARNING"},
        },
        setup_logging=True,
        dispatcher=InMemoryJobDispatcher(handler=simulated_agent),
    )
    for agent in AGENTS:
        orchestrator.register_agent(agent)
    print(f"✓ Registered {len(AGENTS)} agents")

    await orchestrator.start()

    try:
        # 2. Submit tasks in mixed priorities
        print("\n2. Submitting tasks...")
        submitted = [
            await orchestrator.submit_task(["writing"], {"prompt": "Draft release notes"}, TaskPriority.LOW),
            await orchestrator.submit_task(["analysis"], {"prompt": "Summarise error logs"}, TaskPriority.CRITICAL),
            await orchestrator.submit_task(
                ["analysis", "coding"],
                {"prompt": "Investigate and patch"},
                task_type=TaskType.MULTI_AGENT_WORKFLOW,
            ),
        ]
        await asyncio.sleep(1.0)
        for task in submitted:
            status = orchestrator.get_task_status(task.id)
            print(f"  {task.id[:13]}… {status['status']:<10} {status['message']}")

        # 3. Switch coding work from the junior to the senior coder
        print("\n3. Switching agents...")
        for index in range(4):
            task = await orchestrator.submit_task(
                ["coding"], {"prompt": f"Fix bug #{index + 1}"}, session_id="session-1"
            )
            while task.assigned_agent_id is None and not task.status.is_terminal:
                await asyncio.sleep(0.05)

            if task.assigned_agent_id == "coder-1":
                result = await orchestrator.switch_agent(SwitchRequest(
                    current_task_id=task.id,
                    current_agent_id="coder-1",
                    reason=SwitchReason.CAPABILITY_MISMATCH,
                ))
                print(f"  Switched {task.id[:13]}… to {result.new_agent_id}")
            else:
                print(f"  {task.id[:13]}… went straight to {task.assigned_agent_id}")
            await asyncio.sleep(0.5)

        # 4. Ask for a prediction
        print("\n4. Predicting the next switch...")
        prediction = orchestrator.predict_agent(SwitchRequest(
            current_task_id="upcoming",
            current_agent_id="coder-1",
            reason=SwitchReason.CAPABILITY_MISMATCH,
        ))
        if prediction:
            print(f"  Recommended agent: {prediction.recommended_agent_id} "
                  f"(confidence {prediction.confidence:.0%})")
            for line in prediction.reasoning:
                print(f"    - {line}")
        else:
            print("  Not enough history for a prediction yet")

        # 5. Analytics
        print("\n5. Analytics...")
        analytics = orchestrator.get_analytics()
        print(f"  Switches: {analytics['total_switches']} "
              f"({analytics['successful_switches']} successful)")
        print(f"  Most common reasons: {analytics['most_common_reasons']}")
        for insight in orchestrator.get_insights(limit=3):
            print(f"  Insight [{insight.priority.value}]: {insight.title}")

        stats = orchestrator.get_stats()
        print(f"  Tasks by status: {stats['tasks']['tasks_by_status']}")

    finally:
        print("\n6. Shutting down...")
        await orchestrator.shutdown()
        print("✓ Done")


if __name__ == "__main__":
    asyncio.run(main())
