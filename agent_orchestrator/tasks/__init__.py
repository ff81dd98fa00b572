"""
Task models, the priority queue, lifecycle management and workflows.
"""

from .lifecycle import ALLOWED_TRANSITIONS, TaskLifecycleManager
from .models import Task, TaskError, TaskPriority, TaskRequirements, TaskStatus, TaskType
from .queue import TaskQueue
from .strategies import OrchestrationRule, OrchestrationStrategy, StrategyAction, default_strategy
from .workflow import WorkflowExecution, WorkflowExecutor, WorkflowStatus, WorkflowStep

__all__ = [
    "ALLOWED_TRANSITIONS",
    "OrchestrationRule",
    "OrchestrationStrategy",
    "StrategyAction",
    "Task",
    "TaskError",
    "TaskLifecycleManager",
    "TaskPriority",
    "TaskQueue",
    "TaskRequirements",
    "TaskStatus",
    "TaskType",
    "WorkflowExecution",
    "WorkflowExecutor",
    "WorkflowStatus",
    "WorkflowStep",
    "default_strategy",
]
