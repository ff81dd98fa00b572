"""
Priority-ordered task queue.
"""

from typing import Iterator, List, Optional

from .models import Task, TaskPriority


class TaskQueue:
    """
    Ordered queue of tasks waiting for an agent.

    Insertion walks the queue and places the task in front of the first
    entry with a strictly lower priority, so tasks of equal priority keep
    their arrival order. The queue is not locked; its owner serializes
    access.
    """

    def __init__(self) -> None:
        self._tasks: List[Task] = []

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return any(task.id == task_id for task in self._tasks)

    def __iter__(self) -> Iterator[Task]:
        return iter(list(self._tasks))

    @property
    def is_empty(self) -> bool:
        return not self._tasks

    def enqueue(self, task: Task) -> int:
        """
        Insert ``task`` at its priority position.

        Returns:
            Index the task was inserted at
        """
        rank = (task.priority or TaskPriority.MEDIUM).rank

        for index, queued in enumerate(self._tasks):
            if (queued.priority or TaskPriority.MEDIUM).rank > rank:
                self._tasks.insert(index, task)
                return index

        self._tasks.append(task)
        return len(self._tasks) - 1

    def pop(self) -> Optional[Task]:
        """Remove and return the head of the queue, or None when empty."""
        if not self._tasks:
            return None
        return self._tasks.pop(0)

    def peek(self) -> Optional[Task]:
        return self._tasks[0] if self._tasks else None

    def remove(self, task_id: str) -> bool:
        """Remove a task by id. Returns False when it was not queued."""
        for index, queued in enumerate(self._tasks):
            if queued.id == task_id:
                del self._tasks[index]
                return True
        return False

    def position(self, task_id: str) -> Optional[int]:
        for index, queued in enumerate(self._tasks):
            if queued.id == task_id:
                return index
        return None

    def snapshot(self) -> List[str]:
        """Queued task ids in service order."""
        return [task.id for task in self._tasks]

    def clear(self) -> None:
        self._tasks.clear()
