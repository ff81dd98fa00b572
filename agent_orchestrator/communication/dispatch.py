"""
Job dispatch to agent workers.
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Set


@dataclass
class DispatchedJob:
    """A job handed to the dispatcher."""
    id: str
    queue_name: str
    job_type: str
    payload: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "queue_name": self.queue_name,
            "job_type": self.job_type,
            "payload": self.payload,
            "created_at": self.created_at.isoformat(),
        }


class JobDispatcher(ABC):
    """Destination for assigned work. Results come back through the lifecycle manager."""

    @abstractmethod
    async def add_job(self, queue_name: str, job_type: str, payload: Dict[str, Any]) -> str:
        """
        Enqueue a job for a worker.

        Returns:
            Identifier of the enqueued job
        """


JobHandler = Callable[[DispatchedJob], Awaitable[Any]]


class InMemoryJobDispatcher(JobDispatcher):
    """
    Dispatcher that keeps jobs in memory.

    When a handler is supplied each job is passed to it on a background task,
    which lets a caller simulate agents that report results asynchronously.
    """

    def __init__(
        self,
        handler: Optional[JobHandler] = None,
        logger: Optional[logging.Logger] = None,
        max_jobs: int = 1000,
    ) -> None:
        self.handler = handler
        self.logger = logger or logging.getLogger(__name__)
        self.jobs: Deque[DispatchedJob] = deque(maxlen=max_jobs)
        self._running: Set[asyncio.Task] = set()

    async def add_job(self, queue_name: str, job_type: str, payload: Dict[str, Any]) -> str:
        job = DispatchedJob(id=str(uuid.uuid4()), queue_name=queue_name, job_type=job_type, payload=payload)
        self.jobs.append(job)
        self.logger.debug(f"Dispatched job {job.id} ({job_type}) to {queue_name}")

        if self.handler is not None:
            task = asyncio.create_task(self._run_handler(job))
            self._running.add(task)
            task.add_done_callback(self._running.discard)

        return job.id

    async def _run_handler(self, job: DispatchedJob) -> None:
        try:
            await self.handler(job)
        except Exception as e:
            self.logger.error(f"Job handler failed for {job.id}: {e}")

    def get_jobs(self, job_type: Optional[str] = None) -> List[DispatchedJob]:
        return [job for job in self.jobs if job_type is None or job.job_type == job_type]

    async def drain(self) -> None:
        """Wait for all in-flight handler invocations."""
        while self._running:
            await asyncio.gather(*list(self._running), return_exceptions=True)
