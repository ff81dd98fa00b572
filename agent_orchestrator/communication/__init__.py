"""
Event delivery and job dispatch.
"""

from .dispatch import DispatchedJob, InMemoryJobDispatcher, JobDispatcher
from .events import Event, EventBus

__all__ = [
    "DispatchedJob",
    "Event",
    "EventBus",
    "InMemoryJobDispatcher",
    "JobDispatcher",
]
