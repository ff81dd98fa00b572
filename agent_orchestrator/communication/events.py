"""
In-process event bus for orchestration notifications.
"""

import asyncio
import logging
import uuid
from collections import defaultdict, deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

TASK_SUBMITTED = "task:submitted"
TASK_ASSIGNED = "task:assigned"
TASK_COMPLETED = "task:completed"
TASK_FAILED = "task:failed"
TASK_CANCELLED = "task:cancelled"
TASK_RETRIED = "task:retried"
PATTERN_LEARNED = "pattern:learned"
PATTERNS_OPTIMIZED = "patterns:optimized"
INSIGHT_GENERATED = "insight:generated"
AGENT_SWITCHED = "agent:switched"

WILDCARD = "*"


@dataclass
class Event:
    """A notification published on the bus."""
    type: str
    payload: Dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "type": self.type,
            "payload": self.payload,
            "timestamp": self.timestamp.isoformat(),
        }


class EventBus:
    """
    Subscription-based event delivery.

    Subscribers may be plain callables or coroutine functions. A subscriber
    that raises is logged and skipped; the remaining subscribers still run.
    """

    def __init__(self, logger: Optional[logging.Logger] = None, history_size: int = 1000) -> None:
        self.logger = logger or logging.getLogger(__name__)
        self.subscribers: Dict[str, List[Callable]] = defaultdict(list)
        self.history: Deque[Event] = deque(maxlen=history_size)

    def subscribe(self, event_type: str, callback: Callable) -> None:
        """
        Subscribe to an event type.

        Args:
            event_type: Type of event to subscribe to, or ``"*"`` for all
            callback: Callback receiving the :class:`Event`
        """
        self.subscribers[event_type].append(callback)

    def subscribe_all(self, callback: Callable) -> None:
        self.subscribe(WILDCARD, callback)

    def unsubscribe(self, event_type: str, callback: Callable) -> None:
        if event_type in self.subscribers:
            try:
                self.subscribers[event_type].remove(callback)
                if not self.subscribers[event_type]:
                    del self.subscribers[event_type]
            except ValueError:
                pass  # Callback not found

    async def publish(self, event_type: str, payload: Optional[Dict[str, Any]] = None) -> Event:
        """
        Deliver an event to every subscriber of its type and to wildcard subscribers.

        Returns:
            The published event
        """
        event = Event(type=event_type, payload=payload or {})
        self.history.append(event)

        callbacks = list(self.subscribers.get(event_type, [])) + list(self.subscribers.get(WILDCARD, []))
        for callback in callbacks:
            try:
                result = callback(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                self.logger.error(f"Event subscriber failed for {event_type}: {e}")

        self.logger.debug(f"Published {event_type} to {len(callbacks)} subscribers")
        return event

    def get_history(self, event_type: Optional[str] = None, limit: int = 100) -> List[Event]:
        events = [event for event in self.history if event_type is None or event.type == event_type]
        return events[-limit:]

    def clear(self) -> None:
        self.subscribers.clear()
        self.history.clear()
