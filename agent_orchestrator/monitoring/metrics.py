"""
Prometheus metrics for the orchestration engine.
"""

import threading
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

TASKS_TOTAL = "tasks_total"
AGENT_SWITCHES_TOTAL = "agent_switches_total"
INSIGHTS_TOTAL = "insights_total"
QUEUE_DEPTH = "queue_depth"
PATTERNS_TOTAL = "patterns_total"
TASK_DURATION_SECONDS = "task_duration_seconds"


class MetricType(Enum):
    """Types of metrics."""
    COUNTER = "counter"
    GAUGE = "gauge"
    HISTOGRAM = "histogram"


@dataclass
class MetricDefinition:
    """Definition of a metric."""
    name: str
    type: MetricType
    description: str
    labels: List[str] = field(default_factory=list)
    buckets: Optional[List[float]] = None

    def __post_init__(self):
        if not self.name or not self.name.replace('_', '').replace(':', '').isalnum():
            raise ValueError(f"Invalid metric name: {self.name}")

        if self.type == MetricType.HISTOGRAM and self.buckets is None:
            self.buckets = [0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0]


@dataclass
class MetricValue:
    """A recorded metric value with timestamp and labels."""
    value: float
    timestamp: datetime
    labels: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "value": self.value,
            "timestamp": self.timestamp.isoformat(),
            "labels": self.labels
        }


class MetricsCollector:
    """
    Metrics collection backed by a private Prometheus registry.

    Each collector owns its registry so several engines (and tests) can live
    in one process without name clashes. A disabled collector records nothing.
    """

    def __init__(
        self,
        registry: Optional[CollectorRegistry] = None,
        namespace: str = "orchestrator",
        enabled: bool = True,
        history_size: int = 1000,
    ):
        self.registry = registry or CollectorRegistry()
        self.namespace = namespace
        self.enabled = enabled
        self.metrics: Dict[str, Any] = {}
        self.definitions: Dict[str, MetricDefinition] = {}
        self.values: Dict[str, Deque[MetricValue]] = defaultdict(lambda: deque(maxlen=history_size))
        self.lock = threading.RLock()

        self._register_builtin_metrics()

    def _register_builtin_metrics(self):
        self.register_metric(MetricDefinition(
            name=TASKS_TOTAL,
            type=MetricType.COUNTER,
            description="Task lifecycle events by queue, job type and status",
            labels=["queue_name", "job_type", "status"]
        ))

        self.register_metric(MetricDefinition(
            name=AGENT_SWITCHES_TOTAL,
            type=MetricType.COUNTER,
            description="Explicit agent switches",
            labels=["from_agent", "to_agent", "reason"]
        ))

        self.register_metric(MetricDefinition(
            name=INSIGHTS_TOTAL,
            type=MetricType.COUNTER,
            description="Learning insights generated",
            labels=["type", "priority"]
        ))

        self.register_metric(MetricDefinition(
            name=QUEUE_DEPTH,
            type=MetricType.GAUGE,
            description="Tasks waiting in the queue"
        ))

        self.register_metric(MetricDefinition(
            name=PATTERNS_TOTAL,
            type=MetricType.GAUGE,
            description="Learned switch patterns by type",
            labels=["pattern_type"]
        ))

        self.register_metric(MetricDefinition(
            name=TASK_DURATION_SECONDS,
            type=MetricType.HISTOGRAM,
            description="Time from assignment to completion in seconds",
            labels=["job_type"]
        ))

    def _full_name(self, name: str) -> str:
        return f"{self.namespace}_{name}" if self.namespace else name

    def register_metric(self, definition: MetricDefinition) -> None:
        """Register a new metric definition."""
        with self.lock:
            if definition.name in self.definitions:
                return  # Already registered

            full_name = self._full_name(definition.name)
            if definition.type == MetricType.COUNTER:
                metric = Counter(full_name, definition.description, definition.labels, registry=self.registry)
            elif definition.type == MetricType.GAUGE:
                metric = Gauge(full_name, definition.description, definition.labels, registry=self.registry)
            elif definition.type == MetricType.HISTOGRAM:
                metric = Histogram(
                    full_name,
                    definition.description,
                    definition.labels,
                    buckets=definition.buckets,
                    registry=self.registry
                )
            else:
                raise ValueError(f"Unsupported metric type: {definition.type}")

            self.definitions[definition.name] = definition
            self.metrics[definition.name] = metric

    def increment(self, name: str, value: float = 1.0, labels: Optional[Dict[str, str]] = None) -> None:
        """Increment a counter metric."""
        self._record_metric(name, value, labels, MetricType.COUNTER)

    def set_gauge(self, name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        """Set a gauge metric value."""
        self._record_metric(name, value, labels, MetricType.GAUGE)

    def observe(self, name: str, value: float, labels: Optional[Dict[str, str]] = None) -> None:
        """Observe a value for a histogram metric."""
        self._record_metric(name, value, labels, MetricType.HISTOGRAM)

    def _record_metric(
        self,
        name: str,
        value: float,
        labels: Optional[Dict[str, str]],
        metric_type: MetricType,
    ) -> None:
        if not self.enabled:
            return

        with self.lock:
            metric = self.metrics.get(name)
            if metric is None:
                self.register_metric(MetricDefinition(
                    name=name,
                    type=metric_type,
                    description=f"Auto-generated {metric_type.value} metric",
                    labels=sorted(labels.keys()) if labels else []
                ))
                metric = self.metrics[name]

            target = metric.labels(**labels) if labels else metric
            if metric_type == MetricType.COUNTER:
                target.inc(value)
            elif metric_type == MetricType.GAUGE:
                target.set(value)
            else:
                target.observe(value)

            self.values[name].append(MetricValue(
                value=value,
                timestamp=datetime.now(timezone.utc),
                labels=dict(labels or {})
            ))

    def get_sample_value(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        """
        Current value of a registered metric; histograms report their observation count.
        """
        definition = self.definitions.get(name)
        full_name = self._full_name(name)
        if definition is not None and definition.type == MetricType.COUNTER and not full_name.endswith("_total"):
            full_name = f"{full_name}_total"
        if definition is not None and definition.type == MetricType.HISTOGRAM:
            full_name = f"{full_name}_count"
        return self.registry.get_sample_value(full_name, labels or {})

    def get_metric_history(self, name: str, limit: int = 100) -> List[MetricValue]:
        with self.lock:
            return list(self.values.get(name, deque()))[-limit:]

    def export_prometheus(self) -> str:
        """Export metrics in Prometheus text format."""
        return generate_latest(self.registry).decode('utf-8')
