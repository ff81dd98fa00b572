"""
Monitoring and observability: Prometheus metrics and structured logging.
"""

from .logger import LogManager, StructuredLogger
from .metrics import MetricDefinition, MetricsCollector, MetricType

__all__ = [
    "LogManager",
    "MetricDefinition",
    "MetricType",
    "MetricsCollector",
    "StructuredLogger",
]
