"""
Agent task orchestration and adaptive switching engine.

Accepts capability-tagged tasks, assigns them to the best available agent
in priority order, supervises their lifecycle and learns from past agent
switches to predict future assignments.
"""

from .orchestrator import Orchestrator, create_orchestrator

__version__ = "0.1.0"

__all__ = [
    "Orchestrator",
    "create_orchestrator",
    "__version__",
]
