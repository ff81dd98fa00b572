"""
Agent models and the in-memory agent registry.
"""

from .models import Agent, AgentCandidate, AgentPerformance, AgentStatus
from .registry import AgentRegistry

__all__ = [
    "Agent",
    "AgentCandidate",
    "AgentPerformance",
    "AgentRegistry",
    "AgentStatus",
]
