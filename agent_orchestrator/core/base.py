"""
Base classes for the orchestration services.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict


class BaseService(ABC):
    """
    Abstract base class for the long-running engine services.

    A service owns its timers and background work; ``start`` arms them and
    ``stop`` cancels them. ``shutdown`` additionally discards in-memory state.
    """

    def __init__(self, name: str) -> None:
        """
        Initialize the service with a name.

        Args:
            name: The service's name
        """
        self.name = name
        self.is_running = False

    @abstractmethod
    async def start(self) -> None:
        """Start background work. Must be implemented by subclasses."""
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop background work without discarding state."""
        pass

    async def shutdown(self) -> None:
        """Stop the service and release everything it holds."""
        await self.stop()

    async def health_check(self) -> bool:
        """
        Check the health of the service.

        Returns:
            True if the service is running, False otherwise
        """
        return self.is_running

    def get_status(self) -> Dict[str, Any]:
        """Basic status information for diagnostics."""
        return {"name": self.name, "is_running": self.is_running}
