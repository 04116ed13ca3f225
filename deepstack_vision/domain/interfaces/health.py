"""Health probe interface."""
from abc import ABC, abstractmethod


class HealthProbe(ABC):
    """Interface for deciding whether the vision service is reachable and healthy."""

    @abstractmethod
    def check(self) -> bool:
        """
        Probe the service once.

        Returns:
            True if the service answered as healthy, False otherwise.
            Implementations must not raise for an unreachable service.
        """
        pass
