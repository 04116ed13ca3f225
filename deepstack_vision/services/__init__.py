"""Services package."""
from .container_lifecycle import ContainerLifecycleService, ContainerState
from .retry import RetryPolicy
from .vision import VisionService

__all__ = ["ContainerLifecycleService", "ContainerState", "RetryPolicy", "VisionService"]
