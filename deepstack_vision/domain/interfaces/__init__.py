"""Service interfaces package."""
from .health import HealthProbe

__all__ = ["HealthProbe"]
