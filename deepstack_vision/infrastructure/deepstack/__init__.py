"""DeepStack REST API integration."""
from .client import DeepStackClient, HttpHealthProbe

__all__ = ["DeepStackClient", "HttpHealthProbe"]
