"""Domain entities package."""
from .prediction import BoundingBox, FacePrediction, ObjectPrediction

__all__ = ["BoundingBox", "FacePrediction", "ObjectPrediction"]
