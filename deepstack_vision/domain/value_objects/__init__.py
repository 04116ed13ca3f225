"""Value objects package."""
from .recognition import (
    DeleteAllFacesResult,
    EnhancementResult,
    FaceComparisonResult,
    FaceRecognitionResult,
    ObjectDetectionResult,
    RegistrationResult,
    SceneResult,
)

__all__ = [
    "DeleteAllFacesResult",
    "EnhancementResult",
    "FaceComparisonResult",
    "FaceRecognitionResult",
    "ObjectDetectionResult",
    "RegistrationResult",
    "SceneResult",
]
