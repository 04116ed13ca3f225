"""Vision capability result value objects."""
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from deepstack_vision.domain.entities.prediction import FacePrediction, ObjectPrediction


class FaceRecognitionResult(BaseModel):
    """Result of face recognition operation."""
    success: bool = Field(..., description="Whether the backend reported success")
    faces: List[FacePrediction] = Field(default_factory=list, description="Faces above threshold")
    count: int = Field(0, description="Number of faces above threshold")
    message: Optional[str] = Field(None, description="Backend or policy message")


class ObjectDetectionResult(BaseModel):
    """Result of object detection operation."""
    success: bool = Field(..., description="Whether the backend reported success")
    objects: List[ObjectPrediction] = Field(default_factory=list, description="Objects above threshold")
    count: int = Field(0, description="Number of objects above threshold")
    label_counts: Dict[str, int] = Field(default_factory=dict, description="Objects per label")
    message: Optional[str] = Field(None, description="Backend or policy message")


class SceneResult(BaseModel):
    """Result of scene classification operation."""
    success: bool = Field(..., description="Whether a scene above threshold was found")
    scene: str = Field("unknown", description="Scene label, 'unknown' below threshold")
    confidence: float = Field(0.0, description="Confidence of the returned label (0-1)")
    message: Optional[str] = Field(None, description="Backend or policy message")


class RegistrationResult(BaseModel):
    """Result of face registration operation."""
    success: bool = Field(..., description="Whether the backend accepted the face")
    userid: str = Field(..., description="Identifier the images were registered under")
    image_count: int = Field(..., description="Number of images uploaded")
    attempts: int = Field(1, description="Number of requests made")
    message: Optional[str] = Field(None, description="Backend message")


class FaceComparisonResult(BaseModel):
    """Result of face comparison operation."""
    success: bool = Field(..., description="Whether the backend reported success")
    similarity: float = Field(0.0, description="Similarity between the two faces (0-1)")
    match_percentage: float = Field(0.0, description="Similarity as a rounded percentage")


class EnhancementResult(BaseModel):
    """Result of image enhancement operation."""
    success: bool = Field(..., description="Whether the backend reported success")
    base64: str = Field("", description="Enhanced image, base64 encoded")
    width: int = Field(0, description="Enhanced image width")
    height: int = Field(0, description="Enhanced image height")
    size_multiplier: int = Field(4, description="Upscaling factor applied by the backend")
    output_path: Optional[str] = Field(None, description="Where the enhanced image was written")
    output_size: Optional[int] = Field(None, description="Bytes written to output_path")


class DeleteAllFacesResult(BaseModel):
    """Result of wiping the face datastore."""
    success: bool = Field(..., description="Whether the datastore is verified (or assumed) empty")
    healthy: bool = Field(..., description="Whether the service came back after restart")
    remaining_faces: Optional[int] = Field(None, description="Faces still listed, None if not verified")
