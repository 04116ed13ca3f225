"""Core prediction domain entities."""
from typing import Optional

from pydantic import BaseModel, Field


class BoundingBox(BaseModel):
    """Bounding box in absolute pixel coordinates, as reported by DeepStack."""
    x_min: int = Field(..., description="Left edge")
    y_min: int = Field(..., description="Top edge")
    x_max: int = Field(..., description="Right edge")
    y_max: int = Field(..., description="Bottom edge")


class FacePrediction(BaseModel):
    """A recognized face."""
    userid: str = Field(..., description="Registered identifier, 'unknown' if not recognized")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Recognition confidence (0-1)")
    bounding_box: Optional[BoundingBox] = Field(None, description="Face location in the image")


class ObjectPrediction(BaseModel):
    """A detected object."""
    label: str = Field(..., description="Object class label")
    confidence: float = Field(..., ge=0.0, le=1.0, description="Detection confidence (0-1)")
    bounding_box: Optional[BoundingBox] = Field(None, description="Object location in the image")
