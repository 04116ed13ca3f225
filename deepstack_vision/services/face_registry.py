"""Registration of a known-faces directory tree."""
from pathlib import Path
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field

from deepstack_vision.core.config import settings
from deepstack_vision.core.exceptions import (
    LocalValidationError,
    NetworkError,
    RemoteFailureError,
    ServiceTimeoutError,
)
from deepstack_vision.core.logging import get_logger
from deepstack_vision.core.utils.image import expand_path, is_supported_image
from deepstack_vision.services.vision import VisionService

logger = get_logger(__name__)


class KnownFacesSummary(BaseModel):
    """Outcome of registering a known-faces directory."""
    root: str = Field(..., description="Known-faces root directory")
    registered: List[str] = Field(default_factory=list, description="Identifiers registered")
    failed: Dict[str, str] = Field(default_factory=dict, description="Identifier to error message")
    skipped: List[str] = Field(default_factory=list, description="Person directories without images")


class FaceRegistryService:
    """Registers every person found below a known-faces root.

    Each sub-directory of the root is one person; its name is the
    identifier and every supported image directly inside it is uploaded in
    a single registration call.

    Example:
        ```python
        registry = FaceRegistryService(VisionService(config))
        summary = registry.register_known_faces("~/Pictures/Faces")
        ```
    """

    def __init__(self, vision: VisionService) -> None:
        self.vision = vision

    @staticmethod
    def person_images(person_dir: Path) -> List[Path]:
        return sorted(p for p in person_dir.iterdir() if p.is_file() and is_supported_image(p))

    def register_known_faces(self, root: Optional[Union[str, Path]] = None) -> KnownFacesSummary:
        """Register all people below ``root`` (defaults to settings).

        Per-person failures are recorded and do not stop the run.

        Raises:
            LocalValidationError: If the root is not a directory
        """
        root_path = expand_path(root or settings.KNOWN_FACES_ROOT)
        if not root_path.is_dir():
            raise LocalValidationError(f"Known faces directory not found: {root_path}", {"path": str(root_path)})

        summary = KnownFacesSummary(root=str(root_path))
        people = sorted(p for p in root_path.iterdir() if p.is_dir())
        logger.info("Registering known faces", root=str(root_path), people=len(people))

        self.vision.ensure_service()
        vision = self.vision.without_initialization()

        for person_dir in people:
            identifier = person_dir.name
            images = self.person_images(person_dir)
            if not images:
                logger.debug("No images for person", identifier=identifier)
                summary.skipped.append(identifier)
                continue

            try:
                result = vision.register_face(identifier, images)
            except (LocalValidationError, NetworkError, ServiceTimeoutError, RemoteFailureError) as e:
                logger.error("Failed to register person", identifier=identifier, error=str(e))
                summary.failed[identifier] = str(e)
                continue

            if result.success:
                summary.registered.append(identifier)
            else:
                summary.failed[identifier] = result.message or "registration rejected"

        logger.info(
            "Known faces registration completed",
            registered=len(summary.registered),
            failed=len(summary.failed),
            skipped=len(summary.skipped),
        )
        return summary
