"""
DeepStack vision API adapter.

This module turns local image files into DeepStack multipart requests and
normalizes the heterogeneous JSON answers into one result model per
capability.

Key Features:
    - Local validation of every image before any Docker or network activity
    - Container readiness check before each call (can be disabled)
    - Retry with exponential backoff for face registration only
    - Confidence threshold filtering on a single 0-1 scale

Example:
    ```python
    config = ServiceConfig.from_settings()
    vision = VisionService(config)

    result = vision.detect_objects("street.jpg", confidence_threshold=0.5)
    print(result.label_counts)
    ```

Note:
    Confidences are always 0-1 inside this package. The unit is decided once
    per response: if any confidence is above 1, every value of that response
    is a percentage and is divided by 100 at the boundary, and
    ``min_confidence`` is sent to DeepStack as a 0-1 fraction.
"""
import base64
import binascii
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, NamedTuple, Optional, Sequence, TypeVar, Union

from pydantic import ValidationError

from deepstack_vision.core.config import ServiceConfig, settings
from deepstack_vision.core.exceptions import (
    CleanupError,
    ConfirmationRequiredError,
    DeepStackError,
    LocalValidationError,
    RemoteFailureError,
)
from deepstack_vision.core.logging import get_logger
from deepstack_vision.core.utils.image import (
    expand_path,
    image_dimensions,
    mime_type_for,
    validate_image_path,
)
from deepstack_vision.domain.entities.prediction import (
    BoundingBox,
    FacePrediction,
    ObjectPrediction,
)
from deepstack_vision.domain.value_objects.recognition import (
    DeleteAllFacesResult,
    EnhancementResult,
    FaceComparisonResult,
    FaceRecognitionResult,
    ObjectDetectionResult,
    RegistrationResult,
    SceneResult,
)
from deepstack_vision.infrastructure.deepstack import DeepStackClient
from deepstack_vision.infrastructure.deepstack.client import FilePart
from deepstack_vision.services.container_lifecycle import ContainerLifecycleService
from deepstack_vision.services.retry import RetryPolicy, registration_retry, single_attempt

logger = get_logger(__name__)

P = TypeVar("P", FacePrediction, ObjectPrediction)

ImagePaths = Union[str, Path, Sequence[Union[str, Path]]]


class Endpoint(NamedTuple):
    """A DeepStack endpoint and the timeout its backend latency calls for."""
    path: str
    timeout: float


FACE_REGISTER = Endpoint("/v1/vision/face/register", 60)
FACE_LIST = Endpoint("/v1/vision/face/list", 30)
FACE_DELETE = Endpoint("/v1/vision/face/delete", 30)
FACE_RECOGNIZE = Endpoint("/v1/vision/face/recognize", 30)
FACE_MATCH = Endpoint("/v1/vision/face/match", 30)
OBJECT_DETECTION = Endpoint("/v1/vision/detection", 30)
SCENE = Endpoint("/v1/vision/scene", 30)
ENHANCE = Endpoint("/v1/vision/enhance", 120)

ENHANCE_SIZE_MULTIPLIER = 4
UNKNOWN_SCENE = "unknown"


def _as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def normalize_confidence(value: Any, percent: Optional[bool] = None) -> float:
    """Bring a backend confidence onto the 0-1 scale.

    Args:
        value: Raw confidence from the backend
        percent: Whether the value is a percentage. When None, a value
            above 1 is taken as a percentage.

    Missing or malformed values are 0.
    """
    confidence = _as_float(value)
    if percent is None:
        percent = confidence > 1.0
    if percent:
        confidence /= 100.0
    return min(max(confidence, 0.0), 1.0)


def uses_percentages(predictions: List[Dict[str, Any]]) -> bool:
    """Decide the confidence unit once for a whole response.

    A single value above 1 means the backend answered in percentages, so
    every confidence of that response is divided by 100.
    """
    return any(_as_float(p.get("confidence")) > 1.0 for p in predictions)


def filter_by_confidence(predictions: List[P], threshold: float) -> List[P]:
    """Keep predictions whose confidence is strictly above ``threshold``."""
    return [p for p in predictions if p.confidence > threshold]


def validate_threshold(threshold: float) -> float:
    """
    Validate a confidence threshold.

    Raises:
        LocalValidationError: If the threshold is outside 0.0-1.0
    """
    if not 0.0 <= threshold <= 1.0:
        raise LocalValidationError(
            f"Confidence threshold must be between 0.0 and 1.0, got {threshold}",
            {"threshold": threshold},
        )
    return float(threshold)


def validate_identifier(identifier: str) -> str:
    """
    Validate a face identifier.

    Raises:
        LocalValidationError: If the identifier is blank or contains path separators
    """
    cleaned = (identifier or "").strip()
    if not cleaned:
        raise LocalValidationError("Face identifier must not be empty")
    if any(ch in cleaned for ch in "/\\") or any(ord(ch) < 32 for ch in cleaned):
        raise LocalValidationError(
            f"Face identifier contains invalid characters: {identifier!r}",
            {"identifier": identifier},
        )
    return cleaned


def _as_dict(payload: Any) -> Dict[str, Any]:
    return payload if isinstance(payload, dict) else {}


def _prediction_list(predictions: Any, endpoint: Endpoint) -> List[Dict[str, Any]]:
    """
    Check that a ``predictions`` field is a list of objects.

    Raises:
        RemoteFailureError: If the field has any other shape
    """
    if not isinstance(predictions, list) or not all(isinstance(p, dict) for p in predictions):
        raise RemoteFailureError(
            f"Malformed predictions from {endpoint.path}",
            {"path": endpoint.path, "predictions": repr(predictions)[:200]},
        )
    return predictions


def _bounding_box(prediction: Dict[str, Any]) -> Optional[BoundingBox]:
    try:
        return BoundingBox(
            x_min=int(prediction["x_min"]),
            y_min=int(prediction["y_min"]),
            x_max=int(prediction["x_max"]),
            y_max=int(prediction["y_max"]),
        )
    except (KeyError, TypeError, ValueError):
        return None


class VisionService:
    """Adapter exposing each DeepStack capability as one method.

    Every method validates its local input first, then (unless
    ``initialize_docker`` is False) asks the lifecycle service to bring the
    container up, then calls the endpoint and normalizes the answer.

    Attributes:
        config: Immutable container and API description
        confidence_threshold: Default threshold for filtered capabilities
    """

    def __init__(
        self,
        config: ServiceConfig,
        client: Optional[DeepStackClient] = None,
        lifecycle: Optional[ContainerLifecycleService] = None,
        confidence_threshold: Optional[float] = None,
        initialize_docker: bool = True,
        force: bool = False,
        strict_ready: bool = False,
        retry_policy: Optional[RetryPolicy] = None,
        registration_policy: Optional[RetryPolicy] = None,
    ) -> None:
        """Initialize the adapter.

        Args:
            config: Container and API description
            client: HTTP client (built from ``config.api_base_url`` if omitted)
            lifecycle: Container lifecycle service
            confidence_threshold: Default threshold (defaults to settings)
            initialize_docker: Ensure the container is ready before each call
            force: Force a container rebuild before the first call
            strict_ready: Fail calls when the service does not become healthy
            retry_policy: Policy for every capability except registration
            registration_policy: Policy for face registration
        """
        self.config = config
        self.client = client or DeepStackClient(config.api_base_url)
        self.lifecycle = lifecycle or ContainerLifecycleService()
        self.confidence_threshold = validate_threshold(
            settings.CONFIDENCE_THRESHOLD if confidence_threshold is None else confidence_threshold
        )
        self.initialize_docker = initialize_docker
        self.strict_ready = strict_ready
        self.retry_policy = retry_policy or single_attempt()
        self.registration_policy = registration_policy or registration_retry()
        self._force_pending = force

    def ensure_service(self) -> None:
        """Make sure the container is ready, forcing a rebuild only once.

        No-op when ``initialize_docker`` is False.
        """
        if not self.initialize_docker:
            return
        force, self._force_pending = self._force_pending, False
        self.lifecycle.ensure_ready(self.config, force=force, strict=self.strict_ready)

    def without_initialization(self, own_client: bool = False) -> "VisionService":
        """Get an adapter with this one's policies that skips readiness checks.

        Args:
            own_client: Use a fresh client (and HTTP session) instead of
                sharing this adapter's, for use from another thread
        """
        return VisionService(
            self.config,
            client=self.client.clone() if own_client else self.client,
            lifecycle=self.lifecycle,
            confidence_threshold=self.confidence_threshold,
            initialize_docker=False,
            retry_policy=self.retry_policy,
            registration_policy=self.registration_policy,
        )

    def _threshold(self, threshold: Optional[float]) -> float:
        return self.confidence_threshold if threshold is None else validate_threshold(threshold)

    @staticmethod
    def _image_files(image_paths: ImagePaths) -> Dict[str, FilePart]:
        """Validate images and build multipart file fields.

        A single image goes into ``image``, several into ``image1..imageN``.
        """
        if isinstance(image_paths, (str, Path)):
            image_paths = [image_paths]
        if not image_paths:
            raise LocalValidationError("At least one image is required")

        validated = [validate_image_path(path) for path in image_paths]
        if len(validated) == 1:
            names = ["image"]
        else:
            names = [f"image{i}" for i in range(1, len(validated) + 1)]

        return {
            name: (path.name, path.read_bytes(), mime_type_for(path))
            for name, path in zip(names, validated)
        }

    def _post(
        self,
        endpoint: Endpoint,
        files: Optional[Dict[str, FilePart]] = None,
        data: Optional[Dict[str, Any]] = None,
        policy: Optional[RetryPolicy] = None,
    ) -> Any:
        policy = policy or self.retry_policy
        return policy.call(self.client.post, endpoint.path, files=files, data=data, timeout=endpoint.timeout)

    def recognize_faces(
        self,
        image_path: Union[str, Path],
        confidence_threshold: Optional[float] = None,
    ) -> FaceRecognitionResult:
        """Recognize registered faces in an image.

        Args:
            image_path: Image to analyze
            confidence_threshold: Minimum confidence (0-1), strict inequality

        Returns:
            FaceRecognitionResult with faces above the threshold
        """
        threshold = self._threshold(confidence_threshold)
        files = self._image_files(image_path)
        self.ensure_service()

        payload = _as_dict(self._post(FACE_RECOGNIZE, files=files))
        predictions = payload.get("predictions")
        if not payload.get("success") or predictions is None:
            logger.debug("No faces recognized", image=str(image_path), error=payload.get("error"))
            return FaceRecognitionResult(success=bool(payload.get("success")), message=payload.get("error"))

        predictions = _prediction_list(predictions, FACE_RECOGNIZE)
        percent = uses_percentages(predictions)
        try:
            faces = [
                FacePrediction(
                    userid=str(p.get("userid", "unknown")),
                    confidence=normalize_confidence(p.get("confidence"), percent),
                    bounding_box=_bounding_box(p),
                )
                for p in predictions
            ]
        except ValidationError as e:
            raise RemoteFailureError(f"Malformed predictions from {FACE_RECOGNIZE.path}: {e}")
        faces = filter_by_confidence(faces, threshold)
        logger.info("Face recognition completed", image=str(image_path), num_faces=len(faces), threshold=threshold)
        return FaceRecognitionResult(success=True, faces=faces, count=len(faces))

    def detect_objects(
        self,
        image_path: Union[str, Path],
        confidence_threshold: Optional[float] = None,
    ) -> ObjectDetectionResult:
        """Detect objects in an image.

        Returns:
            ObjectDetectionResult with objects above the threshold and a
            per-label count
        """
        threshold = self._threshold(confidence_threshold)
        files = self._image_files(image_path)
        self.ensure_service()

        payload = _as_dict(self._post(OBJECT_DETECTION, files=files, data={"min_confidence": threshold}))
        predictions = payload.get("predictions")
        if not payload.get("success") or predictions is None:
            logger.debug("No objects detected", image=str(image_path), error=payload.get("error"))
            return ObjectDetectionResult(success=bool(payload.get("success")), message=payload.get("error"))

        predictions = _prediction_list(predictions, OBJECT_DETECTION)
        percent = uses_percentages(predictions)
        try:
            objects = [
                ObjectPrediction(
                    label=str(p.get("label", "unknown")),
                    confidence=normalize_confidence(p.get("confidence"), percent),
                    bounding_box=_bounding_box(p),
                )
                for p in predictions
            ]
        except ValidationError as e:
            raise RemoteFailureError(f"Malformed predictions from {OBJECT_DETECTION.path}: {e}")
        objects = filter_by_confidence(objects, threshold)
        label_counts = dict(Counter(obj.label for obj in objects))
        logger.info("Object detection completed", image=str(image_path), num_objects=len(objects), labels=label_counts)
        return ObjectDetectionResult(success=True, objects=objects, count=len(objects), label_counts=label_counts)

    def detect_scene(
        self,
        image_path: Union[str, Path],
        confidence_threshold: Optional[float] = None,
    ) -> SceneResult:
        """Classify the scene of an image.

        A scene below the threshold is reported as ``unknown`` with
        ``success=False`` rather than with its label.
        """
        threshold = self._threshold(confidence_threshold)
        files = self._image_files(image_path)
        self.ensure_service()

        payload = _as_dict(self._post(SCENE, files=files))
        if not payload.get("success"):
            return SceneResult(success=False, scene=UNKNOWN_SCENE, confidence=0.0, message=payload.get("error"))

        confidence = normalize_confidence(payload.get("confidence"))
        if confidence < threshold:
            logger.warning(
                "Scene below threshold",
                image=str(image_path),
                label=payload.get("label"),
                confidence=confidence,
                threshold=threshold,
            )
            return SceneResult(success=False, scene=UNKNOWN_SCENE, confidence=0.0, message="below threshold")

        return SceneResult(success=True, scene=str(payload.get("label", UNKNOWN_SCENE)), confidence=confidence)

    def register_face(self, identifier: str, image_paths: ImagePaths) -> RegistrationResult:
        """Register one or more images of a person under an identifier.

        Network failures are retried by the registration policy. Any other
        failure triggers a best-effort delete of the identifier.

        Raises:
            LocalValidationError: For a bad identifier or image
            NetworkError, ServiceTimeoutError: Once retries are exhausted
            RemoteFailureError: For an error status or malformed answer
        """
        userid = validate_identifier(identifier)
        files = self._image_files(image_paths)
        self.ensure_service()

        attempts = 0

        def post_once() -> Any:
            nonlocal attempts
            attempts += 1
            return self.client.post(FACE_REGISTER.path, files=files, data={"userid": userid}, timeout=FACE_REGISTER.timeout)

        logger.info("Registering face", userid=userid, image_count=len(files))
        try:
            payload = _as_dict(self.registration_policy.call(post_once))
        except RemoteFailureError:
            self._cleanup_registration(userid)
            raise

        if not payload.get("success"):
            self._cleanup_registration(userid)
            return RegistrationResult(
                success=False,
                userid=userid,
                image_count=len(files),
                attempts=attempts,
                message=payload.get("error"),
            )

        logger.info("Face registered", userid=userid, attempts=attempts)
        return RegistrationResult(
            success=True,
            userid=userid,
            image_count=len(files),
            attempts=attempts,
            message=payload.get("message"),
        )

    def _cleanup_registration(self, userid: str) -> None:
        try:
            if not self._delete_face_request(userid):
                raise CleanupError(f"DeepStack did not delete face {userid}", {"userid": userid})
            logger.info("Removed partially registered face", userid=userid)
        except DeepStackError as e:
            logger.warning("Registration cleanup failed", userid=userid, error=str(e))

    def list_faces(self) -> List[str]:
        """List identifiers registered in the DeepStack face store."""
        self.ensure_service()
        return self._list_faces_request()

    def _list_faces_request(self) -> List[str]:
        payload = self._post(FACE_LIST, data={})
        if isinstance(payload, list):
            faces = payload
        elif isinstance(payload, dict) and isinstance(payload.get("faces"), list):
            faces = payload["faces"]
        else:
            faces = []
        return [str(face) for face in faces]

    def delete_face(self, identifier: str) -> bool:
        """Delete a registered identifier.

        Returns:
            bool: Whether DeepStack reported success
        """
        userid = validate_identifier(identifier)
        self.ensure_service()
        deleted = self._delete_face_request(userid)
        logger.info("Face delete requested", userid=userid, success=deleted)
        return deleted

    def _delete_face_request(self, userid: str) -> bool:
        payload = _as_dict(self._post(FACE_DELETE, data={"userid": userid}))
        return bool(payload.get("success"))

    def delete_all_faces(self, confirmed: bool = False, verify: bool = True) -> DeleteAllFacesResult:
        """Wipe every registered face by clearing the datastore inside the container.

        The container is restarted so its face index reloads from the empty
        datastore, then health is polled again.

        Args:
            confirmed: Caller confirmation (or force flag)
            verify: List faces afterwards and require zero

        Raises:
            ConfirmationRequiredError: If not confirmed
            ContainerOperationError: If the delete or restart command fails
        """
        if not confirmed:
            raise ConfirmationRequiredError("Deleting all registered faces requires confirmation")

        self.ensure_service()
        self.lifecycle.purge_face_images(self.config)
        healthy = self.lifecycle.restart_and_wait(self.config)
        if not healthy:
            logger.warning("Service not healthy after clearing faces", container=self.config.container_name)
            return DeleteAllFacesResult(success=False, healthy=False)

        remaining = None
        if verify:
            remaining = len(self._list_faces_request())
            if remaining:
                logger.warning("Faces remain after clearing datastore", remaining=remaining)

        logger.info("All faces deleted", verified=verify, remaining=remaining)
        return DeleteAllFacesResult(success=not remaining, healthy=True, remaining_faces=remaining)

    def compare_faces(self, image_path1: Union[str, Path], image_path2: Union[str, Path]) -> FaceComparisonResult:
        """Compare the faces in two images."""
        files = self._image_files([image_path1, image_path2])
        self.ensure_service()

        payload = _as_dict(self._post(FACE_MATCH, files=files))
        if not payload.get("success") or payload.get("similarity") is None:
            return FaceComparisonResult(success=False, similarity=0.0, match_percentage=0.0)

        similarity = normalize_confidence(payload["similarity"])
        return FaceComparisonResult(
            success=True,
            similarity=similarity,
            match_percentage=round(similarity * 100, 2),
        )

    def enhance_image(
        self,
        image_path: Union[str, Path],
        output_path: Optional[Union[str, Path]] = None,
    ) -> EnhancementResult:
        """Upscale an image 4x.

        Args:
            image_path: Image to enhance
            output_path: Where to write the enhanced image (parents are created)

        Raises:
            RemoteFailureError: If the returned base64 payload cannot be decoded
        """
        files = self._image_files(image_path)
        self.ensure_service()

        payload = _as_dict(self._post(ENHANCE, files=files))
        encoded = payload.get("base64")
        if not payload.get("success") or not encoded:
            return EnhancementResult(success=False)

        try:
            image_bytes = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as e:
            raise RemoteFailureError(f"Enhanced image is not valid base64: {e}")

        width, height = payload.get("width"), payload.get("height")
        if not width or not height:
            try:
                width, height = image_dimensions(image_bytes)
            except ValueError as e:
                raise RemoteFailureError(f"Enhanced image cannot be decoded: {e}")

        result = EnhancementResult(
            success=True,
            base64=encoded,
            width=int(width),
            height=int(height),
            size_multiplier=ENHANCE_SIZE_MULTIPLIER,
        )

        if output_path is not None:
            target = expand_path(output_path)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(image_bytes)
            result.output_path = str(target)
            result.output_size = len(image_bytes)
            logger.info("Saved enhanced image", path=str(target), size=len(image_bytes))

        return result
