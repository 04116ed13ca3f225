"""Custom exceptions for the DeepStack vision client."""
from typing import Optional


class DeepStackError(Exception):
    """Base exception for container and vision API operations."""

    def __init__(self, message: str, details: Optional[dict] = None):
        """
        Initialize DeepStack error.

        Args:
            message: Error description
            details: Additional error context
        """
        super().__init__(message)
        self.details = details or {}


class EnvironmentUnavailableError(DeepStackError):
    """Raised when the Docker Engine cannot be reached."""
    pass


class ImagePullError(DeepStackError):
    """Raised when the DeepStack image cannot be pulled."""
    pass


class ImagePullAuthError(ImagePullError):
    """Raised when an image pull fails because registry authentication is missing."""
    pass


class ContainerCreateError(DeepStackError):
    """Raised when a new container cannot be created."""
    pass


class ContainerOperationError(DeepStackError):
    """Raised when start, restart or exec on an existing container fails."""
    pass


class HealthCheckTimeoutError(DeepStackError):
    """Raised when strict readiness was requested and the service never became healthy."""
    pass


class LocalValidationError(DeepStackError):
    """Raised when local input is invalid, before any network activity."""
    pass


class InvalidImageError(LocalValidationError):
    """Raised when an image path is missing, unreadable or not a supported image."""
    pass


class ConfirmationRequiredError(LocalValidationError):
    """Raised when a destructive operation was not confirmed."""
    pass


class NetworkError(DeepStackError):
    """Raised when the DeepStack API cannot be reached."""
    pass


class ServiceTimeoutError(DeepStackError):
    """Raised when a DeepStack API call exceeds its timeout."""
    pass


class RemoteFailureError(DeepStackError):
    """Raised when the DeepStack API answers with an error status or malformed body."""
    pass


class CleanupError(DeepStackError):
    """Raised by best-effort cleanup steps. Always logged, never escalated."""
    pass
