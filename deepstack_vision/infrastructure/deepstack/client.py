"""HTTP client for the DeepStack REST API."""
from typing import Any, Dict, Optional, Tuple

import requests

from deepstack_vision.core.exceptions import (
    NetworkError,
    RemoteFailureError,
    ServiceTimeoutError,
)
from deepstack_vision.core.logging import get_logger
from deepstack_vision.domain.interfaces.health import HealthProbe

logger = get_logger(__name__)

# Multipart file tuple as accepted by requests: (filename, content, content_type)
FilePart = Tuple[str, bytes, str]

HEALTH_PROBE_TIMEOUT = 5


class DeepStackClient:
    """Thin wrapper over ``requests`` that maps transport failures to our exceptions."""

    def __init__(self, base_url: str, session: Optional[requests.Session] = None) -> None:
        """Initialize the client.

        Args:
            base_url: API root, e.g. ``http://127.0.0.1:5000``
            session: Session to reuse (a new one is created if omitted)
        """
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()

    def clone(self) -> "DeepStackClient":
        """Get a client for the same API with its own session."""
        return DeepStackClient(self.base_url)

    def url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def is_healthy(self, path: str = "/", timeout: float = HEALTH_PROBE_TIMEOUT) -> bool:
        """GET ``path`` and report whether it answered with a 2xx status."""
        try:
            response = self.session.get(self.url(path), timeout=timeout)
        except requests.RequestException as e:
            logger.debug("Health probe failed", url=self.url(path), error=str(e))
            return False
        return 200 <= response.status_code < 300

    def post(
        self,
        path: str,
        files: Optional[Dict[str, FilePart]] = None,
        data: Optional[Dict[str, Any]] = None,
        timeout: float = 30,
    ) -> Any:
        """POST a multipart form and decode the JSON answer.

        Args:
            path: Endpoint path, e.g. ``/v1/vision/detection``
            files: Multipart file fields
            data: Multipart scalar fields
            timeout: Request timeout in seconds

        Returns:
            The decoded JSON body (usually a dict, sometimes a list)

        Raises:
            ServiceTimeoutError: If the request timed out
            NetworkError: If the service could not be reached
            RemoteFailureError: On non-2xx status or malformed JSON
        """
        url = self.url(path)
        logger.debug("Posting to DeepStack", url=url, fields=sorted((files or {}).keys()), timeout=timeout)

        try:
            response = self.session.post(url, files=files, data=data, timeout=timeout)
        except requests.Timeout as e:
            raise ServiceTimeoutError(f"Request to {url} timed out after {timeout}s", {"url": url, "error": str(e)})
        except requests.ConnectionError as e:
            raise NetworkError(f"Could not connect to {url}", {"url": url, "error": str(e)})
        except requests.RequestException as e:
            raise RemoteFailureError(f"Request to {url} failed: {e}", {"url": url})

        if not 200 <= response.status_code < 300:
            raise RemoteFailureError(
                f"DeepStack returned HTTP {response.status_code} for {path}: {self._error_message(response)}",
                {"url": url, "status_code": response.status_code},
            )

        try:
            return response.json()
        except ValueError as e:
            raise RemoteFailureError(
                f"Malformed JSON from {path}: {e}",
                {"url": url, "status_code": response.status_code},
            )

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text.strip()[:200]
        if isinstance(body, dict):
            return str(body.get("error") or body.get("message") or body)
        return str(body)


class HttpHealthProbe(HealthProbe):
    """Health probe that GETs a configurable path on the DeepStack API."""

    def __init__(self, client: DeepStackClient, path: str = "/", timeout: float = HEALTH_PROBE_TIMEOUT) -> None:
        self.client = client
        self.path = path
        self.timeout = timeout

    def check(self) -> bool:
        return self.client.is_healthy(self.path, self.timeout)
