"""Tests for the DeepStack HTTP client."""
import pytest
import requests

from deepstack_vision.core.exceptions import NetworkError, RemoteFailureError, ServiceTimeoutError
from deepstack_vision.infrastructure.deepstack import DeepStackClient, HttpHealthProbe


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self.payload = payload
        self.text = text

    def json(self):
        if self.payload is None:
            raise ValueError("Expecting value")
        return self.payload


class FakeSession:
    """Returns a fixed response or raises a fixed error for every request."""

    def __init__(self, response=None, error=None):
        self.response = response or FakeResponse(payload={"success": True})
        self.error = error
        self.requests = []

    def _answer(self, method, url, **kwargs):
        self.requests.append((method, url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response

    def get(self, url, **kwargs):
        return self._answer("GET", url, **kwargs)

    def post(self, url, **kwargs):
        return self._answer("POST", url, **kwargs)


class TestPost:
    """Test suite for multipart POSTs."""

    def test_posts_multipart_and_decodes_json(self):
        session = FakeSession(FakeResponse(payload={"success": True, "predictions": []}))
        client = DeepStackClient("http://127.0.0.1:5000/", session=session)
        files = {"image": ("a.jpg", b"bytes", "image/jpeg")}

        payload = client.post("/v1/vision/detection", files=files, data={"min_confidence": 0.5}, timeout=30)

        assert payload == {"success": True, "predictions": []}
        method, url, kwargs = session.requests[0]
        assert (method, url) == ("POST", "http://127.0.0.1:5000/v1/vision/detection")
        assert kwargs == {"files": files, "data": {"min_confidence": 0.5}, "timeout": 30}

    def test_list_payload_is_returned_as_is(self):
        client = DeepStackClient("http://localhost:5000", session=FakeSession(FakeResponse(payload=["JohnDoe"])))

        assert client.post("/v1/vision/face/list") == ["JohnDoe"]

    @pytest.mark.parametrize(
        "error, expected",
        [
            (requests.Timeout("read timed out"), ServiceTimeoutError),
            (requests.ConnectionError("refused"), NetworkError),
            (requests.TooManyRedirects("loop"), RemoteFailureError),
        ],
    )
    def test_transport_errors_are_mapped(self, error, expected):
        client = DeepStackClient("http://localhost:5000", session=FakeSession(error=error))

        with pytest.raises(expected):
            client.post("/v1/vision/scene")

    def test_error_status(self):
        response = FakeResponse(status_code=500, payload={"success": False, "error": "model crashed"})
        client = DeepStackClient("http://localhost:5000", session=FakeSession(response))

        with pytest.raises(RemoteFailureError) as exc_info:
            client.post("/v1/vision/scene")

        assert exc_info.value.details["status_code"] == 500
        assert "model crashed" in str(exc_info.value)

    def test_malformed_json(self):
        response = FakeResponse(status_code=200, payload=None, text="<html>")
        client = DeepStackClient("http://localhost:5000", session=FakeSession(response))

        with pytest.raises(RemoteFailureError):
            client.post("/v1/vision/scene")


class TestClone:
    def test_clone_has_its_own_session(self):
        session = FakeSession()
        client = DeepStackClient("http://localhost:5000/", session=session)

        copy = client.clone()

        assert copy.base_url == "http://localhost:5000"
        assert copy.session is not session
        assert isinstance(copy.session, requests.Session)


class TestHealth:
    """Test suite for health probing."""

    @pytest.mark.parametrize("status, expected", [(200, True), (204, True), (404, False), (503, False)])
    def test_status_codes(self, status, expected):
        session = FakeSession(FakeResponse(status_code=status))
        probe = HttpHealthProbe(DeepStackClient("http://localhost:5000", session=session), path="/")

        assert probe.check() is expected
        assert session.requests[0][1] == "http://localhost:5000/"
        assert session.requests[0][2] == {"timeout": 5}

    def test_connection_failure_is_unhealthy(self):
        client = DeepStackClient("http://localhost:5000", session=FakeSession(error=requests.ConnectionError()))

        assert client.is_healthy() is False
