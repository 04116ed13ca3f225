"""Tests for image file utilities."""
import io

import pytest
from PIL import Image

from deepstack_vision.core.exceptions import InvalidImageError
from deepstack_vision.core.utils.image import (
    image_dimensions,
    is_supported_image,
    mime_type_for,
    validate_image_path,
)
from deepstack_vision.core.utils import gpu


class TestValidateImagePath:
    """Test suite for local image validation."""

    def test_valid_image(self, make_image):
        path = make_image("face.JPG")

        assert validate_image_path(path) == path.resolve()

    def test_home_is_expanded(self, make_image, monkeypatch, tmp_path):
        make_image("face.png")
        monkeypatch.setenv("HOME", str(tmp_path))

        assert validate_image_path("~/face.png") == (tmp_path / "face.png").resolve()

    def test_missing_file(self, tmp_path):
        with pytest.raises(InvalidImageError, match="not found"):
            validate_image_path(tmp_path / "nope.png")

    def test_unsupported_extension(self, tmp_path):
        path = tmp_path / "face.bmp"
        Image.new("RGB", (4, 4)).save(path, format="BMP")

        with pytest.raises(InvalidImageError, match="Supported formats"):
            validate_image_path(path)

    def test_corrupt_image(self, tmp_path):
        path = tmp_path / "broken.jpg"
        path.write_bytes(b"definitely not a jpeg")

        with pytest.raises(InvalidImageError, match="not a valid image"):
            validate_image_path(path)

    def test_directory_is_rejected(self, tmp_path):
        folder = tmp_path / "folder.png"
        folder.mkdir()

        with pytest.raises(InvalidImageError):
            validate_image_path(folder)


@pytest.mark.parametrize(
    "name, supported, mime",
    [
        ("a.png", True, "image/png"),
        ("a.JPEG", True, "image/jpeg"),
        ("a.gif", True, "image/gif"),
        ("a.webp", False, "application/octet-stream"),
    ],
)
def test_extensions(name, supported, mime):
    assert is_supported_image(name) is supported
    assert mime_type_for(name) == mime


def test_image_dimensions():
    buffer = io.BytesIO()
    Image.new("RGB", (12, 7)).save(buffer, format="PNG")

    assert image_dimensions(buffer.getvalue()) == (12, 7)
    with pytest.raises(ValueError):
        image_dimensions(b"garbage")


class TestHasCapableGpu:
    """Test suite for GPU detection."""

    @staticmethod
    def _fake_run(returncode=0, stdout=""):
        def run(command, **kwargs):
            return type("Completed", (), {"returncode": returncode, "stdout": stdout, "stderr": ""})()
        return run

    @pytest.mark.parametrize(
        "stdout, expected",
        [("8192\n", True), ("2048\n", False), ("2048\n6144\n", True), ("N/A\n", False)],
    )
    def test_memory_threshold(self, monkeypatch, stdout, expected):
        monkeypatch.setattr(gpu.subprocess, "run", self._fake_run(stdout=stdout))

        assert gpu.has_capable_gpu() is expected

    def test_missing_nvidia_smi(self, monkeypatch):
        def run(command, **kwargs):
            raise FileNotFoundError("nvidia-smi")

        monkeypatch.setattr(gpu.subprocess, "run", run)

        assert gpu.has_capable_gpu() is False

    def test_nvidia_smi_failure(self, monkeypatch):
        monkeypatch.setattr(gpu.subprocess, "run", self._fake_run(returncode=9))

        assert gpu.has_capable_gpu() is False
