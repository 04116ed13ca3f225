"""Tests for batch image metadata updates."""
import json

import pytest

from deepstack_vision.core.exceptions import LocalValidationError, RemoteFailureError
from deepstack_vision.services.batch_indexing import (
    KEYWORDS_SUFFIX,
    PEOPLE_SUFFIX,
    ImageMetadataIndexer,
    log_system_resources,
)
from deepstack_vision.services.vision import FACE_RECOGNIZE, OBJECT_DETECTION, SCENE
from tests.conftest import FakeClient, FakeLifecycle


def vision_responses():
    return {
        OBJECT_DETECTION.path: {
            "success": True,
            "predictions": [
                {"label": "car", "confidence": 0.9},
                {"label": "car", "confidence": 0.8},
                {"label": "dog", "confidence": 0.1},
            ],
        },
        SCENE.path: {"success": True, "label": "street", "confidence": 0.75},
        FACE_RECOGNIZE.path: {
            "success": True,
            "predictions": [
                {"userid": "JohnDoe", "confidence": 0.9},
                {"userid": "unknown", "confidence": 0.95},
            ],
        },
    }


@pytest.fixture
def album(tmp_path, make_image):
    root = tmp_path / "album"
    make_image("a.jpg", directory=root)
    make_image("b.png", directory=root / "nested")
    (root / "readme.txt").write_text("not an image")
    return root


def make_indexer(vision, **kwargs):
    kwargs.setdefault("show_progress", False)
    return ImageMetadataIndexer(vision, **kwargs)


class TestUpdateAllImages:
    """Test suite for the batch workflow."""

    def test_writes_sidecars(self, make_vision, album):
        lifecycle = FakeLifecycle()
        vision = make_vision(FakeClient(vision_responses()), lifecycle)

        summary = make_indexer(vision).update_all_images([album])

        assert summary.total_images == 2
        assert summary.total_failures == 0
        assert summary.directories[0].keywords_written == 2
        assert summary.directories[0].faces_written == 2
        assert len(lifecycle.ensure_calls) == 1

        keywords = json.loads((album / ("a.jpg" + KEYWORDS_SUFFIX)).read_text())
        assert keywords == {"keywords": ["car", "street"], "objects": {"car": 2}, "scene": "street"}
        people = json.loads((album / "nested" / ("b.png" + PEOPLE_SUFFIX)).read_text())
        assert people == {"faces": ["JohnDoe"], "count": 1}

    def test_non_recursive(self, make_vision, album):
        vision = make_vision(FakeClient(vision_responses()))

        summary = make_indexer(vision, recursive=False).update_all_images([album])

        assert summary.total_images == 1
        assert not (album / "nested" / ("b.png" + KEYWORDS_SUFFIX)).exists()

    def test_existing_sidecars_are_skipped(self, make_vision, album):
        existing = album / ("a.jpg" + KEYWORDS_SUFFIX)
        existing.write_text("{}")
        client = FakeClient(vision_responses())

        make_indexer(make_vision(client), recursive=False).update_all_images([album])

        assert existing.read_text() == "{}"
        assert OBJECT_DETECTION.path not in client.paths()

    def test_overwrite_rewrites_sidecars(self, make_vision, album):
        existing = album / ("a.jpg" + KEYWORDS_SUFFIX)
        existing.write_text("{}")

        make_indexer(make_vision(FakeClient(vision_responses())), recursive=False, overwrite=True).update_all_images([album])

        assert json.loads(existing.read_text())["scene"] == "street"

    def test_per_image_failures_are_counted(self, make_vision, album):
        responses = vision_responses()
        responses[FACE_RECOGNIZE.path] = RemoteFailureError("HTTP 500")

        summary = make_indexer(make_vision(FakeClient(responses))).update_all_images([album])

        assert summary.total_failures == 2
        assert summary.directories[0].keywords_written == 2
        assert not (album / ("a.jpg" + PEOPLE_SUFFIX)).exists()

    def test_malformed_recognition_answer_does_not_abort_the_batch(self, make_vision, album):
        """Should count the bad answers and still return a summary."""
        responses = vision_responses()
        responses[FACE_RECOGNIZE.path] = {"success": True, "predictions": [None]}

        summary = make_indexer(make_vision(FakeClient(responses))).update_all_images([album])

        assert summary.failed_directories == {}
        assert summary.total_failures == 2
        assert summary.directories[0].keywords_written == 2
        assert summary.directories[0].faces_written == 0

    def test_each_sub_task_uses_its_own_client(self, make_vision, album, tmp_path, make_image):
        other = tmp_path / "other"
        make_image("c.jpg", directory=other)
        client = FakeClient(vision_responses())

        make_indexer(make_vision(client)).update_all_images([album, other])

        assert client.clones == 4

    def test_missing_directory_is_recorded(self, make_vision, album, tmp_path):
        vision = make_vision(FakeClient(vision_responses()))

        summary = make_indexer(vision, max_workers=2).update_all_images([album, tmp_path / "missing"])

        assert len(summary.directories) == 1
        assert list(summary.failed_directories) == [str((tmp_path / "missing").resolve())]

    def test_no_directories(self, make_vision, monkeypatch):
        monkeypatch.setattr("deepstack_vision.services.batch_indexing.settings.IMAGE_DIRECTORIES", "")

        with pytest.raises(LocalValidationError):
            make_indexer(make_vision(FakeClient())).update_all_images()


def test_log_system_resources():
    metrics = log_system_resources("test")

    assert set(metrics) == {"cpu_percent", "memory_percent", "memory_available_mb", "process_memory_mb"}
