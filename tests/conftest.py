"""Shared fixtures: fake Docker, fake health probe, fake DeepStack client and real tiny images."""
import threading
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest
import structlog
from PIL import Image

from deepstack_vision.core.config import ServiceConfig
from deepstack_vision.core.exceptions import (
    ContainerCreateError,
    EnvironmentUnavailableError,
    ImagePullError,
)
from deepstack_vision.domain.interfaces.health import HealthProbe
from deepstack_vision.infrastructure.docker import CommandResult, ContainerRunSpec
from deepstack_vision.services.container_lifecycle import ContainerLifecycleService
from deepstack_vision.services.retry import RetryPolicy
from deepstack_vision.services.vision import VisionService


@pytest.fixture(autouse=True)
def quiet_logging():
    """Route structlog output nowhere so stdout stays clean."""
    structlog.configure(
        processors=[],
        logger_factory=structlog.ReturnLoggerFactory(),
        cache_logger_on_first_use=False,
    )
    yield
    structlog.reset_defaults()


class FakeDocker:
    """In-memory stand-in for DockerCli tracking one container, volume and image."""

    def __init__(
        self,
        available: bool = True,
        exists: bool = False,
        running: bool = False,
        image_present: bool = True,
        volume_present: bool = False,
        pull_fails: bool = False,
        create_fails: bool = False,
    ) -> None:
        self.available = available
        self.exists = exists
        self.running = running
        self.image_present = image_present
        self.volume_present = volume_present
        self.pull_fails = pull_fails
        self.create_fails = create_fails
        self.calls: List[str] = []
        self.run_specs: List[ContainerRunSpec] = []
        self.exec_commands: List[tuple] = []

    def version(self) -> str:
        self.calls.append("version")
        if not self.available:
            raise EnvironmentUnavailableError("Docker unavailable")
        return "24.0.7"

    def image_exists(self, image: str) -> bool:
        return self.image_present

    def pull_image(self, image: str) -> None:
        self.calls.append("pull")
        if self.pull_fails:
            raise ImagePullError(f"Failed to pull image {image}")
        self.image_present = True

    def container_exists(self, name: str) -> bool:
        return self.exists

    def container_running(self, name: str) -> bool:
        return self.exists and self.running

    def volume_exists(self, name: str) -> bool:
        return self.volume_present

    def create_volume(self, name: str) -> None:
        self.calls.append("volume create")
        self.volume_present = True

    def remove_volume(self, name: str) -> bool:
        self.calls.append("volume rm")
        removed = self.volume_present
        self.volume_present = False
        return removed

    def run_container(self, spec: ContainerRunSpec) -> str:
        self.calls.append("run")
        if self.create_fails:
            raise ContainerCreateError(f"Failed to create container {spec.name}")
        self.run_specs.append(spec)
        self.exists = True
        self.running = True
        return "abc123"

    def start_container(self, name: str) -> None:
        self.calls.append("start")
        self.running = True

    def restart_container(self, name: str) -> None:
        self.calls.append("restart")
        self.running = True

    def stop_container(self, name: str) -> bool:
        self.calls.append("stop")
        was_running = self.running
        self.running = False
        return was_running

    def remove_container(self, name: str) -> bool:
        self.calls.append("rm")
        existed = self.exists
        self.exists = False
        return existed

    def exec_in_container(self, name: str, *command: str) -> CommandResult:
        self.calls.append("exec")
        self.exec_commands.append(command)
        return CommandResult(args=["docker", "exec", name, *command], returncode=0)

    def logs(self, name: str, tail: int = 50) -> str:
        return "DeepStack starting..."


class FakeProbe(HealthProbe):
    """Healthy while the fake container runs, after a number of initial failures."""

    def __init__(self, docker: FakeDocker, failures: int = 0, never_healthy: bool = False) -> None:
        self.docker = docker
        self.failures = failures
        self.never_healthy = never_healthy
        self.calls = 0

    def check(self) -> bool:
        self.calls += 1
        if self.never_healthy or not self.docker.running:
            return False
        if self.failures > 0:
            self.failures -= 1
            return False
        return True


class FakeClient:
    """Stand-in for DeepStackClient answering per endpoint path.

    Each path maps either to a static payload, an exception instance, or a
    list consumed one item per call.
    """

    def __init__(self, responses: Optional[Dict[str, Any]] = None) -> None:
        self.responses = responses or {}
        self.calls: List[Dict[str, Any]] = []
        self._lock = threading.Lock()
        self.clones = 0

    def post(self, path: str, files=None, data=None, timeout: float = 30) -> Any:
        with self._lock:
            self.calls.append({"path": path, "files": files or {}, "data": data, "timeout": timeout})
            response = self.responses[path]
            if isinstance(response, list):
                response = response.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def clone(self) -> "FakeClient":
        """Share answers and recorded calls with the copies handed to worker threads."""
        with self._lock:
            self.clones += 1
        return self

    def paths(self) -> List[str]:
        return [call["path"] for call in self.calls]


class FakeLifecycle:
    """Records lifecycle requests made by the vision adapter."""

    def __init__(self, healthy_after_restart: bool = True) -> None:
        self.ensure_calls: List[Dict[str, Any]] = []
        self.purged = 0
        self.restarts = 0
        self.healthy_after_restart = healthy_after_restart

    def ensure_ready(self, config: ServiceConfig, force: bool = False, strict: bool = False) -> bool:
        self.ensure_calls.append({"force": force, "strict": strict})
        return True

    def purge_face_images(self, config: ServiceConfig) -> None:
        self.purged += 1

    def restart_and_wait(self, config: ServiceConfig) -> bool:
        self.restarts += 1
        return self.healthy_after_restart


@pytest.fixture
def config() -> ServiceConfig:
    return ServiceConfig(
        container_name="deepstack_test",
        volume_name="deepstack_test_data",
        image_name="deepquestai/deepstack:latest",
        service_port=5055,
        health_check_timeout=10,
        health_check_interval=2,
        use_gpu=False,
    )


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def make_lifecycle(sleeps) -> Callable[..., ContainerLifecycleService]:
    """Build a lifecycle service around a fake docker and probe."""
    def factory(docker: FakeDocker, probe: FakeProbe, settle_delay: float = 5.0) -> ContainerLifecycleService:
        return ContainerLifecycleService(
            docker=docker,
            probe_factory=lambda cfg: probe,
            sleep=sleeps.append,
            settle_delay=settle_delay,
        )
    return factory


@pytest.fixture
def make_vision(config, sleeps) -> Callable[..., VisionService]:
    """Build a vision adapter around a fake client and lifecycle."""
    def factory(client: FakeClient, lifecycle: Optional[FakeLifecycle] = None, **kwargs) -> VisionService:
        kwargs.setdefault("registration_policy", RetryPolicy(max_attempts=3, base_delay=2.0, sleep=sleeps.append))
        return VisionService(
            config,
            client=client,
            lifecycle=lifecycle or FakeLifecycle(),
            confidence_threshold=kwargs.pop("confidence_threshold", 0.5),
            **kwargs,
        )
    return factory


@pytest.fixture
def make_image(tmp_path) -> Callable[..., Path]:
    """Write a small real image and return its path."""
    def factory(name: str = "photo.png", size=(8, 6), directory: Optional[Path] = None) -> Path:
        target_dir = directory or tmp_path
        target_dir.mkdir(parents=True, exist_ok=True)
        path = target_dir / name
        fmt = {".jpg": "JPEG", ".jpeg": "JPEG", ".gif": "GIF"}.get(path.suffix.lower(), "PNG")
        Image.new("RGB", size, (120, 30, 200)).save(path, format=fmt)
        return path
    return factory
