"""Container lifecycle service for bringing the DeepStack container to a healthy state."""
import time
from enum import Enum
from typing import Callable, Optional

from deepstack_vision.core.config import ServiceConfig, settings
from deepstack_vision.core.exceptions import CleanupError, DeepStackError, HealthCheckTimeoutError
from deepstack_vision.core.logging import get_logger
from deepstack_vision.domain.interfaces.health import HealthProbe
from deepstack_vision.infrastructure.deepstack import DeepStackClient, HttpHealthProbe
from deepstack_vision.infrastructure.docker import ContainerRunSpec, DockerCli

logger = get_logger(__name__)

DATASTORE_MOUNT = "/datastore"
CONTAINER_PORT = 5000
FACE_IMAGE_PATTERNS = ("*.jpg", "*.jpeg", "*.png", "*.gif")


class ContainerState(str, Enum):
    """Observed state of the DeepStack container."""
    ABSENT = "absent"
    STOPPED = "stopped"
    RUNNING_UNHEALTHY = "running_unhealthy"
    RUNNING_HEALTHY = "running_healthy"


class ContainerLifecycleService:
    """Service converging a named DeepStack container to running and healthy.

    The service:
    1. Verifies the Docker Engine answers
    2. Optionally tears down container and volume (force rebuild)
    3. Makes sure the image is present
    4. Creates, starts or restarts the container depending on its state
    5. Polls the health probe until the API answers

    Example:
        ```python
        lifecycle = ContainerLifecycleService()
        config = ServiceConfig.from_settings(service_port=5000)
        if not lifecycle.ensure_ready(config):
            print("DeepStack may not be fully ready")
        ```
    """

    def __init__(
        self,
        docker: Optional[DockerCli] = None,
        probe_factory: Optional[Callable[[ServiceConfig], HealthProbe]] = None,
        sleep: Callable[[float], None] = time.sleep,
        settle_delay: Optional[float] = None,
    ) -> None:
        """Initialize the lifecycle service.

        Args:
            docker: Docker CLI wrapper
            probe_factory: Builds the health probe for a config (HTTP GET by default)
            sleep: Sleep function, replaceable in tests
            settle_delay: Seconds to wait after start/restart (defaults to settings)
        """
        self.docker = docker or DockerCli()
        self._probe_factory = probe_factory or self._http_probe
        self._sleep = sleep
        self.settle_delay = settings.CONTAINER_SETTLE_DELAY if settle_delay is None else settle_delay

    @staticmethod
    def _http_probe(config: ServiceConfig) -> HealthProbe:
        return HttpHealthProbe(DeepStackClient(config.api_base_url), config.health_check_path)

    def health_probe(self, config: ServiceConfig) -> HealthProbe:
        return self._probe_factory(config)

    def inspect_state(self, config: ServiceConfig, probe: Optional[HealthProbe] = None) -> ContainerState:
        """Derive the container state by querying Docker and the health probe."""
        name = config.container_name
        if not self.docker.container_exists(name):
            return ContainerState.ABSENT
        if not self.docker.container_running(name):
            return ContainerState.STOPPED
        probe = probe or self.health_probe(config)
        if probe.check():
            return ContainerState.RUNNING_HEALTHY
        return ContainerState.RUNNING_UNHEALTHY

    def ensure_ready(self, config: ServiceConfig, force: bool = False, strict: bool = False) -> bool:
        """Make sure the container is running and its API answers.

        Args:
            config: Container and API description
            force: Remove container and volume, re-pull the image and recreate
            strict: Raise instead of returning False when the service stays unhealthy

        Returns:
            bool: True if the container is running and the health probe succeeds

        Raises:
            EnvironmentUnavailableError: If Docker is not reachable
            ImagePullError: If the image is missing and cannot be pulled
            ContainerCreateError: If a new container or volume cannot be created
            ContainerOperationError: If start/restart of an existing container fails
            HealthCheckTimeoutError: Only with ``strict`` and an unhealthy service
        """
        version = self.docker.version()
        logger.debug("Docker available", server_version=version, container=config.container_name)

        if force:
            self._remove_container_and_volume(config)

        self._ensure_image(config, force)

        probe = self.health_probe(config)
        state = self.inspect_state(config, probe)
        logger.info("Container state inspected", container=config.container_name, state=state.value)

        if state == ContainerState.ABSENT:
            self._create_container(config)
            self.wait_until_healthy(config, probe)
        elif state == ContainerState.STOPPED:
            logger.info("Starting existing container", container=config.container_name)
            self.docker.start_container(config.container_name)
            self._sleep(self.settle_delay)
            self.wait_until_healthy(config, probe)
        elif state == ContainerState.RUNNING_UNHEALTHY:
            logger.info("Restarting unhealthy container", container=config.container_name)
            self.docker.restart_container(config.container_name)
            self._sleep(self.settle_delay)
            self.wait_until_healthy(config, probe)

        ready = self.docker.container_running(config.container_name) and probe.check()
        if ready:
            logger.info("DeepStack service ready", url=config.api_base_url)
        else:
            logger.warning(
                "DeepStack service may not be fully ready",
                container=config.container_name,
                url=config.api_base_url,
            )
            if strict:
                raise HealthCheckTimeoutError(
                    f"DeepStack did not become healthy within {config.health_check_timeout}s",
                    {"container": config.container_name, "url": config.api_base_url},
                )
        return ready

    def wait_until_healthy(self, config: ServiceConfig, probe: Optional[HealthProbe] = None) -> bool:
        """Poll the health probe every interval, up to timeout / interval attempts.

        Returns:
            bool: True on the first successful probe, False when attempts run out
        """
        probe = probe or self.health_probe(config)
        attempts = config.health_check_attempts

        for attempt in range(1, attempts + 1):
            if probe.check():
                logger.debug("Health check passed", attempt=attempt)
                return True
            logger.debug("Health check pending", attempt=attempt, max_attempts=attempts)
            if attempt < attempts:
                self._sleep(config.health_check_interval)

        logger.warning(
            "Health check timed out",
            container=config.container_name,
            timeout=config.health_check_timeout,
            recent_logs=self.docker.logs(config.container_name, tail=20),
        )
        return False

    def restart_and_wait(self, config: ServiceConfig) -> bool:
        """Restart the container and wait for its API to answer again."""
        self.docker.restart_container(config.container_name)
        self._sleep(self.settle_delay)
        return self.wait_until_healthy(config)

    def purge_face_images(self, config: ServiceConfig) -> None:
        """Delete every face image file below the datastore path inside the container.

        Raises:
            ContainerOperationError: If the delete command fails
        """
        name_filter = " -o ".join(f"-iname '{pattern}'" for pattern in FACE_IMAGE_PATTERNS)
        command = f"find '{config.faces_path}' -type f \\( {name_filter} \\) -delete"
        logger.info("Removing face images from datastore", container=config.container_name, path=config.faces_path)
        self.docker.exec_in_container(config.container_name, "sh", "-c", command)

    def _remove_container_and_volume(self, config: ServiceConfig) -> None:
        """Best-effort teardown for a forced rebuild."""
        name = config.container_name
        logger.info("Force rebuild requested, removing container and volume", container=name, volume=config.volume_name)
        try:
            if self.docker.container_exists(name):
                if not self.docker.stop_container(name):
                    logger.debug("Container was not stopped", container=name)
                if not self.docker.remove_container(name):
                    raise CleanupError(f"Failed to remove container {name}", {"container": name})
        except DeepStackError as e:
            logger.warning("Container cleanup failed", container=name, error=str(e))

        if not self.docker.remove_volume(config.volume_name):
            logger.debug("Volume was not removed", volume=config.volume_name)

    def _ensure_image(self, config: ServiceConfig, force: bool) -> None:
        if force or not self.docker.image_exists(config.image_name):
            self.docker.pull_image(config.image_name)
        else:
            logger.debug("Image present", image=config.image_name)

    def _create_container(self, config: ServiceConfig) -> None:
        if not self.docker.volume_exists(config.volume_name):
            logger.info("Creating volume", volume=config.volume_name)
            self.docker.create_volume(config.volume_name)

        spec = ContainerRunSpec(
            name=config.container_name,
            image=config.image_name,
            host_port=config.service_port,
            container_port=CONTAINER_PORT,
            volume=config.volume_name,
            mount_path=DATASTORE_MOUNT,
            gpus=config.use_gpu,
        )
        container_id = self.docker.run_container(spec)
        logger.info(
            "Created container",
            container=config.container_name,
            container_id=container_id,
            image=config.image_name,
            gpu=config.use_gpu,
        )
