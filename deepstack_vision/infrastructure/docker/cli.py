"""
Structured wrapper around the Docker CLI.

Every container and volume operation used by the lifecycle service goes
through ``DockerCli``, which runs a single ``docker`` subcommand, captures
its output and turns failures into typed exceptions.

Example:
    ```python
    docker = DockerCli()
    docker.version()
    if not docker.container_exists("deepstack_face_recognition"):
        docker.run_container(spec)
    ```
"""
import os
import platform
import subprocess
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from deepstack_vision.core.config import settings
from deepstack_vision.core.exceptions import (
    ContainerCreateError,
    ContainerOperationError,
    EnvironmentUnavailableError,
    ImagePullAuthError,
    ImagePullError,
)
from deepstack_vision.core.logging import get_logger

logger = get_logger(__name__)

Runner = Callable[..., subprocess.CompletedProcess]

# Environment flags enabling the DeepStack capabilities we call
DEEPSTACK_ENVIRONMENT: Dict[str, str] = {
    "VISION-FACE": "True",
    "VISION-DETECTION": "True",
    "VISION-SCENE": "True",
}

AUTH_ERROR_MARKERS = (
    "unauthorized",
    "authentication required",
    "access denied",
    "denied: requested access",
    "docker login",
    "credentials",
)


class CommandResult(BaseModel):
    """Outcome of a single docker invocation."""
    args: List[str] = Field(..., description="Full argument vector, executable included")
    returncode: int = Field(..., description="Process exit code")
    stdout: str = Field("", description="Captured standard output")
    stderr: str = Field("", description="Captured standard error")

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def lines(self) -> List[str]:
        """Non-empty stdout lines."""
        return [line.strip() for line in self.stdout.splitlines() if line.strip()]


class ContainerRunSpec(BaseModel):
    """Everything needed to ``docker run`` a DeepStack container."""
    name: str
    image: str
    host_port: int = Field(..., ge=1, le=65535)
    container_port: int = 5000
    volume: str
    mount_path: str = "/datastore"
    environment: Dict[str, str] = Field(default_factory=lambda: dict(DEEPSTACK_ENVIRONMENT))
    restart_policy: str = "unless-stopped"
    gpus: bool = False

    def to_args(self) -> List[str]:
        """Render the ``docker run`` arguments (without the executable)."""
        args = [
            "run", "-d",
            "--name", self.name,
            "-p", f"{self.host_port}:{self.container_port}",
            "-v", f"{self.volume}:{self.mount_path}",
        ]
        for key, value in self.environment.items():
            args += ["-e", f"{key}={value}"]
        args += ["--restart", self.restart_policy]
        if self.gpus:
            args += ["--gpus", "all"]
        args.append(self.image)
        return args


def looks_like_auth_error(message: str) -> bool:
    """Check whether docker output describes a registry authentication problem."""
    lowered = message.lower()
    return any(marker in lowered for marker in AUTH_ERROR_MARKERS)


def launch_docker_desktop(popen: Callable[..., subprocess.Popen] = subprocess.Popen) -> bool:
    """Try to start Docker Desktop so the user can sign in.

    Best-effort only: failures are logged and reported as False.

    Args:
        popen: Process launcher, replaceable in tests

    Returns:
        bool: True if a launch command was started
    """
    system = platform.system()
    if system == "Windows":
        program_files = os.environ.get("ProgramFiles", r"C:\Program Files")
        command = [os.path.join(program_files, "Docker", "Docker", "Docker Desktop.exe")]
    elif system == "Darwin":
        command = ["open", "-a", "Docker"]
    else:
        command = ["systemctl", "--user", "start", "docker-desktop"]

    try:
        popen(command, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
    except OSError as e:
        logger.warning("Could not launch Docker Desktop", command=command, error=str(e))
        return False

    logger.info("Launched Docker Desktop, sign in to the registry and retry", command=command)
    return True


class DockerCli:
    """Typed access to the docker subcommands the lifecycle service needs."""

    def __init__(
        self,
        executable: Optional[str] = None,
        runner: Optional[Runner] = None,
        desktop_launcher: Callable[[], bool] = launch_docker_desktop,
    ) -> None:
        """Initialize the wrapper.

        Args:
            executable: Docker executable (defaults to settings)
            runner: Callable with the ``subprocess.run`` signature
            desktop_launcher: Called when a pull fails for auth reasons
        """
        self.executable = executable or settings.DOCKER_EXECUTABLE
        self._runner = runner or subprocess.run
        self._desktop_launcher = desktop_launcher

    def run(self, *args: str) -> CommandResult:
        """Run one docker subcommand and capture its output.

        Raises:
            EnvironmentUnavailableError: If the docker executable cannot be started
        """
        command = [self.executable, *args]
        logger.debug("Running docker command", command=" ".join(command))
        try:
            completed = self._runner(command, capture_output=True, text=True)
        except OSError as e:
            raise EnvironmentUnavailableError(
                f"Docker CLI could not be started: {e}",
                {"executable": self.executable},
            )

        result = CommandResult(
            args=command,
            returncode=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )
        if not result.ok:
            logger.debug(
                "Docker command failed",
                command=" ".join(command),
                returncode=result.returncode,
                stderr=result.stderr.strip(),
            )
        return result

    def version(self) -> str:
        """Get the Docker Engine server version.

        Raises:
            EnvironmentUnavailableError: If the daemon does not answer
        """
        result = self.run("version", "--format", "{{.Server.Version}}")
        if not result.ok or not result.lines:
            raise EnvironmentUnavailableError(
                "Docker unavailable. Make sure Docker is installed and running.",
                {"stderr": result.stderr.strip()},
            )
        return result.lines[0]

    def info(self) -> str:
        """Get ``docker info`` output, empty if the daemon does not answer."""
        result = self.run("info")
        return result.stdout if result.ok else ""

    def image_exists(self, image: str) -> bool:
        result = self.run("images", image, "--format", "{{.Repository}}")
        return result.ok and bool(result.lines)

    def pull_image(self, image: str) -> None:
        """Pull an image from its registry.

        Raises:
            ImagePullAuthError: If the registry refused the pull for auth reasons
            ImagePullError: For any other pull failure
        """
        logger.info("Pulling image", image=image)
        result = self.run("pull", image)
        if result.ok:
            return

        output = f"{result.stdout}\n{result.stderr}"
        if looks_like_auth_error(output):
            self._desktop_launcher()
            raise ImagePullAuthError(
                f"Authentication required to pull {image}",
                {"image": image, "stderr": result.stderr.strip()},
            )
        raise ImagePullError(
            f"Failed to pull image {image}",
            {"image": image, "stderr": result.stderr.strip()},
        )

    def _query_ids(self, *args: str) -> List[str]:
        result = self.run(*args)
        if not result.ok:
            raise ContainerOperationError(
                f"Docker query failed: {' '.join(args)}",
                {"stderr": result.stderr.strip()},
            )
        return result.lines

    def container_exists(self, name: str) -> bool:
        return bool(self._query_ids("ps", "-a", "--filter", f"name=^{name}$", "--format", "{{.ID}}"))

    def container_running(self, name: str) -> bool:
        return bool(self._query_ids("ps", "--filter", f"name=^{name}$", "--format", "{{.ID}}"))

    def volume_exists(self, name: str) -> bool:
        names = self._query_ids("volume", "ls", "--filter", f"name=^{name}$", "--format", "{{.Name}}")
        return name in names

    def create_volume(self, name: str) -> None:
        result = self.run("volume", "create", name)
        if not result.ok:
            raise ContainerCreateError(
                f"Failed to create volume {name}",
                {"volume": name, "stderr": result.stderr.strip()},
            )

    def remove_volume(self, name: str) -> bool:
        return self.run("volume", "rm", name).ok

    def run_container(self, spec: ContainerRunSpec) -> str:
        """Create and start a container.

        Returns:
            str: The new container ID

        Raises:
            ContainerCreateError: If docker run fails
        """
        result = self.run(*spec.to_args())
        if not result.ok:
            raise ContainerCreateError(
                f"Failed to create container {spec.name}",
                {"container": spec.name, "image": spec.image, "stderr": result.stderr.strip()},
            )
        return result.lines[-1] if result.lines else ""

    def _container_command(self, action: str, name: str) -> None:
        result = self.run(action, name)
        if not result.ok:
            raise ContainerOperationError(
                f"Failed to {action} container {name}",
                {"container": name, "stderr": result.stderr.strip()},
            )

    def start_container(self, name: str) -> None:
        self._container_command("start", name)

    def restart_container(self, name: str) -> None:
        self._container_command("restart", name)

    def stop_container(self, name: str) -> bool:
        return self.run("stop", name).ok

    def remove_container(self, name: str) -> bool:
        return self.run("rm", name).ok

    def exec_in_container(self, name: str, *command: str) -> CommandResult:
        """Run a command inside a running container.

        Raises:
            ContainerOperationError: If the command exits non-zero
        """
        result = self.run("exec", name, *command)
        if not result.ok:
            raise ContainerOperationError(
                f"Command failed in container {name}",
                {"container": name, "command": list(command), "stderr": result.stderr.strip()},
            )
        return result

    def logs(self, name: str, tail: int = 50) -> str:
        """Get the last lines of container output, empty on failure."""
        result = self.run("logs", "--tail", str(tail), name)
        if not result.ok:
            return ""
        # docker logs writes the container's stderr to our stderr
        return (result.stdout + result.stderr).strip()
