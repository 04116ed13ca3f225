"""Docker CLI integration."""
from .cli import CommandResult, ContainerRunSpec, DockerCli, launch_docker_desktop

__all__ = ["CommandResult", "ContainerRunSpec", "DockerCli", "launch_docker_desktop"]
