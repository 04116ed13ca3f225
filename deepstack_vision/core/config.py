"""Configuration settings for the DeepStack vision client."""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings.

    These settings are loaded from environment variables with the following precedence:
    1. Environment variables
    2. .env file
    3. Default values

    They only provide defaults. Every call chain works on an explicit
    ``ServiceConfig`` built from these values and the caller's overrides.

    Attributes:
        CONTAINER_NAME: Name of the DeepStack Docker container
        VOLUME_NAME: Named Docker volume mounted at ``/datastore``
        CONFIDENCE_THRESHOLD: Default minimum confidence for predictions (0-1)
        USE_GPU: Run the GPU image; unset means auto-detect
    """
    model_config = SettingsConfigDict(
        case_sensitive=True,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_prefix="DEEPSTACK_",
    )

    # Core Settings
    PROJECT_NAME: str = "DeepStack Vision Client"
    VERSION: str = "0.1.0"
    ENVIRONMENT: str = "development"

    # Docker Settings
    DOCKER_EXECUTABLE: str = "docker"
    CONTAINER_NAME: str = "deepstack_face_recognition"
    VOLUME_NAME: str = "deepstack_face_data"
    IMAGE_NAME: str = "deepquestai/deepstack:latest"
    GPU_IMAGE_NAME: str = "deepquestai/deepstack:gpu"
    FACES_PATH: str = "/datastore"
    USE_GPU: Optional[bool] = None
    CONTAINER_SETTLE_DELAY: float = 5.0  # Seconds to wait after start/restart

    # Service Settings
    SERVICE_PORT: int = 5000
    HEALTH_CHECK_TIMEOUT: int = 60
    HEALTH_CHECK_INTERVAL: int = 3
    HEALTH_CHECK_PATH: str = "/"

    # Recognition Settings
    CONFIDENCE_THRESHOLD: float = 0.5

    # Batch Settings
    KNOWN_FACES_ROOT: str = "~/Pictures/Faces"
    IMAGE_DIRECTORIES: str = ""
    MAX_DIRECTORY_WORKERS: int = 5

    @property
    def image_directories(self) -> List[str]:
        """Get list of configured image directories."""
        return [d.strip() for d in self.IMAGE_DIRECTORIES.split(",") if d.strip()]

    # Optional settings with defaults
    LOG_LEVEL: str = "INFO"


settings = Settings()


class ServiceConfig(BaseModel):
    """Immutable description of one DeepStack container and its API."""
    model_config = ConfigDict(frozen=True)

    container_name: str = Field(..., min_length=1, description="Docker container name")
    volume_name: str = Field(..., min_length=1, description="Docker volume holding /datastore")
    image_name: str = Field(..., min_length=1, description="Docker image to run")
    service_port: int = Field(5000, ge=1, le=65535, description="Host port mapped to 5000")
    health_check_timeout: int = Field(60, ge=10, le=300, description="Seconds to wait for health")
    health_check_interval: int = Field(3, ge=1, le=10, description="Seconds between health probes")
    health_check_path: str = Field("/", description="Path probed with GET for health")
    use_gpu: bool = Field(False, description="Run the container with --gpus all")
    faces_path: str = Field("/datastore", description="Face datastore path inside the container")

    @property
    def api_base_url(self) -> str:
        """Base URL of the DeepStack REST API."""
        return f"http://127.0.0.1:{self.service_port}"

    @property
    def health_check_attempts(self) -> int:
        """Number of health probes that fit in the health check timeout."""
        return max(1, self.health_check_timeout // self.health_check_interval)

    @classmethod
    def from_settings(
        cls,
        base: Optional[Settings] = None,
        **overrides,
    ) -> "ServiceConfig":
        """Build a config from settings, letting non-None overrides win.

        Args:
            base: Settings to read defaults from (module settings if omitted)
            **overrides: Field values supplied by the caller

        Returns:
            ServiceConfig with the GPU or CPU image chosen from ``use_gpu``
            when no image name is given
        """
        base = base or settings
        values = {key: value for key, value in overrides.items() if value is not None}

        if "use_gpu" not in values:
            if base.USE_GPU is None:
                # Imported lazily, detection shells out to nvidia-smi
                from deepstack_vision.core.utils.gpu import has_capable_gpu
                values["use_gpu"] = has_capable_gpu()
            else:
                values["use_gpu"] = base.USE_GPU

        if "image_name" not in values:
            values["image_name"] = base.GPU_IMAGE_NAME if values["use_gpu"] else base.IMAGE_NAME

        values.setdefault("container_name", base.CONTAINER_NAME)
        values.setdefault("volume_name", base.VOLUME_NAME)
        values.setdefault("service_port", base.SERVICE_PORT)
        values.setdefault("health_check_timeout", base.HEALTH_CHECK_TIMEOUT)
        values.setdefault("health_check_interval", base.HEALTH_CHECK_INTERVAL)
        values.setdefault("health_check_path", base.HEALTH_CHECK_PATH)
        values.setdefault("faces_path", base.FACES_PATH)
        return cls(**values)
