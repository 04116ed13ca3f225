"""GPU capability detection."""
import subprocess

from deepstack_vision.core.logging import get_logger

logger = get_logger(__name__)

# 4 GiB expressed in MiB, the unit nvidia-smi reports
REQUIRED_GPU_MEMORY_MB = 4 * 1024


def has_capable_gpu(required_memory_mb: int = REQUIRED_GPU_MEMORY_MB) -> bool:
    """Check whether at least one GPU with enough memory is present.

    Queries ``nvidia-smi`` for the total memory of every GPU. Any failure
    to run the tool means no usable GPU.

    Args:
        required_memory_mb: Minimum total memory in MiB

    Returns:
        bool: True if a capable GPU was detected
    """
    try:
        result = subprocess.run(
            ["nvidia-smi", "--query-gpu=memory.total", "--format=csv,noheader,nounits"],
            capture_output=True,
            text=True,
            timeout=10,
        )
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug("GPU detection unavailable", error=str(e))
        return False

    if result.returncode != 0:
        logger.debug("nvidia-smi failed", stderr=result.stderr.strip())
        return False

    capable = 0
    for line in result.stdout.splitlines():
        try:
            if int(float(line.strip())) >= required_memory_mb:
                capable += 1
        except ValueError:
            continue

    logger.debug("GPU detection completed", capable_gpus=capable)
    return capable > 0
