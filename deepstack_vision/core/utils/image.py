"""
Image file utility functions.
"""
import io
import os
from pathlib import Path
from typing import Tuple, Union

from PIL import Image, UnidentifiedImageError

from deepstack_vision.core.exceptions import InvalidImageError

SUPPORTED_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif")

MIME_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
}


def expand_path(path: Union[str, Path]) -> Path:
    """Expand ``~`` and environment variables and make the path absolute."""
    expanded = os.path.expandvars(os.path.expanduser(str(path)))
    return Path(expanded).resolve()


def is_supported_image(path: Union[str, Path]) -> bool:
    """Check whether a file name carries a supported image extension."""
    return Path(path).suffix.lower() in SUPPORTED_EXTENSIONS


def validate_image_path(path: Union[str, Path]) -> Path:
    """Validate that a path points at a readable image of a supported format.

    Args:
        path: Path as given by the caller (may contain ``~`` or env vars)

    Returns:
        Path: The absolute, validated path

    Raises:
        InvalidImageError: If the file is missing, unreadable, has an
            unsupported extension or cannot be identified as an image
    """
    image_path = expand_path(path)

    if not image_path.is_file():
        raise InvalidImageError(f"Image file not found: {image_path}", {"path": str(image_path)})

    if not is_supported_image(image_path):
        raise InvalidImageError(
            "Invalid image format. Supported formats: png, jpg, jpeg, gif",
            {"path": str(image_path)},
        )

    if not os.access(image_path, os.R_OK):
        raise InvalidImageError(f"Image file is not readable: {image_path}", {"path": str(image_path)})

    try:
        with Image.open(image_path) as img:
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise InvalidImageError(
            f"File is not a valid image: {image_path}",
            {"path": str(image_path), "error": str(e)},
        )

    return image_path


def mime_type_for(path: Union[str, Path]) -> str:
    """Get the upload content type for an image path."""
    return MIME_TYPES.get(Path(path).suffix.lower(), "application/octet-stream")


def image_dimensions(image_bytes: bytes) -> Tuple[int, int]:
    """Read (width, height) from encoded image bytes.

    Raises:
        ValueError: If the bytes cannot be decoded as an image
    """
    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            return img.size
    except (UnidentifiedImageError, OSError) as e:
        raise ValueError(f"Failed to decode image bytes: {e}")
