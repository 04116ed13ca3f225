"""
Batch update of image metadata across directories.

Each directory is handled by one worker of a bounded pool. Inside a
directory two sub-tasks run side by side and are joined before the worker
moves on:

    - keywords: object labels and scene written to ``<image>.keywords.json``
    - faces: recognized identifiers written to ``<image>.people.json``

Per-image failures are logged and counted; they never abort the batch.
"""
import concurrent.futures
import json
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import psutil
from pydantic import BaseModel, Field
from tqdm import tqdm

from deepstack_vision.core.config import settings
from deepstack_vision.core.exceptions import DeepStackError, LocalValidationError
from deepstack_vision.core.logging import get_logger
from deepstack_vision.core.utils.image import expand_path, is_supported_image
from deepstack_vision.services.vision import VisionService

logger = get_logger(__name__)

KEYWORDS_SUFFIX = ".keywords.json"
PEOPLE_SUFFIX = ".people.json"


class DirectorySummary(BaseModel):
    """Outcome of updating one directory."""
    directory: str
    images: int = 0
    keywords_written: int = 0
    faces_written: int = 0
    failures: int = 0


class BatchSummary(BaseModel):
    """Outcome of a batch update."""
    directories: List[DirectorySummary] = Field(default_factory=list)
    failed_directories: Dict[str, str] = Field(default_factory=dict)
    total_time: float = 0.0

    @property
    def total_images(self) -> int:
        return sum(d.images for d in self.directories)

    @property
    def total_failures(self) -> int:
        return sum(d.failures for d in self.directories)


def log_system_resources(context: str = "") -> Dict[str, Any]:
    """Log current system resource utilization.

    Args:
        context: Optional string to provide context for the resource log

    Returns:
        Dict containing resource utilization metrics
    """
    memory = psutil.virtual_memory()
    process = psutil.Process()
    metrics = {
        "cpu_percent": psutil.cpu_percent(interval=None),
        "memory_percent": memory.percent,
        "memory_available_mb": memory.available / (1024 * 1024),
        "process_memory_mb": process.memory_info().rss / (1024 * 1024),
    }
    logger.debug("System resources", context=context, **metrics)
    return metrics


def write_sidecar(path: Path, data: Dict[str, Any]) -> None:
    path.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")


class ImageMetadataIndexer:
    """Fans keyword and face metadata extraction across image directories.

    Example:
        ```python
        indexer = ImageMetadataIndexer(VisionService(config), max_workers=5)
        summary = indexer.update_all_images(["~/Pictures/2024"])
        ```
    """

    def __init__(
        self,
        vision: VisionService,
        max_workers: Optional[int] = None,
        recursive: bool = True,
        overwrite: bool = False,
        show_progress: bool = True,
    ) -> None:
        """Initialize the indexer.

        Args:
            vision: Adapter used for detection and recognition calls
            max_workers: Concurrent directory workers (defaults to settings)
            recursive: Include images in sub-directories
            overwrite: Rewrite sidecar files that already exist
            show_progress: Display a tqdm progress bar
        """
        self.vision = vision
        self.max_workers = max_workers or settings.MAX_DIRECTORY_WORKERS
        self.recursive = recursive
        self.overwrite = overwrite
        self.show_progress = show_progress

    def list_images(self, directory: Path) -> List[Path]:
        """
        List supported images in a directory.

        Raises:
            LocalValidationError: If the directory does not exist
        """
        if not directory.is_dir():
            raise LocalValidationError(f"Image directory not found: {directory}", {"path": str(directory)})
        pattern = "**/*" if self.recursive else "*"
        return sorted(p for p in directory.glob(pattern) if p.is_file() and is_supported_image(p))

    def update_all_images(self, directories: Optional[Sequence[Union[str, Path]]] = None) -> BatchSummary:
        """Update keyword and face metadata for every image in ``directories``.

        Args:
            directories: Directories to process (defaults to settings)

        Returns:
            BatchSummary with per-directory counts

        Raises:
            LocalValidationError: If no directories were given or configured
        """
        paths = [expand_path(d) for d in (directories or settings.image_directories)]
        if not paths:
            raise LocalValidationError("No image directories given or configured")

        start_time = time.time()
        self.vision.ensure_service()
        log_system_resources("batch start")

        summary = BatchSummary()
        workers = min(self.max_workers, len(paths))
        logger.info("Updating image directories", directories=len(paths), workers=workers)

        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as executor:
            future_to_dir = {
                executor.submit(self._update_directory, path): path for path in paths
            }
            completed = concurrent.futures.as_completed(future_to_dir)
            for future in tqdm(completed, total=len(future_to_dir), desc="Updating images", disable=not self.show_progress):
                directory = future_to_dir[future]
                try:
                    summary.directories.append(future.result())
                except (DeepStackError, OSError) as e:
                    logger.error("Directory update failed", directory=str(directory), error=str(e))
                    summary.failed_directories[str(directory)] = str(e)

        summary.total_time = time.time() - start_time
        log_system_resources("batch end")
        logger.info(
            "Image directories updated",
            images=summary.total_images,
            failures=summary.total_failures,
            failed_directories=len(summary.failed_directories),
            total_time=f"{summary.total_time:.2f}s",
        )
        return summary

    def _update_directory(self, directory: Path) -> DirectorySummary:
        images = self.list_images(directory)
        logger.debug("Updating directory", directory=str(directory), images=len(images))

        # requests sessions are not shared across threads, each sub-task gets its own client
        with concurrent.futures.ThreadPoolExecutor(max_workers=2) as executor:
            keywords_future = executor.submit(
                self._update_keywords, self.vision.without_initialization(own_client=True), images
            )
            faces_future = executor.submit(
                self._update_faces, self.vision.without_initialization(own_client=True), images
            )
            keywords_written, keyword_failures = keywords_future.result()
            faces_written, face_failures = faces_future.result()

        return DirectorySummary(
            directory=str(directory),
            images=len(images),
            keywords_written=keywords_written,
            faces_written=faces_written,
            failures=keyword_failures + face_failures,
        )

    def _needs_update(self, sidecar: Path) -> bool:
        return self.overwrite or not sidecar.exists()

    def _update_keywords(self, vision: VisionService, images: List[Path]) -> Tuple[int, int]:
        written = failures = 0
        for image in images:
            sidecar = image.with_name(image.name + KEYWORDS_SUFFIX)
            if not self._needs_update(sidecar):
                continue
            try:
                objects = vision.detect_objects(image)
                scene = vision.detect_scene(image)
                keywords = set(objects.label_counts)
                if scene.success:
                    keywords.add(scene.scene)
                write_sidecar(sidecar, {
                    "keywords": sorted(keywords),
                    "objects": objects.label_counts,
                    "scene": scene.scene if scene.success else None,
                })
                written += 1
            except (DeepStackError, OSError) as e:
                logger.warning("Keyword extraction failed", image=str(image), error=str(e))
                failures += 1
        return written, failures

    def _update_faces(self, vision: VisionService, images: List[Path]) -> Tuple[int, int]:
        written = failures = 0
        for image in images:
            sidecar = image.with_name(image.name + PEOPLE_SUFFIX)
            if not self._needs_update(sidecar):
                continue
            try:
                result = vision.recognize_faces(image)
                people = sorted({face.userid for face in result.faces if face.userid != "unknown"})
                write_sidecar(sidecar, {"faces": people, "count": len(people)})
                written += 1
            except (DeepStackError, OSError) as e:
                logger.warning("Face indexing failed", image=str(image), error=str(e))
                failures += 1
        return written, failures
