#!/usr/bin/env python
"""
Command line interface for the DeepStack vision client.

Usage:
    deepstack-vision ensure --force
    deepstack-vision detect-objects street.jpg --confidence-threshold 0.5
    deepstack-vision register JohnDoe john1.jpg john2.jpg
    deepstack-vision update-images ~/Pictures/2024 --max-workers 5
"""
import argparse
import json
import sys
from typing import Any, Callable, List, Optional

from pydantic import BaseModel, ValidationError

from deepstack_vision.core.config import ServiceConfig
from deepstack_vision.core.exceptions import DeepStackError
from deepstack_vision.core.logging import get_logger, setup_logging
from deepstack_vision.services.batch_indexing import ImageMetadataIndexer
from deepstack_vision.services.container_lifecycle import ContainerLifecycleService
from deepstack_vision.services.face_registry import FaceRegistryService
from deepstack_vision.services.vision import VisionService

logger = get_logger(__name__)

# Replaced in tests
prompt: Callable[[str], str] = input


def build_config(args: argparse.Namespace) -> ServiceConfig:
    """Build the service config from common flags, falling back to settings."""
    return ServiceConfig.from_settings(
        container_name=args.container_name,
        volume_name=args.volume_name,
        image_name=args.image_name,
        service_port=args.service_port,
        health_check_timeout=args.health_check_timeout,
        health_check_interval=args.health_check_interval,
        use_gpu=args.use_gpu,
    )


def build_lifecycle(args: argparse.Namespace) -> ContainerLifecycleService:
    return ContainerLifecycleService()


def build_vision(args: argparse.Namespace) -> VisionService:
    return VisionService(
        build_config(args),
        lifecycle=build_lifecycle(args),
        confidence_threshold=getattr(args, "confidence_threshold", None),
        initialize_docker=not args.no_docker_initialize,
        force=args.force,
        strict_ready=args.strict,
    )


def emit(result: Any) -> None:
    """Print a command result as JSON on stdout."""
    if isinstance(result, BaseModel):
        print(result.model_dump_json(indent=2))
    else:
        print(json.dumps(result, indent=2))


def cmd_ensure(args: argparse.Namespace) -> Any:
    ready = build_lifecycle(args).ensure_ready(build_config(args), force=args.force, strict=args.strict)
    return {"ready": ready}


def cmd_recognize(args: argparse.Namespace) -> Any:
    return build_vision(args).recognize_faces(args.image_path)


def cmd_detect_objects(args: argparse.Namespace) -> Any:
    return build_vision(args).detect_objects(args.image_path)


def cmd_detect_scene(args: argparse.Namespace) -> Any:
    return build_vision(args).detect_scene(args.image_path)


def cmd_register(args: argparse.Namespace) -> Any:
    return build_vision(args).register_face(args.identifier, args.image_paths)


def cmd_register_all(args: argparse.Namespace) -> Any:
    return FaceRegistryService(build_vision(args)).register_known_faces(args.faces_directory)


def cmd_list_faces(args: argparse.Namespace) -> Any:
    return build_vision(args).list_faces()


def cmd_delete_face(args: argparse.Namespace) -> Any:
    return {"identifier": args.identifier, "deleted": build_vision(args).delete_face(args.identifier)}


def cmd_delete_all_faces(args: argparse.Namespace) -> Any:
    confirmed = args.force
    if not confirmed:
        answer = prompt("Delete ALL registered faces? Type 'yes' to continue: ")
        confirmed = answer.strip().lower() == "yes"
    if not confirmed:
        logger.warning("Delete all faces cancelled")
        return {"cancelled": True}
    # --force confirms the delete here, it must not also rebuild the container
    args.force = False
    return build_vision(args).delete_all_faces(confirmed=True, verify=not args.no_verify)


def cmd_compare(args: argparse.Namespace) -> Any:
    return build_vision(args).compare_faces(args.image_path1, args.image_path2)


def cmd_enhance(args: argparse.Namespace) -> Any:
    result = build_vision(args).enhance_image(args.image_path, args.output_path)
    if args.output_path:
        # The payload is already on disk, keep stdout readable
        result.base64 = ""
    return result


def cmd_update_images(args: argparse.Namespace) -> Any:
    indexer = ImageMetadataIndexer(
        build_vision(args),
        max_workers=args.max_workers,
        recursive=not args.no_recurse,
        overwrite=args.overwrite,
    )
    summary = indexer.update_all_images(args.directories or None)
    return summary


def _common_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    group = parser.add_argument_group("container options")
    group.add_argument("--container-name", help="Docker container name")
    group.add_argument("--volume-name", help="Docker volume for the face datastore")
    group.add_argument("--service-port", type=int, help="Host port for the DeepStack API (1-65535)")
    group.add_argument("--health-check-timeout", type=int, help="Seconds to wait for health (10-300)")
    group.add_argument("--health-check-interval", type=int, help="Seconds between health probes (1-10)")
    group.add_argument("--image-name", help="Docker image to run")
    group.add_argument("--force", "--force-rebuild", dest="force", action="store_true",
                       help="Remove container and volume and rebuild")
    group.add_argument("--use-gpu", action="store_true", default=None, help="Run the GPU image with --gpus all")
    group.add_argument("--no-docker-initialize", action="store_true",
                       help="Skip the container readiness check")
    group.add_argument("--strict", action="store_true",
                       help="Fail when the service does not become healthy")
    return parser


def _threshold_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("--confidence-threshold", type=float, help="Minimum confidence (0.0-1.0)")
    return parser


def build_parser() -> argparse.ArgumentParser:
    common = _common_parser()
    threshold = _threshold_parser()

    parser = argparse.ArgumentParser(description="Manage a DeepStack container and call its vision API")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sub = subparsers.add_parser("ensure", parents=[common], help="Make sure the container is running and healthy")
    sub.set_defaults(handler=cmd_ensure)

    sub = subparsers.add_parser("recognize", parents=[common, threshold], help="Recognize faces in an image")
    sub.add_argument("image_path", help="Path to the image file")
    sub.set_defaults(handler=cmd_recognize)

    sub = subparsers.add_parser("detect-objects", parents=[common, threshold], help="Detect objects in an image")
    sub.add_argument("image_path", help="Path to the image file")
    sub.set_defaults(handler=cmd_detect_objects)

    sub = subparsers.add_parser("detect-scene", parents=[common, threshold], help="Classify the scene of an image")
    sub.add_argument("image_path", help="Path to the image file")
    sub.set_defaults(handler=cmd_detect_scene)

    sub = subparsers.add_parser("register", parents=[common], help="Register images of a person")
    sub.add_argument("identifier", help="Identifier to register the face under")
    sub.add_argument("image_paths", nargs="+", help="One or more image files")
    sub.set_defaults(handler=cmd_register)

    sub = subparsers.add_parser("register-all", parents=[common], help="Register every person in a faces directory")
    sub.add_argument("faces_directory", nargs="?", help="Root with one sub-directory per person")
    sub.set_defaults(handler=cmd_register_all)

    sub = subparsers.add_parser("list-faces", parents=[common], help="List registered identifiers")
    sub.set_defaults(handler=cmd_list_faces)

    sub = subparsers.add_parser("delete-face", parents=[common], help="Delete a registered identifier")
    sub.add_argument("identifier", help="Identifier to delete")
    sub.set_defaults(handler=cmd_delete_face)

    sub = subparsers.add_parser("delete-all-faces", parents=[common], help="Delete every registered face")
    sub.add_argument("--no-verify", action="store_true", help="Skip listing faces afterwards")
    sub.set_defaults(handler=cmd_delete_all_faces)

    sub = subparsers.add_parser("compare", parents=[common], help="Compare the faces in two images")
    sub.add_argument("image_path1", help="First image")
    sub.add_argument("image_path2", help="Second image")
    sub.set_defaults(handler=cmd_compare)

    sub = subparsers.add_parser("enhance", parents=[common], help="Upscale an image 4x")
    sub.add_argument("image_path", help="Path to the image file")
    sub.add_argument("--output-path", help="Where to save the enhanced image")
    sub.set_defaults(handler=cmd_enhance)

    sub = subparsers.add_parser("update-images", parents=[common, threshold],
                                help="Write keyword and face metadata for image directories")
    sub.add_argument("directories", nargs="*", help="Directories to process (defaults to settings)")
    sub.add_argument("--max-workers", type=int, help="Concurrent directory workers")
    sub.add_argument("--no-recurse", action="store_true", help="Only process top-level images")
    sub.add_argument("--overwrite", action="store_true", help="Rewrite existing metadata files")
    sub.set_defaults(handler=cmd_update_images)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    setup_logging()

    try:
        result = args.handler(args)
    except ValidationError as e:
        logger.error("Invalid configuration", error=str(e))
        sys.exit(1)
    except DeepStackError as e:
        logger.error("Command failed", command=args.command, error=str(e), details=e.details)
        sys.exit(1)

    emit(result)


if __name__ == "__main__":
    main()
