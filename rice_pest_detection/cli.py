"""Command-line entry point for the rice pest detection system."""

import argparse
import asyncio
import json
import sys
from typing import List, Optional

from .config_manager import ConfigManager
from .scan_controller import ScanController
from .services.error_handler import PestDetectionError
from .services.frame_capture import OpenCVFrameSource, StillImageSource
from .models.detection import DetectionEvent
from .logging_config import get_logger, setup_logging

logger = get_logger("cli")


def parse_args(argv: List[str]) -> argparse.Namespace:
    """Parse command-line arguments.

    Args:
        argv: Raw command-line arguments.

    Returns:
        Parsed arguments namespace.
    """
    parser = argparse.ArgumentParser(
        prog="rice-pest-detection",
        description="Detect rice field pests from a camera, video or still image."
    )
    parser.add_argument("--config", type=str, default=None, help="Path to the JSON config file")
    parser.add_argument("--log-level", type=str, default="INFO")
    parser.add_argument("--log-dir", type=str, default="logs")
    subparsers = parser.add_subparsers(dest="command", required=True)

    scan = subparsers.add_parser("scan", help="Scan continuously and print detections")
    scan.add_argument("--source", type=str, default=None,
                      help="Camera index, video file or stream URL (defaults to config)")
    scan.add_argument("--image", type=str, default=None, help="Scan a fixed still image instead")
    scan.add_argument("--duration", type=float, default=None,
                      help="Stop after this many seconds (runs until interrupted otherwise)")

    analyze = subparsers.add_parser("analyze", help="Classify a single image")
    analyze.add_argument("image", type=str, help="Path to the image file")

    serve = subparsers.add_parser("serve", help="Run the JSON API")
    serve.add_argument("--host", type=str, default="0.0.0.0")
    serve.add_argument("--port", type=int, default=5000)

    return parser.parse_args(argv)


def _print_event(event: DetectionEvent) -> None:
    print(json.dumps(event.to_dict()), flush=True)


async def _scan(controller: ScanController, args: argparse.Namespace) -> int:
    if args.image:
        source = StillImageSource(args.image)
    elif args.source is not None:
        source = OpenCVFrameSource(args.source, controller.config.camera_resolution)
    else:
        source = None

    controller.add_observer(_print_event)
    try:
        controller.start_continuous_scanning(source)
    except PestDetectionError as e:
        logger.error(f"Unable to start scanning: {e}")
        return 1

    try:
        if args.duration is not None:
            await asyncio.sleep(args.duration)
        else:
            await asyncio.Event().wait()
    finally:
        await controller.shutdown()
    return 0


async def _analyze(controller: ScanController, image_path: str) -> int:
    try:
        event = await controller.analyze_single_image(image_path)
    except PestDetectionError as e:
        logger.error(f"Analysis failed: {e}")
        return 1
    finally:
        await controller.shutdown()
    print(json.dumps(event.to_dict(), indent=2))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Application entry point.

    Args:
        argv: Optional list of command-line arguments.

    Returns:
        Process exit code.
    """
    if argv is None:
        argv = sys.argv[1:]
    args = parse_args(argv)

    setup_logging(args.log_level, args.log_dir)
    config_manager = ConfigManager(args.config)
    errors = config_manager.get_validation_errors()
    if errors:
        for error in errors:
            logger.error(f"Invalid configuration: {error}")
        return 2

    if args.command == "serve":
        from .web.app import PestDetectionWebApp

        web_app = PestDetectionWebApp(ScanController(config_manager=config_manager))
        try:
            web_app.run(host=args.host, port=args.port)
        finally:
            web_app.shutdown()
        return 0

    controller = ScanController(config_manager=config_manager)
    try:
        if args.command == "scan":
            return asyncio.run(_scan(controller, args))
        return asyncio.run(_analyze(controller, args.image))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
