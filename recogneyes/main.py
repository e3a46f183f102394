"""Entry point: CLI argument parsing + pipeline / training commands."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

import cv2

from recogneyes.config import AppConfig, load_config
from recogneyes.errors import ConfigurationError, TrainingDataError
from recogneyes.pipeline import Pipeline
from recogneyes.processing.preprocessor import FaceNormalizer
from recogneyes.recognition.corpus import generate_image_lists
from recogneyes.recognition.store import RecognitionStore

WINDOW_NAME = "Recogneyes"


def setup_logging(log_dir: str, verbose: bool = False) -> None:
    """Configure logging to both console and file."""
    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    level = logging.DEBUG if verbose else logging.INFO
    fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

    logging.basicConfig(
        level=level,
        format=fmt,
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_path / "recogneyes.log"),
        ],
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Real-time face tracking and recognition"
    )
    parser.add_argument(
        "-c", "--config",
        default="config/default.yaml",
        help="Path to YAML config file (default: config/default.yaml)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    sub = parser.add_subparsers(dest="command")

    run = sub.add_parser("run", help="Track and recognize faces from a camera or video")
    run.add_argument(
        "-s", "--source",
        default=None,
        help="Camera index, video file or stream URL (overrides config)",
    )
    run.add_argument(
        "--headless",
        action="store_true",
        help="Do not open a preview window",
    )
    run.add_argument(
        "--force-retrain",
        action="store_true",
        help="Ignore the cached model and retrain on startup",
    )

    sub.add_parser("train", help="Retrain the recognition model and exit")
    sub.add_parser("generate-image-lists",
                   help="Write image_list.txt into every person folder")

    args = parser.parse_args(argv)
    if args.command is None:
        args.command = "run"
        args.source = None
        args.headless = False
        args.force_retrain = False
    return args


def run(config: AppConfig) -> int:
    logger = logging.getLogger(__name__)
    logger.info("Starting Recogneyes")
    logger.info("Video source: %s", config.capture.source)
    logger.info("Training data: %s", config.recognition.faces_dir)

    pipeline = Pipeline(config)
    pipeline.start()
    show = config.display.show_window

    try:
        while True:
            if pipeline.source_finished:
                logger.info("Video source exhausted")
                break
            if not show:
                time.sleep(0.5)
                continue
            frame = pipeline.display_frame
            if frame is not None:
                cv2.imshow(WINDOW_NAME, frame)
            key = cv2.waitKey(15) & 0xFF
            if key == ord("q"):
                break
            if key == ord("r"):
                pipeline.store.force_retrain()
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    finally:
        pipeline.stop()
        if show:
            cv2.destroyAllWindows()
        logger.info("Shutdown complete")
    return 0


def train(config: AppConfig) -> int:
    logger = logging.getLogger(__name__)
    store = RecognitionStore(config.recognition, FaceNormalizer(config.preprocessing))
    store.clear_cache()
    try:
        model = store.train()
    except (ConfigurationError, TrainingDataError) as exc:
        logger.error("Training failed: %s", exc)
        return 1
    logger.info("Trained %d people from %d images: %s",
                model.people_count, model.image_count,
                ", ".join(model.label_to_name.values()))
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    config = load_config(args.config)
    setup_logging(config.logging.log_dir, args.verbose)

    if args.command == "train":
        return train(config)

    if args.command == "generate-image-lists":
        try:
            counts = generate_image_lists(config.recognition.faces_dir,
                                          config.recognition.image_list_file)
        except ConfigurationError as exc:
            logging.getLogger(__name__).error("%s", exc)
            return 1
        for name, count in counts.items():
            print(f"{name}: {count} images")
        return 0

    # Apply CLI overrides
    if args.source:
        config.capture.source = args.source
    if args.headless:
        config.display.show_window = False
    if args.force_retrain:
        config.recognition.force_retrain_on_start = True

    return run(config)


if __name__ == "__main__":
    sys.exit(main())
