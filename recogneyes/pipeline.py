"""Pipeline orchestrator: capture → detect → track → recognize → overlay."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Optional

import cv2
import numpy as np

from recogneyes.capture.stream import FrameGrabber
from recogneyes.config import AppConfig
from recogneyes.models import FaceView, RecognitionResult, TrackedIdentity
from recogneyes.processing.detector import FaceDetector
from recogneyes.processing.preprocessor import FaceNormalizer, to_gray
from recogneyes.processing.tracker import IdentityTracker
from recogneyes.recognition.matcher import RecognitionMatcher
from recogneyes.recognition.store import RecognitionStore

logger = logging.getLogger(__name__)

BOX_COLOR = (0, 255, 0)
HUD_COLOR = (0, 255, 0)


class Pipeline:
    """Main processing pipeline orchestrator.

    The grabber and the processing loop each run on their own thread; the
    tracker is only ever touched from the processing loop. Recognition
    training runs on the store's background thread and the tracker keeps
    working (without names) until the store is ready.
    """

    def __init__(self, config: AppConfig,
                 detector: FaceDetector | None = None,
                 store: RecognitionStore | None = None,
                 grabber: FrameGrabber | None = None):
        self._config = config
        self._running = False
        self._thread: threading.Thread | None = None

        # Components
        self._grabber = grabber or FrameGrabber(config.capture)
        self._detector = detector or FaceDetector(config.detection)
        self._normalizer = FaceNormalizer(config.preprocessing)
        self._store = store or RecognitionStore(config.recognition, self._normalizer)
        self._matcher = RecognitionMatcher(self._store, self._normalizer,
                                           config.recognition)
        self._frame_size = (config.capture.frame_width, config.capture.frame_height)
        recognize = (self._recognize_identity
                     if config.recognition.enabled and config.display.show_recognized_names
                     else None)
        self._tracker = IdentityTracker(
            config.tracking,
            frame_size=self._frame_size,
            downsample_factor=config.detection.downsample_factor,
            recognize=recognize,
            display=config.display,
        )

        # Grayscale of the frame the last detection cycle ran on
        self._current_gray: Optional[np.ndarray] = None

        # Display frame (with overlays)
        self._display_frame: np.ndarray | None = None
        self._display_lock = threading.Lock()

        # Stats
        self._frame_count = 0
        self._fps_actual = 0.0
        self._views: list[FaceView] = []

    @property
    def display_frame(self) -> np.ndarray | None:
        with self._display_lock:
            if self._display_frame is not None:
                return self._display_frame.copy()
            return None

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "fps": round(self._fps_actual, 1),
            "frame_count": self._frame_count,
            "visible_identities": len(self._views),
            "tracked_identities": len(self._tracker.tracked),
            "persisting_identities": sum(
                1 for identity in self._tracker.tracked if identity.is_persisting
            ),
            "connected": self._grabber.is_connected,
            "recognition_state": self._store.state.value,
            "people_trained": self._store.people_trained,
            "images_trained": self._store.images_trained,
        }

    @property
    def source_finished(self) -> bool:
        return self._grabber.finished

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def tracker(self) -> IdentityTracker:
        return self._tracker

    @property
    def store(self) -> RecognitionStore:
        return self._store

    @property
    def matcher(self) -> RecognitionMatcher:
        return self._matcher

    def start(self) -> None:
        """Start recognition loading, the grabber and the processing thread."""
        if self._running:
            return
        rec = self._config.recognition
        if rec.enabled and rec.auto_train_on_start:
            self._store.start(force_retrain=rec.force_retrain_on_start)
        self._running = True
        self._grabber.start()
        self._thread = threading.Thread(target=self._process_loop, daemon=True)
        self._thread.start()
        logger.info("Pipeline started")

    def stop(self) -> None:
        """Stop the pipeline gracefully."""
        self._running = False
        if self._thread is not None:
            self._thread.join(timeout=10.0)
            self._thread = None
        self._grabber.stop()
        logger.info("Pipeline stopped")

    def process_frame(self, frame: np.ndarray, frame_index: int) -> list[FaceView]:
        """Run one frame through detection (or prediction) and tracking."""
        height, width = frame.shape[:2]
        if (width, height) != self._frame_size:
            self._frame_size = (width, height)
            self._tracker.set_frame_size(width, height)

        self._frame_count += 1
        skip = max(1, self._config.detection.detection_frame_skip)
        if self._frame_count % skip == 0:
            self._current_gray = to_gray(frame)
            detections = self._detector.detect(self._current_gray)
            self._views = self._tracker.update(detections, frame_index)
        else:
            self._views = self._tracker.predict()
        return self._views

    def _process_loop(self) -> None:
        """Main processing loop running in a background thread."""
        fps_timer = time.monotonic()
        fps_frame_count = 0
        last_frame_num = -1

        while self._running:
            frame, frame_num = self._grabber.get_frame()
            if frame is None or frame_num == last_frame_num:
                time.sleep(0.005)
                continue
            last_frame_num = frame_num

            try:
                views = self.process_frame(frame, frame_num)
            except cv2.error:
                logger.exception("Error processing frame %d", frame_num)
                continue

            annotated = self._draw_overlays(frame, views)
            with self._display_lock:
                self._display_frame = annotated

            # FPS calculation
            fps_frame_count += 1
            elapsed = time.monotonic() - fps_timer
            if elapsed >= 1.0:
                self._fps_actual = fps_frame_count / elapsed
                fps_frame_count = 0
                fps_timer = time.monotonic()

    def _recognize_identity(self, identity: TrackedIdentity) -> RecognitionResult | None:
        """Crop the identity's face from the current frame and match it.

        Returns None (no attempt) until the store is ready.
        """
        if self._current_gray is None or not self._store.is_ready():
            return None

        height, width = self._current_gray.shape[:2]
        rect = identity.last_known_rect.clamp(width, height)
        if rect.w <= 0 or rect.h <= 0:
            logger.warning("Invalid face rect for recognition: %s", rect)
            return None

        crop = self._current_gray[rect.y:rect.y + rect.h, rect.x:rect.x + rect.w]
        result = self._matcher.recognize(crop)
        logger.info("Identity %d recognized as %s (distance %.1f)",
                    identity.identity_id, result.label, result.distance)
        return result

    def _draw_overlays(self, frame: np.ndarray, views: list[FaceView]) -> np.ndarray:
        """Draw face boxes and labels at their smoothed placements."""
        annotated = frame.copy()
        if annotated.ndim == 2:
            annotated = cv2.cvtColor(annotated, cv2.COLOR_GRAY2BGR)
        height, width = annotated.shape[:2]

        for view in views:
            cx, cy = view.position
            bw, bh = view.size
            x1 = int((cx - bw / 2) * width)
            y1 = int((cy - bh / 2) * height)
            x2 = int((cx + bw / 2) * width)
            y2 = int((cy + bh / 2) * height)
            cv2.rectangle(annotated, (x1, y1), (x2, y2), BOX_COLOR, 2)
            if view.label:
                cv2.putText(annotated, view.label, (x1, max(15, y1 - 8)),
                            cv2.FONT_HERSHEY_SIMPLEX, 0.6, BOX_COLOR, 2)

        # HUD overlay
        cv2.putText(annotated, f"FPS: {self._fps_actual:.1f}",
                    (10, 20), cv2.FONT_HERSHEY_SIMPLEX, 0.5, HUD_COLOR, 1)
        cv2.putText(annotated, f"Faces: {len(views)}",
                    (10, 40), cv2.FONT_HERSHEY_SIMPLEX, 0.5, HUD_COLOR, 1)
        cv2.putText(annotated, f"Recognition: {self._store.state.value}",
                    (10, 60), cv2.FONT_HERSHEY_SIMPLEX, 0.5, HUD_COLOR, 1)
        return annotated
