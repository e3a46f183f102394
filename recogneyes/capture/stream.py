"""Background frame acquisition from a webcam, a video file or a stream URL."""

from __future__ import annotations

import logging
import threading
import time
from enum import Enum

import cv2
import numpy as np

from recogneyes.config import CaptureConfig

logger = logging.getLogger(__name__)


class SourceKind(str, Enum):
    CAMERA = "camera"
    FILE = "file"
    STREAM = "stream"


def classify_source(source: str) -> tuple[SourceKind, int | str]:
    """Camera indices arrive as digit strings; URLs contain a scheme."""
    source = source.strip()
    if source.isdigit():
        return SourceKind.CAMERA, int(source)
    if "://" in source:
        return SourceKind.STREAM, source
    return SourceKind.FILE, source


class FrameGrabber:
    """Keeps the most recent frame of a capture source in memory.

    Cameras and streams are reopened after ``reconnect_delay`` when they
    stop delivering. Video files are read at their native frame rate when
    ``realtime_playback`` is set, and either rewind (``loop_video``) or
    mark the grabber finished when they run out.
    """

    def __init__(self, config: CaptureConfig):
        self._cfg = config
        self._kind, self._source = classify_source(str(config.source))

        self._cap: cv2.VideoCapture | None = None
        self._lock = threading.Lock()
        self._frame: np.ndarray | None = None
        self._frame_number = 0
        self._fps = 30.0

        self._running = False
        self._connected = False
        self._finished = False
        self._thread: threading.Thread | None = None

    @property
    def kind(self) -> SourceKind:
        return self._kind

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def finished(self) -> bool:
        """True once a non-looping video file has been read to the end."""
        return self._finished

    @property
    def fps(self) -> float:
        return self._fps

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._finished = False
        self._thread = threading.Thread(target=self._run, name="frame-grabber",
                                        daemon=True)
        self._thread.start()
        logger.info("Capturing from %s %s", self._kind.value, self._source)

    def stop(self) -> None:
        self._running = False
        if self._thread is not None:
            self._thread.join(timeout=5.0)
            self._thread = None
        self._close()
        logger.info("Capture stopped")

    def get_frame(self) -> tuple[np.ndarray | None, int]:
        """Latest frame and its sequence number, or (None, 0) before the first one."""
        with self._lock:
            if self._frame is None:
                return None, 0
            return self._frame.copy(), self._frame_number

    def _open(self) -> bool:
        self._close()
        try:
            cap = cv2.VideoCapture(self._source)
        except cv2.error:
            logger.exception("Could not create capture for %s", self._source)
            return False
        if not cap.isOpened():
            cap.release()
            logger.warning("Could not open %s %s", self._kind.value, self._source)
            return False

        if self._kind is SourceKind.CAMERA:
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, self._cfg.frame_width)
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self._cfg.frame_height)

        fps = cap.get(cv2.CAP_PROP_FPS)
        if fps and fps > 0:
            self._fps = fps
        self._cap = cap
        self._connected = True

        width = int(cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        height = int(cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        logger.info("Opened %s (%dx%d @ %.1f FPS)", self._source, width, height, self._fps)
        return True

    def _close(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None
        self._connected = False

    def _run(self) -> None:
        frame_period = 1.0 / self._fps
        last_frame_time = time.monotonic()

        while self._running:
            if not self._connected:
                if not self._open():
                    if self._kind is SourceKind.FILE:
                        self._finished = True
                        break
                    time.sleep(self._cfg.reconnect_delay)
                    continue
                frame_period = 1.0 / self._fps
                last_frame_time = time.monotonic()

            try:
                ok, frame = self._cap.read()
            except cv2.error:
                logger.exception("Capture read failed")
                ok, frame = False, None

            if ok and frame is not None:
                with self._lock:
                    self._frame = frame
                    self._frame_number += 1
                last_frame_time = time.monotonic()
                if self._kind is SourceKind.FILE and self._cfg.realtime_playback:
                    time.sleep(frame_period)
                continue

            if self._kind is SourceKind.FILE:
                if not self._end_of_file():
                    break
                continue

            if time.monotonic() - last_frame_time > self._cfg.grab_timeout:
                logger.warning("No frame for %.0fs from %s; reopening",
                               self._cfg.grab_timeout, self._source)
                self._close()
            else:
                time.sleep(0.01)

    def _end_of_file(self) -> bool:
        """Rewind a looping video. Returns False when capture should stop."""
        if self._cfg.loop_video and self._cap is not None:
            logger.debug("End of %s; rewinding", self._source)
            self._cap.set(cv2.CAP_PROP_POS_FRAMES, 0)
            return True
        logger.info("End of video %s", self._source)
        self._finished = True
        self._close()
        return False
