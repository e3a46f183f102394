"""Haar cascade face detection on a downsampled, equalized frame."""

from __future__ import annotations

import logging
from pathlib import Path

import cv2
import numpy as np

from recogneyes.config import DetectionConfig
from recogneyes.errors import ConfigurationError
from recogneyes.models import DetectionBox
from recogneyes.processing.preprocessor import to_gray

logger = logging.getLogger(__name__)

FRONTAL_CASCADE = "haarcascade_frontalface_default.xml"
PROFILE_CASCADE = "haarcascade_profileface.xml"


def _load_cascade(name: str) -> cv2.CascadeClassifier:
    path = Path(cv2.data.haarcascades) / name
    cascade = cv2.CascadeClassifier(str(path))
    if cascade.empty():
        raise ConfigurationError(f"Unable to load cascade: {path}")
    return cascade


def box_iou(a: DetectionBox, b: DetectionBox) -> float:
    """Intersection over union of two boxes."""
    left = max(a.x, b.x)
    top = max(a.y, b.y)
    right = min(a.x + a.w, b.x + b.w)
    bottom = min(a.y + a.h, b.y + b.h)
    if right <= left or bottom <= top:
        return 0.0
    inter = (right - left) * (bottom - top)
    union = a.w * a.h + b.w * b.h - inter
    return inter / union if union > 0 else 0.0


def merge_detections(frontal: list[DetectionBox], profile: list[DetectionBox],
                     iou_threshold: float = 0.3) -> list[DetectionBox]:
    """Append profile boxes that do not overlap any frontal box."""
    if not profile:
        return list(frontal)
    if not frontal:
        return list(profile)

    merged = list(frontal)
    for candidate in profile:
        if all(box_iou(candidate, f) <= iou_threshold for f in frontal):
            merged.append(candidate)
    return merged


class FaceDetector:
    """Detects faces and reports boxes in detection-resolution coordinates.

    The input frame is downsampled by ``downsample_factor``; the tracker
    scales boxes back up with the same factor.
    """

    def __init__(self, config: DetectionConfig):
        self._cfg = config
        self._frontal = _load_cascade(FRONTAL_CASCADE)
        self._profile: cv2.CascadeClassifier | None = None

        if config.detect_profile_faces:
            try:
                self._profile = _load_cascade(PROFILE_CASCADE)
            except ConfigurationError:
                logger.warning("Profile cascade unavailable; frontal faces only")

    @property
    def downsample_factor(self) -> int:
        return max(1, self._cfg.downsample_factor)

    def detect(self, frame: np.ndarray) -> list[DetectionBox]:
        """Return face boxes for one frame (BGR or grayscale)."""
        gray = to_gray(frame)
        factor = self.downsample_factor
        small = cv2.resize(gray, None, fx=1.0 / factor, fy=1.0 / factor,
                           interpolation=cv2.INTER_LINEAR)
        small = cv2.equalizeHist(small)

        frontal = self._run(
            self._frontal, small, self._cfg.scale_factor,
            self._cfg.min_size, self._cfg.max_size,
        )
        if self._profile is None:
            return frontal

        profile = self._run(
            self._profile, small, self._cfg.profile_scale_factor,
            self._cfg.profile_min_size, self._cfg.profile_max_size,
        )
        return merge_detections(frontal, profile, self._cfg.merge_iou_threshold)

    def _run(self, cascade: cv2.CascadeClassifier, image: np.ndarray,
             scale_factor: float, min_size: int, max_size: int) -> list[DetectionBox]:
        faces = cascade.detectMultiScale(
            image,
            scaleFactor=scale_factor,
            minNeighbors=self._cfg.min_neighbors,
            flags=cv2.CASCADE_SCALE_IMAGE,
            minSize=(min_size, min_size),
            maxSize=(max_size, max_size),
        )
        return [DetectionBox(int(x), int(y), int(w), int(h)) for (x, y, w, h) in faces]
