"""Face identity tracker: greedy centroid matching with confirmation and persistence."""

from __future__ import annotations

import logging
import math
from typing import Callable, Optional

import numpy as np
from scipy.spatial.distance import cdist

from recogneyes.config import DisplayConfig, TrackingConfig
from recogneyes.errors import CapacityExceeded
from recogneyes.models import (
    DetectionBox,
    FaceView,
    Rect,
    RecognitionResult,
    TrackedIdentity,
)
from recogneyes.processing.pool import IdentityPool

logger = logging.getLogger(__name__)

# Returns None when recognition could not run (e.g. model still training).
RecognizeFn = Callable[[TrackedIdentity], Optional[RecognitionResult]]

# Distances at or above this are classifier rejections, not worth printing.
_MAX_DISPLAYED_DISTANCE = 999.0


class IdentityTracker:
    """Turns per-cycle face boxes into a bounded set of persistent identities.

    Matching is greedy nearest-neighbour in detection order rather than an
    optimal assignment. With a handful of slow-moving faces this is stable;
    two faces crossing paths can swap ids.

    Not thread-safe: ``update`` and ``predict`` must be called from the
    single per-frame loop.
    """

    def __init__(self, config: TrackingConfig, frame_size: tuple[int, int],
                 downsample_factor: int = 1,
                 recognize: RecognizeFn | None = None,
                 display: DisplayConfig | None = None):
        self._cfg = config
        self._downsample = max(1, downsample_factor)
        self._recognize_fn = recognize
        self._display = display or DisplayConfig()
        self._frame_width, self._frame_height = frame_size

        self._pool = IdentityPool(config.max_identities)
        self._next_id = 1
        self._frame_index = 0

    @property
    def next_id(self) -> int:
        return self._next_id

    @property
    def created_count(self) -> int:
        """Number of identities created since construction."""
        return self._next_id - 1

    @property
    def tracked(self) -> list[TrackedIdentity]:
        """Every live identity, tentative ones included, in slot order."""
        return list(self._pool)

    def set_frame_size(self, width: int, height: int) -> None:
        self._frame_width = width
        self._frame_height = height

    def set_recognizer(self, recognize: RecognizeFn | None) -> None:
        self._recognize_fn = recognize

    def update(self, detections: list[DetectionBox],
               frame_index: int = 0) -> list[FaceView]:
        """Run one detection cycle.

        Returns views of all confirmed identities, including those
        persisting without a detection this cycle.
        """
        self._frame_index = frame_index
        existing = list(self._pool)
        rects = [self._to_full_res(d) for d in detections]

        matches, unmatched = self._match(existing, rects)

        for identity in existing:
            rect = matches.get(identity.slot)
            if rect is not None:
                self._update_identity(identity, rect)
            else:
                identity.frames_since_last_seen += 1
                identity.consecutive_detections = 0

        for rect in unmatched:
            self._register(rect)

        for identity in list(self._pool):
            if identity.frames_since_last_seen > self._cfg.persistence_frames:
                self._pool.release(identity.slot)
                logger.info("Identity %d lost (not seen for %d cycles)",
                            identity.identity_id, identity.frames_since_last_seen)

        return self.views()

    def predict(self) -> list[FaceView]:
        """Extrapolate smoothed positions on a skipped detection frame."""
        if self._cfg.motion_prediction:
            for identity in self._pool:
                vx, vy = identity.velocity
                if math.hypot(vx, vy) > 1e-4:
                    x, y = identity.smoothed_position
                    identity.smoothed_position = (x + vx, y + vy)
        return self.views()

    def views(self) -> list[FaceView]:
        """Read-only placements of confirmed identities for the presenter."""
        return [
            FaceView(
                identity_id=identity.identity_id,
                position=identity.smoothed_position,
                size=identity.smoothed_size,
                label=self.display_label(identity),
                rect=identity.last_known_rect,
            )
            for identity in self._pool
            if identity.confirmed
        ]

    def display_label(self, identity: TrackedIdentity) -> str:
        """Text shown on a face box: name (with distance), ID, or nothing."""
        display = self._display
        if display.show_recognized_names and identity.recognized_label:
            if (display.show_confidence
                    and identity.recognition_confidence < _MAX_DISPLAYED_DISTANCE):
                return (f"{identity.recognized_label} "
                        f"({identity.recognition_confidence:.0f})")
            return identity.recognized_label
        if display.show_ids:
            return f"ID:{identity.identity_id}"
        return ""

    def _match(self, existing: list[TrackedIdentity],
               rects: list[Rect]) -> tuple[dict[int, Rect], list[Rect]]:
        """Greedy assignment of detections to identities alive before this cycle.

        Returns (slot -> rect for matches, unmatched rects in input order).
        """
        if not existing or not rects:
            return {}, list(rects)

        det_centers = np.array([self._normalized_center(r) for r in rects])
        id_centers = np.array([
            self._normalized_center(i.last_known_rect) for i in existing
        ])
        dist_matrix = cdist(det_centers, id_centers)

        matches: dict[int, Rect] = {}
        unmatched: list[Rect] = []
        available = np.ones(len(existing), dtype=bool)

        for row, rect in enumerate(rects):
            candidates = np.where(available, dist_matrix[row], np.inf)
            col = int(np.argmin(candidates))
            if candidates[col] < self._cfg.match_distance:
                available[col] = False
                matches[existing[col].slot] = rect
            else:
                unmatched.append(rect)

        return matches, unmatched

    def _register(self, rect: Rect) -> None:
        """Create a new tentative identity for an unmatched detection."""
        position, size = self._placement(rect)
        try:
            identity = self._pool.allocate(
                self._next_id, rect, position, size, self._frame_index,
            )
        except CapacityExceeded:
            logger.debug("Dropping detection at %s: identity pool full", rect)
            return

        self._next_id += 1
        logger.debug("New identity %d in slot %d", identity.identity_id, identity.slot)
        if identity.consecutive_detections >= self._cfg.stable_detection_frames:
            self._confirm(identity)

    def _update_identity(self, identity: TrackedIdentity, rect: Rect) -> None:
        """Apply a matched detection to an existing identity."""
        prev_x, prev_y = self._normalized_center(identity.last_known_rect)
        new_x, new_y = self._normalized_center(rect)
        elapsed = max(1, self._frame_index - identity.last_seen_frame)
        identity.velocity = ((new_x - prev_x) / elapsed, (new_y - prev_y) / elapsed)

        identity.last_known_rect = rect
        identity.last_seen_frame = self._frame_index
        identity.frames_since_last_seen = 0
        identity.consecutive_detections += 1

        # Hysteresis: small movements keep the box locked in place.
        position, size = self._placement(rect)
        sx, sy = identity.smoothed_position
        if math.hypot(position[0] - sx, position[1] - sy) > self._cfg.movement_threshold:
            identity.smoothed_position = position
            identity.smoothed_size = size

        if not identity.confirmed:
            if identity.consecutive_detections >= self._cfg.stable_detection_frames:
                self._confirm(identity)
            return

        identity.cycles_since_recognition += 1
        interval = self._cfg.recognition_interval
        if not identity.has_recognition or (
                interval > 0 and identity.cycles_since_recognition >= interval):
            self._recognize(identity)

    def _confirm(self, identity: TrackedIdentity) -> None:
        identity.confirmed = True
        logger.info("Confirmed identity %d after %d consecutive detections",
                    identity.identity_id, identity.consecutive_detections)
        self._recognize(identity)

    def _recognize(self, identity: TrackedIdentity) -> None:
        if self._recognize_fn is None:
            return
        result = self._recognize_fn(identity)
        if result is None:
            return
        identity.recognized_label = result.label
        identity.recognition_confidence = result.distance
        identity.cycles_since_recognition = 0

    def _to_full_res(self, det: DetectionBox) -> Rect:
        f = self._downsample
        return Rect(det.x * f, det.y * f, det.w * f, det.h * f)

    def _normalized_center(self, rect: Rect) -> tuple[float, float]:
        cx, cy = rect.center
        return cx / self._frame_width, cy / self._frame_height

    def _placement(self, rect: Rect) -> tuple[tuple[float, float], tuple[float, float]]:
        """Normalized (center, size) for a full-resolution rectangle."""
        mult = self._cfg.box_size_multiplier
        size = (rect.w / self._frame_width * mult, rect.h / self._frame_height * mult)
        return self._normalized_center(rect), size
