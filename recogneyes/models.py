"""Shared data models for the tracking and recognition pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, NamedTuple, Optional

UNKNOWN_LABEL = "unknown"


class StoreState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    VALIDATING = "validating"
    TRAINING = "training"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class DetectionBox:
    """A face box from one detection cycle, in detection-resolution pixels."""
    x: int
    y: int
    w: int
    h: int


@dataclass(frozen=True)
class Rect:
    """Axis-aligned rectangle in full-resolution pixels."""
    x: int
    y: int
    w: int
    h: int

    @property
    def center(self) -> tuple[float, float]:
        return self.x + self.w / 2.0, self.y + self.h / 2.0

    def clamp(self, width: int, height: int) -> Rect:
        """Clip the rectangle to an image of the given size."""
        x = max(0, self.x)
        y = max(0, self.y)
        w = min(self.w, width - x)
        h = min(self.h, height - y)
        return Rect(x, y, w, h)


class RecognitionResult(NamedTuple):
    label: str
    distance: float


@dataclass
class TrackedIdentity:
    """A persistent face identity living in one pool slot."""
    identity_id: int
    slot: int
    last_known_rect: Rect
    smoothed_position: tuple[float, float]   # normalized center, y down
    smoothed_size: tuple[float, float]       # normalized width/height
    velocity: tuple[float, float] = (0.0, 0.0)
    consecutive_detections: int = 1
    frames_since_last_seen: int = 0
    confirmed: bool = False
    recognized_label: Optional[str] = None
    recognition_confidence: float = 0.0
    cycles_since_recognition: int = 0
    first_seen_frame: int = 0
    last_seen_frame: int = 0

    @property
    def is_tentative(self) -> bool:
        return not self.confirmed

    @property
    def is_persisting(self) -> bool:
        return self.confirmed and self.frames_since_last_seen > 0

    @property
    def has_recognition(self) -> bool:
        return self.recognized_label is not None


@dataclass(frozen=True)
class FaceView:
    """Read-only placement handed to the presenter."""
    identity_id: int
    position: tuple[float, float]
    size: tuple[float, float]
    label: str
    rect: Rect


@dataclass
class TrainedModel:
    """A classifier together with the label mapping built alongside it."""
    classifier: Any
    label_to_name: dict[int, str]
    corpus_hash: Optional[str] = None
    image_count: int = 0
    run_id: int = 0

    @property
    def people_count(self) -> int:
        return len(set(self.label_to_name))
