"""LBPH face classifier behind a narrow train/predict/persist interface."""

from __future__ import annotations

import sys
from typing import Protocol

import cv2
import numpy as np

from recogneyes.config import RecognitionConfig


class FaceClassifier(Protocol):
    """What the recognition store needs from a classifier.

    ``predict`` returns (label, distance) where lower distance is a better
    match.
    """

    def train(self, images: list[np.ndarray], labels: list[int]) -> None: ...

    def predict(self, image: np.ndarray) -> tuple[int, float]: ...

    def write(self, path: str) -> None: ...

    def read(self, path: str) -> None: ...


class LBPHClassifier:
    """OpenCV Local Binary Patterns Histograms recognizer (opencv-contrib)."""

    def __init__(self, radius: int = 1, neighbors: int = 8,
                 grid_x: int = 8, grid_y: int = 8):
        # Thresholding is done by the matcher, so the built-in one is disabled.
        self._model = cv2.face.LBPHFaceRecognizer_create(
            radius=radius,
            neighbors=neighbors,
            grid_x=grid_x,
            grid_y=grid_y,
            threshold=sys.float_info.max,
        )

    @classmethod
    def from_config(cls, config: RecognitionConfig) -> LBPHClassifier:
        return cls(
            radius=config.lbph_radius,
            neighbors=config.lbph_neighbors,
            grid_x=config.lbph_grid_x,
            grid_y=config.lbph_grid_y,
        )

    def train(self, images: list[np.ndarray], labels: list[int]) -> None:
        self._model.train(images, np.array(labels, dtype=np.int32))

    def predict(self, image: np.ndarray) -> tuple[int, float]:
        label, distance = self._model.predict(image)
        return int(label), float(distance)

    def write(self, path: str) -> None:
        self._model.write(str(path))

    def read(self, path: str) -> None:
        self._model.read(str(path))
