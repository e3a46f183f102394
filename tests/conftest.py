"""Shared test fixtures: tracking configs, on-disk face corpora, a fake classifier."""

from __future__ import annotations

import json
from pathlib import Path

import cv2
import numpy as np
import pytest

from recogneyes.config import (
    DisplayConfig,
    PreprocessingConfig,
    RecognitionConfig,
    TrackingConfig,
)
from recogneyes.models import DetectionBox
from recogneyes.processing.preprocessor import FaceNormalizer


@pytest.fixture
def tracking_config() -> TrackingConfig:
    return TrackingConfig(
        max_identities=3,
        match_distance=0.2,
        stable_detection_frames=3,
        persistence_frames=5,
        movement_threshold=0.05,
        box_size_multiplier=1.0,
        recognition_interval=4,
    )


@pytest.fixture
def display_config() -> DisplayConfig:
    return DisplayConfig(show_ids=False, show_recognized_names=True,
                         show_confidence=True)


@pytest.fixture
def normalizer() -> FaceNormalizer:
    return FaceNormalizer(PreprocessingConfig())


@pytest.fixture
def recognition_config(tmp_path: Path) -> RecognitionConfig:
    return RecognitionConfig(
        faces_dir=str(tmp_path / "faces"),
        cache_dir=str(tmp_path / "cache"),
        max_distance=120.0,
    )


@pytest.fixture
def classifier_factory() -> FakeClassifierFactory:
    return FakeClassifierFactory()


class FakeClassifier:
    """Stands in for the LBPH recognizer; prediction is set by the test."""

    def __init__(self, prediction: tuple[int, float] = (0, 50.0)):
        self.prediction = prediction
        self.fit_count = 0
        self.trained_labels: list[int] = []
        self.trained_shapes: set[tuple[int, ...]] = set()
        self.last_query_shape: tuple[int, ...] | None = None

    def train(self, images: list[np.ndarray], labels: list[int]) -> None:
        self.fit_count += 1
        self.trained_labels = list(labels)
        self.trained_shapes = {img.shape for img in images}

    def predict(self, image: np.ndarray) -> tuple[int, float]:
        self.last_query_shape = image.shape
        return self.prediction

    def write(self, path: str) -> None:
        Path(path).write_text(json.dumps({"labels": self.trained_labels}))

    def read(self, path: str) -> None:
        data = json.loads(Path(path).read_text())
        self.trained_labels = data["labels"]


class FakeClassifierFactory:
    """Creates FakeClassifiers and remembers them for assertions."""

    def __init__(self):
        self.created: list[FakeClassifier] = []

    def __call__(self) -> FakeClassifier:
        classifier = FakeClassifier()
        self.created.append(classifier)
        return classifier

    @property
    def fit_count(self) -> int:
        return sum(c.fit_count for c in self.created)


def make_box(cx: int, cy: int, size: int = 100) -> DetectionBox:
    """A square detection box centred on (cx, cy)."""
    return DetectionBox(x=cx - size // 2, y=cy - size // 2, w=size, h=size)


def write_face_image(path: Path, seed: int, size: int = 64) -> None:
    """Write a random grayscale PNG standing in for a face photo."""
    rng = np.random.default_rng(seed)
    image = rng.integers(0, 256, (size, size), dtype=np.uint8)
    cv2.imwrite(str(path), image)


def make_corpus(root: Path, people: dict[str, int],
                header: str = "# Known people\n") -> Path:
    """Create faces/manifest.txt plus an image folder and list per person."""
    root.mkdir(parents=True, exist_ok=True)
    (root / "manifest.txt").write_text(header + "\n".join(people) + "\n")
    for i, (name, count) in enumerate(people.items()):
        person_dir = root / name
        person_dir.mkdir(exist_ok=True)
        filenames = []
        for j in range(count):
            filename = f"{name.lower()}_{j}.png"
            write_face_image(person_dir / filename, seed=i * 100 + j)
            filenames.append(filename)
        (person_dir / "image_list.txt").write_text("\n".join(filenames) + "\n")
    return root
