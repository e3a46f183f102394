"""Threshold matching of face crops against the published recognition model."""

from __future__ import annotations

import logging

import cv2
import numpy as np

from recogneyes.config import RecognitionConfig
from recogneyes.errors import RecognitionNotReady
from recogneyes.models import UNKNOWN_LABEL, RecognitionResult
from recogneyes.processing.preprocessor import FaceNormalizer
from recogneyes.recognition.store import RecognitionStore

logger = logging.getLogger(__name__)


class RecognitionMatcher:
    """Maps a grayscale face crop to (name, distance).

    Distances are dissimilarities: lower is better and a distance equal to
    ``max_distance`` is still accepted. Names listed in ``anonymous_names``
    are trained like any other class but always reported as unknown.
    """

    def __init__(self, store: RecognitionStore, normalizer: FaceNormalizer,
                 config: RecognitionConfig):
        self._store = store
        self._normalizer = normalizer
        self._max_distance = config.max_distance
        self._anonymous = frozenset(config.anonymous_names)

    @property
    def max_distance(self) -> float:
        return self._max_distance

    @property
    def anonymous_names(self) -> frozenset[str]:
        return self._anonymous

    def recognize(self, face_image: np.ndarray | None) -> RecognitionResult:
        try:
            model = self._store.require_model()
        except RecognitionNotReady:
            return RecognitionResult(UNKNOWN_LABEL, 0.0)

        if face_image is None or face_image.size == 0:
            logger.warning("Empty face crop passed to recognize()")
            return RecognitionResult(UNKNOWN_LABEL, 0.0)

        try:
            processed = self._normalizer.normalize(face_image)
            label, distance = model.classifier.predict(processed)
        except (cv2.error, ValueError):
            logger.exception("Recognition error")
            return RecognitionResult(UNKNOWN_LABEL, 0.0)

        name = model.label_to_name.get(label)
        logger.debug("Best match %r (label %d) distance %.1f threshold %.1f",
                     name, label, distance, self._max_distance)

        if distance > self._max_distance:
            return RecognitionResult(UNKNOWN_LABEL, distance)

        if name is None:
            logger.warning("Predicted label %d not in mapping", label)
            return RecognitionResult(UNKNOWN_LABEL, distance)

        if name in self._anonymous:
            logger.debug("Matched anonymous person %r at %.1f; reporting unknown",
                         name, distance)
            return RecognitionResult(UNKNOWN_LABEL, distance)

        return RecognitionResult(name, distance)
