"""Face normalization: grayscale, resize, blur, histogram equalization, CLAHE."""

from __future__ import annotations

import cv2
import numpy as np

from recogneyes.config import PreprocessingConfig


class FaceNormalizer:
    """Normalizes face crops so training photos and live frames look alike.

    The same instance settings must be used at training time and at match
    time: resize -> blur -> global equalization -> CLAHE.
    """

    def __init__(self, config: PreprocessingConfig):
        self._size = config.face_size
        self._blur_k = config.blur_kernel
        self._clahe = cv2.createCLAHE(
            clipLimit=config.clahe_clip_limit,
            tileGridSize=(config.clahe_grid_size, config.clahe_grid_size),
        )

    @property
    def face_size(self) -> int:
        return self._size

    def normalize(self, face: np.ndarray) -> np.ndarray:
        """Apply the full pipeline. Returns a face_size x face_size uint8 image."""
        gray = to_gray(face)
        resized = cv2.resize(gray, (self._size, self._size),
                             interpolation=cv2.INTER_AREA)
        blurred = cv2.GaussianBlur(resized, (self._blur_k, self._blur_k), 0)
        equalized = cv2.equalizeHist(blurred)
        return self._clahe.apply(equalized)


def to_gray(image: np.ndarray) -> np.ndarray:
    """Convert a BGR/BGRA image to single-channel uint8; gray input passes through."""
    if image.ndim == 3:
        if image.shape[2] == 4:
            image = cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
        elif image.shape[2] == 3:
            image = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        else:
            image = image[:, :, 0]
    if image.dtype != np.uint8:
        image = np.clip(image, 0, 255).astype(np.uint8)
    return image
