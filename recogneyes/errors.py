"""Recoverable error types raised inside the tracking and recognition core."""

from __future__ import annotations


class RecogneyesError(Exception):
    """Base class for all recogneyes errors."""


class ConfigurationError(RecogneyesError):
    """Manifest missing or unreadable; recognition stays disabled."""


class TrainingDataError(RecogneyesError):
    """No usable training images were collected."""


class CacheCorruption(RecogneyesError):
    """Cached model artifacts are unreadable or inconsistent."""


class CapacityExceeded(RecogneyesError):
    """The identity pool has no free slot."""


class RecognitionNotReady(RecogneyesError):
    """No trained model is loaded yet."""
