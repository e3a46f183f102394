"""YAML configuration loader with dataclass mapping."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass
class CaptureConfig:
    source: str = "0"              # camera index or video path/URL
    frame_width: int = 1280
    frame_height: int = 720
    reconnect_delay: float = 5.0
    grab_timeout: float = 10.0
    loop_video: bool = False
    realtime_playback: bool = True


@dataclass
class DetectionConfig:
    downsample_factor: int = 2
    detection_frame_skip: int = 1
    scale_factor: float = 1.1
    min_neighbors: int = 5
    min_size: int = 30
    max_size: int = 400
    detect_profile_faces: bool = False
    profile_scale_factor: float = 1.08
    profile_min_size: int = 40
    profile_max_size: int = 300
    merge_iou_threshold: float = 0.3


@dataclass
class TrackingConfig:
    max_identities: int = 10
    match_distance: float = 0.35         # normalized screen distance
    stable_detection_frames: int = 3
    persistence_frames: int = 45
    movement_threshold: float = 0.08     # normalized screen distance
    box_size_multiplier: float = 1.4
    recognition_interval: int = 30       # detection cycles
    motion_prediction: bool = False


@dataclass
class PreprocessingConfig:
    face_size: int = 100
    blur_kernel: int = 3
    clahe_clip_limit: float = 2.0
    clahe_grid_size: int = 8


@dataclass
class RecognitionConfig:
    enabled: bool = True
    auto_train_on_start: bool = True
    force_retrain_on_start: bool = False
    faces_dir: str = "data/faces"
    cache_dir: str = "data/cache"
    manifest_file: str = "manifest.txt"
    image_list_file: str = "image_list.txt"
    model_file: str = "face_recognition_model.yml"
    mapping_file: str = "label_mapping.json"
    hash_file: str = "training_data_hash.txt"
    scan_directories: bool = False
    max_distance: float = 120.0
    anonymous_names: list[str] = field(default_factory=list)
    lbph_radius: int = 1
    lbph_neighbors: int = 8
    lbph_grid_x: int = 8
    lbph_grid_y: int = 8


@dataclass
class DisplayConfig:
    show_window: bool = True
    show_ids: bool = False
    show_recognized_names: bool = True
    show_confidence: bool = True


@dataclass
class LoggingConfig:
    log_dir: str = "data/logs"


@dataclass
class AppConfig:
    capture: CaptureConfig = field(default_factory=CaptureConfig)
    detection: DetectionConfig = field(default_factory=DetectionConfig)
    tracking: TrackingConfig = field(default_factory=TrackingConfig)
    preprocessing: PreprocessingConfig = field(default_factory=PreprocessingConfig)
    recognition: RecognitionConfig = field(default_factory=RecognitionConfig)
    display: DisplayConfig = field(default_factory=DisplayConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _apply_dict(dc: object, data: dict) -> None:
    """Apply dictionary values onto a dataclass instance, ignoring unknown keys."""
    for key, value in data.items():
        if hasattr(dc, key):
            setattr(dc, key, value)


def load_config(path: str | Path | None = None) -> AppConfig:
    """Load configuration from a YAML file, falling back to defaults."""
    config = AppConfig()

    if path is None:
        path = os.environ.get("CONFIG_PATH", "config/default.yaml")

    path = Path(path)
    if path.exists():
        with open(path, "r") as f:
            raw = yaml.safe_load(f) or {}

        section_map = {
            "capture": config.capture,
            "detection": config.detection,
            "tracking": config.tracking,
            "preprocessing": config.preprocessing,
            "recognition": config.recognition,
            "display": config.display,
            "logging": config.logging,
        }

        for section_name, dc_instance in section_map.items():
            if section_name in raw and isinstance(raw[section_name], dict):
                _apply_dict(dc_instance, raw[section_name])

    # Environment variable overrides
    env_source = os.environ.get("CAMERA_SOURCE")
    if env_source:
        config.capture.source = env_source

    env_faces = os.environ.get("FACES_DIR")
    if env_faces:
        config.recognition.faces_dir = env_faces

    env_cache = os.environ.get("RECOGNEYES_CACHE_DIR")
    if env_cache:
        config.recognition.cache_dir = env_cache

    return config
