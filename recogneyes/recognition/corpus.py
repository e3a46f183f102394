"""Training corpus on disk: manifest, per-person image lists, content hash."""

from __future__ import annotations

import hashlib
import logging
from pathlib import Path
from typing import Iterator, Optional

import cv2
import numpy as np

from recogneyes.config import RecognitionConfig
from recogneyes.errors import ConfigurationError

logger = logging.getLogger(__name__)

COMMENT_PREFIX = "#"
METADATA_SUFFIX = ".meta"
IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png"}


def parse_manifest(text: str) -> list[str]:
    """Active person names in manifest order (blank and # lines dropped)."""
    names = []
    for line in text.splitlines():
        name = line.strip()
        if name and not name.startswith(COMMENT_PREFIX):
            names.append(name)
    return names


def parse_image_list(text: str) -> list[str]:
    """Image filenames from an image list (blank and metadata lines dropped)."""
    filenames = []
    for line in text.splitlines():
        filename = line.strip()
        if filename and not filename.endswith(METADATA_SUFFIX):
            filenames.append(filename)
    return filenames


class TrainingCorpus:
    """Labeled face images rooted at ``faces_dir``.

    Layout::

        faces_dir/manifest.txt          one person per line
        faces_dir/<Name>/image_list.txt one filename per line
        faces_dir/<Name>/<image files>
    """

    def __init__(self, config: RecognitionConfig):
        self._root = Path(config.faces_dir)
        self._manifest_file = config.manifest_file
        self._list_file = config.image_list_file
        self._scan = config.scan_directories

    @property
    def root(self) -> Path:
        return self._root

    @property
    def manifest_path(self) -> Path:
        return self._root / self._manifest_file

    def image_list_path(self, name: str) -> Path:
        return self._root / name / self._list_file

    def read_manifest(self) -> str:
        """Return the manifest text. Raises ConfigurationError if unreadable."""
        try:
            return self.manifest_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise ConfigurationError(
                f"Cannot read manifest {self.manifest_path}: {exc}"
            ) from exc

    def active_names(self) -> list[str]:
        return parse_manifest(self.read_manifest())

    def image_list_text(self, name: str) -> Optional[str]:
        path = self.image_list_path(name)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Unreadable image list %s: %s", path, exc)
            return None

    def content_hash(self) -> str:
        """SHA-256 over the manifest text and every existing image-list text.

        Image bytes are not hashed; the hash only detects manifest edits.
        """
        manifest = self.read_manifest()
        parts = [manifest]
        for name in parse_manifest(manifest):
            list_text = self.image_list_text(name)
            if list_text is not None:
                parts.append(name)
                parts.append(list_text)
        return hashlib.sha256("".join(parts).encode("utf-8")).hexdigest()

    def image_paths(self, name: str) -> list[Path]:
        """Resolve a person's images; an explicit image list beats a directory scan."""
        person_dir = self._root / name
        list_text = self.image_list_text(name)
        if list_text is not None:
            return [person_dir / f for f in parse_image_list(list_text)]

        if not self._scan:
            logger.warning("No %s for %s; skipping", self._list_file, name)
            return []
        if not person_dir.is_dir():
            logger.warning("No image folder for %s at %s", name, person_dir)
            return []
        return sorted(
            p for p in person_dir.iterdir()
            if p.is_file() and p.suffix.lower() in IMAGE_EXTENSIONS
        )

    def iter_images(self, name: str) -> Iterator[tuple[Path, np.ndarray]]:
        """Yield (path, grayscale image) for every decodable image of a person."""
        for path in self.image_paths(name):
            if not path.is_file():
                logger.warning("Missing image %s", path)
                continue
            image = cv2.imread(str(path), cv2.IMREAD_GRAYSCALE)
            if image is None or image.size == 0:
                logger.warning("Could not decode %s", path)
                continue
            yield path, image


def generate_image_lists(faces_dir: str | Path,
                         list_file: str = "image_list.txt") -> dict[str, int]:
    """Write an image list into every person folder under ``faces_dir``.

    Returns {person folder name: number of images listed}.
    """
    root = Path(faces_dir)
    if not root.is_dir():
        raise ConfigurationError(f"Faces folder not found: {root}")

    counts: dict[str, int] = {}
    for person_dir in sorted(p for p in root.iterdir() if p.is_dir()):
        images = sorted(
            p.name for p in person_dir.iterdir()
            if p.is_file() and p.suffix.lower() in IMAGE_EXTENSIONS
        )
        list_path = person_dir / list_file
        list_path.write_text("".join(f"{name}\n" for name in images), encoding="utf-8")
        counts[person_dir.name] = len(images)
        logger.info("Wrote %s (%d images)", list_path, len(images))
    return counts
