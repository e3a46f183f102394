"""Recognition model lifecycle: cache validation, training, persistence."""

from __future__ import annotations

import json
import logging
import threading
from functools import partial
from pathlib import Path
from typing import Callable, Optional

import cv2

from recogneyes.config import RecognitionConfig
from recogneyes.errors import (
    CacheCorruption,
    ConfigurationError,
    RecognitionNotReady,
    TrainingDataError,
)
from recogneyes.models import StoreState, TrainedModel
from recogneyes.processing.preprocessor import FaceNormalizer
from recogneyes.recognition.classifier import FaceClassifier, LBPHClassifier
from recogneyes.recognition.corpus import TrainingCorpus, parse_manifest

logger = logging.getLogger(__name__)

ClassifierFactory = Callable[[], FaceClassifier]


class RecognitionStore:
    """Owns the trained classifier and its label mapping.

    On startup the cached model is reused when the corpus hash is unchanged
    and the cached label count matches the manifest; otherwise the corpus is
    retrained and the cache rewritten.

    Every run (initialize or train) takes a new run id. A run that completes
    after a newer one started is discarded, so the newest run always wins.
    The model is swapped under a lock and is read-only once published.
    """

    def __init__(self, config: RecognitionConfig, normalizer: FaceNormalizer,
                 classifier_factory: ClassifierFactory | None = None,
                 corpus: TrainingCorpus | None = None):
        self._cfg = config
        self._normalizer = normalizer
        self._factory = classifier_factory or partial(LBPHClassifier.from_config, config)
        self._corpus = corpus or TrainingCorpus(config)

        cache_dir = Path(config.cache_dir)
        self._model_path = cache_dir / config.model_file
        self._mapping_path = cache_dir / config.mapping_file
        self._hash_path = cache_dir / config.hash_file

        self._lock = threading.Lock()
        self._model: Optional[TrainedModel] = None
        self._state = StoreState.IDLE
        self._run_counter = 0
        self._thread: threading.Thread | None = None

    @property
    def corpus(self) -> TrainingCorpus:
        return self._corpus

    @property
    def model_path(self) -> Path:
        return self._model_path

    @property
    def mapping_path(self) -> Path:
        return self._mapping_path

    @property
    def hash_path(self) -> Path:
        return self._hash_path

    @property
    def state(self) -> StoreState:
        with self._lock:
            return self._state

    @property
    def model(self) -> Optional[TrainedModel]:
        with self._lock:
            return self._model

    @property
    def people_trained(self) -> int:
        model = self.model
        return model.people_count if model else 0

    @property
    def images_trained(self) -> int:
        model = self.model
        return model.image_count if model else 0

    def is_ready(self) -> bool:
        with self._lock:
            return self._model is not None and self._state == StoreState.READY

    def require_model(self) -> TrainedModel:
        """Return the published model or raise RecognitionNotReady."""
        with self._lock:
            if self._model is None or self._state != StoreState.READY:
                raise RecognitionNotReady("recognition model not loaded")
            return self._model

    # --- Lifecycle ---

    def start(self, force_retrain: bool = False) -> threading.Thread:
        """Run ``initialize`` on a background thread."""
        thread = threading.Thread(
            target=self._initialize_logged, args=(force_retrain,),
            name="recognition-init", daemon=True,
        )
        self._thread = thread
        thread.start()
        return thread

    def force_retrain(self) -> threading.Thread:
        """Delete every cached artifact and retrain in the background."""
        logger.warning("Force retrain requested")
        self.clear_cache()
        return self.start(force_retrain=True)

    def wait(self, timeout: float | None = None) -> StoreState:
        """Block until the most recent background run finishes."""
        if self._thread is not None:
            self._thread.join(timeout)
        return self.state

    def initialize(self, force_retrain: bool = False) -> StoreState:
        """Load the cached model if still valid, else train. Blocking."""
        run_id, previous = self._begin_run(StoreState.LOADING)

        if force_retrain:
            self.clear_cache()

        try:
            corpus_hash = self._corpus.content_hash()
        except ConfigurationError as exc:
            logger.error("Recognition disabled: %s", exc)
            self._finish_failed(run_id, previous)
            return self.state

        if not force_retrain:
            try:
                model = self._load_cached(corpus_hash, run_id)
            except (CacheCorruption, ConfigurationError) as exc:
                logger.warning("Cached model unusable (%s); retraining", exc)
            else:
                if model is not None:
                    self._commit(model, run_id)
                    return self.state

        self._set_state(StoreState.TRAINING, run_id)
        try:
            self._train_and_publish(run_id, previous, corpus_hash)
        except (ConfigurationError, TrainingDataError) as exc:
            logger.error("Training failed: %s", exc)
        return self.state

    def train(self) -> TrainedModel:
        """Train from the corpus, persist, and publish the result. Blocking.

        Raises TrainingDataError when no usable image was found and
        ConfigurationError when the manifest cannot be read.
        """
        run_id, previous = self._begin_run(StoreState.TRAINING)
        try:
            corpus_hash = self._corpus.content_hash()
        except ConfigurationError:
            self._finish_failed(run_id, previous)
            raise
        return self._train_and_publish(run_id, previous, corpus_hash)

    def clear_cache(self) -> None:
        for path in (self._model_path, self._mapping_path, self._hash_path):
            try:
                path.unlink(missing_ok=True)
            except OSError:
                logger.exception("Could not delete %s", path)
            else:
                logger.debug("Removed cached artifact %s", path)

    # --- Internals ---

    def _initialize_logged(self, force_retrain: bool) -> None:
        try:
            self.initialize(force_retrain)
        except Exception:
            logger.exception("Unexpected error initializing recognition")
            with self._lock:
                self._state = StoreState.FAILED

    def _begin_run(self, state: StoreState) -> tuple[int, Optional[TrainedModel]]:
        """Start a new run: clear readiness and return (run id, prior model)."""
        with self._lock:
            self._run_counter += 1
            previous = self._model
            self._model = None
            self._state = state
            return self._run_counter, previous

    def _is_current(self, run_id: int) -> bool:
        with self._lock:
            return run_id == self._run_counter

    def _set_state(self, state: StoreState, run_id: int) -> None:
        with self._lock:
            if run_id == self._run_counter:
                self._state = state

    def _commit(self, model: TrainedModel, run_id: int) -> bool:
        with self._lock:
            if run_id != self._run_counter:
                logger.info("Discarding result of superseded run %d", run_id)
                return False
            self._model = model
            self._state = StoreState.READY
        logger.info("Recognition ready: %d people, %d images",
                    model.people_count, model.image_count)
        return True

    def _finish_failed(self, run_id: int, previous: Optional[TrainedModel]) -> None:
        """End a failed run, keeping the prior model in service if there was one."""
        with self._lock:
            if run_id != self._run_counter:
                return
            if previous is not None:
                self._model = previous
                self._state = StoreState.READY
            else:
                self._state = StoreState.FAILED
        if previous is not None:
            logger.warning("Keeping previously loaded model")

    def _load_cached(self, corpus_hash: str, run_id: int) -> Optional[TrainedModel]:
        """Load the cache if its hash matches.

        Returns None when there is no usable cache to try, raises
        CacheCorruption when the cache exists but cannot be trusted.
        """
        if not self._model_path.exists():
            logger.info("No cached model found")
            return None

        saved_hash = self._read_saved_hash()
        if saved_hash is None or saved_hash != corpus_hash:
            logger.info("Training data changed (saved %s, current %s)",
                        (saved_hash or "none")[:8], corpus_hash[:8])
            return None

        logger.info("Training data unchanged (hash %s); loading cached model",
                    corpus_hash[:8])
        classifier = self._factory()
        try:
            classifier.read(str(self._model_path))
        except (cv2.error, OSError, ValueError) as exc:
            raise CacheCorruption(f"cannot read {self._model_path}: {exc}") from exc

        label_to_name = self._read_mapping()
        model = TrainedModel(
            classifier=classifier,
            label_to_name=label_to_name,
            corpus_hash=corpus_hash,
            run_id=run_id,
        )

        self._set_state(StoreState.VALIDATING, run_id)
        expected = len(parse_manifest(self._corpus.read_manifest()))
        if expected != model.people_count:
            raise CacheCorruption(
                f"manifest lists {expected} people but cached model has "
                f"{model.people_count}"
            )
        return model

    def _read_saved_hash(self) -> Optional[str]:
        try:
            return self._hash_path.read_text(encoding="utf-8").strip() or None
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Unreadable hash file %s: %s", self._hash_path, exc)
            return None

    def _read_mapping(self) -> dict[int, str]:
        try:
            data = json.loads(self._mapping_path.read_text(encoding="utf-8"))
            labels = data["labels"]
            names = data["names"]
            if len(labels) != len(names):
                raise CacheCorruption("label mapping has mismatched arrays")
            return {int(label): str(name) for label, name in zip(labels, names)}
        except (OSError, ValueError, KeyError, TypeError) as exc:
            raise CacheCorruption(f"bad label mapping {self._mapping_path}: {exc}") from exc

    def _fit(self, run_id: int) -> TrainedModel:
        """Collect normalized images per person and fit a fresh classifier."""
        names = self._corpus.active_names()
        logger.info("Training from %s (%d people in manifest)",
                    self._corpus.root, len(names))

        images = []
        labels: list[int] = []
        label_to_name: dict[int, str] = {}
        next_label = 0

        for name in names:
            count = 0
            for path, gray in self._corpus.iter_images(name):
                try:
                    images.append(self._normalizer.normalize(gray))
                except cv2.error:
                    logger.warning("Failed to preprocess %s", path)
                    continue
                labels.append(next_label)
                count += 1

            if count == 0:
                logger.warning("No usable images for %s; skipping", name)
                continue
            label_to_name[next_label] = name
            logger.info("Loaded %d images for %s (label %d)", count, name, next_label)
            next_label += 1

        if not images:
            raise TrainingDataError(f"no usable training images under {self._corpus.root}")
        if len(label_to_name) < 2:
            logger.warning("Only %d person trained; recognition will be unreliable",
                           len(label_to_name))

        classifier = self._factory()
        try:
            classifier.train(images, labels)
        except cv2.error as exc:
            raise TrainingDataError(f"classifier fit failed: {exc}") from exc

        return TrainedModel(
            classifier=classifier,
            label_to_name=label_to_name,
            image_count=len(images),
            run_id=run_id,
        )

    def _train_and_publish(self, run_id: int, previous: Optional[TrainedModel],
                           corpus_hash: str) -> TrainedModel:
        try:
            model = self._fit(run_id)
        except (ConfigurationError, TrainingDataError):
            self._finish_failed(run_id, previous)
            raise
        model.corpus_hash = corpus_hash

        if not self._is_current(run_id):
            logger.info("Training run %d superseded; not saving", run_id)
            return model

        self._persist(model)
        self._commit(model, run_id)
        return model

    def _persist(self, model: TrainedModel) -> None:
        """Write classifier, mapping, then hash. A partial write leaves the cache invalid."""
        try:
            self._model_path.parent.mkdir(parents=True, exist_ok=True)
            model.classifier.write(str(self._model_path))
            labels = sorted(model.label_to_name)
            mapping = {
                "labels": labels,
                "names": [model.label_to_name[label] for label in labels],
            }
            self._mapping_path.write_text(json.dumps(mapping, indent=2), encoding="utf-8")
            if model.corpus_hash:
                self._hash_path.write_text(model.corpus_hash, encoding="utf-8")
        except (OSError, cv2.error):
            logger.exception("Failed to save recognition cache to %s",
                             self._model_path.parent)
            return
        logger.info("Saved model, label mapping and hash to %s", self._model_path.parent)
