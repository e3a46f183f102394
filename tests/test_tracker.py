"""Tests for the face identity tracker."""

from __future__ import annotations

import pytest

from recogneyes.models import DetectionBox, RecognitionResult
from recogneyes.processing.tracker import IdentityTracker
from tests.conftest import make_box

FRAME = (1000, 1000)


class RecordingRecognizer:
    """Recognition callback that counts calls and replays scripted results."""

    def __init__(self, results: list[RecognitionResult | None] | None = None):
        self.calls: list[int] = []
        self._results = list(results or [])

    def __call__(self, identity):
        self.calls.append(identity.identity_id)
        if self._results:
            return self._results.pop(0)
        return RecognitionResult("Alice", 42.0)


def run_cycles(tracker, boxes, n, start=0):
    views = []
    for i in range(n):
        views = tracker.update(list(boxes), frame_index=start + i)
    return views


class TestIdentityTracker:
    def test_registers_new_identities(self, tracking_config):
        """Unmatched detections become tentative identities with fresh ids."""
        tracker = IdentityTracker(tracking_config, FRAME)
        views = tracker.update([make_box(200, 200), make_box(700, 700)])

        assert views == []  # tentative identities are not reported
        ids = [i.identity_id for i in tracker.tracked]
        assert ids == [1, 2]
        assert all(i.consecutive_detections == 1 for i in tracker.tracked)
        assert not any(i.confirmed for i in tracker.tracked)

    def test_confirms_after_stable_frames(self, tracking_config):
        tracker = IdentityTracker(tracking_config, FRAME)
        box = make_box(500, 500)

        run_cycles(tracker, [box], 2)
        assert not tracker.tracked[0].confirmed

        views = tracker.update([box], frame_index=2)
        assert len(views) == 1
        assert views[0].identity_id == 1
        assert tracker.tracked[0].confirmed

    def test_miss_resets_streak(self, tracking_config):
        """A single missed cycle restarts the confirmation streak."""
        tracker = IdentityTracker(tracking_config, FRAME)
        box = make_box(500, 500)

        run_cycles(tracker, [box], 2)
        tracker.update([], frame_index=2)
        identity = tracker.tracked[0]
        assert identity.consecutive_detections == 0
        assert identity.frames_since_last_seen == 1

        run_cycles(tracker, [box], 2, start=3)
        assert not identity.confirmed
        assert identity.consecutive_detections == 2

        tracker.update([box], frame_index=5)
        assert identity.confirmed
        assert identity.identity_id == 1

    def test_threshold_of_one_confirms_at_birth(self, tracking_config):
        tracking_config.stable_detection_frames = 1
        tracker = IdentityTracker(tracking_config, FRAME)
        views = tracker.update([make_box(500, 500)])
        assert len(views) == 1

    def test_persists_within_window(self, tracking_config):
        """A confirmed identity keeps being reported while missing."""
        tracker = IdentityTracker(tracking_config, FRAME)
        box = make_box(500, 500)
        run_cycles(tracker, [box], 3)

        for i in range(tracking_config.persistence_frames):
            views = tracker.update([], frame_index=3 + i)
            assert [v.identity_id for v in views] == [1]
            assert tracker.tracked[0].is_persisting

        # Seen again one cycle before the window runs out: same id.
        views = tracker.update([box], frame_index=10)
        assert [v.identity_id for v in views] == [1]
        assert tracker.tracked[0].frames_since_last_seen == 0

    def test_destroyed_after_window(self, tracking_config):
        tracker = IdentityTracker(tracking_config, FRAME)
        run_cycles(tracker, [make_box(500, 500)], 3)

        for i in range(tracking_config.persistence_frames + 1):
            views = tracker.update([], frame_index=3 + i)

        assert views == []
        assert tracker.tracked == []

    def test_ids_never_reused(self, tracking_config):
        tracker = IdentityTracker(tracking_config, FRAME)
        box = make_box(500, 500)
        run_cycles(tracker, [box], 3)
        run_cycles(tracker, [], tracking_config.persistence_frames + 1, start=3)

        tracker.update([box], frame_index=20)
        assert [i.identity_id for i in tracker.tracked] == [2]
        assert tracker.tracked[0].slot == 0  # slot is recycled, id is not

    def test_capacity_drops_excess_detections(self, tracking_config):
        tracker = IdentityTracker(tracking_config, FRAME)
        boxes = [make_box(100, 100), make_box(400, 100),
                 make_box(700, 100), make_box(100, 700)]

        tracker.update(boxes, frame_index=0)
        assert len(tracker.tracked) == tracking_config.max_identities
        assert tracker.created_count == 3

        # Pool still full: the fourth face is dropped again, not queued.
        tracker.update(boxes, frame_index=1)
        assert tracker.created_count == 3
        assert {i.identity_id for i in tracker.tracked} == {1, 2, 3}

    def test_created_count_matches_unmatched_detections(self, tracking_config):
        tracking_config.max_identities = 10
        tracker = IdentityTracker(tracking_config, FRAME)

        tracker.update([make_box(200, 200)], frame_index=0)        # new
        tracker.update([make_box(210, 200), make_box(800, 800)], frame_index=1)  # 1 new
        tracker.update([make_box(220, 200), make_box(810, 800),
                        make_box(500, 100)], frame_index=2)         # 1 new
        assert tracker.created_count == 3
        assert tracker.next_id == 4

    def test_greedy_first_detection_wins(self, tracking_config):
        """Two detections near one identity: the first in input order takes it."""
        tracker = IdentityTracker(tracking_config, FRAME)
        tracker.update([make_box(300, 500), make_box(700, 500)], frame_index=0)

        tracker.update([make_box(320, 500), make_box(310, 500)], frame_index=1)

        by_id = {i.identity_id: i for i in tracker.tracked}
        assert by_id[1].last_known_rect.center == (320.0, 500.0)
        assert by_id[2].frames_since_last_seen == 1
        assert 3 in by_id  # the second detection became a new identity

    def test_matches_closest_identity(self, tracking_config):
        tracker = IdentityTracker(tracking_config, FRAME)
        tracker.update([make_box(300, 500), make_box(450, 500)], frame_index=0)

        tracker.update([make_box(430, 500)], frame_index=1)

        by_id = {i.identity_id: i for i in tracker.tracked}
        assert by_id[2].frames_since_last_seen == 0
        assert by_id[1].frames_since_last_seen == 1

    def test_no_match_beyond_distance(self, tracking_config):
        tracker = IdentityTracker(tracking_config, FRAME)
        tracker.update([make_box(100, 100)], frame_index=0)
        tracker.update([make_box(900, 900)], frame_index=1)
        assert [i.identity_id for i in tracker.tracked] == [1, 2]

    def test_zero_detections_ages_everyone(self, tracking_config):
        tracker = IdentityTracker(tracking_config, FRAME)
        tracker.update([make_box(200, 200), make_box(800, 800)], frame_index=0)
        tracker.update([], frame_index=1)
        assert all(i.frames_since_last_seen == 1 for i in tracker.tracked)
        assert all(i.consecutive_detections == 0 for i in tracker.tracked)

    def test_hysteresis_locks_small_movements(self, tracking_config):
        tracker = IdentityTracker(tracking_config, FRAME)
        tracker.update([make_box(500, 500)], frame_index=0)
        identity = tracker.tracked[0]
        assert identity.smoothed_position == pytest.approx((0.5, 0.5))
        assert identity.smoothed_size == pytest.approx((0.1, 0.1))

        tracker.update([make_box(520, 500)], frame_index=1)
        assert identity.smoothed_position == pytest.approx((0.5, 0.5))
        assert identity.last_known_rect.center == (520.0, 500.0)

        tracker.update([make_box(600, 500, size=200)], frame_index=2)
        assert identity.smoothed_position == pytest.approx((0.6, 0.5))
        assert identity.smoothed_size == pytest.approx((0.2, 0.2))

    def test_box_size_multiplier(self, tracking_config):
        tracking_config.box_size_multiplier = 1.4
        tracker = IdentityTracker(tracking_config, FRAME)
        tracker.update([make_box(500, 500)], frame_index=0)
        assert tracker.tracked[0].smoothed_size == pytest.approx((0.14, 0.14))

    def test_downsampled_boxes_scaled_to_full_resolution(self, tracking_config):
        tracker = IdentityTracker(tracking_config, FRAME, downsample_factor=2)
        tracker.update([DetectionBox(100, 150, 50, 50)], frame_index=0)
        rect = tracker.tracked[0].last_known_rect
        assert (rect.x, rect.y, rect.w, rect.h) == (200, 300, 100, 100)
        assert tracker.tracked[0].smoothed_position == pytest.approx((0.25, 0.35))

    def test_motion_prediction(self, tracking_config):
        tracking_config.motion_prediction = True
        tracker = IdentityTracker(tracking_config, FRAME)
        tracker.update([make_box(500, 500)], frame_index=0)
        tracker.update([make_box(540, 500)], frame_index=1)
        identity = tracker.tracked[0]
        assert identity.velocity == pytest.approx((0.04, 0.0))
        assert identity.smoothed_position == pytest.approx((0.5, 0.5))

        tracker.predict()
        assert identity.smoothed_position == pytest.approx((0.54, 0.5))

    def test_prediction_disabled_keeps_position(self, tracking_config):
        tracker = IdentityTracker(tracking_config, FRAME)
        tracker.update([make_box(500, 500)], frame_index=0)
        tracker.update([make_box(540, 500)], frame_index=1)
        tracker.predict()
        assert tracker.tracked[0].smoothed_position == pytest.approx((0.5, 0.5))


class TestTrackerRecognition:
    def test_recognizes_once_on_confirmation(self, tracking_config):
        recognizer = RecordingRecognizer()
        tracker = IdentityTracker(tracking_config, FRAME, recognize=recognizer)
        box = make_box(500, 500)

        run_cycles(tracker, [box], 2)
        assert recognizer.calls == []

        views = tracker.update([box], frame_index=2)
        assert recognizer.calls == [1]
        identity = tracker.tracked[0]
        assert identity.recognized_label == "Alice"
        assert identity.recognition_confidence == 42.0
        assert views[0].label == "Alice (42)"

    def test_periodic_rerecognition(self, tracking_config):
        recognizer = RecordingRecognizer()
        tracker = IdentityTracker(tracking_config, FRAME, recognize=recognizer)
        box = make_box(500, 500)

        run_cycles(tracker, [box], 6)
        assert len(recognizer.calls) == 1

        tracker.update([box], frame_index=6)   # 4 cycles after confirmation
        assert len(recognizer.calls) == 2

    def test_retries_until_recognition_runs(self, tracking_config):
        """While the model is not ready the attempt is repeated each cycle."""
        recognizer = RecordingRecognizer([None, None, RecognitionResult("Bob", 60.0)])
        tracker = IdentityTracker(tracking_config, FRAME, recognize=recognizer)
        box = make_box(500, 500)

        run_cycles(tracker, [box], 5)
        assert len(recognizer.calls) == 3
        assert tracker.tracked[0].recognized_label == "Bob"

        tracker.update([box], frame_index=5)
        assert len(recognizer.calls) == 3

    def test_no_recognition_while_missing(self, tracking_config):
        recognizer = RecordingRecognizer([None] * 10)
        tracker = IdentityTracker(tracking_config, FRAME, recognize=recognizer)
        run_cycles(tracker, [make_box(500, 500)], 3)
        run_cycles(tracker, [], 3, start=3)
        assert len(recognizer.calls) == 1


class TestDisplayLabel:
    def _confirmed(self, tracking_config, display_config, result):
        tracker = IdentityTracker(
            tracking_config, FRAME,
            recognize=RecordingRecognizer([result]),
            display=display_config,
        )
        return tracker, run_cycles(tracker, [make_box(500, 500)], 3)

    def test_name_with_distance(self, tracking_config, display_config):
        _, views = self._confirmed(tracking_config, display_config,
                                   RecognitionResult("Alice", 87.4))
        assert views[0].label == "Alice (87)"

    def test_large_distance_hidden(self, tracking_config, display_config):
        _, views = self._confirmed(tracking_config, display_config,
                                   RecognitionResult("unknown", 1500.0))
        assert views[0].label == "unknown"

    def test_confidence_off(self, tracking_config, display_config):
        display_config.show_confidence = False
        _, views = self._confirmed(tracking_config, display_config,
                                   RecognitionResult("Alice", 87.4))
        assert views[0].label == "Alice"

    def test_ids_when_unrecognized(self, tracking_config, display_config):
        display_config.show_ids = True
        _, views = self._confirmed(tracking_config, display_config, None)
        assert views[0].label == "ID:1"

    def test_empty_by_default(self, tracking_config, display_config):
        _, views = self._confirmed(tracking_config, display_config, None)
        assert views[0].label == ""
