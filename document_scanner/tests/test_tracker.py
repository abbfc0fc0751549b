"""
Tests for temporal quad tracking
"""

import math

import pytest

from document_scanner.config import ScannerConfig
from document_scanner.detector import DetectionResult
from document_scanner.geometry import Point, Quad
from document_scanner.tracker import QuadTracker, TrackerStatus, align_corners, ema_quad


def rect(x0, y0, x1, y1):
    return Quad([Point(x0, y0), Point(x1, y0), Point(x1, y1), Point(x0, y1)])


def rotated_rect(cx, cy, width, height, degrees):
    a = math.radians(degrees)
    c, s = math.cos(a), math.sin(a)
    corners = [(-width / 2, -height / 2), (width / 2, -height / 2), (width / 2, height / 2), (-width / 2, height / 2)]
    return Quad(Point(cx + x * c - y * s, cy + x * s + y * c) for x, y in corners)


def found(quad):
    return DetectionResult(quad=quad, score=0.8)


MISS = DetectionResult(quad=None, score=0.0)


class TestEmaQuad:
    """Tests for corner smoothing"""

    @pytest.fixture
    def prev(self):
        return rect(0, 0, 100, 150)

    @pytest.fixture
    def nxt(self):
        return rect(10, 20, 110, 170)

    def test_alpha_one_returns_next(self, prev, nxt):
        assert ema_quad(prev, nxt, 1.0) == nxt

    def test_alpha_zero_returns_prev(self, prev, nxt):
        assert ema_quad(prev, nxt, 0.0) == prev

    def test_missing_prev(self, nxt):
        assert ema_quad(None, nxt, 0.3) == nxt

    def test_missing_next(self, prev):
        assert ema_quad(prev, None, 0.3) == prev

    def test_halfway(self, prev, nxt):
        smoothed = ema_quad(prev, nxt, 0.5)
        assert smoothed.to_flat() == pytest.approx([5, 10, 105, 10, 105, 160, 5, 160])


class TestAlignCorners:
    """Tests for matching corners between frames"""

    def test_shifted_corner_list_realigned(self):
        reference = rect(100, 80, 300, 380)
        points = reference.points
        shifted = Quad(points[2:] + points[:2])
        assert align_corners(reference, shifted) == reference

    def test_nearest_shift_wins(self):
        """A slightly moved quad keeps its corners paired with the nearest ones"""
        reference = rect(100, 80, 300, 380)
        moved = rect(104, 83, 304, 383)
        points = moved.points
        aligned = align_corners(reference, Quad(points[3:] + points[:3]))
        assert aligned == moved


class TestQuadTracker:
    """Tests for QuadTracker state transitions"""

    @pytest.fixture
    def tracker(self):
        return QuadTracker()

    @pytest.fixture
    def doc(self):
        return rect(100, 80, 300, 380)

    def feed_steady(self, tracker, quad, start_ms, count, step_ms=250):
        snapshot = None
        for i in range(count):
            snapshot = tracker.update(found(quad), start_ms + i * step_ms)
        return snapshot

    def test_starts_searching(self, tracker):
        assert tracker.status == TrackerStatus.SEARCHING
        assert tracker.snapshot().smoothed_quad is None

    def test_first_detection_tracks(self, tracker, doc):
        """The first valid quad becomes the smoothed quad unmodified"""
        snapshot = tracker.update(found(doc), 0)
        assert snapshot.status == TrackerStatus.TRACKING
        assert snapshot.smoothed_quad == doc
        assert not snapshot.stable

    def test_identical_quads_become_stable(self, tracker, doc):
        """Zero area variance held for stable_duration gives Stable"""
        # 5th sample at t=1000 starts the stable window, t=2000 completes it
        snapshot = self.feed_steady(tracker, doc, 0, 8)
        assert snapshot.stable is False
        snapshot = tracker.update(found(doc), 2000)
        assert snapshot.stable is True
        assert snapshot.status == TrackerStatus.STABLE

    def test_needs_enough_samples(self, doc):
        """Fewer than five samples never count as stable"""
        tracker = QuadTracker(stable_duration=0)
        snapshot = self.feed_steady(tracker, doc, 0, 4)
        assert not snapshot.stable
        snapshot = tracker.update(found(doc), 1000)
        assert snapshot.stable

    def test_scene_change_resets(self, tracker, doc):
        """An area jump of 50% drops the track instead of smoothing across it"""
        self.feed_steady(tracker, doc, 0, 9)
        tracker.update(found(doc), 2000)
        assert tracker.status == TrackerStatus.STABLE

        bigger = rect(100, 80, 400, 380)  # 1.5x the area
        snapshot = tracker.update(found(bigger), 2100)
        assert snapshot.status == TrackerStatus.SEARCHING
        assert snapshot.smoothed_quad is None
        assert not snapshot.stable
        assert len(tracker.state.area_history) == 0

    def test_small_motion_smoothed(self, tracker, doc):
        tracker.update(found(doc), 0)
        moved = rect(110, 80, 310, 380)
        snapshot = tracker.update(found(moved), 100)
        assert snapshot.smoothed_quad[0].x == pytest.approx(105)

    def test_misses_below_limit_keep_quad(self, tracker, doc):
        """A few dropped frames keep the last smoothed quad"""
        tracker.update(found(doc), 0)
        for t in (100, 200, 300):
            snapshot = tracker.update(MISS, t)
        assert snapshot.smoothed_quad == doc
        assert snapshot.missed_count == 3
        assert snapshot.status == TrackerStatus.TRACKING

    def test_misses_at_limit_reset(self, tracker, doc):
        tracker.update(found(doc), 0)
        for t in (100, 200, 300, 400):
            snapshot = tracker.update(MISS, t)
        assert snapshot.status == TrackerStatus.SEARCHING
        assert snapshot.smoothed_quad is None
        assert snapshot.missed_count == 0

    def test_detection_clears_misses(self, tracker, doc):
        tracker.update(found(doc), 0)
        tracker.update(MISS, 100)
        snapshot = tracker.update(found(doc), 200)
        assert snapshot.missed_count == 0

    def test_non_finite_quad_is_miss(self, tracker, doc):
        """Broken coordinates never crash the tracker"""
        tracker.update(found(doc), 0)
        broken = Quad([Point(math.nan, 80), Point(300, 80), Point(300, 380), Point(100, 380)])
        snapshot = tracker.update(found(broken), 100)
        assert snapshot.smoothed_quad == doc
        assert snapshot.missed_count == 1

    def test_invalid_rectangle_is_miss(self, tracker):
        tracker.update(found(rect(0, 0, 400, 100)), 0)
        assert tracker.status == TrackerStatus.SEARCHING
        assert tracker.state.missed_count == 1

    def test_unstable_area_not_stable(self):
        """Jittering area keeps the tracker in Tracking"""
        tracker = QuadTracker(stable_motion_threshold=0.05)
        # Relative area deviation is 0.0625
        heights = [300, 340, 300, 340, 300, 340, 300, 340, 300, 340]
        snapshot = None
        for i, h in enumerate(heights):
            snapshot = tracker.update(found(rect(100, 80, 300, 80 + h)), i * 250)
        assert snapshot.status == TrackerStatus.TRACKING

    def test_corner_list_rotation_does_not_collapse(self, tracker, doc):
        """The same quad starting at a different corner smooths onto itself"""
        tracker.update(found(doc), 0)
        points = doc.points
        tr_first = Quad(points[1:] + points[:1])
        snapshot = tracker.update(found(tr_first), 100)

        assert snapshot.smoothed_quad.to_flat() == pytest.approx(doc.to_flat())
        assert snapshot.smoothed_quad.area == pytest.approx(60000)

    def test_small_rotation_keeps_area(self):
        """A 1 degree wobble at any orientation never averages opposite corners"""
        worst = None
        for degrees in range(0, 360):
            tracker = QuadTracker()
            tracker.update(found(rotated_rect(400, 400, 200, 220, degrees)), 0)
            raw = rotated_rect(400, 400, 200, 220, degrees + 1)
            snapshot = tracker.update(found(raw), 100)
            ratio = snapshot.smoothed_quad.area / raw.area
            if worst is None or ratio < worst[0]:
                worst = (ratio, degrees)
        assert worst[0] > 0.99, f"Smoothed area collapsed to {worst[0]:.3f} of raw at {worst[1]} degrees"

    def test_spike_restarts_stable_window(self):
        """Low variance must hold without a break for stable_duration"""
        tracker = QuadTracker(stable_motion_threshold=0.03)
        doc = rect(100, 80, 300, 380)
        self.feed_steady(tracker, doc, 0, 5)
        assert tracker.state.stable_start_time == 1000

        # 10% bigger: below the scene-change threshold, above the motion threshold
        snapshot = tracker.update(found(rect(100, 80, 300, 410)), 1250)
        assert tracker.state.stable_start_time is None
        assert snapshot.status == TrackerStatus.TRACKING

        # An unbroken window from t=1000 would have completed here
        snapshot = self.feed_steady(tracker, doc, 1500, 3)
        assert not snapshot.stable

        snapshot = self.feed_steady(tracker, doc, 2250, 12)
        assert snapshot.stable

    def test_jitter_drops_stable_to_tracking(self):
        """Stable falls back to Tracking when the area starts jittering"""
        tracker = QuadTracker(stable_motion_threshold=0.05)
        doc = rect(100, 80, 300, 380)
        self.feed_steady(tracker, doc, 0, 9)
        assert tracker.status == TrackerStatus.STABLE

        # Each step stays below the 15% scene-change threshold
        heights = [340, 300] * 5
        snapshot = None
        for i, h in enumerate(heights):
            snapshot = tracker.update(found(rect(100, 80, 300, 80 + h)), 2250 + i * 250)

        assert snapshot.status == TrackerStatus.TRACKING
        assert not snapshot.stable
        assert snapshot.smoothed_quad is not None
        assert tracker.state.stable_start_time is None

    def test_reset(self, tracker, doc):
        tracker.update(found(doc), 0)
        tracker.reset()
        assert tracker.status == TrackerStatus.SEARCHING
        assert tracker.state.last_area == 0.0

    def test_from_config(self):
        config = ScannerConfig(smoothing_alpha=0.8, max_missed_frames=2, stable_duration=500)
        tracker = QuadTracker.from_config(config)
        assert tracker.smoothing_alpha == 0.8
        assert tracker.max_missed_frames == 2
        assert tracker.stable_duration == 500
