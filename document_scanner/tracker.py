"""
Temporal tracking of the detected quad

Smooths corners across frames, tolerates a few missed detections and
flags the quad as stable once its area stops changing.
"""

import logging
import math
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Deque, Optional

from .config import ScannerConfig
from .detector import DetectionResult
from .geometry import Point, Quad, order_quad
from .scoring import is_valid_rectangle

logger = logging.getLogger(__name__)


AREA_HISTORY_SIZE = 10
MIN_STABILITY_SAMPLES = 5


class TrackerStatus(Enum):
    SEARCHING = 'searching'
    TRACKING = 'tracking'
    STABLE = 'stable'


def ema_quad(prev: Optional[Quad], next_quad: Optional[Quad], alpha: float) -> Optional[Quad]:
    """
    Exponential moving average of two quads, coordinate by coordinate.

    A missing side passes the other one through unchanged.
    """
    if prev is None:
        return next_quad
    if next_quad is None:
        return prev
    if alpha == 1.0:
        return next_quad
    if alpha == 0.0:
        return prev
    return Quad(
        Point(p.x + alpha * (n.x - p.x), p.y + alpha * (n.y - p.y))
        for p, n in zip(prev.points, next_quad.points)
    )


def align_corners(reference: Quad, quad: Quad) -> Quad:
    """
    Rotate the corner list of quad so each corner lines up with the
    nearest corner of reference.

    Both quads must wind the same way; only cyclic shifts are tried.
    """
    points = quad.points

    def distance(shift):
        return sum(
            math.hypot(points[(i + shift) % 4].x - r.x, points[(i + shift) % 4].y - r.y)
            for i, r in enumerate(reference.points)
        )

    best = min(range(4), key=distance)
    return Quad(points[best:] + points[:best])


@dataclass
class TrackerState:
    """Mutable session state, owned by a single QuadTracker."""

    smoothed_quad: Optional[Quad] = None
    last_area: float = 0.0
    area_history: Deque[float] = field(default_factory=lambda: deque(maxlen=AREA_HISTORY_SIZE))
    missed_count: int = 0
    stable: bool = False
    stable_start_time: Optional[float] = None


@dataclass(frozen=True)
class TrackerSnapshot:
    """What the tracker reports after each frame."""

    smoothed_quad: Optional[Quad]
    stable: bool
    status: TrackerStatus
    missed_count: int = 0


class QuadTracker:
    """
    Tracks one document across a scanning session.

    Frames must be fed in arrival order from a single caller; the
    tracker keeps no locks of its own.
    """

    def __init__(
        self,
        smoothing_alpha: float = 0.5,
        stable_duration: float = 1000.0,
        stable_motion_threshold: float = 0.1,
        max_missed_frames: int = 4,
        significant_change_threshold: float = 0.15,
        min_rectangularity: float = 0.8,
        max_aspect_ratio: float = 2.5,
        min_side_consistency: float = 0.75,
        max_angle_deviation: float = 25.0
    ):
        """
        Args:
            smoothing_alpha: EMA weight of the newest quad (0 keeps the old quad, 1 jumps)
            stable_duration: How long (ms) the area must stay steady before Stable
            stable_motion_threshold: Max stdDev/mean of the area history counted as steady
            max_missed_frames: Consecutive misses that drop the track
            significant_change_threshold: Relative area jump treated as a new scene
            min_rectangularity: Validity gate, see is_valid_rectangle
            max_aspect_ratio: Validity gate, see is_valid_rectangle
            min_side_consistency: Validity gate, see is_valid_rectangle
            max_angle_deviation: Validity gate, see is_valid_rectangle
        """
        self.smoothing_alpha = smoothing_alpha
        self.stable_duration = stable_duration
        self.stable_motion_threshold = stable_motion_threshold
        self.max_missed_frames = max_missed_frames
        self.significant_change_threshold = significant_change_threshold
        self.min_rectangularity = min_rectangularity
        self.max_aspect_ratio = max_aspect_ratio
        self.min_side_consistency = min_side_consistency
        self.max_angle_deviation = max_angle_deviation
        self.state = TrackerState()

    @classmethod
    def from_config(cls, config: ScannerConfig) -> "QuadTracker":
        return cls(
            smoothing_alpha=config.smoothing_alpha,
            stable_duration=config.stable_duration,
            stable_motion_threshold=config.stable_motion_threshold,
            max_missed_frames=config.max_missed_frames,
            significant_change_threshold=config.significant_change_threshold,
            min_rectangularity=config.min_rectangularity,
            max_aspect_ratio=config.max_aspect_ratio,
            min_side_consistency=config.valid_side_consistency,
            max_angle_deviation=config.max_angle_deviation,
        )

    @property
    def status(self) -> TrackerStatus:
        if self.state.smoothed_quad is None:
            return TrackerStatus.SEARCHING
        if self.state.stable:
            return TrackerStatus.STABLE
        return TrackerStatus.TRACKING

    def snapshot(self) -> TrackerSnapshot:
        return TrackerSnapshot(
            smoothed_quad=self.state.smoothed_quad,
            stable=self.state.stable,
            status=self.status,
            missed_count=self.state.missed_count,
        )

    def reset(self) -> None:
        """Drop the track and start searching again."""
        self.state = TrackerState()

    def _is_valid(self, quad: Optional[Quad]) -> bool:
        return is_valid_rectangle(
            quad,
            min_rectangularity=self.min_rectangularity,
            max_aspect_ratio=self.max_aspect_ratio,
            min_side_consistency=self.min_side_consistency,
            max_angle_deviation=self.max_angle_deviation,
        )

    def _register_miss(self) -> None:
        state = self.state
        state.missed_count += 1
        if state.missed_count >= self.max_missed_frames:
            if state.smoothed_quad is not None:
                logger.info("Document lost after %d missed frames", state.missed_count)
            self.reset()

    def _update_stability(self, now_ms: float) -> None:
        state = self.state
        history = state.area_history
        if len(history) < MIN_STABILITY_SAMPLES:
            return

        mean = sum(history) / len(history)
        if mean <= 0:
            return
        variance = sum((a - mean) ** 2 for a in history) / len(history)
        relative = math.sqrt(variance) / mean

        if relative < self.stable_motion_threshold:
            if state.stable_start_time is None:
                state.stable_start_time = now_ms
            if now_ms - state.stable_start_time >= self.stable_duration and not state.stable:
                state.stable = True
                logger.info("Document stable (relative area deviation %.4f)", relative)
        else:
            if state.stable:
                logger.info("Document no longer stable (relative area deviation %.4f)", relative)
            state.stable_start_time = None
            state.stable = False

    def update(self, result: DetectionResult, now_ms: float) -> TrackerSnapshot:
        """
        Feed one frame's detection.

        Args:
            result: Detection for the frame (quad may be None)
            now_ms: Frame timestamp in milliseconds, non-decreasing

        Returns:
            Snapshot with the smoothed quad and stability flag
        """
        quad = result.quad if result is not None else None
        if not self._is_valid(quad):
            self._register_miss()
            return self.snapshot()

        state = self.state
        area = quad.area
        if state.last_area == 0:
            state.last_area = area

        change = abs(area - state.last_area) / max(state.last_area, 1.0)
        if change > self.significant_change_threshold:
            logger.info("Scene change: area changed by %.1f%%", change * 100)
            self.reset()
            return self.snapshot()

        if state.smoothed_quad is None:
            logger.info("Document acquired")

        # Corner i must be the same physical corner in both quads before averaging
        quad = order_quad(quad)
        if state.smoothed_quad is not None:
            quad = align_corners(state.smoothed_quad, quad)

        state.missed_count = 0
        state.smoothed_quad = ema_quad(state.smoothed_quad, quad, self.smoothing_alpha)
        state.last_area = area
        state.area_history.append(area)
        self._update_stability(now_ms)

        return self.snapshot()
