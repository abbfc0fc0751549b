"""
Quad scoring and selection
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from .candidates import QuadCandidate
from .geometry import Quad

logger = logging.getLogger(__name__)


RECTANGULARITY_WEIGHT = 0.4
AREA_WEIGHT = 0.3
ASPECT_WEIGHT = 0.1
SIDE_WEIGHT = 0.1
CENTER_WEIGHT = 0.1
EDGE_PENALTY = 0.1

# Interior angles outside this range reject the quad outright
MIN_CORNER_ANGLE = 60.0
MAX_CORNER_ANGLE = 120.0


def rectangularity_score(quad: Quad) -> float:
    """
    How close the interior angles are to 90 degrees.

    1.0 for a perfect rectangle, 0 once the summed deviation reaches 80
    degrees or any single angle is below 60 or above 120.
    """
    angles = quad.interior_angles()
    if any(a < MIN_CORNER_ANGLE or a > MAX_CORNER_ANGLE for a in angles):
        return 0.0
    total_dev = sum(abs(90.0 - a) for a in angles)
    return max(0.0, 1.0 - total_dev / 80.0)


def aspect_ratio(quad: Quad) -> float:
    """Long-side over short-side ratio using the averaged opposite sides."""
    s0, s1, s2, s3 = quad.side_lengths()
    avg_width = (s0 + s2) / 2
    avg_height = (s1 + s3) / 2
    short = min(avg_width, avg_height)
    if short <= 0:
        return math.inf
    return max(avg_width, avg_height) / short


def side_consistency(quad: Quad) -> Tuple[float, float]:
    """Shorter/longer ratio for each pair of opposite sides."""
    s0, s1, s2, s3 = quad.side_lengths()

    def ratio(a, b):
        longer = max(a, b)
        return min(a, b) / longer if longer > 0 else 0.0

    return ratio(s0, s2), ratio(s1, s3)


def is_valid_rectangle(
    quad: Optional[Quad],
    min_rectangularity: float = 0.8,
    max_aspect_ratio: float = 2.5,
    min_side_consistency: float = 0.75,
    max_angle_deviation: float = 25.0
) -> bool:
    """Strict per-frame rectangle check used by the tracker."""
    if quad is None or not quad.is_finite():
        return False
    if not quad.is_convex():
        return False
    if rectangularity_score(quad) < min_rectangularity:
        return False
    if aspect_ratio(quad) > max_aspect_ratio:
        return False
    width_ratio, height_ratio = side_consistency(quad)
    if width_ratio < min_side_consistency or height_ratio < min_side_consistency:
        return False
    return all(abs(90.0 - a) <= max_angle_deviation for a in quad.interior_angles())


@dataclass(frozen=True)
class QuadScore:
    """Per-factor breakdown of a candidate's score."""

    total: float
    rectangularity: float = 0.0
    area: float = 0.0
    aspect: float = 0.0
    side_consistency: float = 0.0
    center: float = 0.0
    edge_penalty: float = 0.0
    rejected: Optional[str] = None


class QuadScorer:
    """
    Scores quad candidates and picks the best one.

    The combined score is a weighted sum of rectangularity, area,
    aspect, side-consistency and center-bias factors, minus a penalty
    for quads that hug the frame border.
    """

    def __init__(
        self,
        min_area_percent: float = 0.03,
        max_area_percent: float = 0.95,
        min_side_consistency: float = 0.7,
        max_aspect_ratio: float = 2.5,
        aspect_band: Tuple[float, float] = (1.1, 1.8),
        edge_margin: float = 20.0,
        min_score: float = 0.5
    ):
        """
        Args:
            min_area_percent: Smallest accepted quad area as a fraction of the frame
            max_area_percent: Largest accepted quad area as a fraction of the frame
            min_side_consistency: Minimum shorter/longer ratio of opposite sides
            max_aspect_ratio: Aspect ratios above this score lowest
            aspect_band: Preferred document aspect range (portrait or landscape)
            edge_margin: Distance (px) from the frame border that triggers the edge penalty
            min_score: Minimum combined score for a candidate to be selected
        """
        self.min_area_percent = min_area_percent
        self.max_area_percent = max_area_percent
        self.min_side_consistency = min_side_consistency
        self.max_aspect_ratio = max_aspect_ratio
        self.aspect_band = aspect_band
        self.edge_margin = edge_margin
        self.min_score = min_score

    def _aspect_score(self, ratio: float) -> float:
        low, high = self.aspect_band
        if low <= ratio <= high:
            return 1.0
        if ratio < low:
            # Near-square
            return 0.6
        if ratio <= self.max_aspect_ratio:
            return 0.4
        return 0.1

    def _center_score(self, quad: Quad, width: float, height: float) -> float:
        cx, cy = width / 2, height / 2
        centroid = quad.centroid
        max_dist = math.hypot(cx, cy)
        if max_dist <= 0:
            return 0.0
        dist = math.hypot(centroid.x - cx, centroid.y - cy)
        return max(0.0, 1.0 - dist / max_dist)

    def _near_edge(self, quad: Quad, width: float, height: float) -> bool:
        min_x, min_y, max_x, max_y = quad.bounds()
        margin = self.edge_margin
        return (
            min_x < margin or
            min_y < margin or
            max_x > width - margin or
            max_y > height - margin
        )

    def score(self, quad: Quad, width: float, height: float) -> QuadScore:
        """
        Score one quad against a frame of the given size.

        Returns:
            QuadScore with total 0 and a rejection reason for quads that
            fail a hard check (corner angles, area bounds, side consistency).
        """
        frame_area = float(width) * float(height)
        if frame_area <= 0 or not quad.is_finite():
            return QuadScore(total=0.0, rejected='invalid input')

        rect = rectangularity_score(quad)
        if rect <= 0:
            return QuadScore(total=0.0, rejected='corner angles')

        area_ratio = quad.area / frame_area
        if area_ratio < self.min_area_percent:
            return QuadScore(total=0.0, rectangularity=rect, area=area_ratio, rejected='too small')
        if area_ratio > self.max_area_percent:
            return QuadScore(total=0.0, rectangularity=rect, area=area_ratio, rejected='too large')

        width_ratio, height_ratio = side_consistency(quad)
        side = min(width_ratio, height_ratio)
        if side < self.min_side_consistency:
            return QuadScore(total=0.0, rectangularity=rect, area=area_ratio,
                             side_consistency=side, rejected='side consistency')

        aspect = self._aspect_score(aspect_ratio(quad))
        center = self._center_score(quad, width, height)
        penalty = EDGE_PENALTY if self._near_edge(quad, width, height) else 0.0

        total = (
            RECTANGULARITY_WEIGHT * rect +
            AREA_WEIGHT * area_ratio +
            ASPECT_WEIGHT * aspect +
            SIDE_WEIGHT * side +
            CENTER_WEIGHT * center
        ) - penalty

        return QuadScore(
            total=max(0.0, total),
            rectangularity=rect,
            area=area_ratio,
            aspect=aspect,
            side_consistency=side,
            center=center,
            edge_penalty=penalty,
        )

    def select(
        self,
        candidates: Sequence[QuadCandidate],
        width: float,
        height: float
    ) -> Tuple[Optional[QuadCandidate], Optional[QuadScore]]:
        """
        Pick the highest scoring candidate above min_score.

        Ties keep the first candidate in enumeration order.

        Returns:
            (candidate, score), or (None, best_rejected_score) when nothing
            clears the threshold. The score is None when there were no candidates.
        """
        best: Optional[QuadCandidate] = None
        best_score: Optional[QuadScore] = None

        for candidate in candidates:
            scored = self.score(candidate.quad, width, height)
            if best_score is None or scored.total > best_score.total:
                best = candidate
                best_score = scored

        if best_score is None:
            return None, None
        if best_score.total < self.min_score:
            logger.debug("Best score %.3f below threshold %.3f", best_score.total, self.min_score)
            return None, best_score
        return best, best_score

