"""
Quad candidate builder

Turns raw line segments into convex quad hypotheses by pairing
horizontal-like and vertical-like lines and intersecting them.
"""

import logging
from dataclasses import dataclass
from itertools import combinations
from typing import List, Optional, Sequence, Tuple

from .geometry import LineSegment, Point, Quad, intersect, order_quad

logger = logging.getLogger(__name__)


# (horizontal max |angle|, horizontal min |angle|, vertical low, vertical high)
STRICT_BANDS = (30.0, 150.0, 60.0, 120.0)
RELAXED_BANDS = (40.0, 140.0, 50.0, 130.0)


@dataclass(frozen=True)
class QuadCandidate:
    """Convex quad hypothesis with the lines it was built from."""

    quad: Quad
    horizontal_pair: Optional[Tuple[LineSegment, LineSegment]] = None
    vertical_pair: Optional[Tuple[LineSegment, LineSegment]] = None


def classify_lines(
    lines: Sequence[LineSegment],
    bands: Tuple[float, float, float, float] = STRICT_BANDS
) -> Tuple[List[LineSegment], List[LineSegment]]:
    """
    Split segments into horizontal-like and vertical-like groups.

    Segments outside both angle bands are dropped.
    """
    h_max, h_min, v_low, v_high = bands
    horizontal = []
    vertical = []
    for line in lines:
        abs_angle = abs(line.angle)
        if abs_angle < h_max or abs_angle > h_min:
            horizontal.append(line)
        elif v_low < abs_angle < v_high:
            vertical.append(line)
    return horizontal, vertical


class QuadCandidateBuilder:
    """
    Builds quad candidates from line segments.

    Every pair of the K longest horizontal-like lines is combined with
    every pair of the K longest vertical-like lines, giving at most
    C(K,2)^2 hypotheses per frame.
    """

    def __init__(self, candidate_limit: int = 4, bounds_tolerance: float = 5.0):
        """
        Args:
            candidate_limit: K, number of longest lines kept per orientation
            bounds_tolerance: How far (px) a corner may lie outside the frame
        """
        self.candidate_limit = candidate_limit
        self.bounds_tolerance = bounds_tolerance

    def group_lines(self, lines: Sequence[LineSegment]) -> Tuple[List[LineSegment], List[LineSegment]]:
        """Classify lines, retrying with relaxed bands when a group is too small."""
        horizontal, vertical = classify_lines(lines, STRICT_BANDS)
        if len(horizontal) < 2 or len(vertical) < 2:
            horizontal, vertical = classify_lines(lines, RELAXED_BANDS)
        return horizontal, vertical

    def _top_lines(self, lines: List[LineSegment]) -> List[LineSegment]:
        # Stable sort keeps detector order for equal lengths
        return sorted(lines, key=lambda l: l.length, reverse=True)[:self.candidate_limit]

    def _in_bounds(self, point: Point, width: float, height: float) -> bool:
        tol = self.bounds_tolerance
        return -tol <= point.x <= width + tol and -tol <= point.y <= height + tol

    def build(
        self,
        lines: Sequence[LineSegment],
        width: float,
        height: float
    ) -> List[QuadCandidate]:
        """
        Build all valid convex candidates for a frame.

        Args:
            lines: Line segments from the external line detector
            width: Frame width in pixels
            height: Frame height in pixels

        Returns:
            Candidates in enumeration order. Empty when fewer than two lines
            exist in either orientation (no document visible).
        """
        horizontal, vertical = self.group_lines(lines)
        return self.build_from_groups(horizontal, vertical, width, height)

    def build_from_groups(
        self,
        horizontal: Sequence[LineSegment],
        vertical: Sequence[LineSegment],
        width: float,
        height: float
    ) -> List[QuadCandidate]:
        """Like build, for lines already split by group_lines."""
        if len(horizontal) < 2 or len(vertical) < 2:
            logger.debug("Not enough lines: %d horizontal, %d vertical", len(horizontal), len(vertical))
            return []

        horizontal = self._top_lines(horizontal)
        vertical = self._top_lines(vertical)

        candidates = []
        for h_pair in combinations(horizontal, 2):
            top, bottom = sorted(h_pair, key=lambda l: l.midpoint.y)
            for v_pair in combinations(vertical, 2):
                left, right = sorted(v_pair, key=lambda l: l.midpoint.x)

                corners = [
                    intersect(top, left),
                    intersect(top, right),
                    intersect(bottom, right),
                    intersect(bottom, left),
                ]
                if any(c is None for c in corners):
                    continue
                if not all(self._in_bounds(c, width, height) for c in corners):
                    continue

                quad = Quad(corners)
                if not quad.is_convex():
                    continue

                candidates.append(QuadCandidate(quad, (top, bottom), (left, right)))

        logger.debug("Built %d candidates from %d/%d lines", len(candidates), len(horizontal), len(vertical))
        return candidates

    def from_polygons(self, polygons: Sequence[Sequence[Point]]) -> List[QuadCandidate]:
        """Wrap 4-point polygons from a contour source as candidates."""
        candidates = []
        for polygon in polygons:
            if len(polygon) != 4:
                continue
            quad = Quad(polygon)
            if not quad.is_finite():
                continue
            quad = order_quad(quad)
            if not quad.is_convex():
                continue
            candidates.append(QuadCandidate(quad))
        return candidates
