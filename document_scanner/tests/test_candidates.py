"""
Tests for quad candidate building
"""

import math

import pytest

from document_scanner.candidates import QuadCandidateBuilder, classify_lines, RELAXED_BANDS
from document_scanner.geometry import LineSegment, Point


def seg(x1, y1, x2, y2):
    return LineSegment.from_coords(x1, y1, x2, y2)


class TestClassifyLines:
    """Tests for orientation grouping"""

    def test_strict_bands(self):
        lines = [
            seg(0, 0, 100, 0),      # 0 deg
            seg(100, 10, 0, 12),    # ~179 deg
            seg(0, 0, 0, 100),      # 90 deg
            seg(0, 100, 10, 0),     # ~-84 deg
            seg(0, 0, 100, 100),    # 45 deg, dropped
        ]
        horizontal, vertical = classify_lines(lines)
        assert len(horizontal) == 2
        assert len(vertical) == 2

    def test_relaxed_band_accepts_steeper_lines(self):
        line = seg(0, 0, 100, 70)  # ~35 deg
        assert classify_lines([line])[0] == []
        assert classify_lines([line], RELAXED_BANDS)[0] == [line]


class TestQuadCandidateBuilder:
    """Tests for QuadCandidateBuilder"""

    @pytest.fixture
    def builder(self):
        return QuadCandidateBuilder()

    @pytest.fixture
    def box_lines(self):
        """Two horizontal and two vertical lines bounding a 160x190 box"""
        return [
            seg(0, 10, 220, 10),
            seg(0, 200, 220, 200),
            seg(20, 0, 20, 220),
            seg(180, 0, 180, 220),
        ]

    def test_builder_init(self, builder):
        assert builder.candidate_limit == 4
        assert builder.bounds_tolerance == 5.0

    def test_single_box(self, builder, box_lines):
        """Four lines give exactly one candidate with corners TL, TR, BR, BL"""
        candidates = builder.build(box_lines, 220, 220)
        assert len(candidates) == 1
        quad = candidates[0].quad
        assert quad.to_flat() == pytest.approx([20, 10, 180, 10, 180, 200, 20, 200])
        top, bottom = candidates[0].horizontal_pair
        assert top.midpoint.y < bottom.midpoint.y

    def test_build_from_groups(self, builder, box_lines):
        """Pre-grouped lines give the same candidates as build"""
        horizontal, vertical = builder.group_lines(box_lines)
        candidates = builder.build_from_groups(horizontal, vertical, 220, 220)
        assert [c.quad for c in candidates] == [c.quad for c in builder.build(box_lines, 220, 220)]

    def test_not_enough_lines(self, builder):
        """One line per orientation is a normal empty result"""
        lines = [seg(0, 10, 200, 10), seg(20, 0, 20, 200)]
        assert builder.build(lines, 220, 220) == []

    def test_empty_input(self, builder):
        assert builder.build([], 100, 100) == []

    def test_out_of_bounds_rejected(self, builder):
        """Corners beyond the tolerance are dropped"""
        lines = [
            seg(0, 10, 220, 10),
            seg(0, 200, 220, 200),
            seg(20, 0, 20, 220),
            seg(300, 0, 300, 220),
        ]
        assert builder.build(lines, 220, 220) == []

    def test_within_tolerance_kept(self, builder):
        lines = [
            seg(0, -3, 220, -3),
            seg(0, 200, 220, 200),
            seg(20, 0, 20, 220),
            seg(223, 0, 223, 220),
        ]
        assert len(builder.build(lines, 220, 220)) == 1

    def test_candidate_limit_bounds_enumeration(self):
        """At most C(K,2)^2 hypotheses are tried"""
        horizontal = [seg(0, y, 400, y) for y in range(20, 380, 40)]
        vertical = [seg(x, 0, x, 400) for x in range(20, 380, 40)]
        builder = QuadCandidateBuilder(candidate_limit=3)
        candidates = builder.build(horizontal + vertical, 400, 400)
        assert len(candidates) <= math.comb(3, 2) ** 2
        assert len(candidates) == 9

    def test_longest_lines_preferred(self):
        """Only the K longest lines per orientation take part"""
        lines = [
            seg(0, 10, 220, 10),
            seg(0, 200, 220, 200),
            seg(100, 100, 120, 100),  # short, dropped with K=2
            seg(20, 0, 20, 220),
            seg(180, 0, 180, 220),
        ]
        builder = QuadCandidateBuilder(candidate_limit=2)
        candidates = builder.build(lines, 220, 220)
        assert len(candidates) == 1

    def test_from_polygons(self, builder):
        """Polygons are ordered and non-quads skipped"""
        polygons = [
            [Point(180, 200), Point(20, 10), Point(20, 200), Point(180, 10)],
            [Point(0, 0), Point(10, 0), Point(10, 10)],
            [Point(0, 0), Point(float('nan'), 0), Point(10, 10), Point(0, 10)],
        ]
        candidates = builder.from_polygons(polygons)
        assert len(candidates) == 1
        assert candidates[0].quad.points[0] == Point(20, 10)
        assert candidates[0].horizontal_pair is None
