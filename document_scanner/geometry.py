"""
Geometry primitives for document quads
"""

import math
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np


# Below this determinant two lines are treated as parallel
PARALLEL_EPSILON = 1e-2


@dataclass(frozen=True)
class Point:
    """Image-space pixel coordinate, origin top-left."""

    x: float
    y: float

    def distance_to(self, other: "Point") -> float:
        return math.hypot(other.x - self.x, other.y - self.y)

    def is_finite(self) -> bool:
        return math.isfinite(self.x) and math.isfinite(self.y)


@dataclass(frozen=True)
class LineSegment:
    """
    Line segment returned by a line detector.

    Angle is in degrees (-180..180) measured with atan2 in image coordinates.
    """

    p1: Point
    p2: Point
    angle: float
    length: float

    @classmethod
    def from_coords(cls, x1: float, y1: float, x2: float, y2: float) -> "LineSegment":
        angle = math.degrees(math.atan2(y2 - y1, x2 - x1))
        length = math.hypot(x2 - x1, y2 - y1)
        return cls(Point(float(x1), float(y1)), Point(float(x2), float(y2)), angle, length)

    @classmethod
    def from_points(cls, p1: Point, p2: Point) -> "LineSegment":
        return cls.from_coords(p1.x, p1.y, p2.x, p2.y)

    @property
    def midpoint(self) -> Point:
        return Point((self.p1.x + self.p2.x) / 2, (self.p1.y + self.p2.y) / 2)


def intersect(line_a: LineSegment, line_b: LineSegment) -> Optional[Point]:
    """
    Intersection of the two infinite lines through the segment endpoints.

    Returns None when the lines are (nearly) parallel.
    """
    x1, y1, x2, y2 = line_a.p1.x, line_a.p1.y, line_a.p2.x, line_a.p2.y
    x3, y3, x4, y4 = line_b.p1.x, line_b.p1.y, line_b.p2.x, line_b.p2.y

    denom = (x1 - x2) * (y3 - y4) - (y1 - y2) * (x3 - x4)
    if abs(denom) < PARALLEL_EPSILON:
        return None

    t = ((x1 - x3) * (y3 - y4) - (y1 - y3) * (x3 - x4)) / denom
    return Point(x1 + t * (x2 - x1), y1 + t * (y2 - y1))


def angle_between(a: Point, b: Point, c: Point) -> float:
    """Angle at vertex b formed by rays b->a and b->c, in degrees (0..180)."""
    abx, aby = a.x - b.x, a.y - b.y
    cbx, cby = c.x - b.x, c.y - b.y
    mag1 = math.hypot(abx, aby)
    mag2 = math.hypot(cbx, cby)
    if mag1 == 0 or mag2 == 0:
        return 0.0
    cos = (abx * cbx + aby * cby) / (mag1 * mag2)
    cos = max(-1.0, min(1.0, cos))
    return math.degrees(math.acos(cos))


def _cross_products(points: Sequence[Point]) -> List[float]:
    crosses = []
    n = len(points)
    for i in range(n):
        p1, p2, p3 = points[i], points[(i + 1) % n], points[(i + 2) % n]
        dx1, dy1 = p2.x - p1.x, p2.y - p1.y
        dx2, dy2 = p3.x - p2.x, p3.y - p2.y
        crosses.append(dx1 * dy2 - dy1 * dx2)
    return crosses


def is_convex(points: Sequence[Point]) -> bool:
    """True iff the 4 points form a strictly convex polygon in the given order."""
    if len(points) != 4:
        return False
    crosses = _cross_products(points)
    return all(c > 0 for c in crosses) or all(c < 0 for c in crosses)


def polygon_area(points: Sequence[Point]) -> float:
    """Shoelace area (absolute value)."""
    n = len(points)
    if n < 3:
        return 0.0
    total = 0.0
    for i in range(n):
        j = (i + 1) % n
        total += points[i].x * points[j].y - points[j].x * points[i].y
    return abs(total) / 2.0


class Quad:
    """
    Four-point polygon approximating a document outline.

    Points are kept in the order given; use order_quad() to normalize
    to top-left, top-right, bottom-right, bottom-left.
    """

    __slots__ = ('points',)

    def __init__(self, points: Iterable[Point]):
        points = tuple(points)
        if len(points) != 4:
            raise ValueError(f"Quad needs exactly 4 points, got {len(points)}")
        self.points: Tuple[Point, Point, Point, Point] = points

    @classmethod
    def from_array(cls, array) -> "Quad":
        arr = np.asarray(array, dtype=np.float64).reshape(-1, 2)
        return cls(Point(float(x), float(y)) for x, y in arr)

    @classmethod
    def from_flat(cls, values: Sequence[float]) -> "Quad":
        if len(values) != 8:
            raise ValueError(f"Flat quad needs 8 values, got {len(values)}")
        return cls(Point(float(values[i]), float(values[i + 1])) for i in range(0, 8, 2))

    def to_array(self) -> np.ndarray:
        return np.array([[p.x, p.y] for p in self.points], dtype=np.float32)

    def to_flat(self) -> List[float]:
        return [c for p in self.points for c in (p.x, p.y)]

    def __iter__(self):
        return iter(self.points)

    def __getitem__(self, index: int) -> Point:
        return self.points[index]

    def __len__(self) -> int:
        return 4

    def __eq__(self, other) -> bool:
        return isinstance(other, Quad) and self.points == other.points

    def __hash__(self) -> int:
        return hash(self.points)

    def __repr__(self) -> str:
        inner = ", ".join(f"({p.x:.1f}, {p.y:.1f})" for p in self.points)
        return f"Quad({inner})"

    @property
    def area(self) -> float:
        return polygon_area(self.points)

    @property
    def centroid(self) -> Point:
        return Point(
            sum(p.x for p in self.points) / 4,
            sum(p.y for p in self.points) / 4,
        )

    def is_finite(self) -> bool:
        return all(p.is_finite() for p in self.points)

    def is_convex(self) -> bool:
        return is_convex(self.points)

    def side_lengths(self) -> Tuple[float, float, float, float]:
        """Lengths of sides 0-1, 1-2, 2-3, 3-0."""
        p = self.points
        return (
            p[0].distance_to(p[1]),
            p[1].distance_to(p[2]),
            p[2].distance_to(p[3]),
            p[3].distance_to(p[0]),
        )

    def interior_angles(self) -> Tuple[float, float, float, float]:
        p = self.points
        return (
            angle_between(p[3], p[0], p[1]),
            angle_between(p[0], p[1], p[2]),
            angle_between(p[1], p[2], p[3]),
            angle_between(p[2], p[3], p[0]),
        )

    def bounds(self) -> Tuple[float, float, float, float]:
        """Bounding extent as (min_x, min_y, max_x, max_y)."""
        xs = [p.x for p in self.points]
        ys = [p.y for p in self.points]
        return min(xs), min(ys), max(xs), max(ys)

    def scaled(self, scale_x: float, scale_y: float) -> "Quad":
        """Rescale coordinates, e.g. from preview to capture resolution."""
        return Quad(Point(p.x * scale_x, p.y * scale_y) for p in self.points)

    def shrunk(self, fraction: float = 0.02) -> "Quad":
        """Pull every corner toward the centroid by the given fraction."""
        c = self.centroid
        return Quad(
            Point(p.x + (c.x - p.x) * fraction, p.y + (c.y - p.y) * fraction)
            for p in self.points
        )


def _order_by_angle(points: Sequence[Point]) -> List[Point]:
    """Clockwise order around the centroid, starting at the smallest x + y."""
    cx = sum(p.x for p in points) / len(points)
    cy = sum(p.y for p in points) / len(points)
    by_angle = sorted(points, key=lambda p: math.atan2(p.y - cy, p.x - cx))
    start = min(range(len(by_angle)), key=lambda i: (by_angle[i].x + by_angle[i].y, by_angle[i].x))
    return by_angle[start:] + by_angle[:start]


def order_quad(quad: Quad) -> Quad:
    """
    Order corners as top-left, top-right, bottom-right, bottom-left.

    Sorts by Y to split the top pair from the bottom pair, then each pair
    by X. Ties on Y are broken by X. If that ordering yields a
    self-intersecting outline (heavily rotated or near-square documents),
    the corners are ordered clockwise around the centroid instead,
    starting at the corner with the smallest x + y.
    """
    points = sorted(quad.points, key=lambda p: (p.y, p.x))
    top = sorted(points[:2], key=lambda p: p.x)
    bottom = sorted(points[2:], key=lambda p: p.x)
    ordered = [top[0], top[1], bottom[1], bottom[0]]

    if is_convex(ordered):
        return Quad(ordered)

    by_angle = _order_by_angle(quad.points)
    if is_convex(by_angle):
        return Quad(by_angle)

    # Degenerate outline; keep the Y-then-X result
    return Quad(ordered)
