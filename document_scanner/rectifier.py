"""
Perspective rectification plan

Computes the output size and corner correspondence that unwarp a
document quad into an axis-aligned rectangle. Pixels are resampled
elsewhere (see backends.warp_perspective).
"""

import math
from dataclasses import dataclass
from typing import Tuple

import cv2
import numpy as np

from .geometry import Point, Quad, order_quad


class InvalidQuad(ValueError):
    """Raised when a quad cannot be rectified."""


@dataclass(frozen=True)
class RectifiedPlan:
    """
    Geometry for one capture.

    destination holds the output rectangle corners in the same order
    as source_quad (top-left, top-right, bottom-right, bottom-left),
    offset by padding when the plan is padded.
    """

    source_quad: Quad
    output_width: int
    output_height: int
    destination: Tuple[Point, Point, Point, Point]
    homography: np.ndarray
    padding: int = 0

    @property
    def canvas_width(self) -> int:
        return self.output_width + 2 * self.padding

    @property
    def canvas_height(self) -> int:
        return self.output_height + 2 * self.padding

    @property
    def mapping(self) -> Tuple[Tuple[Point, Point], ...]:
        """Source to destination correspondence, one pair per corner."""
        return tuple(zip(self.source_quad.points, self.destination))

    def map_point(self, point: Point) -> Point:
        """Forward-map a source image point into the output image."""
        src = np.array([[[point.x, point.y]]], dtype=np.float64)
        dst = cv2.perspectiveTransform(src, self.homography)
        return Point(float(dst[0, 0, 0]), float(dst[0, 0, 1]))


def _as_quad(quad) -> Quad:
    if isinstance(quad, Quad):
        return quad
    if quad is None:
        raise InvalidQuad("No quad given")
    try:
        arr = np.asarray(quad, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise InvalidQuad(f"Malformed quad: {e}") from e

    if arr.ndim == 1 and arr.size == 8:
        arr = arr.reshape(4, 2)
    if arr.shape != (4, 2):
        raise InvalidQuad(f"Quad must have exactly 4 points, got shape {arr.shape}")
    return Quad.from_array(arr)


def build_rectification_plan(
    quad,
    output_width: int,
    padding_percent: float = 0.0
) -> RectifiedPlan:
    """
    Build the rectification plan for a quad.

    Args:
        quad: Quad, 4 (x, y) pairs, or 8 flat coordinates in source image space
        output_width: Width of the rectified document in pixels
        padding_percent: Border added around the document as a fraction of output_width

    Returns:
        RectifiedPlan with output size and homography

    Raises:
        InvalidQuad: If the quad is malformed or yields a zero or non-finite size
    """
    quad = _as_quad(quad)
    if not quad.is_finite():
        raise InvalidQuad("Quad has non-finite coordinates")
    if isinstance(output_width, bool) or not isinstance(output_width, (int, np.integer)) or output_width <= 0:
        raise InvalidQuad(f"Output width must be a positive integer, got {output_width!r}")

    ordered = order_quad(quad)
    tl, tr, br, bl = ordered.points

    max_width = max(tl.distance_to(tr), bl.distance_to(br))
    max_height = max(tl.distance_to(bl), tr.distance_to(br))
    if not (math.isfinite(max_width) and math.isfinite(max_height)) or max_width <= 0 or max_height <= 0:
        raise InvalidQuad(f"Degenerate quad: width {max_width}, height {max_height}")

    output_width = int(output_width)
    output_height = int(round(max_height * output_width / max_width))
    if output_height <= 0:
        raise InvalidQuad(f"Computed output height is {output_height}")

    padding = int(round(output_width * padding_percent)) if padding_percent > 0 else 0

    destination = (
        Point(padding, padding),
        Point(padding + output_width, padding),
        Point(padding + output_width, padding + output_height),
        Point(padding, padding + output_height),
    )

    src = ordered.to_array()
    dst = np.array([[p.x, p.y] for p in destination], dtype=np.float32)
    try:
        homography = cv2.getPerspectiveTransform(src, dst)
    except cv2.error as e:
        raise InvalidQuad(f"Cannot compute homography: {e}") from e

    return RectifiedPlan(
        source_quad=ordered,
        output_width=output_width,
        output_height=output_height,
        destination=destination,
        homography=homography,
        padding=padding,
    )

