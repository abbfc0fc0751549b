"""
OpenCV backends for the scanner

Line/contour extraction, perspective resampling and document
enhancement. The geometry code only sees their outputs.
"""

import logging
import threading
from typing import Callable, Generic, List, Optional, TypeVar

import cv2
import numpy as np

from .geometry import LineSegment, Point
from .rectifier import RectifiedPlan

logger = logging.getLogger(__name__)

T = TypeVar('T')


def _to_gray(image: np.ndarray) -> np.ndarray:
    if image is None or image.size == 0:
        raise ValueError("Empty image")
    if image.ndim == 3 and image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2GRAY)
    if image.ndim == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
    if image.dtype != np.uint8:
        return cv2.normalize(image, None, 0, 255, cv2.NORM_MINMAX).astype(np.uint8)
    return image


class CannyEdgeDetector:
    """
    Edge map for a camera frame.

    Stands in for the neural edge model: Canny thresholds are derived
    from the median brightness so they adapt to the scene.
    """

    def __init__(self, blur_kernel: int = 5, sigma: float = 0.33):
        self.blur_kernel = blur_kernel
        self.sigma = sigma

    def detect(self, image: np.ndarray) -> np.ndarray:
        gray = _to_gray(image)
        blurred = cv2.GaussianBlur(gray, (self.blur_kernel, self.blur_kernel), 0)
        median_val = float(np.median(blurred))
        low = max(20, int((1.0 - self.sigma) * median_val))
        high = min(255, int((1.0 + self.sigma) * median_val))
        if low >= high:
            high = min(255, low + 40)
        return cv2.Canny(blurred, low, high)


class HoughLineSource:
    """Line segments from an edge or binary image via probabilistic Hough."""

    def __init__(
        self,
        threshold: int = 50,
        min_line_length: int = 50,
        max_line_gap: int = 10
    ):
        """
        Args:
            threshold: Accumulator votes needed for a line
            min_line_length: Shortest segment kept (px)
            max_line_gap: Largest gap bridged within one segment (px)
        """
        self.threshold = threshold
        self.min_line_length = min_line_length
        self.max_line_gap = max_line_gap

    def detect_lines(self, edge_image: np.ndarray) -> List[LineSegment]:
        gray = _to_gray(edge_image)
        lines = cv2.HoughLinesP(
            gray,
            1,
            np.pi / 180,
            self.threshold,
            minLineLength=self.min_line_length,
            maxLineGap=self.max_line_gap
        )
        if lines is None:
            return []
        return [LineSegment.from_coords(*map(float, line[0])) for line in lines]


class ContourPolygonSource:
    """4-point polygons approximated from the outer contours of a binary image."""

    def __init__(self, binary_threshold: int = 30, approx_epsilon: float = 0.04, min_area: float = 100.0):
        """
        Args:
            binary_threshold: Threshold applied before contour search (0-255)
            approx_epsilon: Polygon approximation tolerance as a ratio of the perimeter
            min_area: Contours smaller than this (px^2) are ignored
        """
        self.binary_threshold = binary_threshold
        self.approx_epsilon = approx_epsilon
        self.min_area = min_area

    def detect_polygons(self, binary_image: np.ndarray) -> List[List[Point]]:
        gray = _to_gray(binary_image)
        blurred = cv2.medianBlur(gray, 3)
        _, binary = cv2.threshold(blurred, self.binary_threshold, 255, cv2.THRESH_BINARY)
        kernel = cv2.getStructuringElement(cv2.MORPH_RECT, (3, 3))
        closed = cv2.morphologyEx(binary, cv2.MORPH_CLOSE, kernel)

        contours, _ = cv2.findContours(closed, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)

        polygons = []
        for contour in contours:
            if cv2.contourArea(contour) < self.min_area:
                continue
            peri = cv2.arcLength(contour, True)
            approx = cv2.approxPolyDP(contour, self.approx_epsilon * peri, True)
            if len(approx) != 4:
                continue
            polygons.append([Point(float(x), float(y)) for x, y in approx.reshape(4, 2)])
        return polygons


def warp_perspective(image: np.ndarray, plan: RectifiedPlan) -> np.ndarray:
    """
    Resample the source image into the plan's output rectangle.

    Padding shows the area around the document; anything outside the
    source image is filled black.
    """
    if image is None or image.size == 0:
        raise ValueError("Empty image")
    return cv2.warpPerspective(
        image,
        plan.homography,
        (plan.canvas_width, plan.canvas_height),
        flags=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=(0, 0, 0, 255)
    )


def enhance_document(image: np.ndarray, clip_limit: float = 2.5, sharpen: float = 0.5) -> np.ndarray:
    """
    Improve readability of a rectified BGR document.

    CLAHE on the lightness channel followed by an unsharp mask; colours are kept.
    """
    if image is None or image.size == 0:
        raise ValueError("Empty image")
    if image.ndim == 2:
        image = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)

    lab = cv2.cvtColor(image, cv2.COLOR_BGR2LAB)
    l_channel, a_channel, b_channel = cv2.split(lab)
    clahe = cv2.createCLAHE(clipLimit=clip_limit, tileGridSize=(8, 8))
    l_channel = clahe.apply(l_channel)
    enhanced = cv2.cvtColor(cv2.merge((l_channel, a_channel, b_channel)), cv2.COLOR_LAB2BGR)

    blurred = cv2.GaussianBlur(enhanced, (0, 0), 3)
    return cv2.addWeighted(enhanced, 1.0 + sharpen, blurred, -sharpen, 0)


class LazyBackend(Generic[T]):
    """
    Process-wide load-once holder for an expensive backend.

    The first initialize() runs the factory; callers arriving while it
    runs wait for the same result instead of loading again. A failed
    load leaves the holder un-ready so a later call can retry.
    """

    def __init__(self, factory: Callable[[], T], name: str = 'backend'):
        self._factory = factory
        self._name = name
        self._instance: Optional[T] = None
        self._ready = False
        self._lock = threading.Lock()

    def initialize(self) -> T:
        if self._ready:
            return self._instance
        with self._lock:
            if not self._ready:
                logger.info("Loading %s", self._name)
                self._instance = self._factory()
                self._ready = True
                logger.info("%s ready", self._name)
        return self._instance

    def is_ready(self) -> bool:
        return self._ready

    def get_instance(self) -> T:
        """
        Raises:
            RuntimeError: If initialize() has not completed
        """
        if not self._ready:
            raise RuntimeError(f"{self._name} not loaded. Call initialize() first.")
        return self._instance

    def reset(self) -> None:
        with self._lock:
            self._instance = None
            self._ready = False
