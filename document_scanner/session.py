"""
Scanning session

Runs a stream of camera frames through detection, tracking and
auto-capture, and rectifies the captured pages.
"""

import asyncio
import logging
import threading
import time
import uuid
from concurrent.futures import Executor
from dataclasses import dataclass
from typing import List, Optional, Tuple

import cv2
import numpy as np

from .backends import CannyEdgeDetector, ContourPolygonSource, HoughLineSource, enhance_document, warp_perspective
from .config import ScannerConfig
from .detector import DetectionResult, DocumentDetector
from .geometry import Quad
from .rectifier import InvalidQuad, build_rectification_plan
from .tracker import QuadTracker, TrackerSnapshot

logger = logging.getLogger(__name__)


class AutoCapture:
    """
    Fires a capture after the document has been stable for a while.

    The countdown starts when the tracker reports Stable, restarts
    whenever stability is lost, and is followed by a cooldown during
    which nothing fires.
    """

    def __init__(self, enabled: bool = True, delay_ms: float = 1000.0, cooldown_ms: float = 1000.0):
        self.enabled = enabled
        self.delay_ms = delay_ms
        self.cooldown_ms = cooldown_ms
        self._countdown_start: Optional[float] = None
        self._cooldown_until: float = float('-inf')

    @classmethod
    def from_config(cls, config: ScannerConfig) -> "AutoCapture":
        return cls(config.auto_capture, config.auto_capture_delay, config.auto_capture_cooldown)

    @property
    def counting(self) -> bool:
        return self._countdown_start is not None

    def should_capture(self, stable: bool, now_ms: float) -> bool:
        """Advance the countdown; True exactly once when it completes."""
        if not self.enabled or not stable or now_ms < self._cooldown_until:
            self._countdown_start = None
            return False

        if self._countdown_start is None:
            self._countdown_start = now_ms

        if now_ms - self._countdown_start >= self.delay_ms:
            self._countdown_start = None
            self._cooldown_until = now_ms + self.cooldown_ms
            return True
        return False

    def progress(self, now_ms: float) -> float:
        """Countdown progress in 0..1 (0 when not counting)."""
        if self._countdown_start is None:
            return 0.0
        if self.delay_ms <= 0:
            return 1.0
        return min(1.0, max(0.0, (now_ms - self._countdown_start) / self.delay_ms))

    def cancel(self, now_ms: float, with_cooldown: bool = True) -> None:
        self._countdown_start = None
        if with_cooldown:
            self._cooldown_until = now_ms + self.cooldown_ms


@dataclass(frozen=True)
class CapturedPage:
    id: str
    quad: Quad
    timestamp_ms: float
    original: np.ndarray
    processed: np.ndarray


@dataclass(frozen=True)
class FrameUpdate:
    """Per-frame outcome of ScanSession.feed."""

    detection: DetectionResult
    snapshot: TrackerSnapshot
    capture_progress: float = 0.0
    page: Optional[CapturedPage] = None


class ScanSession:
    """
    One scanning session over a stream of frames.

    Only one frame is processed at a time. A frame offered while
    another is still in flight is dropped (feed returns None) so the
    tracker always sees frames in arrival order.
    """

    def __init__(
        self,
        config: Optional[ScannerConfig] = None,
        edge_detector: Optional[CannyEdgeDetector] = None,
        line_source: Optional[HoughLineSource] = None,
        polygon_source: Optional[ContourPolygonSource] = None,
        detector: Optional[DocumentDetector] = None,
        executor: Optional[Executor] = None
    ):
        self.config = config or ScannerConfig()
        self.edge_detector = edge_detector or CannyEdgeDetector()
        self.line_source = line_source or HoughLineSource()
        self.polygon_source = polygon_source or ContourPolygonSource()
        self.detector = detector or DocumentDetector.from_config(self.config)
        self.tracker = QuadTracker.from_config(self.config)
        self.auto_capture = AutoCapture.from_config(self.config)
        self.executor = executor
        self.pages: List[CapturedPage] = []
        self._busy = threading.Lock()

    def detect(self, frame: np.ndarray) -> DetectionResult:
        """Single-frame detection without touching the tracker."""
        height, width = frame.shape[:2]
        try:
            edges = self.edge_detector.detect(frame)
            lines = self.line_source.detect_lines(edges)
            polygons = self.polygon_source.detect_polygons(edges)
        except cv2.error as e:
            logger.warning("Frame detection failed, counting it as a miss: %s", e)
            return DetectionResult(quad=None, score=0.0)
        return self.detector.process(lines, polygons, width, height)

    def _auto_capture(self, frame: np.ndarray, now_ms: float) -> Optional[CapturedPage]:
        try:
            page = self.capture(frame, now_ms=now_ms)
        except InvalidQuad as e:
            logger.warning("Auto-capture failed: %s", e)
            return None
        logger.info("Auto-captured page %s", page.id)
        return page

    def _frame_update(
        self,
        detection: DetectionResult,
        snapshot: TrackerSnapshot,
        now_ms: float,
        page: Optional[CapturedPage] = None
    ) -> FrameUpdate:
        return FrameUpdate(
            detection=detection,
            snapshot=snapshot,
            capture_progress=self.auto_capture.progress(now_ms),
            page=page,
        )

    def _advance(self, frame: np.ndarray, detection: DetectionResult, now_ms: float) -> FrameUpdate:
        snapshot = self.tracker.update(detection, now_ms)

        page = None
        if self.auto_capture.should_capture(snapshot.stable, now_ms):
            page = self._auto_capture(frame, now_ms)
        return self._frame_update(detection, snapshot, now_ms, page)

    def feed(self, frame: np.ndarray, now_ms: Optional[float] = None) -> Optional[FrameUpdate]:
        """
        Process one frame.

        Args:
            frame: BGR camera frame
            now_ms: Frame timestamp in ms (defaults to wall clock)

        Returns:
            FrameUpdate, or None if the frame was dropped because another one is in flight
        """
        if not self._busy.acquire(blocking=False):
            logger.debug("Frame dropped, detector busy")
            return None
        try:
            if now_ms is None:
                now_ms = time.time() * 1000
            detection = self.detect(frame)
            return self._advance(frame, detection, now_ms)
        finally:
            self._busy.release()

    async def feed_async(self, frame: np.ndarray, now_ms: Optional[float] = None) -> Optional[FrameUpdate]:
        """Like feed, but detection and auto-capture run in an executor."""
        if not self._busy.acquire(blocking=False):
            logger.debug("Frame dropped, detector busy")
            return None
        try:
            if now_ms is None:
                now_ms = time.time() * 1000
            loop = asyncio.get_running_loop()
            detection = await loop.run_in_executor(self.executor, self.detect, frame)
            snapshot = self.tracker.update(detection, now_ms)

            page = None
            if self.auto_capture.should_capture(snapshot.stable, now_ms):
                page = await loop.run_in_executor(self.executor, self._auto_capture, frame, now_ms)
            return self._frame_update(detection, snapshot, now_ms, page)
        finally:
            self._busy.release()

    def capture(
        self,
        frame: np.ndarray,
        quad: Optional[Quad] = None,
        preview_size: Optional[Tuple[int, int]] = None,
        now_ms: Optional[float] = None
    ) -> CapturedPage:
        """
        Rectify the document in a frame.

        Args:
            frame: Full-resolution BGR image
            quad: Quad to rectify (defaults to the tracker's smoothed quad)
            preview_size: (width, height) the quad was detected at, if different from frame
            now_ms: Capture timestamp in ms

        Returns:
            CapturedPage with the original and rectified images

        Raises:
            InvalidQuad: If there is no usable quad
        """
        if quad is None:
            quad = self.tracker.state.smoothed_quad
        if quad is None:
            raise InvalidQuad("No document to capture")

        if preview_size is not None:
            height, width = frame.shape[:2]
            quad = quad.scaled(width / preview_size[0], height / preview_size[1])
        if self.config.shrink_percent > 0:
            quad = quad.shrunk(self.config.shrink_percent)

        plan = build_rectification_plan(quad, self.config.output_width, self.config.padding_percent)
        processed = warp_perspective(frame, plan)
        if self.config.enhance:
            processed = enhance_document(processed)

        page = CapturedPage(
            id=uuid.uuid4().hex,
            quad=plan.source_quad,
            timestamp_ms=now_ms if now_ms is not None else time.time() * 1000,
            original=frame.copy(),
            processed=processed,
        )
        self.pages.append(page)
        return page

    def reset(self) -> None:
        """Forget the tracked document and any pending auto-capture."""
        self.tracker.reset()
        self.auto_capture.cancel(0.0, with_cooldown=False)
