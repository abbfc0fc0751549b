"""
Per-frame document detector

Consumes line segments (or 4-point polygons) from an external detector
and returns the best document quad for the frame.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from .candidates import QuadCandidate, QuadCandidateBuilder
from .config import ScannerConfig
from .geometry import LineSegment, Point, Quad, order_quad
from .scoring import QuadScore, QuadScorer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetectionStats:
    candidates_considered: int = 0
    lines_horizontal: int = 0
    lines_vertical: int = 0
    method: str = 'none'
    best_score: float = 0.0


@dataclass(frozen=True)
class DetectionResult:
    """Outcome of one frame. quad is None when no document was found."""

    quad: Optional[Quad]
    score: float
    stats: DetectionStats = field(default_factory=DetectionStats)
    details: Optional[QuadScore] = None

    @property
    def found(self) -> bool:
        return self.quad is not None


class DocumentDetector:
    """
    Finds the document quad in a single frame.

    Candidates are built from line pairs (or taken from polygons),
    scored, and the best one above the acceptance threshold is returned
    with its corners ordered top-left, top-right, bottom-right, bottom-left.
    """

    def __init__(
        self,
        builder: Optional[QuadCandidateBuilder] = None,
        scorer: Optional[QuadScorer] = None
    ):
        self.builder = builder or QuadCandidateBuilder()
        self.scorer = scorer or QuadScorer()

    @classmethod
    def from_config(cls, config: ScannerConfig) -> "DocumentDetector":
        builder = QuadCandidateBuilder(
            candidate_limit=config.candidate_limit,
            bounds_tolerance=config.bounds_tolerance,
        )
        scorer = QuadScorer(
            min_area_percent=config.min_area_percent,
            max_area_percent=config.max_area_percent,
            min_side_consistency=config.min_side_consistency,
            max_aspect_ratio=config.max_aspect_ratio,
            aspect_band=(config.aspect_band_low, config.aspect_band_high),
            edge_margin=config.edge_margin,
            min_score=config.min_score,
        )
        return cls(builder, scorer)

    def _select(
        self,
        candidates: Sequence[QuadCandidate],
        width: float,
        height: float,
        method: str,
        lines_horizontal: int = 0,
        lines_vertical: int = 0
    ) -> DetectionResult:
        best, best_score = self.scorer.select(candidates, width, height)
        stats = DetectionStats(
            candidates_considered=len(candidates),
            lines_horizontal=lines_horizontal,
            lines_vertical=lines_vertical,
            method=method if best is not None else 'none',
            best_score=best_score.total if best_score is not None else 0.0,
        )
        if best is None:
            return DetectionResult(quad=None, score=0.0, stats=stats, details=best_score)

        return DetectionResult(
            quad=order_quad(best.quad),
            score=best_score.total,
            stats=stats,
            details=best_score,
        )

    def process_frame(self, lines: Sequence[LineSegment], width: float, height: float) -> DetectionResult:
        """
        Detect the document from line segments.

        Args:
            lines: Segments from the external line detector
            width: Frame width in pixels
            height: Frame height in pixels

        Returns:
            DetectionResult; quad is None when no candidate clears the threshold
        """
        horizontal, vertical = self.builder.group_lines(lines)
        candidates = self.builder.build_from_groups(horizontal, vertical, width, height)
        result = self._select(
            candidates, width, height, 'lines',
            lines_horizontal=len(horizontal),
            lines_vertical=len(vertical),
        )
        logger.debug(
            "Frame %dx%d: %d lines, %d candidates, score %.3f",
            width, height, len(lines), len(candidates), result.score
        )
        return result

    def process_polygons(self, polygons: Sequence[Sequence[Point]], width: float, height: float) -> DetectionResult:
        """Detect the document from 4-point contour approximations."""
        candidates = self.builder.from_polygons(polygons)
        return self._select(candidates, width, height, 'polygons')

    def process(
        self,
        lines: Sequence[LineSegment],
        polygons: Sequence[Sequence[Point]],
        width: float,
        height: float
    ) -> DetectionResult:
        """Line-pair detection first, polygons as fallback."""
        result = self.process_frame(lines, width, height)
        if result.found or not polygons:
            return result

        fallback = self.process_polygons(polygons, width, height)
        if fallback.found:
            return fallback

        # Report line statistics alongside the combined candidate count
        stats = DetectionStats(
            candidates_considered=result.stats.candidates_considered + fallback.stats.candidates_considered,
            lines_horizontal=result.stats.lines_horizontal,
            lines_vertical=result.stats.lines_vertical,
            method='none',
            best_score=max(result.stats.best_score, fallback.stats.best_score),
        )
        return DetectionResult(quad=None, score=0.0, stats=stats)
