"""
Document Scanner

Finds a document quad in camera frames from detected line segments,
tracks it over time and rectifies it into a flat page.
"""

from .config import ScannerConfig, setup_logging
from .detector import DetectionResult, DetectionStats, DocumentDetector
from .geometry import LineSegment, Point, Quad, order_quad
from .rectifier import InvalidQuad, RectifiedPlan, build_rectification_plan
from .session import AutoCapture, CapturedPage, ScanSession
from .tracker import QuadTracker, TrackerSnapshot, TrackerStatus

__all__ = [
    'ScannerConfig', 'setup_logging',
    'DetectionResult', 'DetectionStats', 'DocumentDetector',
    'LineSegment', 'Point', 'Quad', 'order_quad',
    'InvalidQuad', 'RectifiedPlan', 'build_rectification_plan',
    'AutoCapture', 'CapturedPage', 'ScanSession',
    'QuadTracker', 'TrackerSnapshot', 'TrackerStatus',
]
