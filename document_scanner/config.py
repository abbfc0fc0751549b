"""
Scanner configuration and logging setup
"""

import logging
import os
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Optional

from dotenv import load_dotenv


ENV_PREFIX = "DOCSCAN_"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass
class ScannerConfig:
    """
    Tunables for detection, tracking, capture and rectification.

    Every field can be overridden from the environment as
    DOCSCAN_<FIELD_NAME_UPPERCASE> (see from_env).
    """

    # Candidate building
    candidate_limit: int = 4
    bounds_tolerance: float = 5.0

    # Scoring / selection
    min_area_percent: float = 0.03
    max_area_percent: float = 0.95
    min_side_consistency: float = 0.7
    aspect_band_low: float = 1.1
    aspect_band_high: float = 1.8
    edge_margin: float = 20.0
    min_score: float = 0.5

    # Per-frame rectangle validity (tracker gate)
    min_rectangularity: float = 0.8
    max_aspect_ratio: float = 2.5
    valid_side_consistency: float = 0.75
    max_angle_deviation: float = 25.0

    # Tracking
    smoothing_alpha: float = 0.5
    stable_duration: float = 1000.0
    stable_motion_threshold: float = 0.1
    max_missed_frames: int = 4
    significant_change_threshold: float = 0.15

    # Capture
    auto_capture: bool = True
    auto_capture_delay: float = 1000.0
    auto_capture_cooldown: float = 1000.0
    output_width: int = 1000
    padding_percent: float = 0.0
    shrink_percent: float = 0.0
    enhance: bool = False

    logging_enabled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None, **overrides) -> "ScannerConfig":
        """
        Build a config from environment variables.

        Loads a .env file first (existing variables win), then reads
        DOCSCAN_<FIELD> for each field. Keyword overrides are applied last.

        Raises:
            ValueError: If a variable cannot be parsed as the field's type
        """
        load_dotenv(dotenv_path)

        values = {}
        for f in fields(cls):
            raw = os.getenv(ENV_PREFIX + f.name.upper())
            if raw is None:
                continue
            values[f.name] = _coerce(f.name, raw, type(f.default))

        for name in overrides:
            if name not in {f.name for f in fields(cls)}:
                raise ValueError(f"Unknown config field: {name}")
        values.update(overrides)

        return cls(**values)


def _coerce(name: str, raw: str, target: type) -> Any:
    text = raw.strip()
    if target is bool:
        lowered = text.lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        raise ValueError(f"{ENV_PREFIX}{name.upper()} must be a boolean, got {raw!r}")
    try:
        return target(text)
    except ValueError:
        raise ValueError(f"{ENV_PREFIX}{name.upper()} must be {target.__name__}, got {raw!r}") from None


def setup_logging(config: Optional[ScannerConfig] = None, level: Optional[int] = None) -> None:
    """
    Configure package logging.

    Logging is quiet (WARNING) unless enabled in the config.
    """
    if level is None:
        enabled = config.logging_enabled if config is not None else False
        level = logging.INFO if enabled else logging.WARNING

    logging.basicConfig(
        level=level,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )
    logging.getLogger('document_scanner').setLevel(level)
