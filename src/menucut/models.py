from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

HsvTriple = Tuple[float, float, float]


@dataclass(frozen=True)
class HsvRange:
    """Inclusive HSV bounds in OpenCV 8-bit scale (H 0-180, S/V 0-255)."""
    lower: HsvTriple
    upper: HsvTriple


@dataclass(frozen=True)
class ColorBounds:
    """The panel palette: dark background, selection highlight, white text."""
    background: HsvRange
    highlight: HsvRange
    text: HsvRange


@dataclass(frozen=True)
class NormalizedBox:
    """A bounding box expressed as fractions of the image width/height."""
    x: float
    y: float
    w: float
    h: float

    def __post_init__(self) -> None:
        if not (self.w > 0 and self.h > 0):
            raise ValueError(f"NormalizedBox needs positive size, got w={self.w}, h={self.h}")
        for name in ("x", "y", "w", "h"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"NormalizedBox.{name} must be within [0, 1], got {value}")


@dataclass(frozen=True)
class SpatialTemplate:
    """Where the panel sits on screen, as calibrated from the reference image."""
    normalized_box: NormalizedBox
    aspect_ratio: float


@dataclass(frozen=True)
class VisionProfile:
    """
    Everything the frame scanner needs to recognize the panel.

    Built once per calibration call and shared by every frame of a batch.
    """
    color_bounds: ColorBounds
    spatial_template: SpatialTemplate


@dataclass(frozen=True)
class DetectionRange:
    """
    A contiguous time interval (seconds) where the panel was observed.

    confidence is reserved for a future weighting scheme and is always 1.0.
    """
    start: float
    end: float
    confidence: float = 1.0


@dataclass(frozen=True)
class KeepRange:
    """A time interval (seconds) to retain in the rendered output."""
    start: float
    end: float

    @property
    def duration_sec(self) -> float:
        return max(0.0, self.end - self.start)


class ProcessingStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


@dataclass
class QueueItem:
    """
    One registered video and its scan outcome.

    Mutable on purpose: BatchOrchestrator updates status/progress in place while
    it scans, so a UI holding the same object sees live values.
    """
    id: str
    video_path: Path
    source_duration: float
    status: ProcessingStatus = ProcessingStatus.PENDING
    progress: int = 0
    detections: List[DetectionRange] = field(default_factory=list)
    keep_ranges: List[KeepRange] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def name(self) -> str:
        return self.video_path.name


@dataclass(frozen=True)
class ManifestRecord:
    """Per-video entry of the exported cut list."""
    file: str
    duration: float
    keep_ranges: List[KeepRange]
    detections: List[DetectionRange]
