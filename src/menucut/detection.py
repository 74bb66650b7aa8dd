from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional

import numpy as np

from .models import NormalizedBox, VisionProfile
from .pixels import PixelBackend

logger = logging.getLogger(__name__)

ROI_PADDING_FRACTION = 0.05
MIN_BACKGROUND_RATIO = 0.30
MIN_TEXT_RATIO = 0.005


@dataclass(frozen=True)
class Roi:
    """Pixel rectangle inside a frame."""
    x: int
    y: int
    w: int
    h: int

    @property
    def area(self) -> int:
        return self.w * self.h


def compute_roi(frame_w: int, frame_h: int, box: NormalizedBox) -> Optional[Roi]:
    """
    Map the calibrated box onto a frame, padded to absorb encoder drift.

    The box grows by 5% of its own size on each axis (half on each side) and is
    clamped to the frame. Returns None when nothing of it is left.
    """
    pad_w = box.w * ROI_PADDING_FRACTION
    pad_h = box.h * ROI_PADDING_FRACTION

    x = math.floor((box.x - pad_w / 2.0) * frame_w)
    y = math.floor((box.y - pad_h / 2.0) * frame_h)
    w = math.floor((box.w + pad_w) * frame_w)
    h = math.floor((box.h + pad_h) * frame_h)

    x = max(0, x)
    y = max(0, y)
    if x + w > frame_w:
        w = frame_w - x
    if y + h > frame_h:
        h = frame_h - y

    if w <= 0 or h <= 0:
        return None
    return Roi(x=x, y=y, w=w, h=h)


def scan_frame(
    frame_bgr: np.ndarray,
    profile: VisionProfile,
    backend: PixelBackend,
    debug: bool = False,
) -> bool:
    """
    Decide whether the panel is visible in one frame.

    Only the calibrated ROI is inspected. The panel counts as present when the
    ROI is dominated by the background color (> 30%) *and* carries some white
    text (> 0.5%). Any failure reads as "not visible".
    """
    try:
        frame_h, frame_w = frame_bgr.shape[:2]
        roi = compute_roi(frame_w, frame_h, profile.spatial_template.normalized_box)
        if roi is None:
            return False

        crop = frame_bgr[roi.y:roi.y + roi.h, roi.x:roi.x + roi.w]
        hsv = backend.to_hsv(crop)

        bounds = profile.color_bounds
        dark_ratio = backend.count_in_range(hsv, bounds.background) / roi.area
        white_ratio = backend.count_in_range(hsv, bounds.text) / roi.area

        if debug:
            logger.debug(
                "ROI scan: area=%dpx dark=%.1f%% white=%.2f%%",
                roi.area, dark_ratio * 100.0, white_ratio * 100.0,
            )

        return dark_ratio > MIN_BACKGROUND_RATIO and white_ratio > MIN_TEXT_RATIO
    except Exception:
        logger.debug("Frame scan failed, treating frame as negative", exc_info=True)
        return False
