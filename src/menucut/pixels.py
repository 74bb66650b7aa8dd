from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

import cv2
import numpy as np

from .models import HsvRange


@dataclass(frozen=True)
class Region:
    """A connected foreground region: pixel bounding box plus pixel area."""
    x: int
    y: int
    w: int
    h: int
    area: int


class PixelBackend(Protocol):
    """
    The pixel/color-space operations calibration and scanning rely on.

    Passed explicitly into the calibrator, scanner and BatchOrchestrator.
    """

    def to_gray(self, image_bgr: np.ndarray) -> np.ndarray: ...

    def threshold(self, gray: np.ndarray, min_value: int) -> np.ndarray: ...

    def largest_region(self, binary: np.ndarray) -> Optional[Region]: ...

    def to_hsv(self, image_bgr: np.ndarray) -> np.ndarray: ...

    def count_in_range(self, hsv: np.ndarray, bounds: HsvRange) -> int: ...


class OpenCvPixelBackend:
    """PixelBackend implemented with OpenCV on 8-bit BGR numpy images."""

    def to_gray(self, image_bgr: np.ndarray) -> np.ndarray:
        if image_bgr.ndim == 2:
            return image_bgr
        if image_bgr.shape[2] == 4:
            return cv2.cvtColor(image_bgr, cv2.COLOR_BGRA2GRAY)
        return cv2.cvtColor(image_bgr, cv2.COLOR_BGR2GRAY)

    def threshold(self, gray: np.ndarray, min_value: int) -> np.ndarray:
        """Binary mask: 255 where gray >= min_value, else 0."""
        # THRESH_BINARY keeps pixels strictly above thresh.
        _, binary = cv2.threshold(gray, min_value - 1, 255, cv2.THRESH_BINARY)
        return binary

    def largest_region(self, binary: np.ndarray) -> Optional[Region]:
        """
        Largest 8-connected foreground region of a binary mask.

        Returns None when the mask has no foreground at all.
        """
        n_labels, _, stats, _ = cv2.connectedComponentsWithStats(binary, connectivity=8)
        if n_labels <= 1:
            return None

        # Label 0 is the background.
        areas = stats[1:, cv2.CC_STAT_AREA]
        best = 1 + int(np.argmax(areas))
        return Region(
            x=int(stats[best, cv2.CC_STAT_LEFT]),
            y=int(stats[best, cv2.CC_STAT_TOP]),
            w=int(stats[best, cv2.CC_STAT_WIDTH]),
            h=int(stats[best, cv2.CC_STAT_HEIGHT]),
            area=int(stats[best, cv2.CC_STAT_AREA]),
        )

    def to_hsv(self, image_bgr: np.ndarray) -> np.ndarray:
        if image_bgr.shape[2] == 4:
            image_bgr = cv2.cvtColor(image_bgr, cv2.COLOR_BGRA2BGR)
        return cv2.cvtColor(image_bgr, cv2.COLOR_BGR2HSV)

    def count_in_range(self, hsv: np.ndarray, bounds: HsvRange) -> int:
        mask = cv2.inRange(hsv, tuple(bounds.lower), tuple(bounds.upper))
        return int(cv2.countNonZero(mask))
