from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Sequence

import cv2
import numpy as np

from .errors import CalibrationError, FrameAcquisitionError
from .models import ColorBounds, HsvRange, NormalizedBox, SpatialTemplate, VisionProfile
from .pixels import PixelBackend

logger = logging.getLogger(__name__)

# Fixed panel palette (RGB). Detection trusts these, not the reference image colors.
MENU_BACKGROUND_RGB = (14, 4, 49)    # deep purple background
MENU_HIGHLIGHT_RGB = (50, 4, 139)    # lighter purple selection bar

BACKGROUND_TOLERANCE = (20.0, 50.0, 50.0)
HIGHLIGHT_TOLERANCE = (15.0, 50.0, 50.0)

# White text: low saturation, high value.
TEXT_BOUNDS = HsvRange(lower=(0.0, 0.0, 200.0), upper=(180.0, 30.0, 255.0))

MASK_BRIGHTNESS_MIN = 200
MIN_REGION_AREA_FRACTION = 0.001


def rgb_to_hsv_range(rgb: Sequence[int], tolerance: Sequence[float] = (10.0, 40.0, 40.0)) -> HsvRange:
    """
    Convert an RGB color to an OpenCV-scale HSV range widened by tolerance.

    OpenCV 8-bit HSV stores hue as degrees/2 (0-180) and S/V as 0-255, so the
    bounds are expressed in that scale and clamped to it.
    """
    r, g, b = (float(c) / 255.0 for c in rgb)
    c_max = max(r, g, b)
    c_min = min(r, g, b)
    delta = c_max - c_min

    if delta == 0:
        hue = 0.0
    elif c_max == r:
        hue = 60.0 * (((g - b) / delta) % 6)
    elif c_max == g:
        hue = 60.0 * (((b - r) / delta) + 2)
    else:
        hue = 60.0 * (((r - g) / delta) + 4)
    if hue < 0:
        hue += 360.0

    sat = 0.0 if c_max == 0 else delta / c_max

    cv_h = hue / 2.0
    cv_s = sat * 255.0
    cv_v = c_max * 255.0

    tol_h, tol_s, tol_v = (float(t) for t in tolerance)
    lower = (max(0.0, cv_h - tol_h), max(0.0, cv_s - tol_s), max(0.0, cv_v - tol_v))
    upper = (min(180.0, cv_h + tol_h), min(255.0, cv_s + tol_s), min(255.0, cv_v + tol_v))
    return HsvRange(lower=lower, upper=upper)


def panel_color_bounds() -> ColorBounds:
    """HSV bounds for the three panel colors."""
    return ColorBounds(
        background=rgb_to_hsv_range(MENU_BACKGROUND_RGB, BACKGROUND_TOLERANCE),
        highlight=rgb_to_hsv_range(MENU_HIGHLIGHT_RGB, HIGHLIGHT_TOLERANCE),
        text=TEXT_BOUNDS,
    )


def load_reference_image(image_path: Path) -> np.ndarray:
    """Decode the reference bitmap as an 8-bit BGR array."""
    image = cv2.imread(str(image_path), cv2.IMREAD_COLOR)
    if image is None or image.size == 0:
        raise FrameAcquisitionError(f"Cannot read reference image: {image_path}")
    return image


def calibrate_reference(image_bgr: np.ndarray, backend: Optional[PixelBackend]) -> VisionProfile:
    """
    Build a VisionProfile from a reference image.

    The reference is a mask: the panel area is painted bright (>= 200) on a dark
    background. We only learn *where* the panel sits; its colors are constants.

    Steps:
    - grayscale, binarize at MASK_BRIGHTNESS_MIN
    - keep the largest connected bright region
    - normalize its bounding box by the image size

    Raises CalibrationError if no backend is available or if the largest
    region covers no more than 0.1% of the image.
    """
    if backend is None:
        raise CalibrationError("Pixel processing backend is not available.")

    img_h, img_w = image_bgr.shape[:2]
    if img_w <= 0 or img_h <= 0:
        raise CalibrationError("Reference image is empty.")

    gray = backend.to_gray(image_bgr)
    binary = backend.threshold(gray, MASK_BRIGHTNESS_MIN)
    region = backend.largest_region(binary)

    total_pixels = img_w * img_h
    if region is None or region.area <= total_pixels * MIN_REGION_AREA_FRACTION:
        raise CalibrationError("Calibration failed: no bright target region found in the reference image.")

    logger.info("Reference target found: x=%d y=%d w=%d h=%d", region.x, region.y, region.w, region.h)

    box = NormalizedBox(
        x=region.x / img_w,
        y=region.y / img_h,
        w=region.w / img_w,
        h=region.h / img_h,
    )
    spatial = SpatialTemplate(normalized_box=box, aspect_ratio=region.w / region.h)
    logger.info("Normalized panel box: %s", box)

    return VisionProfile(color_bounds=panel_color_bounds(), spatial_template=spatial)
