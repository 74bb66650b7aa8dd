from __future__ import annotations

from pathlib import Path

import cv2
import numpy as np
import pytest

from menucut.calibration import (
    MENU_BACKGROUND_RGB,
    TEXT_BOUNDS,
    calibrate_reference,
    load_reference_image,
    panel_color_bounds,
    rgb_to_hsv_range,
)
from menucut.errors import CalibrationError, FrameAcquisitionError
from menucut.models import NormalizedBox


def test_all_dark_reference_fails(backend) -> None:
    dark = np.zeros((120, 160, 3), dtype=np.uint8)
    with pytest.raises(CalibrationError):
        calibrate_reference(dark, backend)


def test_centered_rectangle_gives_matching_normalized_box(backend) -> None:
    # 80x50 rectangle on a 200x100 image covers 20% of the area.
    image = np.zeros((100, 200, 3), dtype=np.uint8)
    image[25:75, 60:140] = 255

    profile = calibrate_reference(image, backend)
    box = profile.spatial_template.normalized_box

    assert box.x == pytest.approx(0.30, abs=1 / 200)
    assert box.y == pytest.approx(0.25, abs=1 / 100)
    assert box.w == pytest.approx(0.40, abs=1 / 200)
    assert box.h == pytest.approx(0.50, abs=1 / 100)
    assert profile.spatial_template.aspect_ratio == pytest.approx(1.6, rel=0.05)


def test_largest_region_wins(backend) -> None:
    image = np.zeros((100, 200, 3), dtype=np.uint8)
    image[5:15, 5:15] = 255        # small blob
    image[40:90, 100:190] = 230    # panel, still above the brightness cut

    box = calibrate_reference(image, backend).spatial_template.normalized_box
    assert box.x == pytest.approx(0.5)
    assert box.y == pytest.approx(0.4)


def test_tiny_region_is_rejected(backend) -> None:
    image = np.zeros((100, 200, 3), dtype=np.uint8)
    image[50:52, 50:52] = 255  # 4 px, 0.02% of the image

    with pytest.raises(CalibrationError):
        calibrate_reference(image, backend)


def test_dim_region_below_brightness_cut_is_ignored(backend) -> None:
    image = np.zeros((100, 200, 3), dtype=np.uint8)
    image[20:80, 20:180] = 199

    with pytest.raises(CalibrationError):
        calibrate_reference(image, backend)


def test_missing_backend_is_a_calibration_error(mask_image) -> None:
    with pytest.raises(CalibrationError, match="not available"):
        calibrate_reference(mask_image, None)


def test_color_bounds_come_from_constants_not_from_the_image(backend, mask_image) -> None:
    profile = calibrate_reference(mask_image, backend)

    assert profile.color_bounds == panel_color_bounds()
    assert profile.color_bounds.text == TEXT_BOUNDS


def test_background_bounds_contain_the_panel_color_as_opencv_sees_it() -> None:
    bounds = rgb_to_hsv_range(MENU_BACKGROUND_RGB, (20, 50, 50))
    r, g, b = MENU_BACKGROUND_RGB
    pixel = np.array([[[b, g, r]]], dtype=np.uint8)
    h, s, v = cv2.cvtColor(pixel, cv2.COLOR_BGR2HSV)[0, 0]

    assert bounds.lower[0] <= h <= bounds.upper[0]
    assert bounds.lower[1] <= s <= bounds.upper[1]
    assert bounds.lower[2] <= v <= bounds.upper[2]


def test_hsv_range_is_clamped_to_opencv_scale() -> None:
    red = rgb_to_hsv_range((255, 0, 0), (10, 40, 40))

    assert red.lower == pytest.approx((0.0, 215.0, 215.0))
    assert red.upper == pytest.approx((10.0, 255.0, 255.0))

    black = rgb_to_hsv_range((0, 0, 0), (10, 40, 40))
    assert black.lower == (0.0, 0.0, 0.0)
    assert black.upper == pytest.approx((10.0, 40.0, 40.0))


def test_normalized_box_rejects_degenerate_sizes() -> None:
    with pytest.raises(ValueError):
        NormalizedBox(x=0.1, y=0.1, w=0.0, h=0.2)
    with pytest.raises(ValueError):
        NormalizedBox(x=1.5, y=0.1, w=0.1, h=0.2)


def test_load_reference_image(tmp_path: Path, mask_image) -> None:
    path = tmp_path / "ref.png"
    assert cv2.imwrite(str(path), mask_image)

    loaded = load_reference_image(path)
    assert loaded.shape == mask_image.shape


def test_load_reference_image_missing_file(tmp_path: Path) -> None:
    with pytest.raises(FrameAcquisitionError):
        load_reference_image(tmp_path / "nope.png")
