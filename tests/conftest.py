from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import cv2
import numpy as np
import pytest


# RGB(14, 4, 49) in OpenCV channel order.
PANEL_BGR = (49, 4, 14)
WHITE_BGR = (255, 255, 255)


def _make_mask(width: int = 200, height: int = 100) -> np.ndarray:
    """Reference mask: panel painted white over the middle half of the image."""
    mask = np.zeros((height, width, 3), dtype=np.uint8)
    mask[height // 4: 3 * height // 4, width // 4: 3 * width // 4] = 255
    return mask


def _make_panel_frame(width: int = 200, height: int = 100, with_text: bool = True) -> np.ndarray:
    frame = np.zeros((height, width, 3), dtype=np.uint8)
    frame[:, :] = PANEL_BGR
    if with_text:
        # Text block covers ~1% of the frame whatever the resolution.
        cy, cx = height // 2, width // 2
        th, tw = max(1, height // 20), max(1, width // 20)
        frame[cy - th:cy + th, cx - tw:cx + tw] = WHITE_BGR
    return frame


def _make_plain_frame(width: int = 200, height: int = 100) -> np.ndarray:
    frame = np.zeros((height, width, 3), dtype=np.uint8)
    frame[:, :] = (40, 120, 40)
    return frame


@pytest.fixture
def backend():
    from menucut.pixels import OpenCvPixelBackend

    return OpenCvPixelBackend()


@pytest.fixture
def mask_image() -> np.ndarray:
    return _make_mask()


@pytest.fixture
def profile(backend, mask_image):
    from menucut.calibration import calibrate_reference

    return calibrate_reference(mask_image, backend)


@pytest.fixture
def panel_frame() -> Callable[..., np.ndarray]:
    return _make_panel_frame


@pytest.fixture
def plain_frame() -> Callable[..., np.ndarray]:
    return _make_plain_frame


@pytest.fixture
def reference_path(tmp_path: Path) -> Path:
    path = tmp_path / "reference.png"
    assert cv2.imwrite(str(path), _make_mask())
    return path


@dataclass
class FakeVideo:
    """Synthetic video: which media-time intervals show the panel."""
    duration_sec: float
    fps: float = 30.0
    panel_intervals: Sequence[Tuple[float, float]] = ()
    fail_on_open: Optional[Exception] = None
    fail_at_sec: Optional[float] = None


class FakeVideoSource:
    """In-memory VideoSource that honors should_stop like the OpenCV one."""

    def __init__(self, video: FakeVideo) -> None:
        from menucut.video_source import SourceMeta

        self.video = video
        self.meta = SourceMeta(duration_sec=video.duration_sec, fps=video.fps, width=200, height=100)
        self.yielded = 0
        self.closed = False

    def _shows_panel(self, ts: float) -> bool:
        return any(start - 1e-9 <= ts <= end + 1e-9 for start, end in self.video.panel_intervals)

    def frames(self, should_stop: Callable[[], bool]) -> Iterator:
        from menucut.errors import DecodeError
        from menucut.video_source import FrameSample

        n_frames = int(round(self.video.duration_sec * self.video.fps))
        try:
            for i in range(n_frames):
                if should_stop():
                    return
                ts = i / self.video.fps
                if self.video.fail_at_sec is not None and ts >= self.video.fail_at_sec:
                    raise DecodeError(f"synthetic decode failure at {ts:.2f}s")
                frame = _make_panel_frame() if self._shows_panel(ts) else _make_plain_frame()
                self.yielded += 1
                yield FrameSample(timestamp_sec=ts, frame=frame)
        finally:
            self.close()

    def close(self) -> None:
        self.closed = True


@dataclass
class FakeSourceFactory:
    videos: Dict[str, FakeVideo] = field(default_factory=dict)
    sources: Dict[str, FakeVideoSource] = field(default_factory=dict)
    opened: List[str] = field(default_factory=list)

    def __call__(self, video_path: Path, settings) -> FakeVideoSource:
        video = self.videos[Path(video_path).name]
        self.opened.append(Path(video_path).name)
        if video.fail_on_open is not None:
            raise video.fail_on_open
        source = FakeVideoSource(video)
        self.sources[Path(video_path).name] = source
        return source


@pytest.fixture
def fake_video() -> type:
    return FakeVideo


@pytest.fixture
def fake_factory() -> FakeSourceFactory:
    return FakeSourceFactory()
