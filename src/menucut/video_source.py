from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, Optional, Protocol

import cv2
import numpy as np

from .errors import DecodeError, FrameAcquisitionError

logger = logging.getLogger(__name__)

# Timestamps can be off by float noise when derived from frame_index / fps.
_CADENCE_EPS = 1e-6

# How far short of CAP_PROP_FRAME_COUNT a stream may end before it counts as truncated.
TRUNCATION_TOLERANCE_FRAMES = 2
TRUNCATION_TOLERANCE_FRACTION = 0.01


@dataclass(frozen=True)
class SourceMeta:
    """What the decoder tells us about a video before the scan starts."""
    duration_sec: float
    fps: Optional[float]
    width: int
    height: int


@dataclass(frozen=True)
class FrameSample:
    """One decoded frame and its presentation timestamp (seconds)."""
    timestamp_sec: float
    frame: np.ndarray


class VideoSource(Protocol):
    """A live decode pipeline the orchestrator pulls frames from."""

    meta: SourceMeta

    def frames(self, should_stop: Callable[[], bool]) -> Iterator[FrameSample]: ...

    def close(self) -> None: ...


def _resize_to_width(frame: np.ndarray, width: int) -> np.ndarray:
    h, w = frame.shape[:2]
    if width <= 0 or w == width:
        return frame
    scale = float(width) / float(w)
    new_h = max(1, int(round(h * scale)))
    return cv2.resize(frame, (width, new_h), interpolation=cv2.INTER_AREA)


class OpenCvVideoSource:
    """
    Pull-based frame sequence over an OpenCV VideoCapture.

    Playback emulation:
    - A player running at playback_rate with a display refreshing at
      display_refresh_hz hands out one frame per refresh, i.e. frames spaced by
      playback_rate / display_refresh_hz of media time.
    - Frames in between are grabbed (kept in sync) but never decoded to pixels.

    The capture is released on every exit path: end of stream, stop request,
    decode error, or the consumer closing the generator early.
    """

    def __init__(
        self,
        video_path: Path,
        playback_rate: float = 0.5,
        display_refresh_hz: float = 60.0,
        process_width: int = 640,
        open_timeout_sec: float = 30.0,
    ) -> None:
        if playback_rate <= 0 or display_refresh_hz <= 0:
            raise ValueError("playback_rate and display_refresh_hz must be positive numbers.")

        self.video_path = video_path
        self.delivery_spacing_sec = playback_rate / display_refresh_hz
        self.process_width = process_width

        params = [cv2.CAP_PROP_OPEN_TIMEOUT_MSEC, int(open_timeout_sec * 1000)]
        self._cap = cv2.VideoCapture(str(video_path), cv2.CAP_ANY, params)
        if not self._cap.isOpened():
            self._cap.release()
            raise FrameAcquisitionError(f"OpenCV cannot open video within {open_timeout_sec:.0f}s: {video_path}")

        fps = float(self._cap.get(cv2.CAP_PROP_FPS) or 0.0)
        frame_count = float(self._cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0.0)
        self._fps: Optional[float] = fps if fps > 0 else None
        self._frame_count = int(frame_count) if frame_count > 0 else 0
        duration = frame_count / fps if fps > 0 and frame_count > 0 else 0.0

        self.meta = SourceMeta(
            duration_sec=duration,
            fps=self._fps,
            width=int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH) or 0),
            height=int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0),
        )

    def _timestamp(self, frame_index: int) -> float:
        if self._fps:
            return frame_index / self._fps
        return float(self._cap.get(cv2.CAP_PROP_POS_MSEC)) / 1000.0

    def frames(self, should_stop: Callable[[], bool]) -> Iterator[FrameSample]:
        """
        Yield FrameSample objects until end of stream or should_stop() is true.

        Raises DecodeError if a grabbed frame cannot be decoded, or if the
        stream runs out noticeably before CAP_PROP_FRAME_COUNT (truncated file).
        """
        last_delivered: Optional[float] = None
        frame_index = -1
        try:
            while not should_stop():
                if not self._cap.grab():
                    self._check_complete(frame_index + 1)
                    break
                frame_index += 1
                ts = self._timestamp(frame_index)

                if last_delivered is not None and ts - last_delivered < self.delivery_spacing_sec - _CADENCE_EPS:
                    continue

                ok, frame = self._cap.retrieve()
                if not ok or frame is None:
                    raise DecodeError(
                        f"Decode failed at frame {frame_index} ({ts:.3f}s): {self.video_path}"
                    )
                last_delivered = ts
                yield FrameSample(timestamp_sec=ts, frame=_resize_to_width(frame, self.process_width))
        finally:
            self.close()

    def _check_complete(self, grabbed: int) -> None:
        """Raise DecodeError if the stream ran dry well before its declared length."""
        if self._frame_count <= 0:
            return
        missing = self._frame_count - grabbed
        if missing > max(TRUNCATION_TOLERANCE_FRAMES, self._frame_count * TRUNCATION_TOLERANCE_FRACTION):
            raise DecodeError(
                f"Stream ended after {grabbed} of {self._frame_count} frames: {self.video_path}"
            )

    def close(self) -> None:
        self._cap.release()


def open_video_source(
    video_path: Path,
    playback_rate: float = 0.5,
    display_refresh_hz: float = 60.0,
    process_width: int = 640,
    open_timeout_sec: float = 30.0,
) -> VideoSource:
    """Default source factory used by BatchOrchestrator."""
    logger.debug("Opening video source %s at %.2fx", video_path, playback_rate)
    return OpenCvVideoSource(
        video_path,
        playback_rate=playback_rate,
        display_refresh_hz=display_refresh_hz,
        process_width=process_width,
        open_timeout_sec=open_timeout_sec,
    )
