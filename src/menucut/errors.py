from __future__ import annotations


class MenucutError(RuntimeError):
    """Base class for errors raised by the detection pipeline."""


class CalibrationError(MenucutError):
    """
    The reference image could not be turned into a VisionProfile.

    Raised when no bright region large enough exists in the reference image,
    or when no pixel backend was supplied. No partial profile is ever returned.
    """


class FrameAcquisitionError(MenucutError):
    """A reference image or video could not be opened/decoded in time."""


class DecodeError(MenucutError):
    """An opened video failed to decode a frame mid-stream."""


class ScanAbort(MenucutError):
    """A running scan observed its cancellation token and stopped."""


class TranscodeError(MenucutError):
    """ffmpeg/ffprobe is missing or exited with an error."""
