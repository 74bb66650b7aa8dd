from __future__ import annotations

from typing import Iterable

from .models import DetectionRange, KeepRange

MERGE_TOLERANCE_SEC = 0.5
CUT_MARGIN_SEC = 0.05
MIN_KEEP_SEC = 0.1


def merge_detection_timestamps(
    timestamps: Iterable[float],
    tolerance_sec: float = MERGE_TOLERANCE_SEC,
) -> list[DetectionRange]:
    """
    Cluster per-frame detection timestamps into contiguous detection ranges.

    Why a tolerance:
    - Sampling is throttled and single frames can flicker to "not detected"
      while the panel is still on screen.
    - Gaps up to tolerance_sec are bridged; anything longer starts a new range.

    Input order does not matter. Output is sorted and non-overlapping.
    """
    ordered = sorted(float(t) for t in timestamps)
    if not ordered:
        return []

    ranges: list[DetectionRange] = []
    start = ordered[0]
    end = ordered[0]

    for t in ordered[1:]:
        if t - end <= tolerance_sec:
            end = t
            continue
        ranges.append(DetectionRange(start=start, end=end))
        start = t
        end = t

    ranges.append(DetectionRange(start=start, end=end))
    return ranges


def compute_keep_ranges(
    detections: Iterable[DetectionRange],
    duration_sec: float,
    margin_sec: float = CUT_MARGIN_SEC,
    min_keep_sec: float = MIN_KEEP_SEC,
) -> list[KeepRange]:
    """
    Complement detection ranges over [0, duration_sec].

    Each detection is widened by margin_sec on both sides so the cut never
    leaves a stray panel frame behind. Keep ranges of min_keep_sec or less are
    dropped (they would render as near-empty segments).

    Returns:
    - [] when duration_sec <= 0
    - [KeepRange(0, duration_sec)] when there are no detections
    """
    if duration_sec <= 0:
        return []

    ordered = sorted(detections, key=lambda d: d.start)
    keep: list[KeepRange] = []
    cursor = 0.0

    for det in ordered:
        safe_end = min(duration_sec, max(0.0, det.start - margin_sec))
        if safe_end - cursor > min_keep_sec:
            keep.append(KeepRange(start=cursor, end=safe_end))
        cursor = max(cursor, min(duration_sec, det.end + margin_sec))

    if duration_sec - cursor > min_keep_sec:
        keep.append(KeepRange(start=cursor, end=duration_sec))

    return keep


def clip_range_to_duration(rng: KeepRange, duration_sec: float) -> KeepRange:
    """
    Clamp a keep range to [0, duration_sec].
    """
    start = max(0.0, min(rng.start, duration_sec))
    end = max(0.0, min(rng.end, duration_sec))
    if end < start:
        end = start
    return KeepRange(start, end)
