from __future__ import annotations

import random

import pytest

from menucut.models import DetectionRange, KeepRange
from menucut.segments import clip_range_to_duration, compute_keep_ranges, merge_detection_timestamps


def _as_pairs(ranges) -> list[tuple[float, float]]:
    return [(r.start, r.end) for r in ranges]


def _flat(pairs) -> list[float]:
    return [v for pair in pairs for v in pair]


def test_merge_bridges_small_gaps_and_splits_large_ones() -> None:
    ranges = merge_detection_timestamps([1.0, 1.2, 1.6, 5.0], tolerance_sec=0.5)

    assert _as_pairs(ranges) == [(1.0, 1.6), (5.0, 5.0)]
    assert all(r.confidence == 1.0 for r in ranges)


def test_merge_empty_input() -> None:
    assert merge_detection_timestamps([]) == []


def test_merge_gap_equal_to_tolerance_is_bridged() -> None:
    ranges = merge_detection_timestamps([0.0, 0.5, 1.0])
    assert _as_pairs(ranges) == [(0.0, 1.0)]


def test_merge_is_order_independent() -> None:
    timestamps = [7.3, 2.0, 2.1, 9.9, 2.4, 7.0, 0.2]
    shuffled = list(timestamps)
    random.Random(3).shuffle(shuffled)

    assert merge_detection_timestamps(shuffled) == merge_detection_timestamps(timestamps)


def test_merge_output_is_sorted_disjoint_and_covers_every_timestamp() -> None:
    rng = random.Random(11)
    for _ in range(50):
        timestamps = [round(rng.uniform(0.0, 60.0), 2) for _ in range(rng.randint(1, 40))]
        ranges = merge_detection_timestamps(timestamps, tolerance_sec=0.5)

        for r in ranges:
            assert r.start <= r.end
        for prev, nxt in zip(ranges, ranges[1:]):
            assert nxt.start - prev.end > 0.5
        for t in timestamps:
            assert any(r.start <= t <= r.end for r in ranges)


def test_keep_ranges_single_detection() -> None:
    keep = compute_keep_ranges([DetectionRange(3.0, 4.0)], duration_sec=10.0, margin_sec=0.05)

    assert len(keep) == 2
    assert keep[0].start == 0.0
    assert keep[0].end == pytest.approx(2.95)
    assert keep[1].start == pytest.approx(4.05)
    assert keep[1].end == 10.0


def test_keep_ranges_without_detections_cover_everything() -> None:
    assert compute_keep_ranges([], duration_sec=12.5) == [KeepRange(0.0, 12.5)]


def test_keep_ranges_zero_duration_is_empty() -> None:
    assert compute_keep_ranges([], duration_sec=0.0) == []
    assert compute_keep_ranges([DetectionRange(1.0, 2.0)], duration_sec=0.0) == []


def test_keep_ranges_drop_slivers_and_accept_unsorted_input() -> None:
    detections = [DetectionRange(5.0, 6.0), DetectionRange(0.0, 1.0), DetectionRange(1.14, 2.0)]
    keep = compute_keep_ranges(detections, duration_sec=6.08)

    # 1.05 -> 1.09 and 6.05 -> 6.08 are slivers.
    assert len(keep) == 1
    assert keep[0].start == pytest.approx(2.05)
    assert keep[0].end == pytest.approx(4.95)


def test_keep_ranges_overlapping_detections_do_not_move_cursor_back() -> None:
    detections = [DetectionRange(2.0, 8.0), DetectionRange(3.0, 4.0)]
    keep = compute_keep_ranges(detections, duration_sec=10.0)

    assert _flat(_as_pairs(keep)) == pytest.approx([0.0, 1.95, 8.05, 10.0])


def _free_gaps(detections, duration, margin):
    spans = sorted((min(duration, max(0.0, d.start - margin)), min(duration, d.end + margin)) for d in detections)
    gaps = []
    cursor = 0.0
    for start, end in spans:
        if start > cursor:
            gaps.append((cursor, start))
        cursor = max(cursor, end)
    if duration > cursor:
        gaps.append((cursor, duration))
    return gaps


def test_keep_ranges_are_exactly_the_free_gaps_longer_than_min_keep() -> None:
    rng = random.Random(5)
    for _ in range(100):
        duration = rng.uniform(1.0, 120.0)
        detections = []
        for _ in range(rng.randint(0, 8)):
            start = rng.uniform(0.0, duration)
            detections.append(DetectionRange(start, min(duration, start + rng.uniform(0.0, 5.0))))

        keep = compute_keep_ranges(detections, duration, margin_sec=0.05, min_keep_sec=0.1)
        expected = [g for g in _free_gaps(detections, duration, 0.05) if g[1] - g[0] > 0.1]

        assert _flat(_as_pairs(keep)) == pytest.approx(_flat(expected))
        for prev, nxt in zip(keep, keep[1:]):
            assert prev.end <= nxt.start


def test_clip_range_to_duration() -> None:
    assert clip_range_to_duration(KeepRange(8.0, 12.0), 10.0) == KeepRange(8.0, 10.0)
    assert clip_range_to_duration(KeepRange(11.0, 12.0), 10.0) == KeepRange(10.0, 10.0)
