from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable, List, Optional

from .errors import TranscodeError
from .ffmpeg_tools import render_clean_video
from .models import DetectionRange, KeepRange, ManifestRecord, ProcessingStatus, QueueItem
from .paths import ExportPaths

logger = logging.getLogger(__name__)


def build_manifest(items: Iterable[QueueItem]) -> List[ManifestRecord]:
    """One record per COMPLETED item, in queue order."""
    return [
        ManifestRecord(
            file=item.name,
            duration=item.source_duration,
            keep_ranges=list(item.keep_ranges),
            detections=list(item.detections),
        )
        for item in items
        if item.status == ProcessingStatus.COMPLETED
    ]


def _record_to_jsonable(record: ManifestRecord) -> dict[str, Any]:
    """
    Serialize a record with the camelCase keys the render step expects.
    """
    return {
        "file": record.file,
        "duration": record.duration,
        "keepRanges": [{"start": r.start, "end": r.end} for r in record.keep_ranges],
        "detections": [
            {"start": d.start, "end": d.end, "confidence": d.confidence} for d in record.detections
        ],
    }


def manifest_to_json(records: Iterable[ManifestRecord]) -> str:
    return json.dumps([_record_to_jsonable(r) for r in records], indent=2)


def save_manifest(records: Iterable[ManifestRecord], out_json_path: Path) -> Path:
    """Save a batch manifest as a JSON array."""
    out_json_path.parent.mkdir(parents=True, exist_ok=True)
    out_json_path.write_text(manifest_to_json(records), encoding="utf-8")
    return out_json_path


def _record_from_dict(data: dict[str, Any]) -> ManifestRecord:
    # Older single-video cut lists used fileName/ranges.
    keep = data.get("keepRanges", data.get("ranges")) or []
    return ManifestRecord(
        file=str(data.get("file") or data.get("fileName") or ""),
        duration=float(data.get("duration", 0.0)),
        keep_ranges=[KeepRange(float(r["start"]), float(r["end"])) for r in keep],
        detections=[
            DetectionRange(float(d["start"]), float(d["end"]), float(d.get("confidence", 1.0)))
            for d in data.get("detections", [])
        ],
    )


def load_manifest(manifest_path: Path) -> List[ManifestRecord]:
    """
    Load a manifest file.

    Accepts the batch array as well as a single bare record.
    """
    raw = json.loads(manifest_path.read_text(encoding="utf-8"))
    entries = raw if isinstance(raw, list) else [raw]
    return [_record_from_dict(e) for e in entries]


def render_manifest(
    records: Iterable[ManifestRecord],
    videos_dir: Path,
    export: ExportPaths,
) -> List[Optional[Path]]:
    """
    Render every record of a manifest, one after the other.

    A missing source, an empty cut list or a failed ffmpeg run only skips that
    record; the rest of the batch still renders. The returned list holds the
    output path per record, or None where nothing was written.
    """
    outputs: List[Optional[Path]] = []
    records = list(records)
    for idx, record in enumerate(records, start=1):
        src = videos_dir / record.file
        logger.info("[%d/%d] Rendering %s", idx, len(records), record.file)

        if not record.file or not src.is_file():
            logger.error("Skipped: source file %s not found", src)
            outputs.append(None)
            continue
        if not record.keep_ranges:
            logger.warning("Skipped: %s has no keep ranges", record.file)
            outputs.append(None)
            continue

        try:
            outputs.append(render_clean_video(src, record.keep_ranges, export.clean_video_path(record.file)))
        except TranscodeError:
            logger.error("Render failed for %s", record.file, exc_info=True)
            outputs.append(None)

    return outputs
