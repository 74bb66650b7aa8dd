from __future__ import annotations

import secrets
import string
import time
from dataclasses import dataclass
from pathlib import Path

_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits


def _random_suffix(length: int = 5) -> str:
    return "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(length))


def manifest_filename() -> str:
    """
    Unique manifest name: batch-cut-list-{epoch_ms}-{suffix}.json

    Why:
    - Several batches can be exported into the same folder without clobbering.
    """
    return f"batch-cut-list-{int(time.time() * 1000)}-{_random_suffix()}.json"


@dataclass(frozen=True)
class ExportPaths:
    """Centralized paths for one export folder."""
    out_dir: Path

    def manifest_path(self) -> Path:
        return self.out_dir / manifest_filename()

    def clean_video_path(self, video_name: str) -> Path:
        src = Path(video_name)
        return self.out_dir / f"{src.stem}_clean{src.suffix or '.mp4'}"


def make_export_paths(out_dir: Path) -> ExportPaths:
    out_dir = out_dir.expanduser().resolve()
    out_dir.mkdir(parents=True, exist_ok=True)
    return ExportPaths(out_dir=out_dir)
