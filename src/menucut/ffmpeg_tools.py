from __future__ import annotations

import json
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from .errors import TranscodeError
from .models import KeepRange
from .segments import clip_range_to_duration

logger = logging.getLogger(__name__)

PROBE_TIMEOUT_SEC = 30.0


@dataclass(frozen=True)
class VideoMeta:
    """Minimal metadata we need to register and render a video."""
    video_path: Path
    duration_sec: float
    has_audio: bool


def _run_command(cmd: list[str]) -> None:
    """
    Run a subprocess command with robust error reporting.

    Why:
    - ffmpeg/ffprobe failures are common (codec issues, corrupted files, etc.).
    - We want the caller to receive actionable stderr output.
    """
    logger.debug("Running: %s", " ".join(cmd))
    try:
        subprocess.run(cmd, check=True, stdout=subprocess.PIPE, stderr=subprocess.PIPE)
    except FileNotFoundError as e:
        # Typically means ffmpeg/ffprobe is not installed or not in PATH.
        raise TranscodeError(
            f"Command not found: {cmd[0]}. "
            "Ensure ffmpeg/ffprobe are installed and available in your PATH."
        ) from e
    except subprocess.CalledProcessError as e:
        stderr = e.stderr.decode("utf-8", errors="ignore")
        raise TranscodeError(f"Command failed:\n{' '.join(cmd)}\n\n{stderr}") from e


def probe_video(video_path: Path, timeout_sec: float = PROBE_TIMEOUT_SEC) -> VideoMeta:
    """
    Inspect a video file using ffprobe and return minimal metadata.

    What we use it for:
    - duration_sec: the span keep ranges are computed over
    - has_audio: whether the render needs atrim branches

    Large files can take a while to open; ffprobe gets timeout_sec before we
    give up with TranscodeError.
    """
    cmd = [
        "ffprobe",
        "-v", "error",
        "-print_format", "json",
        "-show_streams",
        "-show_format",
        str(video_path),
    ]

    try:
        raw = subprocess.check_output(cmd, stderr=subprocess.PIPE, timeout=timeout_sec)
    except FileNotFoundError as e:
        raise TranscodeError("Command not found: ffprobe. Ensure ffmpeg is installed and in your PATH.") from e
    except subprocess.TimeoutExpired as e:
        raise TranscodeError(f"ffprobe timed out after {timeout_sec:.0f}s: {video_path}") from e
    except subprocess.CalledProcessError as e:
        stderr = (e.stderr or b"").decode("utf-8", errors="ignore")
        raise TranscodeError(f"ffprobe failed for {video_path}:\n{stderr}") from e

    info = json.loads(raw.decode("utf-8", errors="ignore"))

    try:
        duration_sec = float(info["format"]["duration"])
    except (KeyError, TypeError, ValueError) as e:
        raise TranscodeError(f"ffprobe reported no duration for {video_path}") from e

    streams = info.get("streams", [])
    audio_streams = [s for s in streams if s.get("codec_type") == "audio"]
    has_audio = len(audio_streams) > 0

    return VideoMeta(
        video_path=video_path,
        duration_sec=duration_sec,
        has_audio=has_audio,
    )


def build_trim_concat_filter(ranges: Sequence[KeepRange], has_audio: bool = True) -> str:
    """
    Build the ffmpeg filter_complex that keeps only the given ranges.

    Per range:
    - [0:v]trim + setpts=PTS-STARTPTS (and [0:a]atrim + asetpts when has_audio)
      so every piece starts at t=0
    Then all pieces are concatenated in order into [outv] (and [outa]).
    """
    if not ranges:
        raise ValueError("At least one keep range is required to build a render filter.")

    parts: list[str] = []
    concat_inputs = ""
    for i, r in enumerate(ranges):
        start = f"{r.start:.3f}"
        end = f"{r.end:.3f}"
        parts.append(f"[0:v]trim=start={start}:end={end},setpts=PTS-STARTPTS[v{i}];")
        concat_inputs += f"[v{i}]"
        if has_audio:
            parts.append(f"[0:a]atrim=start={start}:end={end},asetpts=PTS-STARTPTS[a{i}];")
            concat_inputs += f"[a{i}]"

    if has_audio:
        parts.append(f"{concat_inputs}concat=n={len(ranges)}:v=1:a=1[outv][outa]")
    else:
        parts.append(f"{concat_inputs}concat=n={len(ranges)}:v=1:a=0[outv]")
    return "".join(parts)


def render_keep_ranges(
    video_path: Path,
    keep_ranges: Sequence[KeepRange],
    out_path: Path,
    has_audio: bool = True,
    crf: int = 12,
) -> Path:
    """
    Cut the video down to keep_ranges and write the result to out_path.

    Design choices:
    - -g 1 (all-intra) keeps the cut points frame exact for later edits.
    - Low CRF and -tune animation because the sources are screen captures
      with flat colors and sharp text.
    - yuv420p enforces 8-bit SDR output for broad compatibility.
    """
    out_path.parent.mkdir(parents=True, exist_ok=True)

    filter_complex = build_trim_concat_filter(keep_ranges, has_audio=has_audio)

    cmd = [
        "ffmpeg",
        "-y",
        "-i", str(video_path),
        "-filter_complex", filter_complex,
        "-map", "[outv]",
    ]
    if has_audio:
        cmd += ["-map", "[outa]"]
    cmd += [
        "-c:v", "libx264",
        "-g", "1",
        "-crf", str(crf),
        "-tune", "animation",
        "-pix_fmt", "yuv420p",
    ]
    if has_audio:
        cmd += ["-c:a", "aac", "-b:a", "320k"]
    cmd.append(str(out_path))

    _run_command(cmd)
    return out_path


def render_clean_video(video_path: Path, keep_ranges: Sequence[KeepRange], out_path: Path) -> Optional[Path]:
    """
    Probe the source, clamp keep ranges to its real duration and render.

    Returns None (and renders nothing) when no non-empty range is left.
    """
    meta = probe_video(video_path)
    clipped = [clip_range_to_duration(r, meta.duration_sec) for r in keep_ranges]
    clipped = [r for r in clipped if r.duration_sec > 0]
    if not clipped:
        logger.warning("No keep ranges left for %s, skipping render", video_path.name)
        return None
    return render_keep_ranges(video_path, clipped, out_path, has_audio=meta.has_audio)
