from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .calibration import calibrate_reference, load_reference_image
from .detection import scan_frame
from .errors import FrameAcquisitionError, ScanAbort, TranscodeError
from .ffmpeg_tools import probe_video
from .manifest import build_manifest
from .models import ManifestRecord, ProcessingStatus, QueueItem, VisionProfile
from .pixels import PixelBackend
from .segments import compute_keep_ranges, merge_detection_timestamps
from .video_source import VideoSource, open_video_source

logger = logging.getLogger(__name__)

# Float slack when comparing media-time spacing against the sampling interval.
_CADENCE_EPS = 1e-6


@dataclass(frozen=True)
class ScanSettings:
    """
    Tunables of a batch scan.

    playback_rate and sample_interval_sec are two independent cadences: the
    first controls how densely the decoder hands out frames, the second how
    many of those we actually scan. Neither is derived from the other.
    """
    # Decode cadence
    playback_rate: float = 0.5
    display_refresh_hz: float = 60.0
    process_width: int = 640
    open_timeout_sec: float = 30.0

    # Scan cadence
    sample_interval_sec: float = 0.1
    progress_every_samples: int = 30

    # Range building
    merge_tolerance_sec: float = 0.5
    cut_margin_sec: float = 0.05
    min_keep_sec: float = 0.1

    debug_scan: bool = False


SourceFactory = Callable[[Path, ScanSettings], VideoSource]
ProgressCallback = Callable[[QueueItem, str], None]


def _default_source_factory(video_path: Path, settings: ScanSettings) -> VideoSource:
    return open_video_source(
        video_path,
        playback_rate=settings.playback_rate,
        display_refresh_hz=settings.display_refresh_hz,
        process_width=settings.process_width,
        open_timeout_sec=settings.open_timeout_sec,
    )


def _is_video_file(path: Path) -> bool:
    """Simple extension-based filter."""
    return path.suffix.lower() in {".mp4", ".mov", ".mkv", ".m4v", ".avi", ".webm"}


def _scan_videos(input_dir: Path) -> List[Path]:
    """
    Collect the video files directly inside input_dir, sorted by name.

    Not recursive: manifest records name files relative to this folder.
    """
    videos = [p for p in input_dir.iterdir() if p.is_file() and _is_video_file(p)]
    return sorted(videos, key=lambda p: p.name.lower())


class ScanToken:
    """Cancellation flag handed to exactly one scan."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class BatchOrchestrator:
    """
    Owns the video queue and scans one item at a time.

    Contract:
    - reference_image_path: mask image the profile is calibrated from (once, lazily)
    - pixel_backend: pixel operations; None means unavailable and every scan
      ends in ERROR with a CalibrationError
    - source_factory: opens a VideoSource for a path (OpenCV by default)
    - progress_callback: optional hook for UI updates (item, message)

    Scheduling is cooperative on the running asyncio loop: the sampling loop
    yields every settings.progress_every_samples accepted frames. Starting a
    scan cancels whichever scan is still running and waits for it to unwind,
    so only one decode pipeline is ever open.
    """

    def __init__(
        self,
        reference_image_path: Path,
        pixel_backend: Optional[PixelBackend],
        settings: ScanSettings = ScanSettings(),
        source_factory: Optional[SourceFactory] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> None:
        self.reference_image_path = reference_image_path
        self.settings = settings
        self._backend = pixel_backend
        self._source_factory = source_factory or _default_source_factory
        self._progress_callback = progress_callback

        self._items: Dict[str, QueueItem] = {}
        self._profile: Optional[VisionProfile] = None
        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None
        self._active_token: Optional[ScanToken] = None
        self._active_item_id: Optional[str] = None
        self._batch_stopped = False

    # ---- queue management ----

    @property
    def items(self) -> List[QueueItem]:
        return list(self._items.values())

    def get(self, item_id: str) -> QueueItem:
        return self._items[item_id]

    def register(self, video_path: Path, duration_sec: Optional[float] = None) -> QueueItem:
        """
        Add a video to the queue as PENDING.

        When duration_sec is not given it is probed with ffprobe; a video that
        cannot be probed is still queued, with duration 0.
        """
        video_path = Path(video_path)
        if duration_sec is None:
            try:
                duration_sec = probe_video(video_path).duration_sec
            except TranscodeError as e:
                logger.warning("Cannot read duration of %s, using 0: %s", video_path.name, e)
                duration_sec = 0.0

        item = QueueItem(
            id=uuid.uuid4().hex,
            video_path=video_path,
            source_duration=max(0.0, float(duration_sec)),
        )
        self._items[item.id] = item
        logger.info("Queued %s (%.1fs)", item.name, item.source_duration)
        return item

    def register_folder(self, input_dir: Path) -> List[QueueItem]:
        input_dir = input_dir.expanduser().resolve()
        return [self.register(p) for p in _scan_videos(input_dir)]

    def discard(self, item_id: str) -> None:
        """Drop an item from the queue, cancelling its scan if it is running."""
        if item_id == self._active_item_id and self._active_token is not None:
            self._active_token.cancel()
        self._items.pop(item_id, None)

    def cancel(self) -> None:
        """Stop the running scan and the rest of the current run_queue()."""
        self._batch_stopped = True
        if self._active_token is not None:
            self._active_token.cancel()

    def manifest(self) -> List[ManifestRecord]:
        return build_manifest(self.items)

    # ---- scanning ----

    def _notify(self, item: QueueItem, message: str) -> None:
        if self._progress_callback:
            self._progress_callback(item, message)

    def _get_profile(self) -> VisionProfile:
        """Calibrate once per orchestrator; later scans reuse the profile."""
        if self._profile is None:
            image = load_reference_image(self.reference_image_path)
            self._profile = calibrate_reference(image, self._backend)
        return self._profile

    async def scan_item(self, item_id: str) -> Optional[QueueItem]:
        """
        Scan one queued item.

        Returns the item once it is COMPLETED or ERROR, or None if this scan was
        itself cancelled before producing a result.
        """
        item = self._items[item_id]

        if self._active_token is not None:
            self._active_token.cancel()
        token = ScanToken()
        self._active_token = token

        # One lock per event loop; Streamlit reruns start a fresh loop.
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop

        async with self._lock:
            if token.cancelled or item_id not in self._items:
                return None
            self._active_item_id = item_id
            try:
                return await self._run_scan(item, token)
            finally:
                self._active_item_id = None
                if self._active_token is token:
                    self._active_token = None

    async def run_queue(self) -> List[QueueItem]:
        """Scan every item that is not COMPLETED yet, strictly in queue order."""
        self._batch_stopped = False
        ids = list(self._items)
        total = len(ids)
        for idx, item_id in enumerate(ids, start=1):
            if self._batch_stopped:
                logger.info("Batch stopped before %d/%d", idx, total)
                break
            item = self._items.get(item_id)
            if item is None or item.status == ProcessingStatus.COMPLETED:
                continue
            self._notify(item, f"[{idx}/{total}] Scanning: {item.name}")
            await self.scan_item(item_id)
        return self.items

    async def _run_scan(self, item: QueueItem, token: ScanToken) -> Optional[QueueItem]:
        before = (item.status, item.progress, item.detections, item.keep_ranges, item.error)
        item.status = ProcessingStatus.PROCESSING
        item.progress = 0
        item.error = None
        item.detections = []
        item.keep_ranges = []
        logger.info("Scanning %s", item.name)

        try:
            timestamps = await self._collect_detections(item, token)
        except ScanAbort:
            # Partial output is discarded; the item goes back to its pre-scan state.
            item.status, item.progress, item.detections, item.keep_ranges, item.error = before
            logger.info("Scan of %s cancelled", item.name)
            self._notify(item, f"Cancelled: {item.name}")
            return None
        except FrameAcquisitionError as e:
            logger.warning("%s; treating %s as having no detections", e, item.name)
            timestamps = []
        except Exception as e:
            item.status = ProcessingStatus.ERROR
            item.error = str(e)
            logger.error("Scan of %s failed", item.name, exc_info=True)
            self._notify(item, f"Failed: {item.name}")
            return item

        s = self.settings
        detections = merge_detection_timestamps(timestamps, tolerance_sec=s.merge_tolerance_sec)
        keep = compute_keep_ranges(
            detections,
            item.source_duration,
            margin_sec=s.cut_margin_sec,
            min_keep_sec=s.min_keep_sec,
        )

        item.detections = detections
        item.keep_ranges = keep
        item.progress = 100
        item.status = ProcessingStatus.COMPLETED
        logger.info(
            "Finished %s: %d detection range(s), %d keep range(s)",
            item.name, len(detections), len(keep),
        )
        self._notify(item, f"Done: {item.name}")
        return item

    async def _collect_detections(self, item: QueueItem, token: ScanToken) -> List[float]:
        """
        Pull frames from the decoder and collect positive timestamps.

        Only frames at least sample_interval_sec of media time after the last
        accepted one are scanned. The full set is returned at end of stream;
        nothing is aggregated before that.
        """
        profile = self._get_profile()
        if token.cancelled:
            raise ScanAbort(item.name)

        s = self.settings
        source = self._source_factory(item.video_path, s)
        if item.source_duration <= 0 and source.meta.duration_sec > 0:
            item.source_duration = source.meta.duration_sec
        duration = item.source_duration

        timestamps: List[float] = []
        last_accepted: Optional[float] = None
        accepted = 0

        try:
            for sample in source.frames(lambda: token.cancelled):
                if token.cancelled:
                    break
                ts = sample.timestamp_sec
                if last_accepted is not None and ts - last_accepted < s.sample_interval_sec - _CADENCE_EPS:
                    continue
                last_accepted = ts
                accepted += 1

                if scan_frame(sample.frame, profile, self._backend, debug=s.debug_scan):
                    timestamps.append(ts)

                if accepted % max(1, s.progress_every_samples) == 0:
                    if duration > 0:
                        item.progress = min(100, round(ts / duration * 100))
                    self._notify(item, f"Scanning {item.name}: {item.progress}%")
                    await asyncio.sleep(0)
        finally:
            source.close()

        if token.cancelled:
            raise ScanAbort(item.name)
        return timestamps
