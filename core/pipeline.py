"""
Wiggle -- Run Orchestration

One WigglePipeline per editing session. It owns the current source, the
decode cache and the last published FrameSequence, and moves through:

    IDLE -> PROCESSING -> IDLE | ERROR
    IDLE -> EXPORTING  -> IDLE

Every generate request gets a run id when it is requested. Only the latest
requested run may publish; superseded runs stop between frames.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from enum import Enum

import numpy as np

from core.export import EncoderUnavailable, ExportError, ExportPipeline
from core.image_io import DecodeError, ImageCache, output_dimensions, resample_source
from core.safety import SafetyError, preflight, validate_source_size
from core.settings import DEFAULT_SETTINGS, Settings
from effects import FrameSequence, GenerationCancelled, render_frames


class Status(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    EXPORTING = "exporting"
    ERROR = "error"


def _is_path_source(source) -> bool:
    if isinstance(source, (bytes, bytearray, memoryview)):
        return False
    return not (isinstance(source, str) and source.startswith("data:"))


class WigglePipeline:
    """Explicit generate/export entry points over the jitter engine."""

    def __init__(self, encoder_service=None, cache: ImageCache | None = None,
                 rng: np.random.RandomState | None = None):
        self.encoder_service = encoder_service
        self.cache = cache or ImageCache()
        self.rng = rng

        self.status = Status.IDLE
        self.last_error = None
        self.source = None
        self.source_key = None

        # Published state (only ever replaced as a whole)
        self.frames = FrameSequence()
        self.mask = None
        self.settings = DEFAULT_SETTINGS
        self.dimensions = None

        self._lock = threading.Lock()
        self._latest_run = 0
        self._executor = None

    @property
    def has_source(self) -> bool:
        return self.source is not None

    def set_source(self, source):
        """Select the image to animate: a path, raw bytes, or a data URI."""
        self.source = source

    def _begin_run(self) -> int:
        with self._lock:
            self._latest_run += 1
            return self._latest_run

    def _is_stale(self, run_id: int) -> bool:
        return run_id != self._latest_run

    def _decode(self):
        if self.source is None:
            raise DecodeError("No source image selected")
        if _is_path_source(self.source):
            try:
                preflight(self.source)
            except FileNotFoundError as e:
                raise DecodeError(str(e))
        key, bitmap = self.cache.get(self.source)
        validate_source_size(bitmap.shape[1], bitmap.shape[0])
        return key, bitmap

    def _run(self, run_id: int, settings: Settings) -> FrameSequence | None:
        with self._lock:
            if self._is_stale(run_id):
                return None
            self.status = Status.PROCESSING
        try:
            key, bitmap = self._decode()
            width, height = output_dimensions(bitmap.shape[1], bitmap.shape[0], settings.scale)
            source = resample_source(bitmap, width, height)
            frames, mask = render_frames(
                source, settings,
                rng=self.rng,
                cancelled=lambda: self._is_stale(run_id),
                generation=run_id,
            )
        except GenerationCancelled:
            return None
        except (DecodeError, SafetyError) as e:
            logging.warning(f"Generation run {run_id} failed: {e}")
            with self._lock:
                if not self._is_stale(run_id):
                    self.status = Status.ERROR
                    self.last_error = str(e)
            return None

        with self._lock:
            if self._is_stale(run_id):
                return None
            self.source_key = key
            self.frames = frames
            self.mask = mask
            self.settings = settings
            self.dimensions = (width, height)
            self.last_error = None
            self.status = Status.IDLE
        return frames

    def generate(self, settings: Settings | None = None) -> FrameSequence | None:
        """Generate and publish a new FrameSequence for the current source.

        Returns:
            The published sequence, or None if the run failed or was superseded.
            On failure status is ERROR, last_error is set and the previously
            published sequence is kept.
        """
        settings = settings or self.settings
        return self._run(self._begin_run(), settings)

    def generate_async(self, settings: Settings | None = None) -> Future:
        """Queue generation on a background worker. Supersedes earlier requests."""
        settings = settings or self.settings
        run_id = self._begin_run()
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="wiggle-gen")
        return self._executor.submit(self._run, run_id, settings)

    def export(self, progress_callback=None):
        """Encode the published sequence as a GIF.

        Returns:
            ExportArtifact, or None when nothing has been generated yet.

        Raises:
            EncoderUnavailable: Encoder not ready. Status returns to IDLE.
            ExportError: Render failed. Status becomes ERROR.
        """
        frames, settings = self.frames, self.settings
        if len(frames) == 0:
            return None

        self.status = Status.EXPORTING
        try:
            artifact = ExportPipeline(self.encoder_service).export(
                frames, settings, progress_callback=progress_callback,
            )
        except EncoderUnavailable as e:
            logging.warning(f"Export declined: {e}")
            self.status = Status.IDLE
            raise
        except ExportError as e:
            logging.exception("Export failed")
            self.status = Status.ERROR
            self.last_error = str(e)
            raise

        self.status = Status.IDLE
        return artifact

    def state(self) -> dict:
        """Snapshot for status displays."""
        return {
            "status": self.status.value,
            "has_source": self.has_source,
            "frame_count": len(self.frames),
            "dimensions": list(self.dimensions) if self.dimensions else None,
            "generation": self.frames.generation,
            "last_error": self.last_error,
        }

    def shutdown(self):
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        if self.encoder_service is not None:
            self.encoder_service.shutdown()
