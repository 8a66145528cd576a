"""
Wiggle -- GIF Export

The encoder service wraps Pillow's GIF writer behind the same lifecycle the
browser tool had for its GIF worker:

    service = EncoderService()
    service.load()            # GIF writer available?
    service.prepare_worker()  # Worker pool up?
    encoder = service.create(EncoderOptions(width=..., height=...))
    encoder.add_frame(frame, delay=120)
    encoder.on("finished", handle_blob)
    encoder.render()          # Asynchronous -- quantizes on the worker pool

ExportPipeline drives that lifecycle for a whole FrameSequence and returns a
downloadable ExportArtifact.
"""

from __future__ import annotations

import base64
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path

import numpy as np
from PIL import GifImagePlugin, Image
from pydantic import BaseModel, Field, field_validator

from core.settings import hex_to_rgb, normalize_hex

EXPORT_FILENAME = "wiggle-export.gif"
ENCODER_WORKERS = 2        # Concurrency hint for palette quantization
ENCODER_QUALITY = 10       # 1 = best/slowest, 30 = fastest
RENDER_TIMEOUT_SEC = 120


class EncoderUnavailable(Exception):
    """Raised when the GIF encoder or its worker pool is not ready."""
    pass


class ExportError(Exception):
    """Raised when the encoder fails or times out while rendering."""
    pass


class EncoderOptions(BaseModel):
    """Construction options for one GIF encode.

    quality follows the gif.js convention: lower is better. Quality 10 and
    below use median-cut palettes; above that the faster octree quantizer.
    """
    width: int = Field(ge=1, description="Output width in pixels.")
    height: int = Field(ge=1, description="Output height in pixels.")
    background: str = Field(
        default="#ffffff",
        description="Color that transparent pixels are flattened onto.",
    )
    workers: int = Field(
        default=ENCODER_WORKERS,
        ge=1,
        le=16,
        description="Maximum frames quantized in parallel.",
    )
    quality: int = Field(
        default=ENCODER_QUALITY,
        ge=1,
        le=30,
        description="Palette quality (1-30). Lower = better colors, slower.",
    )
    repeat: int = Field(
        default=0,
        ge=0,
        le=65535,
        description="GIF loop count. 0 = infinite loop.",
    )

    @field_validator("background", mode="before")
    @classmethod
    def _normalize_background(cls, value):
        return normalize_hex(value)


def write_gif(images: list[Image.Image], delays: list[int], loop: int = 0) -> bytes:
    """Assemble palette images into an animated GIF, one image block per frame.

    Unlike Image.save(save_all=True), identical consecutive frames are not
    folded together: the file always holds len(images) frames, each with its
    own delay and local color table.
    """
    header, _ = GifImagePlugin.getheader(
        images[0], info={"loop": loop, "duration": delays[0]}
    )
    buf = BytesIO()
    for chunk in header:
        buf.write(chunk)
    for img, delay in zip(images, delays):
        for chunk in GifImagePlugin.getdata(img, duration=delay, disposal=2,
                                            include_color_table=True):
            buf.write(chunk)
    buf.write(b";")  # trailer
    return buf.getvalue()


class GifEncoder:
    """One GIF encode: collect frames, then render() asynchronously.

    Events:
        finished -- callback(blob: bytes)
        progress -- callback(fraction: float), once per quantized frame
        error    -- callback(exc: Exception)
    """

    EVENTS = ("finished", "progress", "error")

    def __init__(self, options: EncoderOptions, pool: ThreadPoolExecutor):
        self.options = options
        self._pool = pool
        self._frames: list[np.ndarray] = []
        self._delays: list[int] = []
        self._handlers = {event: [] for event in self.EVENTS}
        self._thread = None

    @property
    def frame_count(self) -> int:
        return len(self._frames)

    def add_frame(self, frame: np.ndarray, delay: int):
        """Append a (H, W, 3|4) uint8 frame shown for `delay` milliseconds."""
        if self._thread is not None:
            raise RuntimeError("Cannot add frames after render()")
        expected = (self.options.height, self.options.width)
        if frame.shape[:2] != expected:
            raise ValueError(
                f"Frame is {frame.shape[1]}x{frame.shape[0]}, encoder expects "
                f"{self.options.width}x{self.options.height}"
            )
        self._frames.append(frame)
        self._delays.append(max(1, int(delay)))

    def on(self, event: str, callback):
        if event not in self._handlers:
            raise ValueError(f"Unknown event '{event}'. Use one of: {', '.join(self.EVENTS)}")
        self._handlers[event].append(callback)

    def render(self):
        """Start encoding in the background. Fires 'finished' or 'error'."""
        if self._thread is not None:
            raise RuntimeError("render() already called")
        if not self._frames:
            raise ValueError("No frames added")
        self._thread = threading.Thread(target=self._render, name="gif-render", daemon=True)
        self._thread.start()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until rendering ends. Returns False on timeout."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def _emit(self, event, payload):
        for callback in self._handlers[event]:
            callback(payload)

    def _flatten(self, frame: np.ndarray) -> np.ndarray:
        """Drop alpha, compositing translucent pixels onto the background."""
        rgb = frame[:, :, :3]
        if frame.shape[2] == 3 or np.all(frame[:, :, 3] == 255):
            return np.ascontiguousarray(rgb)
        alpha = frame[:, :, 3:4].astype(np.float32) / 255.0
        background = np.array(hex_to_rgb(self.options.background), dtype=np.float32)
        blended = rgb.astype(np.float32) * alpha + background * (1.0 - alpha)
        return np.clip(blended, 0, 255).astype(np.uint8)

    def _quantize(self, frame: np.ndarray) -> Image.Image:
        method = (Image.Quantize.MEDIANCUT if self.options.quality <= 10
                  else Image.Quantize.FASTOCTREE)
        img = Image.fromarray(self._flatten(frame))
        return img.quantize(colors=256, method=method, dither=Image.Dither.FLOYDSTEINBERG)

    def _render(self):
        try:
            images = []
            total = len(self._frames)
            # Bounded fan-out: at most `workers` frames in flight
            step = self.options.workers
            for start in range(0, total, step):
                batch = self._frames[start:start + step]
                images.extend(self._pool.map(self._quantize, batch))
                self._emit("progress", len(images) / total)

            blob = write_gif(images, self._delays, loop=self.options.repeat)
        except Exception as e:
            logging.exception("GIF render failed")
            self._emit("error", e)
            return
        self._emit("finished", blob)


class EncoderService:
    """Capability wrapper around the GIF writer and its worker pool."""

    def __init__(self, workers: int = ENCODER_WORKERS):
        self.workers = max(1, int(workers))
        self._loaded = False
        self._pool: ThreadPoolExecutor | None = None

    @classmethod
    def ready(cls, workers: int = ENCODER_WORKERS) -> "EncoderService":
        """Create, load and prepare a service in one step."""
        return cls(workers).load().prepare_worker()

    @property
    def available(self) -> bool:
        return self._loaded

    @property
    def worker_ready(self) -> bool:
        return self._pool is not None

    def load(self) -> "EncoderService":
        """Check that this Pillow build can write GIFs.

        Raises:
            EncoderUnavailable: If the GIF plugin has no save handler.
        """
        Image.init()
        if "GIF" not in Image.SAVE:
            raise EncoderUnavailable("Pillow was built without GIF write support")
        self._loaded = True
        return self

    def prepare_worker(self) -> "EncoderService":
        """Start the quantization worker pool (idempotent)."""
        if not self._loaded:
            raise EncoderUnavailable("Load the encoder before preparing its worker")
        if self._pool is None:
            self._pool = ThreadPoolExecutor(max_workers=self.workers,
                                            thread_name_prefix="gif-worker")
        return self

    def create(self, options: EncoderOptions) -> GifEncoder:
        if not self.worker_ready:
            raise EncoderUnavailable("Encoder worker is not ready")
        return GifEncoder(options, self._pool)

    def shutdown(self):
        """Stop the worker pool. The service must be prepared again before use."""
        if self._pool is not None:
            self._pool.shutdown(wait=True)
            self._pool = None


@dataclass(frozen=True)
class ExportArtifact:
    """Encoded GIF plus the metadata needed to offer it for download."""
    data: bytes
    width: int
    height: int
    frame_count: int
    delay_ms: int
    filename: str = EXPORT_FILENAME
    mime_type: str = "image/gif"

    @property
    def size_bytes(self) -> int:
        return len(self.data)

    def save(self, target) -> Path:
        """Write the GIF. A directory target gets the default filename."""
        target = Path(target)
        if target.is_dir():
            target = target / self.filename
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(self.data)
        return target

    def to_data_url(self) -> str:
        b64 = base64.b64encode(self.data).decode()
        return f"data:{self.mime_type};base64,{b64}"


class ExportPipeline:
    """Hands a frame sequence to the encoder service and collects the GIF."""

    def __init__(self, encoder_service: EncoderService | None = None,
                 timeout: float = RENDER_TIMEOUT_SEC):
        self.encoder_service = encoder_service
        self.timeout = timeout

    def export(self, frames, settings, progress_callback=None) -> ExportArtifact | None:
        """Encode frames into a looping GIF with jitter_speed delay per frame.

        Args:
            frames: FrameSequence (or any sequence of RGBA frames).
            settings: Settings snapshot (bg_color, jitter_speed).
            progress_callback: Optional fn(fraction) for UI progress bars.

        Returns:
            ExportArtifact, or None when there are no frames to export.

        Raises:
            EncoderUnavailable: If the encoder is not loaded or its worker is not ready.
            ExportError: If rendering fails or exceeds the timeout.
        """
        if len(frames) == 0:
            return None

        service = self.encoder_service
        if service is None or not service.available:
            raise EncoderUnavailable("GIF encoder is not loaded")
        if not service.worker_ready:
            raise EncoderUnavailable(
                "Encoder worker is not ready yet. Wait a moment and try again."
            )

        height, width = frames[0].shape[:2]
        encoder = service.create(EncoderOptions(
            width=width,
            height=height,
            background=settings.bg_color,
            workers=ENCODER_WORKERS,
            quality=ENCODER_QUALITY,
        ))
        for frame in frames:
            encoder.add_frame(frame, delay=settings.jitter_speed)

        done = threading.Event()
        outcome = {}

        def _finished(blob):
            outcome["blob"] = blob
            done.set()

        def _failed(exc):
            outcome["error"] = exc
            done.set()

        encoder.on("finished", _finished)
        encoder.on("error", _failed)
        if progress_callback:
            encoder.on("progress", progress_callback)
        encoder.render()

        if not done.wait(self.timeout):
            raise ExportError(f"GIF render exceeded {self.timeout}s timeout")
        if "error" in outcome:
            raise ExportError(f"GIF render failed: {outcome['error']}") from outcome["error"]

        return ExportArtifact(
            data=outcome["blob"],
            width=width,
            height=height,
            frame_count=len(frames),
            delay_ms=settings.jitter_speed,
        )
