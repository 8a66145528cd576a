"""
Wiggle -- Image I/O
Decodes source images into RGBA numpy arrays, sizes them for output,
and writes frames back out as PNG.
"""

import base64
import binascii
import hashlib
import math
import threading
from collections import OrderedDict
from io import BytesIO
from pathlib import Path

import numpy as np
from PIL import Image

MAX_WIDTH = 800        # Sources wider than this are scaled down before `scale` applies
CACHE_ENTRIES = 4      # Decoded sources kept in memory


class DecodeError(Exception):
    """Raised when a source image cannot be decoded."""
    pass


def _read_source_bytes(source) -> bytes | None:
    """Return raw bytes for bytes / data-URI sources, None for paths."""
    if isinstance(source, (bytes, bytearray, memoryview)):
        return bytes(source)
    if isinstance(source, str) and source.startswith("data:"):
        try:
            header, payload = source.split(",", 1)
        except ValueError:
            raise DecodeError("Malformed data URI (missing ',')")
        if ";base64" not in header:
            raise DecodeError("Only base64 data URIs are supported")
        try:
            return base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecodeError(f"Invalid base64 payload in data URI: {e}")
    return None


def source_identity(source) -> str:
    """Cache key for a source: path + mtime + size for files, SHA-1 for bytes."""
    data = _read_source_bytes(source)
    if data is not None:
        return "sha1:" + hashlib.sha1(data).hexdigest()
    path = Path(source).resolve()
    try:
        stat = path.stat()
    except OSError:
        return f"file:{path}"
    return f"file:{path}:{stat.st_mtime_ns}:{stat.st_size}"


def load_image(source) -> np.ndarray:
    """Decode a path, raw bytes, or base64 data URI into an RGBA array.

    Animated sources contribute their first frame.

    Returns:
        (H, W, 4) uint8 RGBA array, not writeable.

    Raises:
        DecodeError: If the source is missing or not a decodable image.
    """
    data = _read_source_bytes(source)
    fp = BytesIO(data) if data is not None else str(source)
    try:
        with Image.open(fp) as img:
            img.seek(0)
            rgba = np.array(img.convert("RGBA"))
    except FileNotFoundError:
        raise DecodeError(f"Image not found: {source}")
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        label = "image data" if data is not None else str(source)
        raise DecodeError(f"Could not decode {label}: {e}")

    rgba.flags.writeable = False
    return rgba


def output_dimensions(width: int, height: int, scale: float = 1.0,
                      max_width: int = MAX_WIDTH) -> tuple[int, int]:
    """Compute output (width, height) for a source of the given size.

    Width is capped at max_width (height follows the same ratio), then both
    sides are multiplied by scale and floored. Sides that floor to 0
    (sub-pixel results) are clamped up to 1px.
    """
    if width < 1 or height < 1:
        raise ValueError(f"Source has no pixels: {width}x{height}")
    w, h = float(width), float(height)
    if w > max_width:
        ratio = max_width / w
        w = float(max_width)
        h = h * ratio

    out_w = max(1, math.floor(w * scale))
    out_h = max(1, math.floor(h * scale))
    return out_w, out_h


def resample_source(bitmap: np.ndarray, width: int, height: int) -> np.ndarray:
    """Resize a decoded source to output dimensions (bilinear, like a canvas draw)."""
    if bitmap.shape[:2] == (height, width):
        return bitmap
    img = Image.fromarray(np.ascontiguousarray(bitmap))
    resized = np.array(img.resize((width, height), Image.BILINEAR))
    resized.flags.writeable = False
    return resized


def save_frame(frame: np.ndarray, output_path) -> Path:
    """Save an (H, W, 3|4) uint8 frame as PNG."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    Image.fromarray(np.clip(frame, 0, 255).astype(np.uint8)).save(str(output_path))
    return output_path


def save_frames(frames, output_dir, prefix: str = "frame") -> list[Path]:
    """Save a frame sequence as numbered PNGs: frame_000.png, frame_001.png, ..."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    return [
        save_frame(frame, output_dir / f"{prefix}_{i:03d}.png")
        for i, frame in enumerate(frames)
    ]


def frame_to_png_bytes(frame: np.ndarray) -> bytes:
    """Encode a frame as PNG bytes."""
    buf = BytesIO()
    Image.fromarray(np.asarray(frame, dtype=np.uint8)).save(buf, format="PNG")
    return buf.getvalue()


class ImageCache:
    """Decoded sources keyed by source identity (LRU).

    Changing unrelated settings re-uses the decoded bitmap instead of
    decoding the file again.
    """

    def __init__(self, max_entries: int = CACHE_ENTRIES):
        self.max_entries = max(1, max_entries)
        self.hits = 0
        self.misses = 0
        self._entries: OrderedDict[str, np.ndarray] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, source) -> tuple[str, np.ndarray]:
        """Return (identity, bitmap), decoding only on a cache miss."""
        key = source_identity(source)
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
                self.hits += 1
                return key, self._entries[key]

        bitmap = load_image(source)

        with self._lock:
            self.misses += 1
            self._entries[key] = bitmap
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
        return key, bitmap

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self):
        return len(self._entries)

    def __contains__(self, source):
        return source_identity(source) in self._entries
