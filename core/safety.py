"""
Wiggle -- Safety & Resource Guards
Preflight checks run before a source image is decoded.
Prevents oversized uploads, decompression bombs, and unsupported file types.
"""

import os
from pathlib import Path

# --- Configurable Limits ---
MAX_FILE_MB = 50                 # Maximum input file size
MAX_SOURCE_PIXELS = 40_000_000   # Decoded pixel budget (~40MP)
ALLOWED_EXTENSIONS = {".png", ".jpg", ".jpeg", ".gif", ".bmp", ".webp", ".tif", ".tiff"}


class SafetyError(Exception):
    """Raised when a preflight check fails."""
    pass


def preflight(input_path) -> dict:
    """Run all safety checks before decoding a source image file.

    Args:
        input_path: Path to the input image.

    Returns:
        dict with file metadata (path, size_mb, extension)

    Raises:
        SafetyError: If any check fails.
        FileNotFoundError: If input doesn't exist.
    """
    input_path = str(input_path)
    real_path = os.path.realpath(input_path)

    # 1. File exists
    if not os.path.isfile(real_path):
        raise FileNotFoundError(f"Input file not found: {input_path}")

    # 2. File extension check
    ext = Path(real_path).suffix.lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise SafetyError(
            f"File type '{ext}' not allowed. "
            f"Supported: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
        )

    # 3. File size check
    size_mb = os.path.getsize(real_path) / (1024 * 1024)
    validate_upload_size(size_mb)

    return {
        "path": real_path,
        "size_mb": size_mb,
        "extension": ext,
    }


def validate_upload_size(size_mb: float) -> None:
    """Reject inputs over MAX_FILE_MB.

    Raises:
        SafetyError: If the file is too large.
    """
    if size_mb > MAX_FILE_MB:
        raise SafetyError(
            f"Input file is {size_mb:.0f}MB, exceeds {MAX_FILE_MB}MB limit. "
            f"Use a smaller or more compressed image."
        )


def validate_source_size(width: int, height: int) -> None:
    """Reject decoded sources above MAX_SOURCE_PIXELS.

    Raises:
        SafetyError: If the decoded image is too large to process.
    """
    pixels = width * height
    if pixels > MAX_SOURCE_PIXELS:
        raise SafetyError(
            f"Image is {width}x{height} ({pixels / 1e6:.0f}MP), "
            f"max is {MAX_SOURCE_PIXELS / 1e6:.0f}MP. Resize it first."
        )
