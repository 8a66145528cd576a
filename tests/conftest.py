"""
Conftest: shared fixtures for all Wiggle test modules.

1. Synthetic source frames (line art, solid colors) -- no image files needed
2. On-disk PNG sources for decode / CLI / pipeline tests
3. A ready encoder service, shut down after each test
"""

import os
import sys
from io import BytesIO

import numpy as np
import pytest
from PIL import Image

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.export import EncoderService
from core.settings import Settings


def _make_line_art(width=64, height=48):
    """White RGBA canvas with a black cross and a red diagonal."""
    frame = np.full((height, width, 4), 255, dtype=np.uint8)
    frame[height // 2 - 1:height // 2 + 1, :, :3] = 0
    frame[:, width // 2 - 1:width // 2 + 1, :3] = 0
    for i in range(min(width, height)):
        frame[i, i, :3] = (220, 20, 20)
    return frame


def _make_solid(width, height, rgb):
    frame = np.empty((height, width, 4), dtype=np.uint8)
    frame[:, :, :3] = rgb
    frame[:, :, 3] = 255
    return frame


def _png_bytes(frame):
    buf = BytesIO()
    Image.fromarray(frame).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def line_art():
    """64x48 RGBA line drawing."""
    return _make_line_art()


@pytest.fixture
def solid_gray():
    """32x32 uniform gray RGBA frame -- no internal edges."""
    return _make_solid(32, 32, (128, 128, 128))


@pytest.fixture
def line_art_png(tmp_path):
    """Line drawing saved as a PNG file."""
    path = tmp_path / "drawing.png"
    path.write_bytes(_png_bytes(_make_line_art()))
    return path


@pytest.fixture
def line_art_bytes():
    return _png_bytes(_make_line_art())


@pytest.fixture
def settings():
    """Default settings with a fixed, fast frame count."""
    return Settings(frame_count=3)


@pytest.fixture
def rng():
    return np.random.RandomState(1234)


@pytest.fixture
def encoder_service():
    """Loaded encoder with its worker pool running."""
    service = EncoderService.ready()
    yield service
    service.shutdown()
