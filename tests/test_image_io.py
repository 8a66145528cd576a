"""
Wiggle -- Image I/O Tests
Decoding, output dimensions, resampling, frame writing and the decode cache.

Run with: pytest tests/test_image_io.py -v
"""

import base64
import os
import sys
from io import BytesIO

import numpy as np
import pytest
from PIL import Image

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.image_io import (
    MAX_WIDTH,
    DecodeError,
    ImageCache,
    frame_to_png_bytes,
    load_image,
    output_dimensions,
    resample_source,
    save_frames,
    source_identity,
)


class TestLoadImage:

    def test_path(self, line_art_png, line_art):
        bitmap = load_image(line_art_png)
        np.testing.assert_array_equal(bitmap, line_art)
        assert not bitmap.flags.writeable

    def test_bytes(self, line_art_bytes, line_art):
        np.testing.assert_array_equal(load_image(line_art_bytes), line_art)

    def test_data_uri(self, line_art_bytes, line_art):
        uri = "data:image/png;base64," + base64.b64encode(line_art_bytes).decode()
        np.testing.assert_array_equal(load_image(uri), line_art)

    def test_rgb_source_becomes_rgba(self, tmp_path):
        path = tmp_path / "rgb.jpg"
        Image.new("RGB", (10, 6), (10, 200, 30)).save(path)
        bitmap = load_image(path)
        assert bitmap.shape == (6, 10, 4)
        assert (bitmap[:, :, 3] == 255).all()

    def test_missing_file(self, tmp_path):
        with pytest.raises(DecodeError, match="not found"):
            load_image(tmp_path / "missing.png")

    def test_garbage_bytes(self):
        with pytest.raises(DecodeError):
            load_image(b"definitely not an image")

    def test_bad_data_uri(self):
        with pytest.raises(DecodeError):
            load_image("data:image/png;base64,@@@@")
        with pytest.raises(DecodeError, match="base64"):
            load_image("data:image/png,abc")


class TestOutputDimensions:

    def test_scale_half_of_small_source(self):
        assert output_dimensions(10, 10, scale=0.5) == (5, 5)

    def test_width_capped_at_800(self):
        assert output_dimensions(1600, 900) == (800, 450)

    def test_cap_then_scale_then_floor(self):
        # 1000x333 -> 800x266.4 -> *1.5 -> 1200x399.6 -> floor
        assert output_dimensions(1000, 333, scale=1.5) == (1200, 399)

    def test_exactly_800_not_rescaled(self):
        assert output_dimensions(MAX_WIDTH, 123) == (800, 123)

    def test_floor_not_round(self):
        assert output_dimensions(9, 9, scale=0.5) == (4, 4)

    def test_never_below_one_pixel(self):
        assert output_dimensions(1, 1, scale=0.1) == (1, 1)

    def test_sub_pixel_side_clamped_up(self):
        # 1600x1 is capped to 800x0.5, then scaled to 80x0.05
        assert output_dimensions(1600, 1, scale=0.1) == (80, 1)

    def test_empty_source(self):
        with pytest.raises(ValueError):
            output_dimensions(0, 10)


class TestResample:

    def test_same_size_passthrough(self, line_art):
        assert resample_source(line_art, 64, 48) is line_art

    def test_resize(self, line_art):
        out = resample_source(line_art, 32, 24)
        assert out.shape == (24, 32, 4)
        assert not out.flags.writeable


class TestFrameOutput:

    def test_save_frames_numbered(self, tmp_path, line_art):
        paths = save_frames([line_art, line_art], tmp_path / "out")
        assert [p.name for p in paths] == ["frame_000.png", "frame_001.png"]
        with Image.open(paths[1]) as img:
            assert img.size == (64, 48)

    def test_png_bytes(self, line_art):
        data = frame_to_png_bytes(line_art)
        assert data[:8] == b"\x89PNG\r\n\x1a\n"
        with Image.open(BytesIO(data)) as img:
            assert img.mode == "RGBA"


class TestImageCache:

    def test_decodes_once_per_identity(self, line_art_png):
        cache = ImageCache()
        key1, a = cache.get(line_art_png)
        key2, b = cache.get(str(line_art_png))
        assert key1 == key2
        assert a is b
        assert (cache.hits, cache.misses) == (1, 1)
        assert line_art_png in cache

    def test_changed_file_redecodes(self, line_art_png):
        cache = ImageCache()
        key1, _ = cache.get(line_art_png)
        Image.new("RGBA", (5, 5), (1, 2, 3, 255)).save(line_art_png)
        os.utime(line_art_png, ns=(1, 1))
        key2, bitmap = cache.get(line_art_png)
        assert key1 != key2
        assert bitmap.shape == (5, 5, 4)

    def test_bytes_identity_by_content(self, line_art_bytes):
        assert source_identity(line_art_bytes) == source_identity(bytes(line_art_bytes))
        assert source_identity(line_art_bytes).startswith("sha1:")

    def test_lru_eviction(self, line_art_bytes):
        cache = ImageCache(max_entries=2)
        sources = []
        for color in [(1, 1, 1), (2, 2, 2), (3, 3, 3)]:
            buf = BytesIO()
            Image.new("RGB", (4, 4), color).save(buf, format="PNG")
            sources.append(buf.getvalue())
            cache.get(sources[-1])
        assert len(cache) == 2
        assert sources[0] not in cache
        assert sources[2] in cache

    def test_decode_error_not_cached(self):
        cache = ImageCache()
        with pytest.raises(DecodeError):
            cache.get(b"nope")
        assert len(cache) == 0
