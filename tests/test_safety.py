"""
Wiggle -- Safety & Resource Limit Tests
Preflight checks on source files before decoding.

Run with: pytest tests/test_safety.py -v
"""

import os
import sys
from unittest.mock import patch

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.safety import (
    ALLOWED_EXTENSIONS,
    MAX_FILE_MB,
    MAX_SOURCE_PIXELS,
    SafetyError,
    preflight,
    validate_source_size,
    validate_upload_size,
)


class TestPreflight:

    def test_valid_png(self, line_art_png):
        info = preflight(line_art_png)
        assert info["extension"] == ".png"
        assert info["size_mb"] < 1
        assert info["path"] == os.path.realpath(line_art_png)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            preflight(tmp_path / "nope.png")

    def test_extension_case_insensitive(self, tmp_path, line_art_bytes):
        path = tmp_path / "SCAN.PNG"
        path.write_bytes(line_art_bytes)
        assert preflight(path)["extension"] == ".png"

    @pytest.mark.parametrize("name", ["drawing.svg", "movie.mp4", "noext"])
    def test_disallowed_extension(self, tmp_path, name):
        path = tmp_path / name
        path.write_bytes(b"\x00")
        with pytest.raises(SafetyError, match="not allowed"):
            preflight(path)

    def test_oversized_file(self, line_art_png):
        with patch("core.safety.os.path.getsize", return_value=(MAX_FILE_MB + 1) * 1024 * 1024):
            with pytest.raises(SafetyError, match="exceeds"):
                preflight(line_art_png)

    def test_common_image_types_allowed(self):
        for ext in (".png", ".jpg", ".jpeg", ".gif", ".webp"):
            assert ext in ALLOWED_EXTENSIONS


class TestLimits:

    def test_upload_size_at_limit_ok(self):
        validate_upload_size(MAX_FILE_MB)

    def test_upload_size_over_limit(self):
        with pytest.raises(SafetyError):
            validate_upload_size(MAX_FILE_MB + 0.5)

    def test_source_pixels_ok(self):
        validate_source_size(4000, 3000)

    def test_source_pixels_over_limit(self):
        with pytest.raises(SafetyError, match="Resize"):
            validate_source_size(MAX_SOURCE_PIXELS, 2)
