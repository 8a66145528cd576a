"""
Wiggle -- HTTP API Tests
Upload, generate, frame fetch and GIF export through the FastAPI app.

Run with: pytest tests/test_server.py -v
"""

import os
import sys
from io import BytesIO

import numpy as np
import pytest
from PIL import Image
from starlette.testclient import TestClient

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import server
from core.export import EncoderService
from core.pipeline import WigglePipeline


@pytest.fixture
def client(encoder_service):
    """Client with a fresh session pipeline per test."""
    server._pipeline = WigglePipeline(encoder_service=encoder_service,
                                      rng=np.random.RandomState(0))
    yield TestClient(server.app)
    server._pipeline = None


def _upload(client, data, name="drawing.png"):
    return client.post("/api/upload", files={"file": (name, data, "image/png")})


class TestInfoEndpoints:

    def test_health(self, client):
        assert client.get("/api/health").json() == {"status": "ok"}

    def test_defaults_are_camel_case(self, client):
        data = client.get("/api/settings/defaults").json()
        assert data["threshold"] == 350
        assert data["jitterAmount"] == 3
        assert data["frameCount"] == 5
        assert data["detectionMode"] == "edge"

    def test_presets(self, client):
        names = [p["name"] for p in client.get("/api/presets").json()["presets"]]
        assert "default" in names and "ink" in names

    def test_modes(self, client):
        names = {m["name"] for m in client.get("/api/modes").json()["modes"]}
        assert names == {"brightness", "edge"}

    def test_status_idle(self, client):
        state = client.get("/api/status").json()
        assert state["status"] == "idle"
        assert state["frame_count"] == 0


class TestUpload:

    def test_upload_png(self, client, line_art_bytes):
        resp = _upload(client, line_art_bytes)
        assert resp.status_code == 200
        data = resp.json()
        assert (data["width"], data["height"]) == (64, 48)
        assert data["preview"].startswith("data:image/png;base64,")

    def test_wide_image_reports_capped_output(self, client):
        buf = BytesIO()
        Image.new("RGB", (1600, 200), "white").save(buf, format="PNG")
        data = _upload(client, buf.getvalue()).json()
        assert (data["output_width"], data["output_height"]) == (800, 100)

    def test_unsupported_type(self, client):
        resp = _upload(client, b"<svg/>", name="drawing.svg")
        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "UNSUPPORTED_TYPE"

    def test_upload_decode_reused_by_generate(self, client, line_art_bytes):
        _upload(client, line_art_bytes)
        client.post("/api/generate", json={"frameCount": 2})
        cache = server._pipeline.cache
        assert cache.misses == 1
        assert cache.hits >= 1

    def test_undecodable(self, client):
        resp = _upload(client, b"not an image")
        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "UPLOAD_FAILED"


class TestGenerate:

    def test_requires_upload(self, client):
        resp = client.post("/api/generate", json={})
        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "NO_IMAGE"

    def test_generate_frames(self, client, line_art_bytes):
        _upload(client, line_art_bytes)
        resp = client.post("/api/generate", json={"frameCount": 3, "jitterSpeed": 80})
        assert resp.status_code == 200
        data = resp.json()
        assert data["frame_count"] == 3
        assert data["delay_ms"] == 80
        assert (data["width"], data["height"]) == (64, 48)
        assert len(data["frames"]) == 3
        assert data["status"] == "idle"

    def test_snake_case_body(self, client, line_art_bytes):
        _upload(client, line_art_bytes)
        resp = client.post("/api/generate", json={"frame_count": 2, "detection_mode": "brightness"})
        assert resp.json()["frame_count"] == 2

    def test_out_of_range_settings(self, client, line_art_bytes):
        _upload(client, line_art_bytes)
        assert client.post("/api/generate", json={"threshold": 900}).status_code == 422

    def test_single_frame_rejected(self, client, line_art_bytes):
        _upload(client, line_art_bytes)
        resp = client.post("/api/generate", json={"frameCount": 1})
        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "INVALID_SETTINGS"

    def test_frame_png(self, client, line_art_bytes):
        _upload(client, line_art_bytes)
        client.post("/api/generate", json={"frameCount": 2})
        resp = client.get("/api/frames/1")
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "image/png"
        with Image.open(BytesIO(resp.content)) as img:
            assert img.size == (64, 48)

    def test_frame_out_of_range(self, client):
        resp = client.get("/api/frames/0")
        assert resp.status_code == 404
        assert resp.json()["detail"]["code"] == "BAD_FRAME"


class TestExport:

    def test_export_gif(self, client, line_art_bytes):
        _upload(client, line_art_bytes)
        client.post("/api/generate", json={"frameCount": 4, "jitterSpeed": 100})
        resp = client.post("/api/export")
        assert resp.status_code == 200
        assert resp.headers["content-type"] == "image/gif"
        assert "wiggle-export.gif" in resp.headers["content-disposition"]
        with Image.open(BytesIO(resp.content)) as gif:
            assert gif.size == (64, 48)
            assert gif.info["loop"] == 0

    def test_export_before_generate(self, client):
        resp = client.post("/api/export")
        assert resp.status_code == 400
        assert resp.json()["detail"]["code"] == "NO_FRAMES"

    def test_export_encoder_unavailable(self, client, line_art_bytes):
        _upload(client, line_art_bytes)
        client.post("/api/generate", json={"frameCount": 2})
        server._pipeline.encoder_service = EncoderService()
        resp = client.post("/api/export")
        assert resp.status_code == 503
        assert resp.json()["detail"]["code"] == "ENCODER_UNAVAILABLE"
        assert client.get("/api/status").json()["status"] == "idle"
