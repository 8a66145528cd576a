#!/usr/bin/env python3
"""
Wiggle -- FastAPI Backend
Upload an image, generate jitter frames, and download the looping GIF.
"""

import sys
import os
import base64
import threading
from pathlib import Path

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from fastapi import FastAPI, UploadFile, File, HTTPException
from fastapi.responses import Response
import numpy as np

from core.export import EXPORT_FILENAME, EncoderService, EncoderUnavailable, ExportError
from core.image_io import DecodeError, frame_to_png_bytes, output_dimensions
from core.pipeline import WigglePipeline
from core.safety import ALLOWED_EXTENSIONS, MAX_FILE_MB, SafetyError, validate_upload_size
from core.settings import DEFAULT_SETTINGS, Settings, list_presets
from effects import list_detection_modes

app = FastAPI(title="Wiggle")

MAX_UPLOAD_SIZE = MAX_FILE_MB * 1024 * 1024
MIN_UI_FRAMES = 2  # The control panel offers 2-8 frames per loop

# Structured error recovery hints for user-facing errors
ERROR_RECOVERY = {
    "no_image": {"code": "NO_IMAGE", "hint": "Upload an image first.", "action": "load_file"},
    "no_frames": {"code": "NO_FRAMES", "hint": "Generate frames before exporting.", "action": "generate"},
    "bad_frame": {"code": "BAD_FRAME", "hint": "Frame index is outside the current loop.", "action": None},
    "invalid_settings": {"code": "INVALID_SETTINGS", "hint": "Use 2-8 frames per loop.", "action": None},
    "file_too_large": {"code": "FILE_TOO_LARGE", "hint": f"Maximum upload is {MAX_FILE_MB}MB.", "action": None},
    "unsupported_type": {"code": "UNSUPPORTED_TYPE", "hint": "Upload a png, jpg, gif, bmp, webp or tiff image.", "action": "load_file"},
    "upload_failed": {"code": "UPLOAD_FAILED", "hint": "Check the file format and try again.", "action": "retry"},
    "processing_failed": {"code": "PROCESSING_FAILED", "hint": "Try another image or lower the scale.", "action": "retry"},
    "encoder_unavailable": {"code": "ENCODER_UNAVAILABLE", "hint": "The GIF encoder is still starting. Try again in a moment.", "action": "retry"},
    "render_failed": {"code": "RENDER_FAILED", "hint": "Try fewer frames or a smaller scale.", "action": "retry"},
}


def _error_detail(key: str, message: str) -> dict:
    """Build structured error detail dict for the frontend."""
    recovery = ERROR_RECOVERY.get(key, {})
    return {
        "detail": message,
        "code": recovery.get("code", "UNKNOWN"),
        "hint": recovery.get("hint", ""),
        "action": recovery.get("action"),
    }


def _frame_to_data_url(frame: np.ndarray) -> str:
    """Encode a frame as a PNG data URL for an img tag."""
    b64 = base64.b64encode(frame_to_png_bytes(frame)).decode()
    return f"data:image/png;base64,{b64}"


# One editing session per server process
_pipeline = None
_pipeline_lock = threading.Lock()


def _get_pipeline() -> WigglePipeline:
    """Create the session pipeline on first use. The encoder loads up front."""
    global _pipeline
    with _pipeline_lock:
        if _pipeline is None:
            _pipeline = WigglePipeline(encoder_service=EncoderService.ready())
        return _pipeline


@app.get("/api/health")
async def health_check():
    return {"status": "ok"}


@app.get("/api/settings/defaults")
async def settings_defaults():
    """Default settings, camelCase like the browser tool's settings JSON."""
    return DEFAULT_SETTINGS.model_dump(mode="json", by_alias=True)


@app.get("/api/presets")
async def presets():
    return {"presets": list_presets()}


@app.get("/api/modes")
async def modes():
    return {"modes": list_detection_modes()}


@app.get("/api/status")
async def status():
    return _get_pipeline().state()


@app.post("/api/upload")
async def upload_image(file: UploadFile = File(...)):
    """Upload a source image. Replaces the current source."""
    if not file.filename:
        raise HTTPException(status_code=400, detail=_error_detail("upload_failed", "No filename provided"))
    suffix = Path(file.filename).suffix.lower()
    if suffix not in ALLOWED_EXTENSIONS:
        raise HTTPException(status_code=400, detail=_error_detail(
            "unsupported_type",
            f"Unsupported file type: {suffix or '(none)'}. Accepted: {', '.join(sorted(ALLOWED_EXTENSIONS))}",
        ))

    chunks = []
    total_size = 0
    while chunk := await file.read(1024 * 1024):  # 1MB chunks
        total_size += len(chunk)
        if total_size > MAX_UPLOAD_SIZE:
            raise HTTPException(status_code=413, detail=_error_detail(
                "file_too_large", f"File too large. Maximum size: {MAX_FILE_MB}MB"
            ))
        chunks.append(chunk)
    data = b"".join(chunks)

    pipeline = _get_pipeline()
    try:
        validate_upload_size(total_size / (1024 * 1024))
        _, bitmap = pipeline.cache.get(data)  # generate reuses this decode
    except (DecodeError, SafetyError) as e:
        raise HTTPException(status_code=400, detail=_error_detail("upload_failed", str(e)))

    pipeline.set_source(data)
    height, width = bitmap.shape[:2]
    out_w, out_h = output_dimensions(width, height)
    return {
        "status": "ok",
        "filename": file.filename,
        "width": width,
        "height": height,
        "output_width": out_w,
        "output_height": out_h,
        "preview": _frame_to_data_url(bitmap),
    }


@app.post("/api/generate")
def generate(settings: Settings):
    """Generate a new jitter loop for the uploaded image."""
    pipeline = _get_pipeline()
    if not pipeline.has_source:
        raise HTTPException(status_code=400, detail=_error_detail("no_image", "No image uploaded"))
    if settings.frame_count < MIN_UI_FRAMES:
        raise HTTPException(status_code=400, detail=_error_detail(
            "invalid_settings", f"frameCount must be at least {MIN_UI_FRAMES}"
        ))

    frames = pipeline.generate(settings)
    if frames is None:
        raise HTTPException(status_code=422, detail=_error_detail(
            "processing_failed", pipeline.last_error or "Generation was superseded"
        ))
    return {
        "status": pipeline.status.value,
        "frame_count": len(frames),
        "width": frames.width,
        "height": frames.height,
        "delay_ms": frames.delay_ms,
        "generation": frames.generation,
        "frames": [_frame_to_data_url(f) for f in frames],
    }


@app.get("/api/frames/{index}")
def get_frame(index: int):
    """One generated frame as PNG."""
    frames = _get_pipeline().frames
    if not 0 <= index < len(frames):
        raise HTTPException(status_code=404, detail=_error_detail(
            "bad_frame", f"Frame {index} out of range (0-{len(frames) - 1})"
        ))
    return Response(content=frame_to_png_bytes(frames[index]), media_type="image/png")


@app.post("/api/export")
def export_gif():
    """Encode the current loop and return it as a GIF download."""
    pipeline = _get_pipeline()
    try:
        artifact = pipeline.export()
    except EncoderUnavailable as e:
        raise HTTPException(status_code=503, detail=_error_detail("encoder_unavailable", str(e)))
    except ExportError as e:
        import logging
        logging.exception("GIF export failed")
        raise HTTPException(status_code=500, detail=_error_detail("render_failed", str(e)))

    if artifact is None:
        raise HTTPException(status_code=400, detail=_error_detail("no_frames", "Nothing to export yet"))
    return Response(
        content=artifact.data,
        media_type=artifact.mime_type,
        headers={"Content-Disposition": f'attachment; filename="{EXPORT_FILENAME}"'},
    )


def start(host: str = "127.0.0.1", port: int = 7860):
    import uvicorn
    print(f"Wiggle -- launching at http://{host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level="warning")


if __name__ == "__main__":
    start()
