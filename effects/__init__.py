"""
Wiggle -- Detection Registry
Line detection policies and the per-image render entry point.

Every detection policy is a function: (frame: np.ndarray, threshold) -> (H, W) bool mask
"""

import numpy as np

from effects.mask import brightness_mask, edge_mask
from effects.noise import NOISE_CELL_SIZE, generate_noise_field, generate_displacement
from effects.jitter import (
    FrameSequence,
    GenerationCancelled,
    composite_frame,
    render_jitter_frame,
    synthesize_frames,
)

# Master registry: name -> (function, description)
DETECTION_MODES = {
    "brightness": {
        "fn": brightness_mask,
        "description": "Dark pixels are lines (luma below threshold). Best for ink on paper.",
    },
    "edge": {
        "fn": edge_mask,
        "description": "Sharp RGB changes are lines. Best for colored or low-contrast line art.",
    },
}


def get_detection_mode(name):
    """Look up a detection function by mode name or DetectionMode enum."""
    key = getattr(name, "value", name)
    if key not in DETECTION_MODES:
        raise ValueError(
            f"Unknown detection mode: {key}. Available: {', '.join(sorted(DETECTION_MODES))}"
        )
    return DETECTION_MODES[key]["fn"]


def list_detection_modes() -> list[dict]:
    """List detection modes with descriptions."""
    return [
        {"name": name, "description": entry["description"]}
        for name, entry in DETECTION_MODES.items()
    ]


def extract_mask(source: np.ndarray, width: int, height: int,
                 threshold: float, mode) -> np.ndarray:
    """Build the read-only line mask for a source frame.

    Args:
        source: (H, W, 3|4) uint8 frame already at output dimensions.
        width: Output width (must match source).
        height: Output height (must match source).
        threshold: Detection sensitivity (0-500).
        mode: 'brightness' or 'edge' (str or DetectionMode).

    Returns:
        (H, W) bool array, not writeable.
    """
    if source.shape[:2] != (height, width):
        raise ValueError(
            f"Source is {source.shape[1]}x{source.shape[0]}, expected {width}x{height}"
        )
    fn = get_detection_mode(mode)
    mask = np.ascontiguousarray(fn(source, threshold), dtype=bool)
    mask.flags.writeable = False
    return mask


def render_frames(source: np.ndarray, settings, rng=None, cancelled=None,
                  generation: int = 0) -> tuple[FrameSequence, np.ndarray]:
    """Extract the mask once, then synthesize every frame from it.

    Returns:
        (FrameSequence, mask)
    """
    height, width = source.shape[:2]
    mask = extract_mask(source, width, height, settings.threshold, settings.detection_mode)
    frames = synthesize_frames(
        source, mask, width, height, settings,
        rng=rng, cancelled=cancelled, generation=generation,
    )
    return frames, mask
