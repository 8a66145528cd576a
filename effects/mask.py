"""
Wiggle -- Line Mask Detection
Classifies every source pixel as line or background.

Two policies:
    brightness -- dark pixels are lines (ink on paper)
    edge       -- pixels that differ from their right/bottom neighbours are lines

Masks are computed once per (source, threshold, mode) and shared read-only by
every frame of a run.
"""

import numpy as np

LUMA_WEIGHTS = (0.299, 0.587, 0.114)  # ITU-R BT.601
EDGE_SENSITIVITY_RANGE = 500          # threshold 0 -> cutoff 500, threshold 500 -> cutoff 0


def luma(frame: np.ndarray) -> np.ndarray:
    """Perceptual brightness (0-255) of an RGB or RGBA frame as float64."""
    r = frame[:, :, 0].astype(np.float64)
    g = frame[:, :, 1].astype(np.float64)
    b = frame[:, :, 2].astype(np.float64)
    return LUMA_WEIGHTS[0] * r + LUMA_WEIGHTS[1] * g + LUMA_WEIGHTS[2] * b


def brightness_mask(frame: np.ndarray, threshold: float) -> np.ndarray:
    """Mark pixels whose luma is strictly below threshold.

    Luma tops out at 255 while threshold goes to 500, so any threshold above
    255 marks the whole frame.

    Args:
        frame: (H, W, 3|4) uint8 array.
        threshold: Luma cutoff (0-500).

    Returns:
        (H, W) bool array.
    """
    return luma(frame) < threshold


def edge_mask(frame: np.ndarray, threshold: float) -> np.ndarray:
    """Mark pixels whose color differs sharply from the pixel right and below.

    diffX and diffY are the sums of absolute R, G, B differences against the
    right and bottom neighbour. A pixel is a line when diffX + diffY exceeds
    max(0, 500 - threshold). The last row and column have no neighbour and
    are never marked.

    Args:
        frame: (H, W, 3|4) uint8 array.
        threshold: Sensitivity (0-500). Higher = more pixels count as edges.

    Returns:
        (H, W) bool array.
    """
    h, w = frame.shape[:2]
    rgb = frame[:, :, :3].astype(np.int32)
    center = rgb[:-1, :-1]
    diff_x = np.abs(center - rgb[:-1, 1:]).sum(axis=2)
    diff_y = np.abs(center - rgb[1:, :-1]).sum(axis=2)
    cutoff = max(0.0, EDGE_SENSITIVITY_RANGE - float(threshold))

    mask = np.zeros((h, w), dtype=bool)
    mask[:-1, :-1] = (diff_x + diff_y) > cutoff
    return mask
