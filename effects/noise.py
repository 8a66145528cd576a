"""
Wiggle -- Coherent Noise
Smooth displacement fields built from a coarse random lattice.
"""

import math

import numpy as np

NOISE_CELL_SIZE = 20  # Lattice spacing in output pixels -- the size of the "waviness"


def generate_noise_field(width: int, height: int, cell_size: int = NOISE_CELL_SIZE,
                         rng: np.random.RandomState | None = None) -> np.ndarray:
    """Generate a smoothly varying scalar field over a pixel grid.

    A lattice of uniform samples in [-1, 1] is laid over the grid with one
    node every ``cell_size`` pixels. Each pixel bilinearly interpolates the
    four corners of the lattice cell it falls in. Per-pixel noise looks like
    static; the coarse lattice moves lines in waves instead.

    The lattice is drawn fresh on every call.

    Args:
        width: Field width in pixels.
        height: Field height in pixels.
        cell_size: Lattice spacing in pixels.
        rng: RandomState to draw the lattice from. None = unseeded.

    Returns:
        (H, W) float32 array with values in [-1, 1].
    """
    if width < 1 or height < 1:
        raise ValueError(f"Noise field needs a positive size, got {width}x{height}")
    if cell_size < 1:
        raise ValueError(f"cell_size must be >= 1, got {cell_size}")
    if rng is None:
        rng = np.random.RandomState()

    cols = math.ceil(width / cell_size) + 1
    rows = math.ceil(height / cell_size) + 1
    lattice = (rng.random_sample((rows, cols)) - 0.5) * 2

    gx = np.arange(width, dtype=np.float64) / cell_size
    gy = np.arange(height, dtype=np.float64) / cell_size
    x0 = np.floor(gx).astype(np.intp)
    y0 = np.floor(gy).astype(np.intp)
    tx = (gx - x0)[None, :]
    ty = (gy - y0)[:, None]

    top_row = y0[:, None]
    left_col = x0[None, :]
    c00 = lattice[top_row, left_col]
    c10 = lattice[top_row, left_col + 1]
    c01 = lattice[top_row + 1, left_col]
    c11 = lattice[top_row + 1, left_col + 1]

    top = c00 + (c10 - c00) * tx
    bottom = c01 + (c11 - c01) * tx
    return (top + (bottom - top) * ty).astype(np.float32)


def generate_displacement(width: int, height: int, cell_size: int = NOISE_CELL_SIZE,
                          rng: np.random.RandomState | None = None) -> tuple[np.ndarray, np.ndarray]:
    """Draw an independent (x, y) pair of noise fields for one frame."""
    if rng is None:
        rng = np.random.RandomState()
    field_x = generate_noise_field(width, height, cell_size, rng)
    field_y = generate_noise_field(width, height, cell_size, rng)
    return field_x, field_y
