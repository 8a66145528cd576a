"""
Wiggle -- Jitter Frame Synthesis
Renders N wiggled variants of a line mask by backward mapping.

Every destination pixel looks up the source pixel it came from, so each
output pixel is written exactly once and displaced lines never leave holes.
"""

import numpy as np

from effects.noise import NOISE_CELL_SIZE, generate_displacement

HIGH_FREQ_JITTER = 0.3  # Per-pixel "ink bleed" on top of the coherent waves
OPAQUE = 255


class GenerationCancelled(Exception):
    """Raised when a generation run is abandoned between frames."""
    pass


class FrameSequence:
    """Immutable, ordered set of RGBA frames forming one loop.

    All frames share one (H, W, 4) shape and are read-only. Consumers
    (playback, export) never see a partially written frame.
    """

    def __init__(self, frames=(), delay_ms: int = 0, generation: int = 0):
        frames = tuple(frames)
        for frame in frames:
            if frame.ndim != 3 or frame.shape[2] != 4:
                raise ValueError(f"Frames must be (H, W, 4) RGBA, got {frame.shape}")
            if frame.shape != frames[0].shape:
                raise ValueError(
                    f"All frames must share dimensions: {frame.shape} != {frames[0].shape}"
                )
            frame.flags.writeable = False
        self._frames = frames
        self.delay_ms = delay_ms
        self.generation = generation

    @property
    def width(self) -> int:
        return self._frames[0].shape[1] if self._frames else 0

    @property
    def height(self) -> int:
        return self._frames[0].shape[0] if self._frames else 0

    def __len__(self):
        return len(self._frames)

    def __iter__(self):
        return iter(self._frames)

    def __getitem__(self, index):
        return self._frames[index]

    def __repr__(self):
        return (f"FrameSequence({len(self)} frames, {self.width}x{self.height}, "
                f"delay={self.delay_ms}ms, generation={self.generation})")


def _check_inputs(source: np.ndarray, mask: np.ndarray, width: int, height: int):
    if source.ndim != 3 or source.shape[2] not in (3, 4):
        raise ValueError(f"Source must be (H, W, 3|4), got {source.shape}")
    if source.shape[:2] != (height, width):
        raise ValueError(
            f"Source is {source.shape[1]}x{source.shape[0]}, expected {width}x{height}. "
            f"Resample it to the output dimensions first."
        )
    if mask.shape != (height, width):
        raise ValueError(f"Mask shape {mask.shape} does not match {width}x{height}")


def _paint(source: np.ndarray, hit: np.ndarray, src_y: np.ndarray, src_x: np.ndarray,
           settings) -> np.ndarray:
    """Fill background, then write line pixels from source or line_color."""
    h, w = hit.shape
    frame = np.empty((h, w, 4), dtype=np.uint8)
    frame[:, :, :3] = settings.bg_rgb
    frame[:, :, 3] = OPAQUE
    if settings.use_original_colors:
        frame[hit, :3] = source[src_y[hit], src_x[hit], :3]
    else:
        frame[hit, :3] = settings.line_rgb
    return frame


def composite_frame(source: np.ndarray, mask: np.ndarray, settings) -> np.ndarray:
    """Composite the mask over source/fixed colors with no displacement.

    This is exactly what synthesize_frames produces when jitter_amount is 0.

    Returns:
        (H, W, 4) uint8 opaque RGBA frame.
    """
    h, w = mask.shape
    _check_inputs(source, mask, w, h)
    ys, xs = np.mgrid[0:h, 0:w]
    return _paint(source, mask, ys, xs, settings)


def render_jitter_frame(source: np.ndarray, mask: np.ndarray, settings,
                        rng: np.random.RandomState,
                        cell_size: int = NOISE_CELL_SIZE) -> np.ndarray:
    """Render one wiggled frame.

    For each destination pixel (x, y):
        d = noise(x, y) * jitter + uniform(-0.5, 0.5) * 0.3 * jitter
        src = round(dest - d)
    The pixel takes the line color when src is inside the frame and on the
    mask, otherwise the background color.
    """
    h, w = mask.shape
    amount = float(settings.jitter_amount)

    noise_x, noise_y = generate_displacement(w, h, cell_size, rng)
    fine_x = (rng.random_sample((h, w)) - 0.5) * HIGH_FREQ_JITTER
    fine_y = (rng.random_sample((h, w)) - 0.5) * HIGH_FREQ_JITTER
    dx = noise_x * amount + fine_x * amount
    dy = noise_y * amount + fine_y * amount

    ys, xs = np.mgrid[0:h, 0:w]
    # Round half up, matching canvas-style rounding (numpy rounds half to even)
    src_x = np.floor(xs - dx + 0.5).astype(np.intp)
    src_y = np.floor(ys - dy + 0.5).astype(np.intp)

    inside = (src_x >= 0) & (src_x < w) & (src_y >= 0) & (src_y < h)
    src_x = np.clip(src_x, 0, w - 1)
    src_y = np.clip(src_y, 0, h - 1)
    hit = inside & mask[src_y, src_x]

    return _paint(source, hit, src_y, src_x, settings)


def synthesize_frames(source: np.ndarray, mask: np.ndarray, width: int, height: int,
                      settings, rng: np.random.RandomState | None = None,
                      cancelled=None, generation: int = 0) -> FrameSequence:
    """Generate the full jitter loop for one run.

    Args:
        source: (H, W, 3|4) uint8 frame already at output dimensions.
        mask: (H, W) bool line mask for that frame.
        width: Output width.
        height: Output height.
        settings: Settings snapshot (jitter_amount, frame_count, colors, ...).
        rng: RandomState for noise and jitter. None = unseeded.
        cancelled: Optional zero-arg callable polled between frames. When it
            returns True the run stops with GenerationCancelled.
        generation: Run id stamped on the resulting sequence.

    Returns:
        FrameSequence of exactly settings.frame_count frames.
    """
    _check_inputs(source, mask, width, height)
    if rng is None:
        rng = np.random.RandomState()

    frames = []
    for i in range(settings.frame_count):
        if cancelled is not None and cancelled():
            raise GenerationCancelled(
                f"Run {generation} cancelled after {i}/{settings.frame_count} frames"
            )
        frames.append(render_jitter_frame(source, mask, settings, rng))

    return FrameSequence(frames, delay_ms=settings.jitter_speed, generation=generation)
