"""
Wiggle -- Playback Scheduler

Cycles a FrameSequence onto a display surface at a fixed cadence. The
scheduler never sleeps or loops on its own: a host calls tick(now) once per
display refresh and the scheduler decides whether enough time has passed to
show the next frame.

Host protocol:     request_tick(callback) -> handle, cancel_tick(handle)
Surface protocol:  blit(frame)

ManualTickHost drives ticks explicitly (tests, headless callers).
PygameHost/PygameSurface drive a live preview window.
"""

import itertools

try:
    import pygame
except ImportError:
    pygame = None


class PlaybackScheduler:
    """Shows frames[frame_index] whenever more than jitter_speed ms have passed.

    The first tick after start() or a restart always draws, whatever the
    host clock reads, so a new sequence appears immediately.
    """

    def __init__(self, frames, jitter_speed: int, surface, host):
        self._validate(frames, jitter_speed)
        self.frames = frames
        self.jitter_speed = jitter_speed
        self.surface = surface
        self.host = host

        self.frame_index = 0
        self.last_draw_time = 0
        self._needs_first_draw = True
        self._handle = None
        self._running = False

    @staticmethod
    def _validate(frames, jitter_speed):
        if frames is None or len(frames) == 0:
            raise ValueError("Cannot play an empty frame sequence")
        if jitter_speed <= 0:
            raise ValueError(f"jitter_speed must be > 0 ms, got {jitter_speed}")

    @property
    def running(self) -> bool:
        return self._running

    def start(self):
        """Request the first tick from the host (no-op if already running)."""
        if self._running:
            return
        self._running = True
        self._schedule()

    def _schedule(self):
        self._handle = self.host.request_tick(self.tick)

    def tick(self, now: float) -> bool:
        """Advance playback to host time `now` (ms). Returns True if a frame was drawn."""
        if not self._running:
            return False

        drew = False
        if self._needs_first_draw or now - self.last_draw_time > self.jitter_speed:
            self.surface.blit(self.frames[self.frame_index])
            self.frame_index = (self.frame_index + 1) % len(self.frames)
            self.last_draw_time = now
            self._needs_first_draw = False
            drew = True

        if self._running:
            self._schedule()
        return drew

    def restart(self, frames=None, jitter_speed=None):
        """Swap in a new sequence and/or speed.

        Identical values leave playback undisturbed. Otherwise the pending
        tick is cancelled, the index and clock reset, and playback resumes
        from frame 0.
        """
        new_frames = self.frames if frames is None else frames
        new_speed = self.jitter_speed if jitter_speed is None else jitter_speed
        if new_frames is self.frames and new_speed == self.jitter_speed and self._running:
            return
        self._validate(new_frames, new_speed)

        self.cancel()
        self.frames = new_frames
        self.jitter_speed = new_speed
        self.frame_index = 0
        self.last_draw_time = 0
        self._needs_first_draw = True
        self.start()

    def cancel(self):
        """Withdraw the pending tick. Later ticks are ignored."""
        self._running = False
        if self._handle is not None:
            self.host.cancel_tick(self._handle)
            self._handle = None


class ManualTickHost:
    """Tick host driven by explicit advance(now) calls."""

    def __init__(self):
        self._pending = {}
        self._ids = itertools.count(1)

    def request_tick(self, callback):
        handle = next(self._ids)
        self._pending[handle] = callback
        return handle

    def cancel_tick(self, handle):
        self._pending.pop(handle, None)

    @property
    def pending(self) -> int:
        return len(self._pending)

    def advance(self, now: float) -> int:
        """Fire every tick requested before this call. Returns how many fired."""
        due = list(self._pending.items())
        self._pending.clear()
        for _, callback in due:
            callback(now)
        return len(due)


class PygameSurface:
    """Preview window that shows RGBA frames."""

    def __init__(self, width: int, height: int, caption: str = "Wiggle Preview"):
        if pygame is None:
            raise RuntimeError("pygame required for preview. Install: pip install pygame")
        pygame.init()
        self.screen = pygame.display.set_mode((width, height))
        pygame.display.set_caption(caption)

    def blit(self, frame):
        # pygame surfaces are (W, H), numpy frames are (H, W)
        surface = pygame.surfarray.make_surface(frame[:, :, :3].swapaxes(0, 1))
        self.screen.blit(surface, (0, 0))
        pygame.display.flip()


class PygameHost:
    """Tick host that fires once per display refresh until the window closes.

    Hotkeys:
      Esc / Q  = quit
    """

    def __init__(self, fps: int = 60):
        if pygame is None:
            raise RuntimeError("pygame required for preview. Install: pip install pygame")
        self.fps = fps
        self._pending = {}
        self._ids = itertools.count(1)
        self._clock = pygame.time.Clock()
        self.running = False

    def request_tick(self, callback):
        handle = next(self._ids)
        self._pending[handle] = callback
        return handle

    def cancel_tick(self, handle):
        self._pending.pop(handle, None)

    def _handle_events(self):
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                self.running = False
            elif event.type == pygame.KEYDOWN and event.key in (pygame.K_ESCAPE, pygame.K_q):
                self.running = False

    def run(self):
        """Block and drive ticks until the window is closed or nothing is scheduled."""
        self.running = True
        try:
            while self.running and self._pending:
                self._handle_events()
                due = list(self._pending.values())
                self._pending.clear()
                now = pygame.time.get_ticks()
                for callback in due:
                    callback(now)
                self._clock.tick(self.fps)
        finally:
            self.running = False
            if pygame.get_init():
                pygame.quit()


def play(frames, jitter_speed: int, fps: int = 60):
    """Open a preview window and loop the sequence until it is closed."""
    surface = PygameSurface(frames.width, frames.height)
    host = PygameHost(fps=fps)
    scheduler = PlaybackScheduler(frames, jitter_speed, surface, host)
    scheduler.start()
    host.run()
    scheduler.cancel()
    return scheduler
