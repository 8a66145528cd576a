"""
Wiggle -- Settings Models

Pydantic model for one jitter run. The engine receives an immutable snapshot
per invocation; the CLI, the HTTP API and settings files all build one of these.

Field names are snake_case in Python. camelCase aliases (jitterAmount,
useOriginalColors, ...) are accepted on input so settings exported by the
browser version of the tool load unchanged.
"""

from __future__ import annotations

import json
import re
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class DetectionMode(str, Enum):
    """How line pixels are told apart from background pixels."""
    BRIGHTNESS = "brightness"  # Dark lines on a light background
    EDGE = "edge"              # Local RGB difference -- robust for colored lines


# ---------------------------------------------------------------------------
# Colors
# ---------------------------------------------------------------------------

_HEX_COLOR_RE = re.compile(r"^#?([0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


def normalize_hex(value: str) -> str:
    """Normalize '#RGB', 'rrggbb' or '#RRGGBB' to lowercase '#rrggbb'."""
    match = _HEX_COLOR_RE.match(str(value).strip())
    if not match:
        raise ValueError(f"Invalid color '{value}'. Use hex like '#1a1a1a'.")
    digits = match.group(1).lower()
    if len(digits) == 3:
        digits = "".join(c * 2 for c in digits)
    return f"#{digits}"


def hex_to_rgb(value: str) -> tuple[int, int, int]:
    """'#ff8000' -> (255, 128, 0)."""
    digits = normalize_hex(value)[1:]
    return int(digits[0:2], 16), int(digits[2:4], 16), int(digits[4:6], 16)


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

class Settings(BaseModel):
    """Complete configuration for one frame generation run.

    Quick start:
        Settings()                           # Edge mode, 5 frames, original colors
        Settings(detection_mode="brightness", threshold=120)
        Settings.from_preset("ink")          # Named preset
        Settings.load("my-settings.json")    # Saved settings file
    """

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )

    threshold: float = Field(
        default=350.0,
        ge=0,
        le=500,
        description=(
            "Detection sensitivity (0-500). Brightness mode marks pixels with "
            "luma below this value, so anything above 255 marks every pixel. "
            "Edge mode uses 500 - threshold as the minimum RGB difference."
        ),
    )
    jitter_amount: float = Field(
        default=3.0,
        ge=0,
        le=10,
        description="Maximum line displacement in pixels (0-10). 0 = still image.",
    )
    jitter_speed: int = Field(
        default=120,
        ge=1,
        le=10000,
        description="Milliseconds each frame stays on screen (also the GIF frame delay).",
    )
    frame_count: int = Field(
        default=5,
        ge=1,
        le=8,
        description="Number of unique jitter frames in one loop (2-8 from the UI).",
    )
    line_color: str = Field(
        default="#000000",
        description="Line color as hex. Ignored when use_original_colors is set.",
    )
    bg_color: str = Field(
        default="#ffffff",
        description="Background color as hex.",
    )
    scale: float = Field(
        default=1.0,
        gt=0,
        le=4.0,
        description="Output scale applied after the 800px width cap.",
    )
    use_original_colors: bool = Field(
        default=True,
        description="Draw line pixels in their source color instead of line_color.",
    )
    detection_mode: DetectionMode = Field(
        default=DetectionMode.EDGE,
        description="'edge' for colored line art, 'brightness' for dark ink on paper.",
    )

    @field_validator("line_color", "bg_color", mode="before")
    @classmethod
    def _normalize_color(cls, value):
        return normalize_hex(value)

    @property
    def line_rgb(self) -> tuple[int, int, int]:
        return hex_to_rgb(self.line_color)

    @property
    def bg_rgb(self) -> tuple[int, int, int]:
        return hex_to_rgb(self.bg_color)

    def with_overrides(self, **overrides) -> "Settings":
        """Return a validated copy with the given fields replaced.

        None values are ignored so argparse namespaces can be passed through.
        """
        data = self.model_dump()
        data.update({k: v for k, v in overrides.items() if v is not None})
        return Settings(**data)

    @classmethod
    def from_preset(cls, name: str) -> "Settings":
        """Create Settings from a named built-in preset.

        Raises:
            KeyError: If preset name is not found.
        """
        if name not in SETTINGS_PRESETS:
            available = ", ".join(sorted(SETTINGS_PRESETS.keys()))
            raise KeyError(f"Unknown preset '{name}'. Available: {available}")
        return cls(**SETTINGS_PRESETS[name])

    @classmethod
    def load(cls, path) -> "Settings":
        """Load settings from a JSON file (snake_case or camelCase keys)."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Settings file not found: {path}")
        return cls.model_validate(json.loads(path.read_text()))

    def save(self, path) -> Path:
        """Write settings as camelCase JSON."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.model_dump_json(indent=2, by_alias=True))
        return path


# ---------------------------------------------------------------------------
# Built-in Presets
# ---------------------------------------------------------------------------

SETTINGS_PRESETS: dict[str, dict] = {
    # Matches the defaults of the browser tool
    "default": {},

    # -- Dark lines on paper --
    "sketch": {
        "detection_mode": "brightness",
        "threshold": 140,
        "jitter_amount": 2,
        "use_original_colors": False,
    },
    "ink": {
        "detection_mode": "brightness",
        "threshold": 100,
        "jitter_amount": 1.5,
        "jitter_speed": 150,
        "use_original_colors": False,
        "line_color": "#111111",
    },

    # -- Colored line art --
    "marker": {
        "detection_mode": "edge",
        "threshold": 380,
        "jitter_amount": 4,
        "jitter_speed": 100,
        "frame_count": 4,
    },
    "chalk": {
        "detection_mode": "edge",
        "threshold": 420,
        "jitter_amount": 3,
        "use_original_colors": False,
        "line_color": "#f5f5f0",
        "bg_color": "#1e2a22",
    },
}

DEFAULT_SETTINGS = Settings()


def list_presets() -> list[dict[str, str]]:
    """List all settings presets with their detection mode.

    Returns:
        List of dicts: [{"name": "ink", "detection_mode": "brightness"}, ...]
    """
    result = []
    for name in sorted(SETTINGS_PRESETS):
        settings = Settings.from_preset(name)
        result.append({
            "name": name,
            "detection_mode": settings.detection_mode.value,
        })
    return result
