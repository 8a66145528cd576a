#!/usr/bin/env python3
"""
Wiggle -- Hand-Drawn Jitter Animator
CLI entry point. Also importable as a library.

Usage:
    python wiggle.py render drawing.png -o drawing.gif
    python wiggle.py render drawing.png --preset ink --frames 6 --speed 90
    python wiggle.py render scan.jpg --mode brightness --threshold 120 --fixed-color
    python wiggle.py frames drawing.png -o frames/
    python wiggle.py play drawing.png --jitter 4
    python wiggle.py presets
    python wiggle.py modes
    python wiggle.py serve --port 7860
"""

import sys
import os
import argparse
from pathlib import Path

import numpy as np

# Add project root to path so imports work
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from core.export import EXPORT_FILENAME, EncoderService
from core.image_io import save_frames
from core.pipeline import WigglePipeline
from core.settings import Settings, SETTINGS_PRESETS, list_presets
from effects import list_detection_modes, DETECTION_MODES

__version__ = "0.1.0"


def _build_settings(args) -> Settings:
    """Preset or settings file first, then individual flags on top."""
    if getattr(args, "settings", None):
        base = Settings.load(args.settings)
    else:
        base = Settings.from_preset(args.preset or "default")
    return base.with_overrides(
        threshold=args.threshold,
        jitter_amount=args.jitter,
        jitter_speed=args.speed,
        frame_count=args.frames,
        line_color=args.line_color,
        bg_color=args.bg_color,
        scale=args.scale,
        use_original_colors=args.use_original_colors,
        detection_mode=args.mode,
    )


def _generate(args, encoder_service=None):
    """Run one generation for args.image. Returns (pipeline, frames, settings)."""
    settings = _build_settings(args)
    rng = np.random.RandomState(args.seed) if args.seed is not None else None
    pipeline = WigglePipeline(encoder_service=encoder_service, rng=rng)
    pipeline.set_source(args.image)

    print(f"Generating {settings.frame_count} frames "
          f"({settings.detection_mode.value}, threshold={settings.threshold:g}, "
          f"jitter={settings.jitter_amount:g}px)...")
    frames = pipeline.generate(settings)
    if frames is None:
        pipeline.shutdown()
        raise RuntimeError(pipeline.last_error or "Generation failed")
    print(f"Frames: {len(frames)} at {frames.width}x{frames.height}")
    return pipeline, frames, settings


def cmd_render(args):
    """Generate frames and export a looping GIF."""
    pipeline, frames, settings = _generate(args, encoder_service=EncoderService.ready())
    try:
        artifact = pipeline.export()
    finally:
        pipeline.shutdown()
    output = artifact.save(args.output or EXPORT_FILENAME)
    print(f"Output: {output}")
    print(f"Size: {artifact.size_bytes / 1024:.1f}KB, {settings.jitter_speed}ms per frame")


def cmd_frames(args):
    """Generate frames and write them as numbered PNGs."""
    pipeline, frames, _ = _generate(args)
    pipeline.shutdown()
    paths = save_frames(frames, args.output)
    print(f"Wrote {len(paths)} frames to {Path(args.output)}")


def cmd_play(args):
    """Generate frames and loop them in a preview window."""
    from core.playback import play
    pipeline, frames, settings = _generate(args)
    pipeline.shutdown()
    print("Playing. Close the window or press Esc to stop.")
    play(frames, settings.jitter_speed)


def cmd_presets(args):
    """List built-in settings presets."""
    presets = list_presets()
    print(f"\n  Settings Presets ({len(presets)} available)")
    print(f"  {'-' * 50}")
    for p in presets:
        overrides = SETTINGS_PRESETS[p["name"]]
        detail = ", ".join(f"{k}={v}" for k, v in overrides.items()) or "browser defaults"
        print(f"    {p['name']:10s}  {detail}")
    print(f"\n  Usage: --preset <name>\n")


def cmd_modes(args):
    """List line detection modes."""
    print(f"\n  Detection Modes ({len(DETECTION_MODES)})")
    print(f"  {'-' * 50}")
    for m in list_detection_modes():
        print(f"    {m['name']:12s} {m['description']}")
    print()


def cmd_serve(args):
    """Launch the HTTP API."""
    from server import start
    start(host=args.host, port=args.port)


def _add_settings_flags(p):
    p.add_argument("image", help="Source image (png, jpg, gif, bmp, webp, tiff)")
    p.add_argument("--preset", choices=sorted(SETTINGS_PRESETS), help="Start from a named preset")
    p.add_argument("--settings", help="Start from a settings JSON file")
    p.add_argument("--threshold", type=float, help="Detection sensitivity (0-500)")
    p.add_argument("--jitter", type=float, help="Max line displacement in pixels (0-10)")
    p.add_argument("--speed", type=int, help="Milliseconds per frame (1-10000)")
    p.add_argument("--frames", type=int, choices=range(2, 9), metavar="{2-8}",
                   help="Frames per loop")
    p.add_argument("--line-color", help="Line color as hex, e.g. '#1a1a1a'")
    p.add_argument("--bg-color", help="Background color as hex")
    p.add_argument("--scale", type=float, help="Output scale after the 800px cap")
    colors = p.add_mutually_exclusive_group()
    colors.add_argument("--original-colors", dest="use_original_colors", action="store_true",
                        help="Draw lines in their source colors")
    colors.add_argument("--fixed-color", dest="use_original_colors", action="store_false",
                        help="Draw lines in --line-color")
    p.set_defaults(use_original_colors=None)
    p.add_argument("--mode", choices=sorted(DETECTION_MODES), help="Line detection mode")
    p.add_argument("--seed", type=int, help="Random seed for reproducible frames")


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="wiggle",
        description="Wiggle -- turn a still drawing into a hand-wiggled GIF loop",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command")

    # render
    p = sub.add_parser("render", help="Generate frames and export a GIF")
    _add_settings_flags(p)
    p.add_argument("-o", "--output", help=f"Output GIF path (default: {EXPORT_FILENAME})")

    # frames
    p = sub.add_parser("frames", help="Write generated frames as PNGs")
    _add_settings_flags(p)
    p.add_argument("-o", "--output", required=True, help="Output directory")

    # play
    p = sub.add_parser("play", help="Preview the loop in a window (pygame)")
    _add_settings_flags(p)

    # presets
    sub.add_parser("presets", help="List settings presets")

    # modes
    sub.add_parser("modes", help="List line detection modes")

    # serve
    p = sub.add_parser("serve", help="Launch the HTTP API")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=7860)

    args = parser.parse_args(argv)

    commands = {
        "render": cmd_render,
        "frames": cmd_frames,
        "play": cmd_play,
        "presets": cmd_presets,
        "modes": cmd_modes,
        "serve": cmd_serve,
    }

    if args.command in commands:
        try:
            commands[args.command](args)
        except Exception as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
