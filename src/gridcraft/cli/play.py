from __future__ import annotations

import argparse
import os
from typing import Sequence

from gridcraft.cli.pygame_viewer import DEFAULT_SAVE_PATH, _env_flag_enabled, run_pygame_viewer
from gridcraft.cli.viewer import run_demo
from gridcraft.sim.core import WIN_THRESHOLD


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gridcraft", description="Canonical gridcraft launcher.")
    parser.add_argument(
        "--save-path",
        default=os.environ.get("GRIDCRAFT_SAVE_PATH", DEFAULT_SAVE_PATH),
        help="Local store JSON file loaded at startup and autosaved after every action.",
    )
    parser.add_argument("--text", action="store_true", help="Play in the terminal instead of the pygame window.")
    parser.add_argument("--headless", action="store_true", help="Run startup path in headless mode.")
    parser.add_argument("--win-threshold", type=int, default=WIN_THRESHOLD, help="Token value that wins the game.")
    parser.add_argument(
        "--memoryless",
        action="store_true",
        help="Forget cell changes once they leave the visible window instead of keeping them.",
    )
    parser.add_argument("--track", help="Recorded position track replayed as the continuous feed.")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    if args.text:
        run_demo(
            args.save_path,
            win_threshold=args.win_threshold,
            memoryless=args.memoryless,
            track_path=args.track,
        )
        return 0
    return run_pygame_viewer(
        args.save_path,
        headless=args.headless or _env_flag_enabled("GRIDCRAFT_HEADLESS"),
        win_threshold=args.win_threshold,
        memoryless=args.memoryless,
        track_path=args.track,
    )


if __name__ == "__main__":
    raise SystemExit(main())
