from __future__ import annotations

import argparse
import json
from typing import Sequence

from gridcraft.content.io import DEFAULT_SAVE_KEY, GamePersistence, JsonFileStore, restore_snapshot
from gridcraft.sim.core import Game
from gridcraft.sim.hash import game_hash
from gridcraft.sim.location import point_to_cell

CELL_PRINT_LIMIT = 20


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gridcraft-save",
        description="Inspect or clear the gridcraft save stored in a local store file.",
    )
    parser.add_argument("store_path", help="Path to the local store JSON file")
    parser.add_argument("--key", default=DEFAULT_SAVE_KEY, help="Store key holding the save snapshot")
    parser.add_argument("--print-cells", action="store_true", help="Print recorded cell overrides")
    parser.add_argument("--clear", action="store_true", help="Delete the save so the next start is a new game")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    persistence = GamePersistence(JsonFileStore(args.store_path), key=args.key)

    if args.clear:
        persistence.clear()
        print(f"cleared key={args.key}")
        return 0

    blob = persistence.store.get(args.key)
    if blob is None:
        print(f"no save under key={args.key}")
        return 1
    try:
        state, overlay = restore_snapshot(json.loads(blob))
    except (ValueError, RecursionError) as exc:
        print(f"integrity=FAILED {exc}")
        return 1

    game = Game(state=state, overlay=overlay)
    print(
        "header "
        f"cell={point_to_cell(state.player).to_key()} "
        f"held_token={state.held_token} "
        f"has_won={state.has_won} "
        f"movement_mode={state.movement_mode} "
        f"overlay_cells={len(overlay)}"
    )
    print("integrity=OK")
    print(f"game_hash={game_hash(game)}")
    if args.print_cells:
        rows = overlay.items()
        if not rows:
            print("cells none")
        for coord, cell in rows[:CELL_PRINT_LIMIT]:
            print(f"cell {coord.to_key()} has_token={cell.has_token} value={cell.value}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
