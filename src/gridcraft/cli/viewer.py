from __future__ import annotations

import argparse
from typing import Sequence

from gridcraft.cli.pygame_viewer import build_viewer_session
from gridcraft.sim.core import WIN_THRESHOLD, Game
from gridcraft.sim.movement import MovementController
from gridcraft.sim.world import CellCoord, CellWindow

DEFAULT_SAVE_PATH = "saves/gridcraft_store.json"
TEXT_VIEW_HALF_HEIGHT = 4
TEXT_VIEW_HALF_WIDTH = 6
HELP_TEXT = "Commands: n | s | e | w | reset | click <i> <j> | look <i> <j> | mode | new | show | quit"


class AsciiViewer:
    """Read-only projection of the visible grid for terminal display."""

    def render(self, game: Game, window: CellWindow | None = None) -> str:
        player_cell = game.player_cell()
        target = window if window is not None else CellWindow(
            i_min=player_cell.i - TEXT_VIEW_HALF_HEIGHT,
            i_max=player_cell.i + TEXT_VIEW_HALF_HEIGHT,
            j_min=player_cell.j - TEXT_VIEW_HALF_WIDTH,
            j_max=player_cell.j + TEXT_VIEW_HALF_WIDTH,
        )
        by_row: dict[int, list[str]] = {}
        for cell in game.cells_in_window(target):
            if cell.coord == player_cell:
                glyph = "@"
            elif cell.state.has_token:
                glyph = str(cell.state.value)
            else:
                glyph = "."
            text = f"[{glyph:>2}]" if cell.interactive else f" {glyph:>2} "
            by_row.setdefault(cell.coord.i, []).append(text)

        lines = [f"cell={player_cell.to_key()} mode={game.state.movement_mode}"]
        for i in sorted(by_row, reverse=True):
            lines.append(f"i={i:>4}: " + "".join(by_row[i]))
        lines.append(game.status_text())
        return "\n".join(lines)


class GameController:
    """Text command adapter; issues actions to the game but does not own state."""

    def __init__(self, game: Game, movement: MovementController) -> None:
        self.game = game
        self.movement = movement

    def handle(self, raw: str) -> str:
        parts = raw.strip().split()
        if not parts:
            return HELP_TEXT
        verb = parts[0].lower()
        steps = {"n": "north", "s": "south", "e": "east", "w": "west"}
        if verb in steps or verb in steps.values():
            discrete = self.movement.discrete
            direction = steps.get(verb, verb)
            outcome = getattr(discrete, direction)() if discrete is not None else None
            if outcome is None:
                return "discrete movement is inactive (toggle with 'mode')"
            return outcome.message
        if verb == "reset":
            outcome = self.movement.discrete.reset() if self.movement.discrete is not None else None
            return outcome.message if outcome is not None else "discrete movement is inactive (toggle with 'mode')"
        if verb in {"click", "look"} and len(parts) == 3:
            try:
                coord = CellCoord(int(parts[1]), int(parts[2]))
            except ValueError:
                return "cell coordinates must be integers"
            outcome = self.game.click_cell(coord) if verb == "click" else self.game.inspect_cell(coord)
            return outcome.message
        if verb == "mode":
            return self.movement.toggle_mode().message
        if verb == "new":
            return self.game.new_game().message
        return f"unknown command: {raw.strip()}"

    def pump(self) -> list[str]:
        return [outcome.message for outcome in self.game.process_commands()]


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="gridcraft-text", description="Play gridcraft in the terminal.")
    parser.add_argument("--save-path", default=DEFAULT_SAVE_PATH, help="Local store JSON file used for autosave.")
    parser.add_argument("--win-threshold", type=int, default=WIN_THRESHOLD, help="Token value that wins the game.")
    parser.add_argument("--memoryless", action="store_true", help="Forget cell changes once they leave the view.")
    parser.add_argument("--track", help="Recorded position track replayed as the continuous feed.")
    return parser


def run_demo(
    save_path: str | None = DEFAULT_SAVE_PATH,
    *,
    win_threshold: int = WIN_THRESHOLD,
    memoryless: bool = False,
    track_path: str | None = None,
) -> None:
    session = build_viewer_session(
        save_path,
        win_threshold=win_threshold,
        memoryless=memoryless,
        track_path=track_path,
    )
    game = session.game
    movement = session.movement
    print(f"Movement mode: {game.state.movement_mode}")
    if movement.notice:
        print(movement.notice)

    view = AsciiViewer()
    controller = GameController(game, movement)

    print("gridcraft text mode. " + HELP_TEXT)
    print(view.render(game))

    while True:
        raw = input("> ").strip()
        if raw in {"quit", "exit"}:
            break
        if raw == "show":
            print(view.render(game))
            continue
        print(controller.handle(raw))
        if movement.continuous is not None and movement.continuous.active:
            session.feed.emit_next()
        for message in controller.pump():
            print(message)
        print(view.render(game))
    movement.stop()


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    run_demo(
        args.save_path,
        win_threshold=args.win_threshold,
        memoryless=args.memoryless,
        track_path=args.track,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
