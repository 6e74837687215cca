from __future__ import annotations

import argparse
import importlib.metadata
import os
import platform
import sys
from dataclasses import dataclass
from typing import Any

from gridcraft.content.io import GamePersistence, JsonFileStore, MemoryStore, load_or_new_game
from gridcraft.sim.core import WIN_THRESHOLD, Game, GameRules
from gridcraft.sim.hash import game_hash
from gridcraft.sim.movement import MovementController, ScriptedPositionFeed, load_position_track_json
from gridcraft.sim.world import OVERLAY_POLICY_MEMORYLESS, OVERLAY_POLICY_PERSISTENT, CellCoord, CellWindow, VisibleCell

CELL_SIZE = 36
WINDOW_SIZE = (940, 760)
VIEWPORT_ORIGIN = (20, 120)
FEED_INTERVAL_SECONDS = 1.0
DEFAULT_SAVE_PATH = "saves/gridcraft_store.json"

BACKGROUND_COLOR = (17, 18, 25)
TOKEN_COLOR = (236, 150, 52)
EMPTY_COLOR = (42, 44, 54)
INTERACTIVE_BORDER_COLOR = (31, 120, 180)
INACTIVE_BORDER_COLOR = (88, 88, 96)
PLAYER_COLOR = (255, 243, 130)
VICTORY_COLOR = (120, 230, 140)

pygame: Any | None = None


@dataclass
class ViewerSession:
    game: Game
    movement: MovementController
    feed: ScriptedPositionFeed


def cell_pixel_origin(coord: CellCoord, window: CellWindow) -> tuple[int, int]:
    x = VIEWPORT_ORIGIN[0] + (coord.j - window.j_min) * CELL_SIZE
    y = VIEWPORT_ORIGIN[1] + (window.i_max - coord.i) * CELL_SIZE
    return (x, y)


def cell_at_pixel(pixel: tuple[int, int], window: CellWindow) -> CellCoord | None:
    dx = pixel[0] - VIEWPORT_ORIGIN[0]
    dy = pixel[1] - VIEWPORT_ORIGIN[1]
    if dx < 0 or dy < 0:
        return None
    coord = CellCoord(i=window.i_max - dy // CELL_SIZE, j=window.j_min + dx // CELL_SIZE)
    if not window.contains(coord):
        return None
    return coord


def handle_cell_click(game: Game, pixel: tuple[int, int], *, inspect: bool = False) -> str | None:
    coord = cell_at_pixel(pixel, game.visible_window())
    if coord is None:
        return None
    outcome = game.inspect_cell(coord) if inspect else game.click_cell(coord)
    return outcome.message.replace("\n", " | ")


def cell_colors(cell: VisibleCell) -> tuple[tuple[int, int, int], tuple[int, int, int]]:
    fill = TOKEN_COLOR if cell.state.has_token else EMPTY_COLOR
    border = INTERACTIVE_BORDER_COLOR if cell.interactive else INACTIVE_BORDER_COLOR
    return (fill, border)


def _draw_grid(screen: pygame.Surface, game: Game, window: CellWindow, font: pygame.font.Font) -> None:
    player_cell = game.player_cell()
    for cell in game.cells_in_window(window):
        x, y = cell_pixel_origin(cell.coord, window)
        rect = pygame.Rect(x, y, CELL_SIZE, CELL_SIZE)
        fill, border = cell_colors(cell)
        pygame.draw.rect(screen, fill, rect)
        pygame.draw.rect(screen, border, rect, 2 if cell.interactive else 1)
        if cell.state.has_token:
            label = font.render(str(cell.state.value), True, (20, 20, 20))
            screen.blit(label, label.get_rect(center=rect.center))
        if cell.coord == player_cell:
            pygame.draw.circle(screen, PLAYER_COLOR, rect.center, CELL_SIZE // 4)
            pygame.draw.circle(screen, (15, 15, 15), rect.center, CELL_SIZE // 4, 1)


def _draw_hud(screen: pygame.Surface, session: ViewerSession, font: pygame.font.Font, status_message: str | None) -> None:
    game = session.game
    player_cell = game.player_cell()
    lines = [
        f"cell={player_cell.to_key()} | mode={game.state.movement_mode} | {game.status_text().splitlines()[0]}",
        "WASD/arrows move | R reset | G toggle mode | N new game | LMB act | RMB inspect | ESC quit",
    ]
    if status_message:
        lines.append(f"status: {status_message}")
    if session.movement.notice:
        lines.append(session.movement.notice)
    y = 12
    for index, line in enumerate(lines):
        color = VICTORY_COLOR if game.state.has_won and index == 0 else (240, 240, 240)
        surface = font.render(line, True, color)
        screen.blit(surface, (12, y))
        y += 24


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gridcraft-viewer",
        description="Run the gridcraft pygame viewer.",
    )
    parser.add_argument(
        "--save-path",
        default=os.environ.get("GRIDCRAFT_SAVE_PATH", DEFAULT_SAVE_PATH),
        help="Local store JSON file used for autosave (env: GRIDCRAFT_SAVE_PATH).",
    )
    parser.add_argument(
        "--headless",
        action="store_true",
        help="Force SDL dummy video driver for CI/testing and exit without opening a real window.",
    )
    parser.add_argument(
        "--win-threshold",
        type=int,
        default=WIN_THRESHOLD,
        help="Token value that wins the game.",
    )
    parser.add_argument(
        "--memoryless",
        action="store_true",
        help="Forget cell changes once they leave the visible window instead of keeping them.",
    )
    parser.add_argument(
        "--track",
        help="Optional JSON list of {latitude, longitude} samples replayed as the continuous position feed.",
    )
    parser.add_argument(
        "--no-save",
        action="store_true",
        help="Keep state in memory only.",
    )
    return parser


def _env_flag_enabled(var_name: str) -> bool:
    return os.environ.get(var_name, "").strip().lower() in {"1", "true", "yes", "on"}


def _print_startup_banner() -> None:
    try:
        pygame_version = importlib.metadata.version("pygame")
    except importlib.metadata.PackageNotFoundError:
        pygame_version = "not-installed"
    print(
        "[gridcraft.viewer] startup "
        f"python={platform.python_version()} "
        f"pygame={pygame_version} "
        f"platform={platform.platform()}"
    )


def _ensure_pygame_imported() -> Any:
    global pygame
    if pygame is None:
        import pygame as pygame_module

        pygame = pygame_module
    return pygame


def build_viewer_session(
    save_path: str | None,
    *,
    win_threshold: int = WIN_THRESHOLD,
    memoryless: bool = False,
    track_path: str | None = None,
) -> ViewerSession:
    rules = GameRules(
        win_threshold=win_threshold,
        overlay_policy=OVERLAY_POLICY_MEMORYLESS if memoryless else OVERLAY_POLICY_PERSISTENT,
    )
    store = JsonFileStore(save_path) if save_path else MemoryStore()
    game = load_or_new_game(GamePersistence(store), rules)
    if track_path:
        feed = ScriptedPositionFeed(load_position_track_json(track_path))
    else:
        feed = ScriptedPositionFeed(available=False)
    movement = MovementController(feed)
    game.register_module(movement)
    movement.start()
    print(
        "[gridcraft.viewer] session "
        f"save_path={save_path or '<memory>'} "
        f"mode={game.state.movement_mode} "
        f"cell={game.player_cell().to_key()} "
        f"overlay={len(game.overlay)} "
        f"game_hash={game_hash(game)}"
    )
    return ViewerSession(game=game, movement=movement, feed=feed)


def run_pygame_viewer(
    save_path: str | None = DEFAULT_SAVE_PATH,
    *,
    headless: bool = False,
    win_threshold: int = WIN_THRESHOLD,
    memoryless: bool = False,
    track_path: str | None = None,
) -> int:
    if headless:
        os.environ["SDL_VIDEODRIVER"] = "dummy"
        print("[gridcraft.viewer] warning: headless mode active; no window will open.")

    _print_startup_banner()
    pygame_module = _ensure_pygame_imported()

    try:
        pygame_module.init()
    except Exception as exc:
        print(
            "[gridcraft.viewer] failed during pygame.init(): "
            f"{exc}. Hint: verify a working SDL video driver (set SDL_VIDEODRIVER=dummy for headless mode).",
            file=sys.stderr,
        )
        return 1

    try:
        session = build_viewer_session(
            save_path,
            win_threshold=win_threshold,
            memoryless=memoryless,
            track_path=track_path,
        )
    except (OSError, ValueError) as exc:
        print(f"[gridcraft.viewer] failed to initialize game: {exc}", file=sys.stderr)
        pygame_module.quit()
        return 1

    try:
        pygame_module.display.set_caption("gridcraft")
        screen = pygame_module.display.set_mode(WINDOW_SIZE)
    except Exception as exc:
        print(
            "[gridcraft.viewer] failed during pygame.display.set_mode(...): "
            f"{exc}. Hint: use --headless or GRIDCRAFT_HEADLESS=1 without a display.",
            file=sys.stderr,
        )
        session.movement.stop()
        pygame_module.quit()
        return 1

    print(f"[gridcraft.viewer] display initialized: {pygame_module.display.get_driver()}, window size={WINDOW_SIZE}")

    if headless:
        session.game.process_commands()
        session.movement.stop()
        pygame_module.quit()
        return 0

    game = session.game
    movement = session.movement
    clock = pygame_module.time.Clock()
    font = pygame_module.font.SysFont("consolas", 18)
    cell_font = pygame_module.font.SysFont("consolas", 14)
    step_keys = {
        pygame_module.K_w: "north",
        pygame_module.K_UP: "north",
        pygame_module.K_s: "south",
        pygame_module.K_DOWN: "south",
        pygame_module.K_d: "east",
        pygame_module.K_RIGHT: "east",
        pygame_module.K_a: "west",
        pygame_module.K_LEFT: "west",
    }

    status_message: str | None = None
    feed_accumulator = 0.0
    running = True
    while running:
        dt = clock.tick(60) / 1000.0
        for event in pygame_module.event.get():
            if event.type == pygame_module.QUIT:
                running = False
            elif event.type == pygame_module.KEYDOWN and event.key == pygame_module.K_ESCAPE:
                running = False
            elif event.type == pygame_module.KEYDOWN and event.key in step_keys:
                discrete = movement.discrete
                outcome = getattr(discrete, step_keys[event.key])() if discrete is not None else None
                status_message = outcome.message if outcome is not None else "discrete movement inactive (G to toggle)"
            elif event.type == pygame_module.KEYDOWN and event.key == pygame_module.K_r:
                outcome = movement.discrete.reset() if movement.discrete is not None else None
                status_message = outcome.message if outcome is not None else "discrete movement inactive (G to toggle)"
            elif event.type == pygame_module.KEYDOWN and event.key == pygame_module.K_g:
                status_message = movement.toggle_mode().message
            elif event.type == pygame_module.KEYDOWN and event.key == pygame_module.K_n:
                status_message = game.new_game().message
            elif event.type == pygame_module.MOUSEBUTTONDOWN and event.button in (1, 3):
                status_message = handle_cell_click(game, event.pos, inspect=event.button == 3) or status_message

        feed_accumulator += dt
        if feed_accumulator >= FEED_INTERVAL_SECONDS:
            feed_accumulator = 0.0
            if movement.continuous is not None and movement.continuous.active:
                session.feed.emit_next()
        for outcome in game.process_commands():
            status_message = outcome.message
        if game.last_save_error:
            status_message = f"save failed: {game.last_save_error}"

        screen.fill(BACKGROUND_COLOR)
        _draw_grid(screen, game, game.visible_window(), cell_font)
        _draw_hud(screen, session, font, status_message)
        pygame_module.display.flip()

    movement.stop()
    pygame_module.quit()
    return 0


def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    headless = args.headless or _env_flag_enabled("GRIDCRAFT_HEADLESS")
    raise SystemExit(
        run_pygame_viewer(
            None if args.no_save else args.save_path,
            headless=headless,
            win_threshold=args.win_threshold,
            memoryless=args.memoryless,
            track_path=args.track,
        )
    )


if __name__ == "__main__":
    main()
