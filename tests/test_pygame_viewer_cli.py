import json
from pathlib import Path

import pytest

from gridcraft.cli.pygame_viewer import (
    CELL_SIZE,
    VIEWPORT_ORIGIN,
    _build_parser,
    build_viewer_session,
    cell_at_pixel,
    cell_colors,
    cell_pixel_origin,
    handle_cell_click,
    EMPTY_COLOR,
    INACTIVE_BORDER_COLOR,
    INTERACTIVE_BORDER_COLOR,
    TOKEN_COLOR,
)
from gridcraft.sim.core import MOVEMENT_MODE_CONTINUOUS, MOVEMENT_MODE_DISCRETE, WIN_THRESHOLD, Game
from gridcraft.sim.movement import PositionSample
from gridcraft.sim.world import OVERLAY_POLICY_MEMORYLESS, CellCoord, CellOracle, CellState, CellWindow, VisibleCell


def _fixture_oracle(tokens: dict[tuple[int, int], int]) -> CellOracle:
    def fixture_luck(key: str) -> float:
        i, j, salt = key.split(",")
        value = tokens.get((int(i), int(j)))
        if value is None:
            return 0.99
        return 0.0 if salt == "token" else value / 100 + 0.001

    return CellOracle(luck=fixture_luck)


def test_viewer_parser_defaults() -> None:
    args = _build_parser().parse_args([])

    assert args.headless is False
    assert args.win_threshold == WIN_THRESHOLD
    assert args.memoryless is False
    assert args.track is None
    assert args.no_save is False


def test_viewer_parser_reads_save_path_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GRIDCRAFT_SAVE_PATH", "saves/env.json")

    args = _build_parser().parse_args([])

    assert args.save_path == "saves/env.json"


def test_pixel_mapping_round_trips_cell_origins() -> None:
    window = CellWindow(i_min=-2, i_max=2, j_min=-3, j_max=3)

    assert cell_pixel_origin(CellCoord(2, -3), window) == VIEWPORT_ORIGIN
    for coord in (CellCoord(0, 0), CellCoord(-2, 3), CellCoord(1, -1)):
        x, y = cell_pixel_origin(coord, window)
        assert cell_at_pixel((x + CELL_SIZE // 2, y + CELL_SIZE // 2), window) == coord


def test_pixel_outside_viewport_maps_to_no_cell() -> None:
    window = CellWindow(i_min=0, i_max=1, j_min=0, j_max=1)

    assert cell_at_pixel((0, 0), window) is None
    assert cell_at_pixel((VIEWPORT_ORIGIN[0] + 5 * CELL_SIZE, VIEWPORT_ORIGIN[1]), window) is None


def test_cell_click_after_a_step_maps_through_the_current_window() -> None:
    game = Game(oracle=_fixture_oracle({(2, 0): 9}))
    game.step("north")
    x, y = cell_pixel_origin(CellCoord(2, 0), game.visible_window())

    message = handle_cell_click(game, (x + CELL_SIZE // 2, y + CELL_SIZE // 2))

    assert message is not None
    assert "Picked up token: 9" in message
    assert game.state.held_token == 9


def test_cell_click_outside_viewport_is_ignored() -> None:
    game = Game(oracle=_fixture_oracle({}))

    assert handle_cell_click(game, (0, 0)) is None
    assert handle_cell_click(game, (0, 0), inspect=True) is None

def test_cell_colors_distinguish_tokens_and_reach() -> None:
    token = VisibleCell(coord=CellCoord(0, 0), state=CellState(True, 3), interactive=True)
    empty = VisibleCell(coord=CellCoord(9, 9), state=CellState(False, None), interactive=False)

    assert cell_colors(token) == (TOKEN_COLOR, INTERACTIVE_BORDER_COLOR)
    assert cell_colors(empty) == (EMPTY_COLOR, INACTIVE_BORDER_COLOR)


def test_session_without_track_falls_back_to_discrete(capsys: pytest.CaptureFixture[str]) -> None:
    session = build_viewer_session(None, win_threshold=64, memoryless=True)

    output = capsys.readouterr().out
    assert "[gridcraft.viewer] session save_path=<memory>" in output
    assert session.game.rules.win_threshold == 64
    assert session.game.rules.overlay_policy == OVERLAY_POLICY_MEMORYLESS
    assert session.game.state.movement_mode == MOVEMENT_MODE_DISCRETE
    assert session.movement.active_source is session.movement.discrete


def test_session_restores_continuous_mode_with_track(tmp_path: Path) -> None:
    track_path = tmp_path / "track.json"
    track_path.write_text(json.dumps([PositionSample(37.0, -122.0).to_dict()]), encoding="utf-8")
    save_path = tmp_path / "store.json"

    first = build_viewer_session(str(save_path), track_path=str(track_path))
    first.movement.switch_mode(MOVEMENT_MODE_CONTINUOUS)
    first.movement.stop()

    second = build_viewer_session(str(save_path), track_path=str(track_path))

    assert second.game.state.movement_mode == MOVEMENT_MODE_CONTINUOUS
    assert second.movement.active_source is second.movement.continuous
    assert second.feed.emit_next() is True
    assert len(second.game.pending_commands()) == 1


def test_main_help_prints_usage_without_starting_viewer(capsys: pytest.CaptureFixture[str]) -> None:
    from gridcraft.cli.pygame_viewer import main

    with pytest.raises(SystemExit) as result:
        main(["--help"])

    captured = capsys.readouterr()
    assert result.value.code == 0
    assert "usage:" in captured.out
    assert "--headless" in captured.out


def test_main_headless_mode_exits_cleanly_and_warns(capsys: pytest.CaptureFixture[str]) -> None:
    from gridcraft.cli.pygame_viewer import main

    with pytest.raises(SystemExit) as result:
        main(["--headless", "--no-save"])

    captured = capsys.readouterr()
    assert result.value.code == 0
    assert "headless mode active" in captured.out
