import pytest

import gridcraft.cli.viewer as viewer
from gridcraft.cli.play import main
from gridcraft.cli.pygame_viewer import DEFAULT_SAVE_PATH


def test_play_launcher_defaults_to_pygame_viewer(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = {}

    def fake_run(save_path, **kwargs):
        captured["save_path"] = save_path
        captured.update(kwargs)
        return 0

    monkeypatch.delenv("GRIDCRAFT_SAVE_PATH", raising=False)
    monkeypatch.delenv("GRIDCRAFT_HEADLESS", raising=False)
    monkeypatch.setattr("gridcraft.cli.play.run_pygame_viewer", fake_run)

    result = main([])

    assert result == 0
    assert captured["save_path"] == DEFAULT_SAVE_PATH
    assert captured["headless"] is False
    assert captured["track_path"] is None
    assert captured["memoryless"] is False


def test_play_launcher_honours_headless_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = {}

    def fake_run(save_path, **kwargs):
        captured.update(kwargs)
        return 0

    monkeypatch.setenv("GRIDCRAFT_HEADLESS", "yes")
    monkeypatch.setattr("gridcraft.cli.play.run_pygame_viewer", fake_run)

    assert main(["--win-threshold", "32"]) == 0
    assert captured["headless"] is True
    assert captured["win_threshold"] == 32


def test_play_launcher_forwards_rules_and_track_to_pygame_viewer(monkeypatch: pytest.MonkeyPatch) -> None:
    captured = {}

    def fake_run(save_path, **kwargs):
        captured.update(kwargs)
        return 0

    monkeypatch.delenv("GRIDCRAFT_HEADLESS", raising=False)
    monkeypatch.setattr("gridcraft.cli.play.run_pygame_viewer", fake_run)

    assert main(["--memoryless", "--track", "tracks/walk.json", "--win-threshold", "128"]) == 0
    assert captured["memoryless"] is True
    assert captured["track_path"] == "tracks/walk.json"
    assert captured["win_threshold"] == 128


def test_play_launcher_text_mode_forwards_rules_and_track(monkeypatch: pytest.MonkeyPatch) -> None:
    calls = []

    def fake_demo(save_path, **kwargs):
        calls.append((save_path, kwargs))

    monkeypatch.setattr("gridcraft.cli.play.run_demo", fake_demo)

    result = main(
        ["--text", "--save-path", "saves/text.json", "--win-threshold", "64", "--memoryless", "--track", "t.json"]
    )

    assert result == 0
    assert calls == [
        ("saves/text.json", {"win_threshold": 64, "memoryless": True, "track_path": "t.json"}),
    ]


def test_text_demo_builds_session_from_forwarded_options(
    monkeypatch: pytest.MonkeyPatch,
    capsys: pytest.CaptureFixture[str],
) -> None:
    sessions = []

    original = viewer.build_viewer_session

    def recording_session(save_path, **kwargs):
        session = original(save_path, **kwargs)
        sessions.append(session)
        return session

    monkeypatch.setattr(viewer, "build_viewer_session", recording_session)
    monkeypatch.setattr("builtins.input", lambda prompt="": "quit")

    viewer.run_demo(None, win_threshold=64, memoryless=True)

    assert sessions[0].game.rules.win_threshold == 64
    assert sessions[0].game.rules.overlay_policy == "memoryless"
    assert "gridcraft text mode." in capsys.readouterr().out
