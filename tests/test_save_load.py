import json
from pathlib import Path

from gridcraft.content.io import (
    DEFAULT_SAVE_KEY,
    GamePersistence,
    JsonFileStore,
    MemoryStore,
    decode_snapshot,
    encode_snapshot,
    load_or_new_game,
    snapshot_payload,
)
from gridcraft.sim.core import MOVEMENT_MODE_CONTINUOUS, Game, GameState
from gridcraft.sim.hash import game_hash, snapshot_hash
from gridcraft.sim.location import ORIGIN
from gridcraft.sim.world import CellCoord, CellOracle, CellOverlay, CellState, EMPTY_CELL


def _fixture_oracle(tokens: dict[tuple[int, int], int]) -> CellOracle:
    def fixture_luck(key: str) -> float:
        i, j, salt = key.split(",")
        value = tokens.get((int(i), int(j)))
        if value is None:
            return 0.99
        return 0.0 if salt == "token" else value / 100 + 0.001

    return CellOracle(luck=fixture_luck)


def _sample_state() -> tuple[GameState, CellOverlay]:
    state = GameState(player=ORIGIN.offset(3e-4, -1e-4), held_token=12, movement_mode=MOVEMENT_MODE_CONTINUOUS)
    overlay = CellOverlay({CellCoord(3, -1): EMPTY_CELL, CellCoord(2, 0): CellState(True, 24)})
    return state, overlay


def test_snapshot_round_trip_preserves_state_and_overlay() -> None:
    state, overlay = _sample_state()

    loaded = decode_snapshot(encode_snapshot(state, overlay))

    assert loaded is not None
    loaded_state, loaded_overlay = loaded
    assert loaded_state == state
    assert loaded_overlay == overlay


def test_snapshot_encoding_is_canonical() -> None:
    state, overlay = _sample_state()
    reordered = CellOverlay({CellCoord(2, 0): CellState(True, 24), CellCoord(3, -1): EMPTY_CELL})

    assert encode_snapshot(state, overlay) == encode_snapshot(state, reordered)


def test_decode_snapshot_returns_none_for_missing_or_garbage() -> None:
    assert decode_snapshot(None) is None
    assert decode_snapshot("not json {") is None
    assert decode_snapshot("[]") is None
    assert decode_snapshot(json.dumps({"schema_version": 1})) is None


def test_decode_snapshot_rejects_tampered_payload() -> None:
    state, overlay = _sample_state()
    payload = json.loads(encode_snapshot(state, overlay))
    payload["held_token"] = 1024

    assert decode_snapshot(json.dumps(payload)) is None


def test_decode_snapshot_rejects_unsupported_schema_version() -> None:
    state, overlay = _sample_state()
    payload = json.loads(encode_snapshot(state, overlay))
    payload["schema_version"] = 99

    assert decode_snapshot(json.dumps(payload)) is None


def test_memory_store_persistence_round_trip() -> None:
    persistence = GamePersistence(MemoryStore())
    game = Game(oracle=_fixture_oracle({(1, 1): 9}), persistence=persistence)

    game.pickup(CellCoord(1, 1))
    loaded = persistence.load()

    assert loaded is not None
    assert loaded[0].held_token == 9
    assert loaded[1].get(CellCoord(1, 1)) == EMPTY_CELL


def test_every_successful_action_autosaves_to_file(tmp_path: Path) -> None:
    store_path = tmp_path / "store.json"
    persistence = GamePersistence(JsonFileStore(store_path))
    game = Game(oracle=_fixture_oracle({(1, 1): 9}), persistence=persistence)

    game.step("north")
    stored = json.loads(store_path.read_text(encoding="utf-8"))
    assert DEFAULT_SAVE_KEY in stored

    game.pickup(CellCoord(1, 1))
    restored = load_or_new_game(GamePersistence(JsonFileStore(store_path)))

    assert restored.state.held_token == 9
    assert restored.player_cell() == CellCoord(1, 0)
    assert restored.overlay == game.overlay
    assert game_hash(restored) == game_hash(game)


def test_rejected_actions_do_not_write_a_save(tmp_path: Path) -> None:
    store_path = tmp_path / "store.json"
    game = Game(oracle=_fixture_oracle({}), persistence=GamePersistence(JsonFileStore(store_path)))

    game.click_cell(CellCoord(9, 9))
    game.click_cell(CellCoord(0, 0))

    assert not store_path.exists()


def test_save_failure_is_reported_without_losing_state(tmp_path: Path) -> None:
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("file", encoding="utf-8")
    persistence = GamePersistence(JsonFileStore(blocker / "store.json"))
    game = Game(oracle=_fixture_oracle({(0, 1): 4}), persistence=persistence)

    outcome = game.pickup(CellCoord(0, 1))

    assert outcome.applied is True
    assert game.state.held_token == 4
    assert game.last_save_error is not None

    game.persistence = GamePersistence(MemoryStore())
    game.step("east")
    assert game.last_save_error is None


def test_corrupt_store_file_starts_a_new_game(tmp_path: Path) -> None:
    store_path = tmp_path / "store.json"
    store_path.write_text("{ definitely not json", encoding="utf-8")

    game = load_or_new_game(GamePersistence(JsonFileStore(store_path)))

    assert game.state == GameState(player=ORIGIN)
    assert len(game.overlay) == 0


def test_tampered_save_in_store_starts_a_new_game(tmp_path: Path) -> None:
    store_path = tmp_path / "store.json"
    state, overlay = _sample_state()
    payload = json.loads(encode_snapshot(state, overlay))
    payload["has_won"] = True
    store_path.write_text(json.dumps({DEFAULT_SAVE_KEY: json.dumps(payload)}), encoding="utf-8")

    game = load_or_new_game(GamePersistence(JsonFileStore(store_path)))

    assert game.state.held_token is None
    assert game.state.has_won is False


def test_clear_removes_only_the_game_key(tmp_path: Path) -> None:
    store = JsonFileStore(tmp_path / "store.json")
    store.set("other.app", "keep me")
    persistence = GamePersistence(store)
    Game(persistence=persistence).step("south")

    persistence.clear()

    assert persistence.load() is None
    assert store.get("other.app") == "keep me"


def test_decode_snapshot_rejects_out_of_range_coordinates() -> None:
    state, overlay = _sample_state()
    payload = snapshot_payload(state, overlay)
    payload["player_lat"] = 10**400
    payload["save_hash"] = snapshot_hash(payload)

    assert decode_snapshot(json.dumps(payload)) is None


def test_decode_snapshot_rejects_deeply_nested_json() -> None:
    assert decode_snapshot("[" * 100000) is None


def test_deeply_nested_store_file_starts_a_new_game(tmp_path: Path) -> None:
    store_path = tmp_path / "store.json"
    store_path.write_text("[" * 100000, encoding="utf-8")

    game = load_or_new_game(GamePersistence(JsonFileStore(store_path)))

    assert game.state == GameState(player=ORIGIN)
    assert len(game.overlay) == 0
