from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from tempfile import NamedTemporaryFile
from typing import Any

from gridcraft.content.schema import validate_snapshot_payload
from gridcraft.sim.core import Game, GameRules, GameState
from gridcraft.sim.hash import snapshot_hash
from gridcraft.sim.location import GeoPoint
from gridcraft.sim.world import CellOverlay

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
CANONICAL_JSON_INDENT = 2
CANONICAL_JSON_SEPARATORS = (",", ": ")
DEFAULT_SAVE_KEY = "gridcraft.save"

LoadedGame = tuple[GameState, CellOverlay]


def _canonical_json(payload: Any) -> str:
    return json.dumps(
        payload,
        indent=CANONICAL_JSON_INDENT,
        separators=CANONICAL_JSON_SEPARATORS,
        sort_keys=True,
    )


def _write_atomic_json(path: str | Path, payload: Any) -> None:
    destination = Path(path)
    destination.parent.mkdir(parents=True, exist_ok=True)
    serialized = _canonical_json(payload)

    temp_path: Path | None = None
    try:
        with NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            dir=destination.parent,
            delete=False,
            suffix=".tmp",
        ) as temp_file:
            temp_file.write(serialized)
            temp_file.flush()
            os.fsync(temp_file.fileno())
            temp_path = Path(temp_file.name)
        os.replace(temp_path, destination)
    except Exception:
        if temp_path is not None:
            temp_path.unlink(missing_ok=True)
        raise


def snapshot_payload(state: GameState, overlay: CellOverlay) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "schema_version": SCHEMA_VERSION,
        "player_lat": state.player.lat,
        "player_lng": state.player.lng,
        "held_token": state.held_token,
        "cells": overlay.to_pairs(),
        "has_won": state.has_won,
        "movement_mode": state.movement_mode,
    }
    payload["save_hash"] = snapshot_hash(payload)
    return payload


def encode_snapshot(state: GameState, overlay: CellOverlay) -> str:
    payload = snapshot_payload(state, overlay)
    validate_snapshot_payload(payload)
    return _canonical_json(payload)


def restore_snapshot(payload: dict[str, Any]) -> LoadedGame:
    """Rebuild state from a snapshot payload; raises ValueError when it is unusable."""
    validate_snapshot_payload(payload)
    expected_hash = payload["save_hash"]
    actual_hash = snapshot_hash(payload)
    if expected_hash != actual_hash:
        raise ValueError(f"save_hash mismatch while loading save (stored={expected_hash}, recomputed={actual_hash})")
    state = GameState(
        player=GeoPoint(lat=float(payload["player_lat"]), lng=float(payload["player_lng"])),
        held_token=payload["held_token"],
        has_won=payload["has_won"],
        movement_mode=payload["movement_mode"],
    )
    return state, CellOverlay.from_pairs(payload["cells"])


def decode_snapshot(blob: str | None) -> LoadedGame | None:
    if blob is None:
        return None
    try:
        payload = json.loads(blob)
        return restore_snapshot(payload)
    except (TypeError, ValueError, RecursionError) as exc:
        logger.warning("ignoring unreadable save snapshot: %s", exc)
        return None


class MemoryStore:
    """Process-local key/value store."""

    def __init__(self) -> None:
        self._values: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def remove(self, key: str) -> None:
        self._values.pop(key, None)


class JsonFileStore:
    """Key/value store persisted as one JSON object file on the local device."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)

    def _read_all(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError, RecursionError) as exc:
            logger.warning("store file unreadable path=%s: %s", self.path, exc)
            return {}
        if not isinstance(payload, dict):
            logger.warning("store file is not an object path=%s", self.path)
            return {}
        return {str(key): value for key, value in payload.items() if isinstance(value, str)}

    def get(self, key: str) -> str | None:
        return self._read_all().get(key)

    def set(self, key: str, value: str) -> None:
        values = self._read_all()
        values[key] = value
        _write_atomic_json(self.path, values)

    def remove(self, key: str) -> None:
        values = self._read_all()
        if key not in values:
            return
        del values[key]
        _write_atomic_json(self.path, values)


class GamePersistence:
    """Saves and restores a game under a single named key of a store."""

    def __init__(self, store: MemoryStore | JsonFileStore, key: str = DEFAULT_SAVE_KEY) -> None:
        if not key:
            raise ValueError("save key must be a non-empty string")
        self.store = store
        self.key = key

    def save(self, game: Game) -> None:
        self.store.set(self.key, encode_snapshot(game.state, game.overlay))

    def load(self) -> LoadedGame | None:
        try:
            blob = self.store.get(self.key)
        except OSError as exc:
            logger.warning("save store unavailable: %s", exc)
            return None
        return decode_snapshot(blob)

    def clear(self) -> None:
        self.store.remove(self.key)


def load_or_new_game(persistence: GamePersistence, rules: GameRules | None = None) -> Game:
    """Restore the saved game, or start a fresh one when nothing usable is stored."""
    loaded = persistence.load()
    if loaded is None:
        return Game(rules=rules, persistence=persistence)
    state, overlay = loaded
    return Game(rules=rules, state=state, overlay=overlay, persistence=persistence)
