from __future__ import annotations

import hashlib
import json
from typing import Any

from gridcraft.sim.core import Game

SNAPSHOT_HASH_FIELDS = (
    "schema_version",
    "player_lat",
    "player_lng",
    "held_token",
    "cells",
    "has_won",
    "movement_mode",
)


def _digest(payload: Any) -> str:
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


def snapshot_hash(payload: dict[str, Any]) -> str:
    return _digest({name: payload[name] for name in SNAPSHOT_HASH_FIELDS})


def game_hash(game: Game) -> str:
    payload = {
        "rules": game.rules.to_dict(),
        "player": game.state.player.to_dict(),
        "held_token": game.state.held_token,
        "has_won": game.state.has_won,
        "movement_mode": game.state.movement_mode,
        "cells": game.overlay.to_pairs(),
        "pending_commands": [command.to_dict() for command in game.pending_commands()],
    }
    return _digest(payload)
