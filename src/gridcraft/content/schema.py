from __future__ import annotations

import math
from typing import Any

SUPPORTED_SCHEMA_VERSIONS = {1}
VALID_MOVEMENT_MODES = {"discrete", "continuous"}
REQUIRED_OVERRIDE_FIELDS = {"has_token", "value"}


def _require_int(value: Any, *, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{field_name} must be an integer")
    return value


def _require_finite_number(value: Any, *, field_name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{field_name} must be a number")
    try:
        number = float(value)
    except OverflowError as exc:
        raise ValueError(f"{field_name} is out of range") from exc
    if not math.isfinite(number):
        raise ValueError(f"{field_name} must be finite")
    return number


def _validate_cells(cells: Any) -> None:
    if not isinstance(cells, list):
        raise ValueError("snapshot must contain list field: cells")
    for index, row in enumerate(cells):
        if not isinstance(row, list) or len(row) != 2:
            raise ValueError(f"cells[{index}] must be a [key, override] pair")
        key, override = row
        if not isinstance(key, str) or not key:
            raise ValueError(f"cells[{index}] key must be a non-empty string")
        if not isinstance(override, dict):
            raise ValueError(f"cells[{index}] override must be an object")
        missing = REQUIRED_OVERRIDE_FIELDS - set(override.keys())
        if missing:
            raise ValueError(f"cells[{index}] missing override fields: {sorted(missing)}")
        if not isinstance(override["has_token"], bool):
            raise ValueError(f"cells[{index}].has_token must be a boolean")
        if override["value"] is not None:
            _require_int(override["value"], field_name=f"cells[{index}].value")


def validate_snapshot_payload(payload: dict[str, Any]) -> None:
    if not isinstance(payload, dict):
        raise ValueError("snapshot payload must be an object")

    schema_version = payload.get("schema_version")
    if not isinstance(schema_version, int):
        raise ValueError("snapshot must contain integer field: schema_version")
    if schema_version not in SUPPORTED_SCHEMA_VERSIONS:
        raise ValueError(f"unsupported schema_version: {schema_version}")

    save_digest = payload.get("save_hash")
    if not isinstance(save_digest, str) or not save_digest:
        raise ValueError("snapshot must contain string field: save_hash")

    _require_finite_number(payload.get("player_lat"), field_name="player_lat")
    _require_finite_number(payload.get("player_lng"), field_name="player_lng")

    if "held_token" not in payload:
        raise ValueError("snapshot must contain field: held_token")
    if payload["held_token"] is not None:
        _require_int(payload["held_token"], field_name="held_token")

    if not isinstance(payload.get("has_won"), bool):
        raise ValueError("snapshot must contain boolean field: has_won")

    movement_mode = payload.get("movement_mode")
    if movement_mode not in VALID_MOVEMENT_MODES:
        raise ValueError(f"unsupported movement_mode: {movement_mode}")

    _validate_cells(payload.get("cells"))
