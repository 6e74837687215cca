from __future__ import annotations

import math
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from typing import Any

from gridcraft.sim.rng import luck

SPAWN_PROBABILITY = 0.12
TOKEN_VALUE_RANGE = 100
INTERACTION_RADIUS = 2
TOKEN_SALT = "token"
VALUE_SALT = "value"

OVERLAY_POLICY_PERSISTENT = "persistent"
OVERLAY_POLICY_MEMORYLESS = "memoryless"
OVERLAY_POLICIES = {OVERLAY_POLICY_PERSISTENT, OVERLAY_POLICY_MEMORYLESS}
MEMORYLESS_EVICTION_MARGIN = 1


@dataclass(frozen=True, order=True)
class CellCoord:
    """Grid cell offset (i, j) from the origin; i grows north, j grows east."""

    i: int
    j: int

    def to_key(self) -> str:
        return f"{self.i},{self.j}"

    @classmethod
    def from_key(cls, key: str) -> "CellCoord":
        if not isinstance(key, str):
            raise ValueError("cell key must be a string")
        parts = key.split(",")
        if len(parts) != 2:
            raise ValueError(f"cell key must look like 'i,j': {key!r}")
        try:
            return cls(i=int(parts[0]), j=int(parts[1]))
        except ValueError as exc:
            raise ValueError(f"cell key must contain integers: {key!r}") from exc

    def to_dict(self) -> dict[str, int]:
        return {"i": self.i, "j": self.j}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CellCoord":
        return cls(i=int(data["i"]), j=int(data["j"]))

    def offset(self, di: int, dj: int) -> "CellCoord":
        return CellCoord(self.i + di, self.j + dj)


def chebyshev_distance(a: CellCoord, b: CellCoord) -> int:
    return max(abs(a.i - b.i), abs(a.j - b.j))


@dataclass(frozen=True)
class CellState:
    has_token: bool
    value: int | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.has_token, bool):
            raise ValueError("has_token must be a boolean")
        if self.has_token:
            if isinstance(self.value, bool) or not isinstance(self.value, int):
                raise ValueError("value must be an integer when has_token is true")
        elif self.value is not None:
            raise ValueError("value must be None when has_token is false")

    def to_dict(self) -> dict[str, Any]:
        return {"has_token": self.has_token, "value": self.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CellState":
        if not isinstance(data, dict):
            raise ValueError("cell override must be an object")
        raw_value = data.get("value")
        return cls(has_token=data.get("has_token"), value=raw_value)


EMPTY_CELL = CellState(has_token=False, value=None)


@dataclass(frozen=True)
class CellWindow:
    """Inclusive rectangular range of cell coordinates."""

    i_min: int
    i_max: int
    j_min: int
    j_max: int

    def __post_init__(self) -> None:
        if self.i_min > self.i_max or self.j_min > self.j_max:
            raise ValueError("window minimums must not exceed maximums")

    def contains(self, coord: CellCoord) -> bool:
        return self.i_min <= coord.i <= self.i_max and self.j_min <= coord.j <= self.j_max

    def expanded(self, margin: int) -> "CellWindow":
        return CellWindow(
            i_min=self.i_min - margin,
            i_max=self.i_max + margin,
            j_min=self.j_min - margin,
            j_max=self.j_max + margin,
        )

    def iter_coords(self) -> Iterator[CellCoord]:
        for i in range(self.i_min, self.i_max + 1):
            for j in range(self.j_min, self.j_max + 1):
                yield CellCoord(i, j)

    def cell_count(self) -> int:
        return (self.i_max - self.i_min + 1) * (self.j_max - self.j_min + 1)


@dataclass(frozen=True)
class CellOracle:
    """Pure base-layer generator: the same coordinate always yields the same cell."""

    spawn_probability: float = SPAWN_PROBABILITY
    seed: str = ""
    luck: Callable[[str], float] = field(default=luck, compare=False)

    def __post_init__(self) -> None:
        if not 0.0 <= self.spawn_probability <= 1.0:
            raise ValueError("spawn_probability must be within [0.0, 1.0]")

    def _key(self, coord: CellCoord, salt: str) -> str:
        key = f"{coord.i},{coord.j},{salt}"
        return f"{self.seed}:{key}" if self.seed else key

    def base_state(self, coord: CellCoord) -> CellState:
        if self.luck(self._key(coord, TOKEN_SALT)) >= self.spawn_probability:
            return EMPTY_CELL
        value = math.floor(self.luck(self._key(coord, VALUE_SALT)) * TOKEN_VALUE_RANGE)
        return CellState(has_token=True, value=value)


class CellOverlay:
    """Sparse record of cells whose state diverged from the oracle."""

    def __init__(self, entries: dict[CellCoord, CellState] | None = None) -> None:
        self._entries: dict[CellCoord, CellState] = dict(entries or {})

    def get(self, coord: CellCoord) -> CellState | None:
        return self._entries.get(coord)

    def set(self, coord: CellCoord, state: CellState) -> None:
        self._entries[coord] = state

    def delete(self, coord: CellCoord) -> bool:
        return self._entries.pop(coord, None) is not None

    def clear(self) -> None:
        self._entries.clear()

    def items(self) -> list[tuple[CellCoord, CellState]]:
        return sorted(self._entries.items())

    def evict_outside(self, window: CellWindow) -> int:
        stale = [coord for coord in self._entries if not window.contains(coord)]
        for coord in stale:
            del self._entries[coord]
        return len(stale)

    def to_pairs(self) -> list[list[Any]]:
        return [[coord.to_key(), state.to_dict()] for coord, state in self.items()]

    @classmethod
    def from_pairs(cls, pairs: list[Any]) -> "CellOverlay":
        if not isinstance(pairs, list):
            raise ValueError("cells must be a list")
        overlay = cls()
        for index, row in enumerate(pairs):
            if not isinstance(row, (list, tuple)) or len(row) != 2:
                raise ValueError(f"cells[{index}] must be a [key, override] pair")
            coord = CellCoord.from_key(row[0])
            if coord in overlay:
                raise ValueError(f"cells[{index}] duplicates key {row[0]!r}")
            overlay.set(coord, CellState.from_dict(row[1]))
        return overlay

    def __contains__(self, coord: object) -> bool:
        return coord in self._entries

    def __iter__(self) -> Iterator[CellCoord]:
        return iter(sorted(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CellOverlay):
            return NotImplemented
        return self._entries == other._entries

    def __repr__(self) -> str:
        return f"CellOverlay({self.items()!r})"


@dataclass(frozen=True)
class VisibleCell:
    coord: CellCoord
    state: CellState
    interactive: bool


class WorldView:
    """Read-only composition of the oracle base layer and the overlay."""

    def __init__(self, oracle: CellOracle, overlay: CellOverlay) -> None:
        self.oracle = oracle
        self.overlay = overlay

    def effective_state(self, coord: CellCoord) -> CellState:
        override = self.overlay.get(coord)
        if override is not None:
            return override
        return self.oracle.base_state(coord)

    def is_interactive(self, coord: CellCoord, player_cell: CellCoord, radius: int = INTERACTION_RADIUS) -> bool:
        return chebyshev_distance(coord, player_cell) <= radius

    def cells_in_window(
        self,
        window: CellWindow,
        player_cell: CellCoord,
        radius: int = INTERACTION_RADIUS,
    ) -> list[VisibleCell]:
        return [
            VisibleCell(
                coord=coord,
                state=self.effective_state(coord),
                interactive=self.is_interactive(coord, player_cell, radius),
            )
            for coord in window.iter_coords()
        ]
