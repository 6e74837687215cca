from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from gridcraft.sim.world import CellCoord, CellWindow

CELL_DEGREES = 1e-4
# Tolerance in cell units so accumulated float steps stay in the intended cell.
CELL_EPSILON = 1e-6


@dataclass(frozen=True)
class GeoPoint:
    """Geographic point in decimal degrees."""

    lat: float
    lng: float

    def __post_init__(self) -> None:
        for name in ("lat", "lng"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{name} must be numeric")
            if not math.isfinite(value):
                raise ValueError(f"{name} must be finite")
        if not -90.0 <= self.lat <= 90.0:
            raise ValueError("lat must be within [-90, 90]")
        if not -180.0 <= self.lng <= 180.0:
            raise ValueError("lng must be within [-180, 180]")

    def offset(self, dlat: float, dlng: float) -> "GeoPoint":
        return GeoPoint(self.lat + dlat, self.lng + dlng)

    def to_dict(self) -> dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GeoPoint":
        return cls(lat=float(data["lat"]), lng=float(data["lng"]))


ORIGIN = GeoPoint(36.997936938057016, -122.05703507501151)


def _axis_index(value: float, origin_value: float, cell_degrees: float) -> int:
    return math.floor((value - origin_value) / cell_degrees + CELL_EPSILON)


def point_to_cell(point: GeoPoint, origin: GeoPoint = ORIGIN, cell_degrees: float = CELL_DEGREES) -> CellCoord:
    return CellCoord(
        i=_axis_index(point.lat, origin.lat, cell_degrees),
        j=_axis_index(point.lng, origin.lng, cell_degrees),
    )


def cell_bounds(
    coord: CellCoord,
    origin: GeoPoint = ORIGIN,
    cell_degrees: float = CELL_DEGREES,
) -> tuple[GeoPoint, GeoPoint]:
    """South-west and north-east corners of a cell."""
    south_west = GeoPoint(origin.lat + coord.i * cell_degrees, origin.lng + coord.j * cell_degrees)
    north_east = GeoPoint(origin.lat + (coord.i + 1) * cell_degrees, origin.lng + (coord.j + 1) * cell_degrees)
    return (south_west, north_east)


def cell_center(coord: CellCoord, origin: GeoPoint = ORIGIN, cell_degrees: float = CELL_DEGREES) -> GeoPoint:
    return GeoPoint(origin.lat + (coord.i + 0.5) * cell_degrees, origin.lng + (coord.j + 0.5) * cell_degrees)


def window_from_bounds(
    south: float,
    west: float,
    north: float,
    east: float,
    origin: GeoPoint = ORIGIN,
    cell_degrees: float = CELL_DEGREES,
) -> CellWindow:
    return CellWindow(
        i_min=_axis_index(south, origin.lat, cell_degrees),
        i_max=_axis_index(north, origin.lat, cell_degrees),
        j_min=_axis_index(west, origin.lng, cell_degrees),
        j_max=_axis_index(east, origin.lng, cell_degrees),
    )


def window_around(cell: CellCoord, half_height: int, half_width: int) -> CellWindow:
    if half_height < 0 or half_width < 0:
        raise ValueError("window half extents must be >= 0")
    return CellWindow(
        i_min=cell.i - half_height,
        i_max=cell.i + half_height,
        j_min=cell.j - half_width,
        j_max=cell.j + half_width,
    )
