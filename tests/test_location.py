import pytest

from gridcraft.sim.location import (
    CELL_DEGREES,
    ORIGIN,
    GeoPoint,
    cell_bounds,
    cell_center,
    point_to_cell,
    window_around,
    window_from_bounds,
)
from gridcraft.sim.world import CellCoord, CellWindow


def test_point_to_cell_floors_toward_containing_cell() -> None:
    assert point_to_cell(ORIGIN) == CellCoord(0, 0)
    assert point_to_cell(ORIGIN.offset(CELL_DEGREES * 0.5, CELL_DEGREES * 0.5)) == CellCoord(0, 0)
    assert point_to_cell(ORIGIN.offset(-CELL_DEGREES * 0.5, -CELL_DEGREES * 0.5)) == CellCoord(-1, -1)
    assert point_to_cell(ORIGIN.offset(CELL_DEGREES * 2.5, -CELL_DEGREES * 3.5)) == CellCoord(2, -4)


def test_repeated_steps_land_on_intended_cells() -> None:
    point = ORIGIN
    for expected in range(1, 50):
        point = point.offset(CELL_DEGREES, CELL_DEGREES)
        assert point_to_cell(point) == CellCoord(expected, expected)
    for expected in range(48, -50, -1):
        point = point.offset(-CELL_DEGREES, -CELL_DEGREES)
        assert point_to_cell(point) == CellCoord(expected, expected)


def test_cell_center_and_bounds_map_back_to_same_cell() -> None:
    coord = CellCoord(-7, 12)
    south_west, north_east = cell_bounds(coord)

    assert point_to_cell(cell_center(coord)) == coord
    assert point_to_cell(south_west) == coord
    assert point_to_cell(north_east) == CellCoord(-6, 13)


def test_window_from_bounds_and_window_around() -> None:
    window = window_from_bounds(
        south=ORIGIN.lat - CELL_DEGREES * 2.5,
        west=ORIGIN.lng - CELL_DEGREES * 0.5,
        north=ORIGIN.lat + CELL_DEGREES * 1.5,
        east=ORIGIN.lng + CELL_DEGREES * 4.2,
    )

    assert window == CellWindow(i_min=-3, i_max=1, j_min=-1, j_max=4)
    assert window_around(CellCoord(1, 1), 2, 3) == CellWindow(i_min=-1, i_max=3, j_min=-2, j_max=4)


def test_geo_point_validates_range() -> None:
    with pytest.raises(ValueError, match="lat must be within"):
        GeoPoint(91.0, 0.0)
    with pytest.raises(ValueError, match="lng must be numeric"):
        GeoPoint(0.0, "east")
