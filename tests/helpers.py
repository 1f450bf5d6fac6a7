from __future__ import annotations

from typing import List, Tuple

from tilestore.components.tile_record import MeshMode, Orientation
from tilestore.storage import TileStorage


def grid_positions(count: int, *, origin: Tuple[float, float, float] = (0.0, 0.0, 0.0), width: int = 10) -> List[Tuple[float, float, float]]:
    """Distinct unit-grid cells filling x, then z, then y from ``origin``."""
    ox, oy, oz = origin
    cells = []
    for index in range(count):
        x = index % width
        z = (index // width) % width
        y = index // (width * width)
        cells.append((ox + x, oy + y, oz + z))
    return cells


def place_grid(
    storage: TileStorage,
    count: int,
    *,
    origin: Tuple[float, float, float] = (0.0, 0.0, 0.0),
    mesh_mode: MeshMode = MeshMode.SQUARE,
    orientation: Orientation = Orientation.UP_0,
) -> List[int]:
    """Place ``count`` tiles on distinct cells and return their keys in placement order."""
    return [
        storage.place(position, orientation, mesh_mode)
        for position in grid_positions(count, origin=origin)
    ]
