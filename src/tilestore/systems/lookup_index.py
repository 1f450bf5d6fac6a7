from __future__ import annotations

from typing import Dict, Iterator, List, Tuple

from tilestore.components.tile_location import TileLocation
from tilestore.components.tile_record import GeometryType


class TileLookupIndex:
    """Tile key -> chunk location, the O(1) path used to find, replace and erase tiles."""

    def __init__(self):
        self._locations: Dict[int, TileLocation] = {}

    def resolve(self, key: int) -> TileLocation | None:
        return self._locations.get(key)

    def assign(self, key: int, location: TileLocation) -> None:
        self._locations[key] = location

    def update_location(self, key: int, location: TileLocation) -> None:
        """Repoint an existing entry after its slot moved."""
        if key not in self._locations:
            raise KeyError(f"Tile key {key} is not indexed")
        self._locations[key] = location

    def discard(self, key: int) -> TileLocation | None:
        return self._locations.pop(key, None)

    def contains(self, key: int) -> bool:
        return key in self._locations

    __contains__ = contains

    def count(self) -> int:
        return len(self._locations)

    __len__ = count

    def keys(self) -> List[int]:
        return list(self._locations.keys())

    def items(self) -> Iterator[Tuple[int, TileLocation]]:
        return iter(list(self._locations.items()))

    def count_by_geometry(self) -> Dict[GeometryType, int]:
        counts: Dict[GeometryType, int] = {}
        for location in self._locations.values():
            counts[location.geometry] = counts.get(location.geometry, 0) + 1
        return counts

    def clear(self) -> None:
        self._locations.clear()
