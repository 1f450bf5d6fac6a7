from dataclasses import dataclass

from tilestore.components.tile_record import GeometryType


@dataclass(frozen=True, slots=True)
class TileLocation:
    """Where a tile's render instance lives: registry, chunk entity and slot."""
    geometry: GeometryType
    chunk: int
    slot: int
