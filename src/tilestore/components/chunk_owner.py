from dataclasses import dataclass
from typing import Tuple

from tilestore.components.tile_record import GeometryType

RegionId = Tuple[int, int, int]


@dataclass(slots=True)
class ChunkOwner:
    """Tags a chunk entity with the registry entry it belongs to for its whole lifetime."""
    geometry: GeometryType
    region: RegionId
