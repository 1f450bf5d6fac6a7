from __future__ import annotations

from typing import Sequence, Tuple

from tilestore.codec import TileKeyCodec, Units
from tilestore.components.chunk_owner import RegionId
from tilestore.components.tile_record import Vec3


class RegionIndexer:
    """Maps world positions to region cubes of ``config.region_size``.

    Works on the codec's quantized units so region membership agrees with
    key derivation exactly, including negative coordinates. Every finite
    position has a region; coordinates that are not finite once scaled to
    key units are rejected by the codec with CoordinateOutOfRange before any
    region is computed.
    """

    def __init__(self, codec: TileKeyCodec):
        self.codec = codec
        self.region_size = codec.config.region_size
        self.extent = codec.config.region_extent

    def region_of(self, position: Sequence[float]) -> RegionId:
        return self.region_of_units(self.codec.quantize_units(position))

    def region_of_units(self, units: Units) -> RegionId:
        extent = self.extent
        return (units[0] // extent, units[1] // extent, units[2] // extent)

    def region_of_key(self, key: int) -> RegionId:
        units, _ = self.codec.decode_units(key)
        return self.region_of_units(units)

    def region_bounds(self, region: RegionId) -> Tuple[Vec3, Vec3]:
        """Return the inclusive lower and exclusive upper corner of ``region``."""
        lower = tuple(axis * self.extent for axis in region)
        upper = tuple(axis + self.extent for axis in lower)
        return self.codec.units_to_position(lower), self.codec.units_to_position(upper)
