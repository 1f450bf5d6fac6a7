"""Tile key encoding.

A key packs the quantized position and the orientation into one non-negative
integer. Orientation sits in the low bits, followed by z, y and x as biased
fixed-width integers, so keys order by x, then y, then z, then orientation.

Placement, removal and preview code all derive keys independently; every path
goes through ``quantize_units`` so equal quantized positions always produce the
same key.
"""
from __future__ import annotations

import math
from numbers import Integral
from typing import Sequence, Tuple

from tilestore import constants
from tilestore.components.tile_record import Orientation, Vec3, coerce_orientation
from tilestore.config import StoreConfig
from tilestore.errors import CoordinateOutOfRange, MalformedKey

Units = Tuple[int, int, int]

_AXES = ("x", "y", "z")
_AXIS_BIAS = 1 << (constants.AXIS_BITS - 1)
_AXIS_MASK = (1 << constants.AXIS_BITS) - 1
_ORIENTATION_MASK = (1 << constants.ORIENTATION_BITS) - 1
_KEY_BITS = 3 * constants.AXIS_BITS + constants.ORIENTATION_BITS


class TileKeyCodec:
    def __init__(self, config: StoreConfig | None = None):
        self.config = config or StoreConfig()
        self.precision = self.config.key_precision
        self.scale = self.config.scale

    def quantize_units(self, position: Sequence[float]) -> Units:
        """Return the integer grid units of ``position`` at the configured precision."""
        if len(position) != 3:
            raise ValueError(f"Position needs 3 coordinates, got {len(position)}")
        units = []
        for axis, value in zip(_AXES, position):
            scaled = float(value) * self.scale
            if not math.isfinite(scaled):
                raise CoordinateOutOfRange(axis, value)
            units.append(math.floor(scaled + 0.5))
        return units[0], units[1], units[2]

    def units_to_position(self, units: Units) -> Vec3:
        return (units[0] / self.scale, units[1] / self.scale, units[2] / self.scale)

    def quantize(self, position: Sequence[float]) -> Vec3:
        return self.units_to_position(self.quantize_units(position))

    def encode(self, position: Sequence[float], orientation) -> int:
        return self.encode_units(self.quantize_units(position), orientation)

    def encode_units(self, units: Units, orientation) -> int:
        orient = coerce_orientation(orientation)
        key = 0
        for axis, value in zip(_AXES, units):
            biased = value + _AXIS_BIAS
            if biased < 0 or biased > _AXIS_MASK:
                raise CoordinateOutOfRange(axis, value / self.scale)
            key = (key << constants.AXIS_BITS) | biased
        return (key << constants.ORIENTATION_BITS) | int(orient)

    def decode_units(self, key: int) -> Tuple[Units, Orientation]:
        if isinstance(key, bool) or not isinstance(key, Integral):
            raise MalformedKey(key, "not an integer")
        key = int(key)
        if key < 0:
            raise MalformedKey(key, "negative")
        if key >> _KEY_BITS:
            raise MalformedKey(key, f"wider than {_KEY_BITS} bits")
        raw_orientation = key & _ORIENTATION_MASK
        if raw_orientation >= len(Orientation):
            raise MalformedKey(key, f"orientation bits {raw_orientation} are undefined")
        body = key >> constants.ORIENTATION_BITS
        z = (body & _AXIS_MASK) - _AXIS_BIAS
        body >>= constants.AXIS_BITS
        y = (body & _AXIS_MASK) - _AXIS_BIAS
        body >>= constants.AXIS_BITS
        x = (body & _AXIS_MASK) - _AXIS_BIAS
        return (x, y, z), Orientation(raw_orientation)

    def decode(self, key: int) -> Tuple[Vec3, Orientation]:
        units, orientation = self.decode_units(key)
        return self.units_to_position(units), orientation

    def is_valid_key(self, key) -> bool:
        try:
            self.decode_units(key)
        except MalformedKey:
            return False
        return True
