"""Tile record and the enums describing a placed tile."""
from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum, IntFlag
from numbers import Integral
from typing import Tuple

from tilestore.errors import InvalidOrientation

Vec3 = Tuple[float, float, float]


class GeometryType(IntEnum):
    """Primitive family a tile renders with; one chunk registry per member."""
    SQUARE = 0
    TRIANGLE = 1
    BOX = 2
    PRISM = 3


class MeshMode(IntEnum):
    """Mesh mode stored per tile.

    Repeat variants tile their texture differently but share storage with the
    base geometry, so they live in the base geometry's chunks.
    """
    SQUARE = 0
    TRIANGLE = 1
    BOX = 2
    BOX_REPEAT = 3
    PRISM = 4
    PRISM_REPEAT = 5

    @property
    def geometry(self) -> GeometryType:
        return _MODE_GEOMETRY[self]

    @property
    def is_repeat(self) -> bool:
        return self in (MeshMode.BOX_REPEAT, MeshMode.PRISM_REPEAT)

    @property
    def slug(self) -> str:
        return self.name.lower()

    @classmethod
    def from_slug(cls, value: str) -> "MeshMode":
        try:
            return cls[value.strip().upper()]
        except KeyError:
            raise ValueError(f"Unknown mesh mode {value!r}") from None


_MODE_GEOMETRY = {
    MeshMode.SQUARE: GeometryType.SQUARE,
    MeshMode.TRIANGLE: GeometryType.TRIANGLE,
    MeshMode.BOX: GeometryType.BOX,
    MeshMode.BOX_REPEAT: GeometryType.BOX,
    MeshMode.PRISM: GeometryType.PRISM,
    MeshMode.PRISM_REPEAT: GeometryType.PRISM,
}


def modes_for(geometry: GeometryType) -> list[MeshMode]:
    return [mode for mode in MeshMode if mode.geometry == geometry]


class Facing(IntEnum):
    UP = 0
    DOWN = 1
    NORTH = 2
    SOUTH = 3
    EAST = 4
    WEST = 5


class Orientation(IntEnum):
    """Six facings times four quarter turns around the facing axis."""
    UP_0 = 0
    UP_90 = 1
    UP_180 = 2
    UP_270 = 3
    DOWN_0 = 4
    DOWN_90 = 5
    DOWN_180 = 6
    DOWN_270 = 7
    NORTH_0 = 8
    NORTH_90 = 9
    NORTH_180 = 10
    NORTH_270 = 11
    SOUTH_0 = 12
    SOUTH_90 = 13
    SOUTH_180 = 14
    SOUTH_270 = 15
    EAST_0 = 16
    EAST_90 = 17
    EAST_180 = 18
    EAST_270 = 19
    WEST_0 = 20
    WEST_90 = 21
    WEST_180 = 22
    WEST_270 = 23

    @property
    def facing(self) -> Facing:
        return Facing(self.value // 4)

    @property
    def quarter_turns(self) -> int:
        return self.value % 4

    @classmethod
    def compose(cls, facing: Facing, quarter_turns: int = 0) -> "Orientation":
        return cls(int(facing) * 4 + quarter_turns % 4)


def coerce_orientation(value) -> Orientation:
    """Return ``value`` as an Orientation or raise InvalidOrientation."""
    if isinstance(value, Orientation):
        return value
    if isinstance(value, bool) or not isinstance(value, Integral):
        raise InvalidOrientation(value)
    try:
        return Orientation(int(value))
    except ValueError:
        raise InvalidOrientation(value) from None


class TileFlags(IntFlag):
    NONE = 0
    DOUBLE_SIDED = 1
    NO_COLLISION = 2
    FLIP_UV = 4
    HIDDEN = 8
    LOCKED = 16


@dataclass(frozen=True, slots=True)
class TransformOverride:
    """Per-tile offset/scale/rotation applied on top of the grid transform."""
    offset: Vec3 = (0.0, 0.0, 0.0)
    scale: Vec3 = (1.0, 1.0, 1.0)
    rotation: Vec3 = (0.0, 0.0, 0.0)

    def as_row(self) -> Tuple[float, ...]:
        return (*self.offset, *self.scale, *self.rotation)

    @classmethod
    def from_row(cls, row) -> "TransformOverride":
        values = [float(v) for v in row]
        if len(values) != 9:
            raise ValueError(f"Transform row needs 9 values, got {len(values)}")
        return cls(
            offset=tuple(values[0:3]),
            scale=tuple(values[3:6]),
            rotation=tuple(values[6:9]),
        )


@dataclass(frozen=True, slots=True)
class TileRecord:
    position: Vec3
    orientation: Orientation
    mesh_mode: MeshMode = MeshMode.SQUARE
    transform: TransformOverride | None = None
    flags: TileFlags = TileFlags.NONE

    @property
    def geometry(self) -> GeometryType:
        return self.mesh_mode.geometry
