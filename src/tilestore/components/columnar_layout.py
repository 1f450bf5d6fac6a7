from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Tuple

import numpy as np

from tilestore.components.tile_record import (
    MeshMode,
    TileFlags,
    TileRecord,
    TransformOverride,
    coerce_orientation,
)

_ORIENTATION_MASK = 0x1F
_MODE_SHIFT = 5
_MODE_MASK = 0x7
_FLAGS_SHIFT = 8


def pack_state(orientation: int, mesh_mode: int, flags: int) -> int:
    return int(orientation) | (int(mesh_mode) << _MODE_SHIFT) | (int(flags) << _FLAGS_SHIFT)


def unpack_state(packed: int) -> Tuple[int, int, int]:
    packed = int(packed)
    return packed & _ORIENTATION_MASK, (packed >> _MODE_SHIFT) & _MODE_MASK, packed >> _FLAGS_SHIFT


def _empty_positions() -> np.ndarray:
    return np.zeros((0, 3), dtype=np.float64)


def _empty_transforms() -> np.ndarray:
    return np.zeros((0, 9), dtype=np.float64)


@dataclass
class ColumnarLayout:
    """Struct-of-arrays persistence layout.

    positions: (N, 3) float64
    packed: (N,) uint32, orientation | mesh_mode << 5 | flags << 8
    transform_index: (N,) int32 row into ``transforms``, -1 for no override
    transforms: (M, 9) float64 offset, scale, rotation
    """
    positions: np.ndarray = field(default_factory=_empty_positions)
    packed: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.uint32))
    transform_index: np.ndarray = field(default_factory=lambda: np.zeros(0, dtype=np.int32))
    transforms: np.ndarray = field(default_factory=_empty_transforms)

    def __post_init__(self) -> None:
        self.positions = np.asarray(self.positions, dtype=np.float64).reshape(-1, 3)
        self.packed = np.asarray(self.packed, dtype=np.uint32).reshape(-1)
        self.transform_index = np.asarray(self.transform_index, dtype=np.int32).reshape(-1)
        self.transforms = np.asarray(self.transforms, dtype=np.float64).reshape(-1, 9)

    def __len__(self) -> int:
        return int(self.positions.shape[0])

    def is_empty(self) -> bool:
        return len(self) == 0

    def validate(self) -> None:
        count = len(self)
        if self.packed.shape[0] != count or self.transform_index.shape[0] != count:
            raise ValueError(
                f"Column length mismatch: positions={count}, packed={self.packed.shape[0]}, "
                f"transform_index={self.transform_index.shape[0]}"
            )
        if count and int(self.transform_index.min()) < -1:
            raise ValueError("transform_index values below -1 are invalid")
        if count and int(self.transform_index.max()) >= self.transforms.shape[0]:
            raise ValueError(
                f"transform_index points past the {self.transforms.shape[0]} stored transforms"
            )

    def records(self) -> Iterator[TileRecord]:
        self.validate()
        for row in range(len(self)):
            orientation, mode, flags = unpack_state(self.packed[row])
            transform_row = int(self.transform_index[row])
            transform = None
            if transform_row >= 0:
                transform = TransformOverride.from_row(self.transforms[transform_row])
            yield TileRecord(
                position=tuple(float(v) for v in self.positions[row]),
                orientation=coerce_orientation(orientation),
                mesh_mode=MeshMode(mode),
                transform=transform,
                flags=TileFlags(flags),
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "positions": self.positions.tolist(),
            "packed": self.packed.tolist(),
            "transform_index": self.transform_index.tolist(),
            "transforms": self.transforms.tolist(),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ColumnarLayout":
        return cls(
            positions=payload.get("positions", []),
            packed=payload.get("packed", []),
            transform_index=payload.get("transform_index", []),
            transforms=payload.get("transforms", []),
        )
