from __future__ import annotations

from typing import Dict, Iterator, List, Tuple

import numpy as np

from tilestore.components.columnar_layout import ColumnarLayout, pack_state
from tilestore.components.tile_record import (
    MeshMode,
    Orientation,
    TileFlags,
    TileRecord,
    TransformOverride,
    Vec3,
)


class ColumnarTileStore:
    """Canonical record of every placed tile, kept as parallel columns.

    Rows are dense; removing a row moves the last row into its place. Transform
    overrides are sparse: ``_transform_index[row]`` points into ``_transforms``
    or is -1. The store knows nothing about chunks, so the chunk indexes can
    always be rebuilt from it.
    """

    def __init__(self):
        self._rows: Dict[int, int] = {}
        self._keys: List[int] = []
        self._positions: List[Vec3] = []
        self._orientations: List[Orientation] = []
        self._modes: List[MeshMode] = []
        self._flags: List[TileFlags] = []
        self._transform_index: List[int] = []
        self._transforms: List[TransformOverride] = []
        self._transform_rows: List[int] = []

    def upsert(self, key: int, record: TileRecord) -> bool:
        """Insert or overwrite the record for ``key``; returns True when it replaced one."""
        row = self._rows.get(key)
        if row is None:
            self._rows[key] = len(self._keys)
            self._keys.append(key)
            self._positions.append(tuple(record.position))
            self._orientations.append(record.orientation)
            self._modes.append(record.mesh_mode)
            self._flags.append(TileFlags(record.flags))
            self._transform_index.append(-1)
            self._set_transform(len(self._keys) - 1, record.transform)
            return False
        self._positions[row] = tuple(record.position)
        self._orientations[row] = record.orientation
        self._modes[row] = record.mesh_mode
        self._flags[row] = TileFlags(record.flags)
        self._set_transform(row, record.transform)
        return True

    def remove(self, key: int) -> bool:
        row = self._rows.pop(key, None)
        if row is None:
            return False
        self._set_transform(row, None)
        last = len(self._keys) - 1
        if row != last:
            moved_key = self._keys[last]
            self._keys[row] = moved_key
            self._positions[row] = self._positions[last]
            self._orientations[row] = self._orientations[last]
            self._modes[row] = self._modes[last]
            self._flags[row] = self._flags[last]
            moved_transform = self._transform_index[last]
            self._transform_index[row] = moved_transform
            if moved_transform >= 0:
                self._transform_rows[moved_transform] = row
            self._rows[moved_key] = row
        self._keys.pop()
        self._positions.pop()
        self._orientations.pop()
        self._modes.pop()
        self._flags.pop()
        self._transform_index.pop()
        return True

    def get(self, key: int) -> TileRecord | None:
        row = self._rows.get(key)
        if row is None:
            return None
        return self._record_at(row)

    def contains(self, key: int) -> bool:
        return key in self._rows

    __contains__ = contains

    def count(self) -> int:
        return len(self._keys)

    __len__ = count

    def keys(self) -> List[int]:
        return list(self._keys)

    def iter(self) -> Iterator[TileRecord]:
        """Return a fresh lazy iterator over all records."""
        return (record for _, record in self.items())

    __iter__ = iter

    def items(self) -> Iterator[Tuple[int, TileRecord]]:
        for row in range(len(self._keys)):
            if row >= len(self._keys):
                return
            yield self._keys[row], self._record_at(row)

    def transform_count(self) -> int:
        return len(self._transforms)

    def mode_counts(self) -> Dict[MeshMode, int]:
        counts: Dict[MeshMode, int] = {}
        for mode in self._modes:
            counts[mode] = counts.get(mode, 0) + 1
        return counts

    def clear(self) -> None:
        self._rows.clear()
        self._keys.clear()
        self._positions.clear()
        self._orientations.clear()
        self._modes.clear()
        self._flags.clear()
        self._transform_index.clear()
        self._transforms.clear()
        self._transform_rows.clear()

    def to_layout(self) -> ColumnarLayout:
        count = len(self._keys)
        packed = [
            pack_state(self._orientations[row], self._modes[row], self._flags[row])
            for row in range(count)
        ]
        return ColumnarLayout(
            positions=np.array(self._positions, dtype=np.float64).reshape(count, 3),
            packed=np.array(packed, dtype=np.uint32),
            transform_index=np.array(self._transform_index, dtype=np.int32),
            transforms=np.array(
                [transform.as_row() for transform in self._transforms], dtype=np.float64
            ).reshape(len(self._transforms), 9),
        )

    def _record_at(self, row: int) -> TileRecord:
        transform_row = self._transform_index[row]
        return TileRecord(
            position=self._positions[row],
            orientation=self._orientations[row],
            mesh_mode=self._modes[row],
            transform=self._transforms[transform_row] if transform_row >= 0 else None,
            flags=self._flags[row],
        )

    def _set_transform(self, row: int, transform: TransformOverride | None) -> None:
        current = self._transform_index[row]
        if transform is None:
            if current >= 0:
                self._free_transform(current)
                self._transform_index[row] = -1
            return
        if current >= 0:
            self._transforms[current] = transform
            return
        self._transform_index[row] = len(self._transforms)
        self._transforms.append(transform)
        self._transform_rows.append(row)

    def _free_transform(self, index: int) -> None:
        last = len(self._transforms) - 1
        if index != last:
            owner = self._transform_rows[last]
            self._transforms[index] = self._transforms[last]
            self._transform_rows[index] = owner
            self._transform_index[owner] = index
        self._transforms.pop()
        self._transform_rows.pop()
