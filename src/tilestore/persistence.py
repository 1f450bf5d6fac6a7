"""Scene persistence: the legacy list-of-records layout and the columnar layout.

Legacy scenes store one dict per tile. Columnar scenes store parallel numpy
arrays (see ColumnarLayout). Loading a scene that only carries legacy data
migrates it; saving always writes columnar data with an empty legacy list.
A scene carrying both is a partial migration: the columnar data is loaded and
the condition is reported as a warning, leaving the legacy list for review.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np

from tilestore.components.columnar_layout import ColumnarLayout
from tilestore.components.tile_record import (
    MeshMode,
    TileFlags,
    TileRecord,
    TransformOverride,
    coerce_orientation,
)
from tilestore.storage import TileStorage

log = logging.getLogger(__name__)

SCENE_FORMAT_VERSION = 2


class MigrationState(Enum):
    EMPTY = auto()
    COLUMNAR = auto()
    MIGRATED_FROM_LEGACY = auto()
    PARTIAL_MIGRATION = auto()


@dataclass(slots=True)
class MigrationReport:
    state: MigrationState
    loaded: int
    legacy_count: int = 0
    columnar_count: int = 0
    warnings: List[str] = field(default_factory=list)


@dataclass
class SceneData:
    legacy_tiles: List[Dict[str, Any]] = field(default_factory=list)
    columnar: Optional[ColumnarLayout] = None

    @property
    def columnar_count(self) -> int:
        return len(self.columnar) if self.columnar is not None else 0


def record_to_legacy(record: TileRecord) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "position": list(record.position),
        "orientation": int(record.orientation),
        "mesh_mode": record.mesh_mode.slug,
        "flags": int(record.flags),
    }
    if record.transform is not None:
        entry["transform"] = {
            "offset": list(record.transform.offset),
            "scale": list(record.transform.scale),
            "rotation": list(record.transform.rotation),
        }
    return entry


def legacy_to_record(entry: Dict[str, Any]) -> TileRecord:
    try:
        position = entry["position"]
        orientation = entry["orientation"]
    except KeyError as exc:
        raise ValueError(f"Legacy tile entry is missing {exc.args[0]!r}") from None
    if len(position) != 3:
        raise ValueError(f"Legacy tile position needs 3 coordinates, got {position!r}")
    mode = entry.get("mesh_mode", MeshMode.SQUARE.slug)
    mesh_mode = MeshMode(mode) if isinstance(mode, int) else MeshMode.from_slug(str(mode))
    transform = None
    raw_transform = entry.get("transform")
    if raw_transform:
        transform = TransformOverride(
            offset=tuple(float(v) for v in raw_transform.get("offset", (0.0, 0.0, 0.0))),
            scale=tuple(float(v) for v in raw_transform.get("scale", (1.0, 1.0, 1.0))),
            rotation=tuple(float(v) for v in raw_transform.get("rotation", (0.0, 0.0, 0.0))),
        )
    return TileRecord(
        position=tuple(float(v) for v in position),
        orientation=coerce_orientation(orientation),
        mesh_mode=mesh_mode,
        transform=transform,
        flags=TileFlags(int(entry.get("flags", 0))),
    )


def load_scene(storage: TileStorage, scene: SceneData) -> MigrationReport:
    """Replace the storage contents with ``scene`` and report which layout was used."""
    legacy_count = len(scene.legacy_tiles)
    columnar_count = scene.columnar_count
    warnings: List[str] = []
    records: List[TileRecord]
    if legacy_count and columnar_count:
        state = MigrationState.PARTIAL_MIGRATION
        warnings.append(
            f"Partial migration: scene holds {legacy_count} legacy and {columnar_count} columnar tiles; "
            "loaded columnar data, legacy list left untouched"
        )
        records = list(scene.columnar.records())
    elif columnar_count:
        state = MigrationState.COLUMNAR
        records = list(scene.columnar.records())
    elif legacy_count:
        state = MigrationState.MIGRATED_FROM_LEGACY
        records = [legacy_to_record(entry) for entry in scene.legacy_tiles]
    else:
        state = MigrationState.EMPTY
        records = []
    loaded = storage.load_records(records, state=state)
    report = MigrationReport(
        state=state,
        loaded=loaded,
        legacy_count=legacy_count,
        columnar_count=columnar_count,
        warnings=warnings,
    )
    for warning in warnings:
        log.warning(warning)
    if state is MigrationState.MIGRATED_FROM_LEGACY:
        log.info("Migrated %d legacy tiles to columnar storage", loaded)
    storage.migration = report
    return report


def export_scene(storage: TileStorage) -> SceneData:
    return SceneData(legacy_tiles=[], columnar=storage.store.to_layout())


def export_legacy(storage: TileStorage) -> List[Dict[str, Any]]:
    return [record_to_legacy(record) for record in storage.iter()]


def save_scene_json(scene: SceneData, path: Path | str) -> None:
    payload = {
        "version": SCENE_FORMAT_VERSION,
        "tiles": scene.legacy_tiles,
        "columnar": scene.columnar.to_dict() if scene.columnar is not None else None,
    }
    with Path(path).open("w", encoding="utf-8") as handle:
        json.dump(payload, handle)


def load_scene_json(path: Path | str) -> SceneData:
    with Path(path).open("r", encoding="utf-8") as handle:
        payload = json.load(handle)
    if not isinstance(payload, dict):
        raise ValueError(f"Scene file {path} must contain a JSON object")
    columnar = payload.get("columnar")
    return SceneData(
        legacy_tiles=list(payload.get("tiles") or []),
        columnar=ColumnarLayout.from_dict(columnar) if columnar else None,
    )


def save_columnar_npz(layout: ColumnarLayout, path: Path | str) -> None:
    layout.validate()
    with Path(path).open("wb") as handle:
        np.savez(
            handle,
            positions=layout.positions,
            packed=layout.packed,
            transform_index=layout.transform_index,
            transforms=layout.transforms,
        )


def load_columnar_npz(path: Path | str) -> ColumnarLayout:
    with np.load(Path(path), allow_pickle=False) as data:
        layout = ColumnarLayout(
            positions=data["positions"],
            packed=data["packed"],
            transform_index=data["transform_index"],
            transforms=data["transforms"],
        )
    layout.validate()
    return layout
