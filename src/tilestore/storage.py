"""Chunked tile storage.

Placement flow: derive the key (codec), derive the region (region indexer),
let the geometry's chunk registry pick or create a chunk, then record the
location in the lookup index and the record in the columnar store. Removal
mirrors it, starting from the lookup index so no chunk is ever scanned.

The columnar store is the source of truth; ``rebuild_index`` discards every
chunk and lookup entry and replays the store through the same placement path.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, Iterable, Iterator, Optional, Sequence

from esper import World

from tilestore.codec import TileKeyCodec
from tilestore.components.instance_chunk import InstanceChunk
from tilestore.components.tile_location import TileLocation
from tilestore.components.tile_record import (
    GeometryType,
    MeshMode,
    TileFlags,
    TileRecord,
    TransformOverride,
    coerce_orientation,
)
from tilestore.config import StoreConfig
from tilestore.events.bus import (
    EventBus,
    EVENT_INDEX_REBUILT,
    EVENT_STORE_LOADED,
    EVENT_TILE_ERASED,
    EVENT_TILE_MOVED,
    EVENT_TILE_PLACED,
)
from tilestore.region import RegionIndexer
from tilestore.systems.chunk_registry import ChunkRegistry
from tilestore.systems.columnar_store import ColumnarTileStore
from tilestore.systems.lookup_index import TileLookupIndex
from tilestore.systems.placement_tracker import PlacementTracker

log = logging.getLogger(__name__)


class TileStorage:
    def __init__(
        self,
        world: World | None = None,
        event_bus: EventBus | None = None,
        config: StoreConfig | None = None,
        *,
        tracker: Optional[PlacementTracker] = None,
    ):
        self.world = world if world is not None else World()
        self.event_bus = event_bus if event_bus is not None else EventBus()
        self.config = config or StoreConfig()
        self.codec = TileKeyCodec(self.config)
        self.regions = RegionIndexer(self.codec)
        self.store = ColumnarTileStore()
        self.lookup = TileLookupIndex()
        self.registries: Dict[GeometryType, ChunkRegistry] = {
            geometry: ChunkRegistry(
                self.world,
                self.event_bus,
                geometry,
                self.config,
                on_slot_moved=self.lookup.update_location,
            )
            for geometry in GeometryType
        }
        self.tracker = tracker
        # Set by tilestore.persistence.load_scene.
        self.migration = None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    def key_for(self, position: Sequence[float], orientation) -> int:
        return self.codec.encode(position, orientation)

    def get(self, key: int) -> TileRecord | None:
        return self.store.get(key)

    def exists(self, key: int) -> bool:
        return self.store.contains(key)

    __contains__ = exists

    def count(self) -> int:
        return self.store.count()

    __len__ = count

    def iter(self) -> Iterator[TileRecord]:
        return self.store.iter()

    __iter__ = iter

    def items(self) -> Iterator[tuple[int, TileRecord]]:
        return self.store.items()

    def resolve(self, key: int) -> TileLocation | None:
        return self.lookup.resolve(key)

    def visible_count(self) -> int:
        return sum(registry.occupied_count() for registry in self.registries.values())

    def chunk_count(self, geometry: GeometryType | None = None) -> int:
        if geometry is not None:
            return self.registries[geometry].chunk_count()
        return sum(registry.chunk_count() for registry in self.registries.values())

    def region_count(self, geometry: GeometryType | None = None) -> int:
        if geometry is not None:
            return self.registries[geometry].region_count()
        regions = set()
        for registry in self.registries.values():
            regions.update(registry.regions())
        return len(regions)

    def chunk_at(self, key: int) -> InstanceChunk | None:
        location = self.lookup.resolve(key)
        if location is None:
            return None
        return self.registries[location.geometry].chunk(location.chunk)

    def view(self):
        from tilestore.view import TileView

        return TileView(self)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def place(
        self,
        position: Sequence[float],
        orientation,
        mesh_mode: MeshMode = MeshMode.SQUARE,
        *,
        transform: TransformOverride | None = None,
        flags: TileFlags | int = TileFlags.NONE,
    ) -> int:
        """Place a tile and return its key; an existing tile at that key is replaced."""
        orient = coerce_orientation(orientation)
        units = self.codec.quantize_units(position)
        key = self.codec.encode_units(units, orient)
        record = TileRecord(
            position=self.codec.units_to_position(units),
            orientation=orient,
            mesh_mode=MeshMode(mesh_mode),
            transform=transform,
            flags=TileFlags(flags),
        )
        return self._put(key, record)

    def place_record(self, record: TileRecord) -> int:
        return self.place(
            record.position,
            record.orientation,
            record.mesh_mode,
            transform=record.transform,
            flags=record.flags,
        )

    def erase(self, key: int) -> bool:
        """Remove the tile at ``key``. Returns False when nothing was stored there."""
        location = self.lookup.resolve(key)
        if location is not None:
            self._release(key, location)
        if not self.store.remove(key):
            return False
        geometry = location.geometry if location is not None else None
        self.event_bus.emit(EVENT_TILE_ERASED, key=key, geometry=geometry)
        return True

    def erase_at(self, position: Sequence[float], orientation) -> bool:
        return self.erase(self.codec.encode(position, orientation))

    def set_mesh_mode(self, key: int, mesh_mode: MeshMode) -> bool:
        record = self.store.get(key)
        if record is None:
            return False
        self._put(key, replace(record, mesh_mode=MeshMode(mesh_mode)))
        return True

    def set_transform(self, key: int, transform: TransformOverride | None) -> bool:
        record = self.store.get(key)
        if record is None:
            return False
        self._put(key, replace(record, transform=transform))
        return True

    def set_flags(self, key: int, flags: TileFlags | int) -> bool:
        record = self.store.get(key)
        if record is None:
            return False
        self._put(key, replace(record, flags=TileFlags(flags)))
        return True

    def reorient(self, key: int, orientation) -> int | None:
        """Change a tile's orientation, which changes its key. Returns the new key."""
        orient = coerce_orientation(orientation)
        record = self.store.get(key)
        if record is None:
            return None
        new_key = self.codec.encode(record.position, orient)
        if new_key == key:
            return key
        self.erase(key)
        return self._put(new_key, replace(record, orientation=orient))

    def load_records(self, records: Iterable[TileRecord], *, state=None) -> int:
        """Replace all content with ``records`` (later duplicates of a key win).

        Every record is validated and keyed before the current content is
        dropped, so a bad record leaves the storage as it was.
        """
        prepared = []
        for record in records:
            orient = coerce_orientation(record.orientation)
            units = self.codec.quantize_units(record.position)
            key = self.codec.encode_units(units, orient)
            normalized = replace(
                record,
                position=self.codec.units_to_position(units),
                orientation=orient,
                mesh_mode=MeshMode(record.mesh_mode),
                flags=TileFlags(record.flags),
            )
            prepared.append((key, normalized))
        self._reset()
        for key, normalized in prepared:
            self._put(key, normalized, notify=False)
        count = self.store.count()
        self.event_bus.emit(EVENT_STORE_LOADED, count=count, state=state)
        return count

    def clear(self) -> None:
        self._reset()
        self.event_bus.emit(EVENT_STORE_LOADED, count=0, state=None)

    def rebuild_index(self) -> int:
        """Discard the lookup index and every chunk, then replay the store."""
        self._drop_indexes()
        for key, record in self.store.items():
            self._index(key, record)
        chunks = self.chunk_count()
        log.info("Rebuilt index: %d tiles in %d chunks", self.store.count(), chunks)
        self.event_bus.emit(EVENT_INDEX_REBUILT, tiles=self.store.count(), chunks=chunks)
        return self.store.count()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _put(self, key: int, record: TileRecord, *, notify: bool = True) -> int:
        existing = self.lookup.resolve(key)
        replaced = self.store.contains(key)
        moved = existing is not None and existing.geometry != record.geometry
        if existing is not None and not moved:
            self.registries[existing.geometry].update_mode(existing.chunk, key, record.mesh_mode)
        else:
            if existing is not None:
                self._release(key, existing)
            self._index(key, record)
        self.store.upsert(key, record)
        if notify:
            self.event_bus.emit(EVENT_TILE_PLACED, key=key, geometry=record.geometry, replaced=replaced)
            if moved:
                self.event_bus.emit(
                    EVENT_TILE_MOVED,
                    key=key,
                    old_geometry=existing.geometry,
                    new_geometry=record.geometry,
                )
        return key

    def _index(self, key: int, record: TileRecord) -> None:
        geometry = record.geometry
        region = self.regions.region_of(record.position)
        chunk_entity, slot = self.registries[geometry].place(region, key, record.mesh_mode)
        self.lookup.assign(key, TileLocation(geometry=geometry, chunk=chunk_entity, slot=slot))

    def _release(self, key: int, location: TileLocation) -> None:
        region = self.regions.region_of_key(key)
        if not self.registries[location.geometry].remove(region, key, location.chunk):
            log.warning("Tile %d was indexed at %s but its chunk did not hold it", key, location)
        self.lookup.discard(key)

    def _drop_indexes(self) -> None:
        for registry in self.registries.values():
            registry.clear()
        # Chunk entities no registry knows about are dropped as well.
        for entity, _ in list(self.world.get_component(InstanceChunk)):
            self.world.delete_entity(entity, immediate=True)
        self.lookup.clear()

    def _reset(self) -> None:
        self._drop_indexes()
        self.store.clear()
