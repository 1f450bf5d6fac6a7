from __future__ import annotations

import logging
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from esper import World

from tilestore.components.chunk_owner import ChunkOwner, RegionId
from tilestore.components.instance_chunk import InstanceChunk
from tilestore.components.tile_location import TileLocation
from tilestore.components.tile_record import GeometryType, MeshMode
from tilestore.config import StoreConfig
from tilestore.events.bus import EventBus, EVENT_CHUNK_CREATED, EVENT_CHUNK_DESTROYED

log = logging.getLogger(__name__)

SlotMovedCallback = Callable[[int, TileLocation], None]


def get_chunk(world: World, chunk_entity: int) -> InstanceChunk | None:
    """Return the chunk component of ``chunk_entity``, or None if the entity or component is gone."""
    try:
        return world.component_for_entity(chunk_entity, InstanceChunk)
    except KeyError:
        return None


class ChunkRegistry:
    """Region -> chunk list bookkeeping for a single geometry type.

    Chunks are world entities carrying InstanceChunk + ChunkOwner; the registry
    only keeps entity ids. A region gains a second chunk only once every
    existing chunk of that region is full, and loses chunks as soon as they
    empty out so region and chunk counts never drift upward.

    ``on_slot_moved`` is invoked whenever swap compaction relocates a tile,
    before ``remove`` returns.
    """

    def __init__(
        self,
        world: World,
        event_bus: EventBus,
        geometry: GeometryType,
        config: StoreConfig | None = None,
        *,
        on_slot_moved: Optional[SlotMovedCallback] = None,
    ):
        self.world = world
        self.event_bus = event_bus
        self.geometry = geometry
        self.config = config or StoreConfig()
        self.on_slot_moved = on_slot_moved
        self._regions: Dict[RegionId, List[int]] = {}
        # Flat counter maintained alongside the region lists; audited against them.
        self.chunk_total = 0

    def place(self, region: RegionId, key: int, mesh_mode: MeshMode) -> Tuple[int, int]:
        """Insert ``key`` into the first chunk of ``region`` with room, creating one if needed."""
        for chunk_entity in self._regions.get(region, ()):
            chunk = get_chunk(self.world, chunk_entity)
            if chunk is None:
                continue
            slot = chunk.try_insert(key, mesh_mode)
            if slot is not None:
                return chunk_entity, slot
        chunk_entity = self._create_chunk(region)
        chunk = self.world.component_for_entity(chunk_entity, InstanceChunk)
        slot = chunk.try_insert(key, mesh_mode)
        if slot is None:
            raise RuntimeError(f"Freshly created chunk {chunk_entity} rejected key {key}")
        return chunk_entity, slot

    def remove(self, region: RegionId, key: int, chunk_entity: int) -> bool:
        """Free ``key`` from ``chunk_entity``; the handle comes from the lookup index."""
        chunk_ids = self._regions.get(region)
        if not chunk_ids or chunk_entity not in chunk_ids:
            return False
        chunk = get_chunk(self.world, chunk_entity)
        if chunk is None:
            return False
        removal = chunk.remove(key)
        if not removal.removed:
            return False
        if removal.moved_key is not None and self.on_slot_moved is not None:
            self.on_slot_moved(
                removal.moved_key,
                TileLocation(geometry=self.geometry, chunk=chunk_entity, slot=removal.moved_to),
            )
        if chunk.is_empty():
            self._destroy_chunk(region, chunk_entity)
        return True

    def update_mode(self, chunk_entity: int, key: int, mesh_mode: MeshMode) -> bool:
        chunk = get_chunk(self.world, chunk_entity)
        if chunk is None:
            return False
        return chunk.update_mode(key, mesh_mode)

    def chunk(self, chunk_entity: int) -> InstanceChunk | None:
        return get_chunk(self.world, chunk_entity)

    def chunks_in(self, region: RegionId) -> List[int]:
        return list(self._regions.get(region, ()))

    def regions(self) -> List[RegionId]:
        return list(self._regions.keys())

    def region_count(self) -> int:
        return len(self._regions)

    def chunk_count(self) -> int:
        """Chunk count derived from the region lists (compare with ``chunk_total``)."""
        return sum(len(ids) for ids in self._regions.values())

    def occupied_count(self) -> int:
        return sum(chunk.occupied_count for _, _, chunk in self.iter_chunks())

    def iter_chunks(self) -> Iterator[Tuple[RegionId, int, InstanceChunk]]:
        """Yield ``(region, entity, chunk)``; handles whose entity is gone are skipped."""
        for region, chunk_ids in self._regions.items():
            for chunk_entity in chunk_ids:
                chunk = get_chunk(self.world, chunk_entity)
                if chunk is not None:
                    yield region, chunk_entity, chunk

    def region_entries(self) -> Dict[RegionId, List[int]]:
        return {region: list(ids) for region, ids in self._regions.items()}

    def clear(self) -> None:
        """Delete every chunk entity owned by this registry."""
        for chunk_ids in self._regions.values():
            for chunk_entity in chunk_ids:
                if self.world.entity_exists(chunk_entity):
                    self.world.delete_entity(chunk_entity, immediate=True)
        self._regions.clear()
        self.chunk_total = 0

    def _create_chunk(self, region: RegionId) -> int:
        chunk_entity = self.world.create_entity(
            InstanceChunk(geometry=self.geometry, capacity=self.config.chunk_capacity),
            ChunkOwner(geometry=self.geometry, region=region),
        )
        self._regions.setdefault(region, []).append(chunk_entity)
        self.chunk_total += 1
        log.debug("Created %s chunk %d in region %s", self.geometry.name, chunk_entity, region)
        self.event_bus.emit(EVENT_CHUNK_CREATED, chunk=chunk_entity, geometry=self.geometry, region=region)
        return chunk_entity

    def _destroy_chunk(self, region: RegionId, chunk_entity: int) -> None:
        chunk_ids = self._regions[region]
        chunk_ids.remove(chunk_entity)
        if not chunk_ids:
            del self._regions[region]
        self.world.delete_entity(chunk_entity, immediate=True)
        self.chunk_total -= 1
        log.debug("Destroyed empty %s chunk %d in region %s", self.geometry.name, chunk_entity, region)
        self.event_bus.emit(EVENT_CHUNK_DESTROYED, chunk=chunk_entity, geometry=self.geometry, region=region)
