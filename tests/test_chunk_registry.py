from esper import World

from tilestore.components.chunk_owner import ChunkOwner
from tilestore.components.instance_chunk import InstanceChunk
from tilestore.components.tile_record import GeometryType, MeshMode
from tilestore.config import StoreConfig
from tilestore.events.bus import EventBus, EVENT_CHUNK_CREATED, EVENT_CHUNK_DESTROYED
from tilestore.systems.chunk_registry import ChunkRegistry


def _registry(capacity=3, **kwargs):
    bus = EventBus()
    world = World()
    registry = ChunkRegistry(world, bus, GeometryType.SQUARE, StoreConfig(chunk_capacity=capacity), **kwargs)
    return world, bus, registry


def test_capacity_overflow_creates_second_chunk():
    world, bus, registry = _registry(capacity=3)
    created = []
    bus.subscribe(EVENT_CHUNK_CREATED, lambda s, **k: created.append(k))
    placements = [registry.place((0, 0, 0), key, MeshMode.SQUARE) for key in range(4)]
    first, second = registry.chunks_in((0, 0, 0))
    assert [chunk for chunk, _ in placements] == [first, first, first, second]
    assert world.component_for_entity(first, InstanceChunk).occupied_count == 3
    assert world.component_for_entity(second, InstanceChunk).occupied_count == 1
    assert registry.region_count() == 1
    assert registry.chunk_count() == registry.chunk_total == 2
    assert [event['region'] for event in created] == [(0, 0, 0), (0, 0, 0)]


def test_chunks_are_not_shared_across_regions():
    world, bus, registry = _registry()
    chunk_a, _ = registry.place((0, 0, 0), 1, MeshMode.SQUARE)
    chunk_b, _ = registry.place((1, 0, 0), 2, MeshMode.SQUARE)
    assert chunk_a != chunk_b
    assert world.component_for_entity(chunk_b, ChunkOwner).region == (1, 0, 0)
    assert world.component_for_entity(chunk_b, ChunkOwner).geometry == GeometryType.SQUARE
    assert registry.region_count() == 2


def test_removing_last_tile_drops_chunk_and_region():
    world, bus, registry = _registry()
    destroyed = []
    bus.subscribe(EVENT_CHUNK_DESTROYED, lambda s, **k: destroyed.append(k))
    chunk, _ = registry.place((2, 0, 0), 5, MeshMode.SQUARE)
    assert registry.remove((2, 0, 0), 5, chunk)
    assert registry.region_count() == 0
    assert registry.chunk_count() == registry.chunk_total == 0
    assert not world.entity_exists(chunk)
    assert destroyed == [{'chunk': chunk, 'geometry': GeometryType.SQUARE, 'region': (2, 0, 0)}]


def test_remove_reports_slot_moves():
    moves = []
    world, bus, registry = _registry(capacity=5, on_slot_moved=lambda key, loc: moves.append((key, loc)))
    for key in (1, 2, 3):
        chunk, _ = registry.place((0, 0, 0), key, MeshMode.SQUARE)
    assert registry.remove((0, 0, 0), 1, chunk)
    assert len(moves) == 1
    key, location = moves[0]
    assert key == 3
    assert (location.geometry, location.chunk, location.slot) == (GeometryType.SQUARE, chunk, 0)


def test_remove_with_wrong_region_or_key_fails():
    world, bus, registry = _registry()
    chunk, _ = registry.place((0, 0, 0), 1, MeshMode.SQUARE)
    assert not registry.remove((1, 0, 0), 1, chunk)
    assert not registry.remove((0, 0, 0), 2, chunk)
    assert world.component_for_entity(chunk, InstanceChunk).occupied_count == 1


def test_full_chunk_slot_freed_before_new_chunk_is_needed():
    world, bus, registry = _registry(capacity=2)
    first, _ = registry.place((0, 0, 0), 1, MeshMode.SQUARE)
    registry.place((0, 0, 0), 2, MeshMode.SQUARE)
    registry.remove((0, 0, 0), 1, first)
    chunk, slot = registry.place((0, 0, 0), 3, MeshMode.SQUARE)
    assert (chunk, slot) == (first, 1)
    assert registry.chunk_count() == 1


def test_clear_deletes_chunk_entities():
    world, bus, registry = _registry(capacity=1)
    chunks = [registry.place((0, 0, 0), key, MeshMode.SQUARE)[0] for key in range(3)]
    registry.clear()
    assert registry.chunk_count() == registry.chunk_total == 0
    assert not any(world.entity_exists(chunk) for chunk in chunks)
    assert list(world.get_component(InstanceChunk)) == []
