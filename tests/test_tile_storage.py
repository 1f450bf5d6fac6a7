import random

import pytest

from tilestore.components.tile_record import GeometryType, MeshMode, Orientation, TileFlags, TileRecord, TransformOverride
from tilestore.config import StoreConfig
from tilestore.errors import CoordinateOutOfRange, InvalidOrientation
from tilestore.events.bus import EVENT_TILE_ERASED, EVENT_TILE_MOVED, EVENT_TILE_PLACED
from tilestore.systems.integrity_checker import IntegrityChecker
from tilestore.world import create_storage
from tests.helpers import place_grid


def _assert_consistent(storage):
    report = IntegrityChecker(storage).check()
    assert report.ok, report.issues
    assert storage.count() == storage.lookup.count() == storage.visible_count()


def test_thousand_tiles_fill_one_chunk_then_overflow():
    storage = create_storage()
    place_grid(storage, 1000)
    assert storage.count() == 1000
    assert storage.chunk_count(GeometryType.SQUARE) == 1
    report = IntegrityChecker(storage).check()
    assert report.ok, report.issues
    assert len(report.nearly_full) == 1
    assert report.nearly_full[0].occupied == 1000

    key = storage.place((10.5, 0.0, 0.0), Orientation.UP_0)
    assert storage.count() == 1001
    assert storage.chunk_count(GeometryType.SQUARE) == 2
    assert storage.region_count(GeometryType.SQUARE) == 1
    assert storage.chunk_at(key).occupied_count == 1
    _assert_consistent(storage)


def test_same_position_and_orientation_replaces():
    storage = create_storage()
    placed = []
    storage.event_bus.subscribe(EVENT_TILE_PLACED, lambda s, **k: placed.append(k['replaced']))
    first = storage.place((1.0, 2.0, 3.0), Orientation.NORTH_90)
    second = storage.place((1.0004, 2.0, 3.0), Orientation.NORTH_90, flags=TileFlags.LOCKED)
    assert first == second
    assert storage.count() == 1
    assert storage.get(first).flags == TileFlags.LOCKED
    assert placed == [False, True]
    _assert_consistent(storage)


def test_different_orientation_is_a_different_tile():
    storage = create_storage()
    a = storage.place((0.0, 0.0, 0.0), Orientation.UP_0)
    b = storage.place((0.0, 0.0, 0.0), Orientation.EAST_180)
    assert a != b
    assert storage.count() == 2


def test_invalid_input_leaves_storage_untouched():
    storage = create_storage()
    storage.place((0.0, 0.0, 0.0), Orientation.UP_0)
    with pytest.raises(InvalidOrientation):
        storage.place((1.0, 0.0, 0.0), 24)
    with pytest.raises(CoordinateOutOfRange):
        storage.place((float('inf'), 0.0, 0.0), Orientation.UP_0)
    assert storage.count() == 1
    _assert_consistent(storage)


def test_erase_compacts_and_updates_lookup():
    storage = create_storage(config=StoreConfig(chunk_capacity=5))
    keys = place_grid(storage, 3)
    assert storage.erase(keys[0])
    moved = storage.resolve(keys[2])
    assert moved.slot == 0
    assert storage.chunk_at(keys[2]).key_at(0) == keys[2]
    assert storage.erase(keys[2])
    assert storage.resolve(keys[1]).slot == 0
    _assert_consistent(storage)


def test_erase_missing_key_is_a_no_op():
    storage = create_storage()
    erased = []
    storage.event_bus.subscribe(EVENT_TILE_ERASED, lambda s, **k: erased.append(k))
    key = storage.key_for((4.0, 0.0, 0.0), Orientation.UP_0)
    assert storage.erase(key) is False
    assert erased == []
    assert storage.erase_at((4.0, 0.0, 0.0), Orientation.UP_0) is False


def test_erase_last_tile_releases_chunk_and_region():
    storage = create_storage()
    key = storage.place((40.0, 0.0, 0.0), Orientation.UP_0, MeshMode.PRISM)
    assert storage.chunk_count(GeometryType.PRISM) == 1
    assert storage.erase(key)
    assert storage.chunk_count() == 0
    assert storage.region_count() == 0
    assert storage.resolve(key) is None


def test_removed_slot_is_reused():
    storage = create_storage(config=StoreConfig(chunk_capacity=4))
    keys = place_grid(storage, 4)
    chunk_entity = storage.resolve(keys[0]).chunk
    storage.erase(keys[3])
    key = storage.place((9.0, 0.0, 0.0), Orientation.UP_0)
    location = storage.resolve(key)
    assert (location.chunk, location.slot) == (chunk_entity, 3)
    assert storage.chunk_count() == 1


def test_mesh_mode_change_within_geometry_keeps_slot():
    storage = create_storage()
    key = storage.place((0.0, 0.0, 0.0), Orientation.UP_0, MeshMode.BOX)
    before = storage.resolve(key)
    assert storage.set_mesh_mode(key, MeshMode.BOX_REPEAT)
    assert storage.resolve(key) == before
    assert storage.chunk_at(key).slots[before.slot].mesh_mode == MeshMode.BOX_REPEAT
    assert storage.get(key).mesh_mode == MeshMode.BOX_REPEAT
    _assert_consistent(storage)


def test_geometry_change_moves_tile_between_registries():
    storage = create_storage()
    moves = []
    storage.event_bus.subscribe(EVENT_TILE_MOVED, lambda s, **k: moves.append(k))
    key = storage.place((0.0, 0.0, 0.0), Orientation.UP_0, MeshMode.SQUARE)
    assert storage.set_mesh_mode(key, MeshMode.TRIANGLE)
    assert storage.chunk_count(GeometryType.SQUARE) == 0
    assert storage.chunk_count(GeometryType.TRIANGLE) == 1
    assert storage.resolve(key).geometry == GeometryType.TRIANGLE
    assert moves == [{'key': key, 'old_geometry': GeometryType.SQUARE, 'new_geometry': GeometryType.TRIANGLE}]
    assert storage.count() == 1
    _assert_consistent(storage)


def test_transform_and_flags_updates():
    storage = create_storage()
    key = storage.place((0.0, 0.0, 0.0), Orientation.UP_0)
    override = TransformOverride(offset=(0.0, 0.25, 0.0))
    assert storage.set_transform(key, override)
    assert storage.set_flags(key, TileFlags.DOUBLE_SIDED | TileFlags.FLIP_UV)
    record = storage.get(key)
    assert record.transform == override
    assert TileFlags.FLIP_UV in record.flags
    assert storage.set_transform(key, None)
    assert storage.get(key).transform is None
    assert storage.set_flags(12345, TileFlags.HIDDEN) is False


def test_reorient_changes_key():
    storage = create_storage()
    key = storage.place((2.0, 0.0, 2.0), Orientation.UP_0, MeshMode.BOX)
    new_key = storage.reorient(key, Orientation.UP_90)
    assert new_key != key
    assert not storage.exists(key)
    assert storage.get(new_key).orientation == Orientation.UP_90
    assert storage.get(new_key).mesh_mode == MeshMode.BOX
    assert storage.reorient(new_key, Orientation.UP_90) == new_key
    assert storage.reorient(key, Orientation.UP_0) is None
    assert storage.tracker.tracked_count == 1
    _assert_consistent(storage)


def test_random_placement_and_erasure_stays_consistent():
    rng = random.Random(7)
    storage = create_storage(config=StoreConfig(chunk_capacity=4, region_size=8.0))
    modes = list(MeshMode)
    cells = [(float(x), float(y), float(z)) for x in range(-12, 12, 3) for y in (0, 9) for z in (-1, 5)]
    for _ in range(400):
        position = rng.choice(cells)
        orientation = rng.choice([Orientation.UP_0, Orientation.SOUTH_270])
        if rng.random() < 0.6:
            storage.place(position, orientation, rng.choice(modes))
        else:
            storage.erase_at(position, orientation)
        assert storage.count() == storage.lookup.count() == storage.visible_count()
    _assert_consistent(storage)
    for key in list(storage.store.keys()):
        assert storage.erase(key)
    assert storage.chunk_count() == 0
    assert storage.region_count() == 0
    _assert_consistent(storage)


def test_rebuild_index_repairs_corruption():
    storage = create_storage(config=StoreConfig(chunk_capacity=8))
    keys = place_grid(storage, 20)
    storage.lookup.discard(keys[4])
    chunk = storage.chunk_at(keys[9])
    chunk.key_to_slot[keys[9]] = 99
    assert not IntegrityChecker(storage).check().ok

    assert storage.rebuild_index() == 20
    _assert_consistent(storage)
    assert storage.chunk_count() == 3


def test_load_records_last_duplicate_wins():
    storage = create_storage()
    storage.place((5.0, 5.0, 5.0), Orientation.UP_0)
    records = [
        storage.get(storage.key_for((5.0, 5.0, 5.0), Orientation.UP_0)),
    ]
    first = storage.place((0.0, 0.0, 0.0), Orientation.UP_0, MeshMode.BOX)
    records.append(storage.get(first))
    records.append(TileRecord(position=(0.0, 0.0, 0.0), orientation=Orientation.UP_0, mesh_mode=MeshMode.PRISM))
    assert storage.load_records(records) == 2
    assert storage.get(first).mesh_mode == MeshMode.PRISM
    assert storage.tracker.tracked_count == 2
    _assert_consistent(storage)


def test_clear_resets_everything():
    storage = create_storage()
    place_grid(storage, 30, mesh_mode=MeshMode.TRIANGLE)
    storage.clear()
    assert storage.count() == 0
    assert storage.chunk_count() == 0
    assert storage.tracker.tracked_count == 0
    _assert_consistent(storage)


def test_view_exposes_records_without_slots():
    storage = create_storage()
    key = storage.place((1.0, 0.0, 0.0), Orientation.DOWN_180, MeshMode.PRISM_REPEAT)
    view = storage.view()
    assert len(view) == 1
    assert key in view
    assert view.key_for((1.0, 0.0, 0.0), Orientation.DOWN_180) == key
    assert view.get(key).mesh_mode == MeshMode.PRISM_REPEAT
    assert [record.position for record in view] == [(1.0, 0.0, 0.0)]
    assert not hasattr(view, 'resolve')
    assert not hasattr(view, 'chunk_at')


def test_failed_load_records_keeps_previous_content():
    storage = create_storage()
    keys = place_grid(storage, 5)
    records = [
        TileRecord(position=(0.0, 0.0, 0.0), orientation=Orientation.UP_0),
        TileRecord(position=(float('nan'), 0.0, 0.0), orientation=Orientation.UP_0),
    ]
    with pytest.raises(CoordinateOutOfRange):
        storage.load_records(records)
    assert sorted(storage.store.keys()) == sorted(keys)
    assert storage.tracker.tracked_count == 5
    _assert_consistent(storage)
