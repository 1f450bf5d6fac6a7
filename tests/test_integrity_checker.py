import logging

from tilestore.components.chunk_owner import ChunkOwner
from tilestore.components.instance_chunk import InstanceChunk
from tilestore.components.tile_location import TileLocation
from tilestore.components.tile_record import GeometryType, MeshMode, Orientation
from tilestore.config import StoreConfig
from tilestore.systems.integrity_checker import IntegrityChecker
from tilestore.world import create_storage
from tests.helpers import place_grid


def _storage(count=6, **config):
    storage = create_storage(config=StoreConfig(**config))
    keys = place_grid(storage, count)
    return storage, keys


def test_clean_storage_reports_no_issues():
    storage, _ = _storage(count=25, chunk_capacity=10)
    report = IntegrityChecker(storage).check()
    assert report.ok
    counts = report.counts
    assert (counts.saved, counts.lookup, counts.visible, counts.tracked) == (25, 25, 25, 25)
    assert counts.operation is None
    square = next(stats for stats in report.chunk_stats if stats.geometry == GeometryType.SQUARE)
    assert square.chunks == 3
    assert square.occupied == 25
    assert square.peak_occupancy == 1.0


def test_check_does_not_mutate():
    storage, keys = _storage()
    chunk = storage.chunk_at(keys[0])
    chunk.key_to_slot[keys[0]] = 42
    slots_before = list(chunk.slots)
    mapping_before = dict(chunk.key_to_slot)
    first = IntegrityChecker(storage).check()
    second = IntegrityChecker(storage).check()
    assert first.issues == second.issues
    assert chunk.slots == slots_before
    assert chunk.key_to_slot == mapping_before
    assert storage.count() == 6


def test_corrupted_chunk_mapping_is_reported_as_orphan():
    storage, keys = _storage()
    storage.chunk_at(keys[2]).key_to_slot[keys[2]] = 17
    report = IntegrityChecker(storage).check()
    assert not report.ok
    reasons = {(orphan.source, orphan.reason) for orphan in report.orphans}
    assert ('chunk', 'slot beyond occupied count') in reasons
    assert ('chunk', 'slot not mapped') in reasons
    assert any('orphaned reference' in issue for issue in report.issues)


def test_lookup_pointing_past_occupied_slots():
    storage, keys = _storage()
    location = storage.resolve(keys[1])
    storage.lookup.update_location(keys[1], TileLocation(location.geometry, location.chunk, 99))
    report = IntegrityChecker(storage).check()
    assert [(o.source, o.key, o.reason) for o in report.orphans] == [
        ('lookup', keys[1], 'slot beyond occupied count'),
    ]


def test_lookup_with_dead_chunk_handle():
    storage, keys = _storage()
    storage.lookup.update_location(keys[0], TileLocation(GeometryType.SQUARE, 10_000, 0))
    report = IntegrityChecker(storage).check()
    assert [o.reason for o in report.orphans] == ['dead chunk handle']


def test_chunk_counter_drift_is_reported():
    storage, _ = _storage()
    storage.registries[GeometryType.SQUARE].chunk_total += 1
    report = IntegrityChecker(storage).check()
    assert 'SQUARE registry/array inconsistency: listed=1, counter=2, entities=1' in report.issues


def test_unregistered_chunk_entity_is_reported():
    storage, _ = _storage()
    stray = storage.world.create_entity(
        InstanceChunk(geometry=GeometryType.SQUARE, capacity=10),
        ChunkOwner(geometry=GeometryType.SQUARE, region=(0, 0, 0)),
    )
    report = IntegrityChecker(storage).check()
    square = next(entry for entry in report.bookkeeping if entry.geometry == GeometryType.SQUARE)
    assert square.unregistered == [stray]
    assert square.entities == 2
    assert not report.ok


def test_count_mismatch_with_tracker():
    storage, _ = _storage()
    storage.tracker.tracked_count += 2
    report = IntegrityChecker(storage).check()
    assert report.counts.tracked == 8
    assert report.issues[0] == 'Count mismatch: saved=6, lookup=6, visible=6, tracked=8'


def test_store_only_removal_is_detected():
    storage, keys = _storage()
    storage.store.remove(keys[3])
    report = IntegrityChecker(storage).check()
    assert report.missing_from_store == [keys[3]]
    assert report.missing_from_lookup == []
    assert report.issues[0].startswith('Count mismatch')


def test_mesh_mode_mismatch_between_store_and_chunk():
    storage = create_storage()
    key = storage.place((0.0, 0.0, 0.0), Orientation.UP_0, MeshMode.BOX)
    storage.chunk_at(key).update_mode(key, MeshMode.BOX_REPEAT)
    report = IntegrityChecker(storage).check()
    box = next(entry for entry in report.mesh_modes if entry.geometry == GeometryType.BOX)
    assert not box.matches
    assert box.store_total == box.chunk_total == 1
    assert 'BOX mesh modes differ: saved {box: 1} vs chunks {box_repeat: 1}' in report.issues


def test_repeat_variants_are_grouped_with_their_geometry():
    storage = create_storage()
    storage.place((0.0, 0.0, 0.0), Orientation.UP_0, MeshMode.PRISM)
    storage.place((1.0, 0.0, 0.0), Orientation.UP_0, MeshMode.PRISM_REPEAT)
    storage.place((2.0, 0.0, 0.0), Orientation.UP_0, MeshMode.PRISM_REPEAT)
    report = IntegrityChecker(storage).check()
    prism = next(entry for entry in report.mesh_modes if entry.geometry == GeometryType.PRISM)
    assert prism.matches
    assert prism.store_counts == {MeshMode.PRISM: 1, MeshMode.PRISM_REPEAT: 2}
    assert storage.chunk_count(GeometryType.PRISM) == 1
    assert report.ok


def test_issues_are_logged(caplog):
    storage, _ = _storage()
    storage.tracker.tracked_count = 0
    with caplog.at_level(logging.WARNING, logger='tilestore.systems.integrity_checker'):
        IntegrityChecker(storage).check()
    assert 'Integrity check found 1 issue(s)' in caplog.text
