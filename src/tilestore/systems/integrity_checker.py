from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, TYPE_CHECKING

from tilestore.components.chunk_owner import ChunkOwner, RegionId
from tilestore.components.instance_chunk import InstanceChunk
from tilestore.components.tile_record import GeometryType, MeshMode, modes_for
from tilestore.systems.chunk_registry import get_chunk

if TYPE_CHECKING:
    from tilestore.storage import TileStorage

log = logging.getLogger(__name__)


@dataclass(slots=True)
class CountSnapshot:
    saved: int
    lookup: int
    visible: int
    tracked: Optional[int] = None
    operation: Optional[str] = None

    @property
    def consistent(self) -> bool:
        totals = {self.saved, self.lookup, self.visible}
        if self.tracked is not None:
            totals.add(self.tracked)
        return len(totals) == 1


@dataclass(slots=True)
class MeshModeConsistency:
    """Mesh mode distribution of one geometry, repeat variants folded in."""
    geometry: GeometryType
    store_counts: Dict[MeshMode, int]
    chunk_counts: Dict[MeshMode, int]

    @property
    def store_total(self) -> int:
        return sum(self.store_counts.values())

    @property
    def chunk_total(self) -> int:
        return sum(self.chunk_counts.values())

    @property
    def matches(self) -> bool:
        return all(
            self.store_counts.get(mode, 0) == self.chunk_counts.get(mode, 0)
            for mode in set(self.store_counts) | set(self.chunk_counts)
        )


@dataclass(slots=True)
class NearlyFullChunk:
    region: RegionId
    chunk: int
    occupied: int
    capacity: int

    @property
    def occupancy(self) -> float:
        return self.occupied / self.capacity


@dataclass(slots=True)
class ChunkStats:
    geometry: GeometryType
    regions: int = 0
    chunks: int = 0
    occupied: int = 0
    average_occupancy: float = 0.0
    peak_occupancy: float = 0.0
    nearly_full: List[NearlyFullChunk] = field(default_factory=list)


@dataclass(slots=True)
class OrphanedReference:
    source: str  # "chunk" or "lookup"
    key: int
    chunk: int
    slot: int
    reason: str


@dataclass(slots=True)
class RegistryBookkeeping:
    geometry: GeometryType
    listed: int
    counter: int
    entities: int
    empty_chunks: List[int] = field(default_factory=list)
    unregistered: List[int] = field(default_factory=list)
    dead_handles: List[int] = field(default_factory=list)
    misplaced: List[int] = field(default_factory=list)

    @property
    def consistent(self) -> bool:
        return (
            self.listed == self.counter == self.entities
            and not self.empty_chunks
            and not self.unregistered
            and not self.dead_handles
            and not self.misplaced
        )


@dataclass(slots=True)
class IntegrityReport:
    counts: CountSnapshot
    mesh_modes: List[MeshModeConsistency] = field(default_factory=list)
    chunk_stats: List[ChunkStats] = field(default_factory=list)
    orphans: List[OrphanedReference] = field(default_factory=list)
    bookkeeping: List[RegistryBookkeeping] = field(default_factory=list)
    missing_from_lookup: List[int] = field(default_factory=list)
    missing_from_store: List[int] = field(default_factory=list)
    issues: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.issues

    @property
    def nearly_full(self) -> List[NearlyFullChunk]:
        return [entry for stats in self.chunk_stats for entry in stats.nearly_full]


class IntegrityChecker:
    """Read-only audit of the store, lookup index, chunks and registries.

    Every figure is recomputed from a different source so the comparisons are
    independent. Mismatches become issue strings on the report; nothing is
    repaired and nothing raises. Run it between mutations, never during one.
    """

    def __init__(self, storage: "TileStorage"):
        self.storage = storage

    def check(self) -> IntegrityReport:
        report = IntegrityReport(counts=self._counts())
        self._check_counts(report)
        self._check_membership(report)
        self._check_mesh_modes(report)
        self._check_orphans(report)
        self._check_bookkeeping(report)
        self._collect_chunk_stats(report)
        if report.issues:
            log.warning("Integrity check found %d issue(s)", len(report.issues))
        return report

    def _counts(self) -> CountSnapshot:
        storage = self.storage
        visible = sum(
            chunk.visible_count
            for registry in storage.registries.values()
            for _, _, chunk in registry.iter_chunks()
        )
        tracker = storage.tracker
        return CountSnapshot(
            saved=storage.store.count(),
            lookup=storage.lookup.count(),
            visible=visible,
            tracked=tracker.tracked_count if tracker is not None else None,
            operation=tracker.current_kind if tracker is not None else None,
        )

    def _check_counts(self, report: IntegrityReport) -> None:
        counts = report.counts
        if counts.consistent:
            return
        detail = f"saved={counts.saved}, lookup={counts.lookup}, visible={counts.visible}"
        if counts.tracked is not None:
            detail += f", tracked={counts.tracked}"
        if counts.operation is not None:
            detail += f" (operation '{counts.operation}' in progress)"
        report.issues.append(f"Count mismatch: {detail}")

    def _check_membership(self, report: IntegrityReport) -> None:
        store_keys = set(self.storage.store.keys())
        lookup_keys = set(self.storage.lookup.keys())
        report.missing_from_lookup = sorted(store_keys - lookup_keys)
        report.missing_from_store = sorted(lookup_keys - store_keys)
        if report.missing_from_lookup:
            report.issues.append(f"{len(report.missing_from_lookup)} saved tile(s) have no lookup entry")
        if report.missing_from_store:
            report.issues.append(f"{len(report.missing_from_store)} lookup entr(ies) have no saved tile")

    def _check_mesh_modes(self, report: IntegrityReport) -> None:
        store_counts = self.storage.store.mode_counts()
        for geometry, registry in self.storage.registries.items():
            chunk_counts: Dict[MeshMode, int] = {}
            for _, _, chunk in registry.iter_chunks():
                for mode, amount in chunk.mode_counts().items():
                    chunk_counts[mode] = chunk_counts.get(mode, 0) + amount
            entry = MeshModeConsistency(
                geometry=geometry,
                store_counts={mode: store_counts[mode] for mode in modes_for(geometry) if store_counts.get(mode)},
                chunk_counts=chunk_counts,
            )
            report.mesh_modes.append(entry)
            if not entry.matches:
                report.issues.append(
                    f"{geometry.name} mesh modes differ: saved {_format_modes(entry.store_counts)} "
                    f"vs chunks {_format_modes(entry.chunk_counts)}"
                )

    def _check_orphans(self, report: IntegrityReport) -> None:
        world = self.storage.world
        for geometry, registry in self.storage.registries.items():
            for _, chunk_entity, chunk in registry.iter_chunks():
                for key, slot in chunk.orphaned_slots():
                    reason = "slot beyond occupied count" if slot >= chunk.occupied_count else "occupant key mismatch"
                    report.orphans.append(OrphanedReference("chunk", key, chunk_entity, slot, reason))
                for slot, entry in enumerate(chunk.slots):
                    if chunk.key_to_slot.get(entry.key) != slot:
                        report.orphans.append(
                            OrphanedReference("chunk", entry.key, chunk_entity, slot, "slot not mapped")
                        )
        for key, location in self.storage.lookup.items():
            chunk = get_chunk(world, location.chunk)
            reason = None
            if chunk is None:
                reason = "dead chunk handle"
            elif chunk.geometry != location.geometry:
                reason = "geometry mismatch"
            elif location.slot >= chunk.occupied_count:
                reason = "slot beyond occupied count"
            elif chunk.key_at(location.slot) != key:
                reason = "occupant key mismatch"
            if reason is not None:
                report.orphans.append(OrphanedReference("lookup", key, location.chunk, location.slot, reason))
        if report.orphans:
            report.issues.append(f"{len(report.orphans)} orphaned reference(s)")

    def _check_bookkeeping(self, report: IntegrityReport) -> None:
        world = self.storage.world
        entities_by_geometry: Dict[GeometryType, Dict[int, ChunkOwner]] = {g: {} for g in GeometryType}
        for entity, (_, owner) in world.get_components(InstanceChunk, ChunkOwner):
            entities_by_geometry.setdefault(owner.geometry, {})[entity] = owner
        for geometry, registry in self.storage.registries.items():
            owned = entities_by_geometry.get(geometry, {})
            entries = registry.region_entries()
            registered = {entity for ids in entries.values() for entity in ids}
            entry = RegistryBookkeeping(
                geometry=geometry,
                listed=registry.chunk_count(),
                counter=registry.chunk_total,
                entities=len(owned),
                unregistered=sorted(set(owned) - registered),
                dead_handles=sorted(registered - set(owned)),
            )
            for region, ids in entries.items():
                for entity in ids:
                    owner = owned.get(entity)
                    if owner is not None and owner.region != region:
                        entry.misplaced.append(entity)
                    chunk = get_chunk(world, entity)
                    if chunk is not None and chunk.is_empty():
                        entry.empty_chunks.append(entity)
            report.bookkeeping.append(entry)
            if not (entry.listed == entry.counter == entry.entities):
                report.issues.append(
                    f"{geometry.name} registry/array inconsistency: listed={entry.listed}, "
                    f"counter={entry.counter}, entities={entry.entities}"
                )
            if entry.unregistered:
                report.issues.append(f"{geometry.name}: {len(entry.unregistered)} chunk(s) missing from registry")
            if entry.dead_handles:
                report.issues.append(f"{geometry.name}: {len(entry.dead_handles)} registry handle(s) without a chunk")
            if entry.misplaced:
                report.issues.append(f"{geometry.name}: {len(entry.misplaced)} chunk(s) listed under the wrong region")
            if entry.empty_chunks:
                report.issues.append(f"{geometry.name}: {len(entry.empty_chunks)} empty chunk(s) retained")

    def _collect_chunk_stats(self, report: IntegrityReport) -> None:
        threshold = self.storage.config.nearly_full_threshold
        for geometry, registry in self.storage.registries.items():
            stats = ChunkStats(geometry=geometry, regions=registry.region_count())
            ratios: List[float] = []
            for region, chunk_entity, chunk in registry.iter_chunks():
                stats.chunks += 1
                stats.occupied += chunk.occupied_count
                ratios.append(chunk.occupancy)
                if chunk.occupancy >= threshold:
                    stats.nearly_full.append(
                        NearlyFullChunk(region, chunk_entity, chunk.occupied_count, chunk.capacity)
                    )
            if ratios:
                stats.average_occupancy = sum(ratios) / len(ratios)
                stats.peak_occupancy = max(ratios)
            report.chunk_stats.append(stats)


def _format_modes(counts: Dict[MeshMode, int]) -> str:
    if not counts:
        return "{}"
    parts = ", ".join(f"{mode.slug}: {counts[mode]}" for mode in sorted(counts))
    return "{" + parts + "}"
