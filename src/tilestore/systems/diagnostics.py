from __future__ import annotations

from dataclasses import dataclass
from typing import List, TYPE_CHECKING

from tilestore import constants
from tilestore.systems.integrity_checker import IntegrityChecker, IntegrityReport

if TYPE_CHECKING:
    from tilestore.storage import TileStorage


@dataclass(slots=True)
class StorageEstimate:
    tiles: int
    transform_overrides: int
    total_bytes: int

    @property
    def bytes_per_tile(self) -> float:
        if not self.tiles:
            return 0.0
        return self.total_bytes / self.tiles


def estimate_storage(tiles: int, transform_overrides: int) -> StorageEstimate:
    """Columnar layout size: fixed per-tile fields plus the sparse transform rows."""
    per_tile = constants.POSITION_BYTES + constants.PACKED_STATE_BYTES + constants.TRANSFORM_INDEX_BYTES
    total = tiles * per_tile + transform_overrides * constants.TRANSFORM_OVERRIDE_BYTES
    return StorageEstimate(tiles=tiles, transform_overrides=transform_overrides, total_bytes=total)


class DiagnosticReporter:
    """Renders an IntegrityReport plus storage figures as plain text."""

    def __init__(self, storage: "TileStorage", checker: IntegrityChecker | None = None):
        self.storage = storage
        self.checker = checker or IntegrityChecker(storage)

    def storage_estimate(self) -> StorageEstimate:
        return estimate_storage(self.storage.store.count(), self.storage.store.transform_count())

    def generate_report(self) -> str:
        report = self.checker.check()
        lines: List[str] = ["=== Tile Storage Health ==="]
        lines.extend(self._count_lines(report))
        lines.append("")
        lines.append("-- Mesh modes --")
        for entry in report.mesh_modes:
            status = "OK" if entry.matches else "MISMATCH"
            lines.append(
                f"{entry.geometry.name}: saved={entry.store_total} chunks={entry.chunk_total} [{status}]"
            )
            for mode in sorted(set(entry.store_counts) | set(entry.chunk_counts)):
                lines.append(
                    f"  {mode.slug}: saved={entry.store_counts.get(mode, 0)} "
                    f"chunks={entry.chunk_counts.get(mode, 0)}"
                )
        lines.append("")
        lines.append("-- Chunks --")
        threshold_pct = self.storage.config.nearly_full_threshold * 100
        for stats in report.chunk_stats:
            lines.append(
                f"{stats.geometry.name}: regions={stats.regions} chunks={stats.chunks} "
                f"avg={stats.average_occupancy * 100:.1f}% peak={stats.peak_occupancy * 100:.1f}%"
            )
            entries = self.storage.registries[stats.geometry].region_entries()
            for region in sorted(entries):
                lines.append(f"  region {region}: chunks={len(entries[region])}")
            for entry in stats.nearly_full:
                lines.append(
                    f"  chunk nearly full: region={entry.region} chunk={entry.chunk} "
                    f"{entry.occupied}/{entry.capacity} (>= {threshold_pct:.0f}%)"
                )
        lines.append("")
        lines.append("-- Storage --")
        estimate = self.storage_estimate()
        lines.append(
            f"tiles={estimate.tiles} transform_overrides={estimate.transform_overrides} "
            f"bytes={estimate.total_bytes} bytes_per_tile={estimate.bytes_per_tile:.1f}"
        )
        migration = self.storage.migration
        if migration is not None:
            lines.append(f"migration: {migration.state.name.lower()} ({migration.loaded} tiles)")
            for warning in migration.warnings:
                lines.append(f"  warning: {warning}")
        lines.append("")
        lines.append("-- Issues --")
        if report.issues:
            lines.extend(f"- {issue}" for issue in report.issues)
            for orphan in report.orphans[:10]:
                lines.append(
                    f"  orphan ({orphan.source}): key={orphan.key} chunk={orphan.chunk} "
                    f"slot={orphan.slot} {orphan.reason}"
                )
        else:
            lines.append("none")
        return "\n".join(lines)

    def _count_lines(self, report: IntegrityReport) -> List[str]:
        counts = report.counts
        tracked = "n/a" if counts.tracked is None else str(counts.tracked)
        status = "OK" if counts.consistent else "MISMATCH"
        lines = [
            f"saved={counts.saved} lookup={counts.lookup} visible={counts.visible} tracked={tracked} [{status}]"
        ]
        if not counts.consistent:
            lines.append(f"  lookup-saved={counts.lookup - counts.saved:+d}")
            lines.append(f"  visible-saved={counts.visible - counts.saved:+d}")
            if counts.tracked is not None:
                lines.append(f"  tracked-saved={counts.tracked - counts.saved:+d}")
        if counts.operation is not None:
            lines.append(f"  operation in progress: {counts.operation}")
        return lines
