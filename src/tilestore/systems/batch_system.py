from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, List, Optional, Sequence, TYPE_CHECKING

from tilestore.components.tile_record import MeshMode, TileFlags, TileRecord, coerce_orientation
from tilestore.errors import BatchTooLarge
from tilestore.events.bus import (
    EVENT_BATCH_COMPLETED,
    EVENT_BATCH_PROGRESS,
    EVENT_BATCH_STARTED,
)
from tilestore.utils.step_throttle import StepThrottle

if TYPE_CHECKING:
    from tilestore.storage import TileStorage

log = logging.getLogger(__name__)

BATCH_FILL = "fill"
BATCH_ERASE = "erase"


@dataclass(slots=True)
class BatchJob:
    """A planned fill (records to place) or erase (keys to remove)."""
    kind: str
    records: List[TileRecord] = field(default_factory=list)
    keys: List[int] = field(default_factory=list)
    cursor: int = 0
    applied: int = 0

    @property
    def total(self) -> int:
        return len(self.records) if self.kind == BATCH_FILL else len(self.keys)

    @property
    def done(self) -> bool:
        return self.cursor >= self.total


class BatchSystem:
    """Area fill / erase on top of TileStorage.

    Every batch is planned in full and checked against ``max_batch_tiles``
    before any tile changes, so an oversized request fails with BatchTooLarge
    instead of half-applying. Immediate calls (``fill_box``/``erase_box``)
    apply everything at once; submitted jobs are applied by ``step`` in slices
    of ``batch_step_size`` tiles, one job at a time, gated by a StepThrottle.
    Each job runs inside one placement-tracker operation when a tracker exists.
    """

    def __init__(self, storage: "TileStorage", *, throttle: Optional[StepThrottle] = None):
        self.storage = storage
        self.event_bus = storage.event_bus
        self.config = storage.config
        self.throttle = throttle or StepThrottle(min_interval=self.config.batch_min_interval)
        self._queue: Deque[BatchJob] = deque()
        self._active: Optional[BatchJob] = None

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------
    def plan_fill(
        self,
        min_corner: Sequence[float],
        max_corner: Sequence[float],
        orientation,
        mesh_mode: MeshMode = MeshMode.SQUARE,
        *,
        step: float = 1.0,
        flags: TileFlags | int = TileFlags.NONE,
    ) -> BatchJob:
        if step <= 0:
            raise ValueError(f"step must be positive, got {step}")
        orient = coerce_orientation(orientation)
        codec = self.storage.codec
        lower = codec.quantize_units(min_corner)
        upper = codec.quantize_units(max_corner)
        step_units = codec.quantize_units((step, step, step))[0]
        if step_units <= 0:
            raise ValueError(f"step {step} is below the key precision")
        counts = []
        for low, high in zip(lower, upper):
            if high < low:
                counts.append(0)
            else:
                counts.append((high - low) // step_units + 1)
        total = math.prod(counts)
        self._check_size(total)
        records: List[TileRecord] = []
        for ix in range(counts[0]):
            for iy in range(counts[1]):
                for iz in range(counts[2]):
                    units = (
                        lower[0] + ix * step_units,
                        lower[1] + iy * step_units,
                        lower[2] + iz * step_units,
                    )
                    records.append(
                        TileRecord(
                            position=codec.units_to_position(units),
                            orientation=orient,
                            mesh_mode=MeshMode(mesh_mode),
                            flags=TileFlags(flags),
                        )
                    )
        return BatchJob(kind=BATCH_FILL, records=records)

    def plan_erase(self, min_corner: Sequence[float], max_corner: Sequence[float]) -> BatchJob:
        codec = self.storage.codec
        lower = codec.quantize_units(min_corner)
        upper = codec.quantize_units(max_corner)
        keys: List[int] = []
        for key, record in self.storage.items():
            units = codec.quantize_units(record.position)
            if all(low <= value <= high for low, value, high in zip(lower, units, upper)):
                keys.append(key)
        self._check_size(len(keys))
        return BatchJob(kind=BATCH_ERASE, keys=keys)

    def plan_erase_keys(self, keys: Sequence[int]) -> BatchJob:
        self._check_size(len(keys))
        return BatchJob(kind=BATCH_ERASE, keys=list(keys))

    # ------------------------------------------------------------------
    # Immediate execution
    # ------------------------------------------------------------------
    def fill_box(self, min_corner, max_corner, orientation, mesh_mode: MeshMode = MeshMode.SQUARE, **kwargs) -> List[int]:
        job = self.plan_fill(min_corner, max_corner, orientation, mesh_mode, **kwargs)
        return self.run(job)

    def erase_box(self, min_corner, max_corner) -> int:
        job = self.plan_erase(min_corner, max_corner)
        self.run(job)
        return job.applied

    def run(self, job: BatchJob) -> List[int]:
        """Apply ``job`` completely; returns the keys placed (fill) or erased (erase)."""
        if self._active is not None:
            raise RuntimeError(f"Batch '{self._active.kind}' is still running")
        self._start(job)
        touched = self._apply(job, job.total)
        self._finish(job)
        return touched

    # ------------------------------------------------------------------
    # Incremental execution
    # ------------------------------------------------------------------
    def submit(self, job: BatchJob) -> BatchJob:
        self._check_size(job.total)
        self._queue.append(job)
        return job

    @property
    def busy(self) -> bool:
        return self._active is not None or bool(self._queue)

    @property
    def active_job(self) -> Optional[BatchJob]:
        return self._active

    @property
    def queued(self) -> int:
        return len(self._queue)

    def pause(self, duration: float) -> None:
        """Hold incremental steps for ``duration`` seconds; ``drain`` is unaffected."""
        self.throttle.block(duration)

    def step(self) -> int:
        """Apply the next slice of work if the throttle allows; returns tiles applied."""
        if self._active is None:
            if not self._queue:
                return 0
            self._start(self._queue.popleft())
        if not self.throttle.allow():
            return 0
        job = self._active
        touched = self._apply(job, self.config.batch_step_size)
        self.event_bus.emit(EVENT_BATCH_PROGRESS, kind=job.kind, applied=job.cursor, total=job.total)
        if job.done:
            self._finish(job)
        return len(touched)

    def drain(self) -> int:
        """Apply every queued job to completion, ignoring the throttle."""
        applied = 0
        while self.busy:
            if self._active is None:
                self._start(self._queue.popleft())
            job = self._active
            applied += len(self._apply(job, job.total - job.cursor))
            self._finish(job)
        return applied

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _check_size(self, total: int) -> None:
        limit = self.config.max_batch_tiles
        if total > limit:
            raise BatchTooLarge(total, limit)

    def _start(self, job: BatchJob) -> None:
        tracker = self.storage.tracker
        if tracker is not None:
            tracker.begin(job.kind)
        self._active = job
        self.throttle.reset()
        log.debug("Batch %s started: %d tiles", job.kind, job.total)
        self.event_bus.emit(EVENT_BATCH_STARTED, kind=job.kind, total=job.total)

    def _apply(self, job: BatchJob, limit: int) -> List[int]:
        end = min(job.total, job.cursor + limit)
        touched: List[int] = []
        if job.kind == BATCH_FILL:
            for record in job.records[job.cursor:end]:
                touched.append(self.storage.place_record(record))
        else:
            for key in job.keys[job.cursor:end]:
                if self.storage.erase(key):
                    touched.append(key)
        job.applied += len(touched)
        job.cursor = end
        return touched

    def _finish(self, job: BatchJob) -> None:
        tracker = self.storage.tracker
        if tracker is not None and tracker.in_operation:
            tracker.commit()
        self._active = None
        steps = self.throttle.steps
        log.debug("Batch %s completed: %d tiles in %d steps", job.kind, job.applied, steps)
        self.event_bus.emit(EVENT_BATCH_COMPLETED, kind=job.kind, applied=job.applied, steps=steps)
