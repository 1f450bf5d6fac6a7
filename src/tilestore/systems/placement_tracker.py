from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from tilestore.events.bus import (
    EventBus,
    EVENT_STORE_LOADED,
    EVENT_TILE_ERASED,
    EVENT_TILE_PLACED,
)

log = logging.getLogger(__name__)


@dataclass(slots=True)
class OperationSummary:
    """Tiles attributed to one logical operation (paint stroke, area fill, ...)."""
    kind: str
    placed: int = 0
    replaced: int = 0
    erased: int = 0

    @property
    def total(self) -> int:
        return self.placed + self.replaced + self.erased


class PlacementTracker:
    """Keeps its own tally of live tiles from placement events.

    The tally is independent of the store and indexes; once an operation
    settles it must equal the store count, which the integrity checker audits.

    Logic:
      - On EVENT_TILE_PLACED: +1 unless the placement replaced a tile.
      - On EVENT_TILE_ERASED: -1.
      - On EVENT_STORE_LOADED: the tally restarts from the loaded count.
    """

    def __init__(self, event_bus: EventBus, *, initial_count: int = 0):
        self.event_bus = event_bus
        self.tracked_count = initial_count
        self._operation: Optional[OperationSummary] = None
        self.last_summary: Optional[OperationSummary] = None
        self.event_bus.subscribe(EVENT_TILE_PLACED, self.on_tile_placed)
        self.event_bus.subscribe(EVENT_TILE_ERASED, self.on_tile_erased)
        self.event_bus.subscribe(EVENT_STORE_LOADED, self.on_store_loaded)

    @property
    def in_operation(self) -> bool:
        return self._operation is not None

    @property
    def current_kind(self) -> str | None:
        return self._operation.kind if self._operation else None

    @property
    def pending_count(self) -> int:
        """Tiles touched by the operation in progress (0 when settled)."""
        return self._operation.total if self._operation else 0

    def begin(self, kind: str) -> None:
        if self._operation is not None:
            raise RuntimeError(
                f"Cannot begin '{kind}': operation '{self._operation.kind}' is still in progress"
            )
        self._operation = OperationSummary(kind=kind)

    def commit(self) -> OperationSummary:
        if self._operation is None:
            raise RuntimeError("No operation in progress")
        summary = self._operation
        self._operation = None
        self.last_summary = summary
        log.debug("Committed %s: %d placed, %d replaced, %d erased",
                  summary.kind, summary.placed, summary.replaced, summary.erased)
        return summary

    def abort(self) -> OperationSummary | None:
        """Drop the open operation. Mutations already applied stay applied."""
        summary = self._operation
        self._operation = None
        return summary

    def on_tile_placed(self, sender, **kwargs):
        replaced = bool(kwargs.get('replaced', False))
        if not replaced:
            self.tracked_count += 1
        if self._operation is not None:
            if replaced:
                self._operation.replaced += 1
            else:
                self._operation.placed += 1

    def on_tile_erased(self, sender, **kwargs):
        self.tracked_count -= 1
        if self._operation is not None:
            self._operation.erased += 1

    def on_store_loaded(self, sender, **kwargs):
        self.tracked_count = int(kwargs.get('count', 0))
