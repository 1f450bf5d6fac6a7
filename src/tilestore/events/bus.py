from blinker import Signal
from typing import Dict

class EventBus:
    """Simple event bus leveraging blinker Signal objects."""
    def __init__(self):
        self._signals: Dict[str, Signal] = {}

    def subscribe(self, name: str, fn):
        sig = self._signals.setdefault(name, Signal(name))
        # weak=False keeps bound methods of systems alive even when the caller drops the system.
        sig.connect(fn, weak=False)

    def unsubscribe(self, name: str, fn):
        sig = self._signals.get(name)
        if sig:
            sig.disconnect(fn)

    def emit(self, name: str, **payload):
        sig = self._signals.get(name)
        if sig:
            sig.send(self, **payload)


# ============================================================================
# TILES
# ============================================================================
EVENT_TILE_PLACED = "tile_placed"          # payload: key=int, geometry=GeometryType, replaced=bool
EVENT_TILE_ERASED = "tile_erased"          # payload: key=int, geometry=GeometryType
EVENT_TILE_MOVED = "tile_moved"            # payload: key=int, old_geometry=GeometryType, new_geometry=GeometryType


# ============================================================================
# CHUNKS & INDEXES
# ============================================================================
EVENT_CHUNK_CREATED = "chunk_created"      # payload: chunk=int, geometry=GeometryType, region=(x,y,z)
EVENT_CHUNK_DESTROYED = "chunk_destroyed"  # payload: chunk=int, geometry=GeometryType, region=(x,y,z)
EVENT_INDEX_REBUILT = "index_rebuilt"      # payload: tiles=int, chunks=int


# ============================================================================
# PERSISTENCE
# ============================================================================
EVENT_STORE_LOADED = "store_loaded"        # payload: count=int, state=MigrationState


# ============================================================================
# BATCH OPERATIONS
# ============================================================================
EVENT_BATCH_STARTED = "batch_started"      # payload: kind=str, total=int
EVENT_BATCH_PROGRESS = "batch_progress"    # payload: kind=str, applied=int, total=int
EVENT_BATCH_COMPLETED = "batch_completed"  # payload: kind=str, applied=int, steps=int
