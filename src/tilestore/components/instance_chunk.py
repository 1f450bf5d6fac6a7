from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from tilestore.components.tile_record import GeometryType, MeshMode


@dataclass(slots=True)
class InstanceSlot:
    """One occupied render instance: the tile key and the mesh mode it draws with."""
    key: int
    mesh_mode: MeshMode


@dataclass(slots=True)
class ChunkRemoval:
    """Outcome of InstanceChunk.remove.

    When a non-last slot is freed the last occupant is swapped into it;
    ``moved_key``/``moved_to`` describe that move so callers can update
    their own indexes in the same step.
    """
    removed: bool
    freed_slot: Optional[int] = None
    moved_key: Optional[int] = None
    moved_to: Optional[int] = None


@dataclass(slots=True)
class InstanceChunk:
    """Fixed-capacity instance table for one geometry type.

    Occupied slots are always the dense prefix ``0..occupied_count-1``;
    removal compacts by moving the last occupant into the freed slot.
    """
    geometry: GeometryType
    capacity: int
    slots: List[InstanceSlot] = field(default_factory=list)
    key_to_slot: Dict[int, int] = field(default_factory=dict)

    @property
    def occupied_count(self) -> int:
        return len(self.slots)

    @property
    def visible_count(self) -> int:
        # Render instance count is derived, never tracked separately.
        return len(self.slots)

    @property
    def free_count(self) -> int:
        return self.capacity - len(self.slots)

    @property
    def occupancy(self) -> float:
        return len(self.slots) / self.capacity

    def is_full(self) -> bool:
        return len(self.slots) >= self.capacity

    def is_empty(self) -> bool:
        return not self.slots

    def try_insert(self, key: int, mesh_mode: MeshMode) -> int | None:
        """Append ``key`` and return its slot, or ``None`` when the chunk is full."""
        if key in self.key_to_slot:
            raise ValueError(f"Key {key} already occupies slot {self.key_to_slot[key]}")
        if mesh_mode.geometry != self.geometry:
            raise ValueError(f"{mesh_mode.name} tiles cannot be stored in a {self.geometry.name} chunk")
        if self.is_full():
            return None
        slot = len(self.slots)
        self.slots.append(InstanceSlot(key=key, mesh_mode=mesh_mode))
        self.key_to_slot[key] = slot
        return slot

    def remove(self, key: int) -> ChunkRemoval:
        slot = self.key_to_slot.pop(key, None)
        if slot is None:
            return ChunkRemoval(removed=False)
        last = len(self.slots) - 1
        if slot == last:
            self.slots.pop()
            return ChunkRemoval(removed=True, freed_slot=slot)
        moved = self.slots.pop()
        self.slots[slot] = moved
        self.key_to_slot[moved.key] = slot
        return ChunkRemoval(removed=True, freed_slot=slot, moved_key=moved.key, moved_to=slot)

    def slot_of(self, key: int) -> int | None:
        return self.key_to_slot.get(key)

    def key_at(self, slot: int) -> int | None:
        if 0 <= slot < len(self.slots):
            return self.slots[slot].key
        return None

    def update_mode(self, key: int, mesh_mode: MeshMode) -> bool:
        slot = self.key_to_slot.get(key)
        if slot is None or mesh_mode.geometry != self.geometry:
            return False
        self.slots[slot].mesh_mode = mesh_mode
        return True

    def mode_counts(self) -> Dict[MeshMode, int]:
        counts: Dict[MeshMode, int] = {}
        for entry in self.slots:
            counts[entry.mesh_mode] = counts.get(entry.mesh_mode, 0) + 1
        return counts

    def orphaned_slots(self) -> List[tuple[int, int]]:
        """Return ``(key, slot)`` entries whose slot is out of range or held by another key."""
        orphans: List[tuple[int, int]] = []
        for key, slot in self.key_to_slot.items():
            if slot < 0 or slot >= len(self.slots) or self.slots[slot].key != key:
                orphans.append((key, slot))
        return orphans
