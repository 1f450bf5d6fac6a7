from __future__ import annotations

from typing import Iterator, Sequence, TYPE_CHECKING

from tilestore.components.tile_record import TileRecord

if TYPE_CHECKING:
    from tilestore.storage import TileStorage


class TileView:
    """Read-only query surface for painting and preview collaborators.

    Exposes records by key only; chunk handles and slot indices stay internal.
    """

    __slots__ = ("_storage",)

    def __init__(self, storage: "TileStorage"):
        self._storage = storage

    def key_for(self, position: Sequence[float], orientation) -> int:
        return self._storage.key_for(position, orientation)

    def count(self) -> int:
        return self._storage.count()

    def get(self, key: int) -> TileRecord | None:
        return self._storage.get(key)

    def exists(self, key: int) -> bool:
        return self._storage.exists(key)

    def iter(self) -> Iterator[TileRecord]:
        return self._storage.iter()

    def __len__(self) -> int:
        return self.count()

    def __contains__(self, key: int) -> bool:
        return self.exists(key)

    def __iter__(self) -> Iterator[TileRecord]:
        return self.iter()
