"""Exception types raised by the tile store.

Absent keys and full chunks are not errors: lookups return ``None`` and
chunk capacity is handled by the registries. Consistency problems are
reported by the integrity checker rather than raised.
"""


class TileStoreError(Exception):
    """Base class for tile store failures."""


class InvalidTileInput(TileStoreError, ValueError):
    """Input rejected at the encode/decode boundary."""


class InvalidOrientation(InvalidTileInput):
    def __init__(self, value):
        super().__init__(f"Orientation {value!r} is outside the declared range")
        self.value = value


class MalformedKey(InvalidTileInput):
    def __init__(self, key, reason: str):
        super().__init__(f"Malformed tile key {key!r}: {reason}")
        self.key = key
        self.reason = reason


class CoordinateOutOfRange(InvalidTileInput):
    def __init__(self, axis: str, value):
        super().__init__(f"Coordinate {axis}={value!r} cannot be packed into a tile key")
        self.axis = axis
        self.value = value


class BatchTooLarge(TileStoreError):
    def __init__(self, requested: int, limit: int):
        super().__init__(f"Batch of {requested} tiles exceeds the limit of {limit}")
        self.requested = requested
        self.limit = limit
