"""Store configuration shared by every component.

Key precision and region size are read by both the key codec and the region
indexer; components take the config object rather than their own copies.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Mapping

from tilestore import constants


@dataclass(frozen=True, slots=True)
class StoreConfig:
    key_precision: int = constants.KEY_PRECISION
    region_size: float = constants.REGION_SIZE
    chunk_capacity: int = constants.CHUNK_CAPACITY
    nearly_full_threshold: float = constants.NEARLY_FULL_THRESHOLD
    max_batch_tiles: int = constants.MAX_BATCH_TILES
    batch_step_size: int = constants.BATCH_STEP_SIZE
    batch_min_interval: float = constants.BATCH_MIN_INTERVAL

    def __post_init__(self) -> None:
        if not 0 <= self.key_precision <= 6:
            raise ValueError(f"key_precision must be within 0..6, got {self.key_precision}")
        if self.region_size <= 0:
            raise ValueError(f"region_size must be positive, got {self.region_size}")
        scaled = self.region_size * self.scale
        if abs(scaled - round(scaled)) > 1e-9:
            raise ValueError(
                f"region_size {self.region_size} is not representable at precision {self.key_precision}"
            )
        if self.chunk_capacity < 1:
            raise ValueError(f"chunk_capacity must be at least 1, got {self.chunk_capacity}")
        if not 0.0 < self.nearly_full_threshold <= 1.0:
            raise ValueError(
                f"nearly_full_threshold must be within (0, 1], got {self.nearly_full_threshold}"
            )
        if self.max_batch_tiles < 1:
            raise ValueError(f"max_batch_tiles must be at least 1, got {self.max_batch_tiles}")
        if self.batch_step_size < 1:
            raise ValueError(f"batch_step_size must be at least 1, got {self.batch_step_size}")
        if self.batch_min_interval < 0:
            raise ValueError(f"batch_min_interval must not be negative, got {self.batch_min_interval}")

    @property
    def scale(self) -> int:
        """Integer units per world unit at the configured precision."""
        return 10 ** self.key_precision

    @property
    def region_extent(self) -> int:
        """Region edge length in quantized units."""
        return int(round(self.region_size * self.scale))

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "StoreConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(unknown)}")
        return cls(**dict(values))

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def load_config(path: Path | str) -> StoreConfig:
    """Read a JSON config file; a missing file yields the defaults."""
    try:
        with Path(path).open("r", encoding="utf-8") as handle:
            payload = json.load(handle)
    except FileNotFoundError:
        return StoreConfig()
    if not isinstance(payload, dict):
        raise ValueError(f"Config file {path} must contain a JSON object")
    return StoreConfig.from_mapping(payload)
