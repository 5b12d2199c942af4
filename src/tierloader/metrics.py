"""Per-loader counters for cache effectiveness."""

from __future__ import annotations

from dataclasses import dataclass, fields


@dataclass
class LoaderMetrics:
    """Counters for one RedisDataLoader instance."""

    batches_dispatched: int = 0
    keys_requested: int = 0
    store_hits: int = 0
    store_misses: int = 0
    loader_calls: int = 0
    loader_errors: int = 0
    store_writes: int = 0
    store_errors: int = 0
    decode_errors: int = 0

    @property
    def hit_ratio(self) -> float:
        """Share of store reads that decoded as hits (0.0 when nothing was read)."""
        total = self.store_hits + self.store_misses
        if total == 0:
            return 0.0
        return self.store_hits / total

    def record_batch(self, size: int) -> None:
        self.batches_dispatched += 1
        self.keys_requested += size

    def reset(self) -> None:
        for f in fields(self):
            setattr(self, f.name, 0)

    def to_dict(self) -> dict[str, float]:
        data: dict[str, float] = {f.name: getattr(self, f.name) for f in fields(self)}
        data["hit_ratio"] = self.hit_ratio
        return data
