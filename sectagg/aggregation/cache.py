"""Memoization of patch-level and section-level aggregates.

Calculators look up two kinds of entries, both keyed on
``(method, source_id, receiver_id)``:

- patch-aggregated: distributions produced by a terminal patch-level method
  for one source/receiver section pair;
- section-aggregated: the `AggregationVector` for one source/receiver section
  pair, keyed on the terminal patch-level method or ``None`` when patch
  distributions were flattened.

Values are a deterministic function of their key for a fixed physical model,
so a duplicate put stores an identical value and is harmless.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Dict, Optional, Protocol, Tuple

from sectagg.aggregation.methods import AggregationMethod
from sectagg.aggregation.vector import AggregationVector
from sectagg.logging import get_logger
from sectagg.types.distribution import Distribution

logger = get_logger(__name__)

PatchKey = Tuple[AggregationMethod, int, int]
SectionKey = Tuple[Optional[AggregationMethod], int, int]


class AggregationCache(Protocol):
    """Keyed store shared by calculators reading the same interaction type."""

    def get_patch_aggregated(
        self, method: AggregationMethod, source_id: int, receiver_id: int
    ) -> Optional[Tuple[Distribution, ...]]: ...

    def put_patch_aggregated(
        self,
        method: AggregationMethod,
        source_id: int,
        receiver_id: int,
        dists: Tuple[Distribution, ...],
    ) -> None: ...

    def get_section_aggregated(
        self, method: Optional[AggregationMethod], source_id: int, receiver_id: int
    ) -> Optional[AggregationVector]: ...

    def put_section_aggregated(
        self,
        method: Optional[AggregationMethod],
        source_id: int,
        receiver_id: int,
        vector: AggregationVector,
    ) -> None: ...


@dataclass
class CacheStats:
    """Hit and miss counters for one cache level."""

    hits: int = 0
    misses: int = 0

    @property
    def lookups(self) -> int:
        return self.hits + self.misses


class InMemoryAggregationCache:
    """Dictionary-backed `AggregationCache` safe for concurrent use.

    Lookups and inserts run under one lock. Entries are never evicted.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._patch: Dict[PatchKey, Tuple[Distribution, ...]] = {}
        self._section: Dict[SectionKey, AggregationVector] = {}
        self.patch_stats = CacheStats()
        self.section_stats = CacheStats()

    def get_patch_aggregated(
        self, method: AggregationMethod, source_id: int, receiver_id: int
    ) -> Optional[Tuple[Distribution, ...]]:
        with self._lock:
            found = self._patch.get((method, source_id, receiver_id))
            _count(self.patch_stats, found is not None)
            return found

    def put_patch_aggregated(
        self,
        method: AggregationMethod,
        source_id: int,
        receiver_id: int,
        dists: Tuple[Distribution, ...],
    ) -> None:
        if not method.is_terminal:
            raise ValueError(
                f"Patch-level cache entries require a terminal method, got {method.label}"
            )
        with self._lock:
            self._patch[(method, source_id, receiver_id)] = tuple(dists)
        logger.debug(
            "Cached %d patch distributions for %s: %d -> %d",
            len(dists),
            method.name,
            source_id,
            receiver_id,
        )

    def get_section_aggregated(
        self, method: Optional[AggregationMethod], source_id: int, receiver_id: int
    ) -> Optional[AggregationVector]:
        with self._lock:
            found = self._section.get((method, source_id, receiver_id))
            _count(self.section_stats, found is not None)
            return found

    def put_section_aggregated(
        self,
        method: Optional[AggregationMethod],
        source_id: int,
        receiver_id: int,
        vector: AggregationVector,
    ) -> None:
        with self._lock:
            self._section[(method, source_id, receiver_id)] = vector
        logger.debug(
            "Cached section vector for %s: %d -> %d",
            method.name if method is not None else "FLATTEN",
            source_id,
            receiver_id,
        )

    def section_keys(self) -> Tuple[SectionKey, ...]:
        with self._lock:
            return tuple(self._section)

    def patch_keys(self) -> Tuple[PatchKey, ...]:
        with self._lock:
            return tuple(self._patch)

    def clear(self) -> None:
        """Drop all entries and reset counters."""
        with self._lock:
            self._patch.clear()
            self._section.clear()
            self.patch_stats = CacheStats()
            self.section_stats = CacheStats()

    def __len__(self) -> int:
        with self._lock:
            return len(self._patch) + len(self._section)


def _count(stats: CacheStats, hit: bool) -> None:
    if hit:
        stats.hits += 1
    else:
        stats.misses += 1
