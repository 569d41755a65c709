"""Aggregation methods, precomputed statistics and their cache."""

from sectagg.aggregation.cache import (
    AggregationCache,
    CacheStats,
    InMemoryAggregationCache,
)
from sectagg.aggregation.methods import TERMINAL_METHODS, AggregationMethod
from sectagg.aggregation.vector import AggregationVector

__all__ = [
    # Methods
    "AggregationMethod",
    "TERMINAL_METHODS",
    # Statistics
    "AggregationVector",
    # Cache
    "AggregationCache",
    "CacheStats",
    "InMemoryAggregationCache",
]
