"""Physical interaction models consumed by aggregated calculators.

The calculator never computes interactions itself. It asks an
`InteractionModel` for the raw receiver-patch by source-patch matrix of a
section pair and for the cache shared by all calculators reading the same
interaction type.

`MatrixInteractionModel` serves precomputed matrices. It backs tests and any
caller that evaluated interactions elsewhere (e.g. loaded from disk).
"""

from __future__ import annotations

from typing import Dict, Optional, Protocol, Tuple

import numpy as np

from sectagg.aggregation.cache import AggregationCache, InMemoryAggregationCache
from sectagg.types.base import InteractionType


class InteractionModel(Protocol):
    """Source of raw patch-to-patch interaction values."""

    def distribution(
        self, source_id: int, receiver_id: int, interaction_type: InteractionType
    ) -> np.ndarray:
        """Return a ``[receiver_patch][source_patch]`` matrix of values."""
        ...

    def total_section_count(self) -> int:
        """Return the number of sections known to the model."""
        ...

    def aggregation_cache(self, interaction_type: InteractionType) -> AggregationCache:
        """Return the cache shared by calculators of ``interaction_type``."""
        ...


class MatrixInteractionModel:
    """`InteractionModel` over precomputed interaction matrices.

    Example:
        model = MatrixInteractionModel(section_count=2)
        model.add(0, 1, [[0.5, -1.0], [2.0, 0.1]])
        model.distribution(0, 1, InteractionType.COULOMB)

    Attributes:
        section_count: Total number of sections in the model.
        requests: Number of `distribution` calls served, for cache diagnostics.
    """

    def __init__(
        self,
        section_count: int,
        default_type: InteractionType = InteractionType.COULOMB,
    ) -> None:
        if section_count <= 0:
            raise ValueError(f"Section count must be positive, got {section_count}")
        self.section_count = section_count
        self.default_type = default_type
        self.requests = 0
        self._matrices: Dict[Tuple[int, int, InteractionType], np.ndarray] = {}
        self._caches: Dict[InteractionType, InMemoryAggregationCache] = {}

    def add(
        self,
        source_id: int,
        receiver_id: int,
        values,
        interaction_type: Optional[InteractionType] = None,
    ) -> None:
        """Register the interaction matrix of a source/receiver section pair.

        Args:
            source_id: Source section ID.
            receiver_id: Receiver section ID.
            values: 2D array-like indexed ``[receiver_patch][source_patch]``.
            interaction_type: Quantity the values represent (defaults to
                ``default_type``).

        Raises:
            ValueError: If an ID is out of range or ``values`` is not 2D.
        """
        for sect_id in (source_id, receiver_id):
            if not 0 <= sect_id < self.section_count:
                raise ValueError(
                    f"Section ID {sect_id} outside [0, {self.section_count})"
                )
        matrix = np.array(values, dtype=np.float64)
        if matrix.ndim != 2:
            raise ValueError(
                f"Interaction values must be a 2D matrix, got shape {matrix.shape}"
            )
        matrix.flags.writeable = False
        itype = interaction_type if interaction_type is not None else self.default_type
        self._matrices[(source_id, receiver_id, itype)] = matrix

    def distribution(
        self, source_id: int, receiver_id: int, interaction_type: InteractionType
    ) -> np.ndarray:
        try:
            matrix = self._matrices[(source_id, receiver_id, interaction_type)]
        except KeyError:
            raise ValueError(
                f"No {interaction_type.label} values for sections "
                f"{source_id} -> {receiver_id}"
            ) from None
        self.requests += 1
        return matrix

    def total_section_count(self) -> int:
        return self.section_count

    def aggregation_cache(self, interaction_type: InteractionType) -> InMemoryAggregationCache:
        cache = self._caches.get(interaction_type)
        if cache is None:
            cache = self._caches.setdefault(interaction_type, InMemoryAggregationCache())
        return cache
