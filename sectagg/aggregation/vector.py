"""Precomputed terminal statistics for a single distribution.

An `AggregationVector` stores the value of every terminal
`AggregationMethod` for one distribution, so a cached section-to-section
entry can answer any terminal statistic without touching the raw values
again. Calculators that share a patch-level method share these entries even
when their section-level statistic differs.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional, Sequence

import numpy as np

from sectagg.aggregation.methods import TERMINAL_METHODS, AggregationMethod

#: One slot per method value up to the highest terminal method.
SLOT_COUNT = max(int(m) for m in TERMINAL_METHODS) + 1


def _median_sorted(sorted_values: np.ndarray) -> float:
    n = sorted_values.size
    mid = n // 2
    if n % 2:
        return float(sorted_values[mid])
    return float((sorted_values[mid - 1] + sorted_values[mid]) / 2.0)


class AggregationVector:
    """Immutable vector of terminal statistics.

    Slots for non-terminal methods do not exist; slots of terminal methods
    that were not supplied (see `from_values`) hold NaN.
    """

    __slots__ = ("_slots",)

    def __init__(
        self, values: Sequence[float] | np.ndarray, interaction_count: Optional[int] = None
    ) -> None:
        """Compute every terminal statistic from ``values``.

        Args:
            values: Distribution values. Not modified; a sorted copy is used.
            interaction_count: Raw interaction count stored in the COUNT slot.
                Defaults to ``len(values)``.

        Raises:
            ValueError: If ``values`` is empty.
        """
        arr = np.sort(np.asarray(values, dtype=np.float64).reshape(-1))
        n = arr.size
        if n == 0:
            raise ValueError("Cannot build an aggregation vector from an empty distribution")
        if interaction_count is None:
            interaction_count = n

        total = float(np.sum(arr))
        mean = total / n
        median = _median_sorted(arr)
        num_positive = float(np.count_nonzero(arr >= 0.0))

        slots = np.full(SLOT_COUNT, np.nan, dtype=np.float64)
        slots[AggregationMethod.MEAN] = mean
        slots[AggregationMethod.MEDIAN] = median
        slots[AggregationMethod.SUM] = total
        slots[AggregationMethod.MIN] = arr[0]
        slots[AggregationMethod.MAX] = arr[-1]
        slots[AggregationMethod.FRACT_POSITIVE] = num_positive / n
        slots[AggregationMethod.NUM_POSITIVE] = num_positive
        slots[AggregationMethod.NUM_NEGATIVE] = n - num_positive
        slots[AggregationMethod.GREATER_SUM_MEDIAN] = max(total, median)
        slots[AggregationMethod.GREATER_MEAN_MEDIAN] = max(mean, median)
        slots[AggregationMethod.COUNT] = interaction_count
        self._set_slots(slots)

    def _set_slots(self, slots: np.ndarray) -> None:
        slots.flags.writeable = False
        object.__setattr__(self, "_slots", slots)

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("AggregationVector is immutable")

    @classmethod
    def from_values(
        cls, methods: Sequence[AggregationMethod], values: Sequence[float]
    ) -> "AggregationVector":
        """Rebuild a vector from already computed statistics.

        Used to restore persisted cache entries. Slots not named in
        ``methods`` are NaN.

        Raises:
            ValueError: If lengths differ or a method is not terminal.
        """
        if len(methods) != len(values):
            raise ValueError(
                f"Got {len(methods)} methods but {len(values)} values"
            )
        slots = np.full(SLOT_COUNT, np.nan, dtype=np.float64)
        for method, value in zip(methods, values):
            _check_terminal(method)
            slots[method] = value
        vector = cls.__new__(cls)
        vector._set_slots(slots)
        return vector

    @classmethod
    def from_dict(cls, data: Dict[str, float]) -> "AggregationVector":
        """Inverse of `to_dict`; keys are method names."""
        methods = [AggregationMethod.from_string(k) for k in data]
        return cls.from_values(methods, [float(v) for v in data.values()])

    def get(self, method: AggregationMethod) -> float:
        """Return the stored statistic for a terminal ``method``.

        Raises:
            ValueError: If ``method`` is not terminal.
        """
        _check_terminal(method)
        return float(self._slots[method])

    @property
    def interaction_count(self) -> int:
        """Stored COUNT slot, or 0 for restored vectors that never set it."""
        count = self._slots[AggregationMethod.COUNT]
        if np.isnan(count):
            return 0
        return int(count)

    def methods(self) -> Iterable[AggregationMethod]:
        """Terminal methods with a stored (non-NaN) value."""
        return [m for m in TERMINAL_METHODS if not np.isnan(self._slots[m])]

    def to_dict(self) -> Dict[str, float]:
        """Map method names to stored values, skipping unset slots."""
        return {m.name: float(self._slots[m]) for m in self.methods()}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AggregationVector):
            return NotImplemented
        return bool(np.array_equal(self._slots, other._slots, equal_nan=True))

    def __hash__(self) -> int:
        return hash(self._slots.tobytes())

    def __repr__(self) -> str:
        body = ", ".join(f"{k}={v!r}" for k, v in self.to_dict().items())
        return f"AggregationVector({body})"


def _check_terminal(method: AggregationMethod) -> None:
    if not method.is_terminal:
        raise ValueError(
            f"Aggregation vectors only hold terminal methods, got {method.label}"
        )
