"""Aggregation methods applied at each layer of an aggregation pipeline.

Methods come in two kinds:

- Terminal methods reduce a sequence of values to one statistic (mean,
  median, sum, ...). Used mid-pipeline, a terminal method reduces each input
  distribution separately and keeps its receiver and interaction count.
- Non-terminal methods reshape distributions for the next layer without
  producing a final value (flatten, receiver sum, normalize, ...).

Behavior lives in two dispatch tables keyed by `AggregationMethod`:
``_REDUCERS`` for terminal methods and ``_RESHAPERS`` for non-terminal ones.
"""

from __future__ import annotations

from collections import defaultdict
from enum import IntEnum
from typing import Callable, Dict, List, Sequence, Tuple

import numpy as np

from sectagg.types.base import NO_RECEIVER
from sectagg.types.distribution import Distribution, flatten


class AggregationMethod(IntEnum):
    """Closed set of aggregation methods.

    Values are stable slot indices; terminal methods come first so that
    `AggregationVector` can store one statistic per terminal slot.
    """

    MEAN = 0
    MEDIAN = 1
    SUM = 2
    MIN = 3
    MAX = 4
    FRACT_POSITIVE = 5
    NUM_POSITIVE = 6
    NUM_NEGATIVE = 7
    GREATER_SUM_MEDIAN = 8
    GREATER_MEAN_MEDIAN = 9
    COUNT = 10
    FLATTEN = 11
    RECEIVER_SUM = 12
    NORM_BY_COUNT = 13
    INTERACTION_SIGN = 14
    PASSTHROUGH = 15

    @property
    def label(self) -> str:
        """Display name, e.g. ``"Fraction Positive"``."""
        return _PROPERTIES[self][0]

    @property
    def has_units(self) -> bool:
        """True if results keep the physical unit (False for ratios and counts)."""
        return _PROPERTIES[self][1]

    @property
    def is_terminal(self) -> bool:
        """True if this method can reduce a distribution to a single value."""
        return self in _REDUCERS

    def __str__(self) -> str:
        return self.label

    @classmethod
    def from_string(cls, value: str) -> "AggregationMethod":
        """Parse an enum name (case-insensitive) or display label.

        Raises:
            ValueError: If the string matches no method.
        """
        key = value.strip()
        try:
            return cls[key.upper()]
        except KeyError:
            pass
        for method in cls:
            if method.label.lower() == key.lower():
                return method
        valid = ", ".join(m.name for m in cls)
        raise ValueError(
            f"Invalid aggregation method '{value}'. Valid values are: {valid}"
        )

    def reduce(self, values: Sequence[float] | np.ndarray) -> float:
        """Reduce ``values`` to a single statistic.

        Raises:
            ValueError: If this method is not terminal, or if ``values`` is
                empty and the method needs at least one value.
        """
        try:
            reducer = _REDUCERS[self]
        except KeyError:
            raise ValueError(
                f"{self.label} is not a terminal method and cannot reduce values"
            ) from None
        arr = np.asarray(values, dtype=np.float64)
        if arr.size == 0 and self is not AggregationMethod.COUNT:
            raise ValueError(f"Cannot compute {self.label} of an empty distribution")
        return float(reducer(arr))

    def aggregate(
        self, higher_level_id: int, dists: Sequence[Distribution]
    ) -> Tuple[Distribution, ...]:
        """Transform distributions for processing by the next layer.

        Args:
            higher_level_id: ID of the current aggregation level (receiver
                section, or ``NO_RECEIVER`` above the section-to-section level).
            dists: Input distributions.

        Returns:
            Distributions for the next layer.
        """
        reshaper = _RESHAPERS.get(self)
        if reshaper is not None:
            return reshaper(higher_level_id, dists)
        return tuple(
            Distribution.single(d.receiver_id, d.interaction_count, self.reduce(d.values))
            for d in dists
        )

    def get(self, dists: Sequence[Distribution]) -> float:
        """Compute the final value over ``dists``, flattening them if plural.

        Raises:
            ValueError: If this method is not terminal or no distributions remain.
        """
        if not self.is_terminal:
            raise ValueError(
                f"Cannot get a single value from non-terminal method {self.label}"
            )
        if not dists:
            raise ValueError("No distributions left at this layer")
        dist = flatten(NO_RECEIVER, dists) if len(dists) > 1 else dists[0]
        return self.reduce(dist.values)


def _median(arr: np.ndarray) -> float:
    return float(np.median(arr))


def _num_positive(arr: np.ndarray) -> float:
    return float(np.count_nonzero(arr >= 0.0))


_REDUCERS: Dict[AggregationMethod, Callable[[np.ndarray], float]] = {
    AggregationMethod.MEAN: lambda a: float(np.mean(a)),
    AggregationMethod.MEDIAN: _median,
    AggregationMethod.SUM: lambda a: float(np.sum(a)),
    AggregationMethod.MIN: lambda a: float(np.min(a)),
    AggregationMethod.MAX: lambda a: float(np.max(a)),
    AggregationMethod.FRACT_POSITIVE: lambda a: _num_positive(a) / a.size,
    AggregationMethod.NUM_POSITIVE: _num_positive,
    AggregationMethod.NUM_NEGATIVE: lambda a: a.size - _num_positive(a),
    AggregationMethod.GREATER_SUM_MEDIAN: lambda a: max(float(np.sum(a)), _median(a)),
    AggregationMethod.GREATER_MEAN_MEDIAN: lambda a: max(float(np.mean(a)), _median(a)),
    AggregationMethod.COUNT: lambda a: float(a.size),
}


def _flatten(higher_level_id: int, dists: Sequence[Distribution]) -> Tuple[Distribution, ...]:
    return (flatten(higher_level_id, dists),)


def _receiver_sum(
    higher_level_id: int, dists: Sequence[Distribution]
) -> Tuple[Distribution, ...]:
    # dicts keep first-seen receiver order
    grouped: Dict[int, List[Distribution]] = defaultdict(list)
    for dist in dists:
        grouped[dist.receiver_id].append(dist)
    out = []
    for receiver_id, group in grouped.items():
        if len(group) == 1:
            out.append(group[0])
        else:
            merged = flatten(receiver_id, group)
            out.append(
                Distribution.single(
                    receiver_id, merged.interaction_count, float(np.sum(merged.values))
                )
            )
    return tuple(out)


def _normalized_sum(dists: Sequence[Distribution]) -> Tuple[float, int]:
    total = 0.0
    count = 0
    for dist in dists:
        count += dist.interaction_count
        total += float(np.sum(dist.values))
    if count <= 0:
        raise ValueError(
            f"No interactions found at this level: {len(dists)} distributions, sum={total}"
        )
    return total / count, count


def _norm_by_count(
    higher_level_id: int, dists: Sequence[Distribution]
) -> Tuple[Distribution, ...]:
    fract, count = _normalized_sum(dists)
    return (Distribution.single(higher_level_id, count, fract),)


def _interaction_sign(
    higher_level_id: int, dists: Sequence[Distribution]
) -> Tuple[Distribution, ...]:
    fract, count = _normalized_sum(dists)
    return (Distribution.single(higher_level_id, count, 1.0 if fract >= 0.5 else -1.0),)


def _passthrough(
    higher_level_id: int, dists: Sequence[Distribution]
) -> Tuple[Distribution, ...]:
    return tuple(dists)


_RESHAPERS: Dict[
    AggregationMethod,
    Callable[[int, Sequence[Distribution]], Tuple[Distribution, ...]],
] = {
    AggregationMethod.FLATTEN: _flatten,
    AggregationMethod.RECEIVER_SUM: _receiver_sum,
    AggregationMethod.NORM_BY_COUNT: _norm_by_count,
    AggregationMethod.INTERACTION_SIGN: _interaction_sign,
    AggregationMethod.PASSTHROUGH: _passthrough,
}

# (label, has_units)
_PROPERTIES: Dict[AggregationMethod, Tuple[str, bool]] = {
    AggregationMethod.MEAN: ("Mean", True),
    AggregationMethod.MEDIAN: ("Median", True),
    AggregationMethod.SUM: ("Sum", True),
    AggregationMethod.MIN: ("Minimum", True),
    AggregationMethod.MAX: ("Maximum", True),
    AggregationMethod.FRACT_POSITIVE: ("Fraction Positive", False),
    AggregationMethod.NUM_POSITIVE: ("Num Positive", False),
    AggregationMethod.NUM_NEGATIVE: ("Num Negative", False),
    AggregationMethod.GREATER_SUM_MEDIAN: ("Max[Sum,Median]", True),
    AggregationMethod.GREATER_MEAN_MEDIAN: ("Max[Mean,Median]", True),
    AggregationMethod.COUNT: ("Count", True),
    AggregationMethod.FLATTEN: ("Flatten", True),
    AggregationMethod.RECEIVER_SUM: ("ReceiverSum", True),
    AggregationMethod.NORM_BY_COUNT: ("Normalize By Interaction Count", True),
    AggregationMethod.INTERACTION_SIGN: ("Interaction Sign", True),
    AggregationMethod.PASSTHROUGH: ("Passthrough", True),
}

#: Terminal methods in slot order.
TERMINAL_METHODS: Tuple[AggregationMethod, ...] = tuple(
    m for m in AggregationMethod if m.is_terminal
)
