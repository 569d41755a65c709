"""Receiver distributions: the unit of data passed between aggregation layers.

A `Distribution` holds the values that reached one receiver (a receiver
patch, a receiver section, or no single receiver at the top levels) together
with the number of raw patch interactions those values summarize. Reductions
such as a sum collapse many interactions into a single value, so the
interaction count is tracked separately from ``len(values)``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence, Union

import numpy as np

ValuesLike = Union[Sequence[float], np.ndarray]


def _frozen_array(values: ValuesLike) -> np.ndarray:
    arr = np.array(values, dtype=np.float64, copy=True).reshape(-1)
    arr.flags.writeable = False
    return arr


@dataclass(frozen=True, eq=False)
class Distribution:
    """Immutable bag of values for one receiver.

    Attributes:
        receiver_id: Section ID, unique patch ID, or ``NO_RECEIVER``.
        values: Read-only float64 array of values.
        interaction_count: Number of raw patch interactions represented.
    """

    receiver_id: int
    values: np.ndarray
    interaction_count: int

    def __post_init__(self) -> None:
        vals = self.values
        if (
            not isinstance(vals, np.ndarray)
            or vals.flags.writeable
            or vals.dtype != np.float64
            or vals.ndim != 1
        ):
            object.__setattr__(self, "values", _frozen_array(vals))
        if self.interaction_count < 0:
            raise ValueError(
                f"Interaction count must be non-negative, got {self.interaction_count}"
            )

    @classmethod
    def single(cls, receiver_id: int, interaction_count: int, value: float) -> "Distribution":
        """Build a one-value distribution."""
        return cls(receiver_id, np.array([value], dtype=np.float64), interaction_count)

    def __len__(self) -> int:
        return int(self.values.size)

    def __repr__(self) -> str:
        vals = ",".join(repr(float(v)) for v in self.values)
        return (
            f"Distribution(receiver_id={self.receiver_id}, values=[{vals}], "
            f"interaction_count={self.interaction_count})"
        )


def flatten(receiver_id: int, dists: Iterable[Distribution]) -> Distribution:
    """Concatenate distributions into one tagged with ``receiver_id``.

    Values keep their input order and interaction counts are summed. A single
    input keeps its values array and count under the new identifier.

    Raises:
        ValueError: If no distributions are supplied.
    """
    dists = list(dists)
    if not dists:
        raise ValueError("Cannot flatten an empty set of distributions")
    if len(dists) == 1:
        return Distribution(receiver_id, dists[0].values, dists[0].interaction_count)
    values = np.concatenate([d.values for d in dists])
    count = sum(d.interaction_count for d in dists)
    return Distribution(receiver_id, values, count)
