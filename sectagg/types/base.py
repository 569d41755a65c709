"""Base enums and constants for interaction aggregation."""

from __future__ import annotations

from enum import IntEnum

#: Receiver identifier used when a distribution no longer belongs to a single
#: receiver (multi-section aggregation levels).
NO_RECEIVER = -1


class InteractionType(IntEnum):
    """Physical quantity read from a patch-to-patch interaction distribution.

    The physical model computes every quantity for a source/receiver pair;
    the calculator reads only the one it was configured with.
    """

    #: Change in normal stress on the receiver patch.
    NORMAL = 1
    #: Change in shear stress on the receiver patch in its slip direction.
    SHEAR = 2
    #: Coulomb failure function change (shear plus friction-weighted normal).
    COULOMB = 3

    @property
    def label(self) -> str:
        """Human-readable name of the quantity."""
        return _INTERACTION_LABELS[self]

    @classmethod
    def from_string(cls, value: str) -> "InteractionType":
        """Parse a string into an InteractionType enum value.

        Args:
            value: Case-insensitive string name (e.g., "coulomb", "SHEAR").

        Returns:
            The corresponding InteractionType enum member.

        Raises:
            ValueError: If the string doesn't match any enum member.
        """
        try:
            return cls[value.strip().upper()]
        except KeyError:
            valid = ", ".join(e.name for e in cls)
            raise ValueError(
                f"Invalid interaction type '{value}'. Valid values are: {valid}"
            ) from None


_INTERACTION_LABELS = {
    InteractionType.NORMAL: "Normal Stress",
    InteractionType.SHEAR: "Shear Stress",
    InteractionType.COULOMB: "Coulomb",
}
