from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sectagg.config import CALCULATOR_CONFIG, CalculatorConfig


@dataclass(frozen=True)
class PatchIdScheme:
    """Map ``(section_id, patch_index)`` pairs onto disjoint integer IDs.

    Each section owns a contiguous block of ``multiplier`` IDs, offset by the
    section count so that patch IDs never coincide with the small section IDs
    used as receiver tags at the section level. The IDs only partition the
    key space for grouping and caching.

    Attributes:
        offset: Added to every ID; equal to the section count.
        multiplier: Size of each section's block of IDs.
    """

    offset: int
    multiplier: int

    @classmethod
    def for_section_count(
        cls, section_count: int, config: Optional[CalculatorConfig] = None
    ) -> "PatchIdScheme":
        """Derive the scheme for a model with ``section_count`` sections.

        Raises:
            ValueError: If ``section_count`` is not positive.
        """
        cfg = config or CALCULATOR_CONFIG
        return cls(offset=section_count, multiplier=cfg.patch_id_multiplier(section_count))

    def patch_id(self, section_id: int, patch_index: int) -> int:
        """Return the unique ID of patch ``patch_index`` in ``section_id``.

        Raises:
            ValueError: If ``patch_index`` does not fit in a section's block.
        """
        if patch_index >= self.multiplier - 1:
            raise ValueError(
                f"Patch ID overflow: patch_index={patch_index}, multiplier={self.multiplier}"
            )
        return self.offset + section_id * self.multiplier + patch_index
