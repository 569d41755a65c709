"""Configuration classes for SectAgg components."""

from dataclasses import dataclass


@dataclass
class CalculatorConfig:
    """Configuration for aggregated interaction calculators."""

    # Key space shared by all unique patch identifiers (signed 32-bit max)
    patch_id_space: int = 2**31 - 1

    # Whether a section may act as both source and receiver when the caller
    # does not say otherwise
    default_allow_self_section: bool = False

    def patch_id_multiplier(self, section_count: int) -> int:
        """Return the per-section stride used to build unique patch IDs."""
        if section_count <= 0:
            raise ValueError(
                f"Section count must be positive to derive patch IDs, got {section_count}"
            )
        return self.patch_id_space // section_count


# Global configuration instance
CALCULATOR_CONFIG = CalculatorConfig()
