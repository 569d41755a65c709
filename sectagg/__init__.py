"""SectAgg: layered aggregation of patch-to-patch interactions.

Faults are divided into sections and sections into patches. A physical model
computes interactions (e.g. Coulomb stress changes) between individual
patches; SectAgg reduces those raw values to one scalar per section pair or
group of sections through a configurable pipeline of up to four aggregation
layers, caching intermediate results across calculators.

Primary API:
    builder() - Assemble an AggregatedCalculator level by level
    AggregatedCalculator - Validated pipeline with the aggregation entry points
    AggregationMethod - Terminal statistics and reshaping operations
    MatrixInteractionModel - Model over precomputed interaction matrices

Example:
    from sectagg import AggregationMethod, InteractionType, MatrixInteractionModel, builder

    model = MatrixInteractionModel(section_count=2)
    model.add(0, 1, [[1.0, -0.5], [0.25, 2.0]])

    calc = builder(model, InteractionType.COULOMB).sect_to_sect_agg(AggregationMethod.MEDIAN).build()
    calc.section_to_section(0, 1)
"""

from __future__ import annotations

from sectagg import logging
from sectagg._version import __version__
from sectagg.aggregation import (
    TERMINAL_METHODS,
    AggregationCache,
    AggregationMethod,
    AggregationVector,
    InMemoryAggregationCache,
)
from sectagg.calculator import AggregatedCalculator, CalculatorBuilder, builder
from sectagg.config import CALCULATOR_CONFIG, CalculatorConfig
from sectagg.model import InteractionModel, MatrixInteractionModel
from sectagg.types import NO_RECEIVER, Distribution, InteractionType, flatten
from sectagg.utils import PatchIdScheme

__all__ = [
    # Version
    "__version__",
    # Pipeline (primary API)
    "builder",
    "AggregatedCalculator",
    "CalculatorBuilder",
    # Aggregation
    "AggregationMethod",
    "TERMINAL_METHODS",
    "AggregationVector",
    "AggregationCache",
    "InMemoryAggregationCache",
    # Types
    "Distribution",
    "InteractionType",
    "NO_RECEIVER",
    "flatten",
    # Model
    "InteractionModel",
    "MatrixInteractionModel",
    # Configuration and utilities
    "CalculatorConfig",
    "CALCULATOR_CONFIG",
    "PatchIdScheme",
    "logging",
]
