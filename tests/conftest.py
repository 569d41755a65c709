"""Shared fixtures for aggregation tests.

Models are small enough that expected values can be computed by hand:

- section 0: 2 patches, section 1: 3 patches, section 2: 2 patches;
- every ordered pair of sections (including self pairs) has a matrix whose
  rows are receiver patches and columns are source patches.
"""

from __future__ import annotations

import numpy as np
import pytest

from sectagg.model import MatrixInteractionModel
from sectagg.types.base import InteractionType

PATCH_COUNTS = {0: 2, 1: 3, 2: 2}

MATRICES = {
    (0, 1): [[1.0, -2.0], [3.0, 4.0], [-5.0, 6.0]],
    (2, 1): [[0.5, -0.5], [1.5, 2.5], [-3.5, 0.0]],
    (1, 0): [[2.0, -1.0, 0.5], [-4.0, 1.0, 3.0]],
    (2, 0): [[1.0, 1.0], [-1.0, -2.0]],
    (0, 2): [[-1.0, 2.0], [0.25, -0.75]],
    (1, 2): [[1.0, 2.0, 3.0], [-1.0, -2.0, 7.0]],
    (0, 0): [[99.0, 5.0], [-3.0, 99.0]],
    (1, 1): [[99.0, 1.0, 2.0], [3.0, 99.0, -4.0], [5.0, -6.0, 99.0]],
    (2, 2): [[99.0, -1.0], [2.0, 99.0]],
}


@pytest.fixture
def model() -> MatrixInteractionModel:
    """Three-section model with COULOMB matrices for every ordered pair."""
    m = MatrixInteractionModel(section_count=len(PATCH_COUNTS))
    for (src, rec), values in MATRICES.items():
        m.add(src, rec, values)
    return m


@pytest.fixture
def matrices() -> dict:
    """Raw matrices keyed by (source, receiver) as numpy arrays."""
    return {key: np.array(vals) for key, vals in MATRICES.items()}


@pytest.fixture
def self_pair_model() -> MatrixInteractionModel:
    """One section of two patches whose self-interactions must be ignored."""
    m = MatrixInteractionModel(section_count=1)
    m.add(0, 0, [[0.0, 5.0], [-3.0, 0.0]])
    return m


@pytest.fixture
def counting_model() -> MatrixInteractionModel:
    """Receiver 0 with one patch; sources 1 (10 patches) and 2 (5 patches).

    Source 1 has 3 non-negative interactions out of 10, source 2 has 1 out
    of 5.
    """
    m = MatrixInteractionModel(section_count=3)
    m.add(1, 0, [[1.0, 2.0, 0.5, -1.0, -2.0, -3.0, -0.1, -0.2, -0.3, -4.0]])
    m.add(2, 0, [[3.0, -1.0, -2.0, -0.5, -0.25]])
    m.add(1, 0, [[9.0] * 10], interaction_type=InteractionType.SHEAR)
    return m
