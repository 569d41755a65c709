"""Utility helpers used across SectAgg.

This package contains small, self-contained utilities that do not depend on
the aggregation pipeline itself.
"""

from sectagg.utils.ids import PatchIdScheme

__all__ = ["PatchIdScheme"]
