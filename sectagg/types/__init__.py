"""Core data types shared across aggregation layers."""

from sectagg.types.base import NO_RECEIVER, InteractionType
from sectagg.types.distribution import Distribution, flatten

__all__ = ["NO_RECEIVER", "InteractionType", "Distribution", "flatten"]
