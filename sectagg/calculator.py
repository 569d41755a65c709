"""Layered aggregation of patch-to-patch interactions into section scalars.

Interactions are computed between individual patches, but callers want one
measure of compatibility between sections: the sum of all interactions, the
fraction that are positive, and so on. `AggregatedCalculator` reduces the raw
values through up to four layers, one per aggregation level:

0. receiver patch, across all source patches of one section pair;
1. section to section (one source section, one receiver section);
2. sections to section (N source sections, one receiver section);
3. sections to sections (N source sections, M receiver sections).

Each layer holds an `AggregationMethod`. Terminal methods compute a
statistic; non-terminal methods (flatten, receiver sum, passthrough, ...)
reshape distributions for the next layer. The final layer must be terminal.
Typical pipelines:

- median of all patch interactions between two sections: Flatten -> Median;
- fraction of receiver patches whose summed interaction is positive:
  Sum -> Fraction Positive.

Example:
    calc = (
        builder(model, InteractionType.COULOMB)
        .sect_to_sect_agg(AggregationMethod.MEDIAN)
        .sects_to_sects_agg(AggregationMethod.SUM)
        .build()
    )
    calc.section_to_section(0, 1)
    calc.sections_to_sections([0, 1, 2], [0, 1, 2])
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from sectagg.aggregation.methods import AggregationMethod
from sectagg.aggregation.vector import AggregationVector
from sectagg.config import CALCULATOR_CONFIG, CalculatorConfig
from sectagg.logging import get_logger
from sectagg.model import InteractionModel
from sectagg.types.base import NO_RECEIVER, InteractionType
from sectagg.types.distribution import Distribution, flatten
from sectagg.utils.ids import PatchIdScheme

logger = get_logger(__name__)

#: Aggregation levels: receiver patch, sect-to-sect, sects-to-sect and
#: sects-to-sects.
MAX_LAYERS = 4

SectionArg = Union[int, Iterable[int]]

_SHORT_NAME_REPLACEMENTS = (
    ("Receiver", "Rec"),
    ("Median", "Mdn"),
    ("Aggregate", "Agg"),
    ("imum", ""),
    ("Sect", "S-"),
    ("Patch", "P-"),
    ("Dominant", "Dom"),
    ("Interaction", "Int"),
    (" ", ""),
)


class AggregatedCalculator:
    """Aggregate patch interactions between sections through 1-4 layers.

    Calculators are immutable. Every entry point is a pure function of its
    arguments for a fixed model; intermediate results are memoized in the
    cache the model provides for the configured interaction type, which may be
    shared with other calculators.

    Attributes:
        model: Source of raw interaction matrices and of the cache.
        interaction_type: Quantity read from each interaction matrix.
        allow_self_section: If True, a section may be both source and
            receiver. A patch's interaction with itself is always excluded.
    """

    def __init__(
        self,
        model: InteractionModel,
        interaction_type: InteractionType,
        layers: Sequence[AggregationMethod],
        allow_self_section: Optional[bool] = None,
        config: Optional[CalculatorConfig] = None,
    ) -> None:
        """Validate the layers and bind the calculator to ``model``.

        Raises:
            ValueError: If ``layers`` is empty, longer than `MAX_LAYERS`,
                contains a non-method entry, or ends with a non-terminal
                method.
        """
        cfg = config or CALCULATOR_CONFIG
        layers = tuple(layers)
        if not layers:
            raise ValueError("Must supply at least 1 aggregation layer")
        if len(layers) > MAX_LAYERS:
            raise ValueError(
                f"Only {MAX_LAYERS} aggregation layers are possible, got {len(layers)}"
            )
        for index, layer in enumerate(layers):
            if not isinstance(layer, AggregationMethod):
                raise ValueError(f"Layer at level {index} is not an aggregation method: {layer!r}")
        if not layers[-1].is_terminal:
            raise ValueError(f"Final layer must be a terminal layer (but is {layers[-1]})")

        self.model = model
        self.interaction_type = interaction_type
        self.allow_self_section = (
            cfg.default_allow_self_section if allow_self_section is None else bool(allow_self_section)
        )
        self._layers: Tuple[AggregationMethod, ...] = layers
        self._patch_ids = PatchIdScheme.for_section_count(model.total_section_count(), cfg)
        self._cache = model.aggregation_cache(interaction_type)

    @property
    def layers(self) -> Tuple[AggregationMethod, ...]:
        return self._layers

    # ------------------------------------------------------------------
    # Level 0: receiver patches
    # ------------------------------------------------------------------

    def patch_distributions(self, source: int, receiver: int) -> Tuple[Distribution, ...]:
        """Apply the receiver patch layer to one source/receiver section pair.

        Builds one distribution per receiver patch from its row of the raw
        interaction matrix, tagged with the patch's unique ID, and passes
        them through layer 0 grouped under the receiver section ID. Results
        of a terminal layer 0 are cached.

        Raises:
            ValueError: If ``source == receiver`` and self-section
                calculations are disallowed, or if a self-section matrix is
                not square.
        """
        self._check_pair(source, receiver)
        patch_layer = self._layers[0]

        if patch_layer.is_terminal:
            cached = self._cache.get_patch_aggregated(patch_layer, source, receiver)
            if cached is not None:
                logger.debug(
                    "%d -> %d patch %s: cached (%d distributions)",
                    source,
                    receiver,
                    patch_layer,
                    len(cached),
                )
                return cached

        matrix = np.asarray(
            self.model.distribution(source, receiver, self.interaction_type),
            dtype=np.float64,
        )
        if matrix.ndim != 2:
            raise ValueError(
                f"Interaction matrix for {source} -> {receiver} must be 2D, got shape {matrix.shape}"
            )
        same_sect = source == receiver
        if same_sect and matrix.shape[0] != matrix.shape[1]:
            raise ValueError(
                f"Self-section matrix for section {source} must be square, got shape {matrix.shape}"
            )

        receiver_dists = []
        for row_index, row in enumerate(matrix):
            # A patch never interacts with itself
            vals = np.delete(row, row_index) if same_sect else row
            receiver_dists.append(
                Distribution(
                    self._patch_ids.patch_id(receiver, row_index), vals, int(vals.size)
                )
            )

        aggregated = patch_layer.aggregate(receiver, receiver_dists)
        if patch_layer.is_terminal:
            self._cache.put_patch_aggregated(patch_layer, source, receiver, aggregated)

        logger.debug(
            "%d -> %d patch %s: %d receiver patches -> %d distributions",
            source,
            receiver,
            patch_layer,
            len(receiver_dists),
            len(aggregated),
        )
        return aggregated

    # ------------------------------------------------------------------
    # Level 1: section to section
    # ------------------------------------------------------------------

    def _is_sect_to_sect_cacheable(self) -> bool:
        first, second = self._layers[0], self._layers[1]
        return second.is_terminal and (
            first.is_terminal or first is AggregationMethod.FLATTEN
        )

    def _section_vector(self, source: int, receiver: int) -> AggregationVector:
        patch_method = self._layers[0] if self._layers[0].is_terminal else None
        vector = self._cache.get_section_aggregated(patch_method, source, receiver)
        if vector is not None:
            logger.debug("%d -> %d sect-to-sect vector: cached", source, receiver)
            return vector
        merged = flatten(receiver, self.patch_distributions(source, receiver))
        vector = AggregationVector(merged.values, merged.interaction_count)
        self._cache.put_section_aggregated(patch_method, source, receiver, vector)
        return vector

    def _require_layers(self, count: int, level: str) -> None:
        if len(self._layers) < count:
            raise RuntimeError(
                f"{level} aggregation layer not supplied: calculator has "
                f"{len(self._layers)} layer(s), needs {count}"
            )

    def _sect_to_sect_dists(self, source: int, receiver: int) -> Tuple[Distribution, ...]:
        self._check_pair(source, receiver)
        self._require_layers(2, "Section-to-section")

        if self._is_sect_to_sect_cacheable():
            vector = self._section_vector(source, receiver)
            return (
                Distribution.single(
                    receiver, vector.interaction_count, vector.get(self._layers[1])
                ),
            )

        aggregated = self._layers[1].aggregate(
            receiver, self.patch_distributions(source, receiver)
        )
        logger.debug(
            "%d -> %d sect-to-sect %s: %d distributions",
            source,
            receiver,
            self._layers[1],
            len(aggregated),
        )
        return aggregated

    def section_to_section(self, source: int, receiver: int) -> float:
        """Aggregate interactions from one source section onto one receiver.

        Raises:
            ValueError: If ``source == receiver`` and self-section
                calculations are disallowed.
            RuntimeError: If the calculator has fewer than two layers.
        """
        self._check_pair(source, receiver)
        self._require_layers(2, "Section-to-section")

        if self._is_sect_to_sect_cacheable():
            value = self._section_vector(source, receiver).get(self._layers[1])
            logger.debug("%d -> %d %s: %s", source, receiver, self._layers[1], value)
            return value

        return self._resolve(1, receiver, self.patch_distributions(source, receiver))

    # ------------------------------------------------------------------
    # Levels 2 and 3: multiple sections
    # ------------------------------------------------------------------

    def _collect_sources(self, sources: Iterable[int], receiver: int) -> List[Distribution]:
        sources = list(sources)
        if not self.allow_self_section:
            sources = [s for s in sources if s != receiver]
        if not sources:
            raise ValueError(f"No sources that aren't the receiver ({receiver})")
        collected: List[Distribution] = []
        for source in sources:
            collected.extend(self._sect_to_sect_dists(source, receiver))
        return collected

    def sections_to_section(self, sources: Iterable[int], receiver: int) -> float:
        """Aggregate interactions from several source sections onto one receiver.

        Sources equal to the receiver are skipped unless self-section
        calculations are allowed.

        Raises:
            ValueError: If no source remains after filtering.
            RuntimeError: If the calculator has fewer than three layers.
        """
        self._require_layers(3, "Sections-to-section")
        collected = self._collect_sources(sources, receiver)
        return self._resolve(2, receiver, collected)

    def sections_to_sections(
        self, sources: Iterable[int], receivers: Iterable[int]
    ) -> float:
        """Aggregate interactions from several sources onto several receivers.

        Requires all four layers. Layer 2 runs once per receiver; layer 3
        reduces everything collected across receivers to the final value.

        Raises:
            ValueError: If some receiver has no usable source.
            RuntimeError: If the calculator has fewer than four layers.
        """
        self._require_layers(4, "Sections-to-sections")
        sources = list(sources)
        collected: List[Distribution] = []
        for receiver in receivers:
            receiver_dists = self._collect_sources(sources, receiver)
            collected.extend(self._layers[2].aggregate(receiver, receiver_dists))
        value = self._layers[3].get(collected)
        logger.debug(
            "%d sources -> %d distributions, %s: %s",
            len(sources),
            len(collected),
            self._layers[3],
            value,
        )
        return value

    def scalar(self, source: SectionArg, receiver: SectionArg) -> float:
        """Dispatch to the entry point matching the argument shapes.

        A section ID selects a single section; any other iterable of IDs
        selects several. A single source with several receivers is treated
        as a one-element source list.
        """
        single_source = _is_section_id(source)
        single_receiver = _is_section_id(receiver)
        if single_source and single_receiver:
            return self.section_to_section(source, receiver)
        if single_receiver:
            return self.sections_to_section(source, receiver)
        sources = [source] if single_source else source
        return self.sections_to_sections(sources, receiver)

    def _resolve(self, index: int, group_id: int, dists: Sequence[Distribution]) -> float:
        """Run layers from ``index`` until a terminal layer produces a value."""
        if index >= len(self._layers):
            raise RuntimeError(
                f"Ran out of aggregation layers at level {index} without reaching a terminal layer"
            )
        layer = self._layers[index]
        if layer.is_terminal:
            value = layer.get(dists)
            logger.debug("Layer %d %s: %s", index, layer, value)
            return value
        reshaped = layer.aggregate(group_id, dists)
        logger.debug(
            "Intermediate layer %d %s: %d -> %d distributions",
            index,
            layer,
            len(dists),
            len(reshaped),
        )
        # sections may be plural beyond this point
        return self._resolve(index + 1, NO_RECEIVER, reshaped)

    def _check_pair(self, source: int, receiver: int) -> None:
        if not self.allow_self_section and source == receiver:
            raise ValueError(
                f"Source and receiver ID are the same and allow_self_section=False: {source}"
            )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def has_units(self) -> bool:
        """True if results carry the interaction's physical units.

        False as soon as any layer is a fraction or count.
        """
        return all(layer.has_units for layer in self._layers)

    def display_name(self) -> str:
        """Describe the scalar this calculator produces, e.g. ``"Fract [Patch Sum]≥0"``."""
        layers = self._layers
        name: Optional[str] = None
        for index, layer in enumerate(layers):
            if layer in (AggregationMethod.FLATTEN, AggregationMethod.PASSTHROUGH) or (
                index > 0 and layer is layers[index - 1]
            ):
                continue
            inner = "" if name is None else f"[{name}]"
            if layer is AggregationMethod.FRACT_POSITIVE:
                name = f"Fract {inner}≥0"
            elif layer is AggregationMethod.NUM_NEGATIVE:
                name = f"Num {inner}<0"
            elif layer is AggregationMethod.NUM_POSITIVE:
                name = f"Num {inner}≥0"
            elif layer is AggregationMethod.NORM_BY_COUNT:
                name = f"[{name or ''}]/Count"
            elif index == 0:
                level = "Sect" if len(layers) > 1 and layers[1] is layer else "Patch"
                name = f"{level} {layer.label}"
            elif layer is AggregationMethod.RECEIVER_SUM:
                if layers[1].is_terminal:
                    prefix = "Receiver Sect Aggregate"
                elif layers[0].is_terminal:
                    prefix = "Receiver Patch Aggregate"
                else:
                    prefix = "Receiver Aggregate"
                name = prefix if name is None else f"{prefix} {inner}"
            elif index == 1 and name is None:
                name = f"Sect {layer.label}"
            else:
                name = layer.label if name is None else f"{layer.label} {inner}"
        return name or ""

    def short_display_name(self) -> str:
        """Abbreviated `display_name` without spaces, e.g. ``"Fract[P-Sum]≥0"``."""
        name = self.display_name()
        for old, new in _SHORT_NAME_REPLACEMENTS:
            name = name.replace(old, new)
        return name

    def __str__(self) -> str:
        return "AggregatedCalculator[" + " -> ".join(str(layer) for layer in self._layers) + "]"

    def __repr__(self) -> str:
        return (
            f"AggregatedCalculator(interaction_type={self.interaction_type.name}, "
            f"layers={[layer.name for layer in self._layers]}, "
            f"allow_self_section={self.allow_self_section})"
        )


def _is_section_id(value: object) -> bool:
    return isinstance(value, (int, np.integer)) and not isinstance(value, bool)


class CalculatorBuilder:
    """Assemble the layers of an `AggregatedCalculator` one level at a time.

    The level methods (`receiver_patch_agg`, `sect_to_sect_agg`,
    `sects_to_sect_agg`, `sects_to_sects_agg`) check that levels are given in
    order and insert Flatten layers for skipped levels. The raw methods
    (`process`, `flatten`, `receiver_sum`, `passthrough`) append without
    checks; `build` validates the final layer list either way.
    """

    def __init__(
        self,
        model: InteractionModel,
        interaction_type: InteractionType,
        config: Optional[CalculatorConfig] = None,
    ) -> None:
        self._model = model
        self._interaction_type = interaction_type
        self._config = config or CALCULATOR_CONFIG
        self._layers: List[AggregationMethod] = []
        self._allow_self_section = self._config.default_allow_self_section
        self._patch_level_only = False

    @property
    def layers(self) -> Tuple[AggregationMethod, ...]:
        return tuple(self._layers)

    def allow_self_section(self, allow: bool = True) -> "CalculatorBuilder":
        """Include calculations where source and receiver are the same section.

        The interaction between a patch and itself is always excluded.
        """
        self._allow_self_section = allow
        return self

    def flatten(self) -> "CalculatorBuilder":
        return self.process(AggregationMethod.FLATTEN)

    def receiver_sum(self) -> "CalculatorBuilder":
        return self.process(AggregationMethod.RECEIVER_SUM)

    def passthrough(self) -> "CalculatorBuilder":
        return self.process(AggregationMethod.PASSTHROUGH)

    def process(self, method: AggregationMethod) -> "CalculatorBuilder":
        """Append ``method`` as the next layer without ordering checks."""
        self._layers.append(method)
        self._patch_level_only = False
        return self

    def receiver_patch_agg(self, method: AggregationMethod) -> "CalculatorBuilder":
        """Aggregate each receiver patch across source patches first.

        Raises:
            RuntimeError: If any layer was already added.
        """
        if self._layers:
            raise RuntimeError("Receiver patch aggregation must be specified first")
        self.process(method)
        self._patch_level_only = True
        return self

    def sect_to_sect_agg(self, method: AggregationMethod) -> "CalculatorBuilder":
        """Aggregate at the section-to-section level.

        Receiver patch distributions are flattened first if no receiver patch
        layer was supplied.

        Raises:
            RuntimeError: If a section-to-section layer already exists.
        """
        if len(self._layers) >= 2:
            raise RuntimeError("Section-to-section aggregation level already specified")
        if not self._layers:
            self.flatten()
        return self.process(method)

    def sects_to_sect_agg(self, method: AggregationMethod) -> "CalculatorBuilder":
        """Aggregate multiple source sections onto a single receiver section.

        Needs a section-to-section level. A single manually processed layer
        is taken as that level and gets a leading Flatten.

        Raises:
            RuntimeError: If no section-to-section level exists yet, or a
                sections-to-section level was already given.
        """
        if not self._layers or self._patch_level_only:
            raise RuntimeError(
                "Must supply a sect-to-sect aggregation level before sects-to-sect"
            )
        if len(self._layers) == 1:
            self._layers.insert(0, AggregationMethod.FLATTEN)
        elif len(self._layers) != 2:
            raise RuntimeError(
                "Sects-to-sect aggregation must directly follow the sect-to-sect level"
            )
        return self.process(method)

    def sects_to_sects_agg(self, method: AggregationMethod) -> "CalculatorBuilder":
        """Aggregate multiple source sections onto multiple receiver sections.

        Receiver section distributions are flattened first if no
        sections-to-section level was supplied.

        Raises:
            RuntimeError: If no section-to-section level exists yet or all
                levels are already specified.
        """
        if len(self._layers) < 2:
            raise RuntimeError(
                "Must supply at least a sect-to-sect aggregation level first"
            )
        if len(self._layers) >= MAX_LAYERS:
            raise RuntimeError("Aggregation levels already completely specified")
        if len(self._layers) == 2:
            self.flatten()
        return self.process(method)

    def build(self) -> AggregatedCalculator:
        """Create the calculator.

        Raises:
            ValueError: If the layer list is invalid (see `AggregatedCalculator`).
        """
        return AggregatedCalculator(
            self._model,
            self._interaction_type,
            self._layers,
            allow_self_section=self._allow_self_section,
            config=self._config,
        )


def builder(
    model: InteractionModel,
    interaction_type: InteractionType,
    config: Optional[CalculatorConfig] = None,
) -> CalculatorBuilder:
    """Start building an `AggregatedCalculator` for ``model``."""
    return CalculatorBuilder(model, interaction_type, config)
