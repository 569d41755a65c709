"""Tests for `sectagg.calculator.AggregatedCalculator` entry points and caching."""

import logging

import numpy as np
import pytest

from sectagg.aggregation.methods import AggregationMethod
from sectagg.aggregation.vector import AggregationVector
from sectagg.calculator import MAX_LAYERS, AggregatedCalculator, builder
from sectagg.config import CalculatorConfig
from sectagg.logging import reset_logging
from sectagg.model import MatrixInteractionModel
from sectagg.types.base import InteractionType

M = AggregationMethod
COULOMB = InteractionType.COULOMB


def make_calc(model, *layers, allow_self=False):
    return AggregatedCalculator(model, COULOMB, layers, allow_self_section=allow_self)


# ----------------------------------------------------------------------
# Construction
# ----------------------------------------------------------------------


def test_construction_validates_layers(model):
    with pytest.raises(ValueError, match="at least 1"):
        make_calc(model)
    with pytest.raises(ValueError, match="Only 4"):
        make_calc(model, M.FLATTEN, M.SUM, M.SUM, M.SUM, M.SUM)
    with pytest.raises(ValueError, match="level 0"):
        make_calc(model, None, M.SUM)
    with pytest.raises(ValueError, match="terminal"):
        make_calc(model, M.SUM, M.FLATTEN)


def test_layer_limit_is_fixed_at_four(model):
    """No configuration can push a pipeline past the four aggregation levels."""
    assert MAX_LAYERS == 4
    five = [M.FLATTEN, M.SUM, M.SUM, M.SUM, M.SUM]
    for cfg in (None, CalculatorConfig(), CalculatorConfig(default_allow_self_section=True)):
        with pytest.raises(ValueError, match="Only 4"):
            AggregatedCalculator(model, COULOMB, five, config=cfg)
    with pytest.raises(TypeError):
        CalculatorConfig(max_layers=5)  # type: ignore[call-arg]


def test_default_allow_self_section_comes_from_config(model):
    calc = AggregatedCalculator(
        model, COULOMB, [M.FLATTEN, M.SUM], config=CalculatorConfig(default_allow_self_section=True)
    )
    assert calc.allow_self_section
    assert not make_calc(model, M.FLATTEN, M.SUM).allow_self_section


# ----------------------------------------------------------------------
# Patch level
# ----------------------------------------------------------------------


def test_patch_distributions_one_per_receiver_patch(model, matrices):
    calc = make_calc(model, M.PASSTHROUGH, M.SUM)
    dists = calc.patch_distributions(0, 1)

    assert len(dists) == 3
    for row, dist in enumerate(dists):
        assert np.array_equal(dist.values, matrices[(0, 1)][row])
        assert dist.interaction_count == 2
    receiver_ids = [d.receiver_id for d in dists]
    assert len(set(receiver_ids)) == 3
    # patch IDs never collide with section IDs
    assert min(receiver_ids) >= model.total_section_count()


def test_self_section_excludes_patch_self_interaction(self_pair_model):
    calc = make_calc(self_pair_model, M.PASSTHROUGH, M.SUM, allow_self=True)
    dists = calc.patch_distributions(0, 0)

    assert [list(d.values) for d in dists] == [[5.0], [-3.0]]
    assert [d.interaction_count for d in dists] == [1, 1]


def test_self_section_exclusion_on_larger_section(model):
    calc = make_calc(model, M.PASSTHROUGH, M.MAX, allow_self=True)
    dists = calc.patch_distributions(1, 1)

    assert [list(d.values) for d in dists] == [[1.0, 2.0], [3.0, -4.0], [5.0, -6.0]]
    # the 99.0 diagonal never reaches the statistic
    assert calc.section_to_section(1, 1) == 5.0


def test_self_section_requires_permission(model):
    calc = make_calc(model, M.FLATTEN, M.SUM)
    with pytest.raises(ValueError, match="allow_self_section=False"):
        calc.section_to_section(1, 1)
    with pytest.raises(ValueError, match="allow_self_section=False"):
        calc.patch_distributions(1, 1)


def test_self_section_requires_square_matrix():
    model = MatrixInteractionModel(section_count=1)
    model.add(0, 0, [[1.0, 2.0, 3.0], [4.0, 5.0, 6.0]])
    calc = make_calc(model, M.FLATTEN, M.SUM, allow_self=True)
    with pytest.raises(ValueError, match="square"):
        calc.section_to_section(0, 0)


def test_terminal_patch_layer_is_cached(model):
    calc = make_calc(model, M.SUM, M.MEAN)
    first = calc.patch_distributions(0, 1)
    second = calc.patch_distributions(0, 1)

    assert model.requests == 1
    assert second == first
    assert [float(d.values[0]) for d in first] == [-1.0, 7.0, 1.0]
    assert model.aggregation_cache(COULOMB).get_patch_aggregated(M.SUM, 0, 1) == first


def test_non_terminal_patch_layer_is_not_cached(model):
    calc = make_calc(model, M.PASSTHROUGH, M.SUM)
    calc.patch_distributions(0, 1)
    calc.patch_distributions(0, 1)

    assert model.requests == 2
    assert len(model.aggregation_cache(COULOMB)) == 0


# ----------------------------------------------------------------------
# Section to section
# ----------------------------------------------------------------------


@pytest.mark.parametrize(
    "layers,expected",
    [
        ((M.FLATTEN, M.SUM), 7.0),
        ((M.FLATTEN, M.MEDIAN), 2.0),
        ((M.FLATTEN, M.COUNT), 6.0),
        ((M.SUM, M.MEDIAN), 1.0),
        ((M.MEAN, M.MAX), 3.5),
        ((M.SUM, M.FRACT_POSITIVE), 2 / 3),
        ((M.PASSTHROUGH, M.SUM), 7.0),
        ((M.RECEIVER_SUM, M.MAX), 6.0),
        ((M.NORM_BY_COUNT, M.SUM), 7 / 6),
    ],
)
def test_section_to_section_values(model, layers, expected):
    calc = make_calc(model, *layers)
    assert calc.section_to_section(0, 1) == pytest.approx(expected)


def test_flatten_sum_over_self_pair(self_pair_model):
    calc = make_calc(self_pair_model, M.FLATTEN, M.SUM, allow_self=True)
    assert calc.section_to_section(0, 0) == 2.0


def test_section_vector_shared_by_calculators_with_same_patch_layer(model):
    median = make_calc(model, M.FLATTEN, M.MEDIAN)
    mean = make_calc(model, M.FLATTEN, M.MEAN)

    assert median.section_to_section(0, 1) == 2.0
    assert mean.section_to_section(0, 1) == pytest.approx(7 / 6)

    cache = model.aggregation_cache(COULOMB)
    assert model.requests == 1
    assert cache.section_stats.hits == 1
    assert cache.section_keys() == ((None, 0, 1),)


def test_section_vector_not_shared_across_patch_layers(model):
    flattened = make_calc(model, M.FLATTEN, M.MEDIAN)
    summed = make_calc(model, M.SUM, M.MEDIAN)

    assert flattened.section_to_section(0, 1) == 2.0
    assert summed.section_to_section(0, 1) == 1.0

    cache = model.aggregation_cache(COULOMB)
    assert set(cache.section_keys()) == {(None, 0, 1), (M.SUM, 0, 1)}
    assert cache.section_stats.hits == 0
    assert model.requests == 2


def test_section_vector_reuses_patch_cache(model):
    make_calc(model, M.SUM, M.MEAN).patch_distributions(0, 1)
    assert make_calc(model, M.SUM, M.MAX).section_to_section(0, 1) == 7.0
    assert model.requests == 1


def test_non_cacheable_section_level_skips_vector_cache(model):
    calc = make_calc(model, M.PASSTHROUGH, M.SUM)
    calc.section_to_section(0, 1)
    assert model.aggregation_cache(COULOMB).section_keys() == ()


def test_interaction_types_use_separate_caches(counting_model):
    coulomb = AggregatedCalculator(counting_model, COULOMB, [M.FLATTEN, M.SUM])
    shear = AggregatedCalculator(counting_model, InteractionType.SHEAR, [M.FLATTEN, M.SUM])

    assert coulomb.section_to_section(1, 0) == pytest.approx(-7.1)
    assert shear.section_to_section(1, 0) == 90.0


def test_section_to_section_requires_two_layers(model):
    calc = make_calc(model, M.SUM)
    with pytest.raises(RuntimeError, match="Section-to-section"):
        calc.section_to_section(0, 1)
    # the patch level alone still works
    assert len(calc.patch_distributions(0, 1)) == 3


# ----------------------------------------------------------------------
# Sections to section
# ----------------------------------------------------------------------


def test_sections_to_section_skips_receiver(model):
    calc = make_calc(model, M.FLATTEN, M.SUM, M.SUM)
    assert calc.sections_to_section([0, 1, 2], 1) == pytest.approx(7.5)


def test_sections_to_section_with_self_section(model):
    calc = make_calc(model, M.FLATTEN, M.SUM, M.SUM, allow_self=True)
    assert calc.sections_to_section([0, 1, 2], 1) == pytest.approx(8.5)


def test_sections_to_section_requires_other_sources(model):
    calc = make_calc(model, M.FLATTEN, M.SUM, M.SUM)
    with pytest.raises(ValueError, match="No sources"):
        calc.sections_to_section([1], 1)
    with pytest.raises(ValueError, match="No sources"):
        calc.sections_to_section([], 1)


def test_sections_to_section_over_restored_vectors_without_count(model):
    """Vectors restored from persisted values may lack the COUNT slot."""
    cache = model.aggregation_cache(COULOMB)
    cache.put_section_aggregated(None, 0, 1, AggregationVector.from_values([M.SUM], [7.0]))
    cache.put_section_aggregated(None, 2, 1, AggregationVector.from_values([M.SUM], [0.5]))
    calc = make_calc(model, M.FLATTEN, M.SUM, M.SUM)

    assert calc.section_to_section(0, 1) == 7.0
    assert calc.sections_to_section([0, 2], 1) == pytest.approx(7.5)
    assert model.requests == 0


def test_sections_to_section_requires_three_layers(model):
    calc = make_calc(model, M.FLATTEN, M.SUM)
    with pytest.raises(RuntimeError, match="Sections-to-section"):
        calc.sections_to_section([0, 2], 1)


def test_count_normalization_across_sources(counting_model):
    calc = AggregatedCalculator(
        counting_model, COULOMB, [M.NUM_POSITIVE, M.SUM, M.NORM_BY_COUNT, M.FRACT_POSITIVE]
    )
    assert calc.sections_to_section([1, 2], 0) == 1.0

    ratio = AggregatedCalculator(
        counting_model, COULOMB, [M.NUM_POSITIVE, M.SUM, M.NORM_BY_COUNT, M.MEAN]
    )
    assert ratio.sections_to_section([1, 2], 0) == pytest.approx(4 / 15)

    total = AggregatedCalculator(counting_model, COULOMB, [M.NUM_POSITIVE, M.SUM, M.SUM])
    assert total.sections_to_section([1, 2], 0) == 4.0


def test_interaction_sign_across_sources(counting_model):
    calc = AggregatedCalculator(
        counting_model, COULOMB, [M.NUM_POSITIVE, M.SUM, M.INTERACTION_SIGN, M.MAX]
    )
    # 4 of 15 interactions are non-negative
    assert calc.sections_to_section([1, 2], 0) == -1.0


def test_receiver_sum_groups_patches_across_sources(model):
    calc = make_calc(model, M.SUM, M.PASSTHROUGH, M.RECEIVER_SUM, M.FRACT_POSITIVE)
    # per receiver patch totals over sources 0 and 2: -1.0, 11.0, -2.5
    assert calc.sections_to_section([0, 2], 1) == pytest.approx(1 / 3)


# ----------------------------------------------------------------------
# Sections to sections
# ----------------------------------------------------------------------


def test_sections_to_sections_sum(model):
    calc = (
        builder(model, COULOMB)
        .sect_to_sect_agg(M.SUM)
        .sects_to_sect_agg(M.SUM)
        .sects_to_sects_agg(M.SUM)
        .build()
    )
    assert calc.sections_to_sections([0, 1, 2], [0, 1, 2]) == pytest.approx(18.5)


def test_sections_to_sections_terminal_mid_pipeline_is_elementwise(model):
    calc = make_calc(model, M.FLATTEN, M.SUM, M.SUM, M.MAX)
    # layer 2 sums each section pair on its own, so MAX sees every pair
    assert calc.sections_to_sections([0, 1, 2], [0, 1, 2]) == 10.0


def test_sections_to_sections_max_of_receiver_totals(model):
    calc = make_calc(model, M.FLATTEN, M.SUM, M.RECEIVER_SUM, M.MAX)
    # receiver totals: 0.5, 7.5, 10.5
    assert calc.sections_to_sections([0, 1, 2], [0, 1, 2]) == pytest.approx(10.5)


def test_sections_to_sections_with_implicit_flatten(model):
    calc = builder(model, COULOMB).sect_to_sect_agg(M.SUM).sects_to_sects_agg(M.MAX).build()
    assert calc.layers == (M.FLATTEN, M.SUM, M.FLATTEN, M.MAX)
    # section sums: 1.5, -1.0 | 7.0, 0.5 | 0.5, 10.0
    assert calc.sections_to_sections([0, 1, 2], [0, 1, 2]) == 10.0


def test_sections_to_sections_requires_four_layers(model):
    calc = make_calc(model, M.FLATTEN, M.SUM, M.SUM)
    with pytest.raises(RuntimeError, match="Sections-to-sections"):
        calc.sections_to_sections([0, 1], [2])


def test_sections_to_sections_requires_receivers(model):
    calc = make_calc(model, M.FLATTEN, M.SUM, M.SUM, M.SUM)
    with pytest.raises(ValueError, match="No distributions left"):
        calc.sections_to_sections([0, 1], [])


# ----------------------------------------------------------------------
# Dispatch and introspection
# ----------------------------------------------------------------------


def test_scalar_dispatches_on_argument_shape(model):
    calc = make_calc(model, M.FLATTEN, M.SUM, M.SUM, M.SUM)

    assert calc.scalar(0, 1) == calc.section_to_section(0, 1) == 7.0
    assert calc.scalar(np.int64(0), np.int64(1)) == 7.0
    assert calc.scalar([0, 2], 1) == pytest.approx(7.5)
    assert calc.scalar((0, 1, 2), [0, 1, 2]) == pytest.approx(18.5)
    assert calc.scalar(0, [1, 2]) == pytest.approx(7.5)


def test_has_units_is_conjunction_of_layers(model):
    assert make_calc(model, M.FLATTEN, M.SUM).has_units()
    assert make_calc(model, M.PASSTHROUGH, M.RECEIVER_SUM, M.COUNT).has_units()
    assert not make_calc(model, M.SUM, M.FRACT_POSITIVE).has_units()
    assert not make_calc(model, M.NUM_POSITIVE, M.SUM, M.NORM_BY_COUNT, M.MEAN).has_units()


def test_layers_and_string_forms(model):
    calc = make_calc(model, M.FLATTEN, M.MEDIAN)
    assert calc.layers == (M.FLATTEN, M.MEDIAN)
    assert str(calc) == "AggregatedCalculator[Flatten -> Median]"
    assert "FLATTEN" in repr(calc)


def test_results_do_not_depend_on_call_order(model):
    calc = make_calc(model, M.SUM, M.MEDIAN, M.MEAN)
    first = calc.sections_to_section([0, 2], 1)
    calc.section_to_section(2, 1)
    assert calc.sections_to_section([0, 2], 1) == first


def test_debug_logging_reports_cache_hits(model, caplog):
    reset_logging()
    calc = make_calc(model, M.FLATTEN, M.MEDIAN)
    with caplog.at_level(logging.DEBUG, logger="sectagg"):
        calc.section_to_section(0, 1)
        calc.section_to_section(0, 1)
    messages = [r.getMessage() for r in caplog.records]
    assert any("cached" in m for m in messages)
    reset_logging()
