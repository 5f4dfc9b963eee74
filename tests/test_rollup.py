"""Box count, weight and dimension rollups."""

import math

import pytest

from core.products import DEFAULT_BOX_CONFIG, ProductConfig
from core.rollup import compute_rollup, format_dimensions
from core.validator import MalformedLineItemError

CONFIG = ProductConfig(
    pieces_per_box=50,
    box_weight_kg=4,
    box_length_cm=30,
    box_width_cm=20,
    box_height_cm=15,
)


class TestComputeRollup:
    def test_zero_quantity(self):
        rollup = compute_rollup(CONFIG, 0)
        assert rollup.num_boxes == 0
        assert rollup.total_weight == 0

    def test_ceiling_division(self):
        config = ProductConfig(pieces_per_box=48)
        assert compute_rollup(config, 100).num_boxes == 3
        assert compute_rollup(config, 96).num_boxes == 2
        assert compute_rollup(config, 97).num_boxes == 3
        assert compute_rollup(config, 1).num_boxes == 1

    def test_matches_math_ceil(self):
        for p in (1, 7, 24, 48):
            for q in (0, 1, 23, 48, 49, 1000):
                rollup = compute_rollup(ProductConfig(pieces_per_box=p), q)
                assert rollup.num_boxes == math.ceil(q / p)

    def test_fractional_pieces_per_box(self):
        assert compute_rollup(ProductConfig(pieces_per_box=2.5), 6).num_boxes == 3

    def test_weight_and_dimensions(self):
        rollup = compute_rollup(CONFIG, 120)
        assert rollup.num_boxes == 3
        assert rollup.total_weight == 12
        assert rollup.box_dimensions == "30×20×15"

    def test_empty_config_uses_default_box(self):
        rollup = compute_rollup(ProductConfig(), 48)
        assert rollup.pieces_per_box == DEFAULT_BOX_CONFIG.pieces_per_box
        assert rollup.num_boxes == 1
        assert rollup.total_weight == 5
        assert rollup.box_dimensions == "30×25×20"

    def test_fields_fall_back_independently(self):
        rollup = compute_rollup(ProductConfig(pieces_per_box=10, box_height_cm=12), 25)
        assert rollup.num_boxes == 3
        assert rollup.box_weight_kg == 5
        assert rollup.box_dimensions == "30×25×12"

    def test_non_positive_values_fall_back(self):
        rollup = compute_rollup(ProductConfig(pieces_per_box=0, box_weight_kg=-2), 48)
        assert rollup.pieces_per_box == 48
        assert rollup.total_weight == 5

    def test_numeric_string_quantity(self):
        assert compute_rollup(CONFIG, "1,200").num_boxes == 24

    @pytest.mark.parametrize("bad", [-1, 2.5, "ten", None, True])
    def test_malformed_quantity_raises(self, bad):
        with pytest.raises(MalformedLineItemError):
            compute_rollup(CONFIG, bad)


class TestFormatDimensions:
    def test_integral_floats_drop_trailing_zero(self):
        assert format_dimensions(30.0, 25.0, 20.0) == "30×25×20"

    def test_fractions_are_kept(self):
        assert format_dimensions(30.5, 25, 20) == "30.5×25×20"
