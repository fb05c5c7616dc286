"""Tests for grid cell assignment."""

import math

import numpy as np
import pytest

from occcube.grid import assign_grid_cells, grid_cell_code, parse_cell_code, resolution_label


class TestResolutionLabel:

    @pytest.mark.parametrize(
        "cell_size, label",
        [(1000, "1km"), (10000, "10km"), (250, "250m"), (1500, "1500m")],
    )
    def test_labels(self, cell_size, label):
        assert resolution_label(cell_size) == label

    def test_non_positive_rejected(self):
        with pytest.raises(ValueError):
            resolution_label(0)

    def test_whole_float_accepted(self):
        assert resolution_label(1000.0) == "1km"


class TestGridCellCode:

    def test_floor_division(self):
        assert grid_cell_code(3929512.7, 3103999.9) == "1kmE3929N3103"

    def test_cell_boundaries(self):
        assert grid_cell_code(1000.0, 2000.0) == "1kmE1N2"
        assert grid_cell_code(999.999, 1999.999) == "1kmE0N1"

    def test_negative_coordinates_floor_down(self):
        assert grid_cell_code(-0.5, -1000.0) == "1kmE-1N-1"

    def test_other_cell_size(self):
        assert grid_cell_code(25_500.0, 10_000.0, cell_size=10_000) == "10kmE2N1"

    def test_fractional_cell_size_rejected(self):
        with pytest.raises(ValueError, match="whole number"):
            grid_cell_code(1500.0, 1500.0, cell_size=1000.5)

    def test_whole_float_cell_size_uses_integer_divisor(self):
        assert grid_cell_code(2500.0, 999.0, cell_size=1000.0) == "1kmE2N0"

    def test_same_cell_iff_same_floored_indices(self):
        size = 1000
        points = [(100.0, 100.0), (999.0, 1.0), (1000.0, 100.0), (100.0, -1.0)]
        for a in points:
            for b in points:
                same_indices = (
                    math.floor(a[0] / size) == math.floor(b[0] / size)
                    and math.floor(a[1] / size) == math.floor(b[1] / size)
                )
                assert (grid_cell_code(*a, size) == grid_cell_code(*b, size)) == same_indices

    def test_non_finite_rejected(self):
        with pytest.raises(ValueError):
            grid_cell_code(float("nan"), 1.0)


class TestAssignGridCells:

    def test_matches_scalar_form(self):
        rng = np.random.default_rng(0)
        x = rng.uniform(-5e6, 5e6, size=200)
        y = rng.uniform(-5e6, 5e6, size=200)
        codes = assign_grid_cells(x, y, 1000)
        assert codes == [grid_cell_code(a, b, 1000) for a, b in zip(x, y)]

    def test_order_independent(self):
        x = np.array([10.0, 2500.0, -300.0])
        y = np.array([20.0, 7100.0, 5.0])
        forward = assign_grid_cells(x, y)
        backward = assign_grid_cells(x[::-1], y[::-1])
        assert forward == backward[::-1]

    def test_empty(self):
        assert assign_grid_cells([], []) == []

    def test_length_mismatch(self):
        with pytest.raises(ValueError):
            assign_grid_cells([1.0, 2.0], [1.0])

    def test_fractional_cell_size_rejected(self):
        with pytest.raises(ValueError, match="whole number"):
            assign_grid_cells([1500.0], [1500.0], cell_size=999.9)


class TestParseCellCode:

    def test_round_trip_indices(self):
        assert parse_cell_code("1kmE3929N3103") == (1000, 3929, 3103)
        assert parse_cell_code("250mE-4N12") == (250, -4, 12)

    def test_invalid(self):
        with pytest.raises(ValueError):
            parse_cell_code("E3929N3103")
