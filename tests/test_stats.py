"""
Tests for area histograms, proximity metrics and metrics rows.

Tests gliaseg/reporting/stats.py.
"""

import numpy as np
import pytest

from gliaseg.detection.contours import resolve_hierarchy
from gliaseg.reporting.stats import (
    AreaHistogram,
    ImageMetrics,
    ProximityStats,
    bin_area_values,
    bin_areas,
    bin_index,
    contour_centroid,
    contour_diameter,
    proximity_metrics,
    round_half_away,
)
from gliaseg.utils.config import HistogramConfig

from conftest import square_contour


class TestRounding:

    @pytest.mark.parametrize("value,expected", [
        (0.0, 0), (0.49, 0), (0.5, 1), (2.5, 3), (24.5, 25), (-2.5, -3), (-0.4, 0),
    ])
    def test_half_away_from_zero(self, value, expected):
        assert round_half_away(value) == expected

    def test_just_below_half(self):
        """0.5 - ulp must not be pushed over the tie by the addition."""
        assert round_half_away(0.49999999999999994) == 0
        assert round_half_away(-0.49999999999999994) == 0
        assert round_half_away(np.float32(24.5)) == 25


class TestBinIndex:

    def test_bin_boundaries(self):
        config = HistogramConfig()
        assert bin_index(0.0, config) == 0
        assert bin_index(24.4, config) == 0
        assert bin_index(24.5, config) == 1  # rounds to 25
        assert bin_index(100.0, config) == 4
        assert bin_index(499.0, config) == 19

    def test_overflow_clamps_to_last_bin(self):
        config = HistogramConfig()
        assert bin_index(500.0, config) == 20
        assert bin_index(1e7, config) == 20

    def test_custom_layout(self):
        config = HistogramConfig(bin_count=4, bin_width=10)
        assert bin_index(35.0, config) == 3
        assert bin_index(95.0, config) == 3


class TestBinAreas:
    """Tests for bin_areas() on resolved extractions."""

    def test_single_square(self):
        """10x10 square: area 100 lands in bin 4."""
        extraction = resolve_hierarchy([square_contour(0, 0, 10)], np.array([[[-1, -1, -1, -1]]]), 1.0)
        histogram = bin_areas(extraction)

        assert histogram.total == 1
        assert histogram.counts[4] == 1
        assert sum(histogram.counts) == 1
        assert histogram.bin_count == 21

    def test_square_with_hole(self):
        """20x20 square with 5x5 hole: net area 375 lands in bin 15."""
        extraction = resolve_hierarchy(
            [square_contour(0, 0, 20), square_contour(5, 5, 5)],
            np.array([[[-1, -1, 1, -1], [-1, -1, -1, 0]]]),
            1.0,
        )
        histogram = bin_areas(extraction)

        assert histogram.total == 1
        assert histogram.counts[15] == 1

    def test_only_parents_counted(self):
        extraction = resolve_hierarchy(
            [square_contour(0, 0, 20), square_contour(5, 5, 5), square_contour(40, 0, 1)],
            np.array([[[2, -1, 1, -1], [-1, -1, -1, 0], [-1, 0, -1, -1]]]),
            5.0,
        )
        histogram = bin_areas(extraction)
        assert histogram.total == 1

    def test_conservation(self):
        rng = np.random.default_rng(0)
        areas = rng.uniform(0, 2000, size=500)
        histogram = bin_area_values(areas)

        assert sum(histogram.counts) == histogram.total == 500
        assert len(histogram.counts) == 21

    def test_empty(self):
        histogram = bin_area_values([])
        assert histogram.total == 0
        assert histogram.counts == [0] * 21


class TestBinLabels:

    def test_default_labels(self):
        labels = AreaHistogram(counts=[0] * 21).bin_labels("microglia area")
        assert len(labels) == 21
        assert labels[0] == "0 <= microglia area < 25"
        assert labels[1] == "25 <= microglia area < 50"
        assert labels[-1] == "microglia area >= 500"


class TestProximity:
    """Tests for proximity_metrics()."""

    def test_centroid_and_diameter(self):
        square = square_contour(0, 0, 10)
        assert contour_centroid(square) == pytest.approx((5.0, 5.0))
        assert contour_diameter(square) == pytest.approx(np.hypot(10, 10))

    def test_degenerate_centroid(self):
        line = np.array([[[0, 0]], [[5, 0]]], dtype=np.int32)
        assert contour_centroid(line) is None

    def test_counts_within_radius(self):
        microglia = [square_contour(0, 0, 10)]
        near = square_contour(8, 3, 4)  # centroid (10, 5), 5 away
        far = square_contour(100, 100, 4)

        stats = proximity_metrics(microglia, [near, far], roi_factor=2.0)

        assert stats.roi_radius == pytest.approx(np.hypot(10, 10))
        assert stats.counts == [1]
        assert stats.mean == pytest.approx(1.0)
        assert stats.std == pytest.approx(0.0)

    def test_mean_and_std_over_microglia(self):
        microglia = [square_contour(0, 0, 10), square_contour(200, 200, 10)]
        neural = [square_contour(8, 3, 4), square_contour(3, 8, 4)]

        stats = proximity_metrics(microglia, neural, roi_factor=2.0)

        assert stats.counts == [2, 0]
        assert stats.mean == pytest.approx(1.0)
        assert stats.std == pytest.approx(1.0)

    def test_no_microglia(self):
        stats = proximity_metrics([], [square_contour(0, 0, 4)])
        assert (stats.mean, stats.std) == (0.0, 0.0)

    def test_no_neural(self):
        stats = proximity_metrics([square_contour(0, 0, 10)], [])
        assert stats.counts == [0]
        assert stats.mean == 0.0


class TestImageMetrics:

    def make_metrics(self, proximity=None):
        histogram = bin_area_values([100.0, 900.0])
        return ImageMetrics(
            image_id="sample_01",
            microglial_nuclei=3,
            neural_nuclei=5,
            other_nuclei=2,
            microglia_histogram=histogram,
            proximity=proximity,
        )

    def test_totals(self):
        metrics = self.make_metrics()
        assert metrics.total_nuclei == 10
        assert metrics.microglia_count == 2

    def test_row(self):
        row = self.make_metrics().to_row()
        assert row[:6] == ["sample_01", 10, 3, 5, 2, 2]
        assert len(row) == 6 + 21
        assert row[6 + 4] == 1
        assert row[-1] == 1

    def test_row_with_proximity(self):
        metrics = self.make_metrics(ProximityStats(mean=1.5, std=0.5))
        row = metrics.to_row(include_proximity=True)
        assert row[5:8] == [1.5, 0.5, 2]
        assert len(row) == 8 + 21

    def test_proximity_columns_default_to_zero(self):
        row = self.make_metrics().to_row(include_proximity=True)
        assert row[5:7] == [0.0, 0.0]
