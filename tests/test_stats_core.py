"""
Unit Tests for Core Statistics

Tests the stats.core functions including:
- Central tendency and spread
- Percentiles and quartiles
- Standard scores and shape
- Correlation and regression contracts
- Degenerate-input defaults
"""

import math
import pytest
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from stats.core import (
    ContractViolationError,
    coefficient_of_variation,
    correlation,
    covariance,
    describe,
    iqr,
    kurtosis,
    linear_regression,
    maximum,
    mean,
    median,
    minimum,
    mode,
    normalize,
    percentile,
    quartiles,
    skewness,
    standard_deviation,
    standardize,
    total,
    value_range,
    variance,
    z_score,
    z_scores,
)


class TestCentralTendency:
    """Test suite for mean, median and mode."""

    @pytest.fixture
    def values(self):
        return [4.0, 8.0, 15.0, 16.0, 23.0, 42.0]

    def test_mean_within_bounds(self, values):
        """Mean lies between the minimum and maximum."""
        avg = mean(values)
        assert minimum(values) <= avg <= maximum(values)
        assert avg == pytest.approx(18.0)

    def test_median_odd_and_even(self):
        """Test median for odd and even lengths."""
        assert median([1, 2, 3, 4, 5]) == 3
        assert median([1, 2, 3, 4]) == 2.5
        assert median([5, 1, 3]) == 3

    def test_median_does_not_reorder_input(self):
        """The caller's list is left untouched."""
        values = [5.0, 1.0, 3.0]
        median(values)
        assert values == [5.0, 1.0, 3.0]

    def test_mode_ties_keep_first_seen_order(self):
        """All tied values are modes, in order of first appearance."""
        assert mode([3, 1, 3, 1, 2]) == [3.0, 1.0]
        assert mode([2, 2, 5]) == [2.0]

    def test_mode_all_unique(self):
        assert mode([1, 2, 3]) == [1.0, 2.0, 3.0]

    def test_idempotent(self, values):
        """Repeated calls give identical results."""
        assert mean(values) == mean(values)
        assert describe(values) == describe(values)

    def test_empty_defaults(self):
        """Degenerate input yields documented defaults."""
        assert total([]) == 0
        assert mean([]) == 0
        assert median([]) == 0
        assert mode([]) == []
        assert minimum([]) == math.inf
        assert maximum([]) == -math.inf
        assert value_range([]) == 0
        assert percentile([], 50) == 0


class TestSpread:
    """Test suite for variance, standard deviation and CV."""

    def test_variance_non_negative(self):
        assert variance([1.0, 5.0, 9.0]) >= 0
        assert variance([1.0]) == 0
        assert variance([]) == 0

    def test_population_vs_sample(self):
        """Sample variance divides by N-1."""
        values = [2.0, 4.0, 4.0, 4.0, 5.0, 5.0, 7.0, 9.0]
        assert variance(values) == pytest.approx(4.0)
        assert standard_deviation(values) == pytest.approx(2.0)
        assert variance(values, sample=True) == pytest.approx(32.0 / 7)

    def test_constant_series(self):
        """A constant series has zero spread."""
        values = [7.0] * 10
        assert standard_deviation(values) == 0
        assert z_scores(values) == [0.0] * 10
        assert normalize(values) == [0.5] * 10

    def test_constant_floats_have_zero_spread(self):
        """Rounding in the mean of repeated 0.1 must not leave a residual spread."""
        values = [0.1] * 3
        assert variance(values) == 0
        assert standard_deviation(values, sample=True) == 0
        assert z_scores(values) == [0.0, 0.0, 0.0]
        assert z_score(0.1, values) == 0

    def test_coefficient_of_variation_is_percentage(self):
        values = [2.0, 4.0, 4.0, 4.0, 5.0, 5.0, 7.0, 9.0]
        assert coefficient_of_variation(values) == pytest.approx(40.0)
        assert coefficient_of_variation([-1.0, 1.0]) == 0


class TestPercentiles:
    """Test suite for percentile and quartiles."""

    def test_percentile_bounds(self):
        values = [3.0, 1.0, 4.0, 1.0, 5.0, 9.0, 2.0, 6.0]
        assert percentile(values, 0) == min(values)
        assert percentile(values, 100) == max(values)
        assert min(values) <= percentile(values, 37) <= max(values)

    def test_linear_interpolation(self):
        assert percentile([1, 2, 3, 4], 50) == pytest.approx(2.5)
        assert percentile([10, 20, 30, 40, 50], 25) == pytest.approx(20.0)

    def test_invalid_percentile_raises(self):
        with pytest.raises(ContractViolationError):
            percentile([1, 2, 3], 101)
        with pytest.raises(ContractViolationError):
            percentile([1, 2, 3], -1)

    def test_quartiles_and_iqr(self):
        values = [1.0, 2.0, 3.0, 4.0, 5.0, 6.0, 7.0, 8.0, 9.0]
        q = quartiles(values)
        assert (q.q1, q.q2, q.q3) == (3.0, 5.0, 7.0)
        assert iqr(values) == 4.0


class TestScoresAndShape:
    """Test suite for z-scores, skewness and kurtosis."""

    def test_z_score(self):
        values = [2.0, 4.0, 4.0, 4.0, 5.0, 5.0, 7.0, 9.0]
        assert z_score(9.0, values) == pytest.approx(2.0)

    def test_standardize_has_unit_spread(self):
        result = standardize([1.0, 2.0, 3.0, 4.0, 5.0])
        assert mean(result) == pytest.approx(0.0)
        assert standard_deviation(result) == pytest.approx(1.0)

    def test_skewness_sign(self):
        assert skewness([1.0, 1.0, 1.0, 2.0, 10.0]) > 0
        assert skewness([1.0, 9.0, 10.0, 10.0, 10.0]) < 0
        assert skewness([1.0, 2.0]) == 0

    def test_kurtosis_small_sample(self):
        assert kurtosis([1.0, 2.0, 3.0]) == 0
        assert kurtosis([5.0] * 6) == 0


class TestRelationships:
    """Test suite for covariance, correlation and regression."""

    def test_perfect_correlation(self):
        x = [1.0, 2.0, 3.0, 4.0, 5.0]
        assert correlation(x, [2 * v for v in x]) == pytest.approx(1.0)
        assert correlation(x, [-v for v in x]) == pytest.approx(-1.0)

    def test_correlation_bounds(self):
        x = [1.0, 3.0, 2.0, 5.0, 4.0]
        y = [2.0, 1.0, 4.0, 3.0, 5.0]
        assert -1.0 <= correlation(x, y) <= 1.0

    def test_zero_variance_correlation(self):
        assert correlation([1.0, 2.0, 3.0], [4.0, 4.0, 4.0]) == 0

    def test_mismatched_lengths_raise(self):
        with pytest.raises(ContractViolationError):
            correlation([1.0, 2.0], [1.0])
        with pytest.raises(ContractViolationError):
            covariance([1.0, 2.0], [1.0])
        with pytest.raises(ContractViolationError):
            linear_regression([1.0, 2.0, 3.0], [1.0])

    def test_contract_violation_is_value_error(self):
        assert issubclass(ContractViolationError, ValueError)

    def test_linear_regression_exact_fit(self):
        x = [0.0, 1.0, 2.0, 3.0]
        result = linear_regression(x, [3 * v + 1 for v in x])
        assert result.slope == pytest.approx(3.0)
        assert result.intercept == pytest.approx(1.0)
        assert result.r2 == pytest.approx(1.0)

    def test_linear_regression_too_few_points(self):
        result = linear_regression([1.0], [1.0])
        assert (result.slope, result.intercept, result.r2) == (0.0, 0.0, 0.0)


class TestDescribe:
    """Test suite for the describe bundle."""

    def test_describe_fields(self):
        result = describe([1.0, 2.0, 3.0, 4.0, 5.0])
        assert result.count == 5
        assert result.sum == 15
        assert result.mean == 3
        assert result.median == 3
        assert result.range == 4
        assert result.iqr == result.q3 - result.q1

    def test_describe_empty(self):
        result = describe([])
        assert result.count == 0
        assert result.mean == 0

    def test_describe_serializes_camel_case(self):
        data = describe([1.0, 2.0, 3.0]).model_dump(by_alias=True)
        assert "stdDev" in data
        assert "std_dev" not in data

    def test_does_not_mutate_input(self):
        values = [9.0, 1.0, 5.0, 3.0]
        describe(values)
        assert values == [9.0, 1.0, 5.0, 3.0]


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
