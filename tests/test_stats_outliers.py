"""
Unit Tests for Outlier Detection

Tests the stats.outliers detectors including:
- Global detectors on a single injected spike
- Grubbs critical values and iterative removal
- Isolation gap scores
- Rolling z-score, spike and level-shift detection
- Ensemble voting and sensitivity presets
- Contextual cohorts and the anomaly summary
"""

import pytest
import sys
import os
from datetime import datetime, timedelta

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from stats.models import AnomalyDetectionConfig, DetectionMethod, OutlierDirection, Sensitivity
from stats.outliers import (
    calculate_isolation_score,
    detect_contextual_anomalies,
    detect_level_shifts,
    detect_outliers_ensemble,
    detect_outliers_grubbs,
    detect_outliers_iqr,
    detect_outliers_isolation,
    detect_outliers_mad,
    detect_outliers_modified_zscore,
    detect_outliers_zscore,
    detect_spikes,
    detect_time_series_anomalies,
    grubbs_critical_value,
    grubbs_test,
    mad,
    summarize_anomalies,
)


BASE_PATTERN = [10.0, 11.0, 9.0, 10.0, 12.0, 8.0, 10.0, 11.0, 9.0, 10.0]


@pytest.fixture
def spike_series():
    """Thirty well-behaved points with one ~10 sigma spike at index 15."""
    values = BASE_PATTERN * 3
    values[15] = 100.0
    return values


class TestGlobalDetectors:
    """Test suite for single-method global detectors."""

    @pytest.mark.parametrize("detector", [
        detect_outliers_zscore,
        detect_outliers_modified_zscore,
        detect_outliers_iqr,
        detect_outliers_mad,
        detect_outliers_grubbs,
        detect_outliers_isolation,
    ])
    def test_spike_is_the_only_outlier(self, detector, spike_series):
        """Every detector flags the spike, high side, and nothing else."""
        results = detector(spike_series)
        assert [r.index for r in results] == [15]
        assert results[0].value == 100.0
        assert results[0].direction == OutlierDirection.HIGH
        assert results[0].score > 0

    def test_too_few_points(self):
        assert detect_outliers_zscore([1.0, 100.0]) == []
        assert detect_outliers_iqr([1.0, 2.0, 100.0]) == []
        assert detect_outliers_isolation([1.0] * 5 + [100.0]) == []

    def test_constant_series_has_no_outliers(self):
        values = [5.0] * 12
        assert detect_outliers_zscore(values) == []
        assert detect_outliers_mad(values) == []
        assert detect_outliers_modified_zscore(values) == []
        assert detect_outliers_grubbs(values) == []

    def test_low_outlier_direction(self):
        values = BASE_PATTERN * 3
        values[4] = -80.0
        results = detect_outliers_zscore(values)
        assert results[0].index == 4
        assert results[0].direction == OutlierDirection.LOW

    def test_results_sorted_by_score(self):
        values = BASE_PATTERN * 3
        values[3] = 60.0
        values[20] = 90.0
        results = detect_outliers_mad(values)
        assert [r.index for r in results] == [20, 3]

    def test_iqr_threshold_is_fence(self, spike_series):
        result = detect_outliers_iqr(spike_series)[0]
        assert result.threshold == pytest.approx(11.0 + 1.5 * 1.75)

    def test_mad(self):
        assert mad([1.0, 1.0, 2.0, 2.0, 4.0, 6.0, 9.0]) == 1.0
        assert mad([]) == 0

    def test_does_not_mutate_input(self, spike_series):
        snapshot = list(spike_series)
        detect_outliers_grubbs(spike_series)
        detect_outliers_ensemble(spike_series)
        assert spike_series == snapshot


class TestGrubbs:
    """Test suite for the Grubbs test."""

    def test_critical_values(self):
        assert grubbs_critical_value(10) == pytest.approx(2.29)
        assert grubbs_critical_value(100) == pytest.approx(3.38)
        assert grubbs_critical_value(12) == pytest.approx(2.29 + 0.4 * 0.26)
        assert grubbs_critical_value(500) == pytest.approx(3.5)

    def test_critical_values_follow_alpha(self):
        assert grubbs_critical_value(10, alpha=0.01) == pytest.approx(2.48)
        assert grubbs_critical_value(10, alpha=0.1) == pytest.approx(2.18)
        assert grubbs_critical_value(500, alpha=0.1) == pytest.approx(3.33)

    def test_alpha_changes_the_verdict(self):
        """G is about 2.23 here: above the 0.10 critical value, below the 0.05 one."""
        values = [-1.0, 1.0, -1.0, 1.0, -1.0, 1.0, -1.0, 1.0, 0.0, 3.3]
        assert grubbs_test(values) is None
        assert grubbs_test(values, alpha=0.01) is None
        assert grubbs_test(values, alpha=0.1).index == 9

    def test_needs_seven_points(self):
        assert grubbs_test([1.0, 1.0, 1.0, 1.0, 1.0, 50.0]) is None

    def test_iterative_removal_keeps_original_indices(self):
        values = BASE_PATTERN * 3
        values[2] = 200.0
        values[27] = 120.0
        results = detect_outliers_grubbs(values)
        assert [r.index for r in results] == [2, 27]


class TestIsolation:
    """Test suite for the isolation gap heuristic."""

    def test_edge_points_use_single_gap(self):
        values = [1.0, 2.0, 3.0, 4.0, 10.0]
        # Average gap is 9 / 4; the top point's only neighbour is 6 away
        assert calculate_isolation_score(10.0, values) == pytest.approx(6 / 2.25)
        assert calculate_isolation_score(1.0, values) == pytest.approx(1 / 2.25)

    def test_degenerate(self):
        assert calculate_isolation_score(1.0, [1.0]) == 0
        assert calculate_isolation_score(3.0, [3.0, 3.0, 3.0]) == 0


class TestTimeSeriesDetectors:
    """Test suite for rolling, spike and level-shift detection."""

    def test_rolling_zscore(self):
        values = BASE_PATTERN + [50.0]
        results = detect_time_series_anomalies(values, window=10, threshold=3.0)
        assert [r.index for r in results] == [10]
        assert results[0].method == "rolling_zscore"

    def test_spike_against_trailing_baseline(self):
        results = detect_spikes([5.0, 5.0, 6.0, 5.0, 6.0, 30.0])
        assert [r.index for r in results] == [5]
        assert results[0].direction == OutlierDirection.HIGH

    def test_spike_flat_baseline_uses_unit_volatility(self):
        results = detect_spikes([4.0] * 5 + [7.0])
        assert results[0].score == pytest.approx(3.0)

    def test_spike_needs_full_window(self):
        assert detect_spikes([1.0, 2.0, 50.0], window=5) == []

    def test_level_shift(self):
        values = [10.0, 11.0] * 6 + [30.0, 31.0] * 6
        results = detect_level_shifts(values, window=5)
        assert results
        assert all(r.direction == OutlierDirection.HIGH for r in results)
        assert all(5 <= r.index < len(values) - 5 for r in results)

    def test_index_order(self):
        values = BASE_PATTERN * 2
        values[12] = 40.0
        values[17] = 45.0
        results = detect_time_series_anomalies(values, window=5, threshold=2.0)
        indices = [r.index for r in results]
        assert indices == sorted(indices)


class TestEnsemble:
    """Test suite for ensemble voting."""

    def test_spike_agreed_by_all_methods(self, spike_series):
        results = detect_outliers_ensemble(spike_series)
        assert len(results) == 1
        assert results[0].index == 15
        assert results[0].confidence >= 0.5
        assert set(results[0].methods) == {"zscore", "iqr", "mad", "grubbs"}

    def test_empty_method_list(self, spike_series):
        assert detect_outliers_ensemble(spike_series, AnomalyDetectionConfig(methods=[])) == []

    def test_duplicate_methods_count_once(self, spike_series):
        config = AnomalyDetectionConfig(methods=[DetectionMethod.ZSCORE, DetectionMethod.ZSCORE])
        results = detect_outliers_ensemble(spike_series, config)
        assert results[0].confidence == 1.0
        assert results[0].methods == ["zscore"]

    def test_min_confidence_filters(self):
        """A mild point that MAD flags but the z-score does not."""
        values = BASE_PATTERN * 3
        values[15] = 13.5
        methods = [DetectionMethod.ZSCORE, DetectionMethod.MAD]

        strict = AnomalyDetectionConfig(methods=methods, min_confidence=1.0)
        assert detect_outliers_ensemble(values, strict) == []

        lenient = AnomalyDetectionConfig(methods=methods, min_confidence=0.5)
        results = detect_outliers_ensemble(values, lenient)
        assert [r.index for r in results] == [15]
        assert results[0].confidence == 0.5
        assert results[0].methods == ["mad"]

    def test_sensitivity_presets(self, spike_series):
        for sensitivity in Sensitivity:
            results = detect_outliers_ensemble(spike_series, AnomalyDetectionConfig(sensitivity=sensitivity))
            assert results[0].index == 15

    def test_idempotent(self, spike_series):
        assert detect_outliers_ensemble(spike_series) == detect_outliers_ensemble(spike_series)


class TestContextual:
    """Test suite for day-of-week and category cohorts."""

    def test_category_cohort(self):
        values = [10.0, 11.0, 9.0, 10.0, 12.0, 8.0, 10.0, 11.0, 9.0, 40.0, 5.0, 5.0, 5.0]
        categories = ["a"] * 10 + ["b"] * 3
        results = detect_contextual_anomalies(values, categories=categories)
        assert [r.index for r in results] == [9]
        assert results[0].context == "Unusual for category: a"
        assert results[0].expected_range.max < 40.0

    def test_day_of_week_cohort(self):
        start = datetime(2024, 1, 1)  # a Monday
        timestamps = [start + timedelta(days=7 * i) for i in range(10)]
        values = [10.0, 11.0, 9.0, 10.0, 12.0, 8.0, 10.0, 11.0, 9.0, 40.0]
        results = detect_contextual_anomalies(values, timestamps=timestamps)
        assert results[0].index == 9
        assert results[0].context == "Unusual for Monday"
        assert results[0].method == "contextual_dow"

    def test_mismatched_context_is_ignored(self):
        assert detect_contextual_anomalies([1.0, 2.0, 50.0], categories=["a"]) == []

    def test_no_context(self):
        assert detect_contextual_anomalies([1.0, 2.0, 50.0]) == []


class TestSummary:
    """Test suite for summarize_anomalies."""

    def test_summary_counts(self, spike_series):
        summary = summarize_anomalies(spike_series)
        assert summary.total_points == 30
        assert summary.outlier_count == 1
        assert summary.outlier_percentage == pytest.approx(100 / 30)
        assert summary.distribution.high == 1
        assert summary.most_anomalous.index == 15
        assert {m.method for m in summary.methods} == {"zscore", "iqr", "mad", "grubbs"}

    def test_empty_summary(self):
        summary = summarize_anomalies([])
        assert summary.outlier_count == 0
        assert summary.outlier_percentage == 0
        assert summary.most_anomalous is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
