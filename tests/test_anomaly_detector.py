"""
Unit Tests for GRC Anomaly Detector

Tests the GrcAnomalyDetector class including:
- Risk score spikes, rising trends and concentration
- Control failure clusters, degradation and test gaps
- Issue surges and velocity checks
- Metric thresholds, outliers and level shifts
- Full scans, counters and anomaly management
"""

import pytest
import sys
import os
from datetime import datetime, timedelta, timezone

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from detection.anomaly_detector import (
    GrcAnomalyDetector,
    acknowledge_anomaly,
    filter_anomalies,
    resolve_anomaly,
)
from detection.models import (
    AnomalyFilter,
    AnomalyScanInput,
    AnomalySeverity,
    AnomalyType,
    ControlEffectiveness,
    ControlSnapshot,
    EntityType,
    IssueSnapshot,
    MetricConfig,
    MetricDataPoint,
    MetricThresholds,
    ThresholdDirection,
)
from prediction.models import RiskSnapshot
from stats.models import AnomalyDetectionConfig, DetectionMethod, Sensitivity


AS_OF = datetime(2024, 6, 30, tzinfo=timezone.utc)
BASE_COUNTS = [10.0, 11.0, 9.0, 10.0, 12.0, 8.0, 10.0, 11.0, 9.0, 10.0]


def metric_points(values):
    start = AS_OF - timedelta(days=len(values) - 1)
    return [
        MetricDataPoint(timestamp=start + timedelta(days=i), value=v, entity_id="M-1")
        for i, v in enumerate(values)
    ]


class TestGrcAnomalyDetector:
    """Test suite for GrcAnomalyDetector."""

    @pytest.fixture
    def detector(self):
        """Create a fresh detector with a fixed clock for each test."""
        return GrcAnomalyDetector(as_of=AS_OF)

    def test_initialization(self, detector):
        """Test detector initialization."""
        assert detector.high_risk_threshold == 15.0
        assert detector.max_days_without_test == 90
        assert detector.min_history == 5
        assert detector.scans_run == 0
        assert detector.anomalies_detected == 0

    # ------------------------------------------------------------------
    # Risks
    # ------------------------------------------------------------------

    def test_risk_score_spike(self, detector):
        """A jump far outside recent history is a critical spike."""
        risks = [RiskSnapshot(id="R-1", name="Payments fraud", category="fraud", residual_score=30)]
        anomalies = detector.detect_risk_score_anomalies(risks, {"R-1": [5, 5, 6, 5, 6]})

        assert len(anomalies) == 1
        spike = anomalies[0]
        assert spike.type == AnomalyType.RISK_SCORE_SPIKE
        assert spike.severity == AnomalySeverity.CRITICAL
        assert spike.title == "Risk score spike: Payments fraud"
        assert spike.description == "Risk score jumped from historical average of 5.4 to 30"
        assert spike.entity_ids == ["R-1"]
        assert spike.confidence == 1.0
        assert spike.detected_at == AS_OF

    def test_risk_short_history_skipped(self, detector):
        risks = [RiskSnapshot(id="R-1", category="fraud", residual_score=30)]
        assert detector.detect_risk_score_anomalies(risks, {"R-1": [5, 5, 6]}) == []
        assert detector.detect_risk_score_anomalies(risks, {}) == []

    def test_rising_risk_trend(self, detector):
        risks = [RiskSnapshot(id="R-1", category="fraud", residual_score=30)]
        history = [float(v) for v in range(1, 30)]
        anomalies = detector.detect_risk_score_anomalies(risks, {"R-1": history})

        trends = [a for a in anomalies if a.type == AnomalyType.TREND_CHANGE]
        assert len(trends) == 1
        assert trends[0].severity == AnomalySeverity.WARNING
        assert trends[0].context.trend.slope == pytest.approx(1.0)

    def test_risk_concentration(self, detector):
        risks = [
            RiskSnapshot(id="R-1", category="cyber", residual_score=20),
            RiskSnapshot(id="R-2", category="cyber", residual_score=18),
            RiskSnapshot(id="R-3", category="cyber", residual_score=15),
            RiskSnapshot(id="R-4", category="cyber", residual_score=4),
            RiskSnapshot(id="R-5", category="ops", residual_score=22),
        ]
        anomalies = detector.detect_risk_concentration(risks)

        assert len(anomalies) == 1
        assert anomalies[0].type == AnomalyType.UNUSUAL_PATTERN
        assert anomalies[0].severity == AnomalySeverity.CRITICAL
        assert anomalies[0].entity_ids == ["R-1", "R-2", "R-3"]
        assert anomalies[0].anomaly_score == 0.75

    # ------------------------------------------------------------------
    # Controls
    # ------------------------------------------------------------------

    def test_control_failure_cluster(self, detector):
        controls = [
            ControlSnapshot(id=f"C-{i}", current_effectiveness=ControlEffectiveness.INEFFECTIVE)
            for i in range(4)
        ] + [
            ControlSnapshot(id=f"C-{i}", current_effectiveness=ControlEffectiveness.EFFECTIVE)
            for i in range(4, 10)
        ]
        anomalies = detector.detect_control_failure_anomalies(controls, {})

        assert len(anomalies) == 1
        assert anomalies[0].type == AnomalyType.CONTROL_FAILURE_CLUSTER
        assert anomalies[0].severity == AnomalySeverity.CRITICAL
        assert len(anomalies[0].entity_ids) == 4

    def test_degrading_control(self, detector):
        control = ControlSnapshot(
            id="C-1", name="Access review", current_effectiveness=ControlEffectiveness.PARTIALLY_EFFECTIVE
        )
        anomalies = detector.detect_control_failure_anomalies([control], {"C-1": [0, 0, 0, 0, 1, 1, 1]})

        assert len(anomalies) == 1
        assert anomalies[0].type == AnomalyType.TREND_CHANGE
        assert anomalies[0].title == "Degrading control: Access review"
        assert anomalies[0].anomaly_score > 0.6

    def test_control_test_gaps(self, detector):
        controls = [
            ControlSnapshot(id="recent", last_tested_at=AS_OF - timedelta(days=30)),
            ControlSnapshot(id="info", last_tested_at=AS_OF - timedelta(days=100)),
            ControlSnapshot(id="warning", last_tested_at=AS_OF - timedelta(days=150)),
            ControlSnapshot(id="critical", last_tested_at=datetime(2023, 12, 1)),
            ControlSnapshot(id="never"),
        ]
        anomalies = detector.detect_control_test_gaps(controls)
        severities = {a.entity_ids[0]: a.severity for a in anomalies}

        assert severities == {
            "info": AnomalySeverity.INFO,
            "warning": AnomalySeverity.WARNING,
            "critical": AnomalySeverity.CRITICAL,
        }
        info = next(a for a in anomalies if a.entity_ids == ["info"])
        assert info.description == "Control has not been tested in 100 days (threshold: 90 days)"
        assert info.context.expected_range.max == 90

    # ------------------------------------------------------------------
    # Issues
    # ------------------------------------------------------------------

    def test_issue_surge(self, detector):
        issues = [IssueSnapshot(id=f"I-{i}", status="open") for i in range(40)]
        issues += [IssueSnapshot(id=f"X-{i}", status="closed") for i in range(5)]
        anomalies = detector.detect_issue_surge(issues, BASE_COUNTS)

        assert len(anomalies) == 1
        assert anomalies[0].type == AnomalyType.ISSUE_SURGE
        assert anomalies[0].severity == AnomalySeverity.CRITICAL
        assert len(anomalies[0].entity_ids) == 40
        assert anomalies[0].context.actual_value == 40

    def test_no_surge_for_normal_count(self, detector):
        issues = [IssueSnapshot(id=f"I-{i}", status="open") for i in range(10)]
        assert detector.detect_issue_surge(issues, BASE_COUNTS) == []

    def test_issue_velocity(self, detector):
        created = [float(v) for v in range(1, 31)]
        closed = [5.0] * 30
        anomalies = detector.detect_issue_velocity_anomalies(created, closed)
        titles = {a.title: a.severity for a in anomalies}

        assert titles["Increasing issue creation rate"] == AnomalySeverity.INFO
        assert titles["Issue backlog growing"] == AnomalySeverity.CRITICAL

    def test_declining_closure(self, detector):
        created = [5.0] * 30
        closed = [float(v) for v in range(30, 0, -1)]
        anomalies = detector.detect_issue_velocity_anomalies(created, closed)
        assert [a.title for a in anomalies] == ["Declining issue closure rate"]

    def test_velocity_needs_ten_days(self, detector):
        assert detector.detect_issue_velocity_anomalies([1.0] * 9, [1.0] * 9) == []

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def test_metric_threshold_and_outlier(self, detector):
        metric = MetricConfig(name="Open findings", thresholds=MetricThresholds(warning=80, critical=90))
        anomalies = detector.detect_metric_anomalies(
            metric_points([50, 52, 51, 53, 50, 52, 51, 95]), metric
        )
        types = {a.type: a for a in anomalies}

        breach = types[AnomalyType.THRESHOLD_BREACH]
        assert breach.severity == AnomalySeverity.CRITICAL
        assert breach.description == "Current value (95) exceeds critical threshold"
        assert breach.anomaly_score == pytest.approx(5.0)
        assert breach.entity_ids == ["M-1"]
        assert breach.context.expected_range.max == 90
        assert breach.context.expected_range.min is None

        assert AnomalyType.UNUSUAL_PATTERN in types

    def test_metric_below_threshold(self, detector):
        metric = MetricConfig(
            name="Coverage",
            thresholds=MetricThresholds(warning=50, critical=40, direction=ThresholdDirection.BELOW),
        )
        anomalies = detector.detect_metric_anomalies(metric_points([52, 53, 51, 52, 53, 45]), metric)
        breach = next(a for a in anomalies if a.type == AnomalyType.THRESHOLD_BREACH)
        assert breach.severity == AnomalySeverity.WARNING
        assert "falls below warning threshold" in breach.description

    def test_metric_level_shift(self, detector):
        values = [10, 11] * 5 + [30, 31] * 3
        anomalies = detector.detect_metric_anomalies(metric_points(values), MetricConfig(name="Exceptions"))
        shifts = [a for a in anomalies if a.method == "level_shift_detection"]
        assert len(shifts) == 1
        assert shifts[0].severity == AnomalySeverity.WARNING

    def test_metric_uses_detector_sensitivity_by_default(self):
        """A latest value with |z| of about 2.7 is unusual at high sensitivity only."""
        detector = GrcAnomalyDetector(
            config=AnomalyDetectionConfig(sensitivity=Sensitivity.HIGH, methods=[DetectionMethod.ZSCORE]),
            as_of=AS_OF,
        )
        points = metric_points([-1.0, 1.0, -1.0, 1.0, -1.0, 1.0, -1.0, 1.0, 0.0, 6.0])

        def unusual(metric):
            return [
                a for a in detector.detect_metric_anomalies(points, metric)
                if a.type == AnomalyType.UNUSUAL_PATTERN
            ]

        assert len(unusual(MetricConfig(name="Open findings"))) == 1
        assert unusual(MetricConfig(name="Open findings", sensitivity=Sensitivity.MEDIUM)) == []

    def test_metric_short_series(self, detector):
        assert detector.detect_metric_anomalies(metric_points([1, 2, 3]), MetricConfig(name="x")) == []

    # ------------------------------------------------------------------
    # Full scan
    # ------------------------------------------------------------------

    def test_run_anomaly_scan(self, detector):
        data = AnomalyScanInput(
            risks=[
                RiskSnapshot(id="R-1", category="fraud", residual_score=30),
                RiskSnapshot(id="R-2", category="fraud", residual_score=3),
            ],
            controls=[ControlSnapshot(id="C-1", last_tested_at=AS_OF - timedelta(days=100))],
            issues=[IssueSnapshot(id="I-1", status="open")],
            historical_risk_scores={"R-1": [5, 5, 6, 5, 6]},
        )
        result = detector.run_anomaly_scan(data)

        assert [a.severity for a in result.anomalies] == [AnomalySeverity.CRITICAL, AnomalySeverity.INFO]
        assert result.summary.total_checked == 4
        assert result.summary.anomalies_found == 2
        assert result.summary.by_severity.critical == 1
        assert result.summary.by_severity.info == 1
        assert result.summary.by_type == {"risk_score_spike": 1, "threshold_breach": 1}
        assert result.timestamp == AS_OF

        stats = detector.get_stats()
        assert stats["scans_run"] == 1
        assert stats["entities_checked"] == 4
        assert stats["anomalies_detected"] == 2

    def test_empty_scan(self, detector):
        result = detector.run_anomaly_scan(AnomalyScanInput())
        assert result.anomalies == []
        assert result.summary.total_checked == 0

    def test_recent_anomalies_and_reset(self, detector):
        risks = [RiskSnapshot(id="R-1", category="fraud", residual_score=30)]
        detector.detect_risk_score_anomalies(risks, {"R-1": [5, 5, 6, 5, 6]})

        assert len(detector.get_recent_anomalies()) == 1
        detector.reset()
        assert detector.get_recent_anomalies() == []
        assert detector.anomalies_detected == 0


class TestAnomalyManagement:
    """Test suite for acknowledge / resolve / filter."""

    @pytest.fixture
    def anomalies(self):
        detector = GrcAnomalyDetector(as_of=AS_OF)
        controls = [
            ControlSnapshot(id="info", last_tested_at=AS_OF - timedelta(days=100)),
            ControlSnapshot(id="critical", last_tested_at=AS_OF - timedelta(days=200)),
        ]
        return detector.detect_control_test_gaps(controls)

    def test_acknowledge_returns_copy(self, anomalies):
        original = anomalies[0]
        acknowledged = acknowledge_anomaly(original, "auditor-7", AS_OF)

        assert acknowledged.acknowledged
        assert acknowledged.acknowledged_by == "auditor-7"
        assert acknowledged.acknowledged_at == AS_OF
        assert not original.acknowledged

    def test_resolve(self, anomalies):
        resolved = resolve_anomaly(anomalies[0], "Control retested", AS_OF)
        assert resolved.resolution == "Control retested"
        assert resolved.resolved_at == AS_OF
        assert anomalies[0].resolved_at is None

    def test_filter(self, anomalies):
        acknowledged = [acknowledge_anomaly(anomalies[0], "auditor-7", AS_OF), anomalies[1]]

        critical = filter_anomalies(acknowledged, AnomalyFilter(severity=[AnomalySeverity.CRITICAL]))
        assert [a.entity_ids for a in critical] == [["critical"]]

        assert len(filter_anomalies(acknowledged, AnomalyFilter(acknowledged=False))) == 1
        assert len(filter_anomalies(acknowledged, AnomalyFilter(resolved=False))) == 2
        assert len(filter_anomalies(acknowledged, AnomalyFilter(entity_type=[EntityType.RISK]))) == 0
        assert len(filter_anomalies(acknowledged, AnomalyFilter(min_score=2.0))) == 1
        assert filter_anomalies(acknowledged, AnomalyFilter()) == acknowledged


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
