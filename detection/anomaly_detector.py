"""
GRC Anomaly Detection Service

Runs the statistical detectors over GRC data (risk scores, control
effectiveness and testing, issue volume, arbitrary metrics) and turns their
output into GrcAnomaly records with severities, entity references and
readable descriptions. A full scan combines every check and sorts the result
critical first.
"""

import logging
from collections import deque
from datetime import datetime, timezone
from typing import Dict, List, Optional

from stats.core import mean, standard_deviation
from stats.models import AnomalyDetectionConfig, ExpectedRange, OutlierDirection, TrendDirection
from stats.outliers import detect_level_shifts, detect_outliers_ensemble, detect_spikes
from stats.timeseries import describe_time_series, detect_trend, ema
from detection.models import (
    AnomalyContext,
    AnomalyFilter,
    AnomalyScanInput,
    AnomalyScanResult,
    AnomalySeverity,
    AnomalyType,
    ControlEffectiveness,
    ControlSnapshot,
    EntityType,
    GrcAnomaly,
    IssueSnapshot,
    MetricConfig,
    MetricDataPoint,
    RiskSnapshot,
    ScanSummary,
    SeverityCounts,
    ThresholdDirection,
)

logger = logging.getLogger(__name__)

SEVERITY_ORDER = {
    AnomalySeverity.CRITICAL: 0,
    AnomalySeverity.WARNING: 1,
    AnomalySeverity.INFO: 2,
}

FAILING_EFFECTIVENESS = {ControlEffectiveness.INEFFECTIVE, ControlEffectiveness.PARTIALLY_EFFECTIVE}
OPEN_ISSUE_STATUSES = {"open", "draft", "in_remediation", "pending_validation"}


def _as_utc(moment: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


class GrcAnomalyDetector:
    """
    Statistical anomaly checks over GRC entities.

    The detector holds no data between calls beyond a short list of recent
    findings and counters for ``get_stats``; every check is computed from
    the arguments it is given.
    """

    def __init__(
        self,
        config: Optional[AnomalyDetectionConfig] = None,
        high_risk_threshold: float = 15.0,
        max_days_without_test: int = 90,
        min_history: int = 5,
        as_of: Optional[datetime] = None
    ):
        """
        Initialize the detector.

        Args:
            config: Ensemble configuration for the outlier-based checks
            high_risk_threshold: Residual score at which a risk counts as high
            max_days_without_test: Days after which an untested control is overdue
            min_history: Minimum history length for per-entity checks
            as_of: Fixed clock for detected_at and test-gap ages (defaults to now, UTC)
        """
        self.config = config or AnomalyDetectionConfig()
        self.high_risk_threshold = high_risk_threshold
        self.max_days_without_test = max_days_without_test
        self.min_history = min_history
        self.as_of = as_of

        self._recent_anomalies: deque = deque(maxlen=50)

        self.scans_run = 0
        self.entities_checked = 0
        self.anomalies_detected = 0

    def _now(self) -> datetime:
        return self.as_of or datetime.now(timezone.utc)

    def _record(self, anomalies: List[GrcAnomaly]) -> List[GrcAnomaly]:
        self.anomalies_detected += len(anomalies)
        self._recent_anomalies.extend(anomalies)
        return anomalies

    # ========================================================================
    # Risks
    # ========================================================================

    def detect_risk_score_anomalies(
        self,
        risks: List[RiskSnapshot],
        historical_scores: Dict[str, List[float]]
    ) -> List[GrcAnomaly]:
        """
        Check each risk's current residual score against its history.

        Flags a spike when the current score departs sharply from the
        recent scores, and a trend_change when scores rise steadily.

        Args:
            risks: Current risk snapshots
            historical_scores: Past residual scores per risk id, oldest first

        Returns:
            Detected anomalies
        """
        anomalies = []

        for risk in risks:
            history = historical_scores.get(risk.id)
            if not history or len(history) < self.min_history:
                continue

            current = risk.residual_score
            full_history = list(history) + [current]
            latest = len(full_history) - 1

            spike = next((s for s in detect_spikes(full_history, 5, 2) if s.index == latest), None)
            if spike is not None:
                historical_mean = mean(history)
                anomalies.append(GrcAnomaly(
                    type=AnomalyType.RISK_SCORE_SPIKE,
                    severity=AnomalySeverity.CRITICAL if spike.score > 3 else AnomalySeverity.WARNING,
                    title=f"Risk score spike: {risk.name or risk.id}",
                    description=(
                        f"Risk score jumped from historical average of "
                        f"{historical_mean:.1f} to {current:g}"
                    ),
                    detected_at=self._now(),
                    entity_type=EntityType.RISK,
                    entity_ids=[risk.id],
                    anomaly_score=spike.score,
                    confidence=min(spike.score / 5, 1.0),
                    method="spike_detection",
                    context=AnomalyContext(
                        actual_value=current,
                        historical_mean=historical_mean,
                        historical_std=standard_deviation(history),
                    ),
                ))

            trend = detect_trend(full_history)
            if trend.direction == TrendDirection.UP and trend.confidence > 0.7:
                anomalies.append(GrcAnomaly(
                    type=AnomalyType.TREND_CHANGE,
                    severity=AnomalySeverity.WARNING if trend.slope > 0.5 else AnomalySeverity.INFO,
                    title=f"Increasing risk trend: {risk.name or risk.id}",
                    description=(
                        f"Risk score showing consistent upward trend with "
                        f"{trend.confidence * 100:.0f}% confidence"
                    ),
                    detected_at=self._now(),
                    entity_type=EntityType.RISK,
                    entity_ids=[risk.id],
                    anomaly_score=trend.slope,
                    confidence=trend.confidence,
                    method="trend_detection",
                    context=AnomalyContext(trend=trend),
                ))

        return self._record(anomalies)

    def detect_risk_concentration(self, risks: List[RiskSnapshot]) -> List[GrcAnomaly]:
        """Flag categories where most risks (and at least three) are high."""
        by_category: Dict[str, List[RiskSnapshot]] = {}
        for risk in risks:
            by_category.setdefault(risk.category, []).append(risk)

        anomalies = []
        for category, members in by_category.items():
            high = [r for r in members if r.residual_score >= self.high_risk_threshold]
            ratio = len(high) / len(members)

            if ratio > 0.5 and len(high) >= 3:
                anomalies.append(GrcAnomaly(
                    type=AnomalyType.UNUSUAL_PATTERN,
                    severity=AnomalySeverity.CRITICAL if ratio > 0.7 else AnomalySeverity.WARNING,
                    title=f"High-risk concentration in {category}",
                    description=(
                        f"{ratio * 100:.0f}% of risks in {category} are high severity "
                        f"({len(high)}/{len(members)})"
                    ),
                    detected_at=self._now(),
                    entity_type=EntityType.RISK,
                    entity_ids=[r.id for r in high],
                    anomaly_score=ratio,
                    confidence=0.9,
                    method="cluster_detection",
                ))

        return self._record(anomalies)

    # ========================================================================
    # Controls
    # ========================================================================

    def detect_control_failure_anomalies(
        self,
        controls: List[ControlSnapshot],
        historical_failure_rates: Dict[str, List[float]]
    ) -> List[GrcAnomaly]:
        """
        Flag clusters of failing controls and individually degrading controls.

        A control is failing when rated ineffective or partially effective.
        A control is degrading when the smoothed failure indicator (EMA over
        history plus the current state) is above 60% while the older part of
        its history averaged under 30%.
        """
        anomalies = []

        failing = [c for c in controls if c.current_effectiveness in FAILING_EFFECTIVENESS]
        failure_rate = len(failing) / len(controls) if controls else 0.0

        if failure_rate > 0.2 and len(failing) >= 3:
            anomalies.append(GrcAnomaly(
                type=AnomalyType.CONTROL_FAILURE_CLUSTER,
                severity=AnomalySeverity.CRITICAL if failure_rate > 0.3 else AnomalySeverity.WARNING,
                title="Control failure cluster detected",
                description=(
                    f"{failure_rate * 100:.0f}% of controls are failing "
                    f"({len(failing)}/{len(controls)})"
                ),
                detected_at=self._now(),
                entity_type=EntityType.CONTROL,
                entity_ids=[c.id for c in failing],
                anomaly_score=failure_rate,
                confidence=0.95,
                method="cluster_detection",
            ))

        for control in controls:
            history = historical_failure_rates.get(control.id)
            if not history or len(history) < self.min_history:
                continue

            current = 1.0 if control.current_effectiveness in FAILING_EFFECTIVENESS else 0.0
            smoothed = ema(list(history) + [current], 3)[-1]

            if smoothed > 0.6 and mean(history[:-3]) < 0.3:
                anomalies.append(GrcAnomaly(
                    type=AnomalyType.TREND_CHANGE,
                    severity=AnomalySeverity.WARNING,
                    title=f"Degrading control: {control.name or control.id}",
                    description=(
                        f"Control effectiveness declining - failure rate trend at "
                        f"{smoothed * 100:.0f}%"
                    ),
                    detected_at=self._now(),
                    entity_type=EntityType.CONTROL,
                    entity_ids=[control.id],
                    anomaly_score=smoothed,
                    confidence=0.8,
                    method="ema_trend",
                    context=AnomalyContext(historical_mean=mean(history)),
                ))

        return self._record(anomalies)

    def detect_control_test_gaps(self, controls: List[ControlSnapshot]) -> List[GrcAnomaly]:
        """Flag controls whose last test is older than the allowed gap."""
        max_days = self.max_days_without_test
        now = self._now()
        anomalies = []

        for control in controls:
            if control.last_tested_at is None:
                continue

            days = (_as_utc(now) - _as_utc(control.last_tested_at)).days

            if days <= max_days:
                continue

            if days > max_days * 2:
                severity = AnomalySeverity.CRITICAL
            elif days > max_days * 1.5:
                severity = AnomalySeverity.WARNING
            else:
                severity = AnomalySeverity.INFO

            anomalies.append(GrcAnomaly(
                type=AnomalyType.THRESHOLD_BREACH,
                severity=severity,
                title=f"Control test overdue: {control.name or control.id}",
                description=f"Control has not been tested in {days} days (threshold: {max_days} days)",
                detected_at=now,
                entity_type=EntityType.CONTROL,
                entity_ids=[control.id],
                anomaly_score=days / max_days,
                confidence=1.0,
                method="threshold_check",
                context=AnomalyContext(
                    actual_value=float(days),
                    expected_range=ExpectedRange(min=0, max=max_days),
                ),
            ))

        return self._record(anomalies)

    # ========================================================================
    # Issues
    # ========================================================================

    def detect_issue_surge(self, issues: List[IssueSnapshot], historical_counts: List[float]) -> List[GrcAnomaly]:
        """Flag the current open-issue count when the ensemble marks it as a high outlier."""
        if len(historical_counts) < self.min_history:
            return []

        open_issues = [i for i in issues if i.status in OPEN_ISSUE_STATUSES]
        current = len(open_issues)
        full_history = list(historical_counts) + [current]
        latest = len(full_history) - 1

        outlier = next(
            (o for o in detect_outliers_ensemble(full_history, self.config) if o.index == latest),
            None,
        )
        if outlier is None or outlier.direction != OutlierDirection.HIGH:
            return []

        historical_mean = mean(historical_counts)
        return self._record([GrcAnomaly(
            type=AnomalyType.ISSUE_SURGE,
            severity=AnomalySeverity.CRITICAL if outlier.score > 3 else AnomalySeverity.WARNING,
            title="Issue surge detected",
            description=(
                f"Current open issue count ({current}) is significantly higher than "
                f"historical average ({historical_mean:.1f})"
            ),
            detected_at=self._now(),
            entity_type=EntityType.ISSUE,
            entity_ids=[i.id for i in open_issues],
            anomaly_score=outlier.score,
            confidence=outlier.confidence,
            method="ensemble_detection",
            context=AnomalyContext(
                actual_value=float(current),
                historical_mean=historical_mean,
                historical_std=standard_deviation(historical_counts),
            ),
        )])

    def detect_issue_velocity_anomalies(
        self,
        daily_created: List[float],
        daily_closed: List[float]
    ) -> List[GrcAnomaly]:
        """
        Check issue creation and closure rates.

        Needs at least ten days of creation counts. Flags accelerating
        creation, slowing closure, and a backlog growing by more than two
        issues a day over the last week.
        """
        if len(daily_created) < 10:
            return []

        anomalies = []

        creation = describe_time_series(daily_created).trend
        if creation.direction == TrendDirection.UP and creation.confidence > 0.7:
            anomalies.append(GrcAnomaly(
                type=AnomalyType.VELOCITY_ANOMALY,
                severity=AnomalySeverity.WARNING if creation.slope > 1 else AnomalySeverity.INFO,
                title="Increasing issue creation rate",
                description=f"Issues are being created at an accelerating pace (slope: {creation.slope:.2f})",
                detected_at=self._now(),
                entity_type=EntityType.ISSUE,
                anomaly_score=creation.slope,
                confidence=creation.confidence,
                method="trend_detection",
                context=AnomalyContext(trend=creation),
            ))

        if len(daily_closed) >= 10:
            closure = describe_time_series(daily_closed).trend
            if closure.direction == TrendDirection.DOWN and closure.confidence > 0.7:
                anomalies.append(GrcAnomaly(
                    type=AnomalyType.VELOCITY_ANOMALY,
                    severity=AnomalySeverity.WARNING,
                    title="Declining issue closure rate",
                    description="Issues are being closed at a slowing pace - potential bottleneck",
                    detected_at=self._now(),
                    entity_type=EntityType.ISSUE,
                    anomaly_score=abs(closure.slope),
                    confidence=closure.confidence,
                    method="trend_detection",
                    context=AnomalyContext(trend=closure),
                ))

        if len(daily_created) == len(daily_closed):
            net = [float(c) - float(d) for c, d in zip(daily_created, daily_closed)]
            avg_net = mean(net[-7:])

            if avg_net > 2:
                anomalies.append(GrcAnomaly(
                    type=AnomalyType.VELOCITY_ANOMALY,
                    severity=AnomalySeverity.CRITICAL if avg_net > 5 else AnomalySeverity.WARNING,
                    title="Issue backlog growing",
                    description=f"On average, {avg_net:.1f} more issues created than closed per day",
                    detected_at=self._now(),
                    entity_type=EntityType.ISSUE,
                    anomaly_score=avg_net,
                    confidence=0.9,
                    method="velocity_analysis",
                    context=AnomalyContext(actual_value=avg_net),
                ))

        return self._record(anomalies)

    # ========================================================================
    # Generic metrics
    # ========================================================================

    def detect_metric_anomalies(
        self,
        data_points: List[MetricDataPoint],
        metric: MetricConfig
    ) -> List[GrcAnomaly]:
        """
        Check a metric series: threshold breach, statistical outlier on the
        latest value, sustained trend and a recent level shift.

        Args:
            data_points: Observations, oldest first (at least five)
            metric: Metric name, optional thresholds and ensemble sensitivity

        Returns:
            Detected anomalies
        """
        if len(data_points) < self.min_history:
            return []

        values = [point.value for point in data_points]
        latest = data_points[-1]
        latest_ids = [latest.entity_id] if latest.entity_id else []
        anomalies = []

        thresholds = metric.thresholds
        if thresholds is not None:
            if thresholds.direction == ThresholdDirection.ABOVE:
                breaches_critical = latest.value > thresholds.critical
                breaches_warning = latest.value > thresholds.warning
            else:
                breaches_critical = latest.value < thresholds.critical
                breaches_warning = latest.value < thresholds.warning

            if breaches_critical or breaches_warning:
                level = "critical" if breaches_critical else "warning"
                limit = thresholds.critical if breaches_critical else thresholds.warning
                verb = "exceeds" if thresholds.direction == ThresholdDirection.ABOVE else "falls below"
                anomalies.append(GrcAnomaly(
                    type=AnomalyType.THRESHOLD_BREACH,
                    severity=AnomalySeverity.CRITICAL if breaches_critical else AnomalySeverity.WARNING,
                    title=f"{metric.name} threshold breach",
                    description=f"Current value ({latest.value:g}) {verb} {level} threshold",
                    detected_at=self._now(),
                    entity_type=EntityType.METRIC,
                    entity_ids=latest_ids,
                    anomaly_score=abs(latest.value - limit),
                    confidence=1.0,
                    method="threshold_check",
                    context=AnomalyContext(
                        actual_value=latest.value,
                        expected_range=ExpectedRange(
                            min=thresholds.critical if thresholds.direction == ThresholdDirection.BELOW else None,
                            max=thresholds.critical if thresholds.direction == ThresholdDirection.ABOVE else None,
                        ),
                    ),
                ))

        config = self.config
        if metric.sensitivity is not None:
            config = config.model_copy(update={"sensitivity": metric.sensitivity})
        latest_index = len(values) - 1
        outlier = next(
            (o for o in detect_outliers_ensemble(values, config) if o.index == latest_index),
            None,
        )
        if outlier is not None:
            if outlier.score > 3.5:
                severity = AnomalySeverity.CRITICAL
            elif outlier.score > 2.5:
                severity = AnomalySeverity.WARNING
            else:
                severity = AnomalySeverity.INFO

            anomalies.append(GrcAnomaly(
                type=AnomalyType.UNUSUAL_PATTERN,
                severity=severity,
                title=f"Unusual {metric.name} value",
                description=f"Current value is statistically unusual ({outlier.confidence * 100:.0f}% confidence)",
                detected_at=self._now(),
                entity_type=EntityType.METRIC,
                entity_ids=latest_ids,
                anomaly_score=outlier.score,
                confidence=outlier.confidence,
                method="ensemble_detection",
                context=AnomalyContext(
                    actual_value=values[latest_index],
                    historical_mean=mean(values[:-1]),
                    historical_std=standard_deviation(values[:-1]),
                ),
            ))

        trend = detect_trend(values)
        if trend.direction != TrendDirection.FLAT and trend.confidence > 0.8:
            if thresholds is not None:
                alarming = (
                    (thresholds.direction == ThresholdDirection.ABOVE and trend.direction == TrendDirection.UP)
                    or (thresholds.direction == ThresholdDirection.BELOW and trend.direction == TrendDirection.DOWN)
                )
            else:
                alarming = trend.strength > 0.5

            if alarming:
                anomalies.append(GrcAnomaly(
                    type=AnomalyType.TREND_CHANGE,
                    severity=AnomalySeverity.WARNING if trend.strength > 0.7 else AnomalySeverity.INFO,
                    title=f"{metric.name} trending {trend.direction.value}",
                    description=(
                        f"Consistent {trend.direction.value}ward trend with "
                        f"{trend.confidence * 100:.0f}% confidence"
                    ),
                    detected_at=self._now(),
                    entity_type=EntityType.METRIC,
                    anomaly_score=trend.strength,
                    confidence=trend.confidence,
                    method="trend_detection",
                    context=AnomalyContext(trend=trend),
                ))

        # Level shifts can only be tested up to index n - window - 1
        shift_window = 5
        shifts = detect_level_shifts(values, shift_window, 2.5)
        if shifts and shifts[-1].index >= len(values) - shift_window - 3:
            shift = shifts[-1]
            anomalies.append(GrcAnomaly(
                type=AnomalyType.TREND_CHANGE,
                severity=AnomalySeverity.WARNING if shift.score > 3 else AnomalySeverity.INFO,
                title=f"{metric.name} level shift detected",
                description=f"Sudden permanent change in {metric.name} baseline",
                detected_at=self._now(),
                entity_type=EntityType.METRIC,
                anomaly_score=shift.score,
                confidence=0.85,
                method="level_shift_detection",
            ))

        return self._record(anomalies)

    # ========================================================================
    # Full scan
    # ========================================================================

    def run_anomaly_scan(self, data: AnomalyScanInput) -> AnomalyScanResult:
        """
        Run every check the supplied data allows.

        Returns:
            Anomalies sorted critical, warning, info and then by descending
            score, with per-severity and per-type counts
        """
        anomalies: List[GrcAnomaly] = []

        if data.historical_risk_scores is not None:
            anomalies.extend(self.detect_risk_score_anomalies(data.risks, data.historical_risk_scores))
        anomalies.extend(self.detect_risk_concentration(data.risks))

        if data.historical_control_failures is not None:
            anomalies.extend(self.detect_control_failure_anomalies(data.controls, data.historical_control_failures))
        anomalies.extend(self.detect_control_test_gaps(data.controls))

        if data.historical_issue_counts is not None:
            anomalies.extend(self.detect_issue_surge(data.issues, data.historical_issue_counts))
        if data.daily_issues_created is not None and data.daily_issues_closed is not None:
            anomalies.extend(self.detect_issue_velocity_anomalies(data.daily_issues_created, data.daily_issues_closed))

        anomalies.sort(key=lambda a: (SEVERITY_ORDER[a.severity], -a.anomaly_score))

        by_severity = {severity.value: 0 for severity in AnomalySeverity}
        by_type: Dict[str, int] = {}
        for anomaly in anomalies:
            by_severity[anomaly.severity.value] += 1
            by_type[anomaly.type.value] = by_type.get(anomaly.type.value, 0) + 1

        total_checked = len(data.risks) + len(data.controls) + len(data.issues)
        self.scans_run += 1
        self.entities_checked += total_checked

        logger.info(
            f"Anomaly scan: {total_checked} entities checked, {len(anomalies)} anomalies "
            f"({by_severity['critical']} critical, {by_severity['warning']} warning)"
        )

        return AnomalyScanResult(
            anomalies=anomalies,
            summary=ScanSummary(
                total_checked=total_checked,
                anomalies_found=len(anomalies),
                by_severity=SeverityCounts(**by_severity),
                by_type=by_type,
            ),
            timestamp=self._now(),
        )

    def get_stats(self) -> Dict:
        """
        Get detector statistics.

        Returns:
            Dictionary with detector counters and settings
        """
        return {
            "scans_run": self.scans_run,
            "entities_checked": self.entities_checked,
            "anomalies_detected": self.anomalies_detected,
            "recent_anomalies": len(self._recent_anomalies),
            "sensitivity": self.config.sensitivity.value,
            "high_risk_threshold": self.high_risk_threshold,
            "max_days_without_test": self.max_days_without_test,
        }

    def get_recent_anomalies(self, limit: int = 10) -> List[GrcAnomaly]:
        return list(self._recent_anomalies)[-limit:]

    def reset(self) -> None:
        """Reset counters and recent findings."""
        self._recent_anomalies.clear()
        self.scans_run = 0
        self.entities_checked = 0
        self.anomalies_detected = 0


# ============================================================================
# Anomaly management
# ============================================================================

def acknowledge_anomaly(anomaly: GrcAnomaly, user_id: str, at: Optional[datetime] = None) -> GrcAnomaly:
    """Return a copy marked as acknowledged by ``user_id``."""
    return anomaly.model_copy(update={
        "acknowledged": True,
        "acknowledged_by": user_id,
        "acknowledged_at": at or datetime.now(timezone.utc),
    })


def resolve_anomaly(anomaly: GrcAnomaly, resolution: str, at: Optional[datetime] = None) -> GrcAnomaly:
    """Return a copy carrying the resolution note."""
    return anomaly.model_copy(update={
        "resolution": resolution,
        "resolved_at": at or datetime.now(timezone.utc),
    })


def filter_anomalies(anomalies: List[GrcAnomaly], filters: AnomalyFilter) -> List[GrcAnomaly]:
    """Keep anomalies matching every criterion that is set."""
    def matches(anomaly: GrcAnomaly) -> bool:
        if filters.severity is not None and anomaly.severity not in filters.severity:
            return False
        if filters.types is not None and anomaly.type not in filters.types:
            return False
        if filters.entity_type is not None and anomaly.entity_type not in filters.entity_type:
            return False
        if filters.acknowledged is not None and anomaly.acknowledged != filters.acknowledged:
            return False
        if filters.resolved is not None and (anomaly.resolved_at is not None) != filters.resolved:
            return False
        if filters.min_score is not None and anomaly.anomaly_score < filters.min_score:
            return False
        if filters.min_confidence is not None and anomaly.confidence < filters.min_confidence:
            return False
        return True

    return [anomaly for anomaly in anomalies if matches(anomaly)]
