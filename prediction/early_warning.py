"""
Early Warnings & Risk Clusters

Presentation-level aggregation over finished predictions: correlated risk
clusters per category, severity-sorted early warnings with a recommended
action, and an organization-wide prediction summary.
"""

import logging
from datetime import datetime, timezone
from itertools import combinations
from typing import Dict, List, Optional

from stats.core import correlation, mean
from stats.timeseries import detect_trend
from prediction.engine import map_trend
from prediction.models import (
    AlertSeverity,
    EarlyWarning,
    Prediction,
    PredictionAlert,
    PredictionConfidence,
    PredictionSummary,
    PredictionTrend,
    RiskCluster,
    RiskHistory,
    RiskSnapshot,
    WarningType,
)

logger = logging.getLogger(__name__)

MIN_CLUSTER_HISTORY = 5
MIN_CLUSTER_CORRELATION = 0.3
STRONG_TREND_STRENGTH = 0.6

# Used for compliance alerts that arrive without an overall prediction
DEFAULT_COMPLIANCE_CONFIDENCE = 0.5

SEVERITY_ORDER = {
    AlertSeverity.CRITICAL: 0,
    AlertSeverity.HIGH: 1,
    AlertSeverity.MEDIUM: 2,
    AlertSeverity.LOW: 3,
}

RISK_ACTION = "Review risk mitigation controls and consider additional measures"
RISK_TREND_ACTION = "Investigate root causes and strengthen controls"
CONTROL_ACTION = "Schedule control review and testing, consider control redesign"
COMPLIANCE_ACTION = "Prioritize remediation of compliance gaps"


# ============================================================================
# Risk clustering
# ============================================================================

def identify_risk_clusters(risks: List[RiskSnapshot], histories: List[RiskHistory]) -> List[RiskCluster]:
    """
    Group risks by category and keep categories whose histories move together.

    A category qualifies when at least two of its risks have five or more
    observations and the mean absolute pairwise correlation of those
    histories (tail-aligned to the shorter one) is at least 0.3.

    Args:
        risks: Current risk snapshots (category, residual score)
        histories: Score histories keyed by risk_id

    Returns:
        Clusters sorted by average residual score, highest first
    """
    by_id = {history.risk_id: history for history in histories}

    by_category: Dict[str, List[RiskSnapshot]] = {}
    for risk in risks:
        by_category.setdefault(risk.category, []).append(risk)

    clusters = []
    for category, members in by_category.items():
        if len(members) < 2:
            continue

        series = [
            [point.score for point in by_id[risk.id].scores]
            for risk in members
            if risk.id in by_id and len(by_id[risk.id].scores) >= MIN_CLUSTER_HISTORY
        ]
        if len(series) < 2:
            logger.debug(f"Category {category}: not enough history to cluster")
            continue

        correlations = []
        for first, second in combinations(series, 2):
            length = min(len(first), len(second))
            correlations.append(abs(correlation(first[-length:], second[-length:])))

        strength = mean(correlations)
        if strength < MIN_CLUSTER_CORRELATION:
            continue

        combined = [score for scores in series for score in scores]

        clusters.append(RiskCluster(
            name=f"{category} Risks",
            risks=[risk.id for risk in members],
            avg_score=mean([risk.residual_score for risk in members]),
            trend=map_trend(detect_trend(combined), higher_is_better=False),
            correlation_strength=strength,
        ))

    return sorted(clusters, key=lambda c: c.avg_score, reverse=True)


# ============================================================================
# Early warnings
# ============================================================================

def _is_urgent(alert: PredictionAlert) -> bool:
    return alert.severity in (AlertSeverity.CRITICAL, AlertSeverity.HIGH)


def generate_early_warnings(
    risk_predictions: List[Prediction],
    control_predictions: List[Prediction],
    compliance_prediction: Optional[Prediction] = None,
    as_of: Optional[datetime] = None,
    compliance_alerts: Optional[List[PredictionAlert]] = None
) -> List[EarlyWarning]:
    """
    Flatten prediction alerts into actionable warnings.

    Critical and high risk/control alerts become warnings of the same
    severity; a strongly deteriorating risk trend adds a medium warning.
    Every compliance alert (from the overall prediction and the optional
    framework-level ``compliance_alerts``) becomes a critical or high
    warning.

    Returns:
        Warnings sorted critical, high, medium (stable within a severity)
    """
    triggered_at = as_of or datetime.now(timezone.utc)
    warnings = []

    for prediction in risk_predictions:
        for alert in prediction.alerts:
            if not _is_urgent(alert):
                continue
            impact = (
                f"Risk score may reach {alert.predicted_value:.1f}"
                if alert.predicted_value is not None
                else "Risk score may reach elevated levels"
            )
            warnings.append(EarlyWarning(
                type=WarningType.RISK,
                severity=alert.severity,
                entity_id=prediction.entity_id,
                message=alert.message,
                predicted_impact=impact,
                recommended_action=RISK_ACTION,
                confidence_score=prediction.confidence_score,
                triggered_at=triggered_at,
            ))

        if (prediction.trend == PredictionTrend.DETERIORATING
                and prediction.trend_strength > STRONG_TREND_STRENGTH):
            warnings.append(EarlyWarning(
                type=WarningType.RISK,
                severity=AlertSeverity.MEDIUM,
                entity_id=prediction.entity_id,
                message="Risk showing strong deteriorating trend",
                predicted_impact="Continued increase in risk exposure expected",
                recommended_action=RISK_TREND_ACTION,
                confidence_score=prediction.confidence_score,
                triggered_at=triggered_at,
            ))

    for prediction in control_predictions:
        for alert in prediction.alerts:
            if not _is_urgent(alert):
                continue
            warnings.append(EarlyWarning(
                type=WarningType.CONTROL,
                severity=alert.severity,
                entity_id=prediction.entity_id,
                message=alert.message,
                predicted_impact="Control may fail to adequately mitigate associated risks",
                recommended_action=CONTROL_ACTION,
                confidence_score=prediction.confidence_score,
                triggered_at=triggered_at,
            ))

    if compliance_prediction is not None:
        alerts = compliance_prediction.alerts + list(compliance_alerts or [])
        compliance_confidence = compliance_prediction.confidence_score
    else:
        alerts = list(compliance_alerts or [])
        compliance_confidence = DEFAULT_COMPLIANCE_CONFIDENCE

    for alert in alerts:
        warnings.append(EarlyWarning(
            type=WarningType.COMPLIANCE,
            severity=(
                AlertSeverity.CRITICAL
                if alert.severity == AlertSeverity.CRITICAL
                else AlertSeverity.HIGH
            ),
            message=alert.message,
            predicted_impact="Regulatory compliance may be at risk",
            recommended_action=COMPLIANCE_ACTION,
            confidence_score=compliance_confidence,
            triggered_at=triggered_at,
        ))

    return sorted(warnings, key=lambda w: SEVERITY_ORDER[w.severity])


# ============================================================================
# Summary
# ============================================================================

def aggregate_trend(trends: List[PredictionTrend]) -> PredictionTrend:
    """Majority trend; anything short of an outright majority is stable."""
    if not trends:
        return PredictionTrend.STABLE

    deteriorating = trends.count(PredictionTrend.DETERIORATING)
    improving = trends.count(PredictionTrend.IMPROVING)
    stable = trends.count(PredictionTrend.STABLE)

    if deteriorating > improving + stable:
        return PredictionTrend.DETERIORATING
    if improving > deteriorating + stable:
        return PredictionTrend.IMPROVING
    return PredictionTrend.STABLE


def summarize_predictions(
    organization_id: str,
    risk_predictions: List[Prediction],
    control_predictions: List[Prediction],
    compliance_prediction: Optional[Prediction] = None,
    risk_clusters: Optional[List[RiskCluster]] = None,
    early_warnings: Optional[List[EarlyWarning]] = None,
    as_of: Optional[datetime] = None
) -> PredictionSummary:
    """Organization-wide counts of predictions and alerts, plus overall trends."""
    predictions = list(risk_predictions) + list(control_predictions)
    if compliance_prediction is not None:
        predictions.append(compliance_prediction)

    alerts = [alert for prediction in predictions for alert in prediction.alerts]

    def count(severity: AlertSeverity) -> int:
        return sum(1 for alert in alerts if alert.severity == severity)

    return PredictionSummary(
        organization_id=organization_id,
        generated_at=as_of or datetime.now(timezone.utc),
        total_predictions=len(predictions),
        high_confidence_predictions=sum(
            1 for p in predictions if p.confidence == PredictionConfidence.HIGH
        ),
        overall_risk_trend=aggregate_trend([p.trend for p in risk_predictions]),
        overall_control_trend=aggregate_trend([p.trend for p in control_predictions]),
        overall_compliance_trend=(
            compliance_prediction.trend if compliance_prediction is not None else PredictionTrend.STABLE
        ),
        critical_alerts=count(AlertSeverity.CRITICAL),
        high_alerts=count(AlertSeverity.HIGH),
        medium_alerts=count(AlertSeverity.MEDIUM),
        early_warnings=list(early_warnings or []),
        risk_clusters=list(risk_clusters or []),
    )
