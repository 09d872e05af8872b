"""
Prediction Engine

Multi-period forecasts for GRC metric histories. Every domain wrapper
funnels into ``create_prediction``, which blends three simple models,
derives a widening confidence interval from one-step residuals, scores its
own confidence and raises a volatility alert for erratic histories. The
wrappers then layer their domain alerts (threshold breaches, declining test
pass rates, issue surges, compliance deterioration) on top.
"""

import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

from stats.core import coefficient_of_variation, linear_regression, mean, standard_deviation
from stats.models import TrendDirection, TrendResult
from stats.timeseries import cumsum, detect_trend, sma
from prediction.models import (
    AlertSeverity,
    AlertType,
    ComplianceForecast,
    ComplianceHistory,
    ControlHistory,
    ControlTestResult,
    IssueCounts,
    IssueVolumeForecast,
    PredictedValue,
    Prediction,
    PredictionAlert,
    PredictionConfidence,
    PredictionConfig,
    PredictionModel,
    PredictionTrend,
    PredictionType,
    RiskHistory,
)

logger = logging.getLogger(__name__)

PREDICTION_TTL = timedelta(days=7)

# Blend weights of the weighted ensemble
SES_WEIGHT = 0.4
LINEAR_WEIGHT = 0.35
MOVING_AVERAGE_WEIGHT = 0.25

# Residuals come from a one-step-ahead mean of this many previous points
RESIDUAL_WINDOW = 3

VOLATILITY_ALERT_CV = 30
VOLATILITY_HIGH_CV = 50

# Minimum history length per wrapper (PredictionConfig.min_data_points overrides)
MIN_RISK_POINTS = 5
MIN_CONTROL_POINTS = 10
MIN_FRAMEWORK_POINTS = 10

CONTROL_FAILURE_THRESHOLD = 0.5
CONTROL_CRITICAL_THRESHOLD = 0.3
PASS_RATE_WINDOW = 5

ISSUE_SURGE_FACTOR = 1.5
BACKLOG_GROWTH_FACTOR = 1.5

COMPLIANCE_ALERT_LEVEL = 0.8
COMPLIANCE_CRITICAL_LEVEL = 0.7

# Whether the metric rising is good news
HIGHER_IS_BETTER = {
    PredictionType.RISK_SCORE: False,
    PredictionType.ISSUE_COUNT: False,
    PredictionType.CONTROL_EFFECTIVENESS: True,
    PredictionType.COMPLIANCE_SCORE: True,
    PredictionType.METRIC_VALUE: True,
}


# ============================================================================
# Helpers
# ============================================================================

def _now(config: PredictionConfig) -> datetime:
    return config.as_of or datetime.now(timezone.utc)


def _min_points(config: PredictionConfig, default: int) -> int:
    return config.min_data_points if config.min_data_points is not None else default


def map_trend(trend: TrendResult, higher_is_better: bool) -> PredictionTrend:
    """Translate a raw up/down/flat trend into improving/stable/deteriorating."""
    if trend.direction == TrendDirection.FLAT:
        return PredictionTrend.STABLE

    rising = trend.direction == TrendDirection.UP
    if rising == higher_is_better:
        return PredictionTrend.IMPROVING
    return PredictionTrend.DETERIORATING


def z_for_confidence(confidence_level: float) -> float:
    """Two-sided normal critical value for the common confidence levels."""
    if confidence_level >= 0.99:
        return 2.576
    if confidence_level >= 0.95:
        return 1.96
    if confidence_level >= 0.90:
        return 1.645
    return 1.28


def period_label(period: int) -> str:
    if period == 1:
        return "Next Period"
    return f"{period} Periods"


def _add_alerts(prediction: Prediction, alerts: List[PredictionAlert]) -> Prediction:
    if not alerts:
        return prediction
    return prediction.model_copy(update={"alerts": prediction.alerts + alerts})


# ============================================================================
# Component models
# ============================================================================

def _predict_linear(values: List[float], periods: int) -> List[float]:
    fit = linear_regression(list(range(len(values))), values)
    return [fit.slope * (len(values) + i) + fit.intercept for i in range(periods)]


def _predict_exponential_smoothing(values: List[float], periods: int, alpha: float) -> List[float]:
    smoothed = float(values[0]) if len(values) else 0.0
    for value in values:
        smoothed = alpha * float(value) + (1 - alpha) * smoothed
    return [smoothed] * periods


def _predict_moving_average(values: List[float], periods: int) -> List[float]:
    """Last moving average, extrapolated along the slope of the averages."""
    window = min(5, len(values) // 2)
    averages = sma(values, window)

    if averages:
        last = averages[-1]
    elif len(values):
        last = float(values[-1])
    else:
        last = 0.0

    slope = detect_trend(averages).slope
    return [last + slope * (i + 1) for i in range(periods)]


def _residuals(values: List[float]) -> List[float]:
    if len(values) < RESIDUAL_WINDOW:
        return [0.0]

    return [
        float(values[i]) - mean(values[i - RESIDUAL_WINDOW:i])
        for i in range(RESIDUAL_WINDOW, len(values))
    ]


def _forecast(values: List[float], config: PredictionConfig) -> List[PredictedValue]:
    periods = config.periods_ahead
    linear = _predict_linear(values, periods)
    ses = _predict_exponential_smoothing(values, periods, config.smoothing_factor)
    moving_average = _predict_moving_average(values, periods)

    residual_std = standard_deviation(_residuals(values))
    z = z_for_confidence(config.confidence_level)

    forecast = []
    for i in range(periods):
        period = i + 1
        value = ses[i] * SES_WEIGHT + linear[i] * LINEAR_WEIGHT + moving_average[i] * MOVING_AVERAGE_WEIGHT
        half_width = residual_std * z * math.sqrt(period)

        forecast.append(PredictedValue(
            period=period,
            period_label=period_label(period),
            value=value,
            lower_bound=value - half_width,
            upper_bound=value + half_width,
            confidence=max(0.5, 1 - period * 0.1),
        ))

    return forecast


def _confidence(values: List[float], trend: TrendResult) -> Tuple[PredictionConfidence, float]:
    """Weighted score of history length, stability and fit quality."""
    data_score = min(1.0, len(values) / 30)
    volatility_score = max(0.0, 1 - coefficient_of_variation(values) / 100)
    score = data_score * 0.3 + volatility_score * 0.4 + trend.strength * 0.3

    if score >= 0.7:
        tier = PredictionConfidence.HIGH
    elif score >= 0.4:
        tier = PredictionConfidence.MEDIUM
    else:
        tier = PredictionConfidence.LOW

    return tier, score


# ============================================================================
# Core
# ============================================================================

def create_prediction(
    values: List[float],
    prediction_type: PredictionType,
    organization_id: str,
    config: Optional[PredictionConfig] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    higher_is_better: Optional[bool] = None
) -> Prediction:
    """
    Forecast a metric history ``config.periods_ahead`` periods out.

    Args:
        values: Metric history, oldest first
        prediction_type: Kind of metric; decides whether rising is good news
            unless ``higher_is_better`` is given
        organization_id: Opaque owner identifier copied onto the result
        config: Forecast settings
        entity_type: Optional kind of entity the history belongs to
        entity_id: Optional caller identifier of that entity
        higher_is_better: Override for the metric's desirability

    Returns:
        Prediction with blended forecasts, trend, confidence and a
        volatility alert when the history's CV exceeds 30%
    """
    config = config or PredictionConfig()
    if higher_is_better is None:
        higher_is_better = HIGHER_IS_BETTER[prediction_type]

    trend = detect_trend(values)
    forecast = _forecast(values, config)
    confidence, confidence_score = _confidence(values, trend)

    alerts = []
    cv = coefficient_of_variation(values)
    if cv > VOLATILITY_ALERT_CV:
        alerts.append(PredictionAlert(
            type=AlertType.VOLATILITY_SPIKE,
            severity=AlertSeverity.HIGH if cv > VOLATILITY_HIGH_CV else AlertSeverity.MEDIUM,
            message=f"High volatility detected (CV: {cv:.0f}%)",
        ))

    created_at = _now(config)

    return Prediction(
        organization_id=organization_id,
        type=prediction_type,
        entity_type=entity_type,
        entity_id=entity_id,
        current_value=float(values[-1]) if len(values) else 0.0,
        predictions=forecast,
        trend=map_trend(trend, higher_is_better),
        trend_strength=trend.strength,
        confidence=confidence,
        confidence_score=confidence_score,
        model=PredictionModel.WEIGHTED_ENSEMBLE,
        data_points=len(values),
        alerts=alerts,
        created_at=created_at,
        expires_at=created_at + PREDICTION_TTL,
    )


# ============================================================================
# Risk scores
# ============================================================================

def predict_risk_scores(
    histories: List[RiskHistory],
    organization_id: str,
    config: Optional[PredictionConfig] = None
) -> List[Prediction]:
    """
    Forecast each risk's score history.

    Histories shorter than the minimum are skipped. With thresholds
    configured, every forecast period at or above the critical (otherwise
    high) threshold adds a threshold_breach alert.
    """
    config = config or PredictionConfig()
    min_points = _min_points(config, MIN_RISK_POINTS)
    thresholds = config.thresholds

    predictions = []
    for history in histories:
        if len(history.scores) < min_points:
            logger.debug(f"Skipping risk {history.risk_id}: {len(history.scores)} < {min_points} points")
            continue

        values = [point.score for point in history.scores]
        prediction = create_prediction(
            values, PredictionType.RISK_SCORE, organization_id, config, "risk", history.risk_id
        )

        alerts = []
        if thresholds is not None:
            for predicted in prediction.predictions:
                if thresholds.critical is not None and predicted.value >= thresholds.critical:
                    level, severity, threshold = "critical", AlertSeverity.CRITICAL, thresholds.critical
                elif thresholds.high is not None and predicted.value >= thresholds.high:
                    level, severity, threshold = "high", AlertSeverity.HIGH, thresholds.high
                else:
                    continue

                alerts.append(PredictionAlert(
                    type=AlertType.THRESHOLD_BREACH,
                    severity=severity,
                    message=(
                        f"Risk score predicted to reach {level} level "
                        f"({predicted.value:.1f}) in {predicted.period_label}"
                    ),
                    predicted_period=predicted.period,
                    predicted_value=predicted.value,
                    threshold=threshold,
                ))

        predictions.append(_add_alerts(prediction, alerts))

    return predictions


# ============================================================================
# Control effectiveness
# ============================================================================

def rolling_pass_rate(results: List[ControlTestResult], window: int = PASS_RATE_WINDOW) -> List[float]:
    """Fraction of passed tests over each full window of consecutive results."""
    if window <= 0 or len(results) < window:
        return []

    passed = [1.0 if result.passed else 0.0 for result in results]
    return sma(passed, window)


def predict_control_effectiveness(
    histories: List[ControlHistory],
    organization_id: str,
    config: Optional[PredictionConfig] = None
) -> List[Prediction]:
    """
    Forecast each control's effectiveness (0..1).

    Periods forecast below 50% raise a failure alert (critical below 30%).
    With at least five test results, a clearly declining rolling pass rate
    raises a trend_reversal alert.
    """
    config = config or PredictionConfig()
    min_points = _min_points(config, MIN_CONTROL_POINTS)

    predictions = []
    for history in histories:
        if len(history.effectiveness) < min_points:
            logger.debug(
                f"Skipping control {history.control_id}: "
                f"{len(history.effectiveness)} < {min_points} points"
            )
            continue

        values = [point.score for point in history.effectiveness]
        prediction = create_prediction(
            values, PredictionType.CONTROL_EFFECTIVENESS, organization_id, config,
            "control", history.control_id
        )

        alerts = []
        for predicted in prediction.predictions:
            if predicted.value < CONTROL_FAILURE_THRESHOLD:
                alerts.append(PredictionAlert(
                    type=AlertType.THRESHOLD_BREACH,
                    severity=(
                        AlertSeverity.CRITICAL
                        if predicted.value < CONTROL_CRITICAL_THRESHOLD
                        else AlertSeverity.HIGH
                    ),
                    message=(
                        f"Control effectiveness predicted to fall to "
                        f"{predicted.value * 100:.0f}% in {predicted.period_label}"
                    ),
                    predicted_period=predicted.period,
                    predicted_value=predicted.value,
                    threshold=CONTROL_FAILURE_THRESHOLD,
                ))

        if len(history.test_results) >= PASS_RATE_WINDOW:
            pass_trend = detect_trend(rolling_pass_rate(history.test_results))
            if pass_trend.direction == TrendDirection.DOWN and pass_trend.strength > 0.5:
                alerts.append(PredictionAlert(
                    type=AlertType.TREND_REVERSAL,
                    severity=AlertSeverity.MEDIUM,
                    message=f"Control test pass rate is declining ({pass_trend.slope * 100:.1f}% per period)",
                ))

        predictions.append(_add_alerts(prediction, alerts))

    return predictions


# ============================================================================
# Issue volume
# ============================================================================

def running_backlog(counts: List[IssueCounts]) -> List[float]:
    """Cumulative opened minus closed, floored at zero per period."""
    net = cumsum([c.opened - c.closed for c in counts])
    return [max(0.0, value) for value in net]


def predict_issue_volume(
    counts: List[IssueCounts],
    organization_id: str,
    config: Optional[PredictionConfig] = None
) -> IssueVolumeForecast:
    """
    Forecast issues opened per period and the running backlog.

    Raises a surge alert when the latest period opened more than 1.5x the
    average of the earlier periods, and a backlog alert when a deteriorating
    backlog is forecast to grow past 1.5x its current size.
    """
    config = config or PredictionConfig()

    opened = [float(c.opened) for c in counts]
    backlog = running_backlog(counts)

    opened_prediction = create_prediction(opened, PredictionType.ISSUE_COUNT, organization_id, config)
    backlog_prediction = create_prediction(backlog, PredictionType.ISSUE_COUNT, organization_id, config)

    alerts = []

    last_opened = opened[-1] if opened else 0.0
    avg_opened = mean(opened[:-1])
    if avg_opened > 0 and last_opened > avg_opened * ISSUE_SURGE_FACTOR:
        alerts.append(PredictionAlert(
            type=AlertType.ANOMALY_PREDICTED,
            severity=AlertSeverity.HIGH,
            message=(
                f"Issue volume spike detected: {last_opened:.0f} issues "
                f"({(last_opened / avg_opened - 1) * 100:.0f}% above average)"
            ),
        ))

    if backlog_prediction.trend == PredictionTrend.DETERIORATING and backlog_prediction.predictions:
        final = backlog_prediction.predictions[-1]
        if final.value > backlog[-1] * BACKLOG_GROWTH_FACTOR:
            alerts.append(PredictionAlert(
                type=AlertType.THRESHOLD_BREACH,
                severity=AlertSeverity.HIGH,
                message=f"Issue backlog predicted to grow to {round(final.value)} issues",
                predicted_value=final.value,
            ))

    return IssueVolumeForecast(
        opened_prediction=opened_prediction,
        backlog_prediction=backlog_prediction,
        alerts=alerts,
    )


# ============================================================================
# Compliance score
# ============================================================================

def predict_compliance_score(
    history: List[ComplianceHistory],
    organization_id: str,
    config: Optional[PredictionConfig] = None
) -> ComplianceForecast:
    """
    Forecast the overall compliance score and each framework's score.

    A framework is forecast only when it has enough observations. A
    framework whose score is clearly deteriorating toward under 80% raises a
    threshold_breach alert (critical under 70%); a deteriorating overall
    score raises a trend_reversal alert.
    """
    config = config or PredictionConfig()
    min_points = _min_points(config, MIN_FRAMEWORK_POINTS)

    overall = create_prediction(
        [h.overall_score for h in history], PredictionType.COMPLIANCE_SCORE, organization_id, config
    )

    frameworks: Dict[str, List[float]] = {}
    for entry in history:
        for framework, score in entry.by_framework.items():
            frameworks.setdefault(framework, []).append(score)

    alerts = []
    framework_predictions = {}
    for framework, values in frameworks.items():
        if len(values) < min_points:
            logger.debug(f"Skipping framework {framework}: {len(values)} < {min_points} points")
            continue

        prediction = create_prediction(
            values, PredictionType.COMPLIANCE_SCORE, organization_id, config, "framework", framework
        )
        framework_predictions[framework] = prediction

        if prediction.trend == PredictionTrend.DETERIORATING and prediction.trend_strength > 0.5:
            final = prediction.predictions[-1]
            if final.value < COMPLIANCE_ALERT_LEVEL:
                alerts.append(PredictionAlert(
                    type=AlertType.THRESHOLD_BREACH,
                    severity=(
                        AlertSeverity.CRITICAL
                        if final.value < COMPLIANCE_CRITICAL_LEVEL
                        else AlertSeverity.HIGH
                    ),
                    message=f"{framework} compliance predicted to fall to {final.value * 100:.0f}%",
                    predicted_value=final.value,
                ))

    if overall.trend == PredictionTrend.DETERIORATING:
        alerts.append(PredictionAlert(
            type=AlertType.TREND_REVERSAL,
            severity=AlertSeverity.MEDIUM,
            message="Overall compliance score showing downward trend",
        ))

    return ComplianceForecast(
        overall_prediction=overall,
        framework_predictions=framework_predictions,
        alerts=alerts,
    )


# ============================================================================
# Generic metric
# ============================================================================

def predict_metric(
    values: List[float],
    metric_name: str,
    organization_id: str,
    config: Optional[PredictionConfig] = None,
    higher_is_better: bool = True
) -> Prediction:
    """Forecast an arbitrary metric series; no gate and no domain alerts."""
    return create_prediction(
        values, PredictionType.METRIC_VALUE, organization_id, config,
        "metric", metric_name, higher_is_better
    )
