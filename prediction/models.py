"""
Prediction Models

Records produced by the prediction engine (forecasts, alerts, clusters,
early warnings) and the GRC history inputs it consumes. All records are
frozen and serialize with camelCase field names.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import Field

from stats.models import StatsRecord


# ============================================================================
# Enumerations
# ============================================================================

class PredictionType(str, Enum):
    RISK_SCORE = "risk_score"
    CONTROL_EFFECTIVENESS = "control_effectiveness"
    ISSUE_COUNT = "issue_count"
    COMPLIANCE_SCORE = "compliance_score"
    METRIC_VALUE = "metric_value"


class PredictionConfidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class PredictionTrend(str, Enum):
    """Trend direction relative to whether the metric going up is good or bad."""
    IMPROVING = "improving"
    STABLE = "stable"
    DETERIORATING = "deteriorating"


class PredictionModel(str, Enum):
    LINEAR_REGRESSION = "linear_regression"
    EXPONENTIAL_SMOOTHING = "exponential_smoothing"
    MOVING_AVERAGE = "moving_average"
    WEIGHTED_ENSEMBLE = "weighted_ensemble"


class AlertType(str, Enum):
    THRESHOLD_BREACH = "threshold_breach"
    TREND_REVERSAL = "trend_reversal"
    VOLATILITY_SPIKE = "volatility_spike"
    ANOMALY_PREDICTED = "anomaly_predicted"


class AlertSeverity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class WarningType(str, Enum):
    RISK = "risk"
    CONTROL = "control"
    COMPLIANCE = "compliance"
    ISSUE = "issue"


# ============================================================================
# Configuration
# ============================================================================

class Thresholds(StatsRecord):
    critical: Optional[float] = None
    high: Optional[float] = None
    medium: Optional[float] = None


class PredictionConfig(StatsRecord):
    """
    Forecast settings shared by every prediction wrapper.

    min_data_points overrides each wrapper's own minimum history length when
    set. as_of stamps created_at on the results; it defaults to the current
    UTC time at prediction time.
    """
    periods_ahead: int = Field(default=4, ge=1)
    confidence_level: float = Field(default=0.95, gt=0.0, lt=1.0)
    min_data_points: Optional[int] = Field(default=None, ge=1)
    smoothing_factor: float = Field(default=0.3, gt=0.0, le=1.0)
    seasonal_period: Optional[int] = None
    thresholds: Optional[Thresholds] = None
    as_of: Optional[datetime] = None


# ============================================================================
# Prediction output
# ============================================================================

class PredictedValue(StatsRecord):
    period: int
    period_label: str
    value: float
    lower_bound: float
    upper_bound: float
    confidence: float


class PredictionAlert(StatsRecord):
    type: AlertType
    severity: AlertSeverity
    message: str
    predicted_period: Optional[int] = None
    predicted_value: Optional[float] = None
    threshold: Optional[float] = None


class Prediction(StatsRecord):
    """Multi-period forecast for one metric history, with alerts."""
    organization_id: str
    type: PredictionType
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    current_value: float
    predictions: List[PredictedValue] = Field(default_factory=list)
    trend: PredictionTrend = PredictionTrend.STABLE
    trend_strength: float = 0.0
    confidence: PredictionConfidence = PredictionConfidence.LOW
    confidence_score: float = 0.0
    model: PredictionModel = PredictionModel.WEIGHTED_ENSEMBLE
    data_points: int = 0
    alerts: List[PredictionAlert] = Field(default_factory=list)
    created_at: datetime
    expires_at: datetime


class IssueVolumeForecast(StatsRecord):
    opened_prediction: Prediction
    backlog_prediction: Prediction
    alerts: List[PredictionAlert] = Field(default_factory=list)


class ComplianceForecast(StatsRecord):
    overall_prediction: Prediction
    framework_predictions: Dict[str, Prediction] = Field(default_factory=dict)
    alerts: List[PredictionAlert] = Field(default_factory=list)


# ============================================================================
# GRC history inputs
# ============================================================================

class ScorePoint(StatsRecord):
    date: datetime
    score: float


class ControlTestResult(StatsRecord):
    date: datetime
    passed: bool


class RiskHistory(StatsRecord):
    risk_id: str
    scores: List[ScorePoint] = Field(default_factory=list)


class ControlHistory(StatsRecord):
    control_id: str
    effectiveness: List[ScorePoint] = Field(default_factory=list)
    test_results: List[ControlTestResult] = Field(default_factory=list)


class IssueCounts(StatsRecord):
    period: datetime
    opened: int = 0
    closed: int = 0
    overdue: int = 0


class ComplianceHistory(StatsRecord):
    period: datetime
    overall_score: float
    by_framework: Dict[str, float] = Field(default_factory=dict)


class RiskSnapshot(StatsRecord):
    """Current state of a risk as seen by clustering and anomaly scans."""
    id: str
    name: str = ""
    category: str
    residual_score: float


# ============================================================================
# Aggregates
# ============================================================================

class RiskCluster(StatsRecord):
    name: str
    risks: List[str] = Field(default_factory=list)
    avg_score: float = 0.0
    trend: PredictionTrend = PredictionTrend.STABLE
    correlation_strength: float = 0.0


class EarlyWarning(StatsRecord):
    type: WarningType
    severity: AlertSeverity
    entity_id: Optional[str] = None
    message: str
    predicted_impact: str
    recommended_action: str
    confidence_score: float
    triggered_at: datetime


class PredictionSummary(StatsRecord):
    organization_id: str
    generated_at: datetime
    total_predictions: int = 0
    high_confidence_predictions: int = 0
    overall_risk_trend: PredictionTrend = PredictionTrend.STABLE
    overall_control_trend: PredictionTrend = PredictionTrend.STABLE
    overall_compliance_trend: PredictionTrend = PredictionTrend.STABLE
    critical_alerts: int = 0
    high_alerts: int = 0
    medium_alerts: int = 0
    early_warnings: List[EarlyWarning] = Field(default_factory=list)
    risk_clusters: List[RiskCluster] = Field(default_factory=list)
