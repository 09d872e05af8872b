"""
API Schemas

Request bodies for the analytics API. Field names are accepted in camelCase
(as sent by dashboard collaborators) or snake_case.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from stats.models import AnomalyDetectionConfig, ForecastMethod
from prediction.models import (
    ComplianceHistory,
    ControlHistory,
    IssueCounts,
    Prediction,
    PredictionAlert,
    PredictionConfig,
    RiskHistory,
    RiskSnapshot,
)
from detection.models import (
    AnomalyFilter,
    AnomalyScanInput,
    GrcAnomaly,
    MetricConfig,
    MetricDataPoint,
)


class ApiRequest(BaseModel):
    """Base class for request bodies."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Statistics
# ============================================================================

class ValuesRequest(ApiRequest):
    values: List[float] = Field(..., description="Numeric series, oldest first")


class PairedValuesRequest(ApiRequest):
    x: List[float]
    y: List[float]


class ForecastRequest(ApiRequest):
    values: List[float]
    periods: int = Field(default=4, ge=1, le=104, description="Forecast horizon")
    method: ForecastMethod = ForecastMethod.SES
    alpha: float = Field(default=0.3, gt=0.0, le=1.0, description="SES smoothing factor")


# ============================================================================
# Anomalies
# ============================================================================

class AnalyzeValuesRequest(ApiRequest):
    values: List[float]
    config: Optional[AnomalyDetectionConfig] = None


class AnalyzeTimeSeriesRequest(ApiRequest):
    values: List[float]
    timestamps: Optional[List[datetime]] = None
    categories: Optional[List[str]] = None
    window: int = Field(default=10, ge=1)
    threshold: float = Field(default=3.0, gt=0.0)


class AnalyzeMetricsRequest(ApiRequest):
    data_points: List[MetricDataPoint]
    metric: MetricConfig
    config: Optional[AnomalyDetectionConfig] = None
    as_of: Optional[datetime] = None


class AnomalyScanRequest(AnomalyScanInput):
    config: Optional[AnomalyDetectionConfig] = None
    high_risk_threshold: float = 15.0
    max_days_without_test: int = Field(default=90, ge=1)
    as_of: Optional[datetime] = None


class AcknowledgeRequest(ApiRequest):
    anomaly: GrcAnomaly
    user_id: str = Field(..., min_length=1)
    at: Optional[datetime] = None


class ResolveRequest(ApiRequest):
    anomaly: GrcAnomaly
    resolution: str = Field(..., min_length=1)
    at: Optional[datetime] = None


class FilterRequest(ApiRequest):
    anomalies: List[GrcAnomaly]
    filters: AnomalyFilter = Field(default_factory=AnomalyFilter)


# ============================================================================
# Predictions
# ============================================================================

class PredictionRequest(ApiRequest):
    organization_id: str = Field(..., min_length=1)
    config: Optional[PredictionConfig] = None


class RiskPredictionRequest(PredictionRequest):
    histories: List[RiskHistory]


class ControlPredictionRequest(PredictionRequest):
    histories: List[ControlHistory]


class IssuePredictionRequest(PredictionRequest):
    counts: List[IssueCounts]


class CompliancePredictionRequest(PredictionRequest):
    history: List[ComplianceHistory]


class MetricPredictionRequest(PredictionRequest):
    values: List[float]
    metric_name: str = Field(..., min_length=1)
    higher_is_better: bool = True


class EarlyWarningRequest(ApiRequest):
    risk_predictions: List[Prediction] = Field(default_factory=list)
    control_predictions: List[Prediction] = Field(default_factory=list)
    compliance_prediction: Optional[Prediction] = None
    compliance_alerts: List[PredictionAlert] = Field(default_factory=list)
    as_of: Optional[datetime] = None


class PredictionSummaryRequest(EarlyWarningRequest):
    organization_id: str = Field(..., min_length=1)
    risks: List[RiskSnapshot] = Field(default_factory=list)
    risk_histories: List[RiskHistory] = Field(default_factory=list)
