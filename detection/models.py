"""
GRC Anomaly Models

Business-level anomaly records produced by the GRC anomaly scan, and the
entity snapshots the scan reads. Detection output from the statistics layer
is wrapped with entity references, a severity and human-readable text.
"""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import Field

from stats.models import ExpectedRange, Sensitivity, StatsRecord, TrendResult
from prediction.models import RiskSnapshot


class AnomalyType(str, Enum):
    RISK_SCORE_SPIKE = "risk_score_spike"
    CONTROL_FAILURE_CLUSTER = "control_failure_cluster"
    ISSUE_SURGE = "issue_surge"
    UNUSUAL_PATTERN = "unusual_pattern"
    TREND_CHANGE = "trend_change"
    SEASONAL_DEVIATION = "seasonal_deviation"
    THRESHOLD_BREACH = "threshold_breach"
    VELOCITY_ANOMALY = "velocity_anomaly"


class AnomalySeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class EntityType(str, Enum):
    RISK = "risk"
    CONTROL = "control"
    ISSUE = "issue"
    METRIC = "metric"


class ControlEffectiveness(str, Enum):
    EFFECTIVE = "effective"
    PARTIALLY_EFFECTIVE = "partially_effective"
    INEFFECTIVE = "ineffective"
    NOT_TESTED = "not_tested"


class ThresholdDirection(str, Enum):
    ABOVE = "above"
    BELOW = "below"


# ============================================================================
# Anomaly record
# ============================================================================

class AnomalyContext(StatsRecord):
    expected_range: Optional[ExpectedRange] = None
    actual_value: Optional[float] = None
    trend: Optional[TrendResult] = None
    historical_mean: Optional[float] = None
    historical_std: Optional[float] = None


class GrcAnomaly(StatsRecord):
    """
    One detected anomaly with its business context.

    Acknowledgement and resolution are applied by the caller through
    ``acknowledge_anomaly`` / ``resolve_anomaly``, which return new copies.
    """
    type: AnomalyType
    severity: AnomalySeverity
    title: str
    description: str
    detected_at: datetime
    entity_type: EntityType
    entity_ids: List[str] = Field(default_factory=list)
    anomaly_score: float
    confidence: float
    method: str
    context: AnomalyContext = Field(default_factory=AnomalyContext)
    acknowledged: bool = False
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[datetime] = None
    resolution: Optional[str] = None
    resolved_at: Optional[datetime] = None


# ============================================================================
# Entity snapshots
# ============================================================================

class ControlSnapshot(StatsRecord):
    id: str
    name: str = ""
    current_effectiveness: ControlEffectiveness = ControlEffectiveness.NOT_TESTED
    last_tested_at: Optional[datetime] = None


class IssueSnapshot(StatsRecord):
    id: str
    status: str


class MetricDataPoint(StatsRecord):
    timestamp: datetime
    value: float
    entity_id: Optional[str] = None


class MetricThresholds(StatsRecord):
    warning: float
    critical: float
    direction: ThresholdDirection = ThresholdDirection.ABOVE


class MetricConfig(StatsRecord):
    name: str
    thresholds: Optional[MetricThresholds] = None
    expected_range: Optional[ExpectedRange] = None
    sensitivity: Optional[Sensitivity] = None


# ============================================================================
# Scan input / output
# ============================================================================

class AnomalyScanInput(StatsRecord):
    """Everything a full scan looks at; optional histories enable more checks."""
    risks: List[RiskSnapshot] = Field(default_factory=list)
    controls: List[ControlSnapshot] = Field(default_factory=list)
    issues: List[IssueSnapshot] = Field(default_factory=list)
    historical_risk_scores: Optional[Dict[str, List[float]]] = None
    historical_control_failures: Optional[Dict[str, List[float]]] = None
    historical_issue_counts: Optional[List[float]] = None
    daily_issues_created: Optional[List[float]] = None
    daily_issues_closed: Optional[List[float]] = None


class SeverityCounts(StatsRecord):
    info: int = 0
    warning: int = 0
    critical: int = 0


class ScanSummary(StatsRecord):
    total_checked: int = 0
    anomalies_found: int = 0
    by_severity: SeverityCounts = Field(default_factory=SeverityCounts)
    by_type: Dict[str, int] = Field(default_factory=dict)


class AnomalyScanResult(StatsRecord):
    anomalies: List[GrcAnomaly] = Field(default_factory=list)
    summary: ScanSummary = Field(default_factory=ScanSummary)
    timestamp: datetime


class AnomalyFilter(StatsRecord):
    """Criteria for ``filter_anomalies``; unset criteria match everything."""
    severity: Optional[List[AnomalySeverity]] = None
    types: Optional[List[AnomalyType]] = None
    entity_type: Optional[List[EntityType]] = None
    acknowledged: Optional[bool] = None
    resolved: Optional[bool] = None
    min_score: Optional[float] = None
    min_confidence: Optional[float] = None
