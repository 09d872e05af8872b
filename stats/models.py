"""
Statistics Result Models

Immutable records returned by the statistics, time-series and outlier
detection functions. Attributes are snake_case; the serialized field names
are camelCase so callers rendering JSON see the names dashboards expect
(``model_dump(mode="json", by_alias=True)``).
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class StatsRecord(BaseModel):
    """Base class for all frozen result records."""

    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


# ============================================================================
# Enumerations
# ============================================================================

class TrendDirection(str, Enum):
    """Direction of a regression trend."""
    UP = "up"
    DOWN = "down"
    FLAT = "flat"


class OutlierDirection(str, Enum):
    """Side of the distribution an outlier sits on."""
    HIGH = "high"
    LOW = "low"
    BOTH = "both"


class Sensitivity(str, Enum):
    """Ensemble sensitivity preset."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class DetectionMethod(str, Enum):
    """Outlier detectors that can take part in an ensemble vote."""
    ZSCORE = "zscore"
    IQR = "iqr"
    MAD = "mad"
    GRUBBS = "grubbs"
    ISOLATION = "isolation"


class ReturnType(str, Enum):
    SIMPLE = "simple"
    LOG = "log"


class ForecastMethod(str, Enum):
    SES = "ses"
    LINEAR = "linear"


# ============================================================================
# Core statistics
# ============================================================================

class RegressionResult(StatsRecord):
    """Ordinary least squares fit: y = slope * x + intercept."""
    slope: float = 0.0
    intercept: float = 0.0
    r2: float = 0.0


class Quartiles(StatsRecord):
    q1: float = 0.0
    q2: float = 0.0
    q3: float = 0.0


class DescriptiveStats(StatsRecord):
    """Summary bundle produced by ``describe``."""
    count: int = 0
    sum: float = 0.0
    mean: float = 0.0
    median: float = 0.0
    mode: List[float] = Field(default_factory=list)
    min: float = 0.0
    max: float = 0.0
    range: float = 0.0
    variance: float = 0.0
    std_dev: float = 0.0
    cv: float = 0.0
    q1: float = 0.0
    q2: float = 0.0
    q3: float = 0.0
    iqr: float = 0.0
    skewness: float = 0.0
    kurtosis: float = 0.0


# ============================================================================
# Time series
# ============================================================================

class TrendResult(StatsRecord):
    """
    Trend fitted by regressing values against their index.

    strength is the R-squared of the fit; confidence additionally penalizes
    series shorter than 30 points.
    """
    direction: TrendDirection = TrendDirection.FLAT
    slope: float = 0.0
    strength: float = 0.0
    confidence: float = 0.0


class HPFilterResult(StatsRecord):
    trend: List[float] = Field(default_factory=list)
    cycle: List[float] = Field(default_factory=list)


class ForecastResult(StatsRecord):
    """Point forecasts with lower/upper bounds, indexed by horizon 1..N."""
    forecast: List[float] = Field(default_factory=list)
    lower: List[float] = Field(default_factory=list)
    upper: List[float] = Field(default_factory=list)
    method: ForecastMethod


class TimeSeriesStats(StatsRecord):
    length: int = 0
    first: float = 0.0
    last: float = 0.0
    min: float = 0.0
    max: float = 0.0
    mean: float = 0.0
    std: float = 0.0
    trend: TrendResult = Field(default_factory=TrendResult)
    volatility: float = 0.0
    autocorrelation1: float = 0.0
    seasonal_period: Optional[int] = None


# ============================================================================
# Outliers
# ============================================================================

class OutlierResult(StatsRecord):
    """A single flagged point. score is non-negative; higher is more extreme."""
    index: int
    value: float
    score: float
    method: str
    direction: OutlierDirection
    threshold: float


class EnsembleResult(OutlierResult):
    """Outlier agreed on by several detectors."""
    confidence: float
    methods: List[str] = Field(default_factory=list)


class ExpectedRange(StatsRecord):
    """Closed interval; None marks an unbounded side."""
    min: Optional[float] = None
    max: Optional[float] = None


class ContextualAnomalyResult(OutlierResult):
    context: str
    expected_range: ExpectedRange


class AnomalyDetectionConfig(StatsRecord):
    """Ensemble configuration: which detectors vote and how many must agree."""
    sensitivity: Sensitivity = Sensitivity.MEDIUM
    methods: Optional[List[DetectionMethod]] = None
    min_confidence: float = Field(default=0.5, ge=0.0, le=1.0)


class MethodCount(StatsRecord):
    method: str
    count: int


class DirectionCounts(StatsRecord):
    high: int = 0
    low: int = 0


class AnomalySummary(StatsRecord):
    total_points: int = 0
    outlier_count: int = 0
    outlier_percentage: float = 0.0
    methods: List[MethodCount] = Field(default_factory=list)
    most_anomalous: Optional[EnsembleResult] = None
    distribution: DirectionCounts = Field(default_factory=DirectionCounts)
