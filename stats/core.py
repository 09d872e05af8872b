"""
Core Statistics

Descriptive statistics primitives used by the time-series, outlier and
prediction layers. Every function takes a plain sequence of numbers and
returns a scalar or a small record. Degenerate input (empty, single point,
zero variance) yields a documented default rather than an exception; only
caller bugs such as mismatched paired sequences raise.
"""

import math
from typing import Dict, List

import numpy as np

from stats.models import DescriptiveStats, Quartiles, RegressionResult


class ContractViolationError(ValueError):
    """Raised when arguments break a function contract (caller bug, not bad data)."""
    pass


def _as_array(values: List[float]) -> np.ndarray:
    return np.asarray(values, dtype=float)


def _require_same_length(x: List[float], y: List[float]) -> None:
    if len(x) != len(y):
        raise ContractViolationError(
            f"Arrays must have equal length (got {len(x)} and {len(y)})"
        )


# ============================================================================
# Central tendency & spread
# ============================================================================

def total(values: List[float]) -> float:
    """Sum of values; 0 for empty input."""
    if len(values) == 0:
        return 0.0
    return float(np.sum(_as_array(values)))


def mean(values: List[float]) -> float:
    """Arithmetic mean; 0 for empty input."""
    if len(values) == 0:
        return 0.0
    return float(np.mean(_as_array(values)))


def median(values: List[float]) -> float:
    """
    Middle value of a sorted copy of the input.

    Even-length input averages the two middle elements. The caller's
    sequence is never reordered.
    """
    if len(values) == 0:
        return 0.0
    return float(np.median(_as_array(values)))


def mode(values: List[float]) -> List[float]:
    """
    All values tied for the highest frequency, in first-encountered order.

    If every value is unique, every value is a mode.
    """
    counts: Dict[float, int] = {}
    for value in values:
        counts[value] = counts.get(value, 0) + 1

    if not counts:
        return []

    top = max(counts.values())
    return [float(value) for value, count in counts.items() if count == top]


def variance(values: List[float], sample: bool = False) -> float:
    """
    Population variance (divide by N) unless sample=True (divide by N-1).

    Returns 0 for fewer than two values and for constant input, where
    floating-point rounding would otherwise leave a tiny nonzero spread.
    """
    if len(values) <= 1:
        return 0.0
    arr = _as_array(values)
    if np.ptp(arr) == 0:
        return 0.0
    return float(np.var(arr, ddof=1 if sample else 0))


def standard_deviation(values: List[float], sample: bool = False) -> float:
    """Square root of ``variance``."""
    return math.sqrt(variance(values, sample))


std_dev = standard_deviation


def minimum(values: List[float]) -> float:
    """Smallest value; +inf for empty input so comparisons against it always lose."""
    if len(values) == 0:
        return math.inf
    return float(np.min(_as_array(values)))


def maximum(values: List[float]) -> float:
    """Largest value; -inf for empty input."""
    if len(values) == 0:
        return -math.inf
    return float(np.max(_as_array(values)))


def value_range(values: List[float]) -> float:
    """max - min; 0 for empty input."""
    if len(values) == 0:
        return 0.0
    arr = _as_array(values)
    return float(np.max(arr) - np.min(arr))


# ============================================================================
# Percentiles
# ============================================================================

def percentile(values: List[float], p: float) -> float:
    """
    Percentile by linear interpolation between order statistics (R type 7).

    Args:
        values: Input values
        p: Percentile in [0, 100]

    Returns:
        Interpolated value; 0 for empty input

    Raises:
        ContractViolationError: If p is outside [0, 100]
    """
    if len(values) == 0:
        return 0.0
    if p < 0 or p > 100:
        raise ContractViolationError("Percentile must be between 0 and 100")
    return float(np.percentile(_as_array(values), p))


def quartiles(values: List[float]) -> Quartiles:
    return Quartiles(
        q1=percentile(values, 25),
        q2=percentile(values, 50),
        q3=percentile(values, 75),
    )


def iqr(values: List[float]) -> float:
    """Interquartile range Q3 - Q1."""
    q = quartiles(values)
    return q.q3 - q.q1


# ============================================================================
# Standard scores
# ============================================================================

def z_score_from_stats(value: float, avg: float, std: float) -> float:
    """(value - avg) / std, or 0 when std is 0."""
    if std == 0:
        return 0.0
    return (value - avg) / std


def z_score(value: float, values: List[float]) -> float:
    """Z-score of a single value against the mean and std of ``values``."""
    return z_score_from_stats(value, mean(values), standard_deviation(values))


def z_scores(values: List[float]) -> List[float]:
    """Z-score of every value; all zeros when the input is constant."""
    avg = mean(values)
    std = standard_deviation(values)

    if std == 0:
        return [0.0 for _ in values]
    return ((_as_array(values) - avg) / std).tolist()


def coefficient_of_variation(values: List[float]) -> float:
    """Relative variability std / |mean| as a percentage; 0 for zero mean."""
    avg = mean(values)
    if avg == 0:
        return 0.0
    return standard_deviation(values) / abs(avg) * 100


# ============================================================================
# Distribution shape
# ============================================================================

def skewness(values: List[float]) -> float:
    """Adjusted sample skewness; positive means a longer right tail."""
    if len(values) < 3:
        return 0.0

    n = len(values)
    avg = mean(values)
    std = standard_deviation(values)

    if std == 0:
        return 0.0

    cubed = ((_as_array(values) - avg) / std) ** 3
    return float(n / ((n - 1) * (n - 2)) * np.sum(cubed))


def kurtosis(values: List[float]) -> float:
    """Excess kurtosis (0 for a normal distribution)."""
    if len(values) < 4:
        return 0.0

    avg = mean(values)
    std = standard_deviation(values)

    if std == 0:
        return 0.0

    fourth = ((_as_array(values) - avg) / std) ** 4
    return float(np.mean(fourth)) - 3


# ============================================================================
# Relationships
# ============================================================================

def covariance(x: List[float], y: List[float], sample: bool = False) -> float:
    """
    Covariance of two aligned series.

    Raises:
        ContractViolationError: If the series differ in length
    """
    _require_same_length(x, y)
    if len(x) == 0:
        return 0.0

    xa = _as_array(x)
    ya = _as_array(y)
    products = (xa - np.mean(xa)) * (ya - np.mean(ya))
    divisor = len(x) - 1 if sample else len(x)
    if divisor == 0:
        return 0.0

    return float(np.sum(products) / divisor)


def correlation(x: List[float], y: List[float]) -> float:
    """
    Pearson correlation coefficient in [-1, 1].

    Returns 0 for empty input or when either series has zero variance.

    Raises:
        ContractViolationError: If the series differ in length
    """
    _require_same_length(x, y)
    if len(x) == 0:
        return 0.0

    x_std = standard_deviation(x)
    y_std = standard_deviation(y)

    if x_std == 0 or y_std == 0:
        return 0.0

    r = covariance(x, y) / (x_std * y_std)
    return max(-1.0, min(1.0, r))


def linear_regression(x: List[float], y: List[float]) -> RegressionResult:
    """
    Ordinary least squares fit of y against x.

    Fewer than two points gives an all-zero result.

    Raises:
        ContractViolationError: If the series differ in length
    """
    _require_same_length(x, y)
    if len(x) < 2:
        return RegressionResult()

    xa = _as_array(x)
    ya = _as_array(y)
    x_mean = float(np.mean(xa))
    y_mean = float(np.mean(ya))

    x_diff = xa - x_mean
    numerator = float(np.sum(x_diff * (ya - y_mean)))
    denominator = float(np.sum(x_diff * x_diff))

    slope = 0.0 if denominator == 0 else numerator / denominator
    intercept = y_mean - slope * x_mean

    predictions = slope * xa + intercept
    ss_res = float(np.sum((ya - predictions) ** 2))
    ss_tot = float(np.sum((ya - y_mean) ** 2))
    r2 = 0.0 if ss_tot == 0 else max(0.0, 1 - ss_res / ss_tot)

    return RegressionResult(slope=slope, intercept=intercept, r2=r2)


# ============================================================================
# Scaling
# ============================================================================

def normalize(values: List[float]) -> List[float]:
    """Min-max scale to [0, 1]; constant input maps to 0.5."""
    if len(values) == 0:
        return []

    arr = _as_array(values)
    low = float(np.min(arr))
    spread = float(np.max(arr)) - low

    if spread == 0:
        return [0.5 for _ in values]
    return ((arr - low) / spread).tolist()


def standardize(values: List[float]) -> List[float]:
    """Z-score normalization (mean 0, std 1)."""
    return z_scores(values)


# ============================================================================
# Summary
# ============================================================================

def describe(values: List[float]) -> DescriptiveStats:
    """All descriptive statistics in one record; empty input gives all zeros."""
    if len(values) == 0:
        return DescriptiveStats()

    q = quartiles(values)

    return DescriptiveStats(
        count=len(values),
        sum=total(values),
        mean=mean(values),
        median=median(values),
        mode=mode(values),
        min=minimum(values),
        max=maximum(values),
        range=value_range(values),
        variance=variance(values),
        std_dev=standard_deviation(values),
        cv=coefficient_of_variation(values),
        q1=q.q1,
        q2=q.q2,
        q3=q.q3,
        iqr=q.q3 - q.q1,
        skewness=skewness(values),
        kurtosis=kurtosis(values),
    )
