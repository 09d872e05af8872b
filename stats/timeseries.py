"""
Time Series Analysis

Moving averages, momentum, trend and seasonality detection, volatility,
smoothing and simple forecasting over one flat sequence of equally spaced
observations. Timestamps are the caller's concern; index 0 is the oldest
observation.

Note the output-length asymmetry of the moving averages: sma/wma return
``len(values) - window + 1`` points, while ema/dema/tema return one point per
input value (recursive smoothing seeded with the first value).
"""

import math
from typing import List, Optional

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from stats.core import ContractViolationError, linear_regression, mean, standard_deviation
from stats.models import (
    ForecastMethod,
    ForecastResult,
    HPFilterResult,
    ReturnType,
    TimeSeriesStats,
    TrendDirection,
    TrendResult,
)

# Normalized slope (fraction of |mean| per period) beyond which a trend counts
TREND_THRESHOLD = 0.01

# Trends fitted on fewer points than this are confidence-penalized
TREND_FULL_CONFIDENCE_POINTS = 30

HP_FILTER_ITERATIONS = 100


def _as_array(values: List[float]) -> np.ndarray:
    return np.asarray(values, dtype=float)


# ============================================================================
# Moving Averages
# ============================================================================

def sma(values: List[float], window: int) -> List[float]:
    """
    Simple moving average.

    Args:
        values: Input series
        window: Number of points per average

    Returns:
        One average per full window (length n - window + 1); a single
        overall mean when the window is longer than the series
    """
    if len(values) == 0 or window <= 0:
        return []
    if window > len(values):
        return [mean(values)]

    windows = sliding_window_view(_as_array(values), window)
    return windows.mean(axis=1).tolist()


def wma(values: List[float], window: int) -> List[float]:
    """Linearly weighted moving average; the newest point in a window weighs most."""
    if len(values) == 0 or window <= 0:
        return []
    window = min(window, len(values))

    weights = np.arange(1, window + 1, dtype=float)
    weight_sum = window * (window + 1) / 2
    windows = sliding_window_view(_as_array(values), window)
    return (windows @ weights / weight_sum).tolist()


def ema(values: List[float], window: int) -> List[float]:
    """Exponential moving average with alpha = 2 / (window + 1), seeded with the first value."""
    if len(values) == 0 or window <= 0:
        return []

    alpha = 2 / (window + 1)
    result = [float(values[0])]

    for value in values[1:]:
        result.append(alpha * float(value) + (1 - alpha) * result[-1])

    return result


def dema(values: List[float], window: int) -> List[float]:
    """Double EMA: 2*EMA - EMA(EMA). Less lag than a plain EMA."""
    if len(values) == 0 or window <= 0:
        return []

    ema1 = ema(values, window)
    ema2 = ema(ema1, window)
    return [2 * e1 - e2 for e1, e2 in zip(ema1, ema2)]


def tema(values: List[float], window: int) -> List[float]:
    """Triple EMA: 3*EMA1 - 3*EMA2 + EMA3."""
    if len(values) == 0 or window <= 0:
        return []

    ema1 = ema(values, window)
    ema2 = ema(ema1, window)
    ema3 = ema(ema2, window)
    return [3 * e1 - 3 * e2 + e3 for e1, e2, e3 in zip(ema1, ema2, ema3)]


# ============================================================================
# Rate of Change & Momentum
# ============================================================================

def roc(values: List[float], period: int) -> List[float]:
    """Percentage change versus ``period`` observations earlier; 0 where the base is 0."""
    if len(values) == 0 or period <= 0:
        return []

    result = []
    for i in range(period, len(values)):
        previous = float(values[i - period])
        if previous == 0:
            result.append(0.0)
        else:
            result.append((float(values[i]) - previous) / previous * 100)

    return result


def momentum(values: List[float], period: int) -> List[float]:
    """Absolute difference versus ``period`` observations earlier."""
    if len(values) == 0 or period <= 0:
        return []

    return [float(values[i]) - float(values[i - period]) for i in range(period, len(values))]


def velocity(values: List[float]) -> List[float]:
    """First difference."""
    if len(values) < 2:
        return []
    return np.diff(_as_array(values)).tolist()


def acceleration(values: List[float]) -> List[float]:
    """Second difference (velocity of velocity)."""
    return velocity(velocity(values))


# ============================================================================
# Trend Detection
# ============================================================================

def detect_trend(values: List[float]) -> TrendResult:
    """
    Fit a linear trend against the observation index.

    The slope is normalized by |mean| (raw slope when the mean is 0) and
    compared to a 1%-per-period threshold. Confidence is R-squared scaled by
    min(n / 30, 1).
    """
    if len(values) < 2:
        return TrendResult()

    fit = linear_regression(list(range(len(values))), values)

    avg = mean(values)
    normalized_slope = fit.slope if avg == 0 else fit.slope / abs(avg)

    if normalized_slope > TREND_THRESHOLD:
        direction = TrendDirection.UP
    elif normalized_slope < -TREND_THRESHOLD:
        direction = TrendDirection.DOWN
    else:
        direction = TrendDirection.FLAT

    size_confidence = min(len(values) / TREND_FULL_CONFIDENCE_POINTS, 1)

    return TrendResult(
        direction=direction,
        slope=fit.slope,
        strength=fit.r2,
        confidence=fit.r2 * size_confidence,
    )


def detect_trend_changes(values: List[float], window: int = 5) -> List[int]:
    """
    Indices where the trend of the trailing window differs from the leading one.

    Both sub-trends must have strength above 0.3 to count.
    """
    if window <= 0 or len(values) < window * 2:
        return []

    changes = []
    for i in range(window, len(values) - window):
        left = detect_trend(values[i - window:i])
        right = detect_trend(values[i:i + window])

        if (left.direction != right.direction
                and left.strength > 0.3 and right.strength > 0.3):
            changes.append(i)

    return changes


# ============================================================================
# Seasonality
# ============================================================================

def autocorrelation(values: List[float], lag: int) -> float:
    """Normalized autocovariance at ``lag``; 0 for out-of-range lags or constant input."""
    if lag < 0 or lag >= len(values):
        return 0.0

    deviations = _as_array(values) - mean(values)
    denominator = float(np.sum(deviations ** 2))
    if denominator == 0:
        return 0.0

    n = len(values) - lag
    numerator = float(np.sum(deviations[:n] * deviations[lag:lag + n]))
    return numerator / denominator


def autocorrelation_function(values: List[float], max_lag: int) -> List[float]:
    """Autocorrelation at lags 0..max_lag."""
    return [autocorrelation(values, lag) for lag in range(max_lag + 1)]


def detect_seasonality(values: List[float], max_period: int = 30) -> Optional[int]:
    """
    Estimate a seasonal period from the autocorrelation function.

    Scans lags from 2 upwards and returns the first local maximum whose
    correlation exceeds 0.3. The series must be at least twice
    ``max_period`` long.

    Returns:
        Period in observations, or None when no seasonality is found
    """
    if len(values) < max_period * 2:
        return None

    acf = autocorrelation_function(values, max_period)
    last = len(acf) - 1

    for lag in range(2, len(acf)):
        corr = acf[lag]
        if corr <= 0.3:
            continue
        rises = corr > acf[lag - 1]
        falls = lag == last or corr > acf[lag + 1]
        if rises and falls:
            return lag

    return None


# ============================================================================
# Volatility
# ============================================================================

def rolling_volatility(values: List[float], window: int) -> List[float]:
    """Population standard deviation over each full window."""
    if len(values) == 0 or window <= 0:
        return []
    if window > len(values):
        return [standard_deviation(values)]

    windows = sliding_window_view(_as_array(values), window)
    return windows.std(axis=1).tolist()


def average_absolute_change(values: List[float], window: int) -> List[float]:
    """SMA of absolute first differences (ATR-style volatility)."""
    if len(values) < 2 or window <= 0:
        return []
    return sma(np.abs(np.diff(_as_array(values))).tolist(), window)


def rolling_cv(values: List[float], window: int) -> List[float]:
    """Coefficient of variation (%) over each full window; 0 for zero-mean windows."""
    if len(values) == 0 or window <= 0 or window > len(values):
        return []

    result = []
    for chunk in sliding_window_view(_as_array(values), window):
        avg = float(np.mean(chunk))
        if avg == 0:
            result.append(0.0)
        else:
            result.append(float(np.std(chunk)) / abs(avg) * 100)

    return result


# ============================================================================
# Smoothing
# ============================================================================

def hp_filter(values: List[float], lamb: float = 1600) -> HPFilterResult:
    """
    Simplified Hodrick-Prescott decomposition into trend and cycle.

    Runs a fixed number of Jacobi sweeps in which each interior trend point is
    the observed value minus a fourth-difference penalty scaled by 1/lambda.
    This is an approximation, not the sparse-matrix solution.

    Args:
        values: Input series
        lamb: Smoothing parameter (100 annual, 1600 quarterly, 129600 monthly)

    Raises:
        ContractViolationError: If lamb is not positive
    """
    if lamb <= 0:
        raise ContractViolationError("HP filter lambda must be positive")

    n = len(values)
    if n < 4:
        return HPFilterResult(
            trend=[float(v) for v in values],
            cycle=[0.0 for _ in values],
        )

    observed = _as_array(values)
    trend = observed.copy()

    for _ in range(HP_FILTER_ITERATIONS):
        penalty = (
            trend[:-4] - 4 * trend[1:-3] + 6 * trend[2:-2] - 4 * trend[3:-1] + trend[4:]
        ) / lamb
        new_trend = trend.copy()
        new_trend[2:-2] = observed[2:-2] - penalty
        trend = new_trend

    return HPFilterResult(trend=trend.tolist(), cycle=(observed - trend).tolist())


def savitzky_golay(values: List[float], window: int = 5) -> List[float]:
    """
    Center-weighted smoother with weights 1 / (1 + |offset|).

    Named after the Savitzky-Golay filter it stands in for; it does not fit
    local polynomials. The first and last window//2 points pass through.
    """
    if len(values) < window:
        return [float(v) for v in values]

    half = window // 2
    offsets = np.arange(-half, half + 1)
    weights = 1 / (1 + np.abs(offsets))
    weight_sum = float(np.sum(weights))

    arr = _as_array(values)
    result = arr.copy()
    for i in range(half, len(arr) - half):
        result[i] = float(np.dot(arr[i - half:i + half + 1], weights)) / weight_sum

    return result.tolist()


# ============================================================================
# Forecasting
# ============================================================================

def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def forecast_ses(values: List[float], periods: int, alpha: float = 0.3) -> ForecastResult:
    """
    Simple exponential smoothing forecast.

    The forecast is flat at the last smoothed level; the interval is
    1.96 * RMSE of one-step-ahead errors * sqrt(horizon).
    """
    if not 0 < alpha <= 1:
        raise ContractViolationError("Smoothing factor alpha must be in (0, 1]")

    if len(values) == 0:
        return ForecastResult(method=ForecastMethod.SES)

    window = max(1, _round_half_up(2 / alpha - 1))
    smoothed = ema(values, window)
    level = smoothed[-1]

    errors = [float(v) - smoothed[i] for i, v in enumerate(values[1:])]
    std = math.sqrt(mean([e * e for e in errors]))

    forecast, lower, upper = [], [], []
    for h in range(1, periods + 1):
        interval = 1.96 * std * math.sqrt(h)
        forecast.append(level)
        lower.append(level - interval)
        upper.append(level + interval)

    return ForecastResult(forecast=forecast, lower=lower, upper=upper, method=ForecastMethod.SES)


def forecast_linear(values: List[float], periods: int) -> ForecastResult:
    """
    Extrapolate an OLS trend line.

    The prediction interval grows with the distance of the forecast index
    from the centre of the observed indices.
    """
    if len(values) < 2:
        return ForecastResult(method=ForecastMethod.LINEAR)

    n = len(values)
    x = list(range(n))
    fit = linear_regression(x, values)

    fitted = fit.slope * np.arange(n) + fit.intercept
    rse = standard_deviation((_as_array(values) - fitted).tolist())
    x_mean = mean(x)
    x_std = standard_deviation(x)

    forecast, lower, upper = [], [], []
    for h in range(1, periods + 1):
        future_x = n + h - 1
        point = fit.slope * future_x + fit.intercept
        interval = 1.96 * rse * math.sqrt(1 + 1 / n + (future_x - x_mean) ** 2 / (n * x_std))
        forecast.append(point)
        lower.append(point - interval)
        upper.append(point + interval)

    return ForecastResult(forecast=forecast, lower=lower, upper=upper, method=ForecastMethod.LINEAR)


# ============================================================================
# Comparison & Transforms
# ============================================================================

def percentage_difference(actual: List[float], benchmark: List[float]) -> List[float]:
    """Pointwise (actual - benchmark) / |benchmark| * 100 over the shorter length."""
    result = []
    for a, b in zip(actual, benchmark):
        if b == 0:
            result.append(0.0)
        else:
            result.append((float(a) - float(b)) / abs(float(b)) * 100)
    return result


def cumsum(values: List[float]) -> List[float]:
    return np.cumsum(_as_array(values)).tolist()


def cumprod(values: List[float]) -> List[float]:
    return np.cumprod(_as_array(values)).tolist()


def returns(values: List[float], kind: ReturnType = ReturnType.SIMPLE) -> List[float]:
    """
    Period-over-period returns.

    Simple returns are (P1 - P0) / P0, log returns ln(P1 / P0). A zero
    previous value, or a non-positive price ratio for log returns, yields 0.
    """
    if len(values) < 2:
        return []

    result = []
    for previous, current in zip(values[:-1], values[1:]):
        previous = float(previous)
        current = float(current)
        if previous == 0:
            result.append(0.0)
        elif kind == ReturnType.LOG:
            ratio = current / previous
            result.append(math.log(ratio) if ratio > 0 else 0.0)
        else:
            result.append((current - previous) / previous)

    return result


# ============================================================================
# Summary
# ============================================================================

def describe_time_series(values: List[float]) -> TimeSeriesStats:
    """Dashboard summary of a series; empty input gives a neutral record."""
    if len(values) == 0:
        return TimeSeriesStats()

    avg = mean(values)
    std = standard_deviation(values)

    return TimeSeriesStats(
        length=len(values),
        first=float(values[0]),
        last=float(values[-1]),
        min=float(np.min(_as_array(values))),
        max=float(np.max(_as_array(values))),
        mean=avg,
        std=std,
        trend=detect_trend(values),
        volatility=0.0 if avg == 0 else std / abs(avg) * 100,
        autocorrelation1=autocorrelation(values, 1),
        seasonal_period=detect_seasonality(values),
    )
