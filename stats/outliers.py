"""
Outlier Detection

Stateless detectors over a numeric sequence: global methods (z-score,
modified z-score, IQR fences, MAD, Grubbs, isolation gaps), time-aware
detectors (rolling z-score, spikes, level shifts), ensemble voting across
methods and contextual (day-of-week / category) cohort detection.

Global detectors return results ordered by descending score; the rolling,
spike and level-shift detectors return them in index order.
"""

import logging
import math
from datetime import datetime
from typing import Dict, List, Optional, Sequence

import numpy as np

from stats.core import mean, median, percentile, standard_deviation, z_score_from_stats, z_scores
from stats.models import (
    AnomalyDetectionConfig,
    AnomalySummary,
    ContextualAnomalyResult,
    DetectionMethod,
    DirectionCounts,
    EnsembleResult,
    ExpectedRange,
    MethodCount,
    OutlierDirection,
    OutlierResult,
    Sensitivity,
)

logger = logging.getLogger(__name__)

# Normal-consistency constant for the modified z-score
MODIFIED_ZSCORE_K = 0.6745

# Two-sided Grubbs critical values keyed by alpha, then sample size
GRUBBS_TABLES = {
    0.01: {
        7: 2.14, 8: 2.27, 9: 2.39, 10: 2.48,
        15: 2.81, 20: 3.00, 25: 3.14, 30: 3.24,
        40: 3.38, 50: 3.48, 100: 3.75,
    },
    0.05: {
        7: 2.02, 8: 2.13, 9: 2.22, 10: 2.29,
        15: 2.55, 20: 2.71, 25: 2.82, 30: 2.91,
        40: 3.04, 50: 3.13, 100: 3.38,
    },
    0.1: {
        7: 1.94, 8: 2.03, 9: 2.11, 10: 2.18,
        15: 2.41, 20: 2.56, 25: 2.66, 30: 2.75,
        40: 2.87, 50: 2.96, 100: 3.21,
    },
}
# Beyond n = 100 the critical value is held at the table end plus 0.12
GRUBBS_LARGE_SAMPLE_MARGIN = 0.12

# Per-method thresholds for each ensemble sensitivity preset
SENSITIVITY_THRESHOLDS = {
    Sensitivity.LOW: {"zscore": 3.5, "iqr": 2.2, "mad": 4.0, "grubbs": 0.01},
    Sensitivity.MEDIUM: {"zscore": 3.0, "iqr": 1.5, "mad": 3.0, "grubbs": 0.05},
    Sensitivity.HIGH: {"zscore": 2.5, "iqr": 1.3, "mad": 2.5, "grubbs": 0.1},
}

DEFAULT_ENSEMBLE_METHODS = [
    DetectionMethod.ZSCORE,
    DetectionMethod.IQR,
    DetectionMethod.MAD,
    DetectionMethod.GRUBBS,
]

# Indexed by datetime.weekday()
DAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


def _direction(is_high: bool) -> OutlierDirection:
    return OutlierDirection.HIGH if is_high else OutlierDirection.LOW


def _by_score(results: List[OutlierResult]) -> List[OutlierResult]:
    return sorted(results, key=lambda r: r.score, reverse=True)


# ============================================================================
# Z-Score Methods
# ============================================================================

def detect_outliers_zscore(values: List[float], threshold: float = 3.0) -> List[OutlierResult]:
    """
    Flag points whose |z| exceeds the threshold.

    Args:
        values: Input series (at least 3 points)
        threshold: |z| cut-off; 3 is the classic outlier level

    Returns:
        Outliers sorted by descending |z|
    """
    if len(values) < 3:
        return []

    results = []
    for i, z in enumerate(z_scores(values)):
        if abs(z) > threshold:
            results.append(OutlierResult(
                index=i,
                value=float(values[i]),
                score=abs(z),
                method="zscore",
                direction=_direction(z > 0),
                threshold=threshold,
            ))

    return _by_score(results)


def detect_outliers_modified_zscore(values: List[float], threshold: float = 3.5) -> List[OutlierResult]:
    """Robust z-score 0.6745 * (x - median) / MAD. Nothing is reported when MAD is 0."""
    if len(values) < 3:
        return []

    med = median(values)
    mad_value = mad(values)
    if mad_value == 0:
        return []

    results = []
    for i, value in enumerate(values):
        modified_z = MODIFIED_ZSCORE_K * (float(value) - med) / mad_value
        if abs(modified_z) > threshold:
            results.append(OutlierResult(
                index=i,
                value=float(value),
                score=abs(modified_z),
                method="modified_zscore",
                direction=_direction(modified_z > 0),
                threshold=threshold,
            ))

    return _by_score(results)


# ============================================================================
# IQR (Tukey's Fences)
# ============================================================================

def detect_outliers_iqr(values: List[float], k: float = 1.5) -> List[OutlierResult]:
    """
    Tukey's fences: flag points beyond Q1 - k*IQR or Q3 + k*IQR.

    The score is the distance beyond the crossed fence in IQR units (0 when
    the IQR is 0); the threshold reported is the fence itself.
    """
    if len(values) < 4:
        return []

    q1 = percentile(values, 25)
    q3 = percentile(values, 75)
    spread = q3 - q1

    lower_fence = q1 - k * spread
    upper_fence = q3 + k * spread

    results = []
    for i, value in enumerate(values):
        value = float(value)
        if value < lower_fence:
            fence, distance, is_high = lower_fence, lower_fence - value, False
        elif value > upper_fence:
            fence, distance, is_high = upper_fence, value - upper_fence, True
        else:
            continue

        results.append(OutlierResult(
            index=i,
            value=value,
            score=0.0 if spread == 0 else distance / spread,
            method="iqr",
            direction=_direction(is_high),
            threshold=fence,
        ))

    return _by_score(results)


# ============================================================================
# MAD (Median Absolute Deviation)
# ============================================================================

def mad(values: List[float]) -> float:
    """Median of absolute deviations from the median; 0 for empty input."""
    if len(values) == 0:
        return 0.0

    arr = np.asarray(values, dtype=float)
    return median(np.abs(arr - median(values)))


def detect_outliers_mad(values: List[float], threshold: float = 3.0) -> List[OutlierResult]:
    """Flag points more than ``threshold`` MADs from the median."""
    if len(values) < 3:
        return []

    med = median(values)
    mad_value = mad(values)
    if mad_value == 0:
        return []

    results = []
    for i, value in enumerate(values):
        deviation = abs(float(value) - med) / mad_value
        if deviation > threshold:
            results.append(OutlierResult(
                index=i,
                value=float(value),
                score=deviation,
                method="mad",
                direction=_direction(float(value) > med),
                threshold=threshold,
            ))

    return _by_score(results)


# ============================================================================
# Grubbs' Test
# ============================================================================

def grubbs_critical_value(n: int, alpha: float = 0.05) -> float:
    """
    Critical G for a sample of size n at the tabulated alpha closest to ``alpha``.

    Sizes between table keys are linearly interpolated.
    """
    table = GRUBBS_TABLES[min(GRUBBS_TABLES, key=lambda a: abs(a - alpha))]
    if n in table:
        return table[n]

    keys = sorted(table)
    for low, high in zip(keys[:-1], keys[1:]):
        if low <= n < high:
            ratio = (n - low) / (high - low)
            return table[low] + ratio * (table[high] - table[low])

    return table[keys[-1]] + GRUBBS_LARGE_SAMPLE_MARGIN


def grubbs_test(values: List[float], alpha: float = 0.05) -> Optional[OutlierResult]:
    """
    Single-outlier Grubbs test on the most extreme point.

    Args:
        values: Sample (at least 7 points)
        alpha: Significance level (0.01, 0.05 or 0.10 table)

    Returns:
        The most extreme point if its G statistic exceeds the critical
        value, otherwise None
    """
    if len(values) < 7:
        return None

    avg = mean(values)
    std = standard_deviation(values)
    if std == 0:
        return None

    deviations = np.abs(np.asarray(values, dtype=float) - avg) / std
    index = int(np.argmax(deviations))
    g = float(deviations[index])
    critical = grubbs_critical_value(len(values), alpha)

    if g <= critical:
        return None

    return OutlierResult(
        index=index,
        value=float(values[index]),
        score=g,
        method="grubbs",
        direction=_direction(float(values[index]) > avg),
        threshold=critical,
    )


def detect_outliers_grubbs(
    values: List[float],
    alpha: float = 0.05,
    max_outliers: int = 10
) -> List[OutlierResult]:
    """
    Iterative Grubbs: remove the detected outlier and re-test.

    Indices in the results refer to the original sequence, in removal order.
    """
    remaining = [float(v) for v in values]
    original_indices = list(range(len(values)))
    results = []

    for _ in range(max_outliers):
        if len(remaining) < 7:
            break

        outlier = grubbs_test(remaining, alpha)
        if outlier is None:
            break

        results.append(outlier.model_copy(update={"index": original_indices[outlier.index]}))
        del remaining[outlier.index]
        del original_indices[outlier.index]

    return results


# ============================================================================
# Isolation (gap heuristic)
# ============================================================================

def calculate_isolation_score(value: float, values: List[float]) -> float:
    """
    How isolated a value is: its largest neighbour gap over the average gap.

    A point at either end of the sorted sample only has one neighbour, so
    only that gap counts. Returns 0 for fewer than two values or no spread.
    """
    if len(values) < 2:
        return 0.0

    ordered = np.sort(np.asarray(values, dtype=float))
    avg_gap = (ordered[-1] - ordered[0]) / (len(ordered) - 1)
    if avg_gap == 0:
        return 0.0

    position = int(np.searchsorted(ordered, value, side="left"))
    position = min(position, len(ordered) - 1)

    gaps = []
    if position > 0:
        gaps.append(value - ordered[position - 1])
    if position < len(ordered) - 1:
        gaps.append(ordered[position + 1] - value)

    return float(max(gaps)) / float(avg_gap)


def detect_outliers_isolation(values: List[float], threshold: float = 2.0) -> List[OutlierResult]:
    """Flag points whose isolation score exceeds the threshold (at least 10 points)."""
    if len(values) < 10:
        return []

    avg = mean(values)
    results = []
    for i, value in enumerate(values):
        score = calculate_isolation_score(float(value), values)
        if score > threshold:
            results.append(OutlierResult(
                index=i,
                value=float(value),
                score=score,
                method="isolation",
                direction=_direction(float(value) > avg),
                threshold=threshold,
            ))

    return _by_score(results)


# ============================================================================
# Time Series Anomalies
# ============================================================================

def detect_time_series_anomalies(
    values: List[float],
    window: int = 10,
    threshold: float = 3.0
) -> List[OutlierResult]:
    """
    Rolling z-score of each point against the preceding ``window`` points.

    Windows with zero spread are skipped.
    """
    if window <= 0 or len(values) < window + 1:
        return []

    results = []
    for i in range(window, len(values)):
        history = values[i - window:i]
        std = standard_deviation(history)
        if std == 0:
            continue

        z = z_score_from_stats(float(values[i]), mean(history), std)
        if abs(z) > threshold:
            results.append(OutlierResult(
                index=i,
                value=float(values[i]),
                score=abs(z),
                method="rolling_zscore",
                direction=_direction(z > 0),
                threshold=threshold,
            ))

    return results


def detect_spikes(values: List[float], window: int = 5, threshold: float = 2.0) -> List[OutlierResult]:
    """
    Sudden departures from the recent baseline.

    Each point from index ``window`` on is compared with the moving average
    of the ``window`` points before it; the deviation is divided by the
    volatility of those same points (1 when they are flat). The point under
    test never contributes to its own baseline.

    Args:
        values: Input series
        window: Number of preceding points forming the baseline
        threshold: Minimum deviation, in volatility units, to report

    Returns:
        Spikes in index order
    """
    if window <= 0 or len(values) < window + 1:
        return []

    results = []
    for i in range(window, len(values)):
        history = values[i - window:i]
        baseline = mean(history)
        volatility = standard_deviation(history) or 1.0

        value = float(values[i])
        score = abs(value - baseline) / volatility

        if score > threshold:
            results.append(OutlierResult(
                index=i,
                value=value,
                score=score,
                method="spike_detection",
                direction=_direction(value > baseline),
                threshold=threshold,
            ))

    return results


def detect_level_shifts(values: List[float], window: int = 10, threshold: float = 2.0) -> List[OutlierResult]:
    """
    Sustained changes in mean around index i.

    Compares [i - window, i) with (i, i + window] using a pooled standard
    deviation; the point at i itself belongs to neither window.
    """
    if window <= 0 or len(values) < window * 2 + 1:
        return []

    results = []
    for i in range(window, len(values) - window):
        before = values[i - window:i]
        after = values[i + 1:i + 1 + window]

        before_mean = mean(before)
        after_mean = mean(after)
        pooled_std = math.sqrt(
            (standard_deviation(before) ** 2 + standard_deviation(after) ** 2) / 2
        )
        if pooled_std == 0:
            continue

        shift = abs(after_mean - before_mean) / pooled_std
        if shift > threshold:
            results.append(OutlierResult(
                index=i,
                value=float(values[i]),
                score=shift,
                method="level_shift",
                direction=_direction(after_mean > before_mean),
                threshold=threshold,
            ))

    return results


# ============================================================================
# Ensemble Detection
# ============================================================================

def _run_method(method: DetectionMethod, values: List[float], thresholds: Dict[str, float]) -> List[OutlierResult]:
    if method == DetectionMethod.ZSCORE:
        return detect_outliers_zscore(values, thresholds["zscore"])
    if method == DetectionMethod.IQR:
        return detect_outliers_iqr(values, thresholds["iqr"])
    if method == DetectionMethod.MAD:
        return detect_outliers_mad(values, thresholds["mad"])
    if method == DetectionMethod.GRUBBS:
        return detect_outliers_grubbs(values, thresholds["grubbs"])
    return detect_outliers_isolation(values)


def detect_outliers_ensemble(
    values: List[float],
    config: Optional[AnomalyDetectionConfig] = None
) -> List[EnsembleResult]:
    """
    Vote across several detectors.

    Each requested method runs with the thresholds of the configured
    sensitivity preset. A point is reported when the fraction of requested
    methods flagging it reaches ``min_confidence``; its score is the mean of
    the agreeing methods' scores.

    Args:
        values: Input series
        config: Sensitivity, methods and minimum confidence (defaults to
            medium sensitivity over zscore/iqr/mad/grubbs)

    Returns:
        Ensemble results sorted by confidence, then score, descending
    """
    config = config or AnomalyDetectionConfig()
    thresholds = SENSITIVITY_THRESHOLDS[config.sensitivity]

    requested = config.methods if config.methods is not None else DEFAULT_ENSEMBLE_METHODS
    methods = list(dict.fromkeys(requested))
    if not methods:
        return []

    hits: Dict[int, Dict] = {}
    for method in methods:
        for result in _run_method(method, values, thresholds):
            entry = hits.setdefault(result.index, {
                "value": result.value,
                "direction": OutlierDirection.HIGH if result.direction == OutlierDirection.BOTH else result.direction,
                "methods": [],
                "scores": [],
            })
            entry["methods"].append(method.value)
            entry["scores"].append(result.score)

    results = []
    for index, entry in hits.items():
        confidence = len(entry["methods"]) / len(methods)
        if confidence < config.min_confidence:
            continue

        results.append(EnsembleResult(
            index=index,
            value=entry["value"],
            score=mean(entry["scores"]),
            method="ensemble",
            direction=entry["direction"],
            threshold=config.min_confidence,
            confidence=confidence,
            methods=entry["methods"],
        ))

    results.sort(key=lambda r: (r.confidence, r.score), reverse=True)

    logger.debug(
        f"Ensemble over {len(values)} points ({', '.join(m.value for m in methods)}): "
        f"{len(hits)} candidates, {len(results)} reported"
    )

    return results


# ============================================================================
# Contextual Detection
# ============================================================================

def _cohort_anomalies(
    values: List[float],
    indices: List[int],
    threshold: float,
    method: str,
    context: str
) -> List[ContextualAnomalyResult]:
    cohort = [float(values[i]) for i in indices]
    if len(cohort) < 3:
        return []

    cohort_mean = mean(cohort)
    cohort_std = standard_deviation(cohort)
    if cohort_std == 0:
        return []

    expected = ExpectedRange(
        min=cohort_mean - threshold * cohort_std,
        max=cohort_mean + threshold * cohort_std,
    )

    results = []
    for i, value in zip(indices, cohort):
        z = z_score_from_stats(value, cohort_mean, cohort_std)
        if abs(z) > threshold:
            results.append(ContextualAnomalyResult(
                index=i,
                value=value,
                score=abs(z),
                method=method,
                direction=_direction(z > 0),
                threshold=threshold,
                context=context,
                expected_range=expected,
            ))

    return results


def detect_contextual_anomalies(
    values: List[float],
    timestamps: Optional[Sequence[datetime]] = None,
    categories: Optional[Sequence[str]] = None,
    threshold: float = 2.5
) -> List[ContextualAnomalyResult]:
    """
    Z-score each point within its day-of-week and/or category cohort.

    A context is only used when its sequence has the same length as
    ``values``. Cohorts with fewer than three members are skipped. When both
    contexts flag the same index, the higher-scoring explanation is kept.

    Returns:
        One result per flagged index, sorted by descending score
    """
    results: List[ContextualAnomalyResult] = []

    if timestamps is not None and len(timestamps) == len(values):
        by_day: Dict[int, List[int]] = {}
        for i, ts in enumerate(timestamps):
            by_day.setdefault(ts.weekday(), []).append(i)

        for day, indices in by_day.items():
            results.extend(_cohort_anomalies(
                values, indices, threshold, "contextual_dow", f"Unusual for {DAY_NAMES[day]}"
            ))

    if categories is not None and len(categories) == len(values):
        by_category: Dict[str, List[int]] = {}
        for i, category in enumerate(categories):
            by_category.setdefault(category, []).append(i)

        for category, indices in by_category.items():
            results.extend(_cohort_anomalies(
                values, indices, threshold, "contextual_category", f"Unusual for category: {category}"
            ))

    best: Dict[int, ContextualAnomalyResult] = {}
    for result in results:
        existing = best.get(result.index)
        if existing is None or result.score > existing.score:
            best[result.index] = result

    return sorted(best.values(), key=lambda r: r.score, reverse=True)


# ============================================================================
# Summary
# ============================================================================

def summarize_anomalies(
    values: List[float],
    config: Optional[AnomalyDetectionConfig] = None
) -> AnomalySummary:
    """Counts of ensemble outliers by method and direction."""
    results = detect_outliers_ensemble(values, config)

    method_counts: Dict[str, int] = {}
    high = low = 0
    for result in results:
        for method in result.methods:
            method_counts[method] = method_counts.get(method, 0) + 1
        if result.direction == OutlierDirection.HIGH:
            high += 1
        else:
            low += 1

    methods = sorted(
        (MethodCount(method=m, count=c) for m, c in method_counts.items()),
        key=lambda mc: mc.count,
        reverse=True,
    )

    return AnomalySummary(
        total_points=len(values),
        outlier_count=len(results),
        outlier_percentage=0.0 if len(values) == 0 else len(results) / len(values) * 100,
        methods=methods,
        most_anomalous=results[0] if results else None,
        distribution=DirectionCounts(high=high, low=low),
    )
