"""
Synthetic GRC Histories

Generates seeded, realistic GRC histories (risk scores, control
effectiveness and test results, issue counts, compliance scores by
framework) for demos, the sample-data script and tests, without needing a
production data source.
"""

import json
import os
import random
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

import numpy as np

from prediction.models import (
    ComplianceHistory,
    ControlHistory,
    ControlTestResult,
    IssueCounts,
    RiskHistory,
    ScorePoint,
)


class SyntheticHistoryGenerator:
    """
    Generates synthetic GRC histories with controllable shape.

    Histories are spaced one period apart and end at ``as_of``:
    - Risk scores: 1-25 residual scale with trend, seasonality and spikes
    - Control effectiveness: 0-1 with drift, plus pass/fail test results
    - Issue counts: Poisson opened/closed per period
    - Compliance: overall and per-framework scores in 0-1
    """

    DEFAULT_FRAMEWORKS = ("SOX", "ISO27001", "SOC2")

    def __init__(
        self,
        seed: Optional[int] = None,
        as_of: Optional[datetime] = None,
        period: timedelta = timedelta(weeks=1)
    ):
        """
        Initialize the generator.

        Args:
            seed: Seed for reproducible output
            as_of: Timestamp of the most recent period (defaults to now, UTC)
            period: Spacing between observations
        """
        self.seed = seed
        self.as_of = as_of or datetime.now(timezone.utc)
        self.period = period
        self._rng = np.random.default_rng(seed)
        self._random = random.Random(seed)

    def _dates(self, periods: int) -> List[datetime]:
        return [self.as_of - self.period * (periods - 1 - i) for i in range(periods)]

    def risk_history(
        self,
        risk_id: str,
        periods: int = 24,
        base: float = 10.0,
        trend: float = 0.0,
        noise: float = 1.0,
        seasonality_amplitude: float = 0.0,
        seasonality_period: int = 12,
        spike_rate: float = 0.0
    ) -> RiskHistory:
        """
        Generate a residual risk score history.

        Args:
            risk_id: Identifier copied onto the history
            periods: Number of observations
            base: Starting score
            trend: Score change per period
            noise: Standard deviation of the per-period noise
            seasonality_amplitude: Amplitude of the seasonal component
            seasonality_period: Length of one season in periods
            spike_rate: Fraction of periods replaced by a 3-5 sigma spike

        Returns:
            RiskHistory with scores clipped to [1, 25]
        """
        values = generate_realistic_sequence(
            base, noise, periods, trend, seasonality_amplitude, seasonality_period, rng=self._rng
        )
        values = self._inject_spikes(values, base, noise, spike_rate)
        values = np.clip(values, 1, 25)

        return RiskHistory(
            risk_id=risk_id,
            scores=[ScorePoint(date=d, score=float(v)) for d, v in zip(self._dates(periods), values)],
        )

    def control_history(
        self,
        control_id: str,
        periods: int = 20,
        start: float = 0.9,
        drift: float = 0.0,
        noise: float = 0.03,
        tests: int = 12,
        pass_probability: float = 0.9,
        pass_drift: float = 0.0
    ) -> ControlHistory:
        """
        Generate control effectiveness scores and test results.

        ``pass_drift`` changes the pass probability per test, so a negative
        value produces a declining pass rate.
        """
        values = generate_realistic_sequence(start, noise, periods, drift, rng=self._rng)
        values = np.clip(values, 0, 1)

        results = []
        for i, date in enumerate(self._dates(tests)):
            probability = min(max(pass_probability + pass_drift * i, 0.0), 1.0)
            results.append(ControlTestResult(date=date, passed=self._random.random() < probability))

        return ControlHistory(
            control_id=control_id,
            effectiveness=[ScorePoint(date=d, score=float(v)) for d, v in zip(self._dates(periods), values)],
            test_results=results,
        )

    def issue_counts(
        self,
        periods: int = 12,
        opened_rate: float = 8.0,
        closed_rate: float = 7.0,
        opened_growth: float = 0.0
    ) -> List[IssueCounts]:
        """Per-period opened / closed / overdue issue counts."""
        counts = []
        backlog = 0
        for i, date in enumerate(self._dates(periods)):
            opened = int(self._rng.poisson(max(opened_rate + opened_growth * i, 0.0)))
            closed = int(self._rng.poisson(closed_rate))
            backlog = max(0, backlog + opened - closed)
            overdue = int(self._rng.binomial(backlog, 0.2)) if backlog else 0
            counts.append(IssueCounts(period=date, opened=opened, closed=closed, overdue=overdue))
        return counts

    def compliance_history(
        self,
        periods: int = 12,
        frameworks: Sequence[str] = DEFAULT_FRAMEWORKS,
        start: float = 0.9,
        drift: float = 0.0,
        noise: float = 0.02
    ) -> List[ComplianceHistory]:
        """Overall and per-framework compliance scores; overall is the framework mean."""
        series: Dict[str, np.ndarray] = {
            framework: np.clip(
                generate_realistic_sequence(start, noise, periods, drift, rng=self._rng), 0, 1
            )
            for framework in frameworks
        }

        history = []
        for i, date in enumerate(self._dates(periods)):
            by_framework = {framework: float(values[i]) for framework, values in series.items()}
            overall = float(np.mean(list(by_framework.values()))) if by_framework else start
            history.append(ComplianceHistory(period=date, overall_score=overall, by_framework=by_framework))
        return history

    def _inject_spikes(self, values: List[float], base: float, noise: float, rate: float) -> List[float]:
        count = int(len(values) * rate)
        if count == 0:
            return values

        values = list(values)
        for idx in self._random.sample(range(len(values)), count):
            multiplier = self._random.uniform(3, 5)
            if self._random.random() > 0.5:
                values[idx] = base + multiplier * noise
            else:
                values[idx] = base - multiplier * noise
        return values

    def generate(self, risks: int = 5, controls: int = 5) -> Dict:
        """
        Generate a complete sample dataset.

        Returns:
            JSON-ready dictionary with risk, control, issue and compliance histories
        """
        risk_histories = [
            self.risk_history(f"RISK-{i + 1:03d}", trend=self._random.uniform(-0.2, 0.4), spike_rate=0.05)
            for i in range(risks)
        ]
        control_histories = [
            self.control_history(f"CTRL-{i + 1:03d}", drift=self._random.uniform(-0.03, 0.005))
            for i in range(controls)
        ]

        def dump(records):
            return [record.model_dump(mode="json", by_alias=True) for record in records]

        return {
            "riskHistories": dump(risk_histories),
            "controlHistories": dump(control_histories),
            "issueCounts": dump(self.issue_counts()),
            "complianceHistory": dump(self.compliance_history()),
            "generatedAt": self.as_of.isoformat(),
            "metadata": {"seed": self.seed, "periodDays": self.period.days},
        }

    def save(self, filepath: str = "data/sample_history.json", risks: int = 5, controls: int = 5) -> Dict:
        """
        Generate and save a sample dataset to a JSON file.

        Returns:
            The generated dataset
        """
        directory = os.path.dirname(filepath)
        if directory:
            os.makedirs(directory, exist_ok=True)

        data = self.generate(risks, controls)

        with open(filepath, "w") as f:
            json.dump(data, f, indent=2)

        return data


def generate_realistic_sequence(
    base_mean: float,
    base_std: float,
    num_points: int = 100,
    trend: float = 0.0,
    seasonality_amplitude: float = 0.0,
    seasonality_period: int = 24,
    rng: Optional[np.random.Generator] = None
) -> List[float]:
    """
    Generate a realistic time-series sequence with optional trend and seasonality.

    Args:
        base_mean: Base mean value
        base_std: Base standard deviation
        num_points: Number of points to generate
        trend: Linear trend (positive or negative)
        seasonality_amplitude: Amplitude of seasonal variation
        seasonality_period: Period of seasonal variation
        rng: Random generator (a fresh unseeded one by default)

    Returns:
        List of generated values
    """
    rng = rng or np.random.default_rng()
    index = np.arange(num_points)

    values = rng.normal(base_mean, base_std, num_points) + trend * index
    if seasonality_amplitude > 0:
        values = values + seasonality_amplitude * np.sin(2 * np.pi * index / seasonality_period)

    return values.tolist()
