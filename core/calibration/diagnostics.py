"""
Reference-series diagnostics (informational only)

- Autocorrelation for lags 1-60 days, flagging ~14-16 and ~28-31 day
  periodicity (half and full lunar cycles)
- Tide-phase transition anomalies against a 15-step cyclical phase order
- Per-phase statistics and naive baseline MAEs (global mean, phase mean)

Nothing here feeds back into parameter selection.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

from config import AUTOCORRELATION_MAX_LAG, PHASE_CYCLE_LENGTH, SYNODIC_MONTH_DAYS
from .metrics import mae
from .reference import ReferencePoint

logger = logging.getLogger("calibration.diagnostics")

HALF_LUNAR_LAGS = (14, 16)
HALF_LUNAR_THRESHOLD = 0.7
LUNAR_LAGS = (28, 31)
LUNAR_THRESHOLD = 0.6
MIN_PAIRS = 3


# =============================================================================
# Autocorrelation
# =============================================================================

def pearson(x: Sequence[float], y: Sequence[float]) -> Optional[float]:
    """Pearson correlation, None with < 3 points or zero variance."""
    if len(x) < MIN_PAIRS or len(x) != len(y):
        return None
    a = np.asarray(x, dtype=float)
    b = np.asarray(y, dtype=float)
    a = a - a.mean()
    b = b - b.mean()
    denom = np.sqrt((a * a).sum() * (b * b).sum())
    if denom == 0:
        return None
    return float((a * b).sum() / denom)


def autocorrelation(values: Sequence[float], max_lag: int = AUTOCORRELATION_MAX_LAG) -> Dict[int, Optional[float]]:
    """Correlation of the series with itself shifted by 1..max_lag steps."""
    series = np.asarray(values, dtype=float)
    result: Dict[int, Optional[float]] = {}
    for lag in range(1, max_lag + 1):
        if lag >= len(series):
            result[lag] = None
            continue
        result[lag] = pearson(series[:-lag], series[lag:])
    return result


@dataclass
class PeriodicityReport:
    correlations: Dict[int, Optional[float]]
    best_lags: List[Tuple[int, float]]
    half_lunar_lag: Optional[int] = None
    lunar_lag: Optional[int] = None

    @property
    def half_lunar(self) -> bool:
        return self.half_lunar_lag is not None

    @property
    def lunar(self) -> bool:
        return self.lunar_lag is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "best_lags": [{"lag": lag, "corr": round(c, 4)} for lag, c in self.best_lags],
            "half_lunar_lag": self.half_lunar_lag,
            "lunar_lag": self.lunar_lag,
            "correlations": {
                str(lag): (round(c, 4) if c is not None else None)
                for lag, c in self.correlations.items()
            },
        }


def _strongest_in(correlations: Dict[int, Optional[float]], lags: Tuple[int, int],
                  threshold: float) -> Optional[int]:
    best_lag, best_corr = None, threshold
    for lag in range(lags[0], lags[1] + 1):
        corr = correlations.get(lag)
        if corr is not None and corr > best_corr:
            best_lag, best_corr = lag, corr
    return best_lag


def detect_periodicity(values: Sequence[float], max_lag: int = AUTOCORRELATION_MAX_LAG,
                       top: int = 10) -> PeriodicityReport:
    correlations = autocorrelation(values, max_lag)
    ranked = sorted(
        ((lag, c) for lag, c in correlations.items() if c is not None),
        key=lambda item: item[1],
        reverse=True,
    )
    return PeriodicityReport(
        correlations=correlations,
        best_lags=ranked[:top],
        half_lunar_lag=_strongest_in(correlations, HALF_LUNAR_LAGS, HALF_LUNAR_THRESHOLD),
        lunar_lag=_strongest_in(correlations, LUNAR_LAGS, LUNAR_THRESHOLD),
    )


# =============================================================================
# Phase transitions
# =============================================================================

def learn_cycle_order(labels: Sequence[Optional[str]], cycle_length: int = PHASE_CYCLE_LENGTH) -> List[str]:
    """First `cycle_length` distinct labels in order of appearance."""
    order: List[str] = []
    for label in labels:
        if label and label not in order:
            order.append(label)
        if len(order) >= cycle_length:
            break
    return order


@dataclass
class TransitionReport:
    cycle_order: List[str]
    transitions: int = 0
    expected: int = 0
    anomaly_pairs: Counter = field(default_factory=Counter)
    months_covered: float = 0.0

    @property
    def unexpected(self) -> int:
        return self.transitions - self.expected

    @property
    def hit_rate(self) -> Optional[float]:
        return self.expected / self.transitions if self.transitions else None

    @property
    def expected_synodic_skips(self) -> float:
        """Skips a fixed 30-day (2 x 15 step) cycle needs to track the moon."""
        return self.months_covered * (30 - SYNODIC_MONTH_DAYS)

    def top_anomalies(self, n: int = 10) -> List[Tuple[str, str, str, int]]:
        return [(prev, cur, exp, count) for (prev, cur, exp), count in self.anomaly_pairs.most_common(n)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cycle_order": self.cycle_order,
            "transitions": self.transitions,
            "expected": self.expected,
            "unexpected": self.unexpected,
            "hit_rate": round(self.hit_rate, 4) if self.hit_rate is not None else None,
            "expected_synodic_skips": round(self.expected_synodic_skips, 2),
            "top_anomalies": [
                {"from": p, "to": c, "expected": e, "count": n}
                for p, c, e, n in self.top_anomalies()
            ],
        }


def transition_anomalies(points: Sequence[ReferencePoint],
                         cycle_length: int = PHASE_CYCLE_LENGTH) -> TransitionReport:
    """
    Count day-to-day phase transitions that break the learned cyclical order.

    Only consecutive calendar days with labels on both sides are compared.
    """
    labelled = sorted((p for p in points if p.phase_label), key=lambda p: p.day)
    order = learn_cycle_order([p.phase_label for p in labelled], cycle_length)
    report = TransitionReport(cycle_order=order)
    if not labelled:
        return report

    span_days = (labelled[-1].day - labelled[0].day).days + 1
    report.months_covered = span_days / SYNODIC_MONTH_DAYS
    if not order:
        return report

    expected_next = {label: order[(i + 1) % len(order)] for i, label in enumerate(order)}
    for prev, cur in zip(labelled, labelled[1:]):
        if (cur.day - prev.day).days != 1:
            continue
        report.transitions += 1
        expected = expected_next.get(prev.phase_label)
        if cur.phase_label == expected:
            report.expected += 1
        else:
            report.anomaly_pairs[(prev.phase_label, cur.phase_label, expected or "?")] += 1
    return report


# =============================================================================
# Phase statistics & naive baselines
# =============================================================================

def phase_statistics(points: Sequence[ReferencePoint]) -> List[Dict[str, Any]]:
    """Mean/std/min/max of the reference percent per phase label, by mean."""
    groups: Dict[str, List[float]] = {}
    for p in points:
        groups.setdefault(p.phase_label or "unknown", []).append(p.percent)
    stats = []
    for label, values in groups.items():
        arr = np.asarray(values, dtype=float)
        stats.append({
            "phase": label,
            "n": int(arr.size),
            "mean": round(float(arr.mean()), 2),
            "std": round(float(arr.std()), 2),
            "min": float(arr.min()),
            "max": float(arr.max()),
        })
    return sorted(stats, key=lambda s: s["mean"])


def baseline_maes(points: Sequence[ReferencePoint]) -> Dict[str, Optional[float]]:
    """In-sample MAE of predicting the global mean and the per-phase mean."""
    if not points:
        return {"global_mean": None, "phase_mean": None}
    values = [p.percent for p in points]
    global_mean = float(np.mean(values))
    phase_means = {s["phase"]: s["mean"] for s in phase_statistics(points)}
    return {
        "global_mean": mae([(global_mean, v) for v in values]),
        "phase_mean": mae([(phase_means[p.phase_label or "unknown"], p.percent) for p in points]),
    }


@dataclass
class DiagnosticsReport:
    station: str
    start: Optional[date]
    end: Optional[date]
    n: int
    periodicity: PeriodicityReport
    transitions: TransitionReport
    phases: List[Dict[str, Any]]
    baselines: Dict[str, Optional[float]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "station": self.station,
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
            "n": self.n,
            "periodicity": self.periodicity.to_dict(),
            "transitions": self.transitions.to_dict(),
            "phases": self.phases,
            "baselines": {k: (round(v, 4) if v is not None else None) for k, v in self.baselines.items()},
        }


def diagnose(station: str, points: Sequence[ReferencePoint],
             max_lag: int = AUTOCORRELATION_MAX_LAG) -> DiagnosticsReport:
    """Run every diagnostic over one station's date-ordered reference series."""
    series = sorted(points, key=lambda p: p.day)
    report = DiagnosticsReport(
        station=station,
        start=series[0].day if series else None,
        end=series[-1].day if series else None,
        n=len(series),
        periodicity=detect_periodicity([p.percent for p in series], max_lag),
        transitions=transition_anomalies(series),
        phases=phase_statistics(series),
        baselines=baseline_maes(series),
    )
    logger.info(
        f"{station}: {report.n} day(s), half-lunar lag {report.periodicity.half_lunar_lag}, "
        f"lunar lag {report.periodicity.lunar_lag}, transition hit rate {report.transitions.hit_rate}"
    )
    return report
