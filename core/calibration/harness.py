"""
Calibration Harness

Searches blend parameters against the reference percentages:
- Grid search over current weight (and optionally the delta clamp)
- Strategy comparison (each single-signal normalizer and the blend)
- Per-station search and cross-station (mean MAE) search
- Current-station ranking for a tide gauge

Works on pre-built SignalRows, so every search is pure and repeatable.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from itertools import product
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo
import json

from config import (
    CALIBRATION_OUTPUT_DIR,
    CURRENT_WEIGHT_GRID,
    DELTA_MAX_GRID,
    DELTA_MIN_GRID,
)
from core.blender import DEFAULT_PARAMETERS, blend
from core.errors import ReferenceGapError
from core.models import (
    BlendParameters,
    CalibrationRecord,
    NormalizationStrategy,
)
from core.normalizers import CurrentSpeedNormalizer, RangeNormalizer
from .dataset import SignalRow
from .metrics import ErrorSummary, mae_sort_key
from .reference import ReferenceDataset

logger = logging.getLogger("calibration.harness")

UTC = ZoneInfo("UTC")

ProgressCallback = Callable[[int, int, str], None]


@dataclass
class ParameterSet:
    """A parameter to calibrate."""
    name: str
    current_value: Any
    min_value: Any
    max_value: Any
    step: Any
    param_type: str = "float"  # "float", "int"

    def get_grid_values(self) -> List[Any]:
        """All values to test in grid search (inclusive of max)."""
        if self.param_type == "int":
            return list(range(
                int(self.min_value),
                int(self.max_value) + 1,
                int(self.step)
            ))

        # Float: index-based to avoid accumulating step error
        count = int(round((self.max_value - self.min_value) / self.step))
        return [round(self.min_value + i * self.step, 6) for i in range(count + 1)]


def default_search_space(joint: bool = False) -> Dict[str, ParameterSet]:
    """Current weight 0.00-0.50; with `joint`, also the delta clamp bounds."""
    w_lo, w_hi, w_step = CURRENT_WEIGHT_GRID
    space = {
        "current_weight": ParameterSet(
            "current_weight", DEFAULT_PARAMETERS.current_weight, w_lo, w_hi, w_step
        ),
    }
    if joint:
        lo, hi, step = DELTA_MIN_GRID
        space["delta_min"] = ParameterSet(
            "delta_min", DEFAULT_PARAMETERS.delta_clamp.min, lo, hi, step, "int"
        )
        lo, hi, step = DELTA_MAX_GRID
        space["delta_max"] = ParameterSet(
            "delta_max", DEFAULT_PARAMETERS.delta_clamp.max, lo, hi, step, "int"
        )
    return space


def iter_candidates(
    space: Dict[str, ParameterSet],
    base: BlendParameters = DEFAULT_PARAMETERS,
) -> Iterator[BlendParameters]:
    """BlendParameters for every grid point; unsearched values come from `base`."""
    names = list(space.keys())
    grids = [space[n].get_grid_values() for n in names]
    for combo in product(*grids):
        values = dict(zip(names, combo))
        weight = values.get("current_weight", base.current_weight)
        d_min = values.get("delta_min", base.delta_clamp.min)
        d_max = values.get("delta_max", base.delta_clamp.max)
        if d_max <= d_min or d_min > 0 or d_max < 0:
            continue
        yield BlendParameters.from_current_weight(weight, d_min, d_max, base.orientation)


# =============================================================================
# Results
# =============================================================================

@dataclass
class Evaluation:
    """Score of one strategy/parameter set over a row set."""
    strategy: NormalizationStrategy
    params: Optional[BlendParameters]
    summary: ErrorSummary
    records: List[CalibrationRecord] = field(default_factory=list)

    @property
    def mae(self) -> Optional[float]:
        return self.summary.mae

    def to_dict(self, include_records: bool = False) -> Dict[str, Any]:
        data = {
            "strategy": self.strategy.value,
            "params": self.params.to_dict() if self.params else None,
            **self.summary.to_dict(),
        }
        if include_records:
            data["records"] = [
                {
                    "date": r.day.isoformat(),
                    "reference": r.reference_percent,
                    "predicted": r.predicted_percent,
                    "error": r.predicted_percent - r.reference_percent,
                }
                for r in self.records
            ]
        return data


@dataclass
class CalibrationResult:
    """Result of one grid search."""
    station_key: str
    start: Optional[date]
    end: Optional[date]
    joint: bool

    best: Optional[Evaluation] = None
    baseline: Optional[Evaluation] = None
    reference_gaps: int = 0

    # Top candidates by MAE
    top_results: List[Dict[str, Any]] = field(default_factory=list)

    run_started: datetime = field(default_factory=lambda: datetime.now(UTC))
    run_completed: Optional[datetime] = None
    total_combinations: int = 0
    combinations_tested: int = 0

    @property
    def best_params(self) -> Optional[BlendParameters]:
        return self.best.params if self.best else None

    @property
    def improvement(self) -> Optional[float]:
        if not self.best or not self.baseline or self.best.mae is None or self.baseline.mae is None:
            return None
        return self.baseline.mae - self.best.mae

    def to_dict(self) -> Dict[str, Any]:
        return {
            "config": {
                "station": self.station_key,
                "start": self.start.isoformat() if self.start else None,
                "end": self.end.isoformat() if self.end else None,
                "joint": self.joint,
            },
            "best": self.best.to_dict(include_records=True) if self.best else None,
            "baseline": self.baseline.to_dict() if self.baseline else None,
            "summary": {
                "total_combinations": self.total_combinations,
                "combinations_tested": self.combinations_tested,
                "reference_gaps": self.reference_gaps,
                "improvement": round(self.improvement, 4) if self.improvement is not None else None,
                "run_started": self.run_started.isoformat(),
                "run_completed": self.run_completed.isoformat() if self.run_completed else None,
            },
            "top_results": self.top_results,
        }

    def save(self, output_dir: str = CALIBRATION_OUTPUT_DIR) -> Path:
        """Save results to JSON file."""
        output_path = Path(output_dir)
        output_path.mkdir(parents=True, exist_ok=True)

        safe_key = self.station_key.replace("/", "_")
        filename = (
            f"calibration_{safe_key}_"
            f"{self.start.isoformat() if self.start else 'all'}_"
            f"{datetime.now(UTC).strftime('%Y%m%d_%H%M%S')}.json"
        )

        with open(output_path / filename, "w") as f:
            json.dump(self.to_dict(), f, indent=2)

        logger.info(f"Saved calibration results to {output_path / filename}")
        return output_path / filename


@dataclass
class CrossStationResult:
    """Parameters minimizing the mean of per-station MAEs."""
    best_params: Optional[BlendParameters]
    mean_mae: Optional[float]
    per_station: Dict[str, Optional[float]]
    baseline_mean_mae: Optional[float]
    baseline_per_station: Dict[str, Optional[float]]
    combinations_tested: int = 0

    def to_dict(self) -> Dict[str, Any]:
        def r(x):
            return round(x, 4) if x is not None else None

        return {
            "best_params": self.best_params.to_dict() if self.best_params else None,
            "mean_mae": r(self.mean_mae),
            "per_station": {k: r(v) for k, v in self.per_station.items()},
            "baseline_mean_mae": r(self.baseline_mean_mae),
            "baseline_per_station": {k: r(v) for k, v in self.baseline_per_station.items()},
            "combinations_tested": self.combinations_tested,
        }


# =============================================================================
# Harness
# =============================================================================

class CalibrationHarness:
    """
    Scores strategies and searches blend parameters over SignalRows.

    Args:
        rows: signal rows (any mix of stations / current stations)
        reference: ground-truth percentages
        range_normalizer: supplies the fixed bound tables for range strategies
        blend_current_strategy: current scaler feeding the blended strategy
    """

    def __init__(
        self,
        rows: Sequence[SignalRow],
        reference: ReferenceDataset,
        range_normalizer: Optional[RangeNormalizer] = None,
        blend_current_strategy: NormalizationStrategy = NormalizationStrategy.CURRENT_MINMAX,
    ):
        self.rows = sorted(rows, key=lambda r: (r.station, r.current_station or "", r.day))
        self.reference = reference
        self.range_normalizer = range_normalizer or RangeNormalizer()
        self.blend_current_strategy = blend_current_strategy

        self._range_normalizers = {
            s: RangeNormalizer(
                max_table=self.range_normalizer.max_table,
                min_table=self.range_normalizer.min_table,
                default_max=self.range_normalizer.default_max,
                min_ratio=self.range_normalizer.min_ratio,
                min_count=self.range_normalizer.min_count,
                strategy=s,
            )
            for s in (NormalizationStrategy.RANGE_MINMAX, NormalizationStrategy.RANGE_MAX_RATIO)
        }
        self._current_normalizers = {
            s: CurrentSpeedNormalizer(strategy=s)
            for s in (
                NormalizationStrategy.CURRENT_MINMAX,
                NormalizationStrategy.CURRENT_MAX_RATIO,
                NormalizationStrategy.PERCENTILE_RANK,
            )
        }

        self.references: List[Optional[float]] = []
        self.reference_gaps = 0
        for row in self.rows:
            try:
                self.references.append(reference.percent(row.station, row.day))
            except ReferenceGapError:
                self.references.append(None)
                self.reference_gaps += 1
        if self.reference_gaps:
            logger.info(f"{self.reference_gaps} row(s) have no reference value and are excluded")

        self.signals: List[Dict[NormalizationStrategy, Optional[int]]] = [
            self._row_signals(row) for row in self.rows
        ]

    def _row_signals(self, row: SignalRow) -> Dict[NormalizationStrategy, Optional[int]]:
        signals: Dict[NormalizationStrategy, Optional[int]] = {}
        for strategy, normalizer in self._range_normalizers.items():
            signals[strategy] = normalizer.normalize(row.station, row.diff, row.range_window).value
        for strategy, normalizer in self._current_normalizers.items():
            signals[strategy] = normalizer.normalize(row.peak_speed, row.current_window).value
        return signals

    # ------------------------------------------------------------------
    # Row subsets
    # ------------------------------------------------------------------

    def _subset(self, rows: Sequence[SignalRow]) -> "CalibrationHarness":
        return CalibrationHarness(
            rows,
            self.reference,
            range_normalizer=self.range_normalizer,
            blend_current_strategy=self.blend_current_strategy,
        )

    def slice(self, start: Optional[date] = None, end: Optional[date] = None) -> "CalibrationHarness":
        """Harness restricted to rows with start <= day <= end."""
        return self._subset([
            r for r in self.rows
            if (start is None or r.day >= start) and (end is None or r.day <= end)
        ])

    def split_by_key(self) -> Dict[str, "CalibrationHarness"]:
        """One harness per tide station / current station pairing."""
        groups: Dict[str, List[SignalRow]] = {}
        for row in self.rows:
            groups.setdefault(row.key, []).append(row)
        return {key: self._subset(rows) for key, rows in groups.items()}

    def for_current_station(self, current_station: str) -> "CalibrationHarness":
        return self._subset([r for r in self.rows if r.current_station == current_station])

    @property
    def date_span(self) -> Tuple[Optional[date], Optional[date]]:
        if not self.rows:
            return None, None
        return self.rows[0].day, self.rows[-1].day

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def predict(self, index: int, strategy: NormalizationStrategy,
                params: BlendParameters = DEFAULT_PARAMETERS) -> Optional[int]:
        signals = self.signals[index]
        if strategy == NormalizationStrategy.BLENDED:
            return blend(
                signals[NormalizationStrategy.RANGE_MINMAX],
                signals[self.blend_current_strategy],
                params,
            )
        return signals[strategy]

    def _pairs(self, strategy: NormalizationStrategy,
               params: BlendParameters) -> List[Tuple[int, float, float]]:
        pairs = []
        for i, ref in enumerate(self.references):
            if ref is None:
                continue
            predicted = self.predict(i, strategy, params)
            if predicted is None:
                continue
            pairs.append((i, float(predicted), ref))
        return pairs

    def _mae(self, params: BlendParameters) -> Optional[float]:
        # Hot path of the grid search: no records, no summary object
        total = 0.0
        n = 0
        range_key = NormalizationStrategy.RANGE_MINMAX
        current_key = self.blend_current_strategy
        for signals, ref in zip(self.signals, self.references):
            if ref is None:
                continue
            predicted = blend(signals[range_key], signals[current_key], params)
            if predicted is None:
                continue
            total += abs(predicted - ref)
            n += 1
        return total / n if n else None

    def evaluate(
        self,
        params: BlendParameters = DEFAULT_PARAMETERS,
        strategy: NormalizationStrategy = NormalizationStrategy.BLENDED,
    ) -> Evaluation:
        """MAE / max error of one strategy over every row with both values."""
        pairs = self._pairs(strategy, params)
        records = [
            CalibrationRecord(
                station=self.rows[i].key,
                day=self.rows[i].day,
                reference_percent=ref,
                predicted_percent=pred,
            )
            for i, pred, ref in pairs
        ]
        return Evaluation(
            strategy=strategy,
            params=params if strategy == NormalizationStrategy.BLENDED else None,
            summary=ErrorSummary.from_pairs([(pred, ref) for _, pred, ref in pairs]),
            records=records,
        )

    def compare_strategies(self, params: BlendParameters = DEFAULT_PARAMETERS) -> List[Evaluation]:
        """Every strategy scored independently, sorted by MAE (missing last)."""
        evaluations = [self.evaluate(params, strategy) for strategy in NormalizationStrategy]
        return sorted(evaluations, key=lambda e: mae_sort_key(e.mae))

    def rank_current_stations(self, params: BlendParameters = DEFAULT_PARAMETERS) -> List[Tuple[str, Evaluation]]:
        """Candidate current stations ordered by blended MAE."""
        stations = sorted({r.current_station for r in self.rows if r.current_station})
        ranked = [(s, self.for_current_station(s).evaluate(params)) for s in stations]
        return sorted(ranked, key=lambda item: mae_sort_key(item[1].mae))

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(
        self,
        joint: bool = False,
        space: Optional[Dict[str, ParameterSet]] = None,
        base: BlendParameters = DEFAULT_PARAMETERS,
        progress: Optional[ProgressCallback] = None,
        keep_top: int = 20,
    ) -> CalibrationResult:
        """
        Grid search minimizing blended MAE.

        `base` is always scored first, so the selected set is never worse
        than it in-sample. Ties keep the earlier candidate.
        """
        space = space or default_search_space(joint)
        candidates = list(iter_candidates(space, base))
        start, end = self.date_span
        key = self.rows[0].key if len({r.key for r in self.rows}) == 1 else "all"

        result = CalibrationResult(
            station_key=key,
            start=start,
            end=end,
            joint=joint,
            reference_gaps=self.reference_gaps,
            total_combinations=len(candidates),
        )
        logger.info(f"Calibration {key}: {len(candidates)} combinations, {len(self.rows)} rows")

        best_params = base
        best_mae = self._mae(base)
        scored: List[Tuple[float, BlendParameters]] = []

        for i, params in enumerate(candidates):
            if progress and i % 100 == 0:
                progress(i, len(candidates), f"{key} w={params.current_weight:.2f}")
            score = self._mae(params)
            result.combinations_tested += 1
            if score is None:
                continue
            scored.append((score, params))
            if best_mae is None or score < best_mae:
                best_mae = score
                best_params = params

        if progress:
            progress(len(candidates), len(candidates), f"{key} done")

        result.baseline = self.evaluate(base)
        result.best = self.evaluate(best_params)
        scored.sort(key=lambda item: item[0])
        result.top_results = [
            {"mae": round(s, 4), "params": p.to_dict()} for s, p in scored[:keep_top]
        ]
        result.run_completed = datetime.now(UTC)

        if result.best.mae is not None:
            logger.info(
                f"Calibration {key}: best MAE {result.best.mae:.3f} "
                f"(baseline {result.baseline.mae:.3f}) "
                f"w_current={best_params.current_weight:.2f} "
                f"clamp=[{best_params.delta_clamp.min:g}, {best_params.delta_clamp.max:g}]"
            )
        else:
            logger.warning(f"Calibration {key}: no scorable rows")
        return result

    def search_per_station(self, joint: bool = False,
                           base: BlendParameters = DEFAULT_PARAMETERS) -> Dict[str, CalibrationResult]:
        return {key: h.search(joint=joint, base=base) for key, h in self.split_by_key().items()}


def search_cross_station(
    harnesses: Dict[str, CalibrationHarness],
    joint: bool = False,
    space: Optional[Dict[str, ParameterSet]] = None,
    base: BlendParameters = DEFAULT_PARAMETERS,
) -> CrossStationResult:
    """One parameter set minimizing the mean of per-station MAEs."""
    space = space or default_search_space(joint)

    def score(params: BlendParameters) -> Tuple[Optional[float], Dict[str, Optional[float]]]:
        per_station = {key: h._mae(params) for key, h in harnesses.items()}
        values = [v for v in per_station.values() if v is not None]
        return (sum(values) / len(values) if values else None), per_station

    baseline_mean, baseline_per_station = score(base)
    best_params, best_mean, best_per_station = base, baseline_mean, baseline_per_station
    tested = 0

    for params in iter_candidates(space, base):
        tested += 1
        mean, per_station = score(params)
        if mean is None:
            continue
        if best_mean is None or mean < best_mean:
            best_params, best_mean, best_per_station = params, mean, per_station

    logger.info(f"Cross-station search over {len(harnesses)} station(s): mean MAE {best_mean}")
    return CrossStationResult(
        best_params=best_params if best_mean is not None else None,
        mean_mae=best_mean,
        per_station=best_per_station,
        baseline_mean_mae=baseline_mean,
        baseline_per_station=baseline_per_station,
        combinations_tested=tested,
    )
