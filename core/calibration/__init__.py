"""
Tideflow Calibration

Offline tuning of the blend parameters against reference percentages.

Components:
- reference: ground-truth loading ({station, date} -> percent, phase label)
- dataset: signal rows built from the windowed statistics
- metrics: MAE / max error / bias
- harness: grid search, strategy comparison, per/cross-station search
- diagnostics: autocorrelation and phase-transition checks
- report: JSON/Markdown output

Usage:
    from core.calibration import CalibrationHarness, ReferenceDataset

    harness = CalibrationHarness(rows, ReferenceDataset.load("DT_0017", "daesan.json"))
    result = harness.search(joint=True)
    print(result.best_params)
"""

from .reference import ReferenceDataset, ReferencePoint
from .dataset import SignalDatasetBuilder, SignalRow, date_range, load_rows, save_rows
from .metrics import ErrorSummary, mae, max_abs_error, rmse, bias
from .harness import (
    CalibrationHarness,
    CalibrationResult,
    CrossStationResult,
    Evaluation,
    ParameterSet,
    default_search_space,
    iter_candidates,
    search_cross_station,
)
from .diagnostics import (
    DiagnosticsReport,
    autocorrelation,
    detect_periodicity,
    diagnose,
    transition_anomalies,
)
from .report import ReportGenerator, build_report

__all__ = [
    "ReferenceDataset", "ReferencePoint",
    "SignalDatasetBuilder", "SignalRow", "date_range", "load_rows", "save_rows",
    "ErrorSummary", "mae", "max_abs_error", "rmse", "bias",
    "CalibrationHarness", "CalibrationResult", "CrossStationResult", "Evaluation",
    "ParameterSet", "default_search_space", "iter_candidates", "search_cross_station",
    "DiagnosticsReport", "autocorrelation", "detect_periodicity", "diagnose",
    "transition_anomalies",
    "ReportGenerator", "build_report",
]
