"""
Report Generator Module

Writes calibration runs to disk:
- JSON: full machine-readable report (per station + strategy rows)
- Markdown: summary tables for humans
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from config import REPORT_OUTPUT_DIR
from .diagnostics import DiagnosticsReport
from .harness import CalibrationResult, CrossStationResult, Evaluation

logger = logging.getLogger("calibration.report")


def _fmt(value: Optional[float], digits: int = 2) -> str:
    return f"{value:.{digits}f}" if value is not None else "-"


def build_report(
    results: Dict[str, CalibrationResult],
    strategies: Optional[Dict[str, List[Evaluation]]] = None,
    cross_station: Optional[CrossStationResult] = None,
    diagnostics: Optional[Dict[str, DiagnosticsReport]] = None,
) -> Dict[str, Any]:
    """Assemble the JSON report body."""
    return {
        "generated_at": datetime.now().isoformat(timespec="seconds"),
        "stations": {key: r.to_dict() for key, r in results.items()},
        "strategies": {
            key: [e.to_dict() for e in rows] for key, rows in (strategies or {}).items()
        },
        "cross_station": cross_station.to_dict() if cross_station else None,
        "diagnostics": {key: d.to_dict() for key, d in (diagnostics or {}).items()},
    }


class ReportGenerator:
    """
    Generates reports from calibration results.
    """

    def __init__(self, output_dir: str = REPORT_OUTPUT_DIR):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def _default_name(self, suffix: str) -> str:
        return f"calibration_report_{datetime.now().strftime('%Y%m%d_%H%M%S')}.{suffix}"

    def generate_json(self, report: Dict[str, Any], filename: Optional[str] = None) -> str:
        filepath = self.output_dir / (filename or self._default_name("json"))
        with open(filepath, "w", encoding="utf-8") as f:
            json.dump(report, f, ensure_ascii=False, indent=2)
        logger.info(f"Generated JSON report: {filepath}")
        return str(filepath)

    def generate_markdown(
        self,
        results: Dict[str, CalibrationResult],
        strategies: Optional[Dict[str, List[Evaluation]]] = None,
        cross_station: Optional[CrossStationResult] = None,
        diagnostics: Optional[Dict[str, DiagnosticsReport]] = None,
        filename: Optional[str] = None,
    ) -> str:
        """
        Generate Markdown report.

        Returns:
            Path to generated file
        """
        md = self._render_markdown(results, strategies or {}, cross_station, diagnostics or {})
        filepath = self.output_dir / (filename or self._default_name("md"))
        with open(filepath, "w", encoding="utf-8") as f:
            f.write(md)

        logger.info(f"Generated Markdown report: {filepath}")
        return str(filepath)

    def _render_markdown(
        self,
        results: Dict[str, CalibrationResult],
        strategies: Dict[str, List[Evaluation]],
        cross_station: Optional[CrossStationResult],
        diagnostics: Dict[str, DiagnosticsReport],
    ) -> str:
        lines = [
            "# Tide-Flow Calibration Report",
            "",
            f"Generated: {datetime.now().strftime('%Y-%m-%d %H:%M')}",
            "",
            "## Selected Parameters",
            "",
            "| Station | Period | w_range | w_current | Clamp | MAE | Max err | n | Baseline MAE |",
            "|---------|--------|---------|-----------|-------|-----|---------|---|--------------|",
        ]
        for key, result in results.items():
            best = result.best
            params = result.best_params
            if best is None or params is None:
                lines.append(f"| {key} | - | - | - | - | - | - | 0 | - |")
                continue
            period = f"{result.start} ~ {result.end}"
            lines.append(
                f"| {key} | {period} | {params.range_weight:.2f} | {params.current_weight:.2f} "
                f"| [{params.delta_clamp.min:g}, {params.delta_clamp.max:g}] "
                f"| {_fmt(best.mae, 3)} | {_fmt(best.summary.max_error, 0)} | {best.summary.n} "
                f"| {_fmt(result.baseline.mae if result.baseline else None, 3)} |"
            )

        if cross_station is not None and cross_station.best_params is not None:
            p = cross_station.best_params
            lines += [
                "",
                "## Cross-Station",
                "",
                f"- Weights: range {p.range_weight:.2f} / current {p.current_weight:.2f}",
                f"- Clamp: [{p.delta_clamp.min:g}, {p.delta_clamp.max:g}]",
                f"- Mean MAE: {_fmt(cross_station.mean_mae, 3)} "
                f"(baseline {_fmt(cross_station.baseline_mean_mae, 3)})",
            ]
            for key, value in cross_station.per_station.items():
                lines.append(f"  - {key}: {_fmt(value, 3)}")

        for key, rows in strategies.items():
            lines += [
                "",
                f"## Strategy Comparison: {key}",
                "",
                "| Strategy | MAE | Max err | Bias | n |",
                "|----------|-----|---------|------|---|",
            ]
            for e in rows:
                lines.append(
                    f"| {e.strategy.value} | {_fmt(e.mae, 3)} | {_fmt(e.summary.max_error, 0)} "
                    f"| {_fmt(e.summary.bias, 2)} | {e.summary.n} |"
                )

        for key, diag in diagnostics.items():
            t = diag.transitions
            lines += [
                "",
                f"## Diagnostics: {key}",
                "",
                f"- Days: {diag.n} ({diag.start} ~ {diag.end})",
                f"- Half-lunar periodicity (lag 14-16): "
                f"{'yes, lag ' + str(diag.periodicity.half_lunar_lag) if diag.periodicity.half_lunar else 'no'}",
                f"- Lunar periodicity (lag 28-31): "
                f"{'yes, lag ' + str(diag.periodicity.lunar_lag) if diag.periodicity.lunar else 'no'}",
                f"- Phase transitions: {t.expected}/{t.transitions} as expected "
                f"(hit rate {_fmt(t.hit_rate, 3)}, synodic skips expected {t.expected_synodic_skips:.1f})",
                f"- Baseline MAE: global mean {_fmt(diag.baselines.get('global_mean'))}, "
                f"phase mean {_fmt(diag.baselines.get('phase_mean'))}",
            ]

        for key, result in results.items():
            if result.best is None or not result.best.records:
                continue
            lines += [
                "",
                f"## Daily Breakdown: {key}",
                "",
                "| Date | Reference | Predicted | Error |",
                "|------|-----------|-----------|-------|",
            ]
            for r in result.best.records:
                err = r.predicted_percent - r.reference_percent
                lines.append(
                    f"| {r.day.isoformat()} | {r.reference_percent:g} | {r.predicted_percent:g} | {err:+g} |"
                )

        lines.append("")
        return "\n".join(lines)
