#!/usr/bin/env python3
"""
Tideflow Calibration CLI

Command-line interface for the tide-flow index and its calibration.

Usage:
    python calibrate_cli.py strength --station DT_0017 --date 2025-11-03
    python calibrate_cli.py calibrate --scenario daesan --start 2025-10-01 --end 2025-12-31 --joint
    python calibrate_cli.py strategies --scenario mohang --start 2025-11-01 --end 2025-11-30
    python calibrate_cli.py diagnose --scenario daesan
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Dict, List

from dotenv import load_dotenv

load_dotenv()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
    datefmt="%H:%M:%S"
)
logger = logging.getLogger("calibrate_cli")


def parse_date(s: str) -> date:
    """Parse date string (YYYY-MM-DD)."""
    return date.fromisoformat(s)


def on_progress(current, total, message):
    pct = current / total * 100 if total else 100.0
    print(f"\r[{pct:5.1f}%] {message}".ljust(60), end="", flush=True)


def selected_scenarios(args):
    from config import CALIBRATION_SCENARIOS

    keys = args.scenario or list(CALIBRATION_SCENARIOS.keys())
    unknown = [k for k in keys if k not in CALIBRATION_SCENARIOS]
    if unknown:
        raise ValueError(f"Unknown scenario(s): {', '.join(unknown)}")
    return [CALIBRATION_SCENARIOS[k] for k in keys]


async def build_rows(scenario, start: date, end: date, rows_dir: str, refresh: bool):
    """Signal rows for a scenario, reusing a saved dataset when present."""
    from core.calibration import SignalDatasetBuilder, load_rows, save_rows
    from core.strength import StrengthEngine

    rows_path = Path(rows_dir) / f"{scenario.key}_{start}_{end}.json"
    if rows_path.exists() and not refresh:
        logger.info(f"Using saved signal rows: {rows_path}")
        return load_rows(str(rows_path))

    engine = StrengthEngine.create()
    try:
        builder = SignalDatasetBuilder(engine.range_stats, engine.current_stats)
        builder.set_progress_callback(on_progress)
        rows = await builder.build(scenario.tide_station, scenario.current_stations, start, end)
        print()
    finally:
        await engine.aclose()

    save_rows(rows, str(rows_path))
    logger.info(f"Saved signal rows: {rows_path}")
    return rows


def load_scenario_harness(scenario, args):
    from core.calibration import CalibrationHarness, ReferenceDataset

    reference = ReferenceDataset.load(scenario.tide_station, args.reference or scenario.reference_path)
    rows = asyncio.run(build_rows(
        scenario, parse_date(args.start), parse_date(args.end), args.rows_dir, args.refresh
    ))
    return CalibrationHarness(rows, reference)


def cmd_strength(args):
    """Compute the tide-flow index for one day."""
    from core.strength import StrengthEngine

    day = parse_date(args.date) if args.date else date.today()

    async def run():
        engine = StrengthEngine.create()
        try:
            return await engine.compute(args.station, day, current_station=args.current)
        finally:
            await engine.aclose()

    result = asyncio.run(run())
    print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
    if result.percent is None:
        logger.warning(f"No tide-flow index available for {args.station} on {day}")


def cmd_calibrate(args):
    """Run the parameter search per scenario (and optionally cross-station)."""
    from core.blender import DEFAULT_PARAMETERS
    from core.calibration import ReportGenerator, build_report, diagnose, search_cross_station
    from core.models import BlendOrientation, BlendParameters

    base = DEFAULT_PARAMETERS
    if args.orientation == "current":
        base = BlendParameters(
            range_weight=base.range_weight,
            current_weight=base.current_weight,
            delta_clamp=base.delta_clamp,
            orientation=BlendOrientation.CURRENT_PRIMARY,
        )

    results = {}
    strategies = {}
    diagnostics = {}
    chosen = {}
    for scenario in selected_scenarios(args):
        logger.info(f"Scenario {scenario.key}: tide={scenario.tide_station} "
                    f"currents={', '.join(scenario.current_stations)}")
        harness = load_scenario_harness(scenario, args)
        series = harness.reference.series(scenario.tide_station)
        if any(p.phase_label for p in series):
            diagnostics[scenario.key] = diagnose(scenario.key, series)
        if args.slice_start or args.slice_end:
            harness = harness.slice(
                parse_date(args.slice_start) if args.slice_start else None,
                parse_date(args.slice_end) if args.slice_end else None,
            )

        ranking = harness.rank_current_stations(base)
        for station, evaluation in ranking:
            mae = f"{evaluation.mae:.3f}" if evaluation.mae is not None else "-"
            print(f"  {scenario.key} current {station}: MAE {mae} (n={evaluation.summary.n})")

        current = args.current or (ranking[0][0] if ranking else None)
        if current:
            harness = harness.for_current_station(current)
        chosen[scenario.key] = harness

        strategies[scenario.key] = harness.compare_strategies(base)
        result = harness.search(joint=args.joint, base=base, progress=on_progress)
        print()
        result.save(args.output)
        results[scenario.key] = result

    cross = None
    if args.cross_station and len(chosen) > 1:
        cross = search_cross_station(chosen, joint=args.joint, base=base)

    report = build_report(results, strategies, cross, diagnostics)
    generator = ReportGenerator(args.report_dir)
    generator.generate_json(report)
    path = generator.generate_markdown(results, strategies, cross, diagnostics)
    logger.info(f"Report generated: {path}")

    for key, result in results.items():
        p = result.best_params
        if result.best is None or p is None or result.best.mae is None:
            print(f"{key}: no scorable days")
            continue
        print(f"{key}: w_range={p.range_weight:.2f} w_current={p.current_weight:.2f} "
              f"clamp=[{p.delta_clamp.min:g}, {p.delta_clamp.max:g}] "
              f"MAE={result.best.mae:.3f} max={result.best.summary.max_error:.0f} n={result.best.summary.n}")
    if cross and cross.best_params:
        p = cross.best_params
        print(f"cross-station: w_current={p.current_weight:.2f} "
              f"clamp=[{p.delta_clamp.min:g}, {p.delta_clamp.max:g}] mean MAE={cross.mean_mae:.3f}")


def cmd_strategies(args):
    """Score each normalization strategy with the default blend."""
    for scenario in selected_scenarios(args):
        harness = load_scenario_harness(scenario, args)
        for key, sub in harness.split_by_key().items():
            print(f"\n{key}")
            for e in sub.compare_strategies():
                mae = f"{e.mae:.3f}" if e.mae is not None else "-"
                print(f"  {e.strategy.value:<18} MAE {mae:>7}  n={e.summary.n}")


def cmd_diagnose(args):
    """Autocorrelation and phase-transition diagnostics of the reference series."""
    from core.calibration import ReferenceDataset, diagnose

    reports: Dict[str, dict] = {}
    for scenario in selected_scenarios(args):
        reference = ReferenceDataset.load(scenario.tide_station, args.reference or scenario.reference_path)
        report = diagnose(scenario.key, reference.series(scenario.tide_station), args.max_lag)
        reports[scenario.key] = report.to_dict()

        periodicity = report.periodicity
        print(f"\n{scenario.key}: {report.n} day(s) {report.start} ~ {report.end}")
        print("  best lags: " + ", ".join(f"{lag}({c:.2f})" for lag, c in periodicity.best_lags[:5]))
        print(f"  half-lunar lag: {periodicity.half_lunar_lag}  lunar lag: {periodicity.lunar_lag}")
        hit = report.transitions.hit_rate
        print(f"  transitions: {report.transitions.expected}/{report.transitions.transitions}"
              f" (hit rate {hit:.3f})" if hit is not None else "  transitions: none")

    if args.json:
        print(json.dumps(reports, ensure_ascii=False, indent=2))


def add_dataset_args(p: argparse.ArgumentParser):
    p.add_argument("--scenario", action="append", help="Scenario key (repeatable, default: all)")
    p.add_argument("--start", required=True, help="Start date (YYYY-MM-DD)")
    p.add_argument("--end", required=True, help="End date (YYYY-MM-DD)")
    p.add_argument("--reference", help="Reference file override (JSON or CSV)")
    p.add_argument("--rows-dir", default="data/signal_rows", help="Saved signal rows directory")
    p.add_argument("--refresh", action="store_true", help="Rebuild signal rows from upstream")


def main(argv: List[str] = None):
    parser = argparse.ArgumentParser(
        description="Tideflow Calibration CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Today's index for Daesan with its default current station
  python calibrate_cli.py strength --station DT_0017

  # Weight-only search over a quarter
  python calibrate_cli.py calibrate --scenario daesan --start 2025-10-01 --end 2025-12-31

  # Joint weight + clamp search, scored on November only, plus cross-station
  python calibrate_cli.py calibrate --start 2025-10-01 --end 2025-12-31 \\
      --slice-start 2025-11-01 --slice-end 2025-11-30 --joint --cross-station
        """
    )

    parser.add_argument("--debug", action="store_true", help="Show tracebacks")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Strength command
    strength_parser = subparsers.add_parser("strength", help="Compute the tide-flow index")
    strength_parser.add_argument("--station", required=True, help="Tide station (e.g., DT_0017)")
    strength_parser.add_argument("--current", help="Current station (default: station pairing)")
    strength_parser.add_argument("--date", help="Date (YYYY-MM-DD, default: today)")
    strength_parser.set_defaults(func=cmd_strength)

    # Calibrate command
    cal_parser = subparsers.add_parser("calibrate", help="Search blend parameters")
    add_dataset_args(cal_parser)
    cal_parser.add_argument("--current", help="Force a current station instead of the best ranked")
    cal_parser.add_argument("--slice-start", help="Score only from this date")
    cal_parser.add_argument("--slice-end", help="Score only up to this date")
    cal_parser.add_argument("--joint", action="store_true", help="Also search the delta clamp")
    cal_parser.add_argument("--cross-station", action="store_true", help="Add a cross-station search")
    cal_parser.add_argument(
        "--orientation",
        choices=["range", "current"],
        default="range",
        help="Baseline signal of the blend"
    )
    cal_parser.add_argument("--output", default="data/calibration_results", help="Result directory")
    cal_parser.add_argument("--report-dir", default="data/reports", help="Report directory")
    cal_parser.set_defaults(func=cmd_calibrate)

    # Strategies command
    strat_parser = subparsers.add_parser("strategies", help="Compare normalization strategies")
    add_dataset_args(strat_parser)
    strat_parser.set_defaults(func=cmd_strategies)

    # Diagnose command
    diag_parser = subparsers.add_parser("diagnose", help="Reference series diagnostics")
    diag_parser.add_argument("--scenario", action="append", help="Scenario key (repeatable)")
    diag_parser.add_argument("--reference", help="Reference file override (JSON or CSV)")
    diag_parser.add_argument("--max-lag", type=int, default=60, help="Largest autocorrelation lag")
    diag_parser.add_argument("--json", action="store_true", help="Also print the full JSON")
    diag_parser.set_defaults(func=cmd_diagnose)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    # Run command
    try:
        args.func(args)
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        sys.exit(1)
    except Exception as e:
        logger.error(f"Command failed: {e}")
        if args.debug:
            raise
        sys.exit(1)


if __name__ == "__main__":
    main()
