import json
from datetime import date, timedelta
from pathlib import Path
import sys

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import calibrate_cli
from core.calibration import SignalRow, save_rows
from core.models import WindowStats

START = date(2025, 11, 1)
END = date(2025, 11, 10)


def _window(station, day, values):
    return WindowStats(station, day, day - timedelta(days=15), day + timedelta(days=15), values)


def _write_inputs(tmp_path):
    """Saved signal rows plus a reference file for the daesan scenario."""
    rows, reference = [], []
    for i in range((END - START).days + 1):
        day = START + timedelta(days=i)
        truth = 30 + 5 * i
        for current, peak in (("07DS02", truth), ("16LTC03", 100 - truth)):
            rows.append(SignalRow(
                station="DT_0017",
                current_station=current,
                day=day,
                diff=400.0,
                range_window=_window("DT_0017", day, (150.0, 450.0, 750.0)),
                peak_speed=float(peak),
                current_window=_window(current, day, (0.0, 50.0, 100.0)),
            ))
        reference.append({"date": day.isoformat(), "flow_pct": truth, "tide": f"{i % 15 + 1}물"})

    rows_dir = tmp_path / "rows"
    save_rows(rows, str(rows_dir / f"daesan_{START}_{END}.json"))
    ref_path = tmp_path / "daesan.json"
    ref_path.write_text(json.dumps({"rows": reference}), encoding="utf-8")
    return rows_dir, ref_path


def test_calibrate_from_saved_rows(tmp_path, capsys):
    rows_dir, ref_path = _write_inputs(tmp_path)
    output = tmp_path / "results"
    reports = tmp_path / "reports"

    calibrate_cli.main([
        "calibrate", "--scenario", "daesan",
        "--start", str(START), "--end", str(END),
        "--reference", str(ref_path),
        "--rows-dir", str(rows_dir),
        "--output", str(output),
        "--report-dir", str(reports),
    ])

    out = capsys.readouterr().out
    assert "daesan current 07DS02" in out
    assert "daesan: w_range=" in out
    saved = list(output.glob("calibration_DT_0017_07DS02_*.json"))
    assert len(saved) == 1
    assert len(list(reports.glob("*.md"))) == 1

    # Phase-labelled references feed the diagnostics section of the report
    report = json.loads(next(reports.glob("*.json")).read_text(encoding="utf-8"))
    assert report["diagnostics"]["daesan"]["n"] == 10
    assert report["diagnostics"]["daesan"]["transitions"]["hit_rate"] == 1.0
    assert "## Diagnostics: daesan" in next(reports.glob("*.md")).read_text(encoding="utf-8")


def test_strategies_command(tmp_path, capsys):
    rows_dir, ref_path = _write_inputs(tmp_path)

    calibrate_cli.main([
        "strategies", "--scenario", "daesan",
        "--start", str(START), "--end", str(END),
        "--reference", str(ref_path),
        "--rows-dir", str(rows_dir),
    ])

    out = capsys.readouterr().out
    assert "DT_0017/07DS02" in out
    assert "current_minmax" in out


def test_diagnose_command(tmp_path, capsys):
    _, ref_path = _write_inputs(tmp_path)

    calibrate_cli.main(["diagnose", "--scenario", "daesan", "--reference", str(ref_path), "--json"])

    out = capsys.readouterr().out
    assert "daesan: 10 day(s)" in out
    assert '"hit_rate": 1.0' in out
