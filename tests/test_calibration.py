"""
Tests for the calibration harness.

Tests cover:
- Metrics
- Reference loading and gaps
- Signal rows (persistence, dataset builder)
- Grid definition and candidate generation
- Strategy comparison, per-station and cross-station search
- Report generation
"""

import asyncio
import json
from datetime import date, timedelta
from pathlib import Path
import sys

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core.models import BlendParameters, NormalizationStrategy, WindowStats

START = date(2025, 11, 1)


def make_row(day, range_pct, current_pct, current_station="07DS02", station="DT_0017"):
    """Row whose range/current min-max signals equal range_pct/current_pct."""
    from core.calibration import SignalRow

    def window(st, values):
        return WindowStats(st, day, day - timedelta(days=15), day + timedelta(days=15), values)

    return SignalRow(
        station=station,
        current_station=current_station,
        day=day,
        diff=100.0 + 2 * range_pct,
        range_window=window(station, (100.0, 200.0, 300.0)),
        peak_speed=float(current_pct),
        current_window=window(current_station, (0.0, 50.0, 100.0)),
    )


def follow_current_case(n=20, station="DT_0017", current_station="07DS02", gaps=()):
    """Reference tracks the current signal while the range signal sits at 50."""
    from core.calibration import ReferenceDataset, ReferencePoint

    rows, points = [], []
    for i in range(n):
        day = START + timedelta(days=i)
        current_pct = 20 + 3 * i
        rows.append(make_row(day, 50, current_pct, current_station, station))
        if i not in gaps:
            points.append(ReferencePoint(station, day, float(current_pct)))
    return rows, ReferenceDataset(points)


# =============================================================================
# Metrics
# =============================================================================

class TestMetrics:
    """Error metrics."""

    def test_mae_and_max_error(self):
        from core.calibration import ErrorSummary, mae, max_abs_error

        pairs = [(60, 62), (40, 30), (50, 50)]
        assert mae(pairs) == pytest.approx(4.0)
        assert max_abs_error(pairs) == 10

        summary = ErrorSummary.from_pairs(pairs)
        assert summary.n == 3
        assert summary.bias == pytest.approx((-2 + 10 + 0) / 3)

    def test_empty_pairs_have_no_score(self):
        from core.calibration import ErrorSummary, mae, max_abs_error

        assert mae([]) is None
        assert max_abs_error([]) is None
        assert ErrorSummary.from_pairs([]).to_dict()["mae"] is None


# =============================================================================
# Reference data
# =============================================================================

class TestReference:
    """Ground-truth loading."""

    def test_json_rows_with_phase_labels(self, tmp_path):
        from core.calibration import ReferenceDataset

        path = tmp_path / "daesan.json"
        path.write_text(json.dumps({"rows": [
            {"date": "2025-11-03", "flow_pct": 73, "tide": "7물"},
            {"date": "2025-11-04", "flow_pct": "n/a"},
        ]}), encoding="utf-8")

        dataset = ReferenceDataset.load("DT_0017", str(path))

        assert len(dataset) == 1
        point = dataset.get("DT_0017", date(2025, 11, 3))
        assert point.percent == 73
        assert point.phase_label == "7물"

    def test_json_mapping(self, tmp_path):
        from core.calibration import ReferenceDataset

        path = tmp_path / "mohang.json"
        path.write_text(json.dumps({"2025-11-03": 41, "2025-11-04": 48}))

        dataset = ReferenceDataset.load("DT_0031", str(path))
        assert [p.percent for p in dataset.series("DT_0031")] == [41, 48]

    def test_csv(self, tmp_path):
        from core.calibration import ReferenceDataset

        path = tmp_path / "daesan.csv"
        path.write_text("date,flow_pct,tide\n2025-11-03,73,7물\n2025-11-04,80,8물\n", encoding="utf-8")

        dataset = ReferenceDataset.load("DT_0017", str(path))
        assert dataset.percent("DT_0017", date(2025, 11, 4)) == 80

    def test_gap_raises(self):
        from core.calibration import ReferenceDataset
        from core.errors import ReferenceGapError

        with pytest.raises(ReferenceGapError):
            ReferenceDataset().get("DT_0017", date(2025, 11, 3))

    def test_save_and_reload(self, tmp_path):
        from core.calibration import ReferenceDataset, ReferencePoint

        dataset = ReferenceDataset([ReferencePoint("DT_0017", date(2025, 11, 3), 73, "7물")])
        path = tmp_path / "out" / "ref.json"
        dataset.save(str(path), "DT_0017")

        assert list(ReferenceDataset.load("DT_0017", str(path))) == list(dataset)


# =============================================================================
# Signal rows
# =============================================================================

class TestSignalRows:
    """Row persistence and building."""

    def test_save_and_load(self, tmp_path):
        from core.calibration import load_rows, save_rows

        row = make_row(START, 40, 70)
        path = save_rows([row], str(tmp_path / "rows.json"))

        loaded = load_rows(str(path))

        assert loaded == [row]
        assert loaded[0].key == "DT_0017/07DS02"

    def test_builder_pairs_every_current_station(self):
        from core.calibration import SignalDatasetBuilder
        from core.window_stats import WindowSnapshot

        class FakeStats:
            def __init__(self, value):
                self.value = value
                self.calls = []

            async def snapshot(self, station, center):
                self.calls.append((station, center))
                stats = WindowStats(station, center, center, center, (1.0, 2.0, 3.0))
                return WindowSnapshot(station, center, {center: self.value}, stats)

        range_stats, current_stats = FakeStats(486.0), FakeStats(81.0)
        builder = SignalDatasetBuilder(range_stats, current_stats)
        progress = []
        builder.set_progress_callback(lambda cur, total, msg: progress.append((cur, total)))

        rows = asyncio.run(builder.build("DT_0017", ["07DS02", "16LTC03"], START, START + timedelta(days=2)))

        assert len(rows) == 6
        assert {r.current_station for r in rows} == {"07DS02", "16LTC03"}
        assert rows[0].diff == 486.0
        assert rows[0].peak_speed == 81.0
        assert len(range_stats.calls) == 3
        assert progress[-1] == (3, 3)


# =============================================================================
# Grid
# =============================================================================

class TestGrid:
    """Search space definition."""

    def test_current_weight_grid(self):
        from core.calibration import default_search_space

        values = default_search_space()["current_weight"].get_grid_values()

        assert len(values) == 51
        assert values[0] == 0.0
        assert values[8] == 0.08
        assert values[-1] == 0.5

    def test_joint_grid(self):
        from core.calibration import default_search_space, iter_candidates

        space = default_search_space(joint=True)

        assert space["delta_min"].get_grid_values() == list(range(-15, 1))
        assert space["delta_max"].get_grid_values() == list(range(8, 21))
        assert len(list(iter_candidates(space))) == 51 * 16 * 13

    def test_candidates_keep_base_clamp_and_orientation(self):
        from core.calibration import ParameterSet, iter_candidates
        from core.models import BlendOrientation, DeltaClamp

        base = BlendParameters(0.92, 0.08, DeltaClamp(-5, 6), BlendOrientation.CURRENT_PRIMARY)
        space = {"current_weight": ParameterSet("current_weight", 0.08, 0.0, 0.1, 0.05)}

        candidates = list(iter_candidates(space, base))

        assert [c.current_weight for c in candidates] == [0.0, 0.05, 0.1]
        assert all(c.delta_clamp == DeltaClamp(-5, 6) for c in candidates)
        assert all(c.orientation == BlendOrientation.CURRENT_PRIMARY for c in candidates)


# =============================================================================
# Harness
# =============================================================================

class TestHarness:
    """Scoring and search over signal rows."""

    def test_evaluate_baseline(self):
        from core.blender import blend
        from core.calibration import CalibrationHarness

        rows, reference = follow_current_case()
        harness = CalibrationHarness(rows, reference)

        evaluation = harness.evaluate()
        expected = sum(abs(blend(50, 20 + 3 * i) - (20 + 3 * i)) for i in range(20)) / 20

        assert evaluation.summary.n == 20
        assert evaluation.mae == pytest.approx(expected)
        assert evaluation.params is not None

    def test_search_never_worse_than_baseline(self):
        from core.calibration import CalibrationHarness

        rows, reference = follow_current_case()
        result = CalibrationHarness(rows, reference).search()

        assert result.total_combinations == 51
        assert result.combinations_tested == 51
        assert result.best.mae <= result.baseline.mae
        assert result.best_params.current_weight > 0.08
        assert result.improvement > 0
        assert len(result.top_results) == 20
        assert result.top_results[0]["mae"] == pytest.approx(result.best.mae, abs=1e-4)

    def test_joint_search_at_least_as_good(self):
        from core.calibration import CalibrationHarness

        rows, reference = follow_current_case()
        harness = CalibrationHarness(rows, reference)

        weight_only = harness.search()
        joint = harness.search(joint=True)

        assert joint.total_combinations == 51 * 16 * 13
        assert joint.best.mae <= weight_only.best.mae

    def test_baseline_kept_when_nothing_improves(self):
        from core.calibration import CalibrationHarness, ReferenceDataset, ReferencePoint

        # Reference equals the range signal: the current signal only hurts
        rows = [make_row(START + timedelta(days=i), 40, 90) for i in range(5)]
        reference = ReferenceDataset([ReferencePoint("DT_0017", r.day, 40.0) for r in rows])

        base = BlendParameters.from_current_weight(0.0)
        result = CalibrationHarness(rows, reference).search(base=base)

        assert result.best.mae == 0
        assert result.best_params == base

    def test_reference_gaps_are_excluded(self):
        from core.calibration import CalibrationHarness

        rows, reference = follow_current_case(gaps={0, 5, 10})
        harness = CalibrationHarness(rows, reference)

        assert harness.reference_gaps == 3
        assert harness.evaluate().summary.n == 17
        assert harness.search().reference_gaps == 3

    def test_no_reference_means_no_score(self):
        from core.calibration import CalibrationHarness, ReferenceDataset

        rows, _ = follow_current_case(n=3)
        result = CalibrationHarness(rows, ReferenceDataset()).search()

        assert result.best.mae is None
        assert result.best.summary.n == 0

    def test_compare_strategies_sorted_by_mae(self):
        from core.calibration import CalibrationHarness

        rows, reference = follow_current_case()
        evaluations = CalibrationHarness(rows, reference).compare_strategies()

        assert {e.strategy for e in evaluations} == set(NormalizationStrategy)
        assert evaluations[0].strategy == NormalizationStrategy.CURRENT_MINMAX
        assert evaluations[0].mae == 0
        maes = [e.mae for e in evaluations]
        assert maes == sorted(maes)

    def test_rank_current_stations(self):
        from core.calibration import CalibrationHarness, ReferenceDataset, ReferencePoint

        rows, points = [], []
        for i in range(10):
            day = START + timedelta(days=i)
            truth = 30 + 4 * i
            rows.append(make_row(day, 50, truth, "07DS02"))
            rows.append(make_row(day, 50, 100 - truth, "16LTC03"))
            points.append(ReferencePoint("DT_0017", day, float(truth)))
        harness = CalibrationHarness(rows, ReferenceDataset(points))

        ranking = harness.rank_current_stations()

        assert [station for station, _ in ranking] == ["07DS02", "16LTC03"]
        assert set(harness.split_by_key()) == {"DT_0017/07DS02", "DT_0017/16LTC03"}
        assert len(harness.for_current_station("16LTC03").rows) == 10

    def test_slice(self):
        from core.calibration import CalibrationHarness

        rows, reference = follow_current_case()
        sliced = CalibrationHarness(rows, reference).slice(START + timedelta(days=5), START + timedelta(days=9))

        assert sliced.date_span == (START + timedelta(days=5), START + timedelta(days=9))
        assert sliced.evaluate().summary.n == 5

    def test_search_per_station(self):
        from core.calibration import CalibrationHarness

        rows_a, ref_a = follow_current_case(current_station="07DS02")
        rows_b, ref_b = follow_current_case(current_station="16LTC03")
        harness = CalibrationHarness(rows_a + rows_b, ref_a.merge(ref_b))

        results = harness.search_per_station()

        assert set(results) == {"DT_0017/07DS02", "DT_0017/16LTC03"}
        assert all(r.best.mae <= r.baseline.mae for r in results.values())

    def test_cross_station_search(self):
        from core.calibration import CalibrationHarness, search_cross_station

        rows_a, ref_a = follow_current_case(station="DT_0017")
        rows_b, ref_b = follow_current_case(station="DT_0031", current_station="16LTC01")
        harnesses = {
            "daesan": CalibrationHarness(rows_a, ref_a),
            "mohang": CalibrationHarness(rows_b, ref_b),
        }

        cross = search_cross_station(harnesses)

        assert cross.mean_mae <= cross.baseline_mean_mae
        assert set(cross.per_station) == {"daesan", "mohang"}
        assert cross.combinations_tested == 51
        assert cross.to_dict()["best_params"]["weights"]["current"] == cross.best_params.current_weight

    def test_result_save_feeds_deployment(self, tmp_path):
        from core.calibration import CalibrationHarness
        from core.strength import load_blend_parameters

        rows, reference = follow_current_case()
        result = CalibrationHarness(rows, reference).search()

        path = result.save(str(tmp_path))
        saved = json.loads(path.read_text())

        assert saved["config"]["station"] == "DT_0017/07DS02"
        assert len(saved["best"]["records"]) == 20
        assert load_blend_parameters(str(path)) == result.best_params


# =============================================================================
# Report
# =============================================================================

class TestReport:
    """JSON / Markdown output."""

    def test_generate_reports(self, tmp_path):
        from core.calibration import CalibrationHarness, ReportGenerator, build_report

        rows, reference = follow_current_case()
        harness = CalibrationHarness(rows, reference)
        results = {"daesan": harness.search()}
        strategies = {"daesan": harness.compare_strategies()}

        generator = ReportGenerator(str(tmp_path))
        json_path = generator.generate_json(build_report(results, strategies), "report.json")
        md_path = generator.generate_markdown(results, strategies, filename="report.md")

        report = json.loads(Path(json_path).read_text(encoding="utf-8"))
        assert report["stations"]["daesan"]["best"]["params"] is not None
        assert len(report["strategies"]["daesan"]) == len(NormalizationStrategy)

        md = Path(md_path).read_text(encoding="utf-8")
        assert "## Selected Parameters" in md
        assert "## Strategy Comparison: daesan" in md
        assert "## Daily Breakdown: daesan" in md
