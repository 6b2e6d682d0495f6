"""
Tests for the range and current-speed normalizers.

Covers:
- Window-based min-max scaling (including the worked Daesan examples)
- Fixed-bound fallback when the window is too thin
- Current strategies: min-max, max-ratio, percentile rank
"""

from datetime import date, timedelta
from pathlib import Path
import sys

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core.models import BoundsSource, NormalizationStrategy, WindowStats

CENTER = date(2025, 11, 3)


def make_window(values, station="DT_0017"):
    return WindowStats(
        station=station,
        center=CENTER,
        start=CENTER - timedelta(days=15),
        end=CENTER + timedelta(days=15),
        values=tuple(values),
    )


class TestScalers:
    """Pure scaling helpers."""

    def test_min_max_pct(self):
        from core.normalizers import min_max_pct

        assert min_max_pct(486, 150, 750) == 56
        assert min_max_pct(150, 150, 750) == 0
        assert min_max_pct(750, 150, 750) == 100
        assert min_max_pct(900, 150, 750) == 100
        assert min_max_pct(100, 150, 750) == 0

    def test_min_max_pct_degenerate_bounds(self):
        from core.normalizers import min_max_pct

        assert min_max_pct(100, 200, 200) is None
        assert min_max_pct(100, 300, 200) is None

    def test_percentile_rank(self):
        from core.normalizers import percentile_rank_pct

        values = [10, 20, 30, 40]
        assert percentile_rank_pct(40, values) == 100
        assert percentile_rank_pct(10, values) == 0
        # 2 strictly below over n - 1 = 3
        assert percentile_rank_pct(30, values) == 67
        assert percentile_rank_pct(5, []) is None

    def test_output_always_in_range(self):
        from core.normalizers import max_ratio_pct, min_max_pct

        for value in range(-200, 1200, 7):
            for pct in (min_max_pct(value, 150, 750), max_ratio_pct(value, 750)):
                assert isinstance(pct, int)
                assert 0 <= pct <= 100


class TestRangeNormalizer:
    """Range signal with window and fixed-table bounds."""

    def test_window_bounds(self):
        """Daesan: window 150..750, diff 486 -> 56."""
        from core.normalizers import RangeNormalizer

        signal = RangeNormalizer().normalize("DT_0017", 486, make_window([150, 420, 610, 750]))

        assert signal.value == 56
        assert signal.bounds_source == BoundsSource.WINDOW

    def test_diff_at_window_max(self):
        from core.normalizers import RangeNormalizer

        signal = RangeNormalizer().normalize("DT_0017", 750, make_window([150, 420, 750]))
        assert signal.value == 100

    def test_thin_window_uses_fixed_table(self):
        """Two valid days are not a window: Daesan's fixed 150..750 applies."""
        from core.normalizers import RangeNormalizer

        signal = RangeNormalizer().normalize("DT_0017", 486, make_window([300, 700]))

        assert signal.value == 56
        assert signal.bounds_source == BoundsSource.FALLBACK
        assert (signal.bounds.min, signal.bounds.max) == (150, 750)

    def test_no_window_uses_fixed_table(self):
        from core.normalizers import RangeNormalizer

        signal = RangeNormalizer().normalize("DT_0017", 486)
        assert signal.value == 56
        assert signal.bounds_source == BoundsSource.FALLBACK

    def test_flat_window_uses_fixed_table(self):
        from core.normalizers import RangeNormalizer

        signal = RangeNormalizer().normalize("DT_0017", 486, make_window([400, 400, 400]))
        assert signal.bounds_source == BoundsSource.FALLBACK

    def test_station_without_min_uses_ratio_of_max(self):
        from core.normalizers import RangeNormalizer

        normalizer = RangeNormalizer(max_table={"DT_X": 900}, min_table={})
        bounds, source = normalizer.fallback_bounds("DT_X")

        assert (bounds.min, bounds.max) == (180, 900)
        assert source == BoundsSource.FALLBACK
        assert normalizer.normalize("DT_X", 540).value == 50

    def test_unknown_station_uses_generic_default(self):
        from core.normalizers import RangeNormalizer

        normalizer = RangeNormalizer(max_table={}, min_table={})
        signal = normalizer.normalize("DT_UNKNOWN", 180)

        assert signal.bounds_source == BoundsSource.DEFAULT
        assert (signal.bounds.min, signal.bounds.max) == (60, 300)
        assert signal.value == 50

    @pytest.mark.parametrize("diff", [None, 0, -12.5])
    def test_missing_or_non_positive_diff_is_absent(self, diff):
        from core.normalizers import RangeNormalizer

        signal = RangeNormalizer().normalize("DT_0017", diff, make_window([150, 420, 750]))
        assert not signal.present

    def test_max_ratio_strategy(self):
        from core.normalizers import RangeNormalizer

        normalizer = RangeNormalizer(strategy=NormalizationStrategy.RANGE_MAX_RATIO)
        assert normalizer.normalize("DT_0017", 375, make_window([150, 420, 750])).value == 50

    def test_rejects_current_strategy(self):
        from core.normalizers import RangeNormalizer

        with pytest.raises(ValueError):
            RangeNormalizer(strategy=NormalizationStrategy.CURRENT_MINMAX)


class TestCurrentSpeedNormalizer:
    """Current signal has no fixed table."""

    def test_min_max(self):
        from core.normalizers import CurrentSpeedNormalizer

        signal = CurrentSpeedNormalizer().normalize(100, make_window([10, 50, 110], "07DS02"))
        assert signal.value == 90

    def test_thin_window_is_absent(self):
        from core.normalizers import CurrentSpeedNormalizer

        assert not CurrentSpeedNormalizer().normalize(100, make_window([10, 110], "07DS02")).present
        assert not CurrentSpeedNormalizer().normalize(100, None).present
        assert not CurrentSpeedNormalizer().normalize(None, make_window([10, 50, 110])).present

    def test_flat_window_is_absent(self):
        from core.normalizers import CurrentSpeedNormalizer

        assert not CurrentSpeedNormalizer().normalize(50, make_window([50, 50, 50])).present

    def test_max_ratio_and_percentile(self):
        from core.normalizers import CurrentSpeedNormalizer

        window = make_window([10, 20, 30, 40], "07DS02")
        ratio = CurrentSpeedNormalizer(NormalizationStrategy.CURRENT_MAX_RATIO)
        rank = CurrentSpeedNormalizer(NormalizationStrategy.PERCENTILE_RANK)

        assert ratio.normalize(30, window).value == 75
        assert rank.normalize(30, window).value == 67
