"""
Range and Current-Speed Normalizers

Map a raw daily signal onto an integer 0-100 percentage. Each scaling rule is
a `Scaler(value, window) -> Optional[int]`; normalizers pick one by strategy.

Range signals always produce a value when diff > 0: dynamic window bounds
first, then the station's fixed bounds, then the generic default pair.
Current signals have no fixed table and are absent without a usable window.
"""

import logging
from typing import Callable, Dict, Mapping, Optional, Sequence, Tuple

from config import (
    FALLBACK_MIN_RATIO,
    GENERIC_MAX_RANGE_CM,
    MAX_TIDAL_RANGE_CM,
    MIN_TIDAL_RANGE_CM,
    WINDOW_MIN_COUNT,
)
from .models import (
    BoundsSource,
    NormalizationStrategy,
    NormalizedSignal,
    RangeBounds,
    SignalSource,
    WindowStats,
    clamp,
    to_percent,
)

logger = logging.getLogger("core.normalizers")

Scaler = Callable[[float, WindowStats], Optional[int]]


# =============================================================================
# Scalers
# =============================================================================

def min_max_pct(value: float, lo: float, hi: float) -> Optional[int]:
    """(value - lo) / (hi - lo) as a clamped integer percentage."""
    if hi <= lo:
        return None
    return to_percent(clamp((value - lo) / (hi - lo) * 100.0, 0.0, 100.0))


def max_ratio_pct(value: float, hi: float) -> Optional[int]:
    """value / hi as a clamped integer percentage."""
    if hi <= 0:
        return None
    return to_percent(clamp(value / hi * 100.0, 0.0, 100.0))


def percentile_rank_pct(value: float, values: Sequence[float]) -> Optional[int]:
    """Share of `values` strictly below `value`, over n - 1."""
    if not values:
        return None
    below = sum(1 for v in values if v < value)
    return to_percent(below / max(1, len(values) - 1) * 100.0)


def scale_min_max(value: float, window: WindowStats) -> Optional[int]:
    return min_max_pct(value, window.min, window.max)


def scale_max_ratio(value: float, window: WindowStats) -> Optional[int]:
    return max_ratio_pct(value, window.max)


def scale_percentile(value: float, window: WindowStats) -> Optional[int]:
    return percentile_rank_pct(value, window.values)


# Strategy -> (signal it reads, scaler). BLENDED is composed by the blender.
STRATEGY_SCALERS: Dict[NormalizationStrategy, Tuple[SignalSource, Scaler]] = {
    NormalizationStrategy.RANGE_MINMAX: (SignalSource.RANGE, scale_min_max),
    NormalizationStrategy.RANGE_MAX_RATIO: (SignalSource.RANGE, scale_max_ratio),
    NormalizationStrategy.CURRENT_MINMAX: (SignalSource.CURRENT, scale_min_max),
    NormalizationStrategy.CURRENT_MAX_RATIO: (SignalSource.CURRENT, scale_max_ratio),
    NormalizationStrategy.PERCENTILE_RANK: (SignalSource.CURRENT, scale_percentile),
}


def signal_source(strategy: NormalizationStrategy) -> SignalSource:
    if strategy not in STRATEGY_SCALERS:
        raise ValueError(f"{strategy.value} is not a single-signal strategy")
    return STRATEGY_SCALERS[strategy][0]


# =============================================================================
# Range Normalizer
# =============================================================================

class RangeNormalizer:
    """
    Normalizes today's tidal range (diff) for a tide gauge.

    Args:
        max_table: station -> fixed max range
        min_table: station -> fixed min range (missing -> 20% of max)
        default_max: max used for stations missing from `max_table`
        min_count: fewer valid window days than this -> fixed bounds
        strategy: RANGE_MINMAX (production) or RANGE_MAX_RATIO
    """

    def __init__(
        self,
        max_table: Optional[Mapping[str, float]] = None,
        min_table: Optional[Mapping[str, float]] = None,
        default_max: float = GENERIC_MAX_RANGE_CM,
        min_ratio: float = FALLBACK_MIN_RATIO,
        min_count: int = WINDOW_MIN_COUNT,
        strategy: NormalizationStrategy = NormalizationStrategy.RANGE_MINMAX,
    ):
        if signal_source(strategy) != SignalSource.RANGE:
            raise ValueError(f"{strategy.value} does not normalize the range signal")
        self.max_table = dict(MAX_TIDAL_RANGE_CM if max_table is None else max_table)
        self.min_table = dict(MIN_TIDAL_RANGE_CM if min_table is None else min_table)
        self.default_max = default_max
        self.min_ratio = min_ratio
        self.min_count = min_count
        self.strategy = strategy

    def fallback_bounds(self, station: str) -> Tuple[RangeBounds, BoundsSource]:
        if station in self.max_table:
            hi = float(self.max_table[station])
            source = BoundsSource.FALLBACK
        else:
            hi = float(self.default_max)
            source = BoundsSource.DEFAULT
        lo = self.min_table.get(station)
        if lo is None:
            lo = round(hi * self.min_ratio)
        return RangeBounds(min=float(lo), max=hi), source

    def bounds(self, station: str, window: Optional[WindowStats]) -> Tuple[RangeBounds, BoundsSource]:
        if window is not None and window.count >= self.min_count and window.max > window.min:
            return RangeBounds(min=window.min, max=window.max), BoundsSource.WINDOW
        return self.fallback_bounds(station)

    def normalize(self, station: str, diff: Optional[float],
                  window: Optional[WindowStats] = None) -> NormalizedSignal:
        if diff is None or diff <= 0:
            return NormalizedSignal.absent(SignalSource.RANGE, self.strategy)

        bounds, source = self.bounds(station, window)
        if self.strategy == NormalizationStrategy.RANGE_MAX_RATIO:
            value = max_ratio_pct(diff, bounds.max)
        else:
            value = min_max_pct(diff, bounds.min, bounds.max)

        if value is None:
            return NormalizedSignal.absent(SignalSource.RANGE, self.strategy)
        if source != BoundsSource.WINDOW:
            logger.debug(f"{station}: range normalized with {source.value} bounds {bounds}")
        return NormalizedSignal(
            value=value,
            source=SignalSource.RANGE,
            strategy=self.strategy,
            bounds_source=source,
            bounds=bounds,
        )


# =============================================================================
# Current-Speed Normalizer
# =============================================================================

class CurrentSpeedNormalizer:
    """Normalizes today's peak current speed against its window."""

    def __init__(
        self,
        strategy: NormalizationStrategy = NormalizationStrategy.CURRENT_MINMAX,
        min_count: int = 3,
    ):
        if signal_source(strategy) != SignalSource.CURRENT:
            raise ValueError(f"{strategy.value} does not normalize the current signal")
        self.strategy = strategy
        self.scaler = STRATEGY_SCALERS[strategy][1]
        self.min_count = min_count

    def normalize(self, peak_speed: Optional[float],
                  window: Optional[WindowStats] = None) -> NormalizedSignal:
        if peak_speed is None or window is None or window.count < self.min_count:
            return NormalizedSignal.absent(SignalSource.CURRENT, self.strategy)

        value = self.scaler(peak_speed, window)
        if value is None:
            return NormalizedSignal.absent(SignalSource.CURRENT, self.strategy)
        return NormalizedSignal(
            value=value,
            source=SignalSource.CURRENT,
            strategy=self.strategy,
            bounds_source=BoundsSource.WINDOW,
            bounds=RangeBounds(min=window.min, max=window.max),
        )
