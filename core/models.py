"""
Tideflow - Core Data Model

Dataclasses shared by the collector, the windowed statistics, the normalizers,
the blender and the calibration harness.
"""

import math
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Optional, Tuple, Dict, Any


# ============================================================================
# NUMERIC HELPERS
# ============================================================================

def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def round_half_up(value: float) -> int:
    """Round .5 away from zero on the positive side (62.5 -> 63, -0.5 -> 0)."""
    return int(math.floor(value + 0.5))


def to_percent(value: float) -> int:
    """Clamp to [0, 100] and round half-up to an integer percentage."""
    return int(clamp(round_half_up(value), 0, 100))


# ============================================================================
# BOUNDS & SAMPLES
# ============================================================================

@dataclass(frozen=True)
class RangeBounds:
    """Fixed {min, max} pair used when dynamic windowing is unavailable."""
    min: float
    max: float

    @property
    def span(self) -> float:
        return self.max - self.min


class SampleKind(str, Enum):
    HIGH = "high"
    LOW = "low"
    SPEED = "speed"


@dataclass(frozen=True)
class Sample:
    """Canonical upstream reading after field-name and timestamp cleanup."""
    day: date
    time: str  # "HH:MM"
    kind: SampleKind
    value: float
    direction: Optional[str] = None

    @property
    def minutes(self) -> int:
        hh, mm = self.time.split(":")
        return int(hh) * 60 + int(mm)


@dataclass(frozen=True)
class DailyRangeSample:
    station: str
    day: date
    high_value: float
    low_value: float
    diff: float


@dataclass(frozen=True)
class DailyCurrentSample:
    station: str
    day: date
    peak_speed: float
    reading_count: int


@dataclass(frozen=True)
class WindowStats:
    """Aggregate of valid daily values across a centred calendar window."""
    station: str
    center: date
    start: date
    end: date
    values: Tuple[float, ...]

    @property
    def count(self) -> int:
        return len(self.values)

    @property
    def min(self) -> float:
        return min(self.values)

    @property
    def max(self) -> float:
        return max(self.values)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "station": self.station,
            "center": self.center.isoformat(),
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "min": self.min if self.values else None,
            "max": self.max if self.values else None,
            "count": self.count,
        }


# ============================================================================
# NORMALIZATION
# ============================================================================

class SignalSource(str, Enum):
    RANGE = "range"
    CURRENT = "current"


class BoundsSource(str, Enum):
    WINDOW = "window"
    FALLBACK = "fallback"
    DEFAULT = "default"
    NONE = "none"


class NormalizationStrategy(str, Enum):
    """Every prediction strategy the harness can score."""
    RANGE_MINMAX = "range_minmax"
    RANGE_MAX_RATIO = "range_max_ratio"
    CURRENT_MINMAX = "current_minmax"
    CURRENT_MAX_RATIO = "current_max_ratio"
    PERCENTILE_RANK = "percentile_rank"
    BLENDED = "blended"


@dataclass(frozen=True)
class NormalizedSignal:
    value: Optional[int]
    source: SignalSource
    strategy: NormalizationStrategy
    bounds_source: BoundsSource = BoundsSource.NONE
    bounds: Optional[RangeBounds] = None

    @property
    def present(self) -> bool:
        return self.value is not None

    @classmethod
    def absent(cls, source: SignalSource,
               strategy: NormalizationStrategy) -> "NormalizedSignal":
        return cls(value=None, source=source, strategy=strategy)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.value,
            "source": self.source.value,
            "strategy": self.strategy.value,
            "bounds_source": self.bounds_source.value,
            "bounds": (
                {"min": self.bounds.min, "max": self.bounds.max}
                if self.bounds else None
            ),
        }


# ============================================================================
# BLENDING
# ============================================================================

class BlendOrientation(str, Enum):
    RANGE_PRIMARY = "range_primary"
    CURRENT_PRIMARY = "current_primary"


@dataclass(frozen=True)
class DeltaClamp:
    min: float
    max: float

    def __post_init__(self):
        if self.min > 0 or self.max < 0:
            raise ValueError(
                f"delta clamp must straddle zero (got min={self.min}, max={self.max})"
            )

    def apply(self, delta: float) -> float:
        return clamp(delta, self.min, self.max)


@dataclass(frozen=True)
class BlendParameters:
    """Immutable weights and correction bounds for one run."""
    range_weight: float
    current_weight: float
    delta_clamp: DeltaClamp = field(default_factory=lambda: DeltaClamp(-10, 14))
    orientation: BlendOrientation = BlendOrientation.RANGE_PRIMARY

    def __post_init__(self):
        if self.range_weight < 0 or self.current_weight < 0:
            raise ValueError("blend weights must be non-negative")
        if abs(self.range_weight + self.current_weight - 1.0) > 1e-6:
            raise ValueError(
                f"blend weights must sum to 1 "
                f"(got {self.range_weight} + {self.current_weight})"
            )

    @classmethod
    def from_current_weight(
        cls,
        current_weight: float,
        delta_min: float = -10,
        delta_max: float = 14,
        orientation: BlendOrientation = BlendOrientation.RANGE_PRIMARY,
    ) -> "BlendParameters":
        current_weight = round(current_weight, 6)
        return cls(
            range_weight=round(1.0 - current_weight, 6),
            current_weight=current_weight,
            delta_clamp=DeltaClamp(delta_min, delta_max),
            orientation=orientation,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "weights": {"range": self.range_weight, "current": self.current_weight},
            "delta_clamp": {"min": self.delta_clamp.min, "max": self.delta_clamp.max},
            "orientation": self.orientation.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BlendParameters":
        weights = data.get("weights", {})
        clamp_cfg = data.get("delta_clamp", {})
        return cls(
            range_weight=float(weights["range"]),
            current_weight=float(weights["current"]),
            delta_clamp=DeltaClamp(float(clamp_cfg.get("min", -10)),
                                   float(clamp_cfg.get("max", 14))),
            orientation=BlendOrientation(
                data.get("orientation", BlendOrientation.RANGE_PRIMARY.value)
            ),
        )


# ============================================================================
# RESULTS
# ============================================================================

@dataclass(frozen=True)
class CalibrationRecord:
    station: str
    day: date
    reference_percent: float
    predicted_percent: float

    @property
    def abs_error(self) -> float:
        return abs(self.predicted_percent - self.reference_percent)


@dataclass
class StrengthResult:
    """Tide-flow index for one (tide station, current station, date)."""
    tide_station: str
    current_station: Optional[str]
    day: date
    percent: Optional[int]
    mode: str  # "blended" | "range" | "current" | "none"
    range_signal: NormalizedSignal
    current_signal: NormalizedSignal
    diff: Optional[float] = None
    peak_speed: Optional[float] = None
    parameters: Optional[BlendParameters] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tide_station": self.tide_station,
            "current_station": self.current_station,
            "date": self.day.isoformat(),
            "percent": self.percent,
            "mode": self.mode,
            "range": self.range_signal.to_dict(),
            "current": self.current_signal.to_dict(),
            "diff": self.diff,
            "peak_speed": self.peak_speed,
            "parameters": self.parameters.to_dict() if self.parameters else None,
        }
