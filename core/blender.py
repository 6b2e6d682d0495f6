"""
Blender - Corrected tide-flow model

One signal is the baseline; the weighted blend of both may move it by at most
the configured delta clamp. With the default range-primary orientation:

    blended = rangePct * rangeWeight + currentPct * currentWeight
    delta   = clamp(blended - rangePct, clamp.min, clamp.max)
    result  = clamp(round(rangePct + delta), 0, 100)

Current-primary swaps the baseline role; weights keep their meaning.
Pure functions only, no I/O.
"""

import math
from typing import Optional, Tuple

from config import (
    DEFAULT_CURRENT_WEIGHT,
    DEFAULT_DELTA_MAX,
    DEFAULT_DELTA_MIN,
    DEFAULT_RANGE_WEIGHT,
    PREVIOUS_CURRENT_WEIGHT,
    PREVIOUS_RANGE_WEIGHT,
)
from .models import BlendOrientation, BlendParameters, DeltaClamp, clamp, round_half_up, to_percent

DEFAULT_PARAMETERS = BlendParameters(
    range_weight=DEFAULT_RANGE_WEIGHT,
    current_weight=DEFAULT_CURRENT_WEIGHT,
    delta_clamp=DeltaClamp(DEFAULT_DELTA_MIN, DEFAULT_DELTA_MAX),
)

PREVIOUS_PARAMETERS = BlendParameters(
    range_weight=PREVIOUS_RANGE_WEIGHT,
    current_weight=PREVIOUS_CURRENT_WEIGHT,
    delta_clamp=DeltaClamp(DEFAULT_DELTA_MIN, DEFAULT_DELTA_MAX),
)


def blend(
    range_pct: Optional[float],
    current_pct: Optional[float],
    params: BlendParameters = DEFAULT_PARAMETERS,
) -> Optional[int]:
    """Corrected percentage, or None when neither signal is present."""
    if range_pct is None and current_pct is None:
        return None
    if current_pct is None:
        return to_percent(range_pct)
    if range_pct is None:
        return to_percent(current_pct)

    blended = range_pct * params.range_weight + current_pct * params.current_weight
    baseline = range_pct if params.orientation == BlendOrientation.RANGE_PRIMARY else current_pct
    delta = params.delta_clamp.apply(blended - baseline)
    # Rounding must not carry a fractional baseline past the clamp
    lo = math.ceil(baseline + params.delta_clamp.min)
    hi = math.floor(baseline + params.delta_clamp.max)
    return to_percent(clamp(round_half_up(baseline + delta), lo, hi))


def blend_with_mode(
    range_pct: Optional[float],
    current_pct: Optional[float],
    params: BlendParameters = DEFAULT_PARAMETERS,
) -> Tuple[Optional[int], str]:
    """blend() plus which inputs it used: blended, range, current or none."""
    if range_pct is not None and current_pct is not None:
        mode = "blended"
    elif range_pct is not None:
        mode = "range"
    elif current_pct is not None:
        mode = "current"
    else:
        mode = "none"
    return blend(range_pct, current_pct, params), mode
