"""
Metrics Module - Prediction error metrics

Point metrics used to score tide-flow predictions against the reference
percentages. Inputs are (predicted, actual) pairs; pairs where either side is
missing never reach these functions.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

logger = logging.getLogger("calibration.metrics")


# =============================================================================
# Basic metric functions
# =============================================================================

def mae(predictions: List[Tuple[float, float]]) -> Optional[float]:
    """
    Mean Absolute Error.

    Args:
        predictions: List of (predicted, actual) tuples

    Returns:
        MAE, or None with no pairs (an empty set must never win a search)
    """
    if not predictions:
        return None

    return sum(abs(p - a) for p, a in predictions) / len(predictions)


def max_abs_error(predictions: List[Tuple[float, float]]) -> Optional[float]:
    """Largest |predicted - actual|."""
    if not predictions:
        return None

    return max(abs(p - a) for p, a in predictions)


def rmse(predictions: List[Tuple[float, float]]) -> Optional[float]:
    """Root Mean Squared Error."""
    if not predictions:
        return None

    mse = sum((p - a) ** 2 for p, a in predictions) / len(predictions)
    return math.sqrt(mse)


def bias(predictions: List[Tuple[float, float]]) -> Optional[float]:
    """
    Mean bias (systematic over/under prediction).

    Positive = over-predicting, Negative = under-predicting
    """
    if not predictions:
        return None

    return sum(p - a for p, a in predictions) / len(predictions)


# =============================================================================
# Aggregates
# =============================================================================

@dataclass(frozen=True)
class ErrorSummary:
    """MAE / max error / bias over one set of pairs."""
    n: int
    mae: Optional[float]
    max_error: Optional[float]
    rmse: Optional[float]
    bias: Optional[float]

    @classmethod
    def from_pairs(cls, pairs: List[Tuple[float, float]]) -> "ErrorSummary":
        return cls(
            n=len(pairs),
            mae=mae(pairs),
            max_error=max_abs_error(pairs),
            rmse=rmse(pairs),
            bias=bias(pairs),
        )

    def to_dict(self) -> Dict[str, Any]:
        def r(x):
            return round(x, 4) if x is not None else None

        return {
            "n": self.n,
            "mae": r(self.mae),
            "max_error": r(self.max_error),
            "rmse": r(self.rmse),
            "bias": r(self.bias),
        }


def mae_sort_key(value: Optional[float]) -> float:
    """Sort key putting missing MAE values last."""
    return value if value is not None else float("inf")
