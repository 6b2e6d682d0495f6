"""
Error taxonomy for the tide-flow engine.

Only UpstreamFetchError normally escapes the collector layer; the others are
raised and absorbed inside the pipeline at the layer that owns the fallback.
"""

from typing import Optional


class TideflowError(Exception):
    """Base class for all engine errors."""


class UpstreamFetchError(TideflowError):
    """A remote fetch failed after exhausting its retry budget."""

    def __init__(self, message: str, url: Optional[str] = None,
                 status_code: Optional[int] = None, attempts: int = 0):
        super().__init__(message)
        self.url = url
        self.status_code = status_code
        self.attempts = attempts


class MalformedSampleError(TideflowError):
    """A single upstream record could not be adapted (bad time or value)."""

    def __init__(self, message: str, record: Optional[dict] = None):
        super().__init__(message)
        self.record = record


class InsufficientWindowError(TideflowError):
    """Fewer than the minimum number of valid days inside a window."""

    def __init__(self, station: str, count: int, required: int):
        super().__init__(
            f"{station}: window has {count} valid day(s), {required} required"
        )
        self.station = station
        self.count = count
        self.required = required


class ReferenceGapError(TideflowError):
    """No reference percentage exists for a (station, date) pair."""

    def __init__(self, station: str, day):
        super().__init__(f"No reference value for {station} on {day}")
        self.station = station
        self.day = day


class RequestSupersededError(TideflowError):
    """The same owner asked for another date before this request finished."""

    def __init__(self, station: str, center, owner: str):
        super().__init__(f"{station} {center}: superseded by a newer request from {owner}")
        self.station = station
        self.center = center
        self.owner = owner
