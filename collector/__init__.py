"""
Tideflow - Collector Module
Upstream access for tide extrema and tidal current series.
"""

from .http import fetch_json
from .pool import FetchBatch, FetchPool
from .sample_adapter import (
    adapt_current_records,
    adapt_tide_records,
    daily_current_sample,
    daily_range_sample,
    normalize_clock_time,
)
from .tide_api import TideApiClient, parse_api_items

__all__ = [
    "fetch_json",
    "FetchBatch", "FetchPool",
    "adapt_current_records", "adapt_tide_records",
    "daily_current_sample", "daily_range_sample",
    "normalize_clock_time",
    "TideApiClient", "parse_api_items",
]
