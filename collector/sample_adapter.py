"""
Sample Adapter - Upstream record normalization

The ocean API (and the proxies in front of it) return records whose field names
and timestamp encodings drift between endpoints and releases. Everything that
guesses at field names lives here; the rest of the engine only sees `Sample`.

Also derives the per-day signals:
- DailyRangeSample: highest high minus lowest low inside daylight hours
- DailyCurrentSample: peak current speed inside daylight hours
"""
from __future__ import annotations

import logging
import math
import re
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Sequence

from config import DAYLIGHT_START, DAYLIGHT_END
from core.errors import MalformedSampleError
from core.models import (
    DailyCurrentSample,
    DailyRangeSample,
    Sample,
    SampleKind,
)

logger = logging.getLogger("collector.sample_adapter")

TIME_KEYS = ("predcDt", "predcTm", "predcTime", "tm", "dateTime", "obsrvnDt")
TIDE_VALUE_KEYS = ("predcTdlvVl", "tdlvVl", "tideLevel", "level", "value")
TIDE_KIND_CODE_KEYS = ("extrSe",)
TIDE_KIND_TEXT_KEYS = ("hlCode", "type", "tideType")
SPEED_KEYS = ("crsp", "speed", "spd")
DIRECTION_KEYS = ("crdir", "direction", "dir")
DAY_KEYS = ("date", "reqDate", "day", "predcDt")
DAILY_MAX_KEYS = ("maxCrsp", "max", "crsp")

HIGH_LABELS = {"high", "h", "고조"}
LOW_LABELS = {"low", "l", "저조"}

# Tried in order; the first one producing a valid clock time wins.
_CLOCK_PATTERNS = (
    re.compile(r"(\d{2}):(\d{2})"),
    # YYYYMMDDHHMM[SS]
    re.compile(r"(?:^|\D)\d{8}(\d{2})(\d{2})(?:\d{2})?(?:\D|$)"),
    # standalone HHMM token
    re.compile(r"(?:^|\D)(\d{2})(\d{2})(?:\D|$)"),
    # trailing HHMM[SS] of a longer digit run
    re.compile(r"(\d{2})(\d{2})(?:\d{2})?$"),
    re.compile(r"^(\d{1,2}):(\d{2})$"),
)
_DATE_PATTERN = re.compile(r"^\s*(\d{4})[-./]?(\d{2})[-./]?(\d{2})")


# =============================================================================
# Field helpers
# =============================================================================

def _lookup(record: dict, keys: Sequence[str]) -> Any:
    """First non-empty value among `keys`, matched case-insensitively."""
    lowered = {str(k).lower(): v for k, v in record.items()}
    for key in keys:
        value = lowered.get(key.lower())
        if value is not None and value != "":
            return value
    return None


def _find_time_field(record: dict) -> Any:
    value = _lookup(record, TIME_KEYS)
    if value is not None:
        return value

    # Heuristic scan: prefer pred*/obs* time-like keys, then any time-like key
    time_like = [
        k for k in record
        if any(tok in str(k).lower() for tok in ("dt", "tm", "time"))
        and record[k] not in (None, "")
    ]
    for key in time_like:
        lk = str(key).lower()
        if "pred" in lk or "obs" in lk:
            return record[key]
    return record[time_like[0]] if time_like else None


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip())
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def normalize_clock_time(raw: Any) -> Optional[str]:
    """
    Normalize a timestamp token to "HH:MM".

    Handles "2025-11-03 09:30", "202511030930", "20251103093000", "0930" and "9:30".
    Returns None when nothing resembling a clock time is found.
    """
    if raw is None:
        return None
    text = str(raw).strip()
    if not text:
        return None

    for pattern in _CLOCK_PATTERNS:
        match = pattern.search(text)
        if not match:
            continue
        hour, minute = int(match.group(1)), int(match.group(2))
        if hour <= 23 and minute <= 59:
            return f"{hour:02d}:{minute:02d}"
    return None


def extract_date(raw: Any, fallback: Optional[date] = None) -> Optional[date]:
    """Read a YYYY-MM-DD / YYYY.MM.DD / YYYYMMDD prefix, else return `fallback`."""
    if raw is not None:
        match = _DATE_PATTERN.match(str(raw))
        if match:
            try:
                return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
            except ValueError:
                pass
    return fallback


def in_daylight(time_label: str, start: str = DAYLIGHT_START, end: str = DAYLIGHT_END) -> bool:
    return start <= time_label <= end


# =============================================================================
# Record adapters
# =============================================================================

def _tide_kind(record: dict) -> SampleKind:
    code = _to_float(_lookup(record, TIDE_KIND_CODE_KEYS))
    if code is not None:
        return SampleKind.HIGH if int(code) % 2 == 1 else SampleKind.LOW

    label = _lookup(record, TIDE_KIND_TEXT_KEYS)
    if label is not None:
        text = str(label).strip().lower()
        if text in HIGH_LABELS:
            return SampleKind.HIGH
        if text in LOW_LABELS:
            return SampleKind.LOW
    raise MalformedSampleError("no high/low marker", record)


def adapt_tide_record(record: dict, requested_day: Optional[date] = None) -> Sample:
    """Adapt one tide-extremum record. Raises MalformedSampleError."""
    if not isinstance(record, dict):
        raise MalformedSampleError(f"record is {type(record).__name__}, not a mapping")

    raw_time = _find_time_field(record)
    time_label = normalize_clock_time(raw_time)
    if time_label is None:
        raise MalformedSampleError(f"unparseable timestamp {raw_time!r}", record)

    day = extract_date(raw_time, requested_day)
    if day is None:
        raise MalformedSampleError(f"no date in {raw_time!r}", record)

    value = _to_float(_lookup(record, TIDE_VALUE_KEYS))
    if value is None:
        raise MalformedSampleError("non-numeric tide level", record)

    return Sample(day=day, time=time_label, kind=_tide_kind(record), value=value)


def adapt_current_record(record: dict, requested_day: Optional[date] = None) -> Sample:
    """Adapt one intraday current record. Raises MalformedSampleError."""
    if not isinstance(record, dict):
        raise MalformedSampleError(f"record is {type(record).__name__}, not a mapping")

    raw_time = _find_time_field(record)
    time_label = normalize_clock_time(raw_time)
    if time_label is None:
        raise MalformedSampleError(f"unparseable timestamp {raw_time!r}", record)

    day = extract_date(raw_time, requested_day)
    if day is None:
        raise MalformedSampleError(f"no date in {raw_time!r}", record)

    speed = _to_float(_lookup(record, SPEED_KEYS))
    if speed is None or speed < 0:
        raise MalformedSampleError(f"invalid current speed {speed!r}", record)

    direction = _lookup(record, DIRECTION_KEYS)
    return Sample(
        day=day,
        time=time_label,
        kind=SampleKind.SPEED,
        value=speed,
        direction=str(direction) if direction is not None else None,
    )


def adapt_daily_max_rows(rows: Iterable[Any]) -> Dict[date, float]:
    """Map pre-aggregated {date, maxCrsp} rows to {day: max speed}; undated rows are skipped."""
    daily: Dict[date, float] = {}
    for row in rows or []:
        if not isinstance(row, dict):
            continue
        day = extract_date(_lookup(row, DAY_KEYS))
        speed = _to_float(_lookup(row, DAILY_MAX_KEYS))
        if day is None or speed is None or speed < 0:
            continue
        daily[day] = speed
    return daily


def dedupe_samples(samples: Iterable[Sample]) -> List[Sample]:
    """Drop repeats of the same (date, time, value, direction) reading."""
    seen = set()
    unique = []
    for sample in samples:
        key = (sample.day, sample.time, sample.kind, f"{sample.value:.3f}", sample.direction or "")
        if key in seen:
            continue
        seen.add(key)
        unique.append(sample)
    return unique


def _adapt_all(records: Iterable[Any], adapter, requested_day: Optional[date]) -> List[Sample]:
    samples = []
    dropped = 0
    for record in records or []:
        try:
            samples.append(adapter(record, requested_day))
        except MalformedSampleError as e:
            dropped += 1
            logger.debug(f"Dropped record: {e}")
    if dropped:
        logger.debug(f"{dropped} malformed record(s) dropped for {requested_day}")
    return dedupe_samples(samples)


def adapt_tide_records(records: Iterable[Any], requested_day: Optional[date] = None) -> List[Sample]:
    """Adapt a batch of tide-extremum records; malformed ones are skipped."""
    return _adapt_all(records, adapt_tide_record, requested_day)


def adapt_current_records(records: Iterable[Any], requested_day: Optional[date] = None) -> List[Sample]:
    """Adapt a batch of current records; malformed ones are skipped."""
    return _adapt_all(records, adapt_current_record, requested_day)


# =============================================================================
# Daily derivations
# =============================================================================

def daily_range_sample(station: str, day: date, samples: Iterable[Sample]) -> Optional[DailyRangeSample]:
    """
    Tidal range for `day`: highest daylight high minus lowest daylight low.

    Returns None unless at least one high and one low fall inside the daylight
    window and the high sits above the low.
    """
    highs = []
    lows = []
    for s in samples:
        if s.day != day or not in_daylight(s.time):
            continue
        if s.kind == SampleKind.HIGH:
            highs.append(s.value)
        elif s.kind == SampleKind.LOW:
            lows.append(s.value)

    if not highs or not lows:
        return None

    high, low = max(highs), min(lows)
    if high <= low:
        return None

    return DailyRangeSample(
        station=station,
        day=day,
        high_value=high,
        low_value=low,
        diff=round(high - low, 1),
    )


def daylight_speeds(day: date, samples: Iterable[Sample]) -> List[Sample]:
    """Daylight speed readings for `day`, thinned to ten-minute cadence."""
    readings = [
        s for s in samples
        if s.kind == SampleKind.SPEED and s.day == day and in_daylight(s.time)
    ]
    ten_minute = [s for s in readings if s.minutes % 10 == 0]
    if ten_minute:
        return ten_minute
    # Minute-level series without round marks: keep every 10th reading
    return readings[::10]


def daily_current_sample(station: str, day: date, samples: Iterable[Sample]) -> Optional[DailyCurrentSample]:
    """Peak daylight current speed for `day`, or None with no readings."""
    readings = daylight_speeds(day, samples)
    if not readings:
        return None
    return DailyCurrentSample(
        station=station,
        day=day,
        peak_speed=max(s.value for s in readings),
        reading_count=len(readings),
    )
