"""
Dataset Module - Calibration signal rows

One SignalRow per (tide station, current station, date) holds everything the
normalizers need: today's diff and peak speed plus both window aggregates.
Rows are built once from the live windowed statistics and can be saved to
JSON so parameter searches rerun offline.
"""

import json
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from core.models import WindowStats
from core.window_stats import WindowSnapshot, WindowedCurrentStatistics, WindowedRangeStatistics

logger = logging.getLogger("calibration.dataset")


def date_range(start: date, end: date) -> List[date]:
    """Inclusive list of days from start to end."""
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]


def _window_to_dict(window: Optional[WindowStats]) -> Optional[Dict[str, Any]]:
    if window is None:
        return None
    return {
        "center": window.center.isoformat(),
        "start": window.start.isoformat(),
        "end": window.end.isoformat(),
        "values": list(window.values),
    }


def _window_from_dict(station: str, data: Optional[Dict[str, Any]]) -> Optional[WindowStats]:
    if not data:
        return None
    return WindowStats(
        station=station,
        center=date.fromisoformat(data["center"]),
        start=date.fromisoformat(data["start"]),
        end=date.fromisoformat(data["end"]),
        values=tuple(float(v) for v in data["values"]),
    )


@dataclass(frozen=True)
class SignalRow:
    """Raw signals for one calibration day."""
    station: str
    current_station: Optional[str]
    day: date
    diff: Optional[float]
    range_window: Optional[WindowStats]
    peak_speed: Optional[float]
    current_window: Optional[WindowStats]

    @property
    def key(self) -> str:
        return f"{self.station}/{self.current_station}" if self.current_station else self.station

    def to_dict(self) -> Dict[str, Any]:
        return {
            "station": self.station,
            "current_station": self.current_station,
            "date": self.day.isoformat(),
            "diff": self.diff,
            "range_window": _window_to_dict(self.range_window),
            "peak_speed": self.peak_speed,
            "current_window": _window_to_dict(self.current_window),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SignalRow":
        return cls(
            station=data["station"],
            current_station=data.get("current_station"),
            day=date.fromisoformat(data["date"]),
            diff=data.get("diff"),
            range_window=_window_from_dict(data["station"], data.get("range_window")),
            peak_speed=data.get("peak_speed"),
            current_window=_window_from_dict(data.get("current_station") or "", data.get("current_window")),
        )


def save_rows(rows: Iterable[SignalRow], path: str) -> Path:
    file_path = Path(path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    with open(file_path, "w", encoding="utf-8") as f:
        json.dump({"rows": [r.to_dict() for r in rows]}, f, indent=2)
    return file_path


def load_rows(path: str) -> List[SignalRow]:
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    return [SignalRow.from_dict(r) for r in data.get("rows", [])]


class SignalDatasetBuilder:
    """Builds SignalRows from the windowed statistics (network or cache)."""

    def __init__(
        self,
        range_stats: WindowedRangeStatistics,
        current_stats: WindowedCurrentStatistics,
    ):
        self.range_stats = range_stats
        self.current_stats = current_stats
        self._progress_callback: Optional[Callable[[int, int, str], None]] = None

    def set_progress_callback(self, callback: Callable[[int, int, str], None]):
        """Set callback for progress updates: callback(current, total, message)."""
        self._progress_callback = callback

    @staticmethod
    def _row(station: str, current_station: Optional[str], day: date,
             range_snap: WindowSnapshot, current_snap: Optional[WindowSnapshot]) -> SignalRow:
        return SignalRow(
            station=station,
            current_station=current_station,
            day=day,
            diff=range_snap.today,
            range_window=range_snap.stats,
            peak_speed=current_snap.today if current_snap else None,
            current_window=current_snap.stats if current_snap else None,
        )

    async def build(
        self,
        station: str,
        current_stations: Sequence[str],
        start: date,
        end: date,
    ) -> List[SignalRow]:
        """Rows for every day in [start, end] and every candidate current station."""
        days = date_range(start, end)
        rows: List[SignalRow] = []

        for i, day in enumerate(days):
            if self._progress_callback:
                self._progress_callback(i, len(days), f"{station} {day}")

            range_snap = await self.range_stats.snapshot(station, day)
            if not current_stations:
                rows.append(self._row(station, None, day, range_snap, None))
                continue
            for current_station in current_stations:
                current_snap = await self.current_stats.snapshot(current_station, day)
                rows.append(self._row(station, current_station, day, range_snap, current_snap))

        if self._progress_callback:
            self._progress_callback(len(days), len(days), f"{station} done")

        logger.info(f"Built {len(rows)} signal row(s) for {station} ({start} to {end})")
        return rows
