"""
Reference Module - Ground-truth tide-flow percentages

The reference collector publishes, per station, a daily flow percentage and
optionally the traditional tide-phase label for that day. Accepted files:
- JSON {"rows": [{"date": "2025-11-03", "flow_pct": 73, "tide": "..."}]}
- JSON {"2025-11-03": 73, ...}
- CSV with date,flow_pct[,tide] columns
"""

import csv
import json
import logging
import math
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from core.errors import ReferenceGapError

logger = logging.getLogger("calibration.reference")


@dataclass(frozen=True)
class ReferencePoint:
    """Reference percentage for one station-day."""
    station: str
    day: date
    percent: float
    phase_label: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.day.isoformat(),
            "flow_pct": self.percent,
            "tide": self.phase_label,
        }

    @classmethod
    def from_dict(cls, station: str, data: Dict[str, Any]) -> Optional["ReferencePoint"]:
        """Build from a row; None if the row has no usable date or percentage."""
        raw_day = data.get("date")
        raw_pct = data.get("flow_pct", data.get("percent"))
        try:
            day = date.fromisoformat(str(raw_day)[:10])
            pct = float(raw_pct)
        except (TypeError, ValueError):
            return None
        if not math.isfinite(pct):
            return None
        label = data.get("tide") or data.get("phase")
        return cls(station=station, day=day, percent=pct, phase_label=str(label) if label else None)


class ReferenceDataset:
    """In-memory {station, date} -> reference percentage map."""

    def __init__(self, points: Optional[List[ReferencePoint]] = None):
        self._points: Dict[Tuple[str, date], ReferencePoint] = {}
        for point in points or []:
            self.add(point)

    def __len__(self) -> int:
        return len(self._points)

    def __iter__(self) -> Iterator[ReferencePoint]:
        return iter(sorted(self._points.values(), key=lambda p: (p.station, p.day)))

    def add(self, point: ReferencePoint):
        self._points[(point.station, point.day)] = point

    def get(self, station: str, day: date) -> ReferencePoint:
        """
        Raises:
            ReferenceGapError: no reference value for this station-day.
        """
        point = self._points.get((station, day))
        if point is None:
            raise ReferenceGapError(station, day)
        return point

    def percent(self, station: str, day: date) -> float:
        return self.get(station, day).percent

    def stations(self) -> List[str]:
        return sorted({s for s, _ in self._points})

    def series(self, station: str) -> List[ReferencePoint]:
        """Date-ordered points for one station."""
        return sorted((p for (s, _), p in self._points.items() if s == station), key=lambda p: p.day)

    def merge(self, other: "ReferenceDataset") -> "ReferenceDataset":
        merged = ReferenceDataset(list(self))
        for point in other:
            merged.add(point)
        return merged

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    @classmethod
    def from_json_data(cls, station: str, data: Any) -> "ReferenceDataset":
        rows: List[Dict[str, Any]]
        if isinstance(data, dict) and isinstance(data.get("rows"), list):
            rows = [r for r in data["rows"] if isinstance(r, dict)]
        elif isinstance(data, dict):
            rows = [{"date": k, "flow_pct": v} for k, v in data.items()]
        elif isinstance(data, list):
            rows = [r for r in data if isinstance(r, dict)]
        else:
            raise ValueError(f"Unrecognized reference payload for {station}")

        points = []
        skipped = 0
        for row in rows:
            point = ReferencePoint.from_dict(station, row)
            if point is None:
                skipped += 1
                continue
            points.append(point)
        if skipped:
            logger.debug(f"{station}: skipped {skipped} unusable reference row(s)")
        return cls(points)

    @classmethod
    def load(cls, station: str, path: str) -> "ReferenceDataset":
        """Load a JSON or CSV reference file for `station`."""
        file_path = Path(path)
        if file_path.suffix.lower() == ".csv":
            with open(file_path, newline="", encoding="utf-8") as f:
                rows = list(csv.DictReader(f))
            dataset = cls.from_json_data(station, rows)
        else:
            with open(file_path, encoding="utf-8") as f:
                dataset = cls.from_json_data(station, json.load(f))
        logger.info(f"Loaded {len(dataset)} reference day(s) for {station} from {file_path}")
        return dataset

    def save(self, path: str, station: str):
        """Write one station's points in the {"rows": [...]} layout."""
        file_path = Path(path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        with open(file_path, "w", encoding="utf-8") as f:
            json.dump({"rows": [p.to_dict() for p in self.series(station)]}, f, ensure_ascii=False, indent=2)
