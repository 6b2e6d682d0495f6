# Load environment variables FIRST (before any other imports)
from __future__ import annotations

from dotenv import load_dotenv
load_dotenv()

import logging
import re
from datetime import date, datetime
from typing import List, Optional
from zoneinfo import ZoneInfo

from fastapi import FastAPI
from pydantic import BaseModel

# Silence verbose loggers
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
logger = logging.getLogger("web_server")

from config import CURRENT_STATIONS, TIDE_STATIONS, get_active_stations
from core.errors import RequestSupersededError
from core.normalizers import RangeNormalizer
from core.strength import StrengthEngine

KST = ZoneInfo("Asia/Seoul")

app = FastAPI(title="Tideflow", description="Tide-flow strength index API")

_ENGINE: Optional[StrengthEngine] = None


def get_engine() -> StrengthEngine:
    global _ENGINE
    if _ENGINE is None:
        _ENGINE = StrengthEngine.create()
    return _ENGINE


def _parse_day(raw: Optional[str]) -> Optional[date]:
    """YYYYMMDD or YYYY-MM-DD; None means today (KST)."""
    if not raw:
        return datetime.now(KST).date()
    match = re.fullmatch(r"(\d{4})-?(\d{2})-?(\d{2})", raw.strip())
    if not match:
        return None
    try:
        return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        return None


class StationInfo(BaseModel):
    id: str
    name: str
    default_current_station: Optional[str] = None
    fallback_min_cm: float
    fallback_max_cm: float


@app.get("/api/health")
def health():
    engine = _ENGINE
    return {
        "status": "ok",
        "caches": [
            engine.range_stats.cache.stats(),
            engine.current_stats.cache.stats(),
        ] if engine else [],
    }


@app.get("/api/stations", response_model=List[StationInfo])
def get_stations():
    """Return list of active tide stations."""
    normalizer = RangeNormalizer()
    stations = []
    for sid, stn in get_active_stations().items():
        bounds, _ = normalizer.fallback_bounds(sid)
        stations.append(StationInfo(
            id=sid,
            name=stn.name,
            default_current_station=stn.default_current_station,
            fallback_min_cm=bounds.min,
            fallback_max_cm=bounds.max,
        ))
    return stations


@app.get("/api/strength/{station_id}")
async def get_strength(
    station_id: str,
    date: Optional[str] = None,
    current: Optional[str] = None,
    session: Optional[str] = None,
):
    """
    Tide-flow index for a tide station.

    Args:
        station_id: Tide station (e.g., DT_0017)
        date: YYYYMMDD or YYYY-MM-DD (default: today, KST)
        current: Current station override (e.g., 07DS02)
        session: Client session id; a newer date from the same session cancels
            that session's pending request. Other sessions are never affected.
    """
    if station_id not in TIDE_STATIONS:
        return {"error": "Invalid station"}
    if current is not None and current not in CURRENT_STATIONS:
        return {"error": "Invalid current station"}

    day = _parse_day(date)
    if day is None:
        return {"error": "Invalid date", "date": date}

    try:
        result = await get_engine().compute(station_id, day, current_station=current, owner=session)
    except RequestSupersededError as e:
        logger.info(str(e))
        return {"error": "Superseded", "date": day.isoformat()}
    return result.to_dict()


@app.on_event("shutdown")
async def shutdown_event():
    global _ENGINE
    if _ENGINE is not None:
        await _ENGINE.aclose()
        _ENGINE = None


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
        datefmt="%H:%M:%S"
    )
    uvicorn.run(app, host="0.0.0.0", port=8000)
