"""
Windowed Range / Current Statistics

Rolling +/-15 day min/max/count of a daily signal for one station:
- tidal range (diff) per day for tide gauges
- peak current speed per day for current stations

Per-day values are cached by calendar month ("{station}:{yyyymm}"), so a
window only fetches the days no fresh month entry already covers. Days whose
fetch fails are left out of the window and out of the cache.

Concurrent requests for the same (station, center) share one computation;
`resolve_latest` additionally cancels an owner's older, still-running request
for the same station when that owner has moved on to a different date.
"""

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, List, Optional, Tuple

from config import WINDOW_HALF_WIDTH_DAYS, WINDOW_MIN_COUNT, CURRENT_SERIES_MAX_PAGES
from collector.pool import FetchPool
from collector.sample_adapter import (
    adapt_current_records,
    adapt_daily_max_rows,
    adapt_tide_records,
    daily_current_sample,
    daily_range_sample,
    daylight_speeds,
)
from .cache import TTLCache, cache_key
from .errors import InsufficientWindowError, RequestSupersededError, UpstreamFetchError
from .models import WindowStats

logger = logging.getLogger("core.window_stats")


def window_days(center: date, half_width: int = WINDOW_HALF_WIDTH_DAYS) -> List[date]:
    """All calendar days in [center - half_width, center + half_width]."""
    return [center + timedelta(days=offset) for offset in range(-half_width, half_width + 1)]


@dataclass(frozen=True)
class WindowSnapshot:
    """Daily values of one window plus its aggregate (None if too few days)."""
    station: str
    center: date
    daily: Dict[date, Optional[float]]
    stats: Optional[WindowStats]
    min_count: int = WINDOW_MIN_COUNT

    @property
    def today(self) -> Optional[float]:
        return self.daily.get(self.center)

    @property
    def valid_count(self) -> int:
        return sum(1 for v in self.daily.values() if v is not None)

    def require_stats(self) -> WindowStats:
        if self.stats is None:
            raise InsufficientWindowError(self.station, self.valid_count, self.min_count)
        return self.stats


class WindowedStatistics:
    """Base class: month-cached daily values and the window aggregate."""

    namespace = "window"

    def __init__(
        self,
        client,
        pool: FetchPool,
        cache: Optional[TTLCache] = None,
        half_width: int = WINDOW_HALF_WIDTH_DAYS,
        min_count: int = WINDOW_MIN_COUNT,
    ):
        self.client = client
        self.pool = pool
        self.cache = cache if cache is not None else TTLCache(self.namespace)
        self.half_width = half_width
        self.min_count = min_count
        self._inflight: Dict[Tuple[str, date], asyncio.Task] = {}
        self._latest: Dict[Tuple[str, str], Tuple[date, asyncio.Task]] = {}
        self._waiters: Dict[asyncio.Task, int] = {}

    # ------------------------------------------------------------------
    # Per-day resolution (subclass hooks)
    # ------------------------------------------------------------------

    async def fetch_day(self, station: str, day: date) -> Optional[float]:
        """Daily value for `day`, None when the day has no valid sample."""
        raise NotImplementedError

    async def prefetch(self, station: str, center: date, days: List[date]) -> Dict[date, Optional[float]]:
        """Bulk source consulted before per-day fetches."""
        return {}

    # ------------------------------------------------------------------
    # Month-cached daily values
    # ------------------------------------------------------------------

    async def daily_values(self, station: str, center: date) -> Dict[date, Optional[float]]:
        days = window_days(center, self.half_width)

        months: "OrderedDict[str, Dict[str, Optional[float]]]" = OrderedDict()
        known: Dict[date, Optional[float]] = {}
        for day in days:
            key = cache_key(station, day)
            if key not in months:
                payload = self.cache.get(key)
                months[key] = dict(payload.get("days", {})) if payload else {}
            iso = day.isoformat()
            if iso in months[key]:
                known[day] = months[key][iso]

        missing = [d for d in days if d not in known]
        if missing:
            fetched = await self._resolve_missing(station, center, missing)
            updates: Dict[str, Dict[str, Optional[float]]] = {}
            for day, value in fetched.items():
                known[day] = value
                updates.setdefault(cache_key(station, day), {})[day.isoformat()] = value
            for key, new_days in updates.items():
                self._merge_month(key, new_days)

        return {d: known[d] for d in days if d in known}

    def _merge_month(self, key: str, new_days: Dict[str, Optional[float]]):
        # Days already cached keep their original write time; if the entry went
        # stale meanwhile, only the newly fetched days are kept.
        entry = self.cache.peek(key)
        merged = dict(entry.payload.get("days", {})) if entry else {}
        merged.update(new_days)
        self.cache.set(key, {"days": merged}, created_at=entry.created_at if entry else None)

    async def _resolve_missing(self, station: str, center: date, missing: List[date]) -> Dict[date, Optional[float]]:
        resolved = {d: v for d, v in (await self.prefetch(station, center, missing)).items() if d in missing}
        remaining = [d for d in missing if d not in resolved]
        if not remaining:
            return resolved

        batch = await self.pool.run_all(remaining, lambda d: self.fetch_day(station, d))
        for day, error in batch.failures.items():
            if isinstance(error, UpstreamFetchError):
                logger.warning(f"{station} {day}: excluded from window ({error})")
                continue
            raise error
        resolved.update(batch.results)
        return resolved

    # ------------------------------------------------------------------
    # Window aggregate
    # ------------------------------------------------------------------

    async def _compute(self, station: str, center: date) -> WindowSnapshot:
        daily = await self.daily_values(station, center)
        values = tuple(v for _, v in sorted(daily.items()) if v is not None)
        days = window_days(center, self.half_width)

        stats = None
        if len(values) >= self.min_count:
            stats = WindowStats(
                station=station,
                center=center,
                start=days[0],
                end=days[-1],
                values=values,
            )
        else:
            logger.info(
                f"{station} {center}: {len(values)} valid day(s) in window, "
                f"{self.min_count} required"
            )
        return WindowSnapshot(station=station, center=center, daily=daily, stats=stats,
                              min_count=self.min_count)

    def _shared_task(self, station: str, center: date) -> asyncio.Task:
        key = (station, center)
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._compute(station, center))
            self._inflight[key] = task

            def _done(t, k=key):
                if self._inflight.get(k) is t:
                    del self._inflight[k]

            task.add_done_callback(_done)
        return task

    async def _await_shared(self, task: asyncio.Task) -> WindowSnapshot:
        self._waiters[task] = self._waiters.get(task, 0) + 1
        try:
            return await asyncio.shield(task)
        finally:
            self._waiters[task] -= 1
            if not self._waiters[task]:
                del self._waiters[task]

    async def snapshot(self, station: str, center: date) -> WindowSnapshot:
        """Daily values and aggregate; concurrent callers share one computation."""
        return await self._await_shared(self._shared_task(station, center))

    async def window(self, station: str, center: date) -> WindowStats:
        """
        {min, max, count} over the window.

        Raises:
            InsufficientWindowError: fewer than `min_count` valid days.
        """
        snap = await self.snapshot(station, center)
        return snap.require_stats()

    async def resolve_latest(self, station: str, center: date, owner: str) -> WindowSnapshot:
        """
        Like snapshot(), but supersedes `owner`'s previous pending request for
        this station when it was for a different center.

        The superseded computation is cancelled only while nobody else waits
        on it; other owners and plain snapshot() callers always get a result.

        Raises:
            RequestSupersededError: a newer request from the same owner won.
        """
        slot = (owner, station)
        previous = self._latest.get(slot)
        if previous is not None:
            prev_center, prev_task = previous
            if prev_center != center and not prev_task.done():
                if self._waiters.get(prev_task, 0) <= 1:
                    logger.info(f"{station}: {owner} request for {prev_center} superseded by {center}")
                    prev_task.cancel()
                else:
                    logger.debug(f"{station}: {prev_center} still awaited by other callers")

        task = self._shared_task(station, center)
        self._latest[slot] = (center, task)
        try:
            return await self._await_shared(task)
        except asyncio.CancelledError:
            if task.cancelled():
                raise RequestSupersededError(station, center, owner) from None
            raise
        finally:
            if self._latest.get(slot, (None, None))[1] is task and task.done():
                del self._latest[slot]


class WindowedRangeStatistics(WindowedStatistics):
    """Daily tidal range (cm) for tide gauges."""

    namespace = "tide-range"

    async def fetch_day(self, station: str, day: date) -> Optional[float]:
        records = await self.client.fetch_tide_extrema(station, day)
        sample = daily_range_sample(station, day, adapt_tide_records(records, day))
        return sample.diff if sample else None


class WindowedCurrentStatistics(WindowedStatistics):
    """Daily peak current speed for current stations."""

    namespace = "current-peak"

    def __init__(self, *args, max_pages: int = CURRENT_SERIES_MAX_PAGES, **kwargs):
        super().__init__(*args, **kwargs)
        self.max_pages = max_pages

    async def fetch_day(self, station: str, day: date) -> Optional[float]:
        records = await self.client.fetch_current_series(station, day, 1)
        samples = adapt_current_records(records, day)

        if not daylight_speeds(day, samples) and self.max_pages > 1:
            # Some stations page the series; daylight readings can start on page 2+
            extra = await self.client.fetch_current_pages(station, day, list(range(2, self.max_pages + 1)))
            samples = adapt_current_records(list(records) + list(extra), day)

        sample = daily_current_sample(station, day, samples)
        return sample.peak_speed if sample else None

    async def prefetch(self, station: str, center: date, days: List[date]) -> Dict[date, Optional[float]]:
        if not getattr(self.client, "supports_current_window", False):
            return {}
        try:
            rows = await self.client.fetch_current_window(station, center)
        except UpstreamFetchError as e:
            logger.warning(f"{station} {center}: window endpoint failed, fetching per day ({e})")
            return {}
        wanted = set(days)
        return {d: v for d, v in adapt_daily_max_rows(rows).items() if d in wanted}
