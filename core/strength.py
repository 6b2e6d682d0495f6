"""
Strength Engine - production tide-flow index

For one (tide station, current station, date):
    range window + current window (concurrently)
      -> RangeNormalizer / CurrentSpeedNormalizer
      -> blender
      -> StrengthResult

Missing days, failed fetches and thin windows degrade to fallback bounds or an
absent signal; only programming errors escape.
"""

import asyncio
import json
import logging
from datetime import date
from typing import Optional

from config import (
    BLEND_PARAMETERS_PATH,
    CACHE_CAPACITY,
    CACHE_DB_PATH,
    CACHE_TTL_SECONDS,
    FETCH_WORKERS,
    TIDE_STATIONS,
)
from collector.pool import FetchPool
from collector.tide_api import TideApiClient
from .blender import DEFAULT_PARAMETERS, blend_with_mode
from .cache import TTLCache
from .errors import InsufficientWindowError
from .models import BlendParameters, StrengthResult
from .normalizers import CurrentSpeedNormalizer, RangeNormalizer
from .window_stats import (
    WindowSnapshot,
    WindowedCurrentStatistics,
    WindowedRangeStatistics,
)

logger = logging.getLogger("core.strength")


def load_blend_parameters(path: str) -> BlendParameters:
    """
    Read BlendParameters from a saved calibration result or a bare params dict.

    Raises ValueError when the file holds no parameters.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data.get("best"), dict):
        data = data["best"].get("params") or {}
    elif isinstance(data.get("best_params"), dict):
        data = data["best_params"]
    if "weights" not in data:
        raise ValueError(f"No blend parameters in {path}")
    return BlendParameters.from_dict(data)


class StrengthEngine:
    """Computes the tide-flow index from live (or cached) upstream data."""

    def __init__(
        self,
        range_stats: WindowedRangeStatistics,
        current_stats: WindowedCurrentStatistics,
        range_normalizer: Optional[RangeNormalizer] = None,
        current_normalizer: Optional[CurrentSpeedNormalizer] = None,
        params: BlendParameters = DEFAULT_PARAMETERS,
    ):
        self.range_stats = range_stats
        self.current_stats = current_stats
        self.range_normalizer = range_normalizer or RangeNormalizer()
        self.current_normalizer = current_normalizer or CurrentSpeedNormalizer()
        self.params = params

    @classmethod
    def create(
        cls,
        client: Optional[TideApiClient] = None,
        params: Optional[BlendParameters] = None,
        workers: int = FETCH_WORKERS,
        cache_db_path: str = CACHE_DB_PATH,
    ) -> "StrengthEngine":
        """Engine wired with the configured client, pool and caches."""
        if params is None:
            if BLEND_PARAMETERS_PATH:
                params = load_blend_parameters(BLEND_PARAMETERS_PATH)
                logger.info(f"Blend parameters loaded from {BLEND_PARAMETERS_PATH}")
            else:
                params = DEFAULT_PARAMETERS
        client = client or TideApiClient()
        pool = FetchPool(workers)
        store = None
        if cache_db_path:
            from .cache_store import SqliteCacheStore
            store = SqliteCacheStore(cache_db_path)

        def make_cache(namespace: str) -> TTLCache:
            return TTLCache(namespace, ttl_seconds=CACHE_TTL_SECONDS,
                            capacity=CACHE_CAPACITY, store=store)

        return cls(
            range_stats=WindowedRangeStatistics(client, pool, make_cache(WindowedRangeStatistics.namespace)),
            current_stats=WindowedCurrentStatistics(client, pool, make_cache(WindowedCurrentStatistics.namespace)),
            params=params,
        )

    async def aclose(self):
        """Stop pool workers and close the upstream client."""
        for stats in (self.range_stats, self.current_stats):
            await stats.pool.close()
        client = self.range_stats.client
        if hasattr(client, "aclose"):
            await client.aclose()

    @staticmethod
    def default_current_station(tide_station: str) -> Optional[str]:
        cfg = TIDE_STATIONS.get(tide_station)
        return cfg.default_current_station if cfg else None

    @staticmethod
    async def _snapshot(stats, station: Optional[str], day: date,
                        owner: Optional[str]) -> Optional[WindowSnapshot]:
        if not station:
            return None
        if owner is not None:
            return await stats.resolve_latest(station, day, owner)
        return await stats.snapshot(station, day)

    async def compute(
        self,
        tide_station: str,
        day: date,
        current_station: Optional[str] = None,
        owner: Optional[str] = None,
    ) -> StrengthResult:
        """
        Tide-flow index for `day`.

        Args:
            tide_station: tide gauge code (e.g. "DT_0017")
            day: target date
            current_station: current station code; defaults to the gauge's pairing
            owner: requester id; a newer date from the same owner supersedes
                its pending request (RequestSupersededError). None never supersedes.
        """
        if current_station is None:
            current_station = self.default_current_station(tide_station)

        range_snap, current_snap = await asyncio.gather(
            self._snapshot(self.range_stats, tide_station, day, owner),
            self._snapshot(self.current_stats, current_station, day, owner),
        )
        return self.evaluate(tide_station, current_station, day, range_snap, current_snap)

    def evaluate(
        self,
        tide_station: str,
        current_station: Optional[str],
        day: date,
        range_snap: WindowSnapshot,
        current_snap: Optional[WindowSnapshot],
    ) -> StrengthResult:
        """Normalize and blend already-resolved windows."""
        diff = range_snap.today
        try:
            range_window = range_snap.require_stats()
        except InsufficientWindowError as e:
            logger.info(f"{e}; using fixed range bounds")
            range_window = None
        range_signal = self.range_normalizer.normalize(tide_station, diff, range_window)

        peak = current_snap.today if current_snap else None
        current_window = None
        if current_snap is not None:
            try:
                current_window = current_snap.require_stats()
            except InsufficientWindowError as e:
                logger.info(f"{e}; current signal unavailable")
        current_signal = self.current_normalizer.normalize(peak, current_window)

        percent, mode = blend_with_mode(range_signal.value, current_signal.value, self.params)
        if percent is None:
            logger.info(f"{tide_station} {day}: no usable signal")

        return StrengthResult(
            tide_station=tide_station,
            current_station=current_station,
            day=day,
            percent=percent,
            mode=mode,
            range_signal=range_signal,
            current_signal=current_signal,
            diff=diff,
            peak_speed=peak,
            parameters=self.params,
        )
