import asyncio
import json
from datetime import date
from pathlib import Path
import sys

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from collector.pool import FetchPool
from core.blender import DEFAULT_PARAMETERS
from core.cache import TTLCache
from core.errors import RequestSupersededError, UpstreamFetchError
from core.models import BlendParameters, BoundsSource
from core.strength import StrengthEngine, load_blend_parameters
from core.window_stats import WindowedCurrentStatistics, WindowedRangeStatistics

DAY = date(2025, 11, 15)

# Window 2025-10-31..2025-11-30: range 150..750, peak speed 10..110
DIFFS = {date(2025, 10, 31): 150.0, date(2025, 11, 1): 750.0, DAY: 486.0}
PEAKS = {date(2025, 10, 31): 10.0, date(2025, 11, 1): 110.0, DAY: 100.0}


class FakeOceanClient:
    def __init__(self, tide_ok=lambda d: True, current_ok=lambda d: True):
        self.tide_ok = tide_ok
        self.current_ok = current_ok
        self.current_stations = set()

    async def fetch_tide_extrema(self, station, day):
        if not self.tide_ok(day):
            raise UpstreamFetchError("HTTP 503", status_code=503, attempts=3)
        diff = DIFFS.get(day, 400.0)
        return [
            {"predcDt": f"{day} 07:00", "extrSe": "1", "predcTdlvVl": str(50.0 + diff)},
            {"predcDt": f"{day} 13:00", "extrSe": "2", "predcTdlvVl": "50"},
        ]

    async def fetch_current_series(self, station, day, page=1):
        self.current_stations.add(station)
        if not self.current_ok(day):
            raise UpstreamFetchError("HTTP 503", status_code=503, attempts=3)
        return [{"predcDt": f"{day} 10:00", "crsp": str(PEAKS.get(day, 50.0))}]

    async def fetch_current_pages(self, station, day, pages):
        return []


class SlowOceanClient(FakeOceanClient):
    async def fetch_tide_extrema(self, station, day):
        await asyncio.sleep(0.01)
        return await super().fetch_tide_extrema(station, day)


def make_engine(client, params=DEFAULT_PARAMETERS):
    pool = FetchPool(4)
    return StrengthEngine(
        range_stats=WindowedRangeStatistics(client, pool, TTLCache("tide-range")),
        current_stats=WindowedCurrentStatistics(client, pool, TTLCache("current-peak")),
        params=params,
    )


def compute(engine, *args, **kwargs):
    async def run():
        try:
            return await engine.compute(*args, **kwargs)
        finally:
            await engine.aclose()

    return asyncio.run(run())


class TestStrengthEngine:
    """End-to-end index computation over fake upstream data."""

    def test_blended_index(self):
        result = compute(make_engine(FakeOceanClient()), "DT_0017", DAY, "07DS02")

        assert result.range_signal.value == 56
        assert result.current_signal.value == 90
        # 56 * 0.92 + 90 * 0.08 = 58.72
        assert result.percent == 59
        assert result.mode == "blended"
        assert result.diff == 486.0
        assert result.peak_speed == 100.0

    def test_default_current_station_pairing(self):
        client = FakeOceanClient()
        result = compute(make_engine(client), "DT_0017", DAY)

        assert result.current_station == "07DS02"
        assert client.current_stations == {"07DS02"}

    def test_current_failure_degrades_to_range(self):
        client = FakeOceanClient(current_ok=lambda d: False)
        result = compute(make_engine(client), "DT_0017", DAY, "07DS02")

        assert result.percent == 56
        assert result.mode == "range"
        assert not result.current_signal.present

    def test_thin_range_window_uses_fixed_bounds(self):
        """Only two valid days: Daesan's fixed 150..750 bounds apply."""
        client = FakeOceanClient(
            tide_ok=lambda d: d in (DAY, date(2025, 11, 20)),
            current_ok=lambda d: False,
        )
        result = compute(make_engine(client), "DT_0017", DAY, "07DS02")

        assert result.range_signal.bounds_source == BoundsSource.FALLBACK
        assert result.percent == 56

    def test_no_signal(self):
        client = FakeOceanClient(tide_ok=lambda d: False, current_ok=lambda d: False)
        result = compute(make_engine(client), "DT_0017", DAY, "07DS02")

        assert result.percent is None
        assert result.mode == "none"

    def test_parameters_are_injected(self):
        params = BlendParameters.from_current_weight(0.5, -15, 20)
        result = compute(make_engine(FakeOceanClient(), params), "DT_0017", DAY, "07DS02")

        # blended 73, delta 17 within [-15, 20]
        assert result.percent == 73
        assert result.to_dict()["parameters"]["weights"] == {"range": 0.5, "current": 0.5}

    def test_to_dict(self):
        data = compute(make_engine(FakeOceanClient()), "DT_0017", DAY, "07DS02").to_dict()

        assert data["date"] == "2025-11-15"
        assert data["percent"] == 59
        assert data["range"]["bounds_source"] == "window"
        assert data["range"]["bounds"] == {"min": 150.0, "max": 750.0}


class TestEngineFactory:
    """Wiring through StrengthEngine.create()."""

    def test_shared_pool_and_namespaced_caches(self):
        engine = StrengthEngine.create(client=FakeOceanClient(), workers=2, cache_db_path="")

        assert engine.range_stats.pool is engine.current_stats.pool
        assert engine.range_stats.cache.namespace == "tide-range"
        assert engine.current_stats.cache.namespace == "current-peak"
        assert engine.params == DEFAULT_PARAMETERS

    def test_persistent_cache_store(self, tmp_path):
        db = str(tmp_path / "cache.db")
        client = FakeOceanClient()

        first = compute(StrengthEngine.create(client=client, cache_db_path=db), "DT_0017", DAY, "07DS02")
        second_engine = StrengthEngine.create(
            client=FakeOceanClient(tide_ok=lambda d: False, current_ok=lambda d: False),
            cache_db_path=db,
        )
        second = compute(second_engine, "DT_0017", DAY, "07DS02")

        assert second.percent == first.percent == 59


class TestLoadBlendParameters:
    """Deployed parameters come from a calibration result file."""

    def test_from_calibration_result(self, tmp_path):
        params = BlendParameters.from_current_weight(0.12, -8, 10)
        path = tmp_path / "result.json"
        path.write_text(json.dumps({"best": {"params": params.to_dict(), "mae": 3.2}}))

        assert load_blend_parameters(str(path)) == params

    def test_from_bare_params(self, tmp_path):
        params = BlendParameters.from_current_weight(0.2)
        path = tmp_path / "params.json"
        path.write_text(json.dumps(params.to_dict()))

        assert load_blend_parameters(str(path)) == params

    def test_missing_params(self, tmp_path):
        path = tmp_path / "empty.json"
        path.write_text(json.dumps({"best": None}))

        with pytest.raises(ValueError):
            load_blend_parameters(str(path))


class TestOwnerSupersession:
    """A newer date only cancels the same owner's pending request."""

    LATER = date(2025, 12, 20)

    def _run(self, first_owner, second_owner):
        engine = make_engine(SlowOceanClient())

        async def run():
            try:
                first = asyncio.ensure_future(
                    engine.compute("DT_0017", DAY, "07DS02", owner=first_owner)
                )
                await asyncio.sleep(0.02)
                second = await engine.compute("DT_0017", self.LATER, "07DS02", owner=second_owner)
                try:
                    return await first, second
                except RequestSupersededError as e:
                    return e, second
            finally:
                await engine.aclose()

        return asyncio.run(run())

    def test_different_owners_both_complete(self):
        first, second = self._run("alice", "bob")

        assert first.percent == 59
        assert second.day == self.LATER
        assert second.percent is not None

    def test_same_owner_is_superseded(self):
        first, second = self._run("alice", "alice")

        assert isinstance(first, RequestSupersededError)
        assert first.owner == "alice"
        assert second.day == self.LATER
