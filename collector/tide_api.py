"""
Ocean Forecast API Client - Tide extrema and tidal current series

Talks to the data.go.kr ocean forecast services (or a proxy exposing the same
paths):
- tideFcstHghLw: daily high/low tide predictions per tide gauge
- crntFcstTime: intraday current speed/direction per current station (paged)
- optional window endpoint: pre-aggregated daily max current speeds

Returns raw item dicts; field cleanup happens in collector.sample_adapter.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import date
from typing import Any, Dict, List, Optional

import httpx

from config import (
    CURRENT_SERIES_PATH,
    CURRENT_SERIES_ROWS,
    CURRENT_WINDOW_URL,
    FETCH_BACKOFF_SECONDS,
    FETCH_MAX_ATTEMPTS,
    HTTP_TIMEOUT_SECONDS,
    TIDE_API_BASE_URL,
    TIDE_API_SERVICE_KEY,
    TIDE_EXTREMA_PATH,
    TIDE_EXTREMA_ROWS,
)
from core.errors import UpstreamFetchError
from .http import fetch_json

logger = logging.getLogger("collector.tide_api")

# "03" is NODATA: an empty page, not a failure
_OK_RESULT_CODES = {"00", "0", "03"}


def compact_date(day: date) -> str:
    return day.strftime("%Y%m%d")


def parse_api_items(payload: Any) -> List[Dict[str, Any]]:
    """
    Extract the item list from an API response.

    Accepts both {"response": {"header", "body": {"items": {"item"}}}} and the
    flattened {"header", "body": ...} proxy shape. A single item may arrive as
    a dict instead of a one-element list.
    """
    if not isinstance(payload, dict):
        return []

    envelope = payload.get("response") if isinstance(payload.get("response"), dict) else payload

    header = envelope.get("header") or {}
    code = str(header.get("resultCode", "00")).strip()
    if code not in _OK_RESULT_CODES:
        raise UpstreamFetchError(f"API error {code}: {header.get('resultMsg', '')}".strip())

    body = envelope.get("body") or {}
    items = body.get("items") or {}
    if isinstance(items, dict):
        items = items.get("item")
    if items is None:
        return []
    if isinstance(items, dict):
        return [items]
    return [item for item in items if isinstance(item, dict)]


class TideApiClient:
    """Async client for the tide/current forecast services."""

    def __init__(
        self,
        base_url: str = TIDE_API_BASE_URL,
        service_key: str = TIDE_API_SERVICE_KEY,
        current_window_url: str = CURRENT_WINDOW_URL,
        http_client: Optional[httpx.AsyncClient] = None,
        max_attempts: int = FETCH_MAX_ATTEMPTS,
        backoff_base: float = FETCH_BACKOFF_SECONDS,
    ):
        self.base_url = base_url.rstrip("/")
        self.service_key = service_key
        self.current_window_url = current_window_url
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self._client = http_client
        self._owns_client = http_client is None

    @property
    def supports_current_window(self) -> bool:
        return bool(self.current_window_url)

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS)
        return self._client

    async def aclose(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "TideApiClient":
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def _get(self, url: str, params: Dict[str, Any]) -> Any:
        return await fetch_json(
            self._http(),
            url,
            params=params,
            max_attempts=self.max_attempts,
            backoff_base=self.backoff_base,
        )

    def _params(self, station: str, day: date, rows: int, page: int = 1) -> Dict[str, Any]:
        params = {
            "obsCode": station,
            "reqDate": compact_date(day),
            "numOfRows": str(rows),
            "pageNo": str(page),
            "type": "json",
        }
        if self.service_key:
            params["serviceKey"] = self.service_key
        return params

    async def fetch_tide_extrema(self, station: str, day: date) -> List[Dict[str, Any]]:
        """High/low tide prediction records for one gauge starting at `day`."""
        payload = await self._get(
            f"{self.base_url}/{TIDE_EXTREMA_PATH}",
            self._params(station, day, TIDE_EXTREMA_ROWS),
        )
        return parse_api_items(payload)

    async def fetch_current_series(self, station: str, day: date, page: int = 1) -> List[Dict[str, Any]]:
        """One page of the intraday current series for `day`."""
        payload = await self._get(
            f"{self.base_url}/{CURRENT_SERIES_PATH}",
            self._params(station, day, CURRENT_SERIES_ROWS, page),
        )
        return parse_api_items(payload)

    async def fetch_current_pages(self, station: str, day: date, pages: List[int]) -> List[Dict[str, Any]]:
        """Fetch several pages concurrently; a failed page is skipped."""
        results = await asyncio.gather(
            *(self.fetch_current_series(station, day, page) for page in pages),
            return_exceptions=True,
        )
        items: List[Dict[str, Any]] = []
        for page, result in zip(pages, results):
            if isinstance(result, UpstreamFetchError):
                logger.warning(f"{station} {day} current page {page} failed: {result}")
                continue
            if isinstance(result, BaseException):
                raise result
            items.extend(result)
        return items

    async def fetch_current_window(self, station: str, center: date) -> List[Dict[str, Any]]:
        """
        Pre-aggregated daily maximum speeds around `center`.

        Rows look like {"date": "2025-11-03", "maxCrsp": 81.2}. Returns [] when
        no window endpoint is configured.
        """
        if not self.current_window_url:
            return []
        payload = await self._get(
            self.current_window_url,
            {"obsCode": station, "reqDate": compact_date(center)},
        )
        if not isinstance(payload, dict):
            return []
        rows = payload.get("dailyMaxSpeeds")
        return [r for r in rows if isinstance(r, dict)] if isinstance(rows, list) else []


if __name__ == "__main__":
    async def test():
        async with TideApiClient() as client:
            today = date.today()
            extrema = await client.fetch_tide_extrema("DT_0017", today)
            print(f"DT_0017 {today}: {len(extrema)} extrema")
            for item in extrema[:4]:
                print(f"  {item}")
            series = await client.fetch_current_series("07DS02", today)
            print(f"07DS02 {today}: {len(series)} current readings")

    asyncio.run(test())
