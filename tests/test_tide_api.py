import asyncio
from datetime import date
from pathlib import Path
import sys

import httpx
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from collector.tide_api import TideApiClient, parse_api_items
from core.errors import UpstreamFetchError


class TestParseApiItems:
    """Envelope variants of the forecast services."""

    def test_response_envelope_with_list(self):
        payload = {
            "response": {
                "header": {"resultCode": "00", "resultMsg": "NORMAL SERVICE."},
                "body": {"items": {"item": [{"predcDt": "2025-11-03 06:00"}, "junk"]}},
            }
        }
        assert parse_api_items(payload) == [{"predcDt": "2025-11-03 06:00"}]

    def test_flat_envelope_with_single_item(self):
        payload = {
            "header": {"resultCode": "00"},
            "body": {"items": {"item": {"predcDt": "2025-11-03 06:00"}}},
        }
        assert parse_api_items(payload) == [{"predcDt": "2025-11-03 06:00"}]

    def test_nodata_and_empty_items(self):
        assert parse_api_items({"header": {"resultCode": "03"}, "body": {}}) == []
        assert parse_api_items({"header": {"resultCode": "00"}, "body": {"items": ""}}) == []
        assert parse_api_items(None) == []

    def test_error_code_raises(self):
        with pytest.raises(UpstreamFetchError):
            parse_api_items({"header": {"resultCode": "30", "resultMsg": "SERVICE KEY IS NOT REGISTERED"}})


def test_client_sends_station_and_date():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={
            "header": {"resultCode": "00"},
            "body": {"items": {"item": [{"predcDt": "2025-11-03 06:00", "extrSe": "1"}]}},
        })

    async def run():
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        client = TideApiClient(base_url="http://tide.test", service_key="KEY", http_client=http)
        try:
            return await client.fetch_tide_extrema("DT_0017", date(2025, 11, 3))
        finally:
            await http.aclose()

    items = asyncio.run(run())

    assert items == [{"predcDt": "2025-11-03 06:00", "extrSe": "1"}]
    params = seen[0].url.params
    assert seen[0].url.path.endswith("GetTideFcstHghLwApiService")
    assert params["obsCode"] == "DT_0017"
    assert params["reqDate"] == "20251103"
    assert params["serviceKey"] == "KEY"


def test_current_pages_skip_failed_page():
    def handler(request):
        page = request.url.params["pageNo"]
        if page == "3":
            return httpx.Response(404)
        return httpx.Response(200, json={
            "header": {"resultCode": "00"},
            "body": {"items": {"item": [{"predcDt": f"2025-11-03 0{page}:00", "crsp": "10"}]}},
        })

    async def run():
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        client = TideApiClient(base_url="http://tide.test", http_client=http, backoff_base=0)
        try:
            return await client.fetch_current_pages("07DS02", date(2025, 11, 3), [2, 3, 4])
        finally:
            await http.aclose()

    items = asyncio.run(run())

    assert [i["predcDt"] for i in items] == ["2025-11-03 02:00", "2025-11-03 04:00"]


def test_current_window_requires_configured_url():
    client = TideApiClient(current_window_url="")
    assert not client.supports_current_window
    assert asyncio.run(client.fetch_current_window("07DS02", date(2025, 11, 3))) == []
