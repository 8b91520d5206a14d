"""
Tests for the market data tools (APPCODE-authenticated marketplace APIs).

Strategy:
    - httpx.Client is swapped for a real client on a MockTransport, so the
      request building and response unwrapping run unchanged
    - runtime_config values are patched per test
"""

from unittest.mock import patch
from urllib.parse import parse_qs

import httpx
import pytest

from config import runtime_config
from tools import market
from tools.registry import ToolCategory, ToolRegistry

_RealClient = httpx.Client


@pytest.fixture(autouse=True)
def _market_config():
    market.clear_cache()
    with patch.object(runtime_config, "market_appcode", "test-code"), \
            patch.object(runtime_config, "market_cache_ttl_s", 600.0):
        yield
    market.clear_cache()


def _serve(handler):
    """Route every httpx.Client built by the tools through handler."""
    requests = []

    def recording(request):
        requests.append(request)
        return handler(request)

    transport = httpx.MockTransport(recording)
    factory = patch("tools.market.httpx.Client", side_effect=lambda **kw: _RealClient(transport=transport, **kw))
    return factory, requests


class TestRequests:

    def test_weather_sends_appcode_and_unwraps_body(self):
        factory, requests = _serve(lambda r: httpx.Response(200, json={"showapi_res_body": {"dayList": [1, 2]}}))
        with factory:
            result = market.get_weather("杭州")

        assert result == {"success": True, "city": "杭州", "forecast": {"dayList": [1, 2]}}
        request = requests[0]
        assert request.headers["Authorization"] == "APPCODE test-code"
        assert request.url.path == "/day15"
        assert request.url.params["area"] == "杭州"

    def test_fund_info_posts_form(self):
        factory, requests = _serve(lambda r: httpx.Response(200, json={"data": {"name": "华夏成长"}}))
        with factory:
            result = market.get_fund_info("000001")

        assert result["fund"] == {"name": "华夏成长"}
        assert requests[0].method == "POST"
        assert parse_qs(requests[0].content.decode()) == {"fundCode": ["000001"]}

    def test_oil_price_takes_first_entry(self):
        body = {"data": {"list": [{"prov": "浙江", "p92": "7.9"}, {"prov": "other"}]}}
        factory, _ = _serve(lambda r: httpx.Response(200, json=body))
        with factory:
            assert market.get_oil_price("浙江")["price"] == {"prov": "浙江", "p92": "7.9"}

    def test_news_sends_only_given_filters(self):
        factory, requests = _serve(lambda r: httpx.Response(200, json={"showapi_res_body": {"contentlist": []}}))
        with factory:
            market.get_news(areaName="北京")

        assert dict(requests[0].url.params) == {"page": "1", "areaName": "北京"}

    def test_exchange_rate_defaults_to_cny(self):
        factory, requests = _serve(lambda r: httpx.Response(200, json={"data": {"USD": 0.14}}))
        with factory:
            result = market.get_exchange_rate("")

        assert result["currency"] == "CNY"
        assert requests[0].url.params["from"] == "CNY"


class TestCaching:

    def test_repeat_lookup_served_from_cache(self):
        factory, requests = _serve(lambda r: httpx.Response(200, json={"data": {"list": [{"type": "Au99.99"}]}}))
        with factory:
            first = market.get_gold_price()
            second = market.get_gold_price()

        assert first == second
        assert len(requests) == 1

    def test_failures_not_cached(self):
        responses = iter([httpx.Response(503), httpx.Response(200, json={"showapi_res_body": {"ok": 1}})])
        factory, requests = _serve(lambda r: next(responses))
        with factory:
            assert market.get_weather("上海")["success"] is False
            assert market.get_weather("上海")["success"] is True
        assert len(requests) == 2

    def test_zero_ttl_disables_cache(self):
        factory, requests = _serve(lambda r: httpx.Response(200, json={"data": {"price": 1}}))
        with factory, patch.object(runtime_config, "market_cache_ttl_s", 0.0):
            market.get_stock_info("600519")
            market.get_fund_info("000001")
            market.get_fund_info("000001")
        assert len(requests) == 3


class TestErrors:

    def test_missing_appcode(self):
        with patch.object(runtime_config, "market_appcode", ""):
            result = market.get_weather("杭州")
        assert result["success"] is False
        assert result["error"]["code"] == "TOOL_EXECUTION_FAILED"
        assert "ALIYUN_APPCODE" in result["error"]["details"]

    def test_required_argument(self):
        result = market.get_stock_info("  ")
        assert result["error"]["code"] == "VALIDATION_MISSING_PARAM"

    def test_http_error_status(self):
        factory, _ = _serve(lambda r: httpx.Response(403))
        with factory:
            result = market.get_gold_price()
        assert result["success"] is False
        assert "403" in result["error"]["details"]

    def test_timeout(self):
        def slow(request):
            raise httpx.ReadTimeout("slow", request=request)

        factory, _ = _serve(slow)
        with factory:
            result = market.get_exchange_rate("USD")
        assert result["error"]["code"] == "TOOL_TIMEOUT"

    def test_missing_section(self):
        factory, _ = _serve(lambda r: httpx.Response(200, json={"unexpected": True}))
        with factory:
            result = market.get_fund_info("000001")
        assert "'data'" in result["error"]["details"]

    def test_empty_oil_list(self):
        factory, _ = _serve(lambda r: httpx.Response(200, json={"data": {"list": []}}))
        with factory:
            result = market.get_oil_price("西藏")
        assert result["error"]["message"] == "No fuel prices"


class TestRegistration:

    def test_market_tools_registered_and_offered(self, store):
        names = {"getWeather", "getOilPrice", "getGoldPrice", "getNews", "getExchangeRate", "getFundInfo", "getStockInfo"}
        tools = ToolRegistry.get_all_tools()
        assert names <= set(tools)
        assert all(tools[n].category == ToolCategory.MARKET for n in names)

        offered = {t["function"]["name"] for t in ToolRegistry.get_tools_schema(store.snapshot())}
        assert names <= offered

    def test_execute_through_registry(self, store):
        factory, _ = _serve(lambda r: httpx.Response(200, json={"data": {"code": "600519"}}))
        with factory:
            result = ToolRegistry.execute("getStockInfo", {"symbol": "600519"})
        assert result.success is True
        assert result.data["quote"] == {"code": "600519"}
