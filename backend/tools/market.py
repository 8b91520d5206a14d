"""
Market data tools: weather, fuel and gold prices, local news, exchange
rates, funds and A-share quotes.

All of them are Aliyun API marketplace services sharing one APPCODE. Each
service wraps its payload in its own envelope; the tools unwrap only the
section the model needs. Successful lookups (except news and stock quotes)
are cached in-process for market_cache_ttl_s seconds.
"""

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional, Tuple

import httpx

from config import runtime_config
from errors import ToolExecutionError, ValidationError, handle_tool_errors, success_response

logger = logging.getLogger(__name__)

WEATHER_HOST = "https://ali-weather.showapi.com"
OIL_HOST = "https://smjryjcx.market.alicloudapi.com"
GOLD_HOST = "https://tsgold2.market.alicloudapi.com"
NEWS_HOST = "https://areanews1.market.alicloudapi.com"
EXCHANGE_HOST = "https://tsexchange.market.alicloudapi.com"
FUND_HOST = "https://jmjjhqcx.market.alicloudapi.com"
STOCK_HOST = "https://jmgphqcxhs.market.alicloudapi.com"

_cache: Dict[Tuple[str, ...], Tuple[float, Any]] = {}
_cache_lock = threading.Lock()


def clear_cache() -> None:
    with _cache_lock:
        _cache.clear()


def _cached(key: Tuple[str, ...], fetch: Callable[[], Any]) -> Any:
    """Return a fresh cached value for key, else fetch and store it."""
    now = time.time()
    with _cache_lock:
        entry = _cache.get(key)
        if entry is not None:
            if now <= entry[0]:
                logger.debug(f"Market cache hit: {key}")
                return entry[1]
            del _cache[key]

    value = fetch()
    ttl = runtime_config.market_cache_ttl_s
    if ttl > 0:
        with _cache_lock:
            _cache[key] = (time.time() + ttl, value)
    return value


def _call_market_api(
    tool: str,
    host: str,
    path: str,
    params: Optional[Dict[str, str]] = None,
    form: Optional[Dict[str, str]] = None,
) -> Dict[str, Any]:
    """One marketplace request. POST with a form body when form is given."""
    appcode = runtime_config.market_appcode
    if not appcode:
        raise ToolExecutionError(
            "Market data service is not configured",
            details="ALIYUN_APPCODE is not set",
            tool=tool,
        )

    headers = {"Authorization": f"APPCODE {appcode}"}
    method = "POST" if form is not None else "GET"
    try:
        with httpx.Client(timeout=runtime_config.market_timeout_s) as client:
            response = client.request(method, f"{host}{path}", params=params, data=form, headers=headers)
            response.raise_for_status()
            data = response.json()
    except httpx.TimeoutException:
        raise ToolExecutionError(
            "Market data service timed out",
            details=f"{host}{path} did not answer in time",
            tool=tool,
            error_type="timeout",
        ) from None
    except httpx.HTTPStatusError as e:
        raise ToolExecutionError(
            "Market data service error",
            details=f"{path} returned status {e.response.status_code}",
            tool=tool,
        ) from None
    except (httpx.RequestError, ValueError) as e:
        raise ToolExecutionError(
            "Market data service unavailable",
            details=str(e),
            tool=tool,
        ) from None

    if not isinstance(data, dict):
        raise ToolExecutionError("Unexpected market data response", details=f"{path} returned non-object", tool=tool)
    return data


def _section(tool: str, data: Dict[str, Any], key: str) -> Any:
    value = data.get(key)
    if value is None:
        raise ToolExecutionError(
            "Unexpected market data response",
            details=f"Response has no '{key}' section",
            tool=tool,
        )
    return value


def _require(value: str, parameter: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{parameter} is required", parameter=parameter)
    return value


@handle_tool_errors("getWeather")
def get_weather(city: str = "") -> Dict[str, Any]:
    city = _require(city, "city")

    def fetch():
        data = _call_market_api("getWeather", WEATHER_HOST, "/day15", params={"area": city})
        return _section("getWeather", data, "showapi_res_body")

    return success_response(city=city, forecast=_cached(("getWeather", city), fetch))


@handle_tool_errors("getOilPrice")
def get_oil_price(province: str = "") -> Dict[str, Any]:
    province = _require(province, "province")

    def fetch():
        data = _call_market_api("getOilPrice", OIL_HOST, "/oil/price", params={"prov": province})
        prices = _section("getOilPrice", data, "data").get("list") or []
        if not prices:
            raise ToolExecutionError(
                "No fuel prices",
                details=f"没有找到 '{province}' 的油价信息",
                tool="getOilPrice",
            )
        return prices[0]

    return success_response(province=province, price=_cached(("getOilPrice", province), fetch))


@handle_tool_errors("getGoldPrice")
def get_gold_price() -> Dict[str, Any]:
    def fetch():
        data = _call_market_api("getGoldPrice", GOLD_HOST, "/shgold")
        return _section("getGoldPrice", data, "data").get("list") or []

    return success_response(prices=_cached(("getGoldPrice", "latest"), fetch))


@handle_tool_errors("getNews")
def get_news(areaName: str = "", title: str = "") -> Dict[str, Any]:
    params = {"page": "1"}
    if (areaName or "").strip():
        params["areaName"] = areaName.strip()
    if (title or "").strip():
        params["title"] = title.strip()

    data = _call_market_api("getNews", NEWS_HOST, "/localnews/query", params=params)
    return success_response(news=_section("getNews", data, "showapi_res_body"))


@handle_tool_errors("getExchangeRate")
def get_exchange_rate(currency: str = "CNY") -> Dict[str, Any]:
    currency = (currency or "").strip().upper() or "CNY"

    def fetch():
        data = _call_market_api("getExchangeRate", EXCHANGE_HOST, "/single", params={"from": currency})
        return _section("getExchangeRate", data, "data")

    return success_response(currency=currency, rates=_cached(("getExchangeRate", currency), fetch))


@handle_tool_errors("getFundInfo")
def get_fund_info(fundCode: str = "") -> Dict[str, Any]:
    fund_code = _require(fundCode, "fundCode")

    def fetch():
        data = _call_market_api("getFundInfo", FUND_HOST, "/fund/detail", form={"fundCode": fund_code})
        return _section("getFundInfo", data, "data")

    return success_response(fundCode=fund_code, fund=_cached(("getFundInfo", fund_code), fetch))


@handle_tool_errors("getStockInfo")
def get_stock_info(symbol: str = "") -> Dict[str, Any]:
    symbol = _require(symbol, "symbol")
    data = _call_market_api("getStockInfo", STOCK_HOST, "/stock/a/price", form={"symbol": symbol})
    return success_response(symbol=symbol, quote=_section("getStockInfo", data, "data"))
