"""
Web-facing tools: SearXNG web search and city local time.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List
from zoneinfo import ZoneInfo

import httpx

from config import runtime_config
from errors import ToolExecutionError, ValidationError, handle_tool_errors, success_response

logger = logging.getLogger(__name__)

CITY_TIMEZONES = {
    "北京": "Asia/Shanghai",
    "上海": "Asia/Shanghai",
    "广州": "Asia/Shanghai",
    "深圳": "Asia/Shanghai",
    "杭州": "Asia/Shanghai",
    "成都": "Asia/Shanghai",
    "香港": "Asia/Hong_Kong",
    "台北": "Asia/Taipei",
    "东京": "Asia/Tokyo",
    "首尔": "Asia/Seoul",
    "新加坡": "Asia/Singapore",
    "迪拜": "Asia/Dubai",
    "伦敦": "Europe/London",
    "巴黎": "Europe/Paris",
    "柏林": "Europe/Berlin",
    "莫斯科": "Europe/Moscow",
    "纽约": "America/New_York",
    "洛杉矶": "America/Los_Angeles",
    "悉尼": "Australia/Sydney",
}

_ENGLISH_CITIES = {
    "beijing": "北京",
    "shanghai": "上海",
    "hong kong": "香港",
    "tokyo": "东京",
    "seoul": "首尔",
    "singapore": "新加坡",
    "london": "伦敦",
    "paris": "巴黎",
    "new york": "纽约",
    "los angeles": "洛杉矶",
    "sydney": "悉尼",
}


@handle_tool_errors("getCurrentTimeByCity")
def get_current_time_by_city(city: str = "北京") -> Dict[str, Any]:
    city = (city or "北京").strip()
    key = _ENGLISH_CITIES.get(city.lower(), city).removesuffix("市")
    zone = CITY_TIMEZONES.get(key)
    if zone is None:
        raise ToolExecutionError(
            "Unknown city",
            details=f"暂不支持查询 '{city}' 的时间",
            tool="getCurrentTimeByCity",
        )
    now = datetime.now(ZoneInfo(zone))
    return success_response(
        city=key,
        timezone=zone,
        datetime=now.strftime("%Y-%m-%d %H:%M:%S"),
        weekday=now.strftime("%A"),
    )


def _parse_results(data: Dict[str, Any], limit: int) -> List[Dict[str, str]]:
    results: List[Dict[str, str]] = []
    for item in data.get("results", [])[:limit]:
        results.append(
            {
                "title": (item.get("title") or "").strip(),
                "url": (item.get("url") or "").strip(),
                "content": (item.get("content") or "").strip()[:300],
            }
        )
    return results


@handle_tool_errors("webSearch")
def web_search(query: str = "", count: int = 5) -> Dict[str, Any]:
    """Search the web through SearXNG's JSON API."""
    query = (query or "").strip()
    if not query:
        raise ValidationError("query is required", parameter="query")
    try:
        limit = max(1, min(int(count or runtime_config.searxng_max_results), 10))
    except (TypeError, ValueError):
        limit = runtime_config.searxng_max_results

    params = {"q": query, "format": "json", "language": "zh-CN"}
    try:
        with httpx.Client(timeout=runtime_config.searxng_timeout_s, follow_redirects=True) as client:
            response = client.get(f"{runtime_config.searxng_url}/search", params=params)
            response.raise_for_status()
            data = response.json()
    except httpx.TimeoutException:
        raise ToolExecutionError(
            "Search service timed out",
            details="The search request took too long. Try again.",
            tool="webSearch",
            error_type="timeout",
        ) from None
    except httpx.HTTPStatusError as e:
        raise ToolExecutionError(
            "Search service error",
            details=f"SearXNG returned status {e.response.status_code}",
            tool="webSearch",
        ) from None
    except (httpx.RequestError, ValueError) as e:
        raise ToolExecutionError(
            "Search service unavailable",
            details=str(e),
            tool="webSearch",
        ) from None

    results = _parse_results(data, limit)
    return success_response(query=query, results=results, result_count=len(results))
