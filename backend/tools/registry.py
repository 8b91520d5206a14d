"""
Tool Registry - unified tool catalog and dispatch for Parley.

Each tool is a self-contained definition registered with the registry. The
catalog offered to the model is filtered per turn by the settings snapshot:
a tool appears only when `enable_mcp` and its own `enable_tool_<name>` are
both "true".
"""

import inspect
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from errors import ToolExecutionError, error_response

logger = logging.getLogger(__name__)


class ToolCategory(Enum):
    """Tool categories for grouping in the admin UI."""

    CATALOG = "catalog"  # Plan lookups and comparisons
    KNOWLEDGE = "knowledge"  # FAQ answers
    EXTERNAL = "external"  # Web search, time services
    MARKET = "market"  # Weather, prices, news and quotes


@dataclass
class ToolDefinition:
    """Definition of a tool for the registry."""

    name: str
    description: str
    parameters: Dict[str, Any]
    required_params: List[str]
    executor: Callable[..., Dict]
    category: ToolCategory
    chinese_name: str = ""  # Display name in the admin UI

    def schema(self, description: Optional[str] = None) -> Dict[str, Any]:
        """OpenAI-compatible function schema."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": description or self.description,
                "parameters": {
                    "type": "object",
                    "properties": self.parameters,
                    "required": self.required_params,
                },
            },
        }

    def parameters_summary(self) -> str:
        """One line per parameter, sorted, for the admin tool list."""
        if not self.parameters:
            return "(无参数)"
        lines = []
        for name in sorted(self.parameters):
            prop = self.parameters[name]
            flag = "必填" if name in self.required_params else "选填"
            lines.append(f"{name} ({flag}): {prop.get('description', '')}")
        return "\n".join(lines)


@dataclass
class ToolResult:
    """Standardized result from tool execution."""

    success: bool
    data: Dict[str, Any]
    error: Optional[Dict[str, Any]] = None
    elapsed_ms: float = 0.0

    def payload(self) -> Dict[str, Any]:
        """What the follow-up model call sees."""
        if self.success:
            return self.data
        return {"success": False, "error": self.error}


class ToolRegistry:
    """
    Central registry for all Parley tools.

    Usage:
        ToolRegistry.register(ToolDefinition(...))
        tools_schema = ToolRegistry.get_tools_schema(settings)
        result = ToolRegistry.execute("getPlanDetails", {"planName": "128套餐"})
    """

    _tools: Dict[str, ToolDefinition] = {}
    _initialized: bool = False

    @classmethod
    def register(cls, tool: ToolDefinition) -> None:
        cls._tools[tool.name] = tool
        logger.debug(f"Registered tool: {tool.name}")

    @classmethod
    def get_tool(cls, name: str) -> Optional[ToolDefinition]:
        return cls._tools.get(name)

    @classmethod
    def get_all_tools(cls) -> Dict[str, ToolDefinition]:
        return cls._tools.copy()

    @classmethod
    def is_enabled(cls, name: str, settings) -> bool:
        """Registered and switched on in this settings snapshot."""
        return name in cls._tools and settings.tool_enabled(name)

    @classmethod
    def list_enabled(cls, settings) -> List[ToolDefinition]:
        """Tools whose enable switch is on, in registration order."""
        return [t for t in cls._tools.values() if settings.tool_enabled(t.name)]

    @classmethod
    def get_tools_schema(cls, settings) -> List[Dict[str, Any]]:
        """Schema for the enabled tools, with admin description overrides."""
        return [t.schema(settings.tool_description(t.name, t.description)) for t in cls.list_enabled(settings)]

    @classmethod
    def execute(cls, name: str, args: Dict[str, Any]) -> ToolResult:
        """
        Execute a tool by name. Never raises: failures come back as a
        ToolResult carrying a structured error payload.
        """
        start = time.perf_counter()
        tool = cls._tools.get(name)
        if not tool:
            err = ToolExecutionError(f"Unknown tool: {name}", tool=name, error_type="not_found")
            return ToolResult(success=False, data={}, error=error_response(err, tool=name)["error"])

        try:
            # Only pass arguments the executor accepts
            sig = inspect.signature(tool.executor)
            has_var_kw = any(p.kind == inspect.Parameter.VAR_KEYWORD for p in sig.parameters.values())
            if has_var_kw:
                filtered = dict(args)
            else:
                accepted = set(sig.parameters.keys())
                filtered = {k: v for k, v in args.items() if k in accepted}
                dropped = set(args) - accepted
                if dropped:
                    logger.warning(f"Tool {name}: ignoring unexpected arguments {sorted(dropped)}")
            result = tool.executor(**filtered)
        except Exception as e:
            logger.error(f"Tool {name} failed: {e}", exc_info=True)
            result = error_response(e, tool=name)

        elapsed = round((time.perf_counter() - start) * 1000.0, 3)
        if not isinstance(result, dict):
            result = {"success": True, "result": result}

        success = bool(result.get("success", not result.get("error")))
        error = None
        if not success:
            error = result.get("error")
            if not isinstance(error, dict):
                error = {"message": str(error or "Tool failed"), "details": result.get("details")}
        return ToolResult(success=success, data=result, error=error, elapsed_ms=elapsed)

    @classmethod
    def clear(cls) -> None:
        """Clear all registered tools (for testing)."""
        cls._tools.clear()
        cls._initialized = False


def _register_builtin_tools() -> None:
    from tools.plans import compare_two_plans, get_plan_details, query_all_plans, query_faq
    from tools.web import get_current_time_by_city, web_search

    ToolRegistry.register(
        ToolDefinition(
            name="queryAllPlans",
            chinese_name="查询所有套餐",
            description="当用户第一次询问有什么套餐，或者想了解所有套餐选择时，必须调用此工具。",
            parameters={},
            required_params=[],
            executor=query_all_plans,
            category=ToolCategory.CATALOG,
        )
    )

    ToolRegistry.register(
        ToolDefinition(
            name="compareTwoPlans",
            chinese_name="比较两个套餐",
            description=(
                "当用户明确表示想要比较两个套餐，或者在对话中提到了两个具体的套餐名并想知道它们的区别时，"
                "调用此工具。需要从对话中准确提取两个套餐的名称作为参数。"
            ),
            parameters={
                "planName1": {"type": "string", "description": "第一个套餐的完整名称或别名"},
                "planName2": {"type": "string", "description": "第二个套餐的完整名称或别名"},
            },
            required_params=["planName1", "planName2"],
            executor=compare_two_plans,
            category=ToolCategory.CATALOG,
        )
    )

    ToolRegistry.register(
        ToolDefinition(
            name="getPlanDetails",
            chinese_name="查询套餐详情",
            description="当用户询问某个具体套餐的详细信息时，调用此工具获取该套餐的月租、流量、通话等数据。",
            parameters={
                "planName": {"type": "string", "description": "需要查询详情的套餐的完整名称或别名"},
            },
            required_params=["planName"],
            executor=get_plan_details,
            category=ToolCategory.CATALOG,
        )
    )

    ToolRegistry.register(
        ToolDefinition(
            name="queryMcpFaq",
            chinese_name="常见问题",
            description="当用户询问话费查询、套餐变更、流量超出、携号转网、宽带报修、投诉等常见业务问题时，调用此工具获取标准答案。",
            parameters={
                "intent": {"type": "string", "description": "用户的核心问题，例如 '查询话费'"},
            },
            required_params=["intent"],
            executor=query_faq,
            category=ToolCategory.KNOWLEDGE,
        )
    )

    ToolRegistry.register(
        ToolDefinition(
            name="getCurrentTimeByCity",
            chinese_name="城市时间",
            description="查询指定城市的当前日期和时间。",
            parameters={
                "city": {"type": "string", "description": "城市名称，例如 '北京'"},
            },
            required_params=["city"],
            executor=get_current_time_by_city,
            category=ToolCategory.EXTERNAL,
        )
    )

    ToolRegistry.register(
        ToolDefinition(
            name="webSearch",
            chinese_name="联网搜索",
            description="当用户的问题需要最新的实时信息（新闻、政策、价格等）且其他工具无法回答时，调用此工具联网搜索。",
            parameters={
                "query": {"type": "string", "description": "搜索关键词"},
                "count": {"type": "integer", "description": "返回结果数量，默认 5"},
            },
            required_params=["query"],
            executor=web_search,
            category=ToolCategory.EXTERNAL,
        )
    )

    _register_market_tools()

    logger.info(f"Registered {len(ToolRegistry._tools)} built-in tools")


def _register_market_tools() -> None:
    from tools.market import (
        get_exchange_rate,
        get_fund_info,
        get_gold_price,
        get_news,
        get_oil_price,
        get_stock_info,
        get_weather,
    )

    specs = [
        ("getWeather", "天气预报", "查询指定城市未来几天的天气预报。", get_weather,
         {"city": {"type": "string", "description": "城市名称，例如 '杭州'"}}, ["city"]),
        ("getOilPrice", "油价查询", "查询指定省份今日的汽油、柴油价格。", get_oil_price,
         {"province": {"type": "string", "description": "省份名称，例如 '浙江'"}}, ["province"]),
        ("getGoldPrice", "金价查询", "查询上海黄金交易所最新的黄金价格。", get_gold_price, {}, []),
        ("getNews", "本地新闻", "查询指定地区或包含指定标题关键词的最新新闻。", get_news,
         {
             "areaName": {"type": "string", "description": "地区名称，例如 '北京'"},
             "title": {"type": "string", "description": "新闻标题关键词"},
         }, []),
        ("getExchangeRate", "汇率查询", "查询指定货币对其他主要货币的汇率。", get_exchange_rate,
         {"currency": {"type": "string", "description": "货币代码，例如 'USD'，默认 'CNY'"}}, []),
        ("getFundInfo", "基金查询", "根据基金代码查询基金净值等详细信息。", get_fund_info,
         {"fundCode": {"type": "string", "description": "六位基金代码，例如 '000001'"}}, ["fundCode"]),
        ("getStockInfo", "股票行情", "根据股票代码查询 A 股实时行情。", get_stock_info,
         {"symbol": {"type": "string", "description": "股票代码，例如 '600519'"}}, ["symbol"]),
    ]
    for name, chinese_name, description, executor, parameters, required in specs:
        ToolRegistry.register(
            ToolDefinition(
                name=name,
                chinese_name=chinese_name,
                description=description,
                parameters=parameters,
                required_params=required,
                executor=executor,
                category=ToolCategory.MARKET,
            )
        )


def register_all_tools() -> None:
    """Register the built-in tools once per process."""
    if ToolRegistry._initialized:
        return
    _register_builtin_tools()
    ToolRegistry._initialized = True
