"""
Tests for the tool registry, built-in tools and tool call dispatch.
"""

import asyncio
import json
import time

from errors import ErrorCode
from routers.chat_orchestration.tool_dispatch import ToolDispatcher, ToolRequest
from services.config_store import SettingsSnapshot
from tools.plans import compare_two_plans, find_plan, get_plan_details, query_all_plans, query_faq
from tools.registry import ToolCategory, ToolDefinition, ToolRegistry
from tools.web import get_current_time_by_city

BUILTIN = {"queryAllPlans", "compareTwoPlans", "getPlanDetails", "queryMcpFaq", "getCurrentTimeByCity", "webSearch"}


class TestCatalogGating:

    def test_builtin_tools_registered(self, store):
        assert BUILTIN <= set(ToolRegistry.get_all_tools())

    def test_all_enabled_after_seeding(self, store):
        names = {t["function"]["name"] for t in ToolRegistry.get_tools_schema(store.snapshot())}
        assert BUILTIN <= names

    def test_disabled_tool_not_offered(self, store):
        store.set_tool_enabled("webSearch", False)
        snapshot = store.snapshot()
        names = {t["function"]["name"] for t in ToolRegistry.get_tools_schema(snapshot)}
        assert "webSearch" not in names
        assert ToolRegistry.is_enabled("webSearch", snapshot) is False

    def test_master_switch_disables_all(self, store):
        store.save_settings({"enable_mcp": "false"})
        assert ToolRegistry.get_tools_schema(store.snapshot()) == []

    def test_missing_flag_means_disabled(self):
        snapshot = SettingsSnapshot({"enable_mcp": "true"})
        assert ToolRegistry.list_enabled(snapshot) == []

    def test_description_override(self, store):
        store.save_settings({"tool_description_queryAllPlans": "列出全部套餐"})
        schema = {t["function"]["name"]: t for t in ToolRegistry.get_tools_schema(store.snapshot())}
        assert schema["queryAllPlans"]["function"]["description"] == "列出全部套餐"
        assert schema["compareTwoPlans"]["function"]["parameters"]["required"] == ["planName1", "planName2"]


class TestExecute:

    def test_unknown_tool(self, store):
        result = ToolRegistry.execute("nope", {})
        assert result.success is False
        assert result.error["code"] == ErrorCode.TOOL_NOT_FOUND.value

    def test_success_with_timing(self, store):
        result = ToolRegistry.execute("getPlanDetails", {"planName": "128套餐"})
        assert result.success is True
        assert result.data["plan"]["name"] == "5G畅享套餐128元档"
        assert result.elapsed_ms >= 0

    def test_unexpected_arguments_dropped(self, store):
        result = ToolRegistry.execute("queryAllPlans", {"verbose": True})
        assert result.success is True
        assert result.data["count"] == 4

    def test_tool_error_is_structured(self, store):
        result = ToolRegistry.execute("getPlanDetails", {"planName": "火星套餐"})
        assert result.success is False
        assert result.payload() == {"success": False, "error": result.error}
        assert result.error["code"] == ErrorCode.TOOL_EXECUTION_FAILED.value


class TestBuiltinTools:

    def test_find_plan_by_alias_and_name(self):
        assert find_plan("宝藏卡")["name"] == "花卡宝藏版59元"
        assert find_plan("全家享套餐288元")["aliases"][0] == "288套餐"
        assert find_plan("不存在") is None

    def test_query_all_plans(self):
        result = query_all_plans()
        assert result["success"] is True
        assert [p["name"] for p in result["plans"]][0] == "5G畅享套餐128元档"

    def test_get_plan_details_requires_name(self):
        assert get_plan_details("")["error"]["code"] == ErrorCode.VALIDATION_MISSING_PARAM.value

    def test_compare_reports_missing(self):
        result = compare_two_plans("128套餐", "火星套餐")
        assert result["success"] is True
        assert list(result["plans"]) == ["5G畅享套餐128元档"]
        assert result["missing"] == ["火星套餐"]

    def test_faq_exact_and_containment(self):
        assert query_faq("投诉")["answer"].startswith("很抱歉")
        assert query_faq("我想查询话费余额")["intent"] == "查询话费"
        assert query_faq("天气")["success"] is False

    def test_time_by_city(self):
        result = get_current_time_by_city("Shanghai")
        assert result["success"] is True
        assert result["timezone"] == "Asia/Shanghai"
        assert get_current_time_by_city("亚特兰蒂斯")["success"] is False


class TestToolDispatcher:

    def test_native_call_with_string_arguments(self):
        requests = ToolDispatcher().parse_tool_calls(
            [{"id": "c1", "function": {"name": "getPlanDetails", "arguments": '{"planName": "198套餐"}'}}]
        )
        assert len(requests) == 1
        assert requests[0].arguments == {"planName": "198套餐"}
        assert requests[0].raw_arguments == '{"planName": "198套餐"}'
        assert requests[0].call_id == "c1"

    def test_undecodable_arguments_kept_verbatim(self):
        request = ToolRequest.from_call({"function": {"name": "getPlanDetails", "arguments": "{planName: 198"}})
        assert request.arguments == {}
        assert request.raw_arguments == "{planName: 198"

    def test_inline_json_call(self):
        content = '好的 {"name": "queryAllPlans", "arguments": {}}'
        requests = ToolDispatcher().parse_tool_calls([], content)
        assert [r.name for r in requests] == ["queryAllPlans"]

    def test_plain_text_has_no_call(self):
        assert ToolDispatcher().parse_tool_calls(None, "您好，有什么可以帮您？") == []

    def test_select_first_enabled_only(self, store):
        dispatcher = ToolDispatcher()
        requests = [ToolRequest("queryAllPlans"), ToolRequest("webSearch")]
        assert dispatcher.select(requests, store.snapshot()).name == "queryAllPlans"

    def test_select_ignores_disabled_and_unknown(self, store):
        store.set_tool_enabled("queryAllPlans", False)
        dispatcher = ToolDispatcher()
        assert dispatcher.select([ToolRequest("queryAllPlans")], store.snapshot()) is None
        assert dispatcher.select([ToolRequest("launchRocket")], store.snapshot()) is None
        assert dispatcher.select([], store.snapshot()) is None

    def test_execute_records_elapsed(self, store):
        result = asyncio.run(ToolDispatcher().execute(ToolRequest("queryMcpFaq", {"intent": "投诉"})))
        assert result.success is True
        assert result.elapsed_ms >= 0
        assert json.dumps(result.payload(), ensure_ascii=False)

    def test_execute_timeout_is_structured(self):
        class SlowRegistry:
            @staticmethod
            def execute(name, args):
                time.sleep(0.5)

        dispatcher = ToolDispatcher(registry=SlowRegistry, timeout=0.05)
        result = asyncio.run(dispatcher.execute(ToolRequest("slow")))
        assert result.success is False
        assert result.error["code"] == ErrorCode.TOOL_TIMEOUT.value
        assert result.elapsed_ms >= 40


class TestToolDefinition:

    def test_parameters_summary(self):
        tool = ToolDefinition(
            name="demo",
            description="demo",
            parameters={"b": {"description": "第二"}, "a": {"description": "第一"}},
            required_params=["a"],
            executor=lambda a, b=None: {"success": True},
            category=ToolCategory.CATALOG,
        )
        assert tool.parameters_summary() == "a (必填): 第一\nb (选填): 第二"
