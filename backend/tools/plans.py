"""
Telecom plan and FAQ tools.

Catalog data is loaded once from tools/data/telecom.json. Plans are looked up
by alias first, then by full name.
"""

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

from errors import ToolExecutionError, ValidationError, handle_tool_errors, success_response

logger = logging.getLogger(__name__)

CATALOG_PATH = Path(__file__).parent / "data" / "telecom.json"


@lru_cache(maxsize=1)
def load_catalog() -> Dict[str, Any]:
    with open(CATALOG_PATH, "r", encoding="utf-8") as f:
        data = json.load(f)
    logger.info(f"Telecom catalog loaded: {len(data.get('plans', []))} plans, {len(data.get('faq', {}))} FAQ entries")
    return data


def find_plan(name: str) -> Optional[Dict[str, Any]]:
    """Resolve a plan by alias, then by exact name."""
    name = (name or "").strip()
    if not name:
        return None
    plans = load_catalog()["plans"]
    for plan in plans:
        if name in plan.get("aliases", []):
            return plan
    for plan in plans:
        if plan["name"] == name:
            return plan
    return None


def _public(plan: Dict[str, Any]) -> Dict[str, Any]:
    return {"name": plan["name"], "description": plan["description"], "details": plan["details"]}


@handle_tool_errors("queryAllPlans")
def query_all_plans() -> Dict[str, Any]:
    plans: List[Dict[str, Any]] = [
        {"name": p["name"], "description": p["description"], "monthlyFee": p["details"].get("monthlyFee")}
        for p in load_catalog()["plans"]
    ]
    return success_response(plans=plans, count=len(plans))


@handle_tool_errors("getPlanDetails")
def get_plan_details(planName: str = "") -> Dict[str, Any]:
    if not planName:
        raise ValidationError("planName is required", parameter="planName")
    plan = find_plan(planName)
    if plan is None:
        raise ToolExecutionError(
            "Plan not found",
            details=f"没有找到名为 '{planName}' 的套餐",
            tool="getPlanDetails",
        )
    return success_response(plan=_public(plan))


@handle_tool_errors("compareTwoPlans")
def compare_two_plans(planName1: str = "", planName2: str = "") -> Dict[str, Any]:
    """Return both plans keyed by full name; unknown names are reported, not fatal."""
    if not planName1 or not planName2:
        raise ValidationError("Two plan names are required", parameter="planName1/planName2")

    found: Dict[str, Any] = {}
    missing = []
    for requested in (planName1, planName2):
        plan = find_plan(requested)
        if plan is None:
            logger.warning(f"compareTwoPlans: plan not found: {requested}")
            missing.append(requested)
        else:
            found[plan["name"]] = _public(plan)

    if not found:
        raise ToolExecutionError(
            "Neither plan was found",
            details=f"{planName1}, {planName2}",
            tool="compareTwoPlans",
        )
    return success_response(plans=found, missing=missing)


@handle_tool_errors("queryMcpFaq")
def query_faq(intent: str = "") -> Dict[str, Any]:
    intent = (intent or "").strip()
    if not intent:
        raise ValidationError("intent is required", parameter="intent")

    faq = load_catalog()["faq"]
    if intent in faq:
        return success_response(intent=intent, answer=faq[intent])

    # Keyword containment either way ("查询话费余额" -> "查询话费")
    for key, answer in faq.items():
        if key in intent or intent in key:
            return success_response(intent=key, answer=answer)

    raise ToolExecutionError(
        "No FAQ answer",
        details=f"没有找到关于 '{intent}' 的标准回答。",
        tool="queryMcpFaq",
    )
