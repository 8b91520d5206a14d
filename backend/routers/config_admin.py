"""
Parley Configuration Router - admin surface for GlobalSettings, tools, rules
and strategy cards.

Every write goes straight to the ConfigStore; the pipeline reads a fresh
snapshot at the start of each turn, so changes apply from the next turn on.
Workflow (processes/dependencies) changes apply from the next reset.

Runtime (infrastructure) settings are exposed under /runtime and persisted
as overrides.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from config import RuntimeConfig, get_config
from errors import NotFoundError, ValidationError
from services.config_store import TOOL_ENABLE_PREFIX, ConfigStore, get_config_store
from tools.registry import ToolRegistry
from utils.llm import reset_llm_clients

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/config")


class RuleRequest(BaseModel):
    id: Optional[int] = None  # ignored; drafts carry negative ids
    priority: int
    triggerIntent: str
    triggerEmotion: Optional[str] = None
    strategyKey: str
    description: Optional[str] = ""
    isActive: bool = True


class StrategyRequest(BaseModel):
    id: Optional[int] = None
    strategyKey: str
    strategyValue: str
    strategyType: Optional[str] = "PROMPT"
    description: Optional[str] = ""
    isActive: bool = True


class ToolToggleRequest(BaseModel):
    isActive: bool


# =============================================================================
# GLOBAL SETTINGS
# =============================================================================


@router.get("/global-settings")
async def get_global_settings(store: ConfigStore = Depends(get_config_store)) -> Dict[str, str]:
    return store.snapshot().as_dict()


@router.put("/global-settings")
async def put_global_settings(
    values: Dict[str, Any],
    store: ConfigStore = Depends(get_config_store),
) -> Dict[str, Any]:
    saved = await asyncio.to_thread(store.save_settings, values)
    return {"success": True, "updated": sorted(saved)}


@router.put("/global-settings/model/{key}")
async def put_model_params(
    key: str,
    params: Dict[str, Any],
    store: ConfigStore = Depends(get_config_store),
) -> Dict[str, Any]:
    """Replace one stage's model parameters (main/pre/router)."""
    parsed = await asyncio.to_thread(store.save_model_params, key, params)
    return {"success": True, "key": key, "params": parsed.to_dict()}


# =============================================================================
# TOOLS
# =============================================================================


@router.get("/tools")
async def list_tools(store: ConfigStore = Depends(get_config_store)) -> List[Dict[str, Any]]:
    settings = store.snapshot()
    return [
        {
            "name": tool.name,
            "chineseName": tool.chinese_name or tool.name,
            "category": tool.category.value,
            "description": settings.tool_description(tool.name, tool.description),
            "parameters": tool.parameters_summary(),
            "isActive": settings.get_bool(f"{TOOL_ENABLE_PREFIX}{tool.name}"),
        }
        for tool in sorted(ToolRegistry.get_all_tools().values(), key=lambda t: t.name)
    ]


@router.put("/tools/{name}")
async def toggle_tool(
    name: str,
    body: ToolToggleRequest,
    store: ConfigStore = Depends(get_config_store),
) -> Dict[str, Any]:
    if ToolRegistry.get_tool(name) is None:
        raise NotFoundError(f"Tool {name} not found", resource_type="tool", resource_id=name)
    await asyncio.to_thread(store.set_tool_enabled, name, body.isActive)
    logger.info(f"Tool {name} {'enabled' if body.isActive else 'disabled'}")
    return {"success": True, "name": name, "isActive": body.isActive}


# =============================================================================
# RULES
# =============================================================================


@router.get("/rules")
async def list_rules(store: ConfigStore = Depends(get_config_store)) -> List[Dict[str, Any]]:
    return store.list_rules()


@router.post("/rules")
async def create_rule(body: RuleRequest, store: ConfigStore = Depends(get_config_store)) -> Dict[str, Any]:
    return await asyncio.to_thread(store.create_rule, body.model_dump(exclude={"id"}))


@router.put("/rules/{rule_id}")
async def update_rule(
    rule_id: int,
    body: RuleRequest,
    store: ConfigStore = Depends(get_config_store),
) -> Dict[str, Any]:
    return await asyncio.to_thread(store.update_rule, rule_id, body.model_dump(exclude={"id"}))


@router.delete("/rules/{rule_id}")
async def delete_rule(rule_id: int, store: ConfigStore = Depends(get_config_store)) -> Dict[str, Any]:
    await asyncio.to_thread(store.delete_rule, rule_id)
    return {"success": True, "id": rule_id}


# =============================================================================
# STRATEGIES
# =============================================================================


@router.get("/strategies")
async def list_strategies(store: ConfigStore = Depends(get_config_store)) -> List[Dict[str, Any]]:
    return store.list_strategies()


@router.post("/strategies")
async def create_strategy(body: StrategyRequest, store: ConfigStore = Depends(get_config_store)) -> Dict[str, Any]:
    return await asyncio.to_thread(store.create_strategy, body.model_dump(exclude={"id"}))


@router.put("/strategies/{strategy_id}")
async def update_strategy(
    strategy_id: int,
    body: StrategyRequest,
    store: ConfigStore = Depends(get_config_store),
) -> Dict[str, Any]:
    return await asyncio.to_thread(store.update_strategy, strategy_id, body.model_dump(exclude={"id"}))


@router.delete("/strategies/{strategy_id}")
async def delete_strategy(strategy_id: int, store: ConfigStore = Depends(get_config_store)) -> Dict[str, Any]:
    await asyncio.to_thread(store.delete_strategy, strategy_id)
    return {"success": True, "id": strategy_id}


# =============================================================================
# RUNTIME CONFIG
# =============================================================================

_ENDPOINT_KEYS = {"llm_base_url", "llm_api_key", "llm_timeout"}


@router.get("/runtime")
async def get_runtime_config(config: RuntimeConfig = Depends(get_config)) -> Dict[str, Any]:
    return config.to_dict()


@router.put("/runtime")
async def put_runtime_config(
    values: Dict[str, Any],
    config: RuntimeConfig = Depends(get_config),
) -> Dict[str, Any]:
    """Apply runtime overrides; endpoint changes rebuild the LLM client."""
    result = config.update(**values)
    if values and not result["updated"]:
        raise ValidationError(
            "No runtime settings were applied",
            parameter="body",
            received=", ".join(sorted(result["ignored"])),
        )
    await asyncio.to_thread(config.save_overrides)
    if _ENDPOINT_KEYS & set(result["updated"]):
        reset_llm_clients()
    return {"success": True, **result, "config": config.to_dict()}
