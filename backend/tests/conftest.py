"""
Shared pytest fixtures for the Parley decision pipeline tests.

The model gateway is replaced by ScriptedGateway, which hands out canned
GatewayResults per stage ("pre" for the classifier, everything else for the
main model) and records every call for assertions.
"""

import json

import pytest

from routers.chat_orchestration.session import SessionRegistry
from services.config_store import ConfigStore
from services.model_gateway import GatewayResult
from tools.registry import ToolRegistry, register_all_tools


def gw_result(text: str = "", tool_calls=None, elapsed_ms: float = 12.5, model: str = "fake-model"):
    """Build a canned GatewayResult."""
    return GatewayResult(text=text, elapsed_ms=elapsed_ms, model=model, tool_calls=tool_calls or [])


def classifier_json(intent: str = "", emotion=None, sensitive: bool = False) -> str:
    """Classifier output in the v1 contract shape."""
    return json.dumps({"intent": intent, "emotion": emotion, "is_sensitive": sensitive}, ensure_ascii=False)


def tool_call(name: str, arguments, call_id: str = "call_0"):
    """A native tool call as LLMClient.chat() reports it."""
    return {"id": call_id, "function": {"name": name, "arguments": arguments}}


class ScriptedGateway:
    """ModelGateway stand-in with per-stage response queues."""

    def __init__(self, pre=None, main=None):
        self.pre = list(pre or [])
        self.main = list(main or [])
        self.calls = []

    async def invoke(self, model, system_prompt, messages, params=None, tools=None, timeout=None, stage=""):
        self.calls.append(
            {
                "model": model,
                "system_prompt": system_prompt,
                "messages": list(messages),
                "tools": tools,
                "stage": stage,
            }
        )
        queue = self.pre if stage == "pre" else self.main
        if not queue:
            raise AssertionError(f"Unexpected gateway call (stage={stage!r})")
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def stage_calls(self, *stages):
        return [c for c in self.calls if c["stage"] in stages]


@pytest.fixture
def store():
    """In-memory ConfigStore seeded with defaults and tool switches."""
    register_all_tools()
    s = ConfigStore(path=None)
    s.seed_tools(ToolRegistry.get_all_tools().values())
    return s


@pytest.fixture
def sessions(store):
    from routers.chat_orchestration.coordinator import workflow_factory

    return SessionRegistry(workflow_factory(store))


@pytest.fixture
def gateway():
    return ScriptedGateway()
