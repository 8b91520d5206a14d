"""
Parley Tool Orchestrator - two-call tool pattern with latency accounting.

States:
    NO_TOOL_REQUESTED -> REPLY_COMPOSED
    NO_TOOL_REQUESTED -> TOOL_REQUESTED -> TOOL_EXECUTED -> REPLY_COMPOSED

1. First call with the enabled tool catalog
2. If the model asked for an enabled tool: execute it (errors become a
   structured payload, never an exception)
3. Second call with the tool result in context -> user-facing reply

A call to a disabled or unknown tool counts as no request. When that call
was the whole reply, the main model is asked once more without tools.

The three durations are recorded as measured; the total is derived.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from errors import LLMError
from routers.chat_prompts import cleanup_response_text
from .models import ToolCallRecord
from .tool_dispatch import ToolDispatcher, ToolRequest

logger = logging.getLogger(__name__)


class OrchestratorState(str, Enum):
    NO_TOOL_REQUESTED = "NO_TOOL_REQUESTED"
    TOOL_REQUESTED = "TOOL_REQUESTED"
    TOOL_EXECUTED = "TOOL_EXECUTED"
    REPLY_COMPOSED = "REPLY_COMPOSED"


@dataclass
class OrchestrationResult:
    reply: str
    model: str
    first_call_ms: float
    tool_call: Optional[ToolCallRecord] = None
    states: List[OrchestratorState] = field(default_factory=list)
    tools_offered: List[str] = field(default_factory=list)


def _tool_result_text(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, ensure_ascii=False, default=str)


class ToolOrchestrator:
    """Runs the main model call and, when requested, one tool round-trip."""

    def __init__(self, gateway, dispatcher: Optional[ToolDispatcher] = None, timeout: Optional[float] = None):
        """
        Args:
            gateway: ModelGateway
            dispatcher: ToolDispatcher (defaults to the global registry)
            timeout: Per model call bound in seconds (None = gateway default)
        """
        self.gateway = gateway
        self.dispatcher = dispatcher or ToolDispatcher()
        self.timeout = timeout

    async def run(
        self,
        system_prompt: str,
        messages: List[Dict[str, Any]],
        settings,
        params,
    ) -> OrchestrationResult:
        """Produce the reply for one turn.

        Args:
            system_prompt: Rendered persona plus strategy/redlines
            messages: Transcript tail ending with the current user message
            settings: SettingsSnapshot for this turn
            params: ModelParameters for the main model

        Raises:
            LLMError: a model call failed or produced no usable reply
        """
        registry = self.dispatcher.registry
        tools_schema = registry.get_tools_schema(settings)
        offered = [t["function"]["name"] for t in tools_schema]
        states = [OrchestratorState.NO_TOOL_REQUESTED]

        first = await self.gateway.invoke(
            params.model_name,
            system_prompt,
            messages,
            params=params,
            tools=tools_schema or None,
            timeout=self.timeout,
            stage="main",
        )

        requests = self.dispatcher.parse_tool_calls(first.tool_calls, first.text)
        request = self.dispatcher.select(requests, settings)

        if request is None:
            reply, model = first.text.strip(), first.model
            if requests:
                reply = cleanup_response_text(reply)
            if requests and not reply:
                # The ignored call was the whole answer; ask again without tools
                logger.info(f"Re-composing reply without tools after ignored call to {requests[0].name!r}")
                direct = await self.gateway.invoke(
                    params.model_name,
                    system_prompt,
                    messages,
                    params=params,
                    timeout=self.timeout,
                    stage="direct",
                )
                reply, model = cleanup_response_text(direct.text), direct.model
            if not reply:
                raise LLMError("Model returned an empty reply", error_type="invalid", model=model)
            states.append(OrchestratorState.REPLY_COMPOSED)
            return OrchestrationResult(
                reply=reply,
                model=model,
                first_call_ms=first.elapsed_ms,
                states=states,
                tools_offered=offered,
            )

        states.append(OrchestratorState.TOOL_REQUESTED)
        result = await self.dispatcher.execute(request)
        states.append(OrchestratorState.TOOL_EXECUTED)
        payload_text = _tool_result_text(result.payload())
        if not result.success:
            logger.warning(f"Tool {request.name} failed, passing error to follow-up call")

        followup_messages = list(messages) + [
            {"role": "assistant", "content": first.text or "", "tool_calls": [request.as_assistant_call()]},
            {"role": "tool", "content": payload_text, "tool_call_id": request.call_id},
        ]
        second = await self.gateway.invoke(
            params.model_name,
            system_prompt,
            followup_messages,
            params=params,
            timeout=self.timeout,
            stage="followup",
        )
        reply = second.text.strip()
        if not reply:
            raise LLMError("Model returned an empty reply after tool call", error_type="invalid", model=second.model)

        states.append(OrchestratorState.REPLY_COMPOSED)
        record = ToolCallRecord(
            tool_name=request.name,
            tool_args=request.raw_arguments,
            tool_result=payload_text,
            llm_first_call_time=first.elapsed_ms,
            tool_execution_time=result.elapsed_ms,
            llm_second_call_time=second.elapsed_ms,
        )
        return OrchestrationResult(
            reply=reply,
            model=second.model,
            first_call_ms=first.elapsed_ms,
            tool_call=record,
            states=states,
            tools_offered=offered,
        )
