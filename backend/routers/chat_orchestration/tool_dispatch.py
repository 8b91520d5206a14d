"""
Parley Tool Dispatcher - tool call parsing, gating and execution.

Handles:
- Native tool_calls from the model response
- Inline JSON tool calls ({"name": ..., "arguments": {...}}) from models
  without native function calling
- Gating against the per-turn enabled catalog
- Bounded, timed execution through the ToolRegistry
"""

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from config import runtime_config
from errors import ToolExecutionError, error_response
from logging_config import log_tool
from services.json_extract import extract_json_object
from tools.registry import ToolRegistry, ToolResult

logger = logging.getLogger(__name__)

_INLINE_CALL_RE = re.compile(r'\{\s*"name"\s*:\s*"(\w+)"')


@dataclass
class ToolRequest:
    """One tool call requested by the model."""

    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    raw_arguments: str = "{}"
    call_id: str = "call_0"

    @classmethod
    def from_call(cls, call: Dict[str, Any], index: int = 0) -> "ToolRequest":
        fn = call.get("function", call)
        args = fn.get("arguments", {})
        if isinstance(args, dict):
            raw = json.dumps(args, ensure_ascii=False)
        elif isinstance(args, str):
            raw = args
            try:
                decoded = json.loads(args) if args.strip() else {}
            except json.JSONDecodeError:
                decoded = None
            if not isinstance(decoded, dict):
                logger.warning(f"Undecodable arguments for {fn.get('name')}: {args!r}")
                decoded = {}
            args = decoded
        else:
            raw = json.dumps(args, ensure_ascii=False, default=str)
            args = {}
        return cls(
            name=str(fn.get("name") or ""),
            arguments=args,
            raw_arguments=raw,
            call_id=call.get("id") or f"call_{index}",
        )

    def as_assistant_call(self) -> Dict[str, Any]:
        """Shape used in the assistant message echoed to the follow-up call."""
        return {"id": self.call_id, "function": {"name": self.name, "arguments": self.raw_arguments}}


class ToolDispatcher:
    """Parses, gates and executes tool calls."""

    def __init__(self, registry=ToolRegistry, timeout: Optional[float] = None):
        """
        Args:
            registry: ToolRegistry class (or a compatible object)
            timeout: Per-execution bound in seconds (None = runtime config)
        """
        self.registry = registry
        self.timeout = timeout

    def parse_tool_calls(self, tool_calls: Optional[List[Dict]], content: str = "") -> List[ToolRequest]:
        """Native tool calls first, then an inline JSON call in the content."""
        if tool_calls:
            logger.debug(f"Found {len(tool_calls)} native tool calls")
            return [ToolRequest.from_call(tc, i) for i, tc in enumerate(tool_calls)]

        if content and _INLINE_CALL_RE.search(content):
            parsed = extract_json_object(content)
            if parsed and isinstance(parsed.get("name"), str):
                arguments = parsed.get("arguments", parsed.get("parameters", {}))
                logger.debug(f"Parsed inline tool call: {parsed['name']}")
                return [ToolRequest.from_call({"function": {"name": parsed["name"], "arguments": arguments}})]
        return []

    def select(self, requests: List[ToolRequest], settings) -> Optional[ToolRequest]:
        """The request to execute this turn, or None.

        Only the first request is considered. A disabled or unknown tool
        counts as no request at all.
        """
        if not requests:
            return None
        if len(requests) > 1:
            logger.info(f"Model requested {len(requests)} tools; only '{requests[0].name}' is executed")
        request = requests[0]
        if not self.registry.is_enabled(request.name, settings):
            known = self.registry.get_tool(request.name) is not None
            logger.warning(
                f"Ignoring tool call to {'disabled' if known else 'unknown'} tool: {request.name!r}"
            )
            return None
        return request

    async def execute(self, request: ToolRequest) -> ToolResult:
        """Run one tool with a bounded timeout. Never raises."""
        timeout = self.timeout or runtime_config.tool_timeout
        log_tool(logger, request.name, "start", args=request.raw_arguments[:120])
        loop = asyncio.get_running_loop()
        start = time.perf_counter()

        try:
            result = await asyncio.wait_for(
                loop.run_in_executor(None, lambda: self.registry.execute(request.name, request.arguments)),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            err = ToolExecutionError(
                f"Tool timed out after {timeout}s", tool=request.name, error_type="timeout"
            )
            result = ToolResult(success=False, data={}, error=error_response(err, tool=request.name)["error"])

        result.elapsed_ms = round((time.perf_counter() - start) * 1000.0, 3)
        log_tool(
            logger,
            request.name,
            "end",
            success=result.success,
            elapsed=f"{result.elapsed_ms:.0f}ms",
        )
        return result
