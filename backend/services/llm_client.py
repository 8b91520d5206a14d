"""
LLM Client - wraps the OpenAI SDK to talk to any OpenAI-compatible endpoint
(DashScope/Qwen, Doubao, a local llama-server, ...).

Response format:
    {"message": {"content": "...", "thinking": "...", "tool_calls": [...]},
     "model": "..."}

Key translations:
- Thinking: <think>...</think> inline tags → separate "thinking" field
- Tool calls: OpenAI objects → simplified dicts, arguments kept raw when undecodable
- Options: max_tokens/top_p/temperature plus the optional penalty knobs
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

import httpx
from openai import OpenAI

from errors.exceptions import LLMError

logger = logging.getLogger(__name__)

_THINK_PATTERN = re.compile(r"<think>(.*?)</think>", re.DOTALL)

# Options forwarded as-is to chat.completions.create
_DIRECT_OPTIONS = ("temperature", "top_p", "max_tokens", "presence_penalty", "frequency_penalty")


def _translate_messages_for_openai(messages: List[Dict]) -> List[Dict]:
    """Translate internal message format to OpenAI API format."""
    translated = []
    for msg in messages:
        role = msg.get("role", "user")
        content = msg.get("content", "")

        if role == "tool":
            translated.append({
                "role": "tool",
                "content": content if isinstance(content, str) else json.dumps(content, ensure_ascii=False),
                "tool_call_id": msg.get("tool_call_id", "call_0"),
            })
            continue

        new_msg = {"role": role, "content": content}

        # Forward tool_calls from assistant messages
        if role == "assistant" and msg.get("tool_calls"):
            openai_tool_calls = []
            for i, tc in enumerate(msg["tool_calls"]):
                fn = tc.get("function", tc)
                arguments = fn.get("arguments", "{}")
                openai_tool_calls.append({
                    "id": tc.get("id") or f"call_{i}",
                    "type": "function",
                    "function": {
                        "name": fn.get("name", ""),
                        "arguments": (
                            json.dumps(arguments, ensure_ascii=False)
                            if isinstance(arguments, dict)
                            else arguments
                        ),
                    },
                })
            new_msg["tool_calls"] = openai_tool_calls
            # OpenAI requires content to be None when tool_calls present
            if not content:
                new_msg["content"] = None

        translated.append(new_msg)

    return translated


def _extract_thinking(content: str) -> tuple:
    """Split <think>...</think> blocks out of content.

    Returns:
        (clean_content, thinking_text)
    """
    if not content:
        return "", ""
    thinking = "\n".join(_THINK_PATTERN.findall(content)).strip()
    clean = _THINK_PATTERN.sub("", content).strip()
    return clean, thinking


def _translate_tool_calls_from_openai(message) -> Optional[List[Dict]]:
    """Translate OpenAI tool call objects to simplified dicts.

    OpenAI: message.tool_calls[i].function.{name, arguments(str)}
    Internal: [{"id": ..., "function": {"name": ..., "arguments": dict | str}}]

    Arguments that fail to decode are passed through as the raw string so the
    caller can record exactly what the model sent.
    """
    if not getattr(message, "tool_calls", None):
        return None

    result = []
    for tc in message.tool_calls:
        raw_args = tc.function.arguments
        try:
            args = json.loads(raw_args) if raw_args else {}
        except json.JSONDecodeError:
            logger.warning(f"Failed to parse tool call arguments: {raw_args}")
            args = raw_args

        result.append({
            "function": {
                "name": tc.function.name,
                "arguments": args,
            },
            "id": tc.id,
        })

    return result or None


class LLMClient:
    """Wraps the OpenAI SDK pointing at an OpenAI-compatible server."""

    def __init__(self, base_url: str, api_key: str = "", timeout: float = 180.0):
        """
        Args:
            base_url: API base URL including the version path
                (e.g. "https://dashscope.aliyuncs.com/compatible-mode/v1")
            api_key: Bearer token; local servers accept any value
            timeout: Transport-level request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._openai = OpenAI(
            base_url=self.base_url,
            api_key=api_key or "not-needed",
            timeout=timeout,
            max_retries=0,  # retries are handled by the gateway
        )

    def is_healthy(self, timeout: float = 3.0) -> bool:
        """Cheap reachability probe against the /models listing."""
        try:
            resp = httpx.get(f"{self.base_url}/models", timeout=timeout)
            return resp.status_code < 500
        except httpx.HTTPError:
            return False

    def chat(
        self,
        model: str,
        messages: List[Dict],
        tools: Optional[List[Dict]] = None,
        options: Optional[Dict] = None,
    ) -> Dict[str, Any]:
        """Call the chat completions endpoint (non-streaming).

        Args:
            model: Model name as known by the endpoint
            messages: List of internal message dicts
            tools: OpenAI-format tool definitions
            options: Generation options (temperature, top_p, max_tokens,
                presence_penalty, frequency_penalty, repetition_penalty)

        Returns:
            dict with "message" and "model" keys

        Raises:
            LLMError: response carried no choices
        """
        options = options or {}
        kwargs: Dict[str, Any] = {
            "model": model or "default",
            "messages": _translate_messages_for_openai(messages),
        }

        for key in _DIRECT_OPTIONS:
            if options.get(key) is not None:
                kwargs[key] = options[key]
        # Not part of the OpenAI schema; DashScope and llama-server read it from the body
        if options.get("repetition_penalty") is not None:
            kwargs["extra_body"] = {"repetition_penalty": options["repetition_penalty"]}

        if tools:
            kwargs["tools"] = tools

        response = self._openai.chat.completions.create(stream=False, **kwargs)

        if not getattr(response, "choices", None):
            raise LLMError("Model returned no choices", error_type="invalid", model=model)

        message = response.choices[0].message
        content, thinking = _extract_thinking(message.content or "")
        tool_calls = _translate_tool_calls_from_openai(message)

        result = {
            "message": {
                "role": "assistant",
                "content": content,
            },
            "model": getattr(response, "model", None) or model,
        }
        if thinking:
            result["message"]["thinking"] = thinking
        if tool_calls:
            result["message"]["tool_calls"] = tool_calls

        return result
