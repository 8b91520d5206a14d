"""
Tests for the model gateway (timing, timeouts, retries, circuit breaker) and
the OpenAI response translation in LLMClient.
"""

import asyncio
import time
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from config import RuntimeConfig
from errors import ErrorCode, LLMError
from routers.chat_orchestration.models import ModelParameters
from services.llm_client import LLMClient
from services.model_gateway import ModelGateway, is_retryable_error


def _config(**overrides):
    values = {"llm_timeout": 5, "llm_max_retries": 2, "llm_circuit_threshold": 5, "llm_circuit_cooldown": 30}
    values.update(overrides)
    return RuntimeConfig(**values)


def _reply(content="好的", tool_calls=None, model="qwen-max"):
    message = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = tool_calls
    return {"message": message, "model": model}


def _invoke(gateway, **kwargs):
    kwargs.setdefault("model", "qwen-max")
    kwargs.setdefault("system_prompt", "你是顾问")
    kwargs.setdefault("messages", [{"role": "user", "content": "你好"}])
    return asyncio.run(gateway.invoke(**kwargs))


class TestInvoke:

    def test_success_is_timed(self):
        client = MagicMock()
        client.chat.return_value = _reply("您好")
        result = _invoke(ModelGateway(client, _config()), params=ModelParameters("qwen-max", temperature=0.2))

        assert result.text == "您好"
        assert result.model == "qwen-max"
        assert result.elapsed_ms >= 0
        assert result.elapsed_ms == round(result.elapsed_ms, 3)

        model, messages = client.chat.call_args.args
        assert model == "qwen-max"
        assert messages[0] == {"role": "system", "content": "你是顾问"}
        assert client.chat.call_args.kwargs["options"] == {"temperature": 0.2}

    def test_tool_calls_passed_through(self):
        client = MagicMock()
        call = {"id": "c1", "function": {"name": "queryAllPlans", "arguments": {}}}
        client.chat.return_value = _reply("", tool_calls=[call])
        result = _invoke(ModelGateway(client, _config()))
        assert result.has_tool_calls
        assert result.tool_calls == [call]

    def test_timeout_is_distinct(self):
        client = MagicMock()
        client.chat.side_effect = lambda *a, **k: time.sleep(0.3)
        with pytest.raises(LLMError) as exc:
            _invoke(ModelGateway(client, _config()), timeout=0.05)
        assert exc.value.code == ErrorCode.LLM_TIMEOUT
        assert exc.value.is_timeout

    def test_malformed_response_is_invalid(self):
        client = MagicMock()
        client.chat.return_value = {"unexpected": True}
        with pytest.raises(LLMError) as exc:
            _invoke(ModelGateway(client, _config()))
        assert exc.value.code == ErrorCode.LLM_RESPONSE_INVALID

    def test_transient_errors_retried(self):
        client = MagicMock()
        client.chat.side_effect = [ConnectionError("Connection refused"), _reply("终于好了")]
        with patch("services.model_gateway.RETRY_BASE_DELAY", 0):
            result = _invoke(ModelGateway(client, _config()))
        assert result.text == "终于好了"
        assert client.chat.call_count == 2

    def test_permanent_errors_not_retried(self):
        client = MagicMock()
        client.chat.side_effect = RuntimeError("model not found")
        with pytest.raises(LLMError) as exc:
            _invoke(ModelGateway(client, _config()))
        assert exc.value.code == ErrorCode.LLM_UNAVAILABLE
        assert client.chat.call_count == 1

    def test_circuit_opens_after_failures(self):
        client = MagicMock()
        client.chat.side_effect = RuntimeError("boom")
        gateway = ModelGateway(client, _config(llm_circuit_threshold=2))

        for _ in range(2):
            with pytest.raises(LLMError):
                _invoke(gateway)
        with pytest.raises(LLMError) as exc:
            _invoke(gateway)

        assert exc.value.code == ErrorCode.LLM_CIRCUIT_OPEN
        assert client.chat.call_count == 2

    def test_retryable_classification(self):
        assert is_retryable_error(Exception("503 Service Unavailable"))
        assert not is_retryable_error(Exception("Invalid API key"))
        assert not is_retryable_error(Exception("division by zero"))


class TestLLMClientTranslation:

    def _client(self, message, model="qwen-plus"):
        client = LLMClient("http://localhost:1234/v1/")
        client._openai = MagicMock()
        client._openai.chat.completions.create.return_value = SimpleNamespace(
            choices=[SimpleNamespace(message=message)], model=model
        )
        return client

    def test_thinking_split_from_content(self):
        message = SimpleNamespace(content="<think>先想想</think>您好！", tool_calls=None)
        result = self._client(message).chat("qwen-plus", [{"role": "user", "content": "你好"}])
        assert result["message"]["content"] == "您好！"
        assert result["message"]["thinking"] == "先想想"
        assert result["model"] == "qwen-plus"

    def test_tool_call_arguments_decoded(self):
        tc = SimpleNamespace(id="c9", function=SimpleNamespace(name="getPlanDetails", arguments='{"planName": "128套餐"}'))
        message = SimpleNamespace(content=None, tool_calls=[tc])
        result = self._client(message).chat("qwen-plus", [])
        assert result["message"]["tool_calls"] == [
            {"function": {"name": "getPlanDetails", "arguments": {"planName": "128套餐"}}, "id": "c9"}
        ]

    def test_options_forwarded(self):
        message = SimpleNamespace(content="好", tool_calls=None)
        client = self._client(message)
        client.chat("qwen-plus", [], options={"temperature": 0.5, "max_tokens": 64, "repetition_penalty": 1.1})
        kwargs = client._openai.chat.completions.create.call_args.kwargs
        assert kwargs["temperature"] == 0.5
        assert kwargs["max_tokens"] == 64
        assert kwargs["extra_body"] == {"repetition_penalty": 1.1}

    def test_no_choices_is_invalid(self):
        client = LLMClient("http://localhost:1234/v1")
        client._openai = MagicMock()
        client._openai.chat.completions.create.return_value = SimpleNamespace(choices=[], model="x")
        with pytest.raises(LLMError) as exc:
            client.chat("x", [])
        assert exc.value.code == ErrorCode.LLM_RESPONSE_INVALID
