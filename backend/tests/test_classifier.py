"""
Tests for the pre-processing classifier: v1 parsing contract and degradation.
"""

import asyncio

import pytest

from conftest import ScriptedGateway, classifier_json, gw_result
from errors import ClassifierError, ErrorCode, LLMError
from routers.chat_orchestration.classifier import (
    OUTPUT_CONTRACT,
    PreProcessingClassifier,
    build_classifier_input,
    build_classifier_prompt,
    parse_classifier_output,
)
from routers.chat_orchestration.models import UNCLEAR_RESULT


class TestParseClassifierOutput:

    def test_plain_json(self):
        result = parse_classifier_output('{"intent": "比较套餐", "emotion": "困惑", "is_sensitive": false}')
        assert result.intent == "比较套餐"
        assert result.emotion == "困惑"
        assert result.is_sensitive is False

    def test_fenced_json_with_reasoning(self):
        text = '<think>用户想比较</think>\n```json\n{"intent": "投诉", "emotion": null, "is_sensitive": "true"}\n```'
        result = parse_classifier_output(text)
        assert result.intent == "投诉"
        assert result.emotion is None
        assert result.is_sensitive is True

    def test_blank_emotion_becomes_null(self):
        result = parse_classifier_output('{"intent": "闲聊", "emotion": "  ", "is_sensitive": false}')
        assert result.emotion is None

    def test_labels_bounded(self):
        result = parse_classifier_output(classifier_json("意" * 100, "怒" * 100))
        assert len(result.intent) == 64
        assert len(result.emotion) == 64

    @pytest.mark.parametrize(
        "text",
        [
            "intent: 投诉",
            '{"emotion": null, "is_sensitive": false}',
            '{"intent": 3, "emotion": null, "is_sensitive": false}',
            '{"intent": "投诉", "emotion": ["生气"], "is_sensitive": false}',
            '{"intent": "投诉", "emotion": null}',
            '{"intent": "投诉", "emotion": null, "is_sensitive": "maybe"}',
            "",
        ],
    )
    def test_contract_violations_raise(self, text):
        with pytest.raises(ClassifierError) as exc:
            parse_classifier_output(text)
        assert exc.value.code == ErrorCode.CLASSIFIER_PARSE_FAILED


class TestPromptBuilding:

    def test_prompt_includes_redlines_and_contract(self):
        prompt = build_classifier_prompt("分析意图", "1. 不许骂人")
        assert prompt.startswith("分析意图")
        assert "1. 不许骂人" in prompt
        assert prompt.endswith(OUTPUT_CONTRACT.strip())

    def test_input_uses_recent_context_only(self):
        history = [{"role": "user", "content": f"m{i}"} for i in range(10)]
        text = build_classifier_input("现在呢", history)
        assert "m9" in text and "m6" in text
        assert "m5" not in text
        assert text.endswith("用户输入：现在呢")

    def test_input_without_history(self):
        assert build_classifier_input("你好", []) == "用户输入：你好"


class TestPreProcessingClassifier:

    def test_successful_classification(self, store):
        gateway = ScriptedGateway(pre=[gw_result(classifier_json("投诉", "生气"), elapsed_ms=42.125, model="qwen-turbo")])
        outcome = asyncio.run(PreProcessingClassifier(gateway).classify("太差了", [], store.snapshot()))

        assert outcome.failed is False
        assert outcome.result.intent == "投诉"
        assert outcome.result.emotion == "生气"
        assert outcome.elapsed_ms == 42.125
        assert outcome.model == "qwen-turbo"
        assert gateway.calls[0]["stage"] == "pre"
        assert gateway.calls[0]["model"] == "qwen-turbo"

    def test_emotion_disabled_forces_null(self, store):
        store.save_settings({"enable_emotion_recognition": "false"})
        gateway = ScriptedGateway(pre=[gw_result(classifier_json("投诉", "生气"))])
        outcome = asyncio.run(PreProcessingClassifier(gateway).classify("太差了", [], store.snapshot()))
        assert outcome.result.intent == "投诉"
        assert outcome.result.emotion is None

    def test_parse_failure_degrades(self, store):
        gateway = ScriptedGateway(pre=[gw_result("我觉得用户在投诉")])
        outcome = asyncio.run(PreProcessingClassifier(gateway).classify("太差了", [], store.snapshot()))
        assert outcome.failed is True
        assert outcome.result == UNCLEAR_RESULT
        assert outcome.error_code == ErrorCode.CLASSIFIER_PARSE_FAILED.value

    def test_transport_failure_degrades(self, store):
        gateway = ScriptedGateway(pre=[LLMError("Timed out", error_type="timeout")])
        outcome = asyncio.run(PreProcessingClassifier(gateway).classify("太差了", [], store.snapshot()))
        assert outcome.failed is True
        assert outcome.result.intent == ""
        assert outcome.result.is_sensitive is False
        assert outcome.error_code == ErrorCode.CLASSIFIER_UNAVAILABLE.value
        assert outcome.elapsed_ms >= 0
