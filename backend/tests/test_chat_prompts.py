"""
Tests for system prompt assembly, reply cleanup and transcript archiving.
"""

from datetime import datetime

from routers.chat_orchestration.models import SENSITIVE, UNCLEAR, ResolvedStrategy
from routers.chat_prompts import (
    REDLINES_HEADER,
    STRATEGY_HEADER,
    build_system_prompt,
    cleanup_response_text,
)
from services.history import TranscriptArchive, render_transcript


class TestBuildSystemPrompt:

    def test_section_order(self):
        prompt = build_system_prompt("你是顾问", ResolvedStrategy("先道歉"), "不许骂人")
        assert prompt.index("你是顾问") < prompt.index(STRATEGY_HEADER) < prompt.index(REDLINES_HEADER)
        assert "先道歉" in prompt

    def test_sentinels_add_no_strategy(self):
        for decision in (None, UNCLEAR, SENSITIVE):
            assert STRATEGY_HEADER not in build_system_prompt("你是顾问", decision, "不许骂人")

    def test_empty_sections_omitted(self):
        assert build_system_prompt("你是顾问", None, "  ") == "你是顾问"


class TestCleanupResponseText:

    def test_strips_reasoning(self):
        assert cleanup_response_text("<think>想一想</think>\n您好！") == "您好！"

    def test_strips_inline_tool_json(self):
        text = '好的，我来查一下。{"name": "queryAllPlans", "arguments": {}}'
        assert cleanup_response_text(text) == "好的，我来查一下。"

    def test_keeps_other_json(self):
        text = '配置示例：{"plan": "128"}'
        assert cleanup_response_text(text) == text

    def test_collapses_blank_lines(self):
        assert cleanup_response_text("第一段\n\n\n\n第二段") == "第一段\n\n第二段"

    def test_empty(self):
        assert cleanup_response_text("") == ""


class TestTranscriptArchive:

    def test_render(self):
        text = render_transcript(
            [{"role": "assistant", "content": "您好"}, {"role": "user", "content": "你好"}],
            datetime(2025, 1, 2, 3, 4, 5),
        )
        assert text.startswith("# Conversation Log - 2025-01-02T03:04:05")
        assert "## 🤖 ASSISTANT\n您好" in text
        assert "## 👤 USER\n你好" in text

    def test_save_writes_file(self, tmp_path):
        path = TranscriptArchive(str(tmp_path / "log")).save("abcdef123456", [{"role": "user", "content": "你好"}])
        assert path.name.endswith("_abcdef12.md")
        assert "你好" in path.read_text(encoding="utf-8")

    def test_empty_transcript_not_written(self, tmp_path):
        assert TranscriptArchive(str(tmp_path)).save("abc", []) is None
        assert list(tmp_path.iterdir()) == []

    def test_write_failure_is_swallowed(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x", encoding="utf-8")
        assert TranscriptArchive(str(blocker)).save("abc", [{"role": "user", "content": "hi"}]) is None
