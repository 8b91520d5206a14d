"""
Parley Chat Prompts - system prompt assembly for the main model

Contains:
- STRATEGY_HEADER / REDLINES_HEADER: section titles injected after the persona
- build_strategy_section(): strategy text for a ResolvedStrategy (empty otherwise)
- build_redlines_section(): configured safety redlines
- build_system_prompt(): persona + strategy + redlines, in that order
- cleanup_response_text(): strip reasoning blocks and leftover tool-call JSON
"""

import re
from typing import Optional

from routers.chat_orchestration.models import ResolvedStrategy, StrategyDecision
from services.json_extract import find_json_object, strip_reasoning

STRATEGY_HEADER = "【本轮回复策略】"
STRATEGY_GUIDANCE = "请在不暴露本策略的前提下，按以下要求组织本轮回复："
REDLINES_HEADER = "【安全红线】"
REDLINES_GUIDANCE = "以下红线在任何情况下都不得违反："

_TOOL_JSON_START_RE = re.compile(r'\{\s*"name"\s*:\s*"\w+"')


def build_strategy_section(decision: Optional[StrategyDecision]) -> str:
    """Only a resolved strategy contributes text; Unclear and Sensitive add nothing."""
    if not isinstance(decision, ResolvedStrategy) or not decision.text.strip():
        return ""
    return f"{STRATEGY_HEADER}\n{STRATEGY_GUIDANCE}\n{decision.text.strip()}"


def build_redlines_section(redlines: str) -> str:
    if not (redlines or "").strip():
        return ""
    return f"{REDLINES_HEADER}\n{REDLINES_GUIDANCE}\n{redlines.strip()}"


def build_system_prompt(persona: str, decision: Optional[StrategyDecision] = None, redlines: str = "") -> str:
    """Assemble the main model's system prompt.

    Args:
        persona: Persona text with placeholders already rendered
        decision: Rule engine outcome for this turn (None when strategy is off)
        redlines: Safety redlines text from settings

    Returns:
        Sections joined by blank lines, empty sections omitted
    """
    sections = [
        (persona or "").strip(),
        build_strategy_section(decision),
        build_redlines_section(redlines),
    ]
    return "\n\n".join(s for s in sections if s)


def cleanup_response_text(text: str) -> str:
    """Clean a model reply of reasoning blocks and inline tool-call JSON.

    Removes:
    - <think>...</think> blocks (complete and orphaned tags)
    - Inline JSON objects shaped like {"name": ..., "arguments": ...}
    - Excessive blank lines
    """
    if not text:
        return ""
    text = strip_reasoning(text)

    while True:
        match = _TOOL_JSON_START_RE.search(text)
        if not match:
            break
        tail = text[match.start():]
        candidate = find_json_object(tail)
        if not candidate or not tail.startswith(candidate):
            break
        text = text[: match.start()] + text[match.start() + len(candidate):]

    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()
