"""
JSON extraction from model output.

Small models wrap JSON in prose, code fences or <think> blocks. These helpers
locate the first complete top-level object without attempting repairs:
callers that need a strict contract treat a None result as a failure.

Used by: the pre-processing classifier and inline tool-call detection.
"""

import json
import logging
import re
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

_THINK_RE = re.compile(r"<think>.*?(</think>|$)", re.DOTALL)
_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL)


def strip_reasoning(text: str) -> str:
    """Drop <think> blocks (closed or truncated) and surrounding whitespace."""
    return _THINK_RE.sub("", text or "").strip()


def find_json_object(text: str) -> Optional[str]:
    """
    Return the first balanced {...} span in text, or None.

    Braces inside JSON strings are ignored, so values such as "a}b" do not
    end the object early.
    """
    if not text:
        return None

    fenced = _FENCE_RE.search(text)
    if fenced and "{" in fenced.group(1):
        text = fenced.group(1)

    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            c = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif c == "\\":
                    escaped = True
                elif c == '"':
                    in_string = False
                continue
            if c == '"':
                in_string = True
            elif c == "{":
                depth += 1
            elif c == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        # Unbalanced from this brace; try the next one
        start = text.find("{", start + 1)
    return None


def extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """
    Extract and parse the first JSON object from a model response.

    Returns:
        Parsed dict, or None if no object is present or it does not decode
    """
    candidate = find_json_object(strip_reasoning(text))
    if candidate is None:
        return None
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError as e:
        logger.debug(f"JSON object did not decode: {e}")
        return None
    return parsed if isinstance(parsed, dict) else None
