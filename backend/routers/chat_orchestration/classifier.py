"""
Pre-processing Classifier - intent, emotion and sensitivity in one call.

One Model Gateway call with the configured pre-processing prompt plus a
fixed output contract. The reply must contain a single JSON object:

    {"intent": "比较套餐", "emotion": "困惑", "is_sensitive": false}

Anything else (no object, wrong types, missing keys) is a ClassifierError,
and so is a gateway failure. Both degrade to an unclear, non-sensitive
result so the turn continues without a strategy.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from errors import ClassifierError, LLMError, log_error
from services.config_store import KEY_PRE_MODEL, KEY_PRE_PROMPT, KEY_SAFETY_REDLINES
from services.json_extract import extract_json_object
from .models import ClassifierResult, UNCLEAR_RESULT

logger = logging.getLogger(__name__)

CONTRACT_VERSION = "v1"
MAX_LABEL_LENGTH = 64
CONTEXT_MESSAGES = 4

OUTPUT_CONTRACT = """
### 输出格式 (parser v1)
只输出一个 JSON 对象，不要输出任何解释、前后缀或代码块标记：
{"intent": "<核心意图，无法判断时为空字符串>", "emotion": "<情绪，无法判断时为 null>", "is_sensitive": <true 或 false>}
"""


@dataclass(frozen=True)
class ClassificationOutcome:
    """Classifier result plus what the decision record needs."""

    result: ClassifierResult
    model: str
    elapsed_ms: float
    failed: bool = False
    error_code: Optional[str] = None


def _parse_sensitive(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise ClassifierError("is_sensitive must be a boolean", received=repr(value))


def parse_classifier_output(text: str) -> ClassifierResult:
    """Apply the v1 parsing contract to raw model text.

    Raises:
        ClassifierError: the text does not satisfy the contract
    """
    data = extract_json_object(text)
    if data is None:
        raise ClassifierError("No JSON object in classifier output", raw=text or "")

    intent = data.get("intent")
    if not isinstance(intent, str):
        raise ClassifierError("intent must be a string", raw=text)

    emotion = data.get("emotion")
    if emotion is not None and not isinstance(emotion, str):
        raise ClassifierError("emotion must be a string or null", raw=text)

    if "is_sensitive" not in data:
        raise ClassifierError("is_sensitive is missing", raw=text)
    is_sensitive = _parse_sensitive(data["is_sensitive"])

    intent = intent.strip()[:MAX_LABEL_LENGTH]
    emotion = (emotion or "").strip()[:MAX_LABEL_LENGTH] or None
    return ClassifierResult(intent=intent, emotion=emotion, is_sensitive=is_sensitive)


def build_classifier_prompt(pre_prompt: str, safety_redlines: str = "") -> str:
    parts = [pre_prompt.strip()]
    if safety_redlines.strip():
        parts.append("### 安全红线 (触犯任意一条即 is_sensitive=true)\n" + safety_redlines.strip())
    parts.append(OUTPUT_CONTRACT.strip())
    return "\n\n".join(p for p in parts if p)


def build_classifier_input(message: str, history: List[Dict[str, str]]) -> str:
    recent = [m for m in history if m.get("role") in ("user", "assistant")][-CONTEXT_MESSAGES:]
    if not recent:
        return f"用户输入：{message}"
    lines = [f"{'用户' if m['role'] == 'user' else '客服'}：{m.get('content', '')}" for m in recent]
    return "对话上下文：\n" + "\n".join(lines) + f"\n\n用户输入：{message}"


class PreProcessingClassifier:
    """Runs the classifier call and applies the parsing contract."""

    def __init__(self, gateway, timeout: Optional[float] = None):
        self.gateway = gateway
        self.timeout = timeout

    async def classify(
        self,
        message: str,
        history: List[Dict[str, str]],
        settings,
    ) -> ClassificationOutcome:
        """Classify one user message. Never raises.

        Args:
            message: Current user message
            history: Session transcript (only the tail is sent)
            settings: SettingsSnapshot for this turn
        """
        params = settings.model_params(KEY_PRE_MODEL)
        system_prompt = build_classifier_prompt(settings.get(KEY_PRE_PROMPT), settings.get(KEY_SAFETY_REDLINES))
        user_input = build_classifier_input(message, history)

        start = time.perf_counter()
        try:
            response = await self.gateway.invoke(
                params.model_name,
                system_prompt,
                [{"role": "user", "content": user_input}],
                params=params,
                timeout=self.timeout,
                stage="pre",
            )
            result = parse_classifier_output(response.text)
        except LLMError as e:
            error = ClassifierError(
                "Classifier call failed", details=e.message, transport=True, cause=e.code.value
            )
            log_error(logger, error, context="Classifier", include_traceback=False)
            return self._degraded(params.model_name, start, error)
        except ClassifierError as e:
            log_error(logger, e, context="Classifier", include_traceback=False)
            return self._degraded(params.model_name, start, e)

        if not settings.emotion_enabled:
            result = ClassifierResult(intent=result.intent, emotion=None, is_sensitive=result.is_sensitive)

        return ClassificationOutcome(
            result=result,
            model=response.model or params.model_name,
            elapsed_ms=response.elapsed_ms,
        )

    @staticmethod
    def _degraded(model: str, start: float, error: ClassifierError) -> ClassificationOutcome:
        return ClassificationOutcome(
            result=UNCLEAR_RESULT,
            model=model,
            elapsed_ms=round((time.perf_counter() - start) * 1000.0, 3),
            failed=True,
            error_code=error.code.value,
        )
