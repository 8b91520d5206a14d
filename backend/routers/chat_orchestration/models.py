"""
Parley pipeline data model.

Plain dataclasses shared by the classifier, rule engine, tool orchestrator,
workflow tracker and turn coordinator. HTTP-facing dicts use the camelCase
field names the admin/chat UI reads; everything internal is snake_case.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from errors import RuleValidationError

SENTINEL_UNCLEAR = "intent unclear"
SENTINEL_SENSITIVE = "sensitive"


# =============================================================================
# MODEL PARAMETERS
# =============================================================================


@dataclass(frozen=True)
class ModelParameters:
    """Per-stage generation parameters stored as JSON in the settings."""

    model_name: str
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None
    repetition_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None
    frequency_penalty: Optional[float] = None

    _FIELDS = (
        ("model_name", "modelName"),
        ("temperature", "temperature"),
        ("top_p", "topP"),
        ("max_tokens", "maxTokens"),
        ("repetition_penalty", "repetitionPenalty"),
        ("presence_penalty", "presencePenalty"),
        ("frequency_penalty", "frequencyPenalty"),
    )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelParameters":
        """Build from the stored camelCase JSON (snake_case also accepted)."""
        kwargs = {}
        for attr, camel in cls._FIELDS:
            value = data.get(camel, data.get(attr))
            if value is not None:
                kwargs[attr] = value
        if not kwargs.get("model_name"):
            raise ValueError("modelName is required")
        if "max_tokens" in kwargs:
            kwargs["max_tokens"] = int(kwargs["max_tokens"])
        for attr in ("temperature", "top_p", "repetition_penalty", "presence_penalty", "frequency_penalty"):
            if attr in kwargs:
                kwargs[attr] = float(kwargs[attr])
        return cls(**kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {camel: getattr(self, attr) for attr, camel in self._FIELDS if getattr(self, attr) is not None}

    def to_options(self) -> Dict[str, Any]:
        """Generation options understood by LLMClient.chat()."""
        return {
            attr: getattr(self, attr)
            for attr, _ in self._FIELDS
            if attr != "model_name" and getattr(self, attr) is not None
        }


# =============================================================================
# RULES AND CLASSIFIER OUTPUT
# =============================================================================


@dataclass(frozen=True)
class Rule:
    """A decision rule mapping (intent, emotion) to a strategy key.

    Negative ids are unsaved client-side drafts and are never persisted as
    an update.
    """

    id: int
    priority: int
    trigger_intent: str
    trigger_emotion: Optional[str]
    strategy_key: str
    description: str = ""

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Rule":
        """Validate a stored rule row.

        Raises:
            RuleValidationError: missing/blank intent or strategy key, or a
                non-integer id/priority
        """
        rule_id = row.get("id")
        try:
            rule_id = int(rule_id)
        except (TypeError, ValueError):
            raise RuleValidationError("Rule id is not an integer", rule_id=rule_id, field="id") from None

        priority = row.get("priority")
        if isinstance(priority, bool) or priority is None:
            raise RuleValidationError("Rule priority is missing", rule_id=rule_id, field="priority")
        try:
            priority = int(priority)
        except (TypeError, ValueError):
            raise RuleValidationError(
                "Rule priority is not an integer", rule_id=rule_id, field="priority"
            ) from None

        intent = row.get("triggerIntent")
        if not isinstance(intent, str) or not intent.strip():
            raise RuleValidationError("Rule has no trigger intent", rule_id=rule_id, field="triggerIntent")

        strategy_key = row.get("strategyKey")
        if not isinstance(strategy_key, str) or not strategy_key.strip():
            raise RuleValidationError("Rule has no strategy key", rule_id=rule_id, field="strategyKey")

        emotion = row.get("triggerEmotion")
        if emotion is not None and not isinstance(emotion, str):
            raise RuleValidationError("Rule emotion is not text", rule_id=rule_id, field="triggerEmotion")
        emotion = emotion.strip() if emotion else None

        return cls(
            id=rule_id,
            priority=priority,
            trigger_intent=intent.strip(),
            trigger_emotion=emotion or None,
            strategy_key=strategy_key.strip(),
            description=str(row.get("description") or ""),
        )

    def sort_key(self) -> tuple:
        """Priority desc, then emotion-specific before generic, then id asc."""
        return (-self.priority, 0 if self.trigger_emotion else 1, self.id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "priority": self.priority,
            "triggerIntent": self.trigger_intent,
            "triggerEmotion": self.trigger_emotion,
            "strategyKey": self.strategy_key,
            "description": self.description,
        }


@dataclass(frozen=True)
class ClassifierResult:
    intent: str = ""
    emotion: Optional[str] = None
    is_sensitive: bool = False

    @property
    def is_unclear(self) -> bool:
        return not self.intent


UNCLEAR_RESULT = ClassifierResult()


# =============================================================================
# STRATEGY DECISION (tagged variant)
# =============================================================================


@dataclass(frozen=True)
class ResolvedStrategy:
    text: str
    rule_id: Optional[int] = None
    strategy_key: Optional[str] = None

    @property
    def label(self) -> str:
        return self.text


@dataclass(frozen=True)
class Unclear:
    @property
    def label(self) -> str:
        return SENTINEL_UNCLEAR


@dataclass(frozen=True)
class Sensitive:
    @property
    def label(self) -> str:
        return SENTINEL_SENSITIVE


StrategyDecision = Union[ResolvedStrategy, Unclear, Sensitive]

UNCLEAR = Unclear()
SENSITIVE = Sensitive()


# =============================================================================
# TURN RECORDS
# =============================================================================


@dataclass(frozen=True)
class DecisionProcess:
    """What happened during pre-processing for one turn."""

    pre_processing_model: str
    pre_processing_time_ms: float
    detected_intent: str
    detected_emotion: Optional[str]
    is_sensitive: bool
    selected_strategy: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "preProcessingModel": self.pre_processing_model,
            "preProcessingTimeMs": self.pre_processing_time_ms,
            "detectedIntent": self.detected_intent,
            "detectedEmotion": self.detected_emotion,
            "isSensitive": self.is_sensitive,
            "selectedStrategy": self.selected_strategy,
        }


@dataclass(frozen=True)
class ToolCallRecord:
    """Latency breakdown of a tool-assisted reply.

    The total is always derived from the three recorded durations.
    """

    tool_name: str
    tool_args: str
    tool_result: str
    llm_first_call_time: float
    tool_execution_time: float
    llm_second_call_time: float

    @property
    def total_time(self) -> float:
        return self.llm_first_call_time + self.tool_execution_time + self.llm_second_call_time

    def to_dict(self) -> Dict[str, Any]:
        return {
            "toolName": self.tool_name,
            "toolArgs": self.tool_args,
            "toolResult": self.tool_result,
            "llmFirstCallTime": self.llm_first_call_time,
            "toolExecutionTime": self.tool_execution_time,
            "llmSecondCallTime": self.llm_second_call_time,
            "totalTime": self.total_time,
        }


class ProcessStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


@dataclass
class WorkflowState:
    """Ordered process status plus the rendered persona for the UI."""

    process_status: Dict[str, ProcessStatus] = field(default_factory=dict)
    persona: str = ""
    opening_monologue: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processStatus": {name: status.value for name, status in self.process_status.items()},
            "persona": self.persona,
            "openingMonologue": self.opening_monologue,
        }


@dataclass
class TurnResult:
    reply: str
    ui_state: WorkflowState
    decision_process: Optional[DecisionProcess] = None
    tool_call: Optional[ToolCallRecord] = None
    failed: bool = False
    tools_offered: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reply": self.reply,
            "decisionProcess": self.decision_process.to_dict() if self.decision_process else None,
            "toolCall": self.tool_call.to_dict() if self.tool_call else None,
            "uiState": self.ui_state.to_dict(),
        }
