"""
Configuration Store - business settings, decision rules and strategy cards.

Backed by a single JSON file (written atomically) and guarded by a lock.
The pipeline reads one SettingsSnapshot per turn; admin writes are visible
from the next snapshot on, with no restart.

Usage:
    from services.config_store import get_config_store
    store = get_config_store()
    settings = store.snapshot()
    if settings.strategy_enabled:
        rules = store.list_active_rules()
"""

import json
import logging
import os
import tempfile
from pathlib import Path
from threading import Lock
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional

from config import runtime_config
from errors import (
    ErrorCode,
    NotFoundError,
    ParleyError,
    RuleValidationError,
    ValidationError,
)
from routers.chat_orchestration.models import ModelParameters, Rule

logger = logging.getLogger(__name__)

# Setting keys
KEY_MAIN_MODEL = "main_model_params"
KEY_PRE_MODEL = "pre_model_params"
KEY_ROUTER_MODEL = "router_model_params"
KEY_PERSONA_TEMPLATE = "persona_template"
KEY_OPENING_MONOLOGUE = "opening_monologue"
KEY_PROCESSES = "processes"
KEY_DEPENDENCIES = "dependencies"
KEY_PRE_PROMPT = "pre_processing_prompt"
KEY_SAFETY_REDLINES = "safety_redlines"
KEY_SENSITIVE_RESPONSE = "sensitive_response"
KEY_FALLBACK_RESPONSE = "fallback_response"
KEY_ENABLE_STRATEGY = "enable_strategy"
KEY_ENABLE_EMOTION = "enable_emotion_recognition"
KEY_ENABLE_WORKFLOW = "enable_workflow"
KEY_ENABLE_MCP = "enable_mcp"
TOOL_ENABLE_PREFIX = "enable_tool_"
TOOL_DESCRIPTION_PREFIX = "tool_description_"

MODEL_PARAM_KEYS = (KEY_MAIN_MODEL, KEY_PRE_MODEL, KEY_ROUTER_MODEL)

DEFAULT_SENSITIVE_RESPONSE = "我们换个话题吧。"
DEFAULT_FALLBACK_RESPONSE = "抱歉，系统响应超时了，请稍后再试一次。"

DEFAULT_MODEL_PARAMS = {
    KEY_MAIN_MODEL: {"modelName": "qwen3-next-80b-a3b-instruct", "temperature": 0.7, "topP": 0.8, "maxTokens": 2048},
    KEY_PRE_MODEL: {"modelName": "qwen-turbo", "temperature": 0.1, "topP": 0.7, "maxTokens": 512},
    KEY_ROUTER_MODEL: {"modelName": "qwen-turbo", "temperature": 0.1, "topP": 0.7, "maxTokens": 512},
}

DEFAULT_PERSONA = """你是一名专业的电信业务顾问，语气热情、专业，像真人一样自然地交流。
请遵循以下原则：
1. 始终保持礼貌，回答简洁明了，不堆砌技术术语。
2. 从工具获得数据后，用自己的话组织成自然语言，不要直接输出 JSON。
3. 完成某个明确的沟通环节后，回复中必须包含短语 '我已完成流程[流程名]' 来推进流程。
当前可执行的任务有：{tasks}。完整工作流参考：{workflow}。
4. 当前用户的打断状态是 '{code}'。如果是 '已触发'，请立即停止长篇介绍，友好地回应用户，例如 '好的，您请说'。"""

DEFAULT_SAFETY_REDLINES = """1. 严禁辱骂或嘲讽客户。
2. 严禁承诺具体的退款金额或赔偿金额。
3. 涉及政治、暴力、色情话题直接拒绝。
4. 遇到无法回答的问题，请引导客户转人工。"""

DEFAULT_PROCESSES = """1. 询问客户具体需求
2. 确认客户身份信息
3. 根据需求介绍对应业务
4. 询问是否还需要其他帮助
5. 礼貌结束对话"""

DEFAULT_PRE_PROMPT = """你是一个智能意图分析助手。你的任务是分析用户输入的核心意图、情绪和敏感词。
- intent: 用户的核心意图 (如: 闲聊, 投诉, 比较套餐, 查询FAQ, 联网搜索, 查询数据)。
- emotion: 用户情绪 (高兴, 生气, 困惑, 中性)。
- is_sensitive: 是否包含辱骂、色情等敏感词 (true/false)。
你不需要做工具调用判断，那是另一个模型的工作。"""

DEFAULT_SETTINGS: Dict[str, str] = {
    KEY_OPENING_MONOLOGUE: "您好，我是您的智能业务助理，请问有什么可以帮您？",
    KEY_PERSONA_TEMPLATE: DEFAULT_PERSONA,
    KEY_SAFETY_REDLINES: DEFAULT_SAFETY_REDLINES,
    KEY_PROCESSES: DEFAULT_PROCESSES,
    KEY_DEPENDENCIES: "",
    KEY_PRE_PROMPT: DEFAULT_PRE_PROMPT,
    KEY_SENSITIVE_RESPONSE: DEFAULT_SENSITIVE_RESPONSE,
    KEY_FALLBACK_RESPONSE: DEFAULT_FALLBACK_RESPONSE,
    KEY_ENABLE_STRATEGY: "true",
    KEY_ENABLE_EMOTION: "true",
    KEY_ENABLE_WORKFLOW: "true",
    KEY_ENABLE_MCP: "true",
    **{key: json.dumps(value, ensure_ascii=False) for key, value in DEFAULT_MODEL_PARAMS.items()},
}


def parse_bool(value: Any) -> bool:
    """Settings booleans are the strings 'true'/'false'; anything else is false."""
    if isinstance(value, bool):
        return value
    return isinstance(value, str) and value.strip().lower() == "true"


def split_lines(value: str) -> List[str]:
    return [line.strip() for line in (value or "").splitlines() if line.strip()]


class SettingsSnapshot:
    """Immutable view of GlobalSettings taken once per turn."""

    def __init__(self, values: Mapping[str, str]):
        self._values = MappingProxyType(dict(values))

    def get(self, key: str, default: str = "") -> str:
        value = self._values.get(key)
        return default if value is None else value

    def get_bool(self, key: str) -> bool:
        return parse_bool(self._values.get(key))

    def as_dict(self) -> Dict[str, str]:
        return dict(self._values)

    def model_params(self, key: str) -> ModelParameters:
        """Decode a *_model_params setting, falling back to the seeded default."""
        raw = self._values.get(key)
        if raw:
            try:
                return ModelParameters.from_dict(json.loads(raw))
            except (ValueError, TypeError, AttributeError) as e:
                logger.warning(f"Invalid {key} setting, using default: {e}")
        return ModelParameters.from_dict(DEFAULT_MODEL_PARAMS[key])

    @property
    def strategy_enabled(self) -> bool:
        return self.get_bool(KEY_ENABLE_STRATEGY)

    @property
    def emotion_enabled(self) -> bool:
        return self.get_bool(KEY_ENABLE_EMOTION)

    @property
    def workflow_enabled(self) -> bool:
        return self.get_bool(KEY_ENABLE_WORKFLOW)

    @property
    def tools_enabled(self) -> bool:
        return self.get_bool(KEY_ENABLE_MCP)

    def tool_enabled(self, name: str) -> bool:
        return self.tools_enabled and self.get_bool(f"{TOOL_ENABLE_PREFIX}{name}")

    def tool_description(self, name: str, default: str) -> str:
        return self.get(f"{TOOL_DESCRIPTION_PREFIX}{name}") or default

    @property
    def processes(self) -> List[str]:
        return split_lines(self.get(KEY_PROCESSES))

    @property
    def sensitive_response(self) -> str:
        return self.get(KEY_SENSITIVE_RESPONSE) or DEFAULT_SENSITIVE_RESPONSE

    @property
    def fallback_response(self) -> str:
        return self.get(KEY_FALLBACK_RESPONSE) or DEFAULT_FALLBACK_RESPONSE


def _validate_strategy(row: Dict[str, Any]) -> Dict[str, Any]:
    key = row.get("strategyKey")
    if not isinstance(key, str) or not key.strip():
        raise ValidationError("Strategy key is required", parameter="strategyKey")
    value = row.get("strategyValue")
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Strategy text is required", parameter="strategyValue")
    return {
        "strategyKey": key.strip(),
        "strategyValue": value,
        "strategyType": str(row.get("strategyType") or "PROMPT"),
        "description": str(row.get("description") or ""),
        "isActive": parse_bool(row.get("isActive", True)),
    }


def _validate_rule_input(row: Dict[str, Any], rule_id: int) -> Dict[str, Any]:
    """Normalize an admin-submitted rule row, raising RuleValidationError."""
    candidate = {**row, "id": rule_id}
    rule = Rule.from_row(candidate)
    stored = rule.to_dict()
    stored["isActive"] = parse_bool(row.get("isActive", True))
    return stored


class ConfigStore:
    """Thread-safe JSON-backed store for settings, rules and strategies."""

    def __init__(self, path: Optional[str] = None, seed: bool = True):
        """
        Args:
            path: JSON file path; None keeps everything in memory
            seed: Insert DEFAULT_SETTINGS keys that are missing
        """
        self.path = Path(path) if path else None
        self._lock = Lock()
        self._data: Dict[str, Any] = {"settings": {}, "rules": [], "strategies": [], "next_ids": {}}
        self._load()
        if seed:
            self.seed_defaults(DEFAULT_SETTINGS)

    # ------------------------------------------------------------------
    # persistence
    # ------------------------------------------------------------------

    def _load(self) -> None:
        if not self.path or not self.path.exists():
            return
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise ParleyError(
                "Configuration store is unreadable",
                details=str(e),
                code=ErrorCode.CONFIG_READ_FAILED,
                path=str(self.path),
            ) from e
        if isinstance(data, dict):
            for key in self._data:
                if isinstance(data.get(key), type(self._data[key])):
                    self._data[key] = data[key]
        logger.info(
            f"Config store loaded: {len(self._data['settings'])} settings, "
            f"{len(self._data['rules'])} rules, {len(self._data['strategies'])} strategies"
        )

    def _flush(self) -> None:
        """Write the store atomically. Caller holds the lock."""
        if not self.path:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=".settings-", suffix=".json")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f, ensure_ascii=False, indent=2)
            os.replace(tmp, self.path)
        except OSError as e:
            raise ParleyError(
                "Failed to persist configuration",
                details=str(e),
                code=ErrorCode.CONFIG_WRITE_FAILED,
                path=str(self.path),
            ) from e

    def _next_id(self, table: str) -> int:
        rows = self._data[table]
        current = max([r.get("id", 0) for r in rows if isinstance(r.get("id"), int)] + [0])
        next_id = max(current, self._data["next_ids"].get(table, 0)) + 1
        self._data["next_ids"][table] = next_id
        return next_id

    # ------------------------------------------------------------------
    # settings
    # ------------------------------------------------------------------

    def seed_defaults(self, defaults: Mapping[str, str]) -> List[str]:
        """Insert keys that are absent; existing values are never overwritten."""
        added = []
        with self._lock:
            settings = self._data["settings"]
            for key, value in defaults.items():
                if key not in settings:
                    settings[key] = value
                    added.append(key)
            if added:
                self._flush()
        for key in added:
            logger.info(f"Seeded setting: {key}")
        return added

    def seed_tools(self, tools: Iterable[Any]) -> List[str]:
        """Seed enable switch and description for each registered tool."""
        defaults = {}
        for tool in tools:
            defaults[f"{TOOL_ENABLE_PREFIX}{tool.name}"] = "true"
            defaults[f"{TOOL_DESCRIPTION_PREFIX}{tool.name}"] = tool.description
        return self.seed_defaults(defaults)

    def snapshot(self) -> SettingsSnapshot:
        with self._lock:
            return SettingsSnapshot(self._data["settings"])

    def get_setting(self, key: str, default: Optional[str] = None) -> Optional[str]:
        with self._lock:
            return self._data["settings"].get(key, default)

    def save_settings(self, values: Mapping[str, Any]) -> Dict[str, str]:
        """Upsert each key. Non-string values are stored as JSON/text."""
        cleaned = {}
        for key, value in values.items():
            if not isinstance(key, str) or not key.strip():
                raise ValidationError("Setting key must be a non-empty string", parameter="key")
            if isinstance(value, bool):
                value = "true" if value else "false"
            elif isinstance(value, (dict, list)):
                value = json.dumps(value, ensure_ascii=False)
            elif value is None:
                value = ""
            cleaned[key.strip()] = str(value)

        for key in MODEL_PARAM_KEYS:
            if key in cleaned:
                self._check_model_params(key, cleaned[key])

        with self._lock:
            self._data["settings"].update(cleaned)
            self._flush()
        logger.info(f"Settings saved: {', '.join(sorted(cleaned)) or 'none'}")
        return cleaned

    @staticmethod
    def _check_model_params(key: str, raw: str) -> ModelParameters:
        try:
            return ModelParameters.from_dict(json.loads(raw))
        except (ValueError, TypeError, AttributeError) as e:
            raise ValidationError(
                "Invalid model parameters",
                details=str(e),
                parameter=key,
                expected="JSON object with modelName",
                code=ErrorCode.VALIDATION_INVALID_TYPE,
            ) from e

    def save_model_params(self, key: str, params: Mapping[str, Any]) -> ModelParameters:
        """Replace one stage's model parameters (main/pre/router only)."""
        if key not in MODEL_PARAM_KEYS:
            raise ValidationError(
                "Unknown model parameter key",
                parameter="key",
                expected=", ".join(MODEL_PARAM_KEYS),
                received=key,
            )
        try:
            parsed = ModelParameters.from_dict(dict(params))
        except (ValueError, TypeError) as e:
            raise ValidationError(
                "Invalid model parameters",
                details=str(e),
                parameter=key,
                code=ErrorCode.VALIDATION_INVALID_TYPE,
            ) from e
        with self._lock:
            self._data["settings"][key] = json.dumps(parsed.to_dict(), ensure_ascii=False)
            self._flush()
        logger.info(f"Model parameters saved: {key} -> {parsed.model_name}")
        return parsed

    def set_tool_enabled(self, name: str, enabled: bool) -> None:
        self.save_settings({f"{TOOL_ENABLE_PREFIX}{name}": enabled})

    # ------------------------------------------------------------------
    # rules
    # ------------------------------------------------------------------

    def list_rules(self) -> List[Dict[str, Any]]:
        """Raw rule rows as stored, in id order."""
        with self._lock:
            rows = [dict(r) for r in self._data["rules"]]
        return sorted(rows, key=lambda r: r.get("id") if isinstance(r.get("id"), int) else 0)

    def list_active_rules(self) -> List[Rule]:
        """Validated active rules, freshly sorted by priority/specificity/id.

        Malformed rows are logged and skipped.
        """
        rules = []
        for row in self.list_rules():
            if not parse_bool(row.get("isActive", True)):
                continue
            try:
                rules.append(Rule.from_row(row))
            except RuleValidationError as e:
                logger.warning(f"Skipping rule {row.get('id')!r}: {e}")
        rules.sort(key=Rule.sort_key)
        return rules

    def create_rule(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        """Insert a rule. Any client-supplied id (including drafts) is discarded."""
        stored = _validate_rule_input(dict(row), 0)
        with self._lock:
            rule_id = self._next_id("rules")
            stored["id"] = rule_id
            self._data["rules"].append(stored)
            self._flush()
        logger.info(f"Rule created: id={rule_id} intent={stored['triggerIntent']}")
        return stored

    def update_rule(self, rule_id: int, row: Mapping[str, Any]) -> Dict[str, Any]:
        if rule_id < 0:
            raise ValidationError(
                "Draft rules must be created, not updated",
                parameter="id",
                received=str(rule_id),
            )
        with self._lock:
            index = self._index_of("rules", rule_id)
            if index is None:
                raise NotFoundError(f"Rule {rule_id} not found", resource_type="rule", resource_id=rule_id)
            stored = _validate_rule_input(dict(row), rule_id)
            self._data["rules"][index] = stored
            self._flush()
        logger.info(f"Rule updated: id={rule_id}")
        return stored

    def delete_rule(self, rule_id: int) -> None:
        with self._lock:
            index = self._index_of("rules", rule_id)
            if index is None:
                raise NotFoundError(f"Rule {rule_id} not found", resource_type="rule", resource_id=rule_id)
            del self._data["rules"][index]
            self._flush()
        logger.info(f"Rule deleted: id={rule_id}")

    # ------------------------------------------------------------------
    # strategies
    # ------------------------------------------------------------------

    def list_strategies(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(s) for s in self._data["strategies"]]

    def active_strategies(self) -> Dict[str, str]:
        """strategyKey -> strategyValue for active cards."""
        with self._lock:
            return {
                s["strategyKey"]: s["strategyValue"]
                for s in self._data["strategies"]
                if parse_bool(s.get("isActive", True)) and s.get("strategyKey") and s.get("strategyValue")
            }

    def create_strategy(self, row: Mapping[str, Any]) -> Dict[str, Any]:
        stored = _validate_strategy(dict(row))
        with self._lock:
            self._check_unique_key(stored["strategyKey"])
            stored = {"id": self._next_id("strategies"), **stored}
            self._data["strategies"].append(stored)
            self._flush()
        logger.info(f"Strategy created: {stored['strategyKey']}")
        return stored

    def update_strategy(self, strategy_id: int, row: Mapping[str, Any]) -> Dict[str, Any]:
        stored = _validate_strategy(dict(row))
        with self._lock:
            index = self._index_of("strategies", strategy_id)
            if index is None:
                raise NotFoundError(
                    f"Strategy {strategy_id} not found", resource_type="strategy", resource_id=strategy_id
                )
            self._check_unique_key(stored["strategyKey"], exclude_id=strategy_id)
            stored = {"id": strategy_id, **stored}
            self._data["strategies"][index] = stored
            self._flush()
        logger.info(f"Strategy updated: {stored['strategyKey']}")
        return stored

    def delete_strategy(self, strategy_id: int) -> None:
        with self._lock:
            index = self._index_of("strategies", strategy_id)
            if index is None:
                raise NotFoundError(
                    f"Strategy {strategy_id} not found", resource_type="strategy", resource_id=strategy_id
                )
            del self._data["strategies"][index]
            self._flush()
        logger.info(f"Strategy deleted: id={strategy_id}")

    # ------------------------------------------------------------------

    def _index_of(self, table: str, row_id: int) -> Optional[int]:
        for i, row in enumerate(self._data[table]):
            if row.get("id") == row_id:
                return i
        return None

    def _check_unique_key(self, key: str, exclude_id: Optional[int] = None) -> None:
        for s in self._data["strategies"]:
            if s.get("strategyKey") == key and s.get("id") != exclude_id:
                raise ValidationError(
                    "Strategy key already exists",
                    parameter="strategyKey",
                    received=key,
                    code=ErrorCode.VALIDATION_INVALID_FORMAT,
                )


_store: Optional[ConfigStore] = None


def get_config_store() -> ConfigStore:
    """Get the process-wide ConfigStore, created on first use."""
    global _store
    if _store is None:
        _store = ConfigStore(runtime_config.config_store_path)
    return _store


def set_config_store(store: Optional[ConfigStore]) -> None:
    """Swap the process-wide store (tests, alternate backends)."""
    global _store
    _store = store
