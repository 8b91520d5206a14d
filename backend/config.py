"""
Runtime Configuration for Parley.

Infrastructure settings (model endpoint, timeouts, storage paths, session
policy) live here. Business settings such as personas, rules and tool
switches live in the configuration store (services.config_store) and are
re-read on every turn.

Usage:
    from config import runtime_config
    timeout = runtime_config.llm_timeout
    runtime_config.update(llm_timeout=30)
"""

import json
import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, List
from threading import Lock

logger = logging.getLogger(__name__)

SESSION_POLICIES = {"queue", "reject"}
SECRET_FIELDS = {"llm_api_key", "market_appcode"}


def _first_env(*keys: str, default: str) -> str:
    """Return the first non-empty environment value from keys, else default."""
    for key in keys:
        value = os.environ.get(key, "").strip()
        if value:
            return value
    return default


def _split_csv(value: str) -> List[str]:
    return [p.strip() for p in value.split(",") if p.strip()]


@dataclass
class RuntimeConfig:
    """
    Singleton configuration for runtime-adjustable parameters.

    All values have defaults from environment variables, but can be
    changed at runtime via the update() method.
    """

    # Model gateway (any OpenAI-compatible endpoint)
    llm_base_url: str = field(
        default_factory=lambda: _first_env(
            "LLM_BASE_URL",
            "OPENAI_BASE_URL",
            default="https://dashscope.aliyuncs.com/compatible-mode/v1",
        )
    )
    llm_api_key: str = field(
        default_factory=lambda: _first_env("LLM_API_KEY", "DASHSCOPE_API_KEY", "OPENAI_API_KEY", default="")
    )
    llm_timeout: float = field(default_factory=lambda: float(os.environ.get("LLM_TIMEOUT", "60")))
    llm_max_retries: int = field(default_factory=lambda: int(os.environ.get("LLM_MAX_RETRIES", "2")))
    llm_circuit_threshold: int = field(default_factory=lambda: int(os.environ.get("LLM_CIRCUIT_THRESHOLD", "5")))
    llm_circuit_cooldown: float = field(
        default_factory=lambda: float(os.environ.get("LLM_CIRCUIT_COOLDOWN", "30"))
    )

    # Tool execution
    tool_timeout: float = field(default_factory=lambda: float(os.environ.get("TOOL_TIMEOUT", "15")))

    # Storage
    config_store_path: str = field(
        default_factory=lambda: os.environ.get("CONFIG_STORE_PATH", "data/config/settings.json")
    )
    history_dir: str = field(default_factory=lambda: os.environ.get("HISTORY_DIR", "data/log"))

    # Sessions
    session_busy_policy: str = field(
        default_factory=lambda: os.environ.get("SESSION_BUSY_POLICY", "queue").strip().lower()
    )
    session_cookie: str = field(default_factory=lambda: os.environ.get("SESSION_COOKIE", "parley_session"))
    max_sessions: int = field(default_factory=lambda: int(os.environ.get("MAX_SESSIONS", "500")))
    max_history_messages: int = field(default_factory=lambda: int(os.environ.get("MAX_HISTORY_MESSAGES", "30")))
    max_message_length: int = field(default_factory=lambda: int(os.environ.get("MAX_MESSAGE_LENGTH", "4000")))

    # Web search tool (SearXNG)
    searxng_url: str = field(
        default_factory=lambda: os.environ.get("SEARXNG_URL", "http://localhost:8080").rstrip("/")
    )
    searxng_timeout_s: float = field(default_factory=lambda: float(os.environ.get("SEARXNG_TIMEOUT_S", "8")))
    searxng_max_results: int = field(default_factory=lambda: int(os.environ.get("SEARXNG_MAX_RESULTS", "5")))

    # Market data tools (Aliyun API marketplace, APPCODE auth)
    market_appcode: str = field(default_factory=lambda: _first_env("ALIYUN_APPCODE", "MARKET_APPCODE", default=""))
    market_timeout_s: float = field(default_factory=lambda: float(os.environ.get("MARKET_TIMEOUT_S", "8")))
    market_cache_ttl_s: float = field(default_factory=lambda: float(os.environ.get("MARKET_CACHE_TTL_S", "600")))

    # HTTP
    cors_origins: str = field(
        default_factory=lambda: os.environ.get("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173")
    )

    # Internal state
    _lock: Lock = field(default_factory=Lock, repr=False, compare=False)
    _update_count: int = field(default=0, repr=False)

    _VALIDATION_RANGES: Dict[str, tuple] = field(default_factory=lambda: {
        "llm_timeout": (1.0, 600.0),
        "llm_max_retries": (0, 5),
        "llm_circuit_threshold": (1, 100),
        "llm_circuit_cooldown": (1.0, 3600.0),
        "tool_timeout": (1.0, 300.0),
        "max_sessions": (1, 100000),
        "max_history_messages": (2, 500),
        "max_message_length": (16, 100000),
        "searxng_timeout_s": (1.0, 60.0),
        "searxng_max_results": (1, 25),
        "market_timeout_s": (1.0, 60.0),
        "market_cache_ttl_s": (0.0, 86400.0),
    })

    def __post_init__(self):
        if self.session_busy_policy not in SESSION_POLICIES:
            logger.warning(f"Unknown SESSION_BUSY_POLICY {self.session_busy_policy!r}, using 'queue'")
            self.session_busy_policy = "queue"

    def update(self, **kwargs) -> Dict[str, Any]:
        """
        Update configuration values at runtime.

        Args:
            **kwargs: Key-value pairs to update (e.g., llm_timeout=30)

        Returns:
            Dict with 'updated' (changed keys) and 'ignored' (unknown or rejected keys)
        """
        updated = []
        ignored = []

        with self._lock:
            for key, value in kwargs.items():
                if key.startswith("_") or not hasattr(self, key):
                    ignored.append(key)
                    logger.warning(f"Config ignored unknown key: {key}")
                    continue

                if key in {"searxng_url", "llm_base_url"} and isinstance(value, str):
                    cleaned = value.strip()
                    if not cleaned.startswith(("http://", "https://")):
                        ignored.append(key)
                        logger.warning(f"Config rejected invalid URL: {key}={value!r}")
                        continue
                    value = cleaned.rstrip("/")

                if key == "session_busy_policy":
                    value = str(value).strip().lower()
                    if value not in SESSION_POLICIES:
                        ignored.append(key)
                        logger.warning(f"Config rejected {key}={value!r} (must be 'queue' or 'reject')")
                        continue

                if key in self._VALIDATION_RANGES:
                    lo, hi = self._VALIDATION_RANGES[key]
                    if not isinstance(value, (int, float)) or not (lo <= value <= hi):
                        ignored.append(key)
                        logger.warning(f"Config rejected {key}={value} (must be {lo}-{hi})")
                        continue

                old_value = getattr(self, key)
                setattr(self, key, value)
                updated.append(key)
                logger.info(f"Config updated: {key} = {value} (was {old_value})")

            self._update_count += 1

        return {"updated": updated, "ignored": ignored, "update_count": self._update_count}

    def get_cors_origins(self) -> List[str]:
        return _split_csv(self.cors_origins)

    def to_dict(self) -> Dict[str, Any]:
        """Export current config as dict (excludes internal fields and secrets)."""
        from dataclasses import fields as dataclass_fields

        result = {}
        for field_info in dataclass_fields(self):
            if field_info.name.startswith("_") or field_info.name in SECRET_FIELDS:
                continue
            result[field_info.name] = getattr(self, field_info.name)
        return result

    # Config persistence
    _overrides_path: Path = field(
        default_factory=lambda: Path(os.environ.get(
            "CONFIG_OVERRIDES_PATH", "data/config/runtime_overrides.json"
        )),
        repr=False, compare=False,
    )

    def save_overrides(self) -> None:
        """Save non-default values to persistent storage."""
        defaults = RuntimeConfig()
        current = self.to_dict()
        default_dict = defaults.to_dict()
        overrides = {k: v for k, v in current.items() if v != default_dict.get(k)}

        try:
            self._overrides_path.parent.mkdir(parents=True, exist_ok=True)
            self._overrides_path.write_text(
                json.dumps(overrides, indent=2, default=str),
                encoding="utf-8",
            )
            logger.info(f"Config overrides saved: {len(overrides)} values to {self._overrides_path}")
        except OSError as e:
            logger.error(f"Failed to save config overrides: {e}")

    def load_overrides(self) -> Dict[str, Any]:
        """Load overrides from persistent storage. Env vars take precedence."""
        if not self._overrides_path.exists():
            return {}

        try:
            overrides = json.loads(self._overrides_path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load config overrides: {e}")
            return {}
        if not isinstance(overrides, dict):
            return {}

        # Only apply overrides for fields still at their default value
        defaults = RuntimeConfig()
        applied = []

        with self._lock:
            for key, value in overrides.items():
                if key.startswith("_") or not hasattr(self, key):
                    continue
                current = getattr(self, key)
                default = getattr(defaults, key)
                if current == default and value != default:
                    try:
                        setattr(self, key, type(default)(value))
                        applied.append(key)
                    except (ValueError, TypeError):
                        logger.warning(f"Config override type mismatch: {key}={value}")

        if applied:
            logger.info(f"Config overrides loaded: {', '.join(applied)}")
        return {"applied": applied, "total": len(overrides)}


# Singleton instance
runtime_config = RuntimeConfig()

# Load persisted overrides on startup
runtime_config.load_overrides()


def get_config() -> RuntimeConfig:
    """Get the singleton config instance."""
    return runtime_config
