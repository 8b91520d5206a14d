"""
Model Gateway - bounded, timed calls to the language model.

Every pipeline stage (classifier, main reply, tool follow-up) goes through
ModelGateway.invoke(), which:
- runs the blocking SDK call in an executor under asyncio.wait_for
- measures wall-clock latency in milliseconds
- retries transient transport errors with exponential backoff
- fails fast through a circuit breaker while the endpoint is down
- raises LLMError with distinct codes for timeout vs malformed response
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from config import runtime_config
from errors import LLMError
from logging_config import log_llm

logger = logging.getLogger(__name__)

RETRY_BASE_DELAY = 1.0  # seconds

_PERMANENT_ERROR_PATTERNS = [
    "model not found",
    "does not exist",
    "invalid model",
    "invalid api key",
    "incorrect api key",
]

_TRANSIENT_ERROR_PATTERNS = [
    "connection refused",
    "connection reset",
    "connection error",
    "temporarily unavailable",
    "rate limit",
    "502",
    "503",
]


def is_retryable_error(error: Exception) -> bool:
    """Check if error is transient and worth retrying (not permanent failures)."""
    error_str = str(error).lower()
    if any(p in error_str for p in _PERMANENT_ERROR_PATTERNS):
        return False
    return any(p in error_str for p in _TRANSIENT_ERROR_PATTERNS)


def elapsed_ms(start: float) -> float:
    """Milliseconds since a perf_counter() start, at microsecond resolution."""
    return round((time.perf_counter() - start) * 1000.0, 3)


class _CircuitBreaker:
    """Prevents cascading failures when the model endpoint is down."""

    def __init__(self, failure_threshold: int = 5, recovery_timeout: float = 30):
        self.failures = 0
        self.threshold = failure_threshold
        self.timeout = recovery_timeout
        self.last_failure_time = 0.0
        self.state = "closed"  # closed, open, half_open

    def is_open(self) -> bool:
        if self.state == "open":
            if time.time() - self.last_failure_time > self.timeout:
                self.state = "half_open"
                return False
            return True
        return False

    def record_success(self) -> None:
        self.failures = 0
        self.state = "closed"

    def record_failure(self) -> None:
        self.failures += 1
        self.last_failure_time = time.time()
        if self.failures >= self.threshold:
            if self.state != "open":
                logger.error("Circuit breaker OPEN - model endpoint unavailable")
            self.state = "open"


@dataclass
class GatewayResult:
    """Outcome of one model call."""

    text: str
    elapsed_ms: float
    model: str
    tool_calls: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def has_tool_calls(self) -> bool:
        return bool(self.tool_calls)


class ModelGateway:
    """Async facade over LLMClient used by every pipeline stage."""

    def __init__(self, client, config=None):
        """
        Args:
            client: LLMClient (anything exposing .chat(model, messages, tools, options))
            config: RuntimeConfig supplying timeouts and retry settings
        """
        self.client = client
        self.config = config or runtime_config
        self.breaker = _CircuitBreaker(
            failure_threshold=self.config.llm_circuit_threshold,
            recovery_timeout=self.config.llm_circuit_cooldown,
        )

    async def invoke(
        self,
        model: str,
        system_prompt: Optional[str],
        messages: List[Dict[str, Any]],
        params=None,
        tools: Optional[List[Dict]] = None,
        timeout: Optional[float] = None,
        stage: str = "",
    ) -> GatewayResult:
        """Call the model once and time it.

        Args:
            model: Model name
            system_prompt: Prepended as a system message when non-empty
            messages: Conversation context (user/assistant/tool dicts)
            params: ModelParameters (or None for endpoint defaults)
            tools: OpenAI tool schemas offered to the model
            timeout: Per-call bound in seconds (defaults to runtime config)
            stage: Pipeline stage name used in logs

        Raises:
            LLMError: timeout (LLM_TIMEOUT), malformed response
                (LLM_RESPONSE_INVALID), open circuit or transport failure
        """
        timeout = timeout or self.config.llm_timeout

        if self.breaker.is_open():
            raise LLMError(
                message=f"Model endpoint temporarily unavailable (circuit open, retrying in {self.breaker.timeout:.0f}s)",
                error_type="circuit_open",
                model=model,
            )

        full_messages = []
        if system_prompt:
            full_messages.append({"role": "system", "content": system_prompt})
        full_messages.extend(messages)
        options = params.to_options() if params is not None else {}

        loop = asyncio.get_running_loop()
        max_retries = self.config.llm_max_retries

        for attempt in range(max_retries + 1):
            if attempt > 0:
                delay = RETRY_BASE_DELAY * (2 ** (attempt - 1))
                logger.info(f"Retry {attempt}/{max_retries} for {model} after {delay:.1f}s")
                await asyncio.sleep(delay)

            log_llm(logger, "start", model=model, stage=stage)
            start = time.perf_counter()

            try:
                response = await asyncio.wait_for(
                    loop.run_in_executor(
                        None, lambda: self.client.chat(model, full_messages, tools=tools, options=options)
                    ),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                duration = elapsed_ms(start)
                logger.warning(f"Model call timed out after {duration:.0f}ms (limit={timeout}s, model={model})")
                self.breaker.record_failure()
                raise LLMError(
                    message=f"Model response timed out after {timeout}s",
                    error_type="timeout",
                    model=model,
                    stage=stage,
                ) from None
            except LLMError:
                self.breaker.record_failure()
                raise
            except Exception as e:
                self.breaker.record_failure()
                if is_retryable_error(e) and attempt < max_retries:
                    logger.warning(f"Retryable error on {model}: {e}")
                    continue
                raise LLMError(
                    message="Model endpoint call failed",
                    details=str(e),
                    model=model,
                    stage=stage,
                ) from e

            duration = elapsed_ms(start)
            self.breaker.record_success()
            log_llm(logger, "end", model=model, duration=duration, stage=stage)
            return self._to_result(response, model, duration)

        raise LLMError(message="Model call failed after retries", model=model, stage=stage)

    @staticmethod
    def _to_result(response: Any, model: str, duration: float) -> GatewayResult:
        if not isinstance(response, dict) or not isinstance(response.get("message"), dict):
            raise LLMError("Malformed model response", error_type="invalid", model=model)

        message = response["message"]
        content = message.get("content") or ""
        if not isinstance(content, str):
            raise LLMError("Model content is not text", error_type="invalid", model=model)

        return GatewayResult(
            text=content,
            elapsed_ms=duration,
            model=response.get("model") or model,
            tool_calls=list(message.get("tool_calls") or []),
        )
