"""
Custom exception hierarchy for Parley.

All exceptions inherit from ParleyError and include:
- code: ErrorCode for categorization
- message: Human-readable error message
- details: Optional additional context
- recoverable: Whether the user can retry/fix the issue
- context: Additional key-value pairs for debugging
"""

from typing import Any, Optional
from .codes import ErrorCode


class ParleyError(Exception):
    """Base exception for all Parley errors.

    Attributes:
        code: The ErrorCode categorizing this error
        message: Human-readable error message
        details: Optional additional context for the user
        recoverable: Whether the error can be resolved by user action
        context: Additional debugging information
    """

    code: ErrorCode = ErrorCode.INTERNAL_UNEXPECTED
    recoverable: bool = False
    status_code: int = 500

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        code: Optional[ErrorCode] = None,
        recoverable: Optional[bool] = None,
        **context: Any,
    ):
        self.message = message
        self.details = details
        self.context = context if context else None

        if code is not None:
            self.code = code
        if recoverable is not None:
            self.recoverable = recoverable

        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message

    def to_dict(self) -> dict:
        """Convert exception to dictionary for JSON serialization."""
        return {
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
            "context": self.context,
        }


class ClassifierError(ParleyError):
    """Pre-processing classifier could not produce a usable result."""

    code = ErrorCode.CLASSIFIER_PARSE_FAILED
    recoverable = True

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        raw: Optional[str] = None,
        transport: bool = False,
        **context: Any,
    ):
        code = ErrorCode.CLASSIFIER_UNAVAILABLE if transport else ErrorCode.CLASSIFIER_PARSE_FAILED
        ctx = {**context}
        if raw is not None:
            ctx["raw"] = raw[:200]
        super().__init__(message, details, code=code, **ctx)


class RuleValidationError(ParleyError):
    """A rule row (or the strategy it points at) is malformed."""

    code = ErrorCode.RULE_INVALID
    recoverable = True
    status_code = 400

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        rule_id: Optional[Any] = None,
        field: Optional[str] = None,
        **context: Any,
    ):
        ctx = {**context}
        if rule_id is not None:
            ctx["rule_id"] = rule_id
        if field:
            ctx["field"] = field
        super().__init__(message, details, **ctx)


class ToolExecutionError(ParleyError):
    """Error while resolving or running a tool."""

    code = ErrorCode.TOOL_EXECUTION_FAILED
    recoverable = True

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        tool: Optional[str] = None,
        error_type: Optional[str] = None,
        **context: Any,
    ):
        if error_type == "not_found":
            code = ErrorCode.TOOL_NOT_FOUND
        elif error_type == "disabled":
            code = ErrorCode.TOOL_DISABLED
        elif error_type == "timeout":
            code = ErrorCode.TOOL_TIMEOUT
        elif error_type == "arguments":
            code = ErrorCode.TOOL_BAD_ARGUMENTS
        else:
            code = ErrorCode.TOOL_EXECUTION_FAILED

        ctx = {**context}
        if tool:
            ctx["tool"] = tool
        super().__init__(message, details, code=code, **ctx)


class LLMError(ParleyError):
    """Error during model gateway calls."""

    code = ErrorCode.LLM_UNAVAILABLE
    recoverable = False
    status_code = 502

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        model: Optional[str] = None,
        error_type: Optional[str] = None,
        **context: Any,
    ):
        if error_type == "timeout":
            code = ErrorCode.LLM_TIMEOUT
        elif error_type == "invalid":
            code = ErrorCode.LLM_RESPONSE_INVALID
        elif error_type == "circuit_open":
            code = ErrorCode.LLM_CIRCUIT_OPEN
        else:
            code = ErrorCode.LLM_UNAVAILABLE

        ctx = {**context}
        if model:
            ctx["model"] = model
        super().__init__(message, details, code=code, **ctx)
        self.error_type = error_type

    @property
    def is_timeout(self) -> bool:
        return self.code == ErrorCode.LLM_TIMEOUT


class ValidationError(ParleyError):
    """Error during input validation."""

    code = ErrorCode.VALIDATION_MISSING_PARAM
    recoverable = True
    status_code = 400

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        parameter: Optional[str] = None,
        expected: Optional[str] = None,
        received: Optional[str] = None,
        **context: Any,
    ):
        ctx = {**context}
        if parameter:
            ctx["parameter"] = parameter
        if expected:
            ctx["expected"] = expected
        if received is not None:
            ctx["received"] = received
        super().__init__(message, details, **ctx)


class NotFoundError(ParleyError):
    """Error when a required resource is not found."""

    code = ErrorCode.NOT_FOUND_RULE
    recoverable = True
    status_code = 404

    def __init__(
        self,
        message: str,
        details: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[Any] = None,
        **context: Any,
    ):
        if resource_type == "strategy":
            code = ErrorCode.NOT_FOUND_STRATEGY
        elif resource_type == "tool":
            code = ErrorCode.NOT_FOUND_TOOL
        elif resource_type == "setting":
            code = ErrorCode.NOT_FOUND_SETTING
        else:
            code = ErrorCode.NOT_FOUND_RULE

        ctx = {**context}
        if resource_type:
            ctx["resource_type"] = resource_type
        if resource_id is not None:
            ctx["resource_id"] = resource_id
        super().__init__(message, details, code=code, **ctx)


class SessionBusyError(ParleyError):
    """A second turn arrived while the session was still handling one."""

    code = ErrorCode.SESSION_BUSY
    recoverable = True
    status_code = 409

    def __init__(self, session_id: str, details: Optional[str] = None, **context: Any):
        super().__init__(
            "Session is busy with another message",
            details or "Wait for the current reply before sending again",
            session_id=session_id,
            **context,
        )
