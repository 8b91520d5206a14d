"""
Parley Error Handling Module

Standardized error codes, exceptions, and response builders shared by the
decision pipeline, the tool registry and the HTTP layer.

Usage:
    from errors import (
        ErrorCode,
        ParleyError,
        ClassifierError,
        RuleValidationError,
        ToolExecutionError,
        LLMError,
        ValidationError,
        NotFoundError,
        SessionBusyError,
        error_response,
        success_response,
        handle_tool_errors,
        log_error,
    )

Example:
    from errors import handle_tool_errors, success_response, ToolExecutionError

    @handle_tool_errors("getPlanDetails")
    def get_plan_details(planName):
        plan = find_plan(planName)
        if plan is None:
            raise ToolExecutionError(
                "Unknown plan",
                details=f"No plan named {planName!r}",
                tool="getPlanDetails",
            )
        return success_response(plan=plan)
"""

from .codes import ErrorCode
from .exceptions import (
    ParleyError,
    ClassifierError,
    RuleValidationError,
    ToolExecutionError,
    LLMError,
    ValidationError,
    NotFoundError,
    SessionBusyError,
)
from .response import (
    error_response,
    success_response,
)
from .handlers import (
    handle_tool_errors,
    log_error,
)

__all__ = [
    # Error codes
    "ErrorCode",
    # Exceptions
    "ParleyError",
    "ClassifierError",
    "RuleValidationError",
    "ToolExecutionError",
    "LLMError",
    "ValidationError",
    "NotFoundError",
    "SessionBusyError",
    # Response builders
    "error_response",
    "success_response",
    # Decorators
    "handle_tool_errors",
    "log_error",
]
