"""
Standard error response builders for Parley.

The same envelope is used for HTTP error bodies and for tool results that
get folded back into a model call.
"""

from typing import Any, Optional
from .codes import ErrorCode
from .exceptions import ParleyError


def error_response(error: ParleyError | Exception, tool: Optional[str] = None, include_context: bool = True) -> dict:
    """Build a standard error response dictionary.

    Args:
        error: The exception to convert to a response
        tool: Optional tool name for context
        include_context: Whether to include the context dict (disable for privacy)

    Returns:
        Standard error response dict with success=False

    Example:
        >>> from errors import ToolExecutionError, error_response
        >>> err = ToolExecutionError("Plan not found", tool="getPlanDetails")
        >>> error_response(err, tool="getPlanDetails")["error"]["code"]
        'TOOL_EXECUTION_FAILED'
    """
    if isinstance(error, ParleyError):
        return {
            "success": False,
            "error": {
                "code": error.code.value,
                "message": error.message,
                "details": error.details,
                "tool": tool,
                "recoverable": error.recoverable,
                "context": error.context if include_context else None,
            },
        }

    return {
        "success": False,
        "error": {
            "code": ErrorCode.INTERNAL_UNEXPECTED.value,
            "message": str(error),
            "details": None,
            "tool": tool,
            "recoverable": False,
            "context": None,
        },
    }


def success_response(data: Optional[dict] = None, **kwargs: Any) -> dict:
    """Build a standard success response dictionary.

    >>> success_response(result=42)
    {'success': True, 'result': 42}
    """
    response = {"success": True}

    if data:
        response.update(data)
    if kwargs:
        response.update(kwargs)

    return response
