"""
Error handling decorators and utilities for Parley.

Tool functions are wrapped so that a failure becomes a structured error
payload instead of an exception escaping into the turn.
"""

import logging
from functools import wraps
from typing import Any, Callable, Optional, TypeVar

from .exceptions import ParleyError
from .response import error_response

F = TypeVar("F", bound=Callable[..., Any])


def handle_tool_errors(tool_name: str, logger: Optional[logging.Logger] = None):
    """Decorator that catches exceptions and returns standard error responses.

    Args:
        tool_name: Name of the tool for error response context
        logger: Optional logger instance (defaults to tool-specific logger)

    Example:
        >>> @handle_tool_errors("getPlanDetails")
        ... def get_plan_details(planName):
        ...     raise ToolExecutionError("Unknown plan", tool="getPlanDetails")
        >>> get_plan_details("x")["success"]
        False
    """

    def decorator(func: F) -> F:
        log = logger or logging.getLogger(f"parley.tools.{tool_name}")

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> dict:
            try:
                return func(*args, **kwargs)
            except ParleyError as e:
                log.warning(f"[{tool_name}] {e.code.value}: {e.message}")
                return error_response(e, tool=tool_name)
            except Exception as e:
                log.error(f"[{tool_name}] Unexpected error: {e}", exc_info=True)
                return error_response(e, tool=tool_name)

        return wrapper  # type: ignore

    return decorator


def log_error(
    logger: logging.Logger, error: Exception, context: Optional[str] = None, include_traceback: bool = True
) -> None:
    """Log an error with consistent formatting.

    Example:
        >>> log_error(logger, err, context="Classifier")
        # Logs: "[Classifier] CLASSIFIER_PARSE_FAILED: No JSON object in output"
    """
    if isinstance(error, ParleyError):
        message = f"{error.code.value}: {error.message}"
    else:
        message = str(error)

    if context:
        message = f"[{context}] {message}"

    logger.error(message, exc_info=include_traceback)
