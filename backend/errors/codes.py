"""
Error codes for the Parley decision pipeline.

Codes are grouped by the pipeline stage that raises them so a log line or
an API error body can be traced back to its source at a glance.
"""

from enum import Enum


class ErrorCode(str, Enum):
    """Standardized error codes for Parley.

    Categories:
    - CLASSIFIER_*: Pre-processing classifier failures (recovered locally)
    - RULE_*: Malformed decision rules or strategy cards
    - TOOL_*: Tool lookup and execution failures
    - LLM_*: Model gateway failures
    - CONFIG_*: Configuration store failures
    - SESSION_*: Per-session turn coordination
    - VALIDATION_*: Input validation errors
    - NOT_FOUND_*: Resource not found errors
    - INTERNAL_*: Internal/unexpected errors
    """

    # Classifier (degrades to unclear intent)
    CLASSIFIER_PARSE_FAILED = "CLASSIFIER_PARSE_FAILED"
    CLASSIFIER_UNAVAILABLE = "CLASSIFIER_UNAVAILABLE"

    # Rules and strategy cards
    RULE_INVALID = "RULE_INVALID"
    RULE_STRATEGY_MISSING = "RULE_STRATEGY_MISSING"

    # Tools
    TOOL_NOT_FOUND = "TOOL_NOT_FOUND"
    TOOL_DISABLED = "TOOL_DISABLED"
    TOOL_EXECUTION_FAILED = "TOOL_EXECUTION_FAILED"
    TOOL_TIMEOUT = "TOOL_TIMEOUT"
    TOOL_BAD_ARGUMENTS = "TOOL_BAD_ARGUMENTS"

    # Model gateway
    LLM_UNAVAILABLE = "LLM_UNAVAILABLE"
    LLM_TIMEOUT = "LLM_TIMEOUT"
    LLM_RESPONSE_INVALID = "LLM_RESPONSE_INVALID"
    LLM_CIRCUIT_OPEN = "LLM_CIRCUIT_OPEN"

    # Configuration store
    CONFIG_READ_FAILED = "CONFIG_READ_FAILED"
    CONFIG_WRITE_FAILED = "CONFIG_WRITE_FAILED"

    # Sessions
    SESSION_BUSY = "SESSION_BUSY"

    # Validation errors (input checking)
    VALIDATION_MISSING_PARAM = "VALIDATION_MISSING_PARAM"
    VALIDATION_INVALID_TYPE = "VALIDATION_INVALID_TYPE"
    VALIDATION_OUT_OF_RANGE = "VALIDATION_OUT_OF_RANGE"
    VALIDATION_INVALID_FORMAT = "VALIDATION_INVALID_FORMAT"

    # Not found errors (missing resources)
    NOT_FOUND_RULE = "NOT_FOUND_RULE"
    NOT_FOUND_STRATEGY = "NOT_FOUND_STRATEGY"
    NOT_FOUND_TOOL = "NOT_FOUND_TOOL"
    NOT_FOUND_SETTING = "NOT_FOUND_SETTING"

    # Internal errors (unexpected failures)
    INTERNAL_UNEXPECTED = "INTERNAL_UNEXPECTED"
