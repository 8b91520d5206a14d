"""
Parley Logging Configuration - Color-Coded Console Logs

Provides:
- ColorFormatter: ANSI color-coded log output
- Helper functions: log_message_in, log_message_out, log_decision, log_tool, log_llm
- setup_logging(): Configure application logging

Usage:
    from logging_config import setup_logging, log_message_in, log_tool
    setup_logging()
    logger = logging.getLogger(__name__)
    log_message_in(logger, "User question", session="abc123")
"""

import logging
import sys

# ANSI color codes
COLORS = {
    "RESET": "\033[0m",
    "BOLD": "\033[1m",
    "DIM": "\033[2m",
    "MSG_IN": "\033[96m",  # Cyan - incoming message
    "MSG_OUT": "\033[92m",  # Green - outgoing reply
    "DECISION": "\033[95m",  # Magenta - classifier/rule decisions
    "TOOL": "\033[93m",  # Yellow - tool calls
    "LLM": "\033[94m",  # Blue - model gateway
    "ERROR": "\033[91m",
    "WARN": "\033[33m",
    "DEBUG": "\033[90m",
}


class ColorFormatter(logging.Formatter):
    """Formatter that colors the level tag and keeps lines compact."""

    LEVEL_COLORS = {
        logging.DEBUG: COLORS["DEBUG"],
        logging.INFO: COLORS["RESET"],
        logging.WARNING: COLORS["WARN"],
        logging.ERROR: COLORS["ERROR"],
        logging.CRITICAL: COLORS["ERROR"] + COLORS["BOLD"],
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, COLORS["RESET"])
        timestamp = self.formatTime(record, "%H:%M:%S")
        level = record.levelname[:4]

        formatted = (
            f"{COLORS['DIM']}{timestamp}{COLORS['RESET']} "
            f"[{color}{level}{COLORS['RESET']}] "
            f"{record.getMessage()}"
        )

        if record.exc_info:
            formatted += "\n" + self.formatException(record.exc_info)

        return formatted


def setup_logging(level: int = logging.INFO) -> None:
    """Configure colored logging for the application."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(ColorFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers = [handler]

    # Quiet noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


# =============================================================================
# COLORED LOG HELPER FUNCTIONS
# =============================================================================


def _ctx(context: dict) -> str:
    return " ".join(f"{k}={v}" for k, v in context.items()) if context else ""


def log_message_in(logger: logging.Logger, message: str, **context) -> None:
    """Log incoming user message.

    Args:
        logger: Logger instance
        message: User message text
        **context: Additional context (session, strategy, workflow, etc.)
    """
    preview = message[:80] + "..." if len(message) > 80 else message
    logger.info(f"{COLORS['MSG_IN']}>>> MESSAGE{COLORS['RESET']} {preview} [{_ctx(context)}]")


def log_message_out(
    logger: logging.Logger,
    tool: str = None,
    strategy: str = None,
    failed: bool = False,
) -> None:
    """Log outgoing reply."""
    status = "FAILED" if failed else "ok"
    logger.info(
        f"{COLORS['MSG_OUT']}<<< REPLY{COLORS['RESET']} "
        f"status={status} tool={tool or 'none'} strategy={strategy or '-'}"
    )


def log_decision(
    logger: logging.Logger,
    intent: str,
    emotion: str = None,
    sensitive: bool = False,
    strategy: str = None,
    elapsed_ms: float = 0,
) -> None:
    """Log the pre-processing outcome for a turn.

    Args:
        logger: Logger instance
        intent: Detected intent ('' when unclear)
        emotion: Detected emotion or None
        sensitive: Whether the classifier flagged the input
        strategy: Selected strategy text or sentinel
        elapsed_ms: Classifier latency in milliseconds
    """
    preview = strategy[:60] + "..." if strategy and len(strategy) > 60 else strategy
    logger.info(
        f"{COLORS['DECISION']}=== DECISION{COLORS['RESET']} "
        f"intent={intent or '?'} emotion={emotion or '-'} sensitive={sensitive} "
        f"strategy={preview or '-'} ({elapsed_ms:.0f}ms)"
    )


def log_tool(
    logger: logging.Logger,
    tool_name: str,
    state: str,
    **context,
) -> None:
    """Log tool execution.

    Args:
        logger: Logger instance
        tool_name: Name of the tool
        state: 'start' or 'end'
        **context: Additional context (args, elapsed, success, etc.)
    """
    ctx = _ctx(context)
    if state == "start":
        logger.info(f"{COLORS['TOOL']}>>> TOOL{COLORS['RESET']} {tool_name} {ctx}")
    else:
        logger.info(f"{COLORS['TOOL']}<<< TOOL{COLORS['RESET']} {tool_name} {ctx}")


def log_llm(
    logger: logging.Logger,
    state: str,
    model: str = "",
    duration: float = 0,
    stage: str = "",
) -> None:
    """Log a model gateway call.

    Args:
        logger: Logger instance
        state: 'start' or 'end'
        model: Model name
        duration: Call duration in milliseconds (for end state)
        stage: Pipeline stage ('pre', 'main', 'followup')
    """
    tag = f"[{stage}] " if stage else ""
    if state == "start":
        logger.info(f"{COLORS['LLM']}>>> LLM{COLORS['RESET']} {tag}calling {model}")
    else:
        logger.info(f"{COLORS['LLM']}<<< LLM{COLORS['RESET']} {tag}{model} completed in {duration:.0f}ms")
