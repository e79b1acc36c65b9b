"""
Logger Utility
==============

Console logging for the orchestration engine.

Every component creates its own context logger so that a single agent run
can be traced across the budgeter, the provider adapter and the tool
executor:

    [2026-10-19T10:30:00] [INFO] [Agent] Iteration 3/20
    [2026-10-19T10:30:01] [INFO] [ToolExecutor] Executing tool: read_file

Usage:
    from atelier.utils.logger import Logger, logger

    logger.info("Engine started")

    agent_logger = Logger("Agent")
    agent_logger.debug("Request built", {"messages": 4, "tools": 5})

The audit trail of tool invocations is a separate channel, see
atelier.utils.audit.
"""

import json
import os
import sys
from datetime import datetime
from enum import IntEnum
from typing import Any


class LogLevel(IntEnum):
    """Log levels, higher is more severe."""
    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40


class Colors:
    """ANSI escape codes for colored terminal output."""
    RESET = "\033[0m"
    DEBUG = "\033[36m"    # Cyan
    INFO = "\033[32m"     # Green
    WARNING = "\033[33m"  # Yellow
    ERROR = "\033[31m"    # Red
    DIM = "\033[2m"


_LEVEL_NAMES = {
    "DEBUG": LogLevel.DEBUG,
    "INFO": LogLevel.INFO,
    "WARNING": LogLevel.WARNING,
    "WARN": LogLevel.WARNING,
    "ERROR": LogLevel.ERROR,
}

# Process-wide override set by set_log_level(); None means "read LOG_LEVEL"
_level_override: LogLevel | None = None


def parse_log_level(value: str | None) -> LogLevel:
    """
    Parse a level name such as "debug" or "WARN".

    Unknown or empty values fall back to INFO.
    """
    if not value:
        return LogLevel.INFO
    return _LEVEL_NAMES.get(value.strip().upper(), LogLevel.INFO)


def set_log_level(level: str | LogLevel) -> None:
    """
    Set the minimum level for every logger, including ones already created.

    Called once at startup with the configured LOG_LEVEL.
    """
    global _level_override
    _level_override = level if isinstance(level, LogLevel) else parse_log_level(level)


def _current_level() -> LogLevel:
    if _level_override is not None:
        return _level_override
    return parse_log_level(os.getenv("LOG_LEVEL", "INFO"))


class Logger:
    """
    A context-aware logger with colored output.

    Example:
        logger = Logger("Provider")
        logger.info("Calling claude-sonnet-4-6")

        child = logger.child("Retry")
        child.warning("Rate limited", {"attempt": 1, "delay": 15})
        # [Provider:Retry] Rate limited
    """

    def __init__(self, context: str = ""):
        """
        Args:
            context: A prefix for all log messages (e.g. "Agent", "Budget")
        """
        self.context = context

    def child(self, child_context: str) -> "Logger":
        """
        Create a child logger with additional context.

        Args:
            child_context: Context appended after a colon

        Returns:
            A new Logger with combined context
        """
        new_context = f"{self.context}:{child_context}" if self.context else child_context
        return Logger(new_context)

    def is_enabled(self, level: LogLevel) -> bool:
        """Whether a message at this level would be printed."""
        return level >= _current_level()

    def _format_message(self, level: str, message: str, color: str) -> str:
        timestamp = datetime.now().isoformat(timespec="seconds")
        context_str = f"[{self.context}] " if self.context else ""

        return (
            f"{Colors.DIM}[{timestamp}]{Colors.RESET} "
            f"{color}[{level}]{Colors.RESET} "
            f"{context_str}{message}"
        )

    def _log(
        self,
        level: LogLevel,
        level_name: str,
        color: str,
        message: str,
        data: dict[str, Any] | None = None
    ) -> None:
        if not self.is_enabled(level):
            return

        formatted = self._format_message(level_name, message, color)

        # Errors go to stderr so they survive stdout redirection
        stream = sys.stderr if level >= LogLevel.ERROR else sys.stdout
        print(formatted, file=stream)

        if data:
            data_str = json.dumps(data, indent=2, default=str)
            print(f"{Colors.DIM}{data_str}{Colors.RESET}", file=stream)

    def debug(self, message: str, data: dict[str, Any] | None = None) -> None:
        """Log a debug message (only shown when LOG_LEVEL=DEBUG)."""
        self._log(LogLevel.DEBUG, "DEBUG", Colors.DEBUG, message, data)

    def info(self, message: str, data: dict[str, Any] | None = None) -> None:
        """Log an info message."""
        self._log(LogLevel.INFO, "INFO", Colors.INFO, message, data)

    def warning(self, message: str, data: dict[str, Any] | None = None) -> None:
        """Log a warning message."""
        self._log(LogLevel.WARNING, "WARN", Colors.WARNING, message, data)

    def error(self, message: str, error: BaseException | None = None) -> None:
        """
        Log an error message.

        Args:
            message: The error message
            error: Optional exception whose type and text are included
        """
        data = None
        if error is not None:
            data = {
                "error_type": type(error).__name__,
                "error_message": str(error),
            }
        self._log(LogLevel.ERROR, "ERROR", Colors.ERROR, message, data)


# Default logger for modules that do not need their own context
logger = Logger("Atelier")
