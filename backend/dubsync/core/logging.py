"""
Structured logging configuration for DubSync.

Provides JSON-formatted logging with context tracking for background task runs.
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from dubsync.core.config import settings

# =============================================================================
# Context Variables for Request/Task Tracking
# =============================================================================

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
task_name_var: ContextVar[str | None] = ContextVar("task_name", default=None)
run_id_var: ContextVar[str | None] = ContextVar("run_id", default=None)


# =============================================================================
# JSON Formatter
# =============================================================================


class JSONFormatter(logging.Formatter):
    """
    Custom JSON formatter for structured logging.

    Outputs log records as JSON objects with timestamp, level, message,
    and additional context fields.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as a JSON string."""
        log_data = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        task_name = task_name_var.get()
        if task_name:
            log_data["task"] = task_name

        run_id = run_id_var.get()
        if run_id:
            log_data["run_id"] = run_id

        if hasattr(record, "extra"):
            log_data.update(record.extra)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if record.stack_info:
            log_data["stack_info"] = self.formatStack(record.stack_info)

        log_data["module"] = record.module
        log_data["function"] = record.funcName
        log_data["line"] = record.lineno

        return json.dumps(log_data, default=str)


# =============================================================================
# Text Formatter (for human-readable output)
# =============================================================================


class TextFormatter(logging.Formatter):
    """
    Custom text formatter for human-readable logging.

    Provides colored output and the current task context.
    """

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as a colored text string."""
        color = self.COLORS.get(record.levelname, self.RESET)
        timestamp = datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S")

        context_parts = []
        task_name = task_name_var.get()
        if task_name:
            context_parts.append(f"task={task_name}")

        run_id = run_id_var.get()
        if run_id:
            context_parts.append(f"run={run_id[:8]}")

        context_str = f" [{', '.join(context_parts)}]" if context_parts else ""

        message = (
            f"{color}{timestamp} {record.levelname:8s}{self.RESET} "
            f"{record.name}{context_str}: {record.getMessage()}"
        )

        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return message


# =============================================================================
# Logger Configuration
# =============================================================================


def configure_logging() -> None:
    """
    Configure application logging based on settings.

    Sets up formatters, handlers, and log levels according to configuration.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level))

    root_logger.handlers.clear()

    if settings.log_format == "json":
        formatter = JSONFormatter()
    else:
        formatter = TextFormatter()

    if settings.log_output in ("stdout", "both"):
        stdout_handler = logging.StreamHandler(sys.stdout)
        stdout_handler.setLevel(getattr(logging, settings.log_level))
        stdout_handler.setFormatter(formatter)
        root_logger.addHandler(stdout_handler)

    if settings.log_output in ("file", "both"):
        log_file_path = Path(settings.log_file)
        log_file_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(settings.log_file)
        file_handler.setLevel(getattr(logging, settings.log_level))
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Set specific logger levels for noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("celery").setLevel(logging.INFO)


# =============================================================================
# Logger Helper Functions
# =============================================================================


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance with the given name.

    Args:
        name: The logger name (typically __name__)

    Returns:
        logging.Logger: A configured logger instance
    """
    return logging.getLogger(name)


def log_with_context(logger: logging.Logger, level: int, message: str, **extra: Any) -> None:
    """
    Log a message with additional context fields.

    Args:
        logger: The logger instance
        level: The log level (e.g., logging.INFO)
        message: The log message
        **extra: Additional context fields to include
    """
    logger.log(level, message, extra={"extra": extra})


def set_request_id(request_id: str) -> None:
    """Set the request ID for the current context."""
    request_id_var.set(request_id)


def clear_context() -> None:
    """Clear all context variables."""
    request_id_var.set(None)
    task_name_var.set(None)
    run_id_var.set(None)


# =============================================================================
# Context Manager for Task Run Logging
# =============================================================================


class JobLogContext:
    """
    Context manager for background task logging.

    Sets the task name and run id in the logging context and restores the
    previous values on exit.

    Example:
        with JobLogContext(task_name="sync", run_id=lease.token):
            logger.info("Syncing subscriptions")
    """

    def __init__(self, task_name: str | None = None, run_id: str | None = None):
        self.task_name = task_name
        self.run_id = run_id
        self._task_token = None
        self._run_token = None

    def __enter__(self) -> "JobLogContext":
        if self.task_name:
            self._task_token = task_name_var.set(self.task_name)
        if self.run_id:
            self._run_token = run_id_var.set(self.run_id)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._task_token is not None:
            task_name_var.reset(self._task_token)
        if self._run_token is not None:
            run_id_var.reset(self._run_token)


# =============================================================================
# Initialize Logging on Module Import
# =============================================================================

configure_logging()
