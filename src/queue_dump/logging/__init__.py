"""
Structured logging module.

Provides JSON file logging and a console format, with run and message
context propagated through contextvars.
"""

from queue_dump.logging.context import (
    MessageLogContext,
    clear_log_context,
    get_log_context,
    set_log_context,
)
from queue_dump.logging.setup import generate_run_id, get_logger, setup_logging
from queue_dump.logging.utilities import log_exception, log_with_context

__all__ = [
    "MessageLogContext",
    "clear_log_context",
    "get_log_context",
    "set_log_context",
    "generate_run_id",
    "get_logger",
    "setup_logging",
    "log_exception",
    "log_with_context",
]
