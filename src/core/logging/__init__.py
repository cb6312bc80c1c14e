"""
Structured logging module.

Provides JSON logging with context propagation for broker messages,
event log merges and relational upserts.
"""

from core.logging.broker_context import (
    MessageLogContext,
    clear_message_context,
    get_message_context,
    set_message_context,
)
from core.logging.context import (
    clear_log_context,
    get_log_context,
    set_log_context,
)
from core.logging.formatters import ConsoleFormatter, JSONFormatter
from core.logging.setup import (
    generate_cycle_id,
    get_log_file_path,
    get_logger,
    log_worker_startup,
    setup_logging,
)
from core.logging.utilities import (
    format_cycle_output,
    log_exception,
    log_with_context,
)

__all__ = [
    # Setup
    "setup_logging",
    "get_logger",
    "generate_cycle_id",
    "get_log_file_path",
    "log_worker_startup",
    # Formatters
    "JSONFormatter",
    "ConsoleFormatter",
    # Context
    "set_log_context",
    "get_log_context",
    "clear_log_context",
    # Message Context
    "set_message_context",
    "get_message_context",
    "clear_message_context",
    "MessageLogContext",
    # Utilities
    "log_with_context",
    "log_exception",
    "format_cycle_output",
]
