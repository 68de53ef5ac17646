"""
Structured logging module.

Provides JSON logging with context propagation for producer and consumer:
    - context.py: log context (domain, stage, worker) and KafkaLogContext
    - formatters.py: JSONFormatter and ConsoleFormatter
    - setup.py: setup_logging() with console + rotating file handlers
    - utilities.py: log_with_context() and log_exception()
"""

from core.logging.context import (
    KafkaLogContext,
    clear_log_context,
    get_kafka_context,
    get_log_context,
    set_log_context,
)
from core.logging.utilities import get_logger, log_exception, log_with_context

__all__ = [
    "KafkaLogContext",
    "clear_log_context",
    "get_kafka_context",
    "get_log_context",
    "set_log_context",
    "get_logger",
    "log_exception",
    "log_with_context",
]
