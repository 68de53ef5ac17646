"""Structured logging helpers shared by producer and consumer."""

import logging
from typing import Any

MAX_ERROR_MESSAGE_CHARS = 500


def get_logger(name: str) -> logging.Logger:
    """Logger for a relay module; pass __name__."""
    return logging.getLogger(name)


def log_with_context(
    logger: logging.Logger,
    level: int,
    msg: str,
    **fields: Any,
) -> None:
    """
    Log msg with keyword fields attached as record attributes.

    JSONFormatter writes the whitelisted ones (topic, offset, committed_offset,
    duration_ms, ...) next to the message:

        log_with_context(logger, logging.INFO, "Message committed",
                         topic=record.topic, committed_offset=position)
    """
    logger.log(level, msg, extra=fields)


def log_exception(
    logger: logging.Logger,
    exc: BaseException,
    msg: str,
    level: int = logging.ERROR,
    include_traceback: bool = True,
    **fields: Any,
) -> None:
    """
    Log a failure with its message and, for PipelineErrors, its category.

    Recoverable consume errors go out at WARNING without a traceback; fatal
    ones keep the default ERROR with exc_info.
    """
    category = getattr(exc, "category", None)
    if "error_category" not in fields and category is not None:
        fields["error_category"] = getattr(category, "value", str(category))

    text = str(exc)
    if len(text) > MAX_ERROR_MESSAGE_CHARS:
        text = text[:MAX_ERROR_MESSAGE_CHARS] + "..."
    fields["error_message"] = text

    logger.log(level, msg, exc_info=exc if include_traceback else None, extra=fields)
