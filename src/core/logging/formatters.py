"""Log formatters for JSON and console output."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict

from core.logging.context import get_kafka_context, get_log_context


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter with context injection.

    Produces one JSON object per line for easy parsing with jq/grep.
    Kafka coordinates from KafkaLogContext are merged in; explicit extras
    on the record win over context values.
    """

    # Fields to extract from LogRecord extras
    EXTRA_FIELDS = [
        # Kafka coordinates
        "topic",
        "topics",
        "partition",
        "offset",
        "key",
        "consumer_group",
        "group_id",
        "bootstrap_servers",
        # Message details
        "value",
        "value_size",
        "committed_offset",
        # Error tracking
        "error_category",
        "error_message",
        "error_type",
        "classified_as",
        "reason",
        # Loop state
        "run_state",
        "exit_reason",
        "backoff_seconds",
        "duration_ms",
        "poll_timeout_ms",
        "pooled",
    ]

    KAFKA_FIELDS = ("topic", "partition", "offset", "key", "consumer_group")

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3]
            + "Z",
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        # Inject context variables
        ctx = get_log_context()
        if ctx["domain"]:
            log_entry["domain"] = ctx["domain"]
        if ctx["stage"]:
            log_entry["stage"] = ctx["stage"]
        if ctx["worker_id"]:
            log_entry["worker_id"] = ctx["worker_id"]

        kafka_ctx = get_kafka_context()
        for field in self.KAFKA_FIELDS:
            if field in kafka_ctx:
                log_entry[field] = kafka_ctx[field]

        # Add source location for DEBUG/ERROR
        if record.levelno in (logging.DEBUG, logging.ERROR, logging.CRITICAL):
            log_entry["file"] = f"{record.filename}:{record.lineno}"

        for field in self.EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = value

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable console formatter.

    Includes stage and Kafka position when available.
    """

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_log_context()

        parts = [
            datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            record.levelname,
        ]

        if ctx["domain"]:
            parts.append(f"[{ctx['domain']}]")
        if ctx["stage"]:
            parts.append(f"[{ctx['stage']}]")

        prefix = " - ".join(parts)

        kafka_ctx = get_kafka_context()
        if "topic" in kafka_ctx and "offset" in kafka_ctx:
            position = (
                f"{kafka_ctx['topic']}:{kafka_ctx.get('partition', '?')}"
                f"@{kafka_ctx['offset']}"
            )
            line = f"{prefix} - [{position}] {record.getMessage()}"
        else:
            line = f"{prefix} - {record.getMessage()}"

        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line
