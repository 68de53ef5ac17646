"""Log context propagation using contextvars.

Context set here is picked up by the formatters, so every record emitted
inside a worker or while handling a message carries the same identifiers
without passing them to each log call. contextvars follow asyncio tasks,
so each consumer task keeps its own Kafka context.
"""

from contextvars import ContextVar, Token
from typing import Any, Dict, Optional

_domain: ContextVar[str] = ContextVar("log_domain", default="")
_stage: ContextVar[str] = ContextVar("log_stage", default="")
_worker_id: ContextVar[str] = ContextVar("log_worker_id", default="")
_kafka_context: ContextVar[Optional[Dict[str, Any]]] = ContextVar(
    "log_kafka_context", default=None
)


def set_log_context(
    domain: Optional[str] = None,
    stage: Optional[str] = None,
    worker_id: Optional[str] = None,
) -> None:
    """Set process-level log context. Only provided values are changed."""
    if domain is not None:
        _domain.set(domain)
    if stage is not None:
        _stage.set(stage)
    if worker_id is not None:
        _worker_id.set(worker_id)


def get_log_context() -> Dict[str, str]:
    """Return the current log context."""
    return {
        "domain": _domain.get(),
        "stage": _stage.get(),
        "worker_id": _worker_id.get(),
    }


def clear_log_context() -> None:
    """Reset all log context to defaults."""
    _domain.set("")
    _stage.set("")
    _worker_id.set("")
    _kafka_context.set(None)


def get_kafka_context() -> Dict[str, Any]:
    """Return the Kafka message context active in this task, if any."""
    return dict(_kafka_context.get() or {})


class KafkaLogContext:
    """
    Context manager attaching Kafka message coordinates to all logs.

    Example:
        with KafkaLogContext(topic=record.topic, partition=record.partition,
                             offset=record.offset, consumer_group=group_id):
            logger.info("Processing message")
    """

    def __init__(
        self,
        topic: Optional[str] = None,
        partition: Optional[int] = None,
        offset: Optional[int] = None,
        key: Optional[str] = None,
        consumer_group: Optional[str] = None,
    ):
        self._values = {
            "topic": topic,
            "partition": partition,
            "offset": offset,
            "key": key,
            "consumer_group": consumer_group,
        }
        self._token: Optional[Token] = None

    def __enter__(self) -> "KafkaLogContext":
        values = {k: v for k, v in self._values.items() if v is not None}
        self._token = _kafka_context.set(values)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._token is not None:
            _kafka_context.reset(self._token)
            self._token = None
