"""
Kafka error classification.

Maps aiokafka and generic exceptions raised by the consumer loop and the
producer send path onto the PipelineError hierarchy, so callers can route
on type or category instead of inspecting client exceptions directly.

Consumer side:
    ConsumerStoppedError          -> ConnectionReleasedError
    Authentication/SASL failures  -> AuthError
    Any other KafkaError or error -> TransientConsumeError

Only the exception type decides that a connection is gone; a "connection
closed" message from the network layer is a transient drop.

Producer side:
    Everything -> DeliveryError carrying the broker reason text
"""

import asyncio
from typing import Any, Dict, Optional

from aiokafka.errors import ConsumerStoppedError, KafkaError, KafkaTimeoutError

from core.errors.exceptions import (
    AuthError,
    ConnectionReleasedError,
    DeliveryError,
    ErrorCategory,
    PipelineError,
    TransientConsumeError,
    classify_exception,
)


def broker_reason(error: BaseException) -> str:
    """
    Extract the most useful reason string from a client exception.

    Broker response errors carry a class-level ``description``; connection
    errors carry their text in ``str()``. Falls back to the type name.
    """
    text = str(error).strip()
    if text:
        return text
    description = getattr(error, "description", None)
    if description:
        return str(description)
    return type(error).__name__


class KafkaErrorClassifier:
    """Classify Kafka client errors into typed pipeline errors."""

    @staticmethod
    def classify_consumer_error(
        error: Exception, context: Optional[Dict[str, Any]] = None
    ) -> PipelineError:
        """
        Classify an error raised while polling, processing or committing.

        Args:
            error: Exception raised inside the consume loop
            context: Kafka context (topic, partition, offset, group_id)

        Returns:
            PipelineError subclass describing how the loop should react
        """
        context = dict(context or {})

        if isinstance(error, PipelineError):
            error.context.update(context)
            return error

        reason = broker_reason(error)
        context["error_type"] = type(error).__name__

        if isinstance(error, ConsumerStoppedError):
            return ConnectionReleasedError(
                f"Consumer connection already released: {reason}",
                cause=error,
                context=context,
            )

        if classify_exception(error) == ErrorCategory.AUTH:
            return AuthError(
                f"Kafka authentication failed: {reason}",
                cause=error,
                context=context,
            )

        if isinstance(error, KafkaError):
            context["retriable"] = getattr(error, "retriable", False)
            return TransientConsumeError(
                f"Kafka consume error: {reason}",
                cause=error,
                context=context,
            )

        return TransientConsumeError(
            f"Consumer client error: {reason}",
            cause=error,
            context=context,
        )

    @staticmethod
    def classify_producer_error(
        error: Exception, context: Optional[Dict[str, Any]] = None
    ) -> DeliveryError:
        """
        Classify an error raised while connecting or publishing.

        Args:
            error: Exception raised by the producer
            context: Delivery context (topic, key)

        Returns:
            DeliveryError with the broker-supplied reason
        """
        context = dict(context or {})

        if isinstance(error, DeliveryError):
            error.context.update(context)
            return error

        context["error_type"] = type(error).__name__

        if isinstance(error, (asyncio.TimeoutError, KafkaTimeoutError)):
            reason = "Delivery timed out waiting for broker acknowledgement"
            detail = str(error).strip()
            if detail:
                reason = f"{reason}: {detail}"
            return DeliveryError(reason, cause=error, context=context)

        return DeliveryError(broker_reason(error), cause=error, context=context)


__all__ = [
    "KafkaErrorClassifier",
    "broker_reason",
]
