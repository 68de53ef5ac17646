"""
Error classification and exception hierarchy.

Provides:
- ErrorCategory enum for classifying errors
- PipelineError hierarchy for typed exceptions
- KafkaErrorClassifier for mapping aiokafka errors onto the hierarchy
"""

from core.errors.exceptions import (
    # Enums
    ErrorCategory,
    # Base classes
    PipelineError,
    AuthError,
    TransientError,
    PermanentError,
    # Consumer errors
    StartupError,
    ConnectionReleasedError,
    TransientConsumeError,
    HandlerError,
    # Producer errors
    DeliveryError,
    # Classification utilities
    classify_exception,
)
from core.errors.kafka_classifier import KafkaErrorClassifier, broker_reason

__all__ = [
    # Enums
    "ErrorCategory",
    # Base classes
    "PipelineError",
    "AuthError",
    "TransientError",
    "PermanentError",
    # Consumer errors
    "StartupError",
    "ConnectionReleasedError",
    "TransientConsumeError",
    "HandlerError",
    # Producer errors
    "DeliveryError",
    # Classification utilities
    "classify_exception",
    "KafkaErrorClassifier",
    "broker_reason",
]
