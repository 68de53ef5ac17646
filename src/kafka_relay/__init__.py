"""
Minimal Kafka producer/consumer pair.

Modules:
    config.py      - BrokerConfig/RelayConfig with environment and YAML loading
    producer.py    - RelayProducer: send one message, wait for the broker ack
    consumer.py    - RelayConsumer: background poll/process/commit loop
    session.py     - ConsumerSession: connection ownership and offset bookkeeping
    metrics.py     - Prometheus counters and gauges
    schemas/       - OutgoingMessage and DeliveryReceipt models

Design Decisions:
    - aiokafka for async broker I/O
    - Manual per-message commits (no auto-commit) for at-least-once
    - Fixed, cancellable backoff after transient consume errors
    - Structured logging with Kafka context (topic, partition, offset)
"""

from kafka_relay.config import BrokerConfig, OffsetResetPolicy, RelayConfig, load_config
from kafka_relay.consumer import (
    ConsumerHandle,
    ExitReason,
    RelayConsumer,
    RunState,
    start_consumer,
)
from kafka_relay.producer import RelayProducer, send_message
from kafka_relay.schemas.messages import DeliveryReceipt, OutgoingMessage

__all__ = [
    "BrokerConfig",
    "ConsumerHandle",
    "DeliveryReceipt",
    "ExitReason",
    "OffsetResetPolicy",
    "OutgoingMessage",
    "RelayConfig",
    "RelayConsumer",
    "RelayProducer",
    "RunState",
    "load_config",
    "send_message",
    "start_consumer",
]
