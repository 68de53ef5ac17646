"""
Prometheus metrics for the Kafka relay.

Provides instrumentation for:
- Message production and consumption rates
- Offset commits and skipped records
- Error tracking by category and backoff counts
- Processing time histograms
- Connection status and consumer run state
"""

from prometheus_client import Counter, Gauge, Histogram

# Message production metrics
messages_produced_total = Counter(
    "kafka_relay_messages_produced_total",
    "Total number of messages produced to Kafka topics",
    ["topic", "status"],  # status: success, error
)

messages_produced_bytes = Counter(
    "kafka_relay_messages_produced_bytes_total",
    "Total bytes of message data produced to Kafka topics",
    ["topic"],
)

producer_errors_total = Counter(
    "kafka_relay_producer_errors_total",
    "Total number of producer delivery errors",
    ["topic", "error_type"],
)

# Message consumption metrics
messages_consumed_total = Counter(
    "kafka_relay_messages_consumed_total",
    "Total number of messages consumed from Kafka topics",
    ["topic", "consumer_group", "status"],  # status: success, error
)

messages_consumed_bytes = Counter(
    "kafka_relay_messages_consumed_bytes_total",
    "Total bytes of message data consumed from Kafka topics",
    ["topic", "consumer_group"],
)

records_skipped_total = Counter(
    "kafka_relay_records_skipped_total",
    "Records skipped because their value was absent or malformed",
    ["topic", "consumer_group"],
)

offsets_committed_total = Counter(
    "kafka_relay_offsets_committed_total",
    "Total number of per-message offset commits accepted by the broker",
    ["topic", "consumer_group"],
)

consumer_offset = Gauge(
    "kafka_relay_consumer_committed_offset",
    "Last committed offset (next offset to read) per partition",
    ["topic", "partition", "consumer_group"],
)

# Error tracking by category
processing_errors_total = Counter(
    "kafka_relay_processing_errors_total",
    "Total number of consume loop errors by category",
    ["topic", "consumer_group", "error_category"],
)

consumer_backoffs_total = Counter(
    "kafka_relay_consumer_backoffs_total",
    "Number of times the consume loop entered its retry backoff",
    ["consumer_group"],
)

# Processing time metrics
message_processing_duration_seconds = Histogram(
    "kafka_relay_message_processing_duration_seconds",
    "Time spent in the message handler",
    ["topic", "consumer_group"],
    buckets=(
        0.005,
        0.01,
        0.025,
        0.05,
        0.1,
        0.25,
        0.5,
        1.0,
        2.5,
        5.0,
        10.0,
        30.0,
        60.0,
    ),  # From 5ms to 60s
)

# Connection health metrics
kafka_connection_status = Gauge(
    "kafka_relay_connection_status",
    "Kafka connection status (1=connected, 0=disconnected)",
    ["component"],  # component: producer, consumer
)

consumer_run_state = Gauge(
    "kafka_relay_consumer_run_state",
    "Consumer run state (0=idle, 1=running, 2=stopping, 3=stopped)",
    ["consumer_group"],
)

RUN_STATE_VALUES = {
    "idle": 0,
    "running": 1,
    "stopping": 2,
    "stopped": 3,
}


def record_message_produced(topic: str, message_bytes: int, success: bool = True) -> None:
    """
    Record a message production attempt.

    Args:
        topic: Kafka topic name
        message_bytes: Size of the message in bytes
        success: Whether the broker acknowledged the message
    """
    status = "success" if success else "error"
    messages_produced_total.labels(topic=topic, status=status).inc()
    if success:
        messages_produced_bytes.labels(topic=topic).inc(message_bytes)


def record_producer_error(topic: str, error_type: str) -> None:
    """Record a producer delivery error."""
    producer_errors_total.labels(topic=topic, error_type=error_type).inc()


def record_message_consumed(
    topic: str, consumer_group: str, message_bytes: int, success: bool = True
) -> None:
    """
    Record a message consumption attempt.

    Args:
        topic: Kafka topic name
        consumer_group: Consumer group ID
        message_bytes: Size of the message value in bytes
        success: Whether the handler completed and the offset was committed
    """
    status = "success" if success else "error"
    messages_consumed_total.labels(
        topic=topic, consumer_group=consumer_group, status=status
    ).inc()
    if success:
        messages_consumed_bytes.labels(
            topic=topic, consumer_group=consumer_group
        ).inc(message_bytes)


def record_skipped_record(topic: str, consumer_group: str) -> None:
    """Record a record skipped by validation."""
    records_skipped_total.labels(topic=topic, consumer_group=consumer_group).inc()


def record_offset_committed(
    topic: str, partition: int, consumer_group: str, committed_offset: int
) -> None:
    """Record an accepted offset commit."""
    offsets_committed_total.labels(topic=topic, consumer_group=consumer_group).inc()
    consumer_offset.labels(
        topic=topic, partition=str(partition), consumer_group=consumer_group
    ).set(committed_offset)


def record_processing_error(topic: str, consumer_group: str, error_category: str) -> None:
    """Record a consume loop error by category."""
    processing_errors_total.labels(
        topic=topic, consumer_group=consumer_group, error_category=error_category
    ).inc()


def record_backoff(consumer_group: str) -> None:
    """Record entry into the retry backoff."""
    consumer_backoffs_total.labels(consumer_group=consumer_group).inc()


def update_connection_status(component: str, connected: bool) -> None:
    """
    Update Kafka connection status.

    Args:
        component: Component name (producer, consumer)
        connected: Whether the component holds an open connection
    """
    kafka_connection_status.labels(component=component).set(1 if connected else 0)


def update_run_state(consumer_group: str, state: str) -> None:
    """Publish the consumer run state as a numeric gauge."""
    consumer_run_state.labels(consumer_group=consumer_group).set(
        RUN_STATE_VALUES.get(state, -1)
    )


__all__ = [
    "messages_produced_total",
    "messages_consumed_total",
    "records_skipped_total",
    "offsets_committed_total",
    "processing_errors_total",
    "consumer_backoffs_total",
    "message_processing_duration_seconds",
    "kafka_connection_status",
    "consumer_run_state",
    "record_message_produced",
    "record_producer_error",
    "record_message_consumed",
    "record_skipped_record",
    "record_offset_committed",
    "record_processing_error",
    "record_backoff",
    "update_connection_status",
    "update_run_state",
]
