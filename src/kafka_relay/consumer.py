"""
Kafka consumer with a self-healing poll/process/commit loop.

Provides async Kafka consumer functionality with:
- Manual per-message offset commit for at-least-once processing
- Error classification: transient errors back off and retry, a released
  connection stops the loop
- Cooperative shutdown through a stop event observed while polling and
  while backing off
- A single guaranteed release of the broker connection on every exit path
- Message handler pattern for processing logic
"""

import asyncio
import inspect
import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from aiokafka import AIOKafkaConsumer
from aiokafka.structs import ConsumerRecord

from core.errors.exceptions import (
    ConnectionReleasedError,
    HandlerError,
    PipelineError,
    StartupError,
)
from core.errors.kafka_classifier import KafkaErrorClassifier, broker_reason
from core.logging import KafkaLogContext, get_logger, log_exception, log_with_context
from kafka_relay.config import BrokerConfig
from kafka_relay.metrics import (
    message_processing_duration_seconds,
    record_backoff,
    record_message_consumed,
    record_offset_committed,
    record_processing_error,
    record_skipped_record,
    update_connection_status,
    update_run_state,
)
from kafka_relay.session import ConsumerSession

logger = get_logger(__name__)

MessageHandler = Callable[[bytes], Union[None, Awaitable[None]]]

# Longest value prefix written to logs by the default handler
LOG_VALUE_PREVIEW = 200


class RunState(str, Enum):
    """Consumer lifecycle states."""

    IDLE = "idle"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class ExitReason(str, Enum):
    """Why the consume loop ended."""

    STOP_REQUESTED = "stop_requested"
    CONNECTION_RELEASED = "connection_released"
    CANCELLED = "cancelled"
    ERROR = "error"


def _preview(value: bytes) -> str:
    text = value.decode("utf-8", errors="replace")
    if len(text) > LOG_VALUE_PREVIEW:
        return text[:LOG_VALUE_PREVIEW] + "..."
    return text


async def log_message_value(value: bytes) -> None:
    """Default handler: log the received value."""
    log_with_context(
        logger,
        logging.INFO,
        f"Received message: {_preview(value)}",
        value_size=len(value),
    )


class ConsumerHandle:
    """
    Handle to a running consumer returned by RelayConsumer.start().

    Usage:
        >>> handle = await consumer.start()
        >>> ...
        >>> final_state = await handle.stop()  # waits until STOPPED
    """

    def __init__(self, consumer: "RelayConsumer", task: "asyncio.Task[None]"):
        self._consumer = consumer
        self._task = task

    @property
    def state(self) -> RunState:
        return self._consumer.state

    @property
    def exit_reason(self) -> Optional[ExitReason]:
        return self._consumer.exit_reason

    def done(self) -> bool:
        """Whether the consume loop has finished and released its connection."""
        return self._task.done()

    async def wait(self) -> RunState:
        """Wait for the loop to end on its own (fatal error or external stop)."""
        await asyncio.wait({self._task})
        return self._consumer.state

    async def stop(self) -> RunState:
        """
        Request shutdown and wait until the consumer is STOPPED.

        The in-flight poll or backoff is interrupted; a message already being
        processed is finished and committed first. Safe to call repeatedly
        and after the loop ended on its own.
        """
        self._consumer.request_stop()
        return await self.wait()

    def cancel(self) -> None:
        """Hard-cancel the consume task. The connection is still released."""
        self._task.cancel()


class RelayConsumer:
    """
    Async Kafka consumer for one topic within a consumer group.

    Runs poll -> validate -> process -> commit in a background task:
    - Poll fetches at most one record with a bounded wait
    - Records with no bytes value are logged and skipped
    - The handler gets the value; a handler failure leaves the message
      uncommitted and rewinds so it is retried after the backoff
    - The offset is committed synchronously before the next poll

    Transient errors (broker errors, commit failures, handler failures,
    unexpected client exceptions) are logged and retried after a fixed,
    cancellable backoff. A released connection ends the loop.

    Usage:
        >>> config = BrokerConfig.from_env()
        >>> async def handle(value: bytes):
        ...     print(value)
        >>>
        >>> consumer = RelayConsumer(config, topic="test-topic", message_handler=handle)
        >>> handle = await consumer.start()
        >>> # Consumer runs in the background until stopped
        >>> await handle.stop()
    """

    def __init__(
        self,
        config: BrokerConfig,
        topic: str,
        message_handler: Optional[MessageHandler] = None,
    ):
        """
        Initialize Kafka consumer.

        Args:
            config: Broker configuration (group id, offset policy, timings)
            topic: Topic to subscribe to
            message_handler: Callback receiving each message value; sync or
                async. Defaults to logging the value.
        """
        if not topic or not topic.strip():
            raise ValueError("A topic must be specified")

        self.config = config
        self.topic = topic.strip()
        self.group_id = config.group_id
        self.message_handler: MessageHandler = message_handler or log_message_value

        self._state = RunState.IDLE
        self._exit_reason: Optional[ExitReason] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._session: Optional[ConsumerSession] = None
        self._handle: Optional[ConsumerHandle] = None

        update_run_state(self.group_id, self._state.value)

        log_with_context(
            logger,
            logging.INFO,
            "Initialized Kafka consumer",
            topic=self.topic,
            group_id=self.group_id,
            bootstrap_servers=config.bootstrap_servers_str,
        )

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def exit_reason(self) -> Optional[ExitReason]:
        return self._exit_reason

    @property
    def session(self) -> Optional[ConsumerSession]:
        return self._session

    @property
    def is_running(self) -> bool:
        """Check if consumer is running and processing messages."""
        return self._state == RunState.RUNNING

    def _set_state(self, state: RunState) -> None:
        self._state = state
        update_run_state(self.group_id, state.value)

    def _create_client(self) -> AIOKafkaConsumer:
        return AIOKafkaConsumer(**self.config.consumer_options())

    async def start(self) -> ConsumerHandle:
        """
        Connect, subscribe and launch the consume loop in a background task.

        Returns:
            ConsumerHandle used to stop or await the consumer

        Raises:
            StartupError: If connecting or subscribing fails; the consumer
                stays IDLE and no loop is started
        """
        if self._state in (RunState.RUNNING, RunState.STOPPING) and self._handle:
            logger.warning("Consumer already running, ignoring duplicate start call")
            return self._handle

        log_with_context(
            logger,
            logging.INFO,
            "Starting Kafka consumer",
            topic=self.topic,
            group_id=self.group_id,
            auto_offset_reset=self.config.auto_offset_reset.value,
        )

        client = self._create_client()
        try:
            await client.start()
            client.subscribe([self.topic])
        except Exception as e:
            await self._discard_client(client)
            self._set_state(RunState.IDLE)
            startup_error = StartupError(
                f"Failed to start Kafka consumer: {broker_reason(e)}",
                cause=e,
                context={"topic": self.topic, "group_id": self.group_id},
            )
            log_exception(logger, startup_error, "Kafka consumer startup failed")
            raise startup_error from e

        update_connection_status("consumer", connected=True)
        log_with_context(
            logger,
            logging.INFO,
            "Kafka consumer subscribed",
            topic=self.topic,
            group_id=self.group_id,
        )

        self._session = ConsumerSession(client, self.topic, self.group_id)
        self._stop_event = asyncio.Event()
        self._exit_reason = None
        self._set_state(RunState.RUNNING)

        task = asyncio.create_task(
            self._run(self._session, self._stop_event),
            name=f"kafka-relay-consumer-{self.group_id}",
        )
        self._handle = ConsumerHandle(self, task)
        return self._handle

    async def run(self) -> RunState:
        """Start and block until the consumer stops."""
        handle = await self.start()
        return await handle.wait()

    def request_stop(self) -> None:
        """Signal the loop to stop. Returns immediately."""
        if self._stop_event is None or self._stop_event.is_set():
            return
        logger.info("Stop requested for Kafka consumer")
        self._stop_event.set()
        if self._state == RunState.RUNNING:
            self._set_state(RunState.STOPPING)

    async def stop(self) -> RunState:
        """Stop the consumer and wait for it to reach STOPPED."""
        if self._handle is None:
            logger.debug("Consumer not started")
            return self._state
        return await self._handle.stop()

    async def _discard_client(self, client: AIOKafkaConsumer) -> None:
        try:
            await client.stop()
        except Exception as e:
            log_exception(
                logger,
                e,
                "Error closing Kafka consumer after failed start",
                level=logging.WARNING,
                include_traceback=False,
            )

    async def _run(self, session: ConsumerSession, stop_event: asyncio.Event) -> None:
        """Own the session for the lifetime of the loop and release it on exit."""
        try:
            self._exit_reason = await self._consume_loop(session, stop_event)
        except asyncio.CancelledError:
            logger.info("Consumer task cancelled, shutting down")
            self._exit_reason = ExitReason.CANCELLED
            raise
        except Exception as e:
            self._exit_reason = ExitReason.ERROR
            log_exception(logger, e, "Consumer loop terminated with error")
        finally:
            if self._state != RunState.STOPPING:
                self._set_state(RunState.STOPPING)
            await session.release()
            self._set_state(RunState.STOPPED)
            log_with_context(
                logger,
                logging.INFO,
                "Kafka consumer stopped",
                topic=self.topic,
                group_id=self.group_id,
                exit_reason=self._exit_reason.value if self._exit_reason else None,
            )

    async def _consume_loop(
        self, session: ConsumerSession, stop_event: asyncio.Event
    ) -> ExitReason:
        """
        Main message consumption loop.

        Returns:
            Why the loop ended
        """
        log_with_context(
            logger,
            logging.INFO,
            "Starting message consumption loop",
            topic=self.topic,
            group_id=self.group_id,
            poll_timeout_ms=self.config.poll_timeout_ms,
        )

        while not stop_event.is_set():
            try:
                record = await session.poll(self.config.poll_timeout_ms, stop_event)
                if record is None:
                    continue

                if not self._is_valid(record):
                    continue

                await self._process_message(session, record)

            except Exception as e:
                classified = KafkaErrorClassifier.classify_consumer_error(
                    e,
                    context={"topic": self.topic, "group_id": self.group_id},
                )
                record_processing_error(
                    self.topic, self.group_id, classified.category.value
                )

                if isinstance(classified, ConnectionReleasedError):
                    log_exception(
                        logger,
                        classified,
                        "Consumer connection released - stopping consume loop",
                        classified_as=type(classified).__name__,
                    )
                    return ExitReason.CONNECTION_RELEASED

                self._log_transient(classified)
                if await self._backoff(stop_event):
                    break

        return ExitReason.STOP_REQUESTED

    def _is_valid(self, record: ConsumerRecord) -> bool:
        """Guard against tombstones and frames without a bytes value."""
        value = record.value
        if isinstance(value, (bytes, bytearray)):
            return True

        log_with_context(
            logger,
            logging.WARNING,
            "Skipping record with absent or malformed value",
            topic=record.topic,
            partition=record.partition,
            offset=record.offset,
            error_type=type(value).__name__,
        )
        record_skipped_record(record.topic, self.group_id)
        return False

    async def _process_message(
        self, session: ConsumerSession, record: ConsumerRecord
    ) -> None:
        """
        Hand one record to the handler, then commit it.

        Raises:
            HandlerError: If the handler raised (record rewound, not committed)
            Exception: If the commit failed (record rewound)
        """
        with KafkaLogContext(
            topic=record.topic,
            partition=record.partition,
            offset=record.offset,
            key=record.key.decode("utf-8", errors="replace") if record.key else None,
            consumer_group=self.group_id,
        ):
            message_size = len(record.value)
            log_with_context(
                logger,
                logging.DEBUG,
                "Processing message",
                value_size=message_size,
            )

            start_time = time.perf_counter()
            try:
                await self._invoke_handler(bytes(record.value))
            except Exception as e:
                duration = time.perf_counter() - start_time
                message_processing_duration_seconds.labels(
                    topic=record.topic, consumer_group=self.group_id
                ).observe(duration)
                record_message_consumed(
                    record.topic, self.group_id, message_size, success=False
                )
                session.rewind(record)
                raise HandlerError(
                    "Message handler failed",
                    cause=e,
                    context={
                        "topic": record.topic,
                        "partition": record.partition,
                        "offset": record.offset,
                        "duration_ms": round(duration * 1000, 2),
                    },
                ) from e

            duration = time.perf_counter() - start_time
            message_processing_duration_seconds.labels(
                topic=record.topic, consumer_group=self.group_id
            ).observe(duration)

            try:
                committed_offset = await session.commit(record)
            except ConnectionReleasedError:
                raise
            except Exception:
                record_message_consumed(
                    record.topic, self.group_id, message_size, success=False
                )
                session.rewind(record)
                raise

            record_offset_committed(
                record.topic, record.partition, self.group_id, committed_offset
            )
            record_message_consumed(
                record.topic, self.group_id, message_size, success=True
            )
            log_with_context(
                logger,
                logging.DEBUG,
                "Message processed and committed",
                committed_offset=committed_offset,
                duration_ms=round(duration * 1000, 2),
            )

    async def _invoke_handler(self, value: bytes) -> None:
        result: Any = self.message_handler(value)
        if inspect.isawaitable(result):
            await result

    def _log_transient(self, error: PipelineError) -> None:
        context = {
            k: v
            for k, v in error.context.items()
            if k in ("topic", "partition", "offset", "error_type", "duration_ms")
        }
        log_exception(
            logger,
            error,
            "Recoverable error in consume loop - will retry after backoff",
            level=logging.WARNING,
            classified_as=type(error).__name__,
            **context,
        )

    async def _backoff(self, stop_event: asyncio.Event) -> bool:
        """
        Wait the fixed backoff interval or until stop is requested.

        Returns:
            True if stop was requested during the wait
        """
        record_backoff(self.group_id)
        log_with_context(
            logger,
            logging.INFO,
            "Backing off before retrying",
            backoff_seconds=self.config.backoff_seconds,
            group_id=self.group_id,
        )
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=self.config.backoff_seconds)
        except asyncio.TimeoutError:
            return False
        logger.info("Stop requested during backoff")
        return True


async def start_consumer(
    config: BrokerConfig,
    topic: str,
    message_handler: Optional[MessageHandler] = None,
) -> ConsumerHandle:
    """Create a RelayConsumer and start it. See RelayConsumer.start()."""
    consumer = RelayConsumer(config, topic, message_handler)
    return await consumer.start()


__all__ = [
    "ConsumerHandle",
    "ExitReason",
    "MessageHandler",
    "RelayConsumer",
    "RunState",
    "log_message_value",
    "start_consumer",
]
