"""
Kafka producer with send-and-confirm semantics.

Provides async Kafka producer functionality with:
- One message per call, blocking until the broker acknowledges it
- Input validation before any network I/O
- Bounded wait for acknowledgement (delivery timeout)
- Optional pooled connection, leased exclusively and rebuilt after any
  delivery error
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional, Union

from aiokafka import AIOKafkaProducer

from core.errors.exceptions import DeliveryError
from core.errors.kafka_classifier import KafkaErrorClassifier
from core.logging import get_logger, log_exception, log_with_context
from kafka_relay.config import BrokerConfig
from kafka_relay.metrics import (
    record_message_produced,
    record_producer_error,
    update_connection_status,
)
from kafka_relay.schemas.messages import DeliveryReceipt, OutgoingMessage

logger = get_logger(__name__)

Payload = Union[bytes, bytearray, str]


class RelayProducer:
    """
    Async Kafka producer publishing single messages.

    By default every send() opens its own connection and closes it after
    the acknowledgement, so no state is kept between calls. With
    pooled=True one connection is kept and reused; it is leased under a
    lock so concurrent senders never share the handle, and it is discarded
    after a delivery error and rebuilt on the next call.

    Usage:
        >>> config = BrokerConfig.from_env()
        >>> async with RelayProducer(config, pooled=True) as producer:
        ...     receipt = await producer.send("test-topic", b"hello")
        ...     print(receipt.partition, receipt.offset)
    """

    def __init__(self, config: BrokerConfig, pooled: bool = False):
        """
        Initialize Kafka producer.

        Args:
            config: Broker configuration
            pooled: Keep one connection open between send() calls
        """
        self.config = config
        self.pooled = pooled
        self._producer: Optional[AIOKafkaProducer] = None
        self._healthy = False
        self._lock: Optional[asyncio.Lock] = None

        log_with_context(
            logger,
            logging.INFO,
            "Initialized Kafka producer",
            bootstrap_servers=config.bootstrap_servers_str,
            pooled=pooled,
        )

    async def __aenter__(self) -> "RelayProducer":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def send(
        self,
        topic: str,
        value: Payload,
        key: Optional[Payload] = None,
    ) -> DeliveryReceipt:
        """
        Publish one message and wait for the broker acknowledgement.

        Args:
            topic: Kafka topic name (non-empty)
            value: Message payload; may be empty but not None
            key: Optional message key (used for partitioning)

        Returns:
            DeliveryReceipt with the assigned partition and offset

        Raises:
            ValueError: If topic is empty or value is None
            DeliveryError: If the broker is unreachable, rejects the
                message, or does not acknowledge within the delivery timeout
        """
        message = OutgoingMessage(topic=topic, key=key, value=value)
        context = {
            "topic": message.topic,
            "key": message.key.decode("utf-8", errors="replace") if message.key else None,
        }

        log_with_context(
            logger,
            logging.DEBUG,
            "Sending message to Kafka",
            value_size=len(message.value),
            **context,
        )

        try:
            async with self._lease() as producer:
                metadata = await asyncio.wait_for(
                    producer.send_and_wait(
                        message.topic, value=message.value, key=message.key
                    ),
                    timeout=self.config.delivery_timeout_seconds,
                )
        except Exception as e:
            error = KafkaErrorClassifier.classify_producer_error(e, context=context)
            record_message_produced(message.topic, len(message.value), success=False)
            record_producer_error(message.topic, type(e).__name__)
            log_exception(
                logger,
                error,
                "Failed to send message",
                reason=error.reason,
                **context,
            )
            if error is e:
                raise
            raise error from e

        receipt = DeliveryReceipt(
            topic=metadata.topic,
            partition=metadata.partition,
            offset=metadata.offset,
            timestamp=getattr(metadata, "timestamp", None),
        )
        record_message_produced(message.topic, len(message.value), success=True)
        log_with_context(
            logger,
            logging.INFO,
            "Message delivered",
            topic=receipt.topic,
            partition=receipt.partition,
            offset=receipt.offset,
        )
        return receipt

    @asynccontextmanager
    async def _lease(self) -> AsyncIterator[AIOKafkaProducer]:
        """Yield a started connection for exactly one sender at a time."""
        if not self.pooled:
            producer = await self._open()
            try:
                yield producer
            finally:
                await self._close_connection(producer)
            return

        async with self._pool_lock():
            if self._producer is not None and not self._healthy:
                await self._discard_pooled()
            if self._producer is None:
                self._producer = await self._open()
                self._healthy = True
            try:
                yield self._producer
            except BaseException:
                self._healthy = False
                await self._discard_pooled()
                raise

    def _pool_lock(self) -> asyncio.Lock:
        # Created on first use so it belongs to the loop that sends
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    async def _open(self) -> AIOKafkaProducer:
        """Create and start a new connection.

        Raises:
            DeliveryError: If the broker cannot be reached
        """
        producer = AIOKafkaProducer(**self.config.producer_options())
        try:
            await producer.start()
        except Exception as e:
            await self._close_connection(producer)
            raise KafkaErrorClassifier.classify_producer_error(
                e, context={"bootstrap_servers": self.config.bootstrap_servers_str}
            ) from e

        update_connection_status("producer", connected=True)
        logger.debug("Kafka producer connection opened")
        return producer

    async def _close_connection(self, producer: AIOKafkaProducer) -> None:
        try:
            await producer.stop()
        except Exception as e:
            log_exception(
                logger,
                e,
                "Error closing Kafka producer connection",
                level=logging.WARNING,
                include_traceback=False,
            )
        finally:
            update_connection_status("producer", connected=False)

    async def _discard_pooled(self) -> None:
        producer, self._producer = self._producer, None
        self._healthy = False
        if producer is not None:
            logger.info("Discarding pooled Kafka producer connection")
            await self._close_connection(producer)

    async def close(self) -> None:
        """
        Release the pooled connection, if any.

        Safe to call multiple times.
        """
        async with self._pool_lock():
            if self._producer is None:
                logger.debug("Producer has no open connection")
                return
            await self._discard_pooled()
            logger.info("Kafka producer closed")

    @property
    def has_connection(self) -> bool:
        """Whether a pooled connection is currently held."""
        return self._producer is not None


async def send_message(
    config: BrokerConfig,
    topic: str,
    value: Payload,
    key: Optional[Payload] = None,
) -> DeliveryReceipt:
    """Publish one message on a fresh connection. See RelayProducer.send()."""
    return await RelayProducer(config).send(topic, value, key=key)


__all__ = [
    "DeliveryError",
    "RelayProducer",
    "send_message",
]
