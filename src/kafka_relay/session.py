"""
Live consumer subscription.

A ConsumerSession owns exactly one AIOKafkaConsumer and one subscribed
topic for the lifetime of a consume loop. It tracks per partition:

- last_seen: offset of the last record fetched (processed or not)
- committed: position the broker has accepted (next offset to read)

committed only moves after the broker accepted a commit, so it never runs
ahead of what Kafka actually recorded. release() closes the connection
once; later calls are no-ops.
"""

import asyncio
import logging
from collections import deque
from typing import Deque, Dict, Optional

from aiokafka import AIOKafkaConsumer
from aiokafka.structs import ConsumerRecord, TopicPartition

from core.errors.exceptions import ConnectionReleasedError
from core.logging import get_logger, log_exception, log_with_context
from kafka_relay.metrics import update_connection_status

logger = get_logger(__name__)


class ConsumerSession:
    """Exclusive owner of one consumer connection and its offset bookkeeping."""

    def __init__(self, client: AIOKafkaConsumer, topic: str, group_id: str):
        self.client = client
        self.topic = topic
        self.group_id = group_id
        self.last_seen: Dict[TopicPartition, int] = {}
        self.committed: Dict[TopicPartition, int] = {}
        self._pending: Deque[ConsumerRecord] = deque()
        self._released = False

    @property
    def is_released(self) -> bool:
        return self._released

    def _ensure_open(self) -> None:
        if self._released:
            raise ConnectionReleasedError(
                "Consumer connection already released",
                context={"topic": self.topic, "group_id": self.group_id},
            )

    async def poll(
        self, timeout_ms: int, stop_event: asyncio.Event
    ) -> Optional[ConsumerRecord]:
        """
        Return the next record, or None on timeout or when stop is requested.

        The fetch races the stop event so a stop request ends the wait
        immediately instead of after timeout_ms.

        Raises:
            ConnectionReleasedError: If the session was already released
            Exception: Whatever the client raised while fetching
        """
        self._ensure_open()

        if self._pending:
            return self._pending.popleft()
        if stop_event.is_set():
            return None

        fetch = asyncio.ensure_future(
            self.client.getmany(timeout_ms=timeout_ms, max_records=1)
        )
        stop = asyncio.ensure_future(stop_event.wait())
        try:
            await asyncio.wait({fetch, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop.cancel()
            if not fetch.done():
                fetch.cancel()
            await asyncio.gather(fetch, stop, return_exceptions=True)

        if fetch.cancelled():
            logger.debug("Poll interrupted by stop request")
            return None

        batch = fetch.result()
        for tp, records in batch.items():
            for record in records:
                self.last_seen[tp] = record.offset
                self._pending.append(record)

        if self._pending:
            return self._pending.popleft()
        return None

    async def commit(self, record: ConsumerRecord) -> int:
        """
        Synchronously commit a processed record.

        Kafka stores the next offset to read, so record.offset + 1 is sent.

        Returns:
            The committed position

        Raises:
            ConnectionReleasedError: If the session was already released
            Exception: Whatever the client raised; bookkeeping is unchanged
        """
        self._ensure_open()
        tp = TopicPartition(record.topic, record.partition)
        position = record.offset + 1
        await self.client.commit({tp: position})
        self.committed[tp] = position
        return position

    def rewind(self, record: ConsumerRecord) -> None:
        """
        Move the partition position back so the record is fetched again.

        Records already buffered for the partition are dropped; they will be
        fetched again after the seek.
        """
        tp = TopicPartition(record.topic, record.partition)
        self._pending = deque(
            r for r in self._pending if (r.topic, r.partition) != (tp.topic, tp.partition)
        )
        if self._released:
            return
        try:
            self.client.seek(tp, record.offset)
        except Exception as e:
            # Partition may have been revoked; the group resumes from the
            # last committed offset in that case.
            log_exception(
                logger,
                e,
                "Failed to rewind partition, redelivery falls back to committed offset",
                level=logging.WARNING,
                include_traceback=False,
                topic=record.topic,
                partition=record.partition,
                offset=record.offset,
            )

    async def release(self) -> bool:
        """
        Close the broker connection exactly once.

        Returns:
            True if this call closed the connection, False if already released
        """
        if self._released:
            logger.debug("Consumer connection already released")
            return False

        self._released = True
        self._pending.clear()
        try:
            await self.client.stop()
        except Exception as e:
            log_exception(
                logger,
                e,
                "Error closing Kafka consumer connection",
                topic=self.topic,
                group_id=self.group_id,
            )
        finally:
            update_connection_status("consumer", connected=False)
            log_with_context(
                logger,
                logging.INFO,
                "Kafka consumer connection released",
                topic=self.topic,
                group_id=self.group_id,
            )
        return True
