"""
Pytest fixtures for kafka_relay unit tests.

Provides:
- FakeKafkaConsumer: scripted stand-in for AIOKafkaConsumer
- FakeKafkaProducer: stand-in for AIOKafkaProducer returning record metadata
- make_record and wait_until helpers, a fast-retry BrokerConfig
"""

import asyncio
from collections import deque
from types import SimpleNamespace
from typing import Any, Callable, Deque, Dict, List, Optional, Union

import pytest
from aiokafka.errors import ConsumerStoppedError
from aiokafka.structs import ConsumerRecord, TopicPartition

from kafka_relay.config import BrokerConfig

TEST_TOPIC = "test-topic"
TEST_GROUP = "test-group"

ScriptItem = Union[ConsumerRecord, BaseException, None]


def _make_record(
    value: Optional[bytes],
    offset: int = 0,
    partition: int = 0,
    topic: str = TEST_TOPIC,
    key: Optional[bytes] = None,
) -> ConsumerRecord:
    """Build a ConsumerRecord as aiokafka returns it from getmany()."""
    return ConsumerRecord(
        topic=topic,
        partition=partition,
        offset=offset,
        timestamp=1700000000000 + offset,
        timestamp_type=0,
        key=key,
        value=value,
        checksum=None,
        serialized_key_size=len(key) if key else -1,
        serialized_value_size=len(value) if value is not None else -1,
        headers=[],
    )


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll predicate until true or fail the test after timeout seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Condition not met within timeout")
        await asyncio.sleep(0.005)


class FakeKafkaConsumer:
    """
    In-memory AIOKafkaConsumer replacement.

    Each getmany() call consumes one scripted item:
    - ConsumerRecord: returned as a single-record batch
    - exception: raised from getmany()
    - None: empty batch (poll timeout)
    When the script is exhausted getmany() waits out timeout_ms and returns
    an empty batch. seek() re-queues delivered records of the partition so
    they are fetched again, like a real position reset.
    """

    def __init__(self):
        self.options: Dict[str, Any] = {}
        self.script: Deque[ScriptItem] = deque()
        self.delivered: List[ConsumerRecord] = []
        self.subscriptions: List[List[str]] = []
        self.commits: List[Dict[TopicPartition, int]] = []
        self.commit_errors: Deque[Optional[BaseException]] = deque()
        self.seeks: List[tuple] = []
        self.start_error: Optional[BaseException] = None
        self.subscribe_error: Optional[BaseException] = None
        self.start_calls = 0
        self.stop_calls = 0
        self.stopped = False

    def feed(self, *items: ScriptItem) -> None:
        self.script.extend(items)

    async def start(self) -> None:
        self.start_calls += 1
        if self.start_error is not None:
            raise self.start_error
        self.stopped = False

    def subscribe(self, topics: List[str]) -> None:
        if self.subscribe_error is not None:
            raise self.subscribe_error
        self.subscriptions.append(list(topics))

    async def getmany(self, timeout_ms: int = 0, max_records: Optional[int] = None):
        if self.stopped:
            raise ConsumerStoppedError()
        if not self.script:
            await asyncio.sleep(timeout_ms / 1000)
            return {}

        item = self.script.popleft()
        if isinstance(item, BaseException):
            raise item
        if item is None:
            return {}
        self.delivered.append(item)
        return {TopicPartition(item.topic, item.partition): [item]}

    async def commit(self, offsets: Dict[TopicPartition, int]) -> None:
        if self.commit_errors:
            error = self.commit_errors.popleft()
            if error is not None:
                raise error
        self.commits.append(dict(offsets))

    def seek(self, tp: TopicPartition, offset: int) -> None:
        self.seeks.append((tp, offset))
        redeliver = {
            r.offset: r
            for r in self.delivered
            if (r.topic, r.partition) == (tp.topic, tp.partition) and r.offset >= offset
        }
        for record in sorted(redeliver.values(), key=lambda r: r.offset, reverse=True):
            self.script.appendleft(record)

    async def stop(self) -> None:
        self.stop_calls += 1
        self.stopped = True

    @property
    def committed_positions(self) -> List[int]:
        return [position for commit in self.commits for position in commit.values()]


class FakeKafkaProducer:
    """In-memory AIOKafkaProducer replacement."""

    instances: List["FakeKafkaProducer"] = []

    def __init__(self, **options: Any):
        self.options = options
        self.sent: List[tuple] = []
        self.start_calls = 0
        self.stop_calls = 0
        self.start_error: Optional[BaseException] = None
        self.send_errors: Deque[Optional[BaseException]] = deque()
        self.send_delay = 0.0
        self.next_offset = 0
        FakeKafkaProducer.instances.append(self)

    async def start(self) -> None:
        self.start_calls += 1
        if self.start_error is not None:
            raise self.start_error

    async def send_and_wait(self, topic: str, value=None, key=None):
        if self.send_delay:
            await asyncio.sleep(self.send_delay)
        if self.send_errors:
            error = self.send_errors.popleft()
            if error is not None:
                raise error
        self.sent.append((topic, key, value))
        offset = self.next_offset
        self.next_offset += 1
        return SimpleNamespace(
            topic=topic, partition=0, offset=offset, timestamp=1700000000000
        )

    async def stop(self) -> None:
        self.stop_calls += 1


@pytest.fixture
def broker_config() -> BrokerConfig:
    """Config with short poll and backoff so loops turn over quickly."""
    return BrokerConfig(
        bootstrap_servers="localhost:9092",
        group_id=TEST_GROUP,
        poll_timeout_ms=20,
        backoff_seconds=0.01,
        delivery_timeout_seconds=1.0,
    )


@pytest.fixture
def fake_client(monkeypatch) -> FakeKafkaConsumer:
    """Patch AIOKafkaConsumer so RelayConsumer connects to a FakeKafkaConsumer."""
    client = FakeKafkaConsumer()

    def factory(**options: Any) -> FakeKafkaConsumer:
        client.options = options
        return client

    monkeypatch.setattr("kafka_relay.consumer.AIOKafkaConsumer", factory)
    return client


@pytest.fixture
def producer_factory(monkeypatch):
    """
    Patch AIOKafkaProducer and expose a hook to configure each new instance.

    The fixture value has .instances (all fakes created) and .configure, a
    callable applied to every new fake before it is returned.
    """
    FakeKafkaProducer.instances = []
    hooks = SimpleNamespace(instances=FakeKafkaProducer.instances, configure=None)

    def factory(**options: Any) -> FakeKafkaProducer:
        producer = FakeKafkaProducer(**options)
        if hooks.configure is not None:
            hooks.configure(producer)
        return producer

    monkeypatch.setattr("kafka_relay.producer.AIOKafkaProducer", factory)
    return hooks


@pytest.fixture
def make_record():
    """Factory for ConsumerRecords (value, offset=0, partition=0, topic, key)."""
    return _make_record


@pytest.fixture
def wait_until():
    """Async helper: await wait_until(lambda: cond) with a 2s default timeout."""
    return _wait_until
