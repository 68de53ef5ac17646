"""
Tests for RelayProducer.

Covers:
- Receipt built from the broker acknowledgement
- Validation before any connection is opened
- DeliveryError carrying the broker reason (connect, reject, timeout)
- Per-call connections by default, pooled reuse and rebuild after errors
"""

import asyncio

import pytest
from aiokafka.errors import KafkaConnectionError, KafkaError

from core.errors.exceptions import DeliveryError
from kafka_relay.producer import RelayProducer, send_message
from kafka_relay.schemas.messages import DeliveryReceipt

TOPIC = "test-topic"


class TestSend:

    @pytest.mark.asyncio
    async def test_returns_receipt(self, broker_config, producer_factory):
        producer = RelayProducer(broker_config)

        receipt = await producer.send(TOPIC, b"hello", key=b"user-1")

        assert isinstance(receipt, DeliveryReceipt)
        assert receipt.topic == TOPIC
        assert receipt.partition == 0
        assert receipt.offset == 0
        assert receipt.timestamp == 1700000000000

        fake = producer_factory.instances[0]
        assert fake.sent == [(TOPIC, b"user-1", b"hello")]
        assert fake.options["acks"] == "all"
        assert fake.options["bootstrap_servers"] == "localhost:9092"

    @pytest.mark.asyncio
    async def test_string_payload_encoded_as_utf8(self, broker_config, producer_factory):
        await RelayProducer(broker_config).send(TOPIC, "héllo", key="k")

        assert producer_factory.instances[0].sent == [(TOPIC, b"k", "héllo".encode("utf-8"))]

    @pytest.mark.asyncio
    async def test_empty_value_allowed(self, broker_config, producer_factory):
        receipt = await RelayProducer(broker_config).send(TOPIC, b"")

        assert receipt.offset == 0
        assert producer_factory.instances[0].sent == [(TOPIC, None, b"")]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "topic,value",
        [
            ("", b"hello"),
            ("   ", b"hello"),
            (TOPIC, None),
        ],
    )
    async def test_invalid_input_rejected_before_connecting(
        self, broker_config, producer_factory, topic, value
    ):
        with pytest.raises(ValueError):
            await RelayProducer(broker_config).send(topic, value)

        assert producer_factory.instances == []

    @pytest.mark.asyncio
    async def test_send_message_helper(self, broker_config, producer_factory):
        receipt = await send_message(broker_config, TOPIC, b"hello")

        assert receipt.topic == TOPIC
        assert producer_factory.instances[0].stop_calls == 1


class TestDeliveryErrors:

    @pytest.mark.asyncio
    async def test_unreachable_broker(self, broker_config, producer_factory):
        producer_factory.configure = lambda p: setattr(
            p,
            "start_error",
            KafkaConnectionError("Unable to bootstrap from [('localhost', 9092)]"),
        )

        with pytest.raises(DeliveryError) as exc_info:
            await RelayProducer(broker_config).send(TOPIC, b"hello")

        assert "Unable to bootstrap" in exc_info.value.reason
        assert producer_factory.instances[0].stop_calls == 1

    @pytest.mark.asyncio
    async def test_broker_rejection_reason_surfaced(self, broker_config, producer_factory):
        producer_factory.configure = lambda p: p.send_errors.append(
            KafkaError("RECORD_LIST_TOO_LARGE")
        )

        with pytest.raises(DeliveryError) as exc_info:
            await RelayProducer(broker_config).send(TOPIC, b"hello")

        assert "RECORD_LIST_TOO_LARGE" in exc_info.value.reason
        assert isinstance(exc_info.value.__cause__, KafkaError)
        assert producer_factory.instances[0].stop_calls == 1

    @pytest.mark.asyncio
    async def test_unacknowledged_send_times_out(self, broker_config, producer_factory):
        config = broker_config.with_overrides(delivery_timeout_seconds=0.05)
        producer_factory.configure = lambda p: setattr(p, "send_delay", 1.0)

        with pytest.raises(DeliveryError) as exc_info:
            await RelayProducer(config).send(TOPIC, b"hello")

        assert "timed out" in exc_info.value.reason
        assert producer_factory.instances[0].sent == []


class TestConnectionHandling:

    @pytest.mark.asyncio
    async def test_default_opens_connection_per_send(self, broker_config, producer_factory):
        producer = RelayProducer(broker_config)

        await producer.send(TOPIC, b"a")
        await producer.send(TOPIC, b"b")

        assert len(producer_factory.instances) == 2
        assert all(p.stop_calls == 1 for p in producer_factory.instances)
        assert not producer.has_connection

    @pytest.mark.asyncio
    async def test_pooled_connection_reused(self, broker_config, producer_factory):
        async with RelayProducer(broker_config, pooled=True) as producer:
            first = await producer.send(TOPIC, b"a")
            second = await producer.send(TOPIC, b"b")
            assert producer.has_connection

        assert (first.offset, second.offset) == (0, 1)
        assert len(producer_factory.instances) == 1
        assert producer_factory.instances[0].start_calls == 1
        assert producer_factory.instances[0].stop_calls == 1

    @pytest.mark.asyncio
    async def test_pooled_connection_rebuilt_after_error(self, broker_config, producer_factory):
        def fail_first(p):
            if len(producer_factory.instances) == 1:
                p.send_errors.append(KafkaError("NOT_LEADER_FOR_PARTITION"))

        producer_factory.configure = fail_first
        producer = RelayProducer(broker_config, pooled=True)

        with pytest.raises(DeliveryError):
            await producer.send(TOPIC, b"a")
        assert not producer.has_connection
        assert producer_factory.instances[0].stop_calls == 1

        receipt = await producer.send(TOPIC, b"a")

        assert receipt.offset == 0
        assert len(producer_factory.instances) == 2
        await producer.close()

    @pytest.mark.asyncio
    async def test_pooled_sends_do_not_overlap(self, broker_config, producer_factory):
        producer_factory.configure = lambda p: setattr(p, "send_delay", 0.02)
        producer = RelayProducer(broker_config, pooled=True)

        receipts = await asyncio.gather(
            producer.send(TOPIC, b"a"),
            producer.send(TOPIC, b"b"),
            producer.send(TOPIC, b"c"),
        )

        assert sorted(r.offset for r in receipts) == [0, 1, 2]
        assert len(producer_factory.instances) == 1
        await producer.close()

    def test_pooled_producer_built_outside_event_loop(self, broker_config, producer_factory):
        """Construction needs no running loop; the lock binds to the sending loop."""
        producer_factory.configure = lambda p: setattr(p, "send_delay", 0.02)
        producer = RelayProducer(broker_config, pooled=True)

        async def send_concurrently():
            try:
                return await asyncio.gather(
                    producer.send(TOPIC, b"a"),
                    producer.send(TOPIC, b"b"),
                )
            finally:
                await producer.close()

        receipts = asyncio.run(send_concurrently())

        assert sorted(r.offset for r in receipts) == [0, 1]
        assert len(producer_factory.instances) == 1

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, broker_config, producer_factory):
        producer = RelayProducer(broker_config, pooled=True)
        await producer.send(TOPIC, b"a")

        await producer.close()
        await producer.close()

        assert producer_factory.instances[0].stop_calls == 1
