"""
Pytest fixtures for Kafka relay integration tests.

Provides fixtures for:
- Docker-based Kafka test container
- BrokerConfig pointing at the container
- Unique topic and group names per test

Integration tests only run with KAFKA_INTEGRATION=1 and Docker available.
"""

import os
import uuid
from typing import Generator

import pytest

from kafka_relay.config import BrokerConfig

if os.getenv("KAFKA_INTEGRATION") != "1":
    collect_ignore_glob = ["test_*.py"]


@pytest.fixture(scope="session")
def kafka_container() -> Generator:
    """
    Provide a Kafka container for integration tests.

    The container runs for the entire test session and is shared across tests.
    Skips when testcontainers is not installed.
    """
    kafka_module = pytest.importorskip("testcontainers.kafka")
    kafka = kafka_module.KafkaContainer()
    kafka.start()

    yield kafka

    kafka.stop()


@pytest.fixture
def kafka_config(kafka_container) -> BrokerConfig:
    """Configuration for the test container with a per-test consumer group."""
    return BrokerConfig(
        bootstrap_servers=kafka_container.get_bootstrap_server(),
        group_id=f"relay-test-{uuid.uuid4().hex[:8]}",
        poll_timeout_ms=200,
        backoff_seconds=0.5,
        delivery_timeout_seconds=30.0,
    )


@pytest.fixture
def unique_topic(request) -> str:
    """Topic name derived from the test name for isolation."""
    test_name = request.node.name
    safe_name = "".join(c if c.isalnum() or c == "_" else "_" for c in test_name)
    return f"{safe_name.lower()[:80]}_{uuid.uuid4().hex[:6]}"
