"""
Entry point for running the Kafka relay.

Usage:
    # Consume test-topic as group test-group, logging each value
    python -m kafka_relay consume --topic test-topic --group test-group

    # Publish one message and print the delivery receipt
    python -m kafka_relay produce --topic test-topic "hello"

    # Run with metrics server
    python -m kafka_relay --metrics-port 8000 consume

Configuration:
    Broker settings come from config.yaml (or --config / KAFKA_RELAY_CONFIG)
    overlaid with KAFKA_* environment variables; command line flags win.
"""

import argparse
import asyncio
import dataclasses
import logging
import os
import signal
import sys
from pathlib import Path
from typing import List, Optional

from prometheus_client import start_http_server

from core.errors.exceptions import DeliveryError, StartupError
from core.logging import get_logger, set_log_context
from core.logging.setup import setup_logging
from kafka_relay.config import RelayConfig, load_config
from kafka_relay.consumer import RelayConsumer, RunState
from kafka_relay.producer import RelayProducer
from kafka_relay.schemas.messages import DeliveryReceipt

# Placeholder logger until setup_logging() is called in main()
logger = logging.getLogger(__name__)

# Set by the first SIGINT/SIGTERM; watched by run_consumer()
_shutdown_event: Optional[asyncio.Event] = None


def get_shutdown_event() -> asyncio.Event:
    """Return the process-wide shutdown event, creating it in the running loop."""
    global _shutdown_event
    if _shutdown_event is None:
        _shutdown_event = asyncio.Event()
    return _shutdown_event


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="kafka_relay",
        description="Produce to or consume from a Kafka topic",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python -m kafka_relay consume --topic test-topic --offset-reset earliest
    python -m kafka_relay produce --topic test-topic --key user-1 "hello"
        """,
    )

    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to YAML config file (default: KAFKA_RELAY_CONFIG or ./config.yaml)",
    )
    parser.add_argument(
        "--bootstrap-servers",
        type=str,
        default=None,
        help="Comma-separated broker list (overrides config)",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=None,
        help="Port for Prometheus metrics server (default: disabled)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-dir",
        type=str,
        default=None,
        help="Log directory path (default: from LOG_DIR env var or ./logs)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Write JSON lines to the log file instead of plain text",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    consume = subparsers.add_parser("consume", help="Run the consumer until interrupted")
    consume.add_argument("--topic", type=str, default=None, help="Topic to consume")
    consume.add_argument("--group", type=str, default=None, help="Consumer group id")
    consume.add_argument(
        "--offset-reset",
        choices=["earliest", "latest"],
        default=None,
        help="Start position when the group has no committed offset",
    )

    produce = subparsers.add_parser("produce", help="Send one message and exit")
    produce.add_argument("--topic", type=str, default=None, help="Destination topic")
    produce.add_argument("--key", type=str, default=None, help="Optional message key")
    produce.add_argument("message", type=str, help="Message value (UTF-8 text)")

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> RelayConfig:
    """Load config from file/environment and apply command line overrides.

    Raises:
        ValueError: If configuration is invalid
    """
    config = load_config(Path(args.config) if args.config else None)

    broker_changes = {}
    if args.bootstrap_servers:
        broker_changes["bootstrap_servers"] = args.bootstrap_servers
    if getattr(args, "group", None):
        broker_changes["group_id"] = args.group
    if getattr(args, "offset_reset", None):
        broker_changes["auto_offset_reset"] = args.offset_reset

    broker = config.broker.with_overrides(**broker_changes) if broker_changes else config.broker
    topic = args.topic or config.topic
    return dataclasses.replace(config, broker=broker, topic=topic)


async def run_consumer(config: RelayConfig) -> RunState:
    """Run the consumer until the shutdown event is set or the loop ends.

    Raises:
        StartupError: If the consumer cannot connect or subscribe
    """
    set_log_context(stage="consume")
    consumer = RelayConsumer(config.broker, config.topic)
    handle = await consumer.start()

    async def stop_on_signal() -> None:
        await get_shutdown_event().wait()
        logger.info("Stopping consumer")
        await handle.stop()

    signal_task = asyncio.create_task(stop_on_signal())
    try:
        await handle.wait()
    finally:
        signal_task.cancel()
        await asyncio.gather(signal_task, return_exceptions=True)
        await handle.stop()

    return handle.state


async def run_producer(
    config: RelayConfig, message: str, key: Optional[str] = None
) -> DeliveryReceipt:
    """Send one message and return its receipt.

    Raises:
        DeliveryError: If the broker does not acknowledge the message
    """
    set_log_context(stage="produce")
    async with RelayProducer(config.broker) as producer:
        return await producer.send(config.topic, message, key=key)


def setup_signal_handlers(loop: asyncio.AbstractEventLoop) -> None:
    """
    Route SIGINT/SIGTERM to the shutdown event.

    The first signal lets the consumer finish and commit the message in hand
    before it releases its connection. A second signal cancels every task;
    the connection is still released on the way out. add_signal_handler is
    unavailable on Windows, where Ctrl+C arrives as KeyboardInterrupt.
    """
    if sys.platform == "win32":
        logger.debug("Skipping signal handlers on Windows")
        return

    def on_signal(signum: signal.Signals) -> None:
        shutdown_event = get_shutdown_event()
        if shutdown_event.is_set():
            logger.warning(f"Second {signum.name}, cancelling all tasks")
            for task in asyncio.all_tasks(loop):
                task.cancel()
            return
        logger.info(f"{signum.name} received, stopping after the current message")
        shutdown_event.set()

    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, on_signal, signum)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point. Returns the process exit code."""
    global logger, _shutdown_event

    args = parse_args(argv)
    _shutdown_event = None

    log_level = getattr(logging, args.log_level)
    log_dir = Path(args.log_dir or os.getenv("LOG_DIR", "logs"))
    worker_id = os.getenv("WORKER_ID", f"relay-{args.command}")

    setup_logging(
        name="kafka_relay",
        stage=args.command,
        domain="kafka",
        log_dir=log_dir,
        json_format=args.json_logs,
        console_level=log_level,
        worker_id=worker_id,
    )
    logger = get_logger(__name__)

    try:
        config = build_config(args)
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    if args.metrics_port:
        logger.info(f"Starting metrics server on port {args.metrics_port}")
        start_http_server(args.metrics_port)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    try:
        if args.command == "consume":
            setup_signal_handlers(loop)
            final_state = loop.run_until_complete(run_consumer(config))
            logger.info(f"Consumer finished in state {final_state.value}")
        else:
            receipt = loop.run_until_complete(
                run_producer(config, args.message, key=args.key)
            )
            print(receipt.model_dump_json())
        return 0
    except StartupError as e:
        logger.error(f"Consumer failed to start: {e}")
        return 1
    except DeliveryError as e:
        logger.error(f"Delivery failed: {e.reason}")
        return 1
    except asyncio.CancelledError:
        logger.warning("Forced shutdown, in-flight work cancelled")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 0
    finally:
        loop.close()
        asyncio.set_event_loop(None)
        logger.info("Relay shutdown complete")


if __name__ == "__main__":
    sys.exit(main())
