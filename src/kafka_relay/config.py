"""Kafka relay configuration from environment variables and YAML."""

import dataclasses
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Union

import yaml

DEFAULT_CONFIG_PATH = Path("config.yaml")


class OffsetResetPolicy(str, Enum):
    """Where a consumer group without committed offsets starts reading."""

    EARLIEST = "earliest"
    LATEST = "latest"

    @classmethod
    def parse(cls, value: Union[str, "OffsetResetPolicy"]) -> "OffsetResetPolicy":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(
                f"Invalid auto_offset_reset '{value}', expected 'earliest' or 'latest'"
            ) from None


def _parse_servers(value: Union[str, Sequence[str]]) -> Tuple[str, ...]:
    if isinstance(value, str):
        items = value.split(",")
    else:
        items = list(value)
    servers = tuple(s.strip() for s in items if s and s.strip())
    for server in servers:
        host, sep, port = server.rpartition(":")
        if not sep or not host or not port.isdigit():
            raise ValueError(f"Invalid bootstrap server '{server}', expected host:port")
    return servers


def _parse_acks(value: Union[str, int]) -> Union[str, int]:
    if isinstance(value, int):
        return value
    text = str(value).strip().lower()
    if text in ("0", "1"):
        return int(text)
    if text in ("all", "-1"):
        return "all"
    raise ValueError(f"Invalid acks '{value}', expected 0, 1 or 'all'")


@dataclass(frozen=True)
class BrokerConfig:
    """Kafka connection and behavior configuration.

    Immutable: use with_overrides() to derive a modified copy. Load from
    environment using BrokerConfig.from_env() or from YAML with load_config().
    All timing values in milliseconds unless the name says seconds.
    """

    # Connection
    bootstrap_servers: Tuple[str, ...] = ("localhost:9092",)
    client_id: str = "kafka-relay"
    security_protocol: str = "PLAINTEXT"
    sasl_mechanism: str = ""
    sasl_plain_username: str = ""
    sasl_plain_password: str = field(default="", repr=False)
    request_timeout_ms: int = 40000

    # Consumer
    group_id: str = "test-group"
    auto_offset_reset: OffsetResetPolicy = OffsetResetPolicy.EARLIEST
    session_timeout_ms: int = 30000
    max_poll_interval_ms: int = 300000
    poll_timeout_ms: int = 1000
    backoff_seconds: float = 5.0

    # Producer
    acks: Union[str, int] = "all"
    delivery_timeout_seconds: float = 30.0

    def __post_init__(self) -> None:
        servers = _parse_servers(self.bootstrap_servers)
        if not servers:
            raise ValueError("At least one bootstrap server must be specified")
        object.__setattr__(self, "bootstrap_servers", servers)
        object.__setattr__(
            self, "auto_offset_reset", OffsetResetPolicy.parse(self.auto_offset_reset)
        )
        object.__setattr__(self, "acks", _parse_acks(self.acks))

        if not self.group_id:
            raise ValueError("group_id cannot be empty")
        if self.poll_timeout_ms <= 0:
            raise ValueError("poll_timeout_ms must be positive")
        if self.backoff_seconds < 0:
            raise ValueError("backoff_seconds cannot be negative")
        if self.delivery_timeout_seconds <= 0:
            raise ValueError("delivery_timeout_seconds must be positive")

    @property
    def bootstrap_servers_str(self) -> str:
        """Comma-separated broker list as aiokafka expects it."""
        return ",".join(self.bootstrap_servers)

    def with_overrides(self, **changes: Any) -> "BrokerConfig":
        """Return a copy with the given fields replaced."""
        return dataclasses.replace(self, **changes)

    def security_options(self) -> Dict[str, Any]:
        """Security settings shared by consumer and producer clients."""
        options: Dict[str, Any] = {}
        if self.security_protocol != "PLAINTEXT":
            options["security_protocol"] = self.security_protocol
            if self.sasl_mechanism:
                options["sasl_mechanism"] = self.sasl_mechanism
            if self.sasl_mechanism == "PLAIN":
                options["sasl_plain_username"] = self.sasl_plain_username
                options["sasl_plain_password"] = self.sasl_plain_password
        return options

    def consumer_options(self) -> Dict[str, Any]:
        """Keyword arguments for AIOKafkaConsumer.

        Auto-commit is always off: offsets are committed by the consume loop
        after each message has been processed.
        """
        options = {
            "bootstrap_servers": self.bootstrap_servers_str,
            "client_id": self.client_id,
            "group_id": self.group_id,
            "auto_offset_reset": self.auto_offset_reset.value,
            "enable_auto_commit": False,
            "session_timeout_ms": self.session_timeout_ms,
            "max_poll_interval_ms": self.max_poll_interval_ms,
            "request_timeout_ms": self.request_timeout_ms,
        }
        options.update(self.security_options())
        return options

    def producer_options(self) -> Dict[str, Any]:
        """Keyword arguments for AIOKafkaProducer."""
        options = {
            "bootstrap_servers": self.bootstrap_servers_str,
            "client_id": self.client_id,
            "acks": self.acks,
            "request_timeout_ms": self.request_timeout_ms,
        }
        options.update(self.security_options())
        return options

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BrokerConfig":
        """Build from a mapping (e.g. the `kafka:` section of a YAML file).

        Raises:
            ValueError: If the mapping contains unknown keys or bad values
        """
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown Kafka config keys: {', '.join(unknown)}")

        values = {}
        for name, raw in data.items():
            if raw is None:
                continue
            converter = _CONVERTERS.get(name)
            values[name] = converter(raw) if converter else raw
        return cls(**values)

    @classmethod
    def from_env(cls) -> "BrokerConfig":
        """Load configuration from environment variables.

        Required environment variables:
            KAFKA_BOOTSTRAP_SERVERS: Comma-separated broker addresses

        Optional environment variables (with defaults):
            KAFKA_CLIENT_ID: kafka-relay (default)
            KAFKA_GROUP_ID: test-group (default)
            KAFKA_AUTO_OFFSET_RESET: earliest (default)
            KAFKA_SECURITY_PROTOCOL: PLAINTEXT (default)
            KAFKA_SASL_MECHANISM: empty (default)
            KAFKA_SASL_PLAIN_USERNAME / KAFKA_SASL_PLAIN_PASSWORD
            KAFKA_POLL_TIMEOUT_MS: 1000 (default)
            KAFKA_BACKOFF_SECONDS: 5.0 (default)
            KAFKA_DELIVERY_TIMEOUT_SECONDS: 30.0 (default)
            KAFKA_ACKS: all (default)

        Raises:
            ValueError: If required environment variables are missing
        """
        if not os.getenv("KAFKA_BOOTSTRAP_SERVERS"):
            raise ValueError("KAFKA_BOOTSTRAP_SERVERS environment variable is required")
        return cls.from_dict(_read_env())


# Field name -> parser for values that arrive as strings from env or YAML
_CONVERTERS: Dict[str, Callable[[Any], Any]] = {
    "bootstrap_servers": _parse_servers,
    "auto_offset_reset": OffsetResetPolicy.parse,
    "acks": _parse_acks,
    "request_timeout_ms": int,
    "session_timeout_ms": int,
    "max_poll_interval_ms": int,
    "poll_timeout_ms": int,
    "backoff_seconds": float,
    "delivery_timeout_seconds": float,
}

# Environment variable -> BrokerConfig field
ENV_VARS: Dict[str, str] = {
    "KAFKA_BOOTSTRAP_SERVERS": "bootstrap_servers",
    "KAFKA_CLIENT_ID": "client_id",
    "KAFKA_GROUP_ID": "group_id",
    "KAFKA_AUTO_OFFSET_RESET": "auto_offset_reset",
    "KAFKA_SECURITY_PROTOCOL": "security_protocol",
    "KAFKA_SASL_MECHANISM": "sasl_mechanism",
    "KAFKA_SASL_PLAIN_USERNAME": "sasl_plain_username",
    "KAFKA_SASL_PLAIN_PASSWORD": "sasl_plain_password",
    "KAFKA_REQUEST_TIMEOUT_MS": "request_timeout_ms",
    "KAFKA_SESSION_TIMEOUT_MS": "session_timeout_ms",
    "KAFKA_MAX_POLL_INTERVAL_MS": "max_poll_interval_ms",
    "KAFKA_POLL_TIMEOUT_MS": "poll_timeout_ms",
    "KAFKA_BACKOFF_SECONDS": "backoff_seconds",
    "KAFKA_DELIVERY_TIMEOUT_SECONDS": "delivery_timeout_seconds",
    "KAFKA_ACKS": "acks",
}


def _read_env() -> Dict[str, str]:
    return {
        field_name: os.environ[var]
        for var, field_name in ENV_VARS.items()
        if os.environ.get(var)
    }


@dataclass(frozen=True)
class RelayConfig:
    """Broker settings plus the topic the CLI produces to or consumes from."""

    broker: BrokerConfig = field(default_factory=BrokerConfig)
    topic: str = "test-topic"

    def __post_init__(self) -> None:
        if not self.topic or not self.topic.strip():
            raise ValueError("topic cannot be empty")


def load_config(path: Optional[Path] = None) -> RelayConfig:
    """Load relay configuration from YAML, overlaid with environment variables.

    The YAML file is optional; when it is absent, defaults apply. Expected
    layout:

        kafka:
          bootstrap_servers: "broker1:9092,broker2:9092"
          group_id: test-group
          auto_offset_reset: earliest
          topic: test-topic

    Precedence: environment > YAML > defaults. KAFKA_TOPIC overrides the topic.

    Raises:
        ValueError: If the file is malformed or contains invalid values
    """
    config_path = path or Path(os.getenv("KAFKA_RELAY_CONFIG", str(DEFAULT_CONFIG_PATH)))

    data: Dict[str, Any] = {}
    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"Config file {config_path} must contain a mapping")
        section = loaded.get("kafka") or {}
        if not isinstance(section, dict):
            raise ValueError(f"'kafka' section in {config_path} must be a mapping")
        data = dict(section)

    topic = os.getenv("KAFKA_TOPIC") or data.pop("topic", None) or "test-topic"
    data.pop("topic", None)
    data.update(_read_env())

    return RelayConfig(broker=BrokerConfig.from_dict(data), topic=topic)
