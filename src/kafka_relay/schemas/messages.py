"""
Message schemas for the relay producer.

OutgoingMessage validates what callers hand to RelayProducer.send() before
any network I/O; DeliveryReceipt is what the broker acknowledgement is
reported back as. Values are opaque bytes: no serialization happens here.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class OutgoingMessage(BaseModel):
    """Schema for a single message to publish.

    Attributes:
        topic: Destination topic (non-empty)
        key: Optional partitioning key
        value: Payload bytes; may be empty but not None. Strings are
            encoded as UTF-8.

    Example:
        >>> OutgoingMessage(topic="test-topic", value=b"hello")
    """

    model_config = ConfigDict(frozen=True)

    topic: str = Field(
        ...,
        description="Destination topic name",
        min_length=1,
    )
    key: Optional[bytes] = Field(
        default=None,
        description="Optional message key used for partitioning",
    )
    value: bytes = Field(
        ...,
        description="Opaque message payload (may be empty)",
    )

    @field_validator("topic")
    @classmethod
    def validate_topic(cls, v: str) -> str:
        """Ensure topic is not empty or whitespace-only."""
        if not v or not v.strip():
            raise ValueError("topic cannot be empty or whitespace")
        return v.strip()


class DeliveryReceipt(BaseModel):
    """Broker acknowledgement for a published message.

    Attributes:
        topic: Topic the message landed in
        partition: Partition assigned by the broker
        offset: Offset assigned by the broker
        timestamp: Broker or create timestamp in ms, when reported
    """

    model_config = ConfigDict(frozen=True)

    topic: str = Field(..., min_length=1)
    partition: int = Field(..., ge=0)
    offset: int = Field(..., ge=0)
    timestamp: Optional[int] = Field(default=None)

    @field_validator("timestamp")
    @classmethod
    def drop_missing_timestamp(cls, v: Optional[int]) -> Optional[int]:
        """aiokafka reports -1 when no timestamp is available."""
        if v is not None and v < 0:
            return None
        return v
