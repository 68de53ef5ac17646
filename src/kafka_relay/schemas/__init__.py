"""Pydantic schemas for messages handed to and returned from the producer."""

from kafka_relay.schemas.messages import DeliveryReceipt, OutgoingMessage

__all__ = [
    "DeliveryReceipt",
    "OutgoingMessage",
]
