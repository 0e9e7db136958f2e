"""Pydantic models for messages flowing through the archiver.

These models make the shapes explicit at each hand-off: the broker delivery
(``InboundMessage``), the document we persist (``NormalizedRecord``), and the
outcome reported back to the broker (``AckDecision``).

Metadata keys use camelCase (``contentType``, ``deliveryTag``) so archived
documents keep the same shape regardless of which client produced them.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class InboundMessage(BaseModel):
    """One delivered broker message, read-only to the ingest path.

    ``fields`` holds delivery metadata (delivery tag, exchange, routing key,
    redelivered flag, consumer tag) and ``properties`` the AMQP basic
    properties. Neither mapping carries keys with ``None`` values.
    """
    model_config = ConfigDict(frozen=True)

    fields: dict[str, Any] = Field(default_factory=dict)
    properties: dict[str, Any] = Field(default_factory=dict)
    content: bytes = b""


class NormalizedRecord(BaseModel):
    """Document written to the archive for a single message.

    ``content`` is raw bytes when translation is disabled, otherwise a string
    or a parsed JSON value. ``error`` is set only when a JSON parse was
    attempted and failed.
    """
    model_config = ConfigDict(frozen=True, ser_json_bytes="base64")

    date: datetime
    queue: str
    fields: dict[str, Any]
    properties: dict[str, Any]
    content: Any
    error: Optional[dict[str, Any]] = None

    def to_document(self) -> dict[str, Any]:
        """Return a JSON-safe mapping; ``error`` is omitted when absent."""
        exclude = {"error"} if self.error is None else None
        return self.model_dump(mode="json", exclude=exclude)


class AckDecision(BaseModel):
    """Outcome reported back to the broker for one delivery."""
    model_config = ConfigDict(frozen=True)

    action: Literal["ack", "reject"]
    requeue: bool = False

    @classmethod
    def ack(cls) -> "AckDecision":
        return cls(action="ack")

    @classmethod
    def reject(cls, requeue: bool) -> "AckDecision":
        return cls(action="reject", requeue=requeue)

    @property
    def is_ack(self) -> bool:
        return self.action == "ack"
