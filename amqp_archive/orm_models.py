"""SQLAlchemy ORM models for the message archive.

Each archived delivery becomes one row of ``archived_messages``. The
``collection`` column plays the role of a named document collection so that
several archivers can share one table and still be queried apart.

Models provided:
- ``ArchivedMessage``: one archived broker message
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import BigInteger, DateTime, Index, LargeBinary, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class ArchivedMessage(Base):
    """One archived broker message.

    Fields:
        - id: Surrogate primary key
        - collection: Archive collection name
        - date: Processing timestamp (not the original send time)
        - queue: Queue the message was consumed from
        - fields: Delivery metadata as JSONB
        - properties: Message properties as JSONB
        - content_format: Where the content lives: json, raw or json-utf8
        - content: Text or parsed JSON content (SQL NULL when held in content_bytes)
        - content_bytes: Raw body, or the UTF-8 JSON text of content holding U+0000
        - error: JSON parse failure details, if any
    """
    __tablename__ = "archived_messages"
    __table_args__ = (Index("ix_archived_messages_collection_date", "collection", "date"),)

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    collection: Mapped[str] = mapped_column(String)
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    queue: Mapped[str] = mapped_column(String, index=True)
    fields: Mapped[dict] = mapped_column(JSONB)
    properties: Mapped[dict] = mapped_column(JSONB)
    content_format: Mapped[str] = mapped_column(String, default="json")
    # JSON null is a value here; SQL NULL is passed explicitly with null()
    content: Mapped[Any] = mapped_column(JSONB(none_as_null=False), nullable=True)
    content_bytes: Mapped[bytes | None] = mapped_column(LargeBinary, nullable=True)
    error: Mapped[dict | None] = mapped_column(JSONB(none_as_null=True), nullable=True)
