"""Document store backed by PostgreSQL through async SQLAlchemy.

The store owns its engine and session factory; one instance is created at
startup and handed to every pipeline, so all in-flight messages share the
same connection pool.

How to use:

    Example:
        >>> store = DocumentStore.from_settings(settings)
        >>> await store.ping()
        >>> await store.insert(record)
        >>> await store.dispose()
"""

from __future__ import annotations

import json
import logging
from typing import Any

from sqlalchemy import insert, null, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from amqp_archive.config import Settings, normalize_database_url
from amqp_archive.exceptions import PersistError, StartupError
from amqp_archive.models import NormalizedRecord
from amqp_archive.orm_models import ArchivedMessage

logger = logging.getLogger(__name__)


CONTENT_JSON = "json"
CONTENT_RAW = "raw"
CONTENT_JSON_UTF8 = "json-utf8"


def contains_nul(value: Any) -> bool:
    """Return True if any string (or mapping key) inside ``value`` holds U+0000.

    PostgreSQL text and JSONB cannot store that character.
    """
    stack = [value]
    while stack:
        item = stack.pop()
        if isinstance(item, str):
            if "\x00" in item:
                return True
        elif isinstance(item, dict):
            stack.extend(item.keys())
            stack.extend(item.values())
        elif isinstance(item, list):
            stack.extend(item)
    return False


def record_to_row(record: NormalizedRecord, collection: str) -> dict[str, Any]:
    """Map a record to ``archived_messages`` column values.

    ``content_format`` tells where the content lives:
    - ``json``: strings and parsed JSON in the JSONB ``content`` column
      (a parsed JSON ``null`` is stored as JSON ``null``, not SQL NULL)
    - ``raw``: the untranslated body in ``content_bytes``
    - ``json-utf8``: content holding U+0000, kept losslessly in
      ``content_bytes`` as the UTF-8 bytes of its JSON text

    Metadata is made JSON-safe (timestamps become ISO strings, byte header
    values become base64).

    Example:
        >>> row = record_to_row(record, "messages")
        >>> row["content_format"]
        'json'
    """
    meta = record.model_dump(mode="json", include={"fields", "properties"})
    content: Any = record.content
    if isinstance(content, (bytes, bytearray)):
        content_format, content_bytes, content = CONTENT_RAW, bytes(content), null()
    elif contains_nul(content):
        content_format = CONTENT_JSON_UTF8
        content_bytes = json.dumps(content).encode("utf-8")
        content = null()
    else:
        content_format, content_bytes = CONTENT_JSON, None
    return {
        "collection": collection,
        "date": record.date,
        "queue": record.queue,
        "fields": meta["fields"],
        "properties": meta["properties"],
        "content_format": content_format,
        "content": content,
        "content_bytes": content_bytes,
        "error": record.error,
    }


class DocumentStore:
    """Insert-only sink for archived records.

    Properties:
        - collection: name stored on every row
        - engine: the shared ``AsyncEngine``
    """

    def __init__(self, engine: AsyncEngine, collection: str) -> None:
        self.engine = engine
        self.collection = collection
        self._session_factory = async_sessionmaker(engine, expire_on_commit=False)

    @classmethod
    def from_settings(cls, settings: Settings) -> "DocumentStore":
        engine = create_async_engine(normalize_database_url(settings.database_url), pool_pre_ping=True)
        return cls(engine, settings.collection)

    async def ping(self) -> None:
        """Check connectivity; raises ``StartupError`` if the database is unreachable."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as exc:
            raise StartupError("document store", exc) from exc

    async def insert(self, record: NormalizedRecord) -> None:
        """Write one record; raises ``PersistError`` when the insert fails."""
        row = record_to_row(record, self.collection)
        try:
            async with self._session_factory() as session:
                await session.execute(insert(ArchivedMessage).values(**row))
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            raise PersistError(self.collection, exc) from exc

    async def dispose(self) -> None:
        await self.engine.dispose()
