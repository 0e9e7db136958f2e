"""Per-message ingest pipeline.

Lifecycle of one delivery:
- ``received``: the broker handed us an ``InboundMessage``
- ``normalized``: ``build_record`` produced the archive document (cannot fail)
- ``persisted`` / ``persist_failed``: the store accepted or rejected the insert
- ``acked`` / ``rejected``: the decision returned to the broker

Persist failures are contained here: they are logged with the full record for
operator forensics and turned into a ``Reject`` carrying the configured
requeue flag. Nothing propagates to the process.
"""
from __future__ import annotations

import json
import logging
import time
from typing import Protocol

from amqp_archive.config import Settings
from amqp_archive.metrics import (
    ARCHIVE_JSON_RECOVERY_TOTAL,
    ARCHIVE_MESSAGE_TOTAL,
    ARCHIVE_PERSIST_LATENCY_SECONDS,
)
from amqp_archive.models import AckDecision, InboundMessage, NormalizedRecord
from amqp_archive.record_builder import build_record

logger = logging.getLogger(__name__)


class RecordSink(Protocol):
    """Anything that can persist a record (``DocumentStore`` in production)."""

    async def insert(self, record: NormalizedRecord) -> None: ...


class IngestPipeline:
    """Turn deliveries from one queue into archived records.

    One instance is bound per subscribed queue; all instances share the same
    sink and settings.

    Example:
    ```python
    pipeline = IngestPipeline("orders.q", store, settings)
    decision = await pipeline.process(message)
    ```
    """

    def __init__(self, queue_name: str, sink: RecordSink, settings: Settings) -> None:
        self.queue_name = queue_name
        self.sink = sink
        self.translate_content = settings.translate_content
        self.requeue_errors = settings.requeue_errors

    def normalize(self, message: InboundMessage) -> NormalizedRecord:
        record = build_record(message, self.queue_name, self.translate_content)
        if record.error is not None:
            ARCHIVE_JSON_RECOVERY_TOTAL.labels(queue=self.queue_name).inc()
        return record

    async def process(self, message: InboundMessage) -> AckDecision:
        """Normalize, persist and decide the broker outcome for ``message``."""
        record = self.normalize(message)

        start_ts = time.perf_counter()
        try:
            await self.sink.insert(record)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "Failed to save: %s",
                json.dumps(record.to_document()),
                exc_info=exc,
            )
            ARCHIVE_MESSAGE_TOTAL.labels(queue=self.queue_name, outcome="rejected").inc()
            return AckDecision.reject(self.requeue_errors)
        finally:
            ARCHIVE_PERSIST_LATENCY_SECONDS.observe(time.perf_counter() - start_ts)

        ARCHIVE_MESSAGE_TOTAL.labels(queue=self.queue_name, outcome="acked").inc()
        return AckDecision.ack()
