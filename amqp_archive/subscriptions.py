"""Bind one ingest pipeline to each requested queue.

Concurrency model:
- Each delivery is handled by its own callback invocation; there is no
  coordination between messages and acknowledgments may complete out of order
- In-flight work is bounded by two knobs:
  1) ``WORKER_PREFETCH`` (AMQP QoS): deliveries the broker sends without ack
  2) ``WORKER_CONCURRENCY`` (semaphore): handlers running at once, shared by
     every subscription in the process
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Optional

from aio_pika.abc import AbstractChannel, AbstractIncomingMessage
from opentelemetry import context  # type: ignore
from opentelemetry.trace import Tracer  # type: ignore

from amqp_archive.config import Settings
from amqp_archive.metrics import ARCHIVE_INFLIGHT_MESSAGES, ARCHIVE_MESSAGE_TOTAL
from amqp_archive.models import AckDecision
from amqp_archive.pipeline import IngestPipeline, RecordSink
from amqp_archive.rabbit import apply_decision, to_inbound_message
from amqp_archive.tracing import context_from_headers, get_tracer

logger = logging.getLogger(__name__)

DeliveryCallback = Callable[[AbstractIncomingMessage], Awaitable[None]]


class QueueSubscriptionManager:
    """Own the queue -> pipeline mapping and the broker consumers behind it.

    Properties:
    - `pipelines`: queue name -> ``IngestPipeline``
    - `consumer_tags`: queue name -> consumer tag returned by the broker

    Example:
    ```python
    manager = QueueSubscriptionManager(channel, store, settings)
    tags = await manager.subscribe(["orders.q", "payments.q"])
    ```
    """

    def __init__(
        self,
        channel: AbstractChannel,
        sink: RecordSink,
        settings: Settings,
        tracer: Optional[Tracer] = None,
    ) -> None:
        self.channel = channel
        self.sink = sink
        self.settings = settings
        self.pipelines: dict[str, IngestPipeline] = {}
        self.consumer_tags: dict[str, str] = {}
        self._sem = asyncio.Semaphore(max(1, settings.worker_concurrency))
        self._tracer = tracer or get_tracer()

    async def subscribe(self, queue_names: Iterable[str]) -> dict[str, str]:
        """Start one consumer per queue and return queue -> consumer tag."""
        for name in queue_names:
            if name in self.pipelines:
                continue
            pipeline = IngestPipeline(name, self.sink, self.settings)
            # Passive lookup: the queue must already exist on the broker
            queue = await self.channel.get_queue(name, ensure=True)
            tag = await queue.consume(self.make_callback(pipeline), no_ack=False)
            self.pipelines[name] = pipeline
            self.consumer_tags[name] = str(tag)
        return dict(self.consumer_tags)

    def make_callback(self, pipeline: IngestPipeline) -> DeliveryCallback:
        """Return the delivery callback that drives ``pipeline`` for one queue."""

        async def on_message(incoming: AbstractIncomingMessage) -> None:
            async with self._sem:
                ARCHIVE_INFLIGHT_MESSAGES.inc()
                token = context.attach(context_from_headers(incoming.headers))
                try:
                    with self._tracer.start_as_current_span("archive") as span:
                        span.set_attribute("queue", pipeline.queue_name)
                        try:
                            decision = await pipeline.process(to_inbound_message(incoming))
                        except Exception as exc:  # noqa: BLE001
                            # Every delivery is settled, even when handling itself breaks
                            logger.exception("Unhandled error archiving from %s", pipeline.queue_name)
                            span.record_exception(exc)
                            ARCHIVE_MESSAGE_TOTAL.labels(queue=pipeline.queue_name, outcome="rejected").inc()
                            decision = AckDecision.reject(self.settings.requeue_errors)
                        span.set_attribute("decision", decision.action)
                    await apply_decision(incoming, decision)
                finally:
                    context.detach(token)
                    ARCHIVE_INFLIGHT_MESSAGES.dec()

        return on_message
