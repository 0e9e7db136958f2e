import asyncio
from types import SimpleNamespace

import pytest

from amqp_archive.config import Settings
from amqp_archive.exceptions import PersistError
from amqp_archive.subscriptions import QueueSubscriptionManager


class DummyQueue:
    def __init__(self, name):
        self.name = name
        self.callback = None
        self.no_ack = None

    async def consume(self, callback, no_ack=False):
        self.callback = callback
        self.no_ack = no_ack
        return f"ctag-{self.name}"


class DummyChannel:
    def __init__(self):
        self.queues = {}

    async def get_queue(self, name, ensure=True):
        return self.queues.setdefault(name, DummyQueue(name))


class DummyIncoming(SimpleNamespace):
    def __init__(self, body, **kwargs):
        kwargs.setdefault("headers", {})
        super().__init__(body=body, **kwargs)
        self.calls = []

    async def ack(self):
        self.calls.append(("ack",))

    async def reject(self, requeue=False):
        self.calls.append(("reject", requeue))


class RecordingSink:
    def __init__(self, fail=False):
        self.fail = fail
        self.records = []

    async def insert(self, record):
        if self.fail:
            raise PersistError("messages", RuntimeError("boom"))
        self.records.append(record)


@pytest.mark.asyncio
async def test_subscribe_binds_one_pipeline_per_queue():
    channel = DummyChannel()
    manager = QueueSubscriptionManager(channel, RecordingSink(), Settings())

    tags = await manager.subscribe(["a.q", "b.q", "a.q"])

    assert tags == {"a.q": "ctag-a.q", "b.q": "ctag-b.q"}
    assert set(manager.pipelines) == {"a.q", "b.q"}
    assert manager.pipelines["a.q"].queue_name == "a.q"
    assert manager.pipelines["a.q"].sink is manager.pipelines["b.q"].sink
    assert channel.queues["a.q"].no_ack is False


@pytest.mark.asyncio
async def test_delivery_is_archived_and_acked():
    channel = DummyChannel()
    sink = RecordingSink()
    manager = QueueSubscriptionManager(channel, sink, Settings())
    await manager.subscribe(["orders.q"])

    incoming = DummyIncoming(b'{"id": 1}', content_type="application/json", routing_key="orders.q", delivery_tag=1)
    await channel.queues["orders.q"].callback(incoming)

    assert incoming.calls == [("ack",)]
    assert sink.records[0].queue == "orders.q"
    assert sink.records[0].content == {"id": 1}
    assert sink.records[0].fields["routingKey"] == "orders.q"


@pytest.mark.asyncio
async def test_failed_delivery_is_rejected_with_configured_requeue():
    channel = DummyChannel()
    manager = QueueSubscriptionManager(channel, RecordingSink(fail=True), Settings(requeue_errors=True))
    await manager.subscribe(["orders.q"])

    incoming = DummyIncoming(b"x", content_type="text/plain")
    await channel.queues["orders.q"].callback(incoming)

    assert incoming.calls == [("reject", True)]


@pytest.mark.asyncio
async def test_in_flight_deliveries_are_bounded():
    active = 0
    peak = 0

    class SlowSink:
        async def insert(self, record):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

    channel = DummyChannel()
    manager = QueueSubscriptionManager(channel, SlowSink(), Settings(worker_concurrency=2))
    await manager.subscribe(["a.q", "b.q"])

    deliveries = [DummyIncoming(b"x") for _ in range(6)]
    await asyncio.gather(
        *(channel.queues["a.q" if i % 2 else "b.q"].callback(d) for i, d in enumerate(deliveries))
    )

    assert peak == 2
    assert all(d.calls == [("ack",)] for d in deliveries)


@pytest.mark.asyncio
@pytest.mark.parametrize("requeue", [False, True])
async def test_unreadable_delivery_is_still_rejected(caplog, requeue):
    channel = DummyChannel()
    sink = RecordingSink()
    manager = QueueSubscriptionManager(channel, sink, Settings(requeue_errors=requeue))
    await manager.subscribe(["orders.q"])

    # A body that cannot be turned into bytes breaks conversion before the pipeline runs
    incoming = DummyIncoming(None, content_type="text/plain")
    await channel.queues["orders.q"].callback(incoming)

    assert incoming.calls == [("reject", requeue)]
    assert sink.records == []
    assert "Unhandled error archiving from orders.q" in caplog.text


@pytest.mark.asyncio
async def test_pipeline_crash_is_rejected_and_consumer_keeps_going(monkeypatch):
    channel = DummyChannel()
    sink = RecordingSink()
    manager = QueueSubscriptionManager(channel, sink, Settings(requeue_errors=True))
    await manager.subscribe(["orders.q"])
    pipeline = manager.pipelines["orders.q"]

    def explode(message):
        raise RuntimeError("normalizer bug")

    monkeypatch.setattr(pipeline, "normalize", explode)
    broken = DummyIncoming(b"x", content_type="text/plain")
    await channel.queues["orders.q"].callback(broken)
    assert broken.calls == [("reject", True)]

    monkeypatch.undo()
    healthy = DummyIncoming(b"y", content_type="text/plain")
    await channel.queues["orders.q"].callback(healthy)
    assert healthy.calls == [("ack",)]
    assert sink.records[0].content == "y"


@pytest.mark.asyncio
async def test_deeply_nested_json_is_archived_with_error_and_acked():
    channel = DummyChannel()
    sink = RecordingSink()
    manager = QueueSubscriptionManager(channel, sink, Settings())
    await manager.subscribe(["orders.q"])

    incoming = DummyIncoming(b"[" * 200000, content_type="application/json")
    await channel.queues["orders.q"].callback(incoming)

    assert incoming.calls == [("ack",)]
    assert sink.records[0].error["code"] == "RecursionError"
    assert sink.records[0].properties["contentType"] == "application/octet-stream"
