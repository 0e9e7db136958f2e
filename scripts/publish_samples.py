"""
Publish one sample message per supported content encoding.

Useful to exercise a running archiver end to end: each message lands in the
archive with the canonical encoding chosen for it.

Example:
  QUEUE=archive.demo python -m scripts.publish_samples
"""

import asyncio
import base64
import json
import os

from aio_pika import DeliveryMode, Message

from amqp_archive.config import Settings
from amqp_archive.rabbit import connect


SAMPLES: list[dict] = [
    {"body": json.dumps({"hello": "world"}).encode("utf-8"), "content_type": "application/json"},
    {"body": b"{not json", "content_type": "application/json"},
    {"body": b"hello", "content_type": "text/plain"},
    {"body": "héllo".encode("utf-8"), "content_type": "text/plain", "content_encoding": "UTF-8"},
    {"body": "héllo".encode("utf-16-le"), "content_type": "text/plain", "content_encoding": "utf16le"},
    {"body": b"68656c6c6f", "content_type": "text/plain", "content_encoding": "hex"},
    {"body": base64.b64encode(b"hello"), "content_encoding": "base64"},
    {"body": bytes(range(8)), "content_encoding": "binary"},
    {"body": b"\x1f\x8b\x08\x00", "content_type": "application/octet-stream", "content_encoding": "gzip"},
]


async def main() -> None:
    queue_name = os.getenv("QUEUE", "archive.demo")
    connection = await connect(Settings.from_env())
    async with connection:
        channel = await connection.channel()
        await channel.declare_queue(queue_name, durable=True)
        for sample in SAMPLES:
            message = Message(
                body=sample["body"],
                content_type=sample.get("content_type"),
                content_encoding=sample.get("content_encoding"),
                delivery_mode=DeliveryMode.PERSISTENT,
            )
            await channel.default_exchange.publish(message, routing_key=queue_name)
        print(f"Published {len(SAMPLES)} samples to {queue_name}")


if __name__ == "__main__":
    asyncio.run(main())
