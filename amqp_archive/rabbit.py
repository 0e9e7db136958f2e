"""RabbitMQ helpers for connections, deliveries and acknowledgments.

This module wraps ``aio_pika`` to provide a consistent interface for:
- Establishing robust connections with optional TLS/mTLS support
- Converting an incoming delivery into an ``InboundMessage``
- Applying an ``AckDecision`` back to the broker
"""

import asyncio
import logging
import ssl
from typing import Any, Optional
from urllib.parse import urlsplit

import aio_pika
from aio_pika.abc import AbstractIncomingMessage, AbstractRobustConnection

from amqp_archive.config import Settings
from amqp_archive.exceptions import StartupError
from amqp_archive.models import AckDecision, InboundMessage

logger = logging.getLogger(__name__)


# Delivery metadata: document key -> aio_pika attribute
FIELD_ATTRIBUTES = {
    "consumerTag": "consumer_tag",
    "deliveryTag": "delivery_tag",
    "redelivered": "redelivered",
    "exchange": "exchange",
    "routingKey": "routing_key",
    "messageCount": "message_count",
}

# AMQP basic properties: document key -> aio_pika attribute
PROPERTY_ATTRIBUTES = {
    "contentType": "content_type",
    "contentEncoding": "content_encoding",
    "headers": "headers",
    "deliveryMode": "delivery_mode",
    "priority": "priority",
    "correlationId": "correlation_id",
    "replyTo": "reply_to",
    "expiration": "expiration",
    "messageId": "message_id",
    "timestamp": "timestamp",
    "type": "type",
    "userId": "user_id",
    "appId": "app_id",
    "clusterId": "cluster_id",
}


def wants_tls(settings: Settings) -> bool:
    """TLS is used for ``amqps://`` URLs or whenever any certificate path is set."""
    if urlsplit(settings.rabbitmq_url).scheme.lower() == "amqps":
        return True
    return any((settings.rabbitmq_ssl_ca_path, settings.rabbitmq_ssl_cert_path, settings.rabbitmq_ssl_key_path))


def tls_context(settings: Settings) -> Optional[ssl.SSLContext]:
    """Return the client ``SSLContext`` for the broker, or ``None`` for plain AMQP.

    ``RABBITMQ_SSL_VERIFY=false`` skips certificate and hostname checks
    (local brokers with self-signed certificates). A client key without a
    client certificate is a configuration error.
    """
    if not wants_tls(settings):
        return None
    if settings.rabbitmq_ssl_key_path and not settings.rabbitmq_ssl_cert_path:
        raise StartupError("message broker", ValueError("RABBITMQ_SSL_KEY_PATH set without RABBITMQ_SSL_CERT_PATH"))

    if settings.rabbitmq_ssl_verify:
        context = ssl.create_default_context(cafile=settings.rabbitmq_ssl_ca_path or None)
        context.check_hostname = settings.rabbitmq_ssl_check_hostname
    else:
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

    if settings.rabbitmq_ssl_cert_path:
        # The key may live in the certificate file
        context.load_cert_chain(settings.rabbitmq_ssl_cert_path, settings.rabbitmq_ssl_key_path or None)
    return context


async def connect(settings: Settings) -> AbstractRobustConnection:
    """Create a robust AMQP connection with optional TLS/mTLS and retry/backoff.

    Retries ``settings.connect_attempts`` times with doubling delays capped at
    ``settings.connect_max_delay_ms``, then raises ``StartupError``.

    Example:
        >>> conn = await connect(Settings.from_env())
        >>> async with conn:
        ...     channel = await conn.channel()
    """
    ssl_context = tls_context(settings)
    delay_ms = settings.connect_base_delay_ms
    attempts = max(1, settings.connect_attempts)

    last_exc: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            if ssl_context is not None:
                return await aio_pika.connect_robust(settings.rabbitmq_url, ssl=True, ssl_context=ssl_context)
            return await aio_pika.connect_robust(settings.rabbitmq_url)
        except Exception as exc:  # noqa: BLE001
            last_exc = exc
            if attempt == attempts:
                break
            logger.warning("RabbitMQ connect attempt %d/%d failed: %s", attempt, attempts, exc)
            await asyncio.sleep(delay_ms / 1000.0)
            delay_ms = min(int(delay_ms * 2), settings.connect_max_delay_ms)
    assert last_exc is not None
    raise StartupError("message broker", last_exc) from last_exc


def _collect(incoming: Any, attributes: dict[str, str]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for key, attr in attributes.items():
        value = getattr(incoming, attr, None)
        if value is not None:
            values[key] = value
    return values


def to_inbound_message(incoming: AbstractIncomingMessage) -> InboundMessage:
    """Convert an ``aio_pika`` delivery into an ``InboundMessage``.

    ``None`` attributes are left out; headers are copied into a plain dict.
    """
    properties = _collect(incoming, PROPERTY_ATTRIBUTES)
    if "headers" in properties:
        properties["headers"] = dict(properties["headers"])
    return InboundMessage(
        fields=_collect(incoming, FIELD_ATTRIBUTES),
        properties=properties,
        content=bytes(incoming.body),
    )


async def apply_decision(incoming: AbstractIncomingMessage, decision: AckDecision) -> None:
    """Acknowledge or reject ``incoming`` according to ``decision``."""
    if decision.is_ack:
        await incoming.ack()
    else:
        await incoming.reject(requeue=decision.requeue)
