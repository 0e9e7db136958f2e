"""Assemble the archive document for a delivered message.

The builder copies delivery metadata, normalizes content when translation is
enabled, and applies the JSON-recovery policy: declared JSON that fails to
parse is still archived, with its content type downgraded to
``application/octet-stream`` and the parse failure attached as ``error``.

Usage example:
    >>> record = build_record(message, "orders.q", translate=True)
    >>> record.properties["contentEncoding"]
    'utf8'
"""
from __future__ import annotations

import json
import math
import re
import traceback
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from amqp_archive.models import InboundMessage, NormalizedRecord
from amqp_archive.normalizer import normalize_content

CONTENT_TYPE_JSON = "application/json"
CONTENT_TYPE_OCTET_STREAM = "application/octet-stream"

_JSON_EXACT = re.compile(r"^application/json$")
_TEXT_PREFIX = re.compile(r"^text/")


def strip_nulls(mapping: Optional[Mapping[str, Any]]) -> dict[str, Any]:
    """Return a copy of ``mapping`` without ``None``-valued keys."""
    if not mapping:
        return {}
    return {key: value for key, value in mapping.items() if value is not None}


def _reject_constant(name: str) -> Any:
    raise ValueError(f"Unexpected token {name} in JSON")


def _finite_float(literal: str) -> float:
    value = float(literal)
    if not math.isfinite(value):
        raise ValueError(f"Number {literal} is out of range in JSON")
    return value


def parse_json(text: str) -> Any:
    """Parse strict JSON.

    ``NaN`` and ``Infinity`` literals are rejected, and so are numbers that
    overflow to infinity (``1e400``).
    """
    return json.loads(text, parse_constant=_reject_constant, parse_float=_finite_float)


def describe_error(exc: BaseException) -> dict[str, Any]:
    """Return the ``{message, stack, code}`` mapping stored on failed records."""
    return {
        "message": str(exc),
        "stack": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
        "code": exc.__class__.__name__,
    }


def build_record(
    message: InboundMessage,
    queue_name: str,
    translate: bool,
    now: Optional[datetime] = None,
) -> NormalizedRecord:
    """Build the ``NormalizedRecord`` for ``message`` consumed from ``queue_name``.

    With ``translate`` disabled the raw bytes are stored untouched and no
    content-type defaulting happens.
    """
    fields = strip_nulls(message.fields)
    properties = strip_nulls(message.properties)
    if not properties.get("headers"):
        properties.pop("headers", None)

    error: Optional[dict[str, Any]] = None
    content: Any
    if not translate:
        content = message.content
    else:
        content, properties["contentEncoding"] = normalize_content(
            message.content,
            properties.get("contentType"),
            properties.get("contentEncoding"),
        )
        content_type = properties.get("contentType")
        if content_type is not None and _JSON_EXACT.match(content_type):
            try:
                content = parse_json(content)
            except (ValueError, RecursionError) as exc:
                # RecursionError: nesting deeper than the decoder allows
                properties["contentType"] = CONTENT_TYPE_OCTET_STREAM
                error = describe_error(exc)
        elif content_type is None or not _TEXT_PREFIX.match(content_type):
            # Only an unset type is defaulted; declared types are kept
            properties.setdefault("contentType", CONTENT_TYPE_OCTET_STREAM)

    return NormalizedRecord(
        date=now or datetime.now(timezone.utc),
        queue=queue_name,
        fields=fields,
        properties=properties,
        content=content,
        error=error,
    )
