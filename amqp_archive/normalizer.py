"""Content normalization: turn raw message bytes into storable text.

Every path yields a value that can live in a JSON document. Unknown binary
encodings fall back to base64 rather than being truncated or corrupted, and
content that is already base64 is passed through instead of being encoded a
second time.

Example:
    >>> normalize_content(b"hello", "text/plain", None)
    ('aGVsbG8=', 'base64')
    >>> normalize_content(b'{"a": 1}', "application/json", None)
    ('{"a": 1}', 'utf8')
"""
from __future__ import annotations

import base64
import re
from typing import Optional, Tuple

ENCODING_UTF8 = "utf8"
ENCODING_ASCII = "ascii"
ENCODING_HEX = "hex"
ENCODING_BASE64 = "base64"

_HINT_STRIP = re.compile(r"[^a-z0-9]")
_JSON_PREFIX = re.compile(r"^application/json")


def normalize_hint(content_encoding: Optional[str]) -> str:
    """Collapse an encoding hint to a single token (``"UTF-8"`` -> ``"utf8"``)."""
    if not content_encoding:
        return ""
    return _HINT_STRIP.sub("", content_encoding.lower())


def _ascii(raw: bytes) -> str:
    # Single-byte read with the high bit cleared, so it never fails
    return bytes(b & 0x7F for b in raw).decode("latin-1")


def _utf8(raw: bytes) -> str:
    return raw.decode("utf-8", errors="replace")


def _utf16le(raw: bytes) -> str:
    # A dangling odd byte is dropped
    even = raw[: len(raw) - (len(raw) % 2)]
    return even.decode("utf-16-le", errors="replace")


def _base64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def normalize_content(
    raw: bytes,
    content_type: Optional[str],
    content_encoding: Optional[str],
) -> Tuple[str, str]:
    """Return ``(content, canonical_encoding)`` for a message body.

    Rules, first match wins:
    - no hint and ``application/json*`` type: UTF-8 text, ``utf8``
    - ``hex`` / ``ascii``: single-byte text, label kept
    - ``utf8``: UTF-8 text
    - ``utf16le`` / ``ucs2``: transcoded to text, ``utf8``
    - ``binary``: base64-encoded, ``base64``
    - ``base64``: passed through as text, ``base64``
    - anything else: base64-encoded, ``base64`` or ``base64,<hint>``
    """
    hint = normalize_hint(content_encoding)

    if not hint and content_type and _JSON_PREFIX.match(content_type):
        return _utf8(raw), ENCODING_UTF8
    if hint == ENCODING_HEX:
        return _ascii(raw), ENCODING_HEX
    if hint == ENCODING_ASCII:
        return _ascii(raw), ENCODING_ASCII
    if hint == ENCODING_UTF8:
        return _utf8(raw), ENCODING_UTF8
    if hint in ("utf16le", "ucs2"):
        return _utf16le(raw), ENCODING_UTF8
    if hint == "binary":
        return _base64(raw), ENCODING_BASE64
    if hint == ENCODING_BASE64:
        return _ascii(raw), ENCODING_BASE64

    # Leave a trace of an unrecognized hint next to the fallback label
    label = f"{ENCODING_BASE64},{hint}" if hint else ENCODING_BASE64
    return _base64(raw), label
