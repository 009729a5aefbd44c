"""
canonical_json.py — markproof
The one serializer behind every signed or pinned byte sequence.

Rules:
- UTF-8 output; every string must be encodable (lone surrogates are not)
- Object keys sorted by Unicode code point, at every level
- No insignificant whitespace
- Non-ASCII characters written as-is, control characters as \\u escapes
- No NaN/Infinity

bootstrap.js carries a hand-written twin of this serializer for the manifest
shape. Any change here has to be mirrored there; test_runtime.py runs both
on the same vectors.
"""

from __future__ import annotations
import hashlib
import json
from typing import Any


class CanonicalEncodingError(ValueError):
    """A value has no canonical byte form."""


def is_utf8_text(value: str) -> bool:
    """True if ``value`` survives a strict UTF-8 encode."""
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def canonical_dumps(obj: Any) -> str:
    try:
        return json.dumps(
            obj,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        )
    except ValueError as exc:
        raise CanonicalEncodingError(str(exc)) from exc


def canonical_bytes(obj: Any) -> bytes:
    """Canonical JSON as UTF-8 bytes; raises CanonicalEncodingError."""
    text = canonical_dumps(obj)
    try:
        return text.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise CanonicalEncodingError(
            f"string at offset {exc.start} is not valid UTF-8 text"
        ) from exc


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()
