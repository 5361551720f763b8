"""Text hashing helpers used for fallback embeddings and point identifiers."""

from __future__ import annotations

from uuid import NAMESPACE_URL, UUID, uuid5

_MASK32 = 0xFFFFFFFF
_MAX_POINT_INT = 2**64 - 1


def content_hash32(text: str) -> int:
    """Return a signed 32-bit rolling hash (``h * 31 + ord(c)``) of *text*."""

    value = 0
    for char in text:
        value = ((value << 5) - value + ord(char)) & _MASK32
    if value >= 2**31:
        value -= 2**32
    return value


def to_point_id(doc_id: str) -> str | int:
    """Map a caller id onto an id the vector backend accepts.

    Unsigned 64-bit integers and UUIDs pass through; any other string maps to a stable UUIDv5.
    """

    if doc_id.isascii() and doc_id.isdigit() and str(int(doc_id)) == doc_id and int(doc_id) <= _MAX_POINT_INT:
        return int(doc_id)
    try:
        return str(UUID(doc_id))
    except ValueError:
        return str(uuid5(NAMESPACE_URL, doc_id))
