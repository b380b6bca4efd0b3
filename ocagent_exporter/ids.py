"""Trace and span identifier helpers."""

from __future__ import annotations


def format_trace_id(trace_id: int) -> str:
    """Return the 32 character hex form of an integer trace id."""
    return format(trace_id, "032x")


def format_span_id(span_id: int) -> str:
    """Return the 16 character hex form of an integer span id."""
    return format(span_id, "016x")


def id_to_bytes(value: str | bytes | None) -> bytes:
    """Return the wire form of a hex or binary identifier.

    ``None`` maps to an empty identifier rather than an omitted one.
    """
    if value is None:
        return b""
    if isinstance(value, bytes):
        return value
    return bytes.fromhex(value)
