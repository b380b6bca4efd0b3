"""Span data handed to the exporter."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any, Mapping, Sequence, Union

from opentelemetry.sdk.trace import ReadableSpan
from opentelemetry.trace import SpanKind as OtelSpanKind
from opentelemetry.trace import StatusCode

from .ids import format_span_id, format_trace_id

# Nanoseconds since the epoch, or an aware/naive datetime.
Timestamp = Union[int, datetime]

# google.rpc.Code.UNKNOWN
_UNKNOWN_STATUS_CODE = 2


class SpanKind(IntEnum):
    UNSPECIFIED = 0
    SERVER = 1
    CLIENT = 2


class MessageEventType(IntEnum):
    UNSPECIFIED = 0
    SENT = 1
    RECEIVED = 2


class LinkType(IntEnum):
    UNSPECIFIED = 0
    CHILD_LINKED_SPAN = 1
    PARENT_LINKED_SPAN = 2


@dataclass(frozen=True)
class TruncatableString:
    """A string plus the number of bytes removed from it upstream."""

    value: str
    truncated_byte_count: int = 0


@dataclass(frozen=True)
class StackFrame:
    function_name: str
    file_name: str
    line_number: int


@dataclass(frozen=True)
class StackTrace:
    frames: Sequence[StackFrame] = ()
    dropped_frames_count: int = 0
    hash_id: int = 0


@dataclass(frozen=True)
class Annotation:
    time: Timestamp
    description: TruncatableString | str
    attributes: Mapping[str, Any] = field(default_factory=dict)
    dropped_attributes_count: int = 0


@dataclass(frozen=True)
class MessageEvent:
    time: Timestamp
    type: MessageEventType
    id: int
    uncompressed_size: int = 0
    compressed_size: int = 0


@dataclass(frozen=True)
class Link:
    trace_id: str | bytes
    span_id: str | bytes
    type: LinkType = LinkType.UNSPECIFIED
    attributes: Mapping[str, Any] = field(default_factory=dict)
    dropped_attributes_count: int = 0


@dataclass(frozen=True)
class Status:
    code: int
    message: str = ""


@dataclass(frozen=True)
class SpanData:
    """One finished span, as exported to the agent.

    Dropped counts are whatever the tracing library recorded; they are
    forwarded as-is.
    """

    trace_id: str | bytes
    span_id: str | bytes
    name: TruncatableString | str
    start_time: Timestamp
    end_time: Timestamp
    parent_span_id: str | bytes | None = None
    kind: SpanKind = SpanKind.UNSPECIFIED
    attributes: Mapping[str, Any] = field(default_factory=dict)
    dropped_attributes_count: int = 0
    stack_trace: StackTrace | None = None
    time_events: Sequence[Any] = ()
    dropped_annotations_count: int = 0
    dropped_message_events_count: int = 0
    links: Sequence[Link] = ()
    dropped_links_count: int = 0
    status: Status | None = None
    same_process_as_parent_span: bool | None = None
    child_span_count: int | None = None


_OTEL_KINDS = {
    OtelSpanKind.SERVER: SpanKind.SERVER,
    OtelSpanKind.CLIENT: SpanKind.CLIENT,
}


def _convert_otel_status(span: ReadableSpan) -> Status | None:
    status = span.status
    if status is None or status.status_code is StatusCode.UNSET:
        return None
    if status.status_code is StatusCode.OK:
        return Status(code=0, message=status.description or "")
    return Status(code=_UNKNOWN_STATUS_CODE, message=status.description or "")


def span_data_from_otel(span: ReadableSpan) -> SpanData:
    """Build :class:`SpanData` from a finished OpenTelemetry SDK span."""
    parent = span.parent
    return SpanData(
        trace_id=format_trace_id(span.context.trace_id),
        span_id=format_span_id(span.context.span_id),
        parent_span_id=format_span_id(parent.span_id) if parent else None,
        name=TruncatableString(span.name),
        kind=_OTEL_KINDS.get(span.kind, SpanKind.UNSPECIFIED),
        start_time=span.start_time,
        end_time=span.end_time,
        attributes=dict(span.attributes or {}),
        dropped_attributes_count=span.dropped_attributes,
        time_events=[
            Annotation(
                time=event.timestamp,
                description=TruncatableString(event.name),
                attributes=dict(event.attributes or {}),
            )
            for event in span.events
        ],
        dropped_annotations_count=span.dropped_events,
        links=[
            Link(
                trace_id=format_trace_id(link.context.trace_id),
                span_id=format_span_id(link.context.span_id),
                attributes=dict(link.attributes or {}),
            )
            for link in span.links
        ],
        dropped_links_count=span.dropped_links,
        status=_convert_otel_status(span),
        same_process_as_parent_span=(not parent.is_remote) if parent else None,
    )
