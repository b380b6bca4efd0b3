"""Conversion of span data into OpenCensus Agent trace protos."""

from __future__ import annotations

import calendar
from datetime import datetime
from typing import Any, Iterable, Mapping

from google.protobuf import timestamp_pb2, wrappers_pb2
from opencensus.proto.resource.v1 import resource_pb2
from opencensus.proto.trace.v1 import trace_pb2

from .ids import id_to_bytes
from .span_data import (
    Annotation,
    Link,
    MessageEvent,
    SpanData,
    StackFrame,
    StackTrace,
    Status,
    Timestamp,
    TruncatableString,
)

MAX_UINT64 = 0xFFFFFFFFFFFFFFFF
MAX_UINT32 = 0xFFFFFFFF
MIN_INT64 = -(2**63)
MAX_INT64 = 2**63 - 1

_NANOS_PER_SECOND = 1_000_000_000


def _in_range_or_zero(value: int, low: int, high: int) -> int:
    return value if low <= value <= high else 0


class Converter:
    """Convert :class:`SpanData` objects into ``trace_pb2.Span`` protos.

    The converter only holds the resource attached to every span, so one
    instance may be shared between threads.
    """

    def __init__(self, resource: resource_pb2.Resource) -> None:
        self.resource = resource

    def convert_span(self, span: SpanData) -> trace_pb2.Span:
        """Convert one span. Never raises for unexpected attribute or event types."""
        fields: dict[str, Any] = {
            "trace_id": id_to_bytes(span.trace_id),
            "span_id": id_to_bytes(span.span_id),
            "parent_span_id": id_to_bytes(span.parent_span_id),
            "name": self.convert_truncatable_string(span.name),
            "kind": int(span.kind),
            "start_time": self.convert_time(span.start_time),
            "end_time": self.convert_time(span.end_time),
            "attributes": self.convert_attributes(
                span.attributes, span.dropped_attributes_count
            ),
            "stack_trace": self.convert_stack_trace(span.stack_trace),
            "time_events": self.convert_time_events(
                span.time_events,
                span.dropped_annotations_count,
                span.dropped_message_events_count,
            ),
            "links": self.convert_links(span.links, span.dropped_links_count),
            "status": self.convert_status(span.status),
            "same_process_as_parent_span": self.convert_bool(
                span.same_process_as_parent_span
            ),
            "child_span_count": self.convert_uint32(span.child_span_count),
            "resource": self.resource,
        }
        return trace_pb2.Span(**{k: v for k, v in fields.items() if v is not None})

    def make_truncatable_string(
        self, value: str, truncated_byte_count: int = 0
    ) -> trace_pb2.TruncatableString:
        return trace_pb2.TruncatableString(
            value=value, truncated_byte_count=truncated_byte_count
        )

    def convert_truncatable_string(
        self, obj: TruncatableString | str
    ) -> trace_pb2.TruncatableString:
        if isinstance(obj, TruncatableString):
            return self.make_truncatable_string(obj.value, obj.truncated_byte_count)
        return self.make_truncatable_string(obj)

    def convert_time(self, value: Timestamp) -> timestamp_pb2.Timestamp:
        """Convert epoch nanoseconds or a datetime (naive means UTC)."""
        if isinstance(value, datetime):
            return timestamp_pb2.Timestamp(
                seconds=calendar.timegm(value.utctimetuple()),
                nanos=value.microsecond * 1000,
            )
        seconds, nanos = divmod(int(value), _NANOS_PER_SECOND)
        return timestamp_pb2.Timestamp(seconds=seconds, nanos=nanos)

    def convert_attribute_value(self, obj: Any) -> trace_pb2.AttributeValue:
        """Pick the wire field from the runtime type of ``obj``.

        Unsupported types, and ints outside int64, give an ``AttributeValue``
        with no value set.
        """
        if isinstance(obj, (TruncatableString, str)):
            return trace_pb2.AttributeValue(
                string_value=self.convert_truncatable_string(obj)
            )
        # bool is a subclass of int
        if isinstance(obj, bool):
            return trace_pb2.AttributeValue(bool_value=obj)
        if isinstance(obj, int):
            if MIN_INT64 <= obj <= MAX_INT64:
                return trace_pb2.AttributeValue(int_value=obj)
            return trace_pb2.AttributeValue()
        if isinstance(obj, float):
            return trace_pb2.AttributeValue(double_value=obj)
        return trace_pb2.AttributeValue()

    def convert_attributes(
        self, attributes: Mapping[str, Any] | None, dropped_attributes_count: int
    ) -> trace_pb2.Span.Attributes:
        attribute_map = {
            str(key): self.convert_attribute_value(value)
            for key, value in (attributes or {}).items()
        }
        return trace_pb2.Span.Attributes(
            attribute_map=attribute_map,
            dropped_attributes_count=dropped_attributes_count,
        )

    def convert_stack_frame(self, frame: StackFrame) -> trace_pb2.StackTrace.StackFrame:
        return trace_pb2.StackTrace.StackFrame(
            function_name=self.make_truncatable_string(frame.function_name),
            file_name=self.make_truncatable_string(frame.file_name),
            line_number=_in_range_or_zero(frame.line_number, MIN_INT64, MAX_INT64),
        )

    def convert_stack_trace(
        self, stack_trace: StackTrace | None
    ) -> trace_pb2.StackTrace | None:
        if stack_trace is None:
            return None
        frames = trace_pb2.StackTrace.StackFrames(
            frame=[self.convert_stack_frame(frame) for frame in stack_trace.frames],
            dropped_frames_count=stack_trace.dropped_frames_count,
        )
        return trace_pb2.StackTrace(
            stack_frames=frames,
            stack_trace_hash_id=stack_trace.hash_id & MAX_UINT64,
        )

    def convert_annotation(self, annotation: Annotation) -> trace_pb2.Span.TimeEvent:
        annotation_proto = trace_pb2.Span.TimeEvent.Annotation(
            description=self.convert_truncatable_string(annotation.description),
            attributes=self.convert_attributes(
                annotation.attributes, annotation.dropped_attributes_count
            ),
        )
        return trace_pb2.Span.TimeEvent(
            time=self.convert_time(annotation.time), annotation=annotation_proto
        )

    def convert_message_event(
        self, message_event: MessageEvent
    ) -> trace_pb2.Span.TimeEvent:
        message_event_proto = trace_pb2.Span.TimeEvent.MessageEvent(
            type=int(message_event.type),
            id=_in_range_or_zero(message_event.id, 0, MAX_UINT64),
            uncompressed_size=_in_range_or_zero(
                message_event.uncompressed_size, 0, MAX_UINT64
            ),
            compressed_size=_in_range_or_zero(
                message_event.compressed_size, 0, MAX_UINT64
            ),
        )
        return trace_pb2.Span.TimeEvent(
            time=self.convert_time(message_event.time),
            message_event=message_event_proto,
        )

    def convert_time_events(
        self,
        time_events: Iterable[Any],
        dropped_annotations_count: int,
        dropped_message_events_count: int,
    ) -> trace_pb2.Span.TimeEvents:
        """Convert annotations and message events; other event types are skipped."""
        time_event_protos = []
        for time_event in time_events:
            if isinstance(time_event, Annotation):
                time_event_protos.append(self.convert_annotation(time_event))
            elif isinstance(time_event, MessageEvent):
                time_event_protos.append(self.convert_message_event(time_event))
        return trace_pb2.Span.TimeEvents(
            time_event=time_event_protos,
            dropped_annotations_count=dropped_annotations_count,
            dropped_message_events_count=dropped_message_events_count,
        )

    def convert_link(self, link: Link) -> trace_pb2.Span.Link:
        return trace_pb2.Span.Link(
            trace_id=id_to_bytes(link.trace_id),
            span_id=id_to_bytes(link.span_id),
            type=int(link.type),
            attributes=self.convert_attributes(
                link.attributes, link.dropped_attributes_count
            ),
        )

    def convert_links(
        self, links: Iterable[Link], dropped_links_count: int
    ) -> trace_pb2.Span.Links:
        return trace_pb2.Span.Links(
            link=[self.convert_link(link) for link in links],
            dropped_links_count=dropped_links_count,
        )

    def convert_status(self, status: Status | None) -> trace_pb2.Status | None:
        if status is None:
            return None
        return trace_pb2.Status(code=status.code, message=status.message)

    def convert_bool(self, value: bool | None) -> wrappers_pb2.BoolValue | None:
        if value is None:
            return None
        return wrappers_pb2.BoolValue(value=value)

    def convert_uint32(self, value: int | None) -> wrappers_pb2.UInt32Value | None:
        """Values outside uint32 are treated as unset."""
        if value is None or not 0 <= value <= MAX_UINT32:
            return None
        return wrappers_pb2.UInt32Value(value=value)
