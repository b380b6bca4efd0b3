"""Non-blocking exporter to the OpenCensus Agent trace service."""

from __future__ import annotations

import logging
import os
import socket
import threading
from typing import Iterator, Mapping, Sequence, Union

import grpc
from google.protobuf import timestamp_pb2
from opencensus.proto.agent.common.v1 import common_pb2
from opencensus.proto.agent.trace.v1 import trace_service_pb2, trace_service_pb2_grpc
from opencensus.proto.resource.v1 import resource_pb2
from opencensus.proto.trace.v1 import trace_config_pb2
from opentelemetry.sdk.trace import ReadableSpan
from opentelemetry.sdk.trace.export import SpanExporter, SpanExportResult
from opentelemetry.sdk.version import __version__ as _otel_sdk_version

from . import __version__
from .converter import Converter
from .metrics import (
    DROPPED_BATCHES,
    EXPORT_REQUESTS,
    EXPORTED_SPANS,
    QUEUE_SIZE,
    STREAM_ERRORS,
    WORKERS_STARTED,
)
from .request_queue import TraceRequestQueue
from .sampler import Sampler, create_trace_config
from .span_data import SpanData, span_data_from_otel

logger = logging.getLogger(__name__)

DEFAULT_AGENT_SERVICE_ADDRESS = "localhost:55678"
DEFAULT_GLOBAL_RESOURCE_TYPE = "global"
DEFAULT_TRACE_STREAM_SLEEP_DELAY = 0.5

# this will appear in the http User-Agent header
_GRPC_CHANNEL_OPTIONS = [
    ("grpc.primary_user_agent", "ocagent-exporter-python/" + __version__)
]

Credentials = Union[str, "os.PathLike[str]", grpc.ChannelCredentials, None]


def _load_credentials(credentials: Credentials) -> grpc.ChannelCredentials | None:
    """Return channel credentials, or ``None`` for an insecure channel.

    A path is read as a PEM file of root certificates.
    """
    if credentials is None or isinstance(credentials, grpc.ChannelCredentials):
        return credentials
    with open(credentials, "rb") as f:
        return grpc.ssl_channel_credentials(root_certificates=f.read())


def _create_node_info(service_name: str) -> common_pb2.Node:
    start_timestamp = timestamp_pb2.Timestamp()
    start_timestamp.GetCurrentTime()

    identifier = common_pb2.ProcessIdentifier(
        host_name=socket.gethostname(),
        pid=os.getpid(),
        start_timestamp=start_timestamp,
    )
    library_info = common_pb2.LibraryInfo(
        language=common_pb2.LibraryInfo.PYTHON,
        exporter_version=__version__,
        core_library_version=_otel_sdk_version,
    )
    return common_pb2.Node(
        identifier=identifier,
        library_info=library_info,
        service_info=common_pb2.ServiceInfo(name=service_name),
    )


def _create_resource(
    resource_type: str, labels: Mapping[str, str] | None = None
) -> resource_pb2.Resource:
    return resource_pb2.Resource(type=resource_type, labels=dict(labels or {}))


class OCAgentExporter:
    """Export spans to an OpenCensus Agent over one long-lived gRPC stream.

    ``export`` converts a batch into an ``ExportTraceServiceRequest`` and puts
    it on a queue; a single background thread writes queued requests to the
    ``TraceService.Export`` stream. Producers never block on, or see errors
    from, the network.

    The exporter starts stopped. ``start`` (or the first ``export``) spawns
    the worker; ``stop`` ends the stream once already queued requests have
    been written, without waiting for it. A stream error ends the worker
    and is only logged; call ``stop`` then ``start`` to open a new stream.
    """

    def __init__(
        self,
        *,
        service_name: str,
        agent_service_address: str | None = None,
        credentials: Credentials = None,
        resource_type: str | None = None,
        resource_labels: Mapping[str, str] | None = None,
        trace_stream_sleep_delay: float | None = None,
    ) -> None:
        self.service_name = service_name
        self.agent_service_address = agent_service_address or DEFAULT_AGENT_SERVICE_ADDRESS
        self.credentials = _load_credentials(credentials)
        self.node_info = _create_node_info(service_name)
        self.resource = _create_resource(
            resource_type or DEFAULT_GLOBAL_RESOURCE_TYPE, resource_labels
        )
        if trace_stream_sleep_delay is None:
            trace_stream_sleep_delay = DEFAULT_TRACE_STREAM_SLEEP_DELAY
        if not trace_stream_sleep_delay > 0:
            raise ValueError(
                "trace_stream_sleep_delay must be greater than zero, "
                f"got {trace_stream_sleep_delay!r}"
            )
        self.trace_stream_sleep_delay = trace_stream_sleep_delay

        self.client: trace_service_pb2_grpc.TraceServiceStub | None = None
        self.request_queue: TraceRequestQueue | None = None
        self._converter = Converter(self.resource)
        self._stopped = True
        self._worker: threading.Thread | None = None
        self._lifecycle_lock = threading.Lock()

    @property
    def stopped(self) -> bool:
        return self._stopped

    def start(self) -> bool:
        """Open the export stream.

        Returns ``False`` without doing anything if it is already running.
        """
        with self._lifecycle_lock:
            if not self._stopped:
                return False
            if self.client is None:
                self.client = self._create_client()
            self._discard_abandoned_requests()
            request_queue = TraceRequestQueue(self.trace_stream_sleep_delay)
            self._worker = threading.Thread(
                target=self._run,
                args=(self.client, request_queue),
                name="ocagent-trace-export",
                daemon=True,
            )
            self._worker.start()
            self._stopped = False
            # export() checks request_queue, then stopped, without the lock.
            self.request_queue = request_queue
        WORKERS_STARTED.labels(service=self.service_name).inc()
        logger.debug("Started OCAgent export stream to %s", self.agent_service_address)
        return True

    def stop(self) -> None:
        """Stop accepting spans and end the stream after the queued requests."""
        with self._lifecycle_lock:
            was_running = not self._stopped
            self._stopped = True
            if was_running and self.request_queue is not None:
                self.request_queue.stop()

    def export(self, spans: Sequence[SpanData] | None) -> None:
        """Queue ``spans`` for export as one request.

        Starts the exporter if it was never started. Batches exported while
        stopped are dropped.
        """
        if not spans:
            return
        if self.request_queue is None:
            self.start()
        if self._stopped:
            self._drop_batch(len(spans))
            return

        request = trace_service_pb2.ExportTraceServiceRequest(
            node=self.node_info,
            resource=self.resource,
            spans=[self._converter.convert_span(span) for span in spans],
        )
        # stop() may have run meanwhile; its sentinel must stay last.
        with self._lifecycle_lock:
            queued = not self._stopped
            if queued:
                QUEUE_SIZE.labels(service=self.service_name).inc()
                self.request_queue.push(request)
        if not queued:
            self._drop_batch(len(spans))
            return
        EXPORT_REQUESTS.labels(service=self.service_name).inc()
        EXPORTED_SPANS.labels(service=self.service_name).inc(len(spans))

    def create_trace_config(
        self,
        *,
        max_attributes: int | None = None,
        max_annotations: int | None = None,
        max_message_events: int | None = None,
        max_links: int | None = None,
        sampler: Sampler | None = None,
    ) -> trace_config_pb2.TraceConfig:
        return create_trace_config(
            max_attributes=max_attributes,
            max_annotations=max_annotations,
            max_message_events=max_message_events,
            max_links=max_links,
            sampler=sampler,
        )

    def _create_client(self) -> trace_service_pb2_grpc.TraceServiceStub:
        if self.credentials is None:
            channel = grpc.insecure_channel(
                self.agent_service_address, options=_GRPC_CHANNEL_OPTIONS
            )
        else:
            channel = grpc.secure_channel(
                self.agent_service_address,
                self.credentials,
                options=_GRPC_CHANNEL_OPTIONS,
            )
        return trace_service_pb2_grpc.TraceServiceStub(channel)

    def _drop_batch(self, span_count: int) -> None:
        DROPPED_BATCHES.labels(service=self.service_name).inc()
        logger.debug("OCAgent exporter is stopped, dropping %d span(s)", span_count)

    def _discard_abandoned_requests(self) -> None:
        """Drop requests left behind by a stream that ended on an error."""
        if self.request_queue is None:
            return
        if self._worker is not None and self._worker.is_alive():
            # still draining after a normal stop
            return
        discarded = self.request_queue.discard()
        if discarded:
            QUEUE_SIZE.labels(service=self.service_name).dec(discarded)
            DROPPED_BATCHES.labels(service=self.service_name).inc(discarded)
            logger.debug("Discarded %d request(s) from a closed OCAgent stream", discarded)

    def _outbound_requests(
        self, request_queue: TraceRequestQueue
    ) -> Iterator[trace_service_pb2.ExportTraceServiceRequest]:
        queue_size = QUEUE_SIZE.labels(service=self.service_name)
        for request in request_queue.consume():
            queue_size.dec()
            yield request

    def _run(
        self,
        client: trace_service_pb2_grpc.TraceServiceStub,
        request_queue: TraceRequestQueue,
    ) -> None:
        try:
            for _ in client.Export(self._outbound_requests(request_queue)):
                pass
        except Exception as exc:
            STREAM_ERRORS.labels(
                service=self.service_name, error_type=exc.__class__.__name__
            ).inc()
            logger.warning(
                "Unable to export to OCAgent service: %s %s",
                exc.__class__.__name__,
                exc,
            )
        else:
            logger.debug("OCAgent export stream closed")


class OCAgentSpanExporter(SpanExporter):
    """OpenTelemetry span exporter backed by an :class:`OCAgentExporter`."""

    def __init__(self, exporter: OCAgentExporter) -> None:
        self.exporter = exporter

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        # Fire and forget: delivery happens on the exporter's stream.
        self.exporter.export([span_data_from_otel(span) for span in spans])
        return SpanExportResult.SUCCESS

    def shutdown(self) -> None:
        self.exporter.stop()

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        return True
