"""Tests for the OCAgent exporter lifecycle and export stream."""

import logging
import os
import socket
import threading
import time
from concurrent import futures

import grpc
import pytest
from opencensus.proto.agent.common.v1 import common_pb2
from opencensus.proto.agent.trace.v1 import trace_service_pb2, trace_service_pb2_grpc

from ocagent_exporter import __version__
from ocagent_exporter.exporter import OCAgentExporter
from ocagent_exporter.metrics import (
    DROPPED_BATCHES,
    EXPORT_REQUESTS,
    EXPORTED_SPANS,
    QUEUE_SIZE,
    STREAM_ERRORS,
    WORKERS_STARTED,
)
from ocagent_exporter.sampler import Sampler
from ocagent_exporter.span_data import SpanData, TruncatableString

TRACE_ID = "e8b86184bbb7f57f0aa3f6fd36c8f268"
SPAN1_ID = "4e24dd9d2724a35f"
SPAN2_ID = "140a0f209cfa84a6"


def _span(span_id, name="Hello", **kwargs):
    now = time.time_ns()
    return SpanData(
        trace_id=TRACE_ID,
        span_id=span_id,
        name=TruncatableString(name),
        start_time=now,
        end_time=now + 1_000_000_000,
        **kwargs,
    )


def _exporter(service_name, **kwargs):
    kwargs.setdefault("trace_stream_sleep_delay", 0.05)
    return OCAgentExporter(service_name=service_name, **kwargs)


class RecordingTraceService(trace_service_pb2_grpc.TraceServiceServicer):
    def __init__(self):
        self.requests = []

    def Export(self, request_iterator, context):
        for request in request_iterator:
            self.requests.append(request)
            yield trace_service_pb2.ExportTraceServiceResponse()


@pytest.fixture
def collector():
    server = grpc.server(futures.ThreadPoolExecutor(max_workers=4))
    service = RecordingTraceService()
    trace_service_pb2_grpc.add_TraceServiceServicer_to_server(service, server)
    port = server.add_insecure_port("127.0.0.1:0")
    server.start()
    yield service, f"127.0.0.1:{port}"
    server.stop(None)


def test_create_with_defaults():
    exporter = OCAgentExporter(service_name="svc-defaults")

    assert exporter.service_name == "svc-defaults"
    assert exporter.agent_service_address == "localhost:55678"
    assert exporter.credentials is None
    assert exporter.trace_stream_sleep_delay == 0.5
    assert exporter.resource.type == "global"
    assert dict(exporter.resource.labels) == {}
    assert exporter.stopped
    assert exporter.client is None

    identifier = exporter.node_info.identifier
    assert identifier.host_name == socket.gethostname()
    assert identifier.pid == os.getpid()
    assert abs(identifier.start_timestamp.seconds - time.time()) < 5

    library_info = exporter.node_info.library_info
    assert library_info.language == common_pb2.LibraryInfo.PYTHON
    assert library_info.exporter_version == __version__
    assert library_info.core_library_version

    assert exporter.node_info.service_info.name == "svc-defaults"


def test_create_with_options():
    exporter = OCAgentExporter(
        service_name="svc-options",
        agent_service_address="test-ocagent-host:7777",
        resource_type="host",
        resource_labels={"zone": "eu-1"},
        trace_stream_sleep_delay=0.2,
    )

    assert exporter.agent_service_address == "test-ocagent-host:7777"
    assert exporter.resource.type == "host"
    assert dict(exporter.resource.labels) == {"zone": "eu-1"}
    assert exporter.trace_stream_sleep_delay == 0.2


def test_create_with_credentials_file(tmp_path):
    pem = tmp_path / "my-test.pem"
    pem.write_text("-----BEGIN CERTIFICATE-----\n-----END CERTIFICATE-----\n")

    exporter = OCAgentExporter(service_name="svc-tls", credentials=str(pem))

    assert isinstance(exporter.credentials, grpc.ChannelCredentials)


def test_create_with_channel_credentials():
    credentials = grpc.ssl_channel_credentials()

    exporter = OCAgentExporter(service_name="svc-creds", credentials=credentials)

    assert exporter.credentials is credentials


def test_export_spans_and_stop(fake_agent, wait_for_worker):
    exporter = _exporter("svc-e2e")

    exporter.export([_span(SPAN1_ID)])
    exporter.export([_span(SPAN2_ID)])
    exporter.stop()
    wait_for_worker(exporter)

    assert exporter.stopped
    assert len(fake_agent.requests) == 2
    assert len(fake_agent.responses) == 2

    first, second = fake_agent.requests
    assert first.node == exporter.node_info
    assert first.resource == exporter.resource
    assert first.spans[0].span_id == bytes.fromhex(SPAN1_ID)
    assert first.spans[0].resource == exporter.resource
    assert second.spans[0].span_id == bytes.fromhex(SPAN2_ID)

    exporter.export([_span(SPAN1_ID)])
    assert exporter.request_queue.empty()
    assert len(fake_agent.requests) == 2


def test_requests_keep_export_order(fake_agent, wait_for_worker):
    exporter = _exporter("svc-order")

    for i in range(25):
        exporter.export([_span(SPAN1_ID, name=f"span-{i}")])
    exporter.stop()
    wait_for_worker(exporter)

    names = [request.spans[0].name.value for request in fake_agent.requests]
    assert names == [f"span-{i}" for i in range(25)]


def test_start_twice_spawns_one_worker(fake_agent, wait_for_worker):
    exporter = _exporter("svc-start-twice")

    assert exporter.start() is True
    worker = exporter._worker
    request_queue = exporter.request_queue

    assert exporter.start() is False
    assert exporter._worker is worker
    assert exporter.request_queue is request_queue
    assert WORKERS_STARTED.labels(service="svc-start-twice")._value._value == 1

    exporter.stop()
    wait_for_worker(exporter)


def test_export_before_start_spawns_one_worker(fake_agent, wait_for_worker):
    exporter = _exporter("svc-auto-start")

    exporter.export([_span(SPAN1_ID)])
    exporter.export([_span(SPAN2_ID)])

    assert not exporter.stopped
    assert exporter._worker.is_alive()
    assert WORKERS_STARTED.labels(service="svc-auto-start")._value._value == 1
    assert EXPORT_REQUESTS.labels(service="svc-auto-start")._value._value == 2
    assert EXPORTED_SPANS.labels(service="svc-auto-start")._value._value == 2

    exporter.stop()
    wait_for_worker(exporter)


@pytest.mark.parametrize("spans", [None, []])
def test_export_nothing_is_noop(fake_agent, spans):
    exporter = _exporter("svc-noop")

    exporter.export(spans)

    assert exporter.stopped
    assert exporter.request_queue is None
    assert exporter._worker is None


def test_export_after_stop_drops(fake_agent, wait_for_worker):
    exporter = _exporter("svc-drop")
    exporter.start()
    exporter.stop()
    wait_for_worker(exporter)

    exporter.export([_span(SPAN1_ID)])

    assert exporter.stopped
    assert exporter.request_queue.empty()
    assert DROPPED_BATCHES.labels(service="svc-drop")._value._value == 1
    assert fake_agent.requests == []


def test_restart_reuses_client(fake_agent, wait_for_worker):
    exporter = _exporter("svc-restart")
    exporter.start()
    client = exporter.client
    first_queue = exporter.request_queue
    exporter.stop()
    wait_for_worker(exporter)

    assert exporter.start() is True
    assert exporter.client is client
    assert exporter.request_queue is not first_queue
    assert len(fake_agent.channels) == 1

    exporter.export([_span(SPAN1_ID)])
    exporter.stop()
    wait_for_worker(exporter)

    assert len(fake_agent.requests) == 1


def test_stop_without_start():
    exporter = _exporter("svc-stop-only")

    exporter.stop()

    assert exporter.stopped
    assert exporter.request_queue is None


def test_stream_error_is_logged(monkeypatch, caplog, wait_for_worker):
    class BrokenTraceService:
        def __init__(self, channel):
            pass

        def Export(self, request_iterator):
            next(request_iterator)
            raise RuntimeError("connection reset")

    monkeypatch.setattr(trace_service_pb2_grpc, "TraceServiceStub", BrokenTraceService)
    caplog.set_level(logging.WARNING, logger="ocagent_exporter.exporter")
    exporter = _exporter("svc-broken")

    exporter.export([_span(SPAN1_ID)])
    wait_for_worker(exporter)

    assert "Unable to export to OCAgent service: RuntimeError connection reset" in caplog.text
    assert (
        STREAM_ERRORS.labels(service="svc-broken", error_type="RuntimeError")._value._value
        == 1
    )
    # The stream is gone but the exporter still reports running until stopped.
    assert not exporter.stopped
    exporter.export([_span(SPAN2_ID)])

    exporter.stop()
    assert exporter.start() is True
    exporter.stop()
    wait_for_worker(exporter)


def test_export_to_grpc_collector(collector, wait_for_worker):
    service, address = collector
    exporter = _exporter("svc-grpc", agent_service_address=address)

    exporter.export([_span(SPAN1_ID)])
    exporter.export([_span(SPAN2_ID)])
    exporter.stop()
    wait_for_worker(exporter, timeout=10)

    assert exporter.stopped
    assert [r.spans[0].span_id for r in service.requests] == [
        bytes.fromhex(SPAN1_ID),
        bytes.fromhex(SPAN2_ID),
    ]
    assert service.requests[0].node.service_info.name == "svc-grpc"


def test_unreachable_collector_is_logged(caplog, wait_for_worker):
    caplog.set_level(logging.WARNING, logger="ocagent_exporter.exporter")
    exporter = _exporter("svc-unreachable", agent_service_address="127.0.0.1:1")

    exporter.export([_span(SPAN1_ID)])
    wait_for_worker(exporter, timeout=10)
    exporter.stop()

    assert "Unable to export to OCAgent service" in caplog.text


def test_create_trace_config():
    exporter = _exporter("svc-config")

    config = exporter.create_trace_config(
        max_links=4, sampler=Sampler.probability(0.25)
    )

    assert config.max_number_of_links == 4
    assert config.probability_sampler.samplingProbability == 0.25


def test_stop_twice_pushes_one_sentinel(fake_agent, wait_for_worker):
    exporter = _exporter("svc-stop-twice")
    exporter.start()

    exporter.stop()
    exporter.stop()
    wait_for_worker(exporter)

    assert exporter.request_queue.empty()


@pytest.mark.parametrize("delay", [0, -1])
def test_delay_must_be_positive(delay):
    with pytest.raises(ValueError):
        OCAgentExporter(service_name="svc-bad-delay", trace_stream_sleep_delay=delay)


def test_out_of_range_attribute_does_not_drop_batch(fake_agent, wait_for_worker):
    exporter = _exporter("svc-big-int")

    exporter.export(
        [_span(SPAN1_ID, attributes={"big": 2**64, "ok": "v"}), _span(SPAN2_ID)]
    )
    exporter.stop()
    wait_for_worker(exporter)

    (request,) = fake_agent.requests
    assert len(request.spans) == 2
    assert request.spans[0].attributes.attribute_map["ok"].string_value.value == "v"


def test_restart_discards_requests_of_failed_stream(monkeypatch, wait_for_worker):
    class FailingTraceService:
        def __init__(self, channel):
            pass

        def Export(self, request_iterator):
            raise RuntimeError("unavailable")

    monkeypatch.setattr(trace_service_pb2_grpc, "TraceServiceStub", FailingTraceService)
    exporter = _exporter("svc-abandoned")
    gauge = QUEUE_SIZE.labels(service="svc-abandoned")

    exporter.start()
    wait_for_worker(exporter)
    exporter.export([_span(SPAN1_ID)])
    exporter.export([_span(SPAN2_ID)])
    assert gauge._value._value == 2

    exporter.stop()
    assert exporter.start() is True

    assert gauge._value._value == 0
    assert DROPPED_BATCHES.labels(service="svc-abandoned")._value._value == 2
    exporter.stop()
    wait_for_worker(exporter)


def test_concurrent_first_exports_start_one_worker(fake_agent, wait_for_worker):
    exporter = _exporter("svc-race")
    barrier = threading.Barrier(8)

    def produce(i):
        barrier.wait()
        exporter.export([_span(SPAN1_ID, name=f"span-{i}")])

    threads = [threading.Thread(target=produce, args=(i,)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    exporter.stop()
    wait_for_worker(exporter)

    assert WORKERS_STARTED.labels(service="svc-race")._value._value == 1
    assert DROPPED_BATCHES.labels(service="svc-race")._value._value == 0
    names = sorted(request.spans[0].name.value for request in fake_agent.requests)
    assert names == sorted(f"span-{i}" for i in range(8))
