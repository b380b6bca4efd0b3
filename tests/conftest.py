import pytest
from opencensus.proto.agent.trace.v1 import trace_service_pb2, trace_service_pb2_grpc


class FakeTraceService:
    """Stands in for ``TraceServiceStub``; records the export stream."""

    def __init__(self):
        self.requests = []
        self.responses = []
        self.channels = []

    def __call__(self, channel):
        self.channels.append(channel)
        return self

    def Export(self, request_iterator):
        for request in request_iterator:
            self.requests.append(request)
            response = trace_service_pb2.ExportTraceServiceResponse()
            self.responses.append(response)
            yield response


@pytest.fixture
def fake_agent(monkeypatch):
    agent = FakeTraceService()
    monkeypatch.setattr(trace_service_pb2_grpc, "TraceServiceStub", agent)
    return agent


def _join_worker(exporter, timeout=5.0):
    worker = exporter._worker
    if worker is not None:
        worker.join(timeout=timeout)
        assert not worker.is_alive()


@pytest.fixture
def wait_for_worker():
    return _join_worker
