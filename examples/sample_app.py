"""Sample app sending spans to a local OpenCensus Agent.

Run an agent (or the OpenTelemetry collector with the ``opencensus``
receiver) on ``localhost:55678``, then::

    OCAGENT_SERVICE_NAME=sample-app python examples/sample_app.py
"""

from __future__ import annotations

import time

from opentelemetry import trace

from ocagent_exporter.config import load_config
from ocagent_exporter.observability import setup_tracer
from ocagent_exporter.sampler import Sampler


def handle_request(tracer: trace.Tracer, order_id: int) -> None:
    with tracer.start_as_current_span("checkout", kind=trace.SpanKind.SERVER) as span:
        span.set_attribute("order.id", order_id)
        with tracer.start_as_current_span("inventory.lookup", kind=trace.SpanKind.CLIENT):
            time.sleep(0.01)
        with tracer.start_as_current_span("payment.charge", kind=trace.SpanKind.CLIENT) as charge:
            charge.add_event("card.authorized", {"amount": 12.5})
            time.sleep(0.02)


def main() -> None:
    config = load_config()
    tracer, exporter = setup_tracer(config)

    if exporter is not None:
        trace_config = exporter.create_trace_config(
            max_attributes=32, sampler=Sampler.probability(0.5)
        )
        print(f"Trace config: {trace_config}")

    for order_id in range(5):
        handle_request(tracer, order_id)

    # Flushes the batch processor, then stops the export stream.
    trace.get_tracer_provider().shutdown()
    # stop() does not wait for the stream to drain.
    time.sleep(1)


if __name__ == "__main__":
    main()
