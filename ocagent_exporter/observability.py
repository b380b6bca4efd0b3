"""OpenTelemetry setup."""

from __future__ import annotations

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from .config import Config
from .exporter import OCAgentExporter, OCAgentSpanExporter
from .metrics import start_server
from . import __version__


def setup_tracer(config: Config) -> tuple[trace.Tracer, OCAgentExporter | None]:
    """Install a global tracer provider that exports to the OpenCensus Agent.

    Returns the tracer and the exporter, or ``None`` for the exporter when
    the config disables exporting.
    """
    resource = Resource(
        {
            "service.name": config.service_name,
            "exporter.version": __version__,
        }
    )
    provider = TracerProvider(resource=resource)
    exporter = None
    if config.enabled:
        exporter = OCAgentExporter(**config.exporter_kwargs())
        provider.add_span_processor(BatchSpanProcessor(OCAgentSpanExporter(exporter)))
        if config.metrics_port is not None:
            start_server(config.metrics_port)
    trace.set_tracer_provider(provider)
    return provider.get_tracer("ocagent_exporter"), exporter
