"""OpenCensus Agent trace exporter."""

__all__ = [
    "__version__",
    "OCAgentExporter",
    "OCAgentSpanExporter",
    "Sampler",
    "create_trace_config",
]

__version__ = "0.1.0"

from .exporter import OCAgentExporter, OCAgentSpanExporter  # noqa: E402
from .sampler import Sampler, create_trace_config  # noqa: E402
