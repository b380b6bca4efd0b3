"""Configuration loader for the exporter."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from typing import Any, Dict

from .exporter import (
    DEFAULT_AGENT_SERVICE_ADDRESS,
    DEFAULT_GLOBAL_RESOURCE_TYPE,
    DEFAULT_TRACE_STREAM_SLEEP_DELAY,
)


def _get_bool(name: str, default: bool) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return val.lower() in {"1", "true", "yes", "on"}


def _get_float(name: str, default: float) -> float:
    val = os.getenv(name)
    if not val:
        return default
    try:
        return float(val)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {val!r}") from None


def _get_port(name: str) -> int | None:
    val = os.getenv(name)
    if not val:
        return None
    if not val.isdigit():
        raise ValueError(f"{name} must be a port number, got {val!r}")
    return int(val)


def _parse_labels(raw: str) -> Dict[str, str]:
    """Parse ``key=value,key2=value2`` into a dict."""
    labels: Dict[str, str] = {}
    for pair in raw.split(","):
        pair = pair.strip()
        if not pair:
            continue
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Invalid resource label {pair!r}, expected key=value")
        labels[key.strip()] = value.strip()
    return labels


@dataclass(frozen=True)
class Config:
    enabled: bool
    service_name: str
    agent_service_address: str
    credentials_path: str | None
    resource_type: str
    resource_labels: Dict[str, str] = field(default_factory=dict)
    trace_stream_sleep_delay: float = DEFAULT_TRACE_STREAM_SLEEP_DELAY
    metrics_port: int | None = None

    def exporter_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for :class:`~ocagent_exporter.exporter.OCAgentExporter`."""
        return {
            "service_name": self.service_name,
            "agent_service_address": self.agent_service_address,
            "credentials": self.credentials_path,
            "resource_type": self.resource_type,
            "resource_labels": dict(self.resource_labels),
            "trace_stream_sleep_delay": self.trace_stream_sleep_delay,
        }


def load_config() -> Config:
    """Load configuration from environment variables."""
    service_name = os.getenv("OCAGENT_SERVICE_NAME", "")

    enabled = _get_bool("OCAGENT_ENABLED", True)
    if enabled and not service_name:
        raise ValueError("OCAGENT_SERVICE_NAME is required when OCAGENT_ENABLED is true")

    trace_stream_sleep_delay = _get_float(
        "OCAGENT_STREAM_DELAY", DEFAULT_TRACE_STREAM_SLEEP_DELAY
    )
    if not trace_stream_sleep_delay > 0:
        raise ValueError(
            f"OCAGENT_STREAM_DELAY must be greater than zero, got {trace_stream_sleep_delay!r}"
        )

    return Config(
        enabled=enabled,
        service_name=service_name,
        agent_service_address=os.getenv("OCAGENT_ADDRESS") or DEFAULT_AGENT_SERVICE_ADDRESS,
        credentials_path=os.getenv("OCAGENT_CREDENTIALS") or None,
        resource_type=os.getenv("OCAGENT_RESOURCE_TYPE") or DEFAULT_GLOBAL_RESOURCE_TYPE,
        resource_labels=_parse_labels(os.getenv("OCAGENT_RESOURCE_LABELS", "")),
        trace_stream_sleep_delay=trace_stream_sleep_delay,
        metrics_port=_get_port("OCAGENT_METRICS_PORT"),
    )
