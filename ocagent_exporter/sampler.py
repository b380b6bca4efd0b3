"""Sampler descriptors and global trace config."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Union

from opencensus.proto.trace.v1 import trace_config_pb2

_MAX_INT64 = 2**63 - 1

SamplerProto = Union[
    trace_config_pb2.ProbabilitySampler,
    trace_config_pb2.ConstantSampler,
    trace_config_pb2.RateLimitingSampler,
]


class SamplerKind(Enum):
    PROBABILITY = "probability"
    CONSTANT = "constant"
    RATE_LIMIT = "rate_limit"


class ConstantDecision(IntEnum):
    ALWAYS_OFF = 0
    ALWAYS_ON = 1
    ALWAYS_PARENT = 2


@dataclass(frozen=True)
class Sampler:
    """Sampling policy sent to the agent as part of a ``TraceConfig``.

    Build instances with the factory classmethods; invalid values raise
    ``ValueError`` there, never later::

        Sampler.probability(0.2)
        Sampler.constant_on()
        Sampler.rate_limit(10)
    """

    kind: SamplerKind
    probability_value: float | None = None
    decision: ConstantDecision | None = None
    qps: int | None = None

    @classmethod
    def probability(cls, value: float) -> "Sampler":
        """Sample traces uniformly with probability ``value`` in [0.0, 1.0]."""
        if not 0.0 <= value <= 1.0:
            raise ValueError("value must be within 0.0 and 1.0")
        return cls(kind=SamplerKind.PROBABILITY, probability_value=float(value))

    @classmethod
    def constant_off(cls) -> "Sampler":
        return cls(kind=SamplerKind.CONSTANT, decision=ConstantDecision.ALWAYS_OFF)

    @classmethod
    def constant_on(cls) -> "Sampler":
        return cls(kind=SamplerKind.CONSTANT, decision=ConstantDecision.ALWAYS_ON)

    @classmethod
    def constant_parent(cls) -> "Sampler":
        """Follow the parent span's decision (off when there is no parent)."""
        return cls(kind=SamplerKind.CONSTANT, decision=ConstantDecision.ALWAYS_PARENT)

    @classmethod
    def rate_limit(cls, qps: int) -> "Sampler":
        """Sample at most ``qps`` traces per second."""
        # bool is a subclass of int
        if isinstance(qps, bool) or not isinstance(qps, int):
            raise ValueError(f"qps must be an integer, got {qps!r}")
        if qps < 0:
            raise ValueError("value must be greater than or equal to zero")
        if qps > _MAX_INT64:
            raise ValueError("value must fit in a signed 64-bit integer")
        return cls(kind=SamplerKind.RATE_LIMIT, qps=qps)

    def to_proto(self) -> SamplerProto:
        if self.kind is SamplerKind.PROBABILITY:
            return trace_config_pb2.ProbabilitySampler(
                samplingProbability=self.probability_value
            )
        if self.kind is SamplerKind.CONSTANT:
            return trace_config_pb2.ConstantSampler(decision=int(self.decision))
        return trace_config_pb2.RateLimitingSampler(qps=self.qps)


_SAMPLER_FIELDS = {
    SamplerKind.PROBABILITY: "probability_sampler",
    SamplerKind.CONSTANT: "constant_sampler",
    SamplerKind.RATE_LIMIT: "rate_limiting_sampler",
}


def create_trace_config(
    *,
    max_attributes: int | None = None,
    max_annotations: int | None = None,
    max_message_events: int | None = None,
    max_links: int | None = None,
    sampler: Sampler | None = None,
) -> trace_config_pb2.TraceConfig:
    """Build the global trace config. Unset arguments stay unset on the wire."""
    options = {
        "max_number_of_attributes": max_attributes,
        "max_number_of_annotations": max_annotations,
        "max_number_of_message_events": max_message_events,
        "max_number_of_links": max_links,
    }
    if sampler is not None:
        options[_SAMPLER_FIELDS[sampler.kind]] = sampler.to_proto()
    return trace_config_pb2.TraceConfig(
        **{k: v for k, v in options.items() if v is not None}
    )
