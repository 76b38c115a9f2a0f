"""Kernel services: the causal tracer (read side) and recorder (write side)."""

from provenance_kernel.services.causal_recorder import CausalRecorder
from provenance_kernel.services.causal_tracer import CausalTracer

__all__ = [
    "CausalRecorder",
    "CausalTracer",
]
