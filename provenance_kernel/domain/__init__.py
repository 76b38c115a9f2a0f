"""
Pure domain layer.

Immutable causal-graph records and pure policies with NO dependencies on
the ORM, the database, or I/O (SystemClock aside).
"""

from provenance_kernel.domain.cancellation import CancellationToken
from provenance_kernel.domain.causal_graph import (
    CAUSAL_CHAIN,
    EDGE_TYPE_BY_EFFECT,
    AgentDecisionPath,
    CausalEdge,
    CausalNode,
    CausalPath,
    EdgeType,
    NodeRef,
    NodeType,
    PatternAggregate,
    PatternResult,
    cause_type_of,
    effect_type_of,
    total_latency_ms,
    validate_confidence,
)
from provenance_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from provenance_kernel.domain.significance import (
    PoissonSignificance,
    RatioSignificance,
    SignificanceModel,
    build_significance_model,
)

__all__ = [
    "AgentDecisionPath",
    "CAUSAL_CHAIN",
    "CancellationToken",
    "CausalEdge",
    "CausalNode",
    "CausalPath",
    "Clock",
    "DeterministicClock",
    "EDGE_TYPE_BY_EFFECT",
    "EdgeType",
    "NodeRef",
    "NodeType",
    "PatternAggregate",
    "PatternResult",
    "PoissonSignificance",
    "RatioSignificance",
    "SignificanceModel",
    "SystemClock",
    "build_significance_model",
    "cause_type_of",
    "effect_type_of",
    "total_latency_ms",
    "validate_confidence",
]
