"""
Causal graph primitives -- the records a provenance trace is made of.

===============================================================================
PURPOSE
===============================================================================

Every externally observable output of the system can be explained by a fixed
five-level chain of causes:

    SpikeEvent -> RoutingDecision -> AgentAction -> WorkflowExecution -> ExternalOutput

Edges are stored and traversed effect -> cause ("caused by"):

    ExternalOutput    --(PRODUCED_BY)-->  WorkflowExecution
    WorkflowExecution --(EXECUTED_BY)-->  AgentAction
    AgentAction       --(TRIGGERED_BY)--> RoutingDecision
    RoutingDecision   --(CAUSED_BY)-->    SpikeEvent

===============================================================================
INVARIANTS
===============================================================================

C1 (Adjacency): An edge connects neighbouring levels only. No level is skipped
    and no edge points downstream.
C2 (Global ids): Node ids are unique across the whole graph, not per type.
    Traversal dedup keys on id alone.
C3 (Confidence): Edge confidence lies in [0, 1]. 1.0 means structurally
    certain; lower values model statistically inferred attribution
    (spike -> decision).
C4 (Containment is not causation): The WorkflowExecution parent/child
    relation for nested workflows is never part of the chain.

===============================================================================
DESIGN DECISIONS
===============================================================================

1. WHY FROZEN DATACLASSES?
   Traces are handed to an API layer for serialization.  Frozen records can
   be shared between concurrent requests without copying.

2. WHY STRING IDS?
   Producers (spiking network, agent runtime, workflow engine, ledgers) mint
   their own identifiers.  The kernel never assumes a UUID format.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from provenance_kernel.exceptions import InvalidCausalLinkError, InvalidConfidenceError


class NodeType(str, Enum):
    """The five kinds of entity in the causal chain."""

    SPIKE_EVENT = "spike_event"
    ROUTING_DECISION = "routing_decision"
    AGENT_ACTION = "agent_action"
    WORKFLOW_EXECUTION = "workflow_execution"
    EXTERNAL_OUTPUT = "external_output"


class EdgeType(str, Enum):
    """
    Semantic edge types, named from the effect's point of view.

    Naming convention: effect VERB_BY cause.
    """

    CAUSED_BY = "caused_by"  # RoutingDecision caused by SpikeEvent
    TRIGGERED_BY = "triggered_by"  # AgentAction triggered by RoutingDecision
    EXECUTED_BY = "executed_by"  # WorkflowExecution executed by AgentAction
    PRODUCED_BY = "produced_by"  # ExternalOutput produced by WorkflowExecution


# Root (cause) first, leaf (observable effect) last.
CAUSAL_CHAIN: tuple[NodeType, ...] = (
    NodeType.SPIKE_EVENT,
    NodeType.ROUTING_DECISION,
    NodeType.AGENT_ACTION,
    NodeType.WORKFLOW_EXECUTION,
    NodeType.EXTERNAL_OUTPUT,
)

EDGE_TYPE_BY_EFFECT: Mapping[NodeType, EdgeType] = {
    NodeType.ROUTING_DECISION: EdgeType.CAUSED_BY,
    NodeType.AGENT_ACTION: EdgeType.TRIGGERED_BY,
    NodeType.WORKFLOW_EXECUTION: EdgeType.EXECUTED_BY,
    NodeType.EXTERNAL_OUTPUT: EdgeType.PRODUCED_BY,
}


def cause_type_of(node_type: NodeType) -> NodeType | None:
    """Type of a node's immediate causes, or None for the chain root."""
    index = CAUSAL_CHAIN.index(NodeType(node_type))
    return CAUSAL_CHAIN[index - 1] if index > 0 else None


def effect_type_of(node_type: NodeType) -> NodeType | None:
    """Type of a node's immediate effects, or None for the terminal output."""
    index = CAUSAL_CHAIN.index(NodeType(node_type))
    return CAUSAL_CHAIN[index + 1] if index + 1 < len(CAUSAL_CHAIN) else None


def validate_confidence(confidence: float) -> float:
    """Return ``confidence`` as float or raise InvalidConfidenceError (C3)."""
    value = float(confidence)
    if not 0.0 <= value <= 1.0:
        raise InvalidConfidenceError(value)
    return value


def total_latency_ms(nodes) -> float:
    """
    Sum of ``latency_ms`` over agent actions and ``duration_ms`` over workflow
    executions.  Nodes without the field (still running) contribute 0.
    """
    total = 0.0
    for node in nodes:
        metadata = node.metadata or {}
        if node.type == NodeType.AGENT_ACTION:
            total += float(metadata.get("latency_ms") or 0.0)
        elif node.type == NodeType.WORKFLOW_EXECUTION:
            total += float(metadata.get("duration_ms") or 0.0)
    return total


@dataclass(frozen=True, slots=True)
class NodeRef:
    """Self-describing pointer to a node: (type, id)."""

    node_type: NodeType
    node_id: str

    def __post_init__(self) -> None:
        if not isinstance(self.node_type, NodeType):
            object.__setattr__(self, "node_type", NodeType(self.node_type))
        if not self.node_id:
            raise ValueError("node_id must be a non-empty string")

    def __str__(self) -> str:
        return f"{self.node_type.value}:{self.node_id}"

    @classmethod
    def parse(cls, ref_string: str) -> NodeRef:
        """Parse "node_type:node_id" back into a NodeRef."""
        try:
            type_str, node_id = ref_string.split(":", 1)
            return cls(NodeType(type_str), node_id)
        except ValueError as e:
            raise ValueError(f"Invalid node ref string: {ref_string}") from e

    @classmethod
    def spike_event(cls, node_id: str) -> NodeRef:
        return cls(NodeType.SPIKE_EVENT, node_id)

    @classmethod
    def routing_decision(cls, node_id: str) -> NodeRef:
        return cls(NodeType.ROUTING_DECISION, node_id)

    @classmethod
    def agent_action(cls, node_id: str) -> NodeRef:
        return cls(NodeType.AGENT_ACTION, node_id)

    @classmethod
    def workflow_execution(cls, node_id: str) -> NodeRef:
        return cls(NodeType.WORKFLOW_EXECUTION, node_id)

    @classmethod
    def external_output(cls, node_id: str) -> NodeRef:
        return cls(NodeType.EXTERNAL_OUTPUT, node_id)


@dataclass(frozen=True, slots=True)
class CausalNode:
    """A node in a causal path, tagged with its hop distance from the anchor."""

    id: str
    type: NodeType
    timestamp: datetime
    depth: int = 0
    metadata: Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.type, NodeType):
            object.__setattr__(self, "type", NodeType(self.type))

    @property
    def ref(self) -> NodeRef:
        return NodeRef(self.type, self.id)

    def at_depth(self, depth: int) -> CausalNode:
        """Copy of this node placed at ``depth``."""
        return replace(self, depth=depth)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "type": self.type.value,
            "timestamp": self.timestamp.isoformat(),
            "depth": self.depth,
        }
        if self.metadata:
            data["metadata"] = {
                key: value.isoformat() if isinstance(value, datetime) else value
                for key, value in self.metadata.items()
            }
        return data


@dataclass(frozen=True, slots=True)
class CausalEdge:
    """
    Directed causal edge: source is the effect, target is its cause.

    Invariants C1 and C3 are checked on construction.
    """

    source_id: str
    source_type: NodeType
    target_id: str
    target_type: NodeType
    edge_type: EdgeType
    confidence: float = 1.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "source_type", NodeType(self.source_type))
        object.__setattr__(self, "target_type", NodeType(self.target_type))
        object.__setattr__(self, "edge_type", EdgeType(self.edge_type))
        object.__setattr__(self, "confidence", validate_confidence(self.confidence))

        if cause_type_of(self.source_type) != self.target_type:
            raise InvalidCausalLinkError(
                child_type=self.source_type.value,
                parent_type=self.target_type.value,
                reason="edges must point to the immediately preceding level",
            )
        if EDGE_TYPE_BY_EFFECT[self.source_type] != self.edge_type:
            raise InvalidCausalLinkError(
                child_type=self.source_type.value,
                parent_type=self.target_type.value,
                reason=f"edge type {self.edge_type.value} does not match the chain",
            )

    @classmethod
    def between(
        cls,
        effect: NodeRef,
        cause: NodeRef,
        confidence: float = 1.0,
    ) -> CausalEdge:
        """Build the edge effect -> cause, deriving the edge type from the chain."""
        edge_type = EDGE_TYPE_BY_EFFECT.get(effect.node_type)
        if edge_type is None:
            raise InvalidCausalLinkError(
                child_type=effect.node_type.value,
                parent_type=cause.node_type.value,
                reason="spike events are chain roots and have no causes",
            )
        return cls(
            source_id=effect.node_id,
            source_type=effect.node_type,
            target_id=cause.node_id,
            target_type=cause.node_type,
            edge_type=edge_type,
            confidence=confidence,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_id": self.source_id,
            "source_type": self.source_type.value,
            "target_id": self.target_id,
            "target_type": self.target_type.value,
            "edge_type": self.edge_type.value,
            "confidence": self.confidence,
        }


@dataclass(frozen=True, slots=True)
class CausalPath:
    """
    Result of a trace: visited nodes in BFS order plus every discovered edge.

    ``depth`` is the maximum node depth.  A trace that stopped at its depth
    ceiling is not an error; compare ``path.depth == max_depth``.
    ``complete`` is False only when the trace was cancelled mid-flight.
    """

    output_id: str
    nodes: tuple[CausalNode, ...]
    edges: tuple[CausalEdge, ...]
    depth: int
    traced_at: datetime
    complete: bool = True
    total_latency_ms: float = 0.0

    # Derived views (pure projections, no store access)

    def nodes_of_type(self, node_type: NodeType) -> list[CausalNode]:
        wanted = NodeType(node_type)
        return [node for node in self.nodes if node.type == wanted]

    def spike_events(self) -> list[CausalNode]:
        return self.nodes_of_type(NodeType.SPIKE_EVENT)

    def decisions(self) -> list[CausalNode]:
        return self.nodes_of_type(NodeType.ROUTING_DECISION)

    def actions(self) -> list[CausalNode]:
        return self.nodes_of_type(NodeType.AGENT_ACTION)

    def workflows(self) -> list[CausalNode]:
        return self.nodes_of_type(NodeType.WORKFLOW_EXECUTION)

    def outputs(self) -> list[CausalNode]:
        return self.nodes_of_type(NodeType.EXTERNAL_OUTPUT)

    def count_by_type(self) -> dict[str, int]:
        """Node counts keyed by type name, e.g. ``{"spike_event": 2}``."""
        return dict(Counter(node.type.value for node in self.nodes))

    def node_ids(self) -> list[str]:
        return [node.id for node in self.nodes]

    def get_node(self, node_id: str) -> CausalNode | None:
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def reached_ceiling(self, max_depth: int) -> bool:
        """True if the trace may have been truncated by ``max_depth``."""
        return self.depth >= max_depth

    def to_dict(self) -> dict[str, Any]:
        return {
            "output_id": self.output_id,
            "nodes": [node.to_dict() for node in self.nodes],
            "edges": [edge.to_dict() for edge in self.edges],
            "depth": self.depth,
            "total_latency_ms": self.total_latency_ms,
            "traced_at": self.traced_at.isoformat(),
            "complete": self.complete,
        }


@dataclass(frozen=True, slots=True)
class AgentDecisionPath:
    """Upstream causes and downstream effects of a single agent action."""

    agent_id: str
    action_id: str
    spike_events: tuple[CausalNode, ...]
    decisions: tuple[CausalNode, ...]
    workflows: tuple[CausalNode, ...]
    outputs: tuple[CausalNode, ...]
    total_depth: int
    traced_at: datetime
    edges: tuple[CausalEdge, ...] = ()
    complete: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "action_id": self.action_id,
            "spike_events": [n.to_dict() for n in self.spike_events],
            "decisions": [n.to_dict() for n in self.decisions],
            "workflows": [n.to_dict() for n in self.workflows],
            "outputs": [n.to_dict() for n in self.outputs],
            "edges": [e.to_dict() for e in self.edges],
            "total_depth": self.total_depth,
            "traced_at": self.traced_at.isoformat(),
            "complete": self.complete,
        }


@dataclass(frozen=True, slots=True)
class PatternAggregate:
    """
    Spike events in a window grouped by fingerprint, as returned by the store.

    Filtering and significance scoring happen in the tracer, not the store.
    """

    fingerprint: str
    count: int
    first_seen: datetime
    last_seen: datetime
    population_id: str
    neuron_indices: tuple[int, ...] = field(default_factory=tuple)


@dataclass(frozen=True, slots=True)
class PatternResult:
    """A fingerprint that recurred at least ``min_occurrences`` times."""

    fingerprint: str
    occurrence_count: int
    neuron_indices: tuple[int, ...]
    population_id: str
    first_seen: datetime
    last_seen: datetime
    significance: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "pattern_hash": self.fingerprint,
            "occurrence_count": self.occurrence_count,
            "neuron_indices": list(self.neuron_indices),
            "population_id": self.population_id,
            "first_seen": self.first_seen.isoformat(),
            "last_seen": self.last_seen.isoformat(),
            "significance": self.significance,
        }
