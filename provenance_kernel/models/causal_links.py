"""
Module: provenance_kernel.models.causal_links
Responsibility: Join tables holding the causal edges between adjacent levels
    of the chain, each with its edge confidence.
Architecture position: Kernel > Models.

Invariants enforced:
    - One table per adjacent pair of entity kinds; a link can therefore
      never skip a level.
    - (effect_id, cause_id) is the primary key: an edge is recorded once.
    - confidence lies in [0, 1] (CHECK constraint, and validated on write).
    - Rows are insert-only; the SQL store exposes no update or delete path.

Table                        | effect             | cause
-----------------------------|--------------------|-------------------
workflow_execution_outputs   | external_output    | workflow_execution
agent_action_workflows       | workflow_execution | agent_action
routing_decision_actions     | agent_action       | routing_decision
spike_event_decisions        | routing_decision   | spike_event
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

from sqlalchemy import CheckConstraint, Column, Float, ForeignKey, Index, String, Table

from provenance_kernel.db.base import Base, UTCDateTime
from provenance_kernel.domain.causal_graph import EDGE_TYPE_BY_EFFECT, EdgeType, NodeType


def _link_table(name: str, effect_table: str, cause_table: str) -> Table:
    return Table(
        name,
        Base.metadata,
        Column(
            "effect_id",
            String(128),
            ForeignKey(f"{effect_table}.id"),
            primary_key=True,
        ),
        Column(
            "cause_id",
            String(128),
            ForeignKey(f"{cause_table}.id"),
            primary_key=True,
        ),
        Column("confidence", Float, nullable=False, default=1.0),
        Column("created_at", UTCDateTime(), nullable=True),
        CheckConstraint(
            "confidence >= 0.0 AND confidence <= 1.0",
            name=f"ck_{name}_confidence",
        ),
        Index(f"idx_{name}_cause", "cause_id"),
    )


workflow_execution_outputs = _link_table(
    "workflow_execution_outputs", "external_outputs", "workflow_executions"
)
agent_action_workflows = _link_table(
    "agent_action_workflows", "workflow_executions", "agent_actions"
)
routing_decision_actions = _link_table(
    "routing_decision_actions", "agent_actions", "routing_decisions"
)
spike_event_decisions = _link_table(
    "spike_event_decisions", "routing_decisions", "spike_events"
)


@dataclass(frozen=True, slots=True)
class CausalLinkSpec:
    """Which join table connects an effect kind to its cause kind."""

    table: Table
    effect_type: NodeType
    cause_type: NodeType
    edge_type: EdgeType


# Keyed by the effect (child) node type.
CAUSAL_LINKS_BY_EFFECT: Mapping[NodeType, CausalLinkSpec] = {
    spec.effect_type: spec
    for spec in (
        CausalLinkSpec(
            workflow_execution_outputs,
            NodeType.EXTERNAL_OUTPUT,
            NodeType.WORKFLOW_EXECUTION,
            EDGE_TYPE_BY_EFFECT[NodeType.EXTERNAL_OUTPUT],
        ),
        CausalLinkSpec(
            agent_action_workflows,
            NodeType.WORKFLOW_EXECUTION,
            NodeType.AGENT_ACTION,
            EDGE_TYPE_BY_EFFECT[NodeType.WORKFLOW_EXECUTION],
        ),
        CausalLinkSpec(
            routing_decision_actions,
            NodeType.AGENT_ACTION,
            NodeType.ROUTING_DECISION,
            EDGE_TYPE_BY_EFFECT[NodeType.AGENT_ACTION],
        ),
        CausalLinkSpec(
            spike_event_decisions,
            NodeType.ROUTING_DECISION,
            NodeType.SPIKE_EVENT,
            EDGE_TYPE_BY_EFFECT[NodeType.ROUTING_DECISION],
        ),
    )
}

# Keyed by the cause (parent) node type.
CAUSAL_LINKS_BY_CAUSE: Mapping[NodeType, CausalLinkSpec] = {
    spec.cause_type: spec for spec in CAUSAL_LINKS_BY_EFFECT.values()
}
