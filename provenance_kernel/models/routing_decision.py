"""
Module: provenance_kernel.models.routing_decision
Responsibility: ORM persistence for routing decisions made by the gate
    network during an inference.
Architecture position: Kernel > Models.

Invariants enforced:
    - Fully immutable after creation.
    - gate_probability and confidence lie in [0, 1] (checked by the recorder).
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, Float, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from provenance_kernel.db.base import Base
from provenance_kernel.domain.causal_graph import NodeType
from provenance_kernel.models.causal_entity import CausalEntityMixin


class DecisionType(str, Enum):
    """What the router decided to do at a layer."""

    EXIT = "exit"
    SKIP = "skip"
    ROUTE = "route"
    ESCALATE = "escalate"
    ITERATE = "iterate"


class RoutingDecisionModel(CausalEntityMixin, Base):
    """A single routing decision within an inference run."""

    __tablename__ = "routing_decisions"

    __table_args__ = (
        Index("idx_decision_inference", "inference_id"),
        Index("idx_decision_type", "decision_type"),
        Index("idx_decision_selected_model", "selected_model"),
        Index("idx_decision_timestamp", "timestamp"),
        Index("idx_decision_domain", "domain"),
    )

    NODE_TYPE = NodeType.ROUTING_DECISION
    NODE_FIELDS = (
        "inference_id",
        "decision_type",
        "layer_index",
        "gate_probability",
        "selected_model",
        "iteration_count",
        "confidence",
        "domain",
    )

    timestamp: Mapped[datetime] = mapped_column(nullable=False)
    inference_id: Mapped[str] = mapped_column(String(128), nullable=False)
    decision_type: Mapped[str] = mapped_column(String(20), nullable=False)
    layer_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    gate_probability: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    selected_model: Mapped[str | None] = mapped_column(String(128), nullable=True)
    iteration_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    domain: Mapped[str | None] = mapped_column(String(64), nullable=True)

    extra_metadata: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<RoutingDecision {self.id}: {self.decision_type} @ {self.inference_id}>"
