"""
Module: provenance_kernel.models.spike_event
Responsibility: ORM persistence for spike events, the roots of the causal
    chain.
Architecture position: Kernel > Models.

Invariants enforced:
    - Fully immutable after creation (no completion fields).
    - pattern_hash is a deterministic fingerprint of (population, layer,
      fired neurons); indexed for pattern aggregation and lookup.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, BigInteger, Boolean, Float, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from provenance_kernel.db.base import Base
from provenance_kernel.domain.causal_graph import NodeType
from provenance_kernel.models.causal_entity import CausalEntityMixin


class SpikeEventModel(CausalEntityMixin, Base):
    """A population of neurons firing together at one instant."""

    __tablename__ = "spike_events"

    __table_args__ = (
        Index("idx_spike_pattern_hash", "pattern_hash"),
        Index("idx_spike_inference", "inference_id"),
        Index("idx_spike_population", "population_id"),
        Index("idx_spike_timestamp", "timestamp"),
        Index("idx_spike_emergent", "is_emergent"),
    )

    NODE_TYPE = NodeType.SPIKE_EVENT
    NODE_FIELDS = (
        "population_id",
        "layer_index",
        "neuron_indices",
        "spike_counts",
        "pattern_hash",
        "inference_id",
        "is_emergent",
        "entropy",
        "timestamp_ns",
    )

    timestamp: Mapped[datetime] = mapped_column(nullable=False)
    timestamp_ns: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    population_id: Mapped[str] = mapped_column(String(128), nullable=False)
    layer_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    neuron_indices: Mapped[list] = mapped_column(JSON, nullable=False)
    spike_counts: Mapped[list | None] = mapped_column(JSON, nullable=True)

    pattern_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    inference_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    is_emergent: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    entropy: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    extra_metadata: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<SpikeEvent {self.id}: {self.population_id}"
            f"[{self.layer_index}] {self.pattern_hash[:12]}>"
        )
