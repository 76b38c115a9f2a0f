"""
Module: provenance_kernel.models.agent_action
Responsibility: ORM persistence for actions taken by AI agents.
Architecture position: Kernel > Models.

Invariants enforced:
    - Identity and intent columns are immutable.  status, result, error and
      latency_ms are completion fields: they may be filled in while the
      action runs, then freeze once status is terminal.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, Float, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from provenance_kernel.db.base import Base
from provenance_kernel.domain.causal_graph import NodeType
from provenance_kernel.models.causal_entity import CausalEntityMixin


class ActionStatus(str, Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class AgentActionModel(CausalEntityMixin, Base):
    """An action an agent took in response to routing decisions."""

    __tablename__ = "agent_actions"

    __table_args__ = (
        Index("idx_action_agent", "agent_id"),
        Index("idx_action_agent_type", "agent_type"),
        Index("idx_action_type", "action_type"),
        Index("idx_action_timestamp", "timestamp"),
        Index("idx_action_status", "status"),
        Index("idx_action_session", "session_id"),
        Index("idx_action_user", "user_id"),
    )

    NODE_TYPE = NodeType.AGENT_ACTION
    NODE_FIELDS = (
        "agent_id",
        "agent_type",
        "action_type",
        "action_name",
        "parameters",
        "target_resource",
        "status",
        "result",
        "error",
        "latency_ms",
        "session_id",
        "user_id",
    )
    COMPLETION_FIELDS = frozenset({"status", "result", "error", "latency_ms"})
    TERMINAL_STATUSES = frozenset({
        ActionStatus.COMPLETED.value,
        ActionStatus.FAILED.value,
        ActionStatus.CANCELLED.value,
    })

    timestamp: Mapped[datetime] = mapped_column(nullable=False)
    agent_id: Mapped[str] = mapped_column(String(128), nullable=False)
    agent_type: Mapped[str] = mapped_column(String(64), nullable=False)
    action_type: Mapped[str] = mapped_column(String(64), nullable=False)
    action_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    parameters: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    target_resource: Mapped[str | None] = mapped_column(String(255), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ActionStatus.PENDING.value
    )
    result: Mapped[str | None] = mapped_column(Text, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    latency_ms: Mapped[float | None] = mapped_column(Float, nullable=True)

    session_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    user_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    extra_metadata: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<AgentAction {self.id}: {self.agent_id} {self.action_type} ({self.status})>"
