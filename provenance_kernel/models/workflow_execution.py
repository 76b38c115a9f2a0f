"""
Module: provenance_kernel.models.workflow_execution
Responsibility: ORM persistence for workflow executions run by agent actions.
Architecture position: Kernel > Models.

Invariants enforced:
    - parent_execution_id expresses workflow nesting (containment).  It is
      NOT a causal edge and no traversal follows it.
    - completed_at, status, outputs, error and duration_ms are completion
      fields; they freeze once status is terminal.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from provenance_kernel.db.base import Base
from provenance_kernel.domain.causal_graph import NodeType
from provenance_kernel.models.causal_entity import CausalEntityMixin


class WorkflowStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    PAUSED = "paused"


class WorkflowExecutionModel(CausalEntityMixin, Base):
    """One execution of a workflow (or a step of a nested workflow)."""

    __tablename__ = "workflow_executions"

    __table_args__ = (
        Index("idx_workflow_definition", "workflow_id"),
        Index("idx_workflow_status", "status"),
        Index("idx_workflow_started_at", "started_at"),
        Index("idx_workflow_parent", "parent_execution_id"),
    )

    NODE_TYPE = NodeType.WORKFLOW_EXECUTION
    TIMESTAMP_FIELD = "started_at"
    NODE_FIELDS = (
        "workflow_id",
        "workflow_name",
        "step_id",
        "step_name",
        "step_index",
        "status",
        "inputs",
        "outputs",
        "error",
        "duration_ms",
        "completed_at",
        "parent_execution_id",
    )
    COMPLETION_FIELDS = frozenset({
        "status",
        "outputs",
        "error",
        "duration_ms",
        "completed_at",
    })
    TERMINAL_STATUSES = frozenset({
        WorkflowStatus.COMPLETED.value,
        WorkflowStatus.FAILED.value,
        WorkflowStatus.CANCELLED.value,
    })

    started_at: Mapped[datetime] = mapped_column(nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    workflow_id: Mapped[str] = mapped_column(String(128), nullable=False)
    workflow_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    step_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    step_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    step_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=WorkflowStatus.PENDING.value
    )
    inputs: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    outputs: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    duration_ms: Mapped[float | None] = mapped_column(Float, nullable=True)

    parent_execution_id: Mapped[str | None] = mapped_column(
        String(128),
        ForeignKey("workflow_executions.id"),
        nullable=True,
    )

    extra_metadata: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<WorkflowExecution {self.id}: {self.workflow_id}#{self.step_index} ({self.status})>"
