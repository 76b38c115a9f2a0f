"""
Module: provenance_kernel.models.external_output
Responsibility: ORM persistence for externally observable outputs
    (ledger transactions, records, trades, documents, ...).
Architecture position: Kernel > Models.

Invariants enforced:
    - ExternalOutput is the leaf of the causal chain and the usual anchor
      of a provenance trace.
    - Only status may change after creation, and only until it is terminal.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import JSON, BigInteger, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from provenance_kernel.db.base import Base
from provenance_kernel.domain.causal_graph import NodeType
from provenance_kernel.models.causal_entity import CausalEntityMixin


class OutputType(str, Enum):
    FOUNDATION_TX = "foundation_tx"  # Permissioned-ledger transaction
    AWS_RECORD = "aws_record"
    TRADE_EXECUTION = "trade_execution"
    DOCUMENT = "document"
    API_RESPONSE = "api_response"
    NOTIFICATION = "notification"
    FILE = "file"
    OTHER = "other"


class OutputStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    REVERTED = "reverted"


class ExternalOutputModel(CausalEntityMixin, Base):
    """An output the system emitted to the outside world."""

    __tablename__ = "external_outputs"

    __table_args__ = (
        Index("idx_output_type", "output_type"),
        Index("idx_output_destination", "destination"),
        Index("idx_output_transaction", "transaction_id"),
        Index("idx_output_content_hash", "content_hash"),
        Index("idx_output_status", "status"),
        Index("idx_output_domain", "domain"),
        Index("idx_output_timestamp", "timestamp"),
    )

    NODE_TYPE = NodeType.EXTERNAL_OUTPUT
    NODE_FIELDS = (
        "output_type",
        "destination",
        "destination_id",
        "transaction_id",
        "block_hash",
        "block_number",
        "content_hash",
        "content_size",
        "status",
        "domain",
        "compliance",
        "retention_years",
    )
    COMPLETION_FIELDS = frozenset({"status", "block_hash", "block_number"})
    TERMINAL_STATUSES = frozenset({
        OutputStatus.FAILED.value,
        OutputStatus.REVERTED.value,
    })

    timestamp: Mapped[datetime] = mapped_column(nullable=False)
    output_type: Mapped[str] = mapped_column(String(32), nullable=False)
    destination: Mapped[str | None] = mapped_column(String(255), nullable=True)
    destination_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    transaction_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    block_hash: Mapped[str | None] = mapped_column(String(128), nullable=True)
    block_number: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    content_hash: Mapped[str] = mapped_column(String(128), nullable=False)
    content_size: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=OutputStatus.PENDING.value
    )
    domain: Mapped[str | None] = mapped_column(String(64), nullable=True)
    compliance: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    retention_years: Mapped[int] = mapped_column(Integer, nullable=False, default=7)

    extra_metadata: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<ExternalOutput {self.id}: {self.output_type} -> {self.destination} ({self.status})>"
