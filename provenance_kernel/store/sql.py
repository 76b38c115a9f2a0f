"""
Module: provenance_kernel.store.sql
Responsibility: CausalStore over the SQLAlchemy entity and join tables.
Architecture position: Kernel > Store.  May import from db/, models/,
    domain/.

The store follows the kernel session convention:
- Accepts a Session from the caller
- Uses session.flush() within the transaction
- Does NOT call session.commit() - caller controls boundaries

Failure modes:
    - Any SQLAlchemyError is re-raised as StoreUnavailableError, chained
      with ``from``.
    - ImmutabilityViolationError from the ORM listeners passes through.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Mapping

from sqlalchemy import func, insert, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from provenance_kernel.db.immutability import check_completion_update
from provenance_kernel.domain.causal_graph import (
    CausalEdge,
    CausalNode,
    NodeType,
    PatternAggregate,
)
from provenance_kernel.exceptions import (
    NodeAlreadyExistsError,
    NodeNotFoundError,
    StoreUnavailableError,
)
from provenance_kernel.logging_config import get_logger
from provenance_kernel.models import (
    CAUSAL_LINKS_BY_CAUSE,
    CAUSAL_LINKS_BY_EFFECT,
    MODEL_BY_NODE_TYPE,
    RoutingDecisionModel,
    SpikeEventModel,
)
from provenance_kernel.store.base import CausalStore

logger = get_logger("store.sql")


class SqlCausalStore(CausalStore):
    """
    Causal graph persisted in a relational database.

    A Session is not thread-safe, so parent fetches are never fanned out
    against this store.  Deep traces should prefer the recursive CTE in
    selectors/causal_chain_selector.py, which needs ``self.session``.
    """

    supports_concurrent_reads = False

    def __init__(self, session: Session):
        self.session = session

    @contextmanager
    def _store_call(self, operation: str, node_id: str | None = None) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as e:
            logger.error(
                "store_call_failed",
                extra={
                    "operation": operation,
                    "node_id": node_id,
                    "error_type": type(e).__name__,
                },
            )
            raise StoreUnavailableError(
                operation=operation,
                node_id=node_id,
                reason=type(e).__name__,
            ) from e

    # =========================================================================
    # Reads
    # =========================================================================

    def get_node(self, node_id: str, node_type: NodeType) -> CausalNode | None:
        model = MODEL_BY_NODE_TYPE[NodeType(node_type)]
        with self._store_call("get_node", node_id):
            row = self.session.get(model, node_id)
            return row.to_node() if row is not None else None

    def get_parents(
        self, node_id: str, node_type: NodeType
    ) -> tuple[list[CausalNode], list[CausalEdge]]:
        spec = CAUSAL_LINKS_BY_EFFECT.get(NodeType(node_type))
        if spec is None:
            return [], []

        cause_model = MODEL_BY_NODE_TYPE[spec.cause_type]
        link = spec.table
        stmt = (
            select(cause_model, link.c.confidence)
            .join(link, link.c.cause_id == cause_model.id)
            .where(link.c.effect_id == node_id)
            .order_by(link.c.created_at, cause_model.id)
        )
        with self._store_call("get_parents", node_id):
            rows = self.session.execute(stmt).all()

        nodes: list[CausalNode] = []
        edges: list[CausalEdge] = []
        for row, confidence in rows:
            nodes.append(row.to_node())
            edges.append(
                CausalEdge(
                    source_id=node_id,
                    source_type=spec.effect_type,
                    target_id=row.id,
                    target_type=spec.cause_type,
                    edge_type=spec.edge_type,
                    confidence=confidence,
                )
            )
        return nodes, edges

    def get_children(
        self, node_id: str, node_type: NodeType
    ) -> tuple[list[CausalNode], list[CausalEdge]]:
        spec = CAUSAL_LINKS_BY_CAUSE.get(NodeType(node_type))
        if spec is None:
            return [], []

        effect_model = MODEL_BY_NODE_TYPE[spec.effect_type]
        link = spec.table
        stmt = (
            select(effect_model, link.c.confidence)
            .join(link, link.c.effect_id == effect_model.id)
            .where(link.c.cause_id == node_id)
            .order_by(link.c.created_at, effect_model.id)
        )
        with self._store_call("get_children", node_id):
            rows = self.session.execute(stmt).all()

        nodes: list[CausalNode] = []
        edges: list[CausalEdge] = []
        for row, confidence in rows:
            nodes.append(row.to_node())
            edges.append(
                CausalEdge(
                    source_id=row.id,
                    source_type=spec.effect_type,
                    target_id=node_id,
                    target_type=spec.cause_type,
                    edge_type=spec.edge_type,
                    confidence=confidence,
                )
            )
        return nodes, edges

    def aggregate_spikes_by_pattern(
        self, start: datetime, end: datetime
    ) -> list[PatternAggregate]:
        """
        One windowed query over spike_events in [start, end], partitioned by
        pattern_hash: COUNT, MIN(timestamp) and MAX(timestamp) per partition,
        keeping only the earliest row (ROW_NUMBER() = 1) of each.

        Population and neuron indices come from that earliest row; the
        fingerprint determines them.
        """
        partition = SpikeEventModel.pattern_hash
        windowed = (
            select(
                SpikeEventModel.pattern_hash,
                SpikeEventModel.population_id,
                SpikeEventModel.neuron_indices,
                func.row_number()
                .over(
                    partition_by=partition,
                    order_by=(SpikeEventModel.timestamp, SpikeEventModel.id),
                )
                .label("position"),
                func.count().over(partition_by=partition).label("occurrences"),
                func.min(SpikeEventModel.timestamp)
                .over(partition_by=partition)
                .label("first_seen"),
                func.max(SpikeEventModel.timestamp)
                .over(partition_by=partition)
                .label("last_seen"),
            )
            .where(SpikeEventModel.timestamp.between(start, end))
            .subquery("windowed_spikes")
        )
        stmt = (
            select(
                windowed.c.pattern_hash,
                windowed.c.occurrences,
                windowed.c.first_seen,
                windowed.c.last_seen,
                windowed.c.population_id,
                windowed.c.neuron_indices,
            )
            .where(windowed.c.position == 1)
            .order_by(windowed.c.pattern_hash)
        )
        with self._store_call("aggregate_spikes_by_pattern"):
            rows = self.session.execute(stmt).all()
        return [
            PatternAggregate(
                fingerprint=fingerprint,
                count=occurrences,
                first_seen=first_seen,
                last_seen=last_seen,
                population_id=population_id,
                neuron_indices=tuple(neuron_indices or ()),
            )
            for (
                fingerprint,
                occurrences,
                first_seen,
                last_seen,
                population_id,
                neuron_indices,
            ) in rows
        ]

    def lookup_by_fingerprint(self, fingerprint: str, limit: int) -> list[CausalNode]:
        stmt = (
            select(SpikeEventModel)
            .where(SpikeEventModel.pattern_hash == fingerprint)
            .order_by(SpikeEventModel.timestamp.desc(), SpikeEventModel.id.desc())
            .limit(limit)
        )
        with self._store_call("lookup_by_fingerprint"):
            return [row.to_node() for row in self.session.execute(stmt).scalars()]

    def lookup_by_inference_id(self, inference_id: str) -> list[CausalNode]:
        with self._store_call("lookup_by_inference_id"):
            spikes = self.session.execute(
                select(SpikeEventModel).where(
                    SpikeEventModel.inference_id == inference_id
                )
            ).scalars()
            decisions = self.session.execute(
                select(RoutingDecisionModel).where(
                    RoutingDecisionModel.inference_id == inference_id
                )
            ).scalars()
            nodes = [row.to_node() for row in spikes]
            nodes.extend(row.to_node() for row in decisions)
        nodes.sort(key=lambda n: (n.timestamp, n.id))
        return nodes

    def has_node(self, node_id: str) -> NodeType | None:
        with self._store_call("has_node", node_id):
            for node_type, model in MODEL_BY_NODE_TYPE.items():
                if self.session.get(model, node_id) is not None:
                    return node_type
        return None

    # =========================================================================
    # Writes
    # =========================================================================

    def add_node(self, node: CausalNode) -> None:
        existing = self.has_node(node.id)
        if existing is not None:
            raise NodeAlreadyExistsError(node.id, existing.value)

        row = MODEL_BY_NODE_TYPE[node.type].from_node(node)
        try:
            self.session.add(row)
            self.session.flush()
        except IntegrityError as e:
            # Race: another transaction used the id first
            raise NodeAlreadyExistsError(node.id, node.type.value) from e
        except SQLAlchemyError as e:
            raise StoreUnavailableError(
                operation="add_node", node_id=node.id, reason=type(e).__name__
            ) from e

    def add_link(self, edge: CausalEdge, created_at: datetime | None = None) -> bool:
        link = CAUSAL_LINKS_BY_EFFECT[edge.source_type].table
        with self._store_call("add_link", edge.source_id):
            existing = self.session.execute(
                select(link.c.effect_id).where(
                    link.c.effect_id == edge.source_id,
                    link.c.cause_id == edge.target_id,
                )
            ).first()
            if existing is not None:
                return False
            self.session.execute(
                insert(link).values(
                    effect_id=edge.source_id,
                    cause_id=edge.target_id,
                    confidence=edge.confidence,
                    created_at=created_at,
                )
            )
        return True

    def update_completion(
        self, node_id: str, node_type: NodeType, fields: Mapping[str, Any]
    ) -> CausalNode:
        model = MODEL_BY_NODE_TYPE[NodeType(node_type)]
        with self._store_call("update_completion", node_id):
            row = self.session.get(model, node_id)
        if row is None:
            raise NodeNotFoundError(node_id, NodeType(node_type).value)

        check_completion_update(model, node_id, getattr(row, "status", None), fields)
        for key, value in fields.items():
            if value is not None:
                setattr(row, key, value)
        with self._store_call("update_completion", node_id):
            self.session.flush()
        return row.to_node()
