"""
Module: provenance_kernel.store.memory
Responsibility: Dict-backed CausalStore for tests and embedded use.
Architecture position: Kernel > Store.

Nodes and edges are held in plain dicts under a single lock, so the store is
safe for the tracer's concurrent per-level fetches.  Neighbour lists keep
insertion order; traversal output is therefore deterministic.

Failure injection:
    ``fail_on`` names store operations ("get_parents", "get_node", ...) that
    raise StoreUnavailableError, letting tests exercise the tracer's
    failure path without a real backend.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from typing import Any, Iterable, Mapping

from provenance_kernel.db.immutability import check_completion_update
from provenance_kernel.domain.causal_graph import (
    CausalEdge,
    CausalNode,
    NodeType,
    PatternAggregate,
)
from provenance_kernel.exceptions import (
    NodeAlreadyExistsError,
    StoreUnavailableError,
)
from provenance_kernel.models import MODEL_BY_NODE_TYPE
from provenance_kernel.store.base import CausalStore


class InMemoryCausalStore(CausalStore):
    """Thread-safe in-memory causal graph."""

    supports_concurrent_reads = True

    def __init__(self, fail_on: Iterable[str] = ()):
        self._lock = threading.RLock()
        self._nodes: dict[str, CausalNode] = {}
        # effect id -> edges to its causes, and cause id -> edges from its effects
        self._edges_by_effect: dict[str, list[CausalEdge]] = defaultdict(list)
        self._edges_by_cause: dict[str, list[CausalEdge]] = defaultdict(list)
        self.fail_on: set[str] = set(fail_on)
        self.calls: list[tuple[str, str | None]] = []

    def _enter(self, operation: str, node_id: str | None = None) -> None:
        self.calls.append((operation, node_id))
        if operation in self.fail_on:
            raise StoreUnavailableError(
                operation=operation,
                node_id=node_id,
                reason="injected failure",
            )

    def call_count(self, operation: str) -> int:
        return sum(1 for op, _ in self.calls if op == operation)

    # =========================================================================
    # Reads
    # =========================================================================

    def get_node(self, node_id: str, node_type: NodeType) -> CausalNode | None:
        with self._lock:
            self._enter("get_node", node_id)
            node = self._nodes.get(node_id)
            if node is None or node.type != NodeType(node_type):
                return None
            return node

    def get_parents(
        self, node_id: str, node_type: NodeType
    ) -> tuple[list[CausalNode], list[CausalEdge]]:
        with self._lock:
            self._enter("get_parents", node_id)
            edges = [
                edge
                for edge in self._edges_by_effect.get(node_id, ())
                if edge.source_type == NodeType(node_type)
            ]
            return [self._nodes[edge.target_id] for edge in edges], edges

    def get_children(
        self, node_id: str, node_type: NodeType
    ) -> tuple[list[CausalNode], list[CausalEdge]]:
        with self._lock:
            self._enter("get_children", node_id)
            edges = [
                edge
                for edge in self._edges_by_cause.get(node_id, ())
                if edge.target_type == NodeType(node_type)
            ]
            return [self._nodes[edge.source_id] for edge in edges], edges

    def aggregate_spikes_by_pattern(
        self, start: datetime, end: datetime
    ) -> list[PatternAggregate]:
        with self._lock:
            self._enter("aggregate_spikes_by_pattern")
            groups: dict[str, list[CausalNode]] = defaultdict(list)
            for node in self._nodes.values():
                if node.type != NodeType.SPIKE_EVENT:
                    continue
                if start <= node.timestamp <= end:
                    groups[node.metadata["pattern_hash"]].append(node)

        aggregates = []
        for fingerprint, events in groups.items():
            events.sort(key=lambda n: n.timestamp)
            first = events[0]
            aggregates.append(
                PatternAggregate(
                    fingerprint=fingerprint,
                    count=len(events),
                    first_seen=first.timestamp,
                    last_seen=events[-1].timestamp,
                    population_id=first.metadata.get("population_id", ""),
                    neuron_indices=tuple(first.metadata.get("neuron_indices", ())),
                )
            )
        return aggregates

    def lookup_by_fingerprint(self, fingerprint: str, limit: int) -> list[CausalNode]:
        with self._lock:
            self._enter("lookup_by_fingerprint")
            matches = [
                node
                for node in self._nodes.values()
                if node.type == NodeType.SPIKE_EVENT
                and node.metadata.get("pattern_hash") == fingerprint
            ]
        matches.sort(key=lambda n: (n.timestamp, n.id), reverse=True)
        return matches[:limit]

    def lookup_by_inference_id(self, inference_id: str) -> list[CausalNode]:
        with self._lock:
            self._enter("lookup_by_inference_id")
            matches = [
                node
                for node in self._nodes.values()
                if node.type in (NodeType.SPIKE_EVENT, NodeType.ROUTING_DECISION)
                and node.metadata.get("inference_id") == inference_id
            ]
        matches.sort(key=lambda n: (n.timestamp, n.id))
        return matches

    def has_node(self, node_id: str) -> NodeType | None:
        with self._lock:
            self._enter("has_node", node_id)
            node = self._nodes.get(node_id)
            return node.type if node is not None else None

    # =========================================================================
    # Writes
    # =========================================================================

    def add_node(self, node: CausalNode) -> None:
        with self._lock:
            self._enter("add_node", node.id)
            existing = self._nodes.get(node.id)
            if existing is not None:
                raise NodeAlreadyExistsError(node.id, existing.type.value)
            self._nodes[node.id] = replace(
                node, depth=0, metadata=dict(node.metadata or {})
            )

    def add_link(self, edge: CausalEdge, created_at: datetime | None = None) -> bool:
        with self._lock:
            self._enter("add_link", edge.source_id)
            for existing in self._edges_by_effect.get(edge.source_id, ()):
                if existing.target_id == edge.target_id:
                    return False
            self._edges_by_effect[edge.source_id].append(edge)
            self._edges_by_cause[edge.target_id].append(edge)
            return True

    def update_completion(
        self, node_id: str, node_type: NodeType, fields: Mapping[str, Any]
    ) -> CausalNode:
        model = MODEL_BY_NODE_TYPE[NodeType(node_type)]
        with self._lock:
            self._enter("update_completion", node_id)
            node = self._nodes[node_id]
            metadata = dict(node.metadata or {})
            check_completion_update(model, node_id, metadata.get("status"), fields)
            for key, value in fields.items():
                if value is not None:
                    metadata[key] = value
            updated = replace(node, metadata=metadata)
            self._nodes[node_id] = updated
            return updated
