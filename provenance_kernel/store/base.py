"""
Module: provenance_kernel.store.base
Responsibility: The storage contract the causal tracer and recorder depend on.
Architecture position: Kernel > Store.  May import from domain/ and
    exceptions.  MUST NOT import from services/ or selectors/.

Invariants enforced:
    - get_parents / get_children return nodes at depth 0; the tracer assigns
      traversal depth.
    - Returned edges always point effect -> cause regardless of the direction
      the store was walked in.
    - Any failure of the backing store surfaces as StoreUnavailableError.
      Missing nodes are NOT failures: get_node returns None.

Failure modes:
    - StoreUnavailableError from any read or write call.
    - NodeAlreadyExistsError from add_node on a reused id.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Mapping

from provenance_kernel.domain.causal_graph import (
    CausalEdge,
    CausalNode,
    NodeType,
    PatternAggregate,
)


class CausalStore(ABC):
    """
    Read and write access to the five-level causal graph.

    Contract:
        Implementations must be safe to call from multiple threads when
        ``supports_concurrent_reads`` is True; the tracer only fans out
        parent fetches in that case.
    """

    supports_concurrent_reads: bool = False

    # =========================================================================
    # Reads
    # =========================================================================

    @abstractmethod
    def get_node(self, node_id: str, node_type: NodeType) -> CausalNode | None:
        """Fetch one node, or None if no node of that type has this id."""

    @abstractmethod
    def get_parents(
        self, node_id: str, node_type: NodeType
    ) -> tuple[list[CausalNode], list[CausalEdge]]:
        """Immediate causes of a node and the edges leading to them."""

    @abstractmethod
    def get_children(
        self, node_id: str, node_type: NodeType
    ) -> tuple[list[CausalNode], list[CausalEdge]]:
        """Immediate effects of a node and the edges leading from them."""

    @abstractmethod
    def aggregate_spikes_by_pattern(
        self, start: datetime, end: datetime
    ) -> list[PatternAggregate]:
        """Group spike events with start <= timestamp <= end by fingerprint."""

    @abstractmethod
    def lookup_by_fingerprint(self, fingerprint: str, limit: int) -> list[CausalNode]:
        """Spike events carrying ``fingerprint``, most recent first."""

    @abstractmethod
    def lookup_by_inference_id(self, inference_id: str) -> list[CausalNode]:
        """Spike events and routing decisions tagged with ``inference_id``."""

    @abstractmethod
    def has_node(self, node_id: str) -> NodeType | None:
        """Type of the node using ``node_id``, or None if the id is free."""

    # =========================================================================
    # Writes (recorder only)
    # =========================================================================

    @abstractmethod
    def add_node(self, node: CausalNode) -> None:
        """Persist a new node.  Raises NodeAlreadyExistsError on id reuse."""

    @abstractmethod
    def add_link(self, edge: CausalEdge, created_at: datetime | None = None) -> bool:
        """Persist an edge.  Returns False if the same edge already exists."""

    @abstractmethod
    def update_completion(
        self, node_id: str, node_type: NodeType, fields: Mapping[str, Any]
    ) -> CausalNode:
        """Apply completion fields to an existing node and return it."""
