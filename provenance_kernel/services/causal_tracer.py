"""
CausalTracer -- answers "why did this happen?" for any external output.

Responsibility:
    Walks the five-level causal graph from an observed effect back to the
    spike events that ultimately caused it, audits a single agent action in
    both directions, and surfaces spike patterns that recur more often than
    chance.

Architecture position:
    Kernel > Services -- read-only.  Talks to the graph only through the
    CausalStore interface; the SQL fast path goes through
    selectors/causal_chain_selector.py.

Invariants enforced:
    - Visited set keyed on node id: a node shared by several effects appears
      once in the path while every edge into it is kept.
    - A node's depth is its BFS hop distance from the anchor; the path
      depth is the maximum node depth.
    - Nodes at ``max_depth`` are recorded but never expanded, so no node
      deeper than ``max_depth`` is ever recorded.
    - Level-synchronous traversal: with ``fetch_workers > 1`` the parent
      fetches of one level run concurrently, but results are merged in
      level order, so the output equals a sequential run.

Failure modes:
    - NodeNotFoundError: the anchor does not exist.  Never an empty path.
    - AgentMismatchError: the action was taken by a different agent.
    - InvalidTimeWindowError: pattern window start after end.
    - StoreUnavailableError: any store call failed.  The partial path is
      discarded; no retry happens here.

Cancellation:
    The token is checked before every store call.  Once cancelled, no more
    fetches are issued and the partial path comes back with
    ``complete=False``.  This is not an error.
"""

from __future__ import annotations

import contextvars
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from provenance_kernel.domain.cancellation import CancellationToken
from provenance_kernel.domain.causal_graph import (
    AgentDecisionPath,
    CausalEdge,
    CausalNode,
    CausalPath,
    NodeRef,
    NodeType,
    PatternResult,
    total_latency_ms,
)
from provenance_kernel.domain.clock import Clock, SystemClock
from provenance_kernel.domain.significance import PoissonSignificance, SignificanceModel
from provenance_kernel.exceptions import (
    AgentMismatchError,
    InvalidTimeWindowError,
    NodeNotFoundError,
    StoreUnavailableError,
)
from provenance_kernel.logging_config import LogContext, get_logger
from provenance_kernel.store.base import CausalStore

logger = get_logger("services.causal_tracer")

Neighbours = tuple[list[CausalNode], list[CausalEdge]]

_STRATEGIES = ("bfs", "cte")


class _Traversal:
    """Accumulated result of one BFS run."""

    __slots__ = ("nodes", "edges", "complete")

    def __init__(self, root: CausalNode):
        self.nodes: list[CausalNode] = [root.at_depth(0)]
        self.edges: list[CausalEdge] = []
        self.complete = True

    @property
    def depth(self) -> int:
        return max(node.depth for node in self.nodes)


class CausalTracer:
    """
    Read-side queries over the causal graph.

    Holds no per-call state; one instance may serve concurrent callers.
    """

    DEFAULT_MAX_DEPTH = 100
    DEFAULT_MIN_OCCURRENCES = 5
    DEFAULT_LOOKUP_LIMIT = 100

    def __init__(
        self,
        store: CausalStore,
        clock: Clock | None = None,
        significance: SignificanceModel | None = None,
        *,
        default_max_depth: int = DEFAULT_MAX_DEPTH,
        default_min_occurrences: int = DEFAULT_MIN_OCCURRENCES,
        default_lookup_limit: int = DEFAULT_LOOKUP_LIMIT,
        fetch_workers: int = 1,
        traversal_strategy: str = "bfs",
    ):
        if traversal_strategy not in _STRATEGIES:
            raise ValueError(
                f"traversal_strategy must be one of {_STRATEGIES}, got {traversal_strategy!r}"
            )
        self._store = store
        self._clock = clock or SystemClock()
        self._significance = significance or PoissonSignificance()
        self._default_max_depth = default_max_depth
        self._default_min_occurrences = default_min_occurrences
        self._default_lookup_limit = default_lookup_limit
        self._fetch_workers = max(1, fetch_workers)
        self._traversal_strategy = traversal_strategy

    # =========================================================================
    # Backward trace
    # =========================================================================

    def trace_causality(
        self,
        output_id: str,
        max_depth: int | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> CausalPath:
        """
        Reconstruct the causes of an external output.

        Args:
            output_id: Id of the ExternalOutput to explain.
            max_depth: Hop ceiling.  None or non-positive uses the default.
            cancel_token: Optional cooperative cancellation.

        Returns:
            CausalPath anchored at ``output_id``.

        Raises:
            NodeNotFoundError: If the output does not exist.
            StoreUnavailableError: If the store fails mid-trace.
        """
        return self.trace_node(
            NodeRef.external_output(output_id), max_depth, cancel_token
        )

    def trace_node(
        self,
        anchor: NodeRef,
        max_depth: int | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> CausalPath:
        """Backward trace from any node in the chain."""
        depth_limit = self._normalize_depth(max_depth)
        use_cte = (
            self._traversal_strategy == "cte"
            and anchor.node_type == NodeType.EXTERNAL_OUTPUT
            and hasattr(self._store, "session")
        )

        with LogContext.bind(output_id=anchor.node_id):
            logger.info(
                "causal_trace_started",
                extra={
                    "anchor": str(anchor),
                    "max_depth": depth_limit,
                    "strategy": "cte" if use_cte else "bfs",
                },
            )
            t0 = time.monotonic()
            try:
                if use_cte:
                    path = self._trace_with_cte(anchor.node_id, depth_limit, cancel_token)
                else:
                    path = self._trace_with_bfs(anchor, depth_limit, cancel_token)
            except StoreUnavailableError as e:
                logger.error(
                    "causal_trace_failed",
                    extra={
                        "anchor": str(anchor),
                        "operation": e.operation,
                        "node_id": e.node_id,
                    },
                )
                raise
            duration_ms = round((time.monotonic() - t0) * 1000, 2)

            event = "causal_trace_completed" if path.complete else "causal_trace_cancelled"
            logger.info(
                event,
                extra={
                    "anchor": str(anchor),
                    "node_count": len(path.nodes),
                    "edge_count": len(path.edges),
                    "depth": path.depth,
                    "reached_ceiling": path.reached_ceiling(depth_limit),
                    "duration_ms": duration_ms,
                },
            )
            return path

    def _trace_with_bfs(
        self,
        anchor: NodeRef,
        max_depth: int,
        cancel_token: CancellationToken | None,
    ) -> CausalPath:
        traced_at = self._clock.now()
        if self._cancelled(cancel_token):
            return self._cancelled_path(anchor.node_id, traced_at)

        root = self._require_node(anchor)
        result = self._traverse(root, max_depth, self._store.get_parents, cancel_token)
        return CausalPath(
            output_id=anchor.node_id,
            nodes=tuple(result.nodes),
            edges=tuple(result.edges),
            depth=result.depth,
            traced_at=traced_at,
            complete=result.complete,
            total_latency_ms=total_latency_ms(result.nodes),
        )

    def _trace_with_cte(
        self,
        output_id: str,
        max_depth: int,
        cancel_token: CancellationToken | None,
    ) -> CausalPath:
        from provenance_kernel.selectors.causal_chain_selector import CausalChainSelector

        # The recursive query is a single store call; the token is only
        # consulted before it is issued.
        if self._cancelled(cancel_token):
            return self._cancelled_path(output_id, self._clock.now())
        selector = CausalChainSelector(self._store.session, self._clock)
        try:
            return selector.trace(output_id, max_depth)
        except SQLAlchemyError as e:
            raise StoreUnavailableError(
                operation="trace_cte", node_id=output_id, reason=type(e).__name__
            ) from e

    # =========================================================================
    # Agent decision audit
    # =========================================================================

    def get_agent_decision_path(
        self,
        agent_id: str,
        action_id: str,
        cancel_token: CancellationToken | None = None,
    ) -> AgentDecisionPath:
        """
        Everything causally connected to one agent action.

        Backward: the decisions that triggered it and their spike events.
        Forward: the workflows it executed and the outputs they produced.
        Nested sub-workflows are containment, not causation, and are not
        included.

        Raises:
            NodeNotFoundError: If the action does not exist.
            AgentMismatchError: If the action belongs to another agent.
        """
        with LogContext.bind(agent_id=agent_id, action_id=action_id):
            traced_at = self._clock.now()
            if self._cancelled(cancel_token):
                logger.info("agent_decision_path_cancelled")
                return AgentDecisionPath(
                    agent_id=agent_id,
                    action_id=action_id,
                    spike_events=(),
                    decisions=(),
                    workflows=(),
                    outputs=(),
                    total_depth=0,
                    traced_at=traced_at,
                    complete=False,
                )

            action = self._require_node(NodeRef.agent_action(action_id))

            actual_agent = (action.metadata or {}).get("agent_id")
            if actual_agent != agent_id:
                logger.warning(
                    "agent_action_owner_mismatch",
                    extra={"expected_agent_id": agent_id, "actual_agent_id": actual_agent},
                )
                raise AgentMismatchError(action_id, agent_id, str(actual_agent))

            depth_limit = self._default_max_depth
            backward = self._traverse(
                action, depth_limit, self._store.get_parents, cancel_token
            )
            forward = self._traverse(
                action, depth_limit, self._store.get_children, cancel_token
            )

            def of_type(nodes: list[CausalNode], node_type: NodeType) -> tuple[CausalNode, ...]:
                return tuple(node for node in nodes if node.type == node_type)

            path = AgentDecisionPath(
                agent_id=agent_id,
                action_id=action_id,
                spike_events=of_type(backward.nodes, NodeType.SPIKE_EVENT),
                decisions=of_type(backward.nodes, NodeType.ROUTING_DECISION),
                workflows=of_type(forward.nodes, NodeType.WORKFLOW_EXECUTION),
                outputs=of_type(forward.nodes, NodeType.EXTERNAL_OUTPUT),
                total_depth=max(backward.depth, forward.depth),
                traced_at=traced_at,
                edges=tuple(backward.edges + forward.edges),
                complete=backward.complete and forward.complete,
            )
            logger.info(
                "agent_decision_path_traced",
                extra={
                    "spike_event_count": len(path.spike_events),
                    "decision_count": len(path.decisions),
                    "workflow_count": len(path.workflows),
                    "output_count": len(path.outputs),
                    "total_depth": path.total_depth,
                    "complete": path.complete,
                },
            )
            return path

    # =========================================================================
    # Pattern detection
    # =========================================================================

    def find_emergent_patterns(
        self,
        start_time: datetime,
        end_time: datetime,
        min_occurrences: int | None = None,
    ) -> list[PatternResult]:
        """
        Spike fingerprints recurring at least ``min_occurrences`` times in
        ``[start_time, end_time]``, most frequent first, ties broken by the
        most recent last occurrence.

        Raises:
            InvalidTimeWindowError: If ``start_time`` is after ``end_time``.
        """
        if start_time > end_time:
            raise InvalidTimeWindowError(start_time.isoformat(), end_time.isoformat())
        threshold = (
            min_occurrences
            if min_occurrences is not None and min_occurrences > 0
            else self._default_min_occurrences
        )

        aggregates = self._store.aggregate_spikes_by_pattern(start_time, end_time)
        total_events = sum(agg.count for agg in aggregates)

        results = [
            PatternResult(
                fingerprint=agg.fingerprint,
                occurrence_count=agg.count,
                neuron_indices=tuple(agg.neuron_indices),
                population_id=agg.population_id,
                first_seen=agg.first_seen,
                last_seen=agg.last_seen,
                significance=self._significance.score(agg, total_events),
            )
            for agg in aggregates
            if agg.count >= threshold
        ]
        results.sort(key=lambda r: (r.occurrence_count, r.last_seen), reverse=True)

        logger.info(
            "emergent_patterns_found",
            extra={
                "window_start": start_time.isoformat(),
                "window_end": end_time.isoformat(),
                "min_occurrences": threshold,
                "fingerprint_count": len(aggregates),
                "spike_event_count": total_events,
                "pattern_count": len(results),
                "significance_model": self._significance.name,
            },
        )
        return results

    # =========================================================================
    # Lookups
    # =========================================================================

    def query_by_pattern_hash(self, fingerprint: str, limit: int | None = None) -> CausalPath:
        """Spike events carrying ``fingerprint``, as a flat path (no edges)."""
        effective_limit = limit if limit is not None and limit > 0 else self._default_lookup_limit
        nodes = self._store.lookup_by_fingerprint(fingerprint, effective_limit)
        logger.debug(
            "pattern_lookup_completed",
            extra={"fingerprint": fingerprint, "limit": effective_limit, "node_count": len(nodes)},
        )
        return self._flat_path(fingerprint, nodes)

    def query_by_inference_id(self, inference_id: str) -> CausalPath:
        """Spike events and routing decisions of one inference, as a flat path."""
        with LogContext.bind(inference_id=inference_id):
            nodes = self._store.lookup_by_inference_id(inference_id)
            logger.debug("inference_lookup_completed", extra={"node_count": len(nodes)})
            return self._flat_path(inference_id, nodes)

    # =========================================================================
    # Internals
    # =========================================================================

    def _normalize_depth(self, max_depth: int | None) -> int:
        if max_depth is None or max_depth <= 0:
            return self._default_max_depth
        return max_depth

    @staticmethod
    def _cancelled(token: CancellationToken | None) -> bool:
        return token is not None and token.is_cancelled

    @staticmethod
    def _cancelled_path(key: str, traced_at: datetime) -> CausalPath:
        return CausalPath(
            output_id=key,
            nodes=(),
            edges=(),
            depth=0,
            traced_at=traced_at,
            complete=False,
        )

    def _flat_path(self, key: str, nodes: list[CausalNode]) -> CausalPath:
        return CausalPath(
            output_id=key,
            nodes=tuple(node.at_depth(0) for node in nodes),
            edges=(),
            depth=0,
            traced_at=self._clock.now(),
        )

    def _require_node(self, ref: NodeRef) -> CausalNode:
        node = self._store.get_node(ref.node_id, ref.node_type)
        if node is None:
            logger.warning("causal_node_not_found", extra={"node_ref": str(ref)})
            raise NodeNotFoundError(ref.node_id, ref.node_type.value)
        return node

    def _traverse(
        self,
        root: CausalNode,
        max_depth: int,
        fetch: Callable[[str, NodeType], Neighbours],
        cancel_token: CancellationToken | None,
    ) -> _Traversal:
        """Level-synchronous BFS from ``root`` using ``fetch`` for neighbours."""
        result = _Traversal(root)
        visited = {root.id}
        frontier = [result.nodes[0]]
        depth = 0

        while frontier and depth < max_depth:
            fetched = self._fetch_level(frontier, fetch, cancel_token)
            if len(fetched) < len(frontier):
                result.complete = False

            next_frontier: list[CausalNode] = []
            for neighbours, edges in fetched:
                result.edges.extend(edges)
                for neighbour in neighbours:
                    if neighbour.id in visited:
                        continue
                    visited.add(neighbour.id)
                    placed = neighbour.at_depth(depth + 1)
                    result.nodes.append(placed)
                    next_frontier.append(placed)

            if not result.complete:
                break
            frontier = next_frontier
            depth += 1

        return result

    def _fetch_level(
        self,
        frontier: list[CausalNode],
        fetch: Callable[[str, NodeType], Neighbours],
        cancel_token: CancellationToken | None,
    ) -> list[Neighbours]:
        """
        Fetch neighbours for every frontier node, in frontier order.

        Returns fewer entries than ``frontier`` when cancelled; the entries
        returned are always a prefix of the frontier.
        """
        workers = min(self._fetch_workers, len(frontier))
        if workers <= 1 or not self._store.supports_concurrent_reads:
            fetched: list[Neighbours] = []
            for node in frontier:
                if self._cancelled(cancel_token):
                    break
                fetched.append(fetch(node.id, node.type))
            return fetched

        def fetch_unless_cancelled(node: CausalNode) -> Neighbours | None:
            if self._cancelled(cancel_token):
                return None
            return fetch(node.id, node.type)

        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [
                pool.submit(contextvars.copy_context().run, fetch_unless_cancelled, node)
                for node in frontier
            ]
            outcomes = [future.result() for future in futures]

        fetched = []
        for outcome in outcomes:
            if outcome is None:
                break
            fetched.append(outcome)
        return fetched
