"""
CausalRecorder -- write path for causal entities and their links.

Responsibility:
    Records the five entity kinds as producers emit them (spiking network,
    router, agent runtime, workflow engine, output adapters), connects them
    with causal links, and fills in completion fields when long-running
    entities finish.

Architecture position:
    Kernel > Services -- imperative shell.  Writes only through the
    CausalStore interface; with SqlCausalStore the caller owns the
    transaction (the store flushes, never commits).

Invariants enforced:
    - Node ids are unique across all five kinds (NodeAlreadyExistsError).
    - A link connects adjacent levels only, effect -> cause
      (InvalidCausalLinkError), between existing nodes of the declared
      types (NodeNotFoundError).
    - Link confidence lies in [0, 1] (InvalidConfidenceError).
    - Spike events always carry a pattern fingerprint; one is computed from
      (population, layer, neurons) when the producer omits it.
    - After creation only completion fields change, and only until the
      entity reaches a terminal status (ImmutabilityViolationError).

Audit relevance:
    Every write is logged with the node ref, so the log stream alone can
    rebuild when each link of a chain appeared.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Mapping, Sequence
from uuid import uuid4

from provenance_kernel.domain.causal_graph import (
    CausalEdge,
    CausalNode,
    NodeRef,
    NodeType,
)
from provenance_kernel.domain.clock import Clock, SystemClock
from provenance_kernel.exceptions import NodeNotFoundError
from provenance_kernel.logging_config import get_logger
from provenance_kernel.models import (
    ActionStatus,
    DecisionType,
    OutputStatus,
    OutputType,
    WorkflowStatus,
)
from provenance_kernel.store.base import CausalStore
from provenance_kernel.utils.hashing import compute_pattern_fingerprint, hash_payload

logger = get_logger("services.causal_recorder")


def _probability(name: str, value: float) -> float:
    value = float(value)
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{name} must be within [0, 1], got {value}")
    return value


def _present(fields: Mapping[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in fields.items() if value is not None}


class CausalRecorder:
    """
    Service for recording causal entities and links.

    Usage:
        recorder = CausalRecorder(store, clock)

        spike = recorder.record_spike_event(
            population_id="v1", neuron_indices=[3, 17, 42], inference_id="inf-1",
        )
        decision = recorder.record_routing_decision(
            inference_id="inf-1", decision_type="route",
            spike_event_ids=[spike.id], spike_confidences={spike.id: 0.8},
        )
        action = recorder.record_agent_action(
            agent_id="trader-1", agent_type="trading", action_type="place_order",
            decision_ids=[decision.id],
        )
        recorder.complete_action(action.id, "completed", latency_ms=42.0)
    """

    def __init__(self, store: CausalStore, clock: Clock | None = None):
        self._store = store
        self._clock = clock or SystemClock()

    # =========================================================================
    # Entities
    # =========================================================================

    def record_spike_event(
        self,
        *,
        population_id: str,
        neuron_indices: Sequence[int],
        layer_index: int = 0,
        spike_counts: Sequence[int] | None = None,
        pattern_hash: str | None = None,
        inference_id: str | None = None,
        is_emergent: bool = False,
        entropy: float = 0.0,
        timestamp_ns: int | None = None,
        timestamp: datetime | None = None,
        event_id: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> CausalNode:
        """Record a spike event.  The fingerprint is computed if omitted."""
        fingerprint = pattern_hash or compute_pattern_fingerprint(
            population_id, layer_index, neuron_indices
        )
        return self._record(
            NodeType.SPIKE_EVENT,
            event_id,
            timestamp,
            metadata,
            population_id=population_id,
            layer_index=layer_index,
            neuron_indices=[int(i) for i in neuron_indices],
            spike_counts=list(spike_counts) if spike_counts is not None else None,
            pattern_hash=fingerprint,
            inference_id=inference_id,
            is_emergent=is_emergent,
            entropy=float(entropy),
            timestamp_ns=timestamp_ns,
        )

    def record_routing_decision(
        self,
        *,
        inference_id: str,
        decision_type: DecisionType | str,
        layer_index: int = 0,
        gate_probability: float = 0.0,
        selected_model: str | None = None,
        iteration_count: int = 0,
        confidence: float = 0.0,
        domain: str | None = None,
        spike_event_ids: Iterable[str] = (),
        spike_confidences: Mapping[str, float] | None = None,
        timestamp: datetime | None = None,
        decision_id: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> CausalNode:
        """
        Record a routing decision and link it to the spike events that
        caused it.

        ``spike_confidences`` gives the statistical attribution strength
        per spike event id; missing entries default to 1.0.
        """
        attribution = spike_confidences or {}
        causes = [
            (NodeRef.spike_event(spike_id), attribution.get(spike_id, 1.0))
            for spike_id in spike_event_ids
        ]
        return self._record(
            NodeType.ROUTING_DECISION,
            decision_id,
            timestamp,
            metadata,
            causes,
            inference_id=inference_id,
            decision_type=DecisionType(decision_type).value,
            layer_index=layer_index,
            gate_probability=_probability("gate_probability", gate_probability),
            selected_model=selected_model,
            iteration_count=iteration_count,
            confidence=_probability("confidence", confidence),
            domain=domain,
        )

    def record_agent_action(
        self,
        *,
        agent_id: str,
        agent_type: str,
        action_type: str,
        action_name: str | None = None,
        parameters: Mapping[str, Any] | None = None,
        target_resource: str | None = None,
        status: ActionStatus | str = ActionStatus.PENDING,
        session_id: str | None = None,
        user_id: str | None = None,
        decision_ids: Iterable[str] = (),
        timestamp: datetime | None = None,
        action_id: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> CausalNode:
        """Record an agent action triggered by ``decision_ids``."""
        return self._record(
            NodeType.AGENT_ACTION,
            action_id,
            timestamp,
            metadata,
            [(NodeRef.routing_decision(d), 1.0) for d in decision_ids],
            agent_id=agent_id,
            agent_type=agent_type,
            action_type=action_type,
            action_name=action_name,
            parameters=dict(parameters) if parameters is not None else None,
            target_resource=target_resource,
            status=ActionStatus(status).value,
            session_id=session_id,
            user_id=user_id,
        )

    def record_workflow_execution(
        self,
        *,
        workflow_id: str,
        workflow_name: str | None = None,
        step_id: str | None = None,
        step_name: str | None = None,
        step_index: int = 0,
        status: WorkflowStatus | str = WorkflowStatus.RUNNING,
        inputs: Mapping[str, Any] | None = None,
        parent_execution_id: str | None = None,
        action_ids: Iterable[str] = (),
        started_at: datetime | None = None,
        execution_id: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> CausalNode:
        """
        Record a workflow execution run by ``action_ids``.

        ``parent_execution_id`` records nesting only; it must name an
        existing workflow execution but creates no causal link.
        """
        if parent_execution_id is not None:
            self._require(NodeRef.workflow_execution(parent_execution_id))
        return self._record(
            NodeType.WORKFLOW_EXECUTION,
            execution_id,
            started_at,
            metadata,
            [(NodeRef.agent_action(a), 1.0) for a in action_ids],
            workflow_id=workflow_id,
            workflow_name=workflow_name,
            step_id=step_id,
            step_name=step_name,
            step_index=step_index,
            status=WorkflowStatus(status).value,
            inputs=dict(inputs) if inputs is not None else None,
            parent_execution_id=parent_execution_id,
        )

    def record_external_output(
        self,
        *,
        output_type: OutputType | str,
        content_hash: str | None = None,
        content: Any = None,
        destination: str | None = None,
        destination_id: str | None = None,
        transaction_id: str | None = None,
        block_hash: str | None = None,
        block_number: int | None = None,
        content_size: int | None = None,
        status: OutputStatus | str = OutputStatus.PENDING,
        domain: str | None = None,
        compliance: Mapping[str, Any] | None = None,
        retention_years: int = 7,
        workflow_ids: Iterable[str] = (),
        timestamp: datetime | None = None,
        output_id: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> CausalNode:
        """
        Record an external output produced by ``workflow_ids``.

        Either ``content_hash`` or ``content`` must be given; the hash of
        ``content`` is computed when the producer did not hash it.
        """
        if content_hash is None:
            if content is None:
                raise ValueError("record_external_output needs content_hash or content")
            content_hash = hash_payload({"content": content})
        return self._record(
            NodeType.EXTERNAL_OUTPUT,
            output_id,
            timestamp,
            metadata,
            [(NodeRef.workflow_execution(w), 1.0) for w in workflow_ids],
            output_type=OutputType(output_type).value,
            destination=destination,
            destination_id=destination_id,
            transaction_id=transaction_id,
            block_hash=block_hash,
            block_number=block_number,
            content_hash=content_hash,
            content_size=content_size,
            status=OutputStatus(status).value,
            domain=domain,
            compliance=dict(compliance) if compliance is not None else None,
            retention_years=retention_years,
        )

    # =========================================================================
    # Links
    # =========================================================================

    def link(
        self,
        child_ref: NodeRef,
        parent_ref: NodeRef,
        confidence: float = 1.0,
    ) -> CausalEdge:
        """
        Record that ``child_ref`` was caused by ``parent_ref``.

        Recording the same link twice is a no-op.

        Raises:
            InvalidCausalLinkError: If the link skips or reverses a level.
            InvalidConfidenceError: If confidence is outside [0, 1].
            NodeNotFoundError: If either endpoint does not exist.
        """
        edge = CausalEdge.between(child_ref, parent_ref, confidence)
        self._require(child_ref)
        self._require(parent_ref)
        self._write_link(edge)
        return edge

    # =========================================================================
    # Completion
    # =========================================================================

    def complete_action(
        self,
        action_id: str,
        status: ActionStatus | str,
        *,
        result: str | None = None,
        error: str | None = None,
        latency_ms: float | None = None,
    ) -> CausalNode:
        return self._complete(
            NodeRef.agent_action(action_id),
            status=ActionStatus(status).value,
            result=result,
            error=error,
            latency_ms=latency_ms,
        )

    def complete_workflow(
        self,
        execution_id: str,
        status: WorkflowStatus | str,
        *,
        outputs: Mapping[str, Any] | None = None,
        error: str | None = None,
        duration_ms: float | None = None,
        completed_at: datetime | None = None,
    ) -> CausalNode:
        """Finish a workflow execution; ``completed_at`` defaults to now."""
        return self._complete(
            NodeRef.workflow_execution(execution_id),
            status=WorkflowStatus(status).value,
            outputs=dict(outputs) if outputs is not None else None,
            error=error,
            duration_ms=duration_ms,
            completed_at=completed_at or self._clock.now(),
        )

    def complete_output(
        self,
        output_id: str,
        status: OutputStatus | str,
        *,
        block_hash: str | None = None,
        block_number: int | None = None,
    ) -> CausalNode:
        """Confirm (or fail) an output, e.g. once its ledger block is known."""
        return self._complete(
            NodeRef.external_output(output_id),
            status=OutputStatus(status).value,
            block_hash=block_hash,
            block_number=block_number,
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _record(
        self,
        node_type: NodeType,
        node_id: str | None,
        timestamp: datetime | None,
        extra: Mapping[str, Any] | None,
        causes: Iterable[tuple[NodeRef, float]] = (),
        **fields: Any,
    ) -> CausalNode:
        """
        Store a new node together with its links to ``causes``.

        Every link is validated before anything is written, so a bad cause
        leaves neither the node nor any of its links behind.
        """
        metadata = _present(fields)
        if extra:
            metadata["extra"] = dict(extra)
        node = CausalNode(
            id=node_id or str(uuid4()),
            type=node_type,
            timestamp=timestamp or self._clock.now(),
            metadata=metadata,
        )
        edges = [
            CausalEdge.between(node.ref, cause_ref, confidence)
            for cause_ref, confidence in causes
        ]
        for edge in edges:
            self._require(NodeRef(edge.target_type, edge.target_id))

        self._store.add_node(node)
        logger.info(
            "causal_node_recorded",
            extra={"node_ref": str(node.ref), "timestamp": node.timestamp.isoformat()},
        )
        for edge in edges:
            self._write_link(edge)
        return node

    def _write_link(self, edge: CausalEdge) -> bool:
        created = self._store.add_link(edge, created_at=self._clock.now())
        logger.info(
            "causal_link_recorded" if created else "causal_link_already_exists",
            extra={
                "effect_ref": f"{edge.source_type.value}:{edge.source_id}",
                "cause_ref": f"{edge.target_type.value}:{edge.target_id}",
                "edge_type": edge.edge_type.value,
                "confidence": edge.confidence,
            },
        )
        return created

    def _require(self, ref: NodeRef) -> None:
        existing = self._store.has_node(ref.node_id)
        if existing != ref.node_type:
            raise NodeNotFoundError(ref.node_id, ref.node_type.value)

    def _complete(self, ref: NodeRef, **fields: Any) -> CausalNode:
        self._require(ref)
        node = self._store.update_completion(ref.node_id, ref.node_type, _present(fields))
        logger.info(
            "causal_node_completed",
            extra={"node_ref": str(ref), "status": fields.get("status")},
        )
        return node
