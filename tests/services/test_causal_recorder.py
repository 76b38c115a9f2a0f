"""
Tests for CausalRecorder.

Invariants tested:
- Node ids are unique across all entity kinds
- Links connect adjacent levels between existing nodes of the declared type
- Link confidence lies in [0, 1]; recording a link twice is a no-op
- Completion fields change only until the entity is terminal
"""

import pytest

from provenance_kernel.domain.causal_graph import EdgeType, NodeRef, NodeType
from provenance_kernel.exceptions import (
    ImmutabilityViolationError,
    InvalidCausalLinkError,
    InvalidConfidenceError,
    NodeAlreadyExistsError,
    NodeNotFoundError,
)
from provenance_kernel.utils.hashing import compute_pattern_fingerprint, hash_payload


class TestRecordEntities:
    """Entity creation."""

    def test_spike_fingerprint_computed(self, recorder):
        node = recorder.record_spike_event(
            population_id="v1", layer_index=3, neuron_indices=[5, 1, 5]
        )
        assert node.type == NodeType.SPIKE_EVENT
        assert node.metadata["pattern_hash"] == compute_pattern_fingerprint("v1", 3, [1, 5])
        assert node.metadata["neuron_indices"] == [5, 1, 5]

    def test_spike_fingerprint_from_producer_kept(self, recorder):
        node = recorder.record_spike_event(
            population_id="v1", neuron_indices=[1], pattern_hash="upstream-hash"
        )
        assert node.metadata["pattern_hash"] == "upstream-hash"

    def test_generated_id_and_clock_timestamp(self, recorder, clock):
        node = recorder.record_spike_event(population_id="v1", neuron_indices=[1])
        assert node.id
        assert node.timestamp == clock.now()

    def test_producer_metadata_nested_under_extra(self, recorder):
        node = recorder.record_spike_event(
            population_id="v1", neuron_indices=[1], metadata={"sensor": "lidar"}
        )
        assert node.metadata["extra"] == {"sensor": "lidar"}

    @pytest.mark.parametrize("field", ["gate_probability", "confidence"])
    def test_decision_probabilities_validated(self, recorder, field):
        with pytest.raises(ValueError):
            recorder.record_routing_decision(
                inference_id="i", decision_type="route", **{field: 1.5}
            )

    def test_unknown_decision_type_rejected(self, recorder):
        with pytest.raises(ValueError):
            recorder.record_routing_decision(inference_id="i", decision_type="teleport")

    def test_output_content_hashed(self, recorder):
        node = recorder.record_external_output(
            output_type="document", content={"body": "report"}
        )
        assert node.metadata["content_hash"] == hash_payload({"content": {"body": "report"}})
        assert node.metadata["status"] == "pending"

    def test_output_needs_content_or_hash(self, recorder):
        with pytest.raises(ValueError):
            recorder.record_external_output(output_type="document")

    def test_workflow_parent_must_exist(self, recorder):
        with pytest.raises(NodeNotFoundError):
            recorder.record_workflow_execution(
                workflow_id="wf", parent_execution_id="missing-parent"
            )

    def test_workflow_timestamp_is_started_at(self, recorder, clock):
        started = clock.now()
        clock.advance(60)
        node = recorder.record_workflow_execution(workflow_id="wf", started_at=started)
        assert node.timestamp == started
        assert node.metadata["status"] == "running"

    def test_duplicate_id_rejected_across_types(self, recorder):
        recorder.record_spike_event(event_id="shared", population_id="v1", neuron_indices=[1])
        with pytest.raises(NodeAlreadyExistsError) as exc_info:
            recorder.record_agent_action(
                action_id="shared", agent_id="a", agent_type="t", action_type="x"
            )
        assert exc_info.value.existing_type == "spike_event"

    def test_recording_logged(self, recorder, captured_logs):
        recorder.record_spike_event(event_id="s-log", population_id="v1", neuron_indices=[1])
        record = next(r for r in captured_logs() if r["message"] == "causal_node_recorded")
        assert record["node_ref"] == "spike_event:s-log"


class TestLinks:
    """Causal link recording."""

    def test_links_created_with_entities(self, recorder, memory_store, causal_graph):
        nodes, edges = memory_store.get_parents("decision-1", NodeType.ROUTING_DECISION)
        assert [n.id for n in nodes] == ["spike-1", "spike-2"]
        assert [e.confidence for e in edges] == [0.8, 0.6]

    def test_missing_confidence_defaults_to_certain(self, recorder, memory_store):
        recorder.record_spike_event(event_id="s", population_id="v1", neuron_indices=[1])
        recorder.record_routing_decision(
            decision_id="d", inference_id="i", decision_type="route", spike_event_ids=["s"]
        )
        _, edges = memory_store.get_parents("d", NodeType.ROUTING_DECISION)
        assert edges[0].confidence == 1.0

    def test_explicit_link(self, recorder, memory_store, causal_graph):
        recorder.record_external_output(
            output_id="late", output_type="file", content_hash="h"
        )
        edge = recorder.link(
            NodeRef.external_output("late"), NodeRef.workflow_execution("workflow-1")
        )
        assert edge.edge_type == EdgeType.PRODUCED_BY
        children, _ = memory_store.get_children("workflow-1", NodeType.WORKFLOW_EXECUTION)
        assert [n.id for n in children] == ["output-1", "output-2", "late"]

    def test_duplicate_link_is_noop(self, recorder, memory_store, causal_graph, captured_logs):
        recorder.link(NodeRef.external_output("output-1"), NodeRef.workflow_execution("workflow-1"))

        _, edges = memory_store.get_parents("output-1", NodeType.EXTERNAL_OUTPUT)
        assert len(edges) == 1
        assert any(r["message"] == "causal_link_already_exists" for r in captured_logs())

    def test_level_skip_rejected(self, recorder, causal_graph):
        with pytest.raises(InvalidCausalLinkError):
            recorder.link(NodeRef.external_output("output-1"), NodeRef.agent_action("action-1"))

    def test_missing_cause_rejected(self, recorder, causal_graph):
        with pytest.raises(NodeNotFoundError) as exc_info:
            recorder.link(
                NodeRef.external_output("output-1"), NodeRef.workflow_execution("nope")
            )
        assert exc_info.value.node_id == "nope"

    def test_declared_type_must_match_stored_type(self, recorder, causal_graph):
        """action-1 exists, but not as a workflow execution."""
        with pytest.raises(NodeNotFoundError):
            recorder.link(
                NodeRef.external_output("output-1"), NodeRef.workflow_execution("action-1")
            )

    def test_missing_spike_on_decision_rejected(self, recorder):
        with pytest.raises(NodeNotFoundError):
            recorder.record_routing_decision(
                inference_id="i", decision_type="route", spike_event_ids=["ghost"]
            )

    def test_unknown_cause_leaves_no_node_behind(self, recorder, memory_store):
        recorder.record_spike_event(event_id="s", population_id="v1", neuron_indices=[1])

        with pytest.raises(NodeNotFoundError):
            recorder.record_routing_decision(
                decision_id="dec-x",
                inference_id="i",
                decision_type="route",
                spike_event_ids=["no-such-spike"],
            )
        assert memory_store.has_node("dec-x") is None

        node = recorder.record_routing_decision(
            decision_id="dec-x", inference_id="i", decision_type="route", spike_event_ids=["s"]
        )
        parents, _ = memory_store.get_parents(node.id, NodeType.ROUTING_DECISION)
        assert [n.id for n in parents] == ["s"]

    def test_one_bad_cause_writes_no_links(self, recorder, memory_store, causal_graph):
        """decision-1 is valid, but the ghost makes the whole action fail."""
        with pytest.raises(NodeNotFoundError):
            recorder.record_agent_action(
                action_id="action-2",
                agent_id="agent-7",
                agent_type="trading",
                action_type="cancel_order",
                decision_ids=["decision-1", "ghost"],
            )

        assert memory_store.has_node("action-2") is None
        children, _ = memory_store.get_children("decision-1", NodeType.ROUTING_DECISION)
        assert [n.id for n in children] == ["action-1"]

    @pytest.mark.parametrize(
        "record",
        [
            lambda r: r.record_workflow_execution(
                execution_id="wf-x", workflow_id="wf", action_ids=["ghost"]
            ),
            lambda r: r.record_external_output(
                output_id="out-x", output_type="file", content_hash="h", workflow_ids=["ghost"]
            ),
        ],
        ids=["workflow", "output"],
    )
    def test_unknown_cause_rejected_for_every_kind(self, recorder, memory_store, record):
        with pytest.raises(NodeNotFoundError):
            record(recorder)
        assert memory_store.has_node("wf-x") is None
        assert memory_store.has_node("out-x") is None

    def test_confidence_validated(self, recorder, causal_graph):
        with pytest.raises(InvalidConfidenceError):
            recorder.link(
                NodeRef.routing_decision("decision-2"),
                NodeRef.spike_event("spike-1"),
                confidence=1.2,
            )


class TestCompletion:
    """Write-once completion fields."""

    def test_complete_action(self, recorder):
        recorder.record_agent_action(
            action_id="a", agent_id="bot", agent_type="t", action_type="x"
        )
        node = recorder.complete_action("a", "completed", result="ok", latency_ms=12.0)

        assert node.metadata["status"] == "completed"
        assert node.metadata["result"] == "ok"
        assert node.metadata["latency_ms"] == 12.0

    def test_intermediate_status_then_terminal(self, recorder):
        recorder.record_agent_action(
            action_id="a", agent_id="bot", agent_type="t", action_type="x"
        )
        recorder.complete_action("a", "executing")
        node = recorder.complete_action("a", "failed", error="timeout")
        assert node.metadata["status"] == "failed"
        assert node.metadata["error"] == "timeout"

    def test_terminal_action_is_frozen(self, recorder, causal_graph):
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            recorder.complete_action("action-1", "failed", error="late")
        assert exc_info.value.code == "IMMUTABILITY_VIOLATION"

    def test_complete_workflow_sets_completed_at(self, recorder, clock, causal_graph):
        node = recorder.record_workflow_execution(workflow_id="wf")
        clock.advance(5)
        completed = recorder.complete_workflow(node.id, "completed", outputs={"rows": 3})

        assert completed.metadata["completed_at"] == clock.now()
        assert completed.metadata["outputs"] == {"rows": 3}

    def test_confirm_output(self, recorder, causal_graph):
        node = recorder.complete_output(
            "output-2", "confirmed", block_hash="0xblock", block_number=42
        )
        assert node.metadata["block_number"] == 42

    def test_confirmed_output_can_revert_once(self, recorder, causal_graph):
        recorder.complete_output("output-2", "confirmed", block_number=42)
        reverted = recorder.complete_output("output-2", "reverted")
        assert reverted.metadata["status"] == "reverted"
        with pytest.raises(ImmutabilityViolationError):
            recorder.complete_output("output-2", "confirmed")

    def test_unknown_status_rejected(self, recorder, causal_graph):
        with pytest.raises(ValueError):
            recorder.complete_output("output-1", "vanished")

    def test_completing_missing_node(self, recorder):
        with pytest.raises(NodeNotFoundError):
            recorder.complete_action("ghost", "completed")
