"""
Tests for cancellation and store failure during a trace.

- A cancelled trace stops issuing store calls and returns the partial path
  flagged complete=False.
- A failing store call aborts the trace with StoreUnavailableError; no
  partial path is returned.
"""

import pytest

from provenance_kernel.domain.cancellation import CancellationToken
from provenance_kernel.exceptions import StoreUnavailableError
from provenance_kernel.services.causal_recorder import CausalRecorder
from provenance_kernel.services.causal_tracer import CausalTracer
from provenance_kernel.store.memory import InMemoryCausalStore


class CancellingStore(InMemoryCausalStore):
    """Cancels ``token`` once ``after`` parent fetches have been served."""

    def __init__(self, token: CancellationToken, after: int):
        super().__init__()
        self.token = token
        self.after = after

    def get_parents(self, node_id, node_type):
        result = super().get_parents(node_id, node_type)
        if self.call_count("get_parents") >= self.after:
            self.token.cancel()
        return result


@pytest.fixture
def token():
    return CancellationToken()


@pytest.fixture
def cancelling_store(token):
    return CancellingStore(token, after=1)


@pytest.fixture
def cancelling_graph(cancelling_store, clock, seed_causal_graph):
    return seed_causal_graph(CausalRecorder(cancelling_store, clock), clock)


class TestCancellation:
    """Cooperative cancellation returns partial results."""

    def test_cancelled_before_start(self, tracer, causal_graph, memory_store, token):
        token.cancel()
        memory_store.calls.clear()

        path = tracer.trace_causality(causal_graph.output_id, cancel_token=token)

        assert path.complete is False
        assert path.nodes == ()
        assert path.edges == ()
        assert memory_store.calls == []

    def test_cancelled_mid_trace(self, cancelling_store, cancelling_graph, clock, token):
        tracer = CausalTracer(cancelling_store, clock)
        cancelling_store.calls.clear()

        path = tracer.trace_causality(cancelling_graph.output_id, cancel_token=token)

        assert path.complete is False
        assert path.node_ids() == ["output-1", "workflow-1"]
        assert len(path.edges) == 1
        assert path.depth == 1
        assert cancelling_store.call_count("get_parents") == 1

    def test_cancelled_mid_level(self, cancelling_store, cancelling_graph, clock, token):
        """Fetches stop partway through a level; only a prefix is merged."""
        cancelling_store.after = 4
        tracer = CausalTracer(cancelling_store, clock)
        cancelling_store.calls.clear()

        path = tracer.trace_causality(cancelling_graph.output_id, cancel_token=token)

        # decision-1 was fetched, decision-2 was not
        assert path.complete is False
        assert path.node_ids() == [
            "output-1",
            "workflow-1",
            "action-1",
            "decision-1",
            "decision-2",
            "spike-1",
            "spike-2",
        ]
        assert [(e.source_id, e.target_id) for e in path.edges[-2:]] == [
            ("decision-1", "spike-1"),
            ("decision-1", "spike-2"),
        ]
        assert len(path.edges) == 6

    def test_cancellation_logged(
        self, cancelling_store, cancelling_graph, clock, token, captured_logs
    ):
        CausalTracer(cancelling_store, clock).trace_causality(
            cancelling_graph.output_id, cancel_token=token
        )
        messages = [r["message"] for r in captured_logs()]
        assert "causal_trace_cancelled" in messages
        assert "causal_trace_completed" not in messages

    def test_expired_deadline(self, tracer, causal_graph):
        token = CancellationToken.with_timeout(-1)
        assert tracer.trace_causality(causal_graph.output_id, cancel_token=token).complete is False

    def test_live_token_does_not_interfere(self, tracer, causal_graph, token):
        path = tracer.trace_causality(causal_graph.output_id, cancel_token=token)
        assert path.complete is True
        assert len(path.nodes) == 7


class TestStoreFailure:
    """Store failures propagate and discard the partial path."""

    def test_parent_fetch_failure(self, tracer, causal_graph, memory_store):
        memory_store.fail_on.add("get_parents")

        with pytest.raises(StoreUnavailableError) as exc_info:
            tracer.trace_causality(causal_graph.output_id)

        assert exc_info.value.code == "STORE_UNAVAILABLE"
        assert exc_info.value.operation == "get_parents"
        assert exc_info.value.node_id == "output-1"

    def test_root_fetch_failure(self, tracer, causal_graph, memory_store):
        memory_store.fail_on.add("get_node")
        with pytest.raises(StoreUnavailableError):
            tracer.trace_causality(causal_graph.output_id)

    def test_no_retry(self, tracer, causal_graph, memory_store):
        memory_store.fail_on.add("get_parents")
        memory_store.calls.clear()

        with pytest.raises(StoreUnavailableError):
            tracer.trace_causality(causal_graph.output_id)
        assert memory_store.call_count("get_parents") == 1

    def test_failure_in_concurrent_level(self, memory_store, clock, causal_graph):
        memory_store.fail_on.add("get_parents")
        tracer = CausalTracer(memory_store, clock, fetch_workers=4)
        with pytest.raises(StoreUnavailableError):
            tracer.trace_causality(causal_graph.output_id)

    def test_failure_logged(self, tracer, causal_graph, memory_store, captured_logs):
        memory_store.fail_on.add("get_parents")
        with pytest.raises(StoreUnavailableError):
            tracer.trace_causality(causal_graph.output_id)

        failed = next(r for r in captured_logs() if r["message"] == "causal_trace_failed")
        assert failed["level"] == "ERROR"
        assert failed["operation"] == "get_parents"
        assert failed["output_id"] == "output-1"

    def test_agent_path_child_fetch_failure(self, tracer, causal_graph, memory_store):
        memory_store.fail_on.add("get_children")
        with pytest.raises(StoreUnavailableError):
            tracer.get_agent_decision_path("agent-7", "action-1")
