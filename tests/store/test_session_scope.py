"""
Tests for session_scope: one transaction per block of recorder writes.
"""

import pytest

from provenance_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from provenance_kernel.domain.causal_graph import NodeType
from provenance_kernel.exceptions import NodeNotFoundError
from provenance_kernel.services.causal_recorder import CausalRecorder
from provenance_kernel.store.sql import SqlCausalStore


@pytest.fixture
def database():
    init_engine_from_url("sqlite:///:memory:")
    create_tables()
    yield
    drop_tables()
    reset_engine()


def _stored_type(node_id):
    session = get_session()
    try:
        return SqlCausalStore(session).has_node(node_id)
    finally:
        session.close()


class TestSessionScope:
    """Commit on normal exit, roll back on error."""

    def test_commits_recorded_chain(self, database, clock):
        with session_scope() as session:
            recorder = CausalRecorder(SqlCausalStore(session), clock)
            recorder.record_spike_event(event_id="s", population_id="v1", neuron_indices=[1])
            recorder.record_routing_decision(
                decision_id="d", inference_id="i", decision_type="route", spike_event_ids=["s"]
            )

        assert _stored_type("s") == NodeType.SPIKE_EVENT
        assert _stored_type("d") == NodeType.ROUTING_DECISION

        session = get_session()
        try:
            parents, _ = SqlCausalStore(session).get_parents("d", NodeType.ROUTING_DECISION)
        finally:
            session.close()
        assert [n.id for n in parents] == ["s"]

    def test_rolls_back_on_error(self, database, clock, captured_logs):
        with pytest.raises(NodeNotFoundError):
            with session_scope() as session:
                recorder = CausalRecorder(SqlCausalStore(session), clock)
                recorder.record_spike_event(
                    event_id="s", population_id="v1", neuron_indices=[1]
                )
                recorder.record_agent_action(
                    action_id="a",
                    agent_id="bot",
                    agent_type="t",
                    action_type="x",
                    decision_ids=["ghost"],
                )

        assert _stored_type("s") is None
        assert _stored_type("a") is None
        assert any(r["message"] == "transaction_rolled_back" for r in captured_logs())

    def test_requires_engine(self):
        reset_engine()
        with pytest.raises(RuntimeError):
            with session_scope():
                pass
