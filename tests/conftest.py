"""
Pytest fixtures for the provenance kernel test suite.

Provides:
- Structured-log capture
- Deterministic clock
- In-memory store, recorder and tracer
- SQLite-backed SQL store sessions (in-memory, one engine per test)
- A canonical causal graph seeded through the recorder
"""

import json
import logging
from io import StringIO
from types import SimpleNamespace

import pytest

from provenance_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from provenance_kernel.domain.clock import DeterministicClock
from provenance_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from provenance_kernel.services.causal_recorder import CausalRecorder
from provenance_kernel.services.causal_tracer import CausalTracer
from provenance_kernel.store.memory import InMemoryCausalStore
from provenance_kernel.store.sql import SqlCausalStore


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture provenance_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, tracer):
            tracer.trace_causality("output-1")
            logs = captured_logs()
            assert any(r["message"] == "causal_trace_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("provenance_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Core fixtures
# =============================================================================


@pytest.fixture
def clock():
    return DeterministicClock()


@pytest.fixture
def memory_store():
    return InMemoryCausalStore()


@pytest.fixture
def recorder(memory_store, clock):
    return CausalRecorder(memory_store, clock)


@pytest.fixture
def tracer(memory_store, clock):
    return CausalTracer(memory_store, clock)


# =============================================================================
# SQL fixtures
# =============================================================================


@pytest.fixture
def sql_session():
    """A session on a fresh in-memory SQLite database with all tables."""
    init_engine_from_url("sqlite:///:memory:")
    create_tables()
    session = get_session()
    yield session
    session.rollback()
    session.close()
    drop_tables()
    reset_engine()


@pytest.fixture
def sql_store(sql_session):
    return SqlCausalStore(sql_session)


@pytest.fixture
def sql_recorder(sql_store, clock):
    return CausalRecorder(sql_store, clock)


# =============================================================================
# Canonical graph
# =============================================================================


def _seed_causal_graph(recorder: CausalRecorder, clock: DeterministicClock) -> SimpleNamespace:
    """
    Seed the canonical diamond-shaped chain:

        spike-1 --0.8--+
                       +-- decision-1 --+
        spike-2 --0.6--+                +-- action-1 -- workflow-1 --+-- output-1
              \\--0.9--- decision-2 ----+                             +-- output-2

    Tracing output-1: 7 nodes, 7 edges, depth 4.  spike-2 is shared by
    both decisions.
    """
    recorder.record_spike_event(
        event_id="spike-1",
        population_id="cortex",
        layer_index=2,
        neuron_indices=[9, 1, 5],
        inference_id="inf-1",
        entropy=0.4,
    )
    clock.tick()
    recorder.record_spike_event(
        event_id="spike-2",
        population_id="cortex",
        layer_index=2,
        neuron_indices=[2, 3],
        inference_id="inf-1",
        entropy=0.2,
    )
    clock.tick()
    recorder.record_routing_decision(
        decision_id="decision-1",
        inference_id="inf-1",
        decision_type="route",
        gate_probability=0.7,
        confidence=0.9,
        selected_model="expert-a",
        spike_event_ids=["spike-1", "spike-2"],
        spike_confidences={"spike-1": 0.8, "spike-2": 0.6},
    )
    clock.tick()
    recorder.record_routing_decision(
        decision_id="decision-2",
        inference_id="inf-1",
        decision_type="escalate",
        gate_probability=0.3,
        confidence=0.6,
        spike_event_ids=["spike-2"],
        spike_confidences={"spike-2": 0.9},
    )
    clock.tick()
    recorder.record_agent_action(
        action_id="action-1",
        agent_id="agent-7",
        agent_type="trading",
        action_type="place_order",
        parameters={"symbol": "ACME", "qty": 10},
        decision_ids=["decision-1", "decision-2"],
    )
    clock.tick()
    recorder.record_workflow_execution(
        execution_id="workflow-1",
        workflow_id="settlement",
        workflow_name="Trade settlement",
        action_ids=["action-1"],
    )
    clock.tick()
    recorder.record_external_output(
        output_id="output-1",
        output_type="trade_execution",
        destination="exchange",
        content={"order": "ACME", "qty": 10},
        workflow_ids=["workflow-1"],
    )
    recorder.record_external_output(
        output_id="output-2",
        output_type="foundation_tx",
        destination="ledger",
        transaction_id="0xabc",
        content={"settled": True},
        workflow_ids=["workflow-1"],
    )
    clock.tick()
    recorder.complete_action("action-1", "completed", result="filled", latency_ms=120.0)
    recorder.complete_workflow("workflow-1", "completed", duration_ms=30.5)

    return SimpleNamespace(
        spike_ids=("spike-1", "spike-2"),
        decision_ids=("decision-1", "decision-2"),
        action_id="action-1",
        agent_id="agent-7",
        workflow_id="workflow-1",
        output_id="output-1",
        sibling_output_id="output-2",
        inference_id="inf-1",
    )


@pytest.fixture
def causal_graph(recorder, clock):
    """The canonical chain in the in-memory store."""
    return _seed_causal_graph(recorder, clock)


@pytest.fixture
def sql_causal_graph(sql_recorder, clock):
    """The canonical chain in the SQLite store."""
    return _seed_causal_graph(sql_recorder, clock)


@pytest.fixture
def seed_causal_graph():
    """The seeding function itself, for tests that bring their own store."""
    return _seed_causal_graph
