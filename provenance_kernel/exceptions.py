"""
Typed Exception Hierarchy for the Provenance Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the tracer (usually an API layer) must distinguish "the output you
asked about does not exist" from "the store is down" without parsing message
strings. Every exception therefore:
  1. Has its own class (catch by type, not message)
  2. Carries a CODE class attribute (machine-readable, API-safe)
  3. Stores its context as attributes (structured data survives logging)

Example:
    try:
        path = tracer.trace_causality(output_id)
    except NodeNotFoundError as e:
        return {"error": e.code, "node_id": e.node_id}, 404
    except StoreUnavailableError as e:
        return {"error": e.code, "operation": e.operation}, 503

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ProvenanceKernelError (base)
    |
    +-- TraceError
    |   +-- NodeNotFoundError
    |   +-- AgentMismatchError
    |   +-- InvalidTimeWindowError
    |
    +-- StoreError
    |   +-- StoreUnavailableError
    |
    +-- CausalLinkError
    |   +-- InvalidCausalLinkError
    |   +-- InvalidConfidenceError
    |   +-- NodeAlreadyExistsError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                   | When Raised
--------------|------------------------|-------------------------------------------
Trace         | NODE_NOT_FOUND         | Root id of a trace does not exist
              | AGENT_MISMATCH         | Action exists but belongs to another agent
              | INVALID_TIME_WINDOW    | Pattern window start is after its end
--------------|------------------------|-------------------------------------------
Store         | STORE_UNAVAILABLE      | Any store call failed (timeout, connection)
--------------|------------------------|-------------------------------------------
Causal link   | INVALID_CAUSAL_LINK    | Link skips a level or reverses the chain
              | INVALID_CONFIDENCE     | Edge confidence outside [0, 1]
              | NODE_ALREADY_EXISTS    | Node id already used (ids are global)
--------------|------------------------|-------------------------------------------
Immutability  | IMMUTABILITY_VIOLATION | Modifying a write-once field

Depth ceilings are NOT errors: a truncated trace is signalled by
``path.depth == max_depth``. Non-positive limits are normalized, never
rejected.
"""


class ProvenanceKernelError(Exception):
    """
    Base exception for all provenance kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "PROVENANCE_KERNEL_ERROR"


# Trace-related exceptions


class TraceError(ProvenanceKernelError):
    """Base exception for trace and query errors."""

    code: str = "TRACE_ERROR"


class NodeNotFoundError(TraceError):
    """The node a trace or link refers to does not exist in the store."""

    code: str = "NODE_NOT_FOUND"

    def __init__(self, node_id: str, node_type: str):
        self.node_id = node_id
        self.node_type = node_type
        super().__init__(f"Causal node not found: {node_type}:{node_id}")


class AgentMismatchError(TraceError):
    """The agent action exists but was taken by a different agent."""

    code: str = "AGENT_MISMATCH"

    def __init__(self, action_id: str, expected_agent_id: str, actual_agent_id: str):
        self.action_id = action_id
        self.expected_agent_id = expected_agent_id
        self.actual_agent_id = actual_agent_id
        super().__init__(
            f"Agent action {action_id} belongs to agent {actual_agent_id}, "
            f"not {expected_agent_id}"
        )


class InvalidTimeWindowError(TraceError):
    """Pattern search window has its start after its end."""

    code: str = "INVALID_TIME_WINDOW"

    def __init__(self, start_time: str, end_time: str):
        self.start_time = start_time
        self.end_time = end_time
        super().__init__(
            f"Invalid time window: start {start_time} is after end {end_time}"
        )


# Store-related exceptions


class StoreError(ProvenanceKernelError):
    """Base exception for store collaborator failures."""

    code: str = "STORE_ERROR"


class StoreUnavailableError(StoreError):
    """
    A store call failed.

    The in-flight traversal is aborted and its partial path discarded. No
    retry is attempted at this layer.
    """

    code: str = "STORE_UNAVAILABLE"

    def __init__(self, operation: str, node_id: str | None, reason: str):
        self.operation = operation
        self.node_id = node_id
        self.reason = reason
        target = f" for {node_id}" if node_id else ""
        super().__init__(f"Store call {operation}{target} failed: {reason}")


# Causal-link exceptions (write side)


class CausalLinkError(ProvenanceKernelError):
    """Base exception for causal link recording errors."""

    code: str = "CAUSAL_LINK_ERROR"


class InvalidCausalLinkError(CausalLinkError):
    """
    The link does not connect adjacent levels of the causal chain.

    Causal edges run effect -> cause between neighbouring kinds only:
    output -> workflow -> action -> decision -> spike.
    """

    code: str = "INVALID_CAUSAL_LINK"

    def __init__(self, child_type: str, parent_type: str, reason: str):
        self.child_type = child_type
        self.parent_type = parent_type
        self.reason = reason
        super().__init__(
            f"Invalid causal link from {child_type} to {parent_type}: {reason}"
        )


class InvalidConfidenceError(CausalLinkError):
    """Edge confidence is outside [0, 1]."""

    code: str = "INVALID_CONFIDENCE"

    def __init__(self, confidence: float):
        self.confidence = confidence
        super().__init__(f"Edge confidence must be within [0, 1], got {confidence}")


class NodeAlreadyExistsError(CausalLinkError):
    """A node with this id already exists (ids are unique across all types)."""

    code: str = "NODE_ALREADY_EXISTS"

    def __init__(self, node_id: str, existing_type: str):
        self.node_id = node_id
        self.existing_type = existing_type
        super().__init__(f"Node id {node_id} already used by a {existing_type}")


# Immutability exceptions


class ImmutabilityError(ProvenanceKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete a write-once record.

    Only completion fields (status, error, durations) may change after
    creation, and only once.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
