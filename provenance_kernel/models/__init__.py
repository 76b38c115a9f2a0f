"""SQLAlchemy ORM models for the causal provenance store."""

from provenance_kernel.models.agent_action import ActionStatus, AgentActionModel
from provenance_kernel.models.causal_links import (
    CAUSAL_LINKS_BY_CAUSE,
    CAUSAL_LINKS_BY_EFFECT,
    CausalLinkSpec,
    agent_action_workflows,
    routing_decision_actions,
    spike_event_decisions,
    workflow_execution_outputs,
)
from provenance_kernel.models.external_output import (
    ExternalOutputModel,
    OutputStatus,
    OutputType,
)
from provenance_kernel.models.routing_decision import DecisionType, RoutingDecisionModel
from provenance_kernel.models.spike_event import SpikeEventModel
from provenance_kernel.models.workflow_execution import (
    WorkflowExecutionModel,
    WorkflowStatus,
)
from provenance_kernel.domain.causal_graph import NodeType

MODEL_BY_NODE_TYPE = {
    NodeType.SPIKE_EVENT: SpikeEventModel,
    NodeType.ROUTING_DECISION: RoutingDecisionModel,
    NodeType.AGENT_ACTION: AgentActionModel,
    NodeType.WORKFLOW_EXECUTION: WorkflowExecutionModel,
    NodeType.EXTERNAL_OUTPUT: ExternalOutputModel,
}

__all__ = [
    "ActionStatus",
    "AgentActionModel",
    "CAUSAL_LINKS_BY_CAUSE",
    "CAUSAL_LINKS_BY_EFFECT",
    "CausalLinkSpec",
    "DecisionType",
    "ExternalOutputModel",
    "MODEL_BY_NODE_TYPE",
    "OutputStatus",
    "OutputType",
    "RoutingDecisionModel",
    "SpikeEventModel",
    "WorkflowExecutionModel",
    "WorkflowStatus",
    "agent_action_workflows",
    "routing_decision_actions",
    "spike_event_decisions",
    "workflow_execution_outputs",
]
