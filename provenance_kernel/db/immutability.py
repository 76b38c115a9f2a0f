"""
ORM-Level Write-Once Enforcement for causal entities.

===============================================================================
RULES
===============================================================================

Entity              | Mutable after creation                 | Frozen when
--------------------|----------------------------------------|---------------------
SpikeEvent          | nothing                                | always
RoutingDecision     | nothing                                | always
AgentAction         | status, result, error, latency_ms      | status is terminal
WorkflowExecution   | status, outputs, error, duration_ms,   | status is terminal
                    | completed_at                           |
ExternalOutput      | status, block_hash, block_number       | status is terminal

Deletes are always rejected.  Traces must stay reproducible: an output traced
today must yield the same causes when traced again next year.

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires ``before_update`` / ``before_delete`` mapper events before SQL
is emitted.  The listeners below inspect attribute history and raise
ImmutabilityViolationError, which aborts the flush.
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from provenance_kernel.exceptions import ImmutabilityViolationError
from provenance_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _previous_status(target) -> str | None:
    if not hasattr(target, "status"):
        return None
    history = get_history(target, "status")
    if history.deleted:
        return history.deleted[0]
    return target.status


def _check_causal_entity_update(mapper, connection, target):
    """
    Allow completion fields to change until the entity reaches a terminal
    status; block every other modification.
    """
    entity_type = type(target).__name__
    was_terminal = _previous_status(target) in target.TERMINAL_STATUSES

    for attr in inspect(target).attrs:
        if not attr.history.has_changes():
            continue
        if attr.key in target.COMPLETION_FIELDS and not was_terminal:
            continue
        reason = (
            f"Cannot modify field '{attr.key}' after completion"
            if was_terminal
            else f"Field '{attr.key}' is write-once"
        )
        logger.error(
            "immutability_violation_blocked",
            extra={
                "entity_type": entity_type,
                "entity_id": str(target.id),
                "operation": "UPDATE",
                "field": attr.key,
            },
        )
        raise ImmutabilityViolationError(
            entity_type=entity_type,
            entity_id=str(target.id),
            reason=reason,
        )


def _check_causal_entity_delete(mapper, connection, target):
    """Causal entities are never deleted."""
    entity_type = type(target).__name__
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason="Causal entities cannot be deleted",
    )


def _entity_models():
    from provenance_kernel.models import MODEL_BY_NODE_TYPE

    return MODEL_BY_NODE_TYPE.values()


def register_immutability_listeners():
    """
    Register write-once enforcement listeners on all causal entity models.

    Call during application initialization, after models are imported.
    Idempotent.
    """
    for model in _entity_models():
        if not event.contains(model, "before_update", _check_causal_entity_update):
            event.listen(model, "before_update", _check_causal_entity_update)
        if not event.contains(model, "before_delete", _check_causal_entity_delete):
            event.listen(model, "before_delete", _check_causal_entity_delete)


def check_completion_update(model, entity_id: str, current_status, fields) -> None:
    """
    Validate a completion update before it is applied.

    Same rules as the flush-time listener, usable by stores that do not
    go through the ORM.

    Raises:
        ImmutabilityViolationError: If the entity is already terminal or a
            field outside ``model.COMPLETION_FIELDS`` is being set.
    """
    if current_status in model.TERMINAL_STATUSES:
        raise ImmutabilityViolationError(
            entity_type=model.__name__,
            entity_id=entity_id,
            reason="Cannot modify fields after completion",
        )
    for key in fields:
        if key not in model.COMPLETION_FIELDS:
            raise ImmutabilityViolationError(
                entity_type=model.__name__,
                entity_id=entity_id,
                reason=f"Field '{key}' is write-once",
            )
