"""
ORM-level append-only enforcement.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                      | When immutable          | Why
----------------------------|-------------------------|------------------------------
AuditEvent                  | ALWAYS (from creation)  | The hash chain is the record
ContractPriceModification   | ALWAYS                  | Price history of a contract
ContractExtension           | ALWAYS                  | Extension history
JobPriceChange              | ALWAYS                  | Budget history of a job
DisputeLog                  | ALWAYS                  | Admin activity trail
DisputeMessage              | ALWAYS                  | Evidence in a dispute

SQLAlchemy fires ``before_update`` / ``before_delete`` before the SQL is
sent.  The listeners raise ImmutabilityViolationError and the flush aborts,
so the database is never modified.

===============================================================================
USAGE
===============================================================================

    from settlement_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup, idempotent

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event

from settlement_kernel.exceptions import ImmutabilityViolationError
from settlement_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _append_only_models() -> list[type]:
    from settlement_kernel.models.audit_event import AuditEvent
    from settlement_kernel.models.contract import (
        ContractExtension,
        ContractPriceModification,
    )
    from settlement_kernel.models.dispute import DisputeLog, DisputeMessage
    from settlement_kernel.models.job import JobPriceChange

    return [
        AuditEvent,
        ContractPriceModification,
        ContractExtension,
        JobPriceChange,
        DisputeLog,
        DisputeMessage,
    ]


def _block(operation: str, target) -> None:
    entity_type = type(target).__name__
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    verb = "modified" if operation == "UPDATE" else "deleted"
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=f"{entity_type} records are append-only and cannot be {verb}",
    )


def _check_append_only_update(mapper, connection, target):
    _block("UPDATE", target)


def _check_append_only_delete(mapper, connection, target):
    _block("DELETE", target)


def register_immutability_listeners():
    """
    Register the append-only listeners on every protected model.

    Call after the models are importable and before any database work.
    """
    for model in _append_only_models():
        if not event.contains(model, "before_update", _check_append_only_update):
            event.listen(model, "before_update", _check_append_only_update)
        if not event.contains(model, "before_delete", _check_append_only_delete):
            event.listen(model, "before_delete", _check_append_only_delete)


def _safe_remove_listener(target, event_name, listener_fn):
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove the append-only listeners.

    WARNING: Only use this in tests that deliberately tamper with history
    to verify detection (e.g. audit chain validation).
    """
    for model in _append_only_models():
        _safe_remove_listener(model, "before_update", _check_append_only_update)
        _safe_remove_listener(model, "before_delete", _check_append_only_delete)
