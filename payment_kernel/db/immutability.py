"""
ORM-level append-only enforcement for the change history.

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  Listeners registered here intercept those events for
``AuditRecord`` and raise ``ImmutabilityViolationError``, aborting the flush
before any SQL is sent:

    session.flush()
         |
         v
    [before_update] --> _check_audit_record_update() --> ImmutabilityViolationError
    [before_delete] --> _check_audit_record_delete() --> ImmutabilityViolationError

Bulk ``UPDATE``/``DELETE`` statements bypass mapper events; no code path in
this package issues them against ``audit_records``.

Usage:

    from payment_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event

from payment_kernel.exceptions import ImmutabilityViolationError
from payment_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _check_audit_record_update(mapper, connection, target):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "AuditRecord",
            "entity_id": str(target.id),
            "operation": "UPDATE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="AuditRecord",
        entity_id=str(target.id),
        reason="Audit records are append-only and cannot be modified",
    )


def _check_audit_record_delete(mapper, connection, target):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "AuditRecord",
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="AuditRecord",
        entity_id=str(target.id),
        reason="Audit records cannot be deleted",
    )


def register_immutability_listeners() -> None:
    """Register the append-only listeners (idempotent)."""
    from payment_kernel.models.audit_record import AuditRecord

    if not event.contains(AuditRecord, "before_update", _check_audit_record_update):
        event.listen(AuditRecord, "before_update", _check_audit_record_update)
    if not event.contains(AuditRecord, "before_delete", _check_audit_record_delete):
        event.listen(AuditRecord, "before_delete", _check_audit_record_delete)


def unregister_immutability_listeners() -> None:
    """Remove the append-only listeners.  FOR TESTING ONLY."""
    from payment_kernel.models.audit_record import AuditRecord

    for name, fn in (
        ("before_update", _check_audit_record_update),
        ("before_delete", _check_audit_record_delete),
    ):
        if event.contains(AuditRecord, name, fn):
            event.remove(AuditRecord, name, fn)
