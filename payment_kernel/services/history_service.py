"""
HistoryService -- append-only, field-level change history.

Responsibility:
    The only writer of ``AuditRecord`` rows.  Computes ``{old, new}`` diffs
    over JSON-safe renderings of field values and allocates a monotonic
    ``seq`` for every record.

Architecture position:
    Kernel > Services.  Called by RequestWorkflowService, RecurrenceRuleService
    and the batch tasks.

Invariants enforced:
    - One record per logical change; an empty diff writes nothing.
    - ``changed_fields`` preserves the caller's field order.
    - Values are stored JSON-safe: UUID and Decimal as strings, datetimes
      and dates as ISO-8601.
"""

from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Iterable, Mapping
from uuid import UUID

from sqlalchemy.orm import Session

from payment_kernel.domain.clock import Clock, SystemClock
from payment_kernel.logging_config import get_logger
from payment_kernel.models.audit_record import AuditAction, AuditEntityType, AuditRecord
from payment_kernel.services.sequence_service import SequenceService

logger = get_logger("services.history")


def jsonable(value: Any) -> Any:
    """Render a field value the way it is stored in ``changed_fields``."""
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, (list, tuple, frozenset, set)):
        return [jsonable(v) for v in (sorted(value) if isinstance(value, (set, frozenset)) else value)]
    return value


def diff_fields(
    before: Mapping[str, Any],
    after: Mapping[str, Any],
    fields: Iterable[str] | None = None,
) -> dict[str, dict[str, Any]]:
    """``{field: {"old": ..., "new": ...}}`` for every field whose value changed."""
    changes: dict[str, dict[str, Any]] = {}
    for name in fields if fields is not None else before.keys():
        old = jsonable(before.get(name))
        new = jsonable(after.get(name))
        if old != new:
            changes[name] = {"old": old, "new": new}
    return changes


def creation_fields(values: Mapping[str, Any]) -> dict[str, dict[str, Any]]:
    """Every field of a newly created entity, with ``old`` set to None."""
    return {name: {"old": None, "new": jsonable(value)} for name, value in values.items()}


class HistoryService:
    """
    Append audit records.

    Non-goals:
        - Does NOT call ``session.commit()`` -- the record is written in the
          caller's transaction and disappears with it on rollback.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        sequence_service: SequenceService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequence = sequence_service or SequenceService(session)

    def record(
        self,
        entity_type: AuditEntityType,
        entity_id: UUID,
        actor_id: UUID,
        action: AuditAction,
        changed_fields: Mapping[str, Mapping[str, Any]],
    ) -> AuditRecord:
        seq = self._sequence.next_value(SequenceService.AUDIT_RECORD)
        record = AuditRecord(
            seq=seq,
            entity_type=entity_type.value,
            entity_id=entity_id,
            actor_id=actor_id,
            action=action.value,
            changed_fields={k: dict(v) for k, v in changed_fields.items()},
            created_at=self._clock.now(),
        )
        self._session.add(record)
        self._session.flush()

        logger.info(
            "audit_record_created",
            extra={
                "seq": seq,
                "entity_type": entity_type.value,
                "entity_id": str(entity_id),
                "action": action.value,
                "fields": list(changed_fields.keys()),
            },
        )
        return record

    def record_created(
        self,
        entity_type: AuditEntityType,
        entity_id: UUID,
        actor_id: UUID,
        values: Mapping[str, Any],
    ) -> AuditRecord:
        return self.record(
            entity_type, entity_id, actor_id, AuditAction.CREATED, creation_fields(values),
        )

    def record_changes(
        self,
        entity_type: AuditEntityType,
        entity_id: UUID,
        actor_id: UUID,
        action: AuditAction,
        before: Mapping[str, Any],
        after: Mapping[str, Any],
    ) -> AuditRecord | None:
        """Write one record for the diff, or nothing when nothing changed."""
        changes = diff_fields(before, after)
        if not changes:
            return None
        return self.record(entity_type, entity_id, actor_id, action, changes)
