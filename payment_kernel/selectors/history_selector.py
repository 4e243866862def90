"""
HistorySelector -- read side of the change history.

Records come back newest first (created_at descending, ties broken by the
monotonic ``seq``).  Values are raw: ids stay ids.  ``with_labels`` lets a
caller map reference ids to display names without this package knowing
how names are rendered.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, Sequence
from uuid import UUID

from sqlalchemy import select

from payment_kernel.models.audit_record import AuditEntityType, AuditRecord
from payment_kernel.selectors.base import BaseSelector

# Fields whose values are reference ids and can be labelled for display.
LABELLED_FIELDS: tuple[str, ...] = (
    "expense_type_id",
    "expense_category_id",
    "paid_account_id",
)

LabelResolver = Callable[[str, Any], Any]


@dataclass(frozen=True)
class HistoryEntry:
    seq: int
    entity_type: str
    entity_id: UUID
    actor_id: UUID
    action: str
    changed_fields: dict[str, dict[str, Any]]
    created_at: datetime

    @classmethod
    def from_model(cls, record: AuditRecord) -> HistoryEntry:
        return cls(
            seq=record.seq,
            entity_type=record.entity_type,
            entity_id=record.entity_id,
            actor_id=record.actor_id,
            action=record.action,
            changed_fields=dict(record.changed_fields or {}),
            created_at=record.created_at,
        )


class HistorySelector(BaseSelector):
    def for_entity(
        self,
        entity_type: AuditEntityType,
        entity_id: UUID,
        limit: int | None = None,
    ) -> list[HistoryEntry]:
        stmt = (
            select(AuditRecord)
            .where(
                AuditRecord.entity_type == entity_type.value,
                AuditRecord.entity_id == entity_id,
            )
            .order_by(AuditRecord.created_at.desc(), AuditRecord.seq.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return [HistoryEntry.from_model(r) for r in self.session.execute(stmt).scalars()]

    def for_request(self, request_id: UUID) -> list[HistoryEntry]:
        return self.for_entity(AuditEntityType.PAYMENT_REQUEST, request_id)

    def for_rule(self, rule_id: UUID) -> list[HistoryEntry]:
        return self.for_entity(AuditEntityType.RECURRENCE_RULE, rule_id)

    @staticmethod
    def with_labels(
        entries: Sequence[HistoryEntry], resolver: LabelResolver,
    ) -> list[HistoryEntry]:
        """
        Copy of ``entries`` with reference ids replaced by
        ``resolver(field, value)``.  ``None`` values are passed through
        unchanged.
        """
        labelled: list[HistoryEntry] = []
        for entry in entries:
            fields = {}
            for name, change in entry.changed_fields.items():
                if name in LABELLED_FIELDS:
                    change = {
                        key: (resolver(name, value) if value is not None else None)
                        for key, value in change.items()
                    }
                fields[name] = change
            labelled.append(replace(entry, changed_fields=fields))
        return labelled
