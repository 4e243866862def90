"""RuleLogSelector -- newest-first reads of the rule execution log."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select

from payment_kernel.models.recurrence_rule import RecurrenceRule
from payment_kernel.models.rule_log import RuleLogEntry
from payment_kernel.selectors.base import BaseSelector

DEFAULT_RECENT_LIMIT = 200


@dataclass(frozen=True)
class RuleLogView:
    rule_id: UUID
    level: str
    message: str
    context: dict[str, Any]
    created_at: datetime


def _view(entry: RuleLogEntry) -> RuleLogView:
    return RuleLogView(
        rule_id=entry.rule_id,
        level=entry.level,
        message=entry.message,
        context=dict(entry.context or {}),
        created_at=entry.created_at,
    )


class RuleLogSelector(BaseSelector):
    def for_rule(self, rule_id: UUID, limit: int = DEFAULT_RECENT_LIMIT) -> list[RuleLogView]:
        stmt = (
            select(RuleLogEntry)
            .where(RuleLogEntry.rule_id == rule_id)
            .order_by(RuleLogEntry.created_at.desc())
            .limit(limit)
        )
        return [_view(e) for e in self.session.execute(stmt).scalars()]

    def recent(
        self,
        limit: int = DEFAULT_RECENT_LIMIT,
        owner_id: UUID | None = None,
    ) -> list[RuleLogView]:
        """Newest entries across rules, optionally only rules of ``owner_id``."""
        stmt = select(RuleLogEntry).order_by(RuleLogEntry.created_at.desc()).limit(limit)
        if owner_id is not None:
            stmt = stmt.join(RecurrenceRule, RecurrenceRule.id == RuleLogEntry.rule_id).where(
                RecurrenceRule.owner_id == owner_id
            )
        return [_view(e) for e in self.session.execute(stmt).scalars()]
