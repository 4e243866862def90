"""
RecurrenceRuleService -- maintenance of recurrence rules.

Responsibility:
    Create, edit and delete recurrence rules on behalf of an actor.  Every
    save recomputes the scheduling state from a single clock read, so a
    rule's next_due_at is always the recurrence calculator's answer for the
    moment of the last save.

Architecture position:
    Kernel > Services.  Uses the pure recurrence functions for scheduling
    and HistoryService for the rule's change history.

Invariants enforced:
    - Only the owner or an admin may edit or delete a rule.
    - Edits lock the rule row (SELECT ... FOR UPDATE) for the whole
      read-recompute-write, serializing against the rule executor.
    - A ``once`` rule whose occurrence is already past is saved inactive.
    - A replaced or orphaned reference file is deleted after commit.

Failure modes:
    - RecurrenceRuleNotFoundError, ActorNotFoundError, ValidationError,
      AuthorizationError.
"""

from __future__ import annotations

from typing import Any, Mapping
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from payment_kernel.domain.authorization import Actor, can_manage_rule
from payment_kernel.domain.clock import Clock, SystemClock
from payment_kernel.domain.recurrence import (
    DEFAULT_TIMEZONE,
    SchedulingState,
    initial_schedule,
    reschedule,
)
from payment_kernel.exceptions import (
    ActorNotFoundError,
    AuthorizationError,
    RecurrenceRuleNotFoundError,
    ValidationError,
)
from payment_kernel.logging_config import LogContext, get_logger
from payment_kernel.models.audit_record import AuditAction, AuditEntityType
from payment_kernel.models.recurrence_rule import RecurrenceRule
from payment_kernel.models.reference import User
from payment_kernel.models.rule_log import RuleLogEntry
from payment_kernel.selectors.rule_log_selector import (
    DEFAULT_RECENT_LIMIT,
    RuleLogSelector,
    RuleLogView,
)
from payment_kernel.services.blob_store import BlobStore, delete_after_commit
from payment_kernel.services.history_service import HistoryService
from payment_kernel.services.validation import validate_rule_fields

logger = get_logger("services.rule")

RULE_FIELDS: tuple[str, ...] = (
    "name",
    "expense_type_id",
    "expense_category_id",
    "requisites",
    "requisites_file_url",
    "amount",
    "ready_for_payment",
    "frequency",
    "interval_days",
    "days_of_week",
    "day_of_month",
    "start_date",
    "run_at",
    "timezone",
    "is_active",
)


def _rule_values(rule: RecurrenceRule) -> dict[str, Any]:
    return {name: getattr(rule, name) for name in RULE_FIELDS}


class RecurrenceRuleService:
    """
    Rule maintenance.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT execute rules -- that is the batch task's job.
    """

    def __init__(
        self,
        session: Session,
        blob_store: BlobStore,
        clock: Clock | None = None,
        history_service: HistoryService | None = None,
        default_timezone: str = DEFAULT_TIMEZONE,
    ):
        self._session = session
        self._blob_store = blob_store
        self._clock = clock or SystemClock()
        self._history = history_service or HistoryService(session, self._clock)
        self._default_timezone = default_timezone

    def create_rule(self, actor: Actor, fields: Mapping[str, Any]) -> RecurrenceRule:
        """Any actor may create a rule; the actor becomes its owner."""
        _reject_unknown_fields(fields)
        if self._session.get(User, actor.actor_id) is None:
            raise ActorNotFoundError(str(actor.actor_id))
        values = validate_rule_fields(self._session, fields, self._default_timezone)

        rule = RecurrenceRule(owner_id=actor.actor_id)
        for name in RULE_FIELDS:
            setattr(rule, name, values[name])

        now = self._clock.now()
        rule.apply_schedule(
            initial_schedule(rule.to_definition(), now, is_active=values["is_active"])
        )
        self._session.add(rule)
        self._session.flush()

        self._history.record_created(
            AuditEntityType.RECURRENCE_RULE, rule.id, actor.actor_id, _rule_values(rule),
        )
        logger.info(
            "recurrence_rule_created",
            extra={
                "rule_id": str(rule.id),
                "frequency": rule.frequency,
                "next_due_at": rule.next_due_at,
                "is_active": rule.is_active,
            },
        )
        return rule

    def update_rule(
        self, actor: Actor, rule_id: UUID, changes: Mapping[str, Any],
    ) -> RecurrenceRule:
        _reject_unknown_fields(changes)
        rule = self._lock_rule(rule_id)
        self._authorize(actor, rule, "edit")

        with LogContext.bind(rule_id=rule_id, actor_id=actor.actor_id):
            before = _rule_values(rule)
            values = validate_rule_fields(
                self._session, {**before, **changes}, self._default_timezone,
            )
            old_file_url = rule.requisites_file_url
            for name in RULE_FIELDS:
                setattr(rule, name, values[name])
            if rule.requisites_file_url != old_file_url:
                self._forget_file(old_file_url)

            now = self._clock.now()
            state = SchedulingState(
                next_due_at=rule.next_due_at,
                last_executed_at=rule.last_executed_at,
                is_active=values["is_active"],
            )
            rule.apply_schedule(reschedule(rule.to_definition(), state, now))
            self._session.flush()

            self._history.record_changes(
                AuditEntityType.RECURRENCE_RULE,
                rule.id,
                actor.actor_id,
                AuditAction.UPDATED,
                before,
                _rule_values(rule),
            )
            logger.info(
                "recurrence_rule_updated",
                extra={"next_due_at": rule.next_due_at, "is_active": rule.is_active},
            )
        return rule

    def delete_rule(self, actor: Actor, rule_id: UUID) -> None:
        """Delete a rule, its execution log and (after commit) its file."""
        rule = self._lock_rule(rule_id)
        self._authorize(actor, rule, "delete")

        self._forget_file(rule.requisites_file_url)
        self._session.execute(delete(RuleLogEntry).where(RuleLogEntry.rule_id == rule.id))
        self._session.delete(rule)
        self._session.flush()
        logger.info(
            "recurrence_rule_deleted",
            extra={"rule_id": str(rule_id), "actor_id": str(actor.actor_id)},
        )

    # -------------------------------------------------------------------------
    # Execution log
    # -------------------------------------------------------------------------

    def rule_logs(
        self, actor: Actor, rule_id: UUID, limit: int = DEFAULT_RECENT_LIMIT,
    ) -> list[RuleLogView]:
        rule = self._session.get(RecurrenceRule, rule_id)
        if rule is None:
            raise RecurrenceRuleNotFoundError(str(rule_id))
        self._authorize(actor, rule, "view log of")
        return RuleLogSelector(self._session).for_rule(rule_id, limit)

    def recent_logs(self, actor: Actor, limit: int = DEFAULT_RECENT_LIMIT) -> list[RuleLogView]:
        """Admins see every rule's entries; others only their own rules'."""
        owner_id = None if actor.is_admin else actor.actor_id
        return RuleLogSelector(self._session).recent(limit, owner_id=owner_id)

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _lock_rule(self, rule_id: UUID) -> RecurrenceRule:
        rule = self._session.execute(
            select(RecurrenceRule)
            .where(RecurrenceRule.id == rule_id)
            .with_for_update()
        ).scalar_one_or_none()
        if rule is None:
            raise RecurrenceRuleNotFoundError(str(rule_id))
        return rule

    def _authorize(self, actor: Actor, rule: RecurrenceRule, action: str) -> None:
        if not can_manage_rule(actor, rule.owner_id):
            raise AuthorizationError(
                str(actor.actor_id),
                f"{action} recurrence rule {rule.id}",
                "only the owner or an admin may do this",
            )

    def _forget_file(self, url: str | None) -> None:
        path = self._blob_store.path_from_url(url)
        if path is not None:
            delete_after_commit(self._session, self._blob_store, path)


def _reject_unknown_fields(fields: Mapping[str, Any]) -> None:
    unknown = sorted(set(fields) - set(RULE_FIELDS))
    if unknown:
        raise ValidationError({name: "is not a rule field" for name in unknown})
