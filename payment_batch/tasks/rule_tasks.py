"""
Recurrence rule batch task: generate payment requests from due rules.

Contract:
    ``RunDueRulesTask`` ("rules.run_due") turns every active rule whose
    ``next_due_at`` has passed into a new payment request and advances the
    rule to its next occurrence.

Architecture: payment_batch/tasks.  Kernel services do the domain work;
    the executor owns the SAVEPOINT around each rule.

Invariants enforced:
    - The rule row is re-read FOR UPDATE inside the SAVEPOINT and re-checked
      as due, so a second pass (or a concurrent edit that moved the rule)
      makes the item a SKIPPED no-op.
    - Request creation and the schedule advance commit or roll back
      together; a failed rule stays due and is retried on the next run.
    - A reference file copied for a failed rule is removed again.

Failure modes:
    - Missing, unresolvable or uncopyable reference file: error entry in the
      rule log, the request is created without a file.
    - Anything else: the exception reaches the executor, which rolls the
      SAVEPOINT back and calls ``record_failure``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from payment_kernel.domain.clock import Clock, SystemClock
from payment_kernel.domain.recurrence import advance_schedule, to_local
from payment_kernel.exceptions import BlobStoreError
from payment_kernel.logging_config import LogContext, get_logger
from payment_kernel.models.recurrence_rule import RecurrenceRule
from payment_kernel.services.blob_store import BlobStore, requisites_copy_path
from payment_kernel.services.request_workflow import RequestWorkflowService
from payment_kernel.services.rule_log_service import RuleLogService

from payment_batch.domain.types import BatchItemStatus
from payment_batch.tasks.base import BatchItemInput, BatchTaskResult

logger = get_logger("batch.tasks.rules")


class RunDueRulesTask:
    """Execute every due recurrence rule once."""

    def __init__(
        self,
        blob_store: BlobStore,
        clock: Clock | None = None,
        batch_size: int = 100,
        debug: bool = False,
    ):
        self._blob_store = blob_store
        self._clock = clock or SystemClock()
        self._batch_size = batch_size
        self._debug = debug

    @property
    def task_type(self) -> str:
        return "rules.run_due"

    @property
    def description(self) -> str:
        return "Create payment requests from due recurrence rules"

    # -------------------------------------------------------------------------
    # Prepare
    # -------------------------------------------------------------------------

    def prepare_items(
        self,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> tuple[BatchItemInput, ...]:
        if self._debug:
            self._log_snapshot(session, as_of)

        stmt = (
            select(RecurrenceRule.id, RecurrenceRule.next_due_at)
            .where(
                RecurrenceRule.is_active.is_(True),
                RecurrenceRule.next_due_at.is_not(None),
                RecurrenceRule.next_due_at <= as_of,
            )
            .order_by(RecurrenceRule.next_due_at, RecurrenceRule.id)
        )

        items: list[BatchItemInput] = []
        offset = 0
        while True:
            rows = session.execute(stmt.offset(offset).limit(self._batch_size)).all()
            for rule_id, next_due_at in rows:
                items.append(BatchItemInput(
                    item_index=len(items),
                    item_key=str(rule_id),
                    payload={"rule_id": str(rule_id), "due_at": next_due_at.isoformat()},
                ))
            if len(rows) < self._batch_size:
                break
            offset += self._batch_size

        logger.info("due_rules_prepared", extra={"count": len(items), "as_of": as_of})
        return tuple(items)

    # -------------------------------------------------------------------------
    # Execute
    # -------------------------------------------------------------------------

    def execute_item(
        self,
        item: BatchItemInput,
        parameters: dict[str, Any],
        session: Session,
        as_of: datetime,
    ) -> BatchTaskResult:
        rule_id = UUID(item.payload["rule_id"])
        rule = session.execute(
            select(RecurrenceRule)
            .where(RecurrenceRule.id == rule_id)
            .with_for_update(skip_locked=True)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if rule is None or not rule.is_due(as_of):
            logger.info("rule_not_due", extra={"rule_id": str(rule_id)})
            return BatchTaskResult(
                status=BatchItemStatus.SKIPPED,
                result_data={"reason": "not_due"},
            )

        rule_logs = RuleLogService(session, self._clock)
        workflow = RequestWorkflowService(session, self._blob_store, self._clock)

        with LogContext.bind(rule_id=rule.id, actor_id=rule.owner_id):
            copied_path = None
            try:
                file_url = None
                if rule.requisites_file_url:
                    copied_path = self._copy_reference_file(rule, rule_logs)
                    if copied_path is not None:
                        file_url = self._blob_store.url_of(copied_path)

                request = workflow.create_for_owner(rule.owner, {
                    "expense_type_id": rule.expense_type_id,
                    "expense_category_id": rule.expense_category_id,
                    "requisites": rule.requisites,
                    "requisites_file_url": file_url,
                    "amount": rule.amount,
                    "commission": None,
                    "ready_for_payment": rule.ready_for_payment,
                    "paid": False,
                    "paid_account_id": None,
                })

                rule.apply_schedule(
                    advance_schedule(rule.to_definition(), rule.scheduling_state(), as_of)
                )
                session.flush()

                rule_logs.info(
                    rule.id,
                    "Payment request created",
                    {
                        "payment_request_id": str(request.id),
                        "next_due_at": rule.next_due_at.isoformat() if rule.next_due_at else None,
                    },
                )
            except Exception:
                if copied_path is not None:
                    self._discard_copy(copied_path)
                raise

            logger.info(
                "rule_executed",
                extra={
                    "request_id": str(request.id),
                    "next_due_at": rule.next_due_at,
                    "is_active": rule.is_active,
                },
            )

        return BatchTaskResult(
            status=BatchItemStatus.SUCCEEDED,
            result_data={
                "payment_request_id": str(request.id),
                "next_due_at": rule.next_due_at.isoformat() if rule.next_due_at else None,
            },
        )

    def record_failure(
        self,
        item: BatchItemInput,
        error: Exception,
        session: Session,
        as_of: datetime,
    ) -> None:
        rule_id = UUID(item.payload["rule_id"])
        logger.error(
            "rule_execution_failed",
            extra={
                "rule_id": str(rule_id),
                "error_type": type(error).__name__,
                "error": str(error),
            },
        )
        if session.get(RecurrenceRule, rule_id) is None:
            return
        RuleLogService(session, self._clock).error(
            rule_id,
            f"Rule execution failed: {error}",
            {"exception": type(error).__name__},
        )

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _copy_reference_file(
        self, rule: RecurrenceRule, rule_logs: RuleLogService,
    ) -> str | None:
        """Copy the rule's reference file; None when it cannot be copied."""
        url = rule.requisites_file_url
        source = self._blob_store.path_from_url(url)
        if source is None:
            rule_logs.error(rule.id, "Reference file URL could not be resolved", {"url": url})
            return None
        if not self._blob_store.exists(source):
            rule_logs.error(rule.id, "Reference file not found", {"path": source})
            return None

        destination = requisites_copy_path(source)
        try:
            self._blob_store.copy(source, destination)
        except BlobStoreError as exc:
            rule_logs.error(
                rule.id,
                "Reference file could not be copied",
                {"path": source, "error": str(exc)},
            )
            return None
        return destination

    def _discard_copy(self, path: str) -> None:
        try:
            self._blob_store.delete(path)
        except BlobStoreError:
            logger.warning("copied_blob_cleanup_failed", extra={"path": path}, exc_info=True)

    def _log_snapshot(self, session: Session, as_of: datetime) -> None:
        rules = session.execute(
            select(RecurrenceRule)
            .where(RecurrenceRule.is_active.is_(True))
            .order_by(RecurrenceRule.next_due_at, RecurrenceRule.id)
        ).scalars()
        for rule in rules:
            logger.debug(
                "rule_snapshot",
                extra={
                    "rule_id": str(rule.id),
                    "frequency": rule.frequency,
                    "timezone": rule.timezone,
                    "next_due_at": rule.next_due_at,
                    "next_due_at_local": (
                        to_local(rule.next_due_at, rule.timezone) if rule.next_due_at else None
                    ),
                    "due": rule.is_due(as_of),
                },
            )
