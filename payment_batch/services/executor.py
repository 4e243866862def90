"""
BatchExecutor -- SAVEPOINT-per-item batch execution engine.

Contract:
    ``run_job()`` records a job run, asks the task for its items, executes
    each inside its own SAVEPOINT and returns an aggregate report.

Architecture: payment_batch/services.  Imports from payment_batch.domain,
    payment_batch.models, payment_batch.tasks and the kernel clock/logging.

Invariants enforced:
    - SAVEPOINT isolation per item: one failure never aborts the batch.
    - One clock reading (``as_of``) for the whole run; every item sees it.
    - A task's ``record_failure`` runs after the SAVEPOINT rollback.
    - Never raises for a per-item failure.
    - With a ``checkpoint`` callback, it is called after every
      ``checkpoint_every`` items so the caller can commit and release the
      row locks taken so far.
"""

from __future__ import annotations

import time
from datetime import datetime
from typing import Any, Callable
from uuid import uuid4

from sqlalchemy.orm import Session

from payment_kernel.domain.clock import Clock, SystemClock
from payment_kernel.logging_config import LogContext, get_logger

from payment_batch.domain.types import (
    BatchItemResult,
    BatchItemStatus,
    BatchJobStatus,
    BatchRunResult,
)
from payment_batch.models.batch import BatchJobModel
from payment_batch.tasks.base import BatchItemInput, BatchTask, TaskRegistry

logger = get_logger("batch.executor")


def final_status(succeeded: int, failed: int, skipped: int) -> BatchJobStatus:
    """Job status from its item counters."""
    if failed == 0 and skipped == 0:
        return BatchJobStatus.COMPLETED
    if succeeded == 0 and skipped == 0:
        return BatchJobStatus.FAILED
    return BatchJobStatus.PARTIALLY_COMPLETED


class BatchExecutor:
    """Batch execution engine with SAVEPOINT-per-item isolation.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT guard against overlapping runs -- that is JobGuard's job.
        - Does NOT manage background threads -- that is the scheduler's job.
    """

    def __init__(
        self,
        session: Session,
        task_registry: TaskRegistry,
        clock: Clock | None = None,
        checkpoint_every: int = 0,
    ):
        self._session = session
        self._task_registry = task_registry
        self._clock = clock or SystemClock()
        self._checkpoint_every = checkpoint_every

    def run_job(
        self,
        job_name: str,
        task_type: str,
        parameters: dict[str, Any] | None = None,
        checkpoint: Callable[[], None] | None = None,
    ) -> BatchRunResult:
        """Execute one run of ``task_type`` under the name ``job_name``.

        ``checkpoint`` (typically ``session.commit``) is called after every
        ``checkpoint_every`` items; without it the whole run stays in the
        caller's transaction.

        Raises:
            TaskNotRegisteredError: If task_type is not in the registry.
        """
        task = self._task_registry.get(task_type)
        params = dict(parameters or {})
        start_time = time.monotonic()
        now = self._clock.now()
        correlation_id = LogContext.get_all().get("correlation_id") or str(uuid4())

        job_model = BatchJobModel(
            job_name=job_name,
            task_type=task_type,
            status=BatchJobStatus.RUNNING.value,
            parameters=params or None,
            started_at=now,
            correlation_id=correlation_id,
        )
        self._session.add(job_model)
        self._session.flush()

        with LogContext.bind(job_name=job_name, correlation_id=correlation_id):
            logger.info(
                "batch_job_started",
                extra={"job_id": str(job_model.id), "task_type": task_type, "as_of": now},
            )

            try:
                items = task.prepare_items(parameters=params, session=self._session, as_of=now)
            except Exception as exc:
                logger.exception("batch_job_prepare_failed")
                return self._finish(
                    job_model, (), BatchJobStatus.FAILED,
                    f"prepare_items failed: {exc}", start_time,
                )

            job_model.total_items = len(items)
            item_results = []
            for item in items:
                item_results.append(self._execute_item(task, item, params, now))
                if checkpoint is not None and self._due_checkpoint(len(item_results), len(items)):
                    checkpoint()
                    logger.debug("batch_checkpoint", extra={"items_done": len(item_results)})

            succeeded = sum(r.status == BatchItemStatus.SUCCEEDED for r in item_results)
            failed = sum(r.status == BatchItemStatus.FAILED for r in item_results)
            skipped = sum(r.status == BatchItemStatus.SKIPPED for r in item_results)
            error_summary = f"{failed} item(s) failed" if failed else None

            return self._finish(
                job_model,
                tuple(item_results),
                final_status(succeeded, failed, skipped),
                error_summary,
                start_time,
            )

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _execute_item(
        self,
        task: BatchTask,
        item: BatchItemInput,
        parameters: dict[str, Any],
        as_of: datetime,
    ) -> BatchItemResult:
        item_start = time.monotonic()
        savepoint = self._session.begin_nested()
        try:
            result = task.execute_item(
                item=item, parameters=parameters, session=self._session, as_of=as_of,
            )
        except Exception as exc:
            savepoint.rollback()
            logger.exception(
                "batch_item_failed",
                extra={"item_key": item.item_key, "error_type": type(exc).__name__},
            )
            self._record_failure(task, item, exc, as_of)
            return BatchItemResult(
                item_index=item.item_index,
                item_key=item.item_key,
                status=BatchItemStatus.FAILED,
                error_code=getattr(exc, "code", "UNHANDLED_EXCEPTION"),
                error_message=str(exc),
                duration_ms=int((time.monotonic() - item_start) * 1000),
            )

        if result.status == BatchItemStatus.SUCCEEDED:
            savepoint.commit()
        else:
            savepoint.rollback()
            if result.status == BatchItemStatus.FAILED:
                logger.warning(
                    "batch_item_failed",
                    extra={"item_key": item.item_key, "error_code": result.error_code},
                )
                self._record_failure(
                    task, item, RuntimeError(result.error_message or "item failed"), as_of,
                )

        return BatchItemResult(
            item_index=item.item_index,
            item_key=item.item_key,
            status=result.status,
            error_code=result.error_code,
            error_message=result.error_message,
            result_data=result.result_data,
            duration_ms=int((time.monotonic() - item_start) * 1000),
        )

    def _due_checkpoint(self, done: int, total: int) -> bool:
        return self._checkpoint_every > 0 and done < total and done % self._checkpoint_every == 0

    def _record_failure(self, task: BatchTask, item: BatchItemInput, error: Exception, as_of: datetime) -> None:
        record_failure = getattr(task, "record_failure", None)
        if record_failure is None:
            return
        try:
            with self._session.begin_nested():
                record_failure(item=item, error=error, session=self._session, as_of=as_of)
        except Exception:
            logger.exception("batch_failure_record_failed", extra={"item_key": item.item_key})

    def _finish(
        self,
        job_model: BatchJobModel,
        item_results: tuple[BatchItemResult, ...],
        status: BatchJobStatus,
        error_summary: str | None,
        start_time: float,
    ) -> BatchRunResult:
        succeeded = sum(r.status == BatchItemStatus.SUCCEEDED for r in item_results)
        failed = sum(r.status == BatchItemStatus.FAILED for r in item_results)
        skipped = sum(r.status == BatchItemStatus.SKIPPED for r in item_results)

        completed_at = self._clock.now()
        job_model.status = status.value
        job_model.succeeded_items = succeeded
        job_model.failed_items = failed
        job_model.skipped_items = skipped
        job_model.completed_at = completed_at
        job_model.error_summary = error_summary
        self._session.flush()

        duration_ms = int((time.monotonic() - start_time) * 1000)
        log = logger.warning if status == BatchJobStatus.FAILED else logger.info
        log(
            "batch_job_finished",
            extra={
                "job_id": str(job_model.id),
                "status": status.value,
                "total_items": len(item_results),
                "succeeded": succeeded,
                "failed": failed,
                "skipped": skipped,
                "duration_ms": duration_ms,
            },
        )

        return BatchRunResult(
            job_id=job_model.id,
            job_name=job_model.job_name,
            status=status,
            total_items=job_model.total_items,
            succeeded=succeeded,
            failed=failed,
            skipped=skipped,
            item_results=item_results,
            started_at=job_model.started_at,
            completed_at=completed_at,
            duration_ms=duration_ms,
            error_summary=error_summary,
        )
