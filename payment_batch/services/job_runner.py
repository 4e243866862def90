"""
JobRunner -- one guarded, committed run of a named job.

Contract:
    ``run()`` acquires the job's lock, executes the job in a fresh session,
    commits, and releases the lock.  The executor also commits at its
    checkpoints, so row locks are released chunk by chunk.  An overlapping
    trigger is skipped, not queued: ``run()`` returns None and logs
    ``job_skipped_overlap``.

Architecture: payment_batch/services.  Shared by the scheduler and the
    command-line entry point.
"""

from __future__ import annotations

from typing import Any, Callable
from uuid import uuid4

from sqlalchemy.orm import Session

from payment_kernel.exceptions import JobAlreadyRunningError
from payment_kernel.logging_config import LogContext, get_logger

from payment_batch.domain.types import BatchRunResult
from payment_batch.services.executor import BatchExecutor
from payment_batch.services.job_guard import JobGuard

logger = get_logger("batch.job_runner")


class JobRunner:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        executor_factory: Callable[[Session], BatchExecutor],
        guard: JobGuard,
    ):
        self._session_factory = session_factory
        self._executor_factory = executor_factory
        self._guard = guard

    def run(
        self,
        job_name: str,
        task_type: str,
        parameters: dict[str, Any] | None = None,
    ) -> BatchRunResult | None:
        """Run ``job_name`` once.  Returns None if it is already running.

        Errors outside per-item processing (database unavailable, unknown
        task) roll the run back and propagate.
        """
        try:
            token = self._guard.acquire(job_name)
        except JobAlreadyRunningError as exc:
            logger.info(
                "job_skipped_overlap",
                extra={"job_name": job_name, "holder_id": exc.holder_id},
            )
            return None

        try:
            with LogContext.bind(job_name=job_name, correlation_id=str(uuid4())):
                session = self._session_factory()
                try:
                    result = self._executor_factory(session).run_job(
                        job_name, task_type, parameters, checkpoint=session.commit,
                    )
                    session.commit()
                except Exception:
                    session.rollback()
                    logger.exception("job_run_failed", extra={"job_name": job_name})
                    raise
                finally:
                    session.close()
        finally:
            self._guard.release(job_name, token)
        return result
