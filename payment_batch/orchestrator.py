"""
BatchOrchestrator -- DI container for the periodic jobs.

Contract:
    Wires the task registry, executor, job guard, job runner and scheduler
    from ``PaymentSettings``.  Single place where all batch dependencies are
    composed; the command-line entry point and tests both start here.

Invariants enforced:
    - Clock injection: every service receives the orchestrator's Clock.
    - Both periodic jobs go through JobRunner, so they never overlap.
"""

from __future__ import annotations

from typing import Any, Callable

from sqlalchemy.orm import Session

from payment_config.schema import PaymentSettings
from payment_kernel.domain.clock import Clock, SystemClock
from payment_kernel.logging_config import get_logger
from payment_kernel.services.blob_store import BlobStore, LocalBlobStore

from payment_batch.domain.types import BatchRunResult, JobSchedule
from payment_batch.services.executor import BatchExecutor
from payment_batch.services.job_guard import JobGuard
from payment_batch.services.job_runner import JobRunner
from payment_batch.services.scheduler import BatchScheduler
from payment_batch.tasks.base import TaskRegistry
from payment_batch.tasks.file_tasks import PruneRequisitesFilesTask
from payment_batch.tasks.rule_tasks import RunDueRulesTask

logger = get_logger("batch.orchestrator")

RUN_DUE_RULES = "run_due_rules"
PRUNE_REQUISITES_FILES = "prune_requisites_files"


def default_task_registry(
    settings: PaymentSettings, blob_store: BlobStore, clock: Clock,
) -> TaskRegistry:
    """TaskRegistry pre-loaded with both periodic tasks."""
    registry = TaskRegistry()
    registry.register(RunDueRulesTask(
        blob_store,
        clock,
        batch_size=settings.jobs.rule_batch_size,
        debug=settings.jobs.debug,
    ))
    registry.register(PruneRequisitesFilesTask(
        blob_store,
        clock,
        retention_days=settings.jobs.requisites_retention_days,
        batch_size=settings.jobs.prune_batch_size,
        system_actor_id=settings.jobs.system_actor_id,
    ))
    return registry


class BatchOrchestrator:
    """DI container for the batch processing system.

    Non-goals:
        - Does NOT start the scheduler automatically -- caller decides.
    """

    def __init__(
        self,
        settings: PaymentSettings,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        blob_store: BlobStore | None = None,
        task_registry: TaskRegistry | None = None,
    ) -> None:
        self._settings = settings
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._blob_store = blob_store or LocalBlobStore(
            settings.storage.root, settings.storage.base_url,
        )
        self._task_registry = (
            task_registry
            if task_registry is not None
            else default_task_registry(settings, self._blob_store, self._clock)
        )
        self._guard = JobGuard(
            session_factory, self._clock, settings.jobs.lock_ttl_seconds,
        )

    # -------------------------------------------------------------------------
    # Factories
    # -------------------------------------------------------------------------

    def create_executor(self, session: Session) -> BatchExecutor:
        return BatchExecutor(
            session,
            self._task_registry,
            self._clock,
            checkpoint_every=self._settings.jobs.commit_every,
        )

    def create_runner(self) -> JobRunner:
        return JobRunner(self._session_factory, self.create_executor, self._guard)

    def schedules(self) -> tuple[JobSchedule, ...]:
        """The two periodic triggers, evaluated in the default timezone."""
        scheduling = self._settings.scheduling
        tz = self._settings.default_timezone
        return (
            JobSchedule(
                job_name=RUN_DUE_RULES,
                task_type="rules.run_due",
                cron_expression=scheduling.run_due_rules_cron,
                timezone=tz,
            ),
            JobSchedule(
                job_name=PRUNE_REQUISITES_FILES,
                task_type="files.prune_requisites",
                cron_expression=scheduling.prune_cron,
                timezone=tz,
            ),
        )

    def create_scheduler(self) -> BatchScheduler:
        return BatchScheduler(
            runner=self.create_runner(),
            schedules=self.schedules(),
            clock=self._clock,
            tick_interval_seconds=self._settings.scheduling.tick_interval_seconds,
        )

    # -------------------------------------------------------------------------
    # One-shot runs
    # -------------------------------------------------------------------------

    def run_due_rules(self) -> BatchRunResult | None:
        """Run ``run_due_rules`` once; None if a run is already in progress."""
        return self.create_runner().run(RUN_DUE_RULES, "rules.run_due")

    def prune_requisites_files(self, retention_days: int | None = None) -> BatchRunResult | None:
        """Run ``prune_requisites_files`` once, optionally with another retention."""
        parameters: dict[str, Any] = {}
        if retention_days is not None:
            parameters["retention_days"] = retention_days
        return self.create_runner().run(
            PRUNE_REQUISITES_FILES, "files.prune_requisites", parameters,
        )

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def blob_store(self) -> BlobStore:
        return self._blob_store

    @property
    def task_registry(self) -> TaskRegistry:
        return self._task_registry

    @property
    def guard(self) -> JobGuard:
        return self._guard
