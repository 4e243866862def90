"""
BatchScheduler -- In-process polling scheduler.

Contract:
    Holds the periodic job triggers in memory, evaluates ``should_fire()``
    (pure) on every tick, and hands due jobs to ``JobRunner``, which skips
    a job whose previous run still holds its lock.

Architecture: payment_batch/services.  Uses payment_batch.domain.schedule
    for pure evaluation and payment_batch.services.job_runner for execution.

Invariants enforced:
    - All timestamps from the injected Clock.
    - Schedule evaluation is pure (should_fire / after_run).
    - Triggers missed while a job ran are not queued.
    - Graceful shutdown: the stop signal is checked between jobs.
"""

from __future__ import annotations

import threading
from typing import Sequence

from payment_kernel.domain.clock import Clock, SystemClock
from payment_kernel.logging_config import get_logger

from payment_batch.domain.schedule import after_run, prime_schedule, should_fire
from payment_batch.domain.types import JobSchedule
from payment_batch.services.job_runner import JobRunner

logger = get_logger("batch.scheduler")


class BatchScheduler:
    """In-process polling scheduler for the periodic jobs.

    Contract:
        - ``tick()`` evaluates all active schedules, fires due ones.
        - ``start()`` / ``stop()`` for background thread operation.

    Non-goals:
        - NOT a distributed scheduler; overlap across processes is prevented
          by the job lock, not by the scheduler.
    """

    def __init__(
        self,
        runner: JobRunner,
        schedules: Sequence[JobSchedule],
        clock: Clock | None = None,
        tick_interval_seconds: int = 60,
    ):
        self._runner = runner
        self._clock = clock or SystemClock()
        self._tick_interval = tick_interval_seconds
        now = self._clock.now()
        self._schedules: dict[str, JobSchedule] = {
            s.job_name: prime_schedule(s, now) for s in schedules
        }
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def schedules(self) -> tuple[JobSchedule, ...]:
        return tuple(self._schedules.values())

    def tick(self) -> int:
        """Evaluate and fire due schedules (public for testing).

        Returns the number of jobs that actually ran.
        """
        now = self._clock.now()
        fired = 0

        for name, schedule in list(self._schedules.items()):
            if self._stop_event.is_set():
                break
            if not should_fire(schedule, now):
                continue

            status = None
            try:
                result = self._runner.run(
                    schedule.job_name, schedule.task_type, schedule.parameters,
                )
                if result is not None:
                    status = result.status
                    fired += 1
            except Exception:
                logger.exception("schedule_fire_failed", extra={"job_name": name})

            updated = after_run(schedule, self._clock.now(), status)
            self._schedules[name] = updated
            logger.info(
                "schedule_evaluated",
                extra={
                    "job_name": name,
                    "status": status.value if status else None,
                    "next_run_at": updated.next_run_at,
                },
            )

        return fired

    def start(self) -> None:
        """Start the scheduler in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="payment-batch-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("scheduler_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current job to finish."""
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("scheduler_stopped")

    def run_forever(self) -> None:
        """Run the polling loop in the calling thread until ``stop()``."""
        self._stop_event.clear()
        self._run_loop()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("scheduler_tick_exception")
            self._stop_event.wait(timeout=self._tick_interval)
