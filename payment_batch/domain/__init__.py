"""Pure batch domain: DTOs and cron evaluation."""

from payment_batch.domain.schedule import (
    CronSpec,
    after_run,
    matches_cron,
    next_cron_match,
    parse_cron,
    prime_schedule,
    should_fire,
)
from payment_batch.domain.types import (
    BatchItemResult,
    BatchItemStatus,
    BatchJobStatus,
    BatchRunResult,
    JobSchedule,
)

__all__ = [
    "BatchItemResult",
    "BatchItemStatus",
    "BatchJobStatus",
    "BatchRunResult",
    "CronSpec",
    "JobSchedule",
    "after_run",
    "matches_cron",
    "next_cron_match",
    "parse_cron",
    "prime_schedule",
    "should_fire",
]
