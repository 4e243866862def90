"""
Pure schedule evaluation functions.

Contract:
    ``parse_cron``, ``matches_cron``, ``next_cron_match`` and
    ``should_fire`` are PURE -- no I/O, no clock reads.  The scheduler passes
    the current instant in.

Architecture: payment_batch/domain.  ZERO I/O.

Timezones:
    Cron fields are matched against the wall clock of the schedule's zone,
    so ``0 2 * * *`` in Europe/Kyiv fires at 02:00 Kyiv time all year.
    Instants in and out are UTC.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

from payment_kernel.exceptions import InvalidCronExpressionError

from payment_batch.domain.types import BatchJobStatus, JobSchedule


# =============================================================================
# CronSpec (lightweight cron parser)
# =============================================================================


@dataclass(frozen=True)
class CronSpec:
    """Parsed cron expression (minute hour day_of_month month day_of_week).

    Each field is a frozenset of valid integer values.
    Supports: *, values, lists, ranges (1-5), steps (*/5, 1-10/2).
    """

    minutes: frozenset[int] = field(default_factory=lambda: frozenset(range(60)))
    hours: frozenset[int] = field(default_factory=lambda: frozenset(range(24)))
    days_of_month: frozenset[int] = field(default_factory=lambda: frozenset(range(1, 32)))
    months: frozenset[int] = field(default_factory=lambda: frozenset(range(1, 13)))
    days_of_week: frozenset[int] = field(default_factory=lambda: frozenset(range(7)))


def _parse_cron_field(field_str: str, min_val: int, max_val: int) -> frozenset[int]:
    """Parse a single cron field into a frozenset of valid values.

    Raises:
        ValueError: If the field is syntactically invalid or out of range.
    """
    values: set[int] = set()

    for part in field_str.split(","):
        part = part.strip()
        if not part:
            raise ValueError("Empty list element")

        step = 1
        if "/" in part:
            part, step_str = part.split("/", 1)
            step = int(step_str)
            if step <= 0:
                raise ValueError(f"Step must be positive: {step}")

        if part == "*":
            start, end = min_val, max_val
        elif "-" in part:
            s, e = part.split("-", 1)
            start, end = int(s), int(e)
            if start > end:
                raise ValueError(f"Range start > end: {start}-{end}")
        else:
            start = int(part)
            end = max_val if step > 1 else start

        if start < min_val or end > max_val:
            raise ValueError(f"Value outside range [{min_val}, {max_val}]: {part}")

        values.update(range(start, end + 1, step))

    return frozenset(values)


def parse_cron(expression: str) -> CronSpec:
    """Parse a 5-field cron expression into a CronSpec.

    Raises:
        InvalidCronExpressionError: If the expression is malformed.
    """
    parts = expression.strip().split()
    if len(parts) != 5:
        raise InvalidCronExpressionError(
            expression, f"expected 5 fields, got {len(parts)}",
        )
    try:
        return CronSpec(
            minutes=_parse_cron_field(parts[0], 0, 59),
            hours=_parse_cron_field(parts[1], 0, 23),
            days_of_month=_parse_cron_field(parts[2], 1, 31),
            months=_parse_cron_field(parts[3], 1, 12),
            days_of_week=_parse_cron_field(parts[4], 0, 6),
        )
    except ValueError as exc:
        raise InvalidCronExpressionError(expression, str(exc)) from exc


def matches_cron(spec: CronSpec, dt: datetime) -> bool:
    """Check if a (wall-clock) datetime matches a cron spec.

    Cron convention: 0=Sunday, 1=Monday, ..., 6=Saturday.
    Python datetime.weekday(): 0=Monday, ..., 6=Sunday.
    """
    cron_dow = (dt.weekday() + 1) % 7
    return (
        dt.minute in spec.minutes
        and dt.hour in spec.hours
        and dt.day in spec.days_of_month
        and dt.month in spec.months
        and cron_dow in spec.days_of_week
    )


def next_cron_match(
    spec: CronSpec,
    after: datetime,
    tz_name: str = "UTC",
    inclusive: bool = False,
) -> datetime:
    """First UTC minute after ``after`` whose wall time in ``tz_name`` matches.

    With ``inclusive=True`` the minute containing ``after`` is a candidate.
    Scans minute by minute up to 366 days.

    Raises:
        InvalidCronExpressionError: If no match exists within 366 days
            (e.g. ``0 0 31 2 *``).
    """
    tz = ZoneInfo(tz_name)
    candidate = after.astimezone(timezone.utc).replace(second=0, microsecond=0)
    if not inclusive or candidate < after:
        candidate += timedelta(minutes=1)

    for _ in range(366 * 24 * 60):
        if matches_cron(spec, candidate.astimezone(tz)):
            return candidate
        candidate += timedelta(minutes=1)

    raise InvalidCronExpressionError(
        str(spec), f"no match found within 366 days after {after.isoformat()}",
    )


# =============================================================================
# Schedule evaluation (pure)
# =============================================================================


def prime_schedule(schedule: JobSchedule, now: datetime) -> JobSchedule:
    """Schedule with ``next_run_at`` set to the first match at or after ``now``."""
    spec = parse_cron(schedule.cron_expression)
    return replace(
        schedule,
        next_run_at=next_cron_match(spec, now, schedule.timezone, inclusive=True),
    )


def should_fire(schedule: JobSchedule, as_of: datetime) -> bool:
    """Whether a schedule is due at ``as_of``.

    Inactive or unprimed schedules never fire.
    """
    if not schedule.is_active or schedule.next_run_at is None:
        return False
    return as_of >= schedule.next_run_at


def after_run(
    schedule: JobSchedule,
    ran_at: datetime,
    status: BatchJobStatus | None,
) -> JobSchedule:
    """Schedule state after a trigger at ``ran_at``.

    Occurrences that passed while the job ran are not queued: the next run
    is the first match strictly after ``ran_at``.
    """
    spec = parse_cron(schedule.cron_expression)
    return replace(
        schedule,
        last_run_at=ran_at,
        last_run_status=status,
        next_run_at=next_cron_match(spec, ran_at, schedule.timezone),
    )
