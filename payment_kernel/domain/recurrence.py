"""
RecurrenceCalculator -- next execution instant of a recurrence rule.

Responsibility:
    Given an immutable rule definition and the current UTC instant, compute
    the next UTC instant at which the rule is due, or ``None`` when no
    further occurrence exists.

Architecture position:
    Kernel > Domain -- pure functional core.  No clock reads, no I/O, no
    ORM.  The zone is part of the definition; "now" is always a parameter.

Invariants enforced:
    - A returned instant is strictly after ``now``.
    - Every returned instant falls on ``run_at`` local wall time in the
      rule's zone (shifted forward across a spring-forward gap).
    - ``every_n_days`` results stay on the grid ``start_date + k * interval``.
    - Monthly ``day_of_month`` is capped to the length of the candidate month
      and never spills into the next month.

Local-time resolution:
    Local wall times are built with ``fold=0`` and converted to UTC through
    ``zoneinfo``.  A nonexistent local time (inside a DST gap) therefore lands
    on the same UTC instant as ``run_at + gap``; an ambiguous local time
    (repeated hour) resolves to its first occurrence.

Failure modes:
    - ``zoneinfo.ZoneInfoNotFoundError`` for an unknown IANA zone name.
      Callers validate zones before persisting a rule.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass, replace
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from zoneinfo import ZoneInfo

from dateutil.relativedelta import relativedelta

DEFAULT_TIMEZONE = "Europe/Kyiv"
DEFAULT_RUN_AT = time(9, 0)

# Upper bound of the day-by-day weekly scan: two full weeks always contain
# every weekday at least once after any starting point.
_WEEKLY_SCAN_DAYS = 14
_MONTHLY_SCAN_MONTHS = 3


class RecurrenceFrequency(str, Enum):
    """Supported recurrence frequencies."""

    ONCE = "once"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    EVERY_N_DAYS = "every_n_days"


@dataclass(frozen=True)
class RuleDefinition:
    """Immutable snapshot of the scheduling fields of a recurrence rule.

    ``frequency`` is kept as the raw stored string so that an unknown value
    read back from storage yields "no next occurrence" instead of an error.
    ``days_of_week`` holds ISO weekdays (1 = Monday ... 7 = Sunday).
    """

    frequency: str
    start_date: date
    run_at: time = DEFAULT_RUN_AT
    timezone: str = DEFAULT_TIMEZONE
    interval_days: int | None = None
    days_of_week: frozenset[int] = frozenset()
    day_of_month: int | None = None


@dataclass(frozen=True)
class SchedulingState:
    """Immutable snapshot of a rule's scheduling state."""

    next_due_at: datetime | None
    last_executed_at: datetime | None = None
    is_active: bool = True


# =============================================================================
# Local time helpers
# =============================================================================


def local_instant(day: date, at: time, tz: ZoneInfo) -> datetime:
    """UTC instant of wall time ``day at`` in ``tz`` (fold=0)."""
    wall = datetime.combine(day, at.replace(tzinfo=None, fold=0), tzinfo=tz)
    return wall.astimezone(timezone.utc)


def to_local(instant: datetime, tz_name: str) -> datetime:
    """Render a UTC instant in the named zone."""
    return instant.astimezone(ZoneInfo(tz_name))


def _days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


# =============================================================================
# Frequency strategies
# =============================================================================


def _next_once(base: datetime, now: datetime) -> datetime | None:
    if base <= now:
        return None
    return base


def _next_daily(
    definition: RuleDefinition, tz: ZoneInfo, base: datetime, now: datetime,
) -> datetime:
    if now < base:
        return base
    today = now.astimezone(tz).date()
    candidate = local_instant(today, definition.run_at, tz)
    if candidate <= now:
        candidate = local_instant(today + timedelta(days=1), definition.run_at, tz)
    return candidate


def _next_every_n_days(
    definition: RuleDefinition, tz: ZoneInfo, base: datetime, now: datetime,
) -> datetime:
    if now < base:
        return base
    interval = max(1, definition.interval_days or 1)

    # Whole days elapsed on the local wall clock, floored.
    base_wall = datetime.combine(definition.start_date, definition.run_at.replace(tzinfo=None))
    now_wall = now.astimezone(tz).replace(tzinfo=None)
    elapsed_days = (now_wall - base_wall).days

    # Start from the last grid day on or before today: a run time inside a
    # DST gap resolves later than its wall time, so that day may still be due.
    steps = max(0, elapsed_days // interval)
    while True:
        candidate = local_instant(
            definition.start_date + timedelta(days=steps * interval),
            definition.run_at,
            tz,
        )
        if candidate > now:
            return candidate
        steps += 1


def _next_weekly(
    definition: RuleDefinition, tz: ZoneInfo, base: datetime, now: datetime,
) -> datetime | None:
    weekdays = frozenset(definition.days_of_week)
    if not weekdays:
        return None

    day = max(base, now).astimezone(tz).date()
    for _ in range(_WEEKLY_SCAN_DAYS):
        if day.isoweekday() in weekdays:
            candidate = local_instant(day, definition.run_at, tz)
            if candidate > now and candidate >= base:
                return candidate
        day += timedelta(days=1)
    return None


def _next_monthly(
    definition: RuleDefinition, tz: ZoneInfo, base: datetime, now: datetime,
) -> datetime | None:
    target_day = definition.day_of_month
    if not target_day or target_day <= 0:
        target_day = definition.start_date.day

    anchor = max(base, now).astimezone(tz).date()
    month_start = anchor.replace(day=1)
    for _ in range(_MONTHLY_SCAN_MONTHS):
        day = min(target_day, _days_in_month(month_start.year, month_start.month))
        candidate = local_instant(month_start.replace(day=day), definition.run_at, tz)
        if candidate > now and candidate >= base:
            return candidate
        month_start = month_start + relativedelta(months=1)
    return None


# =============================================================================
# Public API
# =============================================================================


def compute_next(definition: RuleDefinition, now: datetime) -> datetime | None:
    """
    Next due instant (UTC) strictly after ``now``, or ``None``.

    Args:
        definition: Scheduling fields of the rule.
        now: Current instant (timezone-aware; normalized to UTC).

    Returns:
        Aware UTC datetime, or ``None`` when the rule has no further
        occurrence (past ``once``, empty weekly set, unknown frequency).
    """
    try:
        frequency = RecurrenceFrequency(definition.frequency)
    except ValueError:
        return None

    now = now.astimezone(timezone.utc)
    tz = ZoneInfo(definition.timezone or DEFAULT_TIMEZONE)
    base = local_instant(definition.start_date, definition.run_at, tz)

    if frequency is RecurrenceFrequency.ONCE:
        return _next_once(base, now)
    if frequency is RecurrenceFrequency.DAILY:
        return _next_daily(definition, tz, base, now)
    if frequency is RecurrenceFrequency.EVERY_N_DAYS:
        return _next_every_n_days(definition, tz, base, now)
    if frequency is RecurrenceFrequency.WEEKLY:
        return _next_weekly(definition, tz, base, now)
    return _next_monthly(definition, tz, base, now)


def initial_schedule(
    definition: RuleDefinition, now: datetime, is_active: bool = True,
) -> SchedulingState:
    """Scheduling state for a freshly saved or edited rule.

    A ``once`` rule whose only occurrence is already past is deactivated.
    """
    next_due_at = compute_next(definition, now)
    if definition.frequency == RecurrenceFrequency.ONCE.value and next_due_at is None:
        is_active = False
    return SchedulingState(next_due_at=next_due_at, is_active=is_active)


def reschedule(
    definition: RuleDefinition, state: SchedulingState, now: datetime,
) -> SchedulingState:
    """Recompute ``next_due_at`` after an edit, keeping execution history."""
    fresh = initial_schedule(definition, now, is_active=state.is_active)
    return replace(state, next_due_at=fresh.next_due_at, is_active=fresh.is_active)


def advance_schedule(
    definition: RuleDefinition, state: SchedulingState, now: datetime,
) -> SchedulingState:
    """Scheduling state after the occurrence due at or before ``now`` ran.

    ``once`` rules are retired; every other frequency moves to its next
    occurrence strictly after ``now``.
    """
    if definition.frequency == RecurrenceFrequency.ONCE.value:
        return SchedulingState(next_due_at=None, last_executed_at=now, is_active=False)
    return SchedulingState(
        next_due_at=compute_next(definition, now),
        last_executed_at=now,
        is_active=state.is_active,
    )
