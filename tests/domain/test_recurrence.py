"""
Tests for payment_kernel.domain.recurrence.

Pure functions: no database, no clock.  Instants are UTC; Europe/Kyiv is
UTC+2 in winter and UTC+3 from the last Sunday of March.
"""

from dataclasses import FrozenInstanceError
from datetime import date, datetime, time, timedelta, timezone

import pytest

from payment_kernel.domain.recurrence import (
    RuleDefinition,
    SchedulingState,
    advance_schedule,
    compute_next,
    initial_schedule,
    local_instant,
    reschedule,
    to_local,
)
from zoneinfo import ZoneInfo

KYIV = "Europe/Kyiv"


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def rule(frequency: str, start: date, **kwargs) -> RuleDefinition:
    kwargs.setdefault("timezone", KYIV)
    kwargs.setdefault("run_at", time(9, 0))
    return RuleDefinition(frequency=frequency, start_date=start, **kwargs)


class TestOnce:
    def test_future_start_is_returned(self):
        d = rule("once", date(2026, 3, 1))
        assert compute_next(d, utc(2026, 2, 10, 12)) == utc(2026, 3, 1, 7)

    def test_past_start_has_no_occurrence(self):
        d = rule("once", date(2026, 2, 1))
        assert compute_next(d, utc(2026, 2, 10, 12)) is None

    def test_exactly_at_start_has_no_occurrence(self):
        d = rule("once", date(2026, 2, 10))
        assert compute_next(d, utc(2026, 2, 10, 7)) is None


class TestDaily:
    def test_kyiv_example_after_run_time(self):
        d = rule("daily", date(2026, 2, 10))
        assert compute_next(d, utc(2026, 2, 10, 7, 10)) == utc(2026, 2, 11, 7)

    def test_before_run_time_today(self):
        d = rule("daily", date(2026, 2, 1))
        assert compute_next(d, utc(2026, 2, 10, 6, 59)) == utc(2026, 2, 10, 7)

    def test_exactly_at_run_time_moves_to_tomorrow(self):
        d = rule("daily", date(2026, 2, 1))
        assert compute_next(d, utc(2026, 2, 10, 7)) == utc(2026, 2, 11, 7)

    def test_before_start_returns_start(self):
        d = rule("daily", date(2026, 3, 1))
        assert compute_next(d, utc(2026, 2, 10)) == utc(2026, 3, 1, 7)

    def test_local_date_differs_from_utc_date(self):
        # 23:30 UTC on Feb 10 is already 01:30 on Feb 11 in Kyiv.
        d = rule("daily", date(2026, 2, 1))
        assert compute_next(d, utc(2026, 2, 10, 23, 30)) == utc(2026, 2, 11, 7)

    def test_dst_start_keeps_local_wall_time(self):
        d = rule("daily", date(2026, 3, 1))
        assert compute_next(d, utc(2026, 3, 28, 8)) == utc(2026, 3, 29, 6)


class TestEveryNDays:
    def test_before_start_returns_start(self):
        d = rule("every_n_days", date(2026, 2, 20), interval_days=3)
        assert compute_next(d, utc(2026, 2, 10)) == utc(2026, 2, 20, 7)

    def test_results_stay_on_grid(self):
        d = rule("every_n_days", date(2026, 2, 1), interval_days=3)
        nxt = compute_next(d, utc(2026, 2, 10, 12))
        assert nxt == utc(2026, 2, 13, 7)
        local_day = to_local(nxt, KYIV).date()
        assert (local_day - date(2026, 2, 1)).days % 3 == 0

    def test_on_grid_day_before_run_time(self):
        d = rule("every_n_days", date(2026, 2, 1), interval_days=3)
        # Feb 10 is on the grid (1, 4, 7, 10); 08:00 local is before 09:00.
        assert compute_next(d, utc(2026, 2, 10, 6)) == utc(2026, 2, 10, 7)

    def test_on_grid_instant_moves_to_next_step(self):
        d = rule("every_n_days", date(2026, 2, 1), interval_days=3)
        assert compute_next(d, utc(2026, 2, 10, 7)) == utc(2026, 2, 13, 7)

    def test_many_evaluations_are_strictly_increasing(self):
        d = rule("every_n_days", date(2026, 1, 1), interval_days=5)
        now = utc(2026, 1, 1)
        for _ in range(40):
            nxt = compute_next(d, now)
            assert nxt > now
            assert (to_local(nxt, KYIV).date() - date(2026, 1, 1)).days % 5 == 0
            now = nxt


class TestWeekly:
    def test_next_listed_weekday(self):
        # Feb 10 2026 is a Tuesday; Friday is ISO 5.
        d = rule("weekly", date(2026, 2, 1), days_of_week=frozenset({5}))
        assert compute_next(d, utc(2026, 2, 10, 12)) == utc(2026, 2, 13, 7)

    def test_same_day_before_run_time(self):
        d = rule("weekly", date(2026, 2, 1), days_of_week=frozenset({2}))
        assert compute_next(d, utc(2026, 2, 10, 6)) == utc(2026, 2, 10, 7)

    def test_same_day_after_run_time_waits_a_week(self):
        d = rule("weekly", date(2026, 2, 1), days_of_week=frozenset({2}))
        assert compute_next(d, utc(2026, 2, 10, 8)) == utc(2026, 2, 17, 7)

    def test_empty_weekday_set_has_no_occurrence(self):
        d = rule("weekly", date(2026, 2, 1))
        assert compute_next(d, utc(2026, 2, 10)) is None

    def test_never_before_start(self):
        d = rule("weekly", date(2026, 3, 4), days_of_week=frozenset({1, 3}))
        # Mar 4 2026 is a Wednesday (ISO 3).
        assert compute_next(d, utc(2026, 2, 10)) == utc(2026, 3, 4, 7)


class TestMonthly:
    def test_day_31_clamps_to_february_28(self):
        d = rule("monthly", date(2026, 1, 31), day_of_month=31)
        assert compute_next(d, utc(2026, 2, 10, 7)) == utc(2026, 2, 28, 7)

    def test_clamped_day_does_not_spill_into_next_month(self):
        d = rule("monthly", date(2026, 1, 31), day_of_month=31)
        nxt = compute_next(d, utc(2026, 2, 28, 8))
        assert nxt == utc(2026, 3, 31, 6)
        assert to_local(nxt, KYIV).month == 3

    def test_day_of_month_defaults_to_start_day(self):
        d = rule("monthly", date(2026, 1, 15))
        assert compute_next(d, utc(2026, 2, 10)) == utc(2026, 2, 15, 7)

    def test_day_already_passed_moves_to_next_month(self):
        d = rule("monthly", date(2026, 1, 5), day_of_month=5)
        assert compute_next(d, utc(2026, 2, 10)) == utc(2026, 3, 5, 7)

    def test_leap_year_february(self):
        d = rule("monthly", date(2027, 12, 30), day_of_month=30)
        assert compute_next(d, utc(2028, 2, 1)) == utc(2028, 2, 29, 7)


class TestGeneralProperties:
    def test_unknown_frequency_has_no_occurrence(self):
        d = rule("fortnightly", date(2026, 1, 1))
        assert compute_next(d, utc(2026, 2, 10)) is None

    @pytest.mark.parametrize("frequency,extra", [
        ("daily", {}),
        ("every_n_days", {"interval_days": 2}),
        ("weekly", {"days_of_week": frozenset({1, 4})}),
        ("monthly", {"day_of_month": 31}),
    ])
    def test_result_is_strictly_after_now(self, frequency, extra):
        d = rule(frequency, date(2026, 1, 1), **extra)
        now = utc(2026, 1, 1)
        for _ in range(30):
            nxt = compute_next(d, now)
            assert nxt is not None and nxt > now
            assert to_local(nxt, KYIV).time() == time(9, 0)
            now = nxt

    def test_utc_zone_uses_run_at_directly(self):
        d = rule("daily", date(2026, 2, 1), timezone="UTC")
        assert compute_next(d, utc(2026, 2, 10, 10)) == utc(2026, 2, 11, 9)

    def test_definition_is_immutable(self):
        d = rule("daily", date(2026, 2, 1))
        with pytest.raises(FrozenInstanceError):
            d.frequency = "weekly"


class TestDaylightSaving:
    def test_nonexistent_local_time_shifts_forward(self):
        # Kyiv springs forward 03:00 -> 04:00 on 2026-03-29.
        d = rule("daily", date(2026, 3, 1), run_at=time(3, 30))
        nxt = compute_next(d, utc(2026, 3, 28, 12))
        assert nxt == local_instant(date(2026, 3, 29), time(3, 30), ZoneInfo(KYIV))
        assert to_local(nxt, KYIV).time() == time(4, 30)

    def test_ambiguous_local_time_takes_first_occurrence(self):
        # Kyiv falls back 04:00 -> 03:00 on 2026-10-25; 03:30 happens twice.
        d = rule("daily", date(2026, 10, 1), run_at=time(3, 30))
        nxt = compute_next(d, utc(2026, 10, 24, 12))
        assert nxt == utc(2026, 10, 25, 0, 30)

    def test_every_n_days_gap_day_is_not_skipped(self):
        # 03:30 on 2026-03-29 resolves to 04:30 local (01:30Z); at 04:15 local
        # the wall clock is past 03:30 but the occurrence is still ahead.
        d = rule("every_n_days", date(2026, 3, 27), run_at=time(3, 30), interval_days=2)
        assert compute_next(d, utc(2026, 3, 29, 1, 15)) == utc(2026, 3, 29, 1, 30)


class TestSchedulingSnapshots:
    def test_initial_schedule_for_future_rule(self):
        d = rule("daily", date(2026, 2, 1))
        state = initial_schedule(d, utc(2026, 2, 10, 7, 10))
        assert state == SchedulingState(next_due_at=utc(2026, 2, 11, 7), is_active=True)

    def test_initial_schedule_deactivates_past_once(self):
        d = rule("once", date(2026, 2, 1))
        state = initial_schedule(d, utc(2026, 2, 10))
        assert state.next_due_at is None
        assert state.is_active is False

    def test_initial_schedule_keeps_requested_inactive(self):
        d = rule("daily", date(2026, 2, 1))
        state = initial_schedule(d, utc(2026, 2, 10), is_active=False)
        assert state.is_active is False
        assert state.next_due_at is not None

    def test_advance_once_retires_rule(self):
        d = rule("once", date(2026, 2, 10))
        now = utc(2026, 2, 10, 7, 1)
        state = advance_schedule(d, SchedulingState(next_due_at=utc(2026, 2, 10, 7)), now)
        assert state == SchedulingState(next_due_at=None, last_executed_at=now, is_active=False)

    def test_advance_recurring_records_execution(self):
        d = rule("daily", date(2026, 2, 1))
        now = utc(2026, 2, 10, 7, 1)
        before = SchedulingState(next_due_at=utc(2026, 2, 10, 7))
        state = advance_schedule(d, before, now)
        assert state.next_due_at == utc(2026, 2, 11, 7)
        assert state.last_executed_at == now
        assert before.last_executed_at is None

    def test_advance_twice_at_same_instant_is_stable(self):
        d = rule("daily", date(2026, 2, 1))
        now = utc(2026, 2, 10, 7, 1)
        once = advance_schedule(d, SchedulingState(next_due_at=utc(2026, 2, 10, 7)), now)
        twice = advance_schedule(d, once, now)
        assert once == twice

    def test_reschedule_keeps_last_execution(self):
        d = rule("daily", date(2026, 2, 1), run_at=time(18, 0))
        last = utc(2026, 2, 10, 7)
        state = SchedulingState(next_due_at=utc(2026, 2, 11, 7), last_executed_at=last)
        updated = reschedule(d, state, utc(2026, 2, 10, 8))
        assert updated.next_due_at == utc(2026, 2, 10, 16)
        assert updated.last_executed_at == last


def test_weekly_scan_covers_fourteen_days():
    d = rule("weekly", date(2026, 2, 1), days_of_week=frozenset({7}))
    now = utc(2026, 2, 10)
    nxt = compute_next(d, now)
    assert nxt - now < timedelta(days=7)
