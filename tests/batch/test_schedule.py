"""
Tests for payment_batch.domain.schedule -- pure cron evaluation.

Cron fields are matched on the wall clock of the schedule's zone; instants
are UTC.
"""

from dataclasses import replace
from datetime import datetime, timezone

import pytest

from payment_kernel.exceptions import InvalidCronExpressionError

from payment_batch.domain.schedule import (
    after_run,
    matches_cron,
    next_cron_match,
    parse_cron,
    prime_schedule,
    should_fire,
)
from payment_batch.domain.types import BatchJobStatus, JobSchedule

KYIV = "Europe/Kyiv"


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestParseCron:
    def test_every_minute(self):
        spec = parse_cron("* * * * *")
        assert spec.minutes == frozenset(range(60))
        assert spec.days_of_week == frozenset(range(7))

    def test_lists_ranges_and_steps(self):
        spec = parse_cron("*/15 0-6/2 1,15 * 1-5")
        assert spec.minutes == {0, 15, 30, 45}
        assert spec.hours == {0, 2, 4, 6}
        assert spec.days_of_month == {1, 15}
        assert spec.days_of_week == {1, 2, 3, 4, 5}

    def test_value_with_step_runs_to_the_end(self):
        assert parse_cron("5/10 * * * *").minutes == {5, 15, 25, 35, 45, 55}

    @pytest.mark.parametrize(
        "expression",
        [
            "* * * *",
            "* * * * * *",
            "60 * * * *",
            "* 24 * * *",
            "* * 0 * *",
            "*/0 * * * *",
            "5-1 * * * *",
            "a * * * *",
            "1,,2 * * * *",
        ],
    )
    def test_invalid(self, expression):
        with pytest.raises(InvalidCronExpressionError) as exc_info:
            parse_cron(expression)
        assert exc_info.value.code == "INVALID_CRON_EXPRESSION"


class TestMatchesCron:
    def test_sunday_is_zero(self):
        spec = parse_cron("0 2 * * 0")
        assert matches_cron(spec, datetime(2026, 2, 15, 2, 0))  # Sunday
        assert not matches_cron(spec, datetime(2026, 2, 16, 2, 0))

    def test_minute_and_hour(self):
        spec = parse_cron("30 9 * * *")
        assert matches_cron(spec, datetime(2026, 2, 10, 9, 30))
        assert not matches_cron(spec, datetime(2026, 2, 10, 9, 31))


class TestNextCronMatch:
    def test_nightly_in_kyiv_winter(self):
        # 02:00 Kyiv is 00:00 UTC while EET (UTC+2) applies.
        nxt = next_cron_match(parse_cron("0 2 * * *"), utc(2026, 2, 10, 7, 10), KYIV)
        assert nxt == utc(2026, 2, 11, 0, 0)

    def test_nightly_in_kyiv_summer(self):
        nxt = next_cron_match(parse_cron("0 2 * * *"), utc(2026, 7, 1, 12, 0), KYIV)
        assert nxt == utc(2026, 7, 1, 23, 0)

    def test_local_time_skipped_by_dst_gap(self):
        # 03:30 does not exist in Kyiv on 2026-03-29.
        nxt = next_cron_match(parse_cron("30 3 * * *"), utc(2026, 3, 28, 12, 0), KYIV)
        assert nxt == utc(2026, 3, 30, 0, 30)

    def test_strictly_after_by_default(self):
        nxt = next_cron_match(parse_cron("* * * * *"), utc(2026, 2, 10, 7, 10))
        assert nxt == utc(2026, 2, 10, 7, 11)

    def test_inclusive_minute(self):
        spec = parse_cron("* * * * *")
        assert next_cron_match(spec, utc(2026, 2, 10, 7, 10), inclusive=True) == utc(2026, 2, 10, 7, 10)
        assert next_cron_match(
            spec, utc(2026, 2, 10, 7, 10, 30), inclusive=True,
        ) == utc(2026, 2, 10, 7, 11)

    def test_impossible_date(self):
        with pytest.raises(InvalidCronExpressionError):
            next_cron_match(parse_cron("0 0 31 2 *"), utc(2026, 1, 1))


class TestScheduleEvaluation:
    @pytest.fixture
    def nightly(self):
        return JobSchedule(
            job_name="prune_requisites_files",
            task_type="files.prune_requisites",
            cron_expression="0 2 * * *",
            timezone=KYIV,
        )

    def test_prime_sets_next_run(self, nightly):
        primed = prime_schedule(nightly, utc(2026, 2, 10, 7, 10))
        assert primed.next_run_at == utc(2026, 2, 11, 0, 0)
        assert nightly.next_run_at is None

    def test_should_fire(self, nightly):
        primed = prime_schedule(nightly, utc(2026, 2, 10, 7, 10))
        assert not should_fire(primed, utc(2026, 2, 10, 23, 59))
        assert should_fire(primed, utc(2026, 2, 11, 0, 0))
        assert should_fire(primed, utc(2026, 2, 11, 0, 5))

    def test_unprimed_or_inactive_never_fire(self, nightly):
        assert not should_fire(nightly, utc(2030, 1, 1))
        primed = prime_schedule(nightly, utc(2026, 2, 10, 7, 10))
        assert not should_fire(replace(primed, is_active=False), utc(2030, 1, 1))

    def test_after_run_does_not_queue_missed_triggers(self):
        every_minute = prime_schedule(
            JobSchedule("run_due_rules", "rules.run_due", "* * * * *", KYIV),
            utc(2026, 2, 10, 7, 10),
        )

        # The run started at 07:10 and took five minutes.
        updated = after_run(every_minute, utc(2026, 2, 10, 7, 15, 20), BatchJobStatus.COMPLETED)

        assert updated.next_run_at == utc(2026, 2, 10, 7, 16)
        assert updated.last_run_at == utc(2026, 2, 10, 7, 15, 20)
        assert updated.last_run_status == BatchJobStatus.COMPLETED
