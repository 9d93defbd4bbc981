"""Tests for cron parsing and next-run computation."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from megabot.core.schedules import (
    CronSchedule,
    compute_next_run,
    parse_run_at,
    validate_schedule,
)
from megabot.errors import ScheduleError
from megabot.persistence.models import ScheduleKind

UTC = timezone.utc


def at(*args) -> datetime:
    return datetime(*args, tzinfo=UTC)


class TestCronParse:
    def test_every_minute(self):
        cron = CronSchedule.parse("* * * * *")
        assert len(cron.minutes) == 60
        assert not cron.day_restricted and not cron.weekday_restricted

    def test_lists_ranges_and_steps(self):
        cron = CronSchedule.parse("0,30 9-17/4 * * 1-5")
        assert cron.minutes == {0, 30}
        assert cron.hours == {9, 13, 17}
        # Monday..Friday in Python numbering
        assert cron.weekdays == {0, 1, 2, 3, 4}

    def test_step_from_value(self):
        assert CronSchedule.parse("5/20 * * * *").minutes == {5, 25, 45}

    def test_sunday_aliases(self):
        assert CronSchedule.parse("0 0 * * 0").weekdays == {6}
        assert CronSchedule.parse("0 0 * * 7").weekdays == {6}

    @pytest.mark.parametrize(
        "expression",
        ["* * * *", "60 * * * *", "* 24 * * *", "* * 0 * *", "* * * 13 *", "*/0 * * * *", "a * * * *", "5-1 * * * *"],
    )
    def test_invalid(self, expression):
        with pytest.raises(ScheduleError):
            CronSchedule.parse(expression)


class TestNextAfter:
    def test_strictly_after(self):
        cron = CronSchedule.parse("0 9 * * *")
        assert cron.next_after(at(2025, 6, 1, 9, 0)) == at(2025, 6, 2, 9, 0)
        assert cron.next_after(at(2025, 6, 1, 8, 59, 30)) == at(2025, 6, 1, 9, 0)

    def test_every_thirty_minutes(self):
        cron = CronSchedule.parse("*/30 * * * *")
        assert cron.next_after(at(2025, 6, 1, 10, 5)) == at(2025, 6, 1, 10, 30)

    def test_weekdays_only(self):
        cron = CronSchedule.parse("0 9 * * 1-5")
        # 2025-06-06 is a Friday
        assert cron.next_after(at(2025, 6, 6, 10, 0)) == at(2025, 6, 9, 9, 0)

    def test_day_or_weekday_when_both_restricted(self):
        cron = CronSchedule.parse("0 0 13 * 5")
        # Friday 2025-06-06 matches by weekday before the 13th
        assert cron.next_after(at(2025, 6, 1, 0, 0)) == at(2025, 6, 6, 0, 0)

    def test_star_step_day_requires_both_fields(self):
        cron = CronSchedule.parse("0 0 */2 * 1")
        assert not cron.day_restricted and cron.weekday_restricted
        # Odd days AND Mondays: Monday 2025-06-02 is even, Monday 2025-06-09 is odd
        assert cron.next_after(at(2025, 6, 1, 0, 0)) == at(2025, 6, 9, 0, 0)

    def test_never_fires(self):
        with pytest.raises(ScheduleError, match="never fires"):
            CronSchedule.parse("0 0 31 2 *").next_after(at(2025, 1, 1))


class TestRunAt:
    def test_zulu(self):
        assert parse_run_at("2025-06-01T14:00:00Z") == at(2025, 6, 1, 14, 0)

    def test_naive_is_utc(self):
        assert parse_run_at("2025-06-01T14:00:00") == at(2025, 6, 1, 14, 0)

    def test_invalid(self):
        with pytest.raises(ScheduleError, match="ISO format"):
            parse_run_at("tomorrow at noon")


class TestValidateAndCompute:
    def test_recurring_invalid_message(self):
        with pytest.raises(ScheduleError, match="Invalid cron expression"):
            validate_schedule("every day", ScheduleKind.RECURRING, at(2025, 1, 1))

    def test_one_shot_in_past(self):
        with pytest.raises(ScheduleError, match="in the past"):
            validate_schedule("2020-01-01T00:00:00Z", ScheduleKind.ONE_SHOT, at(2025, 1, 1))

    def test_one_shot_future_ok(self):
        validate_schedule("2030-01-01T00:00:00Z", ScheduleKind.ONE_SHOT, at(2025, 1, 1))

    def test_one_shot_next_run_is_its_timestamp(self):
        assert compute_next_run(
            "2030-01-01T00:00:00Z", ScheduleKind.ONE_SHOT, at(2025, 1, 1)
        ) == at(2030, 1, 1)

    def test_recurring_in_timezone(self):
        tz = ZoneInfo("Europe/Amsterdam")
        # 09:00 in Amsterdam during summer time is 07:00 UTC
        result = compute_next_run("0 9 * * *", ScheduleKind.RECURRING, at(2025, 6, 1, 8, 0), tz)
        assert result == at(2025, 6, 2, 7, 0)
        assert result.tzinfo == UTC

    def test_recurring_default_utc(self):
        after = at(2025, 6, 1, 8, 0)
        result = compute_next_run("0 9 * * *", ScheduleKind.RECURRING, after)
        assert result == at(2025, 6, 1, 9, 0)
        assert result - after == timedelta(hours=1)
