"""Cron expressions and next-run computation for scheduled tasks."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo

from megabot.errors import ScheduleError
from megabot.persistence.models import ScheduleKind


# (name, min, max); day of week accepts 7 as an alias for Sunday
_FIELDS: tuple[tuple[str, int, int], ...] = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day of month", 1, 31),
    ("month", 1, 12),
    ("day of week", 0, 7),
)

# Search horizon for the next matching minute
_SEARCH_HORIZON = timedelta(days=366 * 5)


def _parse_field(text: str, name: str, low: int, high: int) -> frozenset[int]:
    values: set[int] = set()
    for part in text.split(","):
        base, slash, step_text = part.partition("/")
        step = 1
        if slash:
            if not step_text.isdigit() or int(step_text) < 1:
                raise ScheduleError(f'Invalid step value in {name}: "{part}"')
            step = int(step_text)

        if base == "*":
            start, end = low, high
        elif "-" in base:
            start_text, _, end_text = base.partition("-")
            if not (start_text.isdigit() and end_text.isdigit()):
                raise ScheduleError(f'Invalid range in {name}: "{part}" (valid: {low}-{high})')
            start, end = int(start_text), int(end_text)
            if start < low or end > high or start > end:
                raise ScheduleError(f'Invalid range in {name}: "{part}" (valid: {low}-{high})')
        elif base.isdigit():
            start = int(base)
            if start < low or start > high:
                raise ScheduleError(f'Invalid value in {name}: "{part}" (valid: {low}-{high})')
            end = high if slash else start
        else:
            raise ScheduleError(f'Invalid value in {name}: "{part}" (valid: {low}-{high})')

        values.update(range(start, end + 1, step))
    return frozenset(values)


@dataclass(frozen=True)
class CronSchedule:
    """A parsed five-field cron expression: minute hour day month weekday.

    Supports ``*``, ``N``, ``N-M``, ``*/S``, ``N-M/S`` and comma lists.
    Weekday 0 and 7 are Sunday. When both day of month and day of week are
    restricted, a time matches if either one does (classic cron). A field
    starting with ``*``, such as ``*/2``, does not count as restricted.
    """

    expression: str
    minutes: frozenset[int]
    hours: frozenset[int]
    days: frozenset[int]
    months: frozenset[int]
    weekdays: frozenset[int]
    day_restricted: bool
    weekday_restricted: bool

    @classmethod
    def parse(cls, expression: str) -> CronSchedule:
        parts = expression.split()
        if len(parts) != 5:
            raise ScheduleError(
                "Cron expression must have exactly 5 fields "
                f"(minute hour day month weekday), got {len(parts)}."
            )
        parsed = [_parse_field(text, *spec) for text, spec in zip(parts, _FIELDS)]
        # cron weekday (0=Sunday) -> Python weekday (0=Monday)
        weekdays = frozenset(6 if w in (0, 7) else w - 1 for w in parsed[4])
        return cls(
            expression=expression,
            minutes=parsed[0],
            hours=parsed[1],
            days=parsed[2],
            months=parsed[3],
            weekdays=weekdays,
            day_restricted=not parts[2].startswith("*"),
            weekday_restricted=not parts[4].startswith("*"),
        )

    def _day_matches(self, dt: datetime) -> bool:
        day_ok = dt.day in self.days
        weekday_ok = dt.weekday() in self.weekdays
        if self.day_restricted and self.weekday_restricted:
            return day_ok or weekday_ok
        return day_ok and weekday_ok

    def matches(self, dt: datetime) -> bool:
        if dt.minute not in self.minutes or dt.hour not in self.hours:
            return False
        return dt.month in self.months and self._day_matches(dt)

    def next_after(self, after: datetime) -> datetime:
        """First matching minute strictly later than ``after``, in its timezone."""
        current = after.replace(second=0, microsecond=0) + timedelta(minutes=1)
        limit = current + _SEARCH_HORIZON
        while current <= limit:
            if current.month not in self.months:
                first = current.replace(day=1, hour=0, minute=0)
                current = (first + timedelta(days=32)).replace(day=1)
            elif not self._day_matches(current):
                current = current.replace(hour=0, minute=0) + timedelta(days=1)
            elif current.hour not in self.hours:
                current = current.replace(minute=0) + timedelta(hours=1)
            elif current.minute not in self.minutes:
                current += timedelta(minutes=1)
            else:
                return current
        raise ScheduleError(f"Cron expression never fires: {self.expression}")


def parse_run_at(schedule: str) -> datetime:
    """Parse a one-shot ISO timestamp. Naive values are taken as UTC."""
    text = schedule.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        run_at = datetime.fromisoformat(text)
    except ValueError as e:
        raise ScheduleError(
            f'Invalid date: "{schedule}". Use ISO format (e.g. 2025-06-01T14:00:00Z).'
        ) from e
    if run_at.tzinfo is None:
        run_at = run_at.replace(tzinfo=timezone.utc)
    return run_at


def validate_schedule(schedule: str, kind: ScheduleKind, now: datetime) -> None:
    """Raise ScheduleError unless the schedule is usable for ``kind``."""
    if kind == ScheduleKind.RECURRING:
        try:
            CronSchedule.parse(schedule)
        except ScheduleError as e:
            raise ScheduleError(f"Invalid cron expression: {e}") from e
        return
    if parse_run_at(schedule) < now:
        raise ScheduleError(f'Date "{schedule}" is in the past.')


def compute_next_run(
    schedule: str, kind: ScheduleKind, after: datetime, tz: tzinfo | None = None
) -> datetime | None:
    """Next firing time after ``after`` (UTC), or None if the task is done.

    Cron fields are evaluated in ``tz`` (default UTC).
    """
    if kind == ScheduleKind.ONE_SHOT:
        return parse_run_at(schedule)
    local = after.astimezone(tz or timezone.utc)
    return CronSchedule.parse(schedule).next_after(local).astimezone(timezone.utc)
