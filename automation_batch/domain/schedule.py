"""
Pure recurring-schedule evaluation.

Contract:
    ``calculate_next_run(schedule, now)`` is PURE -- no I/O, no clock reads.
    The caller passes ``now`` from its injected Clock.

Architecture: automation_batch/domain.  ZERO I/O.

Invariants enforced:
    - The returned timestamp is strictly greater than ``now`` and is always
      an occurrence of the scheduled wall-clock time (both passes of a
      repeated DST hour count; a time skipped by DST shifts forward).
    - Calendar arithmetic happens in ``schedule.timezone``; the result is an
      aware UTC datetime.
    - Missing required schedule fields fail fast (InvalidScheduleError) at
      validation time, never at run time.
"""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta, timezone
from itertools import count
from typing import Any, Iterator
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from automation_kernel.exceptions import InvalidScheduleError

from automation_batch.domain.types import RecurringSchedule, ScheduleType


# =============================================================================
# Validation
# =============================================================================


def parse_time(value: str) -> tuple[int, int]:
    """Parse ``HH:MM`` (24h) into (hour, minute).

    Raises:
        InvalidScheduleError: If the value is malformed or out of range.
    """
    parts = str(value).strip().split(":")
    if len(parts) != 2:
        raise InvalidScheduleError("time", f"expected HH:MM, got {value!r}")
    try:
        hour, minute = int(parts[0]), int(parts[1])
    except ValueError:
        raise InvalidScheduleError("time", f"expected HH:MM, got {value!r}") from None
    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise InvalidScheduleError("time", f"out of range: {value!r}")
    return hour, minute


def _zone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise InvalidScheduleError("timezone", f"unknown timezone {name!r}") from None


def validate_schedule(schedule: RecurringSchedule) -> None:
    """Fail fast on a schedule that could never be computed.

    Required fields: weekly -> day_of_week; monthly -> day_of_month;
    quarterly and yearly -> day_of_month and month_of_year.
    """
    parse_time(schedule.time)
    _zone(schedule.timezone)

    kind = schedule.schedule_type
    if kind == ScheduleType.WEEKLY:
        if schedule.day_of_week is None:
            raise InvalidScheduleError("day_of_week", "required for weekly schedules")
    if kind in (ScheduleType.MONTHLY, ScheduleType.QUARTERLY, ScheduleType.YEARLY):
        if schedule.day_of_month is None:
            raise InvalidScheduleError("day_of_month", f"required for {kind.value} schedules")
    if kind in (ScheduleType.QUARTERLY, ScheduleType.YEARLY):
        if schedule.month_of_year is None:
            raise InvalidScheduleError("month_of_year", f"required for {kind.value} schedules")

    if schedule.day_of_week is not None and not 0 <= schedule.day_of_week <= 6:
        raise InvalidScheduleError("day_of_week", "must be 0 (Sunday) to 6 (Saturday)")
    if schedule.day_of_month is not None and not 1 <= schedule.day_of_month <= 31:
        raise InvalidScheduleError("day_of_month", "must be 1 to 31")
    if schedule.month_of_year is not None and not 1 <= schedule.month_of_year <= 12:
        raise InvalidScheduleError("month_of_year", "must be 1 to 12")


# =============================================================================
# Next-run computation (pure)
# =============================================================================


def _wall(year: int, month: int, day: int, hour: int, minute: int) -> datetime:
    """Naive local wall-clock time with ``day`` clamped to the month length."""
    last = calendar.monthrange(year, month)[1]
    return datetime(year, month, min(day, last), hour, minute)


def _add_months(year: int, month: int, months: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + months
    return index // 12, index % 12 + 1


def _instants(wall: datetime, tz: ZoneInfo) -> list[datetime]:
    """UTC instants at which ``wall`` occurs in ``tz``.

    A wall time repeated by a DST fall-back occurs twice (fold 0, then
    fold 1).  A wall time skipped by a spring-forward gap maps once, to the
    instant PEP 495 assigns to fold 0 (the clock reading shifted forward).
    """
    first = wall.replace(tzinfo=tz, fold=0)
    second = wall.replace(tzinfo=tz, fold=1)
    instants = [first.astimezone(timezone.utc)]
    if first.utcoffset() != second.utcoffset():
        later = second.astimezone(timezone.utc)
        if later.astimezone(tz).replace(tzinfo=None) == wall:
            instants.append(later)
    return sorted(instants)


def _walls(
    schedule: RecurringSchedule, local_now: datetime, hour: int, minute: int,
) -> Iterator[datetime]:
    """Scheduled wall-clock times in ascending order, from ``local_now``'s day."""
    kind = schedule.schedule_type
    today = local_now.replace(tzinfo=None, hour=hour, minute=minute, second=0, microsecond=0)

    if kind == ScheduleType.DAILY:
        for days in count():
            yield today + timedelta(days=days)

    elif kind == ScheduleType.WEEKLY:
        # Python weekday() is 0=Monday; schedules use 0=Sunday
        weekday = (local_now.weekday() + 1) % 7
        diff = (schedule.day_of_week - weekday + 7) % 7
        for weeks in count():
            yield today + timedelta(days=diff + 7 * weeks)

    elif kind == ScheduleType.MONTHLY:
        for months in count():
            year, month = _add_months(local_now.year, local_now.month, months)
            yield _wall(year, month, schedule.day_of_month, hour, minute)

    elif kind == ScheduleType.QUARTERLY:
        quarter_months = sorted(
            (schedule.month_of_year - 1 + 3 * k) % 12 + 1 for k in range(4)
        )
        for year in count(local_now.year):
            for month in quarter_months:
                yield _wall(year, month, schedule.day_of_month, hour, minute)

    else:  # YEARLY
        for year in count(local_now.year):
            yield _wall(year, schedule.month_of_year, schedule.day_of_month, hour, minute)


def calculate_next_run(schedule: RecurringSchedule, now: datetime) -> datetime:
    """Next firing strictly after ``now`` (aware UTC).

    Cadences:
        daily     -- today at ``time``; tomorrow if already passed.
        weekly    -- ``(day_of_week - today + 7) % 7`` days ahead; a full week
                     ahead if that lands on today and the time has passed.
        monthly   -- ``day_of_month`` this month, else next month.
        quarterly -- ``month_of_year`` and every third month from it; the
                     earliest candidate after ``now``.
        yearly    -- ``month_of_year``/``day_of_month`` this year, else next.

    Candidates are compared with ``now`` as UTC instants, so the second pass
    through a repeated DST hour is still a valid firing.

    Raises:
        InvalidScheduleError: If the schedule fails validation.
    """
    validate_schedule(schedule)
    if now.tzinfo is None:
        raise ValueError("now must be timezone-aware")

    hour, minute = parse_time(schedule.time)
    tz = _zone(schedule.timezone)
    now_utc = now.astimezone(timezone.utc)

    for wall in _walls(schedule, now_utc.astimezone(tz), hour, minute):
        for instant in _instants(wall, tz):
            if instant > now_utc:
                return instant
    raise AssertionError("schedule produced no future run")


# =============================================================================
# Serialization
# =============================================================================


def schedule_to_dict(schedule: RecurringSchedule) -> dict[str, Any]:
    return {
        "type": schedule.schedule_type.value,
        "time": schedule.time,
        "dayOfWeek": schedule.day_of_week,
        "dayOfMonth": schedule.day_of_month,
        "monthOfYear": schedule.month_of_year,
        "timezone": schedule.timezone,
    }


def schedule_from_dict(data: dict[str, Any]) -> RecurringSchedule:
    """Parse the camelCase schedule mapping.

    Raises:
        InvalidScheduleError: Unknown schedule type or missing time.
    """
    try:
        kind = ScheduleType(data.get("type"))
    except ValueError:
        raise InvalidScheduleError("type", f"unknown schedule type {data.get('type')!r}") from None
    if not data.get("time"):
        raise InvalidScheduleError("time", "required")
    return RecurringSchedule(
        schedule_type=kind,
        time=data["time"],
        day_of_week=data.get("dayOfWeek"),
        day_of_month=data.get("dayOfMonth"),
        month_of_year=data.get("monthOfYear"),
        timezone=data.get("timezone") or "UTC",
    )
