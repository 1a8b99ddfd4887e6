"""Candidate slot generation from a provider's weekly operating hours."""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import NamedTuple

DAYS_PER_WEEK = 7


@dataclass(frozen=True)
class DayHours:
    open_time: time
    close_time: time
    is_open: bool = True


CLOSED_DAY = DayHours(open_time=time(0, 0), close_time=time(0, 0), is_open=False)


class WeeklyHours(NamedTuple):
    """Operating hours indexed by ``date.weekday()`` (0 = Monday)."""

    monday: DayHours = CLOSED_DAY
    tuesday: DayHours = CLOSED_DAY
    wednesday: DayHours = CLOSED_DAY
    thursday: DayHours = CLOSED_DAY
    friday: DayHours = CLOSED_DAY
    saturday: DayHours = CLOSED_DAY
    sunday: DayHours = CLOSED_DAY

    def for_day(self, day: date) -> DayHours:
        return self[day.weekday()]


@dataclass(frozen=True)
class TimeSlot:
    provider_id: str
    service_id: str
    start: datetime
    end: datetime
    available: bool = True


def weekly_hours_from_days(days: dict[int, DayHours]) -> WeeklyHours:
    """Build a ``WeeklyHours`` from a weekday -> hours mapping; missing weekdays are closed."""
    return WeeklyHours(*(days.get(weekday, CLOSED_DAY) for weekday in range(DAYS_PER_WEEK)))


def iterate_days(start_date: date, end_date: date):
    current_day = start_date
    while current_day <= end_date:
        yield current_day
        current_day += timedelta(days=1)


def iterate_day_starts(day: date, hours: DayHours, duration_minutes: int):
    """Yield every slot start for one day whose slot ends no later than close time."""
    if not hours.is_open or duration_minutes <= 0:
        return

    duration = timedelta(minutes=duration_minutes)
    current_start = datetime.combine(day, hours.open_time)
    day_close = datetime.combine(day, hours.close_time)

    while current_start + duration <= day_close:
        yield current_start
        current_start += duration


def generate_slots(
    provider_id: str,
    service_id: str,
    start_date: date,
    end_date: date,
    weekly_hours: WeeklyHours,
    duration_minutes: int,
) -> list[TimeSlot]:
    duration = timedelta(minutes=duration_minutes)
    slots: list[TimeSlot] = []

    for day in iterate_days(start_date, end_date):
        for slot_start in iterate_day_starts(day, weekly_hours.for_day(day), duration_minutes):
            slots.append(
                TimeSlot(
                    provider_id=provider_id,
                    service_id=service_id,
                    start=slot_start,
                    end=slot_start + duration,
                )
            )

    return slots


def is_slot_start(start: datetime, weekly_hours: WeeklyHours, duration_minutes: int) -> bool:
    """Return True when ``start`` is exactly one of the generated slot starts for its day."""
    hours = weekly_hours.for_day(start.date())
    return any(
        slot_start == start
        for slot_start in iterate_day_starts(start.date(), hours, duration_minutes)
    )


def to_wall_clock(value: datetime) -> datetime:
    """Convert an aware datetime to naive server-local time; naive values pass through unchanged.

    Slots, bookings and the clock are all naive local wall-clock times.
    """
    if value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)
