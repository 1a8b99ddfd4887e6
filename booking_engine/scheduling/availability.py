"""Removes candidate slots that collide with existing bookings."""

from dataclasses import replace
from datetime import datetime
from typing import Iterable

from booking_engine.core.enums import RELEASED_STATUSES
from booking_engine.scheduling.slots import TimeSlot


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    # Half-open intervals: back-to-back appointments do not conflict.
    return a_start < b_end and b_start < a_end


def _status_value(status) -> str:
    return getattr(status, 'value', status)


def occupying_intervals(slot: TimeSlot, bookings: Iterable) -> list[tuple[datetime, datetime]]:
    return [
        (booking.start_time, booking.end_time)
        for booking in bookings
        if booking.provider_id == slot.provider_id
        and booking.service_id == slot.service_id
        and _status_value(booking.status) not in RELEASED_STATUSES
    ]


def is_slot_free(slot: TimeSlot, bookings: Iterable) -> bool:
    return not any(
        intervals_overlap(slot.start, slot.end, booked_start, booked_end)
        for booked_start, booked_end in occupying_intervals(slot, bookings)
    )


def filter_available(candidates: list[TimeSlot], bookings: Iterable) -> list[TimeSlot]:
    """Keep the candidates whose [start, end) misses every non-cancelled booking of the same provider and service."""
    bookings = list(bookings)
    return [slot for slot in candidates if is_slot_free(slot, bookings)]


def mark_locked(slots: list[TimeSlot], locked_starts: set[datetime]) -> list[TimeSlot]:
    return [
        replace(slot, available=False) if slot.start in locked_starts else slot
        for slot in slots
    ]
