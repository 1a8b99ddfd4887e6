"""Status values shared by the models, the state machine and the routes."""

from enum import Enum


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"
    RESCHEDULED = "rescheduled"  # old half of a reschedule; released like cancelled


# Bookings in these states no longer occupy their slot.
RELEASED_STATUSES = frozenset({BookingStatus.CANCELLED.value, BookingStatus.RESCHEDULED.value})


class PaymentStatus(str, Enum):
    NOT_REQUIRED = "not_required"
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    REFUND_FAILED = "refund_failed"


class ReminderKind(str, Enum):
    DAY_BEFORE = "24h"
    TWO_HOURS_BEFORE = "2h"


class ReminderStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    CANCELLED = "cancelled"
    FAILED = "failed"
