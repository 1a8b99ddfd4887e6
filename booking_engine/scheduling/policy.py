"""
Cancellation and no-show fee rules.

Fees are flat amounts taken from the policy snapshot stored on the booking,
never from the live provider or service configuration.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal

ZERO = Decimal('0.00')


@dataclass(frozen=True)
class PolicySnapshot:
    cancellation_hours: int
    reschedule_hours: int
    no_show_fee: Decimal
    late_cancellation_fee: Decimal
    deposit_required: bool
    deposit_percentage: Decimal


@dataclass(frozen=True)
class CancellationOutcome:
    fee: Decimal
    refund: Decimal


def _money(value) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(Decimal('0.01'))


def hours_until(start_time: datetime, now: datetime) -> float:
    return (start_time - now) / timedelta(hours=1)


def compute_cancellation_outcome(booking, now: datetime) -> CancellationOutcome:
    policy = booking.policy
    fee = ZERO
    if hours_until(booking.start_time, now) < policy.cancellation_hours:
        fee = _money(policy.late_cancellation_fee)

    refund = max(ZERO, _money(booking.deposit_paid) - fee)
    return CancellationOutcome(fee=fee, refund=refund)


def compute_no_show_fee(booking) -> Decimal:
    return _money(booking.policy.no_show_fee)


def compute_deposit_amount(price, deposit_percentage) -> Decimal:
    return _money(_money(price) * Decimal(str(deposit_percentage or 0)) / Decimal(100))


def can_reschedule(booking, now: datetime) -> bool:
    """Rescheduling is allowed only while strictly more than ``reschedule_hours`` remain."""
    return hours_until(booking.start_time, now) > booking.policy.reschedule_hours
