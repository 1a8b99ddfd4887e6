"""
Booking lifecycle.

Every transition is a single conditional UPDATE on (id, current status), so
two requests racing on one booking cannot both win: the loser sees zero rows
updated and gets ``InvalidTransition``. Slot claims are guarded by the
partial unique index on live bookings, not by the availability read that
precedes them.

    pending --confirm--> confirmed --complete--> completed
       |                    |  \\--mark_no_show--> no_show
       +------cancel--------+--> cancelled
       +-----reschedule-----+--> rescheduled (+ new pending/confirmed booking)
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from booking_engine.core.enums import RELEASED_STATUSES, BookingStatus, PaymentStatus
from booking_engine.core.errors import (
    InvalidTransition,
    NotFound,
    PaymentRequired,
    PolicyViolation,
    SlotUnavailable,
    UpstreamFailure,
)
from booking_engine.models.booking import Booking
from booking_engine.models.user import User
from booking_engine.scheduling.availability import is_slot_free
from booking_engine.scheduling.policy import (
    ZERO,
    can_reschedule,
    compute_cancellation_outcome,
    compute_deposit_amount,
    compute_no_show_fee,
)
from booking_engine.scheduling.slots import TimeSlot, is_slot_start, to_wall_clock
from booking_engine.services.availability_service import load_provider_and_service, occupying_bookings
from booking_engine.services.collaborators import NotificationCollaborator, PaymentCollaborator
from booking_engine.services.reminders import ReminderScheduler
from booking_engine.services.slot_locks import SlotIdentity, SlotLockService

logger = logging.getLogger(__name__)

PENDING = BookingStatus.PENDING.value
CONFIRMED = BookingStatus.CONFIRMED.value

SETTLED_PAYMENT_STATUSES = {PaymentStatus.PAID.value, PaymentStatus.NOT_REQUIRED.value}
UNCOLLECTED_PAYMENT_STATUSES = {PaymentStatus.PENDING.value, PaymentStatus.FAILED.value}


@dataclass
class BookingRequest:
    user_id: str
    provider_id: str
    service_id: str
    start_time: datetime
    holder_id: str | None = None  # lock holder, defaults to the user
    patient_notes: str | None = None


def generate_booking_reference() -> str:
    return f"BK-{uuid.uuid4().hex[:8].upper()}"


class BookingStateMachine:
    """Owns every booking status change and its side effects."""

    TRANSITIONS: dict[str, frozenset[str]] = {
        'confirm': frozenset({PENDING}),
        'cancel': frozenset({PENDING, CONFIRMED}),
        'mark_no_show': frozenset({CONFIRMED}),
        'complete': frozenset({CONFIRMED}),
        'reschedule': frozenset({PENDING, CONFIRMED}),
    }

    def __init__(
        self,
        db: Session,
        payments: PaymentCollaborator,
        notifier: NotificationCollaborator,
        reminders: ReminderScheduler | None = None,
        locks: SlotLockService | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.db = db
        self.payments = payments
        self.notifier = notifier
        self.clock = clock
        self.reminders = reminders or ReminderScheduler(db)
        self.locks = locks or SlotLockService(db, clock=clock)

    def get(self, booking_id: str) -> Booking:
        booking = self.db.get(Booking, booking_id)
        if booking is None:
            raise NotFound(f'Booking {booking_id} not found.', details={'booking_id': booking_id})
        return booking

    def list_bookings(
        self,
        provider_id: str | None = None,
        service_id: str | None = None,
        user_id: str | None = None,
        status: str | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> list[Booking]:
        """Bookings matching every given filter, earliest first; the date range is inclusive on start date."""
        if status is not None and status not in {value.value for value in BookingStatus}:
            raise PolicyViolation(f'Unknown booking status {status}.', details={'status': status})
        if date_from is not None and date_to is not None and date_to < date_from:
            raise PolicyViolation('date_to must not be before date_from.')

        query = self.db.query(Booking)
        if provider_id is not None:
            query = query.filter(Booking.provider_id == provider_id)
        if service_id is not None:
            query = query.filter(Booking.service_id == service_id)
        if user_id is not None:
            query = query.filter(Booking.user_id == user_id)
        if status is not None:
            query = query.filter(Booking.status == status)
        if date_from is not None:
            query = query.filter(Booking.start_time >= datetime.combine(date_from, time.min))
        if date_to is not None:
            query = query.filter(Booking.start_time < datetime.combine(date_to + timedelta(days=1), time.min))

        return query.order_by(Booking.start_time.asc(), Booking.created_at.asc()).all()

    # -- creation -----------------------------------------------------------

    def create(self, request: BookingRequest) -> Booking:
        """Claim the slot; a booking with nothing left to pay is inserted already confirmed."""
        now = self.clock()
        booking = self._build_booking(request, now)
        settled = booking.payment_status in SETTLED_PAYMENT_STATUSES
        if settled:
            self._mark_confirmed(booking, now)
        self._claim_slot(booking, request.holder_id or request.user_id)

        if booking.payment_status == PaymentStatus.PENDING.value:
            booking.payment_intent_id = self._open_deposit_intent(booking)
        if settled:
            self.reminders.schedule_for(booking, now)

        self.db.commit()
        logger.info(
            'Booking %s (%s) created for user %s at %s as %s',
            booking.id, booking.booking_reference, booking.user_id, booking.start_time, booking.status,
        )

        if settled:
            self._send_confirmation(booking)
        return booking

    def _mark_confirmed(self, booking: Booking, now: datetime) -> None:
        # Only for rows not yet flushed: no other transaction can see them before commit.
        booking.status = CONFIRMED
        booking.confirmed_at = now

    def _build_booking(self, request: BookingRequest, now: datetime) -> Booking:
        provider, service = load_provider_and_service(self.db, request.provider_id, request.service_id)
        if not service.is_active:
            raise PolicyViolation(f'Service {service.id} is not currently bookable.')

        user = self.db.get(User, request.user_id)
        if user is None:
            raise NotFound(f'User {request.user_id} not found.', details={'user_id': request.user_id})

        start_time = to_wall_clock(request.start_time).replace(second=0, microsecond=0)
        end_time = start_time + timedelta(minutes=service.duration_minutes)

        if start_time <= now:
            raise PolicyViolation('Appointments must be scheduled in the future.')

        if not is_slot_start(start_time, provider.weekly_hours(), service.duration_minutes):
            raise SlotUnavailable(
                f'{start_time.isoformat()} is not a bookable slot for this service.',
                details={'start_time': start_time.isoformat()},
            )

        candidate = TimeSlot(provider.id, service.id, start_time, end_time)
        if not is_slot_free(candidate, occupying_bookings(self.db, provider.id, service.id, start_time, end_time)):
            raise SlotUnavailable(
                'This time is already booked.',
                details={'start_time': start_time.isoformat()},
            )

        holder_id = request.holder_id or request.user_id
        lock = self.locks.active_lock(SlotIdentity(provider.id, service.id, start_time), now)
        if lock is not None and lock.holder_id != holder_id:
            raise SlotUnavailable(
                'This time is being held by another checkout.',
                details={'start_time': start_time.isoformat(), 'locked_until': lock.locked_until.isoformat()},
            )

        deposit_amount = ZERO
        if service.deposit_required:
            deposit_amount = compute_deposit_amount(service.price, service.deposit_percentage)

        return Booking(
            user_id=user.id,
            provider_id=provider.id,
            service_id=service.id,
            start_time=start_time,
            end_time=end_time,
            duration_minutes=service.duration_minutes,
            status=PENDING,
            booking_reference=generate_booking_reference(),
            service_name=service.name,
            preparation_instructions=service.preparation_instructions,
            patient_notes=request.patient_notes,
            cancellation_hours=provider.cancellation_hours,
            reschedule_hours=provider.reschedule_hours,
            no_show_fee=provider.no_show_fee or ZERO,
            late_cancellation_fee=provider.late_cancellation_fee or ZERO,
            deposit_required=bool(service.deposit_required),
            deposit_percentage=service.deposit_percentage or ZERO,
            total_cost=service.price,
            currency=service.currency or provider.currency,
            deposit_amount=deposit_amount,
            deposit_paid=ZERO,
            payment_status=(
                PaymentStatus.PENDING.value if deposit_amount > ZERO else PaymentStatus.NOT_REQUIRED.value
            ),
        )

    def _claim_slot(self, booking: Booking, holder_id: str) -> None:
        self.db.add(booking)
        self.locks.consume(SlotIdentity(booking.provider_id, booking.service_id, booking.start_time), holder_id)
        try:
            self.db.flush()
        except IntegrityError as exc:
            self.db.rollback()
            logger.info('Lost race for slot %s/%s at %s', booking.provider_id, booking.service_id, booking.start_time)
            raise SlotUnavailable(
                'This time was just booked by someone else. Please pick another slot.',
                details={'start_time': booking.start_time.isoformat()},
            ) from exc

    def _open_deposit_intent(self, booking: Booking) -> str:
        try:
            return self.payments.open_deposit_intent(booking.deposit_amount, booking.currency, booking.booking_reference)
        except Exception as exc:
            self.db.rollback()
            logger.exception('Opening deposit intent failed for booking %s', booking.booking_reference)
            raise UpstreamFailure('Payment provider is unavailable. Please try again.') from exc

    # -- transitions --------------------------------------------------------

    def confirm(self, booking_id: str) -> Booking:
        now = self.clock()
        booking = self.get(booking_id)
        self._require_state(booking, 'confirm')
        if booking.deposit_required and booking.payment_status not in SETTLED_PAYMENT_STATUSES:
            raise PaymentRequired(
                'The deposit for this booking has not been paid.',
                details={'booking_id': booking.id, 'payment_status': booking.payment_status},
            )

        self._transition(booking, 'confirm', {'status': CONFIRMED, 'confirmed_at': now})
        self.reminders.schedule_for(booking, now)
        self.db.commit()
        logger.info('Booking %s confirmed', booking.booking_reference)

        self._send_confirmation(booking)
        return booking

    def cancel(self, booking_id: str, reason: str | None = None, actor: str | None = None) -> Booking:
        now = self.clock()
        booking = self.get(booking_id)
        self._require_state(booking, 'cancel')

        outcome = compute_cancellation_outcome(booking, now)
        self._transition(booking, 'cancel', {
            'status': BookingStatus.CANCELLED.value,
            'cancelled_at': now,
            'cancellation_reason': reason,
            'cancelled_by': actor,
            'cancellation_fee': outcome.fee,
            'refund_amount': outcome.refund,
        })
        self.reminders.cancel_for_booking(booking.id)
        self.db.commit()
        logger.info(
            'Booking %s cancelled by %s (fee=%s, refund=%s)',
            booking.booking_reference, actor, outcome.fee, outcome.refund,
        )

        if outcome.refund > ZERO and booking.payment_intent_id:
            self._refund(booking, outcome.refund)
        return booking

    def mark_no_show(self, booking_id: str) -> Booking:
        now = self.clock()
        booking = self.get(booking_id)
        self._require_state(booking, 'mark_no_show')
        self._require_ended(booking, now, 'A no-show')

        self._transition(booking, 'mark_no_show', {
            'status': BookingStatus.NO_SHOW.value,
            'fee_charged': compute_no_show_fee(booking),
        })
        self.reminders.cancel_for_booking(booking.id)
        self.db.commit()
        logger.info('Booking %s marked as no-show', booking.booking_reference)
        return booking

    def complete(self, booking_id: str, attended: bool = True) -> Booking:
        now = self.clock()
        booking = self.get(booking_id)
        self._require_state(booking, 'complete')
        if not attended:
            raise PolicyViolation('Only attended appointments can be completed; record a no-show instead.')
        self._require_ended(booking, now, 'Completion')

        self._transition(booking, 'complete', {
            'status': BookingStatus.COMPLETED.value,
            'completed_at': now,
        })
        self.reminders.cancel_for_booking(booking.id)
        self.db.commit()
        logger.info('Booking %s completed', booking.booking_reference)
        return booking

    def reschedule(self, booking_id: str, new_start: datetime, actor: str | None = None) -> Booking:
        """Release the booking and claim ``new_start`` in one transaction; returns the new booking."""
        now = self.clock()
        booking = self.get(booking_id)
        self._require_state(booking, 'reschedule')
        if not can_reschedule(booking, now):
            raise PolicyViolation(
                f'Bookings can only be rescheduled more than {booking.reschedule_hours} hours before the appointment.',
                details={'booking_id': booking.id, 'reschedule_hours': booking.reschedule_hours},
            )

        deposit_carried = booking.payment_status == PaymentStatus.PAID.value
        previous = {
            'payment_intent_id': booking.payment_intent_id,
            'deposit_amount': booking.deposit_amount,
            'deposit_paid': booking.deposit_paid,
        }
        request = BookingRequest(
            user_id=booking.user_id,
            provider_id=booking.provider_id,
            service_id=booking.service_id,
            start_time=new_start,
            holder_id=actor or booking.user_id,
            patient_notes=booking.patient_notes,
        )

        self._transition(booking, 'reschedule', {
            'status': BookingStatus.RESCHEDULED.value,
            'cancelled_at': now,
            'cancellation_reason': 'rescheduled',
            'cancelled_by': actor,
            'cancellation_fee': ZERO,
            'refund_amount': ZERO,
        })
        self.reminders.cancel_for_booking(booking.id)

        try:
            new_booking = self._build_booking(request, now)
        except Exception:
            self.db.rollback()
            raise

        new_booking.rescheduled_from_id = booking.id
        if deposit_carried:
            new_booking.payment_intent_id = previous['payment_intent_id']
            new_booking.deposit_amount = previous['deposit_amount']
            new_booking.deposit_paid = previous['deposit_paid']
            new_booking.payment_status = PaymentStatus.PAID.value

        settled = new_booking.payment_status in SETTLED_PAYMENT_STATUSES
        if settled:
            self._mark_confirmed(new_booking, now)
        self._claim_slot(new_booking, request.holder_id)
        if new_booking.payment_status == PaymentStatus.PENDING.value:
            new_booking.payment_intent_id = self._open_deposit_intent(new_booking)
        if settled:
            self.reminders.schedule_for(new_booking, now)

        self.db.commit()
        logger.info(
            'Booking %s rescheduled to %s as %s (%s)',
            booking.booking_reference, new_booking.start_time, new_booking.booking_reference, new_booking.status,
        )

        if settled:
            self._send_confirmation(new_booking)
        return new_booking

    # -- payment callback ---------------------------------------------------

    def on_payment_result(self, intent_id: str, success: bool) -> Booking:
        bookings = self.db.query(Booking).filter(
            Booking.payment_intent_id == intent_id,
        ).order_by(Booking.created_at.desc()).all()
        if not bookings:
            raise NotFound(f'No booking uses payment intent {intent_id}.', details={'intent_id': intent_id})

        booking = next((b for b in bookings if b.status == PENDING), None)
        if booking is None and success:
            released = next((b for b in bookings if b.status in RELEASED_STATUSES), None)
            if released is not None and released.payment_status in UNCOLLECTED_PAYMENT_STATUSES:
                return self._refund_late_capture(released)
        if booking is None or booking.payment_status == PaymentStatus.PAID.value:
            logger.info('Payment result for intent %s already applied; ignoring', intent_id)
            return booking or bookings[0]

        if not success:
            self.db.query(Booking).filter(
                Booking.id == booking.id,
                Booking.status == PENDING,
                Booking.payment_status != PaymentStatus.PAID.value,
            ).update({'payment_status': PaymentStatus.FAILED.value}, synchronize_session=False)
            self.db.commit()
            self.db.refresh(booking)
            logger.info('Deposit payment failed for booking %s', booking.booking_reference)
            return booking

        updated = self.db.query(Booking).filter(
            Booking.id == booking.id,
            Booking.status == PENDING,
            Booking.payment_status != PaymentStatus.PAID.value,
        ).update(
            {'payment_status': PaymentStatus.PAID.value, 'deposit_paid': booking.deposit_amount},
            synchronize_session=False,
        )
        self.db.commit()
        self.db.refresh(booking)
        if not updated:
            return booking

        logger.info('Deposit paid for booking %s', booking.booking_reference)
        return self.confirm(booking.id)

    def _refund_late_capture(self, booking: Booking) -> Booking:
        """A deposit captured after its booking was released is refunded, less any fee already charged."""
        refund = max(ZERO, booking.deposit_amount - (booking.cancellation_fee or ZERO))
        updated = self.db.query(Booking).filter(
            Booking.id == booking.id,
            Booking.status.in_(sorted(RELEASED_STATUSES)),
            Booking.payment_status.in_(sorted(UNCOLLECTED_PAYMENT_STATUSES)),
        ).update(
            {
                'payment_status': PaymentStatus.PAID.value,
                'deposit_paid': booking.deposit_amount,
                'refund_amount': refund,
                'updated_at': self.clock(),
            },
            synchronize_session=False,
        )
        self.db.commit()
        self.db.refresh(booking)
        if not updated:
            return booking

        logger.warning(
            'Deposit captured for %s booking %s; refunding %s',
            booking.status, booking.booking_reference, refund,
        )
        if refund > ZERO:
            self._refund(booking, refund)
        return booking

    # -- helpers ------------------------------------------------------------

    def _require_state(self, booking: Booking, action: str) -> None:
        allowed = self.TRANSITIONS[action]
        if booking.status not in allowed:
            raise InvalidTransition(
                f"Cannot {action.replace('_', ' ')} a booking that is {booking.status}.",
                details={'booking_id': booking.id, 'status': booking.status, 'allowed_from': sorted(allowed)},
            )

    def _require_ended(self, booking: Booking, now: datetime, what: str) -> None:
        if now <= booking.end_time:
            raise InvalidTransition(
                f'{what} can only be recorded after the appointment has ended.',
                details={'booking_id': booking.id, 'end_time': booking.end_time.isoformat()},
            )

    def _transition(self, booking: Booking, action: str, values: dict) -> None:
        """Apply ``values`` only if the row is still in a state ``action`` allows (no commit)."""
        allowed = self.TRANSITIONS[action]
        values = {**values, 'updated_at': self.clock()}
        updated = self.db.query(Booking).filter(
            Booking.id == booking.id,
            Booking.status.in_(sorted(allowed)),
        ).update(values, synchronize_session=False)

        if not updated:
            self.db.rollback()
            current = self.db.get(Booking, booking.id)
            if current is None:
                raise NotFound(f'Booking {booking.id} not found.', details={'booking_id': booking.id})
            raise InvalidTransition(
                f"Cannot {action.replace('_', ' ')} a booking that is {current.status}.",
                details={'booking_id': booking.id, 'status': current.status, 'allowed_from': sorted(allowed)},
            )

        self.db.expire(booking)

    def _send_confirmation(self, booking: Booking) -> None:
        recipient = self.db.get(User, booking.user_id)
        try:
            self.notifier.send_confirmation(booking, recipient)
        except Exception:
            logger.exception('Confirmation notification failed for booking %s', booking.booking_reference)
            return

        self.db.query(Booking).filter(Booking.id == booking.id).update(
            {'confirmation_sent': True},
            synchronize_session=False,
        )
        self.db.commit()

    def _refund(self, booking: Booking, amount: Decimal) -> None:
        try:
            self.payments.initiate_refund(booking.payment_intent_id, amount)
        except Exception:
            logger.exception('Refund of %s failed for booking %s', amount, booking.booking_reference)
            payment_status = PaymentStatus.REFUND_FAILED.value
        else:
            payment_status = PaymentStatus.REFUNDED.value

        self.db.query(Booking).filter(Booking.id == booking.id).update(
            {'payment_status': payment_status},
            synchronize_session=False,
        )
        self.db.commit()
