import threading
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from conftest import MONDAY, NOW, at
from booking_engine.core.enums import BookingStatus, PaymentStatus, ReminderStatus
from booking_engine.core.errors import (
    InvalidTransition,
    NotFound,
    PaymentRequired,
    PolicyViolation,
    SlotUnavailable,
    UpstreamFailure,
)
from booking_engine.models.booking import Booking
from booking_engine.models.reminder import ReminderSchedule
from booking_engine.models.slot_lock import SlotLock
from booking_engine.services.availability_service import list_available_slots
from booking_engine.services.booking_state import BookingRequest, BookingStateMachine
from booking_engine.services.slot_locks import SlotIdentity, SlotLockService


def request_for(clinic, start: datetime, service='service', user='user', holder_id=None) -> BookingRequest:
    return BookingRequest(
        user_id=clinic[user].id,
        provider_id=clinic['provider'].id,
        service_id=clinic[service].id,
        start_time=start,
        holder_id=holder_id,
    )


def reminder_statuses(db, booking_id: str) -> dict[str, str]:
    return {
        row.kind: row.status
        for row in db.query(ReminderSchedule).filter(ReminderSchedule.booking_id == booking_id).all()
    }


# -- create -------------------------------------------------------------------


def test_create_without_deposit_confirms_immediately(db, clinic, machine, notifier) -> None:
    booking = machine.create(request_for(clinic, at(10, 0)))

    assert booking.status == BookingStatus.CONFIRMED.value
    assert booking.payment_status == PaymentStatus.NOT_REQUIRED.value
    assert booking.booking_reference.startswith('BK-')
    assert len(booking.booking_reference) == 11
    assert booking.end_time == at(10, 30)
    assert booking.confirmed_at == NOW
    assert booking.confirmation_sent is True
    assert notifier.confirmations == [booking.id]
    assert reminder_statuses(db, booking.id) == {'24h': 'pending', '2h': 'pending'}


def test_create_snapshots_service_and_policy(db, clinic, machine) -> None:
    booking = machine.create(request_for(clinic, at(10, 0)))

    clinic['service'].name = 'Renamed consultation'
    clinic['provider'].late_cancellation_fee = Decimal('99.00')
    db.commit()
    db.refresh(booking)

    assert booking.service_name == 'General consultation'
    assert booking.total_cost == Decimal('100.00')
    assert booking.late_cancellation_fee == Decimal('15.00')
    assert booking.no_show_fee == Decimal('50.00')
    assert booking.cancellation_hours == 24
    assert booking.preparation_instructions == 'Bring your insurance card.'


def test_create_with_deposit_opens_intent_and_stays_pending(db, clinic, machine, payments, notifier) -> None:
    booking = machine.create(request_for(clinic, at(10, 0), service='deposit_service'))

    assert booking.status == BookingStatus.PENDING.value
    assert booking.payment_status == PaymentStatus.PENDING.value
    assert booking.deposit_amount == Decimal('20.00')
    assert booking.payment_intent_id == 'pi_test_1'
    assert payments.intents == [(Decimal('20.00'), 'USD', booking.booking_reference)]
    assert notifier.confirmations == []
    assert reminder_statuses(db, booking.id) == {}


def test_create_rolls_back_when_payment_provider_fails(db, clinic, machine, payments) -> None:
    payments.fail_open = True

    with pytest.raises(UpstreamFailure):
        machine.create(request_for(clinic, at(10, 0), service='deposit_service'))

    assert db.query(Booking).count() == 0


def test_create_rejects_unknown_references(clinic, machine) -> None:
    with pytest.raises(NotFound):
        machine.create(BookingRequest('missing-user', clinic['provider'].id, clinic['service'].id, at(10, 0)))
    with pytest.raises(NotFound):
        machine.create(BookingRequest(clinic['user'].id, 'missing-provider', clinic['service'].id, at(10, 0)))
    with pytest.raises(NotFound):
        machine.create(BookingRequest(clinic['user'].id, clinic['provider'].id, 'missing-service', at(10, 0)))


def test_create_rejects_past_start(clinic, machine, clock) -> None:
    clock.now = at(11, 0)

    with pytest.raises(PolicyViolation):
        machine.create(request_for(clinic, at(10, 0)))


@pytest.mark.parametrize('start', [at(10, 15), at(8, 30), at(17, 0), at(10, 0, day=MONDAY + timedelta(days=1))])
def test_create_rejects_starts_off_the_slot_grid(clinic, machine, start) -> None:
    with pytest.raises(SlotUnavailable):
        machine.create(request_for(clinic, start))


def test_create_truncates_seconds_before_validating(clinic, machine) -> None:
    booking = machine.create(request_for(clinic, at(10, 0) + timedelta(seconds=42)))

    assert booking.start_time == at(10, 0)


def test_create_converts_aware_start_to_wall_clock(clinic, machine) -> None:
    booking = machine.create(request_for(clinic, at(10, 0).astimezone(timezone(timedelta(hours=-5)))))

    assert booking.start_time == at(10, 0)
    assert booking.start_time.tzinfo is None


def test_create_without_deposit_commits_once(db, clinic, machine, monkeypatch) -> None:
    commits = []
    real_commit = db.commit
    monkeypatch.setattr(db, 'commit', lambda: commits.append(1) or real_commit())
    monkeypatch.setattr(machine, 'confirm', lambda booking_id: pytest.fail('create must not confirm separately'))

    booking = machine.create(request_for(clinic, at(10, 0)))

    # One commit for the booking, one for the confirmation_sent flag.
    assert len(commits) == 2
    assert booking.status == BookingStatus.CONFIRMED.value
    assert reminder_statuses(db, booking.id) == {'24h': 'pending', '2h': 'pending'}


def test_booking_is_confirmed_even_if_confirmation_never_sends(db, clinic, machine, monkeypatch) -> None:
    monkeypatch.setattr(machine, '_send_confirmation', lambda booking: None)

    booking_id = machine.create(request_for(clinic, at(10, 0))).id
    db.expire_all()

    stored = db.get(Booking, booking_id)
    assert stored.status == BookingStatus.CONFIRMED.value
    assert stored.confirmed_at == NOW
    assert stored.confirmation_sent is False


def test_create_rejects_inactive_service(db, clinic, machine) -> None:
    clinic['service'].is_active = False
    db.commit()

    with pytest.raises(PolicyViolation):
        machine.create(request_for(clinic, at(10, 0)))


def test_double_booking_is_refused(db, clinic, machine) -> None:
    machine.create(request_for(clinic, at(10, 0)))

    with pytest.raises(SlotUnavailable):
        machine.create(request_for(clinic, at(10, 0), user='other_user'))

    assert db.query(Booking).count() == 1


def test_stale_availability_read_is_caught_by_unique_index(db, clinic, machine, monkeypatch) -> None:
    machine.create(request_for(clinic, at(10, 0)))
    # Simulate a request that checked availability before the first booking committed.
    monkeypatch.setattr('booking_engine.services.booking_state.occupying_bookings', lambda *args, **kwargs: [])

    with pytest.raises(SlotUnavailable) as exception_info:
        machine.create(request_for(clinic, at(10, 0), user='other_user'))

    assert 'just booked' in exception_info.value.message
    assert db.query(Booking).count() == 1


def test_concurrent_creates_for_one_slot_book_it_once(session_factory, clinic, payments, notifier, clock) -> None:
    requests = [request_for(clinic, at(10, 0)), request_for(clinic, at(10, 0), user='other_user')]
    outcomes: list[str] = []
    barrier = threading.Barrier(len(requests))

    def attempt(request: BookingRequest) -> None:
        session = session_factory()
        try:
            machine = BookingStateMachine(session, payments, notifier, clock=clock)
            barrier.wait()
            try:
                machine.create(request)
            except SlotUnavailable:
                outcomes.append('refused')
            else:
                outcomes.append('booked')
        finally:
            session.close()

    threads = [threading.Thread(target=attempt, args=(request,)) for request in requests]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert sorted(outcomes) == ['booked', 'refused']

    check = session_factory()
    try:
        assert check.query(Booking).filter(Booking.start_time == at(10, 0)).count() == 1
    finally:
        check.close()


def test_create_respects_another_holders_lock(db, clinic, machine, clock) -> None:
    slot = SlotIdentity(clinic['provider'].id, clinic['service'].id, at(10, 0))
    assert SlotLockService(db, clock=clock).acquire(slot, 'someone-else')

    with pytest.raises(SlotUnavailable):
        machine.create(request_for(clinic, at(10, 0)))


def test_create_consumes_the_callers_lock(db, clinic, machine, clock) -> None:
    slot = SlotIdentity(clinic['provider'].id, clinic['service'].id, at(10, 0))
    assert SlotLockService(db, clock=clock).acquire(slot, 'checkout-1')

    booking = machine.create(request_for(clinic, at(10, 0), holder_id='checkout-1'))

    assert booking.status == BookingStatus.CONFIRMED.value
    assert db.query(SlotLock).count() == 0


def test_create_after_lock_expiry_ignores_stale_lock(db, clinic, machine, clock) -> None:
    slot = SlotIdentity(clinic['provider'].id, clinic['service'].id, at(10, 0))
    assert SlotLockService(db, clock=clock).acquire(slot, 'someone-else')
    clock.advance(minutes=11)

    booking = machine.create(request_for(clinic, at(10, 0)))

    assert booking.status == BookingStatus.CONFIRMED.value


# -- confirm ------------------------------------------------------------------


def test_confirm_requires_paid_deposit(clinic, machine) -> None:
    booking = machine.create(request_for(clinic, at(10, 0), service='deposit_service'))

    with pytest.raises(PaymentRequired):
        machine.confirm(booking.id)


def test_confirm_cancelled_booking_is_invalid(clinic, machine) -> None:
    booking = machine.create(request_for(clinic, at(10, 0), service='deposit_service'))
    machine.cancel(booking.id, reason='changed plans', actor='patient')

    with pytest.raises(InvalidTransition):
        machine.confirm(booking.id)

    assert machine.get(booking.id).status == BookingStatus.CANCELLED.value


def test_confirm_twice_is_invalid(clinic, machine) -> None:
    booking = machine.create(request_for(clinic, at(10, 0)))

    with pytest.raises(InvalidTransition):
        machine.confirm(booking.id)


def test_confirmation_failure_does_not_roll_back(clinic, machine, notifier) -> None:
    notifier.fail_confirmation = True

    booking = machine.create(request_for(clinic, at(10, 0)))

    assert booking.status == BookingStatus.CONFIRMED.value
    assert booking.confirmation_sent is False


def test_confirm_skips_reminders_whose_time_has_passed(db, clinic, machine, clock) -> None:
    clock.now = at(9, 0) - timedelta(hours=3)

    booking = machine.create(request_for(clinic, at(10, 0)))

    assert reminder_statuses(db, booking.id) == {'2h': 'pending'}


def test_stale_confirm_loses_to_concurrent_cancel(db, session_factory, clinic, machine, payments, notifier, clock) -> None:
    booking_id = machine.create(request_for(clinic, at(10, 0), service='deposit_service')).id
    # Deposit settled; the confirm has not run yet.
    db.query(Booking).filter(Booking.id == booking_id).update(
        {'payment_status': PaymentStatus.PAID.value, 'deposit_paid': Decimal('20.00')},
        synchronize_session=False,
    )
    db.commit()

    other_session = session_factory()
    try:
        other = BookingStateMachine(other_session, payments, notifier, clock=clock)
        assert other.get(booking_id).status == BookingStatus.PENDING.value

        machine.cancel(booking_id, actor='patient')

        with pytest.raises(InvalidTransition) as exception_info:
            other.confirm(booking_id)

        assert exception_info.value.details['status'] == BookingStatus.CANCELLED.value
        assert reminder_statuses(other_session, booking_id) == {}
    finally:
        other_session.close()

    assert machine.get(booking_id).status == BookingStatus.CANCELLED.value
    assert notifier.confirmations == []


# -- payment callback ---------------------------------------------------------


def test_successful_payment_confirms_booking(db, clinic, machine, notifier) -> None:
    booking = machine.create(request_for(clinic, at(10, 0), service='deposit_service'))

    result = machine.on_payment_result(booking.payment_intent_id, success=True)

    assert result.id == booking.id
    assert result.status == BookingStatus.CONFIRMED.value
    assert result.payment_status == PaymentStatus.PAID.value
    assert result.deposit_paid == Decimal('20.00')
    assert notifier.confirmations == [booking.id]
    assert reminder_statuses(db, booking.id) == {'24h': 'pending', '2h': 'pending'}


def test_payment_replay_is_a_no_op(clinic, machine, notifier) -> None:
    booking = machine.create(request_for(clinic, at(10, 0), service='deposit_service'))
    machine.on_payment_result(booking.payment_intent_id, success=True)

    again = machine.on_payment_result(booking.payment_intent_id, success=True)

    assert again.status == BookingStatus.CONFIRMED.value
    assert notifier.confirmations == [booking.id]


def test_failed_payment_keeps_booking_pending(clinic, machine) -> None:
    booking = machine.create(request_for(clinic, at(10, 0), service='deposit_service'))

    result = machine.on_payment_result(booking.payment_intent_id, success=False)

    assert result.status == BookingStatus.PENDING.value
    assert result.payment_status == PaymentStatus.FAILED.value

    retried = machine.on_payment_result(booking.payment_intent_id, success=True)
    assert retried.status == BookingStatus.CONFIRMED.value


def test_payment_result_for_unknown_intent(clinic, machine) -> None:
    with pytest.raises(NotFound):
        machine.on_payment_result('pi_unknown', success=True)


def test_deposit_captured_after_cancel_is_refunded(clinic, machine, payments) -> None:
    booking = machine.create(request_for(clinic, at(10, 0), service='deposit_service'))
    intent_id = booking.payment_intent_id
    machine.cancel(booking.id, actor='patient')

    result = machine.on_payment_result(intent_id, success=True)

    assert result.status == BookingStatus.CANCELLED.value
    assert result.deposit_paid == Decimal('20.00')
    assert result.refund_amount == Decimal('20.00')
    assert result.payment_status == PaymentStatus.REFUNDED.value
    assert payments.refunds == [(intent_id, Decimal('20.00'))]

    machine.on_payment_result(intent_id, success=True)
    assert len(payments.refunds) == 1


def test_deposit_captured_after_late_cancel_keeps_the_fee(clinic, machine, payments, clock) -> None:
    booking = machine.create(request_for(clinic, at(10, 0), service='deposit_service'))
    intent_id = booking.payment_intent_id
    clock.now = at(10, 0) - timedelta(hours=5)
    machine.cancel(booking.id)

    result = machine.on_payment_result(intent_id, success=True)

    assert result.cancellation_fee == Decimal('15.00')
    assert result.refund_amount == Decimal('5.00')
    assert payments.refunds == [(intent_id, Decimal('5.00'))]


def test_deposit_captured_after_unpaid_reschedule_is_refunded(clinic, machine, payments) -> None:
    original = machine.create(request_for(clinic, at(10, 0), service='deposit_service'))
    original_id, old_intent = original.id, original.payment_intent_id
    moved = machine.reschedule(original_id, at(15, 0))

    result = machine.on_payment_result(old_intent, success=True)

    assert result.id == original_id
    assert result.status == BookingStatus.RESCHEDULED.value
    assert result.payment_status == PaymentStatus.REFUNDED.value
    assert payments.refunds == [(old_intent, Decimal('20.00'))]
    assert machine.get(moved.id).status == BookingStatus.PENDING.value
    assert machine.get(moved.id).payment_status == PaymentStatus.PENDING.value


def test_failed_payment_after_cancel_changes_nothing(clinic, machine, payments) -> None:
    booking = machine.create(request_for(clinic, at(10, 0), service='deposit_service'))
    intent_id = booking.payment_intent_id
    machine.cancel(booking.id)

    result = machine.on_payment_result(intent_id, success=False)

    assert result.payment_status == PaymentStatus.PENDING.value
    assert payments.refunds == []


# -- cancel -------------------------------------------------------------------


def test_early_cancel_refunds_full_deposit(db, clinic, machine, payments) -> None:
    booking = machine.create(request_for(clinic, at(10, 0), service='deposit_service'))
    machine.on_payment_result(booking.payment_intent_id, success=True)

    cancelled = machine.cancel(booking.id, reason='feeling better', actor='patient')

    assert cancelled.status == BookingStatus.CANCELLED.value
    assert cancelled.cancellation_fee == Decimal('0.00')
    assert cancelled.refund_amount == Decimal('20.00')
    assert cancelled.cancelled_by == 'patient'
    assert cancelled.cancellation_reason == 'feeling better'
    assert cancelled.cancelled_at == NOW
    assert cancelled.payment_status == PaymentStatus.REFUNDED.value
    assert payments.refunds == [('pi_test_1', Decimal('20.00'))]
    assert set(reminder_statuses(db, booking.id).values()) == {ReminderStatus.CANCELLED.value}


def test_late_cancel_charges_fee_and_refunds_remainder(clinic, machine, payments, clock) -> None:
    booking = machine.create(request_for(clinic, at(10, 0), service='deposit_service'))
    machine.on_payment_result(booking.payment_intent_id, success=True)
    clock.now = at(10, 0) - timedelta(hours=5)

    cancelled = machine.cancel(booking.id)

    assert cancelled.cancellation_fee == Decimal('15.00')
    assert cancelled.refund_amount == Decimal('5.00')
    assert payments.refunds == [('pi_test_1', Decimal('5.00'))]


def test_late_cancel_without_deposit_records_fee_only(clinic, machine, payments, clock) -> None:
    booking = machine.create(request_for(clinic, at(10, 0)))
    clock.now = at(9, 0)

    cancelled = machine.cancel(booking.id)

    assert cancelled.cancellation_fee == Decimal('15.00')
    assert cancelled.refund_amount == Decimal('0.00')
    assert payments.refunds == []


def test_refund_failure_keeps_cancellation(clinic, machine, payments) -> None:
    booking = machine.create(request_for(clinic, at(10, 0), service='deposit_service'))
    machine.on_payment_result(booking.payment_intent_id, success=True)
    payments.fail_refund = True

    cancelled = machine.cancel(booking.id)

    assert cancelled.status == BookingStatus.CANCELLED.value
    assert cancelled.payment_status == PaymentStatus.REFUND_FAILED.value


def test_cancel_releases_the_slot(db, clinic, machine) -> None:
    booking = machine.create(request_for(clinic, at(10, 0)))
    machine.cancel(booking.id)

    rebooked = machine.create(request_for(clinic, at(10, 0), user='other_user'))

    assert rebooked.status == BookingStatus.CONFIRMED.value


def test_cancel_twice_is_invalid(clinic, machine) -> None:
    booking = machine.create(request_for(clinic, at(10, 0)))
    machine.cancel(booking.id)

    with pytest.raises(InvalidTransition):
        machine.cancel(booking.id)


# -- no-show / complete -------------------------------------------------------


def test_no_show_charges_snapshot_fee_after_end(db, clinic, machine, clock) -> None:
    booking = machine.create(request_for(clinic, at(10, 0)))
    clock.now = at(10, 31)

    result = machine.mark_no_show(booking.id)

    assert result.status == BookingStatus.NO_SHOW.value
    assert result.fee_charged == Decimal('50.00')


def test_no_show_before_end_is_invalid(clinic, machine, clock) -> None:
    booking = machine.create(request_for(clinic, at(10, 0)))
    clock.now = at(10, 15)

    with pytest.raises(InvalidTransition):
        machine.mark_no_show(booking.id)


def test_no_show_requires_confirmed_booking(clinic, machine, clock) -> None:
    booking = machine.create(request_for(clinic, at(10, 0), service='deposit_service'))
    clock.now = at(11, 0)

    with pytest.raises(InvalidTransition):
        machine.mark_no_show(booking.id)


def test_complete_after_end(clinic, machine, clock) -> None:
    booking = machine.create(request_for(clinic, at(10, 0)))
    clock.now = at(10, 45)

    result = machine.complete(booking.id)

    assert result.status == BookingStatus.COMPLETED.value
    assert result.completed_at == at(10, 45)

    with pytest.raises(InvalidTransition):
        machine.cancel(booking.id)


def test_complete_requires_attendance(clinic, machine, clock) -> None:
    booking = machine.create(request_for(clinic, at(10, 0)))
    clock.now = at(10, 45)

    with pytest.raises(PolicyViolation):
        machine.complete(booking.id, attended=False)


def test_complete_before_end_is_invalid(clinic, machine, clock) -> None:
    booking = machine.create(request_for(clinic, at(10, 0)))
    clock.now = at(10, 30)

    with pytest.raises(InvalidTransition):
        machine.complete(booking.id)


def test_unknown_booking_is_not_found(machine) -> None:
    with pytest.raises(NotFound):
        machine.cancel('does-not-exist')


# -- reschedule ---------------------------------------------------------------


def test_reschedule_moves_booking_and_releases_old_slot(db, clinic, machine) -> None:
    original = machine.create(request_for(clinic, at(10, 0)))
    original_id = original.id

    moved = machine.reschedule(original_id, at(14, 0), actor='patient')

    assert moved.id != original_id
    assert moved.start_time == at(14, 0)
    assert moved.status == BookingStatus.CONFIRMED.value
    assert moved.rescheduled_from_id == original_id
    old = machine.get(original_id)
    assert old.status == BookingStatus.RESCHEDULED.value
    assert old.cancellation_fee == Decimal('0.00')
    assert set(reminder_statuses(db, original_id).values()) == {ReminderStatus.CANCELLED.value}

    starts = {
        slot.start
        for slot in list_available_slots(db, clinic['provider'].id, clinic['service'].id, MONDAY, MONDAY, NOW)
    }
    assert at(10, 0) in starts
    assert at(14, 0) not in starts


def test_reschedule_carries_paid_deposit(clinic, machine, payments) -> None:
    original = machine.create(request_for(clinic, at(10, 0), service='deposit_service'))
    machine.on_payment_result(original.payment_intent_id, success=True)

    moved = machine.reschedule(original.id, at(15, 0))

    assert moved.status == BookingStatus.CONFIRMED.value
    assert moved.payment_status == PaymentStatus.PAID.value
    assert moved.deposit_paid == Decimal('20.00')
    assert moved.payment_intent_id == 'pi_test_1'
    assert len(payments.intents) == 1


def test_reschedule_of_unpaid_booking_opens_new_intent(clinic, machine, payments) -> None:
    original = machine.create(request_for(clinic, at(10, 0), service='deposit_service'))

    moved = machine.reschedule(original.id, at(15, 0))

    assert moved.status == BookingStatus.PENDING.value
    assert moved.payment_intent_id == 'pi_test_2'
    assert len(payments.intents) == 2


def test_reschedule_inside_window_is_refused(clinic, machine, clock) -> None:
    booking = machine.create(request_for(clinic, at(10, 0)))
    clock.now = at(10, 0) - timedelta(hours=12)

    with pytest.raises(PolicyViolation):
        machine.reschedule(booking.id, at(14, 0))

    assert machine.get(booking.id).status == BookingStatus.CONFIRMED.value


def test_reschedule_to_taken_slot_leaves_original_intact(db, clinic, machine) -> None:
    original = machine.create(request_for(clinic, at(10, 0)))
    machine.create(request_for(clinic, at(14, 0), user='other_user'))

    with pytest.raises(SlotUnavailable):
        machine.reschedule(original.id, at(14, 0))

    assert machine.get(original.id).status == BookingStatus.CONFIRMED.value
    assert db.query(Booking).count() == 2
    assert reminder_statuses(db, original.id) == {'24h': 'pending', '2h': 'pending'}


def test_rescheduled_booking_accepts_no_further_transitions(clinic, machine) -> None:
    original = machine.create(request_for(clinic, at(10, 0)))
    machine.reschedule(original.id, at(14, 0))

    with pytest.raises(InvalidTransition):
        machine.cancel(original.id)


# -- listing ------------------------------------------------------------------


def test_list_bookings_applies_every_filter(clinic, machine) -> None:
    first = machine.create(request_for(clinic, at(10, 0))).id
    second = machine.create(request_for(clinic, at(11, 0), user='other_user')).id
    unpaid = machine.create(request_for(clinic, at(9, 0), service='deposit_service')).id
    next_week = machine.create(request_for(clinic, at(10, 0, day=MONDAY + timedelta(days=7)))).id
    machine.cancel(second)

    def ids(**filters) -> list[str]:
        return [booking.id for booking in machine.list_bookings(**filters)]

    assert ids(provider_id=clinic['provider'].id) == [unpaid, first, second, next_week]
    assert ids(user_id=clinic['user'].id) == [unpaid, first, next_week]
    assert ids(service_id=clinic['deposit_service'].id) == [unpaid]
    assert ids(status='cancelled') == [second]
    assert ids(status='pending', user_id=clinic['user'].id) == [unpaid]
    assert ids(date_from=MONDAY, date_to=MONDAY) == [unpaid, first, second]
    assert ids(date_from=MONDAY + timedelta(days=1)) == [next_week]
    assert ids(provider_id='someone-else') == []


def test_list_bookings_rejects_bad_filters(machine) -> None:
    with pytest.raises(PolicyViolation):
        machine.list_bookings(status='booked')
    with pytest.raises(PolicyViolation):
        machine.list_bookings(date_from=MONDAY, date_to=MONDAY - timedelta(days=1))


# -- end to end ---------------------------------------------------------------


def test_monday_clinic_day(db, clinic, machine) -> None:
    provider_id, service_id = clinic['provider'].id, clinic['service'].id

    slots = list_available_slots(db, provider_id, service_id, MONDAY, MONDAY, NOW)
    assert [slot.start for slot in slots] == [at(9, 0) + timedelta(minutes=30 * index) for index in range(16)]

    machine.create(request_for(clinic, at(10, 0)))

    after = list_available_slots(db, provider_id, service_id, MONDAY, MONDAY, NOW)
    assert len(after) == 15
    assert at(10, 0) not in {slot.start for slot in after}

    with pytest.raises(SlotUnavailable):
        machine.create(request_for(clinic, at(10, 0), user='other_user'))
