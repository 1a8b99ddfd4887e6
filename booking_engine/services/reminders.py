"""
Reminder scheduling.

Reminders are rows, not timers: ``schedule_for`` writes one row per kind when
a booking is confirmed, the dispatcher polls ``due_reminders`` and reports
back through ``mark_sent`` or ``record_failure``. Marking is idempotent, so a
dispatcher that sees the same row twice only sends it once.
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy import or_
from sqlalchemy.orm import Session

from booking_engine.core import config
from booking_engine.core.enums import BookingStatus, ReminderKind, ReminderStatus
from booking_engine.core.errors import NotFound
from booking_engine.models.booking import Booking
from booking_engine.models.reminder import ReminderSchedule

logger = logging.getLogger(__name__)

REMINDER_OFFSETS = {
    ReminderKind.DAY_BEFORE.value: timedelta(hours=24),
    ReminderKind.TWO_HOURS_BEFORE.value: timedelta(hours=2),
}

BOOKING_SENT_FLAGS = {
    ReminderKind.DAY_BEFORE.value: 'reminder_24h_sent',
    ReminderKind.TWO_HOURS_BEFORE.value: 'reminder_2h_sent',
}


class ReminderScheduler:
    def __init__(
        self,
        db: Session,
        max_attempts: int = config.REMINDER_MAX_ATTEMPTS,
        retry_minutes: int = config.REMINDER_RETRY_MINUTES,
    ) -> None:
        self.db = db
        self.max_attempts = max_attempts
        self.retry_minutes = retry_minutes

    def schedule_for(self, booking: Booking, now: datetime) -> list[ReminderSchedule]:
        """Add the reminder rows for a booking; runs inside the caller's transaction."""
        existing_kinds = {
            kind for (kind,) in self.db.query(ReminderSchedule.kind).filter(
                ReminderSchedule.booking_id == booking.id,
            ).all()
        }

        created: list[ReminderSchedule] = []
        for kind, offset in REMINDER_OFFSETS.items():
            scheduled_for = booking.start_time - offset
            if scheduled_for <= now:
                logger.debug('Skipping %s reminder for booking %s: time already passed', kind, booking.id)
                continue
            if kind in existing_kinds:
                continue

            reminder = ReminderSchedule(
                booking_id=booking.id,
                kind=kind,
                scheduled_for=scheduled_for,
                status=ReminderStatus.PENDING.value,
                attempts=0,
            )
            self.db.add(reminder)
            created.append(reminder)

        return created

    def due_reminders(self, now: datetime, limit: int = config.REMINDER_BATCH_SIZE) -> list[ReminderSchedule]:
        return self.db.query(ReminderSchedule).join(
            Booking, Booking.id == ReminderSchedule.booking_id,
        ).filter(
            ReminderSchedule.status == ReminderStatus.PENDING.value,
            ReminderSchedule.scheduled_for <= now,
            or_(ReminderSchedule.next_attempt_at.is_(None), ReminderSchedule.next_attempt_at <= now),
            Booking.status == BookingStatus.CONFIRMED.value,
        ).order_by(ReminderSchedule.scheduled_for.asc()).limit(limit).all()

    def mark_sent(self, reminder_id: str, now: datetime) -> bool:
        """Flip a pending reminder to sent. Returns False when it was not pending (already sent or retired)."""
        updated = self.db.query(ReminderSchedule).filter(
            ReminderSchedule.id == reminder_id,
            ReminderSchedule.status == ReminderStatus.PENDING.value,
        ).update(
            {
                'status': ReminderStatus.SENT.value,
                'sent_at': now,
                'attempts': ReminderSchedule.attempts + 1,
                'last_error': None,
            },
            synchronize_session=False,
        )
        if not updated:
            self.db.rollback()
            return False

        booking_id, kind = self.db.query(ReminderSchedule.booking_id, ReminderSchedule.kind).filter(
            ReminderSchedule.id == reminder_id,
        ).one()
        self.db.query(Booking).filter(Booking.id == booking_id).update(
            {BOOKING_SENT_FLAGS[kind]: True},
            synchronize_session=False,
        )
        self.db.commit()
        return True

    def record_failure(self, reminder_id: str, error: str, now: datetime) -> ReminderSchedule:
        reminder = self.db.get(ReminderSchedule, reminder_id)
        if reminder is None:
            raise NotFound(f'Reminder {reminder_id} not found.')
        if reminder.status != ReminderStatus.PENDING.value:
            return reminder

        attempts = reminder.attempts + 1
        values = {
            'attempts': attempts,
            'last_error': error[:500],
            'next_attempt_at': now + timedelta(minutes=self.retry_minutes * attempts),
        }
        if attempts >= self.max_attempts:
            values['status'] = ReminderStatus.FAILED.value
            logger.warning('Reminder %s gave up after %s attempts', reminder_id, attempts)

        self.db.query(ReminderSchedule).filter(
            ReminderSchedule.id == reminder_id,
            ReminderSchedule.status == ReminderStatus.PENDING.value,
        ).update(values, synchronize_session=False)
        self.db.commit()
        self.db.refresh(reminder)
        return reminder

    def cancel_for_booking(self, booking_id: str) -> int:
        """Retire the pending reminders of a booking; runs inside the caller's transaction."""
        return self.db.query(ReminderSchedule).filter(
            ReminderSchedule.booking_id == booking_id,
            ReminderSchedule.status == ReminderStatus.PENDING.value,
        ).update({'status': ReminderStatus.CANCELLED.value}, synchronize_session=False)

    def for_booking(self, booking_id: str) -> list[ReminderSchedule]:
        return self.db.query(ReminderSchedule).filter(
            ReminderSchedule.booking_id == booking_id,
        ).order_by(ReminderSchedule.scheduled_for.asc()).all()
