"""
Periodic driver for reminders and slot-lock cleanup.

Every minute (REMINDER_POLL_SECONDS) send the reminders that are due for
confirmed bookings; every LOCK_PURGE_SECONDS drop expired slot locks. Each
run opens its own session. Delivery is at-least-once: a reminder is sent,
then marked, and marking an already-sent reminder is a no-op.
"""
import logging
from datetime import datetime
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.orm import Session

from booking_engine.core import config
from booking_engine.models.booking import Booking
from booking_engine.models.user import User
from booking_engine.services.collaborators import NotificationCollaborator
from booking_engine.services.reminders import ReminderScheduler
from booking_engine.services.slot_locks import SlotLockService

logger = logging.getLogger(__name__)

REMINDER_JOB_ID = "booking_reminders"
LOCK_PURGE_JOB_ID = "slot_lock_purge"


class ReminderDispatcher:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        notifier: NotificationCollaborator,
        clock: Callable[[], datetime] = datetime.now,
        batch_size: int = config.REMINDER_BATCH_SIZE,
    ) -> None:
        self.session_factory = session_factory
        self.notifier = notifier
        self.clock = clock
        self.batch_size = batch_size
        self._scheduler: BackgroundScheduler | None = None

    def tick(self, now: datetime | None = None) -> int:
        """Send every due reminder once. Returns how many were sent."""
        now = now or self.clock()
        db = self.session_factory()
        try:
            reminders = ReminderScheduler(db)
            due = [(r.id, r.booking_id, r.kind) for r in reminders.due_reminders(now, limit=self.batch_size)]
            if not due:
                return 0

            sent = 0
            for reminder_id, booking_id, kind in due:
                booking = db.get(Booking, booking_id)
                recipient = db.get(User, booking.user_id)
                try:
                    self.notifier.send_reminder(booking, recipient, kind)
                except Exception as e:
                    logger.warning("Reminder %s (%s) for booking %s failed: %s", reminder_id, kind, booking_id, e)
                    reminders.record_failure(reminder_id, str(e), now)
                    continue

                if reminders.mark_sent(reminder_id, now):
                    sent += 1

            logger.info("Reminder tick: %s due, %s sent", len(due), sent)
            return sent
        finally:
            db.close()

    def purge_locks(self, now: datetime | None = None) -> int:
        db = self.session_factory()
        try:
            return SlotLockService(db, clock=self.clock).purge_expired(now)
        finally:
            db.close()

    def _run_tick(self) -> None:
        try:
            self.tick()
        except Exception:
            logger.exception("Reminder tick failed")

    def _run_purge(self) -> None:
        try:
            self.purge_locks()
        except Exception:
            logger.exception("Slot lock purge failed")

    def start(
        self,
        poll_seconds: int = config.REMINDER_POLL_SECONDS,
        purge_seconds: int = config.LOCK_PURGE_SECONDS,
    ) -> None:
        if self._scheduler is not None:
            return

        scheduler = BackgroundScheduler()
        scheduler.add_job(self._run_tick, "interval", seconds=poll_seconds, id=REMINDER_JOB_ID, max_instances=1)
        scheduler.add_job(self._run_purge, "interval", seconds=purge_seconds, id=LOCK_PURGE_JOB_ID, max_instances=1)
        scheduler.start()
        self._scheduler = scheduler
        logger.info("Reminder dispatcher started (poll=%ss, lock purge=%ss)", poll_seconds, purge_seconds)

    def shutdown(self) -> None:
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Reminder dispatcher stopped")

    @property
    def running(self) -> bool:
        return self._scheduler is not None
