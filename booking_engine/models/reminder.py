"""Reminder schedule rows consumed by the reminder dispatcher."""

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint

from booking_engine.core.enums import ReminderStatus
from booking_engine.database import Base, new_id


class ReminderSchedule(Base):
    __tablename__ = "reminder_schedules"
    __table_args__ = (
        UniqueConstraint("booking_id", "kind", name="uq_reminder_booking_kind"),
        Index("idx_reminder_status_due", "status", "scheduled_for"),
    )

    id = Column(String(32), primary_key=True, default=new_id)
    booking_id = Column(String(32), ForeignKey("bookings.id"), nullable=False, index=True)
    kind = Column(String(8), nullable=False)
    scheduled_for = Column(DateTime, nullable=False)
    status = Column(String(16), nullable=False, default=ReminderStatus.PENDING.value)

    # Retry state lives on the row so a restart does not lose it.
    attempts = Column(Integer, nullable=False, default=0)
    next_attempt_at = Column(DateTime)
    last_error = Column(Text)

    sent_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=datetime.now)
