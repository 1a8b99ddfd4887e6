"""
Booking model definitions.

A booking snapshots the service and policy fields it depends on so later
edits to the provider or service never rewrite an existing booking. Rows are
never deleted; cancelled and rescheduled bookings stay for audit.
"""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, text

from booking_engine.core.enums import BookingStatus, PaymentStatus
from booking_engine.database import Base, new_id
from booking_engine.scheduling.policy import PolicySnapshot

_ACTIVE_SLOT_PREDICATE = text("status NOT IN ('cancelled', 'rescheduled')")


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        # At most one live booking per (provider, service, start).
        Index(
            "uq_bookings_active_slot",
            "provider_id",
            "service_id",
            "start_time",
            unique=True,
            sqlite_where=_ACTIVE_SLOT_PREDICATE,
            postgresql_where=_ACTIVE_SLOT_PREDICATE,
        ),
        Index("idx_bookings_provider_start", "provider_id", "start_time"),
    )

    id = Column(String(32), primary_key=True, default=new_id)
    user_id = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    provider_id = Column(String(32), ForeignKey("providers.id"), nullable=False)
    service_id = Column(String(32), ForeignKey("services.id"), nullable=False)

    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)

    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value, index=True)
    booking_reference = Column(String(16), nullable=False, unique=True)

    # Service snapshot
    service_name = Column(String, nullable=False)
    preparation_instructions = Column(Text)
    patient_notes = Column(Text)

    # Policy snapshot
    cancellation_hours = Column(Integer, nullable=False)
    reschedule_hours = Column(Integer, nullable=False)
    no_show_fee = Column(Numeric(10, 2), nullable=False, default=0)
    late_cancellation_fee = Column(Numeric(10, 2), nullable=False, default=0)
    deposit_required = Column(Boolean, nullable=False, default=False)
    deposit_percentage = Column(Numeric(5, 2), nullable=False, default=0)

    # Money
    total_cost = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    deposit_amount = Column(Numeric(10, 2), nullable=False, default=0)
    deposit_paid = Column(Numeric(10, 2), nullable=False, default=0)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    payment_intent_id = Column(String, index=True)

    # Communications
    confirmation_sent = Column(Boolean, nullable=False, default=False)
    reminder_24h_sent = Column(Boolean, nullable=False, default=False)
    reminder_2h_sent = Column(Boolean, nullable=False, default=False)

    # Outcome
    cancellation_reason = Column(Text)
    cancelled_by = Column(String)
    cancelled_at = Column(DateTime)
    cancellation_fee = Column(Numeric(10, 2))
    refund_amount = Column(Numeric(10, 2))
    fee_charged = Column(Numeric(10, 2))
    confirmed_at = Column(DateTime)
    completed_at = Column(DateTime)

    rescheduled_from_id = Column(String(32), ForeignKey("bookings.id"))

    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    @property
    def policy(self) -> PolicySnapshot:
        return PolicySnapshot(
            cancellation_hours=self.cancellation_hours,
            reschedule_hours=self.reschedule_hours,
            no_show_fee=self.no_show_fee,
            late_cancellation_fee=self.late_cancellation_fee,
            deposit_required=bool(self.deposit_required),
            deposit_percentage=self.deposit_percentage,
        )

    def __repr__(self) -> str:
        return (
            f"<Booking {self.id} {self.booking_reference}: provider={self.provider_id}, "
            f"service={self.service_id}, start={self.start_time}, status={self.status}>"
        )
