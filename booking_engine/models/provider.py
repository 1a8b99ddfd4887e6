"""Provider and operating-hours model definitions."""

from sqlalchemy import Boolean, Column, ForeignKey, Integer, Numeric, String, Time, UniqueConstraint
from sqlalchemy.orm import relationship

from booking_engine.core import config
from booking_engine.database import Base, new_id
from booking_engine.scheduling.slots import DayHours, WeeklyHours, weekly_hours_from_days


class Provider(Base):
    """A clinic or practitioner that offers bookable services."""
    __tablename__ = "providers"

    id = Column(String(32), primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    email = Column(String)
    currency = Column(String(3), default=config.DEFAULT_CURRENCY)

    # Fee policy defaults, snapshotted onto each booking.
    cancellation_hours = Column(Integer, nullable=False, default=config.DEFAULT_CANCELLATION_HOURS)
    reschedule_hours = Column(Integer, nullable=False, default=config.DEFAULT_RESCHEDULE_HOURS)
    no_show_fee = Column(Numeric(10, 2), nullable=False, default=0)
    late_cancellation_fee = Column(Numeric(10, 2), nullable=False, default=0)

    hours = relationship("ProviderHours", cascade="all, delete-orphan", lazy="selectin")

    def weekly_hours(self) -> WeeklyHours:
        return weekly_hours_from_days({
            row.weekday: DayHours(open_time=row.open_time, close_time=row.close_time, is_open=bool(row.is_open))
            for row in self.hours
        })


class ProviderHours(Base):
    """Opening hours for one weekday (0 = Monday)."""
    __tablename__ = "provider_hours"
    __table_args__ = (
        UniqueConstraint("provider_id", "weekday", name="uq_provider_hours_weekday"),
    )

    id = Column(Integer, primary_key=True)
    provider_id = Column(String(32), ForeignKey("providers.id"), nullable=False, index=True)
    weekday = Column(Integer, nullable=False)
    open_time = Column(Time, nullable=False)
    close_time = Column(Time, nullable=False)
    is_open = Column(Boolean, nullable=False, default=True)
