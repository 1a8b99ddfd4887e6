"""Short-lived checkout locks on a slot identity."""

from datetime import datetime

from sqlalchemy import Column, DateTime, String, UniqueConstraint

from booking_engine.database import Base, new_id


class SlotLock(Base):
    """One row per locked (provider, service, start); expired rows are ignored until purged."""
    __tablename__ = "slot_locks"
    __table_args__ = (
        UniqueConstraint("provider_id", "service_id", "start_time", name="uq_slot_locks_slot"),
    )

    id = Column(String(32), primary_key=True, default=new_id)
    provider_id = Column(String(32), nullable=False)
    service_id = Column(String(32), nullable=False)
    start_time = Column(DateTime, nullable=False)
    holder_id = Column(String, nullable=False)
    locked_until = Column(DateTime, nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.now)

    def is_active(self, now: datetime) -> bool:
        return now <= self.locked_until
