"""Bookable service definitions."""

from sqlalchemy import Boolean, Column, ForeignKey, Integer, Numeric, String, Text

from booking_engine.core import config
from booking_engine.database import Base, new_id


class Service(Base):
    """A service a provider offers, e.g. a 30 minute consultation."""
    __tablename__ = "services"

    id = Column(String(32), primary_key=True, default=new_id)
    provider_id = Column(String(32), ForeignKey("providers.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    currency = Column(String(3), default=config.DEFAULT_CURRENCY)
    deposit_required = Column(Boolean, nullable=False, default=False)
    deposit_percentage = Column(Numeric(5, 2), nullable=False, default=0)
    preparation_instructions = Column(Text)
    version = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=True)
