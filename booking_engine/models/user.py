"""User model definitions."""

from sqlalchemy import Column, String

from booking_engine.database import Base, new_id


class User(Base):
    """A patient (or staff member) who can hold bookings."""
    __tablename__ = "users"

    id = Column(String(32), primary_key=True, default=new_id)
    email = Column(String, unique=True, index=True, nullable=False)
    full_name = Column(String)
    phone = Column(String)
    role = Column(String, default="patient")  # patient/staff
