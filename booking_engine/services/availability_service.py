from datetime import date, datetime, time, timedelta

from sqlalchemy.orm import Session

from booking_engine.core import config
from booking_engine.core.enums import RELEASED_STATUSES
from booking_engine.core.errors import NotFound, PolicyViolation
from booking_engine.models.booking import Booking
from booking_engine.models.provider import Provider
from booking_engine.models.service import Service
from booking_engine.scheduling.availability import filter_available, mark_locked
from booking_engine.scheduling.slots import TimeSlot, generate_slots
from booking_engine.services.slot_locks import SlotLockService


def load_provider_and_service(db: Session, provider_id: str, service_id: str) -> tuple[Provider, Service]:
    provider = db.get(Provider, provider_id)
    if provider is None:
        raise NotFound(f'Provider {provider_id} not found.', details={'provider_id': provider_id})

    service = db.get(Service, service_id)
    if service is None or service.provider_id != provider.id:
        raise NotFound(
            f'Service {service_id} is not offered by provider {provider_id}.',
            details={'provider_id': provider_id, 'service_id': service_id},
        )

    return provider, service


def occupying_bookings(
    db: Session,
    provider_id: str,
    service_id: str,
    range_start: datetime,
    range_end: datetime,
) -> list[Booking]:
    return db.query(Booking).filter(
        Booking.provider_id == provider_id,
        Booking.service_id == service_id,
        Booking.status.notin_(sorted(RELEASED_STATUSES)),
        Booking.start_time < range_end,
        Booking.end_time > range_start,
    ).order_by(Booking.start_time.asc()).all()


def list_available_slots(
    db: Session,
    provider_id: str,
    service_id: str,
    start_date: date,
    end_date: date,
    now: datetime,
    holder_id: str | None = None,
) -> list[TimeSlot]:
    """Open slots for one provider/service in the inclusive date range.

    Slots that start in the past or overlap a live booking are dropped. Slots
    locked by someone other than ``holder_id`` are returned with
    ``available=False``.
    """
    if end_date < start_date:
        raise PolicyViolation('end_date must not be before start_date.')
    if (end_date - start_date).days + 1 > config.MAX_SLOT_RANGE_DAYS:
        raise PolicyViolation(f'Slots can be requested for at most {config.MAX_SLOT_RANGE_DAYS} days at a time.')

    provider, service = load_provider_and_service(db, provider_id, service_id)
    if not service.is_active:
        return []

    candidates = generate_slots(
        provider.id,
        service.id,
        start_date,
        end_date,
        provider.weekly_hours(),
        service.duration_minutes,
    )
    candidates = [slot for slot in candidates if slot.start > now]

    range_start = datetime.combine(start_date, time.min)
    range_end = datetime.combine(end_date + timedelta(days=1), time.min)
    bookings = occupying_bookings(db, provider.id, service.id, range_start, range_end)
    available = filter_available(candidates, bookings)

    locked_starts = SlotLockService(db, clock=lambda: now).locked_starts(
        provider.id,
        service.id,
        range_start,
        range_end,
        exclude_holder=holder_id,
    )
    return mark_locked(available, locked_starts)
