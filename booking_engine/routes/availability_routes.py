from datetime import date, datetime, timedelta
from typing import Callable

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ValidationInfo, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_engine.core.errors import BookingEngineError, NotFound, SlotUnavailable
from booking_engine.dependencies import database_unavailable, ensure_database_ready, get_clock, get_db
from booking_engine.scheduling.slots import is_slot_start, to_wall_clock
from booking_engine.services.availability_service import list_available_slots, load_provider_and_service
from booking_engine.services.slot_locks import SlotIdentity, SlotLockService

router = APIRouter(tags=['availability'])


def normalize_identifier(value: str, field_name: str) -> str:
    normalized = value.strip()
    if not normalized:
        raise ValueError(f'{field_name} is required.')
    return normalized


class SlotResponse(BaseModel):
    provider_id: str
    service_id: str
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    available: bool


class SlotLockRequest(BaseModel):
    provider_id: str
    service_id: str
    start_time: datetime
    holder_id: str

    @field_validator('provider_id', 'service_id', 'holder_id')
    @classmethod
    def validate_identifier(cls, value: str, info: ValidationInfo) -> str:
        return normalize_identifier(value, info.field_name)

    @field_validator('start_time')
    @classmethod
    def truncate_start_time(cls, value: datetime) -> datetime:
        return to_wall_clock(value).replace(second=0, microsecond=0)


class SlotLockResponse(BaseModel):
    provider_id: str
    service_id: str
    start_time: datetime
    holder_id: str
    locked_until: datetime

    class Config:
        from_attributes = True


@router.get('/slots', response_model=list[SlotResponse])
def list_slots(
    provider_id: str = Query(...),
    service_id: str = Query(...),
    start_date: date = Query(...),
    end_date: date = Query(...),
    holder_id: str | None = Query(default=None),
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    ensure_database_ready()

    try:
        slots = list_available_slots(
            db,
            provider_id.strip(),
            service_id.strip(),
            start_date,
            end_date,
            now=clock(),
            holder_id=holder_id.strip() if holder_id else None,
        )
        return [
            SlotResponse(
                provider_id=slot.provider_id,
                service_id=slot.service_id,
                start_time=slot.start,
                end_time=slot.end,
                duration_minutes=int((slot.end - slot.start).total_seconds() // 60),
                available=slot.available,
            )
            for slot in slots
        ]
    except BookingEngineError as exc:
        raise exc.to_http_exception() from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/locks', response_model=SlotLockResponse, status_code=status.HTTP_201_CREATED)
def acquire_slot_lock(
    data: SlotLockRequest,
    db: Session = Depends(get_db),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    ensure_database_ready()

    try:
        provider, service = load_provider_and_service(db, data.provider_id, data.service_id)
        if not is_slot_start(data.start_time, provider.weekly_hours(), service.duration_minutes):
            raise SlotUnavailable(
                f'{data.start_time.isoformat()} is not a bookable slot for this service.',
                details={'start_time': data.start_time.isoformat()},
            )
        if data.start_time <= clock():
            raise SlotUnavailable('This time has already passed.')

        locks = SlotLockService(db, clock=clock)
        slot = SlotIdentity(
            provider.id,
            service.id,
            data.start_time,
            data.start_time + timedelta(minutes=service.duration_minutes),
        )
        if not locks.acquire(slot, data.holder_id):
            raise SlotUnavailable(
                'This time is booked or being held by another checkout.',
                details={'start_time': data.start_time.isoformat()},
            )

        return locks.active_lock(slot)
    except BookingEngineError as exc:
        raise exc.to_http_exception() from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.delete('/locks', status_code=status.HTTP_204_NO_CONTENT)
def release_slot_lock(
    provider_id: str = Query(...),
    service_id: str = Query(...),
    start_time: datetime = Query(...),
    holder_id: str = Query(...),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        start_time = to_wall_clock(start_time).replace(second=0, microsecond=0)
        slot = SlotIdentity(provider_id.strip(), service_id.strip(), start_time)
        if not SlotLockService(db).release(slot, holder_id.strip()):
            raise NotFound('No lock is held on this slot by this holder.')
    except BookingEngineError as exc:
        raise exc.to_http_exception() from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc
