from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Callable

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import Response
from pydantic import BaseModel, ValidationInfo, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from booking_engine.core.errors import BookingEngineError, NotFound
from booking_engine.dependencies import (
    database_unavailable,
    ensure_database_ready,
    get_clock,
    get_db,
    get_notifier,
    get_payment_collaborator,
)
from booking_engine.models.provider import Provider
from booking_engine.scheduling.slots import to_wall_clock
from booking_engine.services.booking_state import BookingRequest, BookingStateMachine
from booking_engine.services.calendar_export import build_ics
from booking_engine.services.collaborators import NotificationCollaborator, PaymentCollaborator

router = APIRouter(tags=['bookings'])

MAX_PATIENT_NOTES_LENGTH = 600
MAX_CANCELLATION_REASON_LENGTH = 500


def normalize_optional_text(value: str | None, max_length: int, field_label: str) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > max_length:
        raise ValueError(f'{field_label} must be {max_length} characters or fewer.')

    return normalized


class CreateBookingRequest(BaseModel):
    user_id: str
    provider_id: str
    service_id: str
    start_time: datetime
    holder_id: str | None = None
    patient_notes: str | None = None

    @field_validator('user_id', 'provider_id', 'service_id')
    @classmethod
    def validate_identifier(cls, value: str, info: ValidationInfo) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError(f'{info.field_name} is required.')
        return normalized

    @field_validator('holder_id')
    @classmethod
    def validate_holder_id(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    @field_validator('patient_notes')
    @classmethod
    def validate_patient_notes(cls, value: str | None) -> str | None:
        return normalize_optional_text(value, MAX_PATIENT_NOTES_LENGTH, 'Notes')

    @field_validator('start_time')
    @classmethod
    def validate_start_time(cls, value: datetime) -> datetime:
        return to_wall_clock(value)


class CancelBookingRequest(BaseModel):
    reason: str | None = None
    actor: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return normalize_optional_text(value, MAX_CANCELLATION_REASON_LENGTH, 'Cancellation reason')


class CompleteBookingRequest(BaseModel):
    attended: bool = True


class RescheduleBookingRequest(BaseModel):
    new_start_time: datetime
    actor: str | None = None

    @field_validator('new_start_time')
    @classmethod
    def validate_new_start_time(cls, value: datetime) -> datetime:
        return to_wall_clock(value)


class BookingResponse(BaseModel):
    id: str
    booking_reference: str
    user_id: str
    provider_id: str
    service_id: str
    service_name: str
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    status: str
    total_cost: Decimal
    currency: str
    deposit_required: bool
    deposit_amount: Decimal
    deposit_paid: Decimal
    payment_status: str
    payment_intent_id: str | None = None
    confirmation_sent: bool
    cancellation_fee: Decimal | None = None
    refund_amount: Decimal | None = None
    fee_charged: Decimal | None = None
    cancelled_at: datetime | None = None
    confirmed_at: datetime | None = None
    completed_at: datetime | None = None
    rescheduled_from_id: str | None = None
    preparation_instructions: str | None = None
    patient_notes: str | None = None

    class Config:
        from_attributes = True


def get_state_machine(
    db: Session = Depends(get_db),
    payments: PaymentCollaborator = Depends(get_payment_collaborator),
    notifier: NotificationCollaborator = Depends(get_notifier),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> BookingStateMachine:
    return BookingStateMachine(db, payments, notifier, clock=clock)


def run_transition(machine: BookingStateMachine, operation: Callable, *args, **kwargs):
    ensure_database_ready()

    try:
        return operation(*args, **kwargs)
    except BookingEngineError as exc:
        raise exc.to_http_exception() from exc
    except SQLAlchemyError as exc:
        machine.db.rollback()
        raise database_unavailable() from exc


@router.post('', response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(data: CreateBookingRequest, machine: BookingStateMachine = Depends(get_state_machine)):
    request = BookingRequest(
        user_id=data.user_id,
        provider_id=data.provider_id,
        service_id=data.service_id,
        start_time=data.start_time,
        holder_id=data.holder_id,
        patient_notes=data.patient_notes,
    )
    return run_transition(machine, machine.create, request)


@router.get('', response_model=list[BookingResponse])
def list_bookings(
    provider_id: str | None = None,
    service_id: str | None = None,
    user_id: str | None = None,
    booking_status: Annotated[str | None, Query(alias='status')] = None,
    date_from: date | None = None,
    date_to: date | None = None,
    machine: BookingStateMachine = Depends(get_state_machine),
):
    return run_transition(
        machine,
        machine.list_bookings,
        provider_id=provider_id.strip() if provider_id else None,
        service_id=service_id.strip() if service_id else None,
        user_id=user_id.strip() if user_id else None,
        status=booking_status.strip() if booking_status else None,
        date_from=date_from,
        date_to=date_to,
    )


@router.get('/{booking_id}', response_model=BookingResponse)
def get_booking(booking_id: str, machine: BookingStateMachine = Depends(get_state_machine)):
    return run_transition(machine, machine.get, booking_id)


@router.get('/{booking_id}/calendar.ics')
def export_booking_calendar(booking_id: str, machine: BookingStateMachine = Depends(get_state_machine)):
    booking = run_transition(machine, machine.get, booking_id)
    provider = machine.db.get(Provider, booking.provider_id)
    if provider is None:
        raise NotFound(f'Provider {booking.provider_id} not found.').to_http_exception()

    return Response(
        content=build_ics(booking, provider),
        media_type='text/calendar; charset=utf-8',
        headers={'Content-Disposition': f'attachment; filename="appointment-{booking.booking_reference}.ics"'},
    )


@router.post('/{booking_id}/confirm', response_model=BookingResponse)
def confirm_booking(booking_id: str, machine: BookingStateMachine = Depends(get_state_machine)):
    return run_transition(machine, machine.confirm, booking_id)


@router.post('/{booking_id}/cancel', response_model=BookingResponse)
def cancel_booking(
    booking_id: str,
    data: CancelBookingRequest,
    machine: BookingStateMachine = Depends(get_state_machine),
):
    return run_transition(machine, machine.cancel, booking_id, reason=data.reason, actor=data.actor)


@router.post('/{booking_id}/no-show', response_model=BookingResponse)
def mark_booking_no_show(booking_id: str, machine: BookingStateMachine = Depends(get_state_machine)):
    return run_transition(machine, machine.mark_no_show, booking_id)


@router.post('/{booking_id}/complete', response_model=BookingResponse)
def complete_booking(
    booking_id: str,
    data: CompleteBookingRequest,
    machine: BookingStateMachine = Depends(get_state_machine),
):
    return run_transition(machine, machine.complete, booking_id, attended=data.attended)


@router.post('/{booking_id}/reschedule', response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def reschedule_booking(
    booking_id: str,
    data: RescheduleBookingRequest,
    machine: BookingStateMachine = Depends(get_state_machine),
):
    return run_transition(machine, machine.reschedule, booking_id, data.new_start_time, actor=data.actor)
