from fastapi import APIRouter, Depends
from pydantic import BaseModel, field_validator

from booking_engine.routes.booking_routes import BookingResponse, get_state_machine, run_transition
from booking_engine.services.booking_state import BookingStateMachine

router = APIRouter(tags=['payments'])


class PaymentResultRequest(BaseModel):
    intent_id: str
    success: bool

    @field_validator('intent_id')
    @classmethod
    def validate_intent_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Payment intent id is required.')
        return normalized


@router.post('/results', response_model=BookingResponse)
def record_payment_result(data: PaymentResultRequest, machine: BookingStateMachine = Depends(get_state_machine)):
    """Callback for the payment gateway (or staff) once a deposit intent settles."""
    return run_transition(machine, machine.on_payment_result, data.intent_id, data.success)
