"""
Booking engine error taxonomy.

State-changing operations raise these and leave the booking untouched; the
routes turn them into HTTP responses with ``to_http_exception``.
"""

from typing import Any

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class BookingEngineError(Exception):
    """Base class for all booking engine failures."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, code: str | None = None, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                'message': self.message,
                'code': self.code,
                'details': self.details,
            },
        )


class NotFound(BookingEngineError):
    """Provider, service, user, booking or reminder does not exist."""

    status_code = status.HTTP_404_NOT_FOUND


class SlotUnavailable(BookingEngineError):
    """The slot is taken, locked by someone else, or the creation race was lost."""

    status_code = status.HTTP_409_CONFLICT


class InvalidTransition(BookingEngineError):
    """The booking's current state does not permit the requested transition."""

    status_code = status.HTTP_409_CONFLICT


class PolicyViolation(BookingEngineError):
    status_code = HTTP_422_UNPROCESSABLE


class PaymentRequired(BookingEngineError):
    status_code = status.HTTP_402_PAYMENT_REQUIRED


class UpstreamFailure(BookingEngineError):
    """A payment or notification collaborator failed."""

    status_code = status.HTTP_502_BAD_GATEWAY
