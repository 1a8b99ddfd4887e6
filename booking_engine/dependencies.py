from datetime import datetime
from typing import Callable

from fastapi import HTTPException, Request, status
from sqlalchemy.exc import SQLAlchemyError

from booking_engine.database import SessionLocal, ensure_booking_schema
from booking_engine.services.collaborators import (
    LoggingNotificationSender,
    ManualPaymentCollaborator,
    NotificationCollaborator,
    PaymentCollaborator,
)

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and Postgres credentials.'


def database_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def ensure_database_ready() -> None:
    try:
        ensure_booking_schema()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_clock() -> Callable[[], datetime]:
    return datetime.now


def get_payment_collaborator(request: Request) -> PaymentCollaborator:
    payments = getattr(request.app.state, 'payments', None)
    if payments is None:
        payments = ManualPaymentCollaborator()
        request.app.state.payments = payments
    return payments


def get_notifier(request: Request) -> NotificationCollaborator:
    notifier = getattr(request.app.state, 'notifier', None)
    if notifier is None:
        notifier = LoggingNotificationSender()
        request.app.state.notifier = notifier
    return notifier

