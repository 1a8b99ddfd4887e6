"""
Boundaries to the payment gateway and the notification channels.

The engine only talks to these protocols. The default implementations keep a
development deployment usable without any gateway or mail provider: intents
are issued locally and settled through ``POST /payments/results``, and
notifications are written to the log.
"""

import logging
import uuid
from decimal import Decimal
from typing import Protocol

logger = logging.getLogger(__name__)


class PaymentCollaborator(Protocol):
    def open_deposit_intent(self, amount: Decimal, currency: str, booking_reference: str) -> str:
        ...

    def initiate_refund(self, intent_id: str, amount: Decimal) -> None:
        ...


class NotificationCollaborator(Protocol):
    def send_confirmation(self, booking, recipient) -> None:
        ...

    def send_reminder(self, booking, recipient, kind: str) -> None:
        ...


class ManualPaymentCollaborator:
    """Issues local intent ids; the payment result is posted back by staff or a gateway webhook."""

    def open_deposit_intent(self, amount: Decimal, currency: str, booking_reference: str) -> str:
        intent_id = f"pi_manual_{uuid.uuid4().hex[:16]}"
        logger.info(
            "Opened deposit intent %s for %s %s (booking %s)",
            intent_id, amount, currency, booking_reference,
        )
        return intent_id

    def initiate_refund(self, intent_id: str, amount: Decimal) -> None:
        logger.info("Refund of %s requested for intent %s", amount, intent_id)


class LoggingNotificationSender:
    """Writes notifications to the log instead of a mail or SMS provider."""

    def send_confirmation(self, booking, recipient) -> None:
        logger.info(
            "Confirmation for booking %s to %s: %s on %s",
            booking.booking_reference,
            recipient.email,
            booking.service_name,
            booking.start_time.isoformat(),
        )

    def send_reminder(self, booking, recipient, kind: str) -> None:
        logger.info(
            "%s reminder for booking %s to %s: %s on %s",
            kind,
            booking.booking_reference,
            recipient.email,
            booking.service_name,
            booking.start_time.isoformat(),
        )
