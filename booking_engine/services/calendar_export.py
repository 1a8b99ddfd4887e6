"""iCalendar (RFC 5545) export for a single booking."""

from datetime import datetime, timezone

from booking_engine.core.enums import BookingStatus

PRODID = '-//CareConnect//Booking Engine//EN'
UID_DOMAIN = 'careconnect.booking'

EVENT_STATUS = {
    BookingStatus.PENDING.value: 'TENTATIVE',
    BookingStatus.CONFIRMED.value: 'CONFIRMED',
    BookingStatus.COMPLETED.value: 'CONFIRMED',
    BookingStatus.NO_SHOW.value: 'CONFIRMED',
    BookingStatus.CANCELLED.value: 'CANCELLED',
    BookingStatus.RESCHEDULED.value: 'CANCELLED',
}


def escape_text(value: str) -> str:
    return (
        value.replace('\\', '\\\\')
        .replace(';', '\\;')
        .replace(',', '\\,')
        .replace('\r\n', '\\n')
        .replace('\n', '\\n')
    )


def fold_line(line: str, limit: int = 75) -> str:
    """Split a content line into 75-octet chunks joined by CRLF + space."""
    encoded = line.encode('utf-8')
    if len(encoded) <= limit:
        return line

    chunks: list[str] = []
    current = ''
    current_size = 0
    for char in line:
        size = len(char.encode('utf-8'))
        # Continuation lines lose one octet to the leading space.
        budget = limit if not chunks else limit - 1
        if current_size + size > budget:
            chunks.append(current)
            current = ''
            current_size = 0
        current += char
        current_size += size
    chunks.append(current)
    return '\r\n '.join(chunks)


def _format_local(value: datetime) -> str:
    return value.strftime('%Y%m%dT%H%M%S')


def _format_utc(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime('%Y%m%dT%H%M%SZ')


def build_ics(booking, provider, stamp: datetime | None = None) -> str:
    stamp = stamp or datetime.now(timezone.utc)
    description = (
        f'Appointment for {booking.service_name}\n'
        f'Booking Reference: {booking.booking_reference}\n'
        f'Provider: {provider.name}\n'
        f'Amount: {booking.currency} {booking.total_cost}'
    )
    if booking.preparation_instructions:
        description += f'\nPreparation: {booking.preparation_instructions}'

    lines = [
        'BEGIN:VCALENDAR',
        'VERSION:2.0',
        f'PRODID:{PRODID}',
        'CALSCALE:GREGORIAN',
        'METHOD:PUBLISH',
        'BEGIN:VEVENT',
        f'UID:{booking.id}@{UID_DOMAIN}',
        f'DTSTAMP:{_format_utc(stamp)}',
        # Booking times are wall-clock times at the provider, so they stay floating.
        f'DTSTART:{_format_local(booking.start_time)}',
        f'DTEND:{_format_local(booking.end_time)}',
        f'SUMMARY:{escape_text(f"{booking.service_name} - {provider.name}")}',
        f'DESCRIPTION:{escape_text(description)}',
        f'STATUS:{EVENT_STATUS.get(booking.status, "TENTATIVE")}',
        'SEQUENCE:0',
        'TRANSP:OPAQUE',
        'END:VEVENT',
        'END:VCALENDAR',
    ]
    return '\r\n'.join(fold_line(line) for line in lines) + '\r\n'
