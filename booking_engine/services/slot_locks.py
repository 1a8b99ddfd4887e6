"""
Checkout locks on a slot identity.

Acquisition relies on the unique (provider, service, start) constraint of
``slot_locks``: an expired row is deleted conditionally and a fresh row is
inserted in the same transaction, so of two racing holders only one insert
can succeed. A lock is advisory for checkout; booking creation re-validates
the slot on its own.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from booking_engine.core import config
from booking_engine.core.enums import RELEASED_STATUSES
from booking_engine.models.booking import Booking
from booking_engine.models.service import Service
from booking_engine.models.slot_lock import SlotLock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SlotIdentity:
    provider_id: str
    service_id: str
    start: datetime
    end: datetime | None = None  # defaults to start + the service duration


def _matches(slot: SlotIdentity):
    return (
        SlotLock.provider_id == slot.provider_id,
        SlotLock.service_id == slot.service_id,
        SlotLock.start_time == slot.start,
    )


class SlotLockService:
    def __init__(
        self,
        db: Session,
        clock: Callable[[], datetime] = datetime.now,
        ttl_minutes: int = config.SLOT_LOCK_TTL_MINUTES,
    ) -> None:
        self.db = db
        self.clock = clock
        self.ttl = timedelta(minutes=ttl_minutes)

    def acquire(self, slot: SlotIdentity, holder_id: str) -> bool:
        now = self.clock()

        try:
            self.db.query(SlotLock).filter(
                *_matches(slot),
                SlotLock.locked_until < now,
            ).delete(synchronize_session=False)

            if self._is_booked(slot):
                self.db.rollback()
                logger.debug('Lock refused for %s: slot already booked', slot)
                return False

            self.db.add(
                SlotLock(
                    provider_id=slot.provider_id,
                    service_id=slot.service_id,
                    start_time=slot.start,
                    holder_id=holder_id,
                    locked_until=now + self.ttl,
                )
            )
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.debug('Lock refused for %s: active lock exists', slot)
            return False

        logger.info('Slot %s locked by %s until %s', slot, holder_id, now + self.ttl)
        return True

    def release(self, slot: SlotIdentity, holder_id: str | None = None) -> bool:
        query = self.db.query(SlotLock).filter(*_matches(slot))
        if holder_id is not None:
            query = query.filter(SlotLock.holder_id == holder_id)

        deleted = query.delete(synchronize_session=False)
        self.db.commit()
        return deleted > 0

    def consume(self, slot: SlotIdentity, holder_id: str) -> None:
        """Drop the holder's lock as part of the caller's booking transaction (no commit)."""
        self.db.query(SlotLock).filter(
            *_matches(slot),
            SlotLock.holder_id == holder_id,
        ).delete(synchronize_session=False)

    def active_lock(self, slot: SlotIdentity, now: datetime | None = None) -> SlotLock | None:
        now = now or self.clock()
        return self.db.query(SlotLock).filter(
            *_matches(slot),
            SlotLock.locked_until >= now,
        ).first()

    def locked_starts(
        self,
        provider_id: str,
        service_id: str,
        range_start: datetime,
        range_end: datetime,
        exclude_holder: str | None = None,
    ) -> set[datetime]:
        now = self.clock()
        query = self.db.query(SlotLock.start_time).filter(
            SlotLock.provider_id == provider_id,
            SlotLock.service_id == service_id,
            SlotLock.start_time >= range_start,
            SlotLock.start_time < range_end,
            SlotLock.locked_until >= now,
        )
        if exclude_holder is not None:
            query = query.filter(SlotLock.holder_id != exclude_holder)
        return {start_time for (start_time,) in query.all()}

    def purge_expired(self, now: datetime | None = None) -> int:
        now = now or self.clock()
        deleted = self.db.query(SlotLock).filter(
            SlotLock.locked_until < now,
        ).delete(synchronize_session=False)
        self.db.commit()
        if deleted:
            logger.info('Purged %s expired slot locks', deleted)
        return deleted

    def _slot_end(self, slot: SlotIdentity) -> datetime:
        if slot.end is not None:
            return slot.end
        duration = self.db.query(Service.duration_minutes).filter(Service.id == slot.service_id).scalar()
        return slot.start + timedelta(minutes=duration or 0)

    def _is_booked(self, slot: SlotIdentity) -> bool:
        # Half-open overlap, the same rule as intervals_overlap.
        return self.db.query(Booking.id).filter(
            Booking.provider_id == slot.provider_id,
            Booking.service_id == slot.service_id,
            Booking.status.notin_(sorted(RELEASED_STATUSES)),
            Booking.start_time < self._slot_end(slot),
            Booking.end_time > slot.start,
        ).first() is not None
