import os
from datetime import date, datetime, time, timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')
os.environ.setdefault('SCHEDULER_ENABLED', 'false')

from booking_engine.database import Base  # noqa: E402
from booking_engine.models import booking, reminder, slot_lock  # noqa: E402,F401
from booking_engine.models.provider import Provider, ProviderHours  # noqa: E402
from booking_engine.models.service import Service  # noqa: E402
from booking_engine.models.user import User  # noqa: E402
from booking_engine.services.booking_state import BookingStateMachine  # noqa: E402

# 2030-01-07 is a Monday; the clinic is only open on Mondays.
MONDAY = date(2030, 1, 7)
NOW = datetime(2030, 1, 1, 8, 0)


def at(hour: int, minute: int = 0, day: date = MONDAY) -> datetime:
    return datetime.combine(day, time(hour, minute))


class FrozenClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakePayments:
    def __init__(self) -> None:
        self.intents: list[tuple[Decimal, str, str]] = []
        self.refunds: list[tuple[str, Decimal]] = []
        self.fail_open = False
        self.fail_refund = False

    def open_deposit_intent(self, amount, currency, booking_reference) -> str:
        if self.fail_open:
            raise ConnectionError('gateway down')
        self.intents.append((amount, currency, booking_reference))
        return f'pi_test_{len(self.intents)}'

    def initiate_refund(self, intent_id, amount) -> None:
        if self.fail_refund:
            raise ConnectionError('refund rejected')
        self.refunds.append((intent_id, amount))


class FakeNotifier:
    def __init__(self) -> None:
        self.confirmations: list[str] = []
        self.reminders: list[tuple[str, str]] = []
        self.fail_confirmation = False
        self.fail_reminders = False

    def send_confirmation(self, booking, recipient) -> None:
        if self.fail_confirmation:
            raise ConnectionError('smtp down')
        self.confirmations.append(booking.id)

    def send_reminder(self, booking, recipient, kind) -> None:
        if self.fail_reminders:
            raise ConnectionError('sms gateway down')
        self.reminders.append((booking.id, kind))


@pytest.fixture
def engine(tmp_path):
    # File-backed so that separate sessions (and threads) see the same data.
    engine = create_engine(
        f"sqlite:///{tmp_path / 'booking.db'}",
        connect_args={'check_same_thread': False, 'timeout': 15},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def clock():
    return FrozenClock(NOW)


@pytest.fixture
def payments():
    return FakePayments()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def clinic(db):
    provider = Provider(
        name='Riverside Clinic',
        email='desk@riverside.example',
        currency='USD',
        cancellation_hours=24,
        reschedule_hours=12,
        no_show_fee=Decimal('50.00'),
        late_cancellation_fee=Decimal('15.00'),
    )
    provider.hours.append(ProviderHours(weekday=0, open_time=time(9, 0), close_time=time(17, 0), is_open=True))
    db.add(provider)
    db.flush()

    consultation = Service(
        provider_id=provider.id,
        name='General consultation',
        duration_minutes=30,
        price=Decimal('100.00'),
        currency='USD',
        deposit_required=False,
        deposit_percentage=Decimal('0'),
        preparation_instructions='Bring your insurance card.',
    )
    deposit_service = Service(
        provider_id=provider.id,
        name='Dental cleaning',
        duration_minutes=30,
        price=Decimal('100.00'),
        currency='USD',
        deposit_required=True,
        deposit_percentage=Decimal('20'),
    )
    patient = User(email='patient@example.com', full_name='Pat Example')
    other_patient = User(email='other@example.com', full_name='Alex Other')
    db.add_all([consultation, deposit_service, patient, other_patient])
    db.commit()

    return {
        'provider': provider,
        'service': consultation,
        'deposit_service': deposit_service,
        'user': patient,
        'other_user': other_patient,
    }


@pytest.fixture
def machine(db, payments, notifier, clock):
    return BookingStateMachine(db, payments, notifier, clock=clock)
