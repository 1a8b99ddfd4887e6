import uuid
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from booking_engine.core import config


def _engine_options(database_url: str) -> dict:
    if database_url.startswith('sqlite'):
        # Writers wait on each other instead of failing immediately.
        return {'connect_args': {'check_same_thread': False, 'timeout': 15}}
    return {'pool_pre_ping': True}


DATABASE_URL = config.DATABASE_URL

engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()


def new_id() -> str:
    return uuid.uuid4().hex


_schema_lock = Lock()
_booking_schema_checked = False


def ensure_booking_schema(bind=None) -> None:
    """Backfill the indexes that guard double-booking on tables created before they existed."""
    global _booking_schema_checked

    if _booking_schema_checked:
        return

    with _schema_lock:
        if _booking_schema_checked:
            return

        target = bind or engine
        inspector = inspect(target)
        table_names = set(inspector.get_table_names())

        statements = []
        if 'bookings' in table_names:
            statements.extend([
                'CREATE UNIQUE INDEX IF NOT EXISTS uq_bookings_active_slot '
                'ON bookings(provider_id, service_id, start_time) '
                "WHERE status NOT IN ('cancelled', 'rescheduled')",
                'CREATE INDEX IF NOT EXISTS idx_bookings_provider_start ON bookings(provider_id, start_time)',
            ])
        if 'slot_locks' in table_names:
            statements.append(
                'CREATE UNIQUE INDEX IF NOT EXISTS uq_slot_locks_slot '
                'ON slot_locks(provider_id, service_id, start_time)'
            )
        if 'reminder_schedules' in table_names:
            statements.extend([
                'CREATE UNIQUE INDEX IF NOT EXISTS uq_reminder_booking_kind '
                'ON reminder_schedules(booking_id, kind)',
                'CREATE INDEX IF NOT EXISTS idx_reminder_status_due ON reminder_schedules(status, scheduled_for)',
            ])

        with target.begin() as connection:
            for statement in statements:
                connection.execute(text(statement))

        _booking_schema_checked = True
