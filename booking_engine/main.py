import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from booking_engine.core import config
from booking_engine.database import Base, SessionLocal, engine, ensure_booking_schema
from booking_engine.models import booking, provider, reminder, service, slot_lock, user  # noqa: F401
from booking_engine.routes import availability_routes, booking_routes, payment_routes
from booking_engine.scheduler.reminder_job import ReminderDispatcher
from booking_engine.services.collaborators import LoggingNotificationSender, ManualPaymentCollaborator

logging.basicConfig(
    level=config.LOG_LEVEL.upper(),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)

app = FastAPI(title='CareConnect Booking Engine')

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

logger = logging.getLogger(__name__)

app.state.payments = ManualPaymentCollaborator()
app.state.notifier = LoggingNotificationSender()
app.state.dispatcher = ReminderDispatcher(SessionLocal, app.state.notifier)


@app.on_event('startup')
def initialize_database() -> None:
    config.validate_runtime_config()

    try:
        Base.metadata.create_all(bind=engine)
        ensure_booking_schema()
    except SQLAlchemyError:
        logger.exception('Database initialization failed. Check DATABASE_URL and Postgres credentials.')


@app.on_event('startup')
def start_reminder_dispatcher() -> None:
    if config.SCHEDULER_ENABLED:
        app.state.dispatcher.start()
    else:
        logger.info('Reminder dispatcher disabled (SCHEDULER_ENABLED=false)')


@app.on_event('shutdown')
def stop_reminder_dispatcher() -> None:
    app.state.dispatcher.shutdown()


@app.get('/')
def root():
    return {'status': 'Booking Engine API Running'}


app.include_router(availability_routes.router, prefix='/availability')
app.include_router(booking_routes.router, prefix='/bookings')
app.include_router(payment_routes.router, prefix='/payments')
