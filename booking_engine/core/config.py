import os

from dotenv import load_dotenv


load_dotenv()


def _get_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"Invalid integer for {name}: {raw!r}") from None


def _get_list(value: str | None, default: list[str]) -> list[str]:
    if value is None:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]

APP_ENV = os.getenv("APP_ENV", "development")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

DATABASE_URL = os.getenv("DATABASE_URL")

CORS_ORIGINS = _get_list(os.getenv("CORS_ORIGINS"), ["http://localhost:5173"])

SLOT_LOCK_TTL_MINUTES = _get_int("SLOT_LOCK_TTL_MINUTES", 10)
MAX_SLOT_RANGE_DAYS = _get_int("MAX_SLOT_RANGE_DAYS", 31)

DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "USD")
DEFAULT_CANCELLATION_HOURS = _get_int("DEFAULT_CANCELLATION_HOURS", 24)
DEFAULT_RESCHEDULE_HOURS = _get_int("DEFAULT_RESCHEDULE_HOURS", 12)

SCHEDULER_ENABLED = _get_bool(os.getenv("SCHEDULER_ENABLED"), default=True)
REMINDER_POLL_SECONDS = _get_int("REMINDER_POLL_SECONDS", 60)
REMINDER_BATCH_SIZE = _get_int("REMINDER_BATCH_SIZE", 100)
REMINDER_MAX_ATTEMPTS = _get_int("REMINDER_MAX_ATTEMPTS", 5)
REMINDER_RETRY_MINUTES = _get_int("REMINDER_RETRY_MINUTES", 5)
LOCK_PURGE_SECONDS = _get_int("LOCK_PURGE_SECONDS", 300)


def validate_runtime_config() -> None:
    if not DATABASE_URL:
        raise RuntimeError("DATABASE_URL must be set.")
    if SLOT_LOCK_TTL_MINUTES < 1:
        raise RuntimeError(f"SLOT_LOCK_TTL_MINUTES must be >= 1, got {SLOT_LOCK_TTL_MINUTES}.")
    if MAX_SLOT_RANGE_DAYS < 1:
        raise RuntimeError(f"MAX_SLOT_RANGE_DAYS must be >= 1, got {MAX_SLOT_RANGE_DAYS}.")
    if REMINDER_POLL_SECONDS < 1 or LOCK_PURGE_SECONDS < 1:
        raise RuntimeError("Scheduler intervals must be at least one second.")
    if REMINDER_MAX_ATTEMPTS < 1:
        raise RuntimeError(f"REMINDER_MAX_ATTEMPTS must be >= 1, got {REMINDER_MAX_ATTEMPTS}.")
    if APP_ENV.lower() == "production" and DATABASE_URL.startswith("sqlite"):
        raise RuntimeError("SQLite is not supported in production; point DATABASE_URL at Postgres.")
