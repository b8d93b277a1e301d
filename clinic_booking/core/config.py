"""
Application configuration.
Values are read from environment variables, falling back to a local .env
file so development works without any exported variables.
"""
import logging
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    APP_ENV: str = "development"
    DATABASE_URL: str = "sqlite+aiosqlite:///./clinic_booking.db"

    # Time handling
    DEFAULT_TIMEZONE: str = "UTC"

    # Booking rules
    MAX_APPOINTMENT_DURATION_MINUTES: int = 480
    CONFLICT_SEARCH_WINDOW_HOURS: int = 24
    SUGGESTION_SEARCH_WINDOW_HOURS: int = 2
    MAX_SUGGESTIONS: int = 3
    # Only the start instant is checked against provider availability
    # unless this is switched on.
    ENFORCE_END_TIME_AVAILABILITY: bool = False
    PROVIDER_CONFLICTS_BLOCK: bool = True
    LOCATION_EXCLUSIVE_BOOKING: bool = True

    # Slot locks
    SLOT_LOCK_TTL_SECONDS: int = 300
    SLOT_LOCK_BUCKET_MINUTES: int = 60

    # Audit outbox
    AUDIT_OUTBOX_MAX_ATTEMPTS: int = 3
    AUDIT_OUTBOX_BATCH_SIZE: int = 50
    AUDIT_OUTBOX_CLAIM_TIMEOUT_SECONDS: int = 300  # a claim older than this is picked up again
    MAINTENANCE_INTERVAL_SECONDS: int = 60  # 0 disables the background loop

    # Governance
    DENIED_POLICY_ACTIONS: list[str] = []

    # Development helpers
    SEED_DEMO_TENANT: bool = False

    class Config:
        env_file = ".env"


settings = Settings()

if settings.MAX_APPOINTMENT_DURATION_MINUTES <= 0:
    raise ValueError("MAX_APPOINTMENT_DURATION_MINUTES must be positive")
if settings.SLOT_LOCK_BUCKET_MINUTES <= 0:
    raise ValueError("SLOT_LOCK_BUCKET_MINUTES must be positive")
