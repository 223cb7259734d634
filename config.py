import logging
import os

try:
    from dotenv import load_dotenv
    load_dotenv()
except ImportError:
    pass  # dotenv is optional for production, but useful locally

from app.errors import ConfigurationError


def _int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"Invalid integer value for {name}: {raw!r}")


def _float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"Invalid number value for {name}: {raw!r}")


def _bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ConfigurationError(f"Invalid boolean value for {name}: {raw!r}")


class Settings:
    # --- Database ---
    DATABASE_URL = os.environ.get("DATABASE_URL")
    DATABASE_PUBLIC_URL = os.environ.get("DATABASE_PUBLIC_URL")

    # --- Redis ---
    REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

    # --- Telnyx (SMS) ---
    TELNYX_API_KEY = os.environ.get("TELNYX_API_KEY")
    TELNYX_PUBLIC_KEY = os.environ.get("TELNYX_PUBLIC_KEY")
    TELNYX_FROM_NUMBER = os.environ.get("TELNYX_FROM_NUMBER")
    TELNYX_SEND_TIMEOUT = _float("TELNYX_SEND_TIMEOUT", 15.0)
    STATUS_CALLBACK_URL = os.environ.get("STATUS_CALLBACK_URL")
    SMS_DRY_RUN = _bool("SMS_DRY_RUN", False)

    # --- Cron trigger ---
    # Unset means the trigger accepts any caller.
    CRON_SECRET = os.environ.get("CRON_SECRET")

    # --- Dispatch ---
    DISPATCH_HOUR_UTC = _int("DISPATCH_HOUR_UTC", 14)
    DISPATCH_MINUTE_UTC = _int("DISPATCH_MINUTE_UTC", 0)
    DISPATCH_CONCURRENCY = _int("DISPATCH_CONCURRENCY", 1)
    DISPATCH_TENANT_TIMEOUT = _float("DISPATCH_TENANT_TIMEOUT", 300.0)

    # --- Credits ---
    TRIAL_CREDITS = _int("TRIAL_CREDITS", 20)

    # --- Calendar sync ---
    CALENDAR_SYNC_DAYS = _int("CALENDAR_SYNC_DAYS", 30)
    CALENDAR_SYNC_MAX_EVENTS = _int("CALENDAR_SYNC_MAX_EVENTS", 100)

    # --- Logging ---
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()


settings = Settings()


def configure_logging(level: str | None = None) -> None:
    """Root logging setup shared by the API, the Celery worker and scripts."""
    logging.basicConfig(
        level=level or settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
