"""Celery application instance shared across the backend.

Start a worker and the beat scheduler with:
    celery -A app.celery_app worker -B -Q reminder -l info --concurrency=1
"""

from celery import Celery
from celery.schedules import crontab

from config import configure_logging, settings

configure_logging()

BROKER_URL = settings.REDIS_URL

celery_app = Celery("reminder_backend", broker=BROKER_URL, backend=BROKER_URL)

# Global task settings
celery_app.conf.task_acks_late = True
celery_app.conf.task_reject_on_worker_lost = True
celery_app.conf.timezone = "UTC"

celery_app.conf.task_routes = {
    "app.workers.reminder.dispatch_reminders": {"queue": "reminder"},
}

# Beat schedule: one dispatch run per day
celery_app.conf.beat_schedule = {
    "dispatch-daily-reminders": {
        "task": "app.workers.reminder.dispatch_reminders",
        "schedule": crontab(hour=settings.DISPATCH_HOUR_UTC, minute=settings.DISPATCH_MINUTE_UTC),
    }
}

# --- Ensure tasks are registered ---
import app.workers.reminder  # noqa: E402,F401
