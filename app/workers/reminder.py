"""Celery task that performs the daily reminder dispatch run."""

from __future__ import annotations

import asyncio
import logging

from app.celery_app import celery_app
from app.errors import ConfigurationError
from app.runtime import build_services
import db

_LOGGER = logging.getLogger(__name__)


async def run_dispatch() -> dict:
    """Build services for this run, dispatch, and release the engine."""
    try:
        services = build_services()
        result = await services.engine.run()
        return result.to_dict()
    finally:
        await db.dispose_engine()


# ---------------------------------------------------------------------------
# Celery Tasks
# ---------------------------------------------------------------------------

@celery_app.task(name="app.workers.reminder.dispatch_reminders", bind=True, max_retries=1)
def dispatch_reminders(self):  # noqa: D401
    """Run one dispatch; re-running is safe because sends are idempotent."""
    try:
        counters = asyncio.run(run_dispatch())
    except ConfigurationError:
        # Retrying cannot fix missing credentials.
        _LOGGER.exception("[ReminderWorker] Dispatch aborted by configuration error")
        raise
    except Exception as exc:  # noqa: BLE001
        _LOGGER.exception("[ReminderWorker] Dispatch run failed; retrying")
        raise self.retry(exc=exc, countdown=300)

    _LOGGER.info("[ReminderWorker] Dispatch counters: %s", counters)
    return counters
