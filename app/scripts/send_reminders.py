"""One-shot reminder dispatch for platform cron schedules.
Run once a day:
    python -m app.scripts.send_reminders
"""

from __future__ import annotations

import asyncio
import logging
import sys

from app.workers.reminder import run_dispatch
from config import configure_logging

_LOGGER = logging.getLogger("app.scripts.send_reminders")


def main() -> int:
    configure_logging()
    _LOGGER.info("[CRON] send_reminders: job started")
    try:
        counters = asyncio.run(run_dispatch())
    except Exception:
        _LOGGER.exception("[CRON] send_reminders: job failed")
        return 1
    _LOGGER.info("[CRON] send_reminders: job completed successfully %s", counters)
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
