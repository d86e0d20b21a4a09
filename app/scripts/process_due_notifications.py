"""Periodic sweep of due notifications.
Run from any cron-like scheduler every minute:
    python -m app.scripts.process_due_notifications
"""

from __future__ import annotations

import asyncio
import logging
import sys

from app.utils.log import configure_logging
from app.workers.delivery import run_sweep
import db

_LOGGER = logging.getLogger("cron.process_due_notifications")


async def main() -> None:
    try:
        summary = await run_sweep()
    finally:
        await db.dispose_engine()
    _LOGGER.info("Summary: %s", summary.model_dump_json())


if __name__ == "__main__":  # pragma: no cover
    configure_logging()
    _LOGGER.info("[CRON] process_due_notifications: job started")
    try:
        asyncio.run(main())
        _LOGGER.info("[CRON] process_due_notifications: job completed successfully")
    except Exception:
        _LOGGER.exception("[CRON] process_due_notifications: job failed")
        sys.exit(1)
