"""Celery application instance shared across the backend.

Start a worker and the beat scheduler with:
    celery -A app.celery_app worker -Q notifications -l info --concurrency=1
    celery -A app.celery_app beat -l info
"""

from celery import Celery

from config import settings

BROKER_URL = settings.REDIS_URL

celery_app = Celery("notifi_backend", broker=BROKER_URL, backend=BROKER_URL)

# Global task settings
celery_app.conf.task_acks_late = True
celery_app.conf.task_reject_on_worker_lost = True

celery_app.conf.task_routes = {
    "app.workers.delivery.process_due": {"queue": "notifications"},
}

# Beat schedule: sweep due notifications every minute
celery_app.conf.beat_schedule = {
    "process-due-notifications": {
        "task": "app.workers.delivery.process_due",
        "schedule": settings.SWEEP_INTERVAL_SECONDS,
    }
}

# --- Ensure tasks are registered ---
import app.workers.delivery  # noqa: E402,F401
