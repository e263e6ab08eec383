"""
Celery worker and beat schedule.

Only housekeeping runs here. Post-order side effects are fire-and-forget
tasks inside the API process (FastAPI BackgroundTasks).

    celery -A storefront.worker worker --beat --loglevel=info
"""

import logging

from celery import Celery

from storefront.config import get_settings

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)
settings = get_settings()

celery_app = Celery(
    "storefront",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["storefront.tasks.housekeeping"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    beat_schedule={
        "purge-expired-pending-payments": {
            "task": "purge_expired_pending_payments",
            "schedule": 15 * 60.0,
        },
    },
)
