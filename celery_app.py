"""Celery application factory for the periodic batch sweep."""
from __future__ import annotations

import os
from datetime import timedelta
from typing import Optional

from celery import Celery
from celery.schedules import crontab

from notifications.config import Settings, configure_logging


def _sweep_schedule(minutes: int):
    # "*/N" restarts every hour, so it only keeps even spacing when N divides 60.
    if minutes < 1:
        raise ValueError(f"sweep interval must be at least one minute, got {minutes}")
    if minutes < 60 and 60 % minutes == 0:
        return crontab(minute=f"*/{minutes}")
    return timedelta(minutes=minutes)


def create_celery_app(settings: Optional[Settings] = None) -> Celery:
    """Create and configure the Celery app for the project."""
    settings = settings or Settings.from_env()
    broker_url = os.getenv("CELERY_BROKER_URL", settings.redis_url)
    backend_url = os.getenv("CELERY_RESULT_BACKEND", broker_url)

    celery_app = Celery(
        "notification_batches",
        broker=broker_url,
        backend=backend_url,
        include=["notifications.tasks"],
    )

    celery_app.conf.update(
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        timezone=os.getenv("CELERY_TIMEZONE", "UTC"),
        enable_utc=True,
        beat_schedule={
            "sweep-pending-batches": {
                "task": "notifications.tasks.sweep_pending_batches",
                "schedule": _sweep_schedule(settings.sweep_minutes),
            },
        },
    )

    return celery_app


configure_logging(os.getenv("LOG_LEVEL", "INFO"))
celery_app = create_celery_app()
