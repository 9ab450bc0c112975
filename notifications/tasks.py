from __future__ import annotations

import logging
from typing import Dict

from celery import shared_task

from .service import get_service

LOGGER = logging.getLogger(__name__)


@shared_task(name="notifications.tasks.sweep_pending_batches")
def sweep_pending_batches() -> Dict[str, int]:
    report = get_service().scheduler.sweep()
    LOGGER.info("Flushed %d pending batches", len(report.flushed))
    return report.as_dict()


@shared_task(name="notifications.tasks.flush_batch")
def flush_batch(key: str) -> bool:
    delivered = get_service().processor.flush(key)
    LOGGER.info("Manual flush of batch %s delivered=%s", key, delivered)
    return delivered
