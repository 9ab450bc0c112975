from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, Iterable, List, Mapping, Optional

from .config import Settings
from .errors import (
    ConnectivityError,
    DeliveryError,
    MalformedBatchError,
    NotificationError,
    SendFailure,
    UnsupportedProviderError,
)
from .keys import derive_key
from .models import Channel, DeliveryMode, NotificationRequest
from .providers import PROVIDER_FACTORIES, ProviderFactory, ProviderRouter, create_router
from .records import RecordStore
from .store import BatchStore

LOGGER = logging.getLogger(__name__)

BATCH_SEPARATOR = "\n\n"


def combine_contents(entries: Iterable[NotificationRequest]) -> str:
    return BATCH_SEPARATOR.join(entry.content for entry in entries)


class BatchProcessor:
    """Combine one group's pending entries into a single email and send it."""

    def __init__(self, store: BatchStore, router: ProviderRouter, subject: str):
        self.store = store
        self.router = router
        self.subject = subject

    def flush(self, key: str) -> bool:
        """Deliver the batch under ``key`` and release the delivered entries.

        Returns False without sending when the batch is already empty. Entries
        are released only after the provider accepted the message, so a failed
        send leaves every entry in place for the next sweep.
        """
        entries = self.store.read_all(key)
        if not entries:
            LOGGER.info("Batch %s is empty; nothing to flush", key)
            return False

        recipient = entries[0].recipient_email
        if not recipient:
            raise MalformedBatchError(f"Batch {key} has no recipient email address")

        LOGGER.info("Processing %d notifications in batch %s", len(entries), key)
        self.router.send(recipient, self.subject, combine_contents(entries))

        remaining = self.store.release(key, len(entries))
        LOGGER.info("Batch %s delivered to %s (%d entries arrived meanwhile)", key, recipient, remaining)
        return True


@dataclass(slots=True)
class SweepReport:
    """Outcome of one pass over the active group keys."""

    flushed: List[str] = field(default_factory=list)
    empty: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    discarded: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, int]:
        return {
            "flushed": len(self.flushed),
            "empty": len(self.empty),
            "failed": len(self.failed),
            "discarded": len(self.discarded),
        }


class BatchScheduler:
    def __init__(self, store: BatchStore, processor: BatchProcessor, threshold: int = 5):
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        self.store = store
        self.processor = processor
        self.threshold = threshold

    def check_threshold(self, key: str) -> bool:
        """Flush ``key`` now if its batch reached the size threshold."""
        length = self.store.length(key)
        LOGGER.info("Batch %s has %d notifications (threshold %d)", key, length, self.threshold)
        if length < self.threshold:
            return False
        return self.processor.flush(key)

    def sweep(self) -> SweepReport:
        """Flush every active key regardless of size.

        A failing key is logged and skipped so the rest of the sweep still
        runs. Keys whose stored data is malformed are discarded.
        """
        report = SweepReport()
        keys = self.store.list_active_keys()
        LOGGER.info("Sweeping %d active batches", len(keys))

        for key in keys:
            try:
                if self.processor.flush(key):
                    report.flushed.append(key)
                else:
                    self.store.release(key, 0)
                    report.empty.append(key)
            except MalformedBatchError as exc:
                LOGGER.error("Batch %s holds unusable data, discarding: %s", key, exc.message)
                report.failed[key] = exc.message
                try:
                    self.store.discard(key)
                    report.discarded.append(key)
                except NotificationError:
                    LOGGER.exception("Could not discard batch %s", key)
            except NotificationError as exc:
                LOGGER.error("Failed to flush batch %s: %s (%s)", key, exc.message, exc.code)
                report.failed[key] = exc.message

        LOGGER.info("Sweep finished: %s", report.as_dict())
        return report


class DispatchOrchestrator:
    """Entry point that routes a request to instant, batched or stored delivery."""

    def __init__(
        self,
        store: BatchStore,
        router: ProviderRouter,
        scheduler: BatchScheduler,
        records: RecordStore,
        subject: str,
    ):
        self.store = store
        self.router = router
        self.scheduler = scheduler
        self.records = records
        self.subject = subject

    def submit(self, request: NotificationRequest) -> Dict[str, str]:
        request = request.accepted()
        LOGGER.info(
            "New notification with delivery channel: %s and type: %s",
            request.channel.value,
            request.delivery_mode.value,
        )

        if request.channel is Channel.SYSTEM:
            return self._store_system(request)
        if request.delivery_mode is DeliveryMode.BATCH:
            return self._enqueue(request)
        return self._send_instant(request)

    def _enqueue(self, request: NotificationRequest) -> Dict[str, str]:
        key = derive_key(request.event_name, request.channel, request.recipient)
        LOGGER.info("Storing notification for event %s under key %s", request.event_name, key)
        self.store.append(key, request)
        self.scheduler.check_threshold(key)
        return {"message": "Batch notification processed"}

    def _send_instant(self, request: NotificationRequest) -> Dict[str, str]:
        try:
            self.router.send(request.recipient_email, self.subject, request.content)
        except (DeliveryError, ConnectivityError, UnsupportedProviderError) as exc:
            LOGGER.error("Error sending email: %s", exc.message)
            raise SendFailure(exc.message) from exc
        LOGGER.info("Email sent successfully")
        return {"message": "Instant notification processed"}

    def _store_system(self, request: NotificationRequest) -> Dict[str, str]:
        self.records.create(
            {
                "date": request.emitted_at,
                "event_emitted": request.event_name,
                "delivery_channel": request.channel.value,
                "notification_type": request.delivery_mode.value,
                "user_id": request.recipient_user_id,
                "content": request.content,
            }
        )
        LOGGER.info("System notification processed and saved in the database")
        return {"message": "System notification processed and saved in the database."}


@dataclass(slots=True)
class NotificationService:
    """Wired set of components sharing one configuration."""

    settings: Settings
    store: BatchStore
    router: ProviderRouter
    records: RecordStore
    processor: BatchProcessor
    scheduler: BatchScheduler
    orchestrator: DispatchOrchestrator
    factories: Mapping[str, ProviderFactory] = field(default_factory=lambda: dict(PROVIDER_FACTORIES))

    def router_for(self, provider_name: str) -> ProviderRouter:
        """Router pinned to one named backend, for direct sends."""
        if provider_name in self.router.backends:
            return ProviderRouter(provider_name, self.router.backends)
        factory = self.factories.get(provider_name)
        if factory is None:
            raise UnsupportedProviderError(provider_name)
        return ProviderRouter(provider_name, {provider_name: factory(self.settings)})


def build_service(
    settings: Settings,
    *,
    store: Optional[BatchStore] = None,
    router: Optional[ProviderRouter] = None,
    records: Optional[RecordStore] = None,
    factories: Optional[Mapping[str, ProviderFactory]] = None,
) -> NotificationService:
    factories = dict(PROVIDER_FACTORIES if factories is None else factories)
    store = store or BatchStore.from_settings(settings)
    router = router or create_router(settings, factories)
    records = records or RecordStore(settings.database_url)
    processor = BatchProcessor(store, router, settings.email_subject)
    scheduler = BatchScheduler(store, processor, threshold=settings.batch_size_limit)
    orchestrator = DispatchOrchestrator(store, router, scheduler, records, settings.email_subject)
    return NotificationService(
        settings=settings,
        store=store,
        router=router,
        records=records,
        processor=processor,
        scheduler=scheduler,
        orchestrator=orchestrator,
        factories=factories,
    )


@lru_cache(maxsize=1)
def get_service() -> NotificationService:
    """Process-wide service built from the environment."""
    return build_service(Settings.from_env())
