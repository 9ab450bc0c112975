import pytest

from notifications.errors import ConnectivityError, DataError, DeliveryError, MalformedBatchError, SendFailure
from notifications.keys import derive_key
from notifications.models import Channel, DeliveryMode, NotificationRequest
from notifications.providers import ProviderRouter
from notifications.service import BatchProcessor, BatchScheduler, combine_contents


def _key(event="Order_shipped", email="user@example.com"):
    return derive_key(event, Channel.EMAIL, email)


def test_combine_contents_joins_with_blank_lines(make_request):
    entries = [make_request(content=c) for c in ("Content1", "Content2", "Content3")]
    assert combine_contents(entries) == "Content1\n\nContent2\n\nContent3"


def test_flush_sends_combined_message_and_clears(service, store, provider, make_request):
    for content in ("Content1", "Content2"):
        store.append("group-1", make_request(content=content))

    assert service.processor.flush("group-1") is True

    assert len(provider.sent) == 1
    message = provider.sent[0]
    assert message.to == "user@example.com"
    assert message.subject == "Digest"
    assert message.body_text == "Content1\n\nContent2"
    assert store.length("group-1") == 0
    assert store.list_active_keys() == set()


def test_flush_of_empty_batch_is_noop(service, provider):
    assert service.processor.flush("nothing-here") is False
    assert provider.sent == []


def test_failed_send_leaves_batch_intact(store, router, provider, make_request):
    provider.error = RuntimeError("smtp down")
    store.append("group-1", make_request(content="Content1"))
    processor = BatchProcessor(store, router, "Digest")

    with pytest.raises(DeliveryError):
        processor.flush("group-1")

    assert store.length("group-1") == 1
    assert store.list_active_keys() == {"group-1"}


def test_flush_without_recipient_is_malformed_batch(store, router, make_request):
    store.append("group-1", make_request(email=None))
    with pytest.raises(MalformedBatchError) as info:
        BatchProcessor(store, router, "Digest").flush("group-1")
    assert isinstance(info.value, DataError)
    assert store.length("group-1") == 1


def test_entries_appended_during_send_stay_queued(store, router, provider, make_request):
    store.append("group-1", make_request(content="Content1"))
    store.append("group-1", make_request(content="Content2"))
    original_send = provider.send

    def send_while_appending(message):
        store.append("group-1", make_request(content="Late"))
        original_send(message)

    provider.send = send_while_appending
    processor = BatchProcessor(store, router, "Digest")

    assert processor.flush("group-1") is True

    assert provider.sent[0].body_text == "Content1\n\nContent2"
    assert [e.content for e in store.read_all("group-1")] == ["Late"]
    assert store.list_active_keys() == {"group-1"}

    provider.send = original_send
    assert processor.flush("group-1") is True
    assert provider.sent[1].body_text == "Late"
    assert store.list_active_keys() == set()


class CountingProcessor(BatchProcessor):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.flushed = []

    def flush(self, key):
        self.flushed.append(key)
        return super().flush(key)


def test_threshold_flushes_exactly_once(store, router, provider, fake_redis, make_request):
    processor = CountingProcessor(store, router, "Digest")
    scheduler = BatchScheduler(store, processor, threshold=5)

    for idx in range(4):
        store.append("group-1", make_request(content=f"Content{idx}"))
        assert scheduler.check_threshold("group-1") is False
    assert processor.flushed == []
    assert fake_redis.calls.count("release") == 0

    store.append("group-1", make_request(content="Content4"))
    assert scheduler.check_threshold("group-1") is True

    assert processor.flushed == ["group-1"]
    assert fake_redis.calls.count("release") == 1
    assert len(provider.sent) == 1


def test_threshold_must_be_positive(store, router):
    with pytest.raises(ValueError):
        BatchScheduler(store, BatchProcessor(store, router, "Digest"), threshold=0)


def test_sweep_flushes_every_active_key(service, store, provider, make_request):
    store.append("single", make_request(content="Only one", email="one@example.com"))
    for idx in range(3):
        store.append("triple", make_request(content=f"Item{idx}", email="three@example.com"))

    report = service.scheduler.sweep()

    assert sorted(report.flushed) == ["single", "triple"]
    assert {m.to for m in provider.sent} == {"one@example.com", "three@example.com"}
    assert store.list_active_keys() == set()


def test_sweep_continues_after_failing_key(service, store, provider, make_request):
    store.append("good", make_request(content="Fine", email="good@example.com"))
    store.append("bad", make_request(content="Fails", email="bad@example.com"))

    original_send = provider.send

    def flaky_send(message):
        if message.to == "bad@example.com":
            raise RuntimeError("mailbox unavailable")
        original_send(message)

    provider.send = flaky_send
    report = service.scheduler.sweep()

    assert report.flushed == ["good"]
    assert "bad" in report.failed
    assert store.length("bad") == 1
    assert store.list_active_keys() == {"bad"}


def test_sweep_discards_malformed_batch(service, store, fake_redis, make_request):
    fake_redis.lists["notification:broken"].append("{not json")
    fake_redis.sets["active_hashes"].add("broken")
    store.append("good", make_request())

    report = service.scheduler.sweep()

    assert report.discarded == ["broken"]
    assert report.flushed == ["good"]
    assert store.list_active_keys() == set()


def test_sweep_keeps_batch_when_provider_unsupported(store, provider, make_request):
    router = ProviderRouter("mailgun", {"gmail": provider})
    scheduler = BatchScheduler(store, BatchProcessor(store, router, "Digest"), threshold=5)
    for idx in range(3):
        store.append("group-1", make_request(content=f"Content{idx}"))

    report = scheduler.sweep()

    assert list(report.failed) == ["group-1"]
    assert report.discarded == []
    assert store.length("group-1") == 3
    assert store.list_active_keys() == {"group-1"}


def test_sweep_unregisters_stale_empty_key(service, store, fake_redis):
    fake_redis.sets["active_hashes"].add("stale")
    report = service.scheduler.sweep()
    assert report.empty == ["stale"]
    assert store.list_active_keys() == set()


def test_sweep_leaves_batch_on_store_timeout(service, store, fake_redis, make_request):
    class Timeout(Exception):
        code = "ETIMEDOUT"

    store.append("group-1", make_request())
    fake_redis.failures["lrange"] = Timeout()

    report = service.scheduler.sweep()

    assert "group-1" in report.failed
    del fake_redis.failures["lrange"]
    assert store.length("group-1") == 1


def test_submit_batch_end_to_end(service, store, provider, make_request):
    for idx in range(1, 6):
        result = service.orchestrator.submit(make_request(content=f"Content{idx}"))
        assert result == {"message": "Batch notification processed"}

    assert len(provider.sent) == 1
    assert provider.sent[0].body_text == "Content1\n\nContent2\n\nContent3\n\nContent4\n\nContent5"
    assert _key() not in store.list_active_keys()


def test_submit_batch_groups_by_capitalised_event(service, store, make_request):
    service.orchestrator.submit(make_request(event="order_shipped"))
    service.orchestrator.submit(make_request(event="Order_shipped"))
    assert store.list_active_keys() == {_key()}
    assert store.length(_key()) == 2
    stored = store.read_all(_key())
    assert all(entry.emitted_at is not None for entry in stored)


def test_submit_batch_propagates_store_failure(service, fake_redis, make_request):
    class Refused(Exception):
        code = "ECONNREFUSED"

    fake_redis.failures["rpush"] = Refused()
    with pytest.raises(ConnectivityError):
        service.orchestrator.submit(make_request())


def test_submit_instant_sends_immediately(service, store, provider, make_request):
    result = service.orchestrator.submit(make_request(content="Now", mode=DeliveryMode.INSTANT))
    assert result == {"message": "Instant notification processed"}
    assert provider.sent[0].body_text == "Now"
    assert store.list_active_keys() == set()


def test_submit_instant_failure_is_send_failure(service, provider, make_request):
    provider.error = RuntimeError("rejected recipient")
    with pytest.raises(SendFailure) as excinfo:
        service.orchestrator.submit(make_request(mode=DeliveryMode.INSTANT))
    assert excinfo.value.status_code == 400
    assert "rejected recipient" in excinfo.value.message


def test_submit_system_persists_record(service, store, provider):
    request = NotificationRequest(
        event_name="profile_updated",
        channel=Channel.SYSTEM,
        delivery_mode=DeliveryMode.BATCH,
        content="Your profile changed",
        recipient_user_id="c589e948-fb91-475c-9043-1b4c05bec680",
    )
    result = service.orchestrator.submit(request)

    assert result == {"message": "System notification processed and saved in the database."}
    records = service.records.find_by_user_id("c589e948-fb91-475c-9043-1b4c05bec680")
    assert records[0]["event_emitted"] == "Profile_updated"
    assert records[0]["system_metadata"]["content"] == "Your profile changed"
    assert records[0]["read"] is False
    assert provider.sent == []
    assert store.list_active_keys() == set()
