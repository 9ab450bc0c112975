from collections import defaultdict

import pytest

from notifications.config import Settings
from notifications.models import Channel, DeliveryMode, NotificationRequest
from notifications.providers import ProviderRouter
from notifications.records import RecordStore
from notifications.service import build_service
from notifications.store import BatchStore


class FakePipeline:
    def __init__(self, client):
        self.client = client
        self.calls = []

    def __getattr__(self, name):
        def queue(*args):
            self.calls.append((name, args))
            return self

        return queue

    def execute(self):
        return [getattr(self.client, name)(*args) for name, args in self.calls]


class FakeRedis:
    """Just enough of the redis-py list/set API for the batch store."""

    def __init__(self):
        self.lists = defaultdict(list)
        self.sets = defaultdict(set)
        self.failures = {}
        self.calls = []

    def _check(self, name):
        self.calls.append(name)
        if name in self.failures:
            raise self.failures[name]

    def pipeline(self, transaction=True):
        return FakePipeline(self)

    def register_script(self, source):
        # Only the batch release script is registered: trim, count, unregister when empty.
        def release(keys, args):
            self._check("release")
            list_key, active_set = keys
            delivered, member = int(args[0]), args[1]
            remaining = self.lists.get(list_key, [])[delivered:]
            if remaining:
                self.lists[list_key] = remaining
            else:
                self.lists.pop(list_key, None)
                self.sets[active_set].discard(member)
            return len(remaining)

        return release

    def rpush(self, key, value):
        self._check("rpush")
        self.lists[key].append(value)
        return len(self.lists[key])

    def lrange(self, key, start, end):
        self._check("lrange")
        items = self.lists.get(key, [])
        return list(items[start:] if end == -1 else items[start:end + 1])

    def llen(self, key):
        self._check("llen")
        return len(self.lists.get(key, []))

    def delete(self, key):
        self._check("delete")
        return 1 if self.lists.pop(key, None) is not None else 0

    def sadd(self, key, member):
        self._check("sadd")
        before = len(self.sets[key])
        self.sets[key].add(member)
        return len(self.sets[key]) - before

    def smembers(self, key):
        self._check("smembers")
        return set(self.sets.get(key, set()))

    def srem(self, key, member):
        self._check("srem")
        if member in self.sets.get(key, set()):
            self.sets[key].discard(member)
            return 1
        return 0


class RecordingProvider:
    def __init__(self, name, error=None):
        self.name = name
        self.error = error
        self.sent = []

    def send(self, message):
        if self.error is not None:
            raise self.error
        self.sent.append(message)


def _build_request(content="Content", event="order_shipped", email="user@example.com", mode=DeliveryMode.BATCH):
    return NotificationRequest(
        event_name=event,
        channel=Channel.EMAIL,
        delivery_mode=mode,
        content=content,
        recipient_email=email,
    )


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def store(fake_redis):
    return BatchStore(fake_redis)


@pytest.fixture
def provider():
    return RecordingProvider("gmail")


@pytest.fixture
def router(provider):
    return ProviderRouter("gmail", {"gmail": provider})


@pytest.fixture
def records():
    return RecordStore("sqlite://")


@pytest.fixture
def settings():
    return Settings(email_provider="gmail", batch_size_limit=5, email_subject="Digest")


@pytest.fixture
def service(settings, store, router, records):
    return build_service(settings, store=store, router=router, records=records)


@pytest.fixture
def make_request():
    return _build_request


@pytest.fixture
def provider_factory():
    return RecordingProvider
