"""Redis-backed storage for pending notification batches.

Each group key owns a Redis list ``notification:<key>`` holding JSON entries
in arrival order. The set ``active_hashes`` tracks every key that currently
has a pending batch.
"""
from __future__ import annotations

import errno
import logging
from typing import List, Set

import redis

from .config import ACTIVE_KEYS_SET, BATCH_KEY_PREFIX, Settings
from .errors import AuthError, ConnectivityError, DataError, NotificationError, UnknownError
from .keys import batch_list_key
from .models import NotificationRequest

LOGGER = logging.getLogger(__name__)

CONNECTIVITY_CODES = {"ETIMEDOUT", "ECONNREFUSED", "ECONNRESET"}
CONNECTIVITY_ERRNOS = {errno.ETIMEDOUT, errno.ECONNREFUSED, errno.ECONNRESET}

# KEYS[1] batch list, KEYS[2] active set; ARGV[1] delivered count, ARGV[2] group key.
RELEASE_SCRIPT = """
redis.call("LTRIM", KEYS[1], tonumber(ARGV[1]), -1)
local remaining = redis.call("LLEN", KEYS[1])
if remaining == 0 then
    redis.call("SREM", KEYS[2], ARGV[2])
end
return remaining
"""


def classify_store_error(exc: BaseException) -> NotificationError:
    """Map a raw store failure onto the service's error taxonomy."""
    if isinstance(exc, NotificationError):
        return exc

    message = str(getattr(exc, "message", None) or exc or "")
    code = getattr(exc, "code", None)

    if isinstance(exc, redis.exceptions.DataError) or "WRONGTYPE" in message or message.startswith("ERR"):
        return DataError(f"Invalid data in batch store: {message}", details=message)
    if isinstance(exc, redis.exceptions.AuthenticationError) or "NOAUTH" in message or "WRONGPASS" in message:
        return AuthError(details=message)
    if (
        code in CONNECTIVITY_CODES
        or getattr(exc, "errno", None) in CONNECTIVITY_ERRNOS
        or isinstance(exc, (redis.exceptions.TimeoutError, redis.exceptions.ConnectionError))
        or isinstance(exc, (TimeoutError, ConnectionError))
    ):
        return ConnectivityError(details=code or message)
    return UnknownError(details=message or repr(exc))


class BatchStore:
    """Pending batches and the set of active group keys."""

    def __init__(self, client: "redis.Redis", *, prefix: str = BATCH_KEY_PREFIX, active_set: str = ACTIVE_KEYS_SET):
        self.client = client
        self.prefix = prefix
        self.active_set = active_set
        self._release = client.register_script(RELEASE_SCRIPT)

    @classmethod
    def from_settings(cls, settings: Settings) -> "BatchStore":
        client = redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            db=settings.redis_db,
            password=settings.redis_password,
            decode_responses=True,
            socket_timeout=10,
        )
        return cls(client)

    def _list(self, key: str) -> str:
        return batch_list_key(key, self.prefix)

    def _fail(self, operation: str, key: str, exc: Exception) -> NotificationError:
        LOGGER.error("Error in Redis during %s for %s: %r", operation, key, exc)
        return classify_store_error(exc)

    def append(self, key: str, entry: NotificationRequest) -> int:
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.rpush(self._list(key), entry.to_json())
            pipe.sadd(self.active_set, key)
            new_length, _ = pipe.execute()
        except Exception as exc:
            raise self._fail("append", key, exc) from exc
        LOGGER.info("Stored notification in batch %s (length %d)", key, new_length)
        return int(new_length)

    def read_all(self, key: str) -> List[NotificationRequest]:
        try:
            raw_entries = self.client.lrange(self._list(key), 0, -1)
        except Exception as exc:
            raise self._fail("read_all", key, exc) from exc
        entries = [NotificationRequest.from_json(raw) for raw in raw_entries]
        LOGGER.info("Retrieved %d notifications from batch %s", len(entries), key)
        return entries

    def length(self, key: str) -> int:
        try:
            return int(self.client.llen(self._list(key)) or 0)
        except Exception as exc:
            raise self._fail("length", key, exc) from exc

    def clear(self, key: str) -> None:
        try:
            self.client.delete(self._list(key))
        except Exception as exc:
            raise self._fail("clear", key, exc) from exc
        LOGGER.info("Removed batch %s from store", key)

    def list_active_keys(self) -> Set[str]:
        try:
            members = self.client.smembers(self.active_set)
        except Exception as exc:
            raise self._fail("list_active_keys", self.active_set, exc) from exc
        return {m.decode("utf-8") if isinstance(m, bytes) else m for m in members}

    def unregister(self, key: str) -> None:
        try:
            self.client.srem(self.active_set, key)
        except Exception as exc:
            raise self._fail("unregister", key, exc) from exc
        LOGGER.info("Removed %s from active keys", key)

    def release(self, key: str, delivered: int) -> int:
        """Drop the first ``delivered`` entries and unregister the key if nothing is left.

        Runs as one server-side script, so entries appended while the batch
        was being sent stay queued and the key stays registered for them.
        """
        try:
            remaining = int(self._release(keys=[self._list(key), self.active_set], args=[delivered, key]))
        except Exception as exc:
            raise self._fail("release", key, exc) from exc
        LOGGER.info("Released %d delivered entries from batch %s (%d remaining)", delivered, key, remaining)
        return remaining

    def discard(self, key: str) -> None:
        """Drop a batch and its registration in one transaction."""
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.delete(self._list(key))
            pipe.srem(self.active_set, key)
            pipe.execute()
        except Exception as exc:
            raise self._fail("discard", key, exc) from exc
        LOGGER.warning("Discarded batch %s", key)
