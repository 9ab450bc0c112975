"""Grouping keys for batched notifications.

A key is the SHA-256 hex digest of ``[event_name, channel, recipient]``
encoded as a JSON array, so no separator inside a field can make two
different triples collide textually. Inputs are hashed verbatim and are case
sensitive; callers normalise the event name before deriving a key. Two
distinct triples share a key only on a SHA-256 collision.
"""
from __future__ import annotations

import hashlib
import json
from enum import Enum
from typing import Union


def derive_key(event_name: str, channel: Union[str, Enum], recipient: str) -> str:
    channel_value = channel.value if isinstance(channel, Enum) else str(channel)
    material = json.dumps([event_name, channel_value, recipient], ensure_ascii=False)
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def batch_list_key(key: str, prefix: str = "notification:") -> str:
    return f"{prefix}{key}"
