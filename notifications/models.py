from __future__ import annotations

import json
import re
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from .errors import MalformedBatchError, ValidationError

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class Channel(str, Enum):
    EMAIL = "Email"
    SYSTEM = "System"


class DeliveryMode(str, Enum):
    INSTANT = "Instant"
    BATCH = "Batch"


def capitalize_event(name: str) -> str:
    return name[:1].upper() + name[1:]


@dataclass(slots=True, frozen=True)
class NotificationRequest:
    """A single notification as submitted by a caller."""

    event_name: str
    channel: Channel
    delivery_mode: DeliveryMode
    content: str
    recipient_email: Optional[str] = None
    recipient_user_id: Optional[str] = None
    emitted_at: Optional[datetime] = None

    @property
    def recipient(self) -> str:
        if self.channel is Channel.EMAIL:
            return self.recipient_email or ""
        return self.recipient_user_id or ""

    def accepted(self, now: Optional[datetime] = None) -> "NotificationRequest":
        """Copy stamped with the emission time and a capitalised event name."""
        return replace(
            self,
            event_name=capitalize_event(self.event_name),
            emitted_at=now or datetime.now(timezone.utc),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_name": self.event_name,
            "channel": self.channel.value,
            "delivery_mode": self.delivery_mode.value,
            "content": self.content,
            "recipient_email": self.recipient_email,
            "recipient_user_id": self.recipient_user_id,
            "emitted_at": self.emitted_at.isoformat() if self.emitted_at else None,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "NotificationRequest":
        """Rebuild a stored entry; anything malformed is a ``MalformedBatchError``."""
        try:
            emitted_raw = data.get("emitted_at")
            return cls(
                event_name=str(data["event_name"]),
                channel=Channel(data["channel"]),
                delivery_mode=DeliveryMode(data["delivery_mode"]),
                content=str(data["content"]),
                recipient_email=data.get("recipient_email"),
                recipient_user_id=data.get("recipient_user_id"),
                emitted_at=datetime.fromisoformat(emitted_raw) if emitted_raw else None,
            )
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise MalformedBatchError("Stored notification entry is malformed", details=str(exc)) from exc

    @classmethod
    def from_json(cls, raw: str | bytes) -> "NotificationRequest":
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as exc:
            raise MalformedBatchError("Stored notification entry is not valid JSON", details=str(exc)) from exc
        if not isinstance(data, dict):
            raise MalformedBatchError("Stored notification entry is not an object")
        return cls.from_dict(data)

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "NotificationRequest":
        """Validate an inbound API payload (camelCase or snake_case keys)."""
        if not isinstance(payload, Mapping):
            raise ValidationError("Request body must be a JSON object")

        def pick(*names: str) -> Any:
            for name in names:
                if payload.get(name) is not None:
                    return payload[name]
            return None

        errors: list[str] = []
        event_name = pick("eventEmitted", "event_name")
        content = pick("content")
        email = pick("email", "recipient_email")
        user_id = pick("userId", "recipient_user_id")

        if not isinstance(event_name, str) or not event_name.strip():
            errors.append("eventEmitted must be a non-empty string")
        if not isinstance(content, str) or not content.strip():
            errors.append("content must be a non-empty string")

        try:
            channel = Channel(pick("deliveryChannel", "channel"))
        except ValueError:
            channel = None
            errors.append("deliveryChannel must be one of: Email, System")
        try:
            mode = DeliveryMode(pick("notificationType", "delivery_mode"))
        except ValueError:
            mode = None
            errors.append("notificationType must be one of: Instant, Batch")

        if channel is Channel.EMAIL:
            if not isinstance(email, str) or not EMAIL_RE.match(email):
                errors.append("email must be a valid address when deliveryChannel is Email")
            if user_id is not None:
                errors.append('The "userId" field should not be present when the deliveryChannel is "Email".')
        elif channel is Channel.SYSTEM:
            try:
                uuid.UUID(str(user_id))
            except ValueError:
                errors.append("userId must be a UUID when deliveryChannel is System")
            if email is not None:
                errors.append('The "email" field should not be present when the deliveryChannel is "System".')

        if errors:
            raise ValidationError("Invalid notification request", details=errors)

        return cls(
            event_name=event_name,
            channel=channel,
            delivery_mode=mode,
            content=content,
            recipient_email=email if channel is Channel.EMAIL else None,
            recipient_user_id=str(user_id) if channel is Channel.SYSTEM else None,
        )


@dataclass(slots=True)
class NotificationMessage:
    """Structured payload passed to concrete email providers."""

    to: str
    subject: str
    body_text: str
    body_html: Optional[str] = None
