"""Persistence of System-channel notifications."""
from __future__ import annotations

import logging
import math
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import Boolean, Column, DateTime, String, Text, create_engine, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from .errors import NotFoundError, NotificationError, PersistenceError, ValidationError
from .models import Channel, DeliveryMode, capitalize_event

LOGGER = logging.getLogger(__name__)

Base = declarative_base()

UPDATABLE_FIELDS = {"event_emitted", "delivery_channel", "notification_type", "user_id", "content", "read"}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationRecordModel(Base):
    __tablename__ = "system_notifications"
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    date = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    event_emitted = Column(String(255), nullable=False)
    delivery_channel = Column(String(20), default=Channel.SYSTEM.value, nullable=False)
    notification_type = Column(String(20), nullable=False)
    user_id = Column(String(36), index=True, nullable=False)
    content = Column(Text, nullable=False)
    read = Column(Boolean, default=False, nullable=False)


def _record_to_dict(model: NotificationRecordModel) -> Dict[str, Any]:
    return {
        "id": model.id,
        "date": model.date.isoformat() if model.date else None,
        "event_emitted": model.event_emitted,
        "delivery_channel": model.delivery_channel,
        "notification_type": model.notification_type,
        "system_metadata": {"user_id": model.user_id, "content": model.content},
        "read": bool(model.read),
    }


def _validate_update(fields: Mapping[str, Any]) -> Dict[str, Any]:
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError("Invalid input data.", details=sorted(unknown))
    cleaned = dict(fields)
    if "event_emitted" in cleaned:
        if not isinstance(cleaned["event_emitted"], str) or not cleaned["event_emitted"].strip():
            raise ValidationError("Invalid input data.", details=["event_emitted"])
        cleaned["event_emitted"] = capitalize_event(cleaned["event_emitted"])
    if "content" in cleaned and (not isinstance(cleaned["content"], str) or not cleaned["content"].strip()):
        raise ValidationError("Invalid input data.", details=["content"])
    if "user_id" in cleaned:
        try:
            cleaned["user_id"] = str(uuid.UUID(cleaned["user_id"]))
        except (TypeError, ValueError, AttributeError):
            raise ValidationError("Invalid input data.", details=["user_id"])
    if "delivery_channel" in cleaned and cleaned["delivery_channel"] not in {c.value for c in Channel}:
        raise ValidationError("Invalid input data.", details=["delivery_channel"])
    if "notification_type" in cleaned and cleaned["notification_type"] not in {m.value for m in DeliveryMode}:
        raise ValidationError("Invalid input data.", details=["notification_type"])
    if "read" in cleaned and not isinstance(cleaned["read"], bool):
        raise ValidationError("Invalid input data.", details=["read"])
    return cleaned


class RecordStore:
    """Keyed CRUD over persisted System notifications."""

    def __init__(self, database_url: str):
        engine_kwargs: dict[str, Any] = {"future": True}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            pool_pre_ping = False
        else:
            pool_pre_ping = True
        if database_url in {"sqlite://", "sqlite:///:memory:"}:
            engine_kwargs["poolclass"] = StaticPool
        self.engine = create_engine(database_url, pool_pre_ping=pool_pre_ping, **engine_kwargs)
        self.SessionLocal = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False, future=True)
        Base.metadata.create_all(bind=self.engine)

    def _db_error(self, exc: Exception) -> NotificationError:
        if isinstance(exc, NotificationError):
            return exc
        LOGGER.error("Unknown error in the database: %s", exc)
        return PersistenceError()

    def _get(self, session, record_id: str) -> NotificationRecordModel:
        row = session.get(NotificationRecordModel, record_id)
        if row is None:
            raise NotFoundError(f"Notification with ID {record_id} not found in the database")
        return row

    def create(self, fields: Mapping[str, Any]) -> Dict[str, Any]:
        try:
            with self.SessionLocal() as session:
                row = NotificationRecordModel(
                    id=str(uuid.uuid4()),
                    date=fields.get("date") or _utcnow(),
                    event_emitted=fields["event_emitted"],
                    delivery_channel=fields.get("delivery_channel", Channel.SYSTEM.value),
                    notification_type=fields["notification_type"],
                    user_id=fields["user_id"],
                    content=fields["content"],
                    read=bool(fields.get("read", False)),
                )
                session.add(row)
                session.commit()
                return _record_to_dict(row)
        except KeyError as exc:
            raise ValidationError("Invalid input data.", details=[str(exc)]) from exc
        except SQLAlchemyError as exc:
            raise self._db_error(exc) from exc

    def find_all(self, limit: int = 10, offset: int = 0) -> Dict[str, Any]:
        if limit <= 0 or offset < 0:
            raise ValidationError("limit must be positive and offset non-negative")
        try:
            with self.SessionLocal() as session:
                rows = session.scalars(
                    select(NotificationRecordModel)
                    .order_by(NotificationRecordModel.date, NotificationRecordModel.id)
                    .offset(offset)
                    .limit(limit)
                ).all()
                total = session.scalar(select(func.count()).select_from(NotificationRecordModel)) or 0
        except SQLAlchemyError as exc:
            raise self._db_error(exc) from exc
        return {
            "items": [_record_to_dict(row) for row in rows],
            "total": total,
            "current_page": offset // limit + 1,
            "total_pages": math.ceil(total / limit),
        }

    def find_by_id(self, record_id: str) -> Dict[str, Any]:
        try:
            with self.SessionLocal() as session:
                return _record_to_dict(self._get(session, record_id))
        except SQLAlchemyError as exc:
            raise self._db_error(exc) from exc

    def find_by_user_id(self, user_id: str) -> List[Dict[str, Any]]:
        try:
            with self.SessionLocal() as session:
                rows = session.scalars(
                    select(NotificationRecordModel)
                    .where(NotificationRecordModel.user_id == user_id)
                    .order_by(NotificationRecordModel.date)
                ).all()
        except SQLAlchemyError as exc:
            raise self._db_error(exc) from exc
        if not rows:
            LOGGER.error("User not found or no notifications for userId %s", user_id)
            raise NotFoundError("User not found or no notifications for this userId.")
        return [_record_to_dict(row) for row in rows]

    def update_by_id(self, record_id: str, fields: Mapping[str, Any]) -> Dict[str, Any]:
        cleaned = _validate_update(fields)
        try:
            with self.SessionLocal() as session:
                row = self._get(session, record_id)
                for name, value in cleaned.items():
                    setattr(row, name, value)
                session.commit()
                return _record_to_dict(row)
        except SQLAlchemyError as exc:
            raise self._db_error(exc) from exc

    def set_read_status(self, record_id: str, status: bool) -> Dict[str, Any]:
        return self.update_by_id(record_id, {"read": bool(status)})

    def delete_by_id(self, record_id: str) -> str:
        try:
            with self.SessionLocal() as session:
                session.delete(self._get(session, record_id))
                session.commit()
        except SQLAlchemyError as exc:
            raise self._db_error(exc) from exc
        return "Deleted successfully"
