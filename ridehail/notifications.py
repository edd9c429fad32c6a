from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, Optional, Protocol

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .models import Notification


logger = logging.getLogger("ridehail.notifications")

KINDS = (
    "booking_created",
    "booking_confirmed",
    "driver_assigned",
    "driver_arriving",
    "driver_arrived",
    "ride_started",
    "ride_completed",
    "ride_cancelled",
    "no_show",
    "payment_received",
    "payment_refunded",
)


class Notifier(Protocol):
    def notify(self, user_id: uuid.UUID, kind: str, payload: Optional[Dict[str, Any]] = None) -> None:
        ...


class StoreNotifier:
    """Persists notifications for the in-app inbox. Best effort."""

    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory

    def notify(self, user_id: uuid.UUID, kind: str, payload: Optional[Dict[str, Any]] = None) -> None:
        if kind not in KINDS:
            raise ValueError(f"unknown notification kind: {kind!r}")
        db = self._session_factory()
        try:
            db.add(Notification(user_id=user_id, kind=kind, payload=payload or {}))
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.warning("notification %s for user %s not stored", kind, user_id, exc_info=True)
        finally:
            db.close()


def list_notifications(db: Session, user_id: uuid.UUID, limit: int = 50):
    stmt = (
        select(Notification)
        .where(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc())
        .limit(max(1, min(limit, 200)))
    )
    return db.execute(stmt).scalars().all()


def unread_count(db: Session, user_id: uuid.UUID) -> int:
    stmt = select(func.count(Notification.id)).where(Notification.user_id == user_id, Notification.is_read.is_(False))
    return int(db.execute(stmt).scalar_one())


def mark_read(db: Session, user_id: uuid.UUID, notification_id: Optional[uuid.UUID] = None) -> int:
    stmt = update(Notification).where(Notification.user_id == user_id, Notification.is_read.is_(False))
    if notification_id is not None:
        stmt = stmt.where(Notification.id == notification_id)
    res = db.execute(stmt.values(is_read=True).execution_options(synchronize_session=False))
    return res.rowcount or 0
