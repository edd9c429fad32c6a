"""Domain events emitted by the booking core.

Handlers run synchronously after the transition has been committed;
a failing handler is logged and never undoes the transition.
"""
from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple, Type


logger = logging.getLogger("ridehail.events")


@dataclass(frozen=True)
class BookingCreated:
    booking_id: uuid.UUID
    rider_id: uuid.UUID
    status: str
    version: int
    updated_at: datetime


@dataclass(frozen=True)
class StatusChanged:
    booking_id: uuid.UUID
    from_status: str
    to_status: str
    version: int
    updated_at: datetime
    driver_id: Optional[uuid.UUID] = None


Handler = Callable[[object], None]


class EventBus:
    def __init__(self) -> None:
        self._handlers: Dict[Type, List[Handler]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event_type: Type, handler: Handler) -> Callable[[], None]:
        """Register ``handler``; the returned callable unsubscribes it."""
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)

        def unsubscribe() -> None:
            with self._lock:
                handlers = self._handlers.get(event_type, [])
                if handler in handlers:
                    handlers.remove(handler)

        return unsubscribe

    def publish(self, event: object) -> None:
        with self._lock:
            handlers = list(self._handlers.get(type(event), []))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("event handler failed for %s", type(event).__name__)


class StatusTracker:
    """Last-write-wins view of booking status fed by pushed events.

    Deliveries may arrive out of order; an event older than the one
    already held (by ``updated_at`` then ``version``) is discarded.
    """

    def __init__(self) -> None:
        self._latest: Dict[uuid.UUID, Tuple[datetime, int, str]] = {}
        self._lock = threading.Lock()

    def apply(self, event) -> bool:
        status = event.to_status if isinstance(event, StatusChanged) else event.status
        key = (event.updated_at, event.version)
        with self._lock:
            held = self._latest.get(event.booking_id)
            if held is not None and key <= held[:2]:
                return False
            self._latest[event.booking_id] = (event.updated_at, event.version, status)
        return True

    def status_of(self, booking_id: uuid.UUID) -> Optional[str]:
        with self._lock:
            held = self._latest.get(booking_id)
        return held[2] if held else None

    def attach(self, bus: EventBus) -> Callable[[], None]:
        off_created = bus.subscribe(BookingCreated, self.apply)
        off_changed = bus.subscribe(StatusChanged, self.apply)

        def detach() -> None:
            off_created()
            off_changed()

        return detach


bus = EventBus()
