"""Driver locations.

Writes are last-write-wins by report timestamp. Observers get a
cancellable async subscription that seeds itself with the latest known
position, so a consumer can drop a subscription and start another
without missing where the driver currently is.
"""
from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional, Set

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from .database import atomic
from .errors import NotFound, ValidationError
from .models import Driver, utcnow


logger = logging.getLogger("ridehail.locations")


@dataclass(frozen=True)
class LocationUpdate:
    driver_id: uuid.UUID
    lat: float
    lon: float
    at: datetime


_CLOSED = object()


class LocationSubscription:
    def __init__(self, feed: "LocationFeed", driver_id: uuid.UUID, loop: asyncio.AbstractEventLoop) -> None:
        self.feed = feed
        self.driver_id = driver_id
        self._loop = loop
        self._queue: asyncio.Queue = asyncio.Queue()
        self._last_at: Optional[datetime] = None
        self.closed = False

    def _offer(self, item) -> None:
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, item)
        except RuntimeError:
            # Loop already closed
            self.closed = True
            self.feed._remove(self)

    def __aiter__(self):
        return self

    async def __anext__(self) -> LocationUpdate:
        while True:
            if self.closed and self._queue.empty():
                raise StopAsyncIteration
            item = await self._queue.get()
            if item is _CLOSED:
                raise StopAsyncIteration
            if self._last_at is not None and item.at <= self._last_at:
                continue
            self._last_at = item.at
            return item

    def cancel(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.feed._remove(self)
        self._offer(_CLOSED)

    def restart(self) -> "LocationSubscription":
        self.cancel()
        return self.feed.subscribe(self.driver_id, loop=self._loop)


class LocationFeed:
    def __init__(self) -> None:
        self._subs: Dict[uuid.UUID, Set[LocationSubscription]] = {}
        self._latest: Dict[uuid.UUID, LocationUpdate] = {}
        self._lock = threading.Lock()

    def latest(self, driver_id: uuid.UUID) -> Optional[LocationUpdate]:
        with self._lock:
            return self._latest.get(driver_id)

    def publish(self, item: LocationUpdate) -> bool:
        with self._lock:
            held = self._latest.get(item.driver_id)
            if held is not None and item.at <= held.at:
                return False
            self._latest[item.driver_id] = item
            subs = list(self._subs.get(item.driver_id, ()))
        for sub in subs:
            sub._offer(item)
        return True

    def subscribe(self, driver_id: uuid.UUID, loop: Optional[asyncio.AbstractEventLoop] = None) -> LocationSubscription:
        sub = LocationSubscription(self, driver_id, loop or asyncio.get_running_loop())
        with self._lock:
            self._subs.setdefault(driver_id, set()).add(sub)
            seed = self._latest.get(driver_id)
        if seed is not None:
            sub._offer(seed)
        return sub

    def _remove(self, sub: LocationSubscription) -> None:
        with self._lock:
            subs = self._subs.get(sub.driver_id)
            if subs and sub in subs:
                subs.discard(sub)
            if subs is not None and not subs:
                self._subs.pop(sub.driver_id, None)

    def subscriber_count(self, driver_id: uuid.UUID) -> int:
        with self._lock:
            return len(self._subs.get(driver_id, ()))


feed = LocationFeed()


def update_driver_location(
    db: Session,
    driver_id: uuid.UUID,
    lat: float,
    lon: float,
    at: Optional[datetime] = None,
    location_feed: Optional[LocationFeed] = None,
) -> bool:
    """Store a position report; returns False when a newer one is already stored."""
    if not -90.0 <= lat <= 90.0 or not -180.0 <= lon <= 180.0:
        raise ValidationError("coordinates out of range")
    at = at or utcnow()
    if at.tzinfo is not None:
        at = at.astimezone(timezone.utc).replace(tzinfo=None)
    with atomic(db):
        if db.get(Driver, driver_id) is None:
            raise NotFound("driver not found")
        res = db.execute(
            update(Driver)
            .where(
                Driver.id == driver_id,
                or_(Driver.location_updated_at.is_(None), Driver.location_updated_at < at),
            )
            .values(current_lat=lat, current_lon=lon, location_updated_at=at)
            .execution_options(synchronize_session="fetch")
        )
        applied = res.rowcount == 1
    if applied:
        (location_feed or feed).publish(LocationUpdate(driver_id, lat, lon, at))
    else:
        logger.debug("stale location for driver %s discarded", driver_id)
    return applied
