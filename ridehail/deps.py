from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import Session

from .database import SessionLocal, get_db
from .events import bus
from .lifecycle import BookingManager
from .notifications import Notifier, StoreNotifier
from .payments import PaymentProcessor, default_processor


@lru_cache(maxsize=1)
def get_processor() -> PaymentProcessor:
    return default_processor()


def get_notifier() -> Notifier:
    return StoreNotifier(SessionLocal)


def get_manager(
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    processor: PaymentProcessor = Depends(get_processor),
) -> BookingManager:
    return BookingManager(db, notifier=notifier, processor=processor, events=bus)
