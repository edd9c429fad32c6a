import uuid
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from .database import atomic
from .errors import NotFound, ValidationError
from .models import SavedLocation


def _check(label: Optional[str], address: Optional[str], lat: Optional[float], lon: Optional[float]) -> None:
    if label is not None and not label.strip():
        raise ValidationError("label is required")
    if address is not None and not address.strip():
        raise ValidationError("address is required")
    if lat is not None and not -90.0 <= lat <= 90.0:
        raise ValidationError("lat out of range")
    if lon is not None and not -180.0 <= lon <= 180.0:
        raise ValidationError("lon out of range")


def _clear_default(db: Session, user_id: uuid.UUID, keep_id: Optional[uuid.UUID] = None) -> None:
    stmt = update(SavedLocation).where(SavedLocation.user_id == user_id, SavedLocation.is_default.is_(True))
    if keep_id is not None:
        stmt = stmt.where(SavedLocation.id != keep_id)
    db.execute(stmt.values(is_default=False).execution_options(synchronize_session="fetch"))


def list_locations(db: Session, user_id: uuid.UUID) -> List[SavedLocation]:
    stmt = (
        select(SavedLocation)
        .where(SavedLocation.user_id == user_id)
        .order_by(SavedLocation.is_default.desc(), SavedLocation.created_at.desc())
    )
    return db.execute(stmt).scalars().all()


def _owned(db: Session, user_id: uuid.UUID, location_id: uuid.UUID) -> SavedLocation:
    loc = db.get(SavedLocation, location_id)
    if loc is None or loc.user_id != user_id:
        raise NotFound("saved location not found")
    return loc


def create_location(
    db: Session, user_id: uuid.UUID, label: str, address: str, lat: float, lon: float, is_default: bool = False
) -> SavedLocation:
    _check(label or "", address or "", lat, lon)
    with atomic(db):
        if is_default:
            _clear_default(db, user_id)
        loc = SavedLocation(
            user_id=user_id, label=label.strip(), address=address.strip(), lat=lat, lon=lon, is_default=is_default
        )
        db.add(loc)
        db.flush()
    return loc


def update_location(db: Session, user_id: uuid.UUID, location_id: uuid.UUID, **fields) -> SavedLocation:
    _check(fields.get("label"), fields.get("address"), fields.get("lat"), fields.get("lon"))
    with atomic(db):
        loc = _owned(db, user_id, location_id)
        for key in ("label", "address"):
            if fields.get(key) is not None:
                setattr(loc, key, fields[key].strip())
        for key in ("lat", "lon"):
            if fields.get(key) is not None:
                setattr(loc, key, fields[key])
        if fields.get("is_default") is not None:
            if fields["is_default"]:
                _clear_default(db, user_id, keep_id=loc.id)
            loc.is_default = bool(fields["is_default"])
    return loc


def delete_location(db: Session, user_id: uuid.UUID, location_id: uuid.UUID) -> None:
    with atomic(db):
        db.delete(_owned(db, user_id, location_id))
