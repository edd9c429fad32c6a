import uuid
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import saved_locations
from ..auth import get_current_user
from ..database import get_db
from ..models import User
from ..schemas import SavedLocationIn, SavedLocationOut, SavedLocationPatch


router = APIRouter(prefix="/saved_locations", tags=["saved_locations"])


@router.get("", response_model=List[SavedLocationOut])
def list_locations(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return saved_locations.list_locations(db, user.id)


@router.post("", response_model=SavedLocationOut)
def create_location(payload: SavedLocationIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return saved_locations.create_location(
        db, user.id, payload.label, payload.address, payload.lat, payload.lon, is_default=payload.is_default
    )


@router.patch("/{location_id}", response_model=SavedLocationOut)
def update_location(
    location_id: uuid.UUID,
    payload: SavedLocationPatch,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return saved_locations.update_location(db, user.id, location_id, **payload.model_dump(exclude_unset=True))


@router.delete("/{location_id}")
def delete_location(location_id: uuid.UUID, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    saved_locations.delete_location(db, user.id, location_id)
    return {"detail": "deleted"}
