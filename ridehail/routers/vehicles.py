from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import vehicles
from ..auth import get_current_user
from ..database import get_db
from ..models import User
from ..schemas import VehicleOut


router = APIRouter(prefix="/vehicles", tags=["vehicles"])


@router.get("", response_model=List[VehicleOut])
def list_vehicles(
    vehicle_type: Optional[str] = Query(default=None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return vehicles.list_vehicles(db, vehicle_type)
