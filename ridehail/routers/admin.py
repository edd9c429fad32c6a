import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import drivers, vehicles
from ..auth import require_admin
from ..database import get_db
from ..deps import get_manager, get_processor
from ..lifecycle import BookingManager
from ..payments import CircuitBreaker, HttpPaymentProcessor
from ..schemas import (
    BookingOut,
    DriverOut,
    KycIn,
    PaymentOut,
    VehicleAssignIn,
    VehicleIn,
    VehicleOut,
    VehicleStatusIn,
)


router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.post("/bookings/{booking_id}/assign/{driver_id}", response_model=BookingOut)
def assign_booking(booking_id: uuid.UUID, driver_id: uuid.UUID, manager: BookingManager = Depends(get_manager)):
    return manager.assign_driver(booking_id, driver_id)


@router.post("/bookings/{booking_id}/refund", response_model=PaymentOut)
def refund_booking(booking_id: uuid.UUID, manager: BookingManager = Depends(get_manager)):
    return manager.refund(booking_id)


@router.put("/drivers/{driver_id}/kyc", response_model=DriverOut)
def set_kyc(driver_id: uuid.UUID, payload: KycIn, db: Session = Depends(get_db)):
    return drivers.set_kyc_status(db, driver_id, payload.status)


@router.get("/vehicles", response_model=List[VehicleOut])
def all_vehicles(vehicle_type: Optional[str] = Query(default=None), db: Session = Depends(get_db)):
    return vehicles.list_vehicles(db, vehicle_type, include_inactive=True)


@router.post("/vehicles", response_model=VehicleOut)
def create_vehicle(payload: VehicleIn, db: Session = Depends(get_db)):
    return vehicles.create_vehicle(
        db, payload.vehicle_type, payload.license_plate, payload.capacity, payload.make, payload.model
    )


@router.put("/vehicles/{vehicle_id}/status", response_model=VehicleOut)
def set_vehicle_status(vehicle_id: uuid.UUID, payload: VehicleStatusIn, db: Session = Depends(get_db)):
    return vehicles.set_vehicle_status(db, vehicle_id, payload.status)


@router.put("/vehicles/{vehicle_id}/driver", response_model=VehicleOut)
def assign_vehicle(vehicle_id: uuid.UUID, payload: VehicleAssignIn, db: Session = Depends(get_db)):
    return vehicles.assign_vehicle(db, vehicle_id, payload.driver_id)


@router.get("/payments/circuit")
def payments_circuit(processor=Depends(get_processor)):
    breaker: Optional[CircuitBreaker] = processor.breaker if isinstance(processor, HttpPaymentProcessor) else None
    return {"enabled": bool(breaker and breaker.enabled), "ops": breaker.snapshot() if breaker else {}}
