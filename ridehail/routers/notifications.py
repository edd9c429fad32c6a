import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import notifications
from ..auth import get_current_user
from ..database import get_db
from ..models import User
from ..schemas import NotificationsOut


router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=NotificationsOut)
def list_notifications(
    limit: int = Query(default=50, ge=1, le=200),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return NotificationsOut(
        unread=notifications.unread_count(db, user.id),
        notifications=notifications.list_notifications(db, user.id, limit),
    )


@router.post("/read")
def mark_all_read(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"updated": notifications.mark_read(db, user.id)}


@router.post("/{notification_id}/read")
def mark_read(notification_id: uuid.UUID, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"updated": notifications.mark_read(db, user.id, notification_id)}
