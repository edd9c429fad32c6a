import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import create_access_token, get_current_user
from ..database import get_db
from ..errors import ValidationError
from ..models import User
from ..otp import get_gate, normalize_phone
from ..schemas import ProfileIn, RequestOtpIn, RequestOtpOut, TokenOut, UserOut, VerifyOtpIn


logger = logging.getLogger("ridehail.auth")

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/request_otp", response_model=RequestOtpOut)
def request_otp(payload: RequestOtpIn):
    result = get_gate().send_code(payload.phone)
    return RequestOtpOut(session_id=result.session_id, dev_code=result.code if result.is_dev else None)


@router.post("/verify_otp", response_model=TokenOut)
def verify_otp(payload: VerifyOtpIn, db: Session = Depends(get_db)):
    phone = normalize_phone(payload.phone)
    if not get_gate().verify_code(phone, payload.otp, session_id=payload.session_id):
        raise ValidationError("invalid or expired code")
    user = db.query(User).filter(User.phone == phone).one_or_none()
    if user is None:
        user = User(phone=phone, name=payload.name, role="rider")
        db.add(user)
        db.flush()
        logger.info("new rider %s", user.id)
    elif payload.name and not user.name:
        user.name = payload.name
    return TokenOut(access_token=create_access_token(str(user.id), user.phone, role=user.role))


@router.get("/me", response_model=UserOut)
def me(user: User = Depends(get_current_user)):
    return user


@router.put("/me", response_model=UserOut)
def update_me(payload: ProfileIn, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    if payload.name is not None:
        user.name = payload.name.strip() or None
    if payload.email is not None:
        user.email = payload.email.strip() or None
    db.flush()
    return user
