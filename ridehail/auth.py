import datetime as dt
import hmac
import uuid

import jwt
from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from .config import settings
from .database import get_db
from .drivers import get_driver_by_user
from .errors import Forbidden, NotFound, Unauthorized
from .models import Driver, User


bearer_scheme = HTTPBearer(auto_error=True)

TOKEN_ALGORITHM = "HS256"


def create_access_token(user_id: str, phone: str, role: str = "rider") -> str:
    issued = dt.datetime.now(dt.timezone.utc)
    claims = {
        "sub": user_id,
        "phone": phone,
        "role": role,
        "iat": int(issued.timestamp()),
        "exp": int((issued + settings.jwt_expires_delta).timestamp()),
    }
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=TOKEN_ALGORITHM)


def _subject(token: str) -> uuid.UUID:
    try:
        claims = jwt.decode(token, settings.JWT_SECRET, algorithms=[TOKEN_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise Unauthorized("token expired")
    except jwt.InvalidTokenError:
        raise Unauthorized("invalid token")
    try:
        return uuid.UUID(str(claims.get("sub")))
    except ValueError:
        raise Unauthorized("invalid token subject")


def get_current_user(
    creds: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    user = db.get(User, _subject(creds.credentials))
    if user is None:
        raise Unauthorized("unknown user")
    return user


def get_current_driver(user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> Driver:
    """Only users who have applied as drivers pass; KYC is checked per action."""
    try:
        return get_driver_by_user(db, user.id)
    except NotFound:
        raise Forbidden("not a driver")


def require_admin(x_admin_token: str | None = Header(default=None)) -> None:
    if not settings.ADMIN_TOKEN or not x_admin_token:
        raise Forbidden("admin only")
    if not hmac.compare_digest(x_admin_token.encode(), settings.ADMIN_TOKEN.encode()):
        raise Forbidden("admin only")
