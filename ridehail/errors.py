"""Typed failures raised by the booking core.

Every operation either succeeds or raises one of these; nothing is
swallowed. The HTTP layer maps them onto status codes with
``register_error_handlers``.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


logger = logging.getLogger("ridehail.errors")


class RideError(Exception):
    status_code = 400
    code = "ride_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(RideError):
    code = "validation_error"


class InvalidInput(ValidationError):
    """Fare calculator input outside its domain."""

    code = "invalid_input"


class InvalidTransition(RideError):
    code = "invalid_transition"


class NotFound(RideError):
    status_code = 404
    code = "not_found"


class Unauthorized(RideError):
    status_code = 401
    code = "unauthorized"


class Forbidden(RideError):
    status_code = 403
    code = "forbidden"


class Conflict(RideError):
    """A concurrent writer changed the row first. Re-read and retry."""

    status_code = 409
    code = "conflict"


class DuplicateRating(RideError):
    status_code = 409
    code = "duplicate_rating"


class PaymentFailed(RideError):
    status_code = 402
    code = "payment_failed"


class StoreError(RideError):
    """Transient store failure; safe to retry with backoff."""

    status_code = 503
    code = "store_error"


async def ride_error_handler(request: Request, exc: RideError):
    if exc.status_code >= 500:
        logger.warning("store failure on %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RideError, ride_error_handler)
