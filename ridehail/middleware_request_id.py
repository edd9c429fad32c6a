import json
import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


logger = logging.getLogger("ridehail.request")

QUIET_PATHS = {"/health", "/metrics"}


def _access_line(request: Request, req_id: str, status: int, started: float) -> str:
    return json.dumps({
        "request_id": req_id,
        "method": request.method,
        "path": request.url.path,
        "client": request.client.host if request.client else None,
        "status": status,
        "duration_ms": int((time.perf_counter() - started) * 1000),
    })


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tags each request with an X-Request-ID and writes one JSON access line."""

    async def dispatch(self, request: Request, call_next):
        req_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.request_id = req_id
        started = time.perf_counter()
        try:
            response: Response = await call_next(request)
        except Exception:
            logger.error(_access_line(request, req_id, 500, started))
            raise
        response.headers["X-Request-ID"] = req_id
        if request.url.path not in QUIET_PATHS:
            logger.info(_access_line(request, req_id, response.status_code, started))
        return response
