import logging
import time

import sentry_sdk
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .config import settings
from .database import engine
from .errors import register_error_handlers
from .middleware_request_id import RequestIDMiddleware
from .models import Base
from .routers import admin, auth, bookings, driver, fares, notifications, saved_locations, vehicles


logger = logging.getLogger("ridehail.app")

HTTP_REQUESTS = Counter("http_requests_total", "HTTP requests", ["method", "path", "status"])
HTTP_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5),
)

PUBLIC_ROUTERS = (auth, fares, bookings, driver, saved_locations, vehicles, notifications)


def _install_metrics(app: FastAPI) -> None:
    @app.middleware("http")
    async def _observe(request: Request, call_next):
        started = time.perf_counter()
        response = await call_next(request)
        # label by route template so ids do not explode cardinality
        path = getattr(request.scope.get("route"), "path", None) or request.url.path
        HTTP_REQUESTS.labels(request.method, path, str(response.status_code)).inc()
        HTTP_LATENCY.labels(request.method, path).observe(time.perf_counter() - started)
        return response

    @app.get("/metrics", include_in_schema=False)
    def metrics():
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


def create_app() -> FastAPI:
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    if settings.SENTRY_DSN:
        sentry_sdk.init(dsn=settings.SENTRY_DSN, traces_sample_rate=settings.SENTRY_TRACES_SAMPLE_RATE, environment=settings.ENV)

    app = FastAPI(title="Ridehail API", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)

    if settings.AUTO_CREATE_SCHEMA:
        Base.metadata.create_all(bind=engine)
        logger.info("schema ensured on %s", engine.url.get_backend_name())

    @app.get("/health")
    def health():
        try:
            with engine.connect() as conn:
                conn.execute(text("select 1"))
        except SQLAlchemyError as exc:
            logger.warning("health check: store unreachable: %s", exc)
            return JSONResponse(status_code=503, content={"status": "degraded", "env": settings.ENV})
        return {"status": "ok", "env": settings.ENV}

    _install_metrics(app)

    for module in PUBLIC_ROUTERS:
        app.include_router(module.router)
    if settings.ADMIN_TOKEN:
        app.include_router(admin.router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("ridehail.main:app", host=settings.APP_HOST, port=settings.APP_PORT)
