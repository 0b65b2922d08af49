"""
Salon waitlist API application
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, Optional
import logging
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from app.config import settings
from app.core.database import init_db, close_db
from app.core.exceptions import SalonWaitlistException, RateLimitError
from app.core.logging import setup_logging
from app.core.metrics import HTTP_LATENCY, HTTP_REQUESTS
from app.core.redis import init_redis, close_redis
from app.api.v1.api import api_router
from app.services.waitlist_jobs import WaitlistScheduler
from app.services.waitlist_service import waitlist_service

setup_logging()
logger = logging.getLogger(__name__)


def error_body(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    error = {"code": code, "message": message}
    if details:
        error["details"] = details
    return {"success": False, "error": error}


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION} ({settings.APP_ENV})")

    await init_db()

    # Without Redis, rate limiting fails open; leases cannot, so they require it
    try:
        await init_redis()
    except Exception:
        if settings.WAITLIST_SWEEP_DISTRIBUTED_LOCK:
            raise
        logger.warning("Redis unavailable, rate limiting disabled until it returns")

    scheduler = WaitlistScheduler(waitlist_service)
    if settings.WAITLIST_SWEEPS_ENABLED:
        scheduler.start()
    app.state.scheduler = scheduler

    yield

    logger.info("Shutting down")
    await scheduler.stop()
    await close_db()
    await close_redis()


app = FastAPI(
    title=settings.APP_NAME,
    description="Slot waitlist matching and notification engine for salon bookings",
    version=settings.APP_VERSION,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
    openapi_url="/openapi.json" if settings.DEBUG else None,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Authorization", "Content-Type"],
)


@app.middleware("http")
async def track_requests(request: Request, call_next):
    """
    Tag each request with an id and record route-level Prometheus metrics
    """
    request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    request.state.request_id = request_id

    started = time.perf_counter()
    response = await call_next(request)
    elapsed = time.perf_counter() - started

    # Label by route template, not raw path, so entry ids don't explode cardinality
    route = request.scope.get("route")
    route_path = getattr(route, "path", "unmatched")
    HTTP_REQUESTS.labels(request.method, route_path, response.status_code).inc()
    HTTP_LATENCY.labels(request.method, route_path).observe(elapsed)

    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time"] = f"{elapsed:.4f}"
    return response


@app.exception_handler(SalonWaitlistException)
async def waitlist_exception_handler(request: Request, exc: SalonWaitlistException):
    headers = None
    if isinstance(exc, RateLimitError):
        window = str(exc.details["window"])
        headers = {
            "X-RateLimit-Limit": str(exc.details["limit"]),
            "X-RateLimit-Remaining": "0",
            "X-RateLimit-Window": window,
            "Retry-After": window,
        }
    elif exc.status_code >= 500:
        logger.error(f"{exc.code}: {exc.message}", extra={"request_id": getattr(request.state, "request_id", None)})

    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.to_dict()}, headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    # Field-level issues use the JSON field name, without the "body" prefix
    issues = [
        {"field": ".".join(str(part) for part in error["loc"] if part != "body"), "message": error["msg"]}
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content=error_body("VALIDATION_ERROR", "Invalid request", {"issues": issues})
    )


@app.exception_handler(404)
async def not_found_handler(request: Request, exc):
    message = getattr(exc, "detail", None) or f"No route for {request.url.path}"
    return JSONResponse(status_code=404, content=error_body("NOT_FOUND", message))


@app.exception_handler(Exception)
async def internal_error_handler(request: Request, exc: Exception):
    logger.error(
        f"Unhandled error on {request.method} {request.url.path}: {exc}",
        exc_info=True,
        extra={"request_id": getattr(request.state, "request_id", None)}
    )
    return JSONResponse(status_code=500, content=error_body("INTERNAL_ERROR", "An internal server error occurred"))


@app.get("/")
async def root():
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.APP_ENV,
        "waitlist_api": f"{settings.API_PREFIX}/waitlist",
    }


app.include_router(api_router, prefix=settings.API_PREFIX)

if settings.PROMETHEUS_ENABLED:
    app.mount("/metrics", make_asgi_app())


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
