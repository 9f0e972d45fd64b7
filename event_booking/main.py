"""
Event Booking API - Main Application Entry Point

An event booking service built around one correctness property: no event
is ever overbooked, however many requests race for its last spots.
- Atomic conditional decrement of available spots, no application locks
- Compensation by transaction rollback when the booking insert fails
- Fire-and-forget booking notifications (email, WhatsApp)
- Redis-cached listings, structured logging, Prometheus metrics
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from event_booking.core.config import get_settings
from event_booking.core.errors import AppError, ErrorCode
from event_booking.core.logging import setup_logging, get_logger
from event_booking.core.metrics import metrics_endpoint
from event_booking.api.router import api_router
from event_booking.api.middleware import RequestLoggingMiddleware
from event_booking.services.cache_service import get_redis, close_redis, get_cache_stats
from event_booking.services.notification_service import get_notification_sender

settings = get_settings()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
    )

    redis_client = await get_redis()
    if redis_client:
        logger.info("redis_ready")
    else:
        logger.warning("redis_unavailable", message="Running without cache")

    sender = get_notification_sender()
    logger.info("notification_sender_ready", sender=type(sender).__name__)

    yield

    await close_redis()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Event booking API with overbooking-safe spot reservations",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)

app.include_router(api_router)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("request_error", code=exc.code.value, message=exc.message)
    else:
        logger.info("request_rejected", code=exc.code.value, message=exc.message)

    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    fields = {
        ".".join(str(part) for part in err.get("loc", ()) if part != "body"): err.get("msg", "")
        for err in errors
    }
    message = next(iter(fields.values()), "Invalid request")
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": {
                "code": ErrorCode.VALIDATION_ERROR.value,
                "message": message,
                "fields": fields,
            },
        },
    )


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    cache_stats = await get_cache_stats()
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "cache": cache_stats,
    }


@app.get("/metrics", tags=["Health"], include_in_schema=False)
def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
