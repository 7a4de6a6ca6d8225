"""
Booking Engine API

FastAPI application entry point that ties all components together.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from app.api.routes import availability, bookings, businesses, health, leads, policies
from app.config import settings
from app.core.booking.errors import BookingError
from app.infra.database import close_db, init_db
from app.infra.notifications import get_notification_dispatcher
from app.infra.redis import RedisClient

# BookingError.code -> HTTP status
ERROR_STATUS_CODES = {
    "validation_failed": status.HTTP_400_BAD_REQUEST,
    "not_found": status.HTTP_404_NOT_FOUND,
    "conflict": status.HTTP_409_CONFLICT,
    "invalid_transition": status.HTTP_409_CONFLICT,
    "lock_timeout": status.HTTP_503_SERVICE_UNAVAILABLE,
}


def setup_logging() -> None:
    """Configure logging based on environment."""
    log_level = logging.DEBUG if settings.debug else logging.INFO
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.debug else logging.WARNING
    )


logger = logging.getLogger(__name__)


async def prepare_store() -> None:
    """Create SQL tables on development databases; deployed ones are migrated."""
    if not (settings.uses_sql_store and settings.is_development):
        return
    try:
        await init_db()
        logger.info("Booking tables ready")
    except (SQLAlchemyError, OSError) as e:
        logger.warning(f"Could not create booking tables, continuing: {e}")


async def connect_lock_backend() -> None:
    if await RedisClient.get_client():
        logger.info("Reservation locks: redis")
    else:
        logger.warning("Reservation locks: process-local (Redis unavailable)")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    logger.info(
        f"Starting {settings.app_name} ({settings.app_env}, "
        f"store={settings.booking_store}, default industry={settings.default_industry})"
    )
    health.set_start_time()

    await prepare_store()
    await connect_lock_backend()

    yield

    logger.info("Shutting down")
    await get_notification_dispatcher().close()
    await RedisClient.close()
    if settings.uses_sql_store:
        await close_db()


app = FastAPI(
    title="Booking Engine API",
    description="""
    Multi-tenant booking and resource scheduling engine.

    ## Features
    - Restaurant, salon, real-estate and professional-services profiles
    - Conflict-free resource assignment with turnover buffers
    - Availability slots with per-slot resource and price
    - Auditable booking lifecycle with cancellation and no-show fees
    - Lead qualification and property recommendations

    Tenants are addressed in the path: `/businesses/{business_id}/...`
    """,
    version=health.VERSION,
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    openapi_url="/openapi.json" if settings.is_development else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BookingError)
async def booking_exception_handler(
    request: Request,
    exc: BookingError,
) -> JSONResponse:
    """Map booking failures to HTTP statuses."""
    status_code = ERROR_STATUS_CODES.get(exc.code, status.HTTP_400_BAD_REQUEST)
    logger.info(f"{request.method} {request.url.path} -> {status_code} ({exc.code})")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Handle Pydantic validation errors."""
    logger.warning(f"Validation error: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "Validation error",
            "detail": jsonable_errors(exc),
        },
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    """Pydantic errors without non-serializable context objects."""
    return [
        {key: value for key, value in error.items() if key != "ctx"}
        for error in exc.errors()
    ]


@app.exception_handler(Exception)
async def generic_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "internal_error",
            "message": str(exc) if settings.is_development else "Internal server error",
        },
    )


@app.middleware("http")
async def request_timing_middleware(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000

    response.headers["X-Process-Time-Ms"] = f"{elapsed_ms:.1f}"
    if settings.debug:
        logger.debug(f"{request.method} {request.url.path} {response.status_code} {elapsed_ms:.1f}ms")
    return response


app.include_router(health.router)
app.include_router(businesses.router)
app.include_router(bookings.router)
app.include_router(availability.router)
app.include_router(policies.router)
app.include_router(leads.router)


@app.get("/", tags=["Root"])
async def root() -> dict:
    """Service information and entry points."""
    return {
        "name": settings.app_name,
        "version": health.VERSION,
        "environment": settings.app_env,
        "booking_store": settings.booking_store,
        "endpoints": {
            "businesses": "/businesses/{business_id}",
            "bookings": "/businesses/{business_id}/bookings",
            "availability": "/businesses/{business_id}/availability",
            "health": "/health",
        },
        "docs": "/docs" if settings.is_development else None,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level="debug" if settings.debug else "info",
    )
