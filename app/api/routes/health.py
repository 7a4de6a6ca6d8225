"""
Health Check Endpoints

Health checks for load balancers and orchestrators. Dependencies are judged by
what the configured booking store actually needs:

- database: required only when BOOKING_STORE=sql
- redis: optional; without it reservation locks are process-local
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from app.config import settings
from app.infra.database import check_db_health
from app.infra.redis import check_redis_health

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/health", tags=["Health"])

VERSION = "1.0.0"

_started_at: Optional[datetime] = None


class CheckStatus(str, Enum):
    OK = "ok"
    DEGRADED = "degraded"
    FAILED = "failed"
    NOT_USED = "not_used"


# Statuses that still let the service take bookings
SERVING = frozenset({CheckStatus.OK, CheckStatus.DEGRADED, CheckStatus.NOT_USED})


def set_start_time() -> None:
    global _started_at
    _started_at = datetime.now(timezone.utc)


def uptime_seconds() -> Optional[float]:
    if _started_at is None:
        return None
    return round((datetime.now(timezone.utc) - _started_at).total_seconds(), 3)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    version: str
    environment: str
    booking_store: str


class ReadyResponse(BaseModel):
    status: str
    timestamp: datetime
    checks: dict[str, CheckStatus]
    lock_backend: str


class LiveResponse(BaseModel):
    status: str
    timestamp: datetime
    uptime_seconds: Optional[float] = None


class DetailedHealthResponse(ReadyResponse):
    version: str
    environment: str
    uptime_seconds: Optional[float]
    config: dict[str, str]


async def collect_checks() -> dict[str, CheckStatus]:
    checks: dict[str, CheckStatus] = {}

    if settings.uses_sql_store:
        checks["database"] = CheckStatus.OK if await check_db_health() else CheckStatus.FAILED
    else:
        checks["database"] = CheckStatus.NOT_USED

    checks["redis"] = CheckStatus.OK if await check_redis_health() else CheckStatus.DEGRADED
    return checks


def lock_backend(checks: dict[str, CheckStatus]) -> str:
    return "redis" if checks.get("redis") == CheckStatus.OK else "process_local"


def can_serve(checks: dict[str, CheckStatus]) -> bool:
    return all(check in SERVING for check in checks.values())


@router.get(
    "",
    response_model=HealthResponse,
    summary="Basic health check",
    description="200 while the process is up. Dependencies are not checked.",
)
async def health() -> HealthResponse:
    return HealthResponse(
        status="healthy",
        timestamp=_now(),
        version=VERSION,
        environment=settings.app_env,
        booking_store=settings.booking_store,
    )


@router.get(
    "/ready",
    response_model=ReadyResponse,
    summary="Readiness check",
    responses={503: {"description": "The booking store cannot be reached"}},
)
async def ready():
    checks = await collect_checks()
    response = ReadyResponse(
        status="ready" if can_serve(checks) else "not_ready",
        timestamp=_now(),
        checks=checks,
        lock_backend=lock_backend(checks),
    )
    if not can_serve(checks):
        logger.warning(f"Not ready: {checks}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(mode="json"),
        )
    return response


@router.get("/live", response_model=LiveResponse, summary="Liveness check")
async def live() -> LiveResponse:
    return LiveResponse(status="alive", timestamp=_now(), uptime_seconds=uptime_seconds())


@router.get(
    "/detailed",
    response_model=DetailedHealthResponse,
    summary="Detailed health check (development only)",
    include_in_schema=settings.is_development,
)
async def detailed() -> DetailedHealthResponse:
    if not settings.is_development:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")

    checks = await collect_checks()
    healthy = all(check in (CheckStatus.OK, CheckStatus.NOT_USED) for check in checks.values())

    return DetailedHealthResponse(
        status="healthy" if healthy else "degraded",
        timestamp=_now(),
        checks=checks,
        lock_backend=lock_backend(checks),
        version=VERSION,
        environment=settings.app_env,
        uptime_seconds=uptime_seconds(),
        # Non-secret settings only
        config={
            "booking_store": settings.booking_store,
            "default_industry": settings.default_industry,
            "slot_step_minutes": str(settings.slot_step_minutes or "duration"),
            "reservation_lock_timeout": str(settings.reservation_lock_timeout),
            "resource_cache_ttl": str(settings.resource_cache_ttl),
        },
    )
