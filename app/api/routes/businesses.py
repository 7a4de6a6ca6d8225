"""
Business Setup Endpoints.

Register tenants and their schedulable resources.
"""

import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, status
from pydantic import BaseModel, Field

from app.config import settings
from app.core.booking.engine import BookingEngine, get_booking_engine
from app.core.booking.errors import ValidationError
from app.core.booking.hours import get_zone, parse_weekly_hours
from app.core.booking.types import BusinessProfile, Industry, resource_from_dict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/businesses", tags=["Businesses"])


class BusinessRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    industry: Industry = Field(default_factory=lambda: Industry(settings.default_industry))
    timezone: str = Field(default="UTC", description="IANA timezone", examples=["America/New_York"])
    operating_hours: dict[str, Optional[dict[str, Any]]] = Field(
        default_factory=dict,
        description='{"monday": {"open": "09:00", "close": "17:00", "breaks": [...]}, ...}',
    )


@router.put("/{business_id}", summary="Create or update a business")
async def put_business(
    business_id: str,
    request: BusinessRequest,
    engine: BookingEngine = Depends(get_booking_engine),
) -> dict:
    try:
        get_zone(request.timezone)
        hours = parse_weekly_hours(request.operating_hours)
    except ValueError as e:
        raise ValidationError.for_rule("invalid_business", str(e)) from e

    business = await engine.register_business(
        BusinessProfile(
            id=business_id,
            name=request.name,
            industry=request.industry,
            timezone=request.timezone,
            operating_hours=hours,
        )
    )
    return business.to_dict()


@router.get("/{business_id}", summary="Get a business")
async def get_business(
    business_id: str,
    engine: BookingEngine = Depends(get_booking_engine),
) -> dict:
    business = await engine.get_business(business_id)
    return business.to_dict()


@router.get("/{business_id}/resources", summary="List resources")
async def list_resources(
    business_id: str,
    engine: BookingEngine = Depends(get_booking_engine),
) -> dict:
    resources = await engine.list_resources(business_id)
    return {"business_id": business_id, "resources": [r.to_dict() for r in resources]}


@router.post(
    "/{business_id}/resources",
    status_code=status.HTTP_201_CREATED,
    summary="Add a resource",
    description='Body is a resource with a "kind" of table, staff or agent.',
)
async def add_resource(
    business_id: str,
    payload: dict[str, Any] = Body(..., examples=[{"kind": "table", "number": "1", "min_party": 2, "max_party": 4}]),
    engine: BookingEngine = Depends(get_booking_engine),
) -> dict:
    try:
        resource = resource_from_dict(payload)
    except (TypeError, ValueError) as e:
        raise ValidationError.for_rule("invalid_resource", str(e)) from e

    saved = await engine.add_resource(business_id, resource)
    return saved.to_dict()
