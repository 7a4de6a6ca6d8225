"""
Availability API Endpoint.

Slot generation for a business-local date.
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.core.booking.engine import BookingEngine, get_booking_engine
from app.core.booking.types import BookingMode, Requirement

router = APIRouter(prefix="/businesses/{business_id}/availability", tags=["Availability"])


class AvailabilityRequest(BaseModel):
    """Availability query."""

    date: str = Field(..., description="Local date, yyyy-MM-dd", examples=["2026-11-02"])
    duration_minutes: int = Field(..., gt=0, le=24 * 60, description="Slot length")
    party_size: int = Field(default=1, ge=1)
    specialization: Optional[str] = Field(
        default=None,
        description="Service category or property type the resource must cover",
    )
    territory: Optional[str] = None
    location_preference: Optional[str] = Field(default=None, description="e.g. patio, window")
    gender_preference: Optional[str] = None
    preferred_resource_id: Optional[str] = None
    mode: BookingMode = BookingMode.IN_PERSON
    step_minutes: Optional[int] = Field(default=None, gt=0, description="Spacing between slot starts")
    attributes: dict[str, Any] = Field(default_factory=dict, description="Used for slot pricing")

    def to_requirement(self) -> Requirement:
        return Requirement(
            party_size=self.party_size,
            specialization=self.specialization,
            territory=self.territory,
            location_preference=self.location_preference,
            gender_preference=self.gender_preference,
            preferred_resource_id=self.preferred_resource_id,
            mode=self.mode,
        )


@router.post("", summary="Available slots for a date")
async def get_availability(
    business_id: str,
    request: AvailabilityRequest,
    engine: BookingEngine = Depends(get_booking_engine),
) -> dict:
    """
    Generate slots for a date.

    Each slot names the resource it would be booked on. Slots inside the
    minimum-notice window are returned as unavailable.
    """
    slots = await engine.generate_availability(
        business_id,
        request.date,
        request.duration_minutes,
        requirement=request.to_requirement(),
        attributes=request.attributes,
        step_minutes=request.step_minutes,
    )
    return {
        "business_id": business_id,
        "date": request.date,
        "slots": [slot.to_dict() for slot in slots],
        "available_count": sum(1 for slot in slots if slot.available),
    }
