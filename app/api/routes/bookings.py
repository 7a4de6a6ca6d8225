"""
Booking API Endpoints.

Validation, creation and lifecycle operations for a business's bookings.
Failed operations raise their BookingError; the application's exception
handler maps it to an HTTP status.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field, model_validator

from app.core.booking.engine import BookingEngine, get_booking_engine
from app.core.booking.types import Actor, BookingRequest, BookingStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/businesses/{business_id}/bookings", tags=["Bookings"])


class BookingCreateRequest(BaseModel):
    """Booking request body. Give either end_time or duration_minutes."""

    start_time: datetime = Field(
        ...,
        description="Start time; naive values are read in the business timezone",
        examples=["2026-11-02T19:00:00"],
    )
    end_time: Optional[datetime] = Field(default=None, description="End time")
    duration_minutes: Optional[int] = Field(default=None, gt=0, description="Length in minutes")
    party_size: int = Field(default=1, ge=1, description="Guests or attendees")
    customer_name: str = Field(default="", max_length=200)
    customer_phone: Optional[str] = Field(default=None, max_length=40)
    customer_email: Optional[str] = Field(default=None, max_length=254)
    customer_id: Optional[str] = None
    preferred_resource_id: Optional[str] = Field(
        default=None,
        description="Table, staff member or agent the customer asked for",
    )
    resource_id: Optional[str] = Field(
        default=None,
        description="Resource to book, e.g. taken from an availability slot",
    )
    notes: Optional[str] = Field(default=None, max_length=2000)
    attributes: dict[str, Any] = Field(
        default_factory=dict,
        description="Industry-specific fields (service_category, viewing_type, ...)",
    )
    actor: Actor = Actor.CUSTOMER

    @model_validator(mode="after")
    def check_window(self) -> "BookingCreateRequest":
        if self.end_time is None and self.duration_minutes is None:
            raise ValueError("Either end_time or duration_minutes is required")
        return self

    def to_domain(self, business_id: str) -> BookingRequest:
        end_time = self.end_time or self.start_time + timedelta(minutes=self.duration_minutes)
        return BookingRequest(
            business_id=business_id,
            start_time=self.start_time,
            end_time=end_time,
            party_size=self.party_size,
            customer_name=self.customer_name,
            customer_phone=self.customer_phone,
            customer_email=self.customer_email,
            customer_id=self.customer_id,
            preferred_resource_id=self.preferred_resource_id,
            notes=self.notes,
            attributes=dict(self.attributes),
        )


class CancelRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500, description="Why the booking is cancelled")
    requested_by: Actor = Actor.CUSTOMER


class RescheduleRequest(BaseModel):
    new_date: str = Field(..., description="yyyy-MM-dd", examples=["2026-11-03"])
    new_time: str = Field(..., description="HH:MM or h:MM AM/PM", examples=["2:00 PM"])
    actor: Actor = Actor.CUSTOMER


class StaffActionRequest(BaseModel):
    actor: Actor = Actor.STAFF


class StatusUpdateRequest(BaseModel):
    status: BookingStatus = Field(..., description="Target status")
    reason: Optional[str] = Field(default=None, max_length=500)
    actor: Actor = Actor.STAFF


@router.post(
    "/validate",
    summary="Validate a booking request",
    description="Runs every business rule without booking anything.",
)
async def validate_booking(
    business_id: str,
    request: BookingCreateRequest,
    engine: BookingEngine = Depends(get_booking_engine),
) -> dict:
    result = await engine.validate_booking(request.to_domain(business_id))
    return result.to_dict()


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Create a booking",
)
async def create_booking(
    business_id: str,
    request: BookingCreateRequest,
    engine: BookingEngine = Depends(get_booking_engine),
) -> dict:
    """
    Create a booking.

    Validates the request, assigns the best-fitting free resource (or the
    one given in resource_id) and commits under a reservation lock.
    """
    result = await engine.create_booking(
        request.to_domain(business_id),
        resource_id=request.resource_id,
        actor=request.actor,
    )
    result.raise_for_error()
    return result.to_dict()


@router.get("/{booking_id}", summary="Get a booking")
async def get_booking(
    business_id: str,
    booking_id: str,
    engine: BookingEngine = Depends(get_booking_engine),
) -> dict:
    booking = await engine.get_booking(business_id, booking_id)
    return booking.to_dict()


@router.post("/{booking_id}/cancel", summary="Cancel a booking")
async def cancel_booking(
    business_id: str,
    booking_id: str,
    request: CancelRequest,
    engine: BookingEngine = Depends(get_booking_engine),
) -> dict:
    result = await engine.cancel_booking(
        business_id, booking_id, request.reason, requested_by=request.requested_by
    )
    result.raise_for_error()
    return result.to_dict()


@router.post("/{booking_id}/reschedule", summary="Reschedule a booking")
async def reschedule_booking(
    business_id: str,
    booking_id: str,
    request: RescheduleRequest,
    engine: BookingEngine = Depends(get_booking_engine),
) -> dict:
    result = await engine.reschedule_booking(
        business_id, booking_id, request.new_date, request.new_time, actor=request.actor
    )
    result.raise_for_error()
    return result.to_dict()


@router.post("/{booking_id}/confirm", summary="Confirm a pending booking")
async def confirm_booking(
    business_id: str,
    booking_id: str,
    request: Optional[StaffActionRequest] = None,
    engine: BookingEngine = Depends(get_booking_engine),
) -> dict:
    actor = request.actor if request else Actor.STAFF
    result = await engine.confirm_booking(business_id, booking_id, actor=actor)
    result.raise_for_error()
    return result.to_dict()


@router.post("/{booking_id}/no-show", summary="Mark a booking as no-show")
async def mark_no_show(
    business_id: str,
    booking_id: str,
    request: Optional[StaffActionRequest] = None,
    engine: BookingEngine = Depends(get_booking_engine),
) -> dict:
    actor = request.actor if request else Actor.STAFF
    result = await engine.mark_no_show(business_id, booking_id, actor=actor)
    result.raise_for_error()
    return result.to_dict()


@router.patch("/{booking_id}/status", summary="Override a booking's status")
async def update_status(
    business_id: str,
    booking_id: str,
    request: StatusUpdateRequest,
    engine: BookingEngine = Depends(get_booking_engine),
) -> dict:
    result = await engine.update_status(
        business_id,
        booking_id,
        request.status,
        reason=request.reason,
        actor=request.actor,
    )
    result.raise_for_error()
    return result.to_dict()


@router.get("/{booking_id}/operations", summary="Booking operation history")
async def get_operation_history(
    business_id: str,
    booking_id: str,
    engine: BookingEngine = Depends(get_booking_engine),
) -> dict:
    entries = await engine.get_operation_history(business_id, booking_id)
    return {
        "booking_id": booking_id,
        "operations": [entry.to_dict() for entry in entries],
    }
