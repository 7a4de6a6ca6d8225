"""
Booking Policy Endpoints.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.core.booking.engine import BookingEngine, get_booking_engine

router = APIRouter(prefix="/businesses/{business_id}/booking-policies", tags=["Policies"])


class PolicyUpdateRequest(BaseModel):
    """Partial policy update. Omitted fields keep their current value."""

    advance_booking_hours: Optional[float] = Field(default=None, ge=0)
    max_advance_booking_days: Optional[int] = Field(default=None, ge=1)
    cancellation_hours: Optional[float] = Field(default=None, ge=0)
    buffer_minutes: Optional[int] = Field(default=None, ge=0)
    allow_double_booking: Optional[bool] = None
    require_deposit: Optional[bool] = None
    deposit_amount: Optional[float] = Field(default=None, ge=0)
    cancellation_fee_amount: Optional[float] = Field(default=None, ge=0)
    cancellation_fee_percentage: Optional[float] = Field(default=None, ge=0, le=100)
    no_show_fee_amount: Optional[float] = Field(default=None, ge=0)
    no_show_fee_percentage: Optional[float] = Field(default=None, ge=0, le=100)
    no_show_grace_minutes: Optional[int] = Field(default=None, ge=0)
    max_reschedules: Optional[int] = Field(default=None, ge=0)
    auto_confirm: Optional[bool] = None


@router.get("", summary="Current booking policy")
async def get_policy(
    business_id: str,
    engine: BookingEngine = Depends(get_booking_engine),
) -> dict:
    policy = await engine.get_policy(business_id)
    return policy.to_dict()


@router.put("", summary="Update booking policy")
async def update_policy(
    business_id: str,
    request: PolicyUpdateRequest,
    engine: BookingEngine = Depends(get_booking_engine),
) -> dict:
    """
    Update the policy and bump its version.

    Existing bookings keep the policy they were created under.
    """
    changes = {k: v for k, v in request.model_dump(exclude_unset=True).items() if v is not None}
    policy = await engine.set_policy(business_id, changes)
    return policy.to_dict()
