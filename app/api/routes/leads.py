"""
Lead Endpoints.

Lead qualification and property recommendations for real-estate
businesses.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.core.booking.engine import BookingEngine, get_booking_engine
from app.core.booking.ranking import Lead, Property

router = APIRouter(prefix="/businesses/{business_id}/leads", tags=["Leads"])


class LeadModel(BaseModel):
    timeline: Optional[str] = Field(
        default=None,
        description="immediate, 1-3-months, 3-6-months, 6-months-plus",
    )
    prequalified: bool = False
    min_price: float = Field(default=0, ge=0)
    max_price: float = Field(default=0, ge=0)
    email: Optional[str] = None
    phone: Optional[str] = None
    source: Optional[str] = Field(default=None, description="referral, website, ...")
    property_type: Optional[str] = None
    location: Optional[str] = None

    def to_domain(self) -> Lead:
        return Lead(**self.model_dump())


class PropertyModel(BaseModel):
    id: str
    price: float = Field(..., ge=0)
    property_type: str
    location: str
    address: str = ""
    status: str = "available"
    is_active: bool = True
    features: list[str] = Field(default_factory=list)

    def to_domain(self) -> Property:
        return Property(**self.model_dump())


class RecommendationRequest(BaseModel):
    lead: LeadModel
    properties: list[PropertyModel]
    limit: Optional[int] = Field(default=None, gt=0)


@router.post("/qualify", summary="Score a lead")
async def qualify_lead(
    business_id: str,
    lead: LeadModel,
    engine: BookingEngine = Depends(get_booking_engine),
) -> dict:
    qualification = engine.qualify_lead(lead.to_domain())
    return {"business_id": business_id, **qualification.to_dict()}


@router.post("/recommendations", summary="Recommend properties for a lead")
async def recommend_properties(
    business_id: str,
    request: RecommendationRequest,
    engine: BookingEngine = Depends(get_booking_engine),
) -> dict:
    matches = engine.recommend_properties(
        request.lead.to_domain(),
        [p.to_domain() for p in request.properties],
        limit=request.limit,
    )
    return {
        "business_id": business_id,
        "recommendations": [m.to_dict() for m in matches],
    }
