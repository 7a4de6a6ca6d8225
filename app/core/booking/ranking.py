"""
Ranking and scoring.

A single weighted-sum scorer backs agent ranking, staff ranking,
property matching and lead qualification.
"""

from dataclasses import dataclass, field
from typing import Callable, Iterable, Optional, Sequence, TypeVar

from app.core.booking.types import Agent, StaffMember

T = TypeVar("T")

SKILL_SCORES = {
    "expert": 4,
    "senior": 3,
    "junior": 2,
    "trainee": 1,
}

AGENT_WEIGHTS = {"rating": 0.7, "experience": 0.3}

TIMELINE_SCORES = {
    "immediate": 40,
    "1-3-months": 30,
    "3-6-months": 20,
    "6-months-plus": 10,
}

SOURCE_SCORES = {
    "referral": 10,
    "website": 5,
}
DEFAULT_SOURCE_SCORE = 2

PREQUALIFIED_SCORE = 25
PRICE_RANGE_SCORE = 15
CONTACT_SCORE = 10

HOT_THRESHOLD = 70
WARM_THRESHOLD = 40

DESIRABLE_FEATURES = ("pool", "garage", "hardwood-floors", "updated-kitchen")
FEATURE_SCORE = 2
MIN_RECOMMENDATION_SCORE = 20


def weighted_score(
    features: dict[str, float],
    weights: dict[str, float],
    normalizers: Optional[dict[str, Callable[[float], float]]] = None,
) -> float:
    """Sum of weight * normalize(feature) over the weighted features.

    Missing features count as zero; normalizers default to identity.
    """
    normalizers = normalizers or {}
    total = 0.0
    for name, weight in weights.items():
        value = float(features.get(name, 0) or 0)
        normalize = normalizers.get(name)
        total += weight * (normalize(value) if normalize else value)
    return total


def rank(candidates: Iterable[T], score: Callable[[T], float]) -> list[T]:
    """Sort descending by score. Ties keep input order."""
    return sorted(candidates, key=score, reverse=True)


def agent_score(agent: Agent) -> float:
    return weighted_score(
        {"rating": agent.rating, "experience": agent.experience},
        AGENT_WEIGHTS,
    )


def staff_score(staff: StaffMember, specialization: Optional[str] = None) -> float:
    """Proficiency for the requested service; 0 when unknown."""
    level = staff.skill_for(specialization)
    if level is None and not specialization and staff.skill_levels:
        # No service requested: rank by best skill
        return float(max(SKILL_SCORES.get(v.lower(), 0) for v in staff.skill_levels.values()))
    return float(SKILL_SCORES.get(level or "", 0))


# ==================================
# Leads and properties
# ==================================


@dataclass
class Lead:
    """Prospective buyer or renter."""

    timeline: Optional[str] = None
    prequalified: bool = False
    min_price: float = 0
    max_price: float = 0
    email: Optional[str] = None
    phone: Optional[str] = None
    source: Optional[str] = None
    property_type: Optional[str] = None
    location: Optional[str] = None


@dataclass
class LeadQualification:
    score: int
    tier: str
    breakdown: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"score": self.score, "tier": self.tier, "breakdown": dict(self.breakdown)}


def lead_tier(score: float) -> str:
    if score >= HOT_THRESHOLD:
        return "hot"
    if score >= WARM_THRESHOLD:
        return "warm"
    return "cold"


def qualify_lead(lead: Lead) -> LeadQualification:
    """Score a lead and bucket it into hot / warm / cold."""
    has_price_range = lead.min_price > 0 and lead.max_price > lead.min_price
    breakdown = {
        "timeline": TIMELINE_SCORES.get((lead.timeline or "").lower(), 0),
        "prequalified": PREQUALIFIED_SCORE if lead.prequalified else 0,
        "price_range": PRICE_RANGE_SCORE if has_price_range else 0,
        "contact": CONTACT_SCORE if lead.email and lead.phone else 0,
        "source": SOURCE_SCORES.get((lead.source or "").lower(), DEFAULT_SOURCE_SCORE),
    }
    score = int(weighted_score(breakdown, {name: 1 for name in breakdown}))
    return LeadQualification(score=score, tier=lead_tier(score), breakdown=breakdown)


@dataclass
class Property:
    id: str
    price: float
    property_type: str
    location: str
    address: str = ""
    status: str = "available"
    is_active: bool = True
    features: list[str] = field(default_factory=list)

    @property
    def is_available(self) -> bool:
        return self.status == "available" and self.is_active


@dataclass
class PropertyMatch:
    property: Property
    score: int
    reasons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "property_id": self.property.id,
            "address": self.property.address,
            "price": self.property.price,
            "score": self.score,
            "reasons": list(self.reasons),
        }


def _location_matches(wanted: Optional[str], actual: str) -> bool:
    if not wanted:
        return False
    wanted, actual = wanted.lower(), actual.lower()
    return wanted in actual or actual in wanted


def score_property_match(lead: Lead, prop: Property) -> PropertyMatch:
    """Score how well a property fits a lead's criteria."""
    reasons = []
    features = {}

    if lead.min_price <= prop.price <= lead.max_price:
        features["price"] = 30
        reasons.append("Within budget")
    elif prop.price < lead.max_price * 1.1:
        features["price"] = 15
        reasons.append("Slightly above budget")

    if lead.property_type and prop.property_type.lower() == lead.property_type.lower():
        features["type"] = 25
        reasons.append("Property type match")

    if _location_matches(lead.location, prop.location):
        features["location"] = 20
        reasons.append("Preferred location")

    if prop.is_available:
        features["available"] = 15

    desirable = [f for f in prop.features if f.lower() in DESIRABLE_FEATURES]
    if desirable:
        features["features"] = FEATURE_SCORE * len(desirable)
        reasons.append(f"Desirable features: {', '.join(desirable)}")

    score = int(weighted_score(features, {name: 1 for name in features}))
    return PropertyMatch(property=prop, score=score, reasons=reasons)


def recommend_properties(
    lead: Lead,
    properties: Sequence[Property],
    limit: Optional[int] = None,
) -> list[PropertyMatch]:
    """Properties scoring above the recommendation floor, best first."""
    matches = [score_property_match(lead, p) for p in properties]
    matches = [m for m in matches if m.score > MIN_RECOMMENDATION_SCORE]
    ranked = rank(matches, lambda m: m.score)
    return ranked[:limit] if limit else ranked
