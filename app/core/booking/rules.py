"""
Industry profiles.

Each industry is a composition of a default policy, validation rules,
resource eligibility rules and a pricing function. Adding an industry
means registering a new IndustryProfile, never subclassing the engine.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Optional, Sequence

from app.core.booking.errors import Violation, soft_violation, violation, warning
from app.core.booking.hours import localize
from app.core.booking.policy import PolicyConfig, to_money
from app.core.booking.ranking import SKILL_SCORES
from app.core.booking.types import (
    Agent,
    BookingMode,
    BookingRequest,
    BusinessProfile,
    Industry,
    Requirement,
    Resource,
    ResourceKind,
    StaffMember,
    Table,
)


@dataclass
class RuleContext:
    """Everything a validation rule may look at. Read-only."""

    request: BookingRequest
    requirement: Requirement
    policy: PolicyConfig
    business: BusinessProfile
    resource_pool: Sequence[Resource]
    now: datetime

    @property
    def attributes(self) -> dict[str, Any]:
        return self.request.attributes

    @property
    def local_start(self) -> datetime:
        return localize(self.request.start_time, self.business.timezone)

    def find_resource(self, resource_id: Optional[str]) -> Optional[Resource]:
        if not resource_id:
            return None
        return next((r for r in self.resource_pool if r.id == resource_id), None)


ValidationRule = Callable[[RuleContext], list[Violation]]
EligibilityRule = Callable[[Resource, Requirement], bool]
PricingRule = Callable[[BookingRequest, Optional[Resource], datetime], Decimal]


def _no_charge(request: BookingRequest, resource: Optional[Resource], start: datetime) -> Decimal:
    return Decimal("0.00")


@dataclass(frozen=True)
class IndustryProfile:
    """Industry behavior as data."""

    industry: Industry
    default_policy: PolicyConfig
    min_party: int = 1
    max_party: Optional[int] = None
    resource_kind: Optional[ResourceKind] = None
    validation_rules: tuple[ValidationRule, ...] = field(default_factory=tuple)
    eligibility_rules: tuple[EligibilityRule, ...] = field(default_factory=tuple)
    pricing: PricingRule = _no_charge

    def price_for(
        self,
        request: BookingRequest,
        resource: Optional[Resource],
        start: datetime,
    ) -> Decimal:
        return to_money(self.pricing(request, resource, start))


def party_size_rule(
    ctx: RuleContext,
    minimum: int,
    maximum: Optional[int],
    noun: str = "Party size",
) -> list[Violation]:
    size = ctx.request.party_size
    if size < minimum:
        return [violation("party_size_out_of_range", f"{noun} must be at least {minimum}")]
    if maximum is not None and size > maximum:
        return [violation("party_size_out_of_range", f"{noun} must be at most {maximum}")]
    return []


# ==================================
# Restaurant
# ==================================

LARGE_PARTY_THRESHOLD = 12
PEAK_HOURS = range(18, 22)
PEAK_PRICE_PER_GUEST = Decimal("10.00")
AFTERNOON_HOURS = range(14, 18)


def _restaurant_party(ctx: RuleContext) -> list[Violation]:
    issues = party_size_rule(ctx, 1, 20)
    if not issues and ctx.request.party_size > LARGE_PARTY_THRESHOLD:
        issues.append(
            violation(
                "large_party_restriction",
                f"Parties over {LARGE_PARTY_THRESHOLD} require special arrangement",
                suggested_action="Contact the restaurant directly for large parties",
            )
        )
    return issues


def _restaurant_preferred_table(ctx: RuleContext) -> list[Violation]:
    table_id = ctx.request.preferred_resource_id
    if not table_id:
        return []

    table = ctx.find_resource(table_id)
    if not isinstance(table, Table):
        return [violation("table_not_found", "Requested table does not exist")]
    if not table.is_active:
        return [
            violation(
                "table_unavailable",
                f"{table.label} is not available for reservations",
                suggested_action="Choose another table",
            )
        ]

    size = ctx.request.party_size
    if size > table.max_party:
        return [
            violation(
                "table_capacity",
                f"{table.label} seats at most {table.max_party} guests",
                suggested_action="Choose a larger table",
            )
        ]
    if size < table.min_party:
        return [
            soft_violation(
                "underutilized_table",
                f"{table.label} is intended for at least {table.min_party} guests",
                suggested_action="A smaller table will be assigned",
            )
        ]
    return []


def _restaurant_afternoon(ctx: RuleContext) -> list[Violation]:
    if ctx.local_start.hour in AFTERNOON_HOURS:
        return [
            warning(
                "afternoon_booking",
                "Limited menu may be available between lunch and dinner service",
            )
        ]
    return []


def _restaurant_price(request: BookingRequest, resource: Optional[Resource], start: datetime) -> Decimal:
    if start.hour in PEAK_HOURS:
        return PEAK_PRICE_PER_GUEST * request.party_size
    return Decimal("0.00")


RESTAURANT = IndustryProfile(
    industry=Industry.RESTAURANT,
    default_policy=PolicyConfig(
        advance_booking_hours=1,
        max_advance_booking_days=30,
        cancellation_hours=2,
        buffer_minutes=30,
        allow_double_booking=True,
    ),
    min_party=1,
    max_party=20,
    resource_kind=ResourceKind.TABLE,
    validation_rules=(
        _restaurant_party,
        _restaurant_preferred_table,
        _restaurant_afternoon,
    ),
    eligibility_rules=(lambda resource, req: isinstance(resource, Table),),
    pricing=_restaurant_price,
)


# ==================================
# Salon
# ==================================

COLOR_SERVICES = {"color", "colour", "coloring", "highlights"}
DURATION_TOLERANCE_MINUTES = 15

SKILL_PRICE_MULTIPLIERS = {
    "trainee": Decimal("0.8"),
    "junior": Decimal("1.0"),
    "senior": Decimal("1.2"),
    "expert": Decimal("1.5"),
}

LOYALTY_DISCOUNTS = {
    "bronze": Decimal("0.95"),
    "silver": Decimal("0.90"),
    "gold": Decimal("0.85"),
    "platinum": Decimal("0.80"),
}


def _salon_party(ctx: RuleContext) -> list[Violation]:
    if ctx.request.party_size != 1:
        return [
            violation(
                "party_size_out_of_range",
                "Salon appointments are booked one client at a time",
                suggested_action="Book a separate appointment per client",
            )
        ]
    return []


def _salon_preferred_staff(ctx: RuleContext) -> list[Violation]:
    staff_id = ctx.request.preferred_resource_id
    if not staff_id:
        return []

    staff = ctx.find_resource(staff_id)
    if not isinstance(staff, StaffMember):
        return [violation("staff_not_found", "Requested staff member does not exist")]
    if not staff.is_active:
        return [
            violation(
                "staff_unavailable",
                f"{staff.name} is not currently taking appointments",
                suggested_action="Choose another stylist",
            )
        ]
    return []


def _salon_gender_preference(ctx: RuleContext) -> list[Violation]:
    wanted = ctx.requirement.gender_preference
    if not wanted:
        return []
    matching = [
        r for r in ctx.resource_pool
        if isinstance(r, StaffMember) and r.is_active and (r.gender or "").lower() == wanted.lower()
    ]
    if not matching:
        return [
            warning(
                "gender_preference_unavailable",
                f"No {wanted} staff available, another stylist will be assigned",
            )
        ]
    return []


def _salon_service_duration(ctx: RuleContext) -> list[Violation]:
    expected = ctx.attributes.get("service_duration")
    if not expected:
        return []
    requested = ctx.request.duration.total_seconds() / 60
    if abs(requested - float(expected)) > DURATION_TOLERANCE_MINUTES:
        return [
            warning(
                "duration_mismatch",
                f"Requested {int(requested)} minutes but the service takes {int(expected)} minutes",
                suggested_action="Adjust the booking length to the service duration",
            )
        ]
    return []


def _salon_color_requirements(ctx: RuleContext) -> list[Violation]:
    category = str(ctx.attributes.get("service_category") or "").lower()
    if category not in COLOR_SERVICES:
        return []

    issues = []
    if not ctx.attributes.get("patch_test_completed"):
        issues.append(
            violation(
                "patch_test_required",
                "A patch test is required at least 48 hours before colour services",
                suggested_action="Book a patch test first",
            )
        )
    if not ctx.attributes.get("consultation_completed"):
        issues.append(
            warning(
                "consultation_recommended",
                "A consultation is recommended before colour services",
            )
        )
    return issues


def _salon_sunday(ctx: RuleContext) -> list[Violation]:
    if ctx.local_start.weekday() == 6:
        return [warning("sunday_booking", "Sunday appointments have limited staff")]
    return []


def _salon_price(request: BookingRequest, resource: Optional[Resource], start: datetime) -> Decimal:
    base = to_money(request.attributes.get("service_price") or 0)
    if isinstance(resource, StaffMember):
        level = resource.skill_for(request.attributes.get("service_category"))
        base *= SKILL_PRICE_MULTIPLIERS.get(level or "", Decimal("1.0"))
    tier = str(request.attributes.get("loyalty_tier") or "").lower()
    return base * LOYALTY_DISCOUNTS.get(tier, Decimal("1.0"))


SALON = IndustryProfile(
    industry=Industry.SALON,
    default_policy=PolicyConfig(
        advance_booking_hours=2,
        max_advance_booking_days=60,
        cancellation_hours=24,
        buffer_minutes=15,
        allow_double_booking=False,
    ),
    min_party=1,
    max_party=1,
    resource_kind=ResourceKind.STAFF,
    validation_rules=(
        _salon_party,
        _salon_preferred_staff,
        _salon_gender_preference,
        _salon_service_duration,
        _salon_color_requirements,
        _salon_sunday,
    ),
    eligibility_rules=(lambda resource, req: isinstance(resource, StaffMember),),
    pricing=_salon_price,
)


# ==================================
# Real estate
# ==================================

UNAVAILABLE_PROPERTY_STATUSES = {"sold", "rented", "off-market", "off_market"}


def _realestate_attendees(ctx: RuleContext) -> list[Violation]:
    return party_size_rule(ctx, 1, 10, noun="Attendees")


def _realestate_virtual_email(ctx: RuleContext) -> list[Violation]:
    if ctx.requirement.mode is BookingMode.VIRTUAL and not ctx.request.customer_email:
        return [
            violation(
                "email_required",
                "Email is required for virtual viewings",
                suggested_action="Provide an email address for the meeting link",
            )
        ]
    return []


def _realestate_property_status(ctx: RuleContext) -> list[Violation]:
    status = str(ctx.attributes.get("property_status") or "").lower()
    if status in UNAVAILABLE_PROPERTY_STATUSES:
        return [
            violation(
                "property_unavailable",
                f"Property is no longer available ({status})",
                suggested_action="Ask for similar properties",
            )
        ]
    return []


def _realestate_preferred_agent(ctx: RuleContext) -> list[Violation]:
    agent_id = ctx.request.preferred_resource_id
    if not agent_id:
        return []

    agent = ctx.find_resource(agent_id)
    if not isinstance(agent, Agent) or not agent.is_active:
        return [
            soft_violation(
                "preferred_agent_unavailable",
                "Preferred agent is not available, another agent will be assigned",
            )
        ]
    if not agent.license_number:
        return [
            violation(
                "agent_unlicensed",
                f"{agent.name} has no license on file and cannot conduct viewings",
                suggested_action="Choose another agent",
            )
        ]
    return []


def _realestate_prequalification(ctx: RuleContext) -> list[Violation]:
    if ctx.attributes.get("requires_prequalification") and not ctx.attributes.get("prequalified"):
        return [
            violation(
                "prequalification_required",
                "Buyer prequalification is required for this property",
                suggested_action="Obtain a mortgage prequalification letter",
            )
        ]
    return []


def _licensed_agent(resource: Resource, requirement: Requirement) -> bool:
    return isinstance(resource, Agent) and bool(resource.license_number)


REAL_ESTATE = IndustryProfile(
    industry=Industry.REAL_ESTATE,
    default_policy=PolicyConfig(
        advance_booking_hours=2,
        max_advance_booking_days=60,
        cancellation_hours=4,
        buffer_minutes=15,
        allow_double_booking=True,
    ),
    min_party=1,
    max_party=10,
    resource_kind=ResourceKind.AGENT,
    validation_rules=(
        _realestate_attendees,
        _realestate_virtual_email,
        _realestate_property_status,
        _realestate_preferred_agent,
        _realestate_prequalification,
    ),
    eligibility_rules=(_licensed_agent,),
)


# ==================================
# Professional services
# ==================================

COMPLEX_CONSULTATIONS = {"legal", "financial", "business"}
MAX_SESSION_HOURS = 8

URGENCY_MULTIPLIERS = {
    "standard": Decimal("1.0"),
    "urgent": Decimal("1.5"),
    "emergency": Decimal("2.0"),
}

CLIENT_DISCOUNTS = {
    "individual": Decimal("0"),
    "small-business": Decimal("0.05"),
    "corporation": Decimal("0.10"),
    "non-profit": Decimal("0.15"),
}


def _professional_party(ctx: RuleContext) -> list[Violation]:
    return party_size_rule(ctx, 1, None)


def _professional_preferred_consultant(ctx: RuleContext) -> list[Violation]:
    consultant_id = ctx.request.preferred_resource_id
    if not consultant_id:
        return []

    consultant = ctx.find_resource(consultant_id)
    if consultant is None or not consultant.is_active:
        return [
            warning(
                "preferred_consultant_unavailable",
                "Preferred consultant is not available, an alternative will be assigned",
            )
        ]
    if not consultant.is_eligible(ctx.requirement):
        return [
            warning(
                "consultant_expertise",
                "Preferred consultant may not specialize in this area",
            )
        ]
    return []


def _professional_case_details(ctx: RuleContext) -> list[Violation]:
    issues = []
    consultation_type = str(ctx.attributes.get("service_category") or "").lower()
    if consultation_type in COMPLEX_CONSULTATIONS and not ctx.attributes.get("case_background"):
        issues.append(
            warning(
                "case_background_recommended",
                "Case background is recommended for this consultation type",
            )
        )
    if ctx.request.duration.total_seconds() > MAX_SESSION_HOURS * 3600:
        issues.append(
            warning(
                "long_session",
                f"Consultations over {MAX_SESSION_HOURS} hours may require multiple sessions",
            )
        )
    return issues


def _professional_price(request: BookingRequest, resource: Optional[Resource], start: datetime) -> Decimal:
    rate = to_money(request.attributes.get("hourly_rate") or 0)
    minutes = Decimal(int(request.duration.total_seconds() // 60))
    price = rate * minutes / Decimal(60)
    urgency = str(request.attributes.get("urgency") or "standard").lower()
    price *= URGENCY_MULTIPLIERS.get(urgency, Decimal("1.0"))
    client_type = str(request.attributes.get("client_type") or "").lower()
    return price * (Decimal("1") - CLIENT_DISCOUNTS.get(client_type, Decimal("0")))


PROFESSIONAL = IndustryProfile(
    industry=Industry.PROFESSIONAL,
    default_policy=PolicyConfig(
        advance_booking_hours=2,
        max_advance_booking_days=90,
        cancellation_hours=24,
        buffer_minutes=15,
        allow_double_booking=False,
    ),
    min_party=1,
    validation_rules=(
        _professional_party,
        _professional_preferred_consultant,
        _professional_case_details,
    ),
    pricing=_professional_price,
)


PROFILES: dict[Industry, IndustryProfile] = {
    profile.industry: profile
    for profile in (RESTAURANT, SALON, REAL_ESTATE, PROFESSIONAL)
}


def get_profile(industry: Industry) -> IndustryProfile:
    """Profile for an industry, falling back to professional services."""
    return PROFILES.get(industry, PROFESSIONAL)


def register_profile(profile: IndustryProfile) -> None:
    PROFILES[profile.industry] = profile
