"""
Booking domain types.

Enums, schedulable resources (a closed union of Table, StaffMember and
Agent), booking requests, bookings, operation log entries and slots.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Optional, Union

from app.core.booking.hours import (
    DayHours,
    WeeklyHours,
    day_name,
    ensure_aware,
    parse_weekly_hours,
    weekly_hours_to_dict,
)
from app.core.booking.policy import PolicyConfig, to_money


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class BookingStatus(str, Enum):
    """Booking lifecycle states."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class OperationType(str, Enum):
    """Kinds of entries in a booking's operation history."""

    CREATE = "create"
    CONFIRM = "confirm"
    CANCEL = "cancel"
    RESCHEDULE = "reschedule"
    NO_SHOW = "no_show"
    COMPLETE = "complete"
    MODIFY = "modify"


class Actor(str, Enum):
    """Who requested an operation."""

    CUSTOMER = "customer"
    STAFF = "staff"
    SYSTEM = "system"
    ADMIN = "admin"


class Industry(str, Enum):
    """Supported industry profiles."""

    RESTAURANT = "restaurant"
    SALON = "salon"
    REAL_ESTATE = "realestate"
    PROFESSIONAL = "professional"


class ResourceKind(str, Enum):
    """Resource variants."""

    TABLE = "table"
    STAFF = "staff"
    AGENT = "agent"


class BookingMode(str, Enum):
    """How the booking is attended. Remote modes need no resource."""

    IN_PERSON = "in_person"
    VIRTUAL = "virtual"
    SELF_GUIDED = "self_guided"

    @property
    def needs_resource(self) -> bool:
        return self is BookingMode.IN_PERSON


class FinancialImpactType(str, Enum):
    CHARGE = "charge"
    REFUND = "refund"
    HOLD = "hold"
    NONE = "none"


@dataclass(frozen=True)
class FinancialImpact:
    """Money consequence of an operation."""

    type: FinancialImpactType
    amount: Decimal
    reason: str = ""

    @classmethod
    def none(cls, reason: str = "") -> "FinancialImpact":
        return cls(type=FinancialImpactType.NONE, amount=Decimal("0.00"), reason=reason)

    @property
    def is_zero(self) -> bool:
        return self.amount == 0

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "amount": float(self.amount),
            "reason": self.reason,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FinancialImpact":
        return cls(
            type=FinancialImpactType(data.get("type", "none")),
            amount=to_money(data.get("amount", 0)),
            reason=data.get("reason", ""),
        )


@dataclass
class Requirement:
    """What a booking needs from a resource."""

    party_size: int = 1
    specialization: Optional[str] = None
    territory: Optional[str] = None
    location_preference: Optional[str] = None
    gender_preference: Optional[str] = None
    preferred_resource_id: Optional[str] = None
    mode: BookingMode = BookingMode.IN_PERSON


# ==================================
# Resources
# ==================================


@dataclass
class Table:
    """Restaurant table."""

    kind: ClassVar[ResourceKind] = ResourceKind.TABLE

    id: str
    number: str
    min_party: int = 1
    max_party: int = 4
    seats: Optional[int] = None
    location: Optional[str] = None
    features: list[str] = field(default_factory=list)
    is_reservable: bool = True
    status: str = "active"

    def __post_init__(self) -> None:
        if self.seats is None:
            self.seats = self.max_party
        if self.min_party < 1 or self.max_party < self.min_party:
            raise ValueError(f"Invalid party bounds for table {self.number}")

    @property
    def is_active(self) -> bool:
        return self.status == "active" and self.is_reservable

    @property
    def min_capacity(self) -> int:
        return self.min_party

    @property
    def max_capacity(self) -> int:
        return self.max_party

    @property
    def label(self) -> str:
        return f"Table {self.number}"

    def is_eligible(self, requirement: Requirement) -> bool:
        return self.is_active and self.min_party <= requirement.party_size <= self.max_party

    def working_hours_for(self, day) -> Optional[DayHours]:
        # Tables follow the business's operating hours
        return None

    @property
    def has_schedule(self) -> bool:
        return False

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "id": self.id,
            "number": self.number,
            "min_party": self.min_party,
            "max_party": self.max_party,
            "seats": self.seats,
            "location": self.location,
            "features": list(self.features),
            "is_reservable": self.is_reservable,
            "status": self.status,
        }


@dataclass
class StaffMember:
    """Salon or practice staff member."""

    kind: ClassVar[ResourceKind] = ResourceKind.STAFF

    id: str
    name: str
    specializations: list[str] = field(default_factory=list)
    skill_levels: dict[str, str] = field(default_factory=dict)
    working_hours: WeeklyHours = field(default_factory=dict)
    status: str = "active"
    gender: Optional[str] = None
    max_clients: int = 1

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def min_capacity(self) -> int:
        return 1

    @property
    def max_capacity(self) -> int:
        return self.max_clients

    @property
    def label(self) -> str:
        return self.name

    def skill_for(self, specialization: Optional[str]) -> Optional[str]:
        if not specialization:
            return None
        levels = {k.lower(): v.lower() for k, v in self.skill_levels.items()}
        return levels.get(specialization.lower())

    def is_eligible(self, requirement: Requirement) -> bool:
        if not self.is_active or requirement.party_size > self.max_clients:
            return False
        if requirement.specialization:
            wanted = requirement.specialization.lower()
            return wanted in (s.lower() for s in self.specializations)
        return True

    def working_hours_for(self, day) -> Optional[DayHours]:
        hours = self.working_hours.get(day_name(day))
        if hours is None or hours.closed:
            return None
        return hours

    @property
    def has_schedule(self) -> bool:
        return bool(self.working_hours)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "id": self.id,
            "name": self.name,
            "specializations": list(self.specializations),
            "skill_levels": dict(self.skill_levels),
            "working_hours": weekly_hours_to_dict(self.working_hours),
            "status": self.status,
            "gender": self.gender,
            "max_clients": self.max_clients,
        }


@dataclass
class Agent:
    """Real-estate agent."""

    kind: ClassVar[ResourceKind] = ResourceKind.AGENT

    id: str
    name: str
    territories: list[str] = field(default_factory=list)
    rating: float = 0.0
    experience: float = 0.0
    license_number: Optional[str] = None
    specializations: list[str] = field(default_factory=list)
    working_hours: WeeklyHours = field(default_factory=dict)
    status: str = "active"
    max_attendees: int = 10

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def min_capacity(self) -> int:
        return 1

    @property
    def max_capacity(self) -> int:
        return self.max_attendees

    @property
    def label(self) -> str:
        return self.name

    def covers(self, territory: Optional[str]) -> bool:
        if not territory:
            return True
        covered = {t.lower() for t in self.territories}
        return "all" in covered or territory.lower() in covered

    def is_eligible(self, requirement: Requirement) -> bool:
        if not self.is_active or requirement.party_size > self.max_attendees:
            return False
        if not self.covers(requirement.territory):
            return False
        if requirement.specialization and self.specializations:
            wanted = requirement.specialization.lower()
            return wanted in (s.lower() for s in self.specializations)
        return True

    def working_hours_for(self, day) -> Optional[DayHours]:
        hours = self.working_hours.get(day_name(day))
        if hours is None or hours.closed:
            return None
        return hours

    @property
    def has_schedule(self) -> bool:
        return bool(self.working_hours)

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "id": self.id,
            "name": self.name,
            "territories": list(self.territories),
            "rating": self.rating,
            "experience": self.experience,
            "license_number": self.license_number,
            "specializations": list(self.specializations),
            "working_hours": weekly_hours_to_dict(self.working_hours),
            "status": self.status,
            "max_attendees": self.max_attendees,
        }


Resource = Union[Table, StaffMember, Agent]


def resource_from_dict(data: dict) -> Resource:
    """Build a resource from its dict form, dispatching on "kind".

    Raises:
        ValueError: If the kind is missing or unknown
    """
    payload = dict(data)
    try:
        kind = ResourceKind(payload.pop("kind"))
    except (KeyError, ValueError) as e:
        raise ValueError(f"Unknown resource kind in {data!r}") from e

    payload.setdefault("id", new_id())
    if "working_hours" in payload:
        payload["working_hours"] = parse_weekly_hours(payload["working_hours"])

    if kind is ResourceKind.TABLE:
        payload["number"] = str(payload.get("number", ""))
        return Table(**payload)
    if kind is ResourceKind.STAFF:
        payload["skill_levels"] = {
            k.lower(): v.lower() for k, v in payload.get("skill_levels", {}).items()
        }
        return StaffMember(**payload)
    return Agent(**payload)


# ==================================
# Businesses, requests and bookings
# ==================================


@dataclass
class BusinessProfile:
    """Tenant scheduling context."""

    id: str
    name: str
    industry: Industry = Industry.PROFESSIONAL
    timezone: str = "UTC"
    operating_hours: WeeklyHours = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "industry": self.industry.value,
            "timezone": self.timezone,
            "operating_hours": weekly_hours_to_dict(self.operating_hours),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BusinessProfile":
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            industry=Industry(data.get("industry", Industry.PROFESSIONAL.value)),
            timezone=data.get("timezone") or "UTC",
            operating_hours=parse_weekly_hours(data.get("operating_hours")),
        )


@dataclass
class BookingRequest:
    """Customer's desired booking. Transient.

    Industry-specific fields (seating_preference, viewing_type,
    property_status, service_category, patch_test_completed, ...) live in
    attributes.
    """

    business_id: str
    start_time: datetime
    end_time: datetime
    party_size: int = 1
    customer_name: str = ""
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    customer_id: Optional[str] = None
    preferred_resource_id: Optional[str] = None
    notes: Optional[str] = None
    attributes: dict[str, Any] = field(default_factory=dict)

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time

    @property
    def mode(self) -> BookingMode:
        viewing = str(self.attributes.get("viewing_type", "")).lower().replace("-", "_")
        if viewing in (BookingMode.VIRTUAL.value, BookingMode.SELF_GUIDED.value):
            return BookingMode(viewing)
        return BookingMode.IN_PERSON

    def to_requirement(self) -> Requirement:
        attrs = self.attributes
        return Requirement(
            party_size=self.party_size,
            specialization=attrs.get("service_category") or attrs.get("property_type"),
            territory=attrs.get("territory"),
            location_preference=attrs.get("seating_preference"),
            gender_preference=attrs.get("staff_gender_preference"),
            preferred_resource_id=self.preferred_resource_id,
            mode=self.mode,
        )


@dataclass
class Booking:
    """A reservation. Changed only through lifecycle transitions."""

    id: str
    business_id: str
    start_time: datetime
    end_time: datetime
    status: BookingStatus
    party_size: int
    policy: PolicyConfig
    resource_id: Optional[str] = None
    customer_id: Optional[str] = None
    customer_name: str = ""
    customer_phone: Optional[str] = None
    customer_email: Optional[str] = None
    price: Decimal = Decimal("0.00")
    reschedule_count: int = 0
    notes: Optional[str] = None
    attributes: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time

    @property
    def blocks_time(self) -> bool:
        """Cancelled bookings release their window."""
        return self.status != BookingStatus.CANCELLED

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "resource_id": self.resource_id,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_email": self.customer_email,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "status": self.status.value,
            "party_size": self.party_size,
            "price": float(self.price),
            "reschedule_count": self.reschedule_count,
            "notes": self.notes,
            "attributes": dict(self.attributes),
            "policy_version": self.policy.version,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class OperationLogEntry:
    """Immutable audit record of one booking operation."""

    id: str
    booking_id: str
    business_id: str
    operation_type: OperationType
    actor: Actor
    previous_status: Optional[BookingStatus]
    new_status: BookingStatus
    timestamp: datetime
    violations: tuple = ()
    warnings: tuple = ()
    financial_impact: Optional[FinancialImpact] = None
    data: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "booking_id": self.booking_id,
            "business_id": self.business_id,
            "operation_type": self.operation_type.value,
            "actor": self.actor.value,
            "previous_status": self.previous_status.value if self.previous_status else None,
            "new_status": self.new_status.value,
            "timestamp": self.timestamp.isoformat(),
            "violations": [v.to_dict() for v in self.violations],
            "warnings": [w.to_dict() for w in self.warnings],
            "financial_impact": (
                self.financial_impact.to_dict() if self.financial_impact else None
            ),
            "data": dict(self.data),
        }


@dataclass
class Slot:
    """Candidate booking window."""

    start: datetime
    end: datetime
    available: bool
    resource_id: Optional[str] = None
    resource_label: Optional[str] = None
    price: Decimal = Decimal("0.00")
    reason: Optional[str] = None

    def to_dict(self) -> dict:
        result = {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "available": self.available,
            "price": float(self.price),
        }
        if self.resource_id:
            result["resource_id"] = self.resource_id
            result["resource_label"] = self.resource_label
        if self.reason:
            result["reason"] = self.reason
        return result


def normalize_booking_times(booking: Booking) -> Booking:
    """Make stored datetimes timezone-aware in place."""
    booking.start_time = ensure_aware(booking.start_time)
    booking.end_time = ensure_aware(booking.end_time)
    booking.created_at = ensure_aware(booking.created_at)
    booking.updated_at = ensure_aware(booking.updated_at)
    return booking
