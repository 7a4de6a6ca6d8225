"""
Resource matching.

Finds the resources that can serve a requirement in a given window and
orders them best-first.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Optional, Sequence

from app.core.booking.conflicts import ConflictDetector
from app.core.booking.errors import Violation, warning
from app.core.booking.hours import localize
from app.core.booking.ranking import agent_score, staff_score
from app.core.booking.types import (
    Agent,
    Booking,
    Requirement,
    Resource,
    StaffMember,
    Table,
)

logger = logging.getLogger(__name__)

EligibilityRule = Callable[[Resource, Requirement], bool]


@dataclass
class MatchResult:
    """Ordered eligible resources plus advisory warnings."""

    resources: list[Resource] = field(default_factory=list)
    warnings: list[Violation] = field(default_factory=list)

    @property
    def best(self) -> Optional[Resource]:
        return self.resources[0] if self.resources else None


def _works_during(resource: Resource, start: datetime, end: datetime, tz_name: str) -> bool:
    """Check the resource's own working hours, if it has any."""
    if not resource.has_schedule:
        return True
    local_start = localize(start, tz_name)
    local_end = localize(end, tz_name)
    if local_end.date() != local_start.date():
        return False
    hours = resource.working_hours_for(local_start)
    if hours is None:
        return False
    return hours.contains(local_start.time(), local_end.time())


def _order_key(resource: Resource, requirement: Requirement) -> tuple:
    if isinstance(resource, Table):
        spare = resource.seats - requirement.party_size
        # Smallest fitting table first, then largest of the rest
        return (0, spare) if spare >= 0 else (1, -resource.seats)
    if isinstance(resource, StaffMember):
        return (0, -staff_score(resource, requirement.specialization))
    if isinstance(resource, Agent):
        return (0, -agent_score(resource))
    return (0, 0)


def _promote_preference(
    resources: list[Resource],
    wanted: Optional[str],
    attribute: Callable[[Resource], Optional[str]],
) -> list[Resource]:
    """Move resources matching a soft preference to the front, keeping order.

    Non-matching resources stay as fallback.
    """
    if not wanted:
        return resources
    wanted = wanted.lower()
    matches = [(attribute(r) or "").lower() == wanted for r in resources]
    return (
        [r for r, hit in zip(resources, matches) if hit]
        + [r for r, hit in zip(resources, matches) if not hit]
    )


class ResourceMatcher:
    """Selects eligible, conflict-free resources for a window."""

    def __init__(
        self,
        conflict_detector: Optional[ConflictDetector] = None,
        eligibility_rules: Sequence[EligibilityRule] = (),
    ):
        """Initialize matcher.

        Args:
            conflict_detector: Detector used to exclude busy resources
            eligibility_rules: Extra predicates every resource must satisfy
        """
        self._detector = conflict_detector or ConflictDetector()
        self._rules = tuple(eligibility_rules)

    def is_candidate(
        self,
        resource: Resource,
        requirement: Requirement,
        start: datetime,
        end: datetime,
        tz_name: str = "UTC",
    ) -> bool:
        """Active, fits the requirement and works during the window."""
        if not resource.is_eligible(requirement):
            return False
        if not all(rule(resource, requirement) for rule in self._rules):
            return False
        return _works_during(resource, start, end, tz_name)

    def find_eligible(
        self,
        requirement: Requirement,
        window: tuple[datetime, datetime],
        resource_pool: Iterable[Resource],
        existing_bookings: Sequence[Booking],
        buffer_minutes: int = 0,
        tz_name: str = "UTC",
        exclude_booking_id: Optional[str] = None,
    ) -> list[Resource]:
        """Return eligible conflict-free resources, best first.

        Args:
            requirement: Party size, specialization, preferences
            window: (start, end) of the candidate booking
            resource_pool: Business resources
            existing_bookings: Bookings that may overlap the window
            buffer_minutes: Turnover buffer around existing bookings
            tz_name: Business timezone for working-hours checks
            exclude_booking_id: Booking ignored in conflict checks

        Returns:
            Ordered list of resources (empty when none fit)
        """
        start, end = window

        candidates = [
            r for r in resource_pool
            if self.is_candidate(r, requirement, start, end, tz_name)
        ]

        free = [
            r for r in candidates
            if not self._detector.has_conflict(
                start,
                end,
                existing_bookings,
                buffer_minutes=buffer_minutes,
                resource_id=r.id,
                exclude_booking_id=exclude_booking_id,
            )
        ]

        ordered = sorted(free, key=lambda r: _order_key(r, requirement))
        ordered = _promote_preference(
            ordered,
            requirement.location_preference,
            lambda r: r.location if isinstance(r, Table) else None,
        )
        ordered = _promote_preference(
            ordered,
            requirement.gender_preference,
            lambda r: r.gender if isinstance(r, StaffMember) else None,
        )

        preferred_id = requirement.preferred_resource_id
        if preferred_id:
            preferred = [r for r in ordered if r.id == preferred_id]
            if preferred:
                ordered = preferred + [r for r in ordered if r.id != preferred_id]

        return ordered

    def match(
        self,
        requirement: Requirement,
        window: tuple[datetime, datetime],
        resource_pool: Iterable[Resource],
        existing_bookings: Sequence[Booking],
        buffer_minutes: int = 0,
        tz_name: str = "UTC",
        exclude_booking_id: Optional[str] = None,
    ) -> MatchResult:
        """Like find_eligible, with a warning when the preferred resource is out."""
        resources = self.find_eligible(
            requirement,
            window,
            resource_pool,
            existing_bookings,
            buffer_minutes=buffer_minutes,
            tz_name=tz_name,
            exclude_booking_id=exclude_booking_id,
        )
        result = MatchResult(resources=resources)

        preferred_id = requirement.preferred_resource_id
        if preferred_id and (result.best is None or result.best.id != preferred_id):
            logger.debug(f"Preferred resource {preferred_id} unavailable for window")
            result.warnings.append(
                warning(
                    "preferred_resource_unavailable",
                    "The requested resource is not available at this time",
                    suggested_action="Accept an alternative or choose another time",
                )
            )

        return result
