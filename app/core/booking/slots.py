"""
Slot generation.

Walks a day's opening hours in fixed steps and asks the matcher whether
each window can be served.
"""

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional, Sequence

from app.core.booking.conflicts import ConflictDetector
from app.core.booking.hours import WeeklyHours, combine, hours_for
from app.core.booking.matcher import ResourceMatcher
from app.core.booking.rules import IndustryProfile, PROFESSIONAL
from app.core.booking.types import (
    Booking,
    BookingRequest,
    Requirement,
    Resource,
    Slot,
)

logger = logging.getLogger(__name__)


class SlotGenerator:
    """Generates candidate slots for a day."""

    def __init__(
        self,
        profile: Optional[IndustryProfile] = None,
        conflict_detector: Optional[ConflictDetector] = None,
    ):
        self._profile = profile or PROFESSIONAL
        self._detector = conflict_detector or ConflictDetector()
        self._matcher = ResourceMatcher(self._detector, self._profile.eligibility_rules)

    def generate_slots(
        self,
        day: date,
        duration_minutes: int,
        operating_hours: WeeklyHours,
        existing_bookings: Sequence[Booking],
        requirement: Requirement,
        resource_pool: Sequence[Resource],
        buffer_minutes: int = 0,
        step_minutes: Optional[int] = None,
        tz_name: str = "UTC",
        allow_double_booking: bool = False,
        not_before: Optional[datetime] = None,
        attributes: Optional[dict] = None,
    ) -> list[Slot]:
        """Generate slots for a day.

        Args:
            day: Local date to generate for
            duration_minutes: Length of each slot
            operating_hours: Business weekly hours
            existing_bookings: Bookings on that day
            requirement: What the booking needs from a resource
            resource_pool: Business resources
            buffer_minutes: Turnover buffer around existing bookings
            step_minutes: Spacing between slot starts (defaults to duration)
            tz_name: Business timezone
            allow_double_booking: Let resource-less bookings share a window
            not_before: Slots starting earlier are marked unavailable
            attributes: Request attributes passed to the pricing rule

        Returns:
            Slots in chronological order. Windows past closing or over a
            break are omitted; a closed day yields an empty list.
        """
        if duration_minutes <= 0:
            raise ValueError("duration_minutes must be positive")
        step = step_minutes or duration_minutes
        if step <= 0:
            raise ValueError("step_minutes must be positive")

        day_hours = hours_for(operating_hours, day)
        if day_hours is None:
            return []

        opening = combine(day, day_hours.open, tz_name)
        closing = combine(day, day_hours.close, tz_name)
        duration = timedelta(minutes=duration_minutes)

        slots = []
        start = opening
        while start + duration <= closing:
            end = start + duration
            if not day_hours.overlaps_break(start.time(), end.time()):
                slots.append(
                    self._build_slot(
                        start,
                        end,
                        existing_bookings,
                        requirement,
                        resource_pool,
                        buffer_minutes,
                        tz_name,
                        allow_double_booking,
                        not_before,
                        attributes or {},
                    )
                )
            start += timedelta(minutes=step)

        logger.debug(
            f"Generated {len(slots)} slots for {day.isoformat()} "
            f"({sum(1 for s in slots if s.available)} available)"
        )
        return slots

    def _build_slot(
        self,
        start: datetime,
        end: datetime,
        existing_bookings: Sequence[Booking],
        requirement: Requirement,
        resource_pool: Sequence[Resource],
        buffer_minutes: int,
        tz_name: str,
        allow_double_booking: bool,
        not_before: Optional[datetime],
        attributes: dict,
    ) -> Slot:
        if not_before is not None and start < not_before:
            return Slot(start=start, end=end, available=False, reason="insufficient_notice")

        if not requirement.mode.needs_resource:
            price = self._price(requirement, attributes, None, start, end)
            return Slot(start=start, end=end, available=True, price=price)

        if not resource_pool:
            busy = not allow_double_booking and self._detector.has_conflict(
                start, end, existing_bookings, buffer_minutes=buffer_minutes
            )
            if busy:
                return Slot(start=start, end=end, available=False, reason="booked")
            price = self._price(requirement, attributes, None, start, end)
            return Slot(start=start, end=end, available=True, price=price)

        resources = self._matcher.find_eligible(
            requirement,
            (start, end),
            resource_pool,
            existing_bookings,
            buffer_minutes=buffer_minutes,
            tz_name=tz_name,
        )
        if not resources:
            return Slot(start=start, end=end, available=False, reason="no_resource")

        resource = resources[0]
        return Slot(
            start=start,
            end=end,
            available=True,
            resource_id=resource.id,
            resource_label=resource.label,
            price=self._price(requirement, attributes, resource, start, end),
        )

    def _price(
        self,
        requirement: Requirement,
        attributes: dict,
        resource: Optional[Resource],
        start: datetime,
        end: datetime,
    ) -> Decimal:
        request = BookingRequest(
            business_id="",
            start_time=start,
            end_time=end,
            party_size=requirement.party_size,
            attributes=attributes,
        )
        return self._profile.price_for(request, resource, start)
