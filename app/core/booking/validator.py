"""
Booking validation.

Universal checks (time window, notice, horizon, operating hours, contact
details, availability) followed by the industry profile's rules.
Validation is pure: it never mutates bookings or resources.
"""

import logging
import re
from datetime import datetime, timedelta
from typing import Optional, Sequence

from app.core.booking.conflicts import ConflictDetector
from app.core.booking.errors import ValidationResult, Violation, violation, warning
from app.core.booking.hours import hours_for, localize, minutes_until_close
from app.core.booking.matcher import ResourceMatcher
from app.core.booking.policy import PolicyConfig
from app.core.booking.rules import IndustryProfile, RuleContext, get_profile
from app.core.booking.types import (
    Booking,
    BookingRequest,
    BusinessProfile,
    Resource,
    _utcnow,
)

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PHONE_DIGITS = 10
LATE_BOOKING_MINUTES = 60

# Violations that mean "well-formed, but nothing is free"
AVAILABILITY_RULES = frozenset({"time_conflict", "no_availability"})


def check_time_window(request: BookingRequest) -> list[Violation]:
    if request.end_time <= request.start_time:
        return [
            violation(
                "invalid_time_window",
                "Booking end time must be after its start time",
            )
        ]
    return []


def check_booking_horizon(
    request: BookingRequest,
    policy: PolicyConfig,
    now: datetime,
) -> list[Violation]:
    """Minimum notice and maximum advance window."""
    issues = []
    earliest = now + timedelta(hours=policy.advance_booking_hours)
    latest = now + timedelta(days=policy.max_advance_booking_days)

    if request.start_time < earliest:
        issues.append(
            violation(
                "insufficient_notice",
                f"Bookings require at least {policy.advance_booking_hours:g} hours notice",
                suggested_action="Choose a later time",
            )
        )
    if request.start_time > latest:
        issues.append(
            violation(
                "too_far_in_advance",
                f"Bookings can be made at most {policy.max_advance_booking_days} days ahead",
                suggested_action="Choose an earlier date",
            )
        )
    return issues


def check_operating_hours(
    business: BusinessProfile,
    start: datetime,
    end: datetime,
) -> list[Violation]:
    """Opening-hours containment in the business's timezone."""
    if not business.operating_hours:
        return [
            warning(
                "no_hours_configured",
                "Business has no operating hours configured",
            )
        ]

    local_start = localize(start, business.timezone)
    local_end = localize(end, business.timezone)

    day_hours = hours_for(business.operating_hours, local_start)
    if day_hours is None:
        return [
            violation(
                "business_closed",
                f"Business is closed on {local_start.strftime('%A')}",
                suggested_action="Choose another day",
            )
        ]

    issues = []
    if local_start.time() < day_hours.open:
        issues.append(
            violation(
                "before_opening",
                f"Business opens at {day_hours.open.strftime('%H:%M')}",
                suggested_action="Choose a later time",
            )
        )

    if local_end.date() != local_start.date() or local_end.time() > day_hours.close:
        issues.append(
            violation(
                "extends_past_closing",
                f"Booking would extend past closing time ({day_hours.close.strftime('%H:%M')})",
                suggested_action="Choose an earlier time or a shorter duration",
            )
        )
    elif day_hours.overlaps_break(local_start.time(), local_end.time()):
        issues.append(
            violation(
                "during_break",
                "Booking overlaps a scheduled break",
                suggested_action="Choose a time outside the break",
            )
        )

    if not issues and minutes_until_close(day_hours, local_start.time()) <= LATE_BOOKING_MINUTES:
        issues.append(
            warning(
                "late_booking",
                "Booking starts within an hour of closing",
            )
        )
    return issues


def check_contact(request: BookingRequest) -> list[Violation]:
    issues = []
    phone = request.customer_phone
    email = request.customer_email

    if not phone and not email:
        issues.append(
            violation(
                "contact_required",
                "A phone number or email address is required",
            )
        )

    if phone:
        digits = re.sub(r"\D", "", phone)
        if len(digits) < MIN_PHONE_DIGITS:
            issues.append(
                violation(
                    "invalid_phone",
                    "Valid contact phone number is required",
                )
            )

    if email and not EMAIL_PATTERN.match(email):
        issues.append(violation("invalid_email", "Email address is not valid"))

    return issues


class BookingValidator:
    """Validates booking requests against universal and industry rules."""

    def __init__(self, conflict_detector: Optional[ConflictDetector] = None):
        self._detector = conflict_detector or ConflictDetector()

    def validate(
        self,
        request: BookingRequest,
        policy: PolicyConfig,
        resource_pool: Sequence[Resource],
        existing_bookings: Sequence[Booking],
        business: BusinessProfile,
        now: Optional[datetime] = None,
        profile: Optional[IndustryProfile] = None,
    ) -> ValidationResult:
        """Validate a request.

        Args:
            request: Desired booking
            policy: Business policy to apply
            resource_pool: Business resources
            existing_bookings: Bookings around the requested window
            business: Business profile (hours, timezone, industry)
            now: Current time (defaults to UTC now)
            profile: Industry profile override

        Returns:
            ValidationResult with violations and warnings
        """
        now = now or _utcnow()
        profile = profile or get_profile(business.industry)
        result = ValidationResult()

        result.add(check_time_window(request))
        if not result.can_proceed:
            return result

        result.add(check_booking_horizon(request, policy, now))
        result.add(check_operating_hours(business, request.start_time, request.end_time))
        result.add(check_contact(request))

        requirement = request.to_requirement()
        ctx = RuleContext(
            request=request,
            requirement=requirement,
            policy=policy,
            business=business,
            resource_pool=resource_pool,
            now=now,
        )
        for rule in profile.validation_rules:
            result.add(rule(ctx))

        result.add(self._check_availability(request, policy, resource_pool, existing_bookings, business, profile))

        if not result.can_proceed:
            logger.info(
                f"Booking request for {request.business_id} rejected: "
                f"{[v.rule for v in result.mandatory]}"
            )
        return result

    def _check_availability(
        self,
        request: BookingRequest,
        policy: PolicyConfig,
        resource_pool: Sequence[Resource],
        existing_bookings: Sequence[Booking],
        business: BusinessProfile,
        profile: IndustryProfile,
    ) -> list[Violation]:
        requirement = request.to_requirement()
        if not requirement.mode.needs_resource:
            return []

        window = (request.start_time, request.end_time)

        if not resource_pool:
            if policy.allow_double_booking:
                return []
            if self._detector.has_conflict(
                request.start_time,
                request.end_time,
                existing_bookings,
                buffer_minutes=policy.buffer_minutes,
            ):
                return [
                    violation(
                        "time_conflict",
                        "The requested time overlaps an existing booking",
                        suggested_action="Choose another time",
                    )
                ]
            return []

        matcher = ResourceMatcher(self._detector, profile.eligibility_rules)
        match = matcher.match(
            requirement,
            window,
            resource_pool,
            existing_bookings,
            buffer_minutes=policy.buffer_minutes,
            tz_name=business.timezone,
        )
        if match.best is None:
            return [
                violation(
                    "no_availability",
                    "No suitable resource is available for the requested time",
                    suggested_action="Check availability for other times",
                )
            ]
        return match.warnings
