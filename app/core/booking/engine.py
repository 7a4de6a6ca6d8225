"""
Booking Engine - Main Orchestrator.

Coordinates validation, resource matching, slot generation, the
lifecycle state machine, storage, reservation locks and notifications.

Queries (validate_booking, generate_availability, history, policies)
raise BookingError subclasses. Commands (create, cancel, reschedule,
no-show, status update) return an OperationResult.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from typing import Any, Callable, Optional, Sequence, Union

from app.config import get_settings
from app.core.booking.cache import TenantCache
from app.core.booking.conflicts import ConflictDetector
from app.core.booking.errors import (
    BookingError,
    ConflictError,
    NotFoundError,
    StateTransitionError,
    ValidationError,
    ValidationResult,
    Violation,
)
from app.core.booking.hours import (
    combine,
    localize,
    parse_date,
    parse_time,
)
from app.core.booking.lifecycle import LifecycleStateMachine, Transition
from app.core.booking.matcher import ResourceMatcher
from app.core.booking.policy import PolicyConfig
from app.core.booking.ranking import (
    Lead,
    LeadQualification,
    Property,
    PropertyMatch,
    qualify_lead,
    recommend_properties,
)
from app.core.booking.rules import IndustryProfile, get_profile
from app.core.booking.slots import SlotGenerator
from app.core.booking.store import BookingStore, InMemoryBookingStore
from app.core.booking.types import (
    Actor,
    Booking,
    BookingRequest,
    BookingStatus,
    BusinessProfile,
    FinancialImpact,
    OperationLogEntry,
    Requirement,
    Resource,
    Slot,
    _utcnow,
)
from app.core.booking.validator import (
    AVAILABILITY_RULES,
    BookingValidator,
    check_operating_hours,
)
from app.infra.notifications import NotificationDispatcher, get_notification_dispatcher
from app.infra.redis import ReservationLocks, get_reservation_locks

logger = logging.getLogger(__name__)


@dataclass
class OperationResult:
    """Result of a booking command."""

    success: bool
    booking: Optional[Booking] = None
    entry: Optional[OperationLogEntry] = None
    message: Optional[str] = None
    error: Optional[BookingError] = None
    violations: list[Violation] = field(default_factory=list)
    warnings: list[Violation] = field(default_factory=list)
    financial_impact: Optional[FinancialImpact] = None

    @property
    def error_code(self) -> Optional[str]:
        return self.error.code if self.error else None

    @classmethod
    def failed(cls, error: BookingError) -> "OperationResult":
        violations = getattr(error, "violations", [])
        warnings = getattr(error, "warnings", [])
        return cls(
            success=False,
            message=error.message,
            error=error,
            violations=list(violations),
            warnings=list(warnings),
        )

    @classmethod
    def from_transition(
        cls,
        transition: Transition,
        message: str,
        warnings: Sequence[Violation] = (),
    ) -> "OperationResult":
        return cls(
            success=True,
            booking=transition.booking,
            entry=transition.entry,
            message=message,
            warnings=list(warnings),
            financial_impact=transition.financial_impact,
        )

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error

    def to_dict(self) -> dict:
        """Convert to dictionary for API response."""
        result: dict[str, Any] = {
            "success": self.success,
            "message": self.message,
        }
        if self.booking:
            result["booking"] = self.booking.to_dict()
        if self.entry:
            result["operation"] = self.entry.to_dict()
        if self.error_code:
            result["error_code"] = self.error_code
        if self.violations:
            result["violations"] = [v.to_dict() for v in self.violations]
        if self.warnings:
            result["warnings"] = [w.to_dict() for w in self.warnings]
        if self.financial_impact:
            result["financial_impact"] = self.financial_impact.to_dict()
        return result


def reservation_lock_keys(
    business_id: str,
    resource_id: Optional[str],
    start: datetime,
    end: datetime,
    timezone: str,
) -> list[str]:
    """Lock keys for every local day a booking window touches.

    A window that crosses midnight holds both days, so it serializes
    with bookings keyed on either of them.
    """
    first = localize(start, timezone).date()
    last = localize(max(start, end - timedelta(microseconds=1)), timezone).date()
    days = [first + timedelta(days=n) for n in range((last - first).days + 1)]
    return [f"{business_id}:{resource_id or '*'}:{day.isoformat()}" for day in days]


@dataclass
class BusinessContext:
    business: BusinessProfile
    policy: PolicyConfig
    resources: list[Resource]
    profile: IndustryProfile


class BookingEngine:
    """
    Main orchestrator for bookings.

    Coordinates:
    - Validation and resource matching
    - Slot generation
    - Lifecycle transitions and their persistence
    - Reservation locks
    - Status-change notifications
    """

    def __init__(
        self,
        store: Optional[BookingStore] = None,
        locks: Optional[ReservationLocks] = None,
        notifier: Optional[NotificationDispatcher] = None,
        clock: Callable[[], datetime] = _utcnow,
        cache_ttl: Optional[int] = None,
        slot_step_minutes: Optional[int] = None,
    ):
        """Initialize engine with optional dependencies.

        Args:
            store: Booking store (in-memory when omitted)
            locks: Reservation lock manager (Redis-backed when omitted)
            notifier: Status-change notification dispatcher
            clock: Current-time source
            cache_ttl: Resource/policy cache TTL in seconds
            slot_step_minutes: Default spacing between generated slots
        """
        settings = get_settings()
        ttl = settings.resource_cache_ttl if cache_ttl is None else cache_ttl

        self._store = store or InMemoryBookingStore()
        self._locks = locks
        self._notifier = notifier
        self._clock = clock
        self._slot_step_minutes = slot_step_minutes or settings.slot_step_minutes

        self._detector = ConflictDetector()
        self._validator = BookingValidator(self._detector)
        self._lifecycle = LifecycleStateMachine(self._detector, clock=clock)

        self._resource_cache: TenantCache[list[Resource]] = TenantCache("resources", ttl)
        self._policy_cache: TenantCache[PolicyConfig] = TenantCache("policies", ttl)

    @property
    def store(self) -> BookingStore:
        return self._store

    async def _get_locks(self) -> ReservationLocks:
        """Get reservation locks."""
        if self._locks is None:
            self._locks = await get_reservation_locks()
        return self._locks

    def _get_notifier(self) -> NotificationDispatcher:
        """Get notification dispatcher."""
        if self._notifier is None:
            self._notifier = get_notification_dispatcher()
        return self._notifier

    # ==================================
    # Tenant setup
    # ==================================

    async def register_business(
        self,
        business: BusinessProfile,
        policy: Optional[PolicyConfig] = None,
    ) -> BusinessProfile:
        """Create or update a business profile.

        A new business gets its industry's default policy unless one is given.
        """
        await self._store.save_business(business)

        if policy is not None:
            await self._store.save_policy(business.id, policy)
        elif await self._store.get_policy(business.id) is None:
            await self._store.save_policy(business.id, get_profile(business.industry).default_policy)

        self._policy_cache.invalidate(business.id)
        self._resource_cache.invalidate(business.id)
        logger.info(f"Business {business.id} registered ({business.industry.value})")
        return business

    async def add_resource(self, business_id: str, resource: Resource) -> Resource:
        """Add or replace a resource.

        Raises:
            NotFoundError: If the business does not exist
        """
        await self._get_business(business_id)
        await self._store.save_resource(business_id, resource)
        self._resource_cache.invalidate(business_id)
        logger.info(f"Resource {resource.id} ({resource.kind.value}) saved for {business_id}")
        return resource

    async def get_business(self, business_id: str) -> BusinessProfile:
        """Raises NotFoundError if the business does not exist."""
        return await self._get_business(business_id)

    async def list_resources(self, business_id: str) -> list[Resource]:
        await self._get_business(business_id)
        return await self._get_resources(business_id)

    # ==================================
    # Policies
    # ==================================

    async def get_policy(self, business_id: str) -> PolicyConfig:
        """Current policy for a business.

        Raises:
            NotFoundError: If the business does not exist
        """
        business = await self._get_business(business_id)
        return await self._get_policy(business)

    async def set_policy(
        self,
        business_id: str,
        changes: Union[PolicyConfig, dict[str, Any]],
    ) -> PolicyConfig:
        """Apply policy changes and bump the version.

        Existing bookings keep the snapshot they were created with.

        Raises:
            NotFoundError: If the business does not exist
            ValidationError: If the new values are invalid
        """
        current = await self.get_policy(business_id)
        if isinstance(changes, PolicyConfig):
            changes = {k: v for k, v in changes.to_dict().items() if k != "version"}

        try:
            updated = current.revise(**changes)
        except (TypeError, ValueError) as e:
            raise ValidationError.for_rule("invalid_policy", str(e)) from e

        await self._store.save_policy(business_id, updated)
        self._policy_cache.invalidate(business_id)
        logger.info(f"Policy for {business_id} updated to version {updated.version}")
        return updated

    # ==================================
    # Queries
    # ==================================

    async def validate_booking(self, request: BookingRequest) -> ValidationResult:
        """Validate a request without booking anything.

        Raises:
            NotFoundError: If the business does not exist
        """
        ctx = await self._load_context(request.business_id)
        request = self._localized(request, ctx.business)
        existing = await self._bookings_around(
            ctx.business.id, request.start_time, request.end_time, ctx.policy.buffer_minutes
        )
        return self._validator.validate(
            request,
            ctx.policy,
            ctx.resources,
            existing,
            ctx.business,
            now=self._clock(),
            profile=ctx.profile,
        )

    async def generate_availability(
        self,
        business_id: str,
        day: Union[str, date],
        duration_minutes: int,
        requirement: Optional[Requirement] = None,
        attributes: Optional[dict[str, Any]] = None,
        step_minutes: Optional[int] = None,
    ) -> list[Slot]:
        """Slots for a business-local date.

        Raises:
            NotFoundError: If the business does not exist
            ValidationError: If the date or duration is invalid
        """
        ctx = await self._load_context(business_id)
        try:
            day = parse_date(day)
        except ValueError as e:
            raise ValidationError.for_rule("invalid_date", str(e)) from e
        if duration_minutes <= 0:
            raise ValidationError.for_rule("invalid_duration", "Duration must be positive")

        requirement = requirement or Requirement()
        buffer = timedelta(minutes=ctx.policy.buffer_minutes)
        day_start = combine(day, datetime.min.time(), ctx.business.timezone)
        existing = await self._store.list_bookings(
            business_id, day_start - buffer, day_start + timedelta(days=1) + buffer
        )

        generator = SlotGenerator(ctx.profile, self._detector)
        return generator.generate_slots(
            day,
            duration_minutes,
            ctx.business.operating_hours,
            existing,
            requirement,
            ctx.resources,
            buffer_minutes=ctx.policy.buffer_minutes,
            step_minutes=step_minutes or self._slot_step_minutes,
            tz_name=ctx.business.timezone,
            allow_double_booking=ctx.policy.allow_double_booking,
            not_before=self._clock() + timedelta(hours=ctx.policy.advance_booking_hours),
            attributes=attributes,
        )

    async def get_booking(self, business_id: str, booking_id: str) -> Booking:
        """Raises NotFoundError if the booking does not exist."""
        booking = await self._store.get_booking(business_id, booking_id)
        if booking is None:
            raise NotFoundError(f"Booking {booking_id} not found", details={"booking_id": booking_id})
        return booking

    async def get_operation_history(self, business_id: str, booking_id: str) -> list[OperationLogEntry]:
        """Operation log for a booking, oldest first."""
        await self.get_booking(business_id, booking_id)
        return await self._store.list_operations(business_id, booking_id)

    def qualify_lead(self, lead: Lead) -> LeadQualification:
        return qualify_lead(lead)

    def recommend_properties(
        self,
        lead: Lead,
        properties: Sequence[Property],
        limit: Optional[int] = None,
    ) -> list[PropertyMatch]:
        return recommend_properties(lead, properties, limit=limit)

    # ==================================
    # Commands
    # ==================================

    async def create_booking(
        self,
        request: BookingRequest,
        resource_id: Optional[str] = None,
        actor: Actor = Actor.CUSTOMER,
    ) -> OperationResult:
        """Validate, assign a resource and commit a booking atomically.

        Args:
            request: Desired booking
            resource_id: Resource chosen by the caller (e.g. from a slot)
            actor: Who is booking

        Returns:
            OperationResult with the booking, or the error that stopped it
        """
        try:
            ctx = await self._load_context(request.business_id)
            request = self._localized(request, ctx.business)

            validation = await self.validate_booking(request)
            if not validation.can_proceed:
                blocking = {v.rule for v in validation.mandatory}
                if blocking <= AVAILABILITY_RULES:
                    raise ConflictError(
                        "No suitable resource is available for the requested time",
                        details={"start_time": request.start_time.isoformat()},
                    )
                return OperationResult.failed(
                    ValidationError(
                        "Booking request violates business rules",
                        violations=validation.violations,
                        warnings=validation.warnings,
                    )
                )

            candidates = await self._candidate_resources(ctx, request, resource_id)
            locks = await self._get_locks()

            for resource in candidates:
                keys = reservation_lock_keys(
                    ctx.business.id,
                    resource.id if resource else None,
                    request.start_time,
                    request.end_time,
                    ctx.business.timezone,
                )
                async with locks.hold_all(keys):
                    existing = await self._bookings_around(
                        ctx.business.id,
                        request.start_time,
                        request.end_time,
                        ctx.policy.buffer_minutes,
                    )
                    if self._is_taken(resource, request, existing, ctx):
                        logger.debug(f"Candidate {keys[0]} taken while waiting for lock")
                        continue

                    price = ctx.profile.price_for(
                        request, resource, localize(request.start_time, ctx.business.timezone)
                    )
                    transition = self._lifecycle.create(
                        request,
                        ctx.policy,
                        resource=resource,
                        price=price,
                        actor=actor,
                        warnings=validation.warnings,
                    )
                    await self._store.insert_booking(transition.booking, transition.entry)

                await self._notify(transition)
                return OperationResult.from_transition(
                    transition, "Booking created", warnings=validation.warnings
                )

            raise ConflictError(
                "The requested time is no longer available",
                details={"start_time": request.start_time.isoformat()},
            )

        except BookingError as e:
            logger.info(f"Booking creation failed for {request.business_id}: {e.code} {e.message}")
            return OperationResult.failed(e)

    async def cancel_booking(
        self,
        business_id: str,
        booking_id: str,
        reason: str,
        requested_by: Actor = Actor.CUSTOMER,
    ) -> OperationResult:
        """Cancel a booking, computing any late-cancellation impact."""
        try:
            locks = await self._get_locks()
            async with locks.hold(f"booking:{booking_id}"):
                booking = await self.get_booking(business_id, booking_id)
                transition = self._lifecycle.cancel(booking, reason, actor=requested_by)
                await self._commit(booking, transition)
        except BookingError as e:
            return OperationResult.failed(e)

        await self._notify(transition)
        return OperationResult.from_transition(transition, "Booking cancelled")

    async def reschedule_booking(
        self,
        business_id: str,
        booking_id: str,
        new_date: Union[str, date],
        new_time: Union[str, Any],
        actor: Actor = Actor.CUSTOMER,
    ) -> OperationResult:
        """Move a booking to a new local date and time, keeping its duration.

        Args:
            business_id: Business identifier
            booking_id: Booking to move
            new_date: "yyyy-MM-dd"
            new_time: "14:00" or "2:00 PM"
            actor: Who requested the change
        """
        try:
            business = await self._get_business(business_id)
            try:
                new_start = combine(parse_date(new_date), parse_time(new_time), business.timezone)
            except ValueError as e:
                raise ValidationError.for_rule("invalid_datetime", str(e)) from e

            locks = await self._get_locks()
            async with locks.hold(f"booking:{booking_id}"):
                booking = await self.get_booking(business_id, booking_id)
                new_end = new_start + booking.duration

                hours_issues = [
                    v for v in check_operating_hours(business, new_start, new_end)
                    if v.is_mandatory
                ]
                if hours_issues:
                    raise ValidationError(
                        "New time is outside operating hours", violations=hours_issues
                    )

                keys = reservation_lock_keys(
                    business_id, booking.resource_id, new_start, new_end, business.timezone
                )
                async with locks.hold_all(keys):
                    existing = await self._bookings_around(
                        business_id, new_start, new_end, booking.policy.buffer_minutes
                    )
                    transition = self._lifecycle.reschedule(
                        booking,
                        new_start,
                        existing,
                        actor=actor,
                        check_all_bookings=(
                            booking.resource_id is None
                            and not booking.policy.allow_double_booking
                        ),
                    )
                    await self._commit(booking, transition)
        except BookingError as e:
            return OperationResult.failed(e)

        await self._notify(transition)
        return OperationResult.from_transition(transition, "Booking rescheduled")

    async def mark_no_show(
        self,
        business_id: str,
        booking_id: str,
        actor: Actor = Actor.STAFF,
    ) -> OperationResult:
        """Mark a started booking as a no-show."""
        try:
            locks = await self._get_locks()
            async with locks.hold(f"booking:{booking_id}"):
                booking = await self.get_booking(business_id, booking_id)
                transition = self._lifecycle.no_show(booking, actor=actor)
                await self._commit(booking, transition)
        except BookingError as e:
            return OperationResult.failed(e)

        await self._notify(transition)
        return OperationResult.from_transition(transition, "Booking marked as no-show")

    async def update_status(
        self,
        business_id: str,
        booking_id: str,
        new_status: BookingStatus,
        reason: Optional[str] = None,
        actor: Actor = Actor.STAFF,
    ) -> OperationResult:
        """Staff/admin status override. Always logged and notified."""
        try:
            locks = await self._get_locks()
            async with locks.hold(f"booking:{booking_id}"):
                booking = await self.get_booking(business_id, booking_id)
                if new_status == BookingStatus.COMPLETED:
                    transition = self._lifecycle.complete(booking, actor=actor)
                else:
                    transition = self._lifecycle.update_status(
                        booking, new_status, reason=reason, actor=actor
                    )
                await self._commit(booking, transition)
        except BookingError as e:
            return OperationResult.failed(e)

        await self._notify(transition)
        return OperationResult.from_transition(
            transition, f"Booking status updated to {new_status.value}"
        )

    async def confirm_booking(
        self,
        business_id: str,
        booking_id: str,
        actor: Actor = Actor.STAFF,
    ) -> OperationResult:
        """Confirm a pending booking."""
        try:
            locks = await self._get_locks()
            async with locks.hold(f"booking:{booking_id}"):
                booking = await self.get_booking(business_id, booking_id)
                transition = self._lifecycle.confirm(booking, actor=actor)
                await self._commit(booking, transition)
        except BookingError as e:
            return OperationResult.failed(e)

        await self._notify(transition)
        return OperationResult.from_transition(transition, "Booking confirmed")

    # ==================================
    # Internals
    # ==================================

    async def _get_business(self, business_id: str) -> BusinessProfile:
        business = await self._store.get_business(business_id)
        if business is None:
            raise NotFoundError(f"Business {business_id} not found", details={"business_id": business_id})
        return business

    async def _get_policy(self, business: BusinessProfile) -> PolicyConfig:
        policy = self._policy_cache.get(business.id)
        if policy is None:
            policy = await self._store.get_policy(business.id)
            if policy is None:
                policy = get_profile(business.industry).default_policy
            self._policy_cache.put(business.id, policy)
        return policy

    async def _get_resources(self, business_id: str) -> list[Resource]:
        resources = self._resource_cache.get(business_id)
        if resources is None:
            resources = await self._store.list_resources(business_id)
            self._resource_cache.put(business_id, resources)
        return resources

    async def _load_context(self, business_id: str) -> BusinessContext:
        business = await self._get_business(business_id)
        return BusinessContext(
            business=business,
            policy=await self._get_policy(business),
            resources=await self._get_resources(business_id),
            profile=get_profile(business.industry),
        )

    def _localized(self, request: BookingRequest, business: BusinessProfile) -> BookingRequest:
        """Interpret naive request times in the business timezone."""
        return replace(
            request,
            start_time=localize(request.start_time, business.timezone),
            end_time=localize(request.end_time, business.timezone),
        )

    async def _bookings_around(
        self,
        business_id: str,
        start: datetime,
        end: datetime,
        buffer_minutes: int,
    ) -> list[Booking]:
        buffer = timedelta(minutes=buffer_minutes)
        return await self._store.list_bookings(business_id, start - buffer, end + buffer)

    async def _candidate_resources(
        self,
        ctx: BusinessContext,
        request: BookingRequest,
        resource_id: Optional[str],
    ) -> list[Optional[Resource]]:
        """Resources to try in order; [None] when no resource is needed."""
        requirement = request.to_requirement()
        if not requirement.mode.needs_resource or not ctx.resources:
            return [None]

        existing = await self._bookings_around(
            ctx.business.id, request.start_time, request.end_time, ctx.policy.buffer_minutes
        )
        matcher = ResourceMatcher(self._detector, ctx.profile.eligibility_rules)
        eligible = matcher.find_eligible(
            requirement,
            (request.start_time, request.end_time),
            ctx.resources,
            existing,
            buffer_minutes=ctx.policy.buffer_minutes,
            tz_name=ctx.business.timezone,
        )

        if resource_id:
            if not any(r.id == resource_id for r in ctx.resources):
                raise NotFoundError(f"Resource {resource_id} not found", details={"resource_id": resource_id})
            chosen = [r for r in eligible if r.id == resource_id]
            if not chosen:
                raise ConflictError(
                    "The chosen resource is not available for this booking",
                    details={"resource_id": resource_id},
                )
            return chosen

        if not eligible:
            raise ConflictError(
                "No suitable resource is available for the requested time",
                details={"start_time": request.start_time.isoformat()},
            )
        return eligible

    def _is_taken(
        self,
        resource: Optional[Resource],
        request: BookingRequest,
        existing: Sequence[Booking],
        ctx: BusinessContext,
    ) -> bool:
        if resource is not None:
            return self._detector.has_conflict(
                request.start_time,
                request.end_time,
                existing,
                buffer_minutes=ctx.policy.buffer_minutes,
                resource_id=resource.id,
            )
        if not request.to_requirement().mode.needs_resource or ctx.policy.allow_double_booking:
            return False
        return self._detector.has_conflict(
            request.start_time,
            request.end_time,
            existing,
            buffer_minutes=ctx.policy.buffer_minutes,
        )

    async def _commit(self, before: Booking, transition: Transition) -> None:
        """Persist a transition with compare-and-set on the prior status.

        Raises:
            StateTransitionError: If the booking changed concurrently
        """
        committed = await self._store.apply_transition(
            transition.booking, transition.entry, expected_status=before.status
        )
        if not committed:
            current = await self._store.get_booking(before.business_id, before.id)
            current_status = current.status if current else before.status
            raise StateTransitionError(current_status, transition.booking.status)

    async def _notify(self, transition: Transition) -> None:
        await self._get_notifier().dispatch(transition.event)


# Singleton instance
_engine: Optional[BookingEngine] = None


def get_booking_engine() -> BookingEngine:
    """Get singleton booking engine, wired to the configured store."""
    global _engine
    if _engine is None:
        settings = get_settings()
        if settings.uses_sql_store:
            from app.infra.database import async_session_factory
            from app.infra.sql_store import SqlBookingStore

            _engine = BookingEngine(store=SqlBookingStore(async_session_factory))
        else:
            _engine = BookingEngine()
    return _engine
