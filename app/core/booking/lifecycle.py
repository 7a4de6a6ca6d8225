"""
Booking lifecycle state machine.

pending -> confirmed -> in_progress -> completed, with cancelled and
no_show as exits. completed, cancelled and no_show are terminal.

Every operation either returns a Transition (new booking state plus
exactly one log entry) or raises a BookingError without touching the
input booking. Persisting the transition is the store's job.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Optional, Sequence, Set

from app.core.booking.conflicts import ConflictDetector
from app.core.booking.errors import (
    ConflictError,
    StateTransitionError,
    ValidationError,
    Violation,
)
from app.core.booking.policy import PolicyConfig, to_money
from app.core.booking.types import (
    Actor,
    Booking,
    BookingRequest,
    BookingStatus,
    FinancialImpact,
    FinancialImpactType,
    OperationLogEntry,
    OperationType,
    Resource,
    _utcnow,
    new_id,
)

logger = logging.getLogger(__name__)


# Regular lifecycle flow
VALID_TRANSITIONS: dict[BookingStatus, Set[BookingStatus]] = {
    BookingStatus.PENDING: {
        BookingStatus.CONFIRMED,
        BookingStatus.CANCELLED,
        BookingStatus.NO_SHOW,
    },
    BookingStatus.CONFIRMED: {
        BookingStatus.CONFIRMED,  # reschedule
        BookingStatus.IN_PROGRESS,
        BookingStatus.COMPLETED,
        BookingStatus.CANCELLED,
        BookingStatus.NO_SHOW,
    },
    BookingStatus.IN_PROGRESS: {
        BookingStatus.COMPLETED,
    },
    BookingStatus.COMPLETED: set(),
    BookingStatus.CANCELLED: set(),
    BookingStatus.NO_SHOW: set(),
}

TERMINAL_STATES = frozenset(
    {BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.NO_SHOW}
)

# Statuses a customer-facing operation may start from
OPEN_STATES = frozenset({BookingStatus.PENDING, BookingStatus.CONFIRMED})


def can_transition(from_status: BookingStatus, to_status: BookingStatus) -> bool:
    """Check if a regular lifecycle transition is valid."""
    return to_status in VALID_TRANSITIONS.get(from_status, set())


def get_valid_transitions(status: BookingStatus) -> Set[BookingStatus]:
    return VALID_TRANSITIONS.get(status, set())


def is_terminal_state(status: BookingStatus) -> bool:
    """Check if status is terminal (no further transitions)."""
    return status in TERMINAL_STATES


def can_override(from_status: BookingStatus, to_status: BookingStatus) -> bool:
    """Staff/admin override: any non-terminal status to any other status."""
    return not is_terminal_state(from_status) and from_status != to_status


@dataclass(frozen=True)
class StatusChangeEvent:
    """Emitted for every committed status change."""

    booking_id: str
    business_id: str
    previous_status: Optional[BookingStatus]
    new_status: BookingStatus
    actor: Actor
    reason: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    occurred_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict:
        return {
            "booking_id": self.booking_id,
            "business_id": self.business_id,
            "previous_status": self.previous_status.value if self.previous_status else None,
            "new_status": self.new_status.value,
            "actor": self.actor.value,
            "reason": self.reason,
            "occurred_at": self.occurred_at.isoformat(),
        }


@dataclass(frozen=True)
class Transition:
    """Result of a successful lifecycle operation."""

    booking: Booking
    entry: OperationLogEntry
    previous_status: Optional[BookingStatus]
    financial_impact: Optional[FinancialImpact] = None

    @property
    def event(self) -> StatusChangeEvent:
        return StatusChangeEvent(
            booking_id=self.booking.id,
            business_id=self.booking.business_id,
            previous_status=self.previous_status,
            new_status=self.booking.status,
            actor=self.entry.actor,
            reason=self.entry.data.get("reason"),
            customer_email=self.booking.customer_email,
            customer_phone=self.booking.customer_phone,
            occurred_at=self.entry.timestamp,
        )


def _percentage_of(price: Decimal, percentage: Decimal) -> Decimal:
    return to_money(price * percentage / Decimal(100))


def cancellation_impact(booking: Booking, now: datetime) -> FinancialImpact:
    """Financial impact of cancelling at `now` under the booking's policy."""
    policy = booking.policy
    notice = booking.start_time - now
    has_deposit = policy.require_deposit and policy.deposit_amount > 0

    if notice < timedelta(hours=policy.cancellation_hours):
        if has_deposit:
            return FinancialImpact(
                type=FinancialImpactType.CHARGE,
                amount=policy.deposit_amount,
                reason=f"Deposit forfeited: cancelled with less than {policy.cancellation_hours:g} hours notice",
            )
        fee = policy.cancellation_fee_amount + _percentage_of(
            booking.price, policy.cancellation_fee_percentage
        )
        if fee > 0:
            return FinancialImpact(
                type=FinancialImpactType.CHARGE,
                amount=to_money(fee),
                reason=f"Late cancellation fee: less than {policy.cancellation_hours:g} hours notice",
            )
        return FinancialImpact.none("Late cancellation, no fee configured")

    if has_deposit:
        return FinancialImpact(
            type=FinancialImpactType.REFUND,
            amount=policy.deposit_amount,
            reason="Deposit refunded: cancelled within the free cancellation window",
        )
    return FinancialImpact.none("Cancelled within the free cancellation window")


def no_show_impact(booking: Booking) -> FinancialImpact:
    policy = booking.policy
    if policy.require_deposit and policy.deposit_amount > 0:
        return FinancialImpact(
            type=FinancialImpactType.CHARGE,
            amount=policy.deposit_amount,
            reason="Deposit forfeited: no-show",
        )
    fee = policy.no_show_fee_amount + _percentage_of(booking.price, policy.no_show_fee_percentage)
    if fee > 0:
        return FinancialImpact(
            type=FinancialImpactType.CHARGE,
            amount=to_money(fee),
            reason="No-show fee",
        )
    return FinancialImpact.none("No-show, no fee configured")


def deposit_hold(policy: PolicyConfig) -> Optional[FinancialImpact]:
    if policy.require_deposit and policy.deposit_amount > 0:
        return FinancialImpact(
            type=FinancialImpactType.HOLD,
            amount=policy.deposit_amount,
            reason="Booking deposit",
        )
    return None


class LifecycleStateMachine:
    """Applies lifecycle operations to bookings."""

    def __init__(
        self,
        conflict_detector: Optional[ConflictDetector] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._detector = conflict_detector or ConflictDetector()
        self._clock = clock

    def _entry(
        self,
        booking: Booking,
        operation: OperationType,
        actor: Actor,
        previous_status: Optional[BookingStatus],
        timestamp: datetime,
        financial_impact: Optional[FinancialImpact] = None,
        warnings: Sequence[Violation] = (),
        data: Optional[dict] = None,
    ) -> OperationLogEntry:
        return OperationLogEntry(
            id=new_id(),
            booking_id=booking.id,
            business_id=booking.business_id,
            operation_type=operation,
            actor=actor,
            previous_status=previous_status,
            new_status=booking.status,
            timestamp=timestamp,
            warnings=tuple(warnings),
            financial_impact=financial_impact,
            data=data or {},
        )

    def _require(self, booking: Booking, allowed: frozenset, target: BookingStatus) -> None:
        if booking.status not in allowed:
            logger.warning(
                f"Rejected transition for booking {booking.id}: "
                f"{booking.status.value} -> {target.value}"
            )
            raise StateTransitionError(booking.status, target)

    def create(
        self,
        request: BookingRequest,
        policy: PolicyConfig,
        resource: Optional[Resource] = None,
        price: Decimal = Decimal("0.00"),
        actor: Actor = Actor.CUSTOMER,
        warnings: Sequence[Violation] = (),
    ) -> Transition:
        """Create a booking from a validated request.

        Raises:
            ValidationError: If the window is invalid or the party does not
                fit the resource's capacity bounds
        """
        if request.end_time <= request.start_time:
            raise ValidationError.for_rule(
                "invalid_time_window", "Booking end time must be after its start time"
            )
        if resource is not None and not (
            resource.min_capacity <= request.party_size <= resource.max_capacity
        ):
            raise ValidationError.for_rule(
                "capacity_exceeded",
                f"Party of {request.party_size} does not fit {resource.label} "
                f"({resource.min_capacity}-{resource.max_capacity})",
            )

        now = self._clock()
        status = BookingStatus.CONFIRMED if policy.auto_confirm else BookingStatus.PENDING
        booking = Booking(
            id=new_id(),
            business_id=request.business_id,
            start_time=request.start_time,
            end_time=request.end_time,
            status=status,
            party_size=request.party_size,
            policy=policy,
            resource_id=resource.id if resource else None,
            customer_id=request.customer_id,
            customer_name=request.customer_name,
            customer_phone=request.customer_phone,
            customer_email=request.customer_email,
            price=to_money(price),
            notes=request.notes,
            attributes=dict(request.attributes),
            created_at=now,
            updated_at=now,
        )
        impact = deposit_hold(policy)
        entry = self._entry(
            booking,
            OperationType.CREATE,
            actor,
            None,
            now,
            financial_impact=impact,
            warnings=warnings,
            data={"policy_version": policy.version},
        )
        logger.info(f"Booking {booking.id} created ({status.value}) for {booking.business_id}")
        return Transition(booking=booking, entry=entry, previous_status=None, financial_impact=impact)

    def confirm(self, booking: Booking, actor: Actor = Actor.STAFF) -> Transition:
        self._require(booking, frozenset({BookingStatus.PENDING}), BookingStatus.CONFIRMED)
        now = self._clock()
        updated = replace(booking, status=BookingStatus.CONFIRMED, updated_at=now)
        entry = self._entry(updated, OperationType.CONFIRM, actor, booking.status, now)
        logger.info(f"Booking {booking.id} confirmed")
        return Transition(booking=updated, entry=entry, previous_status=booking.status)

    def cancel(
        self,
        booking: Booking,
        reason: str,
        actor: Actor = Actor.CUSTOMER,
    ) -> Transition:
        """Cancel an open booking.

        Raises:
            ValidationError: If no reason is given
            StateTransitionError: If the booking is not pending/confirmed
        """
        self._require(booking, OPEN_STATES, BookingStatus.CANCELLED)
        return self._cancelled(booking, reason, actor, OperationType.CANCEL)

    def _cancelled(
        self,
        booking: Booking,
        reason: Optional[str],
        actor: Actor,
        operation: OperationType,
        data: Optional[dict] = None,
    ) -> Transition:
        if not reason or not reason.strip():
            raise ValidationError.for_rule("reason_required", "A cancellation reason is required")

        now = self._clock()
        impact = cancellation_impact(booking, now)
        updated = replace(booking, status=BookingStatus.CANCELLED, updated_at=now)
        entry = self._entry(
            updated,
            operation,
            actor,
            booking.status,
            now,
            financial_impact=impact,
            data={
                **(data or {}),
                "reason": reason.strip(),
                "hours_notice": round((booking.start_time - now).total_seconds() / 3600, 2),
            },
        )
        logger.info(
            f"Booking {booking.id} cancelled by {actor.value} "
            f"({impact.type.value} {impact.amount})"
        )
        return Transition(
            booking=updated, entry=entry, previous_status=booking.status, financial_impact=impact
        )

    def reschedule(
        self,
        booking: Booking,
        new_start: datetime,
        existing_bookings: Sequence[Booking],
        actor: Actor = Actor.CUSTOMER,
        check_all_bookings: bool = False,
    ) -> Transition:
        """Move an open booking, keeping its duration.

        Args:
            booking: Booking to move
            new_start: New start time
            existing_bookings: Bookings around the new window
            actor: Who requested the change
            check_all_bookings: Compare against every booking, not only those
                on the same resource (resource-less businesses)

        Raises:
            StateTransitionError: If the booking is terminal or in progress
            ValidationError: If the new time is in the past or the limit is hit
            ConflictError: If the new window overlaps another booking
        """
        self._require(booking, OPEN_STATES, BookingStatus.CONFIRMED)

        now = self._clock()
        if new_start <= now:
            raise ValidationError.for_rule(
                "reschedule_in_past", "New booking time must be in the future"
            )

        policy = booking.policy
        if booking.reschedule_count >= policy.max_reschedules:
            raise ValidationError.for_rule(
                "reschedule_limit_reached",
                f"Booking has already been rescheduled {booking.reschedule_count} times",
                suggested_action="Cancel and create a new booking",
            )

        new_end = new_start + booking.duration
        resource_id = None if check_all_bookings else booking.resource_id
        if (resource_id is not None or check_all_bookings) and self._detector.has_conflict(
            new_start,
            new_end,
            existing_bookings,
            buffer_minutes=policy.buffer_minutes,
            resource_id=resource_id,
            exclude_booking_id=booking.id,
        ):
            logger.warning(f"Reschedule conflict for booking {booking.id} at {new_start.isoformat()}")
            raise ConflictError(
                "The new time conflicts with another booking",
                details={"start_time": new_start.isoformat(), "end_time": new_end.isoformat()},
            )

        updated = replace(
            booking,
            start_time=new_start,
            end_time=new_end,
            status=BookingStatus.CONFIRMED,
            reschedule_count=booking.reschedule_count + 1,
            updated_at=now,
        )
        entry = self._entry(
            updated,
            OperationType.RESCHEDULE,
            actor,
            booking.status,
            now,
            data={
                "previous_start": booking.start_time.isoformat(),
                "previous_end": booking.end_time.isoformat(),
                "new_start": new_start.isoformat(),
                "new_end": new_end.isoformat(),
            },
        )
        logger.info(f"Booking {booking.id} rescheduled to {new_start.isoformat()}")
        return Transition(booking=updated, entry=entry, previous_status=booking.status)

    def no_show(self, booking: Booking, actor: Actor = Actor.STAFF) -> Transition:
        """Mark an open booking as a no-show once its start (plus grace) has passed.

        Raises:
            StateTransitionError: If the booking is not pending/confirmed
            ValidationError: If the booking has not started yet
        """
        self._require(booking, OPEN_STATES, BookingStatus.NO_SHOW)
        return self._no_show(booking, actor, OperationType.NO_SHOW)

    def _no_show(
        self,
        booking: Booking,
        actor: Actor,
        operation: OperationType,
        data: Optional[dict] = None,
    ) -> Transition:
        now = self._clock()
        grace = timedelta(minutes=booking.policy.no_show_grace_minutes)
        if now < booking.start_time + grace:
            raise ValidationError.for_rule(
                "no_show_too_early",
                "Cannot mark a booking as no-show before its start time has passed",
            )

        impact = no_show_impact(booking)
        updated = replace(booking, status=BookingStatus.NO_SHOW, updated_at=now)
        entry = self._entry(
            updated,
            operation,
            actor,
            booking.status,
            now,
            financial_impact=impact,
            data=data,
        )
        logger.info(f"Booking {booking.id} marked as no-show")
        return Transition(
            booking=updated, entry=entry, previous_status=booking.status, financial_impact=impact
        )

    def update_status(
        self,
        booking: Booking,
        new_status: BookingStatus,
        reason: Optional[str] = None,
        actor: Actor = Actor.STAFF,
        operation: OperationType = OperationType.MODIFY,
    ) -> Transition:
        """Staff/admin override from any non-terminal status.

        Overrides to cancelled or no_show still carry their financial
        impact; a cancellation needs a reason and a no-show needs the
        start (plus grace) to have passed.

        Raises:
            StateTransitionError: If the booking is terminal or already in new_status
            ValidationError: If a cancellation has no reason or a no-show is too early
        """
        if not can_override(booking.status, new_status):
            logger.warning(
                f"Rejected status override for booking {booking.id}: "
                f"{booking.status.value} -> {new_status.value}"
            )
            raise StateTransitionError(booking.status, new_status)

        status_change = {"status_change": {"from": booking.status.value, "to": new_status.value}}
        if new_status == BookingStatus.CANCELLED:
            return self._cancelled(booking, reason, actor, operation, data=status_change)
        if new_status == BookingStatus.NO_SHOW:
            return self._no_show(
                booking, actor, operation, data={**status_change, "reason": reason}
            )

        now = self._clock()
        updated = replace(booking, status=new_status, updated_at=now)
        entry = self._entry(
            updated,
            operation,
            actor,
            booking.status,
            now,
            data={**status_change, "reason": reason},
        )
        logger.info(
            f"Booking {booking.id} status changed by {actor.value}: "
            f"{booking.status.value} -> {new_status.value}"
        )
        return Transition(booking=updated, entry=entry, previous_status=booking.status)

    def complete(self, booking: Booking, actor: Actor = Actor.STAFF) -> Transition:
        return self.update_status(
            booking, BookingStatus.COMPLETED, actor=actor, operation=OperationType.COMPLETE
        )
