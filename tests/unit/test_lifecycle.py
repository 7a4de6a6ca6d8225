"""Tests for the booking lifecycle state machine."""

from datetime import timedelta
from decimal import Decimal

import pytest

from app.core.booking.errors import ConflictError, StateTransitionError, ValidationError
from app.core.booking.lifecycle import (
    TERMINAL_STATES,
    LifecycleStateMachine,
    can_override,
    can_transition,
    get_valid_transitions,
    is_terminal_state,
)
from app.core.booking.policy import PolicyConfig
from app.core.booking.types import (
    Actor,
    BookingStatus,
    FinancialImpactType,
    OperationType,
    Table,
)
from tests.factories import NOW, FixedClock, at, make_booking, make_request


class TestTransitionTable:
    """Test the transition helpers."""

    def test_regular_flow(self):
        assert can_transition(BookingStatus.PENDING, BookingStatus.CONFIRMED)
        assert can_transition(BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS)
        assert can_transition(BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED)
        assert not can_transition(BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED)

    def test_terminal_states_have_no_exits(self):
        for status in TERMINAL_STATES:
            assert is_terminal_state(status)
            assert get_valid_transitions(status) == set()
            for target in BookingStatus:
                assert not can_transition(status, target)
                assert not can_override(status, target)

    def test_override_rules(self):
        assert can_override(BookingStatus.PENDING, BookingStatus.IN_PROGRESS)
        assert not can_override(BookingStatus.PENDING, BookingStatus.PENDING)


class TestLifecycleStateMachine:
    """Test LifecycleStateMachine operations."""

    @pytest.fixture
    def clock(self):
        return FixedClock(NOW)

    @pytest.fixture
    def machine(self, clock):
        return LifecycleStateMachine(clock=clock)

    @pytest.fixture
    def booking(self):
        return make_booking(at(10), at(11), status=BookingStatus.CONFIRMED)

    # Create

    def test_create_pending(self, machine):
        table = Table(id="t1", number="1", min_party=2, max_party=4)
        transition = machine.create(
            make_request(at(19), at(21), party_size=4), PolicyConfig(), resource=table, price=Decimal("40")
        )

        assert transition.booking.status == BookingStatus.PENDING
        assert transition.booking.resource_id == "t1"
        assert transition.booking.price == Decimal("40.00")
        assert transition.entry.operation_type == OperationType.CREATE
        assert transition.entry.previous_status is None
        assert transition.entry.new_status == BookingStatus.PENDING
        assert transition.entry.timestamp == NOW

    def test_create_auto_confirm_with_deposit(self, machine):
        policy = PolicyConfig(auto_confirm=True, require_deposit=True, deposit_amount=50)
        transition = machine.create(make_request(at(10), at(11)), policy)

        assert transition.booking.status == BookingStatus.CONFIRMED
        assert transition.financial_impact.type == FinancialImpactType.HOLD
        assert transition.financial_impact.amount == Decimal("50.00")

    def test_create_capacity_exceeded(self, machine):
        table = Table(id="t1", number="1", min_party=2, max_party=4)
        with pytest.raises(ValidationError) as exc_info:
            machine.create(make_request(at(19), at(21), party_size=6), PolicyConfig(), resource=table)
        assert exc_info.value.violations[0].rule == "capacity_exceeded"

    def test_create_invalid_window(self, machine):
        with pytest.raises(ValidationError):
            machine.create(make_request(at(11), at(10)), PolicyConfig())

    # Terminal closure

    @pytest.mark.parametrize("status", sorted(TERMINAL_STATES, key=lambda s: s.value))
    def test_terminal_bookings_reject_everything(self, machine, clock, status):
        booking = make_booking(at(10), at(11), status=status)
        clock.advance(days=1, hours=6)

        with pytest.raises(StateTransitionError):
            machine.cancel(booking, "changed plans")
        with pytest.raises(StateTransitionError):
            machine.confirm(booking)
        with pytest.raises(StateTransitionError):
            machine.no_show(booking)
        with pytest.raises(StateTransitionError):
            machine.complete(booking)
        for target in BookingStatus:
            with pytest.raises(StateTransitionError):
                machine.update_status(booking, target)

        assert booking.status == status

    def test_terminal_booking_cannot_be_rescheduled(self, machine):
        booking = make_booking(at(10), at(11), status=BookingStatus.CANCELLED)
        with pytest.raises(StateTransitionError):
            machine.reschedule(booking, at(14), [])

    # Cancel

    def test_late_cancellation_is_charged(self, machine):
        policy = PolicyConfig(cancellation_hours=2)
        booking = make_booking(NOW + timedelta(hours=1), NOW + timedelta(hours=2), policy=policy)

        transition = machine.cancel(booking, "running late")

        assert transition.booking.status == BookingStatus.CANCELLED
        assert transition.financial_impact.type == FinancialImpactType.CHARGE
        assert not transition.financial_impact.is_zero
        assert transition.entry.data["reason"] == "running late"

    def test_early_cancellation_is_free(self, machine):
        policy = PolicyConfig(cancellation_hours=2)
        booking = make_booking(NOW + timedelta(hours=3), NOW + timedelta(hours=4), policy=policy)

        transition = machine.cancel(booking, "running late")

        assert transition.financial_impact.type == FinancialImpactType.NONE
        assert transition.financial_impact.is_zero

    def test_deposit_forfeited_or_refunded(self, machine):
        policy = PolicyConfig(cancellation_hours=24, require_deposit=True, deposit_amount=50)

        late = make_booking(NOW + timedelta(hours=5), NOW + timedelta(hours=6), policy=policy)
        impact = machine.cancel(late, "sick").financial_impact
        assert (impact.type, impact.amount) == (FinancialImpactType.CHARGE, Decimal("50.00"))

        early = make_booking(NOW + timedelta(days=2), NOW + timedelta(days=2, hours=1), policy=policy)
        impact = machine.cancel(early, "sick").financial_impact
        assert (impact.type, impact.amount) == (FinancialImpactType.REFUND, Decimal("50.00"))

    def test_percentage_cancellation_fee(self, machine):
        policy = PolicyConfig(cancellation_fee_amount=0, cancellation_fee_percentage=50)
        booking = make_booking(
            NOW + timedelta(hours=1), NOW + timedelta(hours=2), policy=policy, price=Decimal("120.00")
        )
        assert machine.cancel(booking, "sick").financial_impact.amount == Decimal("60.00")

    def test_cancel_requires_reason(self, machine, booking):
        with pytest.raises(ValidationError):
            machine.cancel(booking, "  ")

    def test_retried_cancel_reports_state_before_reason(self, machine, booking):
        cancelled = machine.cancel(booking, "changed plans").booking

        for reason in ("changed plans", ""):
            with pytest.raises(StateTransitionError):
                machine.cancel(cancelled, reason)

    def test_cancel_leaves_input_untouched(self, machine, booking):
        machine.cancel(booking, "changed plans")
        assert booking.status == BookingStatus.CONFIRMED

    # Reschedule

    def test_reschedule_preserves_duration(self, machine, booking):
        transition = machine.reschedule(booking, at(14), [booking])

        assert transition.booking.start_time == at(14)
        assert transition.booking.duration == booking.duration
        assert transition.booking.reschedule_count == 1
        assert transition.booking.status == BookingStatus.CONFIRMED
        assert transition.entry.operation_type == OperationType.RESCHEDULE

    def test_reschedule_conflict(self, machine):
        booking = make_booking(at(10), at(11), resource_id="t1")
        other = make_booking(at(14), at(15), resource_id="t1")

        with pytest.raises(ConflictError):
            machine.reschedule(booking, at(14, 30), [booking, other])

    def test_reschedule_other_resource_is_free(self, machine):
        booking = make_booking(at(10), at(11), resource_id="t1")
        other = make_booking(at(14), at(15), resource_id="t2")

        transition = machine.reschedule(booking, at(14), [booking, other])
        assert transition.booking.start_time == at(14)

    def test_reschedule_checks_all_bookings_without_resource(self, machine):
        booking = make_booking(at(10), at(11))
        other = make_booking(at(14), at(15))

        with pytest.raises(ConflictError):
            machine.reschedule(booking, at(14), [booking, other], check_all_bookings=True)

    def test_reschedule_into_the_past(self, machine, booking):
        with pytest.raises(ValidationError) as exc_info:
            machine.reschedule(booking, NOW - timedelta(hours=1), [])
        assert exc_info.value.violations[0].rule == "reschedule_in_past"

    def test_reschedule_limit(self, machine):
        booking = make_booking(at(10), at(11), policy=PolicyConfig(max_reschedules=1), reschedule_count=1)
        with pytest.raises(ValidationError) as exc_info:
            machine.reschedule(booking, at(14), [])
        assert exc_info.value.violations[0].rule == "reschedule_limit_reached"

    # No-show

    def test_no_show_before_start(self, machine, booking):
        with pytest.raises(ValidationError):
            machine.no_show(booking)

    def test_no_show_after_start(self, machine, clock, booking):
        clock.now = at(10, 5)
        transition = machine.no_show(booking)

        assert transition.booking.status == BookingStatus.NO_SHOW
        assert transition.financial_impact.type == FinancialImpactType.CHARGE
        assert transition.financial_impact.amount == Decimal("25.00")

    def test_no_show_grace_period(self, machine, clock):
        booking = make_booking(at(10), at(11), policy=PolicyConfig(no_show_grace_minutes=15))
        clock.now = at(10, 10)
        with pytest.raises(ValidationError):
            machine.no_show(booking)

        clock.now = at(10, 15)
        assert machine.no_show(booking).booking.status == BookingStatus.NO_SHOW

    # Status overrides

    def test_update_status_logs_change(self, machine):
        booking = make_booking(at(10), at(11), status=BookingStatus.PENDING)
        transition = machine.update_status(
            booking, BookingStatus.IN_PROGRESS, reason="walked in early", actor=Actor.ADMIN
        )

        assert transition.booking.status == BookingStatus.IN_PROGRESS
        assert transition.entry.actor == Actor.ADMIN
        assert transition.entry.data == {
            "status_change": {"from": "pending", "to": "in_progress"},
            "reason": "walked in early",
        }

    def test_override_to_cancelled_keeps_cancellation_rules(self, machine):
        policy = PolicyConfig(cancellation_hours=2, require_deposit=True, deposit_amount=20)
        booking = make_booking(
            NOW + timedelta(minutes=30), NOW + timedelta(hours=1, minutes=30), policy=policy
        )

        with pytest.raises(ValidationError):
            machine.update_status(booking, BookingStatus.CANCELLED)

        transition = machine.update_status(
            booking, BookingStatus.CANCELLED, reason="kitchen closed", actor=Actor.ADMIN
        )

        assert transition.booking.status == BookingStatus.CANCELLED
        assert transition.entry.operation_type == OperationType.MODIFY
        assert transition.entry.data["reason"] == "kitchen closed"
        assert transition.entry.data["status_change"] == {"from": "confirmed", "to": "cancelled"}
        impact = transition.entry.financial_impact
        assert (impact.type, impact.amount) == (FinancialImpactType.CHARGE, Decimal("20.00"))

    def test_override_to_no_show_waits_for_start(self, machine, clock):
        policy = PolicyConfig(require_deposit=True, deposit_amount=20)
        booking = make_booking(
            NOW + timedelta(minutes=30), NOW + timedelta(hours=1, minutes=30), policy=policy
        )

        with pytest.raises(ValidationError):
            machine.update_status(booking, BookingStatus.NO_SHOW)

        clock.advance(hours=1)
        transition = machine.update_status(booking, BookingStatus.NO_SHOW)

        assert transition.booking.status == BookingStatus.NO_SHOW
        assert transition.financial_impact.amount == Decimal("20.00")
        assert transition.entry.financial_impact == transition.financial_impact

    def test_complete(self, machine):
        booking = make_booking(at(10), at(11), status=BookingStatus.IN_PROGRESS)
        transition = machine.complete(booking)

        assert transition.booking.status == BookingStatus.COMPLETED
        assert transition.entry.operation_type == OperationType.COMPLETE

    def test_status_change_event(self, machine, booking):
        event = machine.cancel(booking, "changed plans", actor=Actor.CUSTOMER).event

        assert event.booking_id == booking.id
        assert event.previous_status == BookingStatus.CONFIRMED
        assert event.new_status == BookingStatus.CANCELLED
        assert event.to_dict()["reason"] == "changed plans"
