"""
Booking Module

Domain model and scheduling logic for multi-tenant bookings: conflict
detection, resource matching, slot generation, validation, the booking
lifecycle and ranking.

The orchestrator depends on infrastructure (Redis locks, notifications)
and is imported from its own module:

Usage:
    from app.core.booking.engine import get_booking_engine

    engine = get_booking_engine()
    result = await engine.create_booking(request)
    if not result.success:
        print(result.error_code, result.violations)
"""

# Domain types
from app.core.booking.types import (
    Actor,
    Agent,
    Booking,
    BookingMode,
    BookingRequest,
    BookingStatus,
    BusinessProfile,
    FinancialImpact,
    FinancialImpactType,
    Industry,
    OperationLogEntry,
    OperationType,
    Requirement,
    Resource,
    ResourceKind,
    Slot,
    StaffMember,
    Table,
)

# Policy and errors
from app.core.booking.policy import PolicyConfig
from app.core.booking.errors import (
    BookingError,
    ConflictError,
    LockTimeoutError,
    NotFoundError,
    StateTransitionError,
    ValidationError,
    ValidationResult,
    Violation,
)

# Scheduling components
from app.core.booking.conflicts import ConflictDetector, has_conflict
from app.core.booking.matcher import ResourceMatcher
from app.core.booking.slots import SlotGenerator
from app.core.booking.validator import BookingValidator
from app.core.booking.lifecycle import LifecycleStateMachine, StatusChangeEvent, Transition
from app.core.booking.rules import IndustryProfile, get_profile, register_profile
from app.core.booking.ranking import qualify_lead, recommend_properties

# Storage
from app.core.booking.store import BookingStore, InMemoryBookingStore

__all__ = [
    # Domain types
    "Actor",
    "Agent",
    "Booking",
    "BookingMode",
    "BookingRequest",
    "BookingStatus",
    "BusinessProfile",
    "FinancialImpact",
    "FinancialImpactType",
    "Industry",
    "OperationLogEntry",
    "OperationType",
    "Requirement",
    "Resource",
    "ResourceKind",
    "Slot",
    "StaffMember",
    "Table",
    # Policy and errors
    "PolicyConfig",
    "BookingError",
    "ConflictError",
    "LockTimeoutError",
    "NotFoundError",
    "StateTransitionError",
    "ValidationError",
    "ValidationResult",
    "Violation",
    # Scheduling components
    "ConflictDetector",
    "has_conflict",
    "ResourceMatcher",
    "SlotGenerator",
    "BookingValidator",
    "LifecycleStateMachine",
    "StatusChangeEvent",
    "Transition",
    "IndustryProfile",
    "get_profile",
    "register_profile",
    "qualify_lead",
    "recommend_properties",
    # Storage
    "BookingStore",
    "InMemoryBookingStore",
]
