"""
Violations and booking errors.

Violations describe rule outcomes; warnings are violations with INFO
priority and never block a booking. BookingError subclasses carry a
machine-readable code that the API maps to HTTP statuses.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Optional

from app.core.booking.types import BookingStatus, FinancialImpact


class ViolationPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    INFO = "info"


@dataclass(frozen=True)
class Violation:
    """A broken (or advisory) business rule."""

    rule: str
    message: str
    is_mandatory: bool = True
    priority: ViolationPriority = ViolationPriority.HIGH
    suggested_action: Optional[str] = None
    financial_impact: Optional[FinancialImpact] = None

    @property
    def is_warning(self) -> bool:
        return self.priority == ViolationPriority.INFO

    def to_dict(self) -> dict:
        result = {
            "rule": self.rule,
            "message": self.message,
            "is_mandatory": self.is_mandatory,
            "priority": self.priority.value,
        }
        if self.suggested_action:
            result["suggested_action"] = self.suggested_action
        if self.financial_impact:
            result["financial_impact"] = self.financial_impact.to_dict()
        return result

    @classmethod
    def from_dict(cls, data: dict) -> "Violation":
        impact = data.get("financial_impact")
        return cls(
            rule=data["rule"],
            message=data.get("message", ""),
            is_mandatory=data.get("is_mandatory", True),
            priority=ViolationPriority(data.get("priority", ViolationPriority.HIGH.value)),
            suggested_action=data.get("suggested_action"),
            financial_impact=FinancialImpact.from_dict(impact) if impact else None,
        )


def violation(
    rule: str,
    message: str,
    suggested_action: Optional[str] = None,
    financial_impact: Optional[FinancialImpact] = None,
) -> Violation:
    """Blocking violation."""
    return Violation(
        rule=rule,
        message=message,
        suggested_action=suggested_action,
        financial_impact=financial_impact,
    )


def soft_violation(
    rule: str,
    message: str,
    suggested_action: Optional[str] = None,
) -> Violation:
    """Rule breach that is reported but does not block."""
    return Violation(
        rule=rule,
        message=message,
        is_mandatory=False,
        priority=ViolationPriority.LOW,
        suggested_action=suggested_action,
    )


def warning(rule: str, message: str, suggested_action: Optional[str] = None) -> Violation:
    """Advisory notice."""
    return Violation(
        rule=rule,
        message=message,
        is_mandatory=False,
        priority=ViolationPriority.INFO,
        suggested_action=suggested_action,
    )


@dataclass
class ValidationResult:
    """Outcome of validating a booking request."""

    violations: list[Violation] = field(default_factory=list)
    warnings: list[Violation] = field(default_factory=list)

    def add(self, items: Iterable[Violation]) -> None:
        """Route violations and warnings into their lists."""
        for item in items:
            if item.is_warning:
                self.warnings.append(item)
            else:
                self.violations.append(item)

    @property
    def is_valid(self) -> bool:
        return not self.violations

    @property
    def can_proceed(self) -> bool:
        return not any(v.is_mandatory for v in self.violations)

    @property
    def mandatory(self) -> list[Violation]:
        return [v for v in self.violations if v.is_mandatory]

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "can_proceed": self.can_proceed,
            "violations": [v.to_dict() for v in self.violations],
            "warnings": [w.to_dict() for w in self.warnings],
        }


# ==================================
# Exceptions
# ==================================


class BookingError(Exception):
    """Base class for booking failures."""

    code = "booking_error"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        result = {"error": self.code, "message": self.message}
        if self.details:
            result["details"] = self.details
        return result


class ValidationError(BookingError):
    """Request breaks one or more mandatory rules."""

    code = "validation_failed"

    def __init__(
        self,
        message: str,
        violations: Optional[list[Violation]] = None,
        warnings: Optional[list[Violation]] = None,
    ):
        self.violations = list(violations or [])
        self.warnings = list(warnings or [])
        super().__init__(
            message,
            details={
                "violations": [v.to_dict() for v in self.violations],
                "warnings": [w.to_dict() for w in self.warnings],
            },
        )

    @classmethod
    def for_rule(cls, rule: str, message: str, suggested_action: Optional[str] = None) -> "ValidationError":
        return cls(message, violations=[violation(rule, message, suggested_action)])


class ConflictError(BookingError):
    """Requested window overlaps an existing booking."""

    code = "conflict"


class StateTransitionError(BookingError):
    """Transition not allowed from the booking's current status."""

    code = "invalid_transition"

    def __init__(self, current_status: BookingStatus, attempted_status: BookingStatus):
        self.current_status = current_status
        self.attempted_status = attempted_status
        super().__init__(
            f"Cannot move booking from {current_status.value} to {attempted_status.value}",
            details={
                "current_status": current_status.value,
                "attempted_status": attempted_status.value,
            },
        )


class NotFoundError(BookingError):
    """Business, booking or resource does not exist."""

    code = "not_found"


class LockTimeoutError(BookingError):
    """Reservation lock could not be acquired in time."""

    code = "lock_timeout"
