"""
Booking policy configuration.

A PolicyConfig is immutable. Each booking keeps the snapshot that was
current when it was created, so later edits never change the rules
applied to existing bookings.
"""

from dataclasses import asdict, dataclass, fields, replace
from decimal import Decimal, InvalidOperation
from typing import Any

_MONEY_FIELDS = {
    "deposit_amount",
    "cancellation_fee_amount",
    "cancellation_fee_percentage",
    "no_show_fee_amount",
    "no_show_fee_percentage",
}


def to_money(value: Any) -> Decimal:
    """Coerce a number to a two-place Decimal."""
    try:
        return Decimal(str(value)).quantize(Decimal("0.01"))
    except (InvalidOperation, ValueError) as e:
        raise ValueError(f"Invalid amount: {value!r}") from e


@dataclass(frozen=True)
class PolicyConfig:
    """Per-business booking rules.

    Percentages are expressed in percent (50 means half the booking price).
    """

    advance_booking_hours: float = 1.0
    max_advance_booking_days: int = 30
    cancellation_hours: float = 24.0
    buffer_minutes: int = 0
    allow_double_booking: bool = False
    require_deposit: bool = False
    deposit_amount: Decimal = Decimal("0.00")
    cancellation_fee_amount: Decimal = Decimal("25.00")
    cancellation_fee_percentage: Decimal = Decimal("0.00")
    no_show_fee_amount: Decimal = Decimal("25.00")
    no_show_fee_percentage: Decimal = Decimal("0.00")
    no_show_grace_minutes: int = 0
    max_reschedules: int = 3
    auto_confirm: bool = False
    version: int = 1

    def __post_init__(self) -> None:
        for name in _MONEY_FIELDS:
            object.__setattr__(self, name, to_money(getattr(self, name)))

        if self.advance_booking_hours < 0:
            raise ValueError("advance_booking_hours must be >= 0")
        if self.max_advance_booking_days < 1:
            raise ValueError("max_advance_booking_days must be >= 1")
        if self.cancellation_hours < 0:
            raise ValueError("cancellation_hours must be >= 0")
        if self.buffer_minutes < 0:
            raise ValueError("buffer_minutes must be >= 0")
        if self.no_show_grace_minutes < 0:
            raise ValueError("no_show_grace_minutes must be >= 0")
        if self.max_reschedules < 0:
            raise ValueError("max_reschedules must be >= 0")
        for name in _MONEY_FIELDS:
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0")

    def revise(self, **changes: Any) -> "PolicyConfig":
        """Return a new policy with changes applied and the version bumped."""
        changes.pop("version", None)
        return replace(self, version=self.version + 1, **changes)

    def to_dict(self) -> dict:
        data = asdict(self)
        for name in _MONEY_FIELDS:
            data[name] = float(data[name])
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "PolicyConfig":
        """Build from a dict, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})
