"""
Booking storage.

BookingStore is the persistence boundary of the engine. Implementations
must commit a booking together with its log entry atomically, and must
apply transitions as compare-and-set on the booking's current status.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from copy import deepcopy
from datetime import datetime
from typing import Optional

from app.core.booking.policy import PolicyConfig
from app.core.booking.types import (
    Booking,
    BookingStatus,
    BusinessProfile,
    OperationLogEntry,
    Resource,
)

logger = logging.getLogger(__name__)


class BookingStore(ABC):
    """Async persistence interface."""

    # Businesses

    @abstractmethod
    async def get_business(self, business_id: str) -> Optional[BusinessProfile]:
        ...

    @abstractmethod
    async def save_business(self, business: BusinessProfile) -> None:
        ...

    # Resources

    @abstractmethod
    async def list_resources(self, business_id: str) -> list[Resource]:
        ...

    @abstractmethod
    async def save_resource(self, business_id: str, resource: Resource) -> None:
        ...

    # Policies

    @abstractmethod
    async def get_policy(self, business_id: str) -> Optional[PolicyConfig]:
        ...

    @abstractmethod
    async def save_policy(self, business_id: str, policy: PolicyConfig) -> None:
        ...

    # Bookings

    @abstractmethod
    async def get_booking(self, business_id: str, booking_id: str) -> Optional[Booking]:
        ...

    @abstractmethod
    async def list_bookings(
        self,
        business_id: str,
        start: datetime,
        end: datetime,
        resource_id: Optional[str] = None,
    ) -> list[Booking]:
        """Bookings (any status) whose window overlaps [start, end)."""

    @abstractmethod
    async def insert_booking(self, booking: Booking, entry: OperationLogEntry) -> None:
        """Persist a new booking and its create entry in one commit."""

    @abstractmethod
    async def apply_transition(
        self,
        booking: Booking,
        entry: OperationLogEntry,
        expected_status: BookingStatus,
    ) -> bool:
        """Persist a transition if the stored status still equals expected_status.

        Returns:
            True if committed, False if the booking changed concurrently
        """

    @abstractmethod
    async def list_operations(self, business_id: str, booking_id: str) -> list[OperationLogEntry]:
        """Operation history, oldest first."""


class InMemoryBookingStore(BookingStore):
    """Process-local store for development and tests."""

    def __init__(self):
        self._businesses: dict[str, BusinessProfile] = {}
        self._resources: dict[str, dict[str, Resource]] = {}
        self._policies: dict[str, PolicyConfig] = {}
        self._bookings: dict[str, Booking] = {}
        self._operations: dict[str, list[OperationLogEntry]] = {}
        self._lock = asyncio.Lock()

    async def get_business(self, business_id: str) -> Optional[BusinessProfile]:
        return self._businesses.get(business_id)

    async def save_business(self, business: BusinessProfile) -> None:
        self._businesses[business.id] = business

    async def list_resources(self, business_id: str) -> list[Resource]:
        return list(self._resources.get(business_id, {}).values())

    async def save_resource(self, business_id: str, resource: Resource) -> None:
        self._resources.setdefault(business_id, {})[resource.id] = resource

    async def get_policy(self, business_id: str) -> Optional[PolicyConfig]:
        return self._policies.get(business_id)

    async def save_policy(self, business_id: str, policy: PolicyConfig) -> None:
        self._policies[business_id] = policy

    async def get_booking(self, business_id: str, booking_id: str) -> Optional[Booking]:
        booking = self._bookings.get(booking_id)
        if booking is None or booking.business_id != business_id:
            return None
        return deepcopy(booking)

    async def list_bookings(
        self,
        business_id: str,
        start: datetime,
        end: datetime,
        resource_id: Optional[str] = None,
    ) -> list[Booking]:
        return [
            deepcopy(b)
            for b in self._bookings.values()
            if b.business_id == business_id
            and b.start_time < end
            and start < b.end_time
            and (resource_id is None or b.resource_id == resource_id)
        ]

    async def insert_booking(self, booking: Booking, entry: OperationLogEntry) -> None:
        async with self._lock:
            if booking.id in self._bookings:
                raise ValueError(f"Booking {booking.id} already exists")
            self._bookings[booking.id] = deepcopy(booking)
            self._operations[booking.id] = [entry]

    async def apply_transition(
        self,
        booking: Booking,
        entry: OperationLogEntry,
        expected_status: BookingStatus,
    ) -> bool:
        async with self._lock:
            current = self._bookings.get(booking.id)
            if current is None or current.status != expected_status:
                logger.warning(
                    f"Stale transition for booking {booking.id}: "
                    f"expected {expected_status.value}, "
                    f"found {current.status.value if current else 'missing'}"
                )
                return False
            self._bookings[booking.id] = deepcopy(booking)
            self._operations.setdefault(booking.id, []).append(entry)
            return True

    async def list_operations(self, business_id: str, booking_id: str) -> list[OperationLogEntry]:
        booking = self._bookings.get(booking_id)
        if booking is None or booking.business_id != business_id:
            return []
        return list(self._operations.get(booking_id, []))
