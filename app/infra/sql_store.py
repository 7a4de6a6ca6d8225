"""
SQLAlchemy Booking Store

BookingStore backed by the async SQLAlchemy session factory. Transitions
are compare-and-set UPDATEs on the booking's status; each commit writes
the booking row and its operation entry in one transaction.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.booking.errors import ConflictError, Violation
from app.core.booking.hours import (
    ensure_aware,
    parse_weekly_hours,
    to_utc,
    weekly_hours_to_dict,
)
from app.core.booking.policy import PolicyConfig
from app.core.booking.store import BookingStore
from app.core.booking.types import (
    Booking,
    BookingStatus,
    BusinessProfile,
    FinancialImpact,
    OperationLogEntry,
    Resource,
    normalize_booking_times,
    resource_from_dict,
)
from app.infra.database import session_scope
from app.models import database as models

logger = logging.getLogger(__name__)


def _booking_from_row(row: models.Booking) -> Booking:
    booking = Booking(
        id=row.id,
        business_id=row.business_id,
        start_time=row.start_time,
        end_time=row.end_time,
        status=row.status,
        party_size=row.party_size,
        policy=PolicyConfig.from_dict(row.policy_snapshot),
        resource_id=row.resource_id,
        customer_id=row.customer_id,
        customer_name=row.customer_name,
        customer_phone=row.customer_phone,
        customer_email=row.customer_email,
        price=row.price,
        reschedule_count=row.reschedule_count,
        notes=row.notes,
        attributes=dict(row.attributes or {}),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
    return normalize_booking_times(booking)


def _booking_values(booking: Booking) -> dict:
    """Mutable columns written on every transition."""
    return {
        "start_time": to_utc(booking.start_time),
        "end_time": to_utc(booking.end_time),
        "status": booking.status,
        "resource_id": booking.resource_id,
        "reschedule_count": booking.reschedule_count,
        "price": booking.price,
        "notes": booking.notes,
        "updated_at": to_utc(booking.updated_at),
    }


def _entry_from_row(row: models.BookingOperation) -> OperationLogEntry:
    return OperationLogEntry(
        id=row.id,
        booking_id=row.booking_id,
        business_id=row.business_id,
        operation_type=row.operation_type,
        actor=row.actor,
        previous_status=BookingStatus(row.previous_status) if row.previous_status else None,
        new_status=BookingStatus(row.new_status),
        timestamp=ensure_aware(row.timestamp),
        violations=tuple(Violation.from_dict(v) for v in row.violations or []),
        warnings=tuple(Violation.from_dict(w) for w in row.warnings or []),
        financial_impact=(
            FinancialImpact.from_dict(row.financial_impact) if row.financial_impact else None
        ),
        data=dict(row.data or {}),
    )


def _entry_row(entry: OperationLogEntry, sequence: int) -> models.BookingOperation:
    return models.BookingOperation(
        id=entry.id,
        sequence=sequence,
        booking_id=entry.booking_id,
        business_id=entry.business_id,
        operation_type=entry.operation_type,
        actor=entry.actor,
        previous_status=entry.previous_status.value if entry.previous_status else None,
        new_status=entry.new_status.value,
        violations=[v.to_dict() for v in entry.violations],
        warnings=[w.to_dict() for w in entry.warnings],
        financial_impact=entry.financial_impact.to_dict() if entry.financial_impact else None,
        data=dict(entry.data),
        timestamp=to_utc(entry.timestamp),
    )


class SqlBookingStore(BookingStore):
    """Persistent store on PostgreSQL (or SQLite in tests)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # Businesses

    async def get_business(self, business_id: str) -> Optional[BusinessProfile]:
        async with self._session_factory() as session:
            row = await session.get(models.Business, business_id)
            if row is None:
                return None
            return BusinessProfile(
                id=row.id,
                name=row.name,
                industry=row.industry,
                timezone=row.timezone,
                operating_hours=parse_weekly_hours(row.operating_hours),
            )

    async def save_business(self, business: BusinessProfile) -> None:
        async with session_scope(self._session_factory) as session:
            await session.merge(
                models.Business(
                    id=business.id,
                    name=business.name,
                    industry=business.industry,
                    timezone=business.timezone,
                    operating_hours=weekly_hours_to_dict(business.operating_hours),
                )
            )

    # Resources

    async def list_resources(self, business_id: str) -> list[Resource]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(models.Resource)
                .where(models.Resource.business_id == business_id)
                .order_by(models.Resource.created_at, models.Resource.id)
            )
            return [
                resource_from_dict({**row.attributes, "id": row.id, "kind": row.kind.value})
                for row in result.scalars()
            ]

    async def save_resource(self, business_id: str, resource: Resource) -> None:
        data = resource.to_dict()
        data.pop("id")
        data.pop("kind")
        async with session_scope(self._session_factory) as session:
            await session.merge(
                models.Resource(
                    id=resource.id,
                    business_id=business_id,
                    kind=resource.kind,
                    attributes=data,
                )
            )

    # Policies

    async def get_policy(self, business_id: str) -> Optional[PolicyConfig]:
        async with self._session_factory() as session:
            row = await session.get(models.BookingPolicy, business_id)
            return PolicyConfig.from_dict(row.config) if row else None

    async def save_policy(self, business_id: str, policy: PolicyConfig) -> None:
        async with session_scope(self._session_factory) as session:
            await session.merge(
                models.BookingPolicy(
                    business_id=business_id,
                    version=policy.version,
                    config=policy.to_dict(),
                )
            )

    # Bookings

    async def get_booking(self, business_id: str, booking_id: str) -> Optional[Booking]:
        async with self._session_factory() as session:
            row = await session.get(models.Booking, booking_id)
            if row is None or row.business_id != business_id:
                return None
            return _booking_from_row(row)

    async def list_bookings(
        self,
        business_id: str,
        start: datetime,
        end: datetime,
        resource_id: Optional[str] = None,
    ) -> list[Booking]:
        query = select(models.Booking).where(
            models.Booking.business_id == business_id,
            models.Booking.start_time < to_utc(end),
            models.Booking.end_time > to_utc(start),
        )
        if resource_id is not None:
            query = query.where(models.Booking.resource_id == resource_id)

        async with self._session_factory() as session:
            result = await session.execute(query.order_by(models.Booking.start_time))
            return [_booking_from_row(row) for row in result.scalars()]

    async def insert_booking(self, booking: Booking, entry: OperationLogEntry) -> None:
        """Insert booking and create entry.

        Raises:
            ConflictError: If the active-booking unique index rejects the row
        """
        row = models.Booking(
            id=booking.id,
            business_id=booking.business_id,
            customer_id=booking.customer_id,
            customer_name=booking.customer_name,
            customer_phone=booking.customer_phone,
            customer_email=booking.customer_email,
            party_size=booking.party_size,
            attributes=dict(booking.attributes),
            policy_snapshot=booking.policy.to_dict(),
            created_at=to_utc(booking.created_at),
            **_booking_values(booking),
        )
        try:
            async with session_scope(self._session_factory) as session:
                session.add(row)
                await session.flush()
                session.add(_entry_row(entry, sequence=1))
        except IntegrityError as e:
            logger.warning(f"Booking insert rejected by database for {booking.resource_id}: {e}")
            raise ConflictError(
                "The requested time was just booked",
                details={"resource_id": booking.resource_id},
            ) from e

    async def apply_transition(
        self,
        booking: Booking,
        entry: OperationLogEntry,
        expected_status: BookingStatus,
    ) -> bool:
        try:
            async with session_scope(self._session_factory) as session:
                result = await session.execute(
                    update(models.Booking)
                    .where(
                        models.Booking.id == booking.id,
                        models.Booking.status == expected_status,
                    )
                    .values(**_booking_values(booking))
                )
                if result.rowcount != 1:
                    logger.warning(
                        f"Stale transition for booking {booking.id}: "
                        f"expected {expected_status.value}"
                    )
                    return False

                sequence = await session.scalar(
                    select(func.coalesce(func.max(models.BookingOperation.sequence), 0))
                    .where(models.BookingOperation.booking_id == booking.id)
                )
                session.add(_entry_row(entry, sequence=sequence + 1))
        except IntegrityError as e:
            logger.warning(f"Transition rejected by database for booking {booking.id}: {e}")
            raise ConflictError(
                "The new time conflicts with another booking",
                details={"booking_id": booking.id},
            ) from e
        return True

    async def list_operations(self, business_id: str, booking_id: str) -> list[OperationLogEntry]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(models.BookingOperation)
                .where(
                    models.BookingOperation.booking_id == booking_id,
                    models.BookingOperation.business_id == business_id,
                )
                .order_by(models.BookingOperation.sequence)
            )
            return [_entry_from_row(row) for row in result.scalars()]
