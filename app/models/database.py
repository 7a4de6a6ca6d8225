"""
Database Models

SQLAlchemy ORM models for the multi-tenant booking engine.

Column types are the portable SQLAlchemy ones so the same schema runs on
PostgreSQL (asyncpg) and SQLite (aiosqlite, used in tests).
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from app.core.booking.types import (
    Actor,
    BookingStatus,
    Industry,
    OperationType,
    ResourceKind,
)


def _enum_values(enum_cls) -> list[str]:
    return [member.value for member in enum_cls]


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False
    )


class Business(Base, TimestampMixin):
    """
    Business model (Tenant).

    Each business is a separate tenant with its own resources, policy
    and bookings.
    """

    __tablename__ = "businesses"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    industry: Mapped[Industry] = mapped_column(
        SQLEnum(Industry, name="industry", values_callable=_enum_values),
        default=Industry.PROFESSIONAL,
    )
    timezone: Mapped[str] = mapped_column(String(50), default="UTC")
    operating_hours: Mapped[dict] = mapped_column(JSON, default=dict)

    # Relationships
    resources: Mapped[List["Resource"]] = relationship(
        "Resource",
        back_populates="business"
    )
    bookings: Mapped[List["Booking"]] = relationship(
        "Booking",
        back_populates="business"
    )

    def __repr__(self) -> str:
        return f"<Business(id={self.id}, name='{self.name}', industry={self.industry.value})>"


class Resource(Base, TimestampMixin):
    """
    Schedulable resource (table, staff member or agent).

    Variant-specific fields live in the attributes JSON column.
    """

    __tablename__ = "resources"
    __table_args__ = (
        Index("idx_resource_business", "business_id"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    business_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("businesses.id", ondelete="CASCADE"),
        nullable=False
    )
    kind: Mapped[ResourceKind] = mapped_column(
        SQLEnum(ResourceKind, name="resource_kind", values_callable=_enum_values),
        nullable=False,
    )
    attributes: Mapped[dict] = mapped_column(JSON, default=dict)

    # Relationships
    business: Mapped["Business"] = relationship("Business", back_populates="resources")

    def __repr__(self) -> str:
        return f"<Resource(id={self.id}, kind={self.kind.value})>"


class BookingPolicy(Base, TimestampMixin):
    """Current booking policy per business."""

    __tablename__ = "booking_policies"

    business_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("businesses.id", ondelete="CASCADE"),
        primary_key=True
    )
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    config: Mapped[dict] = mapped_column(JSON, nullable=False)


class Booking(Base, TimestampMixin):
    """
    Booking model.

    Carries the policy snapshot it was created under. Never hard-deleted;
    cancellations are a status.
    """

    __tablename__ = "bookings"
    __table_args__ = (
        Index("idx_booking_business_start", "business_id", "start_time"),
        Index("idx_booking_resource_start", "resource_id", "start_time"),
        # One active booking per resource start, backstop for the reservation lock
        Index(
            "uq_booking_resource_start_active",
            "resource_id",
            "start_time",
            unique=True,
            postgresql_where=text("status <> 'cancelled'"),
            sqlite_where=text("status <> 'cancelled'"),
        ),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    business_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("businesses.id", ondelete="CASCADE"),
        nullable=False
    )
    resource_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        ForeignKey("resources.id", ondelete="SET NULL"),
        nullable=True
    )
    customer_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    customer_name: Mapped[str] = mapped_column(String(255), default="")
    customer_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    customer_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[BookingStatus] = mapped_column(
        SQLEnum(BookingStatus, name="booking_status", values_callable=_enum_values),
        default=BookingStatus.PENDING,
        nullable=False,
    )
    party_size: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    reschedule_count: Mapped[int] = mapped_column(Integer, default=0)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    attributes: Mapped[dict] = mapped_column(JSON, default=dict)
    policy_snapshot: Mapped[dict] = mapped_column(JSON, nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Relationships
    business: Mapped["Business"] = relationship("Business", back_populates="bookings")
    operations: Mapped[List["BookingOperation"]] = relationship(
        "BookingOperation",
        back_populates="booking",
        order_by="BookingOperation.sequence",
    )

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, resource_id={self.resource_id}, "
            f"start={self.start_time}, status={self.status.value})>"
        )


class BookingOperation(Base):
    """
    Append-only operation history entry.

    Rows are only ever inserted.
    """

    __tablename__ = "booking_operations"
    __table_args__ = (
        Index("idx_operation_booking", "booking_id", "sequence"),
        Index("idx_operation_business", "business_id", "timestamp"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    booking_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("bookings.id", ondelete="CASCADE"),
        nullable=False
    )
    business_id: Mapped[str] = mapped_column(String(64), nullable=False)
    operation_type: Mapped[OperationType] = mapped_column(
        SQLEnum(OperationType, name="operation_type", values_callable=_enum_values),
        nullable=False,
    )
    actor: Mapped[Actor] = mapped_column(
        SQLEnum(Actor, name="operation_actor", values_callable=_enum_values),
        nullable=False,
    )
    previous_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    violations: Mapped[list] = mapped_column(JSON, default=list)
    warnings: Mapped[list] = mapped_column(JSON, default=list)
    financial_impact: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    data: Mapped[dict] = mapped_column(JSON, default=dict)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Relationships
    booking: Mapped["Booking"] = relationship("Booking", back_populates="operations")

    def __repr__(self) -> str:
        return (
            f"<BookingOperation(booking_id={self.booking_id}, "
            f"type={self.operation_type.value}, at={self.timestamp})>"
        )
