"""
SQLAlchemy ORM models for the scheduling tables.

This module defines:
- businesses: Businesses (salons) owning resources, services and holidays
- resources: Bookable employees with weekly working hours
- working_hours: Per-resource weekly schedule (one row per day of week)
- time_off_blocks: Short ad-hoc unavailability inside a single day
- vacations: Multi-day unavailability ranges
- business_holidays: Business-wide closure dates
- services / service_addons: Catalog entries with durations
- bookings: Reservations of a resource for a date and time range

All models use:
- UUID primary keys (auto-generated)
- DATE + TIME columns for calendar-local scheduling
- TIMESTAMP WITH TIME ZONE for audit fields
- CHECK constraints for range invariants
"""

from datetime import date as dt_date, datetime, time
from enum import Enum as PyEnum
from uuid import UUID, uuid4

from sqlalchemy import (
    ARRAY,
    DATE,
    TIME,
    TIMESTAMP,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy import (
    Enum as SQLEnum,
)
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# ============================================================================
# Base Class
# ============================================================================


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


# ============================================================================
# Enums
# ============================================================================


class BookingStatus(PyEnum):
    """Booking lifecycle status."""

    BOOKED = "booked"
    CANCELLED = "cancelled"  # terminal
    FINISHED = "finished"    # terminal

    def __str__(self):
        return self.value


TERMINAL_STATUSES = frozenset({BookingStatus.CANCELLED, BookingStatus.FINISHED})


# ============================================================================
# Core Models
# ============================================================================


class Business(Base):
    """
    Business model - The tenant that owns resources and services.

    ``owner_id`` is the principal allowed to manage every resource of the
    business, including forced bookings and time-off edits.
    """

    __tablename__ = "businesses"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    owner_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), nullable=False, index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )

    resources: Mapped[list["Resource"]] = relationship(
        "Resource", back_populates="business"
    )

    def __repr__(self) -> str:
        return f"<Business(id={self.id}, name='{self.name}')>"


class Resource(Base):
    """
    Resource model - A bookable employee.

    Resources are deactivated rather than deleted so their booking history
    stays intact. An inactive resource has no availability.
    """

    __tablename__ = "resources"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    business_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("businesses.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    # Principal of the employee (may edit own time-off and schedule)
    principal_id: Mapped[UUID | None] = mapped_column(
        PGUUID(as_uuid=True), nullable=True, index=True
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=func.now(),
        nullable=False,
    )

    business: Mapped["Business"] = relationship("Business", back_populates="resources")

    def __repr__(self) -> str:
        return f"<Resource(id={self.id}, name='{self.name}', active={self.is_active})>"


class WorkingHours(Base):
    """
    Weekly working hours of a resource.

    Day of week: 0=Monday, 1=Tuesday, ..., 6=Sunday
    A missing row means the resource does not work that day.
    """

    __tablename__ = "working_hours"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    resource_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("resources.id", ondelete="CASCADE"),
        nullable=False,
    )
    day_of_week: Mapped[int] = mapped_column(
        Integer,
        CheckConstraint("day_of_week >= 0 AND day_of_week <= 6", name="valid_working_day_of_week"),
        nullable=False,
    )

    # Null when is_day_off
    open_time: Mapped[time | None] = mapped_column(TIME, nullable=True)
    close_time: Mapped[time | None] = mapped_column(TIME, nullable=True)
    is_day_off: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        UniqueConstraint("resource_id", "day_of_week", name="unique_working_hours_resource_day"),
        CheckConstraint(
            "is_day_off OR (open_time IS NOT NULL AND close_time IS NOT NULL AND open_time < close_time)",
            name="check_working_hours_open_before_close",
        ),
    )

    def __repr__(self) -> str:
        if self.is_day_off:
            return f"<WorkingHours(resource={self.resource_id}, day={self.day_of_week}, DAY OFF)>"
        return (
            f"<WorkingHours(resource={self.resource_id}, day={self.day_of_week}, "
            f"{self.open_time}-{self.close_time})>"
        )


# ============================================================================
# Calendar Management Models
# ============================================================================


class TimeOffBlock(Base):
    """
    TimeOffBlock model - Short unavailability inside one day (break, training).

    May be edited or deleted only by the owning resource or the business owner.
    """

    __tablename__ = "time_off_blocks"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    resource_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("resources.id", ondelete="CASCADE"),
        nullable=False,
    )
    date: Mapped[dt_date] = mapped_column(DATE, nullable=False)
    start_time: Mapped[time] = mapped_column(TIME, nullable=False)
    end_time: Mapped[time] = mapped_column(TIME, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="check_time_off_end_after_start"),
        Index("idx_time_off_resource_date", "resource_id", "date"),
    )

    def __repr__(self) -> str:
        return (
            f"<TimeOffBlock(id={self.id}, resource_id={self.resource_id}, "
            f"{self.date} {self.start_time}-{self.end_time})>"
        )


class Vacation(Base):
    """
    Vacation model - Inclusive multi-day unavailability of a resource.
    """

    __tablename__ = "vacations"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    resource_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("resources.id", ondelete="CASCADE"),
        nullable=False,
    )
    start_date: Mapped[dt_date] = mapped_column(DATE, nullable=False)
    end_date: Mapped[dt_date] = mapped_column(DATE, nullable=False)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("end_date >= start_date", name="check_vacation_end_not_before_start"),
        Index("idx_vacations_resource_range", "resource_id", "start_date", "end_date"),
    )

    def __repr__(self) -> str:
        return f"<Vacation(id={self.id}, resource_id={self.resource_id}, {self.start_date}..{self.end_date})>"


class BusinessHoliday(Base):
    """
    BusinessHoliday model - Business-wide closure dates.

    Every resource of the business is unavailable on these dates.
    """

    __tablename__ = "business_holidays"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    business_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("businesses.id", ondelete="CASCADE"),
        nullable=False,
    )
    date: Mapped[dt_date] = mapped_column(DATE, nullable=False)
    reason: Mapped[str | None] = mapped_column(String(200), nullable=True)

    __table_args__ = (
        UniqueConstraint("business_id", "date", name="unique_business_holiday_date"),
    )

    def __repr__(self) -> str:
        return f"<BusinessHoliday(business_id={self.business_id}, date={self.date})>"


# ============================================================================
# Catalog Models
# ============================================================================


class Service(Base):
    """Service model - Catalog entry with the authoritative base duration."""

    __tablename__ = "services"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    business_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("businesses.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint("duration_minutes > 0", name="check_service_duration_positive"),
    )

    def __repr__(self) -> str:
        return f"<Service(id={self.id}, name='{self.name}', duration={self.duration_minutes}min)>"


class ServiceAddon(Base):
    """ServiceAddon model - Optional extension adding minutes to a service."""

    __tablename__ = "service_addons"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )
    service_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("services.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        CheckConstraint("duration_minutes >= 0", name="check_addon_duration_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<ServiceAddon(id={self.id}, name='{self.name}', duration={self.duration_minutes}min)>"


# ============================================================================
# Booking Models
# ============================================================================


class Booking(Base):
    """
    Booking model - Reservation of a resource for a date and time range.

    Bookings are never deleted: cancellation and completion are status
    changes. A reschedule keeps the id and stores the immediately-prior
    (date, start, end) together with a server-assigned ``changed_at``.
    """

    __tablename__ = "bookings"

    id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid4
    )

    # Foreign keys
    business_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("businesses.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    resource_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("resources.id", ondelete="RESTRICT"),
        nullable=False,
    )
    service_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("services.id", ondelete="RESTRICT"),
        nullable=False,
    )
    requester_id: Mapped[UUID] = mapped_column(
        PGUUID(as_uuid=True), nullable=False, index=True
    )
    addon_ids: Mapped[list[UUID]] = mapped_column(
        ARRAY(PGUUID(as_uuid=True)), default=list, nullable=False
    )

    # Scheduling
    date: Mapped[dt_date] = mapped_column(DATE, nullable=False)
    start_time: Mapped[time] = mapped_column(TIME, nullable=False)
    end_time: Mapped[time] = mapped_column(TIME, nullable=False)

    # Note: values_callable ensures SQLAlchemy stores enum .value ("booked")
    status: Mapped[BookingStatus] = mapped_column(
        SQLEnum(
            BookingStatus,
            name="booking_status",
            create_type=False,
            values_callable=lambda x: [e.value for e in x],
        ),
        default=BookingStatus.BOOKED,
        nullable=False,
    )

    # Single-slot reschedule history
    previous_date: Mapped[dt_date | None] = mapped_column(DATE, nullable=True)
    previous_start_time: Mapped[time | None] = mapped_column(TIME, nullable=True)
    previous_end_time: Mapped[time | None] = mapped_column(TIME, nullable=True)
    changed_at: Mapped[datetime | None] = mapped_column(
        TIMESTAMP(timezone=True), nullable=True
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("end_time > start_time", name="check_booking_end_after_start"),
        # Conflict-guard re-read: all booked rows for (resource, date)
        Index("idx_bookings_resource_date_status", "resource_id", "date", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, resource_id={self.resource_id}, "
            f"{self.date} {self.start_time}-{self.end_time}, status='{self.status.value}')>"
        )
