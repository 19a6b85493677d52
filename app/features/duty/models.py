"""
Duty scheduling models.

A DutySchedule is one slot on one date. Officers are attached through
DutyAssignment rows; swaps move an assignment from one officer to another.
"""
import datetime as dt
from typing import List
import enum

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, generate_ulid


class ScheduleStatus(str, enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class RecurrenceType(str, enum.Enum):
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


class AssignmentStatus(str, enum.Enum):
    ASSIGNED = "assigned"
    CONFIRMED = "confirmed"
    DECLINED = "declined"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


# Statuses that occupy one of the schedule's required slots
FILLED_STATUSES = frozenset({
    AssignmentStatus.ASSIGNED,
    AssignmentStatus.CONFIRMED,
    AssignmentStatus.COMPLETED,
})


class SwapStatus(str, enum.Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    APPROVED = "approved"
    DECLINED = "declined"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


# At most one of these per assignment
ACTIVE_SWAP_STATUSES = frozenset({SwapStatus.PENDING, SwapStatus.APPROVED})


class AvailabilityType(str, enum.Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    PREFERRED = "preferred"


class DutySchedule(Base, TimestampMixin):
    __tablename__ = "duty_schedules"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    organization_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)

    date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    start_time: Mapped[dt.time] = mapped_column(Time, nullable=False)
    end_time: Mapped[dt.time] = mapped_column(Time, nullable=False)
    required_officers: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    status: Mapped[ScheduleStatus] = mapped_column(
        SQLEnum(ScheduleStatus), default=ScheduleStatus.DRAFT, nullable=False, index=True
    )

    recurrence_type: Mapped[RecurrenceType] = mapped_column(
        SQLEnum(RecurrenceType), default=RecurrenceType.NONE, nullable=False
    )
    # Weekday numbers, 0 = Sunday
    recurrence_days: Mapped[List[int] | None] = mapped_column(JSON, nullable=True)
    recurrence_end_date: Mapped[dt.date | None] = mapped_column(Date, nullable=True)

    created_by_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    def __repr__(self) -> str:
        return f"<DutySchedule(id={self.id}, date={self.date}, title={self.title})>"


class DutyAssignment(Base, TimestampMixin):
    __tablename__ = "duty_assignments"
    __table_args__ = (
        UniqueConstraint("duty_schedule_id", "officer_id", name="uq_duty_assignment_officer"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    duty_schedule_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("duty_schedules.id", ondelete="CASCADE"), nullable=False, index=True
    )
    officer_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    status: Mapped[AssignmentStatus] = mapped_column(
        SQLEnum(AssignmentStatus), default=AssignmentStatus.ASSIGNED, nullable=False, index=True
    )
    confirmed_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    check_in_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    check_out_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    assigned_by_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    def __repr__(self) -> str:
        return f"<DutyAssignment(id={self.id}, officer={self.officer_id}, status={self.status})>"


class DutySwapRequest(Base, TimestampMixin):
    __tablename__ = "duty_swap_requests"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    duty_assignment_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("duty_assignments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    from_officer_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # NULL means open to any member
    to_officer_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    reason: Mapped[str] = mapped_column(String(1000), nullable=False)
    status: Mapped[SwapStatus] = mapped_column(
        SQLEnum(SwapStatus), default=SwapStatus.PENDING, nullable=False, index=True
    )
    reviewed_by_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    reviewed_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    review_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    @property
    def is_open(self) -> bool:
        return self.to_officer_id is None

    def __repr__(self) -> str:
        return f"<DutySwapRequest(id={self.id}, status={self.status})>"


class DutyAvailability(Base, TimestampMixin):
    __tablename__ = "duty_availabilities"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    organization_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    date: Mapped[dt.date] = mapped_column(Date, nullable=False, index=True)
    start_time: Mapped[dt.time | None] = mapped_column(Time, nullable=True)
    end_time: Mapped[dt.time | None] = mapped_column(Time, nullable=True)
    availability_type: Mapped[AvailabilityType] = mapped_column(
        SQLEnum(AvailabilityType), default=AvailabilityType.AVAILABLE, nullable=False
    )
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)


class DutyTemplate(Base, TimestampMixin):
    __tablename__ = "duty_templates"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    organization_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    start_time: Mapped[dt.time] = mapped_column(Time, nullable=False)
    end_time: Mapped[dt.time] = mapped_column(Time, nullable=False)
    required_officers: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    default_days: Mapped[List[int] | None] = mapped_column(JSON, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_by_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
