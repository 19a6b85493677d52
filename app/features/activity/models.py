"""
Organization activity log.

Append-only. The subject of an entry is a tagged pair (kind, id) rather
than a polymorphic relation.
"""
from datetime import datetime
from typing import Any, Dict, NamedTuple
import enum

from sqlalchemy import String, ForeignKey, JSON, Text, DateTime, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, generate_ulid, utcnow


class SubjectKind(str, enum.Enum):
    USER = "user"
    ORGANIZATION = "organization"
    JOIN_REQUEST = "join_request"
    DOCUMENT = "document"
    REVIEW_REQUEST = "review_request"
    DUTY_SCHEDULE = "duty_schedule"
    DUTY_ASSIGNMENT = "duty_assignment"
    DUTY_SWAP_REQUEST = "duty_swap_request"
    DUTY_AVAILABILITY = "duty_availability"
    DUTY_TEMPLATE = "duty_template"


class Subject(NamedTuple):
    kind: SubjectKind
    id: str


class ActivityLog(Base):
    __tablename__ = "activity_logs"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    organization_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )

    action: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    subject_kind: Mapped[SubjectKind | None] = mapped_column(SQLEnum(SubjectKind), nullable=True)
    subject_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)
    details: Mapped[Dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )

    def __repr__(self) -> str:
        return f"<ActivityLog(id={self.id}, org={self.organization_id}, action={self.action})>"
