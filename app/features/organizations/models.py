"""
Organization models.

Organizations are the tenant boundary. Users belong to many organizations
through ``user_organizations`` and hold one role per organization.
"""
from datetime import datetime
from sqlalchemy import String, ForeignKey, Table, Column, Boolean, Enum as SQLEnum, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column
import enum

from app.core.database.base import Base, TimestampMixin, generate_ulid, utcnow


class MemberRole(str, enum.Enum):
    ADMIN = "admin"
    MEMBER = "member"
    VIEWER = "viewer"


# Membership: one row per (user, organization) with the member's role
user_organizations = Table(
    "user_organizations",
    Base.metadata,
    Column("user_id", String(26), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("organization_id", String(26), ForeignKey("organizations.id", ondelete="CASCADE"), primary_key=True),
    Column("joined_at", DateTime(timezone=True), nullable=False, default=utcnow),
    Column("role", String(50), nullable=False, default=MemberRole.MEMBER.value),  # admin, member, viewer (legacy: owner)
)


class Organization(Base, TimestampMixin):
    """
    Organization model.

    Settings flags:
    - auto_accept_invites: join requests are approved immediately
    - public_profile: listed in the public directory
    - member_can_invite: any member may add members
    """
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    auto_accept_invites: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    public_profile: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    member_can_invite: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_by_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, name={self.name!r})>"


class JoinRequestStatus(str, enum.Enum):
    """Status of organization join requests."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class OrganizationJoinRequest(Base, TimestampMixin):
    """
    Request from a user to join an organization.

    Approved immediately when the organization auto-accepts; otherwise a
    member holding ``approve_join_requests`` decides.
    """
    __tablename__ = "organization_join_requests"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    user_id: Mapped[str] = mapped_column(String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    organization_id: Mapped[str] = mapped_column(String(26), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)

    status: Mapped[JoinRequestStatus] = mapped_column(
        SQLEnum(JoinRequestStatus),
        default=JoinRequestStatus.PENDING,
        nullable=False,
        index=True
    )
    message: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    reviewed_by_id: Mapped[str | None] = mapped_column(String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    review_message: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    def __repr__(self) -> str:
        return f"<OrganizationJoinRequest(id={self.id}, user_id={self.user_id}, org_id={self.organization_id}, status={self.status})>"
