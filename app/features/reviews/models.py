"""
Review request models.

A ReviewRequest is a thread asking one or more reviewers to look at a
document version. Each reviewer has a ReviewRecipient row carrying their own
sub-state. Every state change appends a ReviewAction row.
"""
from datetime import datetime
from typing import Any, Dict
import enum

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database.base import Base, TimestampMixin, generate_ulid, utcnow


class ReviewStatus(str, enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    IN_REVIEW = "in_review"
    CHANGES_REQUESTED = "changes_requested"
    APPROVED = "approved"
    DECLINED = "declined"
    CLOSED = "closed"
    CANCELLED = "cancelled"

    @property
    def is_final(self) -> bool:
        return self in FINAL_REVIEW_STATUSES


FINAL_REVIEW_STATUSES = frozenset({
    ReviewStatus.APPROVED,
    ReviewStatus.DECLINED,
    ReviewStatus.CLOSED,
    ReviewStatus.CANCELLED,
})


class RecipientStatus(str, enum.Enum):
    PENDING = "pending"
    VIEWED = "viewed"
    COMMENTED = "commented"
    APPROVED = "approved"
    DECLINED = "declined"
    EXPIRED = "expired"

    @property
    def is_final(self) -> bool:
        return self in FINAL_RECIPIENT_STATUSES


FINAL_RECIPIENT_STATUSES = frozenset({
    RecipientStatus.APPROVED,
    RecipientStatus.DECLINED,
    RecipientStatus.EXPIRED,
})

# Recipients that already answered can no longer be removed from the thread
RESPONDED_RECIPIENT_STATUSES = frozenset({RecipientStatus.APPROVED, RecipientStatus.DECLINED})


class ReviewRequest(Base, TimestampMixin):
    __tablename__ = "review_requests"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    document_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    document_version_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("document_versions.id", ondelete="SET NULL"), nullable=True
    )
    publisher_org_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    submitted_by_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[ReviewStatus] = mapped_column(
        SQLEnum(ReviewStatus), default=ReviewStatus.DRAFT, nullable=False, index=True
    )
    due_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<ReviewRequest(id={self.id}, status={self.status})>"


class ReviewRecipient(Base, TimestampMixin):
    __tablename__ = "review_recipients"
    __table_args__ = (
        UniqueConstraint("review_request_id", "reviewer_user_id", name="uq_review_recipient"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    review_request_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("review_requests.id", ondelete="CASCADE"), nullable=False, index=True
    )
    reviewer_user_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    reviewer_org_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True
    )

    status: Mapped[RecipientStatus] = mapped_column(
        SQLEnum(RecipientStatus), default=RecipientStatus.PENDING, nullable=False, index=True
    )
    due_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_viewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    responded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<ReviewRecipient(id={self.id}, reviewer={self.reviewer_user_id}, status={self.status})>"


class ReviewComment(Base, TimestampMixin):
    __tablename__ = "review_comments"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    review_request_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("review_requests.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    # Set when the comment belongs to one recipient's conversation
    recipient_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("review_recipients.id", ondelete="CASCADE"), nullable=True, index=True
    )
    parent_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("review_comments.id", ondelete="CASCADE"), nullable=True
    )
    body: Mapped[str] = mapped_column(Text, nullable=False)
    is_internal: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class ReviewAttachment(Base, TimestampMixin):
    __tablename__ = "review_attachments"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    review_request_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("review_requests.id", ondelete="CASCADE"), nullable=False, index=True
    )
    uploaded_by_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    file_path: Mapped[str] = mapped_column(String(500), nullable=False)
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    mime_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class ReviewAction(Base):
    """Append-only audit row. Never updated or deleted by application code."""
    __tablename__ = "review_actions"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    review_request_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("review_requests.id", ondelete="CASCADE"), nullable=False, index=True
    )
    actor_user_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    actor_org_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="SET NULL"), nullable=True
    )
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    meta: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<ReviewAction(review={self.review_request_id}, action={self.action})>"
