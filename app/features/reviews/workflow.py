"""
Review workflow engine.

Every transition:
  1. locks the ReviewRequest row (and the recipient row when one is involved)
  2. checks the caller's rights through the review policy
  3. validates the current state
  4. writes the new state and appends a ReviewAction in the same transaction

Nothing here commits; the route owns the transaction.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.base import as_naive_utc, utcnow
from app.core.errors import AuthorizationError, InvalidStateTransition, NotFoundError, ValidationError
from app.core.notifications import notify
from app.core.storage import store_file
from app.features.documents import service as documents
from app.features.documents.models import DocumentVersion
from app.features.permissions.resolver import authorize, load_membership
from app.features.reviews.models import (
    RESPONDED_RECIPIENT_STATUSES,
    RecipientStatus,
    ReviewAction,
    ReviewAttachment,
    ReviewComment,
    ReviewRecipient,
    ReviewRequest,
    ReviewStatus,
)
from app.features.reviews.policy import (
    ReviewAccess,
    ensure_acts_as_recipient,
    ensure_can_comment,
    ensure_publisher_permission,
    load_access,
)
from app.utils import get_logger


log = get_logger(__name__)


@dataclass(frozen=True)
class RecipientSpec:
    user_id: str
    organization_id: Optional[str] = None
    due_at: Optional[datetime] = None


# ============================================================================
# Loading and locking
# ============================================================================

async def lock_review(db: AsyncSession, review_id: str) -> ReviewRequest:
    result = await db.execute(
        select(ReviewRequest)
        .where(ReviewRequest.id == review_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    review = result.scalar_one_or_none()
    if review is None:
        raise NotFoundError("Review request not found")
    return review


async def lock_recipient(db: AsyncSession, review: ReviewRequest, recipient_id: str) -> ReviewRecipient:
    """Load a recipient that must belong to ``review``."""
    result = await db.execute(
        select(ReviewRecipient)
        .where(
            and_(
                ReviewRecipient.id == recipient_id,
                ReviewRecipient.review_request_id == review.id,
            )
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    recipient = result.scalar_one_or_none()
    if recipient is None:
        raise NotFoundError("Recipient not found on this review")
    return recipient


async def list_recipients(db: AsyncSession, review_id: str) -> List[ReviewRecipient]:
    result = await db.execute(
        select(ReviewRecipient)
        .where(ReviewRecipient.review_request_id == review_id)
        .order_by(ReviewRecipient.created_at, ReviewRecipient.id)
    )
    return list(result.scalars().all())


def record_action(
    db: AsyncSession,
    review: ReviewRequest,
    action: str,
    actor_user_id: Optional[str],
    actor_org_id: Optional[str],
    meta: Optional[Dict[str, Any]] = None,
) -> ReviewAction:
    entry = ReviewAction(
        review_request_id=review.id,
        actor_user_id=actor_user_id,
        actor_org_id=actor_org_id,
        action=action,
        meta=meta,
    )
    db.add(entry)
    log.info("Review %s: %s by %s (status=%s)", review.id, action, actor_user_id, review.status.value)
    return entry


async def _publisher_access(
    db: AsyncSession, review_id: str, actor_id: str, permission_name: str
) -> tuple[ReviewRequest, ReviewAccess]:
    review = await lock_review(db, review_id)
    access = await load_access(db, review, actor_id)
    ensure_publisher_permission(access, permission_name)
    return review, access


def _ensure_sent(review: ReviewRequest) -> None:
    if review.status == ReviewStatus.DRAFT:
        raise InvalidStateTransition("Review has not been sent yet", status=review.status.value)


def _ensure_recipient_open(recipient: ReviewRecipient) -> None:
    if recipient.status.is_final:
        raise InvalidStateTransition(
            f"Recipient already {recipient.status.value}",
            recipient_status=recipient.status.value,
        )


def _dedupe_recipients(recipients: Iterable[RecipientSpec]) -> List[RecipientSpec]:
    seen: dict[str, RecipientSpec] = {}
    for spec in recipients:
        seen.setdefault(spec.user_id, spec)
    return list(seen.values())


# ============================================================================
# Creation and sending
# ============================================================================

async def create_review(
    db: AsyncSession,
    *,
    actor_id: str,
    publisher_org_id: str,
    document_id: str,
    subject: str,
    recipients: Iterable[RecipientSpec],
    document_version_id: Optional[str] = None,
    body: Optional[str] = None,
    due_at: Optional[datetime] = None,
    send_immediately: bool = True,
) -> ReviewRequest:
    membership = await load_membership(db, actor_id, publisher_org_id)
    if not authorize(membership, "create_reviews"):
        raise AuthorizationError("Permission denied: create_reviews", required_permission="create_reviews")

    document = await documents.get_document(db, document_id, publisher_org_id)

    if document_version_id is None:
        document_version_id = document.latest_version_id
    else:
        version = await db.get(DocumentVersion, document_version_id)
        if version is None or version.document_id != document.id:
            raise ValidationError("Version does not belong to this document", field="document_version_id")

    specs = _dedupe_recipients(recipients)
    if not specs:
        raise ValidationError("At least one recipient is required", field="recipients")

    now = utcnow()
    review = ReviewRequest(
        document_id=document.id,
        document_version_id=document_version_id,
        publisher_org_id=publisher_org_id,
        submitted_by_id=actor_id,
        subject=subject,
        body=body,
        due_at=as_naive_utc(due_at),
        status=ReviewStatus.SENT if send_immediately else ReviewStatus.DRAFT,
        sent_at=now if send_immediately else None,
    )
    db.add(review)
    await db.flush()

    for spec in specs:
        db.add(ReviewRecipient(
            review_request_id=review.id,
            reviewer_user_id=spec.user_id,
            reviewer_org_id=spec.organization_id,
            status=RecipientStatus.PENDING,
            due_at=as_naive_utc(spec.due_at) or review.due_at,
        ))
    await db.flush()

    record_action(
        db, review, "sent" if send_immediately else "created", actor_id, publisher_org_id,
        {"recipients": [spec.user_id for spec in specs]},
    )
    await db.flush()
    if send_immediately:
        for spec in specs:
            notify("review.sent", review_id=review.id, user_id=spec.user_id)
    return review


async def send_review(db: AsyncSession, review_id: str, actor_id: str) -> ReviewRequest:
    review, _ = await _publisher_access(db, review_id, actor_id, "manage_reviews")
    if review.status != ReviewStatus.DRAFT:
        raise InvalidStateTransition("Only draft reviews can be sent", status=review.status.value)

    review.status = ReviewStatus.SENT
    review.sent_at = utcnow()
    recipients = await list_recipients(db, review.id)
    for recipient in recipients:
        recipient.status = RecipientStatus.PENDING
        recipient.last_viewed_at = None
        recipient.responded_at = None

    record_action(db, review, "sent", actor_id, review.publisher_org_id,
                  {"recipients": [r.reviewer_user_id for r in recipients]})
    await db.flush()
    for recipient in recipients:
        notify("review.sent", review_id=review.id, user_id=recipient.reviewer_user_id)
    return review


# ============================================================================
# Recipient actions
# ============================================================================

async def _recipient_for_actor(
    db: AsyncSession, review_id: str, recipient_id: str, actor_id: str
) -> tuple[ReviewRequest, ReviewRecipient]:
    review = await lock_review(db, review_id)
    recipient = await lock_recipient(db, review, recipient_id)
    ensure_acts_as_recipient(recipient, actor_id)
    _ensure_sent(review)
    return review, recipient


async def mark_viewed(db: AsyncSession, review_id: str, recipient_id: str, actor_id: str) -> bool:
    """Pending -> Viewed. Returns False (and records nothing) past pending."""
    review, recipient = await _recipient_for_actor(db, review_id, recipient_id, actor_id)
    if recipient.status != RecipientStatus.PENDING:
        return False

    recipient.status = RecipientStatus.VIEWED
    recipient.last_viewed_at = utcnow()
    record_action(db, review, "viewed", actor_id, recipient.reviewer_org_id, {"recipient_id": recipient.id})
    await db.flush()
    return True


async def _recompute_after_approval(db: AsyncSession, review: ReviewRequest) -> None:
    """Every approval recomputes the thread, even one that was already final."""
    recipients = await list_recipients(db, review.id)
    if all(r.status == RecipientStatus.APPROVED for r in recipients):
        review.status = ReviewStatus.APPROVED
        review.closed_at = utcnow()
    else:
        review.status = ReviewStatus.IN_REVIEW
        review.closed_at = None


async def approve_recipient(
    db: AsyncSession, review_id: str, recipient_id: str, actor_id: str
) -> ReviewRecipient:
    review, recipient = await _recipient_for_actor(db, review_id, recipient_id, actor_id)
    _ensure_recipient_open(recipient)

    recipient.status = RecipientStatus.APPROVED
    recipient.responded_at = utcnow()
    await db.flush()
    await _recompute_after_approval(db, review)

    record_action(db, review, "reviewer_approved", actor_id, recipient.reviewer_org_id,
                  {"recipient_id": recipient.id, "review_status": review.status.value})
    await db.flush()
    notify("review.approved", review_id=review.id, user_id=actor_id)
    return recipient


async def decline_recipient(
    db: AsyncSession,
    review_id: str,
    recipient_id: str,
    actor_id: str,
    reason: Optional[str] = None,
) -> ReviewRecipient:
    review, recipient = await _recipient_for_actor(db, review_id, recipient_id, actor_id)
    _ensure_recipient_open(recipient)

    recipient.status = RecipientStatus.DECLINED
    recipient.responded_at = utcnow()
    review.status = ReviewStatus.DECLINED
    review.closed_at = utcnow()

    record_action(db, review, "reviewer_declined", actor_id, recipient.reviewer_org_id,
                  {"recipient_id": recipient.id, "reason": reason})
    await db.flush()
    notify("review.declined", review_id=review.id, user_id=actor_id)
    return recipient


# ============================================================================
# Publisher actions
# ============================================================================

async def request_changes(db: AsyncSession, review_id: str, actor_id: str, note: Optional[str] = None) -> ReviewRequest:
    review, _ = await _publisher_access(db, review_id, actor_id, "manage_reviews")
    if review.status.is_final:
        raise InvalidStateTransition(f"Review is already {review.status.value}", status=review.status.value)

    review.status = ReviewStatus.CHANGES_REQUESTED
    record_action(db, review, "requested_changes", actor_id, review.publisher_org_id, {"note": note})
    await db.flush()
    return review


async def close_review(db: AsyncSession, review_id: str, actor_id: str) -> ReviewRequest:
    review, _ = await _publisher_access(db, review_id, actor_id, "manage_reviews")
    if review.status.is_final:
        raise InvalidStateTransition(f"Review is already {review.status.value}", status=review.status.value)

    review.status = ReviewStatus.CLOSED
    review.closed_at = utcnow()
    record_action(db, review, "closed", actor_id, review.publisher_org_id)
    await db.flush()
    return review


async def reopen_review(db: AsyncSession, review_id: str, actor_id: str) -> ReviewRequest:
    review, _ = await _publisher_access(db, review_id, actor_id, "manage_reviews")
    if not review.status.is_final:
        raise InvalidStateTransition("Only finished reviews can be reopened", status=review.status.value)

    previous = review.status
    review.status = ReviewStatus.IN_REVIEW
    review.closed_at = None
    record_action(db, review, "reopened", actor_id, review.publisher_org_id, {"from": previous.value})
    await db.flush()
    return review


async def attach_new_version(
    db: AsyncSession,
    review_id: str,
    actor_id: str,
    filename: str,
    content: bytes,
    mime_type: Optional[str] = None,
) -> DocumentVersion:
    """Upload a new document version and point the thread at it. Status is untouched."""
    review, _ = await _publisher_access(db, review_id, actor_id, "manage_reviews")
    document = await documents.get_document(db, review.document_id)

    version = await documents.add_version(db, document, filename, content, mime_type, actor_id)
    review.document_version_id = version.id
    record_action(db, review, "version_uploaded", actor_id, review.publisher_org_id,
                  {"version": version.version_number, "document_version_id": version.id})
    await db.flush()
    return version


async def update_review(
    db: AsyncSession,
    review_id: str,
    actor_id: str,
    changes: Dict[str, Any],
    new_recipients: Iterable[RecipientSpec] = (),
) -> ReviewRequest:
    """Edit subject/body/due date; optionally add recipients (first-or-create)."""
    new_recipients = _dedupe_recipients(new_recipients)
    review = await lock_review(db, review_id)
    access = await load_access(db, review, actor_id)
    if changes or not new_recipients:
        ensure_publisher_permission(access, "manage_reviews")
    if new_recipients:
        ensure_publisher_permission(access, "assign_reviewers")

    if "due_at" in changes:
        changes["due_at"] = as_naive_utc(changes["due_at"])
    for field, value in changes.items():
        setattr(review, field, value)

    existing = {r.reviewer_user_id for r in await list_recipients(db, review.id)}
    added = []
    for spec in new_recipients:
        if spec.user_id in existing:
            continue
        db.add(ReviewRecipient(
            review_request_id=review.id,
            reviewer_user_id=spec.user_id,
            reviewer_org_id=spec.organization_id,
            status=RecipientStatus.PENDING,
            due_at=as_naive_utc(spec.due_at) or review.due_at,
        ))
        added.append(spec.user_id)

    if changes:
        record_action(db, review, "updated", actor_id, review.publisher_org_id, {"fields": sorted(changes)})
    if added:
        record_action(db, review, "reassigned", actor_id, review.publisher_org_id, {"added": added})
        if review.status != ReviewStatus.DRAFT:
            for user_id in added:
                notify("review.sent", review_id=review.id, user_id=user_id)
    await db.flush()
    return review


async def remove_recipient(db: AsyncSession, review_id: str, recipient_id: str, actor_id: str) -> None:
    review, _ = await _publisher_access(db, review_id, actor_id, "assign_reviewers")
    recipient = await lock_recipient(db, review, recipient_id)
    if recipient.status in RESPONDED_RECIPIENT_STATUSES:
        raise InvalidStateTransition(
            "Cannot remove a reviewer who already responded",
            recipient_status=recipient.status.value,
        )

    record_action(db, review, "reviewer_removed", actor_id, review.publisher_org_id,
                  {"recipient_id": recipient.id, "user_id": recipient.reviewer_user_id})
    await db.delete(recipient)
    await db.flush()


async def update_recipient_due_date(
    db: AsyncSession,
    review_id: str,
    recipient_id: str,
    actor_id: str,
    due_at: Optional[datetime],
) -> ReviewRecipient:
    review, _ = await _publisher_access(db, review_id, actor_id, "assign_reviewers")
    recipient = await lock_recipient(db, review, recipient_id)

    old = recipient.due_at
    recipient.due_at = as_naive_utc(due_at)
    record_action(db, review, "due_date_updated", actor_id, review.publisher_org_id, {
        "recipient_id": recipient.id,
        "old": old.isoformat() if old else None,
        "new": recipient.due_at.isoformat() if recipient.due_at else None,
    })
    await db.flush()
    return recipient


async def remind_recipient(db: AsyncSession, review_id: str, recipient_id: str, actor_id: str) -> ReviewRecipient:
    review, _ = await _publisher_access(db, review_id, actor_id, "manage_reviews")
    recipient = await lock_recipient(db, review, recipient_id)
    _ensure_sent(review)
    _ensure_recipient_open(recipient)

    record_action(db, review, "reminded", actor_id, review.publisher_org_id, {"recipient_id": recipient.id})
    await db.flush()
    notify("review.reminder", review_id=review.id, user_id=recipient.reviewer_user_id)
    return recipient


async def expire_overdue_recipients(
    db: AsyncSession, review_id: str, actor_id: str, now: Optional[datetime] = None
) -> List[ReviewRecipient]:
    """Move every open recipient whose due date has passed to Expired."""
    review, _ = await _publisher_access(db, review_id, actor_id, "manage_reviews")
    now = now or utcnow()

    expired = []
    for recipient in await list_recipients(db, review.id):
        if recipient.status.is_final or recipient.due_at is None or recipient.due_at >= now:
            continue
        recipient.status = RecipientStatus.EXPIRED
        record_action(db, review, "reviewer_expired", actor_id, review.publisher_org_id,
                      {"recipient_id": recipient.id, "due_at": recipient.due_at.isoformat()})
        expired.append(recipient)
    await db.flush()
    return expired


# ============================================================================
# Comments and attachments
# ============================================================================

async def add_comment(
    db: AsyncSession,
    review_id: str,
    actor_id: str,
    body: str,
    parent_id: Optional[str] = None,
    is_internal: bool = False,
) -> ReviewComment:
    review = await lock_review(db, review_id)
    access = await load_access(db, review, actor_id)
    ensure_can_comment(access)

    if parent_id is not None:
        parent = await db.get(ReviewComment, parent_id)
        if parent is None or parent.review_request_id != review.id:
            raise NotFoundError("Parent comment not found on this review")

    # Internal notes are a publisher-side feature
    if is_internal and not access.sees_internal:
        raise AuthorizationError("Only publisher reviewers can post internal notes", required_permission="view_reviews")

    recipient = access.recipient
    comment = ReviewComment(
        review_request_id=review.id,
        user_id=actor_id,
        recipient_id=recipient.id if recipient else None,
        parent_id=parent_id,
        body=body,
        is_internal=is_internal,
    )
    db.add(comment)

    if recipient is not None and recipient.status in (RecipientStatus.PENDING, RecipientStatus.VIEWED):
        recipient.status = RecipientStatus.COMMENTED

    actor_org_id = recipient.reviewer_org_id if recipient else review.publisher_org_id
    await db.flush()
    record_action(db, review, "commented", actor_id, actor_org_id,
                  {"comment_id": comment.id, "parent_id": parent_id})
    await db.flush()
    return comment


async def add_attachment(
    db: AsyncSession,
    review_id: str,
    actor_id: str,
    filename: str,
    content: bytes,
    mime_type: Optional[str] = None,
) -> ReviewAttachment:
    review = await lock_review(db, review_id)
    access = await load_access(db, review, actor_id)
    ensure_can_comment(access)
    documents.check_upload(filename, content)

    path = store_file(f"reviews/{review.id}/attachments", filename, content)
    attachment = ReviewAttachment(
        review_request_id=review.id,
        uploaded_by_id=actor_id,
        file_path=path,
        original_name=filename,
        mime_type=mime_type,
        size=len(content),
    )
    db.add(attachment)
    await db.flush()

    actor_org_id = access.recipient.reviewer_org_id if access.recipient else review.publisher_org_id
    record_action(db, review, "attachment_added", actor_id, actor_org_id,
                  {"attachment_id": attachment.id, "name": filename})
    await db.flush()
    return attachment
