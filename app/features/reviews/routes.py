"""
Review request API routes.

Thread-level routes live under /reviews; the per-organization listing is on
``org_router`` which is mounted under /organizations.
"""
from typing import Annotated, Any, Dict, List, Optional
from fastapi import APIRouter, BackgroundTasks, Depends, File, UploadFile, status
from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import NotFoundError
from app.core.storage import file_url
from app.features.activity.logger import log_activity
from app.features.activity.models import Subject, SubjectKind
from app.features.documents.schemas import DocumentVersionResponse
from app.features.permissions.dependencies import OrgActor, require_permission
from app.features.reviews import workflow
from app.features.reviews.models import (
    RecipientStatus,
    ReviewAction,
    ReviewAttachment,
    ReviewComment,
    ReviewRecipient,
    ReviewRequest,
    ReviewStatus,
)
from app.features.reviews.policy import ReviewAccess, ensure_can_view, load_access
from app.features.reviews.schemas import (
    ActionResponse,
    AttachmentResponse,
    CommentCreate,
    CommentResponse,
    DeclineBody,
    ExpireResult,
    InboxItem,
    RecipientDueDate,
    RecipientInput,
    RecipientResponse,
    RequestChangesBody,
    ReviewCreate,
    ReviewDetail,
    ReviewResponse,
    ReviewUpdate,
)
from app.features.users.dependencies import get_current_user
from app.features.users.models import User


# Mounted at /reviews
router = APIRouter()

# Mounted under /organizations
org_router = APIRouter()


def _specs(recipients: List[RecipientInput]) -> List[workflow.RecipientSpec]:
    return [workflow.RecipientSpec(r.user_id, r.organization_id, r.due_at) for r in recipients]


def _log(
    background_tasks: BackgroundTasks,
    review: ReviewRequest,
    action: str,
    user_id: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> None:
    background_tasks.add_task(
        log_activity,
        review.publisher_org_id,
        f"review.{action}",
        user_id=user_id,
        subject=Subject(SubjectKind.REVIEW_REQUEST, review.id),
        metadata=metadata,
    )


async def _get_review(db: AsyncSession, review_id: str) -> ReviewRequest:
    review = await db.get(ReviewRequest, review_id)
    if review is None:
        raise NotFoundError("Review request not found")
    return review


async def _viewer_access(db: AsyncSession, review_id: str, user: User) -> ReviewAccess:
    review = await _get_review(db, review_id)
    access = await load_access(db, review, user.id)
    ensure_can_view(access)
    return access


async def _detail(db: AsyncSession, access: ReviewAccess) -> ReviewDetail:
    review = access.review
    await db.refresh(review)
    detail = ReviewDetail.model_validate(review)

    detail.recipients = [
        RecipientResponse.model_validate(r) for r in await workflow.list_recipients(db, review.id)
    ]

    comments = select(ReviewComment).where(ReviewComment.review_request_id == review.id)
    if not access.sees_internal:
        comments = comments.where(ReviewComment.is_internal == False)  # noqa: E712
    result = await db.execute(comments.order_by(ReviewComment.created_at, ReviewComment.id))
    detail.comments = [CommentResponse.model_validate(c) for c in result.scalars().all()]

    result = await db.execute(
        select(ReviewAttachment)
        .where(ReviewAttachment.review_request_id == review.id)
        .order_by(ReviewAttachment.created_at)
    )
    detail.attachments = [_attachment(a) for a in result.scalars().all()]
    detail.actions = await _actions(db, review.id)
    return detail


def _attachment(attachment: ReviewAttachment) -> AttachmentResponse:
    response = AttachmentResponse.model_validate(attachment)
    response.url = file_url(attachment.file_path)
    return response


async def _actions(db: AsyncSession, review_id: str) -> List[ActionResponse]:
    result = await db.execute(
        select(ReviewAction)
        .where(ReviewAction.review_request_id == review_id)
        .order_by(ReviewAction.created_at, ReviewAction.id)
    )
    return [ActionResponse.model_validate(a) for a in result.scalars().all()]


# ============================================================================
# Threads
# ============================================================================

@router.post("/", response_model=ReviewDetail, status_code=status.HTTP_201_CREATED)
async def create_review(
    review_data: ReviewCreate,
    background_tasks: BackgroundTasks,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Open a review thread on a document of the publisher organization."""
    review = await workflow.create_review(
        db,
        actor_id=user.id,
        publisher_org_id=review_data.organization_id,
        document_id=review_data.document_id,
        document_version_id=review_data.document_version_id,
        subject=review_data.subject,
        body=review_data.body,
        due_at=review_data.due_at,
        recipients=_specs(review_data.recipients),
        send_immediately=review_data.send_immediately,
    )
    await db.commit()

    _log(background_tasks, review, "created", user.id, {"status": review.status.value})
    return await _detail(db, await load_access(db, review, user.id))


@router.get("/inbox", response_model=List[InboxItem])
async def get_inbox(
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    status_filter: Optional[RecipientStatus] = None,
    skip: int = 0,
    limit: int = 50,
):
    """Threads the caller has been asked to review. Drafts are not delivered yet."""
    query = (
        select(ReviewRequest, ReviewRecipient)
        .join(ReviewRecipient, ReviewRecipient.review_request_id == ReviewRequest.id)
        .where(
            and_(
                ReviewRecipient.reviewer_user_id == user.id,
                ReviewRequest.status != ReviewStatus.DRAFT,
            )
        )
    )
    if status_filter:
        query = query.where(ReviewRecipient.status == status_filter)

    result = await db.execute(query.order_by(ReviewRequest.created_at.desc()).offset(skip).limit(limit))
    return [
        InboxItem(
            review=ReviewResponse.model_validate(review),
            recipient=RecipientResponse.model_validate(recipient),
        )
        for review, recipient in result.all()
    ]


@org_router.get("/{organization_id}/reviews", response_model=List[ReviewResponse])
async def list_organization_reviews(
    actor: Annotated[OrgActor, Depends(require_permission("view_reviews"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    status_filter: Optional[ReviewStatus] = None,
    skip: int = 0,
    limit: int = 50,
):
    query = select(ReviewRequest).where(ReviewRequest.publisher_org_id == actor.organization_id)
    if status_filter:
        query = query.where(ReviewRequest.status == status_filter)

    result = await db.execute(query.order_by(ReviewRequest.created_at.desc()).offset(skip).limit(limit))
    return result.scalars().all()


@router.get("/{review_id}", response_model=ReviewDetail)
async def get_review(
    review_id: str,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    access = await _viewer_access(db, review_id, user)
    return await _detail(db, access)


@router.patch("/{review_id}", response_model=ReviewDetail)
async def update_review(
    review_id: str,
    update_data: ReviewUpdate,
    background_tasks: BackgroundTasks,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    changes = update_data.model_dump(exclude_unset=True, exclude={"add_recipients"})
    review = await workflow.update_review(
        db, review_id, user.id, changes, _specs(update_data.add_recipients)
    )
    await db.commit()

    _log(background_tasks, review, "updated", user.id, {"fields": sorted(changes)})
    return await _detail(db, await load_access(db, review, user.id))


@router.get("/{review_id}/actions", response_model=List[ActionResponse])
async def get_review_actions(
    review_id: str,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """The audit trail of a thread, oldest first."""
    access = await _viewer_access(db, review_id, user)
    return await _actions(db, access.review.id)


# ============================================================================
# Publisher transitions
# ============================================================================

@router.post("/{review_id}/send", response_model=ReviewDetail)
async def send_review(
    review_id: str,
    background_tasks: BackgroundTasks,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    review = await workflow.send_review(db, review_id, user.id)
    await db.commit()
    _log(background_tasks, review, "sent", user.id)
    return await _detail(db, await load_access(db, review, user.id))


@router.post("/{review_id}/request-changes", response_model=ReviewDetail)
async def request_changes(
    review_id: str,
    body: RequestChangesBody,
    background_tasks: BackgroundTasks,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    review = await workflow.request_changes(db, review_id, user.id, body.note)
    await db.commit()
    _log(background_tasks, review, "changes_requested", user.id)
    return await _detail(db, await load_access(db, review, user.id))


@router.post("/{review_id}/close", response_model=ReviewDetail)
async def close_review(
    review_id: str,
    background_tasks: BackgroundTasks,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    review = await workflow.close_review(db, review_id, user.id)
    await db.commit()
    _log(background_tasks, review, "closed", user.id)
    return await _detail(db, await load_access(db, review, user.id))


@router.post("/{review_id}/reopen", response_model=ReviewDetail)
async def reopen_review(
    review_id: str,
    background_tasks: BackgroundTasks,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    review = await workflow.reopen_review(db, review_id, user.id)
    await db.commit()
    _log(background_tasks, review, "reopened", user.id)
    return await _detail(db, await load_access(db, review, user.id))


@router.post("/{review_id}/versions", response_model=DocumentVersionResponse, status_code=status.HTTP_201_CREATED)
async def attach_new_version(
    review_id: str,
    background_tasks: BackgroundTasks,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    file: UploadFile = File(...),
):
    """Upload a new version of the reviewed document and point the thread at it."""
    version = await workflow.attach_new_version(
        db, review_id, user.id, file.filename, await file.read(), file.content_type
    )
    await db.commit()

    review = await _get_review(db, review_id)
    _log(background_tasks, review, "version_uploaded", user.id, {"version": version.version_number})
    return version


@router.post("/{review_id}/expire-overdue", response_model=ExpireResult)
async def expire_overdue(
    review_id: str,
    background_tasks: BackgroundTasks,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    expired = await workflow.expire_overdue_recipients(db, review_id, user.id)
    await db.commit()

    if expired:
        review = await _get_review(db, review_id)
        _log(background_tasks, review, "recipients_expired", user.id, {"count": len(expired)})
    return ExpireResult(expired=[RecipientResponse.model_validate(r) for r in expired])


# ============================================================================
# Recipients
# ============================================================================

@router.post("/{review_id}/recipients/{recipient_id}/view", response_model=RecipientResponse)
async def mark_viewed(
    review_id: str,
    recipient_id: str,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    await workflow.mark_viewed(db, review_id, recipient_id, user.id)
    await db.commit()
    return await db.get(ReviewRecipient, recipient_id)


@router.post("/{review_id}/recipients/{recipient_id}/approve", response_model=RecipientResponse)
async def approve(
    review_id: str,
    recipient_id: str,
    background_tasks: BackgroundTasks,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    recipient = await workflow.approve_recipient(db, review_id, recipient_id, user.id)
    await db.commit()

    review = await _get_review(db, review_id)
    _log(background_tasks, review, "reviewer_approved", user.id, {"review_status": review.status.value})
    return recipient


@router.post("/{review_id}/recipients/{recipient_id}/decline", response_model=RecipientResponse)
async def decline(
    review_id: str,
    recipient_id: str,
    body: DeclineBody,
    background_tasks: BackgroundTasks,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    recipient = await workflow.decline_recipient(db, review_id, recipient_id, user.id, body.reason)
    await db.commit()

    review = await _get_review(db, review_id)
    _log(background_tasks, review, "reviewer_declined", user.id, {"reason": body.reason})
    return recipient


@router.post("/{review_id}/recipients/{recipient_id}/remind", response_model=RecipientResponse)
async def remind(
    review_id: str,
    recipient_id: str,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    recipient = await workflow.remind_recipient(db, review_id, recipient_id, user.id)
    await db.commit()
    return recipient


@router.patch("/{review_id}/recipients/{recipient_id}", response_model=RecipientResponse)
async def update_recipient_due_date(
    review_id: str,
    recipient_id: str,
    body: RecipientDueDate,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    recipient = await workflow.update_recipient_due_date(db, review_id, recipient_id, user.id, body.due_at)
    await db.commit()
    return recipient


@router.delete("/{review_id}/recipients/{recipient_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_recipient(
    review_id: str,
    recipient_id: str,
    background_tasks: BackgroundTasks,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    await workflow.remove_recipient(db, review_id, recipient_id, user.id)
    await db.commit()

    review = await _get_review(db, review_id)
    _log(background_tasks, review, "reviewer_removed", user.id, {"recipient_id": recipient_id})


# ============================================================================
# Comments and attachments
# ============================================================================

@router.post("/{review_id}/comments", response_model=CommentResponse, status_code=status.HTTP_201_CREATED)
async def add_comment(
    review_id: str,
    comment_data: CommentCreate,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    comment = await workflow.add_comment(
        db, review_id, user.id, comment_data.body, comment_data.parent_id, comment_data.is_internal
    )
    await db.commit()
    return comment


@router.post("/{review_id}/attachments", response_model=AttachmentResponse, status_code=status.HTTP_201_CREATED)
async def add_attachment(
    review_id: str,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)],
    file: UploadFile = File(...),
):
    attachment = await workflow.add_attachment(
        db, review_id, user.id, file.filename, await file.read(), file.content_type
    )
    await db.commit()
    return _attachment(attachment)
