"""
Who may do what on a review thread.

Publisher-side rights come from the caller's membership in the publisher
organization, resolved through the permission resolver. Recipient-side
rights come from being the recipient.
"""
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import AuthorizationError
from app.features.permissions.resolver import MembershipContext, authorize, load_membership
from app.features.reviews.models import ReviewRecipient, ReviewRequest


@dataclass(frozen=True)
class ReviewAccess:
    review: ReviewRequest
    user_id: str
    membership: Optional[MembershipContext]
    recipient: Optional[ReviewRecipient]

    @property
    def is_recipient(self) -> bool:
        return self.recipient is not None

    @property
    def is_publisher_member(self) -> bool:
        return self.membership is not None

    def can(self, permission_name: str) -> bool:
        return authorize(self.membership, permission_name)

    @property
    def can_view(self) -> bool:
        return self.can("view_reviews") or self.is_recipient

    @property
    def can_comment(self) -> bool:
        return self.is_recipient or self.can("comment_on_reviews")

    @property
    def sees_internal(self) -> bool:
        return self.can("view_reviews")


async def load_access(db: AsyncSession, review: ReviewRequest, user_id: str) -> ReviewAccess:
    membership = await load_membership(db, user_id, review.publisher_org_id)
    result = await db.execute(
        select(ReviewRecipient).where(
            and_(
                ReviewRecipient.review_request_id == review.id,
                ReviewRecipient.reviewer_user_id == user_id,
            )
        )
    )
    return ReviewAccess(
        review=review,
        user_id=user_id,
        membership=membership,
        recipient=result.scalar_one_or_none(),
    )


def ensure_can_view(access: ReviewAccess) -> None:
    if not access.can_view:
        raise AuthorizationError("You cannot view this review", required_permission="view_reviews")


def ensure_can_comment(access: ReviewAccess) -> None:
    if not access.can_comment:
        raise AuthorizationError("You cannot comment on this review", required_permission="comment_on_reviews")


def ensure_publisher_permission(access: ReviewAccess, permission_name: str) -> None:
    """Publisher-side actions: member of the publisher org holding ``permission_name``."""
    if not access.can(permission_name):
        raise AuthorizationError(
            f"Permission denied: {permission_name}",
            required_permission=permission_name,
        )


def ensure_acts_as_recipient(recipient: ReviewRecipient, user_id: str) -> None:
    if recipient.reviewer_user_id != user_id:
        raise AuthorizationError("Only the reviewer can act on this recipient entry")
