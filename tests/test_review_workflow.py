"""
Review thread lifecycle: sending, per-recipient decisions and publisher actions.
"""
import datetime as dt

import pytest
from sqlalchemy import select

from app.core.database.base import utcnow
from app.core.errors import AuthorizationError, InvalidStateTransition, NotFoundError, ValidationError
from app.features.reviews import workflow
from app.features.reviews.models import RecipientStatus, ReviewAction, ReviewStatus


@pytest.fixture
async def thread(db, make):
    """A publisher org with one document and two outside reviewers."""
    publisher = await make.user("Publisher")
    org = await make.organization(publisher)
    document, version = await make.document(org, publisher)
    first = await make.user("Reviewer")
    second = await make.user("Reviewer")
    return org, publisher, document, version, first, second


async def _open(db, thread, send=True):
    org, publisher, document, _, first, second = thread
    review = await workflow.create_review(
        db,
        actor_id=publisher.id,
        publisher_org_id=org.id,
        document_id=document.id,
        subject="Please review the policy",
        recipients=[workflow.RecipientSpec(first.id), workflow.RecipientSpec(second.id)],
        send_immediately=send,
    )
    recipients = {r.reviewer_user_id: r for r in await workflow.list_recipients(db, review.id)}
    return review, recipients[first.id], recipients[second.id]


async def _actions(db, review):
    result = await db.execute(
        select(ReviewAction.action)
        .where(ReviewAction.review_request_id == review.id)
        .order_by(ReviewAction.created_at, ReviewAction.id)
    )
    return list(result.scalars().all())


async def test_create_sends_and_points_at_latest_version(db, thread):
    _, _, document, version, _, _ = thread
    review, first, second = await _open(db, thread)

    assert review.status == ReviewStatus.SENT
    assert review.sent_at is not None
    assert review.document_version_id == version.id == document.latest_version_id
    assert first.status == second.status == RecipientStatus.PENDING
    assert await _actions(db, review) == ["sent"]


async def test_create_requires_permission(db, make, thread):
    org, _, document, _, first, _ = thread
    outsider = await make.member(org, await make.user())
    with pytest.raises(AuthorizationError) as exc:
        await workflow.create_review(
            db, actor_id=outsider.id, publisher_org_id=org.id, document_id=document.id,
            subject="x", recipients=[workflow.RecipientSpec(first.id)],
        )
    assert exc.value.required_permission == "create_reviews"


async def test_create_rejects_foreign_version_and_empty_recipients(db, make, thread):
    org, publisher, document, _, first, _ = thread
    _, other_version = await make.document(org, publisher, title="Other")

    with pytest.raises(ValidationError):
        await workflow.create_review(
            db, actor_id=publisher.id, publisher_org_id=org.id, document_id=document.id,
            document_version_id=other_version.id, subject="x", recipients=[workflow.RecipientSpec(first.id)],
        )
    with pytest.raises(ValidationError):
        await workflow.create_review(
            db, actor_id=publisher.id, publisher_org_id=org.id, document_id=document.id,
            subject="x", recipients=[],
        )


async def test_all_approvals_finalize_thread(db, thread):
    *_, first_user, second_user = thread
    review, first, second = await _open(db, thread)

    await workflow.approve_recipient(db, review.id, first.id, first_user.id)
    assert review.status == ReviewStatus.IN_REVIEW
    assert review.closed_at is None

    await workflow.approve_recipient(db, review.id, second.id, second_user.id)
    assert review.status == ReviewStatus.APPROVED
    assert review.closed_at is not None
    assert await _actions(db, review) == ["sent", "reviewer_approved", "reviewer_approved"]


async def test_single_decline_finalizes_thread(db, thread):
    *_, first_user, _ = thread
    review, first, second = await _open(db, thread)

    await workflow.decline_recipient(db, review.id, first.id, first_user.id, reason="Out of scope")
    assert first.status == RecipientStatus.DECLINED
    assert review.status == ReviewStatus.DECLINED
    assert second.status == RecipientStatus.PENDING


async def test_final_recipient_cannot_act_again(db, thread):
    *_, first_user, _ = thread
    review, first, _ = await _open(db, thread)

    await workflow.approve_recipient(db, review.id, first.id, first_user.id)
    with pytest.raises(InvalidStateTransition):
        await workflow.decline_recipient(db, review.id, first.id, first_user.id)
    with pytest.raises(InvalidStateTransition):
        await workflow.approve_recipient(db, review.id, first.id, first_user.id)


async def test_only_the_recipient_may_decide(db, thread):
    *_, second_user = thread
    review, first, _ = await _open(db, thread)

    with pytest.raises(AuthorizationError):
        await workflow.approve_recipient(db, review.id, first.id, second_user.id)


async def test_viewed_only_moves_from_pending(db, thread):
    *_, first_user, _ = thread
    review, first, _ = await _open(db, thread)

    assert await workflow.mark_viewed(db, review.id, first.id, first_user.id) is True
    assert first.status == RecipientStatus.VIEWED
    assert first.last_viewed_at is not None
    assert await workflow.mark_viewed(db, review.id, first.id, first_user.id) is False


async def test_draft_blocks_recipients_until_sent(db, thread):
    _, publisher, _, _, first_user, _ = thread
    review, first, _ = await _open(db, thread, send=False)
    assert review.status == ReviewStatus.DRAFT
    assert review.sent_at is None

    with pytest.raises(InvalidStateTransition):
        await workflow.approve_recipient(db, review.id, first.id, first_user.id)

    await workflow.send_review(db, review.id, publisher.id)
    assert review.status == ReviewStatus.SENT
    with pytest.raises(InvalidStateTransition):
        await workflow.send_review(db, review.id, publisher.id)


async def test_request_changes_close_and_reopen(db, thread):
    _, publisher, *_ = thread
    review, _, _ = await _open(db, thread)

    await workflow.request_changes(db, review.id, publisher.id, note="Fix section 2")
    assert review.status == ReviewStatus.CHANGES_REQUESTED

    with pytest.raises(InvalidStateTransition):
        await workflow.reopen_review(db, review.id, publisher.id)

    await workflow.close_review(db, review.id, publisher.id)
    assert review.status == ReviewStatus.CLOSED
    with pytest.raises(InvalidStateTransition):
        await workflow.request_changes(db, review.id, publisher.id)

    await workflow.reopen_review(db, review.id, publisher.id)
    assert review.status == ReviewStatus.IN_REVIEW
    assert review.closed_at is None
    assert await _actions(db, review) == ["sent", "requested_changes", "closed", "reopened"]


async def test_recipient_cannot_run_publisher_actions(db, thread):
    *_, first_user, _ = thread
    review, _, _ = await _open(db, thread)

    with pytest.raises(AuthorizationError):
        await workflow.close_review(db, review.id, first_user.id)


async def test_new_version_repoints_thread_without_status_change(db, thread):
    _, publisher, document, version, first_user, _ = thread
    review, first, _ = await _open(db, thread)
    await workflow.approve_recipient(db, review.id, first.id, first_user.id)

    new_version = await workflow.attach_new_version(db, review.id, publisher.id, "policy-v2.pdf", b"v2")
    assert new_version.version_number == version.version_number + 1
    assert review.document_version_id == new_version.id
    assert review.status == ReviewStatus.IN_REVIEW
    assert document.latest_version_id == new_version.id


async def test_comment_moves_recipient_to_commented(db, thread):
    *_, first_user, _ = thread
    review, first, _ = await _open(db, thread)

    comment = await workflow.add_comment(db, review.id, first_user.id, "Looks mostly fine")
    assert comment.recipient_id == first.id
    assert first.status == RecipientStatus.COMMENTED

    reply = await workflow.add_comment(db, review.id, first_user.id, "One more thing", parent_id=comment.id)
    assert reply.parent_id == comment.id


async def test_internal_notes_are_publisher_only(db, thread):
    _, publisher, *_, first_user, _ = thread
    review, _, _ = await _open(db, thread)

    note = await workflow.add_comment(db, review.id, publisher.id, "Internal", is_internal=True)
    assert note.is_internal
    with pytest.raises(AuthorizationError):
        await workflow.add_comment(db, review.id, first_user.id, "Sneaky", is_internal=True)


async def test_reply_to_comment_on_other_thread_not_found(db, thread):
    _, publisher, *_ = thread
    review, _, _ = await _open(db, thread)
    other, _, _ = await _open(db, thread)
    comment = await workflow.add_comment(db, other.id, publisher.id, "Elsewhere")

    with pytest.raises(NotFoundError):
        await workflow.add_comment(db, review.id, publisher.id, "Reply", parent_id=comment.id)


async def test_remove_recipient_only_before_response(db, thread):
    _, publisher, *_, first_user, _ = thread
    review, first, second = await _open(db, thread)
    await workflow.approve_recipient(db, review.id, first.id, first_user.id)

    with pytest.raises(InvalidStateTransition):
        await workflow.remove_recipient(db, review.id, first.id, publisher.id)

    await workflow.remove_recipient(db, review.id, second.id, publisher.id)
    remaining = await workflow.list_recipients(db, review.id)
    assert [r.id for r in remaining] == [first.id]


async def test_update_adds_recipients_once(db, make, thread):
    _, publisher, *_, first_user, _ = thread
    review, _, _ = await _open(db, thread)
    third = await make.user("Reviewer")

    await workflow.update_review(
        db, review.id, publisher.id, {"subject": "Updated"},
        [workflow.RecipientSpec(third.id), workflow.RecipientSpec(first_user.id)],
    )
    assert review.subject == "Updated"
    assert len(await workflow.list_recipients(db, review.id)) == 3
    assert sorted(await _actions(db, review)) == ["reassigned", "sent", "updated"]


async def test_expire_overdue_recipients(db, thread):
    _, publisher, *_ = thread
    review, first, second = await _open(db, thread)
    await workflow.update_recipient_due_date(db, review.id, first.id, publisher.id, utcnow() - dt.timedelta(days=1))

    expired = await workflow.expire_overdue_recipients(db, review.id, publisher.id)
    assert [r.id for r in expired] == [first.id]
    assert first.status == RecipientStatus.EXPIRED
    assert second.status == RecipientStatus.PENDING

    with pytest.raises(InvalidStateTransition):
        await workflow.remind_recipient(db, review.id, first.id, publisher.id)
    await workflow.remind_recipient(db, review.id, second.id, publisher.id)


async def test_created_action_visible_before_commit(db, thread):
    review, _, _ = await _open(db, thread, send=False)
    assert review.status == ReviewStatus.DRAFT
    assert await _actions(db, review) == ["created"]


async def test_approval_recomputes_a_final_thread(db, thread):
    _, publisher, *_, first_user, second_user = thread
    review, first, second = await _open(db, thread)

    await workflow.close_review(db, review.id, publisher.id)
    await workflow.approve_recipient(db, review.id, first.id, first_user.id)
    assert review.status == ReviewStatus.IN_REVIEW
    assert review.closed_at is None

    await workflow.approve_recipient(db, review.id, second.id, second_user.id)
    assert review.status == ReviewStatus.APPROVED
    assert review.closed_at is not None


async def test_approval_after_decline_moves_thread_back_in_review(db, thread):
    *_, first_user, second_user = thread
    review, first, second = await _open(db, thread)

    await workflow.decline_recipient(db, review.id, first.id, first_user.id, reason="No")
    assert review.status == ReviewStatus.DECLINED

    await workflow.approve_recipient(db, review.id, second.id, second_user.id)
    assert review.status == ReviewStatus.IN_REVIEW
    assert await _actions(db, review) == ["sent", "reviewer_declined", "reviewer_approved"]
