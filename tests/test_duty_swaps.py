"""
Swap requests: open claims, directed swaps and scheduler review.
"""
import datetime as dt

import pytest

from app.core.errors import AuthorizationError, ConflictError, InvalidStateTransition, ValidationError
from app.features.duty import scheduling, swaps
from app.features.duty.models import AssignmentStatus, SwapStatus


@pytest.fixture
async def confirmed(db, make, future_date):
    """Alice holds a confirmed assignment; Bob and Carol are free members."""
    admin = await make.user("Admin")
    org = await make.organization(admin)
    alice = await make.member(org, await make.user("Alice"))
    bob = await make.member(org, await make.user("Bob"))
    carol = await make.member(org, await make.user("Carol"))

    schedule, _ = await scheduling.create_schedule(
        db, org.id, admin.id, title="Gate duty",
        date=future_date, start_time=dt.time(8, 0), end_time=dt.time(12, 0),
        officer_ids=[alice.id],
    )
    [assignment] = await scheduling.list_assignments(db, [schedule.id])
    await scheduling.respond_to_assignment(db, assignment, alice.id, "confirm")
    await db.commit()
    return org, admin, alice, bob, carol, schedule, assignment


async def _request(db, confirmed, to_officer_id=None):
    org, _, alice, _, _, schedule, assignment = confirmed
    swap = await swaps.create_swap(db, org.id, assignment, schedule, alice.id, "Family event", to_officer_id)
    await db.commit()
    return swap


async def test_only_confirmed_owner_may_request(db, make, future_date, confirmed):
    org, admin, alice, bob, _, schedule, assignment = confirmed

    with pytest.raises(AuthorizationError):
        await swaps.create_swap(db, org.id, assignment, schedule, bob.id, "Mine now")

    other, _ = await scheduling.create_schedule(
        db, org.id, admin.id, title="Unconfirmed",
        date=future_date, start_time=dt.time(13, 0), end_time=dt.time(14, 0),
        officer_ids=[alice.id],
    )
    [pending] = await scheduling.list_assignments(db, [other.id])
    with pytest.raises(InvalidStateTransition):
        await swaps.create_swap(db, org.id, pending, other, alice.id, "Busy")


async def test_reason_and_target_are_validated(db, make, confirmed):
    org, _, alice, _, _, schedule, assignment = confirmed
    stranger = await make.user("Stranger")

    with pytest.raises(ValidationError):
        await swaps.create_swap(db, org.id, assignment, schedule, alice.id, "   ")
    with pytest.raises(ValidationError):
        await swaps.create_swap(db, org.id, assignment, schedule, alice.id, "Me", to_officer_id=alice.id)
    with pytest.raises(ValidationError):
        await swaps.create_swap(db, org.id, assignment, schedule, alice.id, "Them", to_officer_id=stranger.id)


async def test_one_active_swap_per_assignment(db, confirmed):
    org, _, alice, _, _, schedule, assignment = confirmed
    await _request(db, confirmed)

    with pytest.raises(ConflictError):
        await swaps.create_swap(db, org.id, assignment, schedule, alice.id, "Again")


async def test_cancelled_swap_frees_the_assignment(db, confirmed):
    org, _, alice, bob, _, _, _ = confirmed
    swap = await _request(db, confirmed)

    with pytest.raises(AuthorizationError):
        await swaps.cancel_swap(db, org.id, swap.id, bob.id)
    await swaps.cancel_swap(db, org.id, swap.id, alice.id)
    assert swap.status == SwapStatus.CANCELLED

    replacement = await _request(db, confirmed)
    assert replacement.status == SwapStatus.PENDING


async def test_open_swap_first_acceptor_wins(db, confirmed):
    org, _, alice, bob, carol, _, assignment = confirmed
    swap = await _request(db, confirmed)

    with pytest.raises(ValidationError):
        await swaps.accept_swap(db, org.id, swap.id, alice.id)

    accepted, reassigned = await swaps.accept_swap(db, org.id, swap.id, bob.id)
    await db.commit()
    assert accepted.status == SwapStatus.ACCEPTED
    assert accepted.to_officer_id == bob.id
    assert reassigned.id == assignment.id
    assert reassigned.officer_id == bob.id
    assert reassigned.status == AssignmentStatus.CONFIRMED
    assert f"[Swapped from {alice.id}]" in reassigned.notes

    with pytest.raises(InvalidStateTransition):
        await swaps.accept_swap(db, org.id, swap.id, carol.id)


async def test_concurrent_accept_loses_the_claim(db, session_factory, confirmed):
    """A stale reader that passed every check still fails on the conditional update."""
    org, _, _, bob, carol, _, _ = confirmed
    swap = await _request(db, confirmed)

    async with session_factory() as stale:
        loaded = await swaps.get_swap(stale, org.id, swap.id, lock=False)
        assert loaded.status == SwapStatus.PENDING

        async with session_factory() as winner:
            await swaps.accept_swap(winner, org.id, swap.id, bob.id)
            await winner.commit()

        with pytest.raises(InvalidStateTransition):
            await swaps.accept_swap(stale, org.id, swap.id, carol.id)
        await stale.rollback()

    await db.refresh(swap)
    assert swap.status == SwapStatus.ACCEPTED
    assert swap.to_officer_id == bob.id


async def test_directed_swap_only_for_target(db, confirmed):
    org, _, _, bob, carol, _, _ = confirmed
    swap = await _request(db, confirmed, to_officer_id=bob.id)

    with pytest.raises(AuthorizationError):
        await swaps.accept_swap(db, org.id, swap.id, carol.id)
    with pytest.raises(AuthorizationError):
        await swaps.decline_swap(db, org.id, swap.id, carol.id)

    await swaps.decline_swap(db, org.id, swap.id, bob.id, reason="Working that day")
    assert swap.status == SwapStatus.DECLINED
    assert swap.reviewed_by_id == bob.id
    assert swap.review_notes == "Working that day"


async def test_open_swap_cannot_be_declined(db, confirmed):
    org, _, _, bob, _, _, _ = confirmed
    swap = await _request(db, confirmed)

    with pytest.raises(InvalidStateTransition):
        await swaps.decline_swap(db, org.id, swap.id, bob.id)


async def test_acceptor_already_on_schedule_conflicts(db, confirmed):
    org, admin, _, bob, _, schedule, _ = confirmed
    await scheduling.assign_officers(db, schedule, [bob.id], admin.id)
    swap = await _request(db, confirmed)

    with pytest.raises(ConflictError):
        await swaps.accept_swap(db, org.id, swap.id, bob.id)


async def test_admin_approves_directed_swap(db, confirmed):
    org, admin, _, bob, _, schedule, assignment = confirmed
    swap = await _request(db, confirmed, to_officer_id=bob.id)

    reviewed, reassigned, action = await swaps.review_swap(db, org.id, swap.id, admin.id, approve=True)
    assert action == "duty.swap.admin_approved_and_assigned"
    assert reviewed.status == SwapStatus.APPROVED
    assert reassigned.officer_id == bob.id
    assert reassigned.assigned_by_id == admin.id

    # An approved swap still counts as active for the assignment
    with pytest.raises(ConflictError):
        await swaps.create_swap(db, org.id, assignment, schedule, bob.id, "Back")


async def test_admin_approval_of_open_swap_keeps_it_pending(db, confirmed):
    org, admin, _, bob, _, _, _ = confirmed
    swap = await _request(db, confirmed)

    reviewed, reassigned, action = await swaps.review_swap(db, org.id, swap.id, admin.id, approve=True)
    assert action == "duty.swap.admin_approved_open"
    assert reassigned is None
    assert reviewed.status == SwapStatus.PENDING
    assert reviewed.reviewed_by_id == admin.id

    _, assignment = await swaps.accept_swap(db, org.id, swap.id, bob.id)
    assert assignment.officer_id == bob.id


async def test_admin_rejects(db, confirmed):
    org, admin, _, bob, _, _, _ = confirmed
    swap = await _request(db, confirmed, to_officer_id=bob.id)

    reviewed, _, action = await swaps.review_swap(db, org.id, swap.id, admin.id, approve=False, review_notes="No")
    assert action == "duty.swap.admin_rejected"
    assert reviewed.status == SwapStatus.REJECTED
    with pytest.raises(InvalidStateTransition):
        await swaps.review_swap(db, org.id, swap.id, admin.id, approve=True)


async def test_list_visibility(db, confirmed):
    org, admin, alice, bob, carol, _, _ = confirmed
    directed = await _request(db, confirmed, to_officer_id=bob.id)

    assert [s.id for s in await swaps.list_swaps(db, org.id, bob.id, see_all=False)] == [directed.id]
    assert await swaps.list_swaps(db, org.id, carol.id, see_all=False) == []
    assert [s.id for s in await swaps.list_swaps(db, org.id, admin.id, see_all=True)] == [directed.id]

    await swaps.cancel_swap(db, org.id, directed.id, alice.id)
    opened = await _request(db, confirmed)
    visible = await swaps.list_swaps(db, org.id, carol.id, see_all=False, status=SwapStatus.PENDING)
    assert [s.id for s in visible] == [opened.id]
