"""
Duty swap workflow.

Open swaps (no target officer) are claimed by the first member to accept;
the claim is a conditional UPDATE on ``status = 'pending'`` so concurrent
acceptors cannot both win. Directed swaps are answered by the named officer
or approved by a scheduler.
"""
import datetime as dt
from typing import List, Optional

from sqlalchemy import select, update, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.base import utcnow
from app.core.errors import (
    AuthorizationError,
    ConflictError,
    InvalidStateTransition,
    NotFoundError,
    ValidationError,
)
from app.features.duty.models import (
    ACTIVE_SWAP_STATUSES,
    AssignmentStatus,
    DutyAssignment,
    DutySchedule,
    DutySwapRequest,
    SwapStatus,
)
from app.features.duty.scheduling import ensure_members, today
from app.utils import get_logger


log = get_logger(__name__)


async def get_swap(db: AsyncSession, organization_id: str, swap_id: str, lock: bool = True) -> DutySwapRequest:
    stmt = (
        select(DutySwapRequest)
        .join(DutyAssignment, DutyAssignment.id == DutySwapRequest.duty_assignment_id)
        .join(DutySchedule, DutySchedule.id == DutyAssignment.duty_schedule_id)
        .where(
            and_(
                DutySwapRequest.id == swap_id,
                DutySchedule.organization_id == organization_id,
            )
        )
    )
    if lock:
        stmt = stmt.with_for_update(of=DutySwapRequest).execution_options(populate_existing=True)
    swap = (await db.execute(stmt)).scalar_one_or_none()
    if swap is None:
        raise NotFoundError("Swap request not found")
    return swap


def _ensure_pending(swap: DutySwapRequest) -> None:
    if swap.status != SwapStatus.PENDING:
        raise InvalidStateTransition(
            f"Swap request is already {swap.status.value}",
            status=swap.status.value,
        )


async def _load_assignment(db: AsyncSession, assignment_id: str) -> tuple[DutyAssignment, DutySchedule]:
    row = (await db.execute(
        select(DutyAssignment, DutySchedule)
        .join(DutySchedule, DutySchedule.id == DutyAssignment.duty_schedule_id)
        .where(DutyAssignment.id == assignment_id)
        .with_for_update(of=DutyAssignment)
        .execution_options(populate_existing=True)
    )).first()
    if row is None:
        raise NotFoundError("Duty assignment not found")
    return row[0], row[1]


async def _ensure_free_on_schedule(db: AsyncSession, schedule_id: str, officer_id: str) -> None:
    result = await db.execute(
        select(DutyAssignment.id).where(
            and_(
                DutyAssignment.duty_schedule_id == schedule_id,
                DutyAssignment.officer_id == officer_id,
            )
        )
    )
    if result.first() is not None:
        raise ConflictError("Officer is already assigned to this schedule", officer_id=officer_id)


def _reassign(assignment: DutyAssignment, new_officer_id: str, assigned_by_id: str, note: str) -> None:
    assignment.officer_id = new_officer_id
    assignment.status = AssignmentStatus.CONFIRMED
    assignment.confirmed_at = utcnow()
    assignment.check_in_at = None
    assignment.check_out_at = None
    assignment.assigned_by_id = assigned_by_id
    assignment.notes = f"{assignment.notes}\n{note}" if assignment.notes else note


async def create_swap(
    db: AsyncSession,
    organization_id: str,
    assignment: DutyAssignment,
    schedule: DutySchedule,
    actor_id: str,
    reason: str,
    to_officer_id: Optional[str] = None,
) -> DutySwapRequest:
    if assignment.officer_id != actor_id:
        raise AuthorizationError("You can only request swaps for your own assignments")
    if assignment.status != AssignmentStatus.CONFIRMED:
        raise InvalidStateTransition("You can only swap confirmed assignments", status=assignment.status.value)
    if schedule.date < today():
        raise ValidationError("Cannot swap past duties", field="date")
    if not reason or not reason.strip():
        raise ValidationError("A reason is required", field="reason")

    result = await db.execute(
        select(DutySwapRequest.id).where(
            and_(
                DutySwapRequest.duty_assignment_id == assignment.id,
                DutySwapRequest.status.in_(ACTIVE_SWAP_STATUSES),
            )
        )
    )
    if result.first() is not None:
        raise ConflictError("There is already an active swap request for this assignment")

    if to_officer_id is not None:
        if to_officer_id == actor_id:
            raise ValidationError("You cannot swap with yourself", field="to_officer_id")
        await ensure_members(db, organization_id, [to_officer_id])

    swap = DutySwapRequest(
        duty_assignment_id=assignment.id,
        from_officer_id=actor_id,
        to_officer_id=to_officer_id,
        reason=reason,
        status=SwapStatus.PENDING,
    )
    db.add(swap)
    await db.flush()
    log.info("Swap %s requested by %s for assignment %s", swap.id, actor_id, assignment.id)
    return swap


async def accept_swap(
    db: AsyncSession,
    organization_id: str,
    swap_id: str,
    actor_id: str,
    notes: Optional[str] = None,
) -> tuple[DutySwapRequest, DutyAssignment]:
    """
    The acceptor takes over the duty.

    For open swaps the claim is a compare-and-swap: only the request whose
    UPDATE matched ``status = 'pending'`` proceeds to reassign.
    """
    swap = await get_swap(db, organization_id, swap_id, lock=False)
    _ensure_pending(swap)
    if swap.from_officer_id == actor_id:
        raise ValidationError("You cannot accept your own swap request")
    if swap.to_officer_id is not None and swap.to_officer_id != actor_id:
        raise AuthorizationError("This swap is directed to another officer")

    assignment, schedule = await _load_assignment(db, swap.duty_assignment_id)
    await _ensure_free_on_schedule(db, schedule.id, actor_id)

    now = utcnow()
    result = await db.execute(
        update(DutySwapRequest)
        .where(
            and_(
                DutySwapRequest.id == swap.id,
                DutySwapRequest.status == SwapStatus.PENDING,
                or_(DutySwapRequest.to_officer_id.is_(None), DutySwapRequest.to_officer_id == actor_id),
            )
        )
        .values(
            status=SwapStatus.ACCEPTED,
            to_officer_id=actor_id,
            reviewed_by_id=actor_id,
            reviewed_at=now,
            review_notes=notes or "Accepted by member",
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InvalidStateTransition("This swap is no longer available")
    await db.refresh(swap)

    _reassign(assignment, actor_id, actor_id, f"[Swapped from {swap.from_officer_id}]")
    await db.flush()
    log.info("Swap %s accepted by %s", swap.id, actor_id)
    return swap, assignment


async def decline_swap(
    db: AsyncSession,
    organization_id: str,
    swap_id: str,
    actor_id: str,
    reason: Optional[str] = None,
) -> DutySwapRequest:
    swap = await get_swap(db, organization_id, swap_id)
    if swap.from_officer_id == actor_id:
        raise ValidationError("Use cancel to withdraw your own swap request")
    if swap.is_open:
        raise InvalidStateTransition("Open swap requests cannot be declined", status=swap.status.value)
    if swap.to_officer_id != actor_id:
        raise AuthorizationError("You cannot decline this swap request")
    _ensure_pending(swap)

    swap.status = SwapStatus.DECLINED
    swap.reviewed_by_id = actor_id
    swap.reviewed_at = utcnow()
    swap.review_notes = reason or "Declined by member"
    await db.flush()
    return swap


async def cancel_swap(db: AsyncSession, organization_id: str, swap_id: str, actor_id: str) -> DutySwapRequest:
    swap = await get_swap(db, organization_id, swap_id)
    if swap.from_officer_id != actor_id:
        raise AuthorizationError("You can only cancel your own swap requests")
    _ensure_pending(swap)

    swap.status = SwapStatus.CANCELLED
    await db.flush()
    return swap


async def review_swap(
    db: AsyncSession,
    organization_id: str,
    swap_id: str,
    actor_id: str,
    approve: bool,
    review_notes: Optional[str] = None,
) -> tuple[DutySwapRequest, Optional[DutyAssignment], str]:
    """
    Scheduler decision on a pending swap. Returns the swap, the reassigned
    assignment (directed approvals only) and the activity action name.

    Approving an open swap only records the reviewer; it stays pending until
    a member accepts it.
    """
    swap = await get_swap(db, organization_id, swap_id)
    _ensure_pending(swap)

    swap.reviewed_by_id = actor_id
    swap.reviewed_at = utcnow()

    if not approve:
        swap.status = SwapStatus.REJECTED
        swap.review_notes = review_notes or "Rejected by admin"
        await db.flush()
        return swap, None, "duty.swap.admin_rejected"

    if swap.is_open:
        swap.review_notes = review_notes or "Approved by admin - open for members to accept"
        await db.flush()
        return swap, None, "duty.swap.admin_approved_open"

    assignment, schedule = await _load_assignment(db, swap.duty_assignment_id)
    await _ensure_free_on_schedule(db, schedule.id, swap.to_officer_id)

    swap.status = SwapStatus.APPROVED
    swap.review_notes = review_notes or "Approved by admin - duty reassigned"
    _reassign(assignment, swap.to_officer_id, actor_id, f"[Swapped from {swap.from_officer_id} - Admin approved]")
    await db.flush()
    log.info("Swap %s approved by %s, assignment %s reassigned", swap.id, actor_id, assignment.id)
    return swap, assignment, "duty.swap.admin_approved_and_assigned"


async def list_swaps(
    db: AsyncSession,
    organization_id: str,
    actor_id: str,
    see_all: bool,
    status: Optional[SwapStatus] = None,
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None,
) -> List[DutySwapRequest]:
    query = (
        select(DutySwapRequest)
        .join(DutyAssignment, DutyAssignment.id == DutySwapRequest.duty_assignment_id)
        .join(DutySchedule, DutySchedule.id == DutyAssignment.duty_schedule_id)
        .where(DutySchedule.organization_id == organization_id)
    )
    if not see_all:
        query = query.where(
            or_(
                DutySwapRequest.from_officer_id == actor_id,
                DutySwapRequest.to_officer_id == actor_id,
                and_(
                    DutySwapRequest.to_officer_id.is_(None),
                    DutySwapRequest.status == SwapStatus.PENDING,
                ),
            )
        )
    if status is not None:
        query = query.where(DutySwapRequest.status == status)
    if start_date is not None:
        query = query.where(DutySchedule.date >= start_date)
    if end_date is not None:
        query = query.where(DutySchedule.date <= end_date)

    result = await db.execute(query.order_by(DutySwapRequest.created_at.desc(), DutySwapRequest.id.desc()))
    return list(result.scalars().all())
