"""
Duty schedule and assignment operations.

Functions here take an explicit actor id, raise domain errors and never
commit; routes own the transaction.
"""
import datetime as dt
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import select, delete, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.base import utcnow
from app.core.errors import (
    AuthorizationError,
    ConflictError,
    InvalidStateTransition,
    NotFoundError,
    ValidationError,
)
from app.features.duty import recurrence
from app.features.duty.models import (
    AssignmentStatus,
    DutyAssignment,
    DutySchedule,
    DutySwapRequest,
    RecurrenceType,
    ScheduleStatus,
)
from app.features.organizations.models import user_organizations
from app.utils import get_logger


log = get_logger(__name__)


# Status changes a scheduler may apply through the assignment update operation
ASSIGNMENT_TRANSITIONS: Dict[AssignmentStatus, frozenset] = {
    AssignmentStatus.ASSIGNED: frozenset({
        AssignmentStatus.CONFIRMED,
        AssignmentStatus.DECLINED,
        AssignmentStatus.NO_SHOW,
    }),
    AssignmentStatus.CONFIRMED: frozenset({
        AssignmentStatus.DECLINED,
        AssignmentStatus.COMPLETED,
        AssignmentStatus.NO_SHOW,
    }),
    AssignmentStatus.DECLINED: frozenset({AssignmentStatus.ASSIGNED}),
    AssignmentStatus.COMPLETED: frozenset(),
    AssignmentStatus.NO_SHOW: frozenset(),
}


def today() -> dt.date:
    return utcnow().date()


def validate_times(start_time: dt.time, end_time: dt.time) -> None:
    if end_time <= start_time:
        raise ValidationError("end_time must be after start_time", field="end_time")


def validate_future_date(value: dt.date, field: str = "date") -> None:
    if value < today():
        raise ValidationError(f"{field} cannot be in the past", field=field)


async def ensure_members(db: AsyncSession, organization_id: str, user_ids: Iterable[str]) -> None:
    """Every id in ``user_ids`` must belong to the organization."""
    wanted = set(user_ids)
    if not wanted:
        return
    result = await db.execute(
        select(user_organizations.c.user_id).where(
            and_(
                user_organizations.c.organization_id == organization_id,
                user_organizations.c.user_id.in_(wanted),
            )
        )
    )
    missing = wanted - set(result.scalars().all())
    if missing:
        raise ValidationError(
            "Some officers are not members of this organization",
            officer_ids=sorted(missing),
        )


# ============================================================================
# Schedules
# ============================================================================

async def get_schedule(
    db: AsyncSession, organization_id: str, schedule_id: str, lock: bool = False
) -> DutySchedule:
    stmt = select(DutySchedule).where(
        and_(DutySchedule.id == schedule_id, DutySchedule.organization_id == organization_id)
    )
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    schedule = (await db.execute(stmt)).scalar_one_or_none()
    if schedule is None:
        raise NotFoundError("Duty schedule not found")
    return schedule


async def list_assignments(db: AsyncSession, schedule_ids: Iterable[str]) -> List[DutyAssignment]:
    ids = list(schedule_ids)
    if not ids:
        return []
    result = await db.execute(
        select(DutyAssignment)
        .where(DutyAssignment.duty_schedule_id.in_(ids))
        .order_by(DutyAssignment.created_at, DutyAssignment.id)
    )
    return list(result.scalars().all())


async def create_schedule(
    db: AsyncSession,
    organization_id: str,
    actor_id: str,
    *,
    title: str,
    date: dt.date,
    start_time: dt.time,
    end_time: dt.time,
    required_officers: int = 1,
    status: ScheduleStatus = ScheduleStatus.DRAFT,
    description: Optional[str] = None,
    location: Optional[str] = None,
    recurrence_type: RecurrenceType = RecurrenceType.NONE,
    recurrence_days: Optional[List[int]] = None,
    recurrence_end_date: Optional[dt.date] = None,
    officer_ids: Iterable[str] = (),
) -> tuple[DutySchedule, List[DutySchedule]]:
    """
    Create a schedule, assign its initial officers and expand recurrence.

    Returns the base schedule and the generated occurrences. Occurrences are
    drafts carrying copies of the base schedule's assignments.
    """
    validate_future_date(date)
    validate_times(start_time, end_time)
    if status not in (ScheduleStatus.DRAFT, ScheduleStatus.PUBLISHED):
        raise ValidationError("New schedules must be draft or published", field="status")
    if not 1 <= required_officers <= 50:
        raise ValidationError("required_officers must be between 1 and 50", field="required_officers")

    occurrence_dates = recurrence.expand(date, recurrence_type, recurrence_end_date, recurrence_days)
    officer_ids = list(dict.fromkeys(officer_ids))
    await ensure_members(db, organization_id, officer_ids)

    fields = dict(
        organization_id=organization_id,
        title=title,
        description=description,
        location=location,
        start_time=start_time,
        end_time=end_time,
        required_officers=required_officers,
        recurrence_type=recurrence_type,
        recurrence_days=sorted(set(recurrence_days)) if recurrence_days else None,
        recurrence_end_date=recurrence_end_date if recurrence_type != RecurrenceType.NONE else None,
        created_by_id=actor_id,
    )
    schedule = DutySchedule(date=date, status=status, **fields)
    db.add(schedule)
    await db.flush()
    await assign_officers(db, schedule, officer_ids, actor_id)

    occurrences = []
    for occurrence_date in occurrence_dates:
        occurrence = DutySchedule(date=occurrence_date, status=ScheduleStatus.DRAFT, **fields)
        db.add(occurrence)
        occurrences.append(occurrence)
    await db.flush()

    for occurrence in occurrences:
        for officer_id in officer_ids:
            db.add(DutyAssignment(
                duty_schedule_id=occurrence.id,
                officer_id=officer_id,
                status=AssignmentStatus.ASSIGNED,
                assigned_by_id=actor_id,
            ))
    await db.flush()

    log.info(
        "Duty schedule %s created in org %s with %d occurrence(s)",
        schedule.id, organization_id, len(occurrences),
    )
    return schedule, occurrences


async def update_schedule(db: AsyncSession, schedule: DutySchedule, changes: Dict[str, Any]) -> DutySchedule:
    if "required_officers" in changes and not 1 <= changes["required_officers"] <= 50:
        raise ValidationError("required_officers must be between 1 and 50", field="required_officers")
    validate_times(
        changes.get("start_time", schedule.start_time),
        changes.get("end_time", schedule.end_time),
    )
    for field, value in changes.items():
        setattr(schedule, field, value)
    await db.flush()
    return schedule


async def _delete_assignments(db: AsyncSession, assignment_ids: List[str]) -> None:
    if not assignment_ids:
        return
    await db.execute(delete(DutySwapRequest).where(DutySwapRequest.duty_assignment_id.in_(assignment_ids)))
    await db.execute(delete(DutyAssignment).where(DutyAssignment.id.in_(assignment_ids)))


async def delete_schedule(db: AsyncSession, schedule: DutySchedule) -> None:
    """Delete a schedule with its assignments and their swap requests."""
    assignments = await list_assignments(db, [schedule.id])
    await _delete_assignments(db, [a.id for a in assignments])
    await db.delete(schedule)
    await db.flush()
    log.info("Duty schedule %s deleted", schedule.id)


async def duplicate_schedule(
    db: AsyncSession,
    schedule: DutySchedule,
    new_date: dt.date,
    actor_id: str,
    copy_assignments: bool = False,
) -> DutySchedule:
    validate_future_date(new_date)
    copy = DutySchedule(
        organization_id=schedule.organization_id,
        title=schedule.title,
        description=schedule.description,
        location=schedule.location,
        date=new_date,
        start_time=schedule.start_time,
        end_time=schedule.end_time,
        required_officers=schedule.required_officers,
        status=ScheduleStatus.DRAFT,
        recurrence_type=RecurrenceType.NONE,
        created_by_id=actor_id,
    )
    db.add(copy)
    await db.flush()

    if copy_assignments:
        for assignment in await list_assignments(db, [schedule.id]):
            db.add(DutyAssignment(
                duty_schedule_id=copy.id,
                officer_id=assignment.officer_id,
                status=AssignmentStatus.ASSIGNED,
                assigned_by_id=actor_id,
                notes=f"Duplicated from {schedule.date.isoformat()}",
            ))
        await db.flush()
    return copy


# ============================================================================
# Assignments
# ============================================================================

async def assign_officers(
    db: AsyncSession,
    schedule: DutySchedule,
    officer_ids: Iterable[str],
    actor_id: str,
    notes: Optional[str] = None,
) -> List[DutyAssignment]:
    officer_ids = list(dict.fromkeys(officer_ids))
    if not officer_ids:
        return []
    await ensure_members(db, schedule.organization_id, officer_ids)

    result = await db.execute(
        select(DutyAssignment.officer_id).where(
            and_(
                DutyAssignment.duty_schedule_id == schedule.id,
                DutyAssignment.officer_id.in_(officer_ids),
            )
        )
    )
    already = sorted(result.scalars().all())
    if already:
        raise ConflictError("Officer already assigned to this schedule", officer_ids=already)

    assignments = [
        DutyAssignment(
            duty_schedule_id=schedule.id,
            officer_id=officer_id,
            status=AssignmentStatus.ASSIGNED,
            assigned_by_id=actor_id,
            notes=notes,
        )
        for officer_id in officer_ids
    ]
    db.add_all(assignments)
    await db.flush()
    return assignments


async def get_assignment(
    db: AsyncSession, organization_id: str, assignment_id: str, lock: bool = True
) -> tuple[DutyAssignment, DutySchedule]:
    """Load an assignment together with its schedule, scoped to the organization."""
    stmt = (
        select(DutyAssignment, DutySchedule)
        .join(DutySchedule, DutySchedule.id == DutyAssignment.duty_schedule_id)
        .where(
            and_(
                DutyAssignment.id == assignment_id,
                DutySchedule.organization_id == organization_id,
            )
        )
    )
    if lock:
        stmt = stmt.with_for_update(of=DutyAssignment).execution_options(populate_existing=True)
    row = (await db.execute(stmt)).first()
    if row is None:
        raise NotFoundError("Duty assignment not found")
    return row[0], row[1]


async def update_assignment(
    db: AsyncSession,
    assignment: DutyAssignment,
    status: Optional[AssignmentStatus] = None,
    notes: Optional[str] = None,
    notes_set: bool = False,
) -> DutyAssignment:
    """Scheduler-side edit. Status changes follow ``ASSIGNMENT_TRANSITIONS``."""
    if status is not None and status != assignment.status:
        if status not in ASSIGNMENT_TRANSITIONS[assignment.status]:
            raise InvalidStateTransition(
                f"Cannot change assignment from {assignment.status.value} to {status.value}",
                status=assignment.status.value,
            )
        previous = assignment.status
        assignment.status = status
        if status == AssignmentStatus.CONFIRMED:
            assignment.confirmed_at = utcnow()
        elif status in (AssignmentStatus.DECLINED, AssignmentStatus.ASSIGNED):
            assignment.confirmed_at = None
        elif status == AssignmentStatus.COMPLETED and assignment.check_out_at is None:
            assignment.check_out_at = utcnow()
        log.info("Assignment %s: %s -> %s", assignment.id, previous.value, status.value)
    if notes_set:
        assignment.notes = notes
    await db.flush()
    return assignment


async def remove_assignment(db: AsyncSession, assignment: DutyAssignment) -> None:
    await _delete_assignments(db, [assignment.id])
    await db.flush()


RESPONSE_ACTIONS = {"confirm": "confirmed", "decline": "declined"}


def _ensure_officer(assignment: DutyAssignment, actor_id: str) -> None:
    if assignment.officer_id != actor_id:
        raise AuthorizationError("Only the assigned officer can do this")


async def respond_to_assignment(
    db: AsyncSession, assignment: DutyAssignment, actor_id: str, response: str
) -> DutyAssignment:
    """Officer confirms or declines their own assignment."""
    _ensure_officer(assignment, actor_id)

    if response == "confirm":
        if assignment.status != AssignmentStatus.ASSIGNED:
            raise InvalidStateTransition(
                f"Cannot confirm an assignment that is {assignment.status.value}",
                status=assignment.status.value,
            )
        assignment.status = AssignmentStatus.CONFIRMED
        assignment.confirmed_at = utcnow()
    elif response == "decline":
        if assignment.status not in (AssignmentStatus.ASSIGNED, AssignmentStatus.CONFIRMED) \
                or assignment.check_in_at is not None:
            raise InvalidStateTransition(
                f"Cannot decline an assignment that is {assignment.status.value}",
                status=assignment.status.value,
            )
        assignment.status = AssignmentStatus.DECLINED
        assignment.confirmed_at = None
    else:
        raise ValidationError("response must be confirm or decline", field="response")

    await db.flush()
    log.info("Assignment %s %s by %s", assignment.id, RESPONSE_ACTIONS[response], actor_id)
    return assignment


async def check_in(db: AsyncSession, assignment: DutyAssignment, actor_id: str) -> DutyAssignment:
    _ensure_officer(assignment, actor_id)
    if assignment.status != AssignmentStatus.CONFIRMED:
        raise InvalidStateTransition("Only confirmed assignments can check in", status=assignment.status.value)
    if assignment.check_in_at is not None:
        raise InvalidStateTransition("Already checked in", status=assignment.status.value)

    assignment.check_in_at = utcnow()
    await db.flush()
    return assignment


async def check_out(db: AsyncSession, assignment: DutyAssignment, actor_id: str) -> DutyAssignment:
    _ensure_officer(assignment, actor_id)
    if assignment.status != AssignmentStatus.CONFIRMED:
        raise InvalidStateTransition("Only confirmed assignments can check out", status=assignment.status.value)
    if assignment.check_in_at is None:
        raise InvalidStateTransition("Check in before checking out", status=assignment.status.value)
    if assignment.check_out_at is not None:
        raise InvalidStateTransition("Already checked out", status=assignment.status.value)

    assignment.check_out_at = utcnow()
    assignment.status = AssignmentStatus.COMPLETED
    await db.flush()
    return assignment
