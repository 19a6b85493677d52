"""
Duty scheduling API routes (organization scoped, mounted under /organizations).
"""
import calendar
import datetime as dt
from typing import Annotated, Dict, List, Optional
from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import AuthorizationError, NotFoundError, ValidationError
from app.features.activity.logger import log_activity
from app.features.activity.models import Subject, SubjectKind
from app.features.duty import scheduling, statistics, swaps
from app.features.duty.models import (
    FILLED_STATUSES,
    AssignmentStatus,
    DutyAssignment,
    DutyAvailability,
    DutySchedule,
    DutyTemplate,
    ScheduleStatus,
    SwapStatus,
)
from app.features.duty.schemas import (
    AssignmentRespondRequest,
    AssignOfficersRequest,
    AvailabilityCreate,
    AvailabilityResponse,
    AvailabilityUpdate,
    CalendarDay,
    DuplicateScheduleRequest,
    DutyAssignmentResponse,
    DutyAssignmentUpdate,
    DutyScheduleCreate,
    DutyScheduleCreated,
    DutyScheduleResponse,
    DutyScheduleUpdate,
    MemberStatistics,
    MyAssignment,
    OrganizationStatistics,
    SwapAcceptRequest,
    SwapCreate,
    SwapDeclineRequest,
    SwapOutcome,
    SwapResponse,
    SwapReviewRequest,
    TemplateCreate,
    TemplateResponse,
    TemplateUpdate,
)
from app.features.permissions.dependencies import OrgActor, get_org_member, require_permission


router = APIRouter()


def _log(
    background_tasks: BackgroundTasks,
    actor: OrgActor,
    action: str,
    subject: Subject,
    metadata: Optional[dict] = None,
    description: Optional[str] = None,
) -> None:
    background_tasks.add_task(
        log_activity,
        actor.organization_id,
        action,
        user_id=actor.id,
        subject=subject,
        metadata=metadata,
        description=description,
    )


async def _schedule_responses(db: AsyncSession, schedules: List[DutySchedule]) -> List[DutyScheduleResponse]:
    by_schedule: Dict[str, List[DutyAssignment]] = {}
    for assignment in await scheduling.list_assignments(db, [s.id for s in schedules]):
        by_schedule.setdefault(assignment.duty_schedule_id, []).append(assignment)

    responses = []
    for schedule in schedules:
        assignments = by_schedule.get(schedule.id, [])
        response = DutyScheduleResponse.model_validate(schedule)
        response.assignments = [DutyAssignmentResponse.model_validate(a) for a in assignments]
        response.assigned_count = sum(1 for a in assignments if a.status in FILLED_STATUSES)
        responses.append(response)
    return responses


async def _schedule_response(db: AsyncSession, schedule: DutySchedule) -> DutyScheduleResponse:
    return (await _schedule_responses(db, [schedule]))[0]


# ============================================================================
# Schedules
# ============================================================================

@router.get("/{organization_id}/duty-schedules", response_model=List[DutyScheduleResponse])
async def list_schedules(
    actor: Annotated[OrgActor, Depends(require_permission("view_duty_schedules"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None,
    status_filter: Optional[ScheduleStatus] = None,
    mine: bool = False,
    skip: int = 0,
    limit: int = Query(100, le=500),
):
    query = select(DutySchedule).where(DutySchedule.organization_id == actor.organization_id)
    if start_date:
        query = query.where(DutySchedule.date >= start_date)
    if end_date:
        query = query.where(DutySchedule.date <= end_date)
    if status_filter:
        query = query.where(DutySchedule.status == status_filter)
    if mine:
        query = query.where(
            DutySchedule.id.in_(
                select(DutyAssignment.duty_schedule_id).where(DutyAssignment.officer_id == actor.id)
            )
        )

    result = await db.execute(
        query.order_by(DutySchedule.date.desc(), DutySchedule.start_time).offset(skip).limit(limit)
    )
    return await _schedule_responses(db, list(result.scalars().all()))


@router.get("/{organization_id}/duty-schedules/calendar", response_model=List[CalendarDay])
async def get_calendar(
    actor: Annotated[OrgActor, Depends(require_permission("view_duty_schedules"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    year: Optional[int] = Query(None, ge=1970, le=9999),
    month: Optional[int] = Query(None, ge=1, le=12),
):
    """Schedules of one month grouped by date (defaults to the current month)."""
    current = scheduling.today()
    year = year or current.year
    month = month or current.month
    first = dt.date(year, month, 1)
    last = dt.date(year, month, calendar.monthrange(year, month)[1])

    result = await db.execute(
        select(DutySchedule)
        .where(
            and_(
                DutySchedule.organization_id == actor.organization_id,
                DutySchedule.date >= first,
                DutySchedule.date <= last,
            )
        )
        .order_by(DutySchedule.date, DutySchedule.start_time)
    )
    days: Dict[dt.date, List[DutyScheduleResponse]] = {}
    for response in await _schedule_responses(db, list(result.scalars().all())):
        days.setdefault(response.date, []).append(response)
    return [CalendarDay(date=day, schedules=items) for day, items in days.items()]


@router.post("/{organization_id}/duty-schedules", response_model=DutyScheduleCreated, status_code=status.HTTP_201_CREATED)
async def create_schedule(
    schedule_data: DutyScheduleCreate,
    background_tasks: BackgroundTasks,
    actor: Annotated[OrgActor, Depends(require_permission("create_duty_schedules"))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Create a schedule; recurring schedules also create their draft occurrences."""
    data = schedule_data.model_dump()
    data["status"] = ScheduleStatus(data["status"])
    schedule, occurrences = await scheduling.create_schedule(db, actor.organization_id, actor.id, **data)
    await db.commit()

    _log(
        background_tasks, actor, "duty.schedule.created",
        Subject(SubjectKind.DUTY_SCHEDULE, schedule.id),
        {"title": schedule.title, "date": schedule.date.isoformat(), "occurrences": len(occurrences)},
        f"Created duty schedule: {schedule.title}",
    )
    responses = await _schedule_responses(db, [schedule, *occurrences])
    created = DutyScheduleCreated(**responses[0].model_dump())
    created.occurrences = responses[1:]
    return created


@router.get("/{organization_id}/duty-schedules/{schedule_id}", response_model=DutyScheduleResponse)
async def get_schedule(
    schedule_id: str,
    actor: Annotated[OrgActor, Depends(require_permission("view_duty_schedules"))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    schedule = await scheduling.get_schedule(db, actor.organization_id, schedule_id)
    return await _schedule_response(db, schedule)


@router.patch("/{organization_id}/duty-schedules/{schedule_id}", response_model=DutyScheduleResponse)
async def update_schedule(
    schedule_id: str,
    update_data: DutyScheduleUpdate,
    background_tasks: BackgroundTasks,
    actor: Annotated[OrgActor, Depends(require_permission("edit_duty_schedules"))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    schedule = await scheduling.get_schedule(db, actor.organization_id, schedule_id, lock=True)
    changes = update_data.model_dump(exclude_unset=True, exclude_none=True)
    await scheduling.update_schedule(db, schedule, changes)
    await db.commit()

    _log(
        background_tasks, actor, "duty.schedule.updated",
        Subject(SubjectKind.DUTY_SCHEDULE, schedule.id),
        {"fields": sorted(changes)},
    )
    return await _schedule_response(db, schedule)


@router.delete("/{organization_id}/duty-schedules/{schedule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_schedule(
    schedule_id: str,
    background_tasks: BackgroundTasks,
    actor: Annotated[OrgActor, Depends(require_permission("delete_duty_schedules"))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    schedule = await scheduling.get_schedule(db, actor.organization_id, schedule_id, lock=True)
    title, date = schedule.title, schedule.date
    await scheduling.delete_schedule(db, schedule)
    await db.commit()

    _log(
        background_tasks, actor, "duty.schedule.deleted",
        Subject(SubjectKind.DUTY_SCHEDULE, schedule_id),
        {"title": title, "date": date.isoformat()},
    )


@router.post(
    "/{organization_id}/duty-schedules/{schedule_id}/duplicate",
    response_model=DutyScheduleResponse,
    status_code=status.HTTP_201_CREATED,
)
async def duplicate_schedule(
    schedule_id: str,
    body: DuplicateScheduleRequest,
    background_tasks: BackgroundTasks,
    actor: Annotated[OrgActor, Depends(require_permission("create_duty_schedules"))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    schedule = await scheduling.get_schedule(db, actor.organization_id, schedule_id)
    copy = await scheduling.duplicate_schedule(db, schedule, body.date, actor.id, body.copy_assignments)
    await db.commit()

    _log(
        background_tasks, actor, "duty.schedule.duplicated",
        Subject(SubjectKind.DUTY_SCHEDULE, copy.id),
        {"source_id": schedule.id, "date": body.date.isoformat(), "copy_assignments": body.copy_assignments},
    )
    return await _schedule_response(db, copy)


# ============================================================================
# Assignments
# ============================================================================

@router.post(
    "/{organization_id}/duty-schedules/{schedule_id}/assignments",
    response_model=List[DutyAssignmentResponse],
    status_code=status.HTTP_201_CREATED,
)
async def assign_officers(
    schedule_id: str,
    body: AssignOfficersRequest,
    background_tasks: BackgroundTasks,
    actor: Annotated[OrgActor, Depends(require_permission("assign_duties"))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    schedule = await scheduling.get_schedule(db, actor.organization_id, schedule_id, lock=True)
    assignments = await scheduling.assign_officers(db, schedule, body.officer_ids, actor.id, body.notes)
    await db.commit()

    _log(
        background_tasks, actor, "duty.assignment.assigned",
        Subject(SubjectKind.DUTY_SCHEDULE, schedule.id),
        {"officer_ids": [a.officer_id for a in assignments]},
    )
    return assignments


@router.get("/{organization_id}/duty-assignments/my", response_model=List[MyAssignment])
async def my_assignments(
    actor: Annotated[OrgActor, Depends(require_permission("view_own_assignments"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    status_filter: Optional[AssignmentStatus] = None,
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None,
):
    query = (
        select(DutyAssignment, DutySchedule)
        .join(DutySchedule, DutySchedule.id == DutyAssignment.duty_schedule_id)
        .where(
            and_(
                DutySchedule.organization_id == actor.organization_id,
                DutyAssignment.officer_id == actor.id,
            )
        )
    )
    if status_filter:
        query = query.where(DutyAssignment.status == status_filter)
    if start_date:
        query = query.where(DutySchedule.date >= start_date)
    if end_date:
        query = query.where(DutySchedule.date <= end_date)

    result = await db.execute(query.order_by(DutySchedule.date, DutySchedule.start_time))
    return [
        MyAssignment(
            **DutyAssignmentResponse.model_validate(assignment).model_dump(),
            schedule=DutyScheduleResponse.model_validate(schedule),
        )
        for assignment, schedule in result.all()
    ]


@router.patch("/{organization_id}/duty-assignments/{assignment_id}", response_model=DutyAssignmentResponse)
async def update_assignment(
    assignment_id: str,
    body: DutyAssignmentUpdate,
    background_tasks: BackgroundTasks,
    actor: Annotated[OrgActor, Depends(require_permission("assign_duties"))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Edit notes or apply a scheduler status change (including no_show)."""
    assignment, _schedule = await scheduling.get_assignment(db, actor.organization_id, assignment_id)
    previous = assignment.status
    await scheduling.update_assignment(
        db, assignment, body.status, body.notes, notes_set="notes" in body.model_fields_set
    )
    await db.commit()

    _log(
        background_tasks, actor, "duty.assignment.updated",
        Subject(SubjectKind.DUTY_ASSIGNMENT, assignment.id),
        {"old_status": previous.value, "new_status": assignment.status.value},
    )
    return assignment


@router.delete("/{organization_id}/duty-assignments/{assignment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_assignment(
    assignment_id: str,
    background_tasks: BackgroundTasks,
    actor: Annotated[OrgActor, Depends(require_permission("assign_duties"))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    assignment, schedule = await scheduling.get_assignment(db, actor.organization_id, assignment_id)
    officer_id = assignment.officer_id
    await scheduling.remove_assignment(db, assignment)
    await db.commit()

    _log(
        background_tasks, actor, "duty.assignment.removed",
        Subject(SubjectKind.DUTY_SCHEDULE, schedule.id),
        {"officer_id": officer_id},
    )


@router.post("/{organization_id}/duty-assignments/{assignment_id}/respond", response_model=DutyAssignmentResponse)
async def respond_to_assignment(
    assignment_id: str,
    body: AssignmentRespondRequest,
    background_tasks: BackgroundTasks,
    actor: Annotated[OrgActor, Depends(require_permission("respond_to_assignment"))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    assignment, _schedule = await scheduling.get_assignment(db, actor.organization_id, assignment_id)
    await scheduling.respond_to_assignment(db, assignment, actor.id, body.response)
    await db.commit()

    _log(
        background_tasks, actor, f"duty.assignment.{scheduling.RESPONSE_ACTIONS[body.response]}",
        Subject(SubjectKind.DUTY_ASSIGNMENT, assignment.id),
    )
    return assignment


@router.post("/{organization_id}/duty-assignments/{assignment_id}/check-in", response_model=DutyAssignmentResponse)
async def check_in(
    assignment_id: str,
    background_tasks: BackgroundTasks,
    actor: Annotated[OrgActor, Depends(require_permission("check_in_duty"))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    assignment, _schedule = await scheduling.get_assignment(db, actor.organization_id, assignment_id)
    await scheduling.check_in(db, assignment, actor.id)
    await db.commit()

    _log(background_tasks, actor, "duty.assignment.checked_in", Subject(SubjectKind.DUTY_ASSIGNMENT, assignment.id))
    return assignment


@router.post("/{organization_id}/duty-assignments/{assignment_id}/check-out", response_model=DutyAssignmentResponse)
async def check_out(
    assignment_id: str,
    background_tasks: BackgroundTasks,
    actor: Annotated[OrgActor, Depends(require_permission("check_out_duty"))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    assignment, _schedule = await scheduling.get_assignment(db, actor.organization_id, assignment_id)
    await scheduling.check_out(db, assignment, actor.id)
    await db.commit()

    _log(background_tasks, actor, "duty.assignment.checked_out", Subject(SubjectKind.DUTY_ASSIGNMENT, assignment.id))
    return assignment


# ============================================================================
# Swaps
# ============================================================================

@router.post(
    "/{organization_id}/duty-assignments/{assignment_id}/swaps",
    response_model=SwapResponse,
    status_code=status.HTTP_201_CREATED,
)
async def request_swap(
    assignment_id: str,
    body: SwapCreate,
    background_tasks: BackgroundTasks,
    actor: Annotated[OrgActor, Depends(require_permission("request_duty_swap"))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    assignment, schedule = await scheduling.get_assignment(db, actor.organization_id, assignment_id)
    swap = await swaps.create_swap(
        db, actor.organization_id, assignment, schedule, actor.id, body.reason, body.to_officer_id
    )
    await db.commit()

    _log(
        background_tasks, actor, "duty.swap.requested",
        Subject(SubjectKind.DUTY_SWAP_REQUEST, swap.id),
        {
            "duty_schedule_id": schedule.id,
            "duty_title": schedule.title,
            "duty_date": schedule.date.isoformat(),
            "to_officer_id": body.to_officer_id,
        },
    )
    return swap


@router.get("/{organization_id}/duty-swaps", response_model=List[SwapResponse])
async def list_swaps(
    actor: Annotated[OrgActor, Depends(get_org_member)],
    db: Annotated[AsyncSession, Depends(get_db)],
    status_filter: Optional[SwapStatus] = None,
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None,
):
    """Schedulers see every swap; members see their own, those aimed at them and open ones."""
    return await swaps.list_swaps(
        db,
        actor.organization_id,
        actor.id,
        see_all=actor.can("approve_duty_swaps"),
        status=status_filter,
        start_date=start_date,
        end_date=end_date,
    )


@router.post("/{organization_id}/duty-swaps/{swap_id}/accept", response_model=SwapOutcome)
async def accept_swap(
    swap_id: str,
    body: SwapAcceptRequest,
    background_tasks: BackgroundTasks,
    actor: Annotated[OrgActor, Depends(require_permission("request_duty_swap"))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    swap, assignment = await swaps.accept_swap(db, actor.organization_id, swap_id, actor.id, body.notes)
    await db.commit()

    _log(
        background_tasks, actor, "duty.swap.accepted",
        Subject(SubjectKind.DUTY_SWAP_REQUEST, swap.id),
        {"from_officer_id": swap.from_officer_id, "duty_assignment_id": assignment.id},
    )
    return SwapOutcome(
        swap=SwapResponse.model_validate(swap),
        assignment=DutyAssignmentResponse.model_validate(assignment),
    )


@router.post("/{organization_id}/duty-swaps/{swap_id}/decline", response_model=SwapResponse)
async def decline_swap(
    swap_id: str,
    body: SwapDeclineRequest,
    background_tasks: BackgroundTasks,
    actor: Annotated[OrgActor, Depends(require_permission("request_duty_swap"))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    swap = await swaps.decline_swap(db, actor.organization_id, swap_id, actor.id, body.reason)
    await db.commit()

    _log(
        background_tasks, actor, "duty.swap.declined_by_member",
        Subject(SubjectKind.DUTY_SWAP_REQUEST, swap.id),
        {"reason": body.reason},
    )
    return swap


@router.post("/{organization_id}/duty-swaps/{swap_id}/cancel", response_model=SwapResponse)
async def cancel_swap(
    swap_id: str,
    background_tasks: BackgroundTasks,
    actor: Annotated[OrgActor, Depends(require_permission("request_duty_swap"))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    swap = await swaps.cancel_swap(db, actor.organization_id, swap_id, actor.id)
    await db.commit()

    _log(background_tasks, actor, "duty.swap.cancelled", Subject(SubjectKind.DUTY_SWAP_REQUEST, swap.id))
    return swap


@router.post("/{organization_id}/duty-swaps/{swap_id}/review", response_model=SwapOutcome)
async def review_swap(
    swap_id: str,
    body: SwapReviewRequest,
    background_tasks: BackgroundTasks,
    actor: Annotated[OrgActor, Depends(require_permission("approve_duty_swaps"))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    swap, assignment, action = await swaps.review_swap(
        db, actor.organization_id, swap_id, actor.id, body.action == "approve", body.review_notes
    )
    await db.commit()

    _log(
        background_tasks, actor, action,
        Subject(SubjectKind.DUTY_SWAP_REQUEST, swap.id),
        {"action": body.action, "from_officer_id": swap.from_officer_id, "to_officer_id": swap.to_officer_id},
    )
    return SwapOutcome(
        swap=SwapResponse.model_validate(swap),
        assignment=DutyAssignmentResponse.model_validate(assignment) if assignment else None,
    )


# ============================================================================
# Availability
# ============================================================================

async def _own_availability(db: AsyncSession, actor: OrgActor, availability_id: str) -> DutyAvailability:
    availability = await db.get(DutyAvailability, availability_id)
    if availability is None or availability.organization_id != actor.organization_id:
        raise NotFoundError("Availability not found")
    if availability.user_id != actor.id:
        raise AuthorizationError("You can only change your own availability")
    return availability


@router.get("/{organization_id}/duty-availability", response_model=List[AvailabilityResponse])
async def list_availability(
    actor: Annotated[OrgActor, Depends(require_permission("manage_own_availability"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    everyone: bool = False,
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None,
):
    """The caller's entries, or the whole organization's with view_duty_schedules."""
    if everyone and not actor.can("view_duty_schedules"):
        raise AuthorizationError("Permission denied: view_duty_schedules", required_permission="view_duty_schedules")

    query = select(DutyAvailability).where(DutyAvailability.organization_id == actor.organization_id)
    if not everyone:
        query = query.where(DutyAvailability.user_id == actor.id)
    if start_date:
        query = query.where(DutyAvailability.date >= start_date)
    if end_date:
        query = query.where(DutyAvailability.date <= end_date)

    result = await db.execute(query.order_by(DutyAvailability.date, DutyAvailability.start_time))
    return result.scalars().all()


@router.post("/{organization_id}/duty-availability", response_model=AvailabilityResponse, status_code=status.HTTP_201_CREATED)
async def create_availability(
    body: AvailabilityCreate,
    background_tasks: BackgroundTasks,
    actor: Annotated[OrgActor, Depends(require_permission("manage_own_availability"))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    scheduling.validate_future_date(body.date)
    if body.start_time and body.end_time:
        scheduling.validate_times(body.start_time, body.end_time)

    availability = DutyAvailability(
        organization_id=actor.organization_id,
        user_id=actor.id,
        **body.model_dump(),
    )
    db.add(availability)
    await db.commit()

    _log(
        background_tasks, actor, "duty.availability.created",
        Subject(SubjectKind.DUTY_AVAILABILITY, availability.id),
        {"date": body.date.isoformat(), "type": body.availability_type.value},
    )
    return availability


@router.patch("/{organization_id}/duty-availability/{availability_id}", response_model=AvailabilityResponse)
async def update_availability(
    availability_id: str,
    body: AvailabilityUpdate,
    actor: Annotated[OrgActor, Depends(require_permission("manage_own_availability"))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    availability = await _own_availability(db, actor, availability_id)
    changes = body.model_dump(exclude_unset=True)
    start = changes.get("start_time", availability.start_time)
    end = changes.get("end_time", availability.end_time)
    if start and end:
        scheduling.validate_times(start, end)

    for field, value in changes.items():
        setattr(availability, field, value)
    await db.commit()
    return availability


@router.delete("/{organization_id}/duty-availability/{availability_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_availability(
    availability_id: str,
    actor: Annotated[OrgActor, Depends(require_permission("manage_own_availability"))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    availability = await _own_availability(db, actor, availability_id)
    await db.delete(availability)
    await db.commit()


# ============================================================================
# Templates
# ============================================================================

async def _template(db: AsyncSession, actor: OrgActor, template_id: str) -> DutyTemplate:
    template = await db.get(DutyTemplate, template_id)
    if template is None or template.organization_id != actor.organization_id:
        raise NotFoundError("Duty template not found")
    return template


def _check_days(days: Optional[List[int]]) -> None:
    if days and any(d < 0 or d > 6 for d in days):
        raise ValidationError("default_days must be between 0 and 6", field="default_days")


@router.get("/{organization_id}/duty-templates", response_model=List[TemplateResponse])
async def list_templates(
    actor: Annotated[OrgActor, Depends(require_permission("view_duty_schedules"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    include_inactive: bool = False,
):
    query = select(DutyTemplate).where(DutyTemplate.organization_id == actor.organization_id)
    if not include_inactive:
        query = query.where(DutyTemplate.is_active == True)  # noqa: E712
    result = await db.execute(query.order_by(DutyTemplate.name))
    return result.scalars().all()


@router.post("/{organization_id}/duty-templates", response_model=TemplateResponse, status_code=status.HTTP_201_CREATED)
async def create_template(
    body: TemplateCreate,
    background_tasks: BackgroundTasks,
    actor: Annotated[OrgActor, Depends(require_permission("manage_duty_templates"))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    scheduling.validate_times(body.start_time, body.end_time)
    _check_days(body.default_days)

    template = DutyTemplate(organization_id=actor.organization_id, created_by_id=actor.id, **body.model_dump())
    db.add(template)
    await db.commit()

    _log(
        background_tasks, actor, "duty.template.created",
        Subject(SubjectKind.DUTY_TEMPLATE, template.id),
        {"name": template.name},
    )
    return template


@router.patch("/{organization_id}/duty-templates/{template_id}", response_model=TemplateResponse)
async def update_template(
    template_id: str,
    body: TemplateUpdate,
    actor: Annotated[OrgActor, Depends(require_permission("manage_duty_templates"))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    template = await _template(db, actor, template_id)
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    scheduling.validate_times(
        changes.get("start_time", template.start_time),
        changes.get("end_time", template.end_time),
    )
    _check_days(changes.get("default_days"))

    for field, value in changes.items():
        setattr(template, field, value)
    await db.commit()
    return template


@router.delete("/{organization_id}/duty-templates/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_template(
    template_id: str,
    background_tasks: BackgroundTasks,
    actor: Annotated[OrgActor, Depends(require_permission("manage_duty_templates"))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    template = await _template(db, actor, template_id)
    await db.delete(template)
    await db.commit()

    _log(background_tasks, actor, "duty.template.deleted", Subject(SubjectKind.DUTY_TEMPLATE, template_id))


# ============================================================================
# Statistics
# ============================================================================

@router.get("/{organization_id}/duty-statistics", response_model=OrganizationStatistics)
async def organization_statistics(
    actor: Annotated[OrgActor, Depends(require_permission("view_statistics"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None,
):
    return await statistics.organization_statistics(db, actor.organization_id, start_date, end_date)


@router.get("/{organization_id}/duty-statistics/me", response_model=MemberStatistics)
async def member_statistics(
    actor: Annotated[OrgActor, Depends(require_permission("view_own_statistics"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None,
):
    return await statistics.member_statistics(db, actor.organization_id, actor.id, start_date, end_date)
