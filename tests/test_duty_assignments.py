"""
Schedules and the assignment lifecycle.
"""
import datetime as dt

import pytest

from app.core.errors import AuthorizationError, ConflictError, InvalidStateTransition, ValidationError
from app.features.duty import scheduling
from app.features.duty.models import AssignmentStatus, RecurrenceType, ScheduleStatus


@pytest.fixture
async def roster(db, make):
    admin = await make.user("Admin")
    org = await make.organization(admin)
    alice = await make.member(org, await make.user("Alice"))
    bob = await make.member(org, await make.user("Bob"))
    return org, admin, alice, bob


async def _schedule(db, roster, date, **fields):
    org, admin, *_ = roster
    fields.setdefault("title", "Night patrol")
    schedule, occurrences = await scheduling.create_schedule(
        db, org.id, admin.id,
        date=date, start_time=dt.time(20, 0), end_time=dt.time(23, 30),
        **fields,
    )
    return schedule, occurrences


async def test_create_schedule_with_officers(db, roster, future_date):
    _, _, alice, bob = roster
    schedule, occurrences = await _schedule(db, roster, future_date, officer_ids=[alice.id, bob.id, alice.id])

    assert schedule.status == ScheduleStatus.DRAFT
    assert occurrences == []
    assignments = await scheduling.list_assignments(db, [schedule.id])
    assert sorted(a.officer_id for a in assignments) == sorted([alice.id, bob.id])
    assert all(a.status == AssignmentStatus.ASSIGNED for a in assignments)


async def test_recurring_schedule_copies_assignments(db, roster, future_date):
    _, _, alice, _ = roster
    schedule, occurrences = await _schedule(
        db, roster, future_date,
        status=ScheduleStatus.PUBLISHED,
        recurrence_type=RecurrenceType.DAILY,
        recurrence_end_date=future_date + dt.timedelta(days=2),
        officer_ids=[alice.id],
    )

    assert [o.date for o in occurrences] == [future_date + dt.timedelta(days=n) for n in (1, 2)]
    assert all(o.status == ScheduleStatus.DRAFT for o in occurrences)
    assert schedule.status == ScheduleStatus.PUBLISHED
    copied = await scheduling.list_assignments(db, [o.id for o in occurrences])
    assert [a.officer_id for a in copied] == [alice.id, alice.id]


async def test_schedule_validation(db, roster, future_date):
    with pytest.raises(ValidationError):
        await _schedule(db, roster, scheduling.today() - dt.timedelta(days=1))
    with pytest.raises(ValidationError):
        await scheduling.create_schedule(
            db, roster[0].id, roster[1].id, title="Backwards",
            date=future_date, start_time=dt.time(10, 0), end_time=dt.time(9, 0),
        )
    with pytest.raises(ValidationError):
        await _schedule(db, roster, future_date, recurrence_type=RecurrenceType.WEEKLY)


async def test_non_member_cannot_be_assigned(db, make, roster, future_date):
    stranger = await make.user("Stranger")
    with pytest.raises(ValidationError) as exc:
        await _schedule(db, roster, future_date, officer_ids=[stranger.id])
    assert exc.value.details["officer_ids"] == [stranger.id]


async def test_duplicate_assignment_conflicts(db, roster, future_date):
    _, admin, alice, _ = roster
    schedule, _ = await _schedule(db, roster, future_date, officer_ids=[alice.id])

    with pytest.raises(ConflictError):
        await scheduling.assign_officers(db, schedule, [alice.id], admin.id)


async def test_officer_lifecycle(db, roster, future_date):
    _, _, alice, _ = roster
    schedule, _ = await _schedule(db, roster, future_date, officer_ids=[alice.id])
    [assignment] = await scheduling.list_assignments(db, [schedule.id])

    with pytest.raises(InvalidStateTransition):
        await scheduling.check_in(db, assignment, alice.id)

    await scheduling.respond_to_assignment(db, assignment, alice.id, "confirm")
    assert assignment.status == AssignmentStatus.CONFIRMED
    assert assignment.confirmed_at is not None

    with pytest.raises(InvalidStateTransition):
        await scheduling.check_out(db, assignment, alice.id)

    await scheduling.check_in(db, assignment, alice.id)
    with pytest.raises(InvalidStateTransition):
        await scheduling.check_in(db, assignment, alice.id)
    with pytest.raises(InvalidStateTransition):
        await scheduling.respond_to_assignment(db, assignment, alice.id, "decline")

    await scheduling.check_out(db, assignment, alice.id)
    assert assignment.status == AssignmentStatus.COMPLETED
    assert assignment.check_out_at >= assignment.check_in_at


async def test_only_assigned_officer_responds(db, roster, future_date):
    _, _, alice, bob = roster
    schedule, _ = await _schedule(db, roster, future_date, officer_ids=[alice.id])
    [assignment] = await scheduling.list_assignments(db, [schedule.id])

    with pytest.raises(AuthorizationError):
        await scheduling.respond_to_assignment(db, assignment, bob.id, "confirm")


async def test_decline_then_reassign(db, roster, future_date):
    _, _, alice, _ = roster
    schedule, _ = await _schedule(db, roster, future_date, officer_ids=[alice.id])
    [assignment] = await scheduling.list_assignments(db, [schedule.id])

    await scheduling.respond_to_assignment(db, assignment, alice.id, "decline")
    assert assignment.status == AssignmentStatus.DECLINED
    with pytest.raises(InvalidStateTransition):
        await scheduling.respond_to_assignment(db, assignment, alice.id, "confirm")

    await scheduling.update_assignment(db, assignment, status=AssignmentStatus.ASSIGNED)
    assert assignment.status == AssignmentStatus.ASSIGNED


async def test_scheduler_transitions_are_bounded(db, roster, future_date):
    _, _, alice, _ = roster
    schedule, _ = await _schedule(db, roster, future_date, officer_ids=[alice.id])
    [assignment] = await scheduling.list_assignments(db, [schedule.id])

    await scheduling.update_assignment(db, assignment, status=AssignmentStatus.NO_SHOW, notes="Absent", notes_set=True)
    assert assignment.notes == "Absent"
    with pytest.raises(InvalidStateTransition):
        await scheduling.update_assignment(db, assignment, status=AssignmentStatus.CONFIRMED)


async def test_duplicate_and_delete_schedule(db, roster, future_date):
    org, admin, alice, _ = roster
    schedule, _ = await _schedule(db, roster, future_date, officer_ids=[alice.id])

    copy = await scheduling.duplicate_schedule(
        db, schedule, future_date + dt.timedelta(days=7), admin.id, copy_assignments=True
    )
    assert copy.status == ScheduleStatus.DRAFT
    [copied] = await scheduling.list_assignments(db, [copy.id])
    assert copied.officer_id == alice.id
    assert copied.notes == f"Duplicated from {future_date.isoformat()}"

    await scheduling.delete_schedule(db, schedule)
    assert await scheduling.list_assignments(db, [schedule.id]) == []
    assert (await scheduling.get_schedule(db, org.id, copy.id)).id == copy.id


async def test_no_show_after_check_in_cannot_check_out(db, roster, future_date):
    _, _, alice, _ = roster
    schedule, _ = await _schedule(db, roster, future_date, officer_ids=[alice.id])
    [assignment] = await scheduling.list_assignments(db, [schedule.id])

    await scheduling.respond_to_assignment(db, assignment, alice.id, "confirm")
    await scheduling.check_in(db, assignment, alice.id)
    await scheduling.update_assignment(db, assignment, status=AssignmentStatus.NO_SHOW)

    with pytest.raises(InvalidStateTransition):
        await scheduling.check_out(db, assignment, alice.id)
    assert assignment.status == AssignmentStatus.NO_SHOW
    assert assignment.check_out_at is None
