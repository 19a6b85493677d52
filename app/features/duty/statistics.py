"""
Read-only duty statistics.

All rates are percentages rounded to one decimal, 0 when nothing is
counted. Durations come from the schedule's start and end times.
"""
import calendar
import datetime as dt
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ValidationError
from app.features.duty.models import (
    FILLED_STATUSES,
    AssignmentStatus,
    DutyAssignment,
    DutySchedule,
)
from app.features.duty.recurrence import add_months
from app.features.duty.scheduling import list_assignments, today
from app.features.users.models import User


def rate(part: float, whole: float) -> float:
    return round(part / whole * 100, 1) if whole else 0


def duration_hours(start_time: dt.time, end_time: dt.time) -> float:
    start = dt.datetime.combine(dt.date.min, start_time)
    end = dt.datetime.combine(dt.date.min, end_time)
    return (end - start).total_seconds() / 3600


def current_month_range() -> Tuple[dt.date, dt.date]:
    first = today().replace(day=1)
    last = first.replace(day=calendar.monthrange(first.year, first.month)[1])
    return first, last


def last_three_months_range() -> Tuple[dt.date, dt.date]:
    end = today()
    return add_months(end, -3), end


def check_range(start_date: dt.date, end_date: dt.date) -> None:
    if end_date < start_date:
        raise ValidationError("end_date must not be before start_date", field="end_date")


def _fill(schedules: Iterable[DutySchedule], by_schedule: Dict[str, List[DutyAssignment]]) -> Tuple[int, int]:
    required = filled = 0
    for schedule in schedules:
        required += schedule.required_officers
        filled += sum(1 for a in by_schedule.get(schedule.id, []) if a.status in FILLED_STATUSES)
    return filled, required


def time_series(
    schedules: List[DutySchedule],
    by_schedule: Dict[str, List[DutyAssignment]],
    start_date: dt.date,
    end_date: dt.date,
) -> List[Dict[str, Any]]:
    """Daily buckets, or weekly buckets ``[start, start + 7)`` for ranges longer than 30 days."""
    step = dt.timedelta(days=7 if (end_date - start_date).days > 30 else 1)
    points = []
    bucket_start = start_date
    while bucket_start <= end_date:
        bucket_end = bucket_start + step
        in_bucket = [s for s in schedules if bucket_start <= s.date < bucket_end]
        assignments = [a for s in in_bucket for a in by_schedule.get(s.id, [])]
        completed = sum(1 for a in assignments if a.status == AssignmentStatus.COMPLETED)
        filled, required = _fill(in_bucket, by_schedule)
        points.append({
            "date": bucket_start.strftime("%b %d"),
            "completion_rate": rate(completed, len(assignments)),
            "fill_rate": rate(filled, required),
        })
        bucket_start = bucket_end
    return points


async def _schedules_in_range(
    db: AsyncSession, organization_id: str, start_date: dt.date, end_date: dt.date
) -> List[DutySchedule]:
    result = await db.execute(
        select(DutySchedule)
        .where(
            and_(
                DutySchedule.organization_id == organization_id,
                DutySchedule.date >= start_date,
                DutySchedule.date <= end_date,
            )
        )
        .order_by(DutySchedule.date, DutySchedule.start_time)
    )
    return list(result.scalars().all())


async def organization_statistics(
    db: AsyncSession,
    organization_id: str,
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None,
) -> Dict[str, Any]:
    if start_date is None or end_date is None:
        default_start, default_end = current_month_range()
        start_date = start_date or default_start
        end_date = end_date or default_end
    check_range(start_date, end_date)

    schedules = await _schedules_in_range(db, organization_id, start_date, end_date)
    assignments = await list_assignments(db, [s.id for s in schedules])
    by_schedule: Dict[str, List[DutyAssignment]] = {}
    for assignment in assignments:
        by_schedule.setdefault(assignment.duty_schedule_id, []).append(assignment)

    counts = Counter(a.status for a in assignments)
    total = len(assignments)
    filled, required = _fill(schedules, by_schedule)

    officer_ids = sorted({a.officer_id for a in assignments})
    names: Dict[str, str] = {}
    if officer_ids:
        result = await db.execute(select(User.id, User.name).where(User.id.in_(officer_ids)))
        names = {user_id: name for user_id, name in result.all()}

    officer_stats = []
    for officer_id in officer_ids:
        mine = Counter(a.status for a in assignments if a.officer_id == officer_id)
        officer_total = sum(mine.values())
        officer_stats.append({
            "officer_id": officer_id,
            "officer_name": names.get(officer_id),
            "total": officer_total,
            "confirmed": mine[AssignmentStatus.CONFIRMED],
            "completed": mine[AssignmentStatus.COMPLETED],
            "declined": mine[AssignmentStatus.DECLINED],
            "no_show": mine[AssignmentStatus.NO_SHOW],
            "completion_rate": rate(mine[AssignmentStatus.COMPLETED], officer_total),
        })
    officer_stats.sort(key=lambda s: s["completion_rate"], reverse=True)

    durations = [duration_hours(s.start_time, s.end_time) for s in schedules]
    schedule_counts = Counter(s.status.value for s in schedules)

    return {
        "start_date": start_date,
        "end_date": end_date,
        "total_schedules": len(schedules),
        "schedules_by_status": dict(schedule_counts),
        "total_assignments": total,
        "assigned_assignments": counts[AssignmentStatus.ASSIGNED],
        "confirmed_assignments": counts[AssignmentStatus.CONFIRMED],
        "completed_assignments": counts[AssignmentStatus.COMPLETED],
        "declined_assignments": counts[AssignmentStatus.DECLINED],
        "no_show_assignments": counts[AssignmentStatus.NO_SHOW],
        "fill_rate": rate(filled, required),
        "officers_active": len(officer_stats),
        "avg_duty_duration": round(sum(durations) / len(durations), 1) if durations else 0,
        "confirmation_rate": rate(counts[AssignmentStatus.CONFIRMED], total),
        "completion_rate": rate(counts[AssignmentStatus.COMPLETED], total),
        "officer_stats": officer_stats,
        "time_series": time_series(schedules, by_schedule, start_date, end_date),
    }


async def member_statistics(
    db: AsyncSession,
    organization_id: str,
    user_id: str,
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None,
) -> Dict[str, Any]:
    if start_date is None or end_date is None:
        default_start, default_end = last_three_months_range()
        start_date = start_date or default_start
        end_date = end_date or default_end
    check_range(start_date, end_date)

    result = await db.execute(
        select(DutyAssignment, DutySchedule)
        .join(DutySchedule, DutySchedule.id == DutyAssignment.duty_schedule_id)
        .where(
            and_(
                DutySchedule.organization_id == organization_id,
                DutySchedule.date >= start_date,
                DutySchedule.date <= end_date,
                DutyAssignment.officer_id == user_id,
            )
        )
    )
    rows: List[Tuple[DutyAssignment, DutySchedule]] = [(a, s) for a, s in result.all()]

    counts = Counter(a.status for a, _ in rows)
    total = len(rows)
    completed = counts[AssignmentStatus.COMPLETED]
    no_show = counts[AssignmentStatus.NO_SHOW]

    hours = sum(
        duration_hours(s.start_time, s.end_time)
        for a, s in rows if a.status == AssignmentStatus.COMPLETED
    )
    reliability = max(0, min(100, rate(completed - no_show, total)))

    monthly = []
    month = start_date.replace(day=1)
    while month <= end_date:
        in_month = [a for a, s in rows if (s.date.year, s.date.month) == (month.year, month.month)]
        month_completed = sum(1 for a in in_month if a.status == AssignmentStatus.COMPLETED)
        monthly.append({
            "month": month.strftime("%b %Y"),
            "total": len(in_month),
            "completed": month_completed,
            "no_show": sum(1 for a in in_month if a.status == AssignmentStatus.NO_SHOW),
            "completion_rate": rate(month_completed, len(in_month)),
        })
        month = add_months(month, 1)

    recent = sorted(rows, key=lambda row: (row[1].date, row[1].start_time), reverse=True)[:10]

    return {
        "start_date": start_date,
        "end_date": end_date,
        "total_assignments": total,
        "confirmed": counts[AssignmentStatus.CONFIRMED],
        "completed": completed,
        "declined": counts[AssignmentStatus.DECLINED],
        "no_show": no_show,
        "pending": counts[AssignmentStatus.ASSIGNED],
        "hours_worked": round(hours, 1),
        "completion_rate": rate(completed, total),
        "reliability_score": reliability,
        "monthly_breakdown": monthly,
        "recent_duties": [
            {
                "id": a.id,
                "duty_schedule_id": s.id,
                "title": s.title,
                "date": s.date,
                "start_time": s.start_time,
                "end_time": s.end_time,
                "status": a.status.value,
            }
            for a, s in recent
        ],
    }
