"""
Pydantic schemas for duty scheduling.
"""
import datetime as dt
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

from app.features.duty.models import (
    AssignmentStatus,
    AvailabilityType,
    RecurrenceType,
    ScheduleStatus,
    SwapStatus,
)


# ============================================================================
# Schedules
# ============================================================================

class DutyScheduleCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    location: Optional[str] = Field(None, max_length=255)
    date: dt.date
    start_time: dt.time
    end_time: dt.time
    required_officers: int = Field(1, ge=1, le=50)
    status: Literal["draft", "published"] = "draft"
    recurrence_type: RecurrenceType = RecurrenceType.NONE
    recurrence_days: Optional[List[int]] = None
    recurrence_end_date: Optional[dt.date] = None
    officer_ids: List[str] = Field(default_factory=list)


class DutyScheduleUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    location: Optional[str] = Field(None, max_length=255)
    date: Optional[dt.date] = None
    start_time: Optional[dt.time] = None
    end_time: Optional[dt.time] = None
    required_officers: Optional[int] = Field(None, ge=1, le=50)
    status: Optional[ScheduleStatus] = None


class DuplicateScheduleRequest(BaseModel):
    date: dt.date
    copy_assignments: bool = False


class DutyAssignmentResponse(BaseModel):
    id: str
    duty_schedule_id: str
    officer_id: str
    status: AssignmentStatus
    confirmed_at: Optional[dt.datetime] = None
    check_in_at: Optional[dt.datetime] = None
    check_out_at: Optional[dt.datetime] = None
    notes: Optional[str] = None
    assigned_by_id: Optional[str] = None
    created_at: dt.datetime

    model_config = ConfigDict(from_attributes=True)


class DutyScheduleResponse(BaseModel):
    id: str
    organization_id: str
    title: str
    description: Optional[str] = None
    location: Optional[str] = None
    date: dt.date
    start_time: dt.time
    end_time: dt.time
    required_officers: int
    status: ScheduleStatus
    recurrence_type: RecurrenceType
    recurrence_days: Optional[List[int]] = None
    recurrence_end_date: Optional[dt.date] = None
    created_by_id: Optional[str] = None
    created_at: dt.datetime
    updated_at: dt.datetime
    assigned_count: int = 0
    assignments: List[DutyAssignmentResponse] = []

    model_config = ConfigDict(from_attributes=True)


class DutyScheduleCreated(DutyScheduleResponse):
    occurrences: List[DutyScheduleResponse] = []


class CalendarDay(BaseModel):
    date: dt.date
    schedules: List[DutyScheduleResponse]


# ============================================================================
# Assignments
# ============================================================================

class AssignOfficersRequest(BaseModel):
    officer_ids: List[str] = Field(..., min_length=1)
    notes: Optional[str] = None


class DutyAssignmentUpdate(BaseModel):
    status: Optional[AssignmentStatus] = None
    notes: Optional[str] = None


class AssignmentRespondRequest(BaseModel):
    response: Literal["confirm", "decline"]


class MyAssignment(DutyAssignmentResponse):
    schedule: DutyScheduleResponse


# ============================================================================
# Swaps
# ============================================================================

class SwapCreate(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)
    to_officer_id: Optional[str] = None


class SwapAcceptRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=500)


class SwapDeclineRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class SwapReviewRequest(BaseModel):
    action: Literal["approve", "reject"]
    review_notes: Optional[str] = Field(None, max_length=1000)


class SwapResponse(BaseModel):
    id: str
    duty_assignment_id: str
    from_officer_id: str
    to_officer_id: Optional[str] = None
    reason: str
    status: SwapStatus
    reviewed_by_id: Optional[str] = None
    reviewed_at: Optional[dt.datetime] = None
    review_notes: Optional[str] = None
    created_at: dt.datetime

    model_config = ConfigDict(from_attributes=True)


class SwapOutcome(BaseModel):
    swap: SwapResponse
    assignment: Optional[DutyAssignmentResponse] = None


# ============================================================================
# Availability and templates
# ============================================================================

class AvailabilityCreate(BaseModel):
    date: dt.date
    start_time: Optional[dt.time] = None
    end_time: Optional[dt.time] = None
    availability_type: AvailabilityType = AvailabilityType.AVAILABLE
    reason: Optional[str] = None


class AvailabilityUpdate(BaseModel):
    start_time: Optional[dt.time] = None
    end_time: Optional[dt.time] = None
    availability_type: Optional[AvailabilityType] = None
    reason: Optional[str] = None


class AvailabilityResponse(BaseModel):
    id: str
    organization_id: str
    user_id: str
    date: dt.date
    start_time: Optional[dt.time] = None
    end_time: Optional[dt.time] = None
    availability_type: AvailabilityType
    reason: Optional[str] = None
    created_at: dt.datetime

    model_config = ConfigDict(from_attributes=True)


class TemplateCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    start_time: dt.time
    end_time: dt.time
    required_officers: int = Field(1, ge=1, le=50)
    location: Optional[str] = Field(None, max_length=255)
    default_days: Optional[List[int]] = None
    is_active: bool = True


class TemplateUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    start_time: Optional[dt.time] = None
    end_time: Optional[dt.time] = None
    required_officers: Optional[int] = Field(None, ge=1, le=50)
    location: Optional[str] = Field(None, max_length=255)
    default_days: Optional[List[int]] = None
    is_active: Optional[bool] = None


class TemplateResponse(BaseModel):
    id: str
    organization_id: str
    name: str
    description: Optional[str] = None
    start_time: dt.time
    end_time: dt.time
    required_officers: int
    location: Optional[str] = None
    default_days: Optional[List[int]] = None
    is_active: bool
    created_by_id: Optional[str] = None
    created_at: dt.datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Statistics
# ============================================================================

class OfficerStats(BaseModel):
    officer_id: str
    officer_name: Optional[str] = None
    total: int
    confirmed: int
    completed: int
    declined: int
    no_show: int
    completion_rate: float


class TimeSeriesPoint(BaseModel):
    date: str
    completion_rate: float
    fill_rate: float


class OrganizationStatistics(BaseModel):
    start_date: dt.date
    end_date: dt.date
    total_schedules: int
    schedules_by_status: Dict[str, int]
    total_assignments: int
    assigned_assignments: int
    confirmed_assignments: int
    completed_assignments: int
    declined_assignments: int
    no_show_assignments: int
    fill_rate: float
    officers_active: int
    avg_duty_duration: float
    confirmation_rate: float
    completion_rate: float
    officer_stats: List[OfficerStats]
    time_series: List[TimeSeriesPoint]


class MonthlyBreakdown(BaseModel):
    month: str
    total: int
    completed: int
    no_show: int
    completion_rate: float


class RecentDuty(BaseModel):
    id: str
    duty_schedule_id: str
    title: str
    date: dt.date
    start_time: dt.time
    end_time: dt.time
    status: str


class MemberStatistics(BaseModel):
    start_date: dt.date
    end_date: dt.date
    total_assignments: int
    confirmed: int
    completed: int
    declined: int
    no_show: int
    pending: int
    hours_worked: float
    completion_rate: float
    reliability_score: float
    monthly_breakdown: List[MonthlyBreakdown]
    recent_duties: List[RecentDuty]
