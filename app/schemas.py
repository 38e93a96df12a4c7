from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from app.models import (
    BreakType,
    ExceptionType,
    IncidentSeverity,
    IncidentType,
    SegmentType,
    SessionStatus,
    TaskStatus,
)


class SessionStartRequest(BaseModel):
    project_id: int | None = Field(default=None, ge=1)


class SwitchProjectRequest(BaseModel):
    project_id: int | None = Field(default=None, ge=1)


class SegmentRead(BaseModel):
    id: int
    type: SegmentType
    project_id: int | None
    break_id: int | None
    start_time: datetime
    end_time: datetime | None
    duration: int

    model_config = ConfigDict(from_attributes=True)


class BreakRead(BaseModel):
    id: int
    session_id: int
    type: BreakType
    start_time: datetime
    end_time: datetime | None
    duration: int

    model_config = ConfigDict(from_attributes=True)


class SessionRead(BaseModel):
    id: int
    user_id: int
    project_id: int | None
    status: SessionStatus
    start_time: datetime
    end_time: datetime | None
    total_duration: int
    total_break_time: int

    model_config = ConfigDict(from_attributes=True)


class SessionDetailRead(SessionRead):
    segments: list[SegmentRead] = Field(default_factory=list)
    breaks: list[BreakRead] = Field(default_factory=list)


class SessionDatesResponse(BaseModel):
    dates: list[date]


class BreakStartRequest(BaseModel):
    session_id: int = Field(ge=1)
    break_type: BreakType = BreakType.SHORT


class TaskCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    project_id: int | None = Field(default=None, ge=1)
    assigned_to_id: int | None = Field(default=None, ge=1)


class TaskCompleteRequest(BaseModel):
    partial: bool = False


class TaskAssignRequest(BaseModel):
    assignee_id: int = Field(ge=1)


class TaskRateRequest(BaseModel):
    # Range is enforced by the task service so the error carries INVALID_TASK_SCORE.
    score: int


class PrLinksUpdateRequest(BaseModel):
    pr_links: list[str] = Field(default_factory=list)


class TaskRead(BaseModel):
    id: int
    title: str
    description: str | None
    status: TaskStatus
    score: int | None
    project_id: int | None
    assigned_to_id: int | None
    approved_by_id: int | None
    approved_date: datetime | None
    completed_date: datetime | None
    completed_session_id: int | None
    pr_links: list[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class WorkExceptionCreate(BaseModel):
    user_id: int = Field(ge=1)
    type: ExceptionType
    exception_date: datetime
    scheduled_time_epoch: int | None = None
    actual_time_epoch: int | None = None
    reason: str | None = Field(default=None, max_length=1000)
    notes: str | None = None
    compensation_date: datetime | None = None


class WorkExceptionUpdate(BaseModel):
    type: ExceptionType | None = None
    exception_date: datetime | None = None
    scheduled_time_epoch: int | None = None
    actual_time_epoch: int | None = None
    reason: str | None = Field(default=None, max_length=1000)
    notes: str | None = None
    compensation_date: datetime | None = None


class WorkExceptionRead(BaseModel):
    id: int
    user_id: int
    type: ExceptionType
    exception_date: datetime
    scheduled_time_epoch: int | None
    actual_time_epoch: int | None
    reason: str | None
    notes: str | None
    compensation_date: datetime | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class IncidentCreate(BaseModel):
    user_id: int = Field(ge=1)
    type: IncidentType
    severity: IncidentSeverity
    title: str = Field(min_length=1, max_length=255)
    description: str | None = None
    incident_date: datetime
    task_id: int | None = Field(default=None, ge=1)


class IncidentResolveRequest(BaseModel):
    resolution_notes: str = Field(min_length=1)
    resolved_at: datetime | None = None
    resolution_task_id: int | None = Field(default=None, ge=1)


class IncidentRead(BaseModel):
    id: int
    user_id: int
    type: IncidentType
    severity: IncidentSeverity
    title: str
    description: str | None
    incident_date: int
    resolved_at: int | None
    resolution_notes: str | None
    task_id: int | None
    resolution_task_id: int | None
    reported_by_id: int | None

    model_config = ConfigDict(from_attributes=True)


class BillingCycleRead(BaseModel):
    label: str
    start_date: date
    end_date: date
    start: datetime
    end: datetime


class UserScoresRead(BaseModel):
    user_id: int
    user_name: str
    monthly_output_score: float
    availability_score: float
    stability_score: float
    working_days_in_cycle: int
    base_compensation_inr: float
    expected_payout_inr: float
    difference_inr: float


class MyScoresResponse(BaseModel):
    billing_cycle: BillingCycleRead
    scores: UserScoresRead


class TeamScoresResponse(BaseModel):
    billing_cycle: BillingCycleRead
    users: list[UserScoresRead]


class PayoutSnapshotRead(BaseModel):
    id: int
    user_id: int
    billing_cycle_start: datetime
    billing_cycle_end: datetime
    monthly_output_score: float
    availability_score: float
    stability_score: float
    base_compensation_inr: float
    expected_payout_inr: float
    difference_inr: float
    working_days_in_cycle: int
    snapshot_date: datetime
    synced_by_id: int | None

    model_config = ConfigDict(from_attributes=True)


class PayoutSyncRequest(BaseModel):
    cycle_year: int | None = Field(default=None, ge=2000, le=2100)
    cycle_month: int | None = Field(default=None, ge=1, le=12)


class PayoutSyncResponse(BaseModel):
    billing_cycle: BillingCycleRead
    snapshots: list[PayoutSnapshotRead]


class BreakAnalyticsResponse(BaseModel):
    date_range: dict[str, str]
    user_stats: list[dict[str, Any]]
    anomaly_analysis: dict[str, Any]
