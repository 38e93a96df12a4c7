from datetime import date, datetime, time, timezone

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from app.audit import audit_request
from app.clock import Clock, get_clock
from app.db import get_db
from app.models import ExceptionType, IncidentSeverity, IncidentType
from app.schemas import (
    BillingCycleRead,
    BreakAnalyticsResponse,
    IncidentCreate,
    IncidentRead,
    IncidentResolveRequest,
    PayoutSnapshotRead,
    PayoutSyncRequest,
    PayoutSyncResponse,
    TaskAssignRequest,
    TaskCreateRequest,
    TaskRateRequest,
    TaskRead,
    TeamScoresResponse,
    UserScoresRead,
    WorkExceptionCreate,
    WorkExceptionRead,
    WorkExceptionUpdate,
)
from app.security import CurrentUser, require_admin
from app.services.billing_cycle import BillingCycle, billing_cycle_for, current_billing_cycle
from app.services.break_analytics import build_break_analytics_report
from app.services.payout_export import build_payout_xlsx_bytes
from app.services.payouts import compute_team_scores, list_payout_snapshots, sync_payout_snapshots
from app.services.stability_incidents import (
    create_incident,
    delete_incident,
    list_incidents,
    resolve_incident,
    unresolve_incident,
)
from app.services.tasks import approve_task, assign_task, create_task, rate_task
from app.services.work_exceptions import (
    create_work_exception,
    delete_work_exception,
    list_work_exceptions,
    update_work_exception,
    work_exception_stats,
)

router = APIRouter(tags=["admin"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _resolve_cycle(cycle_year: int | None, cycle_month: int | None, clock: Clock) -> BillingCycle:
    if cycle_year is not None and cycle_month is not None:
        return billing_cycle_for(cycle_year, cycle_month)
    return current_billing_cycle(clock.now())


def _day_start(value: date | None) -> datetime | None:
    if value is None:
        return None
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _day_end(value: date | None) -> datetime | None:
    if value is None:
        return None
    return datetime.combine(value, time.max, tzinfo=timezone.utc)


@router.post("/api/admin/work-exceptions", response_model=WorkExceptionRead, status_code=status.HTTP_201_CREATED)
def create_work_exception_endpoint(
    payload: WorkExceptionCreate,
    request: Request,
    current: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> WorkExceptionRead:
    exception = create_work_exception(
        db,
        user_id=payload.user_id,
        exception_type=payload.type,
        exception_date=payload.exception_date,
        scheduled_time_epoch=payload.scheduled_time_epoch,
        actual_time_epoch=payload.actual_time_epoch,
        reason=payload.reason,
        notes=payload.notes,
        compensation_date=payload.compensation_date,
    )
    audit_request(
        db,
        request,
        current,
        action="WORK_EXCEPTION_CREATED",
        entity_type="work_exception",
        entity_id=exception.id,
        details={"user_id": payload.user_id, "type": payload.type.value},
    )
    return exception


@router.get("/api/admin/work-exceptions", response_model=list[WorkExceptionRead])
def list_work_exceptions_endpoint(
    user_id: int | None = Query(default=None, ge=1),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    type: ExceptionType | None = Query(default=None),
    _: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> list[WorkExceptionRead]:
    return list_work_exceptions(
        db,
        user_id=user_id,
        start=_day_start(start_date),
        end=_day_end(end_date),
        exception_type=type,
    )


@router.get("/api/admin/work-exceptions/stats", response_model=dict[str, int])
def work_exception_stats_endpoint(
    user_id: int | None = Query(default=None, ge=1),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    _: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> dict[str, int]:
    return work_exception_stats(db, user_id=user_id, start=_day_start(start_date), end=_day_end(end_date))


@router.patch("/api/admin/work-exceptions/{exception_id}", response_model=WorkExceptionRead)
def update_work_exception_endpoint(
    exception_id: int,
    payload: WorkExceptionUpdate,
    request: Request,
    current: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> WorkExceptionRead:
    changes = payload.model_dump(exclude_unset=True)
    if "type" in changes:
        changes["exception_type"] = changes.pop("type")
    exception = update_work_exception(db, exception_id, **changes)
    audit_request(
        db,
        request,
        current,
        action="WORK_EXCEPTION_UPDATED",
        entity_type="work_exception",
        entity_id=exception.id,
        details={"fields": sorted(changes)},
    )
    return exception


@router.delete("/api/admin/work-exceptions/{exception_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_work_exception_endpoint(
    exception_id: int,
    request: Request,
    current: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> Response:
    delete_work_exception(db, exception_id)
    audit_request(
        db,
        request,
        current,
        action="WORK_EXCEPTION_DELETED",
        entity_type="work_exception",
        entity_id=exception_id,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/api/admin/incidents", response_model=IncidentRead, status_code=status.HTTP_201_CREATED)
def create_incident_endpoint(
    payload: IncidentCreate,
    request: Request,
    current: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> IncidentRead:
    incident = create_incident(
        db,
        user_id=payload.user_id,
        incident_type=payload.type,
        severity=payload.severity,
        title=payload.title,
        description=payload.description,
        incident_date=payload.incident_date,
        task_id=payload.task_id,
        reported_by_id=current.id,
    )
    audit_request(
        db,
        request,
        current,
        action="STABILITY_INCIDENT_CREATED",
        entity_type="stability_incident",
        entity_id=incident.id,
        details={"user_id": payload.user_id, "type": payload.type.value, "severity": payload.severity.value},
    )
    return incident


@router.get("/api/admin/incidents", response_model=list[IncidentRead])
def list_incidents_endpoint(
    user_id: int | None = Query(default=None, ge=1),
    task_id: int | None = Query(default=None, ge=1),
    type: IncidentType | None = Query(default=None),
    severity: IncidentSeverity | None = Query(default=None),
    resolved: bool | None = Query(default=None),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    search: str | None = Query(default=None, max_length=255),
    _: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> list[IncidentRead]:
    return list_incidents(
        db,
        user_id=user_id,
        task_id=task_id,
        incident_type=type,
        severity=severity,
        resolved=resolved,
        start=_day_start(start_date),
        end=_day_end(end_date),
        search=search,
    )


@router.post("/api/admin/incidents/{incident_id}/resolve", response_model=IncidentRead)
def resolve_incident_endpoint(
    incident_id: int,
    payload: IncidentResolveRequest,
    request: Request,
    current: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> IncidentRead:
    incident = resolve_incident(
        db,
        incident_id,
        resolution_notes=payload.resolution_notes,
        resolved_at=payload.resolved_at,
        resolution_task_id=payload.resolution_task_id,
        clock=clock,
    )
    audit_request(
        db,
        request,
        current,
        action="STABILITY_INCIDENT_RESOLVED",
        entity_type="stability_incident",
        entity_id=incident.id,
    )
    return incident


@router.post("/api/admin/incidents/{incident_id}/unresolve", response_model=IncidentRead)
def unresolve_incident_endpoint(
    incident_id: int,
    request: Request,
    current: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> IncidentRead:
    incident = unresolve_incident(db, incident_id)
    audit_request(
        db,
        request,
        current,
        action="STABILITY_INCIDENT_UNRESOLVED",
        entity_type="stability_incident",
        entity_id=incident.id,
    )
    return incident


@router.delete("/api/admin/incidents/{incident_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_incident_endpoint(
    incident_id: int,
    request: Request,
    current: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> Response:
    delete_incident(db, incident_id)
    audit_request(
        db,
        request,
        current,
        action="STABILITY_INCIDENT_DELETED",
        entity_type="stability_incident",
        entity_id=incident_id,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/api/admin/tasks", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
def create_task_endpoint(
    payload: TaskCreateRequest,
    request: Request,
    current: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> TaskRead:
    task = create_task(
        db,
        title=payload.title,
        description=payload.description,
        project_id=payload.project_id,
        assigned_to_id=payload.assigned_to_id,
    )
    audit_request(db, request, current, action="TASK_CREATED", entity_type="task", entity_id=task.id)
    return task


@router.post("/api/admin/tasks/{task_id}/assign", response_model=TaskRead)
def assign_task_endpoint(
    task_id: int,
    payload: TaskAssignRequest,
    request: Request,
    current: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> TaskRead:
    task = assign_task(db, task_id=task_id, assignee_id=payload.assignee_id)
    audit_request(
        db,
        request,
        current,
        action="TASK_ASSIGNED",
        entity_type="task",
        entity_id=task.id,
        details={"assignee_id": payload.assignee_id},
    )
    return task


@router.post("/api/admin/tasks/{task_id}/approve", response_model=TaskRead)
def approve_task_endpoint(
    task_id: int,
    request: Request,
    current: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> TaskRead:
    task = approve_task(db, task_id=task_id, approver_id=current.id, clock=clock)
    audit_request(db, request, current, action="TASK_APPROVED", entity_type="task", entity_id=task.id)
    return task


@router.post("/api/admin/tasks/{task_id}/rate", response_model=TaskRead)
def rate_task_endpoint(
    task_id: int,
    payload: TaskRateRequest,
    request: Request,
    current: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> TaskRead:
    task = rate_task(db, task_id=task_id, score=payload.score)
    audit_request(
        db,
        request,
        current,
        action="TASK_RATED",
        entity_type="task",
        entity_id=task.id,
        details={"score": payload.score},
    )
    return task


@router.get("/api/admin/team-scores", response_model=TeamScoresResponse)
def team_scores_endpoint(
    cycle_year: int | None = Query(default=None, ge=2000, le=2100),
    cycle_month: int | None = Query(default=None, ge=1, le=12),
    _: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> TeamScoresResponse:
    cycle = _resolve_cycle(cycle_year, cycle_month, clock)
    return TeamScoresResponse(
        billing_cycle=BillingCycleRead(**cycle.to_dict()),
        users=[UserScoresRead(**item.to_dict()) for item in compute_team_scores(db, cycle=cycle)],
    )


@router.post("/api/admin/payouts/sync", response_model=PayoutSyncResponse)
def sync_payouts_endpoint(
    payload: PayoutSyncRequest,
    request: Request,
    current: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> PayoutSyncResponse:
    cycle = _resolve_cycle(payload.cycle_year, payload.cycle_month, clock)
    snapshots = sync_payout_snapshots(db, cycle=cycle, synced_by_id=current.id, clock=clock)
    audit_request(
        db,
        request,
        current,
        action="PAYOUT_SNAPSHOTS_SYNCED",
        entity_type="billing_cycle",
        entity_id=cycle.start.date().isoformat(),
        details={"snapshot_count": len(snapshots)},
    )
    return PayoutSyncResponse(
        billing_cycle=BillingCycleRead(**cycle.to_dict()),
        snapshots=[PayoutSnapshotRead.model_validate(item) for item in snapshots],
    )


@router.get("/api/admin/payouts", response_model=list[PayoutSnapshotRead])
def list_payouts_endpoint(
    cycle_year: int | None = Query(default=None, ge=2000, le=2100),
    cycle_month: int | None = Query(default=None, ge=1, le=12),
    _: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> list[PayoutSnapshotRead]:
    return list_payout_snapshots(db, cycle=_resolve_cycle(cycle_year, cycle_month, clock))


@router.get("/api/admin/payouts/export.xlsx")
def export_payouts_xlsx(
    cycle_year: int | None = Query(default=None, ge=2000, le=2100),
    cycle_month: int | None = Query(default=None, ge=1, le=12),
    _: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> Response:
    cycle = _resolve_cycle(cycle_year, cycle_month, clock)
    payload = build_payout_xlsx_bytes(db, cycle=cycle)
    return Response(
        content=payload,
        media_type=XLSX_MEDIA_TYPE,
        headers={
            "Content-Disposition": f'attachment; filename="payouts-{cycle.start.date().isoformat()}.xlsx"',
        },
    )


@router.get("/api/admin/break-analytics", response_model=BreakAnalyticsResponse)
def break_analytics_endpoint(
    start_date: date = Query(),
    end_date: date = Query(),
    _: CurrentUser = Depends(require_admin),
    db: Session = Depends(get_db),
) -> BreakAnalyticsResponse:
    return build_break_analytics_report(db, start=_day_start(start_date), end=_day_end(end_date))
