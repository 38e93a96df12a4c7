from datetime import date, datetime, time, timezone

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from app.audit import audit_request
from app.clock import Clock, get_clock
from app.db import get_db
from app.errors import NotFoundError
from app.models import SessionStatus, User
from app.schemas import (
    BillingCycleRead,
    BreakRead,
    BreakStartRequest,
    MyScoresResponse,
    PrLinksUpdateRequest,
    SessionDatesResponse,
    SessionDetailRead,
    SessionRead,
    SessionStartRequest,
    SwitchProjectRequest,
    TaskCompleteRequest,
    TaskRead,
    UserScoresRead,
)
from app.security import CurrentUser, require_user
from app.services.billing_cycle import billing_cycle_for, current_billing_cycle, list_billing_cycles
from app.services.breaks import end_break, start_break
from app.services.payouts import compute_user_scores
from app.services.sessions import (
    end_session,
    get_active_session,
    get_session_detail,
    list_session_dates,
    list_user_sessions,
    start_session,
    switch_project,
)
from app.services.tasks import complete_task, update_pr_links

router = APIRouter(tags=["timeclock"])


def _day_start(value: date | None) -> datetime | None:
    if value is None:
        return None
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _day_end(value: date | None) -> datetime | None:
    if value is None:
        return None
    return datetime.combine(value, time.max, tzinfo=timezone.utc)


@router.post("/api/sessions/start", response_model=SessionRead, status_code=201)
def start_session_endpoint(
    payload: SessionStartRequest,
    request: Request,
    current: CurrentUser = Depends(require_user),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> SessionRead:
    session = start_session(db, user_id=current.id, project_id=payload.project_id, clock=clock)
    request.state.session_id = session.id
    audit_request(
        db,
        request,
        current,
        action="SESSION_STARTED",
        entity_type="session",
        entity_id=session.id,
        details={"project_id": payload.project_id},
    )
    return session


@router.post("/api/sessions/{session_id}/end", response_model=SessionRead)
def end_session_endpoint(
    session_id: int,
    request: Request,
    current: CurrentUser = Depends(require_user),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> SessionRead:
    session = end_session(db, user_id=current.id, session_id=session_id, clock=clock)
    request.state.session_id = session.id
    audit_request(
        db,
        request,
        current,
        action="SESSION_ENDED",
        entity_type="session",
        entity_id=session.id,
        details={"total_duration": session.total_duration, "total_break_time": session.total_break_time},
    )
    return session


@router.post("/api/sessions/{session_id}/switch-project", response_model=SessionRead)
def switch_project_endpoint(
    session_id: int,
    payload: SwitchProjectRequest,
    request: Request,
    current: CurrentUser = Depends(require_user),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> SessionRead:
    session = switch_project(
        db,
        user_id=current.id,
        session_id=session_id,
        project_id=payload.project_id,
        clock=clock,
    )
    request.state.session_id = session.id
    audit_request(
        db,
        request,
        current,
        action="SESSION_PROJECT_SWITCHED",
        entity_type="session",
        entity_id=session.id,
        details={"project_id": payload.project_id},
    )
    return session


@router.get("/api/sessions/active", response_model=SessionRead)
def active_session_endpoint(
    current: CurrentUser = Depends(require_user),
    db: Session = Depends(get_db),
) -> SessionRead:
    session = get_active_session(db, user_id=current.id)
    if session is None:
        raise NotFoundError("ACTIVE_SESSION_NOT_FOUND", "No active session found for this user.")
    return session


@router.get("/api/sessions", response_model=list[SessionRead])
def list_sessions_endpoint(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    project_id: list[int] | None = Query(default=None),
    status: list[SessionStatus] | None = Query(default=None),
    sort: str = Query(default="desc", pattern="^(asc|desc)$"),
    current: CurrentUser = Depends(require_user),
    db: Session = Depends(get_db),
) -> list[SessionRead]:
    return list_user_sessions(
        db,
        user_id=current.id,
        start=_day_start(start_date),
        end=_day_end(end_date),
        project_ids=project_id,
        statuses=status,
        sort_descending=sort == "desc",
    )


@router.get("/api/sessions/dates", response_model=SessionDatesResponse)
def session_dates_endpoint(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    current: CurrentUser = Depends(require_user),
    db: Session = Depends(get_db),
) -> SessionDatesResponse:
    dates = list_session_dates(db, user_id=current.id, start=_day_start(start_date), end=_day_end(end_date))
    return SessionDatesResponse(dates=dates)


@router.get("/api/sessions/{session_id}", response_model=SessionDetailRead)
def session_detail_endpoint(
    session_id: int,
    current: CurrentUser = Depends(require_user),
    db: Session = Depends(get_db),
) -> SessionDetailRead:
    return get_session_detail(db, user_id=current.id, session_id=session_id)


@router.post("/api/breaks/start", response_model=BreakRead, status_code=201)
def start_break_endpoint(
    payload: BreakStartRequest,
    request: Request,
    current: CurrentUser = Depends(require_user),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> BreakRead:
    break_record = start_break(
        db,
        user_id=current.id,
        session_id=payload.session_id,
        break_type=payload.break_type,
        clock=clock,
    )
    request.state.session_id = break_record.session_id
    audit_request(
        db,
        request,
        current,
        action="BREAK_STARTED",
        entity_type="break",
        entity_id=break_record.id,
        details={"session_id": payload.session_id, "break_type": payload.break_type.value},
    )
    return break_record


@router.post("/api/breaks/{break_id}/end", response_model=BreakRead)
def end_break_endpoint(
    break_id: int,
    request: Request,
    current: CurrentUser = Depends(require_user),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> BreakRead:
    break_record = end_break(db, user_id=current.id, break_id=break_id, clock=clock)
    request.state.session_id = break_record.session_id
    audit_request(
        db,
        request,
        current,
        action="BREAK_ENDED",
        entity_type="break",
        entity_id=break_record.id,
        details={"duration": break_record.duration},
    )
    return break_record


@router.post("/api/tasks/{task_id}/complete", response_model=TaskRead)
def complete_task_endpoint(
    task_id: int,
    payload: TaskCompleteRequest,
    request: Request,
    current: CurrentUser = Depends(require_user),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> TaskRead:
    task = complete_task(db, user_id=current.id, task_id=task_id, partial=payload.partial, clock=clock)
    audit_request(
        db,
        request,
        current,
        action="TASK_COMPLETED",
        entity_type="task",
        entity_id=task.id,
        details={"status": task.status.value, "completed_session_id": task.completed_session_id},
    )
    return task


@router.put("/api/tasks/{task_id}/pr-links", response_model=TaskRead)
def update_pr_links_endpoint(
    task_id: int,
    payload: PrLinksUpdateRequest,
    current: CurrentUser = Depends(require_user),
    db: Session = Depends(get_db),
) -> TaskRead:
    return update_pr_links(db, user_id=current.id, task_id=task_id, pr_links=payload.pr_links)


@router.get("/api/me/scores", response_model=MyScoresResponse)
def my_scores_endpoint(
    cycle_year: int | None = Query(default=None, ge=2000, le=2100),
    cycle_month: int | None = Query(default=None, ge=1, le=12),
    current: CurrentUser = Depends(require_user),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> MyScoresResponse:
    if cycle_year is not None and cycle_month is not None:
        cycle = billing_cycle_for(cycle_year, cycle_month)
    else:
        cycle = current_billing_cycle(clock.now())
    user = db.get(User, current.id)
    scores = compute_user_scores(db, user=user, cycle=cycle)
    return MyScoresResponse(
        billing_cycle=BillingCycleRead(**cycle.to_dict()),
        scores=UserScoresRead(**scores.to_dict()),
    )


@router.get("/api/billing-cycles", response_model=list[BillingCycleRead])
def billing_cycles_endpoint(
    current: CurrentUser = Depends(require_user),
    clock: Clock = Depends(get_clock),
) -> list[BillingCycleRead]:
    return [BillingCycleRead(**cycle.to_dict()) for cycle in list_billing_cycles(clock.now())]
